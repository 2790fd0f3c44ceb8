"""
Umoyo Error Taxonomy

Every failure the engine distinguishes:
- ValidationError: bad input, rejected before any external call, never retried
- TransientExternalError: timeouts / HTTP / malformed backend responses
- CorpusUnavailableError: a retrieval corpus cannot serve queries
- PipelineDocumentError: one document failed inside a batch ingestion job
- HybridExhaustionError: every strategy failed for a query
"""


class UmoyoError(Exception):
    """Base class for all engine errors."""

    pass


class ValidationError(UmoyoError):
    """Raised when input is rejected before calling any backend."""

    pass


class TransientExternalError(UmoyoError):
    """Raised when an external call failed after exhausting its retries.

    Attributes:
        service: Short name of the failing backend ("embedding", "managed", ...).
        attempts: Number of attempts made before giving up.
    """

    def __init__(self, message: str, service: str = "", attempts: int = 1) -> None:
        super().__init__(message)
        self.service = service
        self.attempts = attempts


class CorpusUnavailableError(UmoyoError):
    """Raised when a corpus is not configured, not ready, or empty."""

    pass


class PipelineDocumentError(UmoyoError):
    """Wraps the failure of a single document inside an ingestion job."""

    def __init__(self, document_id: str, cause: Exception) -> None:
        super().__init__(f"Document {document_id} failed: {cause}")
        self.document_id = document_id
        self.cause = cause


class HybridExhaustionError(UmoyoError):
    """Raised internally when no strategy could produce an answer."""

    pass
