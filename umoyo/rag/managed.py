"""
Vertex AI RAG Engine Client for Umoyo

Async wrapper around the managed retrieval corpus:
- Corpus creation and document import from Cloud Storage
- Grounded question answering via generateContent + vertexRagStore tool
- Corpus status checks for readiness probes
- Retry logic with capped exponential backoff
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field

import httpx

from umoyo.exceptions import CorpusUnavailableError, TransientExternalError
from umoyo.rag.gcp_auth import GoogleTokenProvider, TokenProvider

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_ID = os.environ.get("GCP_PROJECT_ID", "umoyo-health-hub")
DEFAULT_LOCATION = os.environ.get("GCP_LOCATION", "us-central1")
DEFAULT_CORPUS_ID = os.environ.get("VERTEX_RAG_CORPUS_ID", "")
DEFAULT_MODEL = os.environ.get("VERTEX_RAG_MODEL", "gemini-1.5-pro")
DEFAULT_TIMEOUT = float(os.environ.get("MANAGED_TIMEOUT_SECONDS", "60"))

# Chunking applied by the managed corpus on import
DEFAULT_IMPORT_CHUNK_SIZE = 1024
DEFAULT_IMPORT_CHUNK_OVERLAP = 200

# Confidence reported when the answer carries no grounding scores
NEUTRAL_CONFIDENCE = 0.5

# Retry configuration
MAX_RETRIES = 2
RETRY_BACKOFF_BASE = 1.0  # seconds
RETRY_BACKOFF_MAX = 4.0  # seconds


@dataclass
class ManagedSource:
    title: str
    snippet: str
    uri: str | None = None


@dataclass
class ManagedAnswer:
    """Answer text plus the grounding sources the managed corpus cited."""

    answer: str
    sources: list[ManagedSource] = field(default_factory=list)
    confidence: float = NEUTRAL_CONFIDENCE


@dataclass
class CorpusStatus:
    exists: bool
    ready: bool
    file_count: int = 0


def extract_sources(grounding: dict | None) -> list[ManagedSource]:
    """Map groundingChunks[].retrievedContext to sources, in response order."""
    if not grounding:
        return []

    sources = []
    for chunk in grounding.get("groundingChunks") or []:
        context = chunk.get("retrievedContext") or {}
        if not context:
            continue
        sources.append(
            ManagedSource(
                title=context.get("title") or "Unknown source",
                snippet=context.get("text") or "",
                uri=context.get("uri"),
            )
        )
    return sources


def calculate_confidence(grounding: dict | None) -> float:
    """Mean grounding-support confidence, clamped to [0, 1].

    Returns NEUTRAL_CONFIDENCE when the response has no grounding scores.
    """
    if not grounding:
        return NEUTRAL_CONFIDENCE

    scores: list[float] = []
    for support in grounding.get("groundingSupports") or []:
        scores.extend(float(s) for s in support.get("confidenceScores") or [])

    if not scores:
        return NEUTRAL_CONFIDENCE
    return min(max(sum(scores) / len(scores), 0.0), 1.0)


class ManagedRetrievalClient:
    """Async client for the Vertex AI RAG Engine REST API."""

    def __init__(
        self,
        corpus_id: str = DEFAULT_CORPUS_ID,
        project_id: str = DEFAULT_PROJECT_ID,
        location: str = DEFAULT_LOCATION,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        token_provider: TokenProvider | None = None,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self.corpus_id = corpus_id
        self.project_id = project_id
        self.location = location
        self.model = model
        self.timeout = timeout
        self.token_provider = token_provider or GoogleTokenProvider()
        self.max_retries = max(1, max_retries)

    @property
    def api_base(self) -> str:
        return f"https://{self.location}-aiplatform.googleapis.com/v1"

    @property
    def model_endpoint(self) -> str:
        return (
            f"{self.api_base}/projects/{self.project_id}/locations/{self.location}"
            f"/publishers/google/models/{self.model}:generateContent"
        )

    def _require_corpus(self) -> str:
        if not self.corpus_id:
            raise CorpusUnavailableError(
                "Managed RAG corpus is not configured (VERTEX_RAG_CORPUS_ID)"
            )
        return self.corpus_id

    async def _post(self, url: str, payload: dict, operation: str) -> dict:
        """POST with retries; raises TransientExternalError when exhausted."""
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                token = await self.token_provider()
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout)
                ) as client:
                    response = await client.post(
                        url,
                        headers={"Authorization": f"Bearer {token}"},
                        json=payload,
                    )
                    response.raise_for_status()
                    return response.json()

            except (httpx.ConnectTimeout, httpx.ReadTimeout) as e:
                last_error = e
                logger.warning(
                    "Managed RAG %s timeout (attempt %d/%d): %s",
                    operation,
                    attempt + 1,
                    self.max_retries,
                    e,
                )
            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "Managed RAG %s HTTP error %d (attempt %d/%d): %s",
                    operation,
                    e.response.status_code,
                    attempt + 1,
                    self.max_retries,
                    e,
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    "Managed RAG %s failed (attempt %d/%d): %s",
                    operation,
                    attempt + 1,
                    self.max_retries,
                    e,
                )

            if attempt < self.max_retries - 1:
                wait = min(RETRY_BACKOFF_BASE * (2**attempt), RETRY_BACKOFF_MAX)
                logger.info("Retrying managed RAG %s in %.1fs...", operation, wait)
                await asyncio.sleep(wait)

        logger.error(
            "Managed RAG %s failed after %d attempts", operation, self.max_retries
        )
        raise TransientExternalError(
            f"Managed RAG {operation} failed: {last_error}",
            service="managed",
            attempts=self.max_retries,
        ) from last_error

    async def create_corpus(
        self,
        display_name: str = "umoyo-general-medical",
        description: str = "General medical knowledge base for Umoyo Health Hub",
    ) -> str:
        """Create a new managed corpus and use it for subsequent calls."""
        url = (
            f"{self.api_base}/projects/{self.project_id}"
            f"/locations/{self.location}/ragCorpora"
        )
        data = await self._post(
            url,
            {"displayName": display_name, "description": description},
            "create",
        )
        # Corpus creation is a long-running operation; the name carries the id
        name = data.get("name", "")
        if "/operations/" in name:
            name = name.split("/operations/")[0]
        self.corpus_id = name
        logger.info("Created managed RAG corpus: %s", name)
        return name

    async def import_documents(
        self,
        source_uris: list[str],
        chunk_size: int = DEFAULT_IMPORT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_IMPORT_CHUNK_OVERLAP,
    ) -> dict:
        """Import Cloud Storage documents into the managed corpus."""
        corpus = self._require_corpus()
        data = await self._post(
            f"{self.api_base}/{corpus}/ragFiles:import",
            {
                "importRagFilesConfig": {
                    "gcsSource": {"uris": source_uris},
                    "ragFileChunkingConfig": {
                        "chunkSize": chunk_size,
                        "chunkOverlap": chunk_overlap,
                    },
                }
            },
            "import",
        )
        logger.info("Imported %d documents into managed RAG corpus", len(source_uris))
        return data

    async def query(self, question: str, top_k: int = 5) -> ManagedAnswer:
        """
        Answer a question grounded in the managed corpus.

        Raises:
            CorpusUnavailableError: No corpus configured.
            TransientExternalError: Call failed or returned an empty answer.
        """
        corpus = self._require_corpus()
        data = await self._post(
            self.model_endpoint,
            {
                "contents": [{"role": "user", "parts": [{"text": question}]}],
                "tools": [
                    {
                        "retrieval": {
                            "vertexRagStore": {
                                "ragResources": [{"ragCorpus": corpus}],
                                "similarityTopK": top_k,
                            }
                        }
                    }
                ],
            },
            "query",
        )

        candidates = data.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        parts = (candidate.get("content") or {}).get("parts") or []
        answer = "".join(p.get("text", "") for p in parts).strip()
        if not answer:
            raise TransientExternalError(
                "Managed RAG returned an empty answer", service="managed"
            )

        grounding = candidate.get("groundingMetadata")
        return ManagedAnswer(
            answer=answer,
            sources=extract_sources(grounding),
            confidence=calculate_confidence(grounding),
        )

    async def check_status(self) -> CorpusStatus:
        """Report whether the corpus exists and is ready. Never raises."""
        if not self.corpus_id:
            return CorpusStatus(exists=False, ready=False)

        try:
            token = await self.token_provider()
            async with httpx.AsyncClient(timeout=httpx.Timeout(10)) as client:
                response = await client.get(
                    f"{self.api_base}/{self.corpus_id}",
                    headers={"Authorization": f"Bearer {token}"},
                )
            if response.status_code != 200:
                return CorpusStatus(exists=False, ready=False)
            corpus = response.json()
            return CorpusStatus(
                exists=True,
                ready=corpus.get("state") == "READY",
                file_count=int(corpus.get("ragFileCount") or 0),
            )
        except Exception as e:
            logger.warning("Managed corpus status check failed: %s", e)
            return CorpusStatus(exists=False, ready=False)
