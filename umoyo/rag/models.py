"""
Umoyo Corpus Data Models

Pydantic models for documents and the records the ingestion path produces:
- Document: a source document with audience/language/region metadata
- Chunk: a span of extracted document text, keyed by a content-addressed id
- VectorChunk: a Chunk plus its embedding
- CorpusMetadata: singleton aggregate describing the custom corpus
"""

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

DocumentCategory = Literal[
    "clinical-guideline",
    "drug-info",
    "disease-reference",
    "patient-education",
]
DocumentAudience = Literal["healthcare-professional", "patient", "both"]


# ============================================
# Documents
# ============================================


class DocumentMetadata(BaseModel):
    """Descriptive metadata carried by every document."""

    model_config = ConfigDict(frozen=True)

    audience: DocumentAudience = "both"
    language: str = "en"
    region: str = "global"
    topics: list[str] = Field(default_factory=list)
    last_updated: str = ""
    publication_date: str | None = None
    page_count: int | None = None


class Document(BaseModel):
    """A medical source document. Immutable once the document list is built."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    source: str
    category: DocumentCategory
    url: str = ""
    local_path: str | None = None
    gcs_path: str | None = None
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


# ============================================
# Chunks
# ============================================


class Chunk(BaseModel):
    """A chunk of document text before embedding.

    Attributes:
        chunk_id: Content-addressed id derived from document_id + chunk_index.
        document_id: Id of the owning document.
        source: Title of the owning document, used for citations.
        chunk_index: Zero-based position of the chunk inside the document.
        start_char: Offset of the first character (inclusive).
        end_char: Offset of the last character (exclusive).
    """

    chunk_id: str
    document_id: str
    source: str
    category: str
    content: str
    chunk_index: int = Field(..., ge=0)
    start_char: int = Field(..., ge=0)
    end_char: int = Field(..., ge=0)
    page_number: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)


class VectorChunk(Chunk):
    """A chunk with its embedding; the stored unit of the custom corpus."""

    embedding: list[float]
    embedding_dim: int = Field(..., gt=0)

    @model_validator(mode="after")
    def _check_dimension(self) -> "VectorChunk":
        if len(self.embedding) != self.embedding_dim:
            raise ValueError(
                f"embedding has {len(self.embedding)} values, "
                f"expected {self.embedding_dim}"
            )
        return self

    @classmethod
    def from_chunk(cls, chunk: Chunk, embedding: list[float]) -> "VectorChunk":
        return cls(
            **chunk.model_dump(),
            embedding=embedding,
            embedding_dim=len(embedding),
        )


# ============================================
# Corpus Metadata
# ============================================


class CorpusMetadata(BaseModel):
    """Aggregate statistics for the custom vector corpus."""

    version: int = 1
    embedding_model: str
    dimensions: int
    total_documents: int = 0
    total_chunks: int = 0
    updated_at: float = Field(default_factory=time.time)
