"""
Umoyo SQLAlchemy Models

Persistent state of the custom vector corpus:
- vector_chunks: one row per chunk, keyed by the content-addressed chunk id
- corpus_metadata: singleton aggregate row (id = 1)

All models use SQLAlchemy 2.0 patterns with async support.
"""

import os
from datetime import datetime, timezone
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ============================================
# Configuration
# ============================================

# Embedding vector dimension (text-embedding-005 produces 768-dim vectors)
EMBEDDING_DIMENSION = int(os.environ.get("EMBEDDING_DIMENSION", "768"))

CORPUS_METADATA_ID = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# Base Model
# ============================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


# ============================================
# Vector Chunk Model
# ============================================


class VectorChunkRecord(Base):
    """A document chunk with its embedding."""

    __tablename__ = "vector_chunks"

    chunk_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document_id: Mapped[str] = mapped_column(String(128), nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    page_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start_char: Mapped[int] = mapped_column(Integer, nullable=False)
    end_char: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSION),
        nullable=False,
    )
    embedding_dim: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("idx_vector_chunks_document_id", "document_id", "chunk_index"),
        Index("idx_vector_chunks_category", "category"),
    )

    def __repr__(self) -> str:
        return (
            f"<VectorChunkRecord(chunk_id='{self.chunk_id[:8]}...', "
            f"document_id='{self.document_id}', index={self.chunk_index})>"
        )


# ============================================
# Corpus Metadata Model
# ============================================


class CorpusMetadataRecord(Base):
    """Singleton row holding corpus-wide aggregates."""

    __tablename__ = "corpus_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    embedding_model: Mapped[str] = mapped_column(String(128), nullable=False)
    dimensions: Mapped[int] = mapped_column(Integer, nullable=False)
    total_documents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_chunks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (CheckConstraint("id = 1", name="corpus_metadata_singleton"),)

    def __repr__(self) -> str:
        return (
            f"<CorpusMetadataRecord(documents={self.total_documents}, "
            f"chunks={self.total_chunks})>"
        )
