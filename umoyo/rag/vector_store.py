"""
Umoyo Vector Store

Persistent home of the custom corpus and exact cosine similarity search.

- cosine_similarity / rank_by_similarity: brute-force scoring with numpy
- VectorStore: storage interface used by ingestion and serving
- InMemoryVectorStore: dict-backed store for tests and local runs
- PgVectorStore: PostgreSQL + pgvector via SQLAlchemy async sessions

Search is exact: every candidate is scored, results are ordered by
descending similarity and ties keep their stored order.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from umoyo.db.models import CORPUS_METADATA_ID, CorpusMetadataRecord, VectorChunkRecord
from umoyo.exceptions import ValidationError
from umoyo.rag.models import CorpusMetadata, VectorChunk

logger = logging.getLogger(__name__)

# Maximum records per write round-trip
WRITE_BATCH_LIMIT = 500

DEFAULT_TOP_K = int(os.environ.get("RAG_TOP_K", "5"))


# ============================================
# Similarity
# ============================================


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero norm.

    Raises:
        ValidationError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValidationError(
            f"Vector length mismatch: {len(a)} != {len(b)}"
        )
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


@dataclass
class SearchResult:
    """A stored chunk and its similarity to the query vector."""

    chunk: VectorChunk
    similarity: float


def rank_by_similarity(
    query: list[float],
    chunks: list[VectorChunk],
    k: int,
) -> list[SearchResult]:
    """Score every chunk against ``query`` and return the top ``k``.

    Equal scores keep the order of ``chunks`` (stable sort).
    """
    if k <= 0 or not chunks:
        return []

    for chunk in chunks:
        if len(chunk.embedding) != len(query):
            raise ValidationError(
                f"Vector length mismatch: query has {len(query)} values, "
                f"chunk {chunk.chunk_id} has {len(chunk.embedding)}"
            )

    matrix = np.asarray([c.embedding for c in chunks], dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

    order = np.argsort(-scores, kind="stable")[:k]
    return [SearchResult(chunk=chunks[i], similarity=float(scores[i])) for i in order]


def _check_dimension(chunks: list[VectorChunk], dimension: int) -> None:
    for chunk in chunks:
        if chunk.embedding_dim != dimension or len(chunk.embedding) != dimension:
            raise ValidationError(
                f"Chunk {chunk.chunk_id} has dimension {len(chunk.embedding)}, "
                f"store expects {dimension}"
            )


# ============================================
# Interface
# ============================================


class VectorStore(ABC):
    """Storage for VectorChunks plus the singleton CorpusMetadata."""

    dimension: int
    embedding_model: str

    @abstractmethod
    async def upsert_chunks(self, chunks: list[VectorChunk]) -> int:
        """Insert or replace chunks by chunk_id. Returns the number written."""

    @abstractmethod
    async def search(
        self,
        vector: list[float],
        k: int = DEFAULT_TOP_K,
        category: str | None = None,
    ) -> list[SearchResult]:
        """Top-k chunks by cosine similarity, optionally within one category."""

    @abstractmethod
    async def get_document_chunks(self, document_id: str) -> list[VectorChunk]:
        """All chunks of a document ordered by chunk_index."""

    @abstractmethod
    async def delete_document(self, document_id: str, from_index: int = 0) -> int:
        """Remove chunks of a document with chunk_index >= from_index.

        Returns the number removed.
        """

    @abstractmethod
    async def get_metadata(self) -> CorpusMetadata | None: ...

    @abstractmethod
    async def refresh_metadata(self) -> CorpusMetadata:
        """Recompute corpus aggregates from the stored chunks and persist them."""

    @abstractmethod
    async def count(self) -> int: ...


# ============================================
# In-memory implementation
# ============================================


class InMemoryVectorStore(VectorStore):
    """Dict-backed store. Writes are serialized by an asyncio lock."""

    def __init__(self, dimension: int, embedding_model: str = "") -> None:
        self.dimension = dimension
        self.embedding_model = embedding_model
        self._chunks: dict[str, VectorChunk] = {}
        self._metadata: CorpusMetadata | None = None
        self._lock = asyncio.Lock()

    async def upsert_chunks(self, chunks: list[VectorChunk]) -> int:
        _check_dimension(chunks, self.dimension)
        written = 0
        async with self._lock:
            for start in range(0, len(chunks), WRITE_BATCH_LIMIT):
                for chunk in chunks[start : start + WRITE_BATCH_LIMIT]:
                    self._chunks[chunk.chunk_id] = chunk
                    written += 1
        return written

    async def search(
        self,
        vector: list[float],
        k: int = DEFAULT_TOP_K,
        category: str | None = None,
    ) -> list[SearchResult]:
        candidates = [
            c
            for c in self._chunks.values()
            if category is None or c.category == category
        ]
        return rank_by_similarity(vector, candidates, k)

    async def get_document_chunks(self, document_id: str) -> list[VectorChunk]:
        chunks = [c for c in self._chunks.values() if c.document_id == document_id]
        return sorted(chunks, key=lambda c: c.chunk_index)

    async def delete_document(self, document_id: str, from_index: int = 0) -> int:
        async with self._lock:
            ids = [
                cid
                for cid, c in self._chunks.items()
                if c.document_id == document_id and c.chunk_index >= from_index
            ]
            for cid in ids:
                del self._chunks[cid]
        return len(ids)

    async def get_metadata(self) -> CorpusMetadata | None:
        return self._metadata

    async def refresh_metadata(self) -> CorpusMetadata:
        async with self._lock:
            version = self._metadata.version if self._metadata else 1
            self._metadata = CorpusMetadata(
                version=version,
                embedding_model=self.embedding_model,
                dimensions=self.dimension,
                total_documents=len({c.document_id for c in self._chunks.values()}),
                total_chunks=len(self._chunks),
            )
            return self._metadata

    async def count(self) -> int:
        return len(self._chunks)


# ============================================
# PostgreSQL + pgvector implementation
# ============================================


def _to_record_row(chunk: VectorChunk) -> dict:
    return {
        "chunk_id": chunk.chunk_id,
        "document_id": chunk.document_id,
        "source": chunk.source,
        "category": chunk.category,
        "page_number": chunk.page_number,
        "chunk_index": chunk.chunk_index,
        "start_char": chunk.start_char,
        "end_char": chunk.end_char,
        "content": chunk.content,
        "embedding": list(chunk.embedding),
        "embedding_dim": chunk.embedding_dim,
        "metadata": chunk.metadata,
        "created_at": datetime.fromtimestamp(chunk.created_at, tz=timezone.utc),
    }


def _from_record(record: VectorChunkRecord) -> VectorChunk:
    embedding = record.embedding
    if isinstance(embedding, np.ndarray):
        embedding = embedding.tolist()
    return VectorChunk(
        chunk_id=record.chunk_id,
        document_id=record.document_id,
        source=record.source,
        category=record.category,
        content=record.content,
        chunk_index=record.chunk_index,
        start_char=record.start_char,
        end_char=record.end_char,
        page_number=record.page_number,
        metadata=record.chunk_metadata or {},
        created_at=record.created_at.timestamp(),
        embedding=[float(v) for v in embedding],
        embedding_dim=record.embedding_dim,
    )


class PgVectorStore(VectorStore):
    """
    Vector store backed by the vector_chunks / corpus_metadata tables.

    Upserts are INSERT ... ON CONFLICT (chunk_id) DO UPDATE, one
    transaction per batch of at most WRITE_BATCH_LIMIT rows. Search loads
    the candidate embeddings (optionally filtered by category) and ranks
    them exactly in Python.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dimension: int,
        embedding_model: str = "",
    ) -> None:
        self.session_factory = session_factory
        self.dimension = dimension
        self.embedding_model = embedding_model

    async def upsert_chunks(self, chunks: list[VectorChunk]) -> int:
        _check_dimension(chunks, self.dimension)
        written = 0

        for start in range(0, len(chunks), WRITE_BATCH_LIMIT):
            rows = [
                _to_record_row(c) for c in chunks[start : start + WRITE_BATCH_LIMIT]
            ]
            stmt = pg_insert(VectorChunkRecord.__table__).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["chunk_id"],
                set_={
                    "document_id": stmt.excluded.document_id,
                    "source": stmt.excluded.source,
                    "category": stmt.excluded.category,
                    "page_number": stmt.excluded.page_number,
                    "chunk_index": stmt.excluded.chunk_index,
                    "start_char": stmt.excluded.start_char,
                    "end_char": stmt.excluded.end_char,
                    "content": stmt.excluded.content,
                    "embedding": stmt.excluded.embedding,
                    "embedding_dim": stmt.excluded.embedding_dim,
                    "metadata": stmt.excluded["metadata"],
                    "created_at": stmt.excluded.created_at,
                },
            )
            async with self.session_factory() as session:
                await session.execute(stmt)
                await session.commit()
            written += len(rows)
            logger.debug("Upserted %d chunks (offset %d)", len(rows), start)

        return written

    async def search(
        self,
        vector: list[float],
        k: int = DEFAULT_TOP_K,
        category: str | None = None,
    ) -> list[SearchResult]:
        stmt = select(VectorChunkRecord).order_by(
            VectorChunkRecord.document_id, VectorChunkRecord.chunk_index
        )
        if category is not None:
            stmt = stmt.where(VectorChunkRecord.category == category)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            candidates = [_from_record(r) for r in result.scalars().all()]

        return rank_by_similarity(vector, candidates, k)

    async def get_document_chunks(self, document_id: str) -> list[VectorChunk]:
        stmt = (
            select(VectorChunkRecord)
            .where(VectorChunkRecord.document_id == document_id)
            .order_by(VectorChunkRecord.chunk_index)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_from_record(r) for r in result.scalars().all()]

    async def delete_document(self, document_id: str, from_index: int = 0) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(VectorChunkRecord).where(
                    VectorChunkRecord.document_id == document_id,
                    VectorChunkRecord.chunk_index >= from_index,
                )
            )
            await session.commit()
            return result.rowcount or 0

    async def get_metadata(self) -> CorpusMetadata | None:
        async with self.session_factory() as session:
            record = await session.get(CorpusMetadataRecord, CORPUS_METADATA_ID)
            if record is None:
                return None
            return CorpusMetadata(
                version=record.version,
                embedding_model=record.embedding_model,
                dimensions=record.dimensions,
                total_documents=record.total_documents,
                total_chunks=record.total_chunks,
                updated_at=record.updated_at.timestamp(),
            )

    async def refresh_metadata(self) -> CorpusMetadata:
        now = time.time()
        async with self.session_factory() as session:
            counts = await session.execute(
                select(
                    func.count(VectorChunkRecord.chunk_id),
                    func.count(func.distinct(VectorChunkRecord.document_id)),
                )
            )
            total_chunks, total_documents = counts.one()

            stmt = pg_insert(CorpusMetadataRecord.__table__).values(
                id=CORPUS_METADATA_ID,
                version=1,
                embedding_model=self.embedding_model,
                dimensions=self.dimension,
                total_documents=total_documents,
                total_chunks=total_chunks,
                updated_at=datetime.fromtimestamp(now, tz=timezone.utc),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    "embedding_model": stmt.excluded.embedding_model,
                    "dimensions": stmt.excluded.dimensions,
                    "total_documents": stmt.excluded.total_documents,
                    "total_chunks": stmt.excluded.total_chunks,
                    "updated_at": stmt.excluded.updated_at,
                },
            ).returning(CorpusMetadataRecord.__table__.c.version)
            result = await session.execute(stmt)
            version = result.scalar_one()
            await session.commit()

        logger.info(
            "Corpus metadata refreshed: %d documents, %d chunks",
            total_documents,
            total_chunks,
        )
        return CorpusMetadata(
            version=version,
            embedding_model=self.embedding_model,
            dimensions=self.dimension,
            total_documents=total_documents,
            total_chunks=total_chunks,
            updated_at=now,
        )

    async def count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(VectorChunkRecord.chunk_id))
            )
            return int(result.scalar_one())
