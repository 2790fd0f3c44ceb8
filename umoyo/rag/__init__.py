"""
Umoyo RAG Module

Corpus ingestion and retrieval components: PDF extraction and chunking,
embedding generation, the vector store, the managed retrieval client and
the query router.
"""

from umoyo.rag.chunker import (
    FixedWindowChunker,
    PDFParseError,
    PDFTextExtractor,
    make_chunk_id,
)
from umoyo.rag.embedding import (
    EmbeddingBackend,
    EmbeddingGenerator,
    build_embedding_backend,
)
from umoyo.rag.ingestion import IngestionPipeline, JobSummary
from umoyo.rag.managed import CorpusStatus, ManagedAnswer, ManagedRetrievalClient
from umoyo.rag.models import Chunk, CorpusMetadata, Document, VectorChunk
from umoyo.rag.router import QueryAnalysis, QueryRouter, Strategy, UserRole
from umoyo.rag.vector_store import (
    InMemoryVectorStore,
    PgVectorStore,
    SearchResult,
    VectorStore,
    cosine_similarity,
)

__all__ = [
    # Chunker
    "FixedWindowChunker",
    "PDFTextExtractor",
    "PDFParseError",
    "make_chunk_id",
    # Embedding
    "EmbeddingBackend",
    "EmbeddingGenerator",
    "build_embedding_backend",
    # Ingestion
    "IngestionPipeline",
    "JobSummary",
    # Managed retrieval
    "ManagedRetrievalClient",
    "ManagedAnswer",
    "CorpusStatus",
    # Models
    "Document",
    "Chunk",
    "VectorChunk",
    "CorpusMetadata",
    # Routing
    "QueryRouter",
    "QueryAnalysis",
    "Strategy",
    "UserRole",
    # Vector store
    "VectorStore",
    "InMemoryVectorStore",
    "PgVectorStore",
    "SearchResult",
    "cosine_similarity",
]
