"""
Umoyo Test Configuration

Pytest fixtures and configuration for the test suite.
"""

import hashlib
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from umoyo.llm.prompt_templates import PromptTemplate
from umoyo.observability.metrics import QueryMetrics
from umoyo.pipelines.custom import CustomRAGPipeline
from umoyo.pipelines.hybrid import HybridOrchestrator
from umoyo.rag.chunker import FixedWindowChunker, make_chunk_id
from umoyo.rag.embedding import EmbeddingBackend, EmbeddingGenerator
from umoyo.rag.ingestion import IngestionPipeline
from umoyo.rag.managed import CorpusStatus, ManagedAnswer, ManagedSource
from umoyo.rag.models import Document, DocumentMetadata, VectorChunk
from umoyo.rag.router import QueryRouter
from umoyo.rag.vector_store import InMemoryVectorStore
from umoyo.services import Services

TEST_DIMENSION = 8


# ============================================
# Fakes
# ============================================


class HashEmbeddingBackend(EmbeddingBackend):
    """Deterministic backend: each text maps to a fixed pseudo-random vector."""

    model_name = "fake-embedding"

    def __init__(self, dimension: int = TEST_DIMENSION) -> None:
        self.dimension = dimension
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str], task_type: str) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector_for(t) for t in texts]

    def vector_for(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(b / 255.0) - 0.5 for b in digest[: self.dimension]]


def make_vector_chunk(
    document_id: str = "doc-1",
    chunk_index: int = 0,
    embedding: list[float] | None = None,
    content: str = "Malaria is transmitted by Anopheles mosquitoes.",
    category: str = "disease-reference",
    source: str = "WHO Malaria Guidelines",
    page_number: int | None = None,
) -> VectorChunk:
    embedding = embedding or [1.0] + [0.0] * (TEST_DIMENSION - 1)
    return VectorChunk(
        chunk_id=make_chunk_id(document_id, chunk_index),
        document_id=document_id,
        source=source,
        category=category,
        content=content,
        chunk_index=chunk_index,
        start_char=chunk_index * 100,
        end_char=chunk_index * 100 + len(content),
        page_number=page_number,
        embedding=embedding,
        embedding_dim=len(embedding),
    )


# ============================================
# Domain Fixtures
# ============================================


@pytest.fixture
def sample_document() -> Document:
    """Sample WHO guideline document."""
    return Document(
        id="who-malaria-2023",
        title="WHO Guidelines for Malaria",
        source="WHO",
        category="clinical-guideline",
        url="https://www.who.int/publications/malaria",
        metadata=DocumentMetadata(
            audience="both",
            language="en",
            region="sub-saharan-africa",
            topics=["malaria"],
            last_updated="2023-10-16",
        ),
    )


@pytest.fixture
def sample_text() -> str:
    """Roughly 2,000 characters of guideline-like text."""
    sentence = (
        "Artemisinin-based combination therapy is recommended for "
        "uncomplicated Plasmodium falciparum malaria. "
    )
    return (sentence * 40)[:2000]


@pytest.fixture
def embedding_backend() -> HashEmbeddingBackend:
    return HashEmbeddingBackend()


@pytest.fixture
def embedder(embedding_backend) -> EmbeddingGenerator:
    """Generator over the fake backend with delays disabled."""
    return EmbeddingGenerator(
        embedding_backend,
        dimension=TEST_DIMENSION,
        batch_delay=0,
        backoff_base=0,
        timeout=5,
    )


@pytest.fixture
def vector_chunk_factory():
    """Build VectorChunks with sensible defaults."""
    return make_vector_chunk


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore(dimension=TEST_DIMENSION, embedding_model="fake-embedding")


@pytest.fixture
def ingestion(embedder, store) -> IngestionPipeline:
    return IngestionPipeline(
        chunker=FixedWindowChunker(chunk_size=512, chunk_overlap=50),
        embedder=embedder,
        store=store,
        document_delay=0,
    )


@pytest.fixture
def generator() -> AsyncMock:
    """Answer generator returning a fixed cited answer."""
    mock = AsyncMock()
    mock.generate.return_value = "Use artemisinin-based combination therapy [1]."
    mock.health_check.return_value = True
    return mock


@pytest.fixture
def managed_client() -> MagicMock:
    """Managed retrieval client answering every query successfully."""
    client = MagicMock()
    client.query = AsyncMock(
        return_value=ManagedAnswer(
            answer="Malaria is a parasitic disease spread by mosquitoes.",
            sources=[
                ManagedSource(
                    title="WHO Malaria Fact Sheet",
                    snippet="Malaria is a life-threatening disease...",
                    uri="gs://umoyo-health-pdfs/who/malaria.pdf",
                )
            ],
            confidence=0.9,
        )
    )
    client.check_status = AsyncMock(
        return_value=CorpusStatus(exists=True, ready=True, file_count=12)
    )
    return client


@pytest.fixture
def custom_pipeline(embedder, store, generator) -> CustomRAGPipeline:
    return CustomRAGPipeline(
        embedder=embedder,
        store=store,
        generator=generator,
        prompt_template=PromptTemplate(),
        top_k=5,
    )


@pytest.fixture
def orchestrator(managed_client, custom_pipeline) -> HybridOrchestrator:
    return HybridOrchestrator(
        router=QueryRouter(),
        managed_client=managed_client,
        custom_pipeline=custom_pipeline,
        timeout=5,
    )


# ============================================
# Client Fixtures
# ============================================


@pytest.fixture
def services(
    embedder, store, generator, managed_client, custom_pipeline, orchestrator, ingestion
) -> Services:
    return Services(
        router=orchestrator.router,
        embedder=embedder,
        store=store,
        generator=generator,
        managed_client=managed_client,
        custom_pipeline=custom_pipeline,
        orchestrator=orchestrator,
        ingestion=ingestion,
        metrics=QueryMetrics(),
    )


@pytest.fixture
def client(services) -> Generator[TestClient, None, None]:
    """Create a synchronous test client over in-memory services."""
    from umoyo.main import create_app

    with TestClient(create_app(services)) as c:
        yield c


# ============================================
# Marker Configuration
# ============================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "requires_db: test requires database connection")
