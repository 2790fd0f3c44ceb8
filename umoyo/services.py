"""
Umoyo Service Wiring

Builds every long-lived service once per process. The FastAPI lifespan
stores the result on ``app.state.services``; the Celery worker builds its
own instance on first use.
"""

import logging
import os
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from umoyo.db.postgres import (
    close_db,
    create_db_engine,
    create_session_factory,
    init_db,
)
from umoyo.llm.ollama_client import OllamaClient
from umoyo.llm.prompt_templates import PromptTemplate
from umoyo.observability.metrics import QueryMetrics
from umoyo.pipelines.custom import CustomRAGPipeline
from umoyo.pipelines.hybrid import HybridOrchestrator
from umoyo.rag.chunker import FixedWindowChunker, PDFTextExtractor
from umoyo.rag.embedding import EmbeddingGenerator, build_embedding_backend
from umoyo.rag.ingestion import IngestionPipeline
from umoyo.rag.managed import ManagedRetrievalClient
from umoyo.rag.router import QueryRouter
from umoyo.rag.vector_store import InMemoryVectorStore, PgVectorStore, VectorStore

logger = logging.getLogger(__name__)

DEFAULT_VECTOR_STORE_BACKEND = os.environ.get("VECTOR_STORE_BACKEND", "postgres")


@dataclass
class Services:
    router: QueryRouter
    embedder: EmbeddingGenerator
    store: VectorStore
    generator: OllamaClient
    managed_client: ManagedRetrievalClient
    custom_pipeline: CustomRAGPipeline
    orchestrator: HybridOrchestrator
    ingestion: IngestionPipeline
    metrics: QueryMetrics
    engine: AsyncEngine | None = None

    async def close(self) -> None:
        if self.engine is not None:
            await close_db(self.engine)


async def build_services(
    vector_store_backend: str = DEFAULT_VECTOR_STORE_BACKEND,
    database_url: str | None = None,
) -> Services:
    """Construct and connect all services.

    Args:
        vector_store_backend: "postgres" (default) or "memory".
        database_url: Overrides DATABASE_URL for the postgres backend.
    """
    embedder = EmbeddingGenerator(build_embedding_backend())

    engine = None
    if vector_store_backend == "postgres":
        engine = create_db_engine(database_url)
        await init_db(engine)
        store: VectorStore = PgVectorStore(
            create_session_factory(engine),
            dimension=embedder.dimension,
            embedding_model=embedder.model_name,
        )
        logger.info("Using PostgreSQL vector store")
    elif vector_store_backend == "memory":
        store = InMemoryVectorStore(
            dimension=embedder.dimension, embedding_model=embedder.model_name
        )
        logger.info("Using in-memory vector store")
    else:
        raise ValueError(f"Unknown vector store backend: {vector_store_backend}")

    generator = OllamaClient()
    managed_client = ManagedRetrievalClient()
    if not managed_client.corpus_id:
        logger.warning("VERTEX_RAG_CORPUS_ID not set; managed retrieval unavailable")

    router = QueryRouter()
    custom_pipeline = CustomRAGPipeline(
        embedder=embedder,
        store=store,
        generator=generator,
        prompt_template=PromptTemplate(),
    )
    orchestrator = HybridOrchestrator(
        router=router,
        managed_client=managed_client,
        custom_pipeline=custom_pipeline,
    )
    ingestion = IngestionPipeline(
        chunker=FixedWindowChunker(),
        embedder=embedder,
        store=store,
        extractor=PDFTextExtractor(),
    )

    return Services(
        router=router,
        embedder=embedder,
        store=store,
        generator=generator,
        managed_client=managed_client,
        custom_pipeline=custom_pipeline,
        orchestrator=orchestrator,
        ingestion=ingestion,
        metrics=QueryMetrics(),
        engine=engine,
    )
