"""
Hybrid Orchestrator for Umoyo

Top-level query entry point. Every query goes through

    ROUTE -> EXECUTE(strategy) -> SUCCESS
                               -> FALLBACK -> EXECUTE(alternate) -> SUCCESS
                                                                 -> canned refusal

- managed: Vertex AI RAG Engine only
- custom: embed + vector search + answer generation
- hybrid: both concurrently, results merged (managed sources first)

``hybrid_query`` never raises: every outcome is a RetrievalResult.
"""

import asyncio
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from umoyo.exceptions import HybridExhaustionError
from umoyo.pipelines.custom import CustomAnswer, CustomRAGPipeline
from umoyo.rag.managed import ManagedAnswer, ManagedRetrievalClient
from umoyo.rag.router import QueryRouter, Strategy, UserRole

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = float(os.environ.get("HYBRID_TIMEOUT_SECONDS", "60"))

MIN_QUERY_LENGTH = 3

# Confidence multipliers
SINGLE_BRANCH_FACTOR = 0.8
FALLBACK_FACTORS = {
    Strategy.MANAGED: 0.7,
    Strategy.CUSTOM: 0.7,
    Strategy.HYBRID: 0.6,
}
# Strategy tried when the routed one fails
FALLBACK_STRATEGY = {
    Strategy.MANAGED: Strategy.CUSTOM,
    Strategy.CUSTOM: Strategy.MANAGED,
    Strategy.HYBRID: Strategy.CUSTOM,
}

SAFE_REFUSAL = (
    "I apologize, but I'm unable to process your query at the moment due to "
    "technical difficulties. Please try rephrasing your question or contact a "
    "healthcare professional for immediate assistance."
)
VALIDATION_MESSAGE = (
    f"Please enter a question of at least {MIN_QUERY_LENGTH} characters."
)


@dataclass
class Source:
    title: str
    snippet: str
    origin: str  # "managed" | "custom"
    confidence: float | None = None
    uri: str | None = None


@dataclass
class RetrievalResult:
    """Final answer returned to the caller."""

    answer: str
    sources: list[Source]
    strategy_used: str
    confidence: float
    processing_time_ms: float = 0.0
    fallback_used: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _BranchResult:
    answer: str
    sources: list[Source] = field(default_factory=list)
    confidence: float = 0.0


def _from_managed(result: ManagedAnswer) -> _BranchResult:
    return _BranchResult(
        answer=result.answer,
        sources=[
            Source(title=s.title, snippet=s.snippet, origin="managed", uri=s.uri)
            for s in result.sources
        ],
        confidence=result.confidence,
    )


def _from_custom(result: CustomAnswer) -> _BranchResult:
    return _BranchResult(
        answer=result.answer,
        sources=[
            Source(
                title=c.source,
                snippet=c.snippet,
                origin="custom",
                confidence=c.similarity,
            )
            for c in result.citations
        ],
        confidence=result.confidence,
    )


class HybridOrchestrator:
    """Routes queries to managed and/or custom retrieval with fallback."""

    def __init__(
        self,
        router: QueryRouter,
        managed_client: ManagedRetrievalClient,
        custom_pipeline: CustomRAGPipeline,
        managed_top_k: int = 5,
        hybrid_managed_top_k: int = 3,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.router = router
        self.managed_client = managed_client
        self.custom_pipeline = custom_pipeline
        self.managed_top_k = managed_top_k
        self.hybrid_managed_top_k = hybrid_managed_top_k
        self.timeout = timeout

    async def hybrid_query(
        self, message: str, role: "str | UserRole" = UserRole.PATIENT
    ) -> RetrievalResult:
        """Answer a question. Never raises."""
        start_time = time.time()
        question = (message or "").strip()

        if len(question) < MIN_QUERY_LENGTH:
            logger.info("Rejected query shorter than %d characters", MIN_QUERY_LENGTH)
            return RetrievalResult(
                answer=VALIDATION_MESSAGE,
                sources=[],
                strategy_used="none",
                confidence=0.0,
                processing_time_ms=_elapsed_ms(start_time),
            )

        try:
            user_role = UserRole.parse(role)
        except ValueError:
            logger.warning("Unknown role %r, treating as patient", role)
            user_role = UserRole.PATIENT

        analysis = self.router.classify(question, user_role)
        logger.info(
            "Strategy: %s (confidence: %.2f) - %s",
            analysis.strategy.value,
            analysis.confidence,
            analysis.reasoning,
        )

        try:
            branch = await self._execute(analysis.strategy, question, user_role)
            return RetrievalResult(
                answer=branch.answer,
                sources=branch.sources,
                strategy_used=analysis.strategy.value,
                confidence=branch.confidence,
                processing_time_ms=_elapsed_ms(start_time),
            )
        except Exception as e:
            logger.error("Primary strategy %s failed: %s", analysis.strategy.value, e)

        return await self._fallback(analysis.strategy, question, user_role, start_time)

    async def _fallback(
        self,
        failed: Strategy,
        question: str,
        role: UserRole,
        start_time: float,
    ) -> RetrievalResult:
        alternate = FALLBACK_STRATEGY[failed]
        logger.info("Attempting fallback from %s to %s", failed.value, alternate.value)

        try:
            branch = await self._execute(alternate, question, role)
        except Exception as e:
            logger.error("Fallback %s also failed: %s", alternate.value, e)
            return RetrievalResult(
                answer=SAFE_REFUSAL,
                sources=[],
                strategy_used=failed.value,
                confidence=0.0,
                processing_time_ms=_elapsed_ms(start_time),
                fallback_used=True,
            )

        return RetrievalResult(
            answer=branch.answer,
            sources=branch.sources,
            strategy_used=alternate.value,
            confidence=branch.confidence * FALLBACK_FACTORS[failed],
            processing_time_ms=_elapsed_ms(start_time),
            fallback_used=True,
        )

    async def _execute(
        self, strategy: Strategy, question: str, role: UserRole
    ) -> _BranchResult:
        if strategy is Strategy.MANAGED:
            return await self._query_managed(question, self.managed_top_k)
        if strategy is Strategy.CUSTOM:
            return await self._query_custom(question, role)
        return await self._query_hybrid(question, role)

    async def _query_managed(self, question: str, top_k: int) -> _BranchResult:
        result = await asyncio.wait_for(
            self.managed_client.query(question, top_k), timeout=self.timeout
        )
        return _from_managed(result)

    async def _query_custom(self, question: str, role: UserRole) -> _BranchResult:
        result = await asyncio.wait_for(
            self.custom_pipeline.run(question, role), timeout=self.timeout
        )
        return _from_custom(result)

    async def _query_hybrid(self, question: str, role: UserRole) -> _BranchResult:
        managed, custom = await asyncio.gather(
            self._query_managed(question, self.hybrid_managed_top_k),
            self._query_custom(question, role),
            return_exceptions=True,
        )

        if isinstance(managed, BaseException):
            logger.warning("Hybrid managed branch failed: %s", managed)
            managed = None
        if isinstance(custom, BaseException):
            logger.warning("Hybrid custom branch failed: %s", custom)
            custom = None

        if managed is None and custom is None:
            raise HybridExhaustionError("Both retrieval branches failed")

        sources = []
        if managed is not None:
            sources.extend(managed.sources)
        if custom is not None:
            sources.extend(custom.sources)

        if managed is not None and custom is not None:
            best = managed if managed.confidence >= custom.confidence else custom
            confidence = (managed.confidence + custom.confidence) / 2
        else:
            best = managed or custom
            confidence = best.confidence * SINGLE_BRANCH_FACTOR

        return _BranchResult(answer=best.answer, sources=sources, confidence=confidence)

    async def health_check(self) -> dict[str, Any]:
        """Managed corpus status and custom vector store readiness."""
        status = await self.managed_client.check_status()

        store = self.custom_pipeline.store
        try:
            chunk_count = await store.count()
            custom = {"available": True, "ready": chunk_count > 0, "chunks": chunk_count}
        except Exception as e:
            logger.warning("Vector store health check failed: %s", e)
            custom = {"available": False, "ready": False, "chunks": 0}

        return {
            "managed": {
                "available": status.exists,
                "corpus_ready": status.ready,
                "file_count": status.file_count,
            },
            "custom": custom,
        }


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 1)
