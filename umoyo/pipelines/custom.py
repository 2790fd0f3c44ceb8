"""
Custom RAG Pipeline for Umoyo

Answers a question from the custom vector corpus:
embed query -> exact similarity search -> grounding prompt -> generate.

Failures propagate to the caller (the hybrid orchestrator decides what to
fall back to); an empty corpus is reported as CorpusUnavailableError.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from umoyo.exceptions import CorpusUnavailableError
from umoyo.llm.prompt_templates import PromptTemplate
from umoyo.rag.embedding import EmbeddingGenerator
from umoyo.rag.router import UserRole
from umoyo.rag.vector_store import DEFAULT_TOP_K, SearchResult, VectorStore

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200

# Lowest confidence reported for an answer generated from retrieved chunks
MIN_ANSWER_CONFIDENCE = 0.05


@dataclass
class Citation:
    chunk_id: str
    source: str
    snippet: str
    similarity: float
    page_number: int | None = None


@dataclass
class CustomAnswer:
    """Answer text, the chunks it was grounded on, and a confidence score."""

    answer: str
    citations: list[Citation]
    confidence: float
    steps: list[dict[str, Any]] = field(default_factory=list)


def make_snippet(content: str, limit: int = SNIPPET_CHARS) -> str:
    return content[:limit] + "..."


def mean_similarity(results: list[SearchResult]) -> float:
    """Average similarity of the retrieved chunks.

    Clamped to [MIN_ANSWER_CONFIDENCE, 1] when anything was retrieved, 0.0
    otherwise.
    """
    if not results:
        return 0.0
    avg = sum(r.similarity for r in results) / len(results)
    return min(max(avg, MIN_ANSWER_CONFIDENCE), 1.0)


class CustomRAGPipeline:
    """Retrieve-then-generate over the custom corpus."""

    def __init__(
        self,
        embedder: EmbeddingGenerator,
        store: VectorStore,
        generator,
        prompt_template: PromptTemplate | None = None,
        top_k: int = DEFAULT_TOP_K,
        category: str | None = None,
    ):
        self.embedder = embedder
        self.store = store
        self.generator = generator
        self.prompt_template = prompt_template or PromptTemplate()
        self.top_k = top_k
        self.category = category

    async def run(self, question: str, role: "str | UserRole") -> CustomAnswer:
        """Execute the custom pipeline.

        Raises:
            CorpusUnavailableError: The search returned nothing.
            TransientExternalError: Embedding or generation failed.
        """
        steps: list[dict[str, Any]] = []

        step_start = time.time()
        vector = await self.embedder.embed_query(question)
        steps.append(_step("embed_query", step_start))

        step_start = time.time()
        results = await self.store.search(vector, self.top_k, self.category)
        steps.append(_step("vector_search", step_start, f"{len(results)} chunks"))
        if not results:
            raise CorpusUnavailableError("Custom vector store returned no results")

        step_start = time.time()
        prompt = self.prompt_template.build(question, results)
        answer = await self.generator.generate(
            prompt, system=self.prompt_template.system_prompt(role)
        )
        steps.append(_step("generate", step_start))

        citations = [
            Citation(
                chunk_id=r.chunk.chunk_id,
                source=r.chunk.source,
                snippet=make_snippet(r.chunk.content),
                similarity=r.similarity,
                page_number=r.chunk.page_number,
            )
            for r in results
        ]
        confidence = mean_similarity(results)

        logger.info(
            "Custom RAG answered with %d citations (confidence %.2f)",
            len(citations),
            confidence,
        )
        return CustomAnswer(
            answer=answer,
            citations=citations,
            confidence=confidence,
            steps=steps,
        )


def _step(name: str, started: float, detail: str = "") -> dict[str, Any]:
    return {
        "name": name,
        "duration_ms": round((time.time() - started) * 1000, 1),
        "detail": detail,
    }
