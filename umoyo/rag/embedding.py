"""
Umoyo Embedding Generation Module

Turns text chunks into fixed-dimension vectors through an external model.

- Fail-fast validation of oversized items (estimated tokens per item)
- Greedy sub-batching bounded by item count AND cumulative token budget
- Fixed delay between consecutive sub-batch calls (rate limiting)
- Per-sub-batch retries with capped exponential backoff and timeouts
- Backends: Vertex AI text-embedding REST API, local sentence-transformers
"""

import asyncio
import logging
import math
import os
from abc import ABC, abstractmethod
from functools import lru_cache

import httpx

from umoyo.exceptions import TransientExternalError, ValidationError
from umoyo.rag.gcp_auth import GoogleTokenProvider, TokenProvider

logger = logging.getLogger(__name__)

# Model configuration
DEFAULT_EMBEDDING_BACKEND = os.environ.get("EMBEDDING_BACKEND", "vertex")
DEFAULT_EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-005")
DEFAULT_ST_MODEL = os.environ.get(
    "EMBEDDING_MODEL_HF", "nomic-ai/nomic-embed-text-v1.5"
)
DEFAULT_EMBEDDING_DIMENSION = int(os.environ.get("EMBEDDING_DIMENSION", "768"))

DEFAULT_PROJECT_ID = os.environ.get("GCP_PROJECT_ID", "umoyo-health-hub")
DEFAULT_LOCATION = os.environ.get("GCP_LOCATION", "us-central1")

# Batching limits (Vertex AI text-embedding-005)
MAX_BATCH_ITEMS = 250
MAX_BATCH_TOKENS = 20000
MAX_ITEM_TOKENS = 2048
CHARS_PER_TOKEN = 4

# Rate limiting / retry configuration
BATCH_DELAY_SECONDS = float(os.environ.get("EMBEDDING_BATCH_DELAY", "0.1"))
MAX_RETRIES = int(os.environ.get("EMBEDDING_MAX_RETRIES", "3"))
RETRY_BACKOFF_BASE = 1.0  # seconds
RETRY_BACKOFF_MAX = 8.0  # seconds
DEFAULT_TIMEOUT = float(os.environ.get("EMBEDDING_TIMEOUT_SECONDS", "30"))

# Task types understood by Vertex; mapped to prefixes for nomic models
QUERY_TASK = "RETRIEVAL_QUERY"
DOCUMENT_TASK = "RETRIEVAL_DOCUMENT"
QUERY_PREFIX = "search_query: "
DOCUMENT_PREFIX = "search_document: "


# ============================================
# Batching helpers
# ============================================


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def plan_batches(
    token_counts: list[int],
    max_items: int = MAX_BATCH_ITEMS,
    max_tokens: int = MAX_BATCH_TOKENS,
) -> list[range]:
    """Greedily pack consecutive items into sub-batches.

    A sub-batch is flushed as soon as adding the next item would exceed
    either the item count or the cumulative token budget. Concatenating the
    returned ranges always yields ``range(len(token_counts))``.
    """
    batches: list[range] = []
    start = 0
    tokens = 0

    for i, count in enumerate(token_counts):
        size = i - start
        if size > 0 and (size + 1 > max_items or tokens + count > max_tokens):
            batches.append(range(start, i))
            start = i
            tokens = 0
        tokens += count

    if start < len(token_counts):
        batches.append(range(start, len(token_counts)))
    return batches


def backoff_delay(
    attempt: int,
    base: float = RETRY_BACKOFF_BASE,
    cap: float = RETRY_BACKOFF_MAX,
) -> float:
    """Delay before retry number ``attempt + 1``: doubles each time, capped."""
    return min(base * (2**attempt), cap)


# ============================================
# Backends
# ============================================


class EmbeddingBackend(ABC):
    """A single embedding RPC: texts in, one vector per text out."""

    model_name: str

    @abstractmethod
    async def embed(self, texts: list[str], task_type: str) -> list[list[float]]: ...


class VertexEmbeddingBackend(EmbeddingBackend):
    """Vertex AI text-embedding model via the REST ``:predict`` endpoint."""

    def __init__(
        self,
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        project_id: str = DEFAULT_PROJECT_ID,
        location: str = DEFAULT_LOCATION,
        timeout: float = DEFAULT_TIMEOUT,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self.model_name = model_name
        self.project_id = project_id
        self.location = location
        self.timeout = timeout
        self.token_provider = token_provider or GoogleTokenProvider()

    @property
    def endpoint(self) -> str:
        return (
            f"https://{self.location}-aiplatform.googleapis.com/v1/"
            f"projects/{self.project_id}/locations/{self.location}/"
            f"publishers/google/models/{self.model_name}:predict"
        )

    async def embed(self, texts: list[str], task_type: str) -> list[list[float]]:
        token = await self.token_provider()
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
            response = await client.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "instances": [
                        {"content": text, "task_type": task_type} for text in texts
                    ]
                },
            )
            response.raise_for_status()
            data = response.json()

        predictions = data.get("predictions") or []
        if not predictions:
            raise TransientExternalError(
                "No predictions returned from embedding API", service="embedding"
            )
        vectors = []
        for prediction in predictions:
            values = (prediction.get("embeddings") or {}).get("values")
            if not values:
                raise TransientExternalError(
                    "No embedding values found in response", service="embedding"
                )
            vectors.append([float(v) for v in values])
        return vectors


@lru_cache(maxsize=1)
def _load_st_model(model_name: str):
    """Load sentence-transformers model once and cache it."""
    from sentence_transformers import SentenceTransformer

    logger.info("Loading sentence-transformers model: %s", model_name)
    model = SentenceTransformer(model_name, trust_remote_code=True)
    logger.info(
        "Model loaded, dimension: %d", model.get_sentence_embedding_dimension()
    )
    return model


def _encode_sync(model, texts: list[str]) -> list[list[float]]:
    """Run model.encode synchronously; called via asyncio.to_thread."""
    vectors = model.encode(texts, batch_size=len(texts), show_progress_bar=False)
    return [v.tolist() for v in vectors]


class SentenceTransformerBackend(EmbeddingBackend):
    """Local sentence-transformers model (nomic-style task prefixes)."""

    def __init__(self, model_name: str = DEFAULT_ST_MODEL) -> None:
        self.model_name = model_name

    async def embed(self, texts: list[str], task_type: str) -> list[list[float]]:
        prefix = QUERY_PREFIX if task_type == QUERY_TASK else DOCUMENT_PREFIX
        model = _load_st_model(self.model_name)
        return await asyncio.to_thread(
            _encode_sync, model, [prefix + t for t in texts]
        )


def build_embedding_backend(kind: str = DEFAULT_EMBEDDING_BACKEND) -> EmbeddingBackend:
    """Create the backend named by EMBEDDING_BACKEND ("vertex" or "local")."""
    if kind == "vertex":
        return VertexEmbeddingBackend()
    if kind == "local":
        return SentenceTransformerBackend()
    raise ValueError(f"Unknown embedding backend: {kind}")


# ============================================
# Embedding Generator
# ============================================


class EmbeddingGenerator:
    """Batched, rate-limited, retrying front-end to an embedding backend.

    A successful ``embed_documents`` call returns exactly one vector per
    input text, in input order. When a sub-batch exhausts its retries the
    whole call fails with TransientExternalError and no further sub-batches
    are sent.
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        dimension: int = DEFAULT_EMBEDDING_DIMENSION,
        max_batch_items: int = MAX_BATCH_ITEMS,
        max_batch_tokens: int = MAX_BATCH_TOKENS,
        max_item_tokens: int = MAX_ITEM_TOKENS,
        batch_delay: float = BATCH_DELAY_SECONDS,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = RETRY_BACKOFF_BASE,
        backoff_max: float = RETRY_BACKOFF_MAX,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.backend = backend
        self.dimension = dimension
        self.max_batch_items = max_batch_items
        self.max_batch_tokens = max_batch_tokens
        self.max_item_tokens = max_item_tokens
        self.batch_delay = batch_delay
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.timeout = timeout

    @property
    def model_name(self) -> str:
        return self.backend.model_name

    def validate(self, texts: list[str]) -> list[int]:
        """Return per-item token estimates, rejecting oversized items.

        Raises:
            ValidationError: Naming every index over ``max_item_tokens``.
        """
        token_counts = [estimate_tokens(t) for t in texts]
        oversized = [i for i, n in enumerate(token_counts) if n > self.max_item_tokens]
        if oversized:
            raise ValidationError(
                f"Chunks at indices {oversized} exceed the per-item limit "
                f"of {self.max_item_tokens} tokens"
            )
        return token_counts

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed document chunks in order-preserving sub-batches."""
        if not texts:
            return []

        token_counts = self.validate(texts)
        batches = plan_batches(
            token_counts, self.max_batch_items, self.max_batch_tokens
        )

        embeddings: list[list[float]] = []
        for n, batch in enumerate(batches):
            if n > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            logger.debug(
                "Embedding sub-batch %d/%d (%d items, offset %d)",
                n + 1,
                len(batches),
                len(batch),
                batch.start,
            )
            batch_texts = [texts[i] for i in batch]
            embeddings.extend(await self._embed_with_retry(batch_texts, DOCUMENT_TASK))

        return embeddings

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        self.validate([text])
        vectors = await self._embed_with_retry([text], QUERY_TASK)
        return vectors[0]

    async def _embed_with_retry(
        self, texts: list[str], task_type: str
    ) -> list[list[float]]:
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                vectors = await asyncio.wait_for(
                    self.backend.embed(texts, task_type), timeout=self.timeout
                )
                self._check_vectors(vectors, len(texts))
                return vectors
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(
                    "Embedding timeout after %.1fs (attempt %d/%d)",
                    self.timeout,
                    attempt + 1,
                    self.max_retries,
                )
            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "Embedding HTTP error %d (attempt %d/%d): %s",
                    e.response.status_code,
                    attempt + 1,
                    self.max_retries,
                    e,
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    "Embedding call failed (attempt %d/%d): %s",
                    attempt + 1,
                    self.max_retries,
                    e,
                )

            if attempt < self.max_retries - 1:
                wait = backoff_delay(attempt, self.backoff_base, self.backoff_max)
                logger.info("Retrying embedding in %.1fs...", wait)
                await asyncio.sleep(wait)

        logger.error("Embedding failed after %d attempts", self.max_retries)
        raise TransientExternalError(
            f"Embedding failed after {self.max_retries} attempts: {last_error}",
            service="embedding",
            attempts=self.max_retries,
        ) from last_error

    def _check_vectors(self, vectors: list[list[float]], expected: int) -> None:
        if len(vectors) != expected:
            raise TransientExternalError(
                f"Embedding backend returned {len(vectors)} vectors for "
                f"{expected} inputs",
                service="embedding",
            )
        for vector in vectors:
            if len(vector) != self.dimension:
                raise TransientExternalError(
                    f"Embedding backend returned dimension {len(vector)}, "
                    f"expected {self.dimension}",
                    service="embedding",
                )
