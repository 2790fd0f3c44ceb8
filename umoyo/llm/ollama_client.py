"""
Ollama LLM Client for Umoyo

Async HTTP client for the Ollama API used as the answer generator:
- Retry logic with exponential backoff
- Configurable timeout
- Health check endpoint
- Empty completions treated as failures
"""

import asyncio
import logging
import os

import httpx

from umoyo.exceptions import TransientExternalError

logger = logging.getLogger(__name__)

# Defaults from environment / docker-compose
DEFAULT_BASE_URL = os.environ.get("OLLAMA_URL", "http://localhost:11434")
DEFAULT_MODEL = os.environ.get("OLLAMA_MODEL", "qwen2.5:1.5b")
DEFAULT_TIMEOUT = int(os.environ.get("OLLAMA_TIMEOUT_SECONDS", "120"))

# LLM generation parameters
DEFAULT_TEMPERATURE = float(os.environ.get("LLM_TEMPERATURE", "0.3"))
DEFAULT_MAX_TOKENS = int(os.environ.get("LLM_MAX_TOKENS", "1024"))
DEFAULT_TOP_P = float(os.environ.get("LLM_TOP_P", "0.9"))
DEFAULT_NUM_CTX = int(os.environ.get("LLM_NUM_CTX", "4096"))
DEFAULT_KEEP_ALIVE = os.environ.get("OLLAMA_KEEP_ALIVE", "60m")

# Retry configuration
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 2  # seconds


class OllamaClient:
    """Async client for Ollama LLM inference API."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: int = DEFAULT_TIMEOUT,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        top_p: float = DEFAULT_TOP_P,
        num_ctx: int = DEFAULT_NUM_CTX,
        keep_alive: str = DEFAULT_KEEP_ALIVE,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.top_p = top_p
        self.num_ctx = num_ctx
        self.keep_alive = keep_alive
        self.max_retries = max(1, max_retries)

    async def generate(self, prompt: str, system: str | None = None) -> str:
        """
        Send a prompt to Ollama and return the generated text.

        Retries up to ``max_retries`` times with exponential backoff.

        Raises:
            TransientExternalError: Every attempt failed or returned no text.
        """
        payload: dict = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "keep_alive": self.keep_alive,
            "options": self._build_options(),
        }
        if system:
            payload["system"] = system

        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout)
                ) as client:
                    response = await client.post(
                        f"{self.base_url}/api/generate", json=payload
                    )
                    response.raise_for_status()
                    text = (response.json().get("response") or "").strip()
                if text:
                    return text
                last_error = ValueError("empty completion")
                logger.warning(
                    "Ollama returned an empty completion (attempt %d/%d)",
                    attempt + 1,
                    self.max_retries,
                )

            except (httpx.ConnectTimeout, httpx.ReadTimeout) as e:
                last_error = e
                logger.warning(
                    "Ollama timeout (attempt %d/%d): %s",
                    attempt + 1,
                    self.max_retries,
                    e,
                )
            except httpx.ConnectError as e:
                last_error = e
                logger.warning(
                    "Ollama connection error (attempt %d/%d): %s",
                    attempt + 1,
                    self.max_retries,
                    e,
                )
            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "Ollama HTTP error %d (attempt %d/%d): %s",
                    e.response.status_code,
                    attempt + 1,
                    self.max_retries,
                    e,
                )
            except Exception as e:
                last_error = e
                logger.error(
                    "Unexpected Ollama error (attempt %d/%d): %s",
                    attempt + 1,
                    self.max_retries,
                    e,
                )

            # Exponential backoff before retry (skip on last attempt)
            if attempt < self.max_retries - 1:
                wait = RETRY_BACKOFF_BASE**attempt
                logger.info("Retrying in %ds...", wait)
                await asyncio.sleep(wait)

        logger.error("Ollama generation failed after %d attempts", self.max_retries)
        raise TransientExternalError(
            f"Answer generation failed: {last_error}",
            service="generation",
            attempts=self.max_retries,
        ) from last_error

    def _build_options(self) -> dict:
        """Build the Ollama options dict from instance configuration."""
        return {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "num_predict": self.max_tokens,
            "num_ctx": self.num_ctx,
        }

    async def health_check(self) -> bool:
        """
        Check if Ollama is reachable.

        Returns True if the Ollama API responds with 200, False otherwise.
        """
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(10)) as client:
                response = await client.get(self.base_url)
                return response.status_code == 200
        except Exception as e:
            logger.warning("Ollama health check failed: %s", e)
            return False
