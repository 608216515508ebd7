"""
Lensmatch — Embedding provider.

The rest of the system only knows ``Embedder.embed(text) -> list[float]``.
``GeminiEmbedder`` implements it on top of the Gemini ``embed_content``
endpoint.  Rate-limit and transient server errors are retried briefly in
place; anything that survives those retries surfaces as ``EmbeddingError``
and is retried through the job queue instead.
"""

from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from numbers import Real
from typing import Any

import google.generativeai as genai
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from lensmatch.config import get_settings
from lensmatch.domain import Vector
from lensmatch.exceptions import EmbeddingError

logger = structlog.get_logger("lensmatch.embedding_service")


def _is_retryable_api_error(exc: BaseException) -> bool:
    """Return True for rate-limit (429) and transient 5xx provider errors.

    The SDK wraps these in several exception types, so both the type name
    and the message are inspected.
    """
    if isinstance(exc, EmbeddingError):
        return False
    exc_str = str(exc).lower()
    exc_type = type(exc).__name__.lower()

    if "429" in exc_str or "resource_exhausted" in exc_str:
        return True
    if "500" in exc_str or "503" in exc_str or "internal" in exc_str:
        return True
    if "resourceexhausted" in exc_type or "serviceunavailable" in exc_type:
        return True
    return False


def validate_vector(raw: Any, expected_dimension: int | None = None) -> Vector:
    """Coerce provider output into a list of finite floats.

    Raises ``EmbeddingError`` for empty, non-numeric, non-finite or
    wrongly-sized output.
    """
    if not isinstance(raw, (list, tuple)) or not raw:
        raise EmbeddingError("Embedding provider returned an empty vector")
    vector: Vector = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, Real):
            raise EmbeddingError(
                f"Embedding provider returned a non-numeric component: {value!r}"
            )
        as_float = float(value)
        if not math.isfinite(as_float):
            raise EmbeddingError("Embedding provider returned a non-finite component")
        vector.append(as_float)
    if expected_dimension is not None and len(vector) != expected_dimension:
        raise EmbeddingError(
            f"Embedding has {len(vector)} dimensions, expected {expected_dimension}"
        )
    return vector


class Embedder(ABC):
    """Black-box text embedding provider."""

    @abstractmethod
    async def embed(self, text: str) -> Vector:
        ...


class GeminiEmbedder(Embedder):
    """Embeds text with the Gemini embedding model configured in settings."""

    def __init__(
        self,
        model: str | None = None,
        expected_dimension: int | None = None,
        max_call_retries: int | None = None,
    ) -> None:
        settings = get_settings()
        if not settings.GEMINI_API_KEY:
            logger.warning("gemini_api_key_missing")
        genai.configure(api_key=settings.GEMINI_API_KEY)

        self._model = model or settings.EMBEDDING_MODEL
        self._expected_dimension = expected_dimension or settings.EMBEDDING_DIMENSION
        self._max_call_retries = max_call_retries or settings.EMBEDDING_CALL_RETRIES

        logger.info(
            "gemini_embedder_initialised",
            model=self._model,
            dimension=self._expected_dimension,
        )

    async def embed(self, text: str) -> Vector:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable_api_error),
                stop=stop_after_attempt(self._max_call_retries),
                wait=wait_exponential(multiplier=1, min=1, max=20),
                reraise=True,
            ):
                with attempt:
                    logger.debug(
                        "embed_call_attempt",
                        model=self._model,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    response = await asyncio.to_thread(
                        genai.embed_content,
                        model=self._model,
                        content=text,
                        task_type="semantic_similarity",
                    )
        except RetryError as retry_err:
            raise EmbeddingError(str(retry_err.last_attempt.exception())) from retry_err
        except EmbeddingError:
            raise
        except Exception as exc:
            logger.error("embed_call_failed", model=self._model, error=str(exc))
            raise EmbeddingError(f"Embedding provider error: {exc}") from exc

        raw = response.get("embedding") if isinstance(response, dict) else None
        return validate_vector(raw, self._expected_dimension)


_embedder: Embedder | None = None


def get_embedder() -> Embedder:
    """Return the process-wide embedder, creating it on first use."""
    global _embedder
    if _embedder is None:
        _embedder = GeminiEmbedder()
    return _embedder
