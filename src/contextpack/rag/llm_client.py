"""LiteLLM client wrapper for completions and embeddings.

All LLM and embedding calls in contextpack route through this module.
LiteLLM's built-in retry is used (``num_retries``, exponential backoff).
Embedding failures degrade to a zero vector of the configured dimension in
``EmbeddingFunction.embed``; ``embed_strict`` surfaces them instead.
"""

from __future__ import annotations

import logging

import litellm

from contextpack.errors import EmbeddingUnavailable

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 2048,
    temperature: float = 0.0,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


def embed(
    model: str,
    text: str,
    num_retries: int = 3,
    timeout: float | None = None,
) -> list[float]:
    """Call litellm.embedding() with retry/backoff. Returns embedding vector."""
    kwargs: dict = {"model": model, "input": [text], "num_retries": num_retries}
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = litellm.embedding(**kwargs)
    return response.data[0]["embedding"]


def is_zero_vector(vector: list[float]) -> bool:
    return not any(vector)


class EmbeddingFunction:
    """Embed text with a fixed model and dimension.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector length; also the zero-vector length.
        timeout: Per-request timeout in seconds.
        num_retries: LiteLLM retries on transient errors.
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        dimensions: int = 1536,
        timeout: float = 30.0,
        num_retries: int = 2,
    ) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.num_retries = num_retries

    def zero_vector(self) -> list[float]:
        return [0.0] * self.dimensions

    def embed_strict(self, text: str) -> list[float]:
        """Embed *text* or raise EmbeddingUnavailable."""
        try:
            vector = embed(
                self.model, text, num_retries=self.num_retries, timeout=self.timeout
            )
        except Exception as exc:
            raise EmbeddingUnavailable(f"{self.model}: {exc}") from exc
        vector = [float(v) for v in vector]
        if len(vector) != self.dimensions:
            raise EmbeddingUnavailable(
                f"{self.model} returned {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector

    def embed(self, text: str) -> list[float]:
        """Embed *text*; on any failure log a warning and return a zero vector."""
        try:
            return self.embed_strict(text)
        except EmbeddingUnavailable as exc:
            logger.warning("Embedding failed, using zero vector: %s", exc)
            return self.zero_vector()
