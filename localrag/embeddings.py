"""Embedding providers over an OpenAI-compatible embeddings endpoint."""

from typing import Protocol

import numpy as np
from openai import OpenAI, OpenAIError

from .config import config
from .errors import EmbeddingError, ResourceMissingError

logger = config.get_logger(__name__)

PROBE_TEXT = "ping"


class EmbeddingProvider(Protocol):
    """Text to fixed-length vector capability.

    Implementations are not required to be re-entrant; callers serialize
    every ``embed`` call.
    """

    @property
    def available(self) -> bool: ...

    def embed(self, text: str, max_input_length: int) -> np.ndarray: ...

    def close(self) -> None: ...


class UnavailableEmbeddingProvider:
    """Stand-in used when no embedding model could be acquired.

    It never produces vectors; the retrieval store falls back to keyword
    matching when it holds this provider.
    """

    def __init__(self, reason: str = "embedding provider not configured") -> None:
        self.reason = reason

    @property
    def available(self) -> bool:
        return False

    def embed(self, text: str, max_input_length: int) -> np.ndarray:  # noqa: ARG002
        """Refuse to embed.

        Raises:
            EmbeddingError: Always.
        """
        raise EmbeddingError(self.reason)

    def close(self) -> None:
        """Nothing to release."""


class OpenAIEmbeddingProvider:
    """Handles embeddings through an OpenAI-compatible server."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        """Initialize the provider with API key, model and server URL.

        Args:
            api_key: API key. If None, reads from OPENAI_API_KEY.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            base_url: Server URL. If None, uses config.OPENAI_BASE_URL.

        Raises:
            ResourceMissingError: If no API key is configured.
        """
        api_key = api_key or config.get_openai_api_key()
        if not api_key:
            msg = "OPENAI_API_KEY is required for the embedding provider"
            raise ResourceMissingError(msg)
        default_headers = config.get_api_headers()
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url or config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.EMBEDDING_MODEL

    @property
    def available(self) -> bool:
        return True

    def embed(self, text: str, max_input_length: int) -> np.ndarray:
        """Get the embedding of a single text.

        Args:
            text: The input text; truncated to ``max_input_length`` characters.
            max_input_length: Input ceiling in characters.

        Returns:
            The embedding as a float32 vector.

        Raises:
            EmbeddingError: If the server call fails or returns no vector.
        """
        if len(text) > max_input_length:
            text = text[:max_input_length]
        try:
            response = self.client.embeddings.create(model=self.model, input=text)
        except OpenAIError as exc:
            msg = f"Embedding request failed: {exc}"
            raise EmbeddingError(msg) from exc
        if not response.data:
            msg = "Embedding response contained no vectors"
            raise EmbeddingError(msg)
        return np.asarray(response.data[0].embedding, dtype=np.float32)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.client.close()


def load_embedding_provider(
    model: str | None = None,
    api_key: str | None = None,
    base_url: str | None = None,
) -> EmbeddingProvider:
    """Acquire the real provider, or the unavailable one if it cannot load.

    The real provider is only returned after a probe embedding succeeds.

    Returns:
        An ``OpenAIEmbeddingProvider`` or an ``UnavailableEmbeddingProvider``.
    """
    try:
        provider = OpenAIEmbeddingProvider(
            api_key=api_key, model=model, base_url=base_url
        )
    except ResourceMissingError as exc:
        logger.warning("Embedding provider unavailable: %s", exc)
        return UnavailableEmbeddingProvider(str(exc))

    try:
        vector = provider.embed(PROBE_TEXT, config.EMBEDDING_MAX_INPUT_CHARS)
    except EmbeddingError as exc:
        logger.warning(
            "Embedding model %s could not be loaded, using keyword retrieval: %s",
            provider.model,
            exc,
        )
        provider.close()
        return UnavailableEmbeddingProvider(str(exc))

    logger.info(
        "Loaded embedding model %s (dimension %d)", provider.model, vector.shape[0]
    )
    return provider
