"""Test configuration and fixtures for LocalRAG tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Scripted inference backend
- Table-driven embedding provider
- Retrieval store fixtures
- Conversation engine fixtures
"""

import threading
from collections.abc import Iterator
from unittest.mock import MagicMock, Mock, patch

import numpy as np
import pytest

from localrag import (
    ConversationEngine,
    EmbeddingError,
    ResourceMissingError,
    RetrievalStore,
    SamplingParameters,
)


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    __test__ = False

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_BASE_URL = "http://localhost:8080/v1"
    TEST_CHAT_MODEL = "test-model.gguf"
    TEST_EMBEDDING_MODEL = "test-embedding-model"

    # Text Chunking Configuration
    SMALL_CHUNK_SIZE = 5
    SMALL_CHUNK_OVERLAP = 2
    DEFAULT_CHUNK_SIZE = 512
    DEFAULT_CHUNK_OVERLAP = 50

    # Retrieval Configuration
    SIMILARITY_THRESHOLD = 0.25
    TOP_K = 3

    # Engine Configuration
    MAX_TOKENS = 16
    SAFETY_MAX_TOKENS = 64
    SYSTEM_PROMPT = "You are a test assistant."

    # Seconds to wait on threads before failing a test
    WAIT_TIMEOUT = 5.0


class ScriptedModelHandle:
    """Model handle replaying a fixed token script.

    With a ``gate``, the handle yields the first token and then waits for
    the gate before each later token, which lets tests act mid-stream.
    """

    def __init__(
        self,
        tokens: list[str] | None = None,
        *,
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.tokens = list(tokens or [])
        self.error = error
        self.gate = gate
        self.prompts: list[str] = []
        self.samplings: list[SamplingParameters] = []
        self.tokens_served = 0
        self.closed = False
        self.started = threading.Event()
        self.finished = threading.Event()

    def generate(self, prompt: str, sampling: SamplingParameters) -> Iterator[str]:
        self.prompts.append(prompt)
        self.samplings.append(sampling)
        return self._stream()

    def _stream(self) -> Iterator[str]:
        self.started.set()
        try:
            for index, token in enumerate(self.tokens):
                if self.gate is not None and index > 0:
                    self.gate.wait(TestConstants.WAIT_TIMEOUT)
                self.tokens_served += 1
                yield token
            if self.error is not None:
                raise self.error
        finally:
            self.finished.set()

    def close(self) -> None:
        self.closed = True


class ScriptedBackend:
    """Inference backend handing out one ScriptedModelHandle."""

    def __init__(self, handle: ScriptedModelHandle | None = None) -> None:
        self.handle = handle or ScriptedModelHandle()
        self.load_calls: list[tuple[str, int, int]] = []
        self.missing = False

    def load(
        self, model_path: str, context_size: int, gpu_layers: int
    ) -> ScriptedModelHandle:
        if self.missing:
            msg = f"Model not found: {model_path}"
            raise ResourceMissingError(msg)
        self.load_calls.append((model_path, context_size, gpu_layers))
        return self.handle


class FixedEmbeddingProvider:
    """Embedding provider backed by an explicit text-to-vector table.

    Tests choose the vectors so that similarity scores are known in
    advance; unknown texts map to ``default``. Vectors derived from hashes
    carry no semantic meaning, so none are generated here.
    """

    def __init__(
        self,
        table: dict[str, list[float]] | None = None,
        default: list[float] | None = None,
        *,
        failing: set[str] | None = None,
    ) -> None:
        self.table = {
            text: np.asarray(vector, dtype=np.float32)
            for text, vector in (table or {}).items()
        }
        self.default = np.asarray(default or [0.0, 0.0], dtype=np.float32)
        self.failing = failing or set()
        self.calls: list[str] = []
        self.closed = False

    @property
    def available(self) -> bool:
        return True

    def embed(self, text: str, max_input_length: int) -> np.ndarray:
        text = text[:max_input_length]
        self.calls.append(text)
        if text in self.failing:
            msg = f"Cannot embed {text!r}"
            raise EmbeddingError(msg)
        return self.table.get(text, self.default)

    def close(self) -> None:
        self.closed = True


def unit_vector_with_score(score: float) -> list[float]:
    """2-D unit vector whose cosine similarity with [1, 0] equals ``score``."""
    return [score, float(np.sqrt(1.0 - score * score))]


def create_mock_embedding_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_completion_stream(texts: list[str]) -> Mock:
    """Create a mock OpenAI streaming completion response.

    Returns:
        Iterable mock yielding one chunk per text, with a ``close`` method.
    """
    chunks = [Mock(choices=[Mock(text=text)]) for text in texts]
    stream = MagicMock()
    stream.__iter__.return_value = iter(chunks)
    return stream


@pytest.fixture
def openai_embeddings_api_mock():
    """Patch the OpenAI embeddings.create method."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def openai_completions_api_mock():
    """Patch the OpenAI completions.create method."""
    with patch("openai.resources.completions.Completions.create") as mock_create:
        yield mock_create


@pytest.fixture
def openai_models_api_mock():
    """Patch the OpenAI models.retrieve method."""
    with patch("openai.resources.models.Models.retrieve") as mock_retrieve:
        yield mock_retrieve


@pytest.fixture
def store_factory(tmp_path):
    """Factory for initialized retrieval stores under a temporary directory."""
    stores: list[RetrievalStore] = []

    def _create_store(  # noqa: ANN202
        provider=None,
        *,
        name: str = "rag_db.json",
        chunk_size: int = TestConstants.SMALL_CHUNK_SIZE,
        overlap: int = TestConstants.SMALL_CHUNK_OVERLAP,
        similarity_threshold: float = TestConstants.SIMILARITY_THRESHOLD,
        top_k: int = TestConstants.TOP_K,
        initialize: bool = True,
    ):
        loader = _unavailable_loader
        if provider is not None:
            loader = lambda: provider  # noqa: E731

        store = RetrievalStore(
            tmp_path / name,
            chunk_size=chunk_size,
            overlap=overlap,
            similarity_threshold=similarity_threshold,
            top_k=top_k,
            embedding_provider_loader=loader,
        )
        if initialize:
            store.initialize()
        stores.append(store)
        return store

    yield _create_store

    for store in stores:
        store.close(timeout=0.1)


def _unavailable_loader():  # noqa: ANN202
    msg = "no embedding model in tests"
    raise ResourceMissingError(msg)


@pytest.fixture
def keyword_store(store_factory):
    """Initialized store with no embedding provider (keyword retrieval)."""
    return store_factory()


@pytest.fixture
def scripted_handle():
    return ScriptedModelHandle(["Hello", " there"])


@pytest.fixture
def scripted_backend(scripted_handle):
    return ScriptedBackend(scripted_handle)


@pytest.fixture
def engine_factory(scripted_backend):
    """Factory for conversation engines over the scripted backend."""
    engines: list[ConversationEngine] = []

    def _create_engine(  # noqa: ANN202
        *,
        retriever=None,
        max_tokens: int = TestConstants.MAX_TOKENS,
        safety_max_tokens: int = TestConstants.SAFETY_MAX_TOKENS,
        system_prompt: str = TestConstants.SYSTEM_PROMPT,
        initialize: bool = True,
    ):
        engine = ConversationEngine(
            scripted_backend,
            retriever=retriever,
            model_path=TestConstants.TEST_CHAT_MODEL,
            sampling=SamplingParameters(max_tokens=max_tokens),
            system_prompt=system_prompt,
            context_size=2048,
            gpu_layers=0,
            safety_max_tokens=safety_max_tokens,
        )
        if initialize:
            engine.initialize()
        engines.append(engine)
        return engine

    yield _create_engine

    if scripted_backend.handle.gate is not None:
        scripted_backend.handle.gate.set()
    for engine in engines:
        engine.close(timeout=TestConstants.WAIT_TIMEOUT)


@pytest.fixture
def engine(engine_factory):
    """Initialized conversation engine over the scripted backend."""
    return engine_factory()
