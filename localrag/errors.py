"""Error types raised at the LocalRAG API boundary."""


class LocalRAGError(Exception):
    """Base class for all LocalRAG errors."""


class NotReadyError(LocalRAGError, RuntimeError):
    """Raised when an operation runs before initialization or after disposal."""


class EngineBusyError(LocalRAGError, RuntimeError):
    """Raised when a generation is already in flight on the same engine."""


class ResourceMissingError(LocalRAGError, FileNotFoundError):
    """Raised when a required model, file or credential is absent."""


class CorruptStoreError(LocalRAGError, ValueError):
    """Raised when a persisted store snapshot exists but cannot be parsed."""


class ConfigurationError(LocalRAGError, ValueError):
    """Raised for invalid chunking or retrieval parameters."""


class EmbeddingError(LocalRAGError, RuntimeError):
    """Raised when the embedding provider fails to embed a text."""


class GenerationError(LocalRAGError, RuntimeError):
    """Raised when a one-shot generation fails inside the inference backend."""
