"""Configuration management for LocalRAG."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import SamplingParameters

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)

DEFAULT_SYSTEM_PROMPT = (
    "You are BioMistral in a clinical QA app. Use only provided context. "
    "If unsure, say so."
)


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI-compatible server configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get the API key for the OpenAI-compatible server.

        Returns:
            API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv(
        "OPENAI_BASE_URL", "http://localhost:8080/v1"
    )

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Inference Backend Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "BioMistral-7B.Q8_0.gguf")
    CONTEXT_SIZE: int = int(os.getenv("CONTEXT_SIZE", "4096"))
    GPU_LAYERS: int = int(os.getenv("GPU_LAYERS", "20"))

    # Sampling Configuration
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.0"))
    CHAT_TOP_P: float = float(os.getenv("CHAT_TOP_P", "0.95"))
    CHAT_TOP_K: int = int(os.getenv("CHAT_TOP_K", "40"))
    CHAT_REPEAT_PENALTY: float = float(os.getenv("CHAT_REPEAT_PENALTY", "1.1"))
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "512"))
    SAFETY_MAX_TOKENS: int = int(os.getenv("SAFETY_MAX_TOKENS", "8000"))
    SYSTEM_PROMPT: str = os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)

    # Summarization Configuration
    SUMMARY_TEMPERATURE: float = float(os.getenv("SUMMARY_TEMPERATURE", "0.2"))
    SUMMARY_MAX_TOKENS: int = int(os.getenv("SUMMARY_MAX_TOKENS", "256"))

    # Embedding Configuration
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
    EMBEDDING_MAX_INPUT_CHARS: int = int(
        os.getenv("EMBEDDING_MAX_INPUT_CHARS", "8192")
    )

    # RAG Configuration
    RAG_STORE_PATH: Path = Path(os.getenv("RAG_STORE_PATH", "data/rag_db.json"))
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "512"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "50"))
    RAG_TOP_K: int = int(os.getenv("RAG_TOP_K", "3"))
    SIMILARITY_THRESHOLD: float = float(os.getenv("SIMILARITY_THRESHOLD", "0.25"))

    # Shutdown Configuration
    SHUTDOWN_TIMEOUT: float = float(os.getenv("SHUTDOWN_TIMEOUT", "5.0"))

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "LocalRAG/1.0")

    @classmethod
    def validate(cls) -> None:
        """Validate chunking, retrieval and token budget values.

        Raises:
            ConfigurationError: If chunk size, overlap, top-k, the
                similarity threshold or a token budget is out of range.
        """
        for name in ("CHAT_MAX_TOKENS", "SAFETY_MAX_TOKENS", "SUMMARY_MAX_TOKENS"):
            value = getattr(cls, name)
            if value < 1:
                msg = f"{name} must be positive, got {value}"
                raise ConfigurationError(msg)
        if cls.CHUNK_SIZE < 1:
            msg = f"CHUNK_SIZE must be positive, got {cls.CHUNK_SIZE}"
            raise ConfigurationError(msg)
        if not 0 <= cls.CHUNK_OVERLAP < cls.CHUNK_SIZE:
            msg = (
                "CHUNK_OVERLAP must be in [0, CHUNK_SIZE), "
                f"got {cls.CHUNK_OVERLAP} with CHUNK_SIZE={cls.CHUNK_SIZE}"
            )
            raise ConfigurationError(msg)
        if cls.RAG_TOP_K < 1:
            msg = f"RAG_TOP_K must be positive, got {cls.RAG_TOP_K}"
            raise ConfigurationError(msg)
        if not -1.0 <= cls.SIMILARITY_THRESHOLD <= 1.0:
            msg = (
                "SIMILARITY_THRESHOLD must be in [-1, 1], "
                f"got {cls.SIMILARITY_THRESHOLD}"
            )
            raise ConfigurationError(msg)

    @classmethod
    def sampling_parameters(cls) -> SamplingParameters:
        """Build the chat sampling parameters from configuration.

        Returns:
            Frozen sampling parameters for the conversation engine.
        """
        return SamplingParameters(
            temperature=cls.CHAT_TEMPERATURE,
            top_p=cls.CHAT_TOP_P,
            top_k=cls.CHAT_TOP_K,
            repeat_penalty=cls.CHAT_REPEAT_PENALTY,
            max_tokens=cls.CHAT_MAX_TOKENS,
        )

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        # Configure third-party library log levels via environment variables
        logging.getLogger("openai").setLevel(
            getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        return headers


config = Config()
