"""Data models for LocalRAG."""

import datetime
import types
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .errors import ConfigurationError


class DocumentKind(str, Enum):
    """Origin of an indexed document fragment."""

    PDF_EXTRACT = "PdfExtract"
    CHAT_SUMMARY = "ChatSummary"
    PLAIN_TEXT = "PlainText"


class Role(str, Enum):
    """Speaker of a conversation turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class EngineState(str, Enum):
    """Lifecycle state of a conversation engine."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    GENERATING = "generating"
    DISPOSED = "disposed"


def _now() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Document:
    """An immutable text fragment with provenance."""

    content: str
    source: str
    kind: DocumentKind
    id: str = field(default_factory=_new_id)
    added_at: datetime.datetime = field(default_factory=_now)
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only view over a private copy; callers never share the dict.
        object.__setattr__(
            self, "metadata", types.MappingProxyType(dict(self.metadata))
        )


@dataclass(frozen=True)
class IndexedEntry:
    """A document and its embedding; the embedding may be empty."""

    document: Document
    embedding: np.ndarray = field(
        default_factory=lambda: np.zeros(0, dtype=np.float32)
    )

    def __post_init__(self) -> None:
        embedding = np.array(self.embedding, dtype=np.float32)
        embedding.flags.writeable = False
        object.__setattr__(self, "embedding", embedding)


@dataclass(frozen=True)
class SearchResult:
    """A retrieved document with its similarity score."""

    document: Document
    score: float


@dataclass(frozen=True)
class Turn:
    """Represents a single turn in the conversation."""

    role: Role
    text: str


@dataclass(frozen=True)
class SamplingParameters:
    """Sampling knobs passed to the inference backend."""

    temperature: float = 0.0
    top_p: float = 0.95
    top_k: int = 40
    repeat_penalty: float = 1.1
    max_tokens: int = 512

    def __post_init__(self) -> None:
        if self.max_tokens < 1:
            msg = f"max_tokens must be positive, got {self.max_tokens}"
            raise ConfigurationError(msg)
