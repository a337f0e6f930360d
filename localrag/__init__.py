"""LocalRAG - local conversational inference with retrieval-augmented context."""

from .channel import StreamChannel
from .conversation import ConversationEngine, StopReason
from .document_processing import DocumentLoader, TextChunker
from .embeddings import (
    OpenAIEmbeddingProvider,
    UnavailableEmbeddingProvider,
    load_embedding_provider,
)
from .errors import (
    ConfigurationError,
    CorruptStoreError,
    EmbeddingError,
    EngineBusyError,
    GenerationError,
    LocalRAGError,
    NotReadyError,
    ResourceMissingError,
)
from .inference import OpenAICompletionBackend
from .models import (
    Document,
    DocumentKind,
    EngineState,
    IndexedEntry,
    Role,
    SamplingParameters,
    SearchResult,
    Turn,
)
from .pipeline import RAGPipeline
from .prompting import InstructionFormat, StopSequenceScanner
from .vector_store import RetrievalStore, cosine_similarity

__all__ = [
    "ConfigurationError",
    "ConversationEngine",
    "CorruptStoreError",
    "Document",
    "DocumentKind",
    "DocumentLoader",
    "EmbeddingError",
    "EngineBusyError",
    "EngineState",
    "GenerationError",
    "IndexedEntry",
    "InstructionFormat",
    "LocalRAGError",
    "NotReadyError",
    "OpenAICompletionBackend",
    "OpenAIEmbeddingProvider",
    "RAGPipeline",
    "ResourceMissingError",
    "RetrievalStore",
    "Role",
    "SamplingParameters",
    "SearchResult",
    "StopReason",
    "StopSequenceScanner",
    "StreamChannel",
    "TextChunker",
    "Turn",
    "UnavailableEmbeddingProvider",
    "cosine_similarity",
    "load_embedding_provider",
]
