"""RAG pipeline wiring the retrieval store to the conversation engine."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from pathlib import Path

from .config import config
from .conversation import ConversationEngine
from .inference import InferenceBackend, OpenAICompletionBackend
from .models import Document
from .vector_store import RetrievalStore

logger = config.get_logger(__name__)


class RAGPipeline:
    """Main RAG pipeline: ingest documents, chat with context, archive chats."""

    def __init__(
        self,
        store: RetrievalStore | None = None,
        engine: ConversationEngine | None = None,
        backend: InferenceBackend | None = None,
    ) -> None:
        """Initialize the pipeline from explicit parts or configuration.

        Args:
            store: Retrieval store. If None, one is built from config.
            engine: Conversation engine. If None, one is built around
                ``backend`` with the store as its retriever.
            backend: Inference backend for a new engine. If None, uses an
                ``OpenAICompletionBackend``.
        """
        self.store = store if store is not None else RetrievalStore()
        self.engine = engine or ConversationEngine(
            backend or OpenAICompletionBackend(), retriever=self.store
        )

    def initialize(self) -> None:
        """Initialize the store, then load the model."""
        self.store.initialize()
        logger.info(
            "Retrieval store ready with %d entries (%s retrieval)",
            len(self.store),
            "semantic" if self.store.has_embeddings else "keyword",
        )
        self.engine.initialize()

    def process_document(self, file_path: Path) -> list[Document]:
        """Process a document through extract, chunk, embed and store.

        Returns:
            The documents created from the file.
        """
        logger.info("Starting RAG pipeline for document: %s", file_path)
        documents = self.store.ingest_file(Path(file_path))
        logger.info("Document processing completed successfully")
        return documents

    def chat(
        self, message: str, cancel_event: threading.Event | None = None
    ) -> Iterator[str]:
        """Stream a context-augmented reply.

        Returns:
            A lazy sequence of text tokens.
        """
        logger.info("Processing message: %s", message)
        return self.engine.stream_chat(message, cancel_event=cancel_event)

    def archive_session(self, session_id: str, history_text: str) -> Document | None:
        """Summarize a finished chat and index the summary for later retrieval.

        Returns:
            The summary document, or None when there was nothing to summarize.
        """
        if not history_text.strip():
            logger.info("Session %s has no history to archive", session_id)
            return None

        summary = self.engine.summarize_chat(history_text)
        if not summary:
            logger.warning("Empty summary for session %s; not archived", session_id)
            return None
        return self.store.ingest_summary(session_id, summary)

    def reset(self, system_prompt: str | None = None) -> None:
        self.engine.reset_conversation(system_prompt)

    def close(self, timeout: float | None = None) -> None:
        """Release the model and the embedding provider."""
        self.engine.close(timeout=timeout)
        self.store.close(timeout=timeout)
