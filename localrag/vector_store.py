"""JSON-persisted retrieval store with cosine-similarity search."""

from __future__ import annotations

import datetime
import json
import os
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np

from .config import config
from .document_processing import DocumentLoader, TextChunker
from .embeddings import (
    EmbeddingProvider,
    UnavailableEmbeddingProvider,
    load_embedding_provider,
)
from .errors import CorruptStoreError, EmbeddingError, NotReadyError
from .models import Document, DocumentKind, IndexedEntry, SearchResult

logger = config.get_logger(__name__)

CONTEXT_HEADER = "=== RETRIEVED CONTEXT ==="
KEYWORD_MATCH_SCORE = 1.0


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Calculate the cosine similarity of two vectors.

    Returns:
        ``dot(a, b) / (|a| * |b|)``, or 0.0 when either vector is empty, the
        lengths differ, or either magnitude is zero.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.size == 0 or b.size == 0 or a.shape != b.shape:
        return 0.0
    magnitude = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if magnitude == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / magnitude, -1.0, 1.0))


def format_context(documents: list[Document]) -> str:
    """Render retrieved documents as a labelled context block.

    Returns:
        The context block, or an empty string when nothing was retrieved.
    """
    if not documents:
        return ""

    parts = [CONTEXT_HEADER]
    for doc in documents:
        parts.append(f"\n[Source: {doc.source} ({doc.kind.value})]")
        parts.append(doc.content)
        parts.append("---")
    return "\n".join(parts) + "\n"


def _entry_to_dict(entry: IndexedEntry) -> dict[str, Any]:
    doc = entry.document
    return {
        "document": {
            "id": doc.id,
            "content": doc.content,
            "source": doc.source,
            "kind": doc.kind.value,
            "added_at": doc.added_at.isoformat(),
            "metadata": dict(doc.metadata),
        },
        "embedding": [float(value) for value in entry.embedding],
    }


def _entry_from_dict(raw: dict[str, Any]) -> IndexedEntry:
    doc = raw["document"]
    document = Document(
        id=str(doc["id"]),
        content=str(doc["content"]),
        source=str(doc["source"]),
        kind=DocumentKind(doc["kind"]),
        added_at=datetime.datetime.fromisoformat(doc["added_at"]),
        metadata={str(k): str(v) for k, v in doc.get("metadata", {}).items()},
    )
    embedding = np.asarray(raw.get("embedding", []), dtype=np.float32)
    if embedding.ndim != 1:
        msg = f"Embedding for document {document.id} is not a flat vector"
        raise ValueError(msg)
    return IndexedEntry(document=document, embedding=embedding)


class RetrievalStore:
    """Durable, queryable index of document fragments.

    Every read and write holds one store-wide lock because the snapshot is
    saved whole. Embedding calls hold a second lock of their own.
    """

    def __init__(  # noqa: PLR0913
        self,
        store_path: Path | None = None,
        *,
        chunk_size: int | None = None,
        overlap: int | None = None,
        similarity_threshold: float | None = None,
        top_k: int | None = None,
        embedding_provider_loader: Callable[[], EmbeddingProvider] | None = None,
    ) -> None:
        """Configure the store; nothing is read from disk until initialize().

        Args:
            store_path: JSON snapshot path. If None, uses config.RAG_STORE_PATH.
            chunk_size: Words per chunk. If None, uses config.CHUNK_SIZE.
            overlap: Words shared by adjacent chunks. If None, uses
                config.CHUNK_OVERLAP.
            similarity_threshold: Minimum cosine score for semantic results.
                If None, uses config.SIMILARITY_THRESHOLD.
            top_k: Default number of results. If None, uses config.RAG_TOP_K.
            embedding_provider_loader: Callable acquiring the embedding
                provider. If None, uses ``load_embedding_provider``.
        """
        self.store_path = Path(store_path or config.RAG_STORE_PATH)
        self.chunker = TextChunker(
            chunk_size=chunk_size if chunk_size is not None else config.CHUNK_SIZE,
            overlap=overlap if overlap is not None else config.CHUNK_OVERLAP,
        )
        self.similarity_threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else config.SIMILARITY_THRESHOLD
        )
        self.top_k = top_k if top_k is not None else config.RAG_TOP_K
        self.max_input_length = config.EMBEDDING_MAX_INPUT_CHARS
        self._provider_loader = embedding_provider_loader or load_embedding_provider

        self._entries: list[IndexedEntry] = []
        self._provider: EmbeddingProvider = UnavailableEmbeddingProvider()
        self._lock = threading.Lock()
        self._embedding_lock = threading.Lock()
        self._initialized = False
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return self._initialized and not self._closed

    @property
    def has_embeddings(self) -> bool:
        """Whether retrieval is semantic rather than keyword fallback."""
        return self._provider.available

    @property
    def entries(self) -> tuple[IndexedEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def initialize(self) -> None:
        """Create the directory, load the snapshot and acquire the provider.

        Raises:
            CorruptStoreError: If the persisted snapshot cannot be parsed.
            NotReadyError: If the store has been closed.
        """
        with self._lock:
            if self._closed:
                msg = "Retrieval store has been closed"
                raise NotReadyError(msg)
            if self._initialized:
                return

            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            if self.store_path.exists():
                self._entries = self._load_snapshot()
                logger.info(
                    "Loaded %d entries from %s", len(self._entries), self.store_path
                )

            self._provider = self._acquire_provider()
            self._initialized = True

    def _acquire_provider(self) -> EmbeddingProvider:
        try:
            return self._provider_loader()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Failed to load embedding provider, using keyword retrieval: %s", exc
            )
            return UnavailableEmbeddingProvider(str(exc))

    def _ensure_ready(self) -> None:
        if self._closed:
            msg = "Retrieval store has been closed"
            raise NotReadyError(msg)
        if not self._initialized:
            msg = "Retrieval store not initialized. Call initialize() first."
            raise NotReadyError(msg)

    def _load_snapshot(self) -> list[IndexedEntry]:
        try:
            raw = json.loads(self.store_path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                msg = "snapshot root is not a list"
                raise TypeError(msg)
            return [_entry_from_dict(item) for item in raw]
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.exception("Error loading retrieval store %s", self.store_path)
            msg = f"Cannot parse retrieval store {self.store_path}: {exc}"
            raise CorruptStoreError(msg) from exc

    def _save_snapshot(self, entries: list[IndexedEntry]) -> None:
        payload = json.dumps([_entry_to_dict(entry) for entry in entries], indent=2)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.store_path.parent, prefix=self.store_path.name, suffix=".tmp"
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file:
                file.write(payload)
            tmp_path.replace(self.store_path)
        except OSError:
            logger.exception("Error saving retrieval store %s", self.store_path)
            tmp_path.unlink(missing_ok=True)
            raise
        logger.info("Saved %d entries to %s", len(entries), self.store_path)

    def _commit(self, new_entries: list[IndexedEntry]) -> None:
        """Persist the extended snapshot, then extend memory to match it."""
        self._save_snapshot(self._entries + new_entries)
        self._entries.extend(new_entries)

    def _compute_embedding(self, text: str) -> np.ndarray:
        """Embed one text under the embedding lock.

        Returns:
            The vector, or an empty vector when no provider is available or
            the provider failed.
        """
        if not self._provider.available:
            return np.zeros(0, dtype=np.float32)

        with self._embedding_lock:
            try:
                return np.asarray(
                    self._provider.embed(text, self.max_input_length),
                    dtype=np.float32,
                )
            except EmbeddingError:
                logger.exception("Embedding error")
                return np.zeros(0, dtype=np.float32)

    def ingest_document_text(
        self,
        raw_text: str,
        source: str,
        kind: DocumentKind = DocumentKind.PLAIN_TEXT,
        metadata: dict[str, str] | None = None,
    ) -> list[Document]:
        """Chunk, embed and persist a document's text.

        Returns:
            The documents created, one per chunk, in chunk order.
        """
        self.chunker.validate()
        with self._lock:
            self._ensure_ready()
            chunks = self.chunker.chunk(raw_text)
            total = len(chunks)

            new_entries = []
            for index, chunk in enumerate(chunks):
                doc_metadata = dict(metadata or {})
                doc_metadata["chunk_index"] = str(index)
                doc_metadata["total_chunks"] = str(total)
                document = Document(
                    content=chunk, source=source, kind=kind, metadata=doc_metadata
                )
                new_entries.append(
                    IndexedEntry(
                        document=document, embedding=self._compute_embedding(chunk)
                    )
                )

            self._commit(new_entries)

        logger.info("Ingested %d chunks from %s", total, source)
        return [entry.document for entry in new_entries]

    def ingest_file(
        self, file_path: Path, metadata: dict[str, str] | None = None
    ) -> list[Document]:
        """Extract a file's text and ingest it under its file name.

        Returns:
            The documents created, one per chunk.
        """
        self._ensure_ready()
        file_path = Path(file_path)
        text = DocumentLoader.load_document(file_path)
        file_metadata = dict(metadata or {})
        file_metadata["file_path"] = str(file_path)
        return self.ingest_document_text(
            text,
            source=file_path.name,
            kind=DocumentLoader.kind_for(file_path),
            metadata=file_metadata,
        )

    def ingest_summary(self, session_id: str, summary_text: str) -> Document:
        """Store a chat-session summary as a single entry.

        Returns:
            The summary document.
        """
        with self._lock:
            self._ensure_ready()
            document = Document(
                id=f"summary_{session_id}",
                content=summary_text,
                source=f"Chat Session {session_id}",
                kind=DocumentKind.CHAT_SUMMARY,
                metadata={"session_id": session_id},
            )
            entry = IndexedEntry(
                document=document, embedding=self._compute_embedding(summary_text)
            )
            self._commit([entry])

        logger.info("Ingested summary for session %s", session_id)
        return document

    def search(self, query: str, top_k: int | None = None) -> list[SearchResult]:
        """Find the entries most relevant to a query.

        Semantic search applies the similarity threshold; keyword fallback
        returns substring matches in insertion order with a score of 1.0.

        Returns:
            At most ``top_k`` results, best first.
        """
        top_k = self.top_k if top_k is None else top_k
        with self._lock:
            self._ensure_ready()
            if not self._entries or top_k < 1:
                return []

            if self._provider.available:
                results = self._semantic_search(query, top_k)
            else:
                results = self._keyword_search(query, top_k)

        for result in results:
            logger.info(
                "Retrieved %s with similarity %.4f", result.document.source, result.score
            )
        return results

    def _semantic_search(self, query: str, top_k: int) -> list[SearchResult]:
        query_embedding = self._compute_embedding(query)
        if query_embedding.size == 0:
            logger.warning("Query could not be embedded; no context retrieved")
            return []

        scored = [
            SearchResult(
                entry.document, cosine_similarity(query_embedding, entry.embedding)
            )
            for entry in self._entries
        ]
        relevant = [r for r in scored if r.score >= self.similarity_threshold]
        # sorted() is stable, so equal scores keep insertion order
        relevant = sorted(relevant, key=lambda r: r.score, reverse=True)
        return relevant[:top_k]

    def _keyword_search(self, query: str, top_k: int) -> list[SearchResult]:
        needle = query.casefold()
        results = []
        for entry in self._entries:
            if needle in entry.document.content.casefold():
                results.append(SearchResult(entry.document, KEYWORD_MATCH_SCORE))
                if len(results) == top_k:
                    break
        return results

    def retrieve(self, query: str, top_k: int | None = None) -> str:
        """Retrieve a formatted context block for a query.

        Returns:
            The context block, or an empty string when nothing matched.
        """
        results = self.search(query, top_k=top_k)
        return format_context([result.document for result in results])

    def close(self, timeout: float | None = None) -> None:
        """Release the embedding provider.

        Waits at most ``timeout`` seconds for in-flight operations, then
        proceeds so shutdown never deadlocks.
        """
        timeout = config.SHUTDOWN_TIMEOUT if timeout is None else timeout
        if self._closed:
            return
        acquired = self._lock.acquire(timeout=timeout)
        if not acquired:
            logger.warning(
                "Retrieval store busy after %.1fs; closing without the lock", timeout
            )
        try:
            self._closed = True
            provider = self._provider
            self._provider = UnavailableEmbeddingProvider("store closed")
            try:
                provider.close()
            except Exception:
                logger.exception("Error closing embedding provider")
        finally:
            if acquired:
                self._lock.release()
