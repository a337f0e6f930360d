"""Document text extraction and word-window chunking."""

from pathlib import Path

import pypdf

from .config import config
from .errors import ConfigurationError, ResourceMissingError
from .models import DocumentKind

logger = config.get_logger(__name__)

TEXT_SUFFIXES = {".txt", ".md"}


class DocumentLoader:
    """Handles loading of PDF and plain-text documents."""

    @staticmethod
    def load_pdf(file_path: Path) -> str:
        """Load text content from a PDF file, one block per page.

        Returns:
            The extracted text content from the PDF as a string.
        """
        try:
            with file_path.open("rb") as file:
                pdf_reader = pypdf.PdfReader(file)
                pages = [page.extract_text() or "" for page in pdf_reader.pages]
        except Exception:
            logger.exception("Error loading PDF %s", file_path)
            raise
        logger.info("Extracted %d pages from %s", len(pages), file_path.name)
        return "\n".join(pages)

    @staticmethod
    def load_txt(file_path: Path) -> str:
        """Load text content from a plain-text file.

        Returns:
            The file content as a string.
        """
        try:
            with file_path.open(encoding="utf-8") as file:
                text = file.read()
            logger.info("Successfully loaded text file %s", file_path.name)
        except Exception:
            logger.exception("Error loading text file %s", file_path)
            raise
        else:
            return text

    @staticmethod
    def kind_for(file_path: Path) -> DocumentKind:
        """Map a file extension to the kind of document it produces.

        Raises:
            ValueError: If the file type is not supported.
        """
        file_ext = file_path.suffix.lower()
        if file_ext == ".pdf":
            return DocumentKind.PDF_EXTRACT
        if file_ext in TEXT_SUFFIXES:
            return DocumentKind.PLAIN_TEXT
        msg = f"Unsupported file type: {file_ext}"
        raise ValueError(msg)

    @classmethod
    def load_document(cls, file_path: Path) -> str:
        """Load document based on file extension.

        Args:
            file_path: Path to the document file.

        Returns:
            The text content of the document as a string.

        Raises:
            ResourceMissingError: If the file does not exist.
        """
        file_path = Path(file_path)
        kind = cls.kind_for(file_path)
        if not file_path.is_file():
            msg = f"Document not found: {file_path}"
            raise ResourceMissingError(msg)
        if kind is DocumentKind.PDF_EXTRACT:
            return cls.load_pdf(file_path)
        return cls.load_txt(file_path)


class TextChunker:
    """Splits text into overlapping fixed-size windows of words."""

    def __init__(self, chunk_size: int = 512, overlap: int = 50) -> None:
        """Initialize the TextChunker with chunk size and overlap.

        Args:
            chunk_size: Number of words per chunk.
            overlap: Number of words shared by adjacent chunks.
        """
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.validate()

    @property
    def stride(self) -> int:
        return self.chunk_size - self.overlap

    def validate(self) -> None:
        """Check the window parameters.

        Raises:
            ConfigurationError: If the chunk size is not positive, the overlap
                is negative, or the stride is not positive.
        """
        if self.chunk_size < 1:
            msg = f"Chunk size must be positive, got {self.chunk_size}"
            raise ConfigurationError(msg)
        if self.overlap < 0:
            msg = f"Chunk overlap must not be negative, got {self.overlap}"
            raise ConfigurationError(msg)
        if self.stride < 1:
            msg = (
                f"Chunk overlap ({self.overlap}) must be smaller than "
                f"chunk size ({self.chunk_size})"
            )
            raise ConfigurationError(msg)

    def chunk_spans(self, text: str) -> list[tuple[int, int]]:
        """Word index ranges ``[start, end)`` of each window over ``text``.

        Returns:
            The spans in document order.
        """
        self.validate()
        n = len(text.split())
        return [
            (start, min(start + self.chunk_size, n))
            for start in range(0, n, self.stride)
        ]

    def chunk(self, text: str) -> list[str]:
        """Split text into overlapping word windows.

        Returns:
            Non-empty chunks in document order.
        """
        words = text.split()
        chunks = []
        for start, end in self.chunk_spans(text):
            chunk_text = " ".join(words[start:end])
            if chunk_text.strip():
                chunks.append(chunk_text)

        logger.info("Text split into %d chunks", len(chunks))
        return chunks
