"""
Documents attached to an agent context.

The ingestion pipeline and storage backends live elsewhere; this module
defines what the runtime consumes: a document descriptor with a deferred
content loader, and the store contract that produces them.
"""

import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()

Loader = Callable[["Document"], bytes]


@dataclass(eq=False)
class Document:
    """A read-only document reference.

    ``content()`` calls the loader on first access and caches the bytes
    until ``invalidate()`` is called.
    """

    filename: str
    mime_type: str = ""
    size: int = 0
    loader: Optional[Loader] = None
    id: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _content: bytes | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.id:
            self.id = f"doc_{self.filename}"
        if not self.mime_type:
            self.mime_type = mimetypes.guess_type(self.filename)[0] or "application/octet-stream"

    @classmethod
    def from_bytes(cls, filename: str, content: bytes, mime_type: str = "") -> "Document":
        return cls(
            filename=filename,
            mime_type=mime_type,
            size=len(content),
            loader=lambda _doc: content,
        )

    @property
    def is_loaded(self) -> bool:
        return self._content is not None

    def content(self) -> bytes:
        if self._content is None:
            if self.loader is None:
                raise ValueError(f"document {self.id} has no loader")
            self._content = self.loader(self)
            if not self.size:
                self.size = len(self._content)
            logger.debug("Document loaded", document_id=self.id, size=len(self._content))
        return self._content

    def text(self) -> str:
        return self.content().decode("utf-8", errors="replace")

    def invalidate(self) -> None:
        """Drop the cached content; the next access reloads it."""
        self._content = None

    def reference(self) -> str:
        return f"[document {self.id}] {self.filename} ({self.mime_type}, {self.size} bytes)"


class DocumentStore(ABC):
    """Persistence collaborator for documents."""

    @abstractmethod
    def save(self, filename: str, content: bytes, mime_type: str = "") -> Document:
        """Store content and return its document."""
        pass

    @abstractmethod
    def load(self, document_id: str) -> bytes:
        """Read the stored bytes of a document."""
        pass

    @abstractmethod
    def list(self) -> list[Document]:
        """List stored documents."""
        pass

    @abstractmethod
    def delete(self, document_id: str) -> None:
        """Remove a stored document."""
        pass

    def document(self, document_id: str) -> Document:
        """Return a lazily loaded document backed by this store."""
        for doc in self.list():
            if doc.id == document_id:
                return doc
        raise KeyError(document_id)


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed store, mainly for tests."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}
        self._docs: dict[str, Document] = {}

    def save(self, filename: str, content: bytes, mime_type: str = "") -> Document:
        doc = Document(
            filename=filename,
            mime_type=mime_type,
            size=len(content),
            loader=lambda d: self.load(d.id),
        )
        self._blobs[doc.id] = bytes(content)
        self._docs[doc.id] = doc
        return doc

    def load(self, document_id: str) -> bytes:
        try:
            return self._blobs[document_id]
        except KeyError:
            raise KeyError(f"document not found: {document_id}") from None

    def list(self) -> list[Document]:
        return list(self._docs.values())

    def delete(self, document_id: str) -> None:
        self._blobs.pop(document_id, None)
        doc = self._docs.pop(document_id, None)
        if doc is not None:
            doc.invalidate()
