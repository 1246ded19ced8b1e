"""Per-type document repositories.

Documents live in one collection per type, keyed by id. Cross references
between types (``estimate_id``, ``work_order_id``, ``converted_to_*_id``)
are plain ids into these collections, never embedded copies.

Writes follow an optimistic check-and-set discipline: ``replace`` only
succeeds when the stored version still equals the version the caller read,
and document numbers are unique per collection.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from backoffice.documents.errors import (
    ConcurrentModificationError,
    DocumentNotFoundError,
    DuplicateDocumentNumberError,
    ValidationError,
)
from backoffice.documents.schema import (
    BaseDocument,
    EstimateDocument,
    InvoiceDocument,
    WorkOrderDocument,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseDocument)


class DocumentRepository(ABC, Generic[T]):
    """Storage interface for one document type.

    Implementations must make ``add`` and ``replace`` atomic with respect to
    their uniqueness and version checks (a serializable transaction, a row
    lock, or a unique constraint plus version column in a database).
    """

    def __init__(self, document_type: str) -> None:
        self.document_type = document_type

    @abstractmethod
    def get(self, document_id: str) -> T:
        """Load a document.

        Raises:
            DocumentNotFoundError: If no document has this id
        """

    @abstractmethod
    def exists(self, document_id: str) -> bool:
        pass

    @abstractmethod
    def list_documents(self) -> list[T]:
        """All documents in insertion order."""

    @abstractmethod
    def document_numbers(self) -> list[str]:
        pass

    @abstractmethod
    def add(self, document: T) -> T:
        """Insert a new document and return the stored copy (version 1).

        Raises:
            ValidationError: If the id is taken
            DuplicateDocumentNumberError: If the document number is taken
        """

    @abstractmethod
    def replace(self, document: T) -> T:
        """Swap in a new revision of a stored document.

        ``document.version`` must equal the stored version; the stored copy
        gets the next version.

        Raises:
            DocumentNotFoundError: If the document was deleted
            ConcurrentModificationError: If another write happened first
        """

    @abstractmethod
    def delete(self, document_id: str) -> None:
        pass


class InMemoryRepository(DocumentRepository[T]):
    """Thread-safe in-process repository for development and tests."""

    def __init__(self, document_type: str) -> None:
        super().__init__(document_type)
        self._documents: dict[str, T] = {}
        self._lock = threading.RLock()

    def get(self, document_id: str) -> T:
        with self._lock:
            document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(self.document_type, document_id)
        return document

    def exists(self, document_id: str) -> bool:
        with self._lock:
            return document_id in self._documents

    def list_documents(self) -> list[T]:
        with self._lock:
            return list(self._documents.values())

    def document_numbers(self) -> list[str]:
        with self._lock:
            return [document.document_number for document in self._documents.values()]

    def add(self, document: T) -> T:
        with self._lock:
            if document.id in self._documents:
                raise ValidationError(f"{self.document_type} id already exists: {document.id}")
            if document.document_number in self.document_numbers():
                raise DuplicateDocumentNumberError(
                    f"{self.document_type} number already taken: {document.document_number}"
                )
            stored = document.model_copy(update={"version": 1})
            self._documents[document.id] = stored

        logger.debug(f"Stored {self.document_type} {stored.document_number} ({stored.id})")
        return stored

    def replace(self, document: T) -> T:
        with self._lock:
            current = self.get(document.id)
            if current.version != document.version:
                raise ConcurrentModificationError(
                    f"{self.document_type} {document.id} changed: "
                    f"expected version {document.version}, found {current.version}"
                )
            if document.document_number != current.document_number and any(
                other.document_number == document.document_number
                for other in self._documents.values()
            ):
                raise DuplicateDocumentNumberError(
                    f"{self.document_type} number already taken: {document.document_number}"
                )
            stored = document.model_copy(update={"version": current.version + 1})
            self._documents[document.id] = stored
        return stored

    def delete(self, document_id: str) -> None:
        with self._lock:
            if self._documents.pop(document_id, None) is None:
                raise DocumentNotFoundError(self.document_type, document_id)
        logger.info(f"Deleted {self.document_type} {document_id}")


EstimateRepository = DocumentRepository[EstimateDocument]
WorkOrderRepository = DocumentRepository[WorkOrderDocument]
InvoiceRepository = DocumentRepository[InvoiceDocument]
