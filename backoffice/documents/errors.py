"""Exception hierarchy for the document engine.

Every error is recoverable at the call site. Engine operations return new
documents instead of mutating their inputs, so a raised error always leaves
the stored document unchanged.
"""


class DocumentError(Exception):
    """Base class for all document engine errors."""


class ValidationError(DocumentError):
    """Document or input is missing required data or carries an invalid value."""


class InvalidStateTransitionError(DocumentError):
    """Transition attempted from a state that does not permit it."""

    def __init__(self, document_type: str, transition: str, status: str) -> None:
        self.document_type = document_type
        self.transition = transition
        self.status = status
        super().__init__(f"Cannot {transition} {document_type} in status '{status}'")


class AlreadyConvertedError(DocumentError):
    """Source document has already been converted to a target document."""

    def __init__(self, source_id: str, target_id: str) -> None:
        self.source_id = source_id
        self.target_id = target_id
        super().__init__(f"Document {source_id} was already converted to {target_id}")


class ComputationError(DocumentError):
    """Totals computation produced or received a non-finite value."""


class DocumentNotFoundError(DocumentError):
    """No document with the requested id exists."""

    def __init__(self, document_type: str, document_id: str) -> None:
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(f"{document_type} not found: {document_id}")


class DuplicateDocumentNumberError(DocumentError):
    """Document number is already taken within its document type."""


class ConcurrentModificationError(DocumentError):
    """Stored document changed between read and write."""


class ReferencedDocumentError(DocumentError):
    """Document cannot be deleted while another document was created from it."""

    def __init__(self, document_type: str, document_id: str, referenced_by: list[str]) -> None:
        self.document_type = document_type
        self.document_id = document_id
        self.referenced_by = referenced_by
        super().__init__(
            f"Cannot delete {document_type} {document_id}: referenced by {', '.join(referenced_by)}"
        )
