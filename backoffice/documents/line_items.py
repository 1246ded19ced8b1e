"""Line item editing shared by all document types.

Every function returns a replacement document with totals recomputed and
``updated_at`` set to the injected ``now``. Invoice totals always include the
recorded payments so ``amount_paid`` and ``balance`` stay consistent.
"""

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from backoffice.documents.errors import InvalidStateTransitionError, ValidationError
from backoffice.documents.money import to_decimal
from backoffice.documents.schema import (
    BaseDocument,
    EstimateDocument,
    InvoiceDocument,
    LineItem,
    WorkOrderDocument,
)
from backoffice.documents.totals import calculate_document_totals, revise_line_item

D = TypeVar("D", bound=BaseDocument)


def document_label(document: BaseDocument) -> str:
    """Human-readable document type used in error messages and logs."""
    if isinstance(document, EstimateDocument):
        return "estimate"
    if isinstance(document, WorkOrderDocument):
        return "work order"
    if isinstance(document, InvoiceDocument):
        return "invoice"
    return "document"


def is_editable(document: BaseDocument) -> bool:
    """Whether line items and tax rate may still change.

    Estimates are editable while in draft, work orders until completed or
    cancelled, invoices while in draft with no payments recorded.
    """
    if isinstance(document, EstimateDocument):
        return document.status == "draft"
    if isinstance(document, WorkOrderDocument):
        return document.status not in ("completed", "cancelled")
    if isinstance(document, InvoiceDocument):
        return document.status == "draft" and not document.payments
    return False


def ensure_ready_to_issue(document: BaseDocument) -> None:
    """Check the identity fields a document needs before it leaves draft.

    Raises:
        ValidationError: If the customer or all line items are missing
    """
    missing = []
    if not document.customer_id.strip():
        missing.append("customer id")
    if not document.customer_name.strip():
        missing.append("customer name")
    if not document.line_items:
        missing.append("at least one line item")
    if missing:
        raise ValidationError(
            f"{document_label(document).capitalize()} {document.document_number} "
            f"is missing: {', '.join(missing)}"
        )


def with_line_items(document: D, line_items: Sequence[LineItem], now: datetime) -> D:
    """Replace the line items of ``document`` and recompute its totals."""
    payments = document.payments if isinstance(document, InvoiceDocument) else None
    totals = calculate_document_totals(line_items, document.tax_rate, payments)
    return document.model_copy(
        update={"line_items": list(line_items), "totals": totals, "updated_at": now}
    )


def _ensure_editable(document: BaseDocument) -> None:
    if not is_editable(document):
        raise InvalidStateTransitionError(
            document_label(document), "edit line items of", str(getattr(document, "status", ""))
        )


def add_line_item(document: D, item: LineItem, now: datetime) -> D:
    """Append a line item.

    Raises:
        InvalidStateTransitionError: If the document is no longer editable
        ValidationError: If a line item with the same id exists
    """
    _ensure_editable(document)
    if any(existing.id == item.id for existing in document.line_items):
        raise ValidationError(f"Duplicate line item id: {item.id}")
    return with_line_items(document, [*document.line_items, item], now)


def update_line_item(document: D, item_id: str, changes: dict[str, Any], now: datetime) -> D:
    """Apply ``changes`` to one line item, recomputing its amount."""
    _ensure_editable(document)
    found = False
    items = []
    for item in document.line_items:
        if item.id == item_id:
            items.append(revise_line_item(item, **changes))
            found = True
        else:
            items.append(item)
    if not found:
        raise ValidationError(f"Line item not found: {item_id}")
    return with_line_items(document, items, now)


def remove_line_item(document: D, item_id: str, now: datetime) -> D:
    _ensure_editable(document)
    items = [item for item in document.line_items if item.id != item_id]
    if len(items) == len(document.line_items):
        raise ValidationError(f"Line item not found: {item_id}")
    return with_line_items(document, items, now)


def reorder_line_items(document: D, ordered_ids: Sequence[str], now: datetime) -> D:
    """Put line items in the order of ``ordered_ids`` and renumber ``order``.

    Raises:
        ValidationError: If ``ordered_ids`` is not a permutation of the current ids
    """
    _ensure_editable(document)
    by_id = {item.id: item for item in document.line_items}
    if sorted(ordered_ids) != sorted(by_id):
        raise ValidationError("Reorder must list every line item exactly once")
    items = [by_id[item_id].model_copy(update={"order": index}) for index, item_id in enumerate(ordered_ids)]
    return with_line_items(document, items, now)


def set_tax_rate(document: D, tax_rate: Decimal | int | float, now: datetime) -> D:
    """Change the tax rate (percent) and recompute totals."""
    _ensure_editable(document)
    rate = to_decimal(tax_rate, field="tax_rate")
    if rate < 0:
        raise ValidationError(f"Tax rate cannot be negative: {rate}")
    updated = document.model_copy(update={"tax_rate": rate})
    return with_line_items(updated, updated.line_items, now)


def update_details(document: D, changes: dict[str, Any], allowed: frozenset[str], now: datetime) -> D:
    """Change descriptive fields of an editable document.

    Only names in ``allowed`` may appear in ``changes``; status, totals,
    payments and cross-reference fields change through their own operations.

    Raises:
        InvalidStateTransitionError: If the document is no longer editable
        ValidationError: If a field is not editable or a value is invalid
    """
    _ensure_editable(document)
    refused = sorted(changes.keys() - allowed)
    if refused:
        raise ValidationError(
            f"Cannot update {document_label(document)} fields: {', '.join(refused)}"
        )
    try:
        return type(document).model_validate(
            {**document.model_dump(), **changes, "updated_at": now}
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {document_label(document)} details: {e}") from e
