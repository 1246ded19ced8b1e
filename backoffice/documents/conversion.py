"""Conversion pipeline: estimate -> work order -> invoice.

Converters are pure. They return the field payload of the new document;
identity (``id``), ``created_by`` and timestamps are added by the caller. The
source document must then be updated with the matching ``mark_*`` function,
which refuses a second conversion from the same source.

An estimate is converted at most once in total: either to a work order or
directly to an invoice.
"""

from datetime import date, datetime, timedelta
from typing import Any

from backoffice.documents.errors import AlreadyConvertedError, InvalidStateTransitionError
from backoffice.documents.money import ZERO
from backoffice.documents.schema import EstimateDocument, LineItem, WorkOrderDocument

DEFAULT_PAYMENT_TERMS = "Net 30"
DEFAULT_DUE_DAYS = 30


def _copy_line_items(line_items: list[LineItem]) -> list[LineItem]:
    return [item.model_copy(deep=True) for item in line_items]


def _ensure_estimate_convertible(estimate: EstimateDocument) -> None:
    if estimate.status != "accepted":
        raise InvalidStateTransitionError("estimate", "convert", estimate.status)
    target = estimate.converted_to_work_order_id or estimate.converted_to_invoice_id
    if target is not None:
        raise AlreadyConvertedError(estimate.id, target)


def _ensure_work_order_convertible(work_order: WorkOrderDocument) -> None:
    if work_order.status != "completed":
        raise InvalidStateTransitionError("work order", "convert", work_order.status)
    if work_order.converted_to_invoice_id is not None:
        raise AlreadyConvertedError(work_order.id, work_order.converted_to_invoice_id)


def convert_estimate_to_work_order(
    estimate: EstimateDocument,
    work_order_number: str,
    scheduled_date: date | None = None,
    assigned_to: list[str] | None = None,
) -> dict[str, Any]:
    """Build a work order payload from an accepted estimate.

    The work order starts ``scheduled`` when a date is given, ``draft``
    otherwise. Line items are deep copies; totals are carried verbatim.

    Raises:
        InvalidStateTransitionError: If the estimate is not accepted
        AlreadyConvertedError: If the estimate was converted before
    """
    _ensure_estimate_convertible(estimate)
    return {
        "document_number": work_order_number,
        "estimate_id": estimate.id,
        "customer_id": estimate.customer_id,
        "customer_name": estimate.customer_name,
        "customer_email": estimate.customer_email,
        "customer_phone": estimate.customer_phone,
        "service_address": estimate.service_address,
        "line_items": _copy_line_items(estimate.line_items),
        "status": "scheduled" if scheduled_date else "draft",
        "scheduled_date": scheduled_date,
        "assigned_to": list(assigned_to or []),
        "tax_rate": estimate.tax_rate,
        "totals": estimate.totals.model_copy(),
        "internal_notes": f"Created from estimate {estimate.document_number}",
        "customer_notes": estimate.notes,
        "priority": "normal",
    }


def _invoice_payload(
    source: EstimateDocument | WorkOrderDocument,
    invoice_number: str,
    now: datetime,
    payment_terms: str,
    due_date: datetime | None,
    due_days: int,
) -> dict[str, Any]:
    return {
        "document_number": invoice_number,
        "customer_id": source.customer_id,
        "customer_name": source.customer_name,
        "customer_email": source.customer_email,
        "customer_phone": source.customer_phone,
        "service_address": source.service_address,
        "line_items": _copy_line_items(source.line_items),
        "status": "draft",
        "tax_rate": source.tax_rate,
        "totals": source.totals.model_copy(
            update={"amount_paid": ZERO, "balance": source.totals.total}
        ),
        "payment_terms": payment_terms,
        "due_date": due_date or now + timedelta(days=due_days),
        "payments": [],
    }


def convert_work_order_to_invoice(
    work_order: WorkOrderDocument,
    invoice_number: str,
    now: datetime,
    payment_terms: str = DEFAULT_PAYMENT_TERMS,
    due_date: datetime | None = None,
    due_days: int = DEFAULT_DUE_DAYS,
) -> dict[str, Any]:
    """Build an invoice payload from a completed work order.

    The invoice starts in draft with no payments, ``amount_paid = 0`` and
    ``balance = total``. It is due ``due_days`` after ``now`` unless a due
    date is given.

    Raises:
        InvalidStateTransitionError: If the work order is not completed
        AlreadyConvertedError: If the work order was invoiced before
    """
    _ensure_work_order_convertible(work_order)
    payload = _invoice_payload(work_order, invoice_number, now, payment_terms, due_date, due_days)
    payload.update(
        work_order_id=work_order.id,
        estimate_id=work_order.estimate_id,
        notes=work_order.customer_notes,
    )
    return payload


def convert_estimate_to_invoice(
    estimate: EstimateDocument,
    invoice_number: str,
    now: datetime,
    payment_terms: str = DEFAULT_PAYMENT_TERMS,
    due_date: datetime | None = None,
    due_days: int = DEFAULT_DUE_DAYS,
) -> dict[str, Any]:
    """Build an invoice payload directly from an accepted estimate.

    Used when the job needs no work order step.

    Raises:
        InvalidStateTransitionError: If the estimate is not accepted
        AlreadyConvertedError: If the estimate was converted before
    """
    _ensure_estimate_convertible(estimate)
    payload = _invoice_payload(estimate, invoice_number, now, payment_terms, due_date, due_days)
    payload.update(
        estimate_id=estimate.id,
        billing_address=estimate.billing_address,
        notes=estimate.notes,
        terms_and_conditions=estimate.terms_and_conditions,
    )
    return payload


def mark_estimate_converted_to_work_order(
    estimate: EstimateDocument, work_order_id: str, now: datetime
) -> EstimateDocument:
    """Record the forward reference on the source estimate.

    Raises:
        AlreadyConvertedError: If the estimate already points at a target
    """
    _ensure_estimate_convertible(estimate)
    return estimate.model_copy(
        update={"converted_to_work_order_id": work_order_id, "updated_at": now}
    )


def mark_estimate_converted_to_invoice(
    estimate: EstimateDocument, invoice_id: str, now: datetime
) -> EstimateDocument:
    _ensure_estimate_convertible(estimate)
    return estimate.model_copy(update={"converted_to_invoice_id": invoice_id, "updated_at": now})


def mark_work_order_converted(
    work_order: WorkOrderDocument, invoice_id: str, now: datetime
) -> WorkOrderDocument:
    _ensure_work_order_convertible(work_order)
    return work_order.model_copy(update={"converted_to_invoice_id": invoice_id, "updated_at": now})
