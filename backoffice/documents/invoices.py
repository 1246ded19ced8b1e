"""Invoice lifecycle, payments and derived status.

Only explicit user actions are stored: draft, sent, viewed, cancelled.
``paid``, ``partial`` and ``overdue`` are derived on read from the totals,
the due date and the current time by ``get_invoice_status``.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

from backoffice.documents.errors import InvalidStateTransitionError, ValidationError
from backoffice.documents.line_items import ensure_ready_to_issue, update_details
from backoffice.documents.money import ZERO
from backoffice.documents.schema import (
    EffectiveInvoiceStatus,
    InvoiceDocument,
    InvoiceStatus,
    Payment,
    PaymentMethod,
)
from backoffice.documents.totals import calculate_document_totals

logger = logging.getLogger(__name__)

DETAIL_FIELDS = frozenset(
    {"service_address", "billing_address", "payment_terms", "due_date", "notes", "terms_and_conditions"}
)

ALLOWED_FROM: dict[str, tuple[InvoiceStatus, ...]] = {
    "send": ("draft",),
    "mark viewed": ("sent",),
    "cancel": ("draft", "sent", "viewed"),
    "record payment on": ("sent", "viewed"),
}

StatusRule = tuple[EffectiveInvoiceStatus, Callable[[InvoiceDocument, Decimal, Decimal, datetime], bool]]

# Evaluated top to bottom; the first matching rule wins. Paid must be checked
# before overdue, otherwise a late invoice that was settled stays overdue.
STATUS_PRECEDENCE: tuple[StatusRule, ...] = (
    ("cancelled", lambda invoice, total, paid, now: invoice.status == "cancelled"),
    ("draft", lambda invoice, total, paid, now: invoice.status == "draft"),
    ("paid", lambda invoice, total, paid, now: paid >= total),
    ("partial", lambda invoice, total, paid, now: ZERO < paid < total),
    ("overdue", lambda invoice, total, paid, now: now > invoice.due_date and paid < total),
)


def get_invoice_status(invoice: InvoiceDocument, now: datetime) -> EffectiveInvoiceStatus:
    """Compute the effective status of an invoice.

    Args:
        invoice: Invoice to inspect
        now: Current time, injected by the caller

    Returns:
        The first status in STATUS_PRECEDENCE whose rule matches, or the
        stored status when none does
    """
    total = invoice.totals.total
    paid = invoice.totals.amount_paid or ZERO
    for status, applies in STATUS_PRECEDENCE:
        if applies(invoice, total, paid, now):
            return status
    return invoice.status


def is_overpaid(invoice: InvoiceDocument) -> bool:
    """Flag an invoice whose payments exceed its total (negative balance)."""
    return invoice.totals.balance is not None and invoice.totals.balance < 0


def outstanding_balance(invoice: InvoiceDocument) -> Decimal:
    if invoice.totals.balance is not None:
        return invoice.totals.balance
    return invoice.totals.total - (invoice.totals.amount_paid or ZERO)


def _transition(
    invoice: InvoiceDocument, transition: str, now: datetime, update: dict[str, Any]
) -> InvoiceDocument:
    if invoice.status not in ALLOWED_FROM[transition]:
        raise InvalidStateTransitionError("invoice", transition, invoice.status)

    logger.debug(f"Invoice {invoice.document_number}: {invoice.status} -> {update.get('status')}")
    return invoice.model_copy(update={**update, "updated_at": now})


def send_invoice(invoice: InvoiceDocument, now: datetime) -> InvoiceDocument:
    """Issue a draft invoice to the customer.

    Raises:
        InvalidStateTransitionError: If the invoice is not a draft
        ValidationError: If customer or line items are missing
    """
    if invoice.status == "draft":
        ensure_ready_to_issue(invoice)
    return _transition(invoice, "send", now, {"status": "sent", "sent_at": now})


def mark_invoice_viewed(invoice: InvoiceDocument, now: datetime) -> InvoiceDocument:
    return _transition(invoice, "mark viewed", now, {"status": "viewed", "viewed_at": now})


def cancel_invoice(invoice: InvoiceDocument, now: datetime) -> InvoiceDocument:
    """Cancel an invoice that has no payments recorded.

    Raises:
        InvalidStateTransitionError: If already cancelled or money was received
    """
    if invoice.payments:
        raise InvalidStateTransitionError("invoice", "cancel", get_invoice_status(invoice, now))
    return _transition(invoice, "cancel", now, {"status": "cancelled", "cancelled_at": now})


def record_payment(invoice: InvoiceDocument, payment: Payment, now: datetime) -> InvoiceDocument:
    """Append a payment and recompute amount paid and balance.

    Payments are append-only. A payment larger than the outstanding balance is
    rejected so a well-formed invoice never carries a negative balance.

    Raises:
        InvalidStateTransitionError: If the invoice is draft or cancelled
        ValidationError: If the payment id repeats or the amount exceeds the balance
    """
    if invoice.status not in ALLOWED_FROM["record payment on"]:
        raise InvalidStateTransitionError("invoice", "record payment on", invoice.status)
    if any(existing.id == payment.id for existing in invoice.payments):
        raise ValidationError(f"Duplicate payment id: {payment.id}")

    balance = outstanding_balance(invoice)
    if payment.amount > balance:
        raise ValidationError(
            f"Payment of {payment.amount} exceeds balance of {balance} "
            f"on invoice {invoice.document_number}"
        )

    payments = [*invoice.payments, payment]
    totals = calculate_document_totals(invoice.line_items, invoice.tax_rate, payments)
    update: dict[str, Any] = {"payments": payments, "totals": totals}
    if totals.balance is not None and totals.balance <= 0:
        update["paid_at"] = now

    logger.info(
        f"Recorded payment {payment.id} of {payment.amount} on invoice "
        f"{invoice.document_number}, balance {totals.balance}"
    )
    return _transition(invoice, "record payment on", now, update)


def mark_invoice_paid(
    invoice: InvoiceDocument,
    payment_id: str,
    now: datetime,
    method: PaymentMethod = "other",
    reference: str | None = None,
) -> InvoiceDocument:
    """Settle the invoice by recording a payment for the whole remaining balance.

    Raises:
        ValidationError: If nothing is outstanding
    """
    balance = outstanding_balance(invoice)
    if balance <= 0:
        raise ValidationError(f"Invoice {invoice.document_number} has no outstanding balance")
    payment = Payment(
        id=payment_id,
        amount=balance,
        date=now,
        method=method,
        reference=reference,
        notes="Marked as paid",
    )
    return record_payment(invoice, payment, now)


def update_invoice_details(
    invoice: InvoiceDocument, changes: dict[str, Any], now: datetime
) -> InvoiceDocument:
    """Edit addresses, notes, terms or due date of a draft invoice without payments.

    Raises:
        InvalidStateTransitionError: If the invoice was sent or has payments
        ValidationError: If a field outside ``DETAIL_FIELDS`` is changed
    """
    return update_details(invoice, changes, DETAIL_FIELDS, now)
