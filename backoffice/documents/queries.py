"""Filtering, sorting and dashboard statistics over document collections.

Status filters, the ``status`` sort key and the stats all use the effective
status (``expired`` estimates, ``partial``/``paid``/``overdue`` invoices), so
they depend on ``now``.
"""

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, TypeVar

from pydantic import AwareDatetime

from backoffice.documents.estimates import get_estimate_status
from backoffice.documents.invoices import get_invoice_status
from backoffice.documents.money import ZERO, round2
from backoffice.documents.schema import (
    BaseDocument,
    DocumentModel,
    EffectiveEstimateStatus,
    EffectiveInvoiceStatus,
    EstimateDocument,
    InvoiceDocument,
    Priority,
    WorkOrderDocument,
    WorkOrderStatus,
)

D = TypeVar("D", bound=BaseDocument)

SortField = Literal["document_number", "customer_name", "created_at", "total", "status", "due_date"]
SortDirection = Literal["asc", "desc"]


class DocumentFilters(DocumentModel):
    """Filters shared by every document type. Unset fields do not filter."""

    search: str | None = None  # matches number, customer name or email
    customer_id: str | None = None
    date_from: AwareDatetime | None = None
    date_to: AwareDatetime | None = None


class EstimateFilters(DocumentFilters):
    status: list[EffectiveEstimateStatus] = []
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None


class WorkOrderFilters(DocumentFilters):
    status: list[WorkOrderStatus] = []
    assigned_to: list[str] = []
    priority: list[Priority] = []


class InvoiceFilters(DocumentFilters):
    status: list[EffectiveInvoiceStatus] = []
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    overdue: bool = False


class DocumentSort(DocumentModel):
    field: SortField = "created_at"
    direction: SortDirection = "desc"


class EstimateStats(DocumentModel):
    total: int = 0
    draft: int = 0
    sent: int = 0  # sent or viewed
    accepted: int = 0
    declined: int = 0
    expired: int = 0
    total_value: Decimal = ZERO
    average_value: Decimal = ZERO
    acceptance_rate: float = 0.0  # percent of issued estimates accepted


class WorkOrderStats(DocumentModel):
    total: int = 0
    scheduled: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0
    total_value: Decimal = ZERO
    average_completion_hours: float = 0.0


class InvoiceStats(DocumentModel):
    total: int = 0
    draft: int = 0
    sent: int = 0  # sent or viewed, not yet partial/paid/overdue
    partial: int = 0
    paid: int = 0
    overdue: int = 0
    total_value: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_outstanding: Decimal = ZERO
    average_days_to_pay: float = 0.0


def _matches_common(document: BaseDocument, filters: DocumentFilters) -> bool:
    if filters.search:
        needle = filters.search.lower()
        haystack = (document.document_number, document.customer_name, document.customer_email)
        if not any(needle in value.lower() for value in haystack):
            return False
    if filters.customer_id and document.customer_id != filters.customer_id:
        return False
    if filters.date_from and document.created_at < filters.date_from:
        return False
    if filters.date_to and document.created_at > filters.date_to:
        return False
    return True


def _within_amount(document: BaseDocument, minimum: Decimal | None, maximum: Decimal | None) -> bool:
    if minimum is not None and document.totals.total < minimum:
        return False
    if maximum is not None and document.totals.total > maximum:
        return False
    return True


def _sort(
    documents: list[D],
    sort: DocumentSort | None,
    status_of: Callable[[D], str],
    due_of: Callable[[D], Any],
) -> list[D]:
    if sort is None:
        return documents

    def value_of(document: D) -> Any:
        if sort.field == "total":
            return document.totals.total
        if sort.field == "status":
            return status_of(document)
        if sort.field == "due_date":
            return due_of(document)
        if sort.field == "created_at":
            return document.created_at
        return getattr(document, sort.field).lower()

    # Missing values sort last in both directions
    present = [doc for doc in documents if value_of(doc) is not None]
    missing = [doc for doc in documents if value_of(doc) is None]
    present.sort(key=value_of, reverse=sort.direction == "desc")
    return present + missing


def filter_estimates(
    estimates: Iterable[EstimateDocument],
    now: datetime,
    filters: EstimateFilters | None = None,
    sort: DocumentSort | None = None,
) -> list[EstimateDocument]:
    """Select and order estimates. ``due_date`` sorts by ``valid_until``."""
    filters = filters or EstimateFilters()
    selected = [
        estimate
        for estimate in estimates
        if _matches_common(estimate, filters)
        and (not filters.status or get_estimate_status(estimate, now) in filters.status)
        and _within_amount(estimate, filters.min_amount, filters.max_amount)
    ]
    return _sort(
        selected, sort, lambda e: get_estimate_status(e, now), lambda e: e.valid_until
    )


def filter_work_orders(
    work_orders: Iterable[WorkOrderDocument],
    now: datetime,
    filters: WorkOrderFilters | None = None,
    sort: DocumentSort | None = None,
) -> list[WorkOrderDocument]:
    """Select and order work orders. ``due_date`` sorts by ``scheduled_date``.

    ``assigned_to`` matches work orders assigned to any of the given members.
    """
    filters = filters or WorkOrderFilters()
    selected = [
        work_order
        for work_order in work_orders
        if _matches_common(work_order, filters)
        and (not filters.status or work_order.status in filters.status)
        and (not filters.priority or work_order.priority in filters.priority)
        and (
            not filters.assigned_to
            or any(member in work_order.assigned_to for member in filters.assigned_to)
        )
    ]
    return _sort(selected, sort, lambda wo: wo.status, lambda wo: wo.scheduled_date)


def filter_invoices(
    invoices: Iterable[InvoiceDocument],
    now: datetime,
    filters: InvoiceFilters | None = None,
    sort: DocumentSort | None = None,
) -> list[InvoiceDocument]:
    filters = filters or InvoiceFilters()
    selected = []
    for invoice in invoices:
        status = get_invoice_status(invoice, now)
        if not _matches_common(invoice, filters):
            continue
        if filters.status and status not in filters.status:
            continue
        if filters.overdue and status != "overdue":
            continue
        if _within_amount(invoice, filters.min_amount, filters.max_amount):
            selected.append(invoice)
    return _sort(selected, sort, lambda inv: get_invoice_status(inv, now), lambda inv: inv.due_date)


def _average(total: Decimal, count: int) -> Decimal:
    return round2(total / count) if count else ZERO


def estimate_stats(estimates: Sequence[EstimateDocument], now: datetime) -> EstimateStats:
    """Dashboard counts and values for estimates.

    Counts use the effective status, so an expired estimate is counted as
    expired and not as draft or sent. The acceptance rate is accepted over
    all estimates that reached the customer (sent, viewed, accepted,
    declined).
    """
    statuses = [get_estimate_status(estimate, now) for estimate in estimates]
    sent = sum(1 for status in statuses if status in ("sent", "viewed"))
    accepted = statuses.count("accepted")
    declined = statuses.count("declined")
    total_value = round2(sum((e.totals.total for e in estimates), ZERO))
    decided = sent + accepted + declined
    return EstimateStats(
        total=len(estimates),
        draft=statuses.count("draft"),
        sent=sent,
        accepted=accepted,
        declined=declined,
        expired=statuses.count("expired"),
        total_value=total_value,
        average_value=_average(total_value, len(estimates)),
        acceptance_rate=round(accepted / decided * 100, 2) if decided else 0.0,
    )


def work_order_stats(work_orders: Sequence[WorkOrderDocument]) -> WorkOrderStats:
    """Dashboard counts for work orders; completion time is start to finish in hours."""
    durations = [
        (wo.completed_at - wo.started_at).total_seconds() / 3600
        for wo in work_orders
        if wo.status == "completed" and wo.started_at and wo.completed_at
    ]
    return WorkOrderStats(
        total=len(work_orders),
        scheduled=sum(1 for wo in work_orders if wo.status == "scheduled"),
        in_progress=sum(1 for wo in work_orders if wo.status == "in_progress"),
        completed=sum(1 for wo in work_orders if wo.status == "completed"),
        cancelled=sum(1 for wo in work_orders if wo.status == "cancelled"),
        total_value=round2(sum((wo.totals.total for wo in work_orders), ZERO)),
        average_completion_hours=round(sum(durations) / len(durations), 2) if durations else 0.0,
    )


def invoice_stats(invoices: Sequence[InvoiceDocument], now: datetime) -> InvoiceStats:
    """Dashboard counts and receivables for invoices.

    Cancelled invoices are counted in ``total`` only; they contribute
    nothing to value, paid or outstanding.
    """
    statuses = [get_invoice_status(invoice, now) for invoice in invoices]
    active = [inv for inv, status in zip(invoices, statuses) if status != "cancelled"]
    total_value = round2(sum((inv.totals.total for inv in active), ZERO))
    total_paid = round2(sum((inv.totals.amount_paid or ZERO for inv in active), ZERO))

    days_to_pay = [
        (inv.paid_at - inv.created_at).total_seconds() / 86400
        for inv, status in zip(invoices, statuses)
        if status == "paid" and inv.paid_at
    ]
    return InvoiceStats(
        total=len(invoices),
        draft=statuses.count("draft"),
        sent=sum(1 for status in statuses if status in ("sent", "viewed")),
        partial=statuses.count("partial"),
        paid=statuses.count("paid"),
        overdue=statuses.count("overdue"),
        total_value=total_value,
        total_paid=total_paid,
        total_outstanding=round2(total_value - total_paid),
        average_days_to_pay=round(sum(days_to_pay) / len(days_to_pay), 2) if days_to_pay else 0.0,
    )
