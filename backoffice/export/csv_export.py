"""CSV export of document lists.

Every cell is quoted, dates are ISO ``YYYY-MM-DD`` and amounts carry two
decimals. The status column holds the effective status at ``now``.
"""

import csv
import io
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from decimal import Decimal

from backoffice.documents.estimates import get_estimate_status
from backoffice.documents.invoices import get_invoice_status
from backoffice.documents.money import ZERO
from backoffice.documents.schema import EstimateDocument, InvoiceDocument, WorkOrderDocument

ESTIMATE_COLUMNS = (
    "Document Number",
    "Customer",
    "Status",
    "Date",
    "Valid Until",
    "Subtotal",
    "Tax",
    "Total",
)

WORK_ORDER_COLUMNS = (
    "Document Number",
    "Customer",
    "Status",
    "Date",
    "Priority",
    "Scheduled Date",
    "Assigned To",
    "Subtotal",
    "Tax",
    "Total",
)

INVOICE_COLUMNS = (
    "Invoice Number",
    "Customer",
    "Status",
    "Issue Date",
    "Due Date",
    "Subtotal",
    "Tax",
    "Total",
    "Paid",
    "Balance",
)


def _day(value: datetime | date | None) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _money(value: Decimal | None) -> str:
    return f"{(value if value is not None else ZERO):.2f}"


def _write(columns: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(columns)
    writer.writerows(rows)
    return output.getvalue()


def export_estimates_to_csv(estimates: Iterable[EstimateDocument], now: datetime) -> str:
    return _write(
        ESTIMATE_COLUMNS,
        (
            [
                est.document_number,
                est.customer_name,
                get_estimate_status(est, now),
                _day(est.created_at),
                _day(est.valid_until),
                _money(est.totals.subtotal),
                _money(est.totals.tax_amount),
                _money(est.totals.total),
            ]
            for est in estimates
        ),
    )


def export_work_orders_to_csv(work_orders: Iterable[WorkOrderDocument]) -> str:
    """Assignees are joined with ``"; "`` into one cell."""
    return _write(
        WORK_ORDER_COLUMNS,
        (
            [
                wo.document_number,
                wo.customer_name,
                wo.status,
                _day(wo.created_at),
                wo.priority,
                _day(wo.scheduled_date),
                "; ".join(wo.assigned_to),
                _money(wo.totals.subtotal),
                _money(wo.totals.tax_amount),
                _money(wo.totals.total),
            ]
            for wo in work_orders
        ),
    )


def export_invoices_to_csv(invoices: Iterable[InvoiceDocument], now: datetime) -> str:
    return _write(
        INVOICE_COLUMNS,
        (
            [
                inv.document_number,
                inv.customer_name,
                get_invoice_status(inv, now),
                _day(inv.created_at),
                _day(inv.due_date),
                _money(inv.totals.subtotal),
                _money(inv.totals.tax_amount),
                _money(inv.totals.total),
                _money(inv.totals.amount_paid),
                _money(inv.totals.balance),
            ]
            for inv in invoices
        ),
    )
