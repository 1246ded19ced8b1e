"""Unit tests for CSV export."""

import csv
import io
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from backoffice.documents.schema import (
    EstimateDocument,
    InvoiceDocument,
    Payment,
    WorkOrderDocument,
)
from backoffice.documents.totals import calculate_document_totals, create_line_item
from backoffice.export.csv_export import (
    ESTIMATE_COLUMNS,
    INVOICE_COLUMNS,
    WORK_ORDER_COLUMNS,
    export_estimates_to_csv,
    export_invoices_to_csv,
    export_work_orders_to_csv,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def _rows(content: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(content)))


def test_export_invoices_header_and_status() -> None:
    """Test that invoices export with derived status, paid and balance."""
    items = [create_line_item("labor", "Repair", 1, 1000, id="li_1")]
    payments = [Payment(id="pay_1", amount=Decimal("250"), date=NOW)]
    invoice = InvoiceDocument(
        id="inv_1",
        document_number="INV-0001",
        customer_id="cust_1",
        customer_name='Ortiz, Dana "DO"',
        line_items=items,
        tax_rate=Decimal("10"),
        totals=calculate_document_totals(items, 10, payments),
        payments=payments,
        status="sent",
        due_date=NOW + timedelta(days=30),
        created_at=NOW,
        updated_at=NOW,
    )

    content = export_invoices_to_csv([invoice], NOW)
    rows = _rows(content)

    assert content.splitlines()[0] == ",".join(f'"{column}"' for column in INVOICE_COLUMNS)
    assert rows[1] == [
        "INV-0001",
        'Ortiz, Dana "DO"',
        "partial",
        "2024-03-01",
        "2024-03-31",
        "1000.00",
        "100.00",
        "1100.00",
        "250.00",
        "850.00",
    ]


def test_export_estimates_marks_expired() -> None:
    """Test that a lapsed estimate exports as expired."""
    estimate = EstimateDocument(
        id="est_1",
        document_number="EST-0001",
        customer_name="Lee",
        status="sent",
        valid_until=NOW - timedelta(days=1),
        created_at=NOW - timedelta(days=31),
        updated_at=NOW,
    )

    rows = _rows(export_estimates_to_csv([estimate], NOW))

    assert rows[0] == list(ESTIMATE_COLUMNS)
    assert rows[1][2] == "expired"
    assert rows[1][5:] == ["0.00", "0.00", "0.00"]


def test_export_work_orders_joins_assignees() -> None:
    """Test that assignees share one cell and a missing date stays blank."""
    scheduled = WorkOrderDocument(
        id="wo_1",
        document_number="WO-0001",
        customer_name="Kim",
        status="scheduled",
        scheduled_date=date(2024, 3, 5),
        assigned_to=["tm_1", "tm_2"],
        priority="high",
        created_at=NOW,
        updated_at=NOW,
    )
    draft = scheduled.model_copy(
        update={"id": "wo_2", "document_number": "WO-0002", "status": "draft",
                "scheduled_date": None, "assigned_to": []}
    )

    rows = _rows(export_work_orders_to_csv([scheduled, draft]))

    assert rows[0] == list(WORK_ORDER_COLUMNS)
    assert rows[1][4:7] == ["high", "2024-03-05", "tm_1; tm_2"]
    assert rows[2][5:7] == ["", ""]


def test_export_empty_list_has_header_only() -> None:
    """Test that exporting nothing yields only the header row."""
    content = export_invoices_to_csv([], NOW)

    assert content.count("\n") == 1
