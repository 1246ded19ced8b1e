"""Unit tests for the estimate -> work order -> invoice conversion pipeline."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from backoffice.documents.conversion import (
    convert_estimate_to_invoice,
    convert_estimate_to_work_order,
    convert_work_order_to_invoice,
    mark_estimate_converted_to_invoice,
    mark_estimate_converted_to_work_order,
    mark_work_order_converted,
)
from backoffice.documents.errors import AlreadyConvertedError, InvalidStateTransitionError
from backoffice.documents.schema import EstimateDocument, InvoiceDocument, WorkOrderDocument
from backoffice.documents.totals import calculate_document_totals, create_line_item

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def accepted_estimate() -> EstimateDocument:
    items = [
        create_line_item("equipment", "Mini split", 1, 2400, id="li_1"),
        create_line_item("labor", "Install", 10, 85, taxable=False, order=1, id="li_2"),
    ]
    return EstimateDocument(
        id="est_1",
        document_number="EST-0007",
        customer_id="cust_1",
        customer_name="Dana Ortiz",
        customer_email="dana@example.com",
        customer_phone="555-0100",
        service_address="12 Elm St",
        billing_address="PO Box 9",
        line_items=items,
        tax_rate=Decimal("6"),
        totals=calculate_document_totals(items, 6),
        status="accepted",
        notes="Side yard access",
        terms_and_conditions="50% deposit",
        valid_until=NOW + timedelta(days=30),
        accepted_at=NOW,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def completed_work_order(accepted_estimate: EstimateDocument) -> WorkOrderDocument:
    payload = convert_estimate_to_work_order(accepted_estimate, "WO-0003", date(2024, 3, 5))
    return WorkOrderDocument.model_validate(
        {**payload, "id": "wo_1", "status": "completed", "created_at": NOW, "updated_at": NOW}
    )


class TestEstimateToWorkOrder:
    """Test work order payloads built from estimates."""

    def test_copies_customer_and_pricing(self, accepted_estimate: EstimateDocument) -> None:
        """Should carry customer, line items, tax rate and totals over unchanged."""
        payload = convert_estimate_to_work_order(accepted_estimate, "WO-0003")

        assert payload["estimate_id"] == "est_1"
        assert payload["customer_name"] == "Dana Ortiz"
        assert payload["service_address"] == "12 Elm St"
        assert payload["line_items"] == accepted_estimate.line_items
        assert payload["tax_rate"] == accepted_estimate.tax_rate
        assert payload["totals"] == accepted_estimate.totals
        assert payload["customer_notes"] == "Side yard access"

    def test_line_items_are_copies(self, accepted_estimate: EstimateDocument) -> None:
        """Should not share line item objects with the source."""
        payload = convert_estimate_to_work_order(accepted_estimate, "WO-0003")

        assert all(
            copied is not original
            for copied, original in zip(payload["line_items"], accepted_estimate.line_items)
        )

    def test_status_depends_on_schedule(self, accepted_estimate: EstimateDocument) -> None:
        """Should start scheduled only when a date is given."""
        unscheduled = convert_estimate_to_work_order(accepted_estimate, "WO-0003")
        scheduled = convert_estimate_to_work_order(
            accepted_estimate, "WO-0003", date(2024, 3, 5), ["tm_1"]
        )

        assert unscheduled["status"] == "draft"
        assert scheduled["status"] == "scheduled"
        assert scheduled["assigned_to"] == ["tm_1"]

    @pytest.mark.parametrize("status", ["draft", "sent", "viewed", "declined"])
    def test_requires_accepted(self, accepted_estimate: EstimateDocument, status: str) -> None:
        """Should reject estimates that were not accepted."""
        estimate = accepted_estimate.model_copy(update={"status": status})

        with pytest.raises(InvalidStateTransitionError):
            convert_estimate_to_work_order(estimate, "WO-0003")

    def test_converted_once(self, accepted_estimate: EstimateDocument) -> None:
        """Should refuse a second conversion from the same estimate."""
        converted = mark_estimate_converted_to_work_order(accepted_estimate, "wo_1", NOW)

        with pytest.raises(AlreadyConvertedError) as exc_info:
            convert_estimate_to_work_order(converted, "WO-0004")
        with pytest.raises(AlreadyConvertedError):
            mark_estimate_converted_to_work_order(converted, "wo_2", NOW)

        assert exc_info.value.target_id == "wo_1"

    def test_direct_invoice_blocks_work_order(self, accepted_estimate: EstimateDocument) -> None:
        """Should treat an estimate invoiced directly as converted."""
        invoiced = mark_estimate_converted_to_invoice(accepted_estimate, "inv_1", NOW)

        with pytest.raises(AlreadyConvertedError):
            mark_estimate_converted_to_work_order(invoiced, "wo_1", NOW)


class TestToInvoice:
    """Test invoice payloads built from work orders and estimates."""

    def test_work_order_invoice_fields(self, completed_work_order: WorkOrderDocument) -> None:
        """Should start unpaid with the default terms and a 30-day due date."""
        payload = convert_work_order_to_invoice(completed_work_order, "INV-0002", NOW)
        invoice = InvoiceDocument.model_validate(
            {**payload, "id": "inv_1", "created_at": NOW, "updated_at": NOW}
        )

        assert invoice.work_order_id == "wo_1"
        assert invoice.estimate_id == "est_1"
        assert invoice.status == "draft"
        assert invoice.payment_terms == "Net 30"
        assert invoice.due_date == NOW + timedelta(days=30)
        assert invoice.payments == []
        assert invoice.totals.amount_paid == Decimal("0.00")
        assert invoice.totals.balance == completed_work_order.totals.total
        assert invoice.totals.total == completed_work_order.totals.total

    def test_explicit_terms_and_due_date(self, completed_work_order: WorkOrderDocument) -> None:
        """Should use the given payment terms and due date."""
        due = NOW + timedelta(days=15)

        payload = convert_work_order_to_invoice(
            completed_work_order, "INV-0002", NOW, payment_terms="Net 15", due_date=due
        )

        assert payload["payment_terms"] == "Net 15"
        assert payload["due_date"] == due

    def test_work_order_must_be_completed(self, completed_work_order: WorkOrderDocument) -> None:
        """Should reject invoicing unfinished work."""
        in_progress = completed_work_order.model_copy(update={"status": "in_progress"})

        with pytest.raises(InvalidStateTransitionError):
            convert_work_order_to_invoice(in_progress, "INV-0002", NOW)

    def test_work_order_invoiced_once(self, completed_work_order: WorkOrderDocument) -> None:
        """Should refuse to invoice a work order twice."""
        invoiced = mark_work_order_converted(completed_work_order, "inv_1", NOW)

        with pytest.raises(AlreadyConvertedError):
            convert_work_order_to_invoice(invoiced, "INV-0003", NOW)

    def test_estimate_invoice_fields(self, accepted_estimate: EstimateDocument) -> None:
        """Should carry billing address and terms from the estimate."""
        payload = convert_estimate_to_invoice(accepted_estimate, "INV-0002", NOW)

        assert payload["estimate_id"] == "est_1"
        assert "work_order_id" not in payload
        assert payload["billing_address"] == "PO Box 9"
        assert payload["terms_and_conditions"] == "50% deposit"
        assert payload["totals"].balance == accepted_estimate.totals.total

    def test_work_order_blocks_direct_invoice(self, accepted_estimate: EstimateDocument) -> None:
        """Should refuse a direct invoice after a work order was created."""
        converted = mark_estimate_converted_to_work_order(accepted_estimate, "wo_1", NOW)

        with pytest.raises(AlreadyConvertedError):
            convert_estimate_to_invoice(converted, "INV-0002", NOW)
