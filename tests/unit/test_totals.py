"""Unit tests for line item pricing and document totals."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from backoffice.documents.errors import ComputationError, ValidationError
from backoffice.documents.money import round2, to_decimal
from backoffice.documents.schema import LineItem, Payment
from backoffice.documents.totals import (
    calculate_document_totals,
    calculate_line_item_amount,
    calculate_subtotal,
    calculate_tax,
    calculate_taxable_base,
    create_line_item,
    recalculate_line_item_amounts,
    revise_line_item,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def scenario_items() -> list[LineItem]:
    """Two taxable units at 10 and one non-taxable unit at 5."""
    return [
        create_line_item("material", "Pipe", 2, 10, taxable=True, id="li_1"),
        create_line_item("labor", "Fitting", 1, 5, taxable=False, order=1, id="li_2"),
    ]


def _payment(payment_id: str, amount: str) -> Payment:
    return Payment(id=payment_id, amount=Decimal(amount), date=NOW, method="check")


class TestRounding:
    """Test half-away-from-zero rounding to cents."""

    def test_rounds_half_up(self) -> None:
        """Should round 0.005 up to 0.01."""
        assert round2(Decimal("0.005")) == Decimal("0.01")
        assert round2(Decimal("2.675")) == Decimal("2.68")

    def test_rounds_negative_half_away_from_zero(self) -> None:
        """Should round -0.005 to -0.01."""
        assert round2(Decimal("-0.005")) == Decimal("-0.01")

    def test_float_input_uses_decimal_text(self) -> None:
        """Should treat 1.005 as the decimal 1.005, not its binary expansion."""
        assert round2(1.005) == Decimal("1.01")

    def test_rejects_non_finite(self) -> None:
        """Should raise ComputationError for NaN and Infinity."""
        with pytest.raises(ComputationError):
            to_decimal(float("nan"))
        with pytest.raises(ComputationError):
            to_decimal(Decimal("Infinity"))

    def test_rejects_non_numeric_text(self) -> None:
        """Should raise ComputationError for text that is not a number."""
        with pytest.raises(ComputationError):
            to_decimal("twelve")

    def test_rejects_magnitude_beyond_cents(self) -> None:
        """Should raise ComputationError instead of a bare decimal error."""
        with pytest.raises(ComputationError, match="out of range"):
            round2(Decimal("1e30"))


class TestLineItems:
    """Test line item creation and revision."""

    def test_amount_computed_on_creation(self) -> None:
        """Should set amount to quantity times rate rounded to cents."""
        item = create_line_item("labor", "Install", Decimal("1.5"), Decimal("33.333"), id="li_1")

        assert item.amount == Decimal("50.00")
        assert item.amount == calculate_line_item_amount(item.quantity, item.rate)

    def test_supplied_amount_is_overwritten(self) -> None:
        """Should ignore an inconsistent amount passed to the model."""
        item = LineItem(id="li_1", type="material", quantity=3, rate=4, amount=999)

        assert item.amount == Decimal("12.00")

    def test_negative_quantity_rejected(self) -> None:
        """Should raise ValidationError for a negative quantity."""
        with pytest.raises(ValidationError, match="negative"):
            create_line_item("material", "Returned", -1, 10, id="li_1")

    def test_negative_rate_allowed_for_credits(self) -> None:
        """Should accept a negative rate and produce a negative amount."""
        item = create_line_item("material", "Discount", 1, Decimal("-25.50"), id="li_1")

        assert item.amount == Decimal("-25.50")

    def test_non_finite_rate_rejected(self) -> None:
        """Should raise ComputationError for an infinite rate."""
        with pytest.raises(ComputationError):
            create_line_item("material", "Bad", 1, float("inf"), id="li_1")

    def test_revise_recomputes_amount(self) -> None:
        """Should recompute amount when quantity changes."""
        item = create_line_item("labor", "Install", 2, 40, id="li_1")

        revised = revise_line_item(item, quantity=3)

        assert revised.amount == Decimal("120.00")
        assert revised.id == item.id
        assert item.amount == Decimal("80.00")  # original untouched

    def test_revise_cannot_set_amount(self) -> None:
        """Should refuse direct changes to amount."""
        item = create_line_item("labor", "Install", 2, 40, id="li_1")

        with pytest.raises(ValidationError, match="amount"):
            revise_line_item(item, amount=Decimal("1.00"))

    @pytest.mark.parametrize("field", ["taxable", "description", "type", "quantity"])
    def test_revise_rejects_null(self, field: str) -> None:
        """Should refuse to clear a field instead of coercing it."""
        item = create_line_item("material", "Valve", 1, 20, id="li_1")

        with pytest.raises(ValidationError, match=field):
            revise_line_item(item, **{field: None})

    def test_revise_rejects_unknown_type(self) -> None:
        """Should report a bad line item type as an engine validation error."""
        item = create_line_item("material", "Valve", 1, 20, id="li_1")

        with pytest.raises(ValidationError):
            revise_line_item(item, type="rental")

    def test_generated_id(self) -> None:
        """Should assign a line id when none is given."""
        first = create_line_item("labor", "Install", 1, 10)
        second = create_line_item("labor", "Install", 1, 10)

        assert first.id.startswith("line_")
        assert first.id != second.id

    def test_amount_too_large_for_cents(self) -> None:
        """Should fail with ComputationError when the amount cannot be rounded to cents."""
        with pytest.raises(ComputationError, match="out of range"):
            create_line_item("material", "Huge", Decimal("1e20"), Decimal("1e10"), id="li_1")

    def test_recalculate_line_item_amounts(self, scenario_items: list[LineItem]) -> None:
        """Should keep every amount equal to round2(quantity * rate)."""
        items = recalculate_line_item_amounts(scenario_items)

        assert [item.amount for item in items] == [Decimal("20.00"), Decimal("5.00")]


class TestDocumentTotals:
    """Test totals computation."""

    def test_scenario_mixed_taxable_items(self, scenario_items: list[LineItem]) -> None:
        """Should tax only the taxable lines."""
        totals = calculate_document_totals(scenario_items, 10)

        assert calculate_taxable_base(scenario_items) == Decimal("20.00")
        assert totals.subtotal == Decimal("25.00")
        assert totals.tax_amount == Decimal("2.00")
        assert totals.total == Decimal("27.00")
        assert totals.amount_paid is None
        assert totals.balance is None

    def test_tax_rounded_at_its_own_boundary(self) -> None:
        """Should round the tax amount before adding it to the subtotal."""
        items = [create_line_item("material", "Wire", 1, Decimal("10.05"), id="li_1")]

        totals = calculate_document_totals(items, Decimal("8.25"))

        assert calculate_tax(Decimal("10.05"), Decimal("8.25")) == Decimal("0.83")
        assert totals.total == Decimal("10.88")

    def test_empty_document(self) -> None:
        """Should produce zero totals for no line items."""
        totals = calculate_document_totals([], 6)

        assert totals.subtotal == Decimal("0.00")
        assert totals.total == Decimal("0.00")

    def test_payments_fill_amount_paid_and_balance(self, scenario_items: list[LineItem]) -> None:
        """Should compute amount paid and balance when payments are given."""
        totals = calculate_document_totals(
            scenario_items, 10, [_payment("pay_1", "7.00"), _payment("pay_2", "10.00")]
        )

        assert totals.amount_paid == Decimal("17.00")
        assert totals.balance == Decimal("10.00")

    def test_empty_payment_list_sets_full_balance(self, scenario_items: list[LineItem]) -> None:
        """Should set balance to total for an invoice without payments."""
        totals = calculate_document_totals(scenario_items, 10, [])

        assert totals.amount_paid == 0
        assert totals.balance == totals.total

    def test_deterministic(self, scenario_items: list[LineItem]) -> None:
        """Should return equal totals for equal inputs."""
        assert calculate_document_totals(scenario_items, 7) == calculate_document_totals(
            scenario_items, 7
        )

    def test_subtotal_matches_sum_of_amounts(self, scenario_items: list[LineItem]) -> None:
        """Should equal the rounded sum of line amounts."""
        assert calculate_subtotal(scenario_items) == round2(
            sum(item.amount for item in scenario_items)
        )

    def test_negative_tax_rate_rejected(self, scenario_items: list[LineItem]) -> None:
        """Should raise ComputationError for a negative tax rate."""
        with pytest.raises(ComputationError):
            calculate_document_totals(scenario_items, -5)

    def test_nan_tax_rate_rejected(self, scenario_items: list[LineItem]) -> None:
        """Should raise ComputationError for a NaN tax rate."""
        with pytest.raises(ComputationError):
            calculate_document_totals(scenario_items, float("nan"))

    def test_tax_out_of_range_rejected(self, scenario_items: list[LineItem]) -> None:
        """Should raise ComputationError when tax exceeds what cents can represent."""
        with pytest.raises(ComputationError):
            calculate_document_totals(scenario_items, Decimal("1e30"))
