"""Line item pricing and document totals.

Rounding is applied independently at each boundary (line amount, subtotal,
taxable base, tax, total, balance) rather than once at the end, so totals
reproduce the figures customers see on every printed document.
"""

import uuid
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from backoffice.documents.errors import ComputationError, ValidationError
from backoffice.documents.money import round2, to_decimal
from backoffice.documents.schema import DocumentTotals, LineItem, LineItemType, Payment


def calculate_line_item_amount(quantity: Decimal | int | float, rate: Decimal | int | float) -> Decimal:
    """Calculate ``round2(quantity * rate)``."""
    return round2(to_decimal(quantity, field="quantity") * to_decimal(rate, field="rate"))


def create_line_item(
    type: LineItemType,
    description: str,
    quantity: Decimal | int | float,
    rate: Decimal | int | float,
    taxable: bool = True,
    order: int = 0,
    id: str | None = None,
) -> LineItem:
    """Create a line item with its amount computed immediately.

    Negative quantities are rejected. Negative rates are accepted so that
    credits and discounts can be written as ordinary lines. A ``line_`` id is
    generated when none is given.

    Raises:
        ValidationError: If quantity is negative or a field has the wrong type
        ComputationError: If quantity, rate or amount is not a usable number
    """
    qty = to_decimal(quantity, field="quantity")
    unit_rate = to_decimal(rate, field="rate")
    if qty < 0:
        raise ValidationError(f"Line item quantity cannot be negative: {qty}")

    try:
        return LineItem(
            id=id or f"line_{uuid.uuid4().hex}",
            type=type,
            description=description,
            quantity=qty,
            rate=unit_rate,
            taxable=taxable,
            order=order,
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid line item: {e}") from e


def revise_line_item(item: LineItem, **changes: object) -> LineItem:
    """Return a copy of ``item`` with ``changes`` applied and amount recomputed.

    ``id`` and ``amount`` cannot be changed, and no field can be set to None.

    Raises:
        ValidationError: If changes touch id/amount, clear a field, or make quantity negative
    """
    forbidden = {"id", "amount"} & changes.keys()
    if forbidden:
        raise ValidationError(f"Line item fields cannot be changed: {', '.join(sorted(forbidden))}")
    cleared = sorted(name for name, value in changes.items() if value is None)
    if cleared:
        raise ValidationError(f"Line item fields cannot be null: {', '.join(cleared)}")

    merged: dict[str, Any] = {**item.model_dump(), **changes}
    return create_line_item(
        type=merged["type"],
        description=merged["description"],
        quantity=merged["quantity"],
        rate=merged["rate"],
        taxable=merged["taxable"],
        order=merged["order"],
        id=item.id,
    )


def recalculate_line_item_amounts(line_items: Iterable[LineItem]) -> list[LineItem]:
    """Rebuild every line item so its amount matches quantity and rate."""
    return [revise_line_item(item) for item in line_items]


def calculate_subtotal(line_items: Iterable[LineItem]) -> Decimal:
    return round2(sum((item.amount for item in line_items), Decimal("0")))


def calculate_taxable_base(line_items: Iterable[LineItem]) -> Decimal:
    return round2(sum((item.amount for item in line_items if item.taxable), Decimal("0")))


def calculate_tax(taxable_base: Decimal, tax_rate: Decimal | int | float) -> Decimal:
    """Tax on ``taxable_base`` at ``tax_rate`` percent."""
    rate = to_decimal(tax_rate, field="tax_rate")
    return round2(taxable_base * rate / Decimal(100))


def calculate_document_totals(
    line_items: Sequence[LineItem],
    tax_rate: Decimal | int | float,
    payments: Sequence[Payment] | None = None,
) -> DocumentTotals:
    """Compute document totals from line items, tax rate and payments.

    Pure and deterministic. ``amount_paid`` and ``balance`` are only filled
    in when a payment list is given; invoices always pass one, even empty.

    Args:
        line_items: Priced lines of the document
        tax_rate: Tax rate in percent (6 = 6%)
        payments: Payments recorded against an invoice

    Returns:
        DocumentTotals with every figure rounded to cents

    Raises:
        ComputationError: If the tax rate or any amount is not finite
    """
    rate = to_decimal(tax_rate, field="tax_rate")
    if rate < 0:
        raise ComputationError(f"tax_rate cannot be negative: {rate}")

    for item in line_items:
        to_decimal(item.amount, field=f"amount of line item {item.id}")

    subtotal = calculate_subtotal(line_items)
    tax_amount = calculate_tax(calculate_taxable_base(line_items), rate)
    total = round2(subtotal + tax_amount)

    if payments is None:
        return DocumentTotals(subtotal=subtotal, tax_amount=tax_amount, total=total)

    amount_paid = sum(
        (to_decimal(p.amount, field=f"amount of payment {p.id}") for p in payments),
        Decimal("0"),
    )
    return DocumentTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total=total,
        amount_paid=amount_paid,
        balance=round2(total - amount_paid),
    )
