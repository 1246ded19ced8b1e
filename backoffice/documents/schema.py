"""Document data models for estimates, work orders and invoices.

Documents are frozen pydantic models. The engine never mutates a document;
every operation returns a replacement built with ``model_copy``. JSON field
names are camelCase (``documentNumber``, ``lineItems``) and timestamps are
timezone-aware ISO-8601 values.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from backoffice.documents.money import ZERO, round2

LineItemType = Literal["material", "labor", "equipment", "subcontractor", "permit"]
PaymentMethod = Literal["cash", "check", "credit_card", "debit_card", "ach", "wire", "other"]
Priority = Literal["low", "normal", "high", "urgent"]

EstimateStatus = Literal["draft", "sent", "viewed", "accepted", "declined"]
EffectiveEstimateStatus = Literal["draft", "sent", "viewed", "accepted", "declined", "expired"]
WorkOrderStatus = Literal["draft", "scheduled", "in_progress", "on_hold", "completed", "cancelled"]
InvoiceStatus = Literal["draft", "sent", "viewed", "cancelled"]
EffectiveInvoiceStatus = Literal[
    "draft", "sent", "viewed", "partial", "paid", "overdue", "cancelled"
]

DocumentType = Literal["estimate", "work_order", "invoice"]


class DocumentModel(BaseModel):
    """Base for all engine records: frozen, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class LineItem(DocumentModel):
    """One priced unit of work or material.

    ``amount`` is always ``round2(quantity * rate)``. Any supplied amount is
    overwritten during validation; use ``revise_line_item`` to change
    quantity or rate so the amount is recomputed.
    """

    id: str
    type: LineItemType
    description: str = ""
    quantity: Decimal = Field(ge=0)
    rate: Decimal
    amount: Decimal = ZERO
    taxable: bool = True
    order: int = 0

    @model_validator(mode="before")
    @classmethod
    def _derive_amount(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "quantity" not in data or "rate" not in data:
            return data
        try:
            quantity = Decimal(str(data["quantity"]))
            rate = Decimal(str(data["rate"]))
        except (ArithmeticError, ValueError, TypeError):
            # Leave reporting to field validation
            return data
        if not (quantity.is_finite() and rate.is_finite()):
            return data
        return {**data, "amount": round2(quantity * rate)}


class LineItemDraft(DocumentModel):
    """Line item as entered by a user, before it gets an id and amount."""

    type: LineItemType
    description: str = ""
    quantity: Decimal = Field(ge=0)
    rate: Decimal
    taxable: bool = True
    order: int = 0


class DocumentTotals(DocumentModel):
    """Financial summary of a document.

    ``amount_paid`` and ``balance`` are only set for invoices.
    """

    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO
    amount_paid: Decimal | None = None
    balance: Decimal | None = None


class Payment(DocumentModel):
    """Payment received against an invoice."""

    id: str
    amount: Decimal = Field(gt=0)
    date: AwareDatetime
    method: PaymentMethod = "other"
    reference: str | None = None  # check number, transaction ID
    notes: str | None = None


class TimeEntry(DocumentModel):
    """Labor time logged on a work order."""

    id: str
    user_id: str
    user_name: str = ""
    start_time: AwareDatetime
    end_time: AwareDatetime | None = None
    hours: Decimal = Field(default=ZERO, ge=0)
    notes: str | None = None


class CustomerRecord(DocumentModel):
    """Customer as supplied by the customer directory."""

    id: str
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""
    billing_address: str | None = None


class BaseDocument(DocumentModel):
    """Fields shared by estimates, work orders and invoices."""

    id: str
    document_number: str
    customer_id: str = ""
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    service_address: str = ""
    line_items: list[LineItem] = Field(default_factory=list)
    tax_rate: Decimal = Field(default=ZERO, ge=0)
    totals: DocumentTotals = Field(default_factory=DocumentTotals)
    created_by: str = ""
    created_at: AwareDatetime
    updated_at: AwareDatetime
    version: int = 0  # bumped by the repository on every replacement


class EstimateDocument(BaseDocument):
    """Priced proposal sent to a customer (EST-####)."""

    billing_address: str | None = None
    status: EstimateStatus = "draft"
    notes: str | None = None
    terms_and_conditions: str | None = None
    valid_until: AwareDatetime
    sent_at: AwareDatetime | None = None
    viewed_at: AwareDatetime | None = None
    accepted_at: AwareDatetime | None = None
    declined_at: AwareDatetime | None = None
    converted_to_work_order_id: str | None = None
    converted_to_invoice_id: str | None = None


class WorkOrderDocument(BaseDocument):
    """Scheduled field work (WO-####), usually created from an accepted estimate."""

    estimate_id: str | None = None
    status: WorkOrderStatus = "draft"
    scheduled_date: date | None = None
    scheduled_time: str | None = None
    assigned_to: list[str] = Field(default_factory=list)
    priority: Priority = "normal"
    internal_notes: str | None = None
    customer_notes: str | None = None
    instructions: str | None = None
    photos: list[str] = Field(default_factory=list)
    time_tracking: list[TimeEntry] = Field(default_factory=list)
    started_at: AwareDatetime | None = None
    completed_at: AwareDatetime | None = None
    converted_to_invoice_id: str | None = None


class InvoiceDocument(BaseDocument):
    """Bill for completed work (INV-####)."""

    work_order_id: str | None = None
    estimate_id: str | None = None
    billing_address: str | None = None
    status: InvoiceStatus = "draft"
    payment_terms: str = "Net 30"
    due_date: AwareDatetime
    payments: list[Payment] = Field(default_factory=list)
    notes: str | None = None
    terms_and_conditions: str | None = None
    sent_at: AwareDatetime | None = None
    viewed_at: AwareDatetime | None = None
    paid_at: AwareDatetime | None = None
    cancelled_at: AwareDatetime | None = None
