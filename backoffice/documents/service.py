"""Document service: integration layer around the pure document engine.

The engine functions are pure and take ``now`` and new ids from the caller.
This service supplies them (injectable clock and id factory), loads and
stores documents through per-type repositories, and enforces the rules that
need storage support:

- document numbers are allocated against the stored history and retried on
  a duplicate-number conflict,
- each source document is converted at most once. The forward reference on
  the source is claimed with a version-checked write before the target is
  stored, so a concurrent second conversion fails with AlreadyConvertedError.
- a document another document was created from cannot be deleted, and
  deleting a conversion target clears the forward link on its source.
"""

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any, TypeVar

from prometheus_client import Counter
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from backoffice.documents import conversion, estimates, invoices, line_items, work_orders
from backoffice.documents.directory import CustomerDirectory, TeamDirectory
from backoffice.documents.errors import (
    ConcurrentModificationError,
    DocumentError,
    DuplicateDocumentNumberError,
    ReferencedDocumentError,
    ValidationError,
)
from backoffice.documents.money import to_decimal
from backoffice.documents.numbering import (
    ESTIMATE_PREFIX,
    INVOICE_PREFIX,
    WORK_ORDER_PREFIX,
    next_document_number,
)
from backoffice.documents.repository import DocumentRepository, InMemoryRepository
from backoffice.documents.schema import (
    BaseDocument,
    CustomerRecord,
    DocumentType,
    EstimateDocument,
    InvoiceDocument,
    LineItem,
    LineItemDraft,
    Payment,
    PaymentMethod,
    Priority,
    WorkOrderDocument,
)
from backoffice.documents.totals import calculate_document_totals, create_line_item
from backoffice.shared.config import Settings

logger = logging.getLogger(__name__)


documents_created_total = Counter(
    "backoffice_documents_created_total",
    "Total documents created",
    ["document_type", "origin"],  # new, duplicate, conversion
)

document_transitions_total = Counter(
    "backoffice_document_transitions_total",
    "Total document status transitions",
    ["document_type", "transition"],
)

document_conversions_total = Counter(
    "backoffice_document_conversions_total",
    "Total document conversion attempts",
    ["source", "target", "status"],  # success, rejected, failed
)

payments_recorded_total = Counter(
    "backoffice_payments_recorded_total",
    "Total invoice payments recorded",
    ["method"],
)

D = TypeVar("D", bound=BaseDocument)
S = TypeVar("S", bound=BaseDocument)

CustomerRef = CustomerRecord | str


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class DocumentService:
    """Create, transition, convert and delete estimates, work orders and invoices.

    Attributes:
        settings: Application settings (defaults and numbering)
        estimate_repo: Estimate collection
        work_order_repo: Work order collection
        invoice_repo: Invoice collection
        customers: Customer directory used to resolve customer ids
        team: Team directory used to validate work order assignments
    """

    def __init__(
        self,
        settings: Settings,
        estimate_repo: DocumentRepository[EstimateDocument] | None = None,
        work_order_repo: DocumentRepository[WorkOrderDocument] | None = None,
        invoice_repo: DocumentRepository[InvoiceDocument] | None = None,
        customers: CustomerDirectory | None = None,
        team: TeamDirectory | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[str], str] | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Application settings
            estimate_repo: Estimate repository (in-memory when omitted)
            work_order_repo: Work order repository (in-memory when omitted)
            invoice_repo: Invoice repository (in-memory when omitted)
            customers: Customer directory; customer ids cannot be resolved without it
            team: Team directory; assignments are not validated without it
            clock: Returns the current timezone-aware time
            id_factory: Returns a new unique id for a given prefix
        """
        self.settings = settings
        self.estimate_repo = estimate_repo or InMemoryRepository[EstimateDocument]("estimate")
        self.work_order_repo = work_order_repo or InMemoryRepository[WorkOrderDocument]("work order")
        self.invoice_repo = invoice_repo or InMemoryRepository[InvoiceDocument]("invoice")
        self.customers = customers
        self.team = team
        self._clock = clock or _utc_now
        self._id_factory = id_factory or _new_id

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _repo_for(self, document_type: DocumentType) -> DocumentRepository[Any]:
        if document_type == "estimate":
            return self.estimate_repo
        if document_type == "work_order":
            return self.work_order_repo
        return self.invoice_repo

    def _customer_fields(self, customer: CustomerRef) -> dict[str, Any]:
        if isinstance(customer, str):
            record = self.customers.get_customer(customer) if self.customers else None
            if record is None:
                raise ValidationError(f"Unknown customer: {customer}")
            customer = record
        return {
            "customer_id": customer.id,
            "customer_name": customer.name,
            "customer_email": customer.email,
            "customer_phone": customer.phone,
            "service_address": customer.address,
        }

    def _build_line_items(self, drafts: Sequence[LineItemDraft]) -> list[LineItem]:
        return [
            create_line_item(
                id=self._id_factory("line"),
                type=draft.type,
                description=draft.description,
                quantity=draft.quantity,
                rate=draft.rate,
                taxable=draft.taxable,
                order=draft.order if draft.order else index,
            )
            for index, draft in enumerate(drafts)
        ]

    def _validate_members(self, member_ids: Sequence[str]) -> list[str]:
        if self.team is not None:
            unknown = [member_id for member_id in member_ids if not self.team.is_member(member_id)]
            if unknown:
                raise ValidationError(f"Unknown team members: {', '.join(unknown)}")
        return list(member_ids)

    def _check_references(self, document: BaseDocument) -> None:
        """Reject cross references to documents that do not exist."""
        estimate_id = getattr(document, "estimate_id", None)
        if estimate_id is not None and not self.estimate_repo.exists(estimate_id):
            raise ValidationError(f"Referenced estimate does not exist: {estimate_id}")
        work_order_id = getattr(document, "work_order_id", None)
        if work_order_id is not None and not self.work_order_repo.exists(work_order_id):
            raise ValidationError(f"Referenced work order does not exist: {work_order_id}")

    def _ensure_unreferenced(
        self, document_type: str, document_id: str, referencing: Sequence[BaseDocument]
    ) -> None:
        if referencing:
            raise ReferencedDocumentError(
                document_type, document_id, [doc.document_number for doc in referencing]
            )

    def _release_link(
        self, repo: DocumentRepository[D], source_id: str | None, field: str, target_id: str
    ) -> None:
        """Clear ``field`` on the source if it still points at the deleted target.

        The source can then be converted again.
        """
        if source_id is None or not repo.exists(source_id):
            return

        @retry(
            retry=retry_if_exception_type(ConcurrentModificationError),
            stop=stop_after_attempt(self.settings.write_conflict_attempts),
            reraise=True,
        )
        def release() -> None:
            source = repo.get(source_id)
            if getattr(source, field) == target_id:
                repo.replace(source.model_copy(update={field: None, "updated_at": self.now()}))
                logger.info(f"Released {field} on {repo.document_type} {source.document_number}")

        release()

    def _insert(
        self,
        repo: DocumentRepository[D],
        prefix: str,
        build: Callable[[str], D],
        origin: str,
    ) -> D:
        """Allocate the next number for ``prefix`` and store the built document.

        A concurrent insert can take the same number between allocation and
        insert; the repository then rejects it and allocation is retried.
        """

        @retry(
            retry=retry_if_exception_type(DuplicateDocumentNumberError),
            stop=stop_after_attempt(self.settings.number_allocation_attempts),
            reraise=True,
        )
        def allocate() -> D:
            number = next_document_number(
                prefix, repo.document_numbers(), self.settings.number_min_digits
            )
            document = build(number)
            self._check_references(document)
            return repo.add(document)

        stored = allocate()
        documents_created_total.labels(document_type=repo.document_type, origin=origin).inc()
        logger.info(f"Created {repo.document_type} {stored.document_number} ({origin})")
        return stored

    def _update(
        self,
        repo: DocumentRepository[D],
        document_id: str,
        operation: Callable[[D], D],
        transition: str | None = None,
    ) -> D:
        """Read, apply a pure operation, and write back under version check."""
        document = repo.get(document_id)
        stored = repo.replace(operation(document))
        if transition:
            document_transitions_total.labels(
                document_type=repo.document_type, transition=transition
            ).inc()
            logger.info(
                f"{repo.document_type.capitalize()} {stored.document_number}: {transition}"
            )
        return stored

    # ------------------------------------------------------------------
    # Estimates
    # ------------------------------------------------------------------

    def create_estimate(
        self,
        customer: CustomerRef,
        line_items: Sequence[LineItemDraft] = (),
        tax_rate: Decimal | float | None = None,
        service_address: str | None = None,
        billing_address: str | None = None,
        valid_until: datetime | None = None,
        notes: str | None = None,
        terms_and_conditions: str | None = None,
        created_by: str = "",
    ) -> EstimateDocument:
        """Create a draft estimate for a customer.

        Args:
            customer: Customer record, or an id resolved through the directory
            line_items: Lines to price
            tax_rate: Tax rate in percent (settings default when omitted)
            service_address: Overrides the customer's address
            billing_address: Billing address if different from the service address
            valid_until: Offer expiry (settings default when omitted)
            notes: Customer-facing notes
            terms_and_conditions: Terms printed on the estimate
            created_by: User id of the author

        Returns:
            Stored estimate in draft status

        Raises:
            ValidationError: If the customer is unknown or a line item is invalid
        """
        now = self.now()
        fields = self._customer_fields(customer)
        if service_address is not None:
            fields["service_address"] = service_address
        if billing_address is None and isinstance(customer, CustomerRecord):
            billing_address = customer.billing_address
        items = self._build_line_items(line_items)
        rate = to_decimal(self.settings.default_tax_rate if tax_rate is None else tax_rate, field="tax_rate")
        totals = calculate_document_totals(items, rate)
        estimate_id = self._id_factory("estimate")

        return self._insert(
            self.estimate_repo,
            ESTIMATE_PREFIX,
            lambda number: EstimateDocument(
                id=estimate_id,
                document_number=number,
                **fields,
                billing_address=billing_address,
                line_items=items,
                tax_rate=rate,
                totals=totals,
                notes=notes,
                terms_and_conditions=terms_and_conditions,
                valid_until=valid_until or now + timedelta(days=self.settings.estimate_valid_days),
                created_by=created_by,
                created_at=now,
                updated_at=now,
            ),
            origin="new",
        )

    def get_estimate(self, estimate_id: str) -> EstimateDocument:
        return self.estimate_repo.get(estimate_id)

    def send_estimate(self, estimate_id: str) -> EstimateDocument:
        return self._update(
            self.estimate_repo, estimate_id, lambda e: estimates.send_estimate(e, self.now()), "send"
        )

    def mark_estimate_viewed(self, estimate_id: str) -> EstimateDocument:
        return self._update(
            self.estimate_repo,
            estimate_id,
            lambda e: estimates.mark_estimate_viewed(e, self.now()),
            "mark viewed",
        )

    def accept_estimate(self, estimate_id: str) -> EstimateDocument:
        return self._update(
            self.estimate_repo, estimate_id, lambda e: estimates.accept_estimate(e, self.now()), "accept"
        )

    def decline_estimate(self, estimate_id: str) -> EstimateDocument:
        return self._update(
            self.estimate_repo,
            estimate_id,
            lambda e: estimates.decline_estimate(e, self.now()),
            "decline",
        )

    def set_estimate_validity(self, estimate_id: str, valid_until: datetime) -> EstimateDocument:
        return self._update(
            self.estimate_repo,
            estimate_id,
            lambda e: estimates.set_estimate_validity(e, valid_until, self.now()),
        )

    def duplicate_estimate(self, estimate_id: str) -> EstimateDocument:
        """Copy an estimate into a new draft with a fresh number and validity."""
        source = self.estimate_repo.get(estimate_id)
        now = self.now()
        new_id = self._id_factory("estimate")
        return self._insert(
            self.estimate_repo,
            ESTIMATE_PREFIX,
            lambda number: source.model_copy(
                deep=True,
                update={
                    "id": new_id,
                    "document_number": number,
                    "status": "draft",
                    "valid_until": now + timedelta(days=self.settings.estimate_valid_days),
                    "sent_at": None,
                    "viewed_at": None,
                    "accepted_at": None,
                    "declined_at": None,
                    "converted_to_work_order_id": None,
                    "converted_to_invoice_id": None,
                    "created_at": now,
                    "updated_at": now,
                    "version": 0,
                },
            ),
            origin="duplicate",
        )

    def update_estimate_details(self, estimate_id: str, changes: dict[str, Any]) -> EstimateDocument:
        return self._update(
            self.estimate_repo,
            estimate_id,
            lambda e: estimates.update_estimate_details(e, changes, self.now()),
        )

    def delete_estimate(self, estimate_id: str) -> None:
        """Delete an estimate that no work order or invoice was created from.

        Raises:
            ReferencedDocumentError: If a work order or invoice carries its id
        """
        self.estimate_repo.get(estimate_id)
        self._ensure_unreferenced(
            "estimate",
            estimate_id,
            [
                *(wo for wo in self.work_order_repo.list_documents() if wo.estimate_id == estimate_id),
                *(inv for inv in self.invoice_repo.list_documents() if inv.estimate_id == estimate_id),
            ],
        )
        self.estimate_repo.delete(estimate_id)

    # ------------------------------------------------------------------
    # Work orders
    # ------------------------------------------------------------------

    def create_work_order(
        self,
        customer: CustomerRef,
        line_items: Sequence[LineItemDraft] = (),
        tax_rate: Decimal | float | None = None,
        service_address: str | None = None,
        priority: Priority = "normal",
        assigned_to: Sequence[str] = (),
        instructions: str | None = None,
        customer_notes: str | None = None,
        internal_notes: str | None = None,
        created_by: str = "",
    ) -> WorkOrderDocument:
        """Create a draft work order that does not come from an estimate."""
        now = self.now()
        fields = self._customer_fields(customer)
        if service_address is not None:
            fields["service_address"] = service_address
        members = self._validate_members(assigned_to)
        items = self._build_line_items(line_items)
        rate = to_decimal(self.settings.default_tax_rate if tax_rate is None else tax_rate, field="tax_rate")
        totals = calculate_document_totals(items, rate)
        work_order_id = self._id_factory("work_order")

        return self._insert(
            self.work_order_repo,
            WORK_ORDER_PREFIX,
            lambda number: WorkOrderDocument(
                id=work_order_id,
                document_number=number,
                **fields,
                line_items=items,
                tax_rate=rate,
                totals=totals,
                priority=priority,
                assigned_to=members,
                instructions=instructions,
                customer_notes=customer_notes,
                internal_notes=internal_notes,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            ),
            origin="new",
        )

    def get_work_order(self, work_order_id: str) -> WorkOrderDocument:
        return self.work_order_repo.get(work_order_id)

    def schedule_work_order(
        self, work_order_id: str, scheduled_date: date, scheduled_time: str | None = None
    ) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.schedule_work_order(wo, scheduled_date, self.now(), scheduled_time),
            "schedule",
        )

    def start_work_order(self, work_order_id: str) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.start_work_order(wo, self.now()),
            "start",
        )

    def put_work_order_on_hold(self, work_order_id: str) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.put_work_order_on_hold(wo, self.now()),
            "put on hold",
        )

    def complete_work_order(self, work_order_id: str) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.complete_work_order(wo, self.now()),
            "complete",
        )

    def cancel_work_order(self, work_order_id: str) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.cancel_work_order(wo, self.now()),
            "cancel",
        )

    def assign_work_order(self, work_order_id: str, member_ids: Sequence[str]) -> WorkOrderDocument:
        members = self._validate_members(member_ids)
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.assign_work_order(wo, members, self.now()),
        )

    def set_work_order_priority(self, work_order_id: str, priority: Priority) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.set_work_order_priority(wo, priority, self.now()),
        )

    def log_time(
        self,
        work_order_id: str,
        user_id: str,
        start_time: datetime,
        end_time: datetime | None = None,
        hours: Decimal | float | None = None,
        user_name: str = "",
        notes: str | None = None,
    ) -> WorkOrderDocument:
        entry = work_orders.build_time_entry(
            id=self._id_factory("time"),
            user_id=user_id,
            start_time=start_time,
            end_time=end_time,
            hours=hours,
            user_name=user_name,
            notes=notes,
        )
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.add_time_entry(wo, entry, self.now()),
        )

    def update_time_entry(
        self, work_order_id: str, entry_id: str, changes: dict[str, Any]
    ) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.update_time_entry(wo, entry_id, changes, self.now()),
        )

    def remove_time_entry(self, work_order_id: str, entry_id: str) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.remove_time_entry(wo, entry_id, self.now()),
        )

    def update_work_order_details(self, work_order_id: str, changes: dict[str, Any]) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.update_work_order_details(wo, changes, self.now()),
        )

    def add_work_order_photo(self, work_order_id: str, photo_url: str) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.add_photo(wo, photo_url, self.now()),
        )

    def remove_work_order_photo(self, work_order_id: str, photo_url: str) -> WorkOrderDocument:
        return self._update(
            self.work_order_repo,
            work_order_id,
            lambda wo: work_orders.remove_photo(wo, photo_url, self.now()),
        )

    def duplicate_work_order(self, work_order_id: str) -> WorkOrderDocument:
        """Copy a work order into a new unscheduled draft."""
        source = self.work_order_repo.get(work_order_id)
        now = self.now()
        new_id = self._id_factory("work_order")
        return self._insert(
            self.work_order_repo,
            WORK_ORDER_PREFIX,
            lambda number: source.model_copy(
                deep=True,
                update={
                    "id": new_id,
                    "document_number": number,
                    "estimate_id": None,
                    "status": "draft",
                    "scheduled_date": None,
                    "scheduled_time": None,
                    "photos": [],
                    "time_tracking": [],
                    "started_at": None,
                    "completed_at": None,
                    "converted_to_invoice_id": None,
                    "created_at": now,
                    "updated_at": now,
                    "version": 0,
                },
            ),
            origin="duplicate",
        )

    def delete_work_order(self, work_order_id: str) -> None:
        """Delete a work order no invoice was created from.

        The source estimate, if any, loses its forward link and may be
        converted again.

        Raises:
            ReferencedDocumentError: If an invoice carries its id
        """
        work_order = self.work_order_repo.get(work_order_id)
        self._ensure_unreferenced(
            "work order",
            work_order_id,
            [inv for inv in self.invoice_repo.list_documents() if inv.work_order_id == work_order_id],
        )
        self.work_order_repo.delete(work_order_id)
        self._release_link(
            self.estimate_repo, work_order.estimate_id, "converted_to_work_order_id", work_order_id
        )

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        customer: CustomerRef,
        line_items: Sequence[LineItemDraft] = (),
        tax_rate: Decimal | float | None = None,
        service_address: str | None = None,
        billing_address: str | None = None,
        payment_terms: str | None = None,
        due_date: datetime | None = None,
        notes: str | None = None,
        terms_and_conditions: str | None = None,
        created_by: str = "",
    ) -> InvoiceDocument:
        """Create a draft invoice that does not come from an estimate or work order."""
        now = self.now()
        fields = self._customer_fields(customer)
        if service_address is not None:
            fields["service_address"] = service_address
        if billing_address is None and isinstance(customer, CustomerRecord):
            billing_address = customer.billing_address
        items = self._build_line_items(line_items)
        rate = to_decimal(self.settings.default_tax_rate if tax_rate is None else tax_rate, field="tax_rate")
        totals = calculate_document_totals(items, rate, [])
        invoice_id = self._id_factory("invoice")

        return self._insert(
            self.invoice_repo,
            INVOICE_PREFIX,
            lambda number: InvoiceDocument(
                id=invoice_id,
                document_number=number,
                **fields,
                billing_address=billing_address,
                line_items=items,
                tax_rate=rate,
                totals=totals,
                payment_terms=payment_terms or self.settings.default_payment_terms,
                due_date=due_date or now + timedelta(days=self.settings.invoice_due_days),
                notes=notes,
                terms_and_conditions=terms_and_conditions,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            ),
            origin="new",
        )

    def get_invoice(self, invoice_id: str) -> InvoiceDocument:
        return self.invoice_repo.get(invoice_id)

    def send_invoice(self, invoice_id: str) -> InvoiceDocument:
        return self._update(
            self.invoice_repo, invoice_id, lambda inv: invoices.send_invoice(inv, self.now()), "send"
        )

    def mark_invoice_viewed(self, invoice_id: str) -> InvoiceDocument:
        return self._update(
            self.invoice_repo,
            invoice_id,
            lambda inv: invoices.mark_invoice_viewed(inv, self.now()),
            "mark viewed",
        )

    def cancel_invoice(self, invoice_id: str) -> InvoiceDocument:
        return self._update(
            self.invoice_repo, invoice_id, lambda inv: invoices.cancel_invoice(inv, self.now()), "cancel"
        )

    def record_payment(
        self,
        invoice_id: str,
        amount: Decimal | float | str,
        method: PaymentMethod = "other",
        reference: str | None = None,
        paid_on: datetime | None = None,
        notes: str | None = None,
    ) -> InvoiceDocument:
        """Append a payment received through payment intake.

        Raises:
            ValidationError: If the amount is not positive or exceeds the balance
            InvalidStateTransitionError: If the invoice is draft or cancelled
        """
        value = to_decimal(amount, field="payment amount")
        if value <= 0:
            raise ValidationError(f"Payment amount must be positive, got {value}")
        payment = Payment(
            id=self._id_factory("payment"),
            amount=value,
            date=paid_on or self.now(),
            method=method,
            reference=reference,
            notes=notes,
        )
        stored = self._update(
            self.invoice_repo,
            invoice_id,
            lambda inv: invoices.record_payment(inv, payment, self.now()),
            "record payment",
        )
        payments_recorded_total.labels(method=method).inc()
        return stored

    def mark_invoice_paid(
        self, invoice_id: str, method: PaymentMethod = "other", reference: str | None = None
    ) -> InvoiceDocument:
        payment_id = self._id_factory("payment")
        stored = self._update(
            self.invoice_repo,
            invoice_id,
            lambda inv: invoices.mark_invoice_paid(inv, payment_id, self.now(), method, reference),
            "mark paid",
        )
        payments_recorded_total.labels(method=method).inc()
        return stored

    def duplicate_invoice(self, invoice_id: str) -> InvoiceDocument:
        """Copy an invoice into a new unpaid draft with no source links."""
        source = self.invoice_repo.get(invoice_id)
        now = self.now()
        new_id = self._id_factory("invoice")
        totals = calculate_document_totals(source.line_items, source.tax_rate, [])
        return self._insert(
            self.invoice_repo,
            INVOICE_PREFIX,
            lambda number: source.model_copy(
                deep=True,
                update={
                    "id": new_id,
                    "document_number": number,
                    "work_order_id": None,
                    "estimate_id": None,
                    "status": "draft",
                    "payments": [],
                    "totals": totals,
                    "due_date": now + timedelta(days=self.settings.invoice_due_days),
                    "sent_at": None,
                    "viewed_at": None,
                    "paid_at": None,
                    "cancelled_at": None,
                    "created_at": now,
                    "updated_at": now,
                    "version": 0,
                },
            ),
            origin="duplicate",
        )

    def update_invoice_details(self, invoice_id: str, changes: dict[str, Any]) -> InvoiceDocument:
        return self._update(
            self.invoice_repo,
            invoice_id,
            lambda inv: invoices.update_invoice_details(inv, changes, self.now()),
        )

    def delete_invoice(self, invoice_id: str) -> None:
        """Delete an invoice and release the conversion link on its source."""
        invoice = self.invoice_repo.get(invoice_id)
        self.invoice_repo.delete(invoice_id)
        self._release_link(
            self.work_order_repo, invoice.work_order_id, "converted_to_invoice_id", invoice_id
        )
        self._release_link(self.estimate_repo, invoice.estimate_id, "converted_to_invoice_id", invoice_id)

    # ------------------------------------------------------------------
    # Line items (any document type)
    # ------------------------------------------------------------------

    def add_line_item(
        self, document_type: DocumentType, document_id: str, draft: LineItemDraft
    ) -> BaseDocument:
        repo = self._repo_for(document_type)
        current = repo.get(document_id)
        item = create_line_item(
            id=self._id_factory("line"),
            type=draft.type,
            description=draft.description,
            quantity=draft.quantity,
            rate=draft.rate,
            taxable=draft.taxable,
            order=draft.order if draft.order else len(current.line_items),
        )
        return self._update(repo, document_id, lambda doc: line_items.add_line_item(doc, item, self.now()))

    def update_line_item(
        self, document_type: DocumentType, document_id: str, item_id: str, changes: dict[str, Any]
    ) -> BaseDocument:
        return self._update(
            self._repo_for(document_type),
            document_id,
            lambda doc: line_items.update_line_item(doc, item_id, changes, self.now()),
        )

    def remove_line_item(self, document_type: DocumentType, document_id: str, item_id: str) -> BaseDocument:
        return self._update(
            self._repo_for(document_type),
            document_id,
            lambda doc: line_items.remove_line_item(doc, item_id, self.now()),
        )

    def reorder_line_items(
        self, document_type: DocumentType, document_id: str, ordered_ids: Sequence[str]
    ) -> BaseDocument:
        return self._update(
            self._repo_for(document_type),
            document_id,
            lambda doc: line_items.reorder_line_items(doc, ordered_ids, self.now()),
        )

    def set_tax_rate(
        self, document_type: DocumentType, document_id: str, tax_rate: Decimal | float
    ) -> BaseDocument:
        return self._update(
            self._repo_for(document_type),
            document_id,
            lambda doc: line_items.set_tax_rate(doc, tax_rate, self.now()),
        )

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def _convert(
        self,
        source_repo: DocumentRepository[S],
        source_id: str,
        claim: Callable[[S, str, datetime], S],
        claim_field: str,
        target_repo: DocumentRepository[D],
        target_prefix: str,
        build: Callable[[S, str, datetime], dict[str, Any]],
        target_model: type[D],
    ) -> D:
        """Claim the source's forward reference, then store the new target.

        Rejections (wrong status, already converted) happen before anything is
        written. If storing the target fails, the claim is released again.
        """
        labels = {"source": source_repo.document_type, "target": target_repo.document_type}
        source = source_repo.get(source_id)
        now = self.now()
        target_id = self._id_factory(target_repo.document_type.replace(" ", "_"))

        try:
            claimed = claim(source, target_id, now)
            try:
                source_repo.replace(claimed)
            except ConcurrentModificationError:
                # Another writer got there first; report AlreadyConvertedError if it converted
                claim(source_repo.get(source_id), target_id, now)
                raise
        except DocumentError:
            document_conversions_total.labels(**labels, status="rejected").inc()
            raise

        try:
            target = self._insert(
                target_repo,
                target_prefix,
                lambda number: target_model.model_validate(
                    {
                        **build(source, number, now),
                        "id": target_id,
                        "created_by": source.created_by,
                        "created_at": now,
                        "updated_at": now,
                    }
                ),
                origin="conversion",
            )
        except Exception:
            document_conversions_total.labels(**labels, status="failed").inc()
            logger.exception(
                f"Storing {target_repo.document_type} for {source_repo.document_type} "
                f"{source.document_number} failed, releasing conversion claim"
            )
            current = source_repo.get(source_id)
            source_repo.replace(current.model_copy(update={claim_field: None}))
            raise

        document_conversions_total.labels(**labels, status="success").inc()
        logger.info(
            f"Converted {source_repo.document_type} {source.document_number} "
            f"to {target_repo.document_type} {target.document_number}"
        )
        return target

    def convert_estimate_to_work_order(
        self,
        estimate_id: str,
        scheduled_date: date | None = None,
        assigned_to: Sequence[str] | None = None,
    ) -> WorkOrderDocument:
        """Create a work order from an accepted estimate and link both ways.

        Raises:
            InvalidStateTransitionError: If the estimate is not accepted
            AlreadyConvertedError: If the estimate was converted before
            ValidationError: If an assignee is not a team member
        """
        members = self._validate_members(assigned_to or [])
        return self._convert(
            self.estimate_repo,
            estimate_id,
            conversion.mark_estimate_converted_to_work_order,
            "converted_to_work_order_id",
            self.work_order_repo,
            WORK_ORDER_PREFIX,
            lambda estimate, number, now: conversion.convert_estimate_to_work_order(
                estimate, number, scheduled_date, members
            ),
            WorkOrderDocument,
        )

    def convert_work_order_to_invoice(
        self,
        work_order_id: str,
        payment_terms: str | None = None,
        due_date: datetime | None = None,
    ) -> InvoiceDocument:
        """Create an invoice from a completed work order and link both ways."""
        return self._convert(
            self.work_order_repo,
            work_order_id,
            conversion.mark_work_order_converted,
            "converted_to_invoice_id",
            self.invoice_repo,
            INVOICE_PREFIX,
            lambda work_order, number, now: conversion.convert_work_order_to_invoice(
                work_order,
                number,
                now,
                payment_terms or self.settings.default_payment_terms,
                due_date,
                self.settings.invoice_due_days,
            ),
            InvoiceDocument,
        )

    def convert_estimate_to_invoice(
        self,
        estimate_id: str,
        payment_terms: str | None = None,
        due_date: datetime | None = None,
    ) -> InvoiceDocument:
        """Invoice an accepted estimate directly, skipping the work order step."""
        return self._convert(
            self.estimate_repo,
            estimate_id,
            conversion.mark_estimate_converted_to_invoice,
            "converted_to_invoice_id",
            self.invoice_repo,
            INVOICE_PREFIX,
            lambda estimate, number, now: conversion.convert_estimate_to_invoice(
                estimate,
                number,
                now,
                payment_terms or self.settings.default_payment_terms,
                due_date,
                self.settings.invoice_due_days,
            ),
            InvoiceDocument,
        )
