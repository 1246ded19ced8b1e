"""FastAPI application for the contractor back office.

Exposes the document engine over HTTP:
- Health and readiness checks
- Estimates, work orders and invoices with their lifecycle transitions
- Estimate -> work order -> invoice conversions
- Payment intake, CSV export and dashboard stats
- Prometheus metrics

Engine errors map to HTTP status codes in one exception handler:
not found -> 404, validation and computation errors -> 422, conflicts
(invalid transition, already converted, concurrent write, delete of a
referenced document) -> 409.
"""

import logging
import time
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import AwareDatetime, BaseModel, ConfigDict

from backoffice.api import metrics
from backoffice.documents.directory import InMemoryCustomerDirectory
from backoffice.documents.errors import (
    AlreadyConvertedError,
    ComputationError,
    ConcurrentModificationError,
    DocumentError,
    DocumentNotFoundError,
    DuplicateDocumentNumberError,
    InvalidStateTransitionError,
    ReferencedDocumentError,
    ValidationError,
)
from backoffice.documents.estimates import get_estimate_status
from backoffice.documents.invoices import get_invoice_status
from backoffice.documents.queries import (
    DocumentSort,
    EstimateFilters,
    EstimateStats,
    InvoiceFilters,
    InvoiceStats,
    SortDirection,
    SortField,
    WorkOrderFilters,
    WorkOrderStats,
    estimate_stats,
    filter_estimates,
    filter_invoices,
    filter_work_orders,
    invoice_stats,
    work_order_stats,
)
from backoffice.documents.schema import (
    BaseDocument,
    CustomerRecord,
    DocumentModel,
    DocumentType,
    EffectiveEstimateStatus,
    EffectiveInvoiceStatus,
    EstimateDocument,
    InvoiceDocument,
    LineItemDraft,
    LineItemType,
    PaymentMethod,
    Priority,
    WorkOrderDocument,
    WorkOrderStatus,
)
from backoffice.documents.service import DocumentService
from backoffice.export.csv_export import (
    export_estimates_to_csv,
    export_invoices_to_csv,
    export_work_orders_to_csv,
)
from backoffice.shared.config import get_settings

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Contractor Back Office",
    description="Estimates, work orders and invoices for contractor businesses",
    version=settings.service_version,
)

customer_directory = InMemoryCustomerDirectory()
document_service = DocumentService(settings, customers=customer_directory)

ERROR_STATUS: dict[type[DocumentError], int] = {
    DocumentNotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ComputationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    AlreadyConvertedError: status.HTTP_409_CONFLICT,
    ConcurrentModificationError: status.HTTP_409_CONFLICT,
    DuplicateDocumentNumberError: status.HTTP_409_CONFLICT,
    ReferencedDocumentError: status.HTTP_409_CONFLICT,
}

COLLECTIONS: dict[str, DocumentType] = {
    "estimates": "estimate",
    "work-orders": "work_order",
    "invoices": "invoice",
}


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Endpoints are labelled by route template (``/api/v1/estimates/{estimate_id}``)
    so document ids do not create new label values.
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


@app.exception_handler(DocumentError)
async def document_error_handler(request: Request, exc: DocumentError) -> JSONResponse:
    """Translate engine errors into structured error responses."""
    code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    metrics.document_errors_total.labels(error=type(exc).__name__).inc()
    logger.warning(f"{request.method} {request.url.path} -> {code}: {exc}")
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


# ----------------------------------------------------------------------
# Request and response models
# ----------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class CustomerInput(DocumentModel):
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""
    billing_address: str | None = None


class DocumentCreate(DocumentModel):
    """Fields shared by all create requests.

    Either ``customer_id`` (looked up in the customer directory) or an
    inline ``customer`` must be given.
    """

    customer_id: str | None = None
    customer: CustomerRecord | None = None
    line_items: list[LineItemDraft] = []
    tax_rate: Decimal | None = None
    service_address: str | None = None
    created_by: str = ""


class EstimateCreate(DocumentCreate):
    billing_address: str | None = None
    valid_until: AwareDatetime | None = None
    notes: str | None = None
    terms_and_conditions: str | None = None


class WorkOrderCreate(DocumentCreate):
    priority: Priority = "normal"
    assigned_to: list[str] = []
    instructions: str | None = None
    customer_notes: str | None = None
    internal_notes: str | None = None


class InvoiceCreate(DocumentCreate):
    billing_address: str | None = None
    payment_terms: str | None = None
    due_date: AwareDatetime | None = None
    notes: str | None = None
    terms_and_conditions: str | None = None


class ValidityUpdate(DocumentModel):
    valid_until: AwareDatetime


class ScheduleRequest(DocumentModel):
    scheduled_date: date
    scheduled_time: str | None = None


class AssignRequest(DocumentModel):
    member_ids: list[str]


class PriorityUpdate(DocumentModel):
    priority: Priority


class TimeEntryCreate(DocumentModel):
    user_id: str
    user_name: str = ""
    start_time: AwareDatetime
    end_time: AwareDatetime | None = None
    hours: Decimal | None = None
    notes: str | None = None


class PhotoRequest(DocumentModel):
    url: str


class WorkOrderConversion(DocumentModel):
    scheduled_date: date | None = None
    assigned_to: list[str] = []


class InvoiceConversion(DocumentModel):
    payment_terms: str | None = None
    due_date: AwareDatetime | None = None


class PaymentCreate(DocumentModel):
    amount: Decimal
    method: PaymentMethod = "other"
    reference: str | None = None
    date: AwareDatetime | None = None
    notes: str | None = None


class MarkPaidRequest(DocumentModel):
    method: PaymentMethod = "other"
    reference: str | None = None


class LineItemUpdate(DocumentModel):
    """Partial line item change; only fields sent by the client are applied.

    An explicit null is passed through and rejected by the engine (422).
    """

    type: LineItemType | None = None
    description: str | None = None
    quantity: Decimal | None = None
    rate: Decimal | None = None
    taxable: bool | None = None
    order: int | None = None


class DetailsUpdate(DocumentModel):
    """Partial change of descriptive fields; only fields sent by the client are applied.

    Unknown fields (status, totals, links) are rejected with 422.
    """

    model_config = ConfigDict(extra="forbid")

    service_address: str | None = None


class EstimateDetailsUpdate(DetailsUpdate):
    billing_address: str | None = None
    notes: str | None = None
    terms_and_conditions: str | None = None


class WorkOrderDetailsUpdate(DetailsUpdate):
    scheduled_time: str | None = None
    instructions: str | None = None
    customer_notes: str | None = None
    internal_notes: str | None = None


class InvoiceDetailsUpdate(DetailsUpdate):
    billing_address: str | None = None
    payment_terms: str | None = None
    due_date: AwareDatetime | None = None
    notes: str | None = None
    terms_and_conditions: str | None = None


class TimeEntryUpdate(DocumentModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str | None = None
    user_name: str | None = None
    start_time: AwareDatetime | None = None
    end_time: AwareDatetime | None = None
    hours: Decimal | None = None
    notes: str | None = None


class ReorderRequest(DocumentModel):
    item_ids: list[str]


class TaxRateUpdate(DocumentModel):
    tax_rate: Decimal


class EstimateView(EstimateDocument):
    """Estimate with its effective status (``expired`` overlay) at request time."""

    effective_status: EffectiveEstimateStatus


class InvoiceView(InvoiceDocument):
    """Invoice with its derived status (``partial``/``paid``/``overdue``) at request time."""

    effective_status: EffectiveInvoiceStatus


def _customer(request: DocumentCreate) -> CustomerRecord | str:
    if request.customer is not None:
        return request.customer
    if request.customer_id:
        return request.customer_id
    raise ValidationError("Either customerId or customer is required")


def _estimate_view(estimate: EstimateDocument) -> EstimateView:
    return EstimateView.model_validate(
        {
            **estimate.model_dump(),
            "effective_status": get_estimate_status(estimate, document_service.now()),
        }
    )


def _invoice_view(invoice: InvoiceDocument) -> InvoiceView:
    return InvoiceView.model_validate(
        {
            **invoice.model_dump(),
            "effective_status": get_invoice_status(invoice, document_service.now()),
        }
    )


def _view(document: BaseDocument) -> BaseDocument:
    if isinstance(document, EstimateDocument):
        return _estimate_view(document)
    if isinstance(document, InvoiceDocument):
        return _invoice_view(document)
    return document


def _csv_response(content: str, document_type: str) -> Response:
    metrics.csv_exports_total.labels(document_type=document_type).inc()
    filename = f"{document_type}s_{document_service.now().strftime('%Y%m%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# ----------------------------------------------------------------------
# Health and monitoring
# ----------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Returns:
        Readiness status
    """
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


# ----------------------------------------------------------------------
# Customers
# ----------------------------------------------------------------------


@app.put("/api/v1/customers/{customer_id}", response_model=CustomerRecord, tags=["Customers"])
def put_customer(customer_id: str, body: CustomerInput) -> CustomerRecord:
    """Register or replace a customer in the directory used for new documents."""
    customer = CustomerRecord(id=customer_id, **body.model_dump())
    customer_directory.add(customer)
    return customer


@app.get("/api/v1/customers/{customer_id}", response_model=CustomerRecord, tags=["Customers"])
def get_customer(customer_id: str) -> CustomerRecord:
    customer = customer_directory.get_customer(customer_id)
    if customer is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"customer not found: {customer_id}"
        )
    return customer


# ----------------------------------------------------------------------
# Estimates
# ----------------------------------------------------------------------


@app.post(
    "/api/v1/estimates",
    response_model=EstimateView,
    status_code=status.HTTP_201_CREATED,
    tags=["Estimates"],
)
def create_estimate(body: EstimateCreate) -> EstimateView:
    """Create a draft estimate.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/estimates" \\
      -H "Content-Type: application/json" \\
      -d '{"customerId": "cust_1", "taxRate": 6,
           "lineItems": [{"type": "labor", "description": "Install", "quantity": 4, "rate": 85}]}'
    ```
    """
    estimate = document_service.create_estimate(
        _customer(body),
        line_items=body.line_items,
        tax_rate=body.tax_rate,
        service_address=body.service_address,
        billing_address=body.billing_address,
        valid_until=body.valid_until,
        notes=body.notes,
        terms_and_conditions=body.terms_and_conditions,
        created_by=body.created_by,
    )
    return _estimate_view(estimate)


@app.get("/api/v1/estimates", response_model=list[EstimateView], tags=["Estimates"])
def list_estimates(
    search: str | None = None,
    status_in: list[EffectiveEstimateStatus] = Query(default=[], alias="status"),  # noqa: B008
    customer_id: str | None = Query(None, alias="customerId"),
    date_from: AwareDatetime | None = Query(None, alias="dateFrom"),
    date_to: AwareDatetime | None = Query(None, alias="dateTo"),
    min_amount: Decimal | None = Query(None, alias="minAmount"),
    max_amount: Decimal | None = Query(None, alias="maxAmount"),
    sort: SortField = "created_at",
    direction: SortDirection = "desc",
) -> list[EstimateView]:
    filters = EstimateFilters(
        search=search,
        status=status_in,
        customer_id=customer_id,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
    )
    estimates = filter_estimates(
        document_service.estimate_repo.list_documents(),
        document_service.now(),
        filters,
        DocumentSort(field=sort, direction=direction),
    )
    return [_estimate_view(estimate) for estimate in estimates]


@app.get("/api/v1/estimates/stats", response_model=EstimateStats, tags=["Estimates"])
def get_estimate_stats() -> EstimateStats:
    return estimate_stats(document_service.estimate_repo.list_documents(), document_service.now())


@app.get("/api/v1/estimates/export", tags=["Estimates"])
def export_estimates() -> Response:
    content = export_estimates_to_csv(
        document_service.estimate_repo.list_documents(), document_service.now()
    )
    return _csv_response(content, "estimate")


@app.get("/api/v1/estimates/{estimate_id}", response_model=EstimateView, tags=["Estimates"])
def get_estimate(estimate_id: str) -> EstimateView:
    return _estimate_view(document_service.get_estimate(estimate_id))


@app.delete(
    "/api/v1/estimates/{estimate_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Estimates"],
)
def delete_estimate(estimate_id: str) -> Response:
    document_service.delete_estimate(estimate_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.patch("/api/v1/estimates/{estimate_id}", response_model=EstimateView, tags=["Estimates"])
def update_estimate_details(estimate_id: str, body: EstimateDetailsUpdate) -> EstimateView:
    return _estimate_view(
        document_service.update_estimate_details(estimate_id, body.model_dump(exclude_unset=True))
    )


@app.post("/api/v1/estimates/{estimate_id}/send", response_model=EstimateView, tags=["Estimates"])
def send_estimate(estimate_id: str) -> EstimateView:
    return _estimate_view(document_service.send_estimate(estimate_id))


@app.post("/api/v1/estimates/{estimate_id}/view", response_model=EstimateView, tags=["Estimates"])
def mark_estimate_viewed(estimate_id: str) -> EstimateView:
    return _estimate_view(document_service.mark_estimate_viewed(estimate_id))


@app.post("/api/v1/estimates/{estimate_id}/accept", response_model=EstimateView, tags=["Estimates"])
def accept_estimate(estimate_id: str) -> EstimateView:
    return _estimate_view(document_service.accept_estimate(estimate_id))


@app.post("/api/v1/estimates/{estimate_id}/decline", response_model=EstimateView, tags=["Estimates"])
def decline_estimate(estimate_id: str) -> EstimateView:
    return _estimate_view(document_service.decline_estimate(estimate_id))


@app.put(
    "/api/v1/estimates/{estimate_id}/validity", response_model=EstimateView, tags=["Estimates"]
)
def set_estimate_validity(estimate_id: str, body: ValidityUpdate) -> EstimateView:
    return _estimate_view(document_service.set_estimate_validity(estimate_id, body.valid_until))


@app.post(
    "/api/v1/estimates/{estimate_id}/duplicate",
    response_model=EstimateView,
    status_code=status.HTTP_201_CREATED,
    tags=["Estimates"],
)
def duplicate_estimate(estimate_id: str) -> EstimateView:
    return _estimate_view(document_service.duplicate_estimate(estimate_id))


@app.post(
    "/api/v1/estimates/{estimate_id}/convert/work-order",
    response_model=WorkOrderDocument,
    status_code=status.HTTP_201_CREATED,
    tags=["Conversions"],
)
def convert_estimate_to_work_order(
    estimate_id: str, body: WorkOrderConversion | None = None
) -> WorkOrderDocument:
    """Create a work order from an accepted estimate.

    Returns 409 if the estimate is not accepted or was converted before.
    """
    body = body or WorkOrderConversion()
    return document_service.convert_estimate_to_work_order(
        estimate_id, scheduled_date=body.scheduled_date, assigned_to=body.assigned_to
    )


@app.post(
    "/api/v1/estimates/{estimate_id}/convert/invoice",
    response_model=InvoiceView,
    status_code=status.HTTP_201_CREATED,
    tags=["Conversions"],
)
def convert_estimate_to_invoice(
    estimate_id: str, body: InvoiceConversion | None = None
) -> InvoiceView:
    body = body or InvoiceConversion()
    invoice = document_service.convert_estimate_to_invoice(
        estimate_id, payment_terms=body.payment_terms, due_date=body.due_date
    )
    return _invoice_view(invoice)


# ----------------------------------------------------------------------
# Work orders
# ----------------------------------------------------------------------


@app.post(
    "/api/v1/work-orders",
    response_model=WorkOrderDocument,
    status_code=status.HTTP_201_CREATED,
    tags=["Work Orders"],
)
def create_work_order(body: WorkOrderCreate) -> WorkOrderDocument:
    return document_service.create_work_order(
        _customer(body),
        line_items=body.line_items,
        tax_rate=body.tax_rate,
        service_address=body.service_address,
        priority=body.priority,
        assigned_to=body.assigned_to,
        instructions=body.instructions,
        customer_notes=body.customer_notes,
        internal_notes=body.internal_notes,
        created_by=body.created_by,
    )


@app.get("/api/v1/work-orders", response_model=list[WorkOrderDocument], tags=["Work Orders"])
def list_work_orders(
    search: str | None = None,
    status_in: list[WorkOrderStatus] = Query(default=[], alias="status"),  # noqa: B008
    customer_id: str | None = Query(None, alias="customerId"),
    assigned_to: list[str] = Query(default=[], alias="assignedTo"),  # noqa: B008
    priority: list[Priority] = Query(default=[]),  # noqa: B008
    date_from: AwareDatetime | None = Query(None, alias="dateFrom"),
    date_to: AwareDatetime | None = Query(None, alias="dateTo"),
    sort: SortField = "created_at",
    direction: SortDirection = "desc",
) -> list[WorkOrderDocument]:
    filters = WorkOrderFilters(
        search=search,
        status=status_in,
        customer_id=customer_id,
        assigned_to=assigned_to,
        priority=priority,
        date_from=date_from,
        date_to=date_to,
    )
    return filter_work_orders(
        document_service.work_order_repo.list_documents(),
        document_service.now(),
        filters,
        DocumentSort(field=sort, direction=direction),
    )


@app.get("/api/v1/work-orders/stats", response_model=WorkOrderStats, tags=["Work Orders"])
def get_work_order_stats() -> WorkOrderStats:
    return work_order_stats(document_service.work_order_repo.list_documents())


@app.get("/api/v1/work-orders/export", tags=["Work Orders"])
def export_work_orders() -> Response:
    content = export_work_orders_to_csv(document_service.work_order_repo.list_documents())
    return _csv_response(content, "work_order")


@app.get(
    "/api/v1/work-orders/{work_order_id}", response_model=WorkOrderDocument, tags=["Work Orders"]
)
def get_work_order(work_order_id: str) -> WorkOrderDocument:
    return document_service.get_work_order(work_order_id)


@app.delete(
    "/api/v1/work-orders/{work_order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Work Orders"],
)
def delete_work_order(work_order_id: str) -> Response:
    document_service.delete_work_order(work_order_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.patch(
    "/api/v1/work-orders/{work_order_id}", response_model=WorkOrderDocument, tags=["Work Orders"]
)
def update_work_order_details(work_order_id: str, body: WorkOrderDetailsUpdate) -> WorkOrderDocument:
    return document_service.update_work_order_details(
        work_order_id, body.model_dump(exclude_unset=True)
    )


@app.post(
    "/api/v1/work-orders/{work_order_id}/schedule",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def schedule_work_order(work_order_id: str, body: ScheduleRequest) -> WorkOrderDocument:
    return document_service.schedule_work_order(
        work_order_id, body.scheduled_date, body.scheduled_time
    )


@app.post(
    "/api/v1/work-orders/{work_order_id}/start", response_model=WorkOrderDocument, tags=["Work Orders"]
)
def start_work_order(work_order_id: str) -> WorkOrderDocument:
    return document_service.start_work_order(work_order_id)


@app.post(
    "/api/v1/work-orders/{work_order_id}/hold", response_model=WorkOrderDocument, tags=["Work Orders"]
)
def put_work_order_on_hold(work_order_id: str) -> WorkOrderDocument:
    return document_service.put_work_order_on_hold(work_order_id)


@app.post(
    "/api/v1/work-orders/{work_order_id}/complete",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def complete_work_order(work_order_id: str) -> WorkOrderDocument:
    return document_service.complete_work_order(work_order_id)


@app.post(
    "/api/v1/work-orders/{work_order_id}/cancel",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def cancel_work_order(work_order_id: str) -> WorkOrderDocument:
    return document_service.cancel_work_order(work_order_id)


@app.put(
    "/api/v1/work-orders/{work_order_id}/assignees",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def assign_work_order(work_order_id: str, body: AssignRequest) -> WorkOrderDocument:
    return document_service.assign_work_order(work_order_id, body.member_ids)


@app.put(
    "/api/v1/work-orders/{work_order_id}/priority",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def set_work_order_priority(work_order_id: str, body: PriorityUpdate) -> WorkOrderDocument:
    return document_service.set_work_order_priority(work_order_id, body.priority)


@app.post(
    "/api/v1/work-orders/{work_order_id}/time-entries",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def log_time(work_order_id: str, body: TimeEntryCreate) -> WorkOrderDocument:
    return document_service.log_time(
        work_order_id,
        user_id=body.user_id,
        start_time=body.start_time,
        end_time=body.end_time,
        hours=body.hours,
        user_name=body.user_name,
        notes=body.notes,
    )


@app.patch(
    "/api/v1/work-orders/{work_order_id}/time-entries/{entry_id}",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def update_time_entry(work_order_id: str, entry_id: str, body: TimeEntryUpdate) -> WorkOrderDocument:
    return document_service.update_time_entry(
        work_order_id, entry_id, body.model_dump(exclude_unset=True)
    )


@app.delete(
    "/api/v1/work-orders/{work_order_id}/time-entries/{entry_id}",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def remove_time_entry(work_order_id: str, entry_id: str) -> WorkOrderDocument:
    return document_service.remove_time_entry(work_order_id, entry_id)


@app.post(
    "/api/v1/work-orders/{work_order_id}/photos",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def add_work_order_photo(work_order_id: str, body: PhotoRequest) -> WorkOrderDocument:
    return document_service.add_work_order_photo(work_order_id, body.url)


@app.delete(
    "/api/v1/work-orders/{work_order_id}/photos",
    response_model=WorkOrderDocument,
    tags=["Work Orders"],
)
def remove_work_order_photo(work_order_id: str, url: str) -> WorkOrderDocument:
    return document_service.remove_work_order_photo(work_order_id, url)


@app.post(
    "/api/v1/work-orders/{work_order_id}/duplicate",
    response_model=WorkOrderDocument,
    status_code=status.HTTP_201_CREATED,
    tags=["Work Orders"],
)
def duplicate_work_order(work_order_id: str) -> WorkOrderDocument:
    return document_service.duplicate_work_order(work_order_id)


@app.post(
    "/api/v1/work-orders/{work_order_id}/convert/invoice",
    response_model=InvoiceView,
    status_code=status.HTTP_201_CREATED,
    tags=["Conversions"],
)
def convert_work_order_to_invoice(
    work_order_id: str, body: InvoiceConversion | None = None
) -> InvoiceView:
    """Create an invoice from a completed work order.

    Returns 409 if the work order is not completed or was invoiced before.
    """
    body = body or InvoiceConversion()
    invoice = document_service.convert_work_order_to_invoice(
        work_order_id, payment_terms=body.payment_terms, due_date=body.due_date
    )
    return _invoice_view(invoice)


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------


@app.post(
    "/api/v1/invoices",
    response_model=InvoiceView,
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
def create_invoice(body: InvoiceCreate) -> InvoiceView:
    invoice = document_service.create_invoice(
        _customer(body),
        line_items=body.line_items,
        tax_rate=body.tax_rate,
        service_address=body.service_address,
        billing_address=body.billing_address,
        payment_terms=body.payment_terms,
        due_date=body.due_date,
        notes=body.notes,
        terms_and_conditions=body.terms_and_conditions,
        created_by=body.created_by,
    )
    return _invoice_view(invoice)


@app.get("/api/v1/invoices", response_model=list[InvoiceView], tags=["Invoices"])
def list_invoices(
    search: str | None = None,
    status_in: list[EffectiveInvoiceStatus] = Query(default=[], alias="status"),  # noqa: B008
    customer_id: str | None = Query(None, alias="customerId"),
    date_from: AwareDatetime | None = Query(None, alias="dateFrom"),
    date_to: AwareDatetime | None = Query(None, alias="dateTo"),
    min_amount: Decimal | None = Query(None, alias="minAmount"),
    max_amount: Decimal | None = Query(None, alias="maxAmount"),
    overdue: bool = False,
    sort: SortField = "created_at",
    direction: SortDirection = "desc",
) -> list[InvoiceView]:
    filters = InvoiceFilters(
        search=search,
        status=status_in,
        customer_id=customer_id,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
        overdue=overdue,
    )
    invoices = filter_invoices(
        document_service.invoice_repo.list_documents(),
        document_service.now(),
        filters,
        DocumentSort(field=sort, direction=direction),
    )
    return [_invoice_view(invoice) for invoice in invoices]


@app.get("/api/v1/invoices/stats", response_model=InvoiceStats, tags=["Invoices"])
def get_invoice_stats() -> InvoiceStats:
    return invoice_stats(document_service.invoice_repo.list_documents(), document_service.now())


@app.get("/api/v1/invoices/export", tags=["Invoices"])
def export_invoices() -> Response:
    content = export_invoices_to_csv(
        document_service.invoice_repo.list_documents(), document_service.now()
    )
    return _csv_response(content, "invoice")


@app.get("/api/v1/invoices/{invoice_id}", response_model=InvoiceView, tags=["Invoices"])
def get_invoice(invoice_id: str) -> InvoiceView:
    return _invoice_view(document_service.get_invoice(invoice_id))


@app.delete(
    "/api/v1/invoices/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Invoices"],
)
def delete_invoice(invoice_id: str) -> Response:
    document_service.delete_invoice(invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.patch("/api/v1/invoices/{invoice_id}", response_model=InvoiceView, tags=["Invoices"])
def update_invoice_details(invoice_id: str, body: InvoiceDetailsUpdate) -> InvoiceView:
    return _invoice_view(
        document_service.update_invoice_details(invoice_id, body.model_dump(exclude_unset=True))
    )


@app.post("/api/v1/invoices/{invoice_id}/send", response_model=InvoiceView, tags=["Invoices"])
def send_invoice(invoice_id: str) -> InvoiceView:
    return _invoice_view(document_service.send_invoice(invoice_id))


@app.post("/api/v1/invoices/{invoice_id}/view", response_model=InvoiceView, tags=["Invoices"])
def mark_invoice_viewed(invoice_id: str) -> InvoiceView:
    return _invoice_view(document_service.mark_invoice_viewed(invoice_id))


@app.post("/api/v1/invoices/{invoice_id}/cancel", response_model=InvoiceView, tags=["Invoices"])
def cancel_invoice(invoice_id: str) -> InvoiceView:
    return _invoice_view(document_service.cancel_invoice(invoice_id))


@app.post("/api/v1/invoices/{invoice_id}/payments", response_model=InvoiceView, tags=["Invoices"])
def record_payment(invoice_id: str, body: PaymentCreate) -> InvoiceView:
    """Payment intake: append a payment and return the updated invoice.

    Returns 422 when the amount is not positive or exceeds the balance, and
    409 when the invoice is a draft or cancelled.
    """
    invoice = document_service.record_payment(
        invoice_id,
        body.amount,
        method=body.method,
        reference=body.reference,
        paid_on=body.date,
        notes=body.notes,
    )
    return _invoice_view(invoice)


@app.post("/api/v1/invoices/{invoice_id}/mark-paid", response_model=InvoiceView, tags=["Invoices"])
def mark_invoice_paid(invoice_id: str, body: MarkPaidRequest | None = None) -> InvoiceView:
    body = body or MarkPaidRequest()
    invoice = document_service.mark_invoice_paid(
        invoice_id, method=body.method, reference=body.reference
    )
    return _invoice_view(invoice)


@app.post(
    "/api/v1/invoices/{invoice_id}/duplicate",
    response_model=InvoiceView,
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
def duplicate_invoice(invoice_id: str) -> InvoiceView:
    return _invoice_view(document_service.duplicate_invoice(invoice_id))


# ----------------------------------------------------------------------
# Line items (any document type)
# ----------------------------------------------------------------------


def _document_type(collection: str) -> DocumentType:
    document_type = COLLECTIONS.get(collection)
    if document_type is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown collection: {collection}"
        )
    return document_type


@app.post("/api/v1/{collection}/{document_id}/line-items", tags=["Line Items"])
def add_line_item(collection: str, document_id: str, body: LineItemDraft) -> Any:
    document = document_service.add_line_item(_document_type(collection), document_id, body)
    return _view(document).model_dump(mode="json", by_alias=True)


@app.patch("/api/v1/{collection}/{document_id}/line-items/{item_id}", tags=["Line Items"])
def update_line_item(collection: str, document_id: str, item_id: str, body: LineItemUpdate) -> Any:
    document = document_service.update_line_item(
        _document_type(collection), document_id, item_id, body.model_dump(exclude_unset=True)
    )
    return _view(document).model_dump(mode="json", by_alias=True)


@app.delete("/api/v1/{collection}/{document_id}/line-items/{item_id}", tags=["Line Items"])
def remove_line_item(collection: str, document_id: str, item_id: str) -> Any:
    document = document_service.remove_line_item(_document_type(collection), document_id, item_id)
    return _view(document).model_dump(mode="json", by_alias=True)


@app.put("/api/v1/{collection}/{document_id}/line-items/order", tags=["Line Items"])
def reorder_line_items(collection: str, document_id: str, body: ReorderRequest) -> Any:
    document = document_service.reorder_line_items(
        _document_type(collection), document_id, body.item_ids
    )
    return _view(document).model_dump(mode="json", by_alias=True)


@app.put("/api/v1/{collection}/{document_id}/tax-rate", tags=["Line Items"])
def set_tax_rate(collection: str, document_id: str, body: TaxRateUpdate) -> Any:
    document = document_service.set_tax_rate(_document_type(collection), document_id, body.tax_rate)
    return _view(document).model_dump(mode="json", by_alias=True)
