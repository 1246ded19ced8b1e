"""Unit tests for the back-office HTTP API.

Tests cover:
- Health check endpoints
- Estimate lifecycle and conversions
- Error mapping (404 / 409 / 422)
- Payment intake, line item editing and CSV export
- Prometheus metrics endpoint
"""

from uuid import uuid4

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from backoffice.api.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def customer_id(client: TestClient) -> str:
    """Register a fresh customer in the directory."""
    customer_id = f"cust_{uuid4().hex[:8]}"
    response = client.put(
        f"/api/v1/customers/{customer_id}",
        json={"name": "Dana Ortiz", "email": "dana@example.com", "address": "12 Elm St"},
    )
    assert response.status_code == status.HTTP_200_OK
    return customer_id


@pytest.fixture
def estimate(client: TestClient, customer_id: str) -> dict:
    """Create a draft estimate worth 424.00 (400 + 6% tax)."""
    response = client.post(
        "/api/v1/estimates",
        json={
            "customerId": customer_id,
            "taxRate": 6,
            "lineItems": [{"type": "labor", "description": "Install", "quantity": 4, "rate": 100}],
        },
    )
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


def test_health_check(client: TestClient) -> None:
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "contractor-backoffice"
    assert "version" in data


def test_readiness_check(client: TestClient) -> None:
    """Test readiness check endpoint."""
    response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["ready"] is True


def test_get_customer(client: TestClient, customer_id: str) -> None:
    """Test customer lookup and 404 for unknown customers."""
    found = client.get(f"/api/v1/customers/{customer_id}")
    missing = client.get("/api/v1/customers/cust_missing")

    assert found.json()["name"] == "Dana Ortiz"
    assert missing.status_code == status.HTTP_404_NOT_FOUND


def test_create_estimate(estimate: dict) -> None:
    """Test that a new estimate is a draft with camelCase fields and computed totals."""
    assert estimate["documentNumber"].startswith("EST-")
    assert estimate["status"] == "draft"
    assert estimate["effectiveStatus"] == "draft"
    assert estimate["customerName"] == "Dana Ortiz"
    assert estimate["serviceAddress"] == "12 Elm St"
    assert estimate["totals"]["subtotal"] == "400.00"
    assert estimate["totals"]["taxAmount"] == "24.00"
    assert estimate["totals"]["total"] == "424.00"
    assert estimate["lineItems"][0]["amount"] == "400.00"


def test_create_estimate_unknown_customer(client: TestClient) -> None:
    """Test that an unknown customer id is a validation error."""
    response = client.post("/api/v1/estimates", json={"customerId": "cust_missing"})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"] == "ValidationError"


def test_get_unknown_estimate(client: TestClient) -> None:
    """Test that unknown ids return 404."""
    response = client.get("/api/v1/estimates/est_missing")

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["error"] == "DocumentNotFoundError"


def test_accept_draft_is_conflict(client: TestClient, estimate: dict) -> None:
    """Test that skipping send is rejected as an invalid transition."""
    response = client.post(f"/api/v1/estimates/{estimate['id']}/accept")

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "InvalidStateTransitionError"


def test_full_pipeline(client: TestClient, estimate: dict) -> None:
    """Test estimate -> work order -> invoice -> payments over HTTP."""
    estimate_id = estimate["id"]
    assert client.post(f"/api/v1/estimates/{estimate_id}/send").json()["status"] == "sent"
    assert client.post(f"/api/v1/estimates/{estimate_id}/accept").json()["status"] == "accepted"

    converted = client.post(
        f"/api/v1/estimates/{estimate_id}/convert/work-order",
        json={"scheduledDate": "2030-05-01"},
    )
    assert converted.status_code == status.HTTP_201_CREATED
    work_order = converted.json()
    assert work_order["status"] == "scheduled"
    assert work_order["estimateId"] == estimate_id
    assert work_order["totals"]["total"] == "424.00"

    again = client.post(f"/api/v1/estimates/{estimate_id}/convert/work-order")
    assert again.status_code == status.HTTP_409_CONFLICT
    assert again.json()["error"] == "AlreadyConvertedError"

    work_order_id = work_order["id"]
    client.post(f"/api/v1/work-orders/{work_order_id}/start")
    completed = client.post(f"/api/v1/work-orders/{work_order_id}/complete").json()
    assert completed["status"] == "completed"

    invoice = client.post(f"/api/v1/work-orders/{work_order_id}/convert/invoice").json()
    assert invoice["workOrderId"] == work_order_id
    assert invoice["paymentTerms"] == "Net 30"
    assert invoice["totals"]["balance"] == "424.00"

    invoice_id = invoice["id"]
    client.post(f"/api/v1/invoices/{invoice_id}/send")
    partial = client.post(
        f"/api/v1/invoices/{invoice_id}/payments", json={"amount": 124, "method": "check"}
    ).json()
    assert partial["effectiveStatus"] == "partial"
    assert partial["totals"]["balance"] == "300.00"

    too_much = client.post(f"/api/v1/invoices/{invoice_id}/payments", json={"amount": 1000})
    assert too_much.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    paid = client.post(f"/api/v1/invoices/{invoice_id}/mark-paid").json()
    assert paid["effectiveStatus"] == "paid"
    assert paid["totals"]["balance"] == "0.00"
    assert paid["paidAt"] is not None


def test_payment_on_draft_invoice(client: TestClient, customer_id: str) -> None:
    """Test that payments on a draft invoice are a conflict and non-positive amounts invalid."""
    invoice = client.post(
        "/api/v1/invoices",
        json={"customerId": customer_id, "lineItems": [{"type": "labor", "quantity": 1, "rate": 50}]},
    ).json()

    draft = client.post(f"/api/v1/invoices/{invoice['id']}/payments", json={"amount": 10})
    client.post(f"/api/v1/invoices/{invoice['id']}/send")
    negative = client.post(f"/api/v1/invoices/{invoice['id']}/payments", json={"amount": -5})

    assert draft.status_code == status.HTTP_409_CONFLICT
    assert negative.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_line_item_endpoints(client: TestClient, estimate: dict) -> None:
    """Test add, update and remove of line items with recomputed totals."""
    base = f"/api/v1/estimates/{estimate['id']}/line-items"

    added = client.post(base, json={"type": "permit", "description": "Permit", "quantity": 1, "rate": 50})
    assert added.status_code == status.HTTP_200_OK
    assert added.json()["totals"]["total"] == "477.00"

    permit_id = added.json()["lineItems"][1]["id"]
    updated = client.patch(f"{base}/{permit_id}", json={"quantity": 2})
    assert updated.json()["totals"]["subtotal"] == "500.00"

    removed = client.delete(f"{base}/{permit_id}")
    assert removed.json()["totals"]["total"] == "424.00"


@pytest.mark.parametrize("field", ["taxable", "description", "type"])
def test_line_item_patch_rejects_null(client: TestClient, estimate: dict, field: str) -> None:
    """Test that clearing a line item field is a 422 and leaves totals unchanged."""
    item_id = estimate["lineItems"][0]["id"]

    response = client.patch(
        f"/api/v1/estimates/{estimate['id']}/line-items/{item_id}", json={field: None}
    )
    stored = client.get(f"/api/v1/estimates/{estimate['id']}").json()

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"] == "ValidationError"
    assert stored["lineItems"][0]["taxable"] is True
    assert stored["totals"]["total"] == "424.00"


def test_huge_amount_is_unprocessable(client: TestClient, customer_id: str) -> None:
    """Test that an amount too large for cents maps to 422, not 500."""
    response = client.post(
        "/api/v1/invoices",
        json={
            "customerId": customer_id,
            "lineItems": [{"type": "material", "quantity": "1e20", "rate": "1e10"}],
        },
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"] == "ComputationError"


def test_update_estimate_details(client: TestClient, estimate: dict) -> None:
    """Test that a draft estimate takes new notes but refuses status changes."""
    url = f"/api/v1/estimates/{estimate['id']}"

    updated = client.patch(url, json={"notes": "Includes haul-away", "billingAddress": "PO Box 3"})
    status_change = client.patch(url, json={"status": "accepted"})

    assert updated.status_code == status.HTTP_200_OK
    assert updated.json()["notes"] == "Includes haul-away"
    assert updated.json()["billingAddress"] == "PO Box 3"
    assert updated.json()["totals"]["total"] == "424.00"
    assert status_change.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert client.get(url).json()["status"] == "draft"


def test_update_sent_invoice_details_is_conflict(client: TestClient, customer_id: str) -> None:
    """Test that invoice details are frozen once sent."""
    invoice = client.post(
        "/api/v1/invoices",
        json={"customerId": customer_id, "lineItems": [{"type": "labor", "quantity": 1, "rate": 50}]},
    ).json()
    url = f"/api/v1/invoices/{invoice['id']}"

    draft = client.patch(url, json={"paymentTerms": "Net 15"})
    client.post(f"{url}/send")
    sent = client.patch(url, json={"paymentTerms": "Net 60"})

    assert draft.json()["paymentTerms"] == "Net 15"
    assert sent.status_code == status.HTTP_409_CONFLICT


def test_time_entry_endpoints(client: TestClient, customer_id: str) -> None:
    """Test logging, correcting and removing time on a work order."""
    work_order = client.post("/api/v1/work-orders", json={"customerId": customer_id}).json()
    base = f"/api/v1/work-orders/{work_order['id']}/time-entries"

    logged = client.post(
        base,
        json={
            "userId": "tm_1",
            "startTime": "2030-05-01T08:00:00Z",
            "endTime": "2030-05-01T10:00:00Z",
        },
    ).json()
    entry_id = logged["timeTracking"][0]["id"]

    corrected = client.patch(f"{base}/{entry_id}", json={"endTime": "2030-05-01T11:30:00Z"})
    cleared = client.patch(f"{base}/{entry_id}", json={"startTime": None})
    removed = client.delete(f"{base}/{entry_id}")
    missing = client.delete(f"{base}/{entry_id}")

    assert logged["timeTracking"][0]["hours"] == "2.00"
    assert corrected.json()["timeTracking"][0]["hours"] == "3.50"
    assert cleared.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert removed.json()["timeTracking"] == []
    assert missing.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_delete_converted_estimate_is_conflict(client: TestClient, estimate: dict) -> None:
    """Test that an estimate with a work order cannot be deleted until the work order is."""
    estimate_id = estimate["id"]
    client.post(f"/api/v1/estimates/{estimate_id}/send")
    client.post(f"/api/v1/estimates/{estimate_id}/accept")
    work_order = client.post(f"/api/v1/estimates/{estimate_id}/convert/work-order").json()

    refused = client.delete(f"/api/v1/estimates/{estimate_id}")
    client.delete(f"/api/v1/work-orders/{work_order['id']}")
    freed = client.get(f"/api/v1/estimates/{estimate_id}").json()
    deleted = client.delete(f"/api/v1/estimates/{estimate_id}")

    assert refused.status_code == status.HTTP_409_CONFLICT
    assert refused.json()["error"] == "ReferencedDocumentError"
    assert freed["convertedToWorkOrderId"] is None
    assert deleted.status_code == status.HTTP_204_NO_CONTENT


def test_line_items_unknown_collection(client: TestClient) -> None:
    """Test that an unknown collection returns 404."""
    response = client.post(
        "/api/v1/quotes/q_1/line-items", json={"type": "labor", "quantity": 1, "rate": 1}
    )

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_list_and_stats(client: TestClient, customer_id: str, estimate: dict) -> None:
    """Test filtering by customer and the stats endpoint."""
    listed = client.get("/api/v1/estimates", params={"customerId": customer_id})
    stats = client.get("/api/v1/estimates/stats")

    assert [item["id"] for item in listed.json()] == [estimate["id"]]
    assert stats.status_code == status.HTTP_200_OK
    assert stats.json()["total"] >= 1


def test_export_invoices_csv(client: TestClient) -> None:
    """Test that the export endpoint returns quoted CSV."""
    response = client.get("/api/v1/invoices/export")

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.startswith('"Invoice Number","Customer","Status"')


def test_metrics_endpoint(client: TestClient) -> None:
    """Test Prometheus metrics endpoint."""
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    assert "http_requests_total" in response.text
    assert "backoffice_documents_created_total" in response.text
