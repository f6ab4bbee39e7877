"""Integration tests for API endpoints"""

import uuid
import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration

LENDER = {"X-User-ID": "lender-1"}
BORROWER = {"X-User-ID": "borrower-1"}
STRANGER = {"X-User-ID": "someone-else"}


def offer_terms(**overrides):
    """Reference EMI loan whose first installment falls due within the week"""
    terms = {
        "principal": "100000",
        "interest_rate": "12",
        "interest_type": "reducing",
        "tenure_value": 12,
        "tenure_unit": "months",
        "repayment_type": "emi",
        "repayment_frequency": "monthly",
        "start_date": (date.today() - timedelta(days=25)).isoformat(),
        "grace_period_days": 3,
    }
    terms.update(overrides)
    return terms


def create_offer(client: TestClient, **overrides) -> str:
    response = client.post(
        "/v1/loans",
        json={"borrower_id": "borrower-1", "terms": offer_terms(**overrides)},
        headers=LENDER,
    )
    assert response.status_code == 201
    return response.json()["loan_id"]


@pytest.fixture
def active_loan(client: TestClient) -> str:
    loan_id = create_offer(client)
    response = client.post(f"/v1/loans/{loan_id}/accept", headers=BORROWER)
    assert response.status_code == 200
    return loan_id


def submit(client: TestClient, loan_id: str, amount: str = "8884.88", **extra):
    return client.post(f"/v1/loans/{loan_id}/payments", json={"amount": amount, **extra}, headers=BORROWER)


def sent_events(notifier: AsyncMock):
    return [call.args[0]["event"] for call in notifier.send_event.await_args_list]


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "peerlend_payment_submissions_total" in response.text


def test_schedule_preview(client: TestClient):
    response = client.post("/v1/schedule/preview", json=offer_terms(start_date="2025-01-01"))

    assert response.status_code == 200
    data = response.json()
    assert data["installment_count"] == 12
    assert Decimal(data["installment_amount"]) == Decimal("8884.88")
    assert len(data["entries"]) == 12
    assert data["entries"][0]["due_date"] == "2025-02-01"
    assert Decimal(data["entries"][-1]["remaining_balance"]) == 0


def test_schedule_preview_invalid_terms(client: TestClient):
    response = client.post("/v1/schedule/preview", json=offer_terms(principal="0"))

    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "invalid_terms"


def test_create_offer(client: TestClient, notifier: AsyncMock):
    response = client.post(
        "/v1/loans",
        json={"borrower_id": "borrower-1", "terms": offer_terms()},
        headers=LENDER,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["lender_id"] == "lender-1"
    assert data["current_installment_number"] == 1
    assert sent_events(notifier) == ["loan_offered"]


def test_create_offer_to_self_rejected(client: TestClient):
    response = client.post(
        "/v1/loans",
        json={"borrower_id": "lender-1", "terms": offer_terms()},
        headers=LENDER,
    )

    assert response.status_code == 422


def test_create_offer_grace_period_limit(client: TestClient):
    response = client.post(
        "/v1/loans",
        json={"borrower_id": "borrower-1", "terms": offer_terms(grace_period_days=45)},
        headers=LENDER,
    )

    assert response.status_code == 422
    assert "Grace period" in response.json()["detail"]["message"]


def test_missing_user_header(client: TestClient):
    response = client.get("/v1/loans")
    assert response.status_code == 422


def test_only_borrower_can_accept(client: TestClient):
    loan_id = create_offer(client)

    assert client.post(f"/v1/loans/{loan_id}/accept", headers=LENDER).status_code == 403

    response = client.post(f"/v1/loans/{loan_id}/accept", headers=BORROWER)
    assert response.status_code == 200
    assert response.json()["status"] == "accepted"
    assert response.json()["accepted_at"] is not None

    # Already accepted
    assert client.post(f"/v1/loans/{loan_id}/accept", headers=BORROWER).status_code == 409


def test_decline_and_cancel(client: TestClient, notifier: AsyncMock):
    declined = create_offer(client)
    cancelled = create_offer(client)

    assert client.post(f"/v1/loans/{declined}/decline", headers=BORROWER).json()["status"] == "declined"
    assert client.post(f"/v1/loans/{cancelled}/cancel", headers=LENDER).json()["status"] == "cancelled"
    assert client.post(f"/v1/loans/{cancelled}/cancel", headers=LENDER).status_code == 409
    assert "loan_declined" in sent_events(notifier)
    assert "loan_cancelled" in sent_events(notifier)


def test_list_and_get_loans(client: TestClient, active_loan: str):
    response = client.get("/v1/loans", headers=BORROWER)
    assert response.status_code == 200
    assert [loan["loan_id"] for loan in response.json()["loans"]] == [active_loan]

    assert client.get("/v1/loans", headers=STRANGER).json()["loans"] == []

    response = client.get(f"/v1/loans/{active_loan}", headers=LENDER)
    assert response.status_code == 200
    assert Decimal(response.json()["terms"]["principal"]) == Decimal("100000")


def test_loan_access_errors(client: TestClient, active_loan: str):
    assert client.get(f"/v1/loans/{active_loan}", headers=STRANGER).status_code == 403
    assert client.get(f"/v1/loans/{uuid.uuid4()}", headers=LENDER).status_code == 404
    assert client.get("/v1/loans/not-a-uuid", headers=LENDER).status_code == 400


def test_loan_schedule(client: TestClient, active_loan: str):
    response = client.get(f"/v1/loans/{active_loan}/schedule", headers=BORROWER)

    assert response.status_code == 200
    assert Decimal(response.json()["installment_amount"]) == Decimal("8884.88")


def test_payment_on_pending_offer_rejected(client: TestClient):
    loan_id = create_offer(client)

    response = submit(client, loan_id)

    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "loan_not_active"


def test_submit_and_approve_payment(client: TestClient, active_loan: str, notifier: AsyncMock):
    response = submit(client, active_loan, mode="upi", reference="TXN-42")
    assert response.status_code == 201
    payment = response.json()
    assert payment["status"] == "pending"
    assert payment["installment_number"] == 1
    assert payment["timing"] == "on_time"
    assert payment["reference"] == "TXN-42"

    # Borrower cannot approve their own payment
    assert client.post(f"/v1/payments/{payment['payment_id']}/approve", headers=BORROWER).status_code == 403

    response = client.post(f"/v1/payments/{payment['payment_id']}/approve", headers=LENDER)
    assert response.status_code == 200
    data = response.json()
    assert data["payment"]["status"] == "paid"
    assert data["payment"]["paid_at"] is not None
    assert data["loan_status"] == "accepted"
    assert data["current_installment_number"] == 2

    assert client.get(f"/v1/loans/{active_loan}", headers=BORROWER).json()["current_installment_number"] == 2
    assert sent_events(notifier)[-2:] == ["payment_submitted", "payment_approved"]


def test_approve_twice_conflicts(client: TestClient, active_loan: str):
    payment_id = submit(client, active_loan).json()["payment_id"]

    assert client.post(f"/v1/payments/{payment_id}/approve", headers=LENDER).status_code == 200
    assert client.post(f"/v1/payments/{payment_id}/approve", headers=LENDER).status_code == 409
    assert client.post(f"/v1/payments/{payment_id}/reject", headers=LENDER).status_code == 409

    # Cursor moved exactly once
    assert client.get(f"/v1/loans/{active_loan}", headers=LENDER).json()["current_installment_number"] == 2


def test_duplicate_pending_payment_rejected(client: TestClient, active_loan: str):
    assert submit(client, active_loan).status_code == 201

    response = submit(client, active_loan)

    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "duplicate_pending_payment"


def test_amount_mismatch_rejected(client: TestClient, active_loan: str):
    response = submit(client, active_loan, amount="5000")

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["reason"] == "amount_mismatch"
    assert "8884.88" in detail["message"]


def test_invalid_amount_rejected(client: TestClient, active_loan: str):
    response = submit(client, active_loan, amount="-1")

    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "invalid_amount"


def test_reject_payment_allows_resubmission(client: TestClient, active_loan: str, notifier: AsyncMock):
    payment_id = submit(client, active_loan).json()["payment_id"]

    response = client.post(
        f"/v1/payments/{payment_id}/reject",
        json={"reason": "Transfer not received"},
        headers=LENDER,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["payment"]["status"] == "rejected"
    assert data["payment"]["rejection_reason"] == "Transfer not received"
    assert data["current_installment_number"] == 1
    assert "payment_rejected" in sent_events(notifier)

    assert submit(client, active_loan).status_code == 201


def test_reject_without_reason(client: TestClient, active_loan: str):
    payment_id = submit(client, active_loan).json()["payment_id"]

    response = client.post(f"/v1/payments/{payment_id}/reject", headers=LENDER)

    assert response.status_code == 200
    assert response.json()["payment"]["rejection_reason"] is None


def test_unknown_payment(client: TestClient):
    assert client.post(f"/v1/payments/{uuid.uuid4()}/approve", headers=LENDER).status_code == 404
    assert client.post("/v1/payments/nope/approve", headers=LENDER).status_code == 400


def test_payment_history(client: TestClient, active_loan: str):
    payment_id = submit(client, active_loan).json()["payment_id"]
    client.post(f"/v1/payments/{payment_id}/approve", headers=LENDER)

    response = client.get(f"/v1/loans/{active_loan}/payments", headers=BORROWER)

    assert response.status_code == 200
    payments = response.json()["payments"]
    assert [p["status"] for p in payments] == ["paid"]
    assert client.get(f"/v1/loans/{active_loan}/payments", headers=STRANGER).status_code == 403


def test_outstanding_after_first_installment(client: TestClient, active_loan: str):
    payment_id = submit(client, active_loan).json()["payment_id"]
    client.post(f"/v1/payments/{payment_id}/approve", headers=LENDER)

    response = client.get(f"/v1/loans/{active_loan}/outstanding", headers=BORROWER)

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["total_paid"]) == Decimal("8884.88")
    assert Decimal(data["interest_paid"]) == Decimal("1000.00")
    assert Decimal(data["principal_paid"]) == Decimal("7884.88")
    assert Decimal(data["outstanding_principal"]) == Decimal("92115.12")
    assert Decimal(data["due_amount"]) == 0
    assert data["next_installment"]["installment_number"] == 2
    assert data["current_installment_number"] == 2
    assert data["is_complete"] is False


def test_outstanding_as_of_later_date(client: TestClient, active_loan: str):
    as_of = (date.today() + timedelta(days=70)).isoformat()

    response = client.get(f"/v1/loans/{active_loan}/outstanding", params={"as_of": as_of}, headers=LENDER)

    assert response.status_code == 200
    data = response.json()
    assert data["as_of"] == as_of
    assert Decimal(data["due_amount"]) == Decimal("8884.88")
    assert data["overdue_installments"][:2] == [1, 2]


def test_final_payment_completes_loan(client: TestClient, notifier: AsyncMock):
    loan_id = create_offer(client, repayment_type="full_payment", tenure_value=1)
    client.post(f"/v1/loans/{loan_id}/accept", headers=BORROWER)
    total = client.get(f"/v1/loans/{loan_id}/schedule", headers=BORROWER).json()["total_amount"]

    payment_id = submit(client, loan_id, amount=total).json()["payment_id"]
    response = client.post(f"/v1/payments/{payment_id}/approve", headers=LENDER)

    assert response.status_code == 200
    assert response.json()["loan_status"] == "completed"
    assert "loan_completed" in sent_events(notifier)

    outstanding = client.get(f"/v1/loans/{loan_id}/outstanding", headers=BORROWER).json()
    assert outstanding["is_complete"] is True
    assert Decimal(outstanding["completion_percentage"]) == Decimal("100")

    response = submit(client, loan_id, amount="1")
    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "loan_not_active"


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
