"""
Integration tests for the Loan Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from datetime import date
from fastapi.testclient import TestClient

from loan_ledger.api import create_app, error_status
from loan_ledger.config import LedgerConfig
from loan_ledger.store import InMemoryLoanStore
from loan_ledger.clock import FixedClock
from loan_ledger.service import LoanService
from loan_ledger.errors import ConcurrentModification, InvalidPayment, LoanNotFound


@pytest.fixture
def service():
    return LoanService(InMemoryLoanStore(), FixedClock(date(2024, 1, 7)), config=LedgerConfig())


@pytest.fixture
def client(service):
    """Create a test client backed by an in-memory store"""
    return TestClient(create_app(service))


def create_weekly(client, loan_id="weekly-1"):
    r = client.post("/loans", json={
        "loan_id": loan_id,
        "principal": 1000000,
        "kind": "Weekly",
        "given_date": "2024-01-01",
        "anchor_date": "2024-01-07"
    })
    assert r.status_code == 201
    return r.json()


class TestHealthEndpoints:

    def test_health(self, client):
        """Test health endpoint"""
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestLoanCreation:
    """Loan creation and validation errors"""

    def test_create_weekly_loan(self, client):
        data = create_weekly(client)

        assert data["loan_id"] == "weekly-1"
        assert data["plan"]["periodic_amount"] == 100000
        assert data["plan"]["period_count"] == 10
        assert data["state"]["balance"] == 1000000

    def test_anchor_not_sunday(self, client):
        r = client.post("/loans", json={
            "principal": 1000000,
            "kind": "weekly_installment",
            "given_date": "2024-01-01",
            "anchor_date": "2024-01-08"
        })
        assert r.status_code == 400
        body = r.json()
        assert body["code"] == "SCHEDULE_ANCHOR_MISMATCH"
        assert body["details"]["anchor_date"] == "2024-01-08"

    def test_unknown_kind(self, client):
        r = client.post("/loans", json={
            "principal": 1000000,
            "kind": "gold",
            "given_date": "2024-01-01",
            "anchor_date": "2024-01-07"
        })
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_REQUEST"

    def test_bad_date(self, client):
        r = client.post("/loans", json={
            "principal": 1000000,
            "kind": "weekly",
            "given_date": "2024-13-01",
            "anchor_date": "2024-01-07"
        })
        assert r.status_code == 400

    def test_duplicate_loan_id(self, client):
        create_weekly(client)
        r = client.post("/loans", json={
            "loan_id": "weekly-1",
            "principal": 1000000,
            "kind": "weekly",
            "given_date": "2024-01-01",
            "anchor_date": "2024-01-07"
        })
        assert r.status_code == 400

    def test_missing_loan(self, client):
        r = client.get("/loans/missing")
        assert r.status_code == 404
        assert r.json()["code"] == "LOAN_NOT_FOUND"


class TestPaymentFlow:
    """End-to-end payment recording"""

    def test_record_and_read(self, client):
        create_weekly(client)

        r = client.post("/loans/weekly-1/payments", json={"amount": 100000, "mode": "gpay"})
        assert r.status_code == 201
        assert r.json()["payment"]["paid_date"] == "2024-01-07"
        assert r.json()["payment"]["mode"] == "upi"
        assert r.json()["state"]["balance"] == 900000

        r = client.get("/loans/weekly-1")
        assert r.status_code == 200
        data = r.json()
        assert data["summary"]["periods_remaining"] == 9
        assert data["maturity_date"] == "2024-03-10"
        assert len(data["payments"]) == 1

    def test_overpayment(self, client):
        create_weekly(client)

        r = client.post("/loans/weekly-1/payments", json={"amount": 1100000})
        assert r.status_code == 400
        body = r.json()
        assert body["code"] == "OVERPAYMENT"
        assert body["details"]["excess"] == 100000

    def test_undo(self, client):
        create_weekly(client)
        client.post("/loans/weekly-1/payments", json={"amount": 100000, "paid_date": "2024-01-07"})

        r = client.delete("/loans/weekly-1/payments/last")
        assert r.status_code == 200
        assert r.json()["state"]["balance"] == 1000000

        r = client.delete("/loans/weekly-1/payments/last")
        assert r.status_code == 400
        assert r.json()["code"] == "NOTHING_TO_UNDO"

    def test_preview(self, client):
        create_weekly(client)

        r = client.post("/loans/weekly-1/payments/preview", json={"amount": 150000})
        assert r.status_code == 200
        data = r.json()
        assert data["periods_covered"] == "1.5"
        assert data["balance_after"] == 850000
        assert data["would_overpay"] is False

    def test_schedule(self, client):
        create_weekly(client)

        r = client.get("/loans/weekly-1/schedule")
        data = r.json()
        assert data["open_ended"] is False
        assert len(data["schedule"]) == 10
        assert data["schedule"][0]["due_date"] == "2024-01-07"

    def test_conflict_maps_to_409(self, client, service, monkeypatch):
        create_weekly(client)

        def conflicting_write(*args, **kwargs):
            raise ConcurrentModification("weekly-1", 0, 1)

        monkeypatch.setattr(service, "record_payment", conflicting_write)
        r = client.post("/loans/weekly-1/payments", json={"amount": 100000})
        assert r.status_code == 409
        assert r.json()["code"] == "CONCURRENT_MODIFICATION"


class TestOverdueEndpoints:

    def test_loan_overdue(self, client):
        create_weekly(client)
        for _ in range(3):
            client.post("/loans/weekly-1/payments", json={"amount": 100000})

        r = client.get("/loans/weekly-1/overdue", params={"as_of": "2024-02-27"})
        assert r.status_code == 200
        data = r.json()
        assert data["days_overdue"] == 30
        assert data["overdue"][0]["index"] == 3

    def test_portfolio_overdue(self, client):
        create_weekly(client, "weekly-1")
        create_weekly(client, "weekly-2")
        client.post("/loans/weekly-2/payments", json={"amount": 1000000})

        r = client.get("/loans/overdue", params={"as_of": "2024-02-27"})
        assert r.status_code == 200
        assert [loan["loan_id"] for loan in r.json()["loans"]] == ["weekly-1"]

    def test_collections_window(self, client):
        create_weekly(client, "weekly-1")
        create_weekly(client, "weekly-2")
        client.post("/loans/weekly-2/payments", json={"amount": 300000})

        r = client.get("/loans/collections", params={"start": "2024-01-14", "end": "2024-01-20"})
        assert r.status_code == 200
        data = r.json()
        assert [loan["loan_id"] for loan in data["loans"]] == ["weekly-1"]
        assert data["loans"][0]["entries"][0]["due_date"] == "2024-01-14"
        assert data["total_due"] == 100000

    def test_collections_today(self, client):
        create_weekly(client)

        r = client.get("/loans/collections")
        assert r.status_code == 200
        assert r.json()["total_due"] == 100000

    def test_collections_inverted_window(self, client):
        r = client.get("/loans/collections", params={"start": "2024-02-01", "end": "2024-01-01"})
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_REQUEST"


class TestClosingFlows:
    """Settlement, foreclosure and default"""

    def test_settle_interest_only(self, client):
        r = client.post("/loans", json={
            "loan_id": "vaddi-1",
            "principal": 1000000,
            "kind": "vaddi",
            "given_date": "2024-01-01",
            "anchor_date": "2024-02-01",
            "rate_percent": "2"
        })
        assert r.status_code == 201

        r = client.get("/loans/vaddi-1/schedule")
        assert r.json()["open_ended"] is True
        assert len(r.json()["schedule"]) == 12

        r = client.post("/loans/vaddi-1/settle", json={})
        assert r.status_code == 200
        assert r.json()["state"]["status"] == "settled"
        assert r.json()["payment"]["kind"] == "settlement"

        r = client.post("/loans/vaddi-1/settle", json={})
        assert r.status_code == 400
        assert r.json()["code"] == "LOAN_ALREADY_SETTLED"

    def test_foreclosure(self, client):
        client.post("/loans", json={
            "loan_id": "vehicle-1",
            "principal": 1000000,
            "kind": "auto-finance",
            "given_date": "2024-01-01",
            "anchor_date": "2024-02-01",
            "rate_percent": "20",
            "months": 12
        })
        for _ in range(7):
            client.post("/loans/vehicle-1/payments", json={"amount": 100000})

        r = client.post("/loans/vehicle-1/foreclosure/quote", json={"penalty_percent": "2"})
        assert r.status_code == 200
        assert r.json()["foreclosure_amount"] == 425000

        r = client.post("/loans/vehicle-1/foreclosure", json={})
        assert r.status_code == 200
        assert r.json()["state"]["status"] == "foreclosed"
        assert r.json()["quote"]["savings"] == 75000

        r = client.post("/loans/vehicle-1/payments", json={"amount": 100000})
        assert r.status_code == 400
        assert r.json()["code"] == "LOAN_ALREADY_SETTLED"

    def test_mark_defaulted(self, client):
        create_weekly(client)

        r = client.post("/loans/weekly-1/default", json={"defaulted": True})
        assert r.status_code == 200
        assert r.json()["state"]["status"] == "defaulted"


class TestErrorStatus:

    def test_status_mapping(self):
        assert error_status(LoanNotFound("x")) == 404
        assert error_status(ConcurrentModification("x", 1, 2)) == 409
        assert error_status(InvalidPayment("bad")) == 400
