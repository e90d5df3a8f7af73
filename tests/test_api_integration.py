"""
Integration tests for the Savings Group API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from savings_group.api import create_app
from savings_group.config import SavingsGroupConfig
from savings_group.storage import InMemoryStorage
from savings_group.service import SavingsGroupSystem
from savings_group.errors import DependencyFailure


@pytest.fixture
def system():
    """In-memory system so tests never touch the database file"""
    config = SavingsGroupConfig(use_sqlite=False, notification_webhook_url="")
    return SavingsGroupSystem(storage=InMemoryStorage(), config=config)


@pytest.fixture
def client(system):
    return TestClient(create_app(system))


def register(client, name, role="member"):
    r = client.post("/members", json={"full_name": name, "role": role})
    assert r.status_code == 201
    return r.json()["id"]


@pytest.fixture
def members(client):
    admin = register(client, "Sarah Admin", role="admin")
    borrower = register(client, "Grace Namuli")
    guarantor = register(client, "Peter Okello")
    r = client.post(f"/members/{borrower}/deposit", json={"amount": "5000"})
    assert r.status_code == 201
    return {"admin": admin, "borrower": borrower, "guarantor": guarantor}


class TestHealthEndpoints:
    """Test basic health endpoint"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestMemberFlow:
    """Member and savings endpoints"""

    def test_register_and_get(self, client):
        member_id = register(client, "Grace Namuli")

        r = client.get(f"/members/{member_id}")
        assert r.status_code == 200
        data = r.json()
        assert data["full_name"] == "Grace Namuli"
        assert data["account_balance"] == "0.00"
        assert data["member_number"] == "M00001"

    def test_invalid_email(self, client):
        r = client.post("/members", json={"full_name": "Grace", "email": "nope"})
        assert r.status_code == 422

    def test_unknown_role(self, client):
        r = client.post("/members", json={"full_name": "Grace", "role": "treasurer"})
        assert r.status_code == 422

    def test_unknown_member(self, client):
        r = client.get("/members/missing")
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"

    def test_savings_transactions(self, client):
        member_id = register(client, "Grace Namuli")

        assert client.post(f"/members/{member_id}/deposit", json={"amount": "1000"}).status_code == 201
        assert client.post(f"/members/{member_id}/contribute", json={"amount": "200"}).status_code == 201
        r = client.post(f"/members/{member_id}/withdraw", json={"amount": "300"},
                        headers={"X-Actor-Id": "cashier"})
        assert r.status_code == 201
        assert r.json()["balance_after"] == "900.00"
        assert r.json()["recorded_by"] == "cashier"

        r = client.get(f"/members/{member_id}/transactions")
        assert [t["transaction_type"] for t in r.json()["transactions"]] == ["deposit", "contribution", "withdrawal"]

    def test_overdraw(self, client):
        member_id = register(client, "Grace Namuli")
        r = client.post(f"/members/{member_id}/withdraw", json={"amount": "1"})
        assert r.status_code == 422
        assert r.json()["error"] == "invalid_amount"


class TestLoanFlow:
    """End-to-end loan lifecycle"""

    def test_full_lifecycle(self, client, members):
        admin_headers = {"X-Actor-Id": members["admin"]}

        r = client.post("/loans", json={
            "member_id": members["borrower"],
            "amount": "5000",
            "repayment_period_months": 2,
            "reason": "School fees",
            "guarantors": [{"guarantor_id": members["guarantor"], "amount": "1000"}]
        }, headers={"X-Actor-Id": members["borrower"]})
        assert r.status_code == 201
        loan = r.json()
        assert loan["status"] == "pending_guarantors"
        assert loan["guarantees"][0]["decision"] == "undecided"

        r = client.get(f"/members/{members['guarantor']}/guarantee-requests")
        assert [l["id"] for l in r.json()["loans"]] == [loan["id"]]

        r = client.post(f"/loans/{loan['id']}/guarantees/{members['guarantor']}", json={"accept": True})
        assert r.status_code == 200
        assert r.json()["status"] == "pending"

        r = client.post(f"/loans/{loan['id']}/approve", json={
            "approved_amount": "5000", "interest_rate": "0", "term_months": 2
        }, headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["monthly_payment"] == "2500.00"
        assert r.json()["approved_by"] == members["admin"]

        r = client.post(f"/loans/{loan['id']}/disburse", headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["transaction"]["balance_after"] == "10000.00"

        r = client.post(f"/loans/{loan['id']}/repayments", json={"amount": "2500"}, headers=admin_headers)
        assert r.status_code == 201
        assert r.json()["loan"]["outstanding_balance"] == "2500.00"

        r = client.post(f"/loans/{loan['id']}/repayments", json={"amount": "2600"}, headers=admin_headers)
        assert r.status_code == 201
        data = r.json()
        assert data["loan"]["status"] == "completed"
        assert data["credited"]["amount"] == "100.00"

        r = client.get(f"/loans/{loan['id']}")
        assert len(r.json()["repayments"]) == 2

        r = client.get(f"/notifications/{members['admin']}")
        types = {n["notification_type"] for n in r.json()["notifications"]}
        assert "guarantors_approved" in types

    def test_list_and_stats(self, client, members):
        client.post("/loans", json={"member_id": members["borrower"], "amount": "1000",
                                    "repayment_period_months": 6})

        r = client.get("/loans", params={"status": "pending"})
        assert len(r.json()["loans"]) == 1
        assert client.get("/loans", params={"status": "approved"}).json()["loans"] == []

        r = client.get("/loans/stats")
        assert r.status_code == 200
        assert r.json()["pending"] == 1
        assert r.json()["total_outstanding"] == "0.00"

    def test_invalid_status_filter(self, client):
        assert client.get("/loans", params={"status": "sideways"}).status_code == 422

    def test_reject_and_cancel(self, client, members):
        first = client.post("/loans", json={"member_id": members["borrower"], "amount": "1000",
                                            "repayment_period_months": 6}).json()
        second = client.post("/loans", json={"member_id": members["borrower"], "amount": "1000",
                                             "repayment_period_months": 6}).json()

        r = client.post(f"/loans/{first['id']}/reject", json={"reason": "Too many open loans"})
        assert r.json()["status"] == "rejected"
        assert r.json()["rejection_reason"] == "Too many open loans"

        r = client.post(f"/loans/{second['id']}/cancel")
        assert r.json()["status"] == "cancelled"


class TestErrorMapping:
    """Loan engine errors map to HTTP status codes"""

    def test_insufficient_coverage(self, client, members):
        r = client.post("/loans", json={"member_id": members["borrower"], "amount": "9000",
                                        "repayment_period_months": 6})
        assert r.status_code == 422
        assert r.json()["error"] == "insufficient_coverage"
        assert r.json()["shortfall"] == "5000.00"

    def test_invalid_state(self, client, members):
        loan = client.post("/loans", json={"member_id": members["borrower"], "amount": "1000",
                                           "repayment_period_months": 6}).json()

        r = client.post(f"/loans/{loan['id']}/disburse")
        assert r.status_code == 409
        data = r.json()
        assert data["error"] == "invalid_state"
        assert data["current"] == "pending"
        assert data["expected"] == ["approved"]

    def test_loan_not_found(self, client):
        assert client.get("/loans/missing").status_code == 404

    def test_invalid_amount(self, client, members):
        r = client.post("/loans", json={"member_id": members["borrower"], "amount": "-5",
                                        "repayment_period_months": 6})
        assert r.status_code == 422
        assert r.json()["error"] == "invalid_amount"

    def test_amount_too_large(self, client, members):
        r = client.post(f"/members/{members['borrower']}/deposit", json={"amount": "1e30"})
        assert r.status_code == 422
        assert r.json()["error"] == "invalid_amount"

        r = client.post("/loans", json={"member_id": members["borrower"], "amount": "1e30",
                                        "repayment_period_months": 6})
        assert r.status_code == 422
        assert r.json()["error"] == "invalid_amount"

    def test_rule_violation(self, client, members):
        r = client.post("/loans", json={
            "member_id": members["borrower"], "amount": "100", "repayment_period_months": 6,
            "guarantors": [{"guarantor_id": members["borrower"], "amount": "100"}]
        })
        assert r.status_code == 422
        assert r.json()["error"] == "invalid_request"

    def test_dependency_failure(self, client, system, members, monkeypatch):
        def broken(*args, **kwargs):
            raise DependencyFailure("store unavailable")

        monkeypatch.setattr(system.loan_manager, "get_loan_stats", broken)
        r = client.get("/loans/stats")
        assert r.status_code == 503
