"""
Tests for the billing HTTP API (cron, invoices, subscriptions, payments)
"""
from datetime import date
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from allstar.main import app
from allstar.api.deps import get_db
from allstar.config import Settings
from allstar.infrastructure.db.models import InvoiceModel
from allstar.application.invoices import GenerateInvoicesForBusinessUnitUseCase
from allstar.application.sms import SmsResult


@pytest.fixture
def client(db_session):
    """Test client bound to the in-memory test database"""
    def _override():
        yield db_session

    app.dependency_overrides[get_db] = _override
    with patch("allstar.application.invoices.send_sms", return_value=SmsResult(success=False, error="off")), \
            patch("allstar.application.payments.send_sms", return_value=SmsResult(success=False, error="off")):
        yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def invoiced_sub(db_session, bulihan, make_subscription):
    sub = make_subscription(bulihan)
    GenerateInvoicesForBusinessUnitUseCase(db_session).execute(
        bulihan.id, 2025, 3, notify_sms=False, today=date(2025, 3, 10),
    )
    return sub


def test_health(client):
    assert client.get("/health").text == "ok"


def test_ready_checks_database(client, db_engine):
    with patch("allstar.infrastructure.db.session.get_engine", return_value=db_engine):
        resp = client.get("/ready")
    assert resp.status_code == 200
    assert resp.text == "ok"


class TestCron:
    def test_open_without_secret(self, client, bulihan):
        with patch("allstar.api.deps.get_settings", return_value=Settings(CRON_SECRET="")):
            resp = client.get("/api/cron")
        assert resp.status_code == 200
        body = resp.json()
        assert set(body) == {
            "date", "tasks_executed", "invoice_generation",
            "due_reminders", "disconnection_warnings", "errors",
        }

    def test_rejects_wrong_secret(self, client):
        with patch("allstar.api.deps.get_settings", return_value=Settings(CRON_SECRET="s3cret")):
            assert client.get("/api/cron").status_code == 401
            assert client.get("/api/cron", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_accepts_bearer_secret(self, client):
        with patch("allstar.api.deps.get_settings", return_value=Settings(CRON_SECRET="s3cret")):
            resp = client.get("/api/cron", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200

    def test_manual_generation(self, client, db_session, bulihan, make_subscription):
        make_subscription(bulihan)
        with patch("allstar.api.deps.get_settings", return_value=Settings(CRON_SECRET="")):
            resp = client.post("/api/cron", json={"task": "generate_invoices", "business_unit_id": bulihan.id})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["invoice_generation"][0]["generated"] == 1

    def test_manual_unknown_task(self, client, bulihan):
        with patch("allstar.api.deps.get_settings", return_value=Settings(CRON_SECRET="")):
            resp = client.post("/api/cron", json={"task": "bake", "business_unit_id": bulihan.id})
        assert resp.status_code == 422

    def test_manual_unknown_unit(self, client):
        with patch("allstar.api.deps.get_settings", return_value=Settings(CRON_SECRET="")):
            resp = client.post("/api/cron", json={"task": "send_due_reminders", "business_unit_id": 404})
        assert resp.status_code == 404


class TestInvoices:
    def test_activation_invoice(self, client, bulihan, make_subscription):
        sub = make_subscription(bulihan)
        resp = client.post("/api/v1/invoices/generate", json={
            "subscription_id": sub.id,
            "activation_date": "2025-03-05",
            "send_sms": False,
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["amount"] == "333.33"
        assert body["days"] == 10

    def test_activation_missing_date(self, client, bulihan, make_subscription):
        sub = make_subscription(bulihan)
        resp = client.post("/api/v1/invoices/generate", json={"subscription_id": sub.id})
        assert resp.status_code == 422

    def test_activation_unknown_subscription(self, client):
        resp = client.post("/api/v1/invoices/generate", json={
            "subscription_id": 404, "activation_date": "2025-03-05",
        })
        assert resp.status_code == 404
        assert resp.json() == {"error": "Subscription not found"}

    def test_batch(self, client, bulihan, make_subscription):
        make_subscription(bulihan)
        resp = client.post("/api/v1/invoices/generate-batch", json={
            "business_unit_id": bulihan.id, "year": 2025, "month": 3, "send_sms": False,
        })
        assert resp.status_code == 200
        assert resp.json()["generated"] == 1


class TestSubscriptions:
    def test_disconnect(self, client, invoiced_sub):
        resp = client.post(f"/api/v1/subscriptions/{invoiced_sub.id}/disconnect", json={
            "disconnection_date": "2025-03-25", "send_sms": False,
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "disconnected"
        assert body["invoice"]["amount"] == "300.00"

    def test_disconnect_without_history_is_400(self, client, bulihan, make_subscription):
        sub = make_subscription(bulihan)
        resp = client.post(f"/api/v1/subscriptions/{sub.id}/disconnect", json={
            "disconnection_date": "2025-03-25",
        })
        assert resp.status_code == 400
        assert "No previous invoice" in resp.json()["error"]

    def test_activate(self, client, bulihan, make_subscription):
        sub = make_subscription(bulihan, active=False)
        resp = client.post(f"/api/v1/subscriptions/{sub.id}/activate", json={
            "activation_date": "2025-03-05", "generate_invoice": False,
        })
        assert resp.status_code == 200
        assert resp.json() == {"status": "active", "invoice": None}


class TestPayments:
    def test_record_and_void(self, client, db_session, invoiced_sub):
        resp = client.post("/api/v1/payments", json={
            "subscription_id": invoiced_sub.id,
            "amount": "1,000.00",
            "mode": "E-Wallet",
            "settlement_date": "2025-03-12",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["invoice_status"] == "Paid"
        assert body["new_balance"] == "0.00"

        resp = client.delete(f"/api/v1/payments/{body['payment_id']}")
        assert resp.status_code == 200
        assert resp.json()["invoice_status"] == "Unpaid"
        assert resp.json()["new_balance"] == "1000.00"

    def test_bad_amount(self, client, invoiced_sub):
        resp = client.post("/api/v1/payments", json={
            "subscription_id": invoiced_sub.id, "amount": "10.999", "settlement_date": "2025-03-12",
        })
        assert resp.status_code == 422

    def test_zero_amount_is_400(self, client, invoiced_sub):
        resp = client.post("/api/v1/payments", json={
            "subscription_id": invoiced_sub.id, "amount": "0", "settlement_date": "2025-03-12",
        })
        assert resp.status_code == 400

    def test_void_unknown(self, client):
        assert client.delete("/api/v1/payments/404").status_code == 404

    def test_history(self, client, invoiced_sub):
        for amount, day in (("100", "2025-03-01"), ("200", "2025-03-05")):
            client.post("/api/v1/payments", json={
                "subscription_id": invoiced_sub.id, "amount": amount, "settlement_date": day,
            })

        resp = client.get(f"/api/v1/subscriptions/{invoiced_sub.id}/payments")

        assert resp.status_code == 200
        assert [p["settlement_date"] for p in resp.json()] == ["2025-03-05", "2025-03-01"]

    def test_recalculate(self, client, db_session, invoiced_sub):
        invoiced_sub.balance = 5
        db_session.commit()

        resp = client.post(f"/api/v1/payments/recalculate/{invoiced_sub.id}")

        assert resp.json()["balance"] == "1000.00"
