"""Tests for payments: recording, voiding, balance recalculation."""
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from allstar.domain.billing import BillingValidationError, BillingNotFoundError
from allstar.infrastructure.db.models import InvoiceModel, PaymentModel
from allstar.application.invoices import GenerateInvoicesForBusinessUnitUseCase
from allstar.application.payments import (
    RecordPaymentUseCase, VoidPaymentUseCase, RecalculateBalanceUseCase,
    get_payment_history, get_customer_payment_summary,
)
from allstar.application.sms import SmsResult


@pytest.fixture
def invoiced(db_session, bulihan, make_subscription):
    """Subscription with a 1000 invoice due 2025-03-15."""
    sub = make_subscription(bulihan, name="Maria")
    GenerateInvoicesForBusinessUnitUseCase(db_session).execute(
        bulihan.id, 2025, 3, notify_sms=False, today=date(2025, 3, 10),
    )
    invoice = db_session.query(InvoiceModel).filter(InvoiceModel.subscription_id == sub.id).one()
    return sub, invoice


def _pay(db, sub, amount, **kw):
    return RecordPaymentUseCase(db).execute(
        subscription_id=sub.id,
        amount=amount,
        mode=kw.pop("mode", "Cash"),
        settlement_date=kw.pop("settlement_date", date(2025, 3, 12)),
        **kw,
    )


class TestRecordPayment:
    def test_full_payment(self, db_session, invoiced):
        sub, invoice = invoiced

        result = _pay(db_session, sub, "1000")

        assert result.invoice_id == invoice.id
        assert result.invoice_status == "Paid"
        assert result.new_balance == Decimal("0")
        db_session.refresh(invoice)
        assert invoice.payment_status == "Paid"

    def test_partial_payment(self, db_session, invoiced):
        sub, _ = invoiced

        result = _pay(db_session, sub, 400)

        assert result.invoice_status == "Partially Paid"
        assert result.new_balance == Decimal("600")

    def test_overpayment_becomes_credit(self, db_session, bulihan, invoiced):
        sub, _ = invoiced
        result = _pay(db_session, sub, 1500)
        assert result.new_balance == Decimal("-500")

        GenerateInvoicesForBusinessUnitUseCase(db_session).execute(
            bulihan.id, 2025, 4, notify_sms=False, today=date(2025, 4, 10),
        )

        april = (
            db_session.query(InvoiceModel)
            .filter(InvoiceModel.subscription_id == sub.id)
            .order_by(InvoiceModel.id.desc())
            .first()
        )
        assert april.previous_balance == Decimal("-500")
        assert april.amount_due == Decimal("500")

    def test_links_to_given_invoice(self, db_session, bulihan, invoiced):
        sub, march = invoiced
        GenerateInvoicesForBusinessUnitUseCase(db_session).execute(
            bulihan.id, 2025, 4, notify_sms=False, today=date(2025, 4, 10),
        )

        result = _pay(db_session, sub, 1000, invoice_id=march.id)

        assert result.invoice_id == march.id

    def test_defaults_to_latest_open_invoice(self, db_session, bulihan, invoiced):
        sub, march = invoiced
        GenerateInvoicesForBusinessUnitUseCase(db_session).execute(
            bulihan.id, 2025, 4, notify_sms=False, today=date(2025, 4, 10),
        )

        result = _pay(db_session, sub, 500)

        assert result.invoice_id != march.id

    def test_without_open_invoice(self, db_session, bulihan, make_subscription):
        sub = make_subscription(bulihan)

        result = _pay(db_session, sub, 300)

        assert result.invoice_id is None
        assert result.invoice_status is None
        assert result.new_balance == Decimal("-300")

    @pytest.mark.parametrize("amount", [0, -50, "abc"])
    def test_invalid_amount(self, db_session, invoiced, amount):
        sub, _ = invoiced
        with pytest.raises(BillingValidationError):
            _pay(db_session, sub, amount)

    def test_unknown_mode(self, db_session, invoiced):
        sub, _ = invoiced
        with pytest.raises(BillingValidationError, match="mode"):
            _pay(db_session, sub, 100, mode="Barter")

    def test_invoice_of_other_subscription(self, db_session, bulihan, make_subscription, invoiced):
        _, invoice = invoiced
        other = make_subscription(bulihan)
        with pytest.raises(BillingNotFoundError):
            _pay(db_session, other, 100, invoice_id=invoice.id)

    def test_unknown_subscription(self, db_session):
        with pytest.raises(BillingNotFoundError):
            RecordPaymentUseCase(db_session).execute(404, 100, "Cash", date(2025, 3, 1))

    def test_receipt_sms(self, db_session, invoiced):
        sub, _ = invoiced
        with patch(
            "allstar.application.payments.send_sms",
            return_value=SmsResult(success=True, message_id="9"),
        ) as sms:
            result = _pay(db_session, sub, 400, notify_sms=True)

        assert result.sms_sent is True
        text = sms.call_args.args[1]
        assert "P400" in text
        assert "Remaining balance: P600" in text


class TestVoidPayment:
    def test_paid_back_to_partially_paid(self, db_session, invoiced):
        sub, invoice = invoiced
        _pay(db_session, sub, 400)
        second = _pay(db_session, sub, 600)
        assert second.invoice_status == "Paid"

        result = VoidPaymentUseCase(db_session).execute(second.payment_id)

        assert result.invoice_status == "Partially Paid"
        assert result.new_balance == Decimal("600")
        assert db_session.get(PaymentModel, second.payment_id) is None
        db_session.refresh(invoice)
        assert invoice.payment_status == "Partially Paid"

    def test_back_to_unpaid(self, db_session, invoiced):
        sub, _ = invoiced
        payment = _pay(db_session, sub, 1000)

        result = VoidPaymentUseCase(db_session).execute(payment.payment_id)

        assert result.invoice_status == "Unpaid"
        assert result.new_balance == Decimal("1000")

    def test_unknown_payment(self, db_session):
        with pytest.raises(BillingNotFoundError):
            VoidPaymentUseCase(db_session).execute(404)


class TestRecalculateBalance:
    def test_rebuilds_from_history(self, db_session, invoiced):
        sub, _ = invoiced
        _pay(db_session, sub, 250)
        sub.balance = Decimal("9999")
        db_session.commit()

        balance = RecalculateBalanceUseCase(db_session).execute(sub.id)

        assert balance == Decimal("750")
        db_session.refresh(sub)
        assert sub.balance == Decimal("750")

    def test_carried_balance_counts_payment_once(self, db_session, bulihan, invoiced):
        sub, _ = invoiced
        _pay(db_session, sub, 400)
        GenerateInvoicesForBusinessUnitUseCase(db_session).execute(
            bulihan.id, 2025, 4, notify_sms=False, today=date(2025, 4, 10),
        )
        april = (
            db_session.query(InvoiceModel)
            .filter(InvoiceModel.subscription_id == sub.id)
            .order_by(InvoiceModel.due_date.desc())
            .first()
        )
        db_session.refresh(sub)

        assert april.previous_balance == Decimal("600")
        assert april.amount_due == Decimal("1600")
        # the carried amount stays on the subscription instead of resetting to 0
        assert sub.balance == Decimal("1600")
        assert RecalculateBalanceUseCase(db_session).execute(sub.id) == Decimal("1600")


class TestQueries:
    def test_history_newest_first(self, db_session, invoiced):
        sub, _ = invoiced
        _pay(db_session, sub, 100, settlement_date=date(2025, 3, 1))
        _pay(db_session, sub, 200, settlement_date=date(2025, 3, 5))

        history = get_payment_history(db_session, sub.id)

        assert [p.amount for p in history] == [Decimal("200"), Decimal("100")]

    def test_history_unknown_subscription(self, db_session):
        with pytest.raises(BillingNotFoundError):
            get_payment_history(db_session, 404)

    def test_customer_summary(self, db_session, invoiced):
        sub, _ = invoiced
        _pay(db_session, sub, 100, settlement_date=date(2025, 3, 1))
        _pay(db_session, sub, 1400, settlement_date=date(2025, 3, 5))

        summary = get_customer_payment_summary(db_session, sub.customer_id)

        assert summary["customer_name"] == "Maria"
        assert summary["total_paid"] == Decimal("1500")
        assert summary["payment_count"] == 2
        assert summary["last_payment_date"] == date(2025, 3, 5)
        assert summary["balance"] == Decimal("-500")
        assert summary["balance_label"] == "Credits"
        assert summary["balance_display"] == "₱500"
