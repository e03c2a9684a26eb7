"""
Payment use cases.

A payment lowers the subscription balance and settles the invoice it is
linked to. Balance change and invoice status are written in the same
transaction while the subscription row is locked.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from allstar.domain.billing import (
    BillingValidationError, BillingNotFoundError, OPEN_STATUSES, ZERO,
    calculate_new_balance, determine_payment_status, format_balance_display,
    round_money, to_money,
)
from allstar.infrastructure.db.models import (
    CustomerModel, InvoiceModel, PaymentModel, SubscriptionModel,
)
from allstar.application.sms import send_sms, payment_received_text

logger = logging.getLogger(__name__)

PAYMENT_MODES = ("Cash", "E-Wallet", "Referral Credit")


def _lock_subscription(db: Session, subscription_id: int) -> SubscriptionModel:
    sub = (
        db.query(SubscriptionModel)
        .filter(SubscriptionModel.id == subscription_id)
        .with_for_update()
        .first()
    )
    if not sub:
        raise BillingNotFoundError("Subscription not found")
    return sub


def recompute_invoice_status(db: Session, invoice: InvoiceModel) -> str:
    """Set payment_status from the payments linked to the invoice (caller commits)."""
    total_paid = db.query(func.coalesce(func.sum(PaymentModel.amount), 0)).filter(
        PaymentModel.invoice_id == invoice.id,
    ).scalar()
    invoice.payment_status = determine_payment_status(total_paid, invoice.amount_due)
    return invoice.payment_status


# ============================================================================
# Record / void
# ============================================================================


@dataclass
class RecordPaymentResult:
    payment_id: int
    invoice_id: int | None
    invoice_status: str | None
    new_balance: Decimal
    sms_sent: bool = False


class RecordPaymentUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        subscription_id: int,
        amount,
        mode: str,
        settlement_date: date,
        invoice_id: int | None = None,
        notes: str | None = None,
        notify_sms: bool = False,
    ) -> RecordPaymentResult:
        amount = round_money(to_money(amount))
        if amount <= 0:
            raise BillingValidationError("Payment amount must be greater than zero")
        if mode not in PAYMENT_MODES:
            raise BillingValidationError(f"Unknown payment mode: {mode}")

        sub = _lock_subscription(self.db, subscription_id)
        invoice = self._target_invoice(sub.id, invoice_id)

        payment = PaymentModel(
            subscription_id=sub.id,
            invoice_id=invoice.id if invoice else None,
            amount=amount,
            mode=mode,
            settlement_date=settlement_date,
            notes=notes.strip() if notes else None,
        )
        self.db.add(payment)
        self.db.flush()

        sub.balance = calculate_new_balance(sub.balance, amount)
        status = recompute_invoice_status(self.db, invoice) if invoice else None
        self.db.commit()

        logger.info(
            "Payment #%d of %s for subscription #%d, balance now %s",
            payment.id, amount, sub.id, sub.balance,
        )

        result = RecordPaymentResult(
            payment_id=payment.id,
            invoice_id=invoice.id if invoice else None,
            invoice_status=status,
            new_balance=to_money(sub.balance),
        )
        if notify_sms:
            customer = self.db.query(CustomerModel).filter(CustomerModel.id == sub.customer_id).first()
            if customer and customer.mobile_number:
                sms = send_sms(
                    customer.mobile_number,
                    payment_received_text(customer.name, amount, sub.balance),
                )
                result.sms_sent = sms.success
        return result

    def _target_invoice(self, subscription_id: int, invoice_id: int | None) -> InvoiceModel | None:
        """Given invoice, else the most recent open one."""
        if invoice_id is not None:
            invoice = (
                self.db.query(InvoiceModel)
                .filter(InvoiceModel.id == invoice_id)
                .with_for_update()
                .first()
            )
            if not invoice or invoice.subscription_id != subscription_id:
                raise BillingNotFoundError("Invoice not found")
            return invoice

        return (
            self.db.query(InvoiceModel)
            .filter(
                InvoiceModel.subscription_id == subscription_id,
                InvoiceModel.payment_status.in_(OPEN_STATUSES),
            )
            .order_by(InvoiceModel.due_date.desc(), InvoiceModel.id.desc())
            .with_for_update()
            .first()
        )


@dataclass
class VoidPaymentResult:
    subscription_id: int
    invoice_id: int | None
    invoice_status: str | None
    new_balance: Decimal


class VoidPaymentUseCase:
    """Delete a payment and put its amount back on the balance."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, payment_id: int) -> VoidPaymentResult:
        payment = self.db.query(PaymentModel).filter(PaymentModel.id == payment_id).first()
        if not payment:
            raise BillingNotFoundError("Payment not found")

        sub = _lock_subscription(self.db, payment.subscription_id)
        invoice = None
        if payment.invoice_id is not None:
            invoice = (
                self.db.query(InvoiceModel)
                .filter(InvoiceModel.id == payment.invoice_id)
                .with_for_update()
                .first()
            )

        amount = to_money(payment.amount)
        self.db.delete(payment)
        self.db.flush()

        sub.balance = round_money(to_money(sub.balance) + amount)
        status = recompute_invoice_status(self.db, invoice) if invoice else None
        self.db.commit()

        logger.info(
            "Voided payment #%d (%s) for subscription #%d, balance now %s",
            payment_id, amount, sub.id, sub.balance,
        )
        return VoidPaymentResult(
            subscription_id=sub.id,
            invoice_id=invoice.id if invoice else None,
            invoice_status=status,
            new_balance=to_money(sub.balance),
        )


class RecalculateBalanceUseCase:
    """Rebuild the balance from history: invoice charges minus payments."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, subscription_id: int) -> Decimal:
        sub = _lock_subscription(self.db, subscription_id)

        charged = self.db.query(func.coalesce(func.sum(InvoiceModel.charge), 0)).filter(
            InvoiceModel.subscription_id == subscription_id,
        ).scalar()
        paid = self.db.query(func.coalesce(func.sum(PaymentModel.amount), 0)).filter(
            PaymentModel.subscription_id == subscription_id,
        ).scalar()

        new_balance = round_money(to_money(charged) - to_money(paid))
        if new_balance != to_money(sub.balance):
            logger.warning(
                "Balance drift on subscription #%d: stored %s, recalculated %s",
                sub.id, sub.balance, new_balance,
            )
        sub.balance = new_balance
        self.db.commit()
        return new_balance


# ============================================================================
# Queries
# ============================================================================


def get_payment_history(db: Session, subscription_id: int) -> list[PaymentModel]:
    if not db.query(SubscriptionModel.id).filter(SubscriptionModel.id == subscription_id).first():
        raise BillingNotFoundError("Subscription not found")
    return (
        db.query(PaymentModel)
        .filter(PaymentModel.subscription_id == subscription_id)
        .order_by(PaymentModel.settlement_date.desc(), PaymentModel.id.desc())
        .all()
    )


def get_customer_payment_summary(db: Session, customer_id: int) -> dict:
    """Totals across all of a customer's subscriptions."""
    customer = db.query(CustomerModel).filter(CustomerModel.id == customer_id).first()
    if not customer:
        raise BillingNotFoundError("Customer not found")

    subs = db.query(SubscriptionModel).filter(SubscriptionModel.customer_id == customer_id).all()
    sub_ids = [s.id for s in subs]

    total_paid = ZERO
    payment_count = 0
    last_payment_date = None
    if sub_ids:
        total_paid, payment_count, last_payment_date = db.query(
            func.coalesce(func.sum(PaymentModel.amount), 0),
            func.count(PaymentModel.id),
            func.max(PaymentModel.settlement_date),
        ).filter(PaymentModel.subscription_id.in_(sub_ids)).one()

    balance = round_money(sum((to_money(s.balance) for s in subs), ZERO))
    display = format_balance_display(balance)
    return {
        "customer_id": customer.id,
        "customer_name": customer.name,
        "subscriptions": len(subs),
        "total_paid": round_money(to_money(total_paid)),
        "payment_count": payment_count,
        "last_payment_date": last_payment_date,
        "balance": balance,
        "balance_label": display.label,
        "balance_display": display.display,
    }
