"""
SQLAlchemy ORM models (back-office tables)
"""
from decimal import Decimal
from datetime import date as date_type
from sqlalchemy import String, Integer, Text, TIMESTAMP, Date, func, Boolean, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from allstar.infrastructure.db.session import Base


class BusinessUnitModel(Base):
    """Operating division (service area) with its own billing cycle"""
    __tablename__ = "business_units"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # mid_month / end_of_month, set once at creation
    billing_class: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class PlanModel(Base):
    """Plan catalog"""
    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    monthly_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class CustomerModel(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    mobile_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    referrer_id: Mapped[int | None] = mapped_column(Integer, nullable=True)  # -> customers

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class SubscriptionModel(Base):
    """Customer's service instance: plan + business unit + running balance"""
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> customers
    business_unit_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> business_units
    plan_id: Mapped[int] = mapped_column(Integer, nullable=False)  # -> plans

    # positive = owed, negative = credit
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")
    invoice_cycle_day: Mapped[str] = mapped_column(String(8), nullable=False)  # 15th / 30th
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    date_installed: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    referral_credit_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class InvoiceModel(Base):
    """Billing-period snapshot. amount_due = max(0, charge + previous_balance)"""
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="CYCLE", server_default="CYCLE")  # CYCLE / ACTIVATION / DISCONNECTION
    from_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    to_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    due_date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)

    charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    previous_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")
    amount_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="Unpaid", server_default="Unpaid")

    is_prorated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    prorated_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index('ix_invoices_sub_due', 'subscription_id', 'due_date'),
    )


class PaymentModel(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    invoice_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)  # -> invoices

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    mode: Mapped[str] = mapped_column(String(32), nullable=False)  # Cash / E-Wallet / Referral Credit
    settlement_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class NotificationLog(Base):
    """Sent SMS log: one row per (subscription, kind, date) to prevent duplicates"""
    __tablename__ = "notification_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)  # INVOICE / DUE_REMINDER / DISCONNECTION_WARNING
    notified_for_date: Mapped[date_type] = mapped_column(Date, nullable=False)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('subscription_id', 'kind', 'notified_for_date', name='uq_notification_once'),
    )
