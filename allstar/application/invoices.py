"""
Invoice use cases: monthly cycle generation per business unit, prorated
activation / disconnection invoices, due-date reminders and disconnection
warnings.

Every invoice absorbs the subscription balance:
    previous_balance = subscription.balance
    amount_due       = max(0, charge + previous_balance)
    balance after    = charge + previous_balance   (what the subscriber now owes,
                                                    or the credit left over)
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from allstar.config import get_settings
from allstar.domain.billing import (
    BillingValidationError, BillingNotFoundError,
    OPEN_STATUSES, STATUS_PAID, STATUS_UNPAID,
    BillingDates, calculate_billing_dates, compute_invoice_amount, compute_prorated_amount,
    apply_referral_discount, is_eligible_for_invoice_generation, last_day_of_month,
    needs_prorating, next_billing_date, round_money, to_money,
)
from allstar.domain.schedule import BillingSchedule, billing_class_for_cycle_day, get_schedule, get_schedules
from allstar.infrastructure.db.models import (
    BusinessUnitModel, CustomerModel, InvoiceModel, PlanModel, SubscriptionModel,
)
from allstar.application.notifications import (
    KIND_INVOICE, KIND_DUE_REMINDER, KIND_DISCONNECTION_WARNING,
    already_notified, log_notification,
)
from allstar.application.sms import (
    send_sms, invoice_generated_text, due_date_reminder_text, disconnection_warning_text,
)

logger = logging.getLogger(__name__)

INVOICE_KIND_CYCLE = "CYCLE"
INVOICE_KIND_ACTIVATION = "ACTIVATION"
INVOICE_KIND_DISCONNECTION = "DISCONNECTION"


# ============================================================================
# Shared helpers
# ============================================================================


def get_business_unit(db: Session, business_unit_id: int) -> BusinessUnitModel:
    unit = db.query(BusinessUnitModel).filter(BusinessUnitModel.id == business_unit_id).first()
    if not unit:
        raise BillingNotFoundError("Business unit not found")
    return unit


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


def billing_class_for_subscription(
    sub: SubscriptionModel,
    unit: BusinessUnitModel,
    schedules: dict[str, BillingSchedule],
) -> str:
    """Unit class, unless the subscription was moved to the other cycle day."""
    schedule = get_schedule(unit.billing_class, schedules)
    if sub.invoice_cycle_day and sub.invoice_cycle_day != schedule.cycle_day:
        return billing_class_for_cycle_day(sub.invoice_cycle_day, schedules)
    return unit.billing_class


def schedule_for_subscription(
    sub: SubscriptionModel,
    unit: BusinessUnitModel,
    schedules: dict[str, BillingSchedule],
) -> BillingSchedule:
    return schedules[billing_class_for_subscription(sub, unit, schedules)]


def _absorb_balance(sub: SubscriptionModel, charge: Decimal) -> tuple[Decimal, Decimal]:
    """Fold the running balance into a new charge.

    Returns (previous_balance, amount_due) and moves sub.balance to the new total.
    """
    previous_balance = to_money(sub.balance or 0)
    amount_due = compute_invoice_amount(charge, previous_balance)
    sub.balance = round_money(charge + previous_balance)
    return previous_balance, amount_due


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, last_day_of_month(year, month))


def _notify_invoice(
    db: Session,
    sub: SubscriptionModel,
    customer: CustomerModel | None,
    unit_name: str,
    amount_due: Decimal,
    due_date: date,
    today: date,
) -> bool:
    if not customer or not customer.mobile_number or amount_due <= 0:
        return False
    if already_notified(db, sub.id, KIND_INVOICE, today):
        return False
    result = send_sms(
        customer.mobile_number,
        invoice_generated_text(customer.name, amount_due, due_date, unit_name),
    )
    if result.success:
        log_notification(db, sub.id, KIND_INVOICE, today)
    return result.success


# ============================================================================
# Monthly cycle generation
# ============================================================================


@dataclass
class GeneratedInvoice:
    invoice_id: int
    subscription_id: int
    customer_name: str
    amount_due: Decimal
    is_prorated: bool


@dataclass
class GenerateInvoicesResult:
    success: bool = False
    generated: int = 0
    skipped: int = 0
    sms_sent: int = 0
    errors: list[str] = field(default_factory=list)
    invoices: list[GeneratedInvoice] = field(default_factory=list)


class GenerateInvoicesForBusinessUnitUseCase:
    """Cycle invoices for every active subscription of a business unit."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        business_unit_id: int,
        year: int,
        month: int,
        notify_sms: bool = True,
        today: date | None = None,
        billing_class: str | None = None,
    ) -> GenerateInvoicesResult:
        """billing_class limits the run to subscriptions billed on that class's schedule."""
        if not 1 <= month <= 12:
            raise BillingValidationError("month must be between 1 and 12")
        if today is None:
            today = date.today()

        settings = get_settings()
        schedules = get_schedules()
        unit = get_business_unit(self.db, business_unit_id)
        result = GenerateInvoicesResult()

        subs = (
            self.db.query(SubscriptionModel)
            .filter(
                SubscriptionModel.business_unit_id == business_unit_id,
                SubscriptionModel.active == True,  # noqa: E712
            )
            .order_by(SubscriptionModel.id)
            .with_for_update()
            .all()
        )
        if billing_class is not None:
            subs = [s for s in subs if billing_class_for_subscription(s, unit, schedules) == billing_class]
        if not subs:
            result.success = True
            return result

        sub_ids = [s.id for s in subs]
        month_start, month_end = _month_bounds(year, month)

        # Already invoiced for a due date inside this month
        invoiced_ids = {
            row[0] for row in self.db.query(InvoiceModel.subscription_id).filter(
                InvoiceModel.subscription_id.in_(sub_ids),
                InvoiceModel.due_date >= month_start,
                InvoiceModel.due_date <= month_end,
            ).all()
        }

        # Subscriptions with any earlier invoice are not first-timers
        previously_invoiced = {
            row[0] for row in self.db.query(InvoiceModel.subscription_id).filter(
                InvoiceModel.subscription_id.in_(sub_ids),
                InvoiceModel.due_date < month_start,
            ).all()
        }

        plans = {p.id: p for p in self.db.query(PlanModel).filter(
            PlanModel.id.in_({s.plan_id for s in subs}),
        ).all()}
        customers = {c.id: c for c in self.db.query(CustomerModel).filter(
            CustomerModel.id.in_({s.customer_id for s in subs}),
        ).all()}
        first_sub_by_customer = self._first_subscription_by_customer(
            list(customers.keys()),
        )

        dates_cache: dict[BillingSchedule, BillingDates] = {}
        pending_sms = []

        for sub in subs:
            if sub.id in invoiced_ids:
                result.skipped += 1
                continue

            plan = plans.get(sub.plan_id)
            if not plan:
                result.errors.append(f"Subscription #{sub.id}: plan not found")
                result.skipped += 1
                continue

            schedule = schedule_for_subscription(sub, unit, schedules)
            if schedule not in dates_cache:
                dates_cache[schedule] = calculate_billing_dates(schedule, year, month)
            dates = dates_cache[schedule]

            installed = sub.date_installed
            if installed and not self._installed_in_time(installed, sub, schedule, dates):
                result.skipped += 1
                continue

            charge = to_money(plan.monthly_fee)
            is_prorated = False
            prorated_days = None

            if installed and sub.id not in previously_invoiced and needs_prorating(
                installed, dates.generation_date, dates.from_date,
            ):
                prorated = compute_prorated_amount(
                    charge, installed, dates.due_date, max_days=settings.PRORATION_MAX_DAYS,
                )
                charge = prorated.amount
                is_prorated = True
                prorated_days = prorated.days

            customer = customers.get(sub.customer_id)
            if (
                customer
                and customer.referrer_id
                and not sub.referral_credit_applied
                and first_sub_by_customer.get(customer.id) == sub.id
            ):
                charge = apply_referral_discount(charge, settings.REFERRAL_DISCOUNT)
                sub.referral_credit_applied = True

            previous_balance, amount_due = _absorb_balance(sub, charge)

            invoice = InvoiceModel(
                subscription_id=sub.id,
                kind=INVOICE_KIND_CYCLE,
                from_date=dates.from_date,
                to_date=dates.to_date,
                due_date=dates.due_date,
                charge=charge,
                previous_balance=previous_balance,
                amount_due=amount_due,
                payment_status=STATUS_PAID if amount_due == 0 else STATUS_UNPAID,
                is_prorated=is_prorated,
                prorated_days=prorated_days,
            )
            self.db.add(invoice)
            self.db.flush()

            result.generated += 1
            result.invoices.append(GeneratedInvoice(
                invoice_id=invoice.id,
                subscription_id=sub.id,
                customer_name=customer.name if customer else "Unknown",
                amount_due=amount_due,
                is_prorated=is_prorated,
            ))
            pending_sms.append((sub, customer, amount_due, dates.due_date))

        self.db.commit()
        logger.info(
            "Invoices for %s %04d-%02d: %d generated, %d skipped",
            unit.name, year, month, result.generated, result.skipped,
        )

        if notify_sms:
            for sub, customer, amount_due, due_date in pending_sms:
                if _notify_invoice(self.db, sub, customer, unit.name, amount_due, due_date, today):
                    result.sms_sent += 1
            self.db.commit()

        result.success = True
        return result

    def _installed_in_time(
        self,
        installed: date,
        sub: SubscriptionModel,
        schedule: BillingSchedule,
        dates: BillingDates,
    ) -> bool:
        """Installed no later than this period's due date."""
        if installed > dates.due_date:
            return False
        if (installed.year, installed.month) == (dates.due_date.year, dates.due_date.month):
            return is_eligible_for_invoice_generation(installed, sub.invoice_cycle_day or schedule.cycle_day)
        return True

    def _first_subscription_by_customer(self, customer_ids: list[int]) -> dict[int, int]:
        """Earliest-installed subscription per customer (referral discount target)."""
        if not customer_ids:
            return {}
        rows = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.customer_id.in_(customer_ids),
        ).all()
        rows.sort(key=lambda s: (s.date_installed or date.max, s.id))
        first: dict[int, int] = {}
        for s in rows:
            first.setdefault(s.customer_id, s.id)
        return first


# ============================================================================
# Prorated single invoices
# ============================================================================


@dataclass
class SingleInvoiceResult:
    invoice_id: int
    amount: Decimal
    amount_due: Decimal
    days: int
    sms_sent: bool = False


class GenerateDisconnectionInvoiceUseCase:
    """Bill from the day after the last invoice's coverage to the disconnection date."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        subscription_id: int,
        disconnection_date: date,
        notify_sms: bool = True,
        set_active: bool | None = None,
    ) -> SingleInvoiceResult:
        settings = get_settings()
        sub = _lock_subscription(self.db, subscription_id)
        plan = self._plan(sub)

        last_invoice = (
            self.db.query(InvoiceModel)
            .filter(InvoiceModel.subscription_id == subscription_id)
            .order_by(InvoiceModel.due_date.desc(), InvoiceModel.id.desc())
            .first()
        )
        if not last_invoice:
            raise BillingValidationError("No previous invoice found. Cannot determine billing period.")

        from_date = last_invoice.to_date + timedelta(days=1)
        if disconnection_date < from_date:
            raise BillingValidationError("No days to bill for disconnection period")

        prorated = compute_prorated_amount(
            plan.monthly_fee, from_date, disconnection_date, max_days=settings.PRORATION_MAX_DAYS,
        )
        if prorated.days <= 0:
            raise BillingValidationError("No days to bill for disconnection period")

        invoice, amount_due = _create_prorated_invoice(
            self.db, sub, INVOICE_KIND_DISCONNECTION,
            from_date, disconnection_date, disconnection_date, prorated.amount, prorated.days,
        )
        if set_active is not None:
            sub.active = set_active
        self.db.commit()
        logger.info(
            "Disconnection invoice #%d for subscription #%d: %s (%d days)",
            invoice.id, sub.id, prorated.amount, prorated.days,
        )

        sent = False
        if notify_sms:
            sent = _notify_single(self.db, sub, amount_due, disconnection_date)
        return SingleInvoiceResult(invoice.id, prorated.amount, amount_due, prorated.days, sent)

    def _plan(self, sub: SubscriptionModel) -> PlanModel:
        plan = self.db.query(PlanModel).filter(PlanModel.id == sub.plan_id).first()
        if not plan:
            raise BillingNotFoundError("Plan not found")
        return plan


class GenerateActivationInvoiceUseCase:
    """Bill from the activation date to the unit's next billing date."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        subscription_id: int,
        activation_date: date,
        notify_sms: bool = True,
        set_active: bool | None = None,
    ) -> SingleInvoiceResult:
        settings = get_settings()
        sub = _lock_subscription(self.db, subscription_id)
        plan = self.db.query(PlanModel).filter(PlanModel.id == sub.plan_id).first()
        if not plan:
            raise BillingNotFoundError("Plan not found")
        unit = get_business_unit(self.db, sub.business_unit_id)

        schedule = schedule_for_subscription(sub, unit, get_schedules())
        billing_date = next_billing_date(schedule, activation_date)

        prorated = compute_prorated_amount(
            plan.monthly_fee, activation_date, billing_date, max_days=settings.PRORATION_MAX_DAYS,
        )
        if prorated.days <= 0:
            raise BillingValidationError("No days to bill for activation period")

        invoice, amount_due = _create_prorated_invoice(
            self.db, sub, INVOICE_KIND_ACTIVATION,
            activation_date, billing_date, billing_date, prorated.amount, prorated.days,
        )
        if set_active is not None:
            sub.active = set_active
        self.db.commit()
        logger.info(
            "Activation invoice #%d for subscription #%d: %s (%d days)",
            invoice.id, sub.id, prorated.amount, prorated.days,
        )

        sent = False
        if notify_sms:
            sent = _notify_single(self.db, sub, amount_due, billing_date)
        return SingleInvoiceResult(invoice.id, prorated.amount, amount_due, prorated.days, sent)


def _create_prorated_invoice(
    db: Session,
    sub: SubscriptionModel,
    kind: str,
    from_date: date,
    to_date: date,
    due_date: date,
    charge: Decimal,
    days: int,
) -> tuple[InvoiceModel, Decimal]:
    previous_balance, amount_due = _absorb_balance(sub, charge)
    invoice = InvoiceModel(
        subscription_id=sub.id,
        kind=kind,
        from_date=from_date,
        to_date=to_date,
        due_date=due_date,
        charge=charge,
        previous_balance=previous_balance,
        amount_due=amount_due,
        payment_status=STATUS_PAID if amount_due == 0 else STATUS_UNPAID,
        is_prorated=True,
        prorated_days=days,
    )
    db.add(invoice)
    db.flush()
    return invoice, amount_due


def _notify_single(db: Session, sub: SubscriptionModel, amount_due: Decimal, due_date: date) -> bool:
    customer = db.query(CustomerModel).filter(CustomerModel.id == sub.customer_id).first()
    unit = db.query(BusinessUnitModel).filter(BusinessUnitModel.id == sub.business_unit_id).first()
    sent = _notify_invoice(
        db, sub, customer, unit.name if unit else "", amount_due, due_date, date.today(),
    )
    db.commit()
    return sent


# ============================================================================
# Reminders & warnings
# ============================================================================


@dataclass
class NotificationResult:
    success: bool = False
    sent: int = 0
    errors: list[str] = field(default_factory=list)


def _open_invoices_for_unit(
    db: Session,
    business_unit_id: int,
    due_date: date | None = None,
    owing_only: bool = False,
):
    q = (
        db.query(InvoiceModel, SubscriptionModel, CustomerModel)
        .join(SubscriptionModel, SubscriptionModel.id == InvoiceModel.subscription_id)
        .join(CustomerModel, CustomerModel.id == SubscriptionModel.customer_id)
        .filter(
            SubscriptionModel.business_unit_id == business_unit_id,
            InvoiceModel.payment_status.in_(OPEN_STATUSES),
        )
    )
    if due_date is not None:
        q = q.filter(InvoiceModel.due_date == due_date)
    if owing_only:
        q = q.filter(SubscriptionModel.balance > 0)
    return q.order_by(InvoiceModel.due_date.desc(), InvoiceModel.id.desc()).all()


def _on_schedule(unit: BusinessUnitModel, billing_class: str | None):
    """Row filter for subscriptions billed on billing_class's schedule (all when None)."""
    if billing_class is None:
        return lambda sub: True
    schedules = get_schedules()
    return lambda sub: billing_class_for_subscription(sub, unit, schedules) == billing_class


def send_due_date_reminders(
    db: Session,
    business_unit_id: int,
    today: date | None = None,
    billing_class: str | None = None,
) -> NotificationResult:
    """Text every customer whose open invoice falls due today."""
    if today is None:
        today = date.today()
    unit = get_business_unit(db, business_unit_id)
    on_schedule = _on_schedule(unit, billing_class)
    result = NotificationResult()

    seen: set[int] = set()
    for invoice, sub, customer in _open_invoices_for_unit(db, business_unit_id, due_date=today):
        if sub.id in seen or not customer.mobile_number or not on_schedule(sub):
            continue
        seen.add(sub.id)
        if already_notified(db, sub.id, KIND_DUE_REMINDER, today):
            continue
        sms = send_sms(
            customer.mobile_number,
            due_date_reminder_text(customer.name, invoice.amount_due, invoice.due_date),
        )
        if sms.success:
            log_notification(db, sub.id, KIND_DUE_REMINDER, today)
            result.sent += 1
        else:
            result.errors.append(f"Subscription #{sub.id}: {sms.error}")

    db.commit()
    result.success = True
    return result


def send_disconnection_warnings(
    db: Session,
    business_unit_id: int,
    today: date | None = None,
    billing_class: str | None = None,
) -> NotificationResult:
    """Text active subscribers that still owe money on an open invoice (one SMS each).

    Older invoices stay Unpaid after their amount is carried into a newer one,
    so the subscription balance decides whether anything is still owed.
    """
    if today is None:
        today = date.today()
    unit = get_business_unit(db, business_unit_id)
    on_schedule = _on_schedule(unit, billing_class)
    result = NotificationResult()

    seen: set[int] = set()
    for _invoice, sub, customer in _open_invoices_for_unit(db, business_unit_id, owing_only=True):
        if sub.id in seen or not sub.active or not customer.mobile_number or not on_schedule(sub):
            continue
        seen.add(sub.id)
        if already_notified(db, sub.id, KIND_DISCONNECTION_WARNING, today):
            continue
        sms = send_sms(customer.mobile_number, disconnection_warning_text(customer.name, today))
        if sms.success:
            log_notification(db, sub.id, KIND_DISCONNECTION_WARNING, today)
            result.sent += 1
        else:
            result.errors.append(f"Subscription #{sub.id}: {sms.error}")

    db.commit()
    result.success = True
    return result
