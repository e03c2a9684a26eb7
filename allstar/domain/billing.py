"""
Billing cycle engine: pure computation of invoice amounts, proration and
the daily task calendar. No I/O: callers load records and persist results.

Money is Decimal, rounded half-up to centavos.

Balance sign convention:
    positive = amount owed by the subscriber
    negative = credit (advance payment)
"""
import calendar
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_DOWN, ROUND_HALF_UP, InvalidOperation
from zoneinfo import ZoneInfo

from allstar.domain.schedule import (
    BillingSchedule, PERIOD_MID_MONTH,
    BILLING_CLASS_MID_MONTH, BILLING_CLASS_END_OF_MONTH,
    CYCLE_DAY_15, CYCLE_DAY_30,
    get_schedules,
)

DAYS_PER_BILLING_MONTH = 30
CENT = Decimal("0.01")
ZERO = Decimal("0")

PHILIPPINE_TZ = "Asia/Manila"

STATUS_UNPAID = "Unpaid"
STATUS_PARTIALLY_PAID = "Partially Paid"
STATUS_PAID = "Paid"
OPEN_STATUSES = (STATUS_UNPAID, STATUS_PARTIALLY_PAID)


class BillingValidationError(ValueError):
    pass


class BillingNotFoundError(BillingValidationError):
    """Referenced business unit / subscription / invoice / payment does not exist."""


# ============================================================================
# Money helpers
# ============================================================================


def to_money(value) -> Decimal:
    """Coerce int / float / str / Decimal into a finite Decimal."""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise BillingValidationError(f"Invalid amount: {value!r}") from None
    if not amount.is_finite():
        raise BillingValidationError(f"Amount must be a finite number: {value!r}")
    return amount


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ============================================================================
# Invoice amounts
# ============================================================================


def compute_invoice_amount(monthly_fee, prior_balance) -> Decimal:
    """amount_due = max(0, monthly_fee + prior_balance).

    A positive prior balance (debt) is added; a credit reduces the bill but
    never below zero.
    """
    fee = to_money(monthly_fee)
    if fee < 0:
        raise BillingValidationError("Monthly fee cannot be negative")
    balance = to_money(prior_balance)
    return round_money(max(ZERO, fee + balance))


@dataclass(frozen=True)
class ProratedAmount:
    amount: Decimal
    days: int
    daily_rate: Decimal


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _ceil_days(start: date | datetime, end: date | datetime) -> int:
    if not isinstance(start, datetime) and not isinstance(end, datetime):
        return (end - start).days
    delta = _as_datetime(end) - _as_datetime(start)
    return math.ceil(delta.total_seconds() / 86400)


def compute_prorated_amount(
    monthly_fee,
    start: date | datetime,
    end: date | datetime,
    max_days: int | None = None,
) -> ProratedAmount:
    """Partial-period charge: monthly_fee / 30 per day, days = ceil(end - start).

    Raises BillingValidationError when end is before start.
    """
    fee = to_money(monthly_fee)
    if fee < 0:
        raise BillingValidationError("Monthly fee cannot be negative")
    if _as_datetime(end) < _as_datetime(start):
        raise BillingValidationError("End date must not be before start date")

    days = _ceil_days(start, end)
    if max_days is not None:
        days = min(days, max_days)

    amount = round_money(fee * days / DAYS_PER_BILLING_MONTH)
    return ProratedAmount(
        amount=amount,
        days=days,
        daily_rate=round_money(fee / DAYS_PER_BILLING_MONTH),
    )


def apply_referral_discount(amount, discount) -> Decimal:
    return round_money(max(ZERO, to_money(amount) - to_money(discount)))


def calculate_new_balance(current_balance, payment_amount) -> Decimal:
    """Balance after a payment: current - payment (may go negative = credit)."""
    return round_money(to_money(current_balance) - to_money(payment_amount))


def determine_payment_status(total_paid, amount_due) -> str:
    """Paid when paid >= due, Partially Paid when 0 < paid < due, Unpaid otherwise."""
    paid = to_money(total_paid)
    due = to_money(amount_due)
    if paid >= due:
        return STATUS_PAID
    if paid > 0:
        return STATUS_PARTIALLY_PAID
    return STATUS_UNPAID


@dataclass(frozen=True)
class BalanceDisplay:
    label: str  # Balance / Credits
    amount: int
    display: str


def format_balance_display(balance) -> BalanceDisplay:
    """Whole-peso rendering: debts as Balance, negative amounts as Credits."""
    value = to_money(balance)
    # halves round toward +infinity: 1.5 -> 2, -1.5 -> -1
    rounding = ROUND_HALF_UP if value >= 0 else ROUND_HALF_DOWN
    rounded = int(value.quantize(Decimal("1"), rounding=rounding))
    if rounded >= 0:
        return BalanceDisplay("Balance", rounded, f"₱{rounded:,}")
    return BalanceDisplay("Credits", abs(rounded), f"₱{abs(rounded):,}")


# ============================================================================
# Business-unit classification
# ============================================================================


def get_default_billing_cycle_day(business_unit_name: str) -> str:
    """Seed cycle day from a unit's name: Malanggam bills on the 30th, others on the 15th.

    Only used when a business unit is created without an explicit class.
    """
    normalized = business_unit_name.lower().strip()
    if "malanggam" in normalized:
        return CYCLE_DAY_30
    return CYCLE_DAY_15


def classify_business_unit(business_unit_name: str) -> str:
    if get_default_billing_cycle_day(business_unit_name) == CYCLE_DAY_30:
        return BILLING_CLASS_END_OF_MONTH
    return BILLING_CLASS_MID_MONTH


def _cycle_day_number(cycle_day: int | str) -> int:
    if isinstance(cycle_day, int):
        return cycle_day
    digits = "".join(ch for ch in cycle_day if ch.isdigit())
    if not digits:
        raise BillingValidationError(f"Invalid cycle day: {cycle_day!r}")
    return int(digits)


def is_eligible_for_invoice_generation(install_date: date, cycle_day: int | str) -> bool:
    """Installed on or before the cycle day of the month."""
    return install_date.day <= _cycle_day_number(cycle_day)


# ============================================================================
# Calendar
# ============================================================================


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _clip_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, last_day_of_month(year, month)))


def _shift_month(year: int, month: int, n: int) -> tuple[int, int]:
    m = month - 1 + n
    return year + m // 12, m % 12 + 1


@dataclass(frozen=True)
class BillingDates:
    from_date: date
    to_date: date
    due_date: date
    disconnection_date: date
    generation_date: date


def calculate_billing_dates(schedule: BillingSchedule, year: int, month: int) -> BillingDates:
    """Coverage and key dates of the invoice billed in (year, month).

    mid-month:  previous month 15th .. this month 15th (Nov 15 - Dec 15 for December)
    full-month: 1st .. last day of this month; due day clipped to month length
    """
    generation_date = _clip_day(year, month, schedule.invoice_generation_day)
    due_date = _clip_day(year, month, schedule.due_day)

    if schedule.period_type == PERIOD_MID_MONTH:
        py, pm = _shift_month(year, month, -1)
        from_date = _clip_day(py, pm, 15)
        to_date = _clip_day(year, month, 15)
    else:
        from_date = date(year, month, 1)
        to_date = date(year, month, last_day_of_month(year, month))

    if schedule.disconnection_next_month:
        ny, nm = _shift_month(year, month, 1)
        disconnection_date = _clip_day(ny, nm, schedule.disconnection_day)
    else:
        disconnection_date = _clip_day(year, month, schedule.disconnection_day)

    return BillingDates(
        from_date=from_date,
        to_date=to_date,
        due_date=due_date,
        disconnection_date=disconnection_date,
        generation_date=generation_date,
    )


def next_billing_date(schedule: BillingSchedule, activation_date: date) -> date:
    """Next due day on or after activation (this month if not yet passed, else next month)."""
    candidate = _clip_day(activation_date.year, activation_date.month, schedule.due_day)
    if activation_date.day <= candidate.day:
        return candidate
    ny, nm = _shift_month(activation_date.year, activation_date.month, 1)
    return _clip_day(ny, nm, schedule.due_day)


def needs_prorating(date_installed: date, generation_date: date, period_start: date) -> bool:
    """First invoice of a subscription installed inside the current period."""
    return (
        date_installed > period_start
        or date_installed > generation_date - timedelta(days=DAYS_PER_BILLING_MONTH)
    )


# ============================================================================
# Daily task calendar
# ============================================================================


@dataclass
class TodaysTasks:
    should_generate_invoices: list[str] = field(default_factory=list)
    should_send_due_reminders: list[str] = field(default_factory=list)
    should_send_disconnection_warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.should_generate_invoices
            or self.should_send_due_reminders
            or self.should_send_disconnection_warnings
        )


def to_local_date(now: date | datetime, tz_name: str = PHILIPPINE_TZ) -> date:
    """Calendar date in the billing time zone. Naive datetimes are UTC."""
    if isinstance(now, datetime):
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(ZoneInfo(tz_name)).date()
    return now


def get_todays_tasks(
    now: date | datetime,
    schedules: dict[str, BillingSchedule] | None = None,
    tz_name: str = PHILIPPINE_TZ,
) -> TodaysTasks:
    """Which billing classes get invoices / due reminders / disconnection
    warnings on this calendar day (Philippine Time).

    A schedule day past the end of a short month fires on its last day
    (the 30th reminder runs on Feb 28/29).
    """
    if schedules is None:
        schedules = get_schedules()

    today = to_local_date(now, tz_name)
    last = last_day_of_month(today.year, today.month)

    def fires(day: int) -> bool:
        return today.day == min(day, last)

    tasks = TodaysTasks()
    for billing_class, schedule in schedules.items():
        if fires(schedule.invoice_generation_day):
            tasks.should_generate_invoices.append(billing_class)
        if fires(schedule.due_day):
            tasks.should_send_due_reminders.append(billing_class)
        if fires(schedule.disconnection_day):
            tasks.should_send_disconnection_warnings.append(billing_class)
    return tasks
