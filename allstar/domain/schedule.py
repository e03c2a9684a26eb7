"""
Declarative billing schedules.

Each business unit carries an explicit billing class. The class selects a
BillingSchedule: which day invoices are generated, when they fall due and
when unpaid subscriptions get disconnected.

Schedules come from configuration (Settings.BILLING_SCHEDULES):

    {
        "mid_month":    {"invoice_generation_day": 10, "due_day": 15,
                         "disconnection_day": 20, "disconnection_next_month": false,
                         "period_type": "mid-month"},
        "end_of_month": {"invoice_generation_day": 25, "due_day": 30,
                         "disconnection_day": 5, "disconnection_next_month": true,
                         "period_type": "full-month"},
    }
"""
from dataclasses import dataclass

BILLING_CLASS_MID_MONTH = "mid_month"        # 15th cycle (Bulihan, Extension)
BILLING_CLASS_END_OF_MONTH = "end_of_month"  # 30th cycle (Malanggam)

PERIOD_MID_MONTH = "mid-month"    # prev 15th .. this 15th
PERIOD_FULL_MONTH = "full-month"  # 1st .. last day
VALID_PERIOD_TYPES = frozenset({PERIOD_MID_MONTH, PERIOD_FULL_MONTH})

CYCLE_DAY_15 = "15th"
CYCLE_DAY_30 = "30th"


class ScheduleValidationError(ValueError):
    pass


@dataclass(frozen=True)
class BillingSchedule:
    invoice_generation_day: int
    due_day: int
    disconnection_day: int
    disconnection_next_month: bool
    period_type: str

    @property
    def cycle_day(self) -> str:
        """Subscription cycle day label this schedule bills on."""
        return CYCLE_DAY_15 if self.period_type == PERIOD_MID_MONTH else CYCLE_DAY_30


def _validate_day(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ScheduleValidationError(f"{name} must be an integer")
    if not 1 <= value <= 31:
        raise ScheduleValidationError(f"{name} must be between 1 and 31, got {value}")
    return value


def parse_schedule(billing_class: str, raw: dict) -> BillingSchedule:
    """Build one BillingSchedule from its config mapping."""
    try:
        period_type = raw["period_type"]
        schedule = BillingSchedule(
            invoice_generation_day=_validate_day("invoice_generation_day", raw["invoice_generation_day"]),
            due_day=_validate_day("due_day", raw["due_day"]),
            disconnection_day=_validate_day("disconnection_day", raw["disconnection_day"]),
            disconnection_next_month=bool(raw.get("disconnection_next_month", False)),
            period_type=period_type,
        )
    except KeyError as e:
        raise ScheduleValidationError(f"{billing_class}: missing key {e.args[0]}") from e

    if period_type not in VALID_PERIOD_TYPES:
        raise ScheduleValidationError(f"{billing_class}: invalid period_type {period_type!r}")
    return schedule


def load_schedules(raw: dict[str, dict]) -> dict[str, BillingSchedule]:
    """Parse the BILLING_SCHEDULES mapping. Order of classes is preserved."""
    if not raw:
        raise ScheduleValidationError("At least one billing schedule is required")
    return {billing_class: parse_schedule(billing_class, entry) for billing_class, entry in raw.items()}


def get_schedules() -> dict[str, BillingSchedule]:
    """Schedules from the current settings."""
    from allstar.config import get_settings
    return load_schedules(get_settings().BILLING_SCHEDULES)


def get_schedule(billing_class: str, schedules: dict[str, BillingSchedule] | None = None) -> BillingSchedule:
    if schedules is None:
        schedules = get_schedules()
    try:
        return schedules[billing_class]
    except KeyError:
        raise ScheduleValidationError(f"Unknown billing class: {billing_class}") from None


def billing_class_for_cycle_day(
    cycle_day: str, schedules: dict[str, BillingSchedule] | None = None,
) -> str:
    """First billing class whose schedule bills on the given cycle day."""
    if schedules is None:
        schedules = get_schedules()
    for billing_class, schedule in schedules.items():
        if schedule.cycle_day == cycle_day:
            return billing_class
    raise ScheduleValidationError(f"No schedule bills on the {cycle_day}")


def schedule_for_cycle_day(
    cycle_day: str, schedules: dict[str, BillingSchedule] | None = None,
) -> BillingSchedule:
    """Schedule for a subscription-level cycle day override."""
    if schedules is None:
        schedules = get_schedules()
    return schedules[billing_class_for_cycle_day(cycle_day, schedules)]
