"""
Daily billing job: works out today's tasks from the schedule table and runs
them for every business unit with subscriptions on the matching schedule.

Triggered by the in-process scheduler or by an external cron hitting
GET /api/cron.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from allstar.config import get_settings
from allstar.domain.billing import BillingValidationError, get_todays_tasks, to_local_date
from allstar.domain.schedule import BillingSchedule, get_schedules
from allstar.infrastructure.db.models import BusinessUnitModel, SubscriptionModel
from allstar.application.invoices import (
    GenerateInvoicesForBusinessUnitUseCase, get_business_unit,
    send_due_date_reminders, send_disconnection_warnings,
)

logger = logging.getLogger(__name__)

TASK_GENERATE_INVOICES = "generate_invoices"
TASK_DUE_REMINDERS = "send_due_reminders"
TASK_DISCONNECTION_WARNINGS = "send_disconnection_warnings"


@dataclass
class DailyBillingReport:
    date: str
    tasks_executed: list[str] = field(default_factory=list)
    invoice_generation: list[dict] = field(default_factory=list)
    due_reminders: list[dict] = field(default_factory=list)
    disconnection_warnings: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "date": self.date,
            "tasks_executed": self.tasks_executed,
            "invoice_generation": self.invoice_generation,
            "due_reminders": self.due_reminders,
            "disconnection_warnings": self.disconnection_warnings,
            "errors": self.errors,
        }


def _units_by_class(
    db: Session,
    billing_classes: list[str],
    schedules: dict[str, BillingSchedule],
) -> dict[str, list[BusinessUnitModel]]:
    """Units of each class plus units holding subscriptions moved onto that class's cycle day."""
    grouped: dict[str, list[BusinessUnitModel]] = {}
    for billing_class in billing_classes:
        moved_here = (
            select(SubscriptionModel.business_unit_id)
            .where(SubscriptionModel.invoice_cycle_day == schedules[billing_class].cycle_day)
            .distinct()
        )
        grouped[billing_class] = (
            db.query(BusinessUnitModel)
            .filter(or_(
                BusinessUnitModel.billing_class == billing_class,
                BusinessUnitModel.id.in_(moved_here),
            ))
            .order_by(BusinessUnitModel.id)
            .all()
        )
    return grouped


def _has_own_units(units: list[BusinessUnitModel], billing_class: str) -> bool:
    return any(unit.billing_class == billing_class for unit in units)


def _generate(db: Session, unit: BusinessUnitModel, today, report: DailyBillingReport, billing_class=None) -> None:
    report.tasks_executed.append(f"Invoice Generation: {unit.name}")
    res = GenerateInvoicesForBusinessUnitUseCase(db).execute(
        unit.id, today.year, today.month, notify_sms=True, today=today, billing_class=billing_class,
    )
    report.invoice_generation.append({
        "business_unit": unit.name,
        "generated": res.generated,
        "skipped": res.skipped,
        "sms_sent": res.sms_sent,
        "errors": res.errors,
    })


def _remind(db: Session, unit: BusinessUnitModel, today, report: DailyBillingReport, billing_class=None) -> None:
    report.tasks_executed.append(f"Due Date Reminder: {unit.name}")
    res = send_due_date_reminders(db, unit.id, today, billing_class=billing_class)
    report.due_reminders.append({"business_unit": unit.name, "sent": res.sent, "errors": res.errors})


def _warn(db: Session, unit: BusinessUnitModel, today, report: DailyBillingReport, billing_class=None) -> None:
    report.tasks_executed.append(f"Disconnection Warning: {unit.name}")
    res = send_disconnection_warnings(db, unit.id, today, billing_class=billing_class)
    report.disconnection_warnings.append({"business_unit": unit.name, "sent": res.sent, "errors": res.errors})


_RUNNERS = {
    TASK_GENERATE_INVOICES: _generate,
    TASK_DUE_REMINDERS: _remind,
    TASK_DISCONNECTION_WARNINGS: _warn,
}


def _run_for_classes(
    db: Session,
    task: str,
    billing_classes: list[str],
    schedules: dict[str, BillingSchedule],
    today,
    report: DailyBillingReport,
) -> None:
    runner = _RUNNERS[task]
    for billing_class, units in _units_by_class(db, billing_classes, schedules).items():
        if not _has_own_units(units, billing_class):
            report.errors.append(f"No business unit with billing class {billing_class}")
        for unit in units:
            try:
                runner(db, unit, today, report, billing_class=billing_class)
            except Exception as e:
                db.rollback()
                logger.exception("Task %s failed for business unit %s", task, unit.name)
                report.errors.append(f"{task} failed for {unit.name}: {e}")


def run_daily_billing(db: Session, now: datetime | None = None) -> DailyBillingReport:
    """Run everything scheduled for today (Philippine Time)."""
    if now is None:
        now = datetime.now(timezone.utc)
    settings = get_settings()
    schedules = get_schedules()

    today = to_local_date(now, settings.TIMEZONE)
    tasks = get_todays_tasks(now, schedules, settings.TIMEZONE)
    report = DailyBillingReport(date=today.isoformat())

    if tasks.is_empty:
        logger.info("No billing tasks for %s", today)
        return report

    _run_for_classes(db, TASK_GENERATE_INVOICES, tasks.should_generate_invoices, schedules, today, report)
    _run_for_classes(db, TASK_DUE_REMINDERS, tasks.should_send_due_reminders, schedules, today, report)
    _run_for_classes(
        db, TASK_DISCONNECTION_WARNINGS, tasks.should_send_disconnection_warnings, schedules, today, report,
    )

    logger.info(
        "Daily billing %s: %d tasks, %d errors",
        today, len(report.tasks_executed), len(report.errors),
    )
    return report


def run_manual_task(
    db: Session,
    task: str,
    business_unit_id: int,
    now: datetime | None = None,
) -> DailyBillingReport:
    """Run one task for one business unit regardless of the calendar."""
    if task not in _RUNNERS:
        raise BillingValidationError(f"Unknown task: {task}")
    if now is None:
        now = datetime.now(timezone.utc)

    unit = get_business_unit(db, business_unit_id)
    today = to_local_date(now, get_settings().TIMEZONE)
    report = DailyBillingReport(date=today.isoformat())
    _RUNNERS[task](db, unit, today, report)
    return report
