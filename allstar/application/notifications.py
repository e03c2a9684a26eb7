"""
Notification log: remembers which SMS were already sent so a job that runs
twice on the same day does not text customers twice.
"""
from datetime import date

from sqlalchemy.orm import Session

from allstar.infrastructure.db.models import NotificationLog

KIND_INVOICE = "INVOICE"
KIND_DUE_REMINDER = "DUE_REMINDER"
KIND_DISCONNECTION_WARNING = "DISCONNECTION_WARNING"


def already_notified(db: Session, subscription_id: int, kind: str, notified_for_date: date) -> bool:
    q = db.query(NotificationLog).filter(
        NotificationLog.subscription_id == subscription_id,
        NotificationLog.kind == kind,
        NotificationLog.notified_for_date == notified_for_date,
    )
    return q.first() is not None


def log_notification(db: Session, subscription_id: int, kind: str, notified_for_date: date) -> None:
    """Record a sent notification (caller commits)."""
    db.add(NotificationLog(
        subscription_id=subscription_id,
        kind=kind,
        notified_for_date=notified_for_date,
    ))
    db.flush()
