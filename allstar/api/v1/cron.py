"""
Cron endpoints: scheduled daily run and manual task trigger
"""
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from allstar.api.deps import get_db, require_cron_secret
from allstar.application.billing_jobs import run_daily_billing, run_manual_task


router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


# === Request models ===

class ManualTaskRequest(BaseModel):
    task: Literal["generate_invoices", "send_due_reminders", "send_disconnection_warnings"]
    business_unit_id: int


# === Endpoints ===

@router.get("")
def run_todays_tasks(db: Session = Depends(get_db)):
    """Run whatever the schedule table lists for today (PHT)"""
    return run_daily_billing(db).as_dict()


@router.post("")
def run_task(req: ManualTaskRequest, db: Session = Depends(get_db)):
    """Run one task for one business unit, ignoring the calendar"""
    report = run_manual_task(db, req.task, req.business_unit_id)
    return {"success": True, "task": req.task, **report.as_dict()}
