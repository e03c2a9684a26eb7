"""
Subscription API endpoints (disconnect / activate / payment history)
"""
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from allstar.api.deps import get_db
from allstar.application.payments import get_payment_history
from allstar.application.subscriptions import ActivateSubscriptionUseCase, DisconnectSubscriptionUseCase


router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


# === Request/Response models ===

class DisconnectRequest(BaseModel):
    disconnection_date: date
    generate_invoice: bool = True
    send_sms: bool = True


class ActivateRequest(BaseModel):
    activation_date: date
    generate_invoice: bool = True
    send_sms: bool = True


class PaymentResponse(BaseModel):
    payment_id: int
    invoice_id: int | None
    amount: str  # Decimal as string
    mode: str
    settlement_date: date
    notes: str | None


def _invoice_payload(result) -> dict | None:
    if result is None:
        return None
    return {
        "invoice_id": result.invoice_id,
        "amount": str(result.amount),
        "amount_due": str(result.amount_due),
        "days": result.days,
        "sms_sent": result.sms_sent,
    }


# === Endpoints ===

@router.post("/{subscription_id}/disconnect")
def disconnect_subscription(subscription_id: int, req: DisconnectRequest, db: Session = Depends(get_db)):
    result = DisconnectSubscriptionUseCase(db).execute(
        subscription_id,
        req.disconnection_date,
        generate_invoice=req.generate_invoice,
        notify_sms=req.send_sms,
    )
    return {"status": "disconnected", "invoice": _invoice_payload(result)}


@router.post("/{subscription_id}/activate")
def activate_subscription(subscription_id: int, req: ActivateRequest, db: Session = Depends(get_db)):
    result = ActivateSubscriptionUseCase(db).execute(
        subscription_id,
        req.activation_date,
        generate_invoice=req.generate_invoice,
        notify_sms=req.send_sms,
    )
    return {"status": "active", "invoice": _invoice_payload(result)}


@router.get("/{subscription_id}/payments", response_model=list[PaymentResponse])
def list_payments(subscription_id: int, db: Session = Depends(get_db)):
    """Payment history, newest first"""
    return [
        PaymentResponse(
            payment_id=p.id,
            invoice_id=p.invoice_id,
            amount=str(p.amount),
            mode=p.mode,
            settlement_date=p.settlement_date,
            notes=p.notes,
        )
        for p in get_payment_history(db, subscription_id)
    ]
