"""
Payment API endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from allstar.api.deps import get_db
from allstar.application.payments import (
    RecordPaymentUseCase, VoidPaymentUseCase, RecalculateBalanceUseCase,
    get_customer_payment_summary,
)
from allstar.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


# === Request/Response models ===

class RecordPaymentRequest(BaseModel):
    subscription_id: int
    amount: str  # "1,500.00" accepted
    mode: str = "Cash"  # Cash, E-Wallet, Referral Credit
    settlement_date: date
    invoice_id: int | None = None
    notes: str | None = None
    send_sms: bool = False

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Strip separators, at most 2 decimal places"""
        return validate_and_normalize_amount(v, max_decimal_places=2)


class PaymentResultResponse(BaseModel):
    payment_id: int | None = None
    subscription_id: int | None = None
    invoice_id: int | None
    invoice_status: str | None
    new_balance: str  # Decimal as string


# === Endpoints ===

@router.post("", response_model=PaymentResultResponse)
def record_payment(req: RecordPaymentRequest, db: Session = Depends(get_db)):
    result = RecordPaymentUseCase(db).execute(
        subscription_id=req.subscription_id,
        amount=req.amount,
        mode=req.mode,
        settlement_date=req.settlement_date,
        invoice_id=req.invoice_id,
        notes=req.notes,
        notify_sms=req.send_sms,
    )
    return PaymentResultResponse(
        payment_id=result.payment_id,
        invoice_id=result.invoice_id,
        invoice_status=result.invoice_status,
        new_balance=str(result.new_balance),
    )


@router.delete("/{payment_id}", response_model=PaymentResultResponse)
def void_payment(payment_id: int, db: Session = Depends(get_db)):
    """Delete a payment and restore the balance"""
    result = VoidPaymentUseCase(db).execute(payment_id)
    return PaymentResultResponse(
        subscription_id=result.subscription_id,
        invoice_id=result.invoice_id,
        invoice_status=result.invoice_status,
        new_balance=str(result.new_balance),
    )


@router.post("/recalculate/{subscription_id}")
def recalculate_balance(subscription_id: int, db: Session = Depends(get_db)):
    balance = RecalculateBalanceUseCase(db).execute(subscription_id)
    return {"subscription_id": subscription_id, "balance": str(balance)}


@router.get("/customers/{customer_id}/summary")
def customer_summary(customer_id: int, db: Session = Depends(get_db)):
    summary = get_customer_payment_summary(db, customer_id)
    return {
        **summary,
        "total_paid": str(summary["total_paid"]),
        "balance": str(summary["balance"]),
    }
