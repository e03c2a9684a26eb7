"""
Invoice API endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from allstar.api.deps import get_db
from allstar.application.invoices import GenerateActivationInvoiceUseCase, GenerateInvoicesForBusinessUnitUseCase


router = APIRouter(prefix="/api/v1/invoices", tags=["invoices"])


# === Request/Response models ===

class ActivationInvoiceRequest(BaseModel):
    subscription_id: int
    activation_date: date
    send_sms: bool = True


class ActivationInvoiceResponse(BaseModel):
    success: bool
    invoice_id: int
    amount: str  # Decimal as string
    amount_due: str
    days: int
    message: str


class BusinessUnitInvoicesRequest(BaseModel):
    business_unit_id: int
    year: int
    month: int
    send_sms: bool = True


# === Endpoints ===

@router.post("/generate", response_model=ActivationInvoiceResponse)
def generate_activation_invoice(req: ActivationInvoiceRequest, db: Session = Depends(get_db)):
    """Prorated invoice from activation to the next billing date"""
    result = GenerateActivationInvoiceUseCase(db).execute(
        req.subscription_id, req.activation_date, notify_sms=req.send_sms,
    )
    return ActivationInvoiceResponse(
        success=True,
        invoice_id=result.invoice_id,
        amount=str(result.amount),
        amount_due=str(result.amount_due),
        days=result.days,
        message="Activation invoice generated successfully",
    )


@router.post("/generate-batch")
def generate_business_unit_invoices(req: BusinessUnitInvoicesRequest, db: Session = Depends(get_db)):
    """Cycle invoices for a whole business unit (manual run)"""
    result = GenerateInvoicesForBusinessUnitUseCase(db).execute(
        req.business_unit_id, req.year, req.month, notify_sms=req.send_sms,
    )
    return {
        "success": result.success,
        "generated": result.generated,
        "skipped": result.skipped,
        "sms_sent": result.sms_sent,
        "errors": result.errors,
        "invoices": [
            {
                "invoice_id": inv.invoice_id,
                "subscription_id": inv.subscription_id,
                "customer_name": inv.customer_name,
                "amount_due": str(inv.amount_due),
                "is_prorated": inv.is_prorated,
            }
            for inv in result.invoices
        ],
    }
