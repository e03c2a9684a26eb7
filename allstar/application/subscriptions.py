"""
Business units, plans, customers and subscriptions.

Modules work directly on the ORM.
"""
import logging
from datetime import date

from sqlalchemy.orm import Session

from allstar.domain.billing import (
    BillingValidationError, BillingNotFoundError, classify_business_unit, round_money, to_money,
)
from allstar.domain.schedule import get_schedule, get_schedules
from allstar.infrastructure.db.models import (
    BusinessUnitModel, CustomerModel, PlanModel, SubscriptionModel,
)
from allstar.utils.validation import validate_installation_date, validate_philippine_mobile_number
from allstar.application.invoices import (
    GenerateActivationInvoiceUseCase, GenerateDisconnectionInvoiceUseCase, SingleInvoiceResult,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Reference data
# ============================================================================


class CreateBusinessUnitUseCase:
    """The billing class is stored explicitly; the name only seeds it."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, name: str, billing_class: str | None = None) -> int:
        name = (name or "").strip()
        if not name:
            raise BillingValidationError("Name cannot be empty")

        if billing_class is None:
            billing_class = classify_business_unit(name)
        # raises for classes missing from the schedule table
        get_schedule(billing_class, get_schedules())

        unit = BusinessUnitModel(name=name, billing_class=billing_class)
        self.db.add(unit)
        self.db.flush()
        self.db.commit()
        logger.info("Business unit #%d %s created (%s)", unit.id, name, billing_class)
        return unit.id


class CreatePlanUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, name: str, monthly_fee) -> int:
        name = (name or "").strip()
        if not name:
            raise BillingValidationError("Name cannot be empty")
        fee = round_money(to_money(monthly_fee))
        if fee < 0:
            raise BillingValidationError("Monthly fee cannot be negative")

        plan = PlanModel(name=name, monthly_fee=fee)
        self.db.add(plan)
        self.db.flush()
        self.db.commit()
        return plan.id


class CreateCustomerUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, name: str, mobile_number: str | None = None, referrer_id: int | None = None) -> int:
        name = (name or "").strip()
        if not name:
            raise BillingValidationError("Name cannot be empty")

        if mobile_number:
            ok, error = validate_philippine_mobile_number(mobile_number)
            if not ok:
                raise BillingValidationError(error)
            mobile_number = mobile_number.replace("-", "").replace(" ", "")

        if referrer_id is not None:
            referrer = self.db.query(CustomerModel).filter(CustomerModel.id == referrer_id).first()
            if not referrer:
                raise BillingNotFoundError("Referrer not found")

        customer = CustomerModel(name=name, mobile_number=mobile_number or None, referrer_id=referrer_id)
        self.db.add(customer)
        self.db.flush()
        self.db.commit()
        return customer.id


# ============================================================================
# Subscriptions
# ============================================================================


class CreateSubscriptionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        customer_id: int,
        business_unit_id: int,
        plan_id: int,
        date_installed: date | None = None,
        invoice_cycle_day: str | None = None,
        today: date | None = None,
    ) -> int:
        if not self.db.query(CustomerModel.id).filter(CustomerModel.id == customer_id).first():
            raise BillingNotFoundError("Customer not found")
        if not self.db.query(PlanModel.id).filter(PlanModel.id == plan_id).first():
            raise BillingNotFoundError("Plan not found")
        unit = self.db.query(BusinessUnitModel).filter(BusinessUnitModel.id == business_unit_id).first()
        if not unit:
            raise BillingNotFoundError("Business unit not found")

        if date_installed is not None:
            ok, error = validate_installation_date(date_installed, "Closed Won", today=today)
            if not ok:
                raise BillingValidationError(error)

        schedules = get_schedules()
        default_day = get_schedule(unit.billing_class, schedules).cycle_day
        if invoice_cycle_day is None:
            invoice_cycle_day = default_day
        elif invoice_cycle_day not in {s.cycle_day for s in schedules.values()}:
            raise BillingValidationError(f"Invalid invoice cycle day: {invoice_cycle_day}")

        sub = SubscriptionModel(
            customer_id=customer_id,
            business_unit_id=business_unit_id,
            plan_id=plan_id,
            invoice_cycle_day=invoice_cycle_day,
            date_installed=date_installed,
            active=True,
        )
        self.db.add(sub)
        self.db.flush()
        self.db.commit()
        return sub.id


def _get_subscription(db: Session, subscription_id: int) -> SubscriptionModel:
    sub = db.query(SubscriptionModel).filter(SubscriptionModel.id == subscription_id).first()
    if not sub:
        raise BillingNotFoundError("Subscription not found")
    return sub


class DisconnectSubscriptionUseCase:
    """Optionally bill the partial period; deactivate in the same commit."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        subscription_id: int,
        disconnection_date: date,
        generate_invoice: bool = True,
        notify_sms: bool = True,
    ) -> SingleInvoiceResult | None:
        sub = _get_subscription(self.db, subscription_id)
        if not sub.active:
            raise BillingValidationError("Subscription is already disconnected")

        invoice = None
        if generate_invoice:
            invoice = GenerateDisconnectionInvoiceUseCase(self.db).execute(
                subscription_id, disconnection_date, notify_sms=notify_sms, set_active=False,
            )
        else:
            sub.active = False
            self.db.commit()

        logger.info("Subscription #%d disconnected on %s", sub.id, disconnection_date)
        return invoice


class ActivateSubscriptionUseCase:
    """Optionally bill activation to the next billing date; activate only once billed."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        subscription_id: int,
        activation_date: date,
        generate_invoice: bool = True,
        notify_sms: bool = True,
    ) -> SingleInvoiceResult | None:
        sub = _get_subscription(self.db, subscription_id)
        if sub.active:
            raise BillingValidationError("Subscription is already active")

        invoice = None
        if generate_invoice:
            invoice = GenerateActivationInvoiceUseCase(self.db).execute(
                subscription_id, activation_date, notify_sms=notify_sms, set_active=True,
            )
        else:
            sub.active = True
            self.db.commit()

        logger.info("Subscription #%d activated on %s", sub.id, activation_date)
        return invoice
