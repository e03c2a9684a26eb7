"""
Pytest fixtures for testing
"""
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from allstar.infrastructure.db.session import Base
from allstar.infrastructure.db.models import (
    BusinessUnitModel, PlanModel, CustomerModel, SubscriptionModel,
)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient runs sync routes in a pool)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# === Billing data ===

@pytest.fixture
def bulihan(db_session):
    unit = BusinessUnitModel(name="Bulihan", billing_class="mid_month")
    db_session.add(unit)
    db_session.flush()
    return unit


@pytest.fixture
def malanggam(db_session):
    unit = BusinessUnitModel(name="Malanggam", billing_class="end_of_month")
    db_session.add(unit)
    db_session.flush()
    return unit


@pytest.fixture
def plan_1000(db_session):
    plan = PlanModel(name="Fiber 50", monthly_fee=Decimal("1000"))
    db_session.add(plan)
    db_session.flush()
    return plan


@pytest.fixture
def make_subscription(db_session, plan_1000):
    """Factory: customer + subscription on a business unit."""
    counter = {"n": 0}

    def _make(
        unit,
        name=None,
        mobile="09171234567",
        date_installed=date(2024, 1, 1),
        balance=Decimal("0"),
        referrer_id=None,
        active=True,
        plan=None,
        customer=None,
        invoice_cycle_day=None,
    ):
        counter["n"] += 1
        if customer is None:
            customer = CustomerModel(
                name=name or f"Customer {counter['n']}",
                mobile_number=mobile,
                referrer_id=referrer_id,
            )
            db_session.add(customer)
            db_session.flush()
        sub = SubscriptionModel(
            customer_id=customer.id,
            business_unit_id=unit.id,
            plan_id=(plan or plan_1000).id,
            balance=balance,
            invoice_cycle_day=invoice_cycle_day or ("30th" if unit.billing_class == "end_of_month" else "15th"),
            active=active,
            date_installed=date_installed,
        )
        db_session.add(sub)
        db_session.commit()
        return sub

    return _make
