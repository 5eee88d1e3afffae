"""
Shared fixtures: an in-memory SQLite database per test, seeded with the
reference catalog and system defaults, plus account/property factories
and a controllable clock.
"""
import os
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

# Importing app.database creates an engine; keep it off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import db_models  # noqa: F401
from app.models.db_models import (
    AccountDB, AccountSettingsDB, OwnerContactDB, PropertyDB, AccountStatus,
)
from app.services.allocation import seed_default_signals, seed_system_defaults


MONDAY_9AM = datetime(2026, 1, 5, 9, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = MONDAY_9AM):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def db():
    """Fresh seeded database session."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    seed_default_signals(session)
    seed_system_defaults(session)
    session.commit()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_account(db):
    """Factory: make_account(capacity=100, balance="0", **buy_box_and_cadence_settings)."""

    def _make(
        capacity: int = 100,
        balance: str = "0.00",
        status: AccountStatus = AccountStatus.ACTIVE,
        skip_trace_rate: str = None,
        cycle_day: str = None,
        cycle_time: str = None,
        **settings,
    ) -> AccountDB:
        account = AccountDB(
            id=str(uuid4()),
            name=f"Account {uuid4().hex[:6]}",
            status=status,
            weekly_capacity=capacity,
            skip_trace_wallet_balance=Decimal(balance),
            skip_trace_rate=Decimal(skip_trace_rate) if skip_trace_rate is not None else None,
            cycle_day=cycle_day,
            cycle_time=cycle_time,
        )
        settings.setdefault("counties", [])
        settings.setdefault("property_types", [])
        settings.setdefault("min_equity", 0.0)
        settings.setdefault("excluded_zips", "")
        account.settings = AccountSettingsDB(account_id=account.id, **settings)
        db.add(account)
        db.commit()
        return account

    return _make


@pytest.fixture
def make_owner(db):
    def _make(full_name: str = "Pat Owner") -> OwnerContactDB:
        owner = OwnerContactDB(id=str(uuid4()), full_name=full_name)
        db.add(owner)
        db.commit()
        return owner

    return _make


@pytest.fixture
def make_property(db):
    """Factory: make_property(signals=[...], owner=None, ...)."""

    def _make(
        signals=("foreclosure",),
        owner: OwnerContactDB = None,
        fips: str = "17031",
        address: str = None,
        postal_code: str = "60601",
        property_type: str = "SFR",
        value: float = 150000.0,
        equity: float = 50.0,
        property_id: str = None,
    ) -> PropertyDB:
        prop = PropertyDB(
            id=property_id or str(uuid4()),
            owner_id=owner.id if owner else None,
            fips=fips,
            address_line1=address or f"{uuid4().int % 9000 + 100} Main St",
            address_city="Chicago",
            address_state="IL",
            address_postal_code=postal_code,
            property_type=property_type,
            estimated_value=value,
            equity_percent=equity,
            signal_keys=list(signals),
        )
        db.add(prop)
        db.commit()
        return prop

    return _make
