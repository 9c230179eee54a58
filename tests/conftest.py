"""
Test Configuration and Fixtures
Shared testing infrastructure for the stock ledger
"""

import pytest
from datetime import date
from decimal import Decimal
from typing import Dict, Generator

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockledger.core.database import Base, build_engine
from stockledger.models import Item, Location, Period
from stockledger.services.authorization import Actor, Role
from stockledger.services.periods import PeriodService
from stockledger.services.stock import StockLedger

# In-memory SQLite shared by every connection of the test engine
TEST_DATABASE_URL = "sqlite://"

engine = build_engine(TEST_DATABASE_URL, poolclass=StaticPool)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

JANUARY_START = date(2026, 1, 1)
JANUARY_END = date(2026, 1, 31)
POSTING_DATE = date(2026, 1, 15)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test"""
    # Import models so every table is registered
    import stockledger.models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def admin() -> Actor:
    return Actor(id=1, username="admin", role=Role.ADMIN)


@pytest.fixture
def supervisor() -> Actor:
    return Actor(id=2, username="supervisor", role=Role.SUPERVISOR)


@pytest.fixture
def operator() -> Actor:
    return Actor(id=3, username="operator", role=Role.OPERATOR)


@pytest.fixture
def locations(db_session: Session) -> Dict[str, Location]:
    """Kitchen and main store"""
    kitchen = Location(code="KIT01", name="Main Kitchen", location_type="KITCHEN")
    store = Location(code="STR01", name="Main Store", location_type="STORE")
    db_session.add_all([kitchen, store])
    db_session.commit()
    return {"kitchen": kitchen, "store": store}


@pytest.fixture
def items(db_session: Session) -> Dict[str, Item]:
    flour = Item(code="FLOUR", name="Flour", unit="KG", category="DRY")
    rice = Item(code="RICE", name="Rice", unit="KG", category="DRY")
    oil = Item(code="OIL", name="Cooking Oil", unit="LTR", category="DRY")
    db_session.add_all([flour, rice, oil])
    db_session.commit()
    return {"flour": flour, "rice": rice, "oil": oil}


@pytest.fixture
def period(db_session: Session, admin: Actor, locations, items) -> Period:
    """January 2026, open at both locations, with period prices"""
    service = PeriodService(db_session, admin)
    period = service.open_period(
        "January 2026",
        JANUARY_START,
        JANUARY_END,
        [locations["kitchen"].id, locations["store"].id]
    )
    service.set_item_price(period.id, items["flour"].id, Decimal("15.00"))
    service.set_item_price(period.id, items["rice"].id, Decimal("8.50"))
    service.set_item_price(period.id, items["oil"].id, Decimal("12.00"))
    return period


@pytest.fixture
def ledger(db_session: Session) -> StockLedger:
    return StockLedger(db_session)


@pytest.fixture
def stock_up(db_session: Session, ledger: StockLedger, period: Period):
    """Receive opening stock directly into the ledger and commit"""
    def _stock_up(location: Location, item: Item, quantity, unit_price):
        snapshot = ledger.receive(location.id, item.id, Decimal(str(quantity)), Decimal(str(unit_price)), period.id)
        db_session.commit()
        return snapshot
    return _stock_up
