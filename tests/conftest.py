"""
Test Configuration and Fixtures
Shared testing infrastructure for Stockroom
"""

import os

os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("LOG_TO_FILE", "false")

import pytest
from datetime import date
from decimal import Decimal
from typing import Dict, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from stockroom.main import app
from stockroom.core.database import get_db, Base
from stockroom.core.security import create_access_token
from stockroom.models.auth import AccessLevel, User, UserRole
from stockroom.models.period import Period
from stockroom.models.stock import Item, Location
from stockroom.models.supplier import Supplier
from stockroom.schemas.auth import UserCreate
from stockroom.services.auth_service import AuthService
from stockroom.services.period.period_service import PeriodService
from stockroom.services.stock.stock_master import StockMasterService

# In-memory SQLite shared across threads through a single connection
TEST_DATABASE_URL = "sqlite://"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "testpassword123"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test"""
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database dependency override"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_user(db_session: Session, username: str, role: UserRole) -> User:
    return AuthService(db_session).create_user(UserCreate(
        username=username,
        email=f"{username}@example.com",
        full_name=f"{username.title()} User",
        password=TEST_PASSWORD,
        role=role,
    ))


@pytest.fixture
def admin_user(db_session: Session) -> User:
    return _create_user(db_session, "admin", UserRole.ADMIN)


@pytest.fixture
def supervisor_user(db_session: Session) -> User:
    return _create_user(db_session, "supervisor", UserRole.SUPERVISOR)


@pytest.fixture
def operator_user(db_session: Session) -> User:
    return _create_user(db_session, "operator", UserRole.OPERATOR)


def bearer(user: User) -> Dict[str, str]:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user: User) -> Dict[str, str]:
    return bearer(admin_user)


@pytest.fixture
def supervisor_headers(supervisor_user: User) -> Dict[str, str]:
    return bearer(supervisor_user)


@pytest.fixture
def operator_headers(operator_user: User) -> Dict[str, str]:
    return bearer(operator_user)


@pytest.fixture
def locations(db_session: Session, admin_user: User) -> Dict[str, Location]:
    master = StockMasterService(db_session, admin_user)
    return {
        "main": master.create_location({"code": "MAIN", "name": "Main Kitchen", "type": "KITCHEN"}),
        "store": master.create_location({"code": "STORE", "name": "Central Store", "type": "CENTRAL"}),
    }


@pytest.fixture
def items(db_session: Session, admin_user: User) -> Dict[str, Item]:
    master = StockMasterService(db_session, admin_user)
    return {
        "flour": master.create_item({"code": "FLOUR", "name": "Plain Flour", "unit": "KG",
                                     "category": "DRY", "reference_price": Decimal("2.00")}),
        "rice": master.create_item({"code": "RICE", "name": "Basmati Rice", "unit": "KG",
                                    "category": "DRY", "reference_price": Decimal("5.00")}),
    }


@pytest.fixture
def supplier(db_session: Session, admin_user: User) -> Supplier:
    return StockMasterService(db_session, admin_user).create_supplier({
        "code": "FRESH", "name": "Fresh Foods Ltd", "email": "orders@example.com"
    })


@pytest.fixture
def open_period(db_session: Session, admin_user: User, locations, items) -> Period:
    """January 2026, opened with the items' reference prices locked in"""
    periods = PeriodService(db_session, admin_user)
    period = periods.create({
        "name": "January 2026",
        "start_date": date(2026, 1, 1),
        "end_date": date(2026, 1, 31),
    })
    return periods.open(period.id)


@pytest.fixture
def operator_at_main(db_session: Session, admin_user: User, operator_user: User, locations) -> User:
    AuthService(db_session, admin_user).assign_location(
        locations["main"].id, operator_user.id, AccessLevel.POST
    )
    return operator_user


def delivery_payload(supplier_id: int, lines) -> Dict:
    return {
        "supplier_id": supplier_id,
        "delivery_date": date(2026, 1, 5),
        "invoice_no": "INV-1001",
        "lines": [{"item_id": item_id, "quantity": Decimal(str(qty)), "unit_price": Decimal(str(price))}
                  for item_id, qty, price in lines],
    }


def issue_payload(lines) -> Dict:
    return {
        "issue_date": date(2026, 1, 10),
        "cost_centre": "FOOD",
        "lines": [{"item_id": item_id, "quantity": Decimal(str(qty))} for item_id, qty in lines],
    }
