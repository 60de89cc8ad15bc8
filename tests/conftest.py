"""
Pytest configuration and shared fixtures for the salon scheduling tests.
"""

import os
from datetime import date, datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_SLOW_QUERY_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from salon.database import Base, get_db
from salon.main import app
from salon.models import (
    Appointment,
    BusinessConfig,
    Client,
    Product,
    Resource,
    Service,
    Staff,
)
from salon.services.invoice_service import get_invoice_provider
from salon.shared.errors import InvoicingError

# Monday to Saturday, 09:00 to 18:00 (0 = Sunday)
WEEKLY_SCHEDULE = [{"day": day, "start": "09:00", "end": "18:00"} for day in range(1, 7)]
BUSINESS_HOURS = [{"day": day, "start": "08:00", "end": "20:00", "active": True} for day in range(1, 7)]


def next_monday(weeks_ahead: int = 1) -> date:
    """A Monday at least a week ahead, so bookings are always in the future"""
    today = date.today()
    return today + timedelta(days=(7 - today.weekday()) % 7 + 7 * weeks_ahead)


def at_time(day: date, hhmm: str) -> datetime:
    return datetime.combine(day, datetime.strptime(hhmm, "%H:%M").time())


class FakeInvoiceProvider:
    """Records invoice requests; fails with InvoicingError when fail_with is set"""

    def __init__(self):
        self.calls = []
        self.fail_with = None

    async def create_invoice(self, payload: dict) -> dict:
        self.calls.append(payload)
        if self.fail_with:
            raise InvoicingError(self.fail_with)
        return {"invoice_id": f"INV-{len(self.calls):04d}"}


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Database session shared by the test and the API under test."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def invoice_provider():
    return FakeInvoiceProvider()


@pytest.fixture
def client(db_session, invoice_provider):
    """A test client bound to the test database and fake invoicing provider."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_invoice_provider] = lambda: invoice_provider
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def booking_day():
    return next_monday()


@pytest.fixture
def sample_client(db_session):
    """Create a sample client."""
    customer = Client(name="Ana Pérez", phone="+5491155550000", email="ana@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def sample_staff(db_session):
    """Create three active staff members working Monday to Saturday."""
    staff = [
        Staff(name="Lucía", active=True, schedule=WEEKLY_SCHEDULE),
        Staff(name="Marta", active=True, schedule=WEEKLY_SCHEDULE),
        Staff(name="Sofía", active=True, schedule=WEEKLY_SCHEDULE),
    ]
    db_session.add_all(staff)
    db_session.commit()
    return staff


@pytest.fixture
def sample_resource(db_session):
    """Create a resource with two units."""
    resource = Resource(name="Sillón de lavado", quantity=2)
    db_session.add(resource)
    db_session.commit()
    return resource


@pytest.fixture
def sample_services(db_session, sample_staff, sample_resource):
    """
    Create the service catalog:
    - cut: any staff, list 50 / discount 40, 10% commission
    - wash: uses the wash chair, fixed 5 commission
    - color: restricted to the first staff member
    """
    services = {
        "cut": Service(
            name="Corte",
            duration_minutes=45,
            list_price=50.0,
            discount_price=40.0,
            eligible_staff_ids=[],
            commission_kind="percentage",
            commission_value=10,
        ),
        "wash": Service(
            name="Lavado",
            duration_minutes=30,
            list_price=30.0,
            resource_id=sample_resource.id,
            eligible_staff_ids=[],
            commission_kind="fixed",
            commission_value=5,
        ),
        "color": Service(
            name="Color",
            duration_minutes=90,
            list_price=80.0,
            eligible_staff_ids=[sample_staff[0].id],
            commission_kind="percentage",
            commission_value=20,
        ),
    }
    db_session.add_all(services.values())
    db_session.commit()
    return services


@pytest.fixture
def sample_product(db_session):
    """Create a retail product with a 10% commission."""
    product = Product(name="Shampoo", price=20.0, commission_kind="percentage", commission_value=10)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def business_hours(db_session):
    """Open Monday to Saturday, 08:00 to 20:00."""
    config = BusinessConfig(business_name="Salón Test", business_hours=BUSINESS_HOURS)
    db_session.add(config)
    db_session.commit()
    return config


@pytest.fixture
def make_appointment(db_session, sample_client):
    """Insert an appointment directly, bypassing booking validation."""

    def _make(service, staff, start_at, **overrides):
        data = {
            "client_id": sample_client.id,
            "service_id": service.id,
            "staff_id": staff.id,
            "start_at": start_at,
            "duration_minutes": service.duration_minutes,
            "status": "pendiente",
            "confirmation_status": "no_enviada",
            "added_services": [],
            "added_products": [],
        }
        data.update(overrides)
        appointment = Appointment(**data)
        db_session.add(appointment)
        db_session.commit()
        return appointment

    return _make


@pytest.fixture
def in_progress_appointment(make_appointment, sample_services, sample_staff):
    """A cut that started on time thirty minutes ago."""
    start_at = datetime.now().replace(second=0, microsecond=0) - timedelta(minutes=30)
    return make_appointment(
        sample_services["cut"],
        sample_staff[0],
        start_at,
        status="en_curso",
        started_at=start_at,
    )
