import os
from datetime import datetime, time

import pytest

# Set testing environment before the application is imported
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite://"

import fakeredis  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from carebook.api.deps import get_clock  # noqa: E402
from carebook.core.database import Base, get_db, get_redis  # noqa: E402
from carebook.core.security import Actor, UserRole, create_actor_token  # noqa: E402
from carebook.main import app  # noqa: E402
from carebook.models.appointment import Appointment  # noqa: E402
from carebook.models.doctor import Doctor  # noqa: E402
from carebook.models.patient import Patient  # noqa: E402
from carebook.models.schedule import ScheduleSlot  # noqa: E402

FIXED_NOW = datetime(2025, 11, 20, 10, 30)

class FrozenClock:
    """Clock whose time only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

ADMIN = Actor(id=900, role=UserRole.ADMIN)
DOCTOR_1 = Actor(id=1, role=UserRole.DOCTOR)
DOCTOR_2 = Actor(id=2, role=UserRole.DOCTOR)
PATIENT_1 = Actor(id=1, role=UserRole.PATIENT)
PATIENT_2 = Actor(id=2, role=UserRole.PATIENT)

def auth_headers(actor: Actor) -> dict:
    token = create_actor_token(actor.id, actor.role)
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def engine(tmp_path):
    # File-backed so that several threads can share the database
    engine = create_engine(
        f"sqlite:///{tmp_path / 'carebook_test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(
        bind=engine,
        tables=[Doctor.__table__, Patient.__table__, ScheduleSlot.__table__, Appointment.__table__],
    )
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def clock():
    return FrozenClock(FIXED_NOW)

@pytest.fixture
def seeded(db):
    """Two doctors and a handful of patients.

    Doctor 1 uses the clinic defaults (09:00-17:00, one-hour slots); doctor 2
    works 08:00-12:00 in 30-minute slots.
    """
    db.add_all([
        Doctor(id=1, first_name="Ada", last_name="Okafor", specialization="Cardiology"),
        Doctor(
            id=2,
            first_name="Lena",
            last_name="Marsh",
            specialization="Dermatology",
            working_hours_start=time(8, 0),
            working_hours_end=time(12, 0),
            slot_duration_minutes=30,
        ),
        Doctor(id=3, first_name="Retired", last_name="Doctor", is_active=False),
    ])
    db.add_all([
        Patient(id=i, first_name=f"Patient{i}", last_name="Test")
        for i in range(1, 11)
    ])
    db.commit()
    return db

@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)

@pytest.fixture
def client(session_factory, seeded, clock, redis_client):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_redis] = lambda: redis_client

    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()
