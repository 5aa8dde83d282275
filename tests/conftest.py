import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OTP_CLEANUP_ENABLED"] = "false"
os.environ["SMTP_USERNAME"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["LINE_MESSAGING_CHANNEL_SECRET"] = ""
os.environ["LINE_MESSAGING_ACCESS_TOKEN"] = "test-line-token"

from datetime import date

import pytest
from fastapi import Depends, HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient

from app.main import app
from app.core.database import get_db, get_session_factory
from app.core.security import get_current_user, get_password_hash
from app.models import Base, User, Role, Appointment, AppointmentStatus

engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Whoever the tests are currently acting as
_current = {"user_id": None}

TEST_PASSWORD = "secret123"
_hashed_test_password = get_password_hash(TEST_PASSWORD)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

def override_get_session_factory():
    return TestingSessionLocal

def override_get_current_user(db: Session = Depends(get_db)):
    if _current["user_id"] is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return db.query(User).filter(User.id == _current["user_id"]).first()

app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_session_factory] = override_get_session_factory
app.dependency_overrides[get_current_user] = override_get_current_user


@pytest.fixture(autouse=True)
def _reset_database():
    Base.metadata.create_all(bind=engine)
    _current["user_id"] = None
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def session_factory():
    return TestingSessionLocal

@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c

@pytest.fixture
def login_as():
    def _login(user):
        _current["user_id"] = user.id if user is not None else None
        return user
    return _login

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=Role.REGULAR, name=None, email=None, is_active=True):
        counter["n"] += 1
        user = User(
            name=name or f"{role.value.title()} {counter['n']}",
            email=email or f"{role.value}{counter['n']}@example.com",
            hashed_password=_hashed_test_password,
            role=role.value,
            is_active=is_active
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make

@pytest.fixture
def make_appointment(db):
    def _make(owner, status=AppointmentStatus.PENDING, created_by=None, **fields):
        values = {
            "first_name": "Somchai",
            "last_name": "Jaidee",
            "phone": "0812345678",
            "province": "Chiang Mai",
            "district": "Mueang",
            "subdistrict": "Suthep",
            "hospital": "Maharaj Nakorn Hospital",
            "appointment_date": date(2026, 11, 2),
            "appointment_time": "09:30",
            "latitude": 18.79,
            "longitude": 98.95,
        }
        values.update(fields)
        appointment = Appointment(
            user_id=owner.id,
            created_by=(created_by or owner).id,
            status=status.value,
            **values
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment
    return _make
