from datetime import datetime, time, timezone
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy.orm import sessionmaker

import models  # noqa: F401  registers tables on Base.metadata
from database import Base, build_engine
from presentation_service import create_event
from schemas import CallerContext, RoleEnum

UTC = timezone.utc
REGISTRATION_OPEN = datetime(2026, 3, 5, 12, 0, tzinfo=UTC)
PRESENTATION_DAY = datetime(2026, 3, 10, 9, 30, tzinfo=UTC)


@pytest.fixture(autouse=True)
def utc_timezone(monkeypatch):
    monkeypatch.setenv("APP_TIMEZONE", "UTC")


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'presentations.db'}", echo=False)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


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
def host():
    return CallerContext(
        user_id="f-100",
        name="Dr. Meera Rao",
        email="meera.rao@campus.edu",
        role=RoleEnum.FACULTY,
        department="Computer Science",
    )


@pytest.fixture
def other_faculty():
    return CallerContext(
        user_id="f-200",
        name="Dr. Arun Pillai",
        email="arun.pillai@campus.edu",
        role=RoleEnum.FACULTY,
        department="Physics",
    )


@pytest.fixture
def admin():
    return CallerContext(user_id="a-1", name="Registrar", email="registrar@campus.edu", role=RoleEnum.ADMIN)


def make_student(user_id: str, email: str, year: int = 3, school: str = "Engineering",
                 department: str = "Computer Science") -> CallerContext:
    return CallerContext(
        user_id=user_id,
        name=email.split("@")[0].title(),
        email=email,
        role=RoleEnum.STUDENT,
        year=year,
        school=school,
        department=department,
    )


@pytest.fixture
def alice():
    return make_student("s-1", "alice@campus.edu")


@pytest.fixture
def bob():
    return make_student("s-2", "bob@campus.edu")


def participant(caller: CallerContext, roll_number: str = None) -> dict:
    return {"email": caller.email, "name": caller.name, "roll_number": roll_number}


def event_payload(**overrides) -> dict:
    payload = {
        "title": "Capstone Review",
        "description": "Final year capstone presentations",
        "venue": "Seminar Hall B",
        "participation_type": "individual",
        "registration_window": {
            "start": datetime(2026, 3, 1, 0, 0, tzinfo=UTC),
            "end": datetime(2026, 3, 9, 23, 59, tzinfo=UTC),
        },
        "presentation_window": {
            "start": datetime(2026, 3, 10, 0, 0, tzinfo=UTC),
            "end": datetime(2026, 3, 10, 23, 59, tzinfo=UTC),
        },
        "slot_config": {
            "duration_minutes": 15,
            "buffer_minutes": 5,
            "daily_start_time": time(9, 0),
            "daily_end_time": time(10, 0),
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def sample_event(db, host):
    """Individual event with three slots on 2026-03-10: 09:00, 09:20 and 09:40."""
    return create_event(db, host, event_payload())


@pytest.fixture
def team_event(db, host):
    return create_event(
        db,
        host,
        event_payload(title="Design Studio", participation_type="team", team_size_min=2, team_size_max=4),
    )
