"""
Pytest configuration and fixtures

Tests run against a throwaway SQLite database migrated to Alembic head once
per session. The API under test opens its own sessions, so fixtures commit
their rows and every table is emptied after each test.
"""
import os
import tempfile
from pathlib import Path
from datetime import datetime, timedelta, timezone
from uuid import uuid4

# Must be in place before anything imports core.config
_TEST_DB_DIR = tempfile.mkdtemp(prefix="challngr-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-at-least-32-characters"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["LOG_FORMAT"] = "text"
os.environ["NOVU_API_KEY"] = ""
os.environ["ONESIGNAL_APP_ID"] = ""
os.environ["ONESIGNAL_REST_API_KEY"] = ""
os.environ["PUSH_PROVIDER"] = "novu"

import pytest


@pytest.fixture(scope="session", autouse=True)
def _ensure_db_schema_is_at_head():
    """
    Migrate the test database to the latest Alembic revision.

    Going through the migrations (not create_all) keeps them honest.
    """
    try:
        from alembic import command
        from alembic.config import Config

        api_root = Path(__file__).resolve().parents[1]
        alembic_ini = api_root / "alembic.ini"

        cfg = Config(str(alembic_ini))
        # Alembic's script_location in alembic.ini is relative ("alembic")
        # so we set it explicitly.
        cfg.set_main_option("script_location", str(api_root / "alembic"))
        command.upgrade(cfg, "head")
    except Exception as e:
        # Tests should fail loudly if migrations cannot be applied.
        raise RuntimeError(f"Failed to upgrade DB to Alembic head: {e}") from e


from fastapi.testclient import TestClient

from core.database import Base, SessionLocal, engine
from core.security import create_access_token, get_password_hash
from models import Competition, CompetitionParticipant, User, WeightEntry


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    """Caching and rate limiting degrade to no-ops without Redis."""
    monkeypatch.setattr("core.cache.get_redis_client", lambda: None)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client():
    from main import app
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db_session):
    def _make(role: str = "user", email: str = None, password: str = "password123", **kwargs) -> User:
        user = User(
            email=email or f"user_{uuid4().hex[:10]}@example.com",
            password_hash=get_password_hash(password),
            role=role,
            display_name=kwargs.pop("display_name", "Test User"),
            **kwargs,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin_user(make_user):
    return make_user(role="admin", display_name="Admin")


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers(user):
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def cron_headers():
    return {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def make_competition(db_session):
    def _make(creator: User, **kwargs) -> Competition:
        competition = Competition(
            name=kwargs.pop("name", "Summer Shred"),
            competition_type=kwargs.pop("competition_type", "weight_loss"),
            activity_type=kwargs.pop("activity_type", "weight"),
            scoring_method=kwargs.pop("scoring_method", "total_value"),
            ranking_direction=kwargs.pop("ranking_direction", "desc"),
            duration_days=kwargs.pop("duration_days", 30),
            status=kwargs.pop("status", "pending"),
            invite_code=kwargs.pop("invite_code", uuid4().hex[:8].upper()),
            created_by=creator.id,
            **kwargs,
        )
        db_session.add(competition)
        db_session.commit()
        return competition
    return _make


@pytest.fixture
def add_participant(db_session):
    _order = {"n": 0}

    def _add(competition: Competition, user: User, starting_weight=None, current_weight=None, **kwargs):
        # Distinct, increasing join times keep tie-breaking deterministic
        _order["n"] += 1
        participant = CompetitionParticipant(
            competition_id=competition.id,
            user_id=user.id,
            joined_at=kwargs.pop("joined_at", datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=_order["n"])),
            starting_weight=starting_weight,
            current_weight=current_weight,
            is_active=kwargs.pop("is_active", True),
            total_entries=0,
            **kwargs,
        )
        db_session.add(participant)
        db_session.commit()
        return participant
    return _add


@pytest.fixture
def log_weight_entry(db_session):
    def _log(user: User, weight: float, day=None) -> WeightEntry:
        entry = WeightEntry(
            user_id=user.id,
            weight=weight,
            date=day or datetime.now(timezone.utc).date(),
        )
        db_session.add(entry)
        db_session.commit()
        return entry
    return _log


@pytest.fixture
def auth_for():
    return auth_headers
