"""Shared pytest fixtures: a temporary database, users, records and bearer tokens."""

import pytest
from fastapi.testclient import TestClient

from tracker.db import init_db
from tracker.main import app
from tracker.models import (
    CreateProgressReportRequest,
    DueDateRequest,
    IndicatorRequest,
    Role,
)
from tracker.policies.authorization import create_access_token
from tracker.store import DueDateStore, IndicatorStore, ProgressReportStore, UserStore


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the application at a fresh SQLite file for each test."""
    path = tmp_path / "tracker.db"
    monkeypatch.setenv("DATABASE_PATH", str(path))
    monkeypatch.setenv("JWT_SECRET_KEY", "test-secret-key")
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.delenv("VERBOSE_ERRORS", raising=False)
    init_db(path)
    return path


@pytest.fixture
def client(db_path):
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def users(db_path):
    return UserStore(db_path)


@pytest.fixture
def indicators(db_path):
    return IndicatorStore(db_path)


@pytest.fixture
def due_dates(db_path):
    return DueDateStore(db_path)


@pytest.fixture
def reports(db_path):
    return ProgressReportStore(db_path)


@pytest.fixture
def guest(users):
    return users.create("guest@example.org", "Guest", Role.GUEST)


@pytest.fixture
def contributor(users):
    return users.create("contributor@example.org", "Contributor", Role.CONTRIBUTOR)


@pytest.fixture
def manager(users):
    return users.create("manager@example.org", "Manager", Role.MANAGER)


@pytest.fixture
def indicator(indicators):
    """An indicator with no designated manager."""
    return indicators.create(IndicatorRequest(title="Indicator", description="No manager"))


@pytest.fixture
def contributor_indicator(indicators, contributor):
    """An indicator managed by the contributor fixture."""
    return indicators.create(
        IndicatorRequest(title="Contributor indicator", manager_id=contributor.id)
    )


@pytest.fixture
def due_date(due_dates, indicator):
    return due_dates.create(DueDateRequest(indicator_id=indicator.id, due_date="2026-12-31"))


@pytest.fixture
def contributor_due_date(due_dates, contributor_indicator):
    return due_dates.create(
        DueDateRequest(indicator_id=contributor_indicator.id, due_date="2026-12-31")
    )


@pytest.fixture
def progress_report(reports, indicator, due_date, manager):
    return reports.create(
        CreateProgressReportRequest(
            indicator_id=indicator.id,
            due_date_id=due_date.id,
            title="Published report",
            description="Visible to everyone",
        ),
        actor_id=manager.id,
    )


@pytest.fixture
def draft_progress_report(reports, indicator, due_date, manager):
    return reports.create(
        CreateProgressReportRequest(
            indicator_id=indicator.id,
            due_date_id=due_date.id,
            title="Draft report",
            draft=True,
        ),
        actor_id=manager.id,
    )


@pytest.fixture
def contributor_progress_report(reports, contributor_indicator, contributor_due_date, manager):
    return reports.create(
        CreateProgressReportRequest(
            indicator_id=contributor_indicator.id,
            due_date_id=contributor_due_date.id,
            title="Contributor report",
        ),
        actor_id=manager.id,
    )


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user, as the identity provider would."""

    def _headers(user):
        token = create_access_token({"sub": user.email, "user_id": user.id})
        return {"Authorization": f"Bearer {token}"}

    return _headers
