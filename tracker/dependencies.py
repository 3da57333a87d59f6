"""
Shared API dependencies.

Stores are built per request from the current settings so route modules stay
thin and tests can point DATABASE_PATH at a temporary file.
"""

from tracker.settings import get_settings
from tracker.store import DueDateStore, IndicatorStore, ProgressReportStore, UserStore


def get_user_store() -> UserStore:
    return UserStore(get_settings()["database_path"])


def get_indicator_store() -> IndicatorStore:
    return IndicatorStore(get_settings()["database_path"])


def get_due_date_store() -> DueDateStore:
    return DueDateStore(get_settings()["database_path"])


def get_report_store() -> ProgressReportStore:
    return ProgressReportStore(get_settings()["database_path"])
