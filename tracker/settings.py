"""
Settings module for the progress tracker backend.

This module provides environment-based configuration.
Settings are read at runtime (not at import time) to allow testing with monkeypatch.
"""

import os
from pathlib import Path

project_root = Path(__file__).parent.parent

DEFAULT_DB_PATH = project_root / "tracker" / "db" / "tracker.db"
DEFAULT_CORS_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
)

TRUTHY = ("true", "1", "yes")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def get_settings() -> dict:
    """
    Get application settings from environment variables.

    Returns:
        dict with keys:
            - app_env: "development" | "production" (default: "development")
            - database_path: Path of the SQLite database file
            - jwt_secret_key: secret shared with the identity provider
            - jwt_algorithm: JWT signing algorithm (default: "HS256")
            - access_token_expire_hours: int (default: 24)
            - cors_allow_origins: list of allowed frontend origins
            - log_level: logging level name; unknown names fall back to "INFO"
            - verbose_errors: bool (computed from app_env and VERBOSE_ERRORS)
    """
    app_env = os.getenv("APP_ENV", "development").lower()
    verbose_errors_str = os.getenv("VERBOSE_ERRORS", "false").strip().lower()

    # Internal error details are never exposed outside development
    verbose_errors = (app_env == "development") and verbose_errors_str in TRUTHY

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        log_level = "INFO"

    origins = os.getenv("CORS_ALLOW_ORIGINS")
    if origins is None:
        cors_allow_origins = list(DEFAULT_CORS_ORIGINS)
    else:
        cors_allow_origins = [o.strip() for o in origins.split(",") if o.strip()]

    return {
        "app_env": app_env,
        "database_path": Path(os.getenv("DATABASE_PATH", str(DEFAULT_DB_PATH))),
        "jwt_secret_key": os.getenv("JWT_SECRET_KEY", "tracker-secret-key-change-in-production"),
        "jwt_algorithm": os.getenv("JWT_ALGORITHM", "HS256"),
        "access_token_expire_hours": int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24")),
        "cors_allow_origins": cors_allow_origins,
        "log_level": log_level,
        "verbose_errors": verbose_errors,
    }
