# backend/shoptab/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default; Postgres in production
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///shoptab.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("SHOPTAB_LOG_LEVEL", "INFO")

    # Order numbers look like ORD2410170010007 (prefix + YYMMDD + shop + sequence)
    ORDER_NUMBER_PREFIX = os.environ.get("SHOPTAB_ORDER_NUMBER_PREFIX", "ORD")

    # Push delivery is an external collaborator; disabling drops events after commit
    NOTIFICATIONS_ENABLED = _env_flag("SHOPTAB_NOTIFICATIONS_ENABLED", True)

    # Lock / stale-row retries for ledger and order writes
    RETRY_ATTEMPTS = int(os.environ.get("SHOPTAB_RETRY_ATTEMPTS", "3"))

    DEMO_SEED_ENABLED = _env_flag("SHOPTAB_DEMO_SEED_ENABLED", False)

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get("SHOPTAB_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if o.strip()
    )
