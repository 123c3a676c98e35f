# backend/caja/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/caja.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///caja.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Operating context used when a request carries no X-Terminal-Id header
    DEFAULT_TERMINAL_ID = os.environ.get("DEFAULT_TERMINAL_ID", "caja-1")

    # Smallest currency unit accepted as rounding slack (COP has no decimals)
    MONEY_TOLERANCE = _env_int("MONEY_TOLERANCE", 1)

    # Clients re-fetch shift/table state on this cadence
    POLL_INTERVAL_SECONDS = _env_int("POLL_INTERVAL_SECONDS", 5)

    # Ticket "hora" is printed in restaurant local time
    LOCAL_TIMEZONE = os.environ.get("LOCAL_TIMEZONE", "America/Bogota")

    # Backing store retries before surfacing StoreUnavailableError
    STORE_RETRY_ATTEMPTS = _env_int("STORE_RETRY_ATTEMPTS", 3)
    STORE_RETRY_BACKOFF = _env_float("STORE_RETRY_BACKOFF", 0.1)

    # Local print server (kitchen tickets, cash drawer). Empty disables printing.
    PRINT_SERVER_URL = os.environ.get("PRINT_SERVER_URL", "")
    PRINT_SERVER_TIMEOUT = _env_float("PRINT_SERVER_TIMEOUT", 5.0)
    # Tests inject an httpx transport here
    PRINT_TRANSPORT = None
