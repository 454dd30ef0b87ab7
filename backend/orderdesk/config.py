# backend/orderdesk/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderdesk.sqlite3 unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///orderdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Flat tax rates in basis points (1900 = 19%)
    ORDER_TAX_RATE_BPS = _env_int("ORDER_TAX_RATE_BPS", 1900)
    EXPENSE_TAX_RATE_BPS = _env_int("EXPENSE_TAX_RATE_BPS", 0)

    # Approval grants and the expiry sweep
    EDIT_GRANT_MINUTES = _env_int("EDIT_GRANT_MINUTES", 5)
    EXPIRY_SWEEP_INTERVAL_SECONDS = _env_int("EXPIRY_SWEEP_INTERVAL_SECONDS", 60)
    EXPIRY_WARNING_SECONDS = _env_int("EXPIRY_WARNING_SECONDS", 60)

    # Authentication
    SESSION_TIMEOUT_HOURS = _env_int("SESSION_TIMEOUT_HOURS", 24)
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )
