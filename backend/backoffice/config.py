# backend/backoffice/config.py
from __future__ import annotations
import os


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # development | production | testing
    APP_ENV = os.environ.get("APP_ENV", "development")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///backoffice.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # 500 responses carry the underlying message outside production
    EXPOSE_ERRORS = APP_ENV != "production"

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # The two trading branches; invoices and stock rows must name one of these
    BRANCHES = _env_list("BRANCHES", "BranchA,BranchB")
    DEFAULT_LOW_STOCK_THRESHOLD = int(os.environ.get("DEFAULT_LOW_STOCK_THRESHOLD", "5"))

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    IDEMPOTENCY_HEADER = os.environ.get("IDEMPOTENCY_HEADER", "X-Idempotency-Key")
    OUTBOX_MAX_ATTEMPTS = int(os.environ.get("OUTBOX_MAX_ATTEMPTS", "5"))


class TestingConfig(Config):
    TESTING = True
    APP_ENV = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    EXPOSE_ERRORS = True
    BRANCHES = ("BranchA", "BranchB")
    BCRYPT_ROUNDS = 4
    OUTBOX_MAX_ATTEMPTS = 3
