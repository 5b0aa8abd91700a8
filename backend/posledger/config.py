# backend/posledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # SQLite ignores SELECT ... FOR UPDATE. BEGIN IMMEDIATE takes the write
    # lock at transaction start so lock-then-read still serialises writers.
    SQLITE_IMMEDIATE_TRANSACTIONS = _env_bool("SQLITE_IMMEDIATE_TRANSACTIONS", True)

    # "best_effort": audit row written after commit, failures logged only.
    # "transactional": audit row written inside the mutation transaction.
    AUDIT_DELIVERY_MODE = os.environ.get("AUDIT_DELIVERY_MODE", "best_effort")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if origin.strip()
    ]

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    # Customer row used for anonymous checkouts; never earns loyalty points.
    WALK_IN_CUSTOMER_ID = int(os.environ.get("WALK_IN_CUSTOMER_ID", "1"))

    # bcrypt cost factor; tests lower it
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
