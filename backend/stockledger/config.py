# backend/stockledger/config.py
from __future__ import annotations
import os


def _csv_env(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Listing pagination
    DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE = int(os.environ.get("MAX_PAGE_SIZE", "100"))

    # Roles whose AccessPolicy covers every placement
    UNRESTRICTED_ROLES = _csv_env(
        "UNRESTRICTED_ROLES",
        "super_admin,admin_produk,audit,analist,owner",
    )

    TRACK_MIN_QUERY_LENGTH = 3
    RECEIPT_ID_MAX_ATTEMPTS = 10
