# backend/vms/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/vms.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///vms.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Pass codec. The secret is read once at startup and never mutated.
    PASS_QR_SECRET = os.environ.get("QR_SECRET", "vms-qr-secret-key")
    PASS_NUMBER_PREFIX = os.environ.get("PASS_NUMBER_PREFIX", "VMS")
    PASS_SIGNATURE_LENGTH = _env_int("PASS_SIGNATURE_LENGTH", 16)
    PASS_TOKEN_MAX_AGE_DAYS = _env_int("PASS_TOKEN_MAX_AGE_DAYS", 7)

    # Visit policy knobs
    VISIT_EXTENSION_MIN_MINUTES = _env_int("VISIT_EXTENSION_MIN_MINUTES", 15)
    VISIT_EXTENSION_MAX_MINUTES = _env_int("VISIT_EXTENSION_MAX_MINUTES", 120)
    VISIT_MAX_EXTENSION_COUNT = _env_int("VISIT_MAX_EXTENSION_COUNT", 3)  # 0 = unlimited
    WALK_IN_DEFAULT_DURATION_MINUTES = _env_int("WALK_IN_DEFAULT_DURATION_MINUTES", 120)
    MEETING_PROMPT_EXTENSION_MINUTES = _env_int("MEETING_PROMPT_EXTENSION_MINUTES", 15)

    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000").rstrip("/")
