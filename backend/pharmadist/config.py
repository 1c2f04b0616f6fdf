# backend/pharmadist/config.py
from __future__ import annotations
import os


def _csv(value: str) -> set[str]:
    return {part.strip() for part in value.split(",") if part.strip()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///pharmadist.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # Console-only logging unless a directory is given
    LOG_DIR = os.environ.get("LOG_DIR") or None

    # "log" writes realtime events to the log, "none" drops them
    REALTIME_SINK = os.environ.get("REALTIME_SINK", "log")

    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))

    CORS_ALLOWED_ORIGINS = _csv(
        os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        )
    )
