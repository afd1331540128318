# backend/storeledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storeledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///storeledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Display only; amounts are always integer cents internally
    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "Rs.")

    # Drift above this many cents between a cached and a recomputed balance is flagged
    RECON_DRIFT_TOLERANCE_CENTS = int(os.environ.get("RECON_DRIFT_TOLERANCE_CENTS", "1"))

    # Bounded retry for locked/stale rows before surfacing a "busy" error
    RECON_RETRY_ATTEMPTS = int(os.environ.get("RECON_RETRY_ATTEMPTS", "3"))
    RECON_RETRY_BACKOFF_BASE = float(os.environ.get("RECON_RETRY_BACKOFF_BASE", "0.1"))
