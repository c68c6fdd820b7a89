# backend/hangar/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/hangar.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///hangar.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # External OCR service (meter photo -> value + confidence)
    OCR_SERVICE_URL = os.environ.get("OCR_SERVICE_URL", "http://127.0.0.1:8088/extract")
    OCR_API_KEY = os.environ.get("OCR_API_KEY")
    OCR_TIMEOUT_SECONDS = float(os.environ.get("OCR_TIMEOUT_SECONDS", "20"))
    OCR_MAX_WORKERS = int(os.environ.get("OCR_MAX_WORKERS", "4"))

    # Auto-approval requires every image at or above this confidence (0-100)
    OCR_CONFIDENCE_THRESHOLD = int(os.environ.get("OCR_CONFIDENCE_THRESHOLD", "85"))

    OVERHAUL_RECALC_CHUNK_SIZE = int(os.environ.get("OVERHAUL_RECALC_CHUNK_SIZE", "500"))
    COMMIT_RETRY_ATTEMPTS = int(os.environ.get("COMMIT_RETRY_ATTEMPTS", "3"))

    # Counter used to decrement component hours when a flight is deleted.
    # "diff_tach" mirrors accrual; "diff_hobbs" reproduces the legacy behaviour.
    REVERSAL_COMPONENT_COUNTER = os.environ.get("REVERSAL_COMPONENT_COUNTER", "diff_tach")
