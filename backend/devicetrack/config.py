# backend/devicetrack/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/devicetrack.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///devicetrack.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Where opaque artifacts (QR images, invoices) are kept, keyed by relative path
    ARTIFACT_ROOT = os.environ.get("ARTIFACT_ROOT", "artifacts")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # bcrypt cost factor for generated and user-chosen passwords
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Length of generated one-shot passwords
    CREDENTIAL_PASSWORD_LENGTH = int(os.environ.get("CREDENTIAL_PASSWORD_LENGTH", "12"))
