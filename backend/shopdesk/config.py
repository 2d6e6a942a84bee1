# backend/shopdesk/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///shopdesk.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Rendered invoice PDFs live here, keyed by organization and invoice
    INVOICE_STORAGE_DIR = os.environ.get("INVOICE_STORAGE_DIR")  # None -> <instance>/invoice-files
    INVOICE_STORAGE_URL_PREFIX = os.environ.get("INVOICE_STORAGE_URL_PREFIX", "/uploads")

    # Numbering: read-increment-write attempts before surfacing a conflict
    INVOICE_NUMBERING_MAX_ATTEMPTS = int(os.environ.get("INVOICE_NUMBERING_MAX_ATTEMPTS", "5"))

    # A "generating" claim older than this is considered abandoned
    INVOICE_PDF_STALE_AFTER_SECONDS = int(os.environ.get("INVOICE_PDF_STALE_AFTER_SECONDS", "300"))

    # Used to absolutise relative logo paths for the PDF renderer
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL")

    # Client-side polling contract
    INVOICE_POLL_INTERVAL_SECONDS = float(os.environ.get("INVOICE_POLL_INTERVAL_SECONDS", "2"))
    INVOICE_POLL_TIMEOUT_SECONDS = float(os.environ.get("INVOICE_POLL_TIMEOUT_SECONDS", "30"))
