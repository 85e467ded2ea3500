# backend/ledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Value-added tax applied to TVA receipts and TVA invoice bundles
    TVA_RATE = float(os.environ.get("TVA_RATE", "0.11"))
    # Reserved receipt-number prefix for the TVA sequence
    TVA_RECEIPT_PREFIX = "T"

    # Intake product: selling it adds stock instead of removing it
    DEBRIS_PRODUCT_NAME = os.environ.get("DEBRIS_PRODUCT_NAME", "Debris")

    # Receipt creation retries on receipt_no collisions (implicit numbers only)
    RECEIPT_NUMBER_MAX_ATTEMPTS = int(os.environ.get("RECEIPT_NUMBER_MAX_ATTEMPTS", "5"))
