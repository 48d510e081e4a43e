# backend/stockledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DEFAULT_FRACTIONAL_UNIT_MARKERS = (
    "KG", "KGS", "KILOGRAM", "GM", "GRAM", "GMS",
    "LTR", "LITER", "LITRE", "ML", "MTR", "METER",
)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Deployment-wide negative stock policy; Product.allow_backorder overrides it
    STOCK_ALLOW_BACKORDER = _env_bool("STOCK_ALLOW_BACKORDER", True)

    # Units whose name contains one of these markers are stored with full precision.
    # Every other unit is whole-count and rounded up before storage.
    FRACTIONAL_UNIT_MARKERS = tuple(
        m.strip().upper()
        for m in os.environ.get("FRACTIONAL_UNIT_MARKERS", ",".join(DEFAULT_FRACTIONAL_UNIT_MARKERS)).split(",")
        if m.strip()
    )
    QUANTITY_DECIMALS = int(os.environ.get("QUANTITY_DECIMALS", "9"))

    # "always": a sale of a formula product consumes ingredients for the full quantity
    # "deficit": only the shortfall below zero is produced (and consumed) on the fly
    AUTO_PRODUCE_ON_SALE = os.environ.get("AUTO_PRODUCE_ON_SALE", "always")

    LEDGER_WRITE_RETRIES = int(os.environ.get("LEDGER_WRITE_RETRIES", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))

    BALANCE_TOLERANCE = float(os.environ.get("BALANCE_TOLERANCE", "1e-9"))
