# backend/localmart/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int | None) -> int | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return int(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/localmart.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///localmart.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    # Order pricing policy (amounts in base currency units, not sub-units)
    PLATFORM_FEE_PERCENT = os.environ.get("PLATFORM_FEE_PERCENT", "5")
    FREE_DELIVERY_THRESHOLD = os.environ.get("FREE_DELIVERY_THRESHOLD", "500")
    DELIVERY_FEE = os.environ.get("DELIVERY_FEE", "50")
    PAYMENT_PROCESSING_FEE_PERCENT = os.environ.get("PAYMENT_PROCESSING_FEE_PERCENT", "0")

    # Negotiation
    BARGAIN_EXPIRY_HOURS = _env_int("BARGAIN_EXPIRY_HOURS", 24)
    BARGAIN_MAX_COUNTERS = _env_int("BARGAIN_MAX_COUNTERS", None)  # None = unbounded
    BARGAIN_MESSAGE_MAX_LENGTH = 500

    # Deadlines
    ORDER_CANCELLATION_HOURS = _env_int("ORDER_CANCELLATION_HOURS", 1)
    RETURN_WINDOW_DAYS = _env_int("RETURN_WINDOW_DAYS", 7)
    SETTLEMENT_HOLD_HOURS = _env_int("SETTLEMENT_HOLD_HOURS", 24)

    # HMAC key shared with the payment gateway for signature checks
    PAYMENT_GATEWAY_SECRET = os.environ.get("PAYMENT_GATEWAY_SECRET", "dev-gateway-secret")
