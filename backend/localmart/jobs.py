# Overview: Scheduler entry points for periodic sweeps.

"""
Scheduled jobs

Both entry points are idempotent and safe to run alongside live request
traffic or more than once for the same period. They are triggered by cron
through the Flask CLI (`flask jobs expire-bargains`, `flask jobs settle`).
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from .services import bargain_service, settlement_service
from localmart.time_utils import utcnow


def on_periodic_bargain_expiry_sweep(now: datetime | None = None) -> int:
    now = now or utcnow()
    expired = bargain_service.expire_overdue(now)
    current_app.logger.info("Bargain expiry sweep at %s: %s expired", now.isoformat(), expired)
    return expired


def on_daily_settlement_tick(now: datetime | None = None, gateway=None) -> dict:
    return settlement_service.settlement_sweep(now or utcnow(), gateway)
