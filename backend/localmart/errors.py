# Overview: Structured business errors shared by services and routes.

"""
Marketplace error taxonomy.

Every core operation fails with a subclass of MarketplaceError. Routes turn
them into JSON bodies of the form:

    {"error": <kind>, "message": <human readable>, "details": {...}}

using the class-level `kind` and `status_code`.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for business-rule failures returned to the caller."""
    kind = "Error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MarketplaceError):
    """400-level input problem."""
    kind = "ValidationError"


class Forbidden(MarketplaceError):
    kind = "Forbidden"
    status_code = 403


class NotFound(MarketplaceError):
    kind = "NotFound"
    status_code = 404


# State machine violations

class InvalidState(MarketplaceError):
    kind = "InvalidState"
    status_code = 409


class InvalidTransition(MarketplaceError):
    kind = "InvalidTransition"
    status_code = 409


# Negotiation rules

class InvalidPrice(MarketplaceError):
    kind = "InvalidPrice"


class NotBargainable(MarketplaceError):
    kind = "NotBargainable"


class DuplicateActive(MarketplaceError):
    kind = "DuplicateActive"
    status_code = 409


# Order assembly

class Unavailable(MarketplaceError):
    kind = "Unavailable"
    status_code = 409


class InsufficientStock(Unavailable):
    kind = "InsufficientStock"


class MultiSeller(MarketplaceError):
    kind = "MultiSeller"


# Deadlines

class Expired(MarketplaceError):
    kind = "Expired"
    status_code = 410


class WindowExpired(MarketplaceError):
    kind = "WindowExpired"
    status_code = 409


class External(MarketplaceError):
    """Payout or notification provider failure."""
    kind = "External"
    status_code = 502
