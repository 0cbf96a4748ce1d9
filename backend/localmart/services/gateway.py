# Overview: Payout gateway boundary used by the settlement sweep.

from __future__ import annotations

import secrets

from ..errors import External


class PayoutGateway:
    """
    Moves a seller's net amount out of the platform.

    transfer() returns the provider's transfer id or raises External.
    Implementations must not touch the database; the sweep records the
    outcome.
    """

    def transfer(self, transaction) -> str:
        raise NotImplementedError


class MockPayoutGateway(PayoutGateway):
    """In-process gateway for development and tests; every transfer succeeds."""

    def __init__(self, fail_for: set[int] | None = None):
        self.fail_for = set(fail_for or ())
        self.transfers: list[tuple[str, str]] = []

    def transfer(self, transaction) -> str:
        if transaction.id in self.fail_for:
            raise External(
                "Payout provider rejected the transfer",
                details={"transaction_number": transaction.transaction_number},
            )
        transfer_id = f"TRF-{secrets.token_hex(6).upper()}"
        self.transfers.append((transaction.transaction_number, transfer_id))
        return transfer_id
