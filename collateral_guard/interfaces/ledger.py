"""Ledger protocols — provider, signer and balance lookups."""
from decimal import Decimal
from typing import Protocol

from ..models import LedgerCall, SignedCall, TransactionStatusReport


class LedgerProvider(Protocol):
    """Abstract interface for submitting calls and querying their status."""

    async def estimate_call(self, call: LedgerCall) -> dict[str, int]: ...

    async def submit_signed_call(self, signed_call: SignedCall) -> str: ...

    async def get_transaction_status(
        self, transaction_hash: str
    ) -> TransactionStatusReport: ...


class Signer(Protocol):
    """Holds key material and turns a call into something sendable."""

    @property
    def address(self) -> str: ...

    async def sign(self, call: LedgerCall) -> SignedCall: ...


class BalanceSource(Protocol):
    """Available balance of an account, in whole collateral units."""

    async def get_available_balance(self, owner_ref: str, asset: str) -> Decimal: ...
