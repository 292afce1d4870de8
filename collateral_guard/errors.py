"""Error hierarchy for ledger execution and position monitoring."""
from __future__ import annotations

from decimal import Decimal
from typing import Any


class CollateralGuardError(Exception):
    """Base error for collateral-guard operations."""


# ---------------------------------------------------------------------------
# Ledger execution
# ---------------------------------------------------------------------------


class ExecutionError(CollateralGuardError):
    """Failure while estimating, submitting or confirming a ledger call."""


class EstimationError(ExecutionError):
    """Fee estimation could not be performed."""


class SubmissionFailed(ExecutionError):
    """Submission gave up: retries exhausted or the error was permanent."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Transaction submission failed after {attempts} attempt(s): {last_error}"
        )


class ExecutionReverted(ExecutionError):
    """The ledger executed the call and rejected it."""

    def __init__(self, transaction_hash: str, receipt: Any = None) -> None:
        self.transaction_hash = transaction_hash
        self.receipt = receipt
        super().__init__(f"Transaction reverted: {transaction_hash}")


class ConfirmationTimeout(ExecutionError):
    """No resolution within the wait window. The call may still confirm later."""

    def __init__(self, transaction_hash: str, timeout_ms: int) -> None:
        self.transaction_hash = transaction_hash
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Transaction confirmation timeout after {timeout_ms}ms: {transaction_hash}"
        )


class StatusQueryFailed(ExecutionError):
    """The provider refused a status query with a non-transient error."""

    def __init__(self, transaction_hash: str, cause: BaseException) -> None:
        self.transaction_hash = transaction_hash
        self.cause = cause
        super().__init__(f"Status query failed for {transaction_hash}: {cause}")


class LedgerRpcError(CollateralGuardError):
    """Error object returned by a JSON-RPC node."""

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


# ---------------------------------------------------------------------------
# Positions and remediation
# ---------------------------------------------------------------------------


class PositionNotFound(CollateralGuardError):
    def __init__(self, position_id: str) -> None:
        self.position_id = position_id
        super().__init__(f"Position not found: {position_id}")


class RemediationError(CollateralGuardError):
    """Base error for automated collateral top-ups."""


class InsufficientFunds(RemediationError):
    """Owner balance cannot cover the required top-up."""

    def __init__(
        self, position_id: str, required: Decimal, available: Decimal
    ) -> None:
        self.position_id = position_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds for position {position_id}: "
            f"required {required}, available {available}"
        )


class RemediationFailed(RemediationError):
    """The top-up transaction did not confirm."""

    def __init__(self, position_id: str, cause: BaseException) -> None:
        self.position_id = position_id
        self.cause = cause
        super().__init__(f"Remediation failed for position {position_id}: {cause}")


class OwnerMismatch(RemediationError):
    """The top-up call acts on the signer's own position, not this owner's."""

    def __init__(self, position_id: str, owner_ref: str, sender: str | None) -> None:
        self.position_id = position_id
        self.owner_ref = owner_ref
        self.sender = sender
        super().__init__(
            f"Cannot top up position {position_id}: owned by {owner_ref}, "
            f"transactions are signed by {sender or 'no configured account'}"
        )
