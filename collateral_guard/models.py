"""Data models — positions are frozen, transaction records track their own state."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


class PositionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    LIQUIDATED = "liquidated"

    @property
    def is_terminal(self) -> bool:
        return self is not PositionStatus.ACTIVE


class RiskLevel(str, Enum):
    """Risk buckets ordered from safest to most severe."""

    SAFE = "safe"
    MODERATE = "moderate"
    WARNING = "warning"
    CRITICAL = "critical"
    LIQUIDATION = "liquidation"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def is_at_least(self, other: RiskLevel) -> bool:
        return self.severity >= other.severity


_SEVERITY = {
    RiskLevel.SAFE: 0,
    RiskLevel.MODERATE: 1,
    RiskLevel.WARNING: 2,
    RiskLevel.CRITICAL: 3,
    RiskLevel.LIQUIDATION: 4,
}


@dataclass(frozen=True)
class RemediationLock:
    """In-progress marker for a remediation transaction."""

    token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Position:
    """Collateralized borrowing record as held by the position store."""

    id: str
    owner_ref: str
    collateral_amount: Decimal
    debt_amount: Decimal
    collateral_asset: str = "ETH"
    status: PositionStatus = PositionStatus.ACTIVE
    collateral_ratio: Decimal | None = None
    health_score: int | None = None
    risk_level: RiskLevel | None = None
    liquidation_price: Decimal | None = None
    last_monitored_at: datetime | None = None
    alerts_sent: int = 0
    remediation_lock: RemediationLock | None = None


@dataclass(frozen=True)
class HealthSnapshot:
    """Output of the health evaluator for one (position, price) pair."""

    collateral_ratio: Decimal
    health_score: int
    risk_level: RiskLevel
    reference_price: Decimal
    liquidation_price: Decimal | None = None

    @property
    def stored_ratio(self) -> Decimal | None:
        """Ratio as persisted: undefined (None) when there is no debt."""
        return self.collateral_ratio if self.collateral_ratio.is_finite() else None


# ---------------------------------------------------------------------------
# Ledger calls and transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerCall:
    """Identity of a state-changing ledger call plus optional fee limits."""

    target: str
    method: str
    params: tuple[Any, ...] = ()
    value: int = 0
    sender: str | None = None
    max_fee: int | None = None
    gas_limit: int | None = None


@dataclass(frozen=True)
class SignedCall:
    """Sendable payload; the hash is known up front for ledgers that allow it."""

    payload: Any
    transaction_hash: str | None = None


@dataclass(frozen=True)
class FeeEstimate:
    """Buffered fee estimate, all amounts in the ledger's smallest unit."""

    overall_fee: int
    suggested_max_fee: int
    gas_consumed: int | None = None
    gas_price: int | None = None


class TransactionState(str, Enum):
    BUILDING = "building"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (TransactionState.BUILDING, TransactionState.PENDING)


_ALLOWED_TRANSITIONS = {
    TransactionState.BUILDING: {TransactionState.PENDING, TransactionState.FAILED},
    TransactionState.PENDING: {
        TransactionState.CONFIRMED,
        TransactionState.REVERTED,
        TransactionState.TIMED_OUT,
    },
}


@dataclass
class TransactionRecord:
    """One logical ledger operation and its outcome."""

    target_contract: str
    method: str
    params: tuple[Any, ...] = ()
    transaction_hash: str | None = None
    state: TransactionState = TransactionState.BUILDING
    attempt: int = 0
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: datetime | None = None

    def transition(self, new_state: TransactionState) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise ValueError(
                f"Illegal transaction state change {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        if new_state.is_terminal:
            self.resolved_at = datetime.now(timezone.utc)


@dataclass(frozen=True)
class SubmissionResult:
    transaction_hash: str
    attempt: int
    record: TransactionRecord


class LedgerTxStatus(str, Enum):
    """Status of a transaction as reported by the ledger provider."""

    NOT_FOUND = "not_found"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    REVERTED = "reverted"


@dataclass(frozen=True)
class TransactionStatusReport:
    transaction_hash: str
    status: LedgerTxStatus
    block_number: int | None = None
    block_hash: str | None = None
    gas_used: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Receipt:
    """Confirmed transaction with block/finality information."""

    transaction_hash: str
    block_number: int | None
    block_hash: str | None = None
    gas_used: int | None = None
    attempt: int = 1
    raw: dict[str, Any] = field(default_factory=dict)
