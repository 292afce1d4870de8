"""Position health evaluation — pure functions, no I/O.

Every bucket is inclusive on its lower bound, so a ratio sitting exactly on a
threshold resolves to the safer bucket.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .models import HealthSnapshot, RiskLevel

INFINITE_RATIO = Decimal("Infinity")

# (lower bound, score), evaluated top to bottom.
_HEALTH_SCORE_BUCKETS: tuple[tuple[Decimal, int], ...] = (
    (Decimal("2.50"), 100),
    (Decimal("2.00"), 90),
    (Decimal("1.50"), 75),
    (Decimal("1.30"), 50),
    (Decimal("1.20"), 25),
    (Decimal("1.15"), 10),
)


@dataclass(frozen=True)
class RiskThresholds:
    """Lower bounds of the risk buckets above ``liquidation``."""

    safe_ratio: Decimal = Decimal("1.50")
    moderate_ratio: Decimal = Decimal("1.30")
    warning_ratio: Decimal = Decimal("1.20")
    critical_ratio: Decimal = Decimal("1.15")
    liquidation_ratio: Decimal = Decimal("1.10")


DEFAULT_THRESHOLDS = RiskThresholds()


def collateral_ratio(
    collateral_amount: Decimal, debt_amount: Decimal, reference_price: Decimal
) -> Decimal:
    """(collateral * price) / debt, or +infinity when there is no debt."""
    if debt_amount == 0:
        return INFINITE_RATIO
    return (collateral_amount * reference_price) / debt_amount


def health_score(ratio: Decimal) -> int:
    for lower_bound, score in _HEALTH_SCORE_BUCKETS:
        if ratio >= lower_bound:
            return score
    return 0


def risk_level(ratio: Decimal, thresholds: RiskThresholds = DEFAULT_THRESHOLDS) -> RiskLevel:
    if ratio >= thresholds.safe_ratio:
        return RiskLevel.SAFE
    if ratio >= thresholds.moderate_ratio:
        return RiskLevel.MODERATE
    if ratio >= thresholds.warning_ratio:
        return RiskLevel.WARNING
    if ratio >= thresholds.critical_ratio:
        return RiskLevel.CRITICAL
    return RiskLevel.LIQUIDATION


def liquidation_price(
    collateral_amount: Decimal,
    debt_amount: Decimal,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> Decimal | None:
    """Collateral price at which the position hits the liquidation ratio."""
    if collateral_amount == 0 or debt_amount == 0:
        return None
    return (debt_amount * thresholds.liquidation_ratio) / collateral_amount


def evaluate_health(
    collateral_amount: Decimal,
    debt_amount: Decimal,
    reference_price: Decimal,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> HealthSnapshot:
    """Compute ratio, score and risk level for a position snapshot."""
    if collateral_amount < 0 or debt_amount < 0:
        raise ValueError("Collateral and debt amounts must be non-negative")
    if reference_price < 0:
        raise ValueError("Reference price must be non-negative")

    ratio = collateral_ratio(collateral_amount, debt_amount, reference_price)
    return HealthSnapshot(
        collateral_ratio=ratio,
        health_score=health_score(ratio),
        risk_level=risk_level(ratio, thresholds),
        reference_price=reference_price,
        liquidation_price=liquidation_price(collateral_amount, debt_amount, thresholds),
    )


def required_top_up(
    collateral_amount: Decimal,
    debt_amount: Decimal,
    reference_price: Decimal,
    target_ratio: Decimal,
) -> Decimal:
    """Additional collateral needed to reach ``target_ratio``, never negative."""
    if reference_price <= 0:
        raise ValueError("Reference price must be positive to size a top-up")
    required = (debt_amount * target_ratio / reference_price) - collateral_amount
    return max(required, Decimal(0))
