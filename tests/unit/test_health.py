"""Unit tests for the position health evaluator."""
from __future__ import annotations

from decimal import Decimal

import pytest

from collateral_guard.health import (
    INFINITE_RATIO,
    RiskThresholds,
    collateral_ratio,
    evaluate_health,
    health_score,
    liquidation_price,
    required_top_up,
    risk_level,
)
from collateral_guard.models import RiskLevel

D = Decimal


class TestCollateralRatio:
    def test_basic(self) -> None:
        assert collateral_ratio(D(10), D(2000), D(2500)) == D("12.5")

    def test_zero_debt_is_infinite(self) -> None:
        assert collateral_ratio(D(10), D(0), D(2500)) == INFINITE_RATIO

    def test_zero_collateral(self) -> None:
        assert collateral_ratio(D(0), D(2000), D(2500)) == D(0)


class TestHealthScore:
    @pytest.mark.parametrize(
        "ratio, expected",
        [
            ("3.0", 100),
            ("2.50", 100),
            ("2.49", 90),
            ("2.00", 90),
            ("1.50", 75),
            ("1.30", 50),
            ("1.20", 25),
            ("1.15", 10),
            ("1.14", 0),
            ("0", 0),
        ],
    )
    def test_buckets(self, ratio: str, expected: int) -> None:
        assert health_score(D(ratio)) == expected

    def test_infinite_ratio_scores_full(self) -> None:
        assert health_score(INFINITE_RATIO) == 100

    def test_monotonic(self) -> None:
        ratios = [D(x) / 100 for x in range(0, 400, 3)]
        scores = [health_score(r) for r in ratios]
        assert scores == sorted(scores)


class TestRiskLevel:
    @pytest.mark.parametrize(
        "ratio, expected",
        [
            ("1.50", RiskLevel.SAFE),
            ("1.49", RiskLevel.MODERATE),
            ("1.30", RiskLevel.MODERATE),
            ("1.29", RiskLevel.WARNING),
            ("1.20", RiskLevel.WARNING),
            ("1.19", RiskLevel.CRITICAL),
            ("1.15", RiskLevel.CRITICAL),
            ("1.14", RiskLevel.LIQUIDATION),
        ],
    )
    def test_boundaries_resolve_to_safer_bucket(self, ratio: str, expected: RiskLevel) -> None:
        assert risk_level(D(ratio)) is expected

    def test_custom_thresholds(self) -> None:
        thresholds = RiskThresholds(warning_ratio=D("1.25"))
        assert risk_level(D("1.22"), thresholds) is RiskLevel.CRITICAL

    def test_monotonic(self) -> None:
        ratios = [D(x) / 100 for x in range(0, 300)]
        severities = [risk_level(r).severity for r in ratios]
        assert severities == sorted(severities, reverse=True)


class TestLiquidationPrice:
    def test_basic(self) -> None:
        assert liquidation_price(D(1), D(2000)) == D("2200.0")

    def test_undefined_without_debt_or_collateral(self) -> None:
        assert liquidation_price(D(1), D(0)) is None
        assert liquidation_price(D(0), D(2000)) is None


class TestEvaluateHealth:
    def test_safe_scenario(self) -> None:
        snap = evaluate_health(D(10), D(2000), D(2500))
        assert snap.collateral_ratio == D("12.5")
        assert snap.risk_level is RiskLevel.SAFE
        assert snap.health_score == 100

    def test_warning_scenario(self) -> None:
        snap = evaluate_health(D(1), D(2000), D(2400))
        assert snap.collateral_ratio == D("1.2")
        assert snap.risk_level is RiskLevel.WARNING
        assert snap.health_score == 25

    def test_zero_debt(self) -> None:
        snap = evaluate_health(D(5), D(0), D(2000))
        assert not snap.collateral_ratio.is_finite()
        assert snap.stored_ratio is None
        assert snap.risk_level is RiskLevel.SAFE
        assert snap.health_score == 100
        assert snap.liquidation_price is None

    def test_idempotent(self) -> None:
        assert evaluate_health(D(3), D(4000), D(2100)) == evaluate_health(
            D(3), D(4000), D(2100)
        )

    def test_negative_amounts_rejected(self) -> None:
        with pytest.raises(ValueError):
            evaluate_health(D(-1), D(2000), D(2000))
        with pytest.raises(ValueError):
            evaluate_health(D(1), D(2000), D(-5))


class TestRequiredTopUp:
    def test_amount_to_reach_target(self) -> None:
        # 2000 * 1.8 / 2400 = 1.5 ETH needed, 1 held
        assert required_top_up(D(1), D(2000), D(2400), D("1.8")) == D("0.5")

    def test_never_negative(self) -> None:
        assert required_top_up(D(10), D(2000), D(2500), D("1.8")) == D(0)

    def test_non_positive_price_rejected(self) -> None:
        with pytest.raises(ValueError):
            required_top_up(D(1), D(2000), D(0), D("1.8"))
