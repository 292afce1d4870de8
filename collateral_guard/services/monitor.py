"""Risk monitoring loop — recomputes position health and reacts to risk."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from ..config import MonitorConfig, RemediationConfig
from ..errors import InsufficientFunds, RemediationError
from ..health import evaluate_health
from ..interfaces.alerts import AlertDispatcher
from ..interfaces.price_source import PriceSource
from ..interfaces.store import PositionStore
from ..models import HealthSnapshot, Position, PositionStatus, RiskLevel
from .alerts import format_owner
from .locks import RemediationLocks
from .remediation import RemediationExecutor

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionOutcome(str, Enum):
    EVALUATED = "evaluated"
    REMEDIATED = "remediated"
    REMEDIATION_SKIPPED = "remediation_skipped"
    REMEDIATION_FAILED = "remediation_failed"
    ERROR = "error"


@dataclass(frozen=True)
class PositionCheck:
    position_id: str
    outcome: PositionOutcome
    snapshot: HealthSnapshot | None = None
    alert_sent: bool = False
    error: str | None = None


@dataclass(frozen=True)
class SweepResult:
    started_at: datetime
    duration_ms: float
    checks: tuple[PositionCheck, ...] = ()

    @property
    def positions_checked(self) -> int:
        return sum(1 for c in self.checks if c.outcome is not PositionOutcome.ERROR)

    @property
    def alerts_sent(self) -> int:
        return sum(1 for c in self.checks if c.alert_sent)

    @property
    def errors(self) -> int:
        return sum(1 for c in self.checks if c.outcome is PositionOutcome.ERROR)


@dataclass
class MonitorStats:
    total_runs: int = 0
    positions_checked: int = 0
    alerts_by_severity: dict[str, int] = field(default_factory=dict)
    remediations_attempted: int = 0
    remediations_succeeded: int = 0
    remediations_failed: int = 0
    errors: int = 0
    last_run_at: datetime | None = None


class RiskMonitor:
    """Sweeps active positions on a timer.

    Positions are processed one at a time in ascending id order; a failure on
    one position is logged and recorded without aborting the sweep.
    """

    def __init__(
        self,
        store: PositionStore,
        prices: PriceSource,
        alerts: AlertDispatcher,
        config: MonitorConfig,
        remediation_config: RemediationConfig | None = None,
        remediator: RemediationExecutor | None = None,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._prices = prices
        self._alerts = alerts
        self._config = config
        self._thresholds = config.thresholds
        self._remediation = remediation_config or RemediationConfig()
        self._remediator = remediator
        self._now = now
        self._locks = RemediationLocks(store, self._remediation.lock_ttl_ms, now=now)

        self._stats = MonitorStats()
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, check_interval_ms: int | None = None) -> None:
        """Start the periodic sweep in the running event loop."""
        if self.is_running:
            logger.info("Risk monitor is already running")
            return
        interval_ms = (
            self._config.check_interval_ms if check_interval_ms is None else check_interval_ms
        )
        if interval_ms <= 0:
            raise ValueError("check_interval_ms must be positive")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(interval_ms))
        logger.info("Risk monitor started (sweeping every %dms)", interval_ms)

    async def stop(self) -> None:
        if not self.is_running:
            logger.info("Risk monitor is not running")
            return
        assert self._stop_event is not None and self._task is not None
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Risk monitor stopped")

    async def run_forever(self, check_interval_ms: int | None = None) -> None:
        self.start(check_interval_ms)
        assert self._task is not None
        try:
            await self._task
        finally:
            if self.is_running:
                await self.stop()

    async def _run_loop(self, interval_ms: int) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_sweep()
            except Exception as e:
                self._stats.errors += 1
                logger.error("Error in monitoring loop: %s", e, exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_ms / 1000)
            except asyncio.TimeoutError:
                pass

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        t = self._thresholds
        return {
            "is_running": self.is_running,
            "check_interval_ms": self._config.check_interval_ms,
            "auto_top_up_enabled": self._remediation_enabled,
            "thresholds": {
                "safe": str(t.safe_ratio),
                "moderate": str(t.moderate_ratio),
                "warning": str(t.warning_ratio),
                "critical": str(t.critical_ratio),
                "auto_top_up": str(self._remediation.auto_top_up_threshold),
            },
            "stats": {
                "total_runs": self._stats.total_runs,
                "positions_checked": self._stats.positions_checked,
                "alerts_by_severity": dict(self._stats.alerts_by_severity),
                "remediations_attempted": self._stats.remediations_attempted,
                "remediations_succeeded": self._stats.remediations_succeeded,
                "remediations_failed": self._stats.remediations_failed,
                "errors": self._stats.errors,
                "last_run_at": (
                    self._stats.last_run_at.isoformat() if self._stats.last_run_at else None
                ),
            },
        }

    def reset_stats(self) -> None:
        self._stats = MonitorStats()
        logger.info("Monitoring statistics reset")

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    @staticmethod
    def _alert_due(previous: RiskLevel | None, current: RiskLevel) -> bool:
        """Alert on crossing into warning or worse, not on staying there."""
        if not current.is_at_least(RiskLevel.WARNING):
            return False
        return previous is None or current.severity > previous.severity

    def _build_risk_alert(self, position: Position, snapshot: HealthSnapshot) -> str:
        if snapshot.risk_level is RiskLevel.WARNING:
            advice = "Consider adding collateral or reducing debt."
        else:
            advice = "⚠️ Add collateral or repay debt immediately!"
        liquidation = (
            f"${snapshot.liquidation_price:,.2f}" if snapshot.liquidation_price else "—"
        )
        return (
            f"Collateral ratio {snapshot.collateral_ratio:.2%} · "
            f"Health score {snapshot.health_score}/100\n"
            f"\n"
            f"Collateral: {position.collateral_amount} {position.collateral_asset} "
            f"@ ${snapshot.reference_price:,.2f}\n"
            f"Debt: {position.debt_amount}\n"
            f"Liquidation price: {liquidation}\n"
            f"\n"
            f"{advice}\n"
            f"\n"
            f"Owner: {format_owner(position.owner_ref)}"
        )

    async def _dispatch(self, position_id: str, severity: RiskLevel, message: str) -> None:
        """Fire-and-forget: delivery failures never block the sweep."""
        try:
            await self._alerts.notify(position_id, severity, message)
        except Exception as e:
            logger.error("Alert dispatch failed for position %s: %s", position_id, e)

    # ------------------------------------------------------------------
    # Remediation
    # ------------------------------------------------------------------

    @property
    def _remediation_enabled(self) -> bool:
        return self._remediator is not None and self._remediation.auto_top_up_enabled

    def _remediation_due(self, snapshot: HealthSnapshot) -> bool:
        return (
            self._remediation_enabled
            and snapshot.collateral_ratio < self._remediation.auto_top_up_threshold
        )

    async def _remediate(self, position: Position, snapshot: HealthSnapshot) -> PositionOutcome:
        assert self._remediator is not None
        token = await self._locks.acquire(position.id)
        if token is None:
            return PositionOutcome.REMEDIATION_SKIPPED

        self._stats.remediations_attempted += 1
        try:
            await self._remediator.remediate(position, snapshot.reference_price)
        except InsufficientFunds as e:
            logger.warning("Remediation skipped for position %s: %s", position.id, e)
            self._stats.remediations_failed += 1
            return PositionOutcome.REMEDIATION_FAILED
        except RemediationError as e:
            logger.error("Remediation failed for position %s: %s", position.id, e)
            self._stats.remediations_failed += 1
            return PositionOutcome.REMEDIATION_FAILED
        except Exception as e:
            logger.error(
                "Unexpected remediation error for position %s: %s", position.id, e, exc_info=True
            )
            self._stats.remediations_failed += 1
            await self._dispatch(
                position.id,
                RiskLevel.CRITICAL,
                f"Automatic collateral top-up FAILED: {e}\n"
                f"Add collateral or repay debt immediately!",
            )
            return PositionOutcome.REMEDIATION_FAILED
        finally:
            await self._locks.release(position.id, token)

        self._stats.remediations_succeeded += 1
        return PositionOutcome.REMEDIATED

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def _evaluate(self, position: Position) -> HealthSnapshot:
        price = await self._prices.get_reference_price(position.collateral_asset)
        return evaluate_health(
            position.collateral_amount, position.debt_amount, price, self._thresholds
        )

    async def _process(self, position: Position) -> PositionCheck:
        snapshot = await self._evaluate(position)
        alert_due = self._alert_due(position.risk_level, snapshot.risk_level)

        fields: dict[str, Any] = {
            "collateral_ratio": snapshot.stored_ratio,
            "health_score": snapshot.health_score,
            "risk_level": snapshot.risk_level,
            "liquidation_price": snapshot.liquidation_price,
            "last_monitored_at": self._now(),
        }
        if alert_due:
            fields["alerts_sent"] = position.alerts_sent + 1
        updated = await self._store.update(position.id, fields)

        logger.info(
            "Position %s — ratio: %s  score: %d  risk: %s",
            position.id,
            snapshot.stored_ratio if snapshot.stored_ratio is not None else "∞",
            snapshot.health_score,
            snapshot.risk_level.value,
        )

        if alert_due:
            severity = snapshot.risk_level
            self._stats.alerts_by_severity[severity.value] = (
                self._stats.alerts_by_severity.get(severity.value, 0) + 1
            )
            await self._dispatch(position.id, severity, self._build_risk_alert(updated, snapshot))

        outcome = PositionOutcome.EVALUATED
        if self._remediation_due(snapshot):
            outcome = await self._remediate(updated, snapshot)

        return PositionCheck(
            position_id=position.id,
            outcome=outcome,
            snapshot=snapshot,
            alert_sent=alert_due,
        )

    async def run_sweep(self) -> SweepResult:
        """Evaluate every active position once."""
        started_at = self._now()
        loop_start = time.perf_counter()

        positions = sorted(await self._store.list_active(), key=lambda p: p.id)
        logger.info("Checking %d active positions...", len(positions))

        checks: list[PositionCheck] = []
        for position in positions:
            try:
                check = await self._process(position)
            except Exception as e:
                logger.error("Error checking position %s: %s", position.id, e, exc_info=True)
                self._stats.errors += 1
                check = PositionCheck(
                    position_id=position.id, outcome=PositionOutcome.ERROR, error=str(e)
                )
            checks.append(check)

        result = SweepResult(
            started_at=started_at,
            duration_ms=(time.perf_counter() - loop_start) * 1000,
            checks=tuple(checks),
        )
        self._stats.total_runs += 1
        self._stats.positions_checked += result.positions_checked
        self._stats.last_run_at = started_at

        logger.info(
            "Monitoring sweep completed: %d checked, %d alerts, %d errors in %.0fms",
            result.positions_checked,
            result.alerts_sent,
            result.errors,
            result.duration_ms,
        )
        return result

    async def check_position(self, position_id: str) -> HealthSnapshot:
        """On-demand re-evaluation of one position.

        Positions that are no longer active are evaluated without side effects.
        """
        position = await self._store.get(position_id)
        if position.status is not PositionStatus.ACTIVE:
            return await self._evaluate(position)

        check = await self._process(position)
        assert check.snapshot is not None
        return check.snapshot

    async def preview(self) -> tuple[PositionCheck, ...]:
        """Evaluate every active position without persisting, alerting or remediating."""
        checks: list[PositionCheck] = []
        for position in sorted(await self._store.list_active(), key=lambda p: p.id):
            try:
                snapshot = await self._evaluate(position)
            except Exception as e:
                logger.error("Error evaluating position %s: %s", position.id, e)
                checks.append(
                    PositionCheck(
                        position_id=position.id, outcome=PositionOutcome.ERROR, error=str(e)
                    )
                )
                continue
            checks.append(
                PositionCheck(
                    position_id=position.id,
                    outcome=PositionOutcome.EVALUATED,
                    snapshot=snapshot,
                )
            )
        return tuple(checks)
