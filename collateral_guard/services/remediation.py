"""Automated collateral top-ups for positions below the remediation threshold."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_CEILING, Decimal
from typing import Callable

from ..config import RemediationConfig
from ..errors import (
    ConfirmationTimeout,
    ExecutionError,
    InsufficientFunds,
    OwnerMismatch,
    RemediationFailed,
)
from ..execution.manager import TransactionManager
from ..health import RiskThresholds, evaluate_health, required_top_up
from ..interfaces.alerts import AlertDispatcher
from ..interfaces.ledger import BalanceSource
from ..interfaces.store import PositionStore
from ..models import HealthSnapshot, Position, Receipt, RiskLevel

logger = logging.getLogger(__name__)


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Whole-unit amount to the ledger's smallest unit, rounded up."""
    scaled = amount * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class RemediationOutcome:
    position_id: str
    top_up_amount: Decimal
    receipt: Receipt | None = None
    snapshot: HealthSnapshot | None = None


class RemediationExecutor:
    """Builds the top-up call and drives it through the transaction manager.

    Retries are left entirely to the transaction manager; a terminal failure
    is reported with a critical alert and raised as ``RemediationFailed``.
    """

    def __init__(
        self,
        store: PositionStore,
        tx_manager: TransactionManager,
        balances: BalanceSource,
        alerts: AlertDispatcher,
        config: RemediationConfig,
        thresholds: RiskThresholds | None = None,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._tx = tx_manager
        self._balances = balances
        self._alerts = alerts
        self._config = config
        self._thresholds = thresholds or RiskThresholds()
        self._now = now

    def required_collateral(self, position: Position, reference_price: Decimal) -> Decimal:
        return required_top_up(
            position.collateral_amount,
            position.debt_amount,
            reference_price,
            self._config.auto_top_up_target,
        )

    async def _alert(self, position_id: str, severity: RiskLevel, message: str) -> None:
        try:
            await self._alerts.notify(position_id, severity, message)
        except Exception as e:
            logger.error("Alert dispatch failed for position %s: %s", position_id, e)

    async def remediate(
        self, position: Position, reference_price: Decimal
    ) -> RemediationOutcome:
        required = self.required_collateral(position, reference_price)
        asset = position.collateral_asset

        if required <= 0:
            logger.info("Position %s needs no top-up", position.id)
            return RemediationOutcome(position_id=position.id, top_up_amount=Decimal(0))

        sender = self._tx.sender_address
        if sender is None or sender.lower() != position.owner_ref.lower():
            error = OwnerMismatch(position.id, position.owner_ref, sender)
            logger.error("%s", error)
            await self._alert(
                position.id,
                RiskLevel.CRITICAL,
                f"Automatic top-up not possible: {error}.\n"
                f"Add collateral or repay debt manually.",
            )
            raise error

        # the top-up is paid by the signing account
        available = await self._balances.get_available_balance(sender, asset)
        if available < required:
            logger.warning(
                "Insufficient funds to top up position %s: required %s %s, available %s",
                position.id,
                required,
                asset,
                available,
            )
            await self._alert(
                position.id,
                RiskLevel.CRITICAL,
                f"Automatic top-up not possible: {required:.6f} {asset} required, "
                f"only {available:.6f} {asset} available.\n"
                f"Add collateral or repay debt manually.",
            )
            raise InsufficientFunds(position.id, required, available)

        value = to_base_units(required, self._config.collateral_decimals)
        logger.info(
            "Auto top-up triggered for position %s: adding %s %s (target ratio %s)",
            position.id,
            required,
            asset,
            self._config.auto_top_up_target,
        )

        try:
            receipt = await self._tx.submit_and_wait(
                self._config.contract,
                self._config.method,
                self._config.hints,
                value=value,
            )
        except ExecutionError as e:
            detail = str(e)
            if isinstance(e, ConfirmationTimeout):
                detail += "\nThe transaction may still confirm; re-check its status later."
            logger.error("Auto top-up failed for position %s: %s", position.id, e)
            await self._alert(
                position.id,
                RiskLevel.CRITICAL,
                f"Automatic collateral top-up FAILED.\n{detail}\n"
                f"Add collateral or repay debt immediately!",
            )
            raise RemediationFailed(position.id, e) from e

        current = await self._store.get(position.id)
        new_collateral = current.collateral_amount + required
        snapshot = evaluate_health(
            new_collateral, current.debt_amount, reference_price, self._thresholds
        )
        await self._store.update(
            position.id,
            {
                "collateral_amount": new_collateral,
                "collateral_ratio": snapshot.stored_ratio,
                "health_score": snapshot.health_score,
                "risk_level": snapshot.risk_level,
                "liquidation_price": snapshot.liquidation_price,
                "last_monitored_at": self._now(),
            },
        )
        logger.info(
            "Auto top-up completed for position %s in tx %s: ratio now %.4f",
            position.id,
            receipt.transaction_hash,
            snapshot.collateral_ratio,
        )
        await self._alert(
            position.id,
            RiskLevel.SAFE,
            f"Added {required:.6f} {asset} to maintain a safe collateral ratio.\n"
            f"New ratio: {snapshot.collateral_ratio:.2%}\n"
            f"Transaction: {receipt.transaction_hash}",
        )
        return RemediationOutcome(
            position_id=position.id,
            top_up_amount=required,
            receipt=receipt,
            snapshot=snapshot,
        )
