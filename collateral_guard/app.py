"""Component wiring from configuration."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .chains.evm import EvmRpcClient, LocalAccountSigner
from .config import AppConfig
from .execution import TransactionManager
from .services import (
    LogNotifier,
    NotifierAlertDispatcher,
    RemediationExecutor,
    RiskMonitor,
    StaticPriceSource,
)
from .stores import InMemoryPositionStore

logger = logging.getLogger(__name__)


@dataclass
class Application:
    store: InMemoryPositionStore
    ledger: EvmRpcClient
    tx_manager: TransactionManager
    monitor: RiskMonitor


def build_application(config: AppConfig) -> Application:
    store = InMemoryPositionStore(config.positions)
    prices = StaticPriceSource(config.prices)
    alerts = NotifierAlertDispatcher([LogNotifier()])

    ledger = EvmRpcClient(config.ledger, config.remediation.collateral_decimals)
    signer = None
    if config.ledger.private_key:
        signer = LocalAccountSigner(config.ledger.private_key, ledger)
        logger.info("Signer configured for %s", signer.address)
    else:
        logger.info("No signer configured; ledger calls are read-only")

    tx_manager = TransactionManager(ledger, config.execution, signer)
    remediator = RemediationExecutor(
        store,
        tx_manager,
        ledger,
        alerts,
        config.remediation,
        config.monitor.thresholds,
    )
    monitor = RiskMonitor(
        store,
        prices,
        alerts,
        config.monitor,
        config.remediation,
        remediator,
    )
    return Application(store=store, ledger=ledger, tx_manager=tx_manager, monitor=monitor)
