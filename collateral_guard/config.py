"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .health import RiskThresholds
from .models import Position, PositionStatus

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionConfig:
    max_retries: int = 3
    retry_delay_ms: int = 5000
    confirmation_timeout_ms: int = 300000
    poll_interval_ms: int = 5000
    gas_multiplier: Decimal = Decimal("1.10")
    record_history: int = 1000


@dataclass(frozen=True)
class MonitorConfig:
    check_interval_ms: int = 60000
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)


@dataclass(frozen=True)
class RemediationConfig:
    auto_top_up_enabled: bool = False
    auto_top_up_threshold: Decimal = Decimal("1.30")
    auto_top_up_target: Decimal = Decimal("1.80")
    lock_ttl_ms: int = 900000
    contract: str = ""
    method: str = "addColl(address,address)"
    hints: tuple[str, ...] = (ZERO_ADDRESS, ZERO_ADDRESS)
    collateral_decimals: int = 18


@dataclass(frozen=True)
class LedgerConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    chain_id: int = 1
    private_key: str = ""


@dataclass(frozen=True)
class AppConfig:
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    remediation: RemediationConfig = field(default_factory=RemediationConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    prices: dict[str, Decimal] = field(default_factory=dict)
    positions: tuple[Position, ...] = ()


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _decimal(value: Any) -> Decimal:
    # str() first so YAML floats like 1.1 stay 1.1
    return Decimal(str(value))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_execution(raw: dict[str, Any]) -> ExecutionConfig:
    return ExecutionConfig(
        max_retries=int(raw.get("max_retries", 3)),
        retry_delay_ms=int(raw.get("retry_delay_ms", 5000)),
        confirmation_timeout_ms=int(raw.get("confirmation_timeout_ms", 300000)),
        poll_interval_ms=int(raw.get("poll_interval_ms", 5000)),
        gas_multiplier=_decimal(raw.get("gas_multiplier", "1.10")),
        record_history=int(raw.get("record_history", 1000)),
    )


def _build_thresholds(raw: dict[str, Any]) -> RiskThresholds:
    return RiskThresholds(
        safe_ratio=_decimal(raw.get("safe_ratio", "1.50")),
        moderate_ratio=_decimal(raw.get("moderate_ratio", "1.30")),
        warning_ratio=_decimal(raw.get("warning_ratio", "1.20")),
        critical_ratio=_decimal(raw.get("critical_ratio", "1.15")),
        liquidation_ratio=_decimal(raw.get("liquidation_ratio", "1.10")),
    )


def _build_monitor(raw: dict[str, Any]) -> MonitorConfig:
    return MonitorConfig(
        check_interval_ms=int(raw.get("check_interval_ms", 60000)),
        thresholds=_build_thresholds(raw),
    )


def _build_remediation(raw: dict[str, Any]) -> RemediationConfig:
    hints = raw.get("hints")
    return RemediationConfig(
        auto_top_up_enabled=_as_bool(raw.get("auto_top_up_enabled", False)),
        auto_top_up_threshold=_decimal(raw.get("auto_top_up_threshold", "1.30")),
        auto_top_up_target=_decimal(raw.get("auto_top_up_target", "1.80")),
        lock_ttl_ms=int(raw.get("lock_ttl_ms", 900000)),
        contract=raw.get("contract", "") or "",
        method=raw.get("method", RemediationConfig.method),
        hints=tuple(hints) if hints is not None else RemediationConfig.hints,
        collateral_decimals=int(raw.get("collateral_decimals", 18)),
    )


def _build_ledger(raw: dict[str, Any]) -> LedgerConfig:
    return LedgerConfig(
        rpc_endpoints=tuple(e for e in raw.get("rpc_endpoints", []) if e),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        chain_id=int(raw.get("chain_id", 1)),
        private_key=raw.get("private_key", "") or "",
    )


def _build_prices(raw: dict[str, Any]) -> dict[str, Decimal]:
    return {asset: _decimal(price) for asset, price in raw.items()}


def _build_positions(raw: list[dict[str, Any]]) -> tuple[Position, ...]:
    positions: list[Position] = []
    for p in raw:
        positions.append(
            Position(
                id=str(p.get("id", "")),
                owner_ref=p.get("owner_ref", ""),
                collateral_asset=p.get("collateral_asset", "ETH"),
                collateral_amount=_decimal(p.get("collateral_amount", 0)),
                debt_amount=_decimal(p.get("debt_amount", 0)),
                status=PositionStatus(p.get("status", "active")),
            )
        )
    return tuple(positions)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        execution=_build_execution(raw.get("execution") or {}),
        monitor=_build_monitor(raw.get("monitor") or {}),
        remediation=_build_remediation(raw.get("remediation") or {}),
        ledger=_build_ledger(raw.get("ledger") or {}),
        prices=_build_prices(raw.get("prices") or {}),
        positions=_build_positions(raw.get("positions") or []),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    execution = cfg.execution
    if execution.max_retries < 1:
        raise ValueError("execution.max_retries must be at least 1")
    if execution.retry_delay_ms < 0:
        raise ValueError("execution.retry_delay_ms must not be negative")
    if execution.poll_interval_ms <= 0 or execution.confirmation_timeout_ms <= 0:
        raise ValueError("execution poll interval and confirmation timeout must be positive")
    if execution.gas_multiplier < 1:
        raise ValueError("execution.gas_multiplier must be at least 1.0")

    t = cfg.monitor.thresholds
    if not (t.critical_ratio < t.warning_ratio <= t.moderate_ratio <= t.safe_ratio):
        raise ValueError(
            "Risk thresholds must satisfy critical < warning <= moderate <= safe"
        )
    if cfg.monitor.check_interval_ms <= 0:
        raise ValueError("monitor.check_interval_ms must be positive")

    rem = cfg.remediation
    if rem.auto_top_up_target <= rem.auto_top_up_threshold:
        raise ValueError("remediation.auto_top_up_target must exceed auto_top_up_threshold")
    if rem.auto_top_up_enabled:
        if not rem.contract:
            raise ValueError("Auto top-up is enabled but remediation.contract is not set")
        if not cfg.ledger.rpc_endpoints:
            raise ValueError("Auto top-up is enabled but no ledger.rpc_endpoints are configured")
        if not cfg.ledger.private_key:
            raise ValueError("Auto top-up is enabled but ledger.private_key is not set")

    seen: set[str] = set()
    for position in cfg.positions:
        if not position.id:
            raise ValueError("Every position must have an id")
        if position.id in seen:
            raise ValueError(f"Duplicate position id '{position.id}'")
        seen.add(position.id)
        if position.collateral_asset not in cfg.prices:
            raise ValueError(
                f"Position '{position.id}' references asset "
                f"'{position.collateral_asset}' with no configured price"
            )
