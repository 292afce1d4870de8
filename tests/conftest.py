"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from collateral_guard.config import (
    ExecutionConfig,
    LedgerConfig,
    MonitorConfig,
    RemediationConfig,
)
from collateral_guard.health import RiskThresholds
from collateral_guard.models import LedgerTxStatus, Position, TransactionStatusReport


# ---------------------------------------------------------------------------
# Clock helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeWallClock:
    """Settable UTC wall clock for lock expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def execution_config() -> ExecutionConfig:
    return ExecutionConfig(
        max_retries=3,
        retry_delay_ms=5000,
        confirmation_timeout_ms=30000,
        poll_interval_ms=5000,
        gas_multiplier=Decimal("1.10"),
    )


@pytest.fixture()
def monitor_config() -> MonitorConfig:
    return MonitorConfig(check_interval_ms=60000, thresholds=RiskThresholds())


@pytest.fixture()
def remediation_config() -> RemediationConfig:
    return RemediationConfig(
        auto_top_up_enabled=True,
        auto_top_up_threshold=Decimal("1.30"),
        auto_top_up_target=Decimal("1.80"),
        contract="0x24179CD81c9e782A4096035f7eC97fB8B783e007",
    )


@pytest.fixture()
def ledger_config() -> LedgerConfig:
    return LedgerConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=5,
        chain_id=1,
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def safe_position() -> Position:
    # 10 ETH @ 2500 against 2000 debt -> ratio 12.5
    return Position(
        id="trove-safe",
        owner_ref="0x1111111111111111111111111111111111111111",
        collateral_amount=Decimal("10"),
        debt_amount=Decimal("2000"),
    )


@pytest.fixture()
def warning_position() -> Position:
    # 1 ETH @ 2400 against 2000 debt -> ratio 1.2
    return Position(
        id="trove-warning",
        owner_ref="0x2222222222222222222222222222222222222222",
        collateral_amount=Decimal("1"),
        debt_amount=Decimal("2000"),
    )


@pytest.fixture()
def confirmed_report() -> TransactionStatusReport:
    return TransactionStatusReport(
        transaction_hash="0xabc",
        status=LedgerTxStatus.SUCCEEDED,
        block_number=100,
        block_hash="0xblock",
        gas_used=21000,
    )


@pytest.fixture()
def mock_alerts() -> AsyncMock:
    return AsyncMock()


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    execution:
      max_retries: 4
      retry_delay_ms: 1000
      confirmation_timeout_ms: 60000
      poll_interval_ms: 2000
      gas_multiplier: 1.2
    monitor:
      check_interval_ms: 30000
      warning_ratio: 1.25
      critical_ratio: 1.15
    remediation:
      auto_top_up_enabled: false
      auto_top_up_threshold: 1.3
      auto_top_up_target: 1.8
    ledger:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
      chain_id: 1
    prices:
      ETH: 2500
    positions:
      - id: trove-1
        owner_ref: "0xTEST"
        collateral_amount: 10
        debt_amount: 2000
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
