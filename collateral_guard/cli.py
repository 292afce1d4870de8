"""Command-line interface for collateral-guard."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys

from .app import build_application
from .config import load_config
from .logging_setup import configure_logging


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="collateral-guard",
        description="Collateralized position monitor with automatic top-ups",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("sweep", help="Run a single monitoring sweep")
    sub.add_parser(
        "status",
        help="Print monitor settings and current position health (read-only, no top-ups)",
    )

    check_parser = sub.add_parser("check", help="Re-evaluate one position")
    check_parser.add_argument("position_id", help="Position identifier")

    monitor_parser = sub.add_parser("monitor", help="Continuous monitoring loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Check interval in milliseconds (overrides config)",
    )

    tx_parser = sub.add_parser("tx-status", help="Query a ledger transaction")
    tx_parser.add_argument("transaction_hash", help="Transaction hash")

    return parser


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    app = build_application(config)

    if args.command == "sweep":
        result = await app.monitor.run_sweep()
        for check in result.checks:
            snapshot = check.snapshot
            summary = (
                f"{snapshot.risk_level.value} · score {snapshot.health_score}"
                if snapshot
                else f"error: {check.error}"
            )
            print(f"{check.position_id}: {check.outcome.value} · {summary}")
    elif args.command == "status":
        checks = await app.monitor.preview()
        status = app.monitor.status()
        status["positions"] = {
            check.position_id: (
                {
                    "collateral_ratio": (
                        str(check.snapshot.stored_ratio)
                        if check.snapshot.stored_ratio is not None
                        else None
                    ),
                    "health_score": check.snapshot.health_score,
                    "risk_level": check.snapshot.risk_level.value,
                }
                if check.snapshot
                else {"error": check.error}
            )
            for check in checks
        }
        print(json.dumps(status, indent=2))
    elif args.command == "check":
        snapshot = await app.monitor.check_position(args.position_id)
        ratio = snapshot.collateral_ratio
        print(
            f"{args.position_id}: ratio {'∞' if not ratio.is_finite() else f'{ratio:.4f}'}"
            f" · score {snapshot.health_score} · {snapshot.risk_level.value}"
        )
    elif args.command == "monitor":
        await app.monitor.run_forever(args.interval)
    elif args.command == "tx-status":
        report = await app.tx_manager.get_transaction_status(args.transaction_hash)
        print(
            f"{report.transaction_hash}: {report.status.value}"
            + (f" (block {report.block_number})" if report.block_number is not None else "")
        )
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        pass
