"""Alert dispatch — renders alerts and fans them out to notifiers."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from ..interfaces.notifier import Notifier
from ..models import RiskLevel

logger = logging.getLogger(__name__)

SEVERITY_LABELS = {
    RiskLevel.SAFE: "✅ INFO",
    RiskLevel.MODERATE: "ℹ️ NOTICE",
    RiskLevel.WARNING: "⚠️ WARNING",
    RiskLevel.CRITICAL: "🚨 CRITICAL",
    RiskLevel.LIQUIDATION: "🚨 LIQUIDATION",
}


def format_owner(address: str) -> str:
    if len(address) > 16:
        return f"{address[:10]}...{address[-6:]}"
    return address


class NotifierAlertDispatcher:
    """Alert dispatcher backed by one or more notification channels."""

    def __init__(self, notifiers: Iterable[Notifier]) -> None:
        self._notifiers = list(notifiers)

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    async def notify(self, position_id: str, severity: RiskLevel, message: str) -> None:
        label = SEVERITY_LABELS[severity]
        subject = f"{label}: position {position_id}"
        body = f"{label} · position {position_id}\n\n{message}\n\n{self._now_str()} UTC"

        delivered = False
        for notifier in self._notifiers:
            try:
                if await notifier.send_alert(body, subject=subject):
                    delivered = True
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

        if not delivered:
            logger.warning(
                "%s alert for position %s was not delivered", severity.value, position_id
            )


class LogNotifier:
    """Writes alerts to the application log."""

    async def send_alert(self, message: str, subject: str = "") -> bool:
        logger.warning("%s\n%s", subject, message)
        return True
