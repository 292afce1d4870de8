"""Alert dispatcher protocol."""
from typing import Protocol

from ..models import RiskLevel


class AlertDispatcher(Protocol):
    """Accepts an alert for a position and takes care of delivery."""

    async def notify(self, position_id: str, severity: RiskLevel, message: str) -> None: ...
