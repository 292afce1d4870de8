"""Position store protocol — the narrow read/write contract of the core."""
from typing import Any, Protocol

from ..models import Position


class PositionStore(Protocol):
    async def list_active(self) -> list[Position]: ...

    async def get(self, position_id: str) -> Position: ...

    async def update(self, position_id: str, fields: dict[str, Any]) -> Position: ...
