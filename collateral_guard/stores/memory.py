"""In-process position store."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Iterable

from ..errors import PositionNotFound
from ..models import Position, PositionStatus

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "owner_ref"})
_KNOWN_FIELDS = frozenset(f.name for f in dataclasses.fields(Position))


class InMemoryPositionStore:
    """Position store backed by a dict, safe to share between coroutines."""

    def __init__(self, positions: Iterable[Position] = ()) -> None:
        self._positions: dict[str, Position] = {p.id: p for p in positions}
        self._lock = asyncio.Lock()

    async def list_active(self) -> list[Position]:
        async with self._lock:
            return [p for p in self._positions.values() if p.status is PositionStatus.ACTIVE]

    async def get(self, position_id: str) -> Position:
        async with self._lock:
            try:
                return self._positions[position_id]
            except KeyError:
                raise PositionNotFound(position_id) from None

    async def update(self, position_id: str, fields: dict[str, Any]) -> Position:
        unknown = set(fields) - _KNOWN_FIELDS
        if unknown:
            raise ValueError(f"Unknown position fields: {sorted(unknown)}")
        frozen = set(fields) & _IMMUTABLE_FIELDS
        if frozen:
            raise ValueError(f"Position fields are immutable: {sorted(frozen)}")

        async with self._lock:
            try:
                current = self._positions[position_id]
            except KeyError:
                raise PositionNotFound(position_id) from None

            new_status = fields.get("status", current.status)
            if current.status.is_terminal and new_status is not current.status:
                raise ValueError(
                    f"Position {position_id} is {current.status.value}; status cannot change"
                )

            updated = dataclasses.replace(current, **fields)
            self._positions[position_id] = updated
            return updated

    async def add(self, position: Position) -> None:
        async with self._lock:
            if position.id in self._positions:
                raise ValueError(f"Position {position.id} already exists")
            self._positions[position.id] = position
            logger.debug("Position %s added", position.id)
