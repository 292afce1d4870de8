"""Per-position remediation lock tokens with expiry."""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from ..interfaces.store import PositionStore
from ..models import RemediationLock

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemediationLocks:
    """At most one in-flight remediation per position.

    The lock lives on the position record so that every process sharing the
    store sees it; the expiry lets a crashed remediation stop blocking later
    sweeps.
    """

    def __init__(
        self,
        store: PositionStore,
        ttl_ms: int,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._ttl = timedelta(milliseconds=ttl_ms)
        self._now = now
        self._guard = asyncio.Lock()

    async def acquire(self, position_id: str) -> str | None:
        """Record an in-progress marker; None if a live one is already set."""
        async with self._guard:
            position = await self._store.get(position_id)
            now = self._now()
            lock = position.remediation_lock

            if lock is not None and not lock.is_expired(now):
                logger.info(
                    "Remediation for position %s already in progress (until %s)",
                    position_id,
                    lock.expires_at.isoformat(),
                )
                return None
            if lock is not None:
                logger.warning(
                    "Stale remediation lock on position %s expired at %s, taking over",
                    position_id,
                    lock.expires_at.isoformat(),
                )

            token = uuid.uuid4().hex
            await self._store.update(
                position_id,
                {"remediation_lock": RemediationLock(token=token, expires_at=now + self._ttl)},
            )
            return token

    async def release(self, position_id: str, token: str) -> bool:
        async with self._guard:
            position = await self._store.get(position_id)
            lock = position.remediation_lock
            if lock is None or lock.token != token:
                logger.warning(
                    "Remediation lock on position %s no longer held by %s", position_id, token
                )
                return False
            await self._store.update(position_id, {"remediation_lock": None})
            return True
