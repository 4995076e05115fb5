# stockrelay/services/dedup_store.py
"""
Key/value stores with TTL used by the idempotency gate.

InMemoryDedupStore is process-local and is what tests and single-instance
deployments use. DatabaseDedupStore keeps the keys in idempotency_records so
several workers share one dedup window.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError

from stockrelay.core.exceptions import DedupStoreError
from stockrelay.models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)


class DedupStore(Protocol):
    async def exists(self, key: str) -> bool:
        ...

    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    async def purge_expired(self) -> int:
        ...


class InMemoryDedupStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    async def exists(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        expires_at, _ = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return False
        return True

    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, value)

    async def get(self, key: str) -> Optional[Any]:
        if not await self.exists(key):
            return None
        return self._entries[key][1]

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self):
        return len(self._entries)


class DatabaseDedupStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def exists(self, key: str) -> bool:
        now = datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(IdempotencyRecord.id).where(
                        IdempotencyRecord.key == key,
                        IdempotencyRecord.expires_at > now,
                    )
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise DedupStoreError(f"Failed to read idempotency key {key}: {e}") from e

    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl_seconds)
        stmt = insert(IdempotencyRecord).values(
            key=key,
            result=value,
            created_at=now,
            expires_at=expires_at,
        )
        # A replay that slipped past an expired row refreshes it
        stmt = stmt.on_conflict_do_update(
            index_elements=['key'],
            set_={"result": stmt.excluded.result, "created_at": now, "expires_at": expires_at},
        )
        try:
            async with self.session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise DedupStoreError(f"Failed to write idempotency key {key}: {e}") from e

    async def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            result = await session.execute(
                delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= now)
            )
            await session.commit()
            purged = result.rowcount or 0
        if purged:
            logger.info(f"Purged {purged} expired idempotency records")
        return purged
