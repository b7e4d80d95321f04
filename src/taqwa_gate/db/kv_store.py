"""
Durable Key-Value Store

Storage contract used solely by the admission controller, with two
implementations:

- `SqlKeyValueStore`: PostgreSQL through SQLAlchemy async sessions. The
  read-modify-write runs inside one transaction holding a row lock
  (`SELECT ... FOR UPDATE`); a concurrent first insert for the same key
  surfaces as an IntegrityError and the whole transaction is retried against
  the committed row.
- `InMemoryKeyValueStore`: single-process store serializing every
  transaction on a key through one `asyncio.Lock`. Used for tests and
  single-worker deployments.

The mutate callback passed to `transaction` must be a pure function of the
current record: it may be invoked more than once when the SQL store retries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..core.errors import StoreError
from .models import RateWindow

logger = logging.getLogger("taqwa.store")

R = TypeVar("R")


@dataclass(frozen=True)
class RateWindowRecord:
    """Stored state for one (identity, action) key."""
    identity: str
    action: str
    requests: Tuple[int, ...]
    last_touched_ms: int


# (record to write or None for "leave unchanged", result for the caller)
Mutation = Callable[[Optional[RateWindowRecord]], Tuple[Optional[RateWindowRecord], R]]


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[RateWindowRecord]:
        ...

    async def set(self, key: str, record: RateWindowRecord) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def transaction(self, key: str, mutate: Mutation[R]) -> R:
        ...

    async def delete_untouched_before(self, cutoff_ms: int, limit: int) -> int:
        """Delete up to `limit` records last touched at or before `cutoff_ms`."""
        ...


# ---------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------

class InMemoryKeyValueStore:
    """
    Dict-backed store with one asyncio lock per key.
    """

    def __init__(self) -> None:
        self._records: Dict[str, RateWindowRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get(self, key: str) -> Optional[RateWindowRecord]:
        return self._records.get(key)

    async def set(self, key: str, record: RateWindowRecord) -> None:
        async with self._lock_for(key):
            self._records[key] = record

    async def delete(self, key: str) -> bool:
        async with self._lock_for(key):
            existed = self._records.pop(key, None) is not None
        self._drop_idle_lock(key)
        return existed

    async def transaction(self, key: str, mutate: Mutation[R]) -> R:
        async with self._lock_for(key):
            updated, result = mutate(self._records.get(key))
            if updated is not None:
                self._records[key] = updated
            return result

    async def delete_untouched_before(self, cutoff_ms: int, limit: int) -> int:
        stale = [
            key for key, record in self._records.items()
            if record.last_touched_ms <= cutoff_ms
        ][:limit]
        deleted = 0
        for key in stale:
            lock = self._lock_for(key)
            if lock.locked():
                continue
            async with lock:
                record = self._records.get(key)
                if record is not None and record.last_touched_ms <= cutoff_ms:
                    del self._records[key]
                    deleted += 1
            self._drop_idle_lock(key)
        return deleted

    def _drop_idle_lock(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked() and key not in self._records:
            self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------
# SQL store
# ---------------------------------------------------------------------

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def _ms_to_datetime(ms: int) -> datetime:
    return _EPOCH + ms * _ONE_MS


def _datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // _ONE_MS


def _to_record(row: Optional[RateWindow]) -> Optional[RateWindowRecord]:
    if row is None:
        return None
    return RateWindowRecord(
        identity=row.identity,
        action=row.action,
        requests=tuple(int(ts) for ts in (row.requests or [])),
        last_touched_ms=_datetime_to_ms(row.last_request_at),
    )


class SqlKeyValueStore:
    """
    PostgreSQL-backed store over the `rate_window` table.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        """
        Parameters
        ----------
        session_factory : async_sessionmaker
            Factory for async sessions. Defaults to the application factory.

        max_retries : int
            Attempts for a transaction that loses a first-insert race.
        """
        if session_factory is None:
            from .session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory
        self._max_retries = max_retries or settings.rate_limit_store_retries

    async def get(self, key: str) -> Optional[RateWindowRecord]:
        try:
            async with self._session_factory() as session:
                return _to_record(await session.get(RateWindow, key))
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read rate window {key!r}") from exc

    async def set(self, key: str, record: RateWindowRecord) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.merge(
                        RateWindow(
                            key=key,
                            identity=record.identity,
                            action=record.action,
                            requests=list(record.requests),
                            last_request_at=_ms_to_datetime(record.last_touched_ms),
                        )
                    )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to write rate window {key!r}") from exc

    async def delete(self, key: str) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(RateWindow).where(RateWindow.key == key)
                    )
            return bool(result.rowcount)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete rate window {key!r}") from exc

    async def transaction(self, key: str, mutate: Mutation[R]) -> R:
        for attempt in range(1, self._max_retries + 1):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        row = (
                            await session.execute(
                                select(RateWindow)
                                .where(RateWindow.key == key)
                                .with_for_update()
                            )
                        ).scalar_one_or_none()

                        updated, result = mutate(_to_record(row))

                        if updated is not None:
                            touched = _ms_to_datetime(updated.last_touched_ms)
                            if row is None:
                                session.add(
                                    RateWindow(
                                        key=key,
                                        identity=updated.identity,
                                        action=updated.action,
                                        requests=list(updated.requests),
                                        last_request_at=touched,
                                    )
                                )
                            else:
                                row.requests = list(updated.requests)
                                row.last_request_at = touched
                return result
            except IntegrityError:
                # Lost a first-insert race; the retry sees the committed row.
                logger.debug("Rate window insert race on %s (attempt %d)", key, attempt)
                continue
            except SQLAlchemyError as exc:
                raise StoreError(f"Rate window transaction failed for {key!r}") from exc

        raise StoreError(
            f"Rate window transaction for {key!r} did not settle after {self._max_retries} attempts"
        )

    async def delete_untouched_before(self, cutoff_ms: int, limit: int) -> int:
        cutoff = _ms_to_datetime(cutoff_ms)
        stale_keys = (
            select(RateWindow.key)
            .where(RateWindow.last_request_at <= cutoff)
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(RateWindow).where(RateWindow.key.in_(stale_keys))
                    )
            return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise StoreError("Rate window sweep failed") from exc
