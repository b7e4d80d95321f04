"""
Rate Limiter

Sliding-window admission control keyed by (identity, action).

Every decision is one atomic transaction against the key-value store, so two
concurrent requests from the same identity can never both observe "4 of 5
used" and both be admitted. A denial leaves the stored window untouched.
Store failures fail open: the request is allowed and the status carries a
soft `error` flag.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Dict, NamedTuple, Optional, Tuple

from ..config import settings
from .kv_store import KeyValueStore, RateWindowRecord

logger = logging.getLogger("taqwa.ratelimit")

FAIL_OPEN_MESSAGE = "Rate limiter temporarily unavailable"


class QuotaStatus(NamedTuple):
    """Outcome of one admission check."""
    allowed: bool
    remaining: int
    limit: int
    reset_at: int  # epoch milliseconds
    retry_after: Optional[int] = None  # seconds, set on denial
    error: Optional[str] = None


class RateLimiter:
    """
    Sliding-window rate limiter over a `KeyValueStore`.
    """

    def __init__(
        self,
        store: KeyValueStore,
        window_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
        action_limits: Optional[Dict[str, int]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Parameters
        ----------
        store : KeyValueStore
            Store holding one `RateWindowRecord` per key.

        window_seconds : int
            Length of the trailing window.

        max_requests : int
            Limit for actions without an entry in `action_limits`.

        action_limits : dict
            Per-action overrides, e.g. {"ask": 20, "ask_quick": 30}.

        clock : callable
            Returns the current time in seconds since the epoch.
        """
        self._store = store
        self.window_ms = int((window_seconds or settings.rate_limit_window_seconds) * 1000)
        self.max_requests = max_requests or settings.rate_limit_max_requests
        self.action_limits = dict(
            settings.rate_limit_action_limits if action_limits is None else action_limits
        )
        self._clock = clock

    def limit_for(self, action: str) -> int:
        return self.action_limits.get(action, self.max_requests)

    @staticmethod
    def key(identity: str, action: str) -> str:
        return f"{identity}:{action}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def check_limit(self, identity: str, action: str = "default") -> QuotaStatus:
        """
        Admit or deny one request for `identity` performing `action`.

        Allowed requests are recorded; denied requests are not.
        """
        limit = self.limit_for(action)
        window_ms = self.window_ms

        def decide(
            record: Optional[RateWindowRecord],
        ) -> Tuple[Optional[RateWindowRecord], QuotaStatus]:
            # Clock is read under the store lock.
            now = self._now_ms()
            in_window = sorted(
                ts for ts in (record.requests if record else ())
                if ts >= now - window_ms
            )
            if in_window and in_window[-1] > now:
                # Stored timestamps stay non-decreasing.
                now = in_window[-1]

            if len(in_window) >= limit:
                reset_at = (min(in_window) if in_window else now) + window_ms
                retry_after = max(1, math.ceil((reset_at - now) / 1000))
                return None, QuotaStatus(
                    allowed=False,
                    remaining=0,
                    limit=limit,
                    reset_at=reset_at,
                    retry_after=retry_after,
                )

            in_window.append(now)
            # Stored list never exceeds the limit.
            kept = tuple(in_window[-limit:])
            updated = RateWindowRecord(
                identity=identity,
                action=action,
                requests=kept,
                last_touched_ms=now,
            )
            return updated, QuotaStatus(
                allowed=True,
                remaining=limit - len(kept),
                limit=limit,
                reset_at=kept[0] + window_ms,
            )

        try:
            status = await self._store.transaction(self.key(identity, action), decide)
        except Exception:
            logger.exception("Rate limit check failed for %s:%s, failing open", identity, action)
            return QuotaStatus(
                allowed=True,
                remaining=limit,
                limit=limit,
                reset_at=self._now_ms() + window_ms,
                error=FAIL_OPEN_MESSAGE,
            )

        if not status.allowed:
            logger.info(
                "Rate limit exceeded for %s:%s (retry after %ss)",
                identity,
                action,
                status.retry_after,
            )
        return status

    async def reset(self, identity: str, action: str = "default") -> bool:
        """Drop the stored window for one key. Returns True if it existed."""
        return await self._store.delete(self.key(identity, action))

    async def sweep(self, batch_size: Optional[int] = None) -> int:
        """
        Delete records untouched for at least two windows.

        Runs independently of admission decisions. Returns the number of
        records deleted.
        """
        cutoff = self._now_ms() - 2 * self.window_ms
        deleted = await self._store.delete_untouched_before(
            cutoff,
            batch_size or settings.rate_limit_sweep_batch_size,
        )
        if deleted:
            logger.info("Swept %d stale rate window record(s)", deleted)
        return deleted
