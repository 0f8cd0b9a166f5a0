"""Fixed-window rate limiting over pluggable counter stores."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, select

from bulkgen.config import SUPPORTED_RATE_LIMIT_STRATEGIES, AdmissionSettings
from bulkgen.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from bulkgen.storage.sqlmodel_models import RateLimitCounter

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    reset_in: int


def build_rate_limit_key(identifier: str, endpoint: str) -> str:
    return f"{identifier}:{endpoint}"


class CounterStore(Protocol):
    def check_and_increment(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
    ) -> RateLimitResult: ...


@dataclass(slots=True)
class _Counter:
    count: int
    window_start: float
    expires_at: float


class _SweepingStore:
    """Runs `sweep()` on a daemon thread every `cleanup_interval_seconds`."""

    def __init__(self, *, cleanup_interval_seconds: float) -> None:
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def sweep(self) -> int:
        raise NotImplementedError

    def start_sweeper(self) -> None:
        if self._sweeper is not None:
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name=f"bulkgen-{type(self).__name__}-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self._cleanup_interval_seconds):
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                logger.exception("Rate limit counter sweep failed")


class InMemoryCounterStore(_SweepingStore):
    """Lock-guarded counter table local to this process.

    Counters are not shared between processes. Each counter expires
    `grace_seconds` after its window ends and is evicted on access or by `sweep()`.
    """

    def __init__(
        self,
        *,
        grace_seconds: float = 600.0,
        cleanup_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(cleanup_interval_seconds=cleanup_interval_seconds)
        self._counters: dict[str, _Counter] = {}
        self._lock = threading.Lock()
        self._grace_seconds = grace_seconds
        self._clock = clock

    def check_and_increment(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
    ) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            counter = self._counters.get(key)
            if counter is not None and now >= counter.expires_at:
                del self._counters[key]
                counter = None

            if counter is None or now - counter.window_start >= window_seconds:
                self._counters[key] = _Counter(
                    count=1,
                    window_start=now,
                    expires_at=now + window_seconds + self._grace_seconds,
                )
                return RateLimitResult(allowed=True, count=1, reset_in=window_seconds)

            reset_in = math.ceil(counter.window_start + window_seconds - now)
            if counter.count < limit:
                counter.count += 1
                return RateLimitResult(allowed=True, count=counter.count, reset_in=reset_in)
            return RateLimitResult(allowed=False, count=counter.count, reset_in=reset_in)

    def count(self, key: str) -> int:
        with self._lock:
            counter = self._counters.get(key)
            return counter.count if counter is not None else 0

    def sweep(self) -> int:
        """Drop expired counters; returns how many were removed."""

        with self._lock:
            now = self._clock()
            expired = [key for key, counter in self._counters.items() if now >= counter.expires_at]
            for key in expired:
                del self._counters[key]
        if expired:
            logger.debug("Rate limit sweep removed %d expired counters", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()

    def close(self) -> None:
        self.stop_sweeper()


class SqlCounterStore(_SweepingStore):
    """Counters in the `rate_limit_counters` table, shared by every process on the DB."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
        grace_seconds: int = 600,
        cleanup_interval_seconds: float = 300.0,
    ) -> None:
        super().__init__(cleanup_interval_seconds=cleanup_interval_seconds)
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self._grace_seconds = grace_seconds

    def close(self) -> None:
        self.stop_sweeper()
        self.engine.dispose()

    def check_and_increment(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
    ) -> RateLimitResult:
        now = utc_now()
        window_cutoff = to_db_datetime(now - timedelta(seconds=window_seconds))
        with Session(self.engine) as session:
            incremented = session.exec(
                sa_update(RateLimitCounter)
                .where(
                    col(RateLimitCounter.counter_key) == key,
                    col(RateLimitCounter.window_start) > window_cutoff,
                    col(RateLimitCounter.count) < limit,
                )
                .values(count=col(RateLimitCounter.count) + 1),
            )
            if incremented.rowcount == 1:
                row = session.exec(
                    select(RateLimitCounter).where(RateLimitCounter.counter_key == key),
                ).one()
                session.commit()
                return RateLimitResult(
                    allowed=True,
                    count=row.count,
                    reset_in=_reset_in(row.window_start, window_seconds, now),
                )

            row = session.exec(
                select(RateLimitCounter).where(RateLimitCounter.counter_key == key),
            ).one_or_none()
            if row is not None and to_utc_aware_datetime(row.window_start) > now - timedelta(
                seconds=window_seconds,
            ):
                session.rollback()
                return RateLimitResult(
                    allowed=False,
                    count=row.count,
                    reset_in=_reset_in(row.window_start, window_seconds, now),
                )

            expires_at = to_db_datetime(
                now + timedelta(seconds=window_seconds + self._grace_seconds),
            )
            table = RateLimitCounter.__table__
            statement = sqlite_insert(table).values(
                counter_key=key,
                count=1,
                window_start=to_db_datetime(now),
                expires_at=expires_at,
            )
            statement = statement.on_conflict_do_update(
                index_elements=["counter_key"],
                set_={
                    "count": 1,
                    "window_start": statement.excluded.window_start,
                    "expires_at": statement.excluded.expires_at,
                },
            )
            session.exec(statement)
            session.commit()
            return RateLimitResult(allowed=True, count=1, reset_in=window_seconds)

    def sweep(self) -> int:
        """Delete rows past their expiry; returns how many were removed."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(RateLimitCounter).where(
                    col(RateLimitCounter.expires_at) <= to_db_datetime(utc_now()),
                ),
            )
            session.commit()
        removed = int(result.rowcount or 0)
        if removed:
            logger.debug("Rate limit sweep removed %d expired counter rows", removed)
        return removed


class RateLimiter:
    """Fixed-window limiter; a failing store lets the request through."""

    def __init__(self, store: CounterStore, *, window_seconds: int = 60) -> None:
        self.store = store
        self.window_seconds = window_seconds

    def check(self, *, identifier: str, endpoint: str, limit: int) -> RateLimitResult:
        key = build_rate_limit_key(identifier, endpoint)
        try:
            return self.store.check_and_increment(
                key,
                limit=limit,
                window_seconds=self.window_seconds,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Rate limit store failed for key=%s, allowing request", key)
            return RateLimitResult(allowed=True, count=0, reset_in=self.window_seconds)


def build_counter_store(
    settings: AdmissionSettings,
    *,
    db_path: Path,
    sqlite_busy_timeout_ms: int = 5_000,
) -> InMemoryCounterStore | SqlCounterStore:
    strategy = settings.rate_limit_strategy.strip().lower()
    store: InMemoryCounterStore | SqlCounterStore
    if strategy == "sqlite":
        store = SqlCounterStore(
            db_path,
            sqlite_busy_timeout_ms=sqlite_busy_timeout_ms,
            grace_seconds=settings.counter_max_age_seconds,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
        )
    elif strategy == "memory":
        store = InMemoryCounterStore(
            grace_seconds=settings.counter_max_age_seconds,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
        )
    else:
        raise ValueError(
            f"Unsupported rate limit strategy {strategy!r}; "
            f"expected one of: {', '.join(SUPPORTED_RATE_LIMIT_STRATEGIES)}",
        )
    store.start_sweeper()
    return store
    raise ValueError(
        f"Unsupported rate limit strategy {strategy!r}; "
        f"expected one of: {', '.join(SUPPORTED_RATE_LIMIT_STRATEGIES)}",
    )


def _reset_in(window_start_value: datetime, window_seconds: int, now: datetime) -> int:
    window_start = to_utc_aware_datetime(window_start_value)
    remaining = (window_start + timedelta(seconds=window_seconds) - now).total_seconds()
    return max(0, math.ceil(remaining))
