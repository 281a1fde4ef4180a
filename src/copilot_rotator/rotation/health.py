"""In-memory health tracking for rotation accounts.

Each account id owns one HealthRecord, created lazily on first touch and
dropped when the account leaves the pool. Health is process-local and is
never persisted.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from structlog import get_logger

from copilot_rotator.rotation.constants import (
    DEFAULT_RETRY_AFTER_MS,
    MAX_HEALTH_SCORE,
    MAX_RETRY_AFTER_MS,
    RATE_LIMIT_PENALTY,
    RECOVERY_BONUS,
    SUCCESS_BONUS,
)


logger = get_logger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time as a Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def format_ms(timestamp_ms: int) -> str:
    """Render a millisecond timestamp as ISO-8601 UTC."""
    return (
        datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


@dataclass
class HealthRecord:
    """Mutable health estimate for a single account."""

    id: str
    score: int = MAX_HEALTH_SCORE  # 100 = healthy
    rate_limited_until: int = 0  # Unix timestamp ms, 0 = not limited
    last_success: int = 0
    last_failure: int = 0
    consecutive_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for status reporting."""
        return {
            "id": self.id,
            "score": self.score,
            "rateLimitedUntil": (
                format_ms(self.rate_limited_until) if self.rate_limited_until else None
            ),
            "lastSuccess": format_ms(self.last_success) if self.last_success else None,
            "lastFailure": format_ms(self.last_failure) if self.last_failure else None,
            "consecutiveFailures": self.consecutive_failures,
        }


class HealthRegistry:
    """Holds one HealthRecord per account id.

    Updates to a record happen under a lock owned by that id only, so
    unrelated accounts never contend with each other. The registry is an
    explicit instance: independent registries can coexist in one process.
    """

    def __init__(
        self,
        *,
        default_retry_after_ms: int = DEFAULT_RETRY_AFTER_MS,
        max_retry_after_ms: int = MAX_RETRY_AFTER_MS,
        clock: Clock | None = None,
    ):
        """Initialize an empty registry.

        Args:
            default_retry_after_ms: Window used when no retry-after is known
            max_retry_after_ms: Upper bound for any rate limit window
            clock: Millisecond clock, injectable for tests
        """
        self.default_retry_after_ms = default_retry_after_ms
        self.max_retry_after_ms = max_retry_after_ms
        self._clock = clock or now_ms
        self._records: dict[str, HealthRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        # Guards the two dicts above, never held while a record is updated
        self._index_lock = threading.Lock()

    def now(self) -> int:
        return self._clock()

    def _entry(self, account_id: str) -> tuple[HealthRecord, threading.Lock]:
        with self._index_lock:
            record = self._records.get(account_id)
            if record is None:
                record = HealthRecord(id=account_id)
                self._records[account_id] = record
                self._locks[account_id] = threading.Lock()
            return record, self._locks[account_id]

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._index_lock:
            lock = self._locks.get(account_id)
        # A record detached by reset() no longer shares state with anyone
        return lock or threading.Lock()

    def get_or_create(self, account_id: str) -> HealthRecord:
        """Return the record for an id, creating a healthy one if needed."""
        record, _ = self._entry(account_id)
        return record

    def clamp_retry_after(self, retry_after_ms: int | None) -> int:
        """Bound a retry-after delay to the configured window."""
        if retry_after_ms is None:
            return self.default_retry_after_ms
        return max(0, min(retry_after_ms, self.max_retry_after_ms))

    def mark_rate_limited(
        self, account_id: str, retry_after_ms: int | None = None
    ) -> HealthRecord:
        """Park an account until its retry-after window elapses.

        Args:
            account_id: Account that was throttled
            retry_after_ms: Delay reported by upstream, if any

        Returns:
            The updated record
        """
        record, lock = self._entry(account_id)
        delay = self.clamp_retry_after(retry_after_ms)
        with lock:
            now = self.now()
            record.rate_limited_until = now + delay
            record.score = max(0, record.score - RATE_LIMIT_PENALTY)
            record.last_failure = now
            record.consecutive_failures += 1
            until = record.rate_limited_until
            score = record.score
        logger.info(
            "account_rate_limited",
            account=account_id,
            delay_ms=delay,
            reset_time=format_ms(until),
            score=score,
        )
        return record

    def mark_success(self, account_id: str) -> HealthRecord:
        """Record a successful call.

        An active rate limit window is left untouched.
        """
        record, lock = self._entry(account_id)
        with lock:
            record.score = min(MAX_HEALTH_SCORE, record.score + SUCCESS_BONUS)
            record.last_success = self.now()
            record.consecutive_failures = 0
        return record

    def is_available(self, record: HealthRecord) -> bool:
        """Check a record, clearing its rate limit window once it has elapsed.

        Recovery grants a score bonus exactly once per window.
        """
        with self._lock_for(record.id):
            if record.rate_limited_until == 0:
                return True
            if self.now() < record.rate_limited_until:
                return False
            record.rate_limited_until = 0
            record.score = min(MAX_HEALTH_SCORE, record.score + RECOVERY_BONUS)
            score = record.score
        logger.info("account_recovered", account=record.id, score=score)
        return True

    def reset(self, account_id: str) -> None:
        """Forget everything known about an account."""
        with self._index_lock:
            removed = self._records.pop(account_id, None)
            self._locks.pop(account_id, None)
        if removed is not None:
            logger.debug("health_reset", account=account_id)

    def get(self, account_id: str) -> HealthRecord | None:
        """Return a copy of the record for an id without creating one."""
        with self._index_lock:
            record = self._records.get(account_id)
        return replace(record) if record else None

    def snapshot(self) -> dict[str, HealthRecord]:
        """Return read-only copies of every record."""
        with self._index_lock:
            records = list(self._records.values())
        return {record.id: replace(record) for record in records}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._records
