"""Summary: Retry and queue control for the suggestion worker.

Importance: Bounds automatic retries so a permanently broken message cannot
cause an endless retry storm.
Alternatives: Use an external job queue with built-in retry policies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from actionpilot.models import FAILED, PROCESSED
from actionpilot.storage.sqlite_store import ProcessingStats, SqliteStore, StoredMessage, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class RetryPolicy:
    """Summary: Limits applied when selecting and retrying messages.

    Importance: Keeps retry knobs in one value that config and tests can build.
    Alternatives: Read limits from AppConfig at every call site.
    """

    max_attempts: int = 3
    cooldown: timedelta = timedelta(minutes=60)
    batch_limit: int = 50
    stats_window: timedelta = timedelta(hours=24)


@dataclass
class RetryController:
    """Summary: Selects eligible messages and records attempt bookkeeping.

    Importance: Attempts are recorded before the remote call, so a crash
    mid-call still consumes one attempt.
    Alternatives: Increment attempts only after a recorded failure.
    """

    store: SqliteStore
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    clock: Clock = utc_now

    def select_eligible_messages(self, limit: int | None = None) -> list[StoredMessage]:
        """Summary: Return messages eligible for the next cycle, newest first.

        Importance: Always re-queries the store so external changes are honored.
        Alternatives: Keep an in-memory queue between cycles.
        """

        cap = min(limit, self.policy.batch_limit) if limit else self.policy.batch_limit
        retry_before = self.clock() - self.policy.cooldown
        messages = self.store.select_eligible_messages(
            max_attempts=self.policy.max_attempts, retry_before=retry_before, limit=cap
        )
        logger.info("Selected %s eligible messages.", len(messages))
        return messages

    def record_attempt_start(self, message_id: int) -> None:
        self.store.increment_attempt(message_id, self.clock())

    def record_outcome(self, message_id: int, success: bool, error: str | None = None) -> None:
        """Summary: Record the terminal state of an attempt.

        Importance: Failed messages become eligible again after the cooldown.
        Alternatives: Re-queue failures immediately.
        """

        state = PROCESSED if success else FAILED
        self.store.set_processing_outcome(message_id, state, error, self.clock())
        if success:
            logger.info("Message %s processed.", message_id)
        else:
            logger.warning("Message %s failed: %s", message_id, error)

    def reset_for_retry(self, user_id: int | None = None) -> int:
        """Summary: Make failed and exhausted messages eligible again.

        Importance: The only path back for messages that used every attempt.
        Alternatives: Reset attempts automatically after a long quiet period.
        """

        count = self.store.reset_failed_messages(self.policy.max_attempts, user_id=user_id)
        logger.info("Reset %s messages for retry (user=%s).", count, user_id)
        return count

    def stats(self, user_id: int | None = None) -> ProcessingStats:
        since = self.clock() - self.policy.stats_window
        return self.store.processing_stats(
            since=since,
            max_attempts=self.policy.max_attempts,
            window_hours=int(self.policy.stats_window.total_seconds() // 3600),
            user_id=user_id,
        )
