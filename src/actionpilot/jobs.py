"""Summary: Background processing cycle and interval job scheduler.

Importance: Runs suggestion generation and ingestion on timers without
blocking the API, with per-message and per-job failure isolation.
Alternatives: Use an external scheduler such as cron or Celery beat.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from actionpilot.processors import message_payload
from actionpilot.retry import RetryController
from actionpilot.storage.sqlite_store import SqliteStore, StoredMessage, StoredUser, utc_now
from actionpilot.suggestions import SuggestionEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleReport:
    selected: int
    processed: int
    failed: int
    errors: dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected": self.selected,
            "processed": self.processed,
            "failed": self.failed,
            "errors": {str(key): value for key, value in self.errors.items()},
        }


@dataclass
class ProcessingCycle:
    """Summary: One pass of suggestion generation over eligible messages.

    Importance: Messages run sequentially with a pause between them to respect
    inference rate limits; one failing message never aborts the batch.
    Alternatives: Fan out messages to a thread pool.
    """

    controller: RetryController
    engine: SuggestionEngine
    store: SqliteStore
    sleep: Callable[[float], None] = time.sleep
    delay_ms: int = 100

    def run(self, limit: int | None = None) -> CycleReport:
        messages = self.controller.select_eligible_messages(limit)
        by_user: dict[int | None, list[StoredMessage]] = defaultdict(list)
        for message in messages:
            by_user[message.user_id].append(message)
        processed = 0
        errors: dict[int, str] = {}
        for user_id, batch in by_user.items():
            user = self.store.get_user(user_id) if user_id is not None else None
            for message in batch:
                if self._process(message, user, errors):
                    processed += 1
                if self.delay_ms:
                    self.sleep(self.delay_ms / 1000)
        report = CycleReport(
            selected=len(messages), processed=processed, failed=len(errors), errors=errors
        )
        logger.info(
            "Processing cycle done: %s selected, %s processed, %s failed.",
            report.selected,
            report.processed,
            report.failed,
        )
        return report

    def _process(
        self, message: StoredMessage, user: StoredUser | None, errors: dict[int, str]
    ) -> bool:
        self.controller.record_attempt_start(message.id)
        try:
            action_set = self.engine.generate_suggestions(
                "email_actions", user, message_payload(message), message_id=message.id
            )
            self.store.save_action_set(action_set, user_id=message.user_id)
            if action_set.actions:
                self.store.mark_action_required(message.id)
        except Exception as exc:
            logger.exception("Suggestion generation failed for message %s.", message.id)
            error = f"{type(exc).__name__}: {exc}"
            self.controller.record_outcome(message.id, success=False, error=error)
            errors[message.id] = error
            return False
        self.controller.record_outcome(message.id, success=True)
        return True


@dataclass
class IntervalJob:
    name: str
    interval_seconds: float
    run: Callable[[], Any]
    last_run: datetime | None = None
    last_error: str | None = None
    runs: int = 0
    failures: int = 0

    def is_due(self, now: datetime) -> bool:
        if self.last_run is None:
            return True
        return now - self.last_run >= timedelta(seconds=self.interval_seconds)


class JobHandle:
    """Handle returned by JobScheduler.start; stop() ends the ticking thread."""

    def __init__(self, stop_event: threading.Event, thread: threading.Thread) -> None:
        self._stop_event = stop_event
        self._thread = thread

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)


@dataclass
class JobScheduler:
    """Summary: Runs interval jobs from an explicit service object.

    Importance: The clock and wait function are injectable, so tick() is
    deterministic in tests; job errors are logged and never stop the loop.
    Alternatives: Module-level timers started at import.
    """

    jobs: list[IntervalJob]
    clock: Callable[[], datetime] = utc_now
    poll_seconds: float = 1.0

    def tick(self) -> list[str]:
        """Run every due job once and return the names that ran."""

        ran = []
        for job in self.jobs:
            now = self.clock()
            if not job.is_due(now):
                continue
            job.last_run = now
            job.runs += 1
            try:
                job.run()
                job.last_error = None
            except Exception as exc:
                job.failures += 1
                job.last_error = str(exc)[:500]
                logger.exception("Job %s failed.", job.name)
            ran.append(job.name)
        return ran

    def start(self) -> JobHandle:
        """Summary: Run all jobs immediately, then keep ticking in a daemon thread.

        Importance: The first run happens on the caller's thread so startup
        state is ready before start returns.
        Alternatives: Delay the first run by one interval.
        """

        self.tick()
        stop_event = threading.Event()

        def loop() -> None:
            while not stop_event.wait(self.poll_seconds):
                self.tick()
            logger.info("Job scheduler stopped.")

        thread = threading.Thread(target=loop, name="actionpilot-jobs", daemon=True)
        thread.start()
        logger.info("Job scheduler started with jobs: %s", ", ".join(job.name for job in self.jobs))
        return JobHandle(stop_event, thread)

    def status(self) -> list[dict[str, Any]]:
        return [
            {
                "name": job.name,
                "interval_seconds": job.interval_seconds,
                "last_run": job.last_run.isoformat() if job.last_run else None,
                "last_error": job.last_error,
                "runs": job.runs,
                "failures": job.failures,
            }
            for job in self.jobs
        ]
