"""Summary: Tests for retry eligibility, bookkeeping, and stats.

Importance: Bounded retries are what keep a broken message from looping forever.
Alternatives: Exercise retry behavior only through the processing cycle.
"""

from __future__ import annotations

from datetime import timedelta

from conftest import NOW, FakeClock, make_message

from actionpilot.models import FAILED, PROCESSED
from actionpilot.retry import RetryController, RetryPolicy
from actionpilot.storage.sqlite_store import SqliteStore


def _controller(store: SqliteStore, clock: FakeClock, **policy: object) -> RetryController:
    return RetryController(store=store, policy=RetryPolicy(**policy), clock=clock)


def _fail(controller: RetryController, message_id: int) -> None:
    controller.record_attempt_start(message_id)
    controller.record_outcome(message_id, success=False, error="boom")


def test_new_messages_are_selected_newest_first(store: SqliteStore, clock: FakeClock) -> None:
    store.save_messages(
        [
            make_message("old", received_at=NOW - timedelta(hours=5)),
            make_message("new", received_at=NOW - timedelta(minutes=5)),
        ]
    )
    selected = _controller(store, clock).select_eligible_messages()
    assert [message.external_id for message in selected] == ["new", "old"]


def test_failed_message_waits_for_cooldown(store: SqliteStore, clock: FakeClock) -> None:
    """Summary: Verify a failure is not retried until the cooldown elapses.

    Importance: Protects the inference service from hot retry loops.
    Alternatives: Retry immediately on the next cycle.
    """

    controller = _controller(store, clock, cooldown=timedelta(minutes=60))
    [message_id] = store.save_messages([make_message()])
    _fail(controller, message_id)
    clock.advance(minutes=59)
    assert controller.select_eligible_messages() == []
    clock.advance(minutes=1)
    assert [message.id for message in controller.select_eligible_messages()] == [message_id]


def test_exhausted_message_is_never_selected_until_reset(
    store: SqliteStore, clock: FakeClock
) -> None:
    """Summary: Verify attempts stop at max_attempts and reset revives the message.

    Importance: reset_for_retry is the only path back for exhausted messages.
    Alternatives: Reset attempts after a quiet period.
    """

    controller = _controller(store, clock, max_attempts=3)
    [message_id] = store.save_messages([make_message()])
    for _ in range(3):
        _fail(controller, message_id)
        clock.advance(hours=2)
    message = store.get_message(message_id)
    assert message is not None and message.attempts == 3
    clock.advance(days=30)
    assert controller.select_eligible_messages() == []
    assert controller.stats().exhausted == 1
    assert controller.reset_for_retry() == 1
    selected = controller.select_eligible_messages()
    assert [message.id for message in selected] == [message_id]
    assert selected[0].attempts == 0


def test_eligibility_matches_attempt_and_cooldown_rules(
    store: SqliteStore, clock: FakeClock
) -> None:
    """Summary: Check the eligibility rule across a grid of attempt histories.

    Importance: Selected iff never attempted, or failed below the cap with the
    cooldown elapsed; processed messages are never selected.
    Alternatives: Test only one representative message.
    """

    cooldown = timedelta(minutes=30)
    controller = _controller(store, clock, max_attempts=2, cooldown=cooldown)
    expected = set()
    cases = [(0, None), (1, 10), (1, 45), (2, 45), (1, "processed")]
    for index, (attempts, age) in enumerate(cases):
        [message_id] = store.save_messages([make_message(f"case-{index}")])
        for _ in range(attempts):
            controller.record_attempt_start(message_id)
        if age == "processed":
            controller.record_outcome(message_id, success=True)
        elif attempts:
            store.set_processing_outcome(
                message_id, FAILED, "boom", clock() - timedelta(minutes=int(age))
            )
        if attempts == 0 or (
            age != "processed" and attempts < 2 and timedelta(minutes=int(age)) >= cooldown
        ):
            expected.add(message_id)
    selected = {message.id for message in controller.select_eligible_messages()}
    assert selected == expected


def test_batch_limit_caps_selection(store: SqliteStore, clock: FakeClock) -> None:
    store.save_messages([make_message(f"m-{index}") for index in range(5)])
    controller = _controller(store, clock, batch_limit=3)
    assert len(controller.select_eligible_messages()) == 3
    assert len(controller.select_eligible_messages(limit=2)) == 2


def test_stats_count_by_state(store: SqliteStore, clock: FakeClock) -> None:
    controller = _controller(store, clock)
    ids = store.save_messages([make_message(f"s-{index}") for index in range(3)])
    controller.record_attempt_start(ids[0])
    controller.record_outcome(ids[0], success=True)
    _fail(controller, ids[1])
    stats = controller.stats()
    assert (stats.total, stats.processed, stats.failed, stats.unprocessed) == (3, 1, 1, 1)
    assert stats.avg_attempts_success == 1.0
    assert stats.window_hours == 24
    message = store.get_message(ids[0])
    assert message is not None and message.processing_state == PROCESSED


def test_attempt_without_outcome_waits_for_cooldown(store: SqliteStore, clock: FakeClock) -> None:
    """Summary: Verify an attempt interrupted before its outcome is retried later.

    Importance: A crash mid-call counts as a used attempt, not a lost message.
    Alternatives: Re-select the message on the very next cycle.
    """

    controller = _controller(store, clock, cooldown=timedelta(minutes=60))
    [message_id] = store.save_messages([make_message()])
    controller.record_attempt_start(message_id)
    clock.advance(minutes=59)
    assert controller.select_eligible_messages() == []
    clock.advance(minutes=1)
    [message] = controller.select_eligible_messages()
    assert message.id == message_id
    assert message.attempts == 1
