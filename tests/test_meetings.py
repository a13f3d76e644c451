"""Summary: Tests for the meeting resolver and recurrence rules.

Importance: Calendar writes depend on these parses being correct and repeatable.
Alternatives: Check resolved meetings manually in a calendar client.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from conftest import FakeClock

from actionpilot.ai import AuditedChat, MockAiProvider
from actionpilot.errors import InferenceError, MissingDatetime, ValidationError
from actionpilot.meetings import MeetingResolver, build_recurrence_rule, infer_title
from actionpilot.models import RecurrenceSpec
from actionpilot.storage.sqlite_store import SqliteStore


def _resolver(
    clock: FakeClock, ai: MockAiProvider | None = None, store: SqliteStore | None = None
) -> MeetingResolver:
    if ai is None:
        return MeetingResolver(chat=None, clock=clock)
    chat = AuditedChat(provider=ai, store=store, provider_name="mock", model_name="mock")
    return MeetingResolver(chat=chat, clock=clock)


def test_fallback_resolves_tomorrow_morning(clock: FakeClock) -> None:
    """Summary: Verify the regex parser handles a plain next-day request.

    Importance: Scheduling must work with no model available.
    Alternatives: Fail when inference is down.
    """

    spec = _resolver(clock).resolve("create a meeting tomorrow 9am", "UTC")
    assert spec.start == datetime(2025, 11, 24, 9, 0, tzinfo=timezone.utc)
    assert spec.end == datetime(2025, 11, 24, 9, 30, tzinfo=timezone.utc)
    assert spec.title == "Meeting"
    assert spec.source == "fallback"


def test_fallback_resolves_weekly_range(clock: FakeClock) -> None:
    """Summary: Verify an every-weekday range becomes a weekly recurring event.

    Importance: Recurring requests must carry the weekday into the RRULE.
    Alternatives: Create single events only.
    """

    spec = _resolver(clock).resolve("every thursday 9 to 9.30am", "UTC")
    assert spec.start == datetime(2025, 11, 27, 9, 0, tzinfo=timezone.utc)
    assert spec.end == datetime(2025, 11, 27, 9, 30, tzinfo=timezone.utc)
    assert spec.recurrence is not None
    assert build_recurrence_rule(spec.recurrence) == "RRULE:FREQ=WEEKLY;BYDAY=TH"


def test_fallback_without_anchor_rolls_past_times_to_tomorrow(clock: FakeClock) -> None:
    spec = _resolver(clock).resolve("sync at 8am", "UTC")
    assert spec.start == datetime(2025, 11, 24, 8, 0, tzinfo=timezone.utc)
    assert spec.title == "Sync"


def test_resolution_uses_user_timezone(clock: FakeClock) -> None:
    spec = _resolver(clock).resolve("standup tomorrow at 9am", "Asia/Kolkata")
    assert spec.start.isoformat() == "2025-11-24T09:00:00+05:30"
    assert spec.duration_minutes == 30
    assert spec.timezone == "Asia/Kolkata"
    assert spec.title == "Standup"


def test_resolution_is_deterministic(clock: FakeClock) -> None:
    resolver = _resolver(clock)
    text = "review budget next friday 2pm to 3pm"
    assert resolver.resolve(text, "UTC") == resolver.resolve(text, "UTC")


def test_llm_result_is_completed_with_duration(
    clock: FakeClock, ai: MockAiProvider, store: SqliteStore
) -> None:
    """Summary: Verify model output wins and a missing end is derived.

    Importance: The model parse is preferred when it returns usable times.
    Alternatives: Always use the fallback parser.
    """

    ai.script(
        '{"title": "Design review", "start_time": "2025-11-24T15:00:00", "duration_minutes": 45}'
    )
    spec = _resolver(clock, ai, store).resolve("design review tomorrow afternoon", "UTC")
    assert spec.source == "llm"
    assert spec.title == "Design review"
    assert spec.start == datetime(2025, 11, 24, 15, 0, tzinfo=timezone.utc)
    assert spec.duration_minutes == 45
    prompt = ai.calls[0]["messages"][0]["content"]
    assert "2025-11-23" in prompt
    assert "2025-11-24T13:00:00" in prompt
    assert ai.calls[0]["temperature"] == 0.1
    [request] = store.list_ai_requests()
    assert request["purpose"] == "create_meeting"


def test_llm_inverted_range_is_validation_error(
    clock: FakeClock, ai: MockAiProvider, store: SqliteStore
) -> None:
    ai.script(
        '{"title": "Sync", "start_time": "2025-11-24T15:00:00", "end_time": "2025-11-24T14:00:00"}'
    )
    with pytest.raises(ValidationError) as excinfo:
        _resolver(clock, ai, store).resolve("sync tomorrow", "UTC")
    assert excinfo.value.message.startswith("VALIDATION_ERROR")


def test_missing_datetime_when_no_stage_finds_a_time(
    clock: FakeClock, ai: MockAiProvider, store: SqliteStore
) -> None:
    ai.script('{"error": "missing_datetime"}')
    with pytest.raises(MissingDatetime) as excinfo:
        _resolver(clock, ai, store).resolve("let's catch up sometime", "UTC")
    assert excinfo.value.message == "MISSING_DATETIME"
    assert excinfo.value.code == "missing_datetime"


def test_inference_outage_falls_back(clock: FakeClock) -> None:
    def unavailable(messages: list[dict[str, str]], **kwargs: Any) -> str:
        raise InferenceError("connection refused")

    spec = MeetingResolver(chat=unavailable, clock=clock).resolve("call tomorrow at 4pm", "UTC")
    assert spec.source == "fallback"
    assert spec.start == datetime(2025, 11, 24, 16, 0, tzinfo=timezone.utc)


def test_unknown_timezone_is_rejected(clock: FakeClock) -> None:
    with pytest.raises(ValidationError):
        _resolver(clock).resolve("sync tomorrow at 9am", "Mars/Olympus")


def test_title_inferred_from_conversation() -> None:
    conversation = [{"role": "user", "content": "We need to discuss the project Atlas launch"}]
    assert infer_title("schedule a meeting tomorrow at 3pm", conversation) == "Project Atlas"


def test_recurrence_rule_prefers_until_over_count() -> None:
    """Summary: Verify RRULE rendering of interval, weekday, and end conditions.

    Importance: Calendars reject rules with both UNTIL and COUNT.
    Alternatives: Emit both and let the calendar decide.
    """

    until = datetime(2025, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
    recurrence = RecurrenceSpec("weekly", interval=2, until=until, count=5, by_day="MO")
    assert build_recurrence_rule(recurrence) == (
        "RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO;UNTIL=20251231T235959Z"
    )
    assert build_recurrence_rule(RecurrenceSpec("daily", count=10)) == "RRULE:FREQ=DAILY;COUNT=10"
