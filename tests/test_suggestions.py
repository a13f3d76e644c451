"""Summary: Tests for the suggestion engine, processors, and kind detection.

Importance: Suggestions drive both the background worker and the prepare phase.
Alternatives: Validate suggestions only through API responses.
"""

from __future__ import annotations

import json

import pytest

from conftest import FakeClock, make_message

from actionpilot.ai import MockAiProvider
from actionpilot.app import AppServices
from actionpilot.errors import InferenceError, TransientError, UnknownRequestKind
from actionpilot.suggestions import intelligent_process, process_email


def _message_id(services: AppServices) -> int:
    [message_id] = services.store.save_messages([make_message()], user_id=services.user_id)
    return message_id


def test_email_actions_normalizes_model_output(
    services: AppServices, ai: MockAiProvider
) -> None:
    """Summary: Verify aliases, clamping, and dropping of unknown action types.

    Importance: Only executable actions may reach the UI.
    Alternatives: Pass model actions through unchanged.
    """

    message_id = _message_id(services)
    ai.script(
        json.dumps(
            {
                "summary": "Planning request",
                "priority_level": "high",
                "actions": [
                    {"type": "draft_reply", "payload": {"body": "Works for me"}, "confidence": 1.4},
                    {"type": "launch_rocket", "title": "Nope"},
                ],
                "followups": "Confirm the room?",
            }
        )
    )
    result = services.engine.generate_suggestions(
        "email_actions", None, {"message_id": message_id}
    )
    assert [action.type for action in result.actions] == ["reply"]
    assert result.actions[0].confidence == 1.0
    assert result.followups == ["Confirm the room?"]
    assert result.data["priority_level"] == "high"
    assert result.message_id == message_id
    assert ai.calls[0]["temperature"] == 0.0


def test_unparseable_reply_yields_low_confidence_default(services: AppServices) -> None:
    message_id = _message_id(services)
    result = services.engine.generate_suggestions(
        "email_actions", None, {"message_id": message_id}
    )
    assert [action.type for action in result.actions] == ["mark_read"]
    assert result.actions[0].confidence == 0.3


def test_high_priority_without_actions_defaults_to_priority_flag(
    services: AppServices, ai: MockAiProvider
) -> None:
    message_id = _message_id(services)
    ai.script('```json\n{"summary": "Urgent", "priority_level": "high", "actions": []}\n```')
    result = services.engine.generate_suggestions(
        "email_actions", None, {"message_id": message_id}
    )
    assert [action.type for action in result.actions] == ["mark_as_priority"]


def test_inference_failure_surfaces_as_transient(
    services: AppServices, ai: MockAiProvider
) -> None:
    message_id = _message_id(services)
    ai.script(InferenceError("provider down"))
    with pytest.raises(TransientError):
        services.engine.generate_suggestions("email_actions", None, {"message_id": message_id})


def test_unknown_kind_is_rejected(services: AppServices) -> None:
    with pytest.raises(UnknownRequestKind):
        services.engine.generate_suggestions("horoscope", None, {})


@pytest.mark.parametrize(
    ("text", "context", "expected"),
    [
        ("remind me to call Bob tomorrow", None, "create_task"),
        ("schedule a call with Ana on friday at 3pm", None, "create_meeting"),
        ("summarize my emails from today", None, "email_summary"),
        ("here are the meeting notes from standup", None, "meeting_notes"),
        ("give me my briefing", None, "daily_briefing"),
        ("hello there", None, "chat_response"),
        ("hello there", {"message": {"subject": "Hi"}}, "email_actions"),
    ],
)
def test_rule_detection(
    services: AppServices, text: str, context: dict | None, expected: str
) -> None:
    assert services.engine.detect_kind(text, context, {"use_llm": False}) == expected


def test_detection_prefers_model_label_and_falls_back(
    services: AppServices, ai: MockAiProvider
) -> None:
    """Summary: Verify the model label wins unless it is unusable.

    Importance: Routing keeps working when the model is down or off-label.
    Alternatives: Route on rules only.
    """

    ai.script("Email_Summary.", "banana", InferenceError("timeout"))
    text = "remind me to call Bob tomorrow"
    assert services.engine.detect_kind(text) == "email_summary"
    assert services.engine.detect_kind(text) == "create_task"
    assert services.engine.detect_kind(text) == "create_task"
    assert ai.calls[0]["max_tokens"] == 10


def test_create_meeting_kind_builds_event_action(services: AppServices) -> None:
    user = services.store.get_user(services.user_id)
    result = services.engine.generate_suggestions(
        "create_meeting", user, {"text": "schedule a meeting tomorrow at 3pm"}
    )
    [action] = result.actions
    assert action.type == "create_event"
    assert action.confidence == 0.7
    assert action.payload["start"] == "2025-11-24T15:00:00+00:00"
    assert action.payload["end"] == "2025-11-24T15:30:00+00:00"


def test_create_meeting_without_time_asks_for_clarification(services: AppServices) -> None:
    result = services.engine.generate_suggestions(
        "create_meeting", None, {"text": "schedule a meeting with the team sometime"}
    )
    assert result.actions == []
    assert result.data["error"] == "missing_datetime"
    assert result.followups


def test_create_task_fallback_strips_prefix(services: AppServices) -> None:
    result = services.engine.generate_suggestions(
        "create_task", None, {"text": "remind me to call Bob tomorrow"}
    )
    [action] = result.actions
    assert action.payload["title"] == "Call Bob tomorrow"
    assert action.confidence == 0.8


def test_chat_response_is_unstructured(services: AppServices, ai: MockAiProvider) -> None:
    ai.script("Hello! How can I help?")
    result = services.engine.generate_suggestions("chat_response", None, {"text": "hi"})
    assert result.data == {"response": "Hello! How can I help?"}
    assert result.actions == []


def test_daily_briefing_is_cached_per_user(
    services: AppServices, ai: MockAiProvider, clock: FakeClock
) -> None:
    """Summary: Verify briefings are served from cache until the TTL passes.

    Importance: Avoids regenerating the same briefing on every page load.
    Alternatives: Regenerate on every request.
    """

    user = services.store.get_user(services.user_id)
    first = services.engine.generate_suggestions("daily_briefing", user, {})
    second = services.engine.generate_suggestions("daily_briefing", user, {})
    assert second is first
    assert len(ai.calls) == 1
    services.engine.generate_suggestions("daily_briefing", user, {}, {"refresh": True})
    assert len(ai.calls) == 2
    clock.advance(hours=3)
    services.engine.generate_suggestions("daily_briefing", user, {})
    assert len(ai.calls) == 3


def test_legacy_adapters_route_through_engine(services: AppServices) -> None:
    message_id = _message_id(services)
    message = services.store.get_message(message_id)
    assert message is not None
    by_email = process_email(services.engine, None, message.to_dict())
    assert by_email.kind == "email_actions"
    assert by_email.message_id == message_id
    by_text = intelligent_process(
        services.engine, None, "remind me to pay the invoice", options={"use_llm": False}
    )
    assert by_text.kind == "create_task"
    assert by_text.actions[0].payload["title"] == "Pay the invoice"
