"""Summary: Tests for the two-phase action protocol.

Importance: Execute is the only code path that mutates external services.
Alternatives: Verify executions manually against a sandbox mailbox.
"""

from __future__ import annotations

import base64
import io
from email import message_from_bytes

import pytest

from conftest import make_message

from actionpilot.actions import ACTION_HANDLERS, build_handler_table, normalize_reminders
from actionpilot.app import AppServices
from actionpilot.errors import (
    AlreadyExecuted,
    ExternalServiceError,
    InsufficientPermissions,
    MessageNotFound,
    MissingField,
    TokenExpired,
    TransientError,
    UnknownAction,
    ValidationError,
)
from actionpilot.models import EXECUTED, EXECUTION_FAILED
from actionpilot.workspace import SCOPES, GoogleWorkspaceClient, MockWorkspaceClient


def _message_id(services: AppServices) -> int:
    [message_id] = services.store.save_messages([make_message()], user_id=services.user_id)
    return message_id


def test_execute_marks_actioned_and_audits_once(
    services: AppServices, workspace: MockWorkspaceClient
) -> None:
    """Summary: Verify a successful execution is recorded exactly once.

    Importance: actioned flips only after the external call succeeds.
    Alternatives: Flip actioned when the user confirms.
    """

    message_id = _message_id(services)
    result = services.actions.execute(
        message_id, "create_task", {"title": "Send budget numbers"}, user_id=services.user_id
    )
    assert result.ok
    assert result.to_dict()["result"]["status"] == "ok"
    assert workspace.calls[0][0] == "create_task"
    assert workspace.calls[0][1]["title"] == "Send budget numbers"
    message = services.store.get_message(message_id)
    assert message is not None and message.actioned
    audits = services.store.list_execution_audits(message_id=message_id)
    assert [audit.state for audit in audits] == [EXECUTED]


def test_permission_denied_maps_to_required_scope(services: AppServices) -> None:
    """Summary: Verify a 403 names the minimal scope and a remediation URL.

    Importance: Users are told exactly which permission to grant.
    Alternatives: Show a generic failure.
    """

    services.workspace.failures["create_event"] = 403
    message_id = _message_id(services)
    with pytest.raises(InsufficientPermissions) as excinfo:
        services.actions.execute(
            message_id,
            "create_meeting",
            {"title": "Sync", "start": "2025-11-24T09:00:00", "end": "2025-11-24T09:30:00"},
        )
    payload = excinfo.value.to_payload()
    assert payload["error"] == "insufficient_permissions"
    assert payload["requiredPermission"] == "calendar"
    assert payload["remediation"] == "/settings/permissions"
    message = services.store.get_message(message_id)
    assert message is not None and not message.actioned
    [audit] = services.store.list_execution_audits(message_id=message_id)
    assert audit.state == EXECUTION_FAILED
    assert audit.action_type == "create_event"
    assert audit.error.startswith("insufficient_permissions")


@pytest.mark.parametrize(
    ("status", "error_type", "code"),
    [
        (401, TokenExpired, "token_expired"),
        (500, TransientError, "transient_error"),
        (None, TransientError, "transient_error"),
    ],
)
def test_other_failures_are_classified(
    services: AppServices, status: int | None, error_type: type, code: str
) -> None:
    services.workspace.failures["mark_read"] = status
    message_id = _message_id(services)
    with pytest.raises(error_type) as excinfo:
        services.actions.execute(message_id, "mark_read", {})
    assert excinfo.value.code == code
    if status == 401:
        assert excinfo.value.to_payload()["reauthUrl"] == "/auth/google"
    message = services.store.get_message(message_id)
    assert message is not None and not message.actioned


def test_repeat_execution_is_rejected_without_remote_call(
    services: AppServices, workspace: MockWorkspaceClient
) -> None:
    """Summary: Verify a second execute of the same action is refused.

    Importance: Double-clicks must not send two replies.
    Alternatives: Silently return the first result.
    """

    message_id = _message_id(services)
    services.actions.execute(message_id, "draft_reply", {"body": "Works for me"})
    with pytest.raises(AlreadyExecuted):
        services.actions.execute(message_id, "reply", {"body": "Works for me"})
    assert len(workspace.calls) == 1
    audits = services.store.list_execution_audits(message_id=message_id)
    assert len(audits) == 1


def test_failed_action_can_be_retried_by_the_user(
    services: AppServices, workspace: MockWorkspaceClient
) -> None:
    message_id = _message_id(services)
    workspace.failures["trash"] = 503
    with pytest.raises(TransientError):
        services.actions.execute(message_id, "delete", {})
    del workspace.failures["trash"]
    assert services.actions.execute(message_id, "delete", {}).ok
    audits = services.store.list_execution_audits(message_id=message_id)
    states = [audit.state for audit in audits]
    assert states == [EXECUTED, EXECUTION_FAILED]


def test_missing_field_and_unknown_action(services: AppServices) -> None:
    message_id = _message_id(services)
    with pytest.raises(MissingField) as missing:
        services.actions.execute(message_id, "forward", {"note": "fyi"})
    assert missing.value.code == "missing_to"
    assert missing.value.status_code == 400
    with pytest.raises(UnknownAction):
        services.actions.execute(message_id, "launch_rocket", {})
    with pytest.raises(MessageNotFound):
        services.actions.execute(9999, "mark_read", {})


def test_create_event_needs_times_or_text(services: AppServices) -> None:
    message_id = _message_id(services)
    with pytest.raises(MissingField) as excinfo:
        services.actions.execute(message_id, "create_event", {"title": "Sync"})
    assert excinfo.value.code == "missing_event_times"


def test_create_event_from_text_builds_rrule_and_reminders(
    services: AppServices, workspace: MockWorkspaceClient
) -> None:
    """Summary: Verify free text is resolved and recurrence becomes an RRULE.

    Importance: Recurring events reach the calendar as a single rule.
    Alternatives: Create one event per occurrence.
    """

    message_id = _message_id(services)
    services.actions.execute(
        message_id, "create_event", {"text": "team sync every thursday 9 to 9.30am"}
    )
    [(capability, arguments)] = workspace.calls
    assert capability == "create_event"
    assert arguments["start"] == "2025-11-27T09:00:00+00:00"
    assert arguments["end"] == "2025-11-27T09:30:00+00:00"
    assert arguments["recurrence_rule"] == "RRULE:FREQ=WEEKLY;BYDAY=TH"
    assert arguments["reminders"] == [{"method": "email", "minutes": 15}]
    assert arguments["summary"] == "Team sync"


def test_create_event_with_structured_recurrence(
    services: AppServices, workspace: MockWorkspaceClient
) -> None:
    message_id = _message_id(services)
    services.actions.execute(
        message_id,
        "create_event",
        {
            "title": "Planning",
            "start": "2025-11-24T15:00:00",
            "recurring": {"frequency": "weekly", "interval": 2, "count": 4},
            "reminders": [{"method": "popup", "minutes": 10}],
        },
    )
    arguments = workspace.calls[0][1]
    assert arguments["end"] == "2025-11-24T16:00:00+00:00"
    assert arguments["recurrence_rule"] == "RRULE:FREQ=WEEKLY;INTERVAL=2;COUNT=4"
    assert arguments["reminders"] == [{"method": "popup", "minutes": 10}]


def test_create_event_rejects_inverted_range(services: AppServices) -> None:
    message_id = _message_id(services)
    with pytest.raises(ValidationError):
        services.actions.execute(
            message_id,
            "create_event",
            {"start": "2025-11-24T15:00:00", "end": "2025-11-24T14:00:00"},
        )
    [audit] = services.store.list_execution_audits(message_id=message_id)
    assert audit.error.startswith("validation_error")


def test_reply_sends_encoded_message(services: AppServices, workspace: MockWorkspaceClient) -> None:
    message_id = _message_id(services)
    services.actions.execute(message_id, "reply", {"body": "See you at 3pm."})
    raw = workspace.calls[0][1]["raw"]
    parsed = message_from_bytes(base64.urlsafe_b64decode(raw))
    assert parsed["To"] == "maria@example.com"
    assert parsed["Subject"] == "Re: Quarterly planning"
    assert "See you at 3pm." in parsed.get_payload()


def test_prepare_with_meeting_hint_queries_free_busy(
    services: AppServices, workspace: MockWorkspaceClient
) -> None:
    """Summary: Verify scheduling hints add busy intervals and save a new set.

    Importance: Prepare is read-only apart from the appended suggestion set.
    Alternatives: Ignore calendar availability when suggesting times.
    """

    message_id = _message_id(services)
    workspace.busy = [{"start": "2025-11-24T15:00:00Z", "end": "2025-11-24T16:00:00Z"}]
    result = services.actions.prepare(message_id, {"type": "create_meeting"})
    assert workspace.calls[0][0] == "free_busy_query"
    assert result["actions"]
    assert services.store.count_action_sets(message_id) == 1
    message = services.store.get_message(message_id)
    assert message is not None and not message.actioned
    assert services.store.list_execution_audits(message_id=message_id) == []


def test_prepare_ignores_free_busy_errors(
    services: AppServices, workspace: MockWorkspaceClient
) -> None:
    message_id = _message_id(services)
    workspace.failures["free_busy_query"] = 403
    result = services.actions.prepare(message_id, "create_event")
    assert [action["type"] for action in result["actions"]] == ["mark_read"]


def test_handler_table_covers_actions_with_known_scopes() -> None:
    assert set(ACTION_HANDLERS) == {
        "mark_read",
        "mark_as_priority",
        "trash",
        "reply",
        "forward",
        "create_task",
        "create_event",
    }
    assert all(handler.scope in SCOPES for handler in build_handler_table().values())


def test_normalize_reminders() -> None:
    assert normalize_reminders(None) == [{"method": "email", "minutes": 15}]
    assert normalize_reminders(30) == [{"method": "email", "minutes": 30}]
    with pytest.raises(ValidationError):
        normalize_reminders([{"minutes": "soon"}])


def test_invalid_recurrence_until_is_audited(services: AppServices) -> None:
    """Summary: Verify a malformed recurrence end date fails as a validation error.

    Importance: Every dispatched attempt leaves exactly one audit row.
    Alternatives: Let the date parser error escape to the caller.
    """

    message_id = _message_id(services)
    with pytest.raises(ValidationError):
        services.actions.execute(
            message_id,
            "create_event",
            {
                "start": "2025-11-24T15:00:00",
                "recurring": {"frequency": "weekly", "until": "2025-13-40"},
            },
        )
    [audit] = services.store.list_execution_audits(message_id=message_id)
    assert audit.state == EXECUTION_FAILED
    assert audit.error.startswith("validation_error")


def test_unexpected_handler_error_is_audited_as_transient(
    services: AppServices, workspace: MockWorkspaceClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken(external_id: str) -> dict[str, str]:
        raise KeyError("labelIds")

    monkeypatch.setattr(workspace, "mark_read", broken)
    message_id = _message_id(services)
    with pytest.raises(TransientError) as excinfo:
        services.actions.execute(message_id, "mark_read", {})
    assert "KeyError" in excinfo.value.message
    [audit] = services.store.list_execution_audits(message_id=message_id)
    assert audit.state == EXECUTION_FAILED
    assert audit.error.startswith("transient_error")
    message = services.store.get_message(message_id)
    assert message is not None and not message.actioned


def test_create_event_accepts_single_attendee_string(
    services: AppServices, workspace: MockWorkspaceClient
) -> None:
    message_id = _message_id(services)
    services.actions.execute(
        message_id,
        "create_event",
        {
            "start": "2025-11-24T15:00:00",
            "end": "2025-11-24T15:30:00",
            "attendees": "bob@example.com",
        },
    )
    assert workspace.calls[0][1]["attendees"] == ["bob@example.com"]


@pytest.mark.parametrize(
    "failure",
    [TimeoutError("timed out"), None],
)
def test_google_client_maps_timeouts_and_bad_bodies(
    monkeypatch: pytest.MonkeyPatch, failure: Exception | None
) -> None:
    """Summary: Verify socket timeouts and non-JSON bodies become ExternalServiceError.

    Importance: The action service classifies only ExternalServiceError by status.
    Alternatives: Let transport exceptions reach the API unclassified.
    """

    def fake_urlopen(request: object, timeout: float) -> io.BytesIO:
        if failure is not None:
            raise failure
        return io.BytesIO(b"<html>bad gateway</html>")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    with pytest.raises(ExternalServiceError) as excinfo:
        GoogleWorkspaceClient("token").mark_read("ext-1")
    assert excinfo.value.status is None
