"""Summary: Tests for command intake and inbound row ingestion.

Importance: UI triggers and collaborator rows are the two ways work enters the system.
Alternatives: Cover both only through the HTTP layer.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import make_message

from actionpilot.app import AppServices
from actionpilot.commands import (
    ChatCommand,
    ExecuteCommand,
    PrepareCommand,
    ResolveMeetingCommand,
    RetryCommand,
    parse_command,
)
from actionpilot.errors import ValidationError
from actionpilot.ingestion import MockInboundSource, row_to_message
from actionpilot.models import FAILED


def _message_id(services: AppServices) -> int:
    [message_id] = services.store.save_messages([make_message()], user_id=services.user_id)
    return message_id


def test_prepare_and_execute_commands(services: AppServices) -> None:
    """Summary: Verify typed commands reach the action service.

    Importance: The command channel must behave exactly like the direct endpoints.
    Alternatives: Keep separate code paths per UI surface.
    """

    message_id = _message_id(services)
    prepared = services.commands.handle(PrepareCommand(message_id=message_id))
    assert prepared["actionSetId"] > 0
    executed = services.commands.handle(
        ExecuteCommand(message_id=message_id, action_type="flag")
    )
    assert executed == {
        "ok": True,
        "actionType": "mark_as_priority",
        "result": {"id": "mock-mark_important-1", "status": "ok"},
    }


def test_chat_and_meeting_commands(services: AppServices) -> None:
    chat = services.commands.handle(
        ChatCommand(text="remind me to book flights", options={"use_llm": False})
    )
    assert chat["kind"] == "create_task"
    assert chat["actions"][0]["payload"]["title"] == "Book flights"
    meeting = services.commands.handle(ResolveMeetingCommand(text="review tomorrow at 2pm"))
    assert meeting["meeting"]["start"] == "2025-11-24T14:00:00+00:00"
    assert meeting["meeting"]["timezone"] == "UTC"


def test_retry_command_resets_failures(services: AppServices) -> None:
    message_id = _message_id(services)
    services.controller.record_attempt_start(message_id)
    services.controller.record_outcome(message_id, success=False, error="boom")
    message = services.store.get_message(message_id)
    assert message is not None and message.processing_state == FAILED
    assert services.commands.handle(RetryCommand()) == {"reset": 1}


def test_parse_command_validates_kind_and_fields() -> None:
    command = parse_command("execute", {"message_id": 3, "action_type": "trash"})
    assert command == ExecuteCommand(message_id=3, action_type="trash")
    with pytest.raises(ValidationError):
        parse_command("self_destruct", {})
    with pytest.raises(ValidationError):
        parse_command("prepare", {"messageId": 3})


def test_unknown_command_object_is_rejected(services: AppServices) -> None:
    with pytest.raises(TypeError):
        services.commands.handle("prepare")  # type: ignore[arg-type]


def test_row_mapping_accepts_collaborator_shape() -> None:
    message = row_to_message(
        {
            "externalId": "x-1",
            "sender": "a@example.com",
            "subject": "Hi",
            "bodyPlain": "Body",
            "receivedAt": "2025-11-23T08:00:00Z",
        }
    )
    assert message.external_id == "x-1"
    assert message.body == "Body"
    assert message.received_at.isoformat() == "2025-11-23T08:00:00+00:00"
    with pytest.raises(ValidationError):
        row_to_message({"sender": "a@example.com"})
    with pytest.raises(ValidationError):
        row_to_message({"externalId": "x-2", "receivedAt": "yesterday"})


def test_ingestion_is_idempotent(services: AppServices, tmp_path: Path) -> None:
    fixture = tmp_path / "rows.json"
    fixture.write_text(
        json.dumps([{"externalId": "dup", "subject": "Hello", "body": "plain body"}]),
        encoding="utf-8",
    )
    rows = MockInboundSource(str(fixture)).fetch()
    first = services.ingestion.ingest_rows(rows)
    second = services.ingestion.ingest_rows(rows)
    assert first == second
    [message] = services.store.list_messages(10, user_id=services.user_id)
    assert message.body == "plain body"


def test_mock_source_rejects_non_list(tmp_path: Path) -> None:
    fixture = tmp_path / "rows.json"
    fixture.write_text('{"externalId": "x"}', encoding="utf-8")
    with pytest.raises(ValueError):
        MockInboundSource(str(fixture)).fetch()
    with pytest.raises(FileNotFoundError):
        MockInboundSource(str(tmp_path / "missing.json")).fetch()
