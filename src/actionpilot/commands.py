"""Summary: Typed command intake for UI-originated triggers.

Importance: Every UI trigger (prepare, execute, chat, meeting, retry) enters
through one dispatch function with an explicit command type.
Alternatives: Let each UI surface call services with ad-hoc dictionaries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from actionpilot.actions import ActionService
from actionpilot.errors import ValidationError
from actionpilot.meetings import MeetingResolver
from actionpilot.retry import RetryController
from actionpilot.storage.sqlite_store import SqliteStore
from actionpilot.suggestions import SuggestionEngine, intelligent_process

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrepareCommand:
    message_id: int
    selected_action: dict[str, Any] | None = None


@dataclass(frozen=True)
class ExecuteCommand:
    message_id: int
    action_type: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatCommand:
    text: str
    context: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolveMeetingCommand:
    text: str
    timezone: str | None = None
    conversation: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class RetryCommand:
    user_id: int | None = None


Command = PrepareCommand | ExecuteCommand | ChatCommand | ResolveMeetingCommand | RetryCommand

COMMAND_TYPES: dict[str, type] = {
    "prepare": PrepareCommand,
    "execute": ExecuteCommand,
    "chat": ChatCommand,
    "resolve_meeting": ResolveMeetingCommand,
    "retry": RetryCommand,
}


@dataclass
class CommandIntake:
    """Summary: Dispatches typed commands to the owning service.

    Importance: Keeps user scoping in one place; every result is a JSON-ready dict.
    Alternatives: Register callbacks per UI widget.
    """

    store: SqliteStore
    actions: ActionService
    engine: SuggestionEngine
    resolver: MeetingResolver
    controller: RetryController
    user_id: int | None = None

    def handle(self, command: Command) -> dict[str, Any]:
        logger.info("Handling %s.", type(command).__name__)
        if isinstance(command, PrepareCommand):
            return self.actions.prepare(
                command.message_id, command.selected_action, user_id=self.user_id
            )
        if isinstance(command, ExecuteCommand):
            result = self.actions.execute(
                command.message_id, command.action_type, command.payload, user_id=self.user_id
            )
            return result.to_dict()
        if isinstance(command, ChatCommand):
            user = self.store.get_user(self.user_id) if self.user_id is not None else None
            action_set = intelligent_process(
                self.engine, user, command.text, command.context, command.options
            )
            return action_set.to_dict()
        if isinstance(command, ResolveMeetingCommand):
            user = self.store.get_user(self.user_id) if self.user_id is not None else None
            spec = self.resolver.resolve(
                command.text,
                timezone_name=command.timezone or (user.timezone if user else None),
                conversation=command.conversation,
                user_id=self.user_id,
            )
            return {"meeting": spec.to_payload()}
        if isinstance(command, RetryCommand):
            return {"reset": self.controller.reset_for_retry(command.user_id)}
        raise TypeError(f"Unsupported command: {type(command).__name__}")


def parse_command(kind: str, body: dict[str, Any]) -> Command:
    """Summary: Build a typed command from a wire-level kind and body.

    Importance: Unknown kinds and bad fields fail before any service runs.
    Alternatives: Accept arbitrary dicts and validate inside each service.
    """

    command_type = COMMAND_TYPES.get(kind)
    if command_type is None:
        raise ValidationError(f"unknown command: {kind}")
    try:
        return command_type(**body)
    except TypeError as exc:
        raise ValidationError(f"invalid fields for {kind} command") from exc
