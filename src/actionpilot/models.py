"""Summary: Domain model dataclasses for ActionPilot.

Importance: Defines the entities shared by the worker, action protocol, and storage.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

UNPROCESSED = "unprocessed"
PROCESSED = "processed"
FAILED = "failed"

EXECUTED = "executed"
EXECUTION_FAILED = "failed"

REQUEST_KINDS = (
    "email_actions",
    "email_summary",
    "daily_briefing",
    "meeting_notes",
    "chat_response",
    "create_meeting",
    "create_task",
)


@dataclass(frozen=True)
class User:
    """Summary: Represents the owner of a mailbox.

    Importance: Scopes messages, suggestions, and timezone-aware scheduling.
    Alternatives: Keep a single implicit user without records.
    """

    display_name: str
    email: str
    timezone: str = "UTC"


@dataclass(frozen=True)
class InboundMessage:
    """Summary: An email-like record handed over by the ingestion collaborator.

    Importance: Core unit the suggestion worker turns into actions.
    Alternatives: Store raw provider payloads and parse on demand.
    """

    external_id: str
    sender: str
    subject: str
    body: str
    received_at: datetime


@dataclass(frozen=True)
class Action:
    """Summary: A proposed side-effecting operation.

    Importance: Carries what the UI shows and what execute later dispatches.
    Alternatives: Pass loose dicts from the model output straight through.
    """

    type: str
    title: str
    payload: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.5
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "payload": self.payload,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class SuggestedActionSet:
    """Summary: One generation of suggestions for a message or request.

    Importance: Sets are superseded, never edited, so history stays intact.
    Alternatives: Update a single actions row per message in place.
    """

    kind: str
    actions: list[Action]
    created_at: datetime
    data: dict[str, Any] = field(default_factory=dict)
    followups: list[str] = field(default_factory=list)
    message_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message_id": self.message_id,
            "actions": [action.to_dict() for action in self.actions],
            "data": self.data,
            "followups": self.followups,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ExecutionAudit:
    """Summary: Append-only record of one execution attempt.

    Importance: Guarantees every confirmed action leaves a trace, success or not.
    Alternatives: Rely on application logs for execution history.
    """

    user_id: int | None
    message_id: int
    action_type: str
    payload: dict[str, Any]
    state: str
    result: dict[str, Any] | None
    error: str | None
    timestamp: datetime


@dataclass(frozen=True)
class RecurrenceSpec:
    """Summary: Structured description of a repeating event.

    Importance: Converted into an RRULE string only at the calendar boundary.
    Alternatives: Pass raw RRULE strings around.
    """

    frequency: str
    interval: int = 1
    until: datetime | None = None
    count: int | None = None
    by_day: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency,
            "interval": self.interval,
            "until": self.until.isoformat() if self.until else None,
            "count": self.count,
            "by_day": self.by_day,
        }


@dataclass(frozen=True)
class MeetingSpec:
    """Summary: Resolved meeting request ready for event creation.

    Importance: Is the payload of create_event actions, never persisted on its own.
    Alternatives: Store partially parsed requests and resolve at execution.
    """

    title: str
    start: datetime
    end: datetime
    timezone: str
    description: str = ""
    location: str | None = None
    recurrence: RecurrenceSpec | None = None
    attendees: list[str] = field(default_factory=list)
    source: str = "fallback"

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def to_payload(self) -> dict[str, Any]:
        """Summary: Render the meeting as a create_event action payload.

        Importance: Keeps prepare output and execute input in the same shape.
        Alternatives: Serialize with dataclasses.asdict and convert datetimes later.
        """

        return {
            "title": self.title,
            "description": self.description,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "timezone": self.timezone,
            "location": self.location,
            "attendees": list(self.attendees),
            "recurring": self.recurrence.to_dict() if self.recurrence else None,
            "source": self.source,
        }


@dataclass(frozen=True)
class AiRequest:
    """Summary: Records an AI request for audit and traceability.

    Importance: Provides visibility into prompts and provider usage.
    Alternatives: Log requests only in observability logs.
    """

    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: datetime
    temperature: float | None = None


@dataclass(frozen=True)
class AiResponse:
    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int


ACTION_TYPES = (
    "reply",
    "forward",
    "create_task",
    "create_event",
    "mark_read",
    "mark_as_priority",
    "trash",
)

ACTION_ALIASES = {
    "draft_reply": "reply",
    "create_meeting": "create_event",
    "flag": "mark_as_priority",
    "set_priority": "mark_as_priority",
    "mark_as_read": "mark_read",
    "delete": "trash",
}


def normalize_action_type(action_type: str) -> str:
    """Map legacy and alias action names onto the canonical set."""

    cleaned = (action_type or "").strip().lower()
    return ACTION_ALIASES.get(cleaned, cleaned)
