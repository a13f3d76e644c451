"""Summary: Processor registry, one processor per request kind.

Importance: Each kind owns its detection patterns, context collection, prompt,
and response validation behind a single interface.
Alternatives: Keep a switch statement per kind inside the engine.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from actionpilot.ai import AuditedChat, ChatMessages
from actionpilot.errors import MessageNotFound, ParseError, ValidationError
from actionpilot.extraction import apply_defaults, clamp_confidence, extract_json
from actionpilot.meetings import MeetingResolver
from actionpilot.models import ACTION_TYPES, Action, normalize_action_type
from actionpilot.storage.sqlite_store import SqliteStore, StoredMessage, StoredUser, utc_now

logger = logging.getLogger(__name__)

DEFAULT_ACTION_CONFIDENCE = 0.3
PRIORITY_LEVELS = ("high", "medium", "low")


@dataclass(frozen=True)
class ProcessorRequest:
    kind: str
    user: StoredUser | None
    payload: dict[str, Any]
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> int | None:
        return self.user.id if self.user else None

    @property
    def timezone(self) -> str | None:
        return self.user.timezone if self.user else None


@dataclass(frozen=True)
class ProcessorOutput:
    actions: list[Action]
    data: dict[str, Any] = field(default_factory=dict)
    followups: list[str] = field(default_factory=list)


@dataclass
class ProcessorRuntime:
    """Summary: Shared collaborators handed to every processor run.

    Importance: Processors stay stateless and testable with fakes.
    Alternatives: Give each processor its own store and provider references.
    """

    store: SqliteStore
    chat: AuditedChat | Callable[..., str]
    resolver: MeetingResolver
    clock: Callable[[], datetime] = utc_now


class Processor(ABC):
    """Summary: Versioned interface for one request kind.

    Importance: detect, collect_context, and run are the only entry points the
    engine and classifier use.
    Alternatives: Separate legacy and new registries per kind.
    """

    kind = ""
    version = 2
    temperature = 0.2
    max_tokens = 800
    structured = True
    patterns: tuple[re.Pattern[str], ...] = ()

    def detect(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.patterns)

    def collect_context(self, request: ProcessorRequest, runtime: ProcessorRuntime) -> dict[str, Any]:
        return dict(request.payload)

    @abstractmethod
    def build_prompt(self, context: dict[str, Any]) -> ChatMessages:
        """Build the chat messages for this kind."""

    def validate(self, parsed: dict[str, Any], context: dict[str, Any]) -> ProcessorOutput:
        return ProcessorOutput(actions=[], data=parsed)

    def fallback(self, context: dict[str, Any]) -> ProcessorOutput:
        return ProcessorOutput(actions=[], data={})

    def run(self, request: ProcessorRequest, runtime: ProcessorRuntime) -> ProcessorOutput:
        """Summary: Collect context, call the model, and validate the reply.

        Importance: A reply that is not recoverable JSON yields the safe default,
        never the raw text.
        Alternatives: Propagate ParseError to the caller.
        """

        context = self.collect_context(request, runtime)
        messages = self.build_prompt(context)
        reply = runtime.chat(
            messages,
            temperature=request.options.get("temperature", self.temperature),
            max_tokens=request.options.get("max_tokens", self.max_tokens),
            purpose=self.kind,
            user_id=request.user_id,
            model=request.options.get("model"),
        )
        if not self.structured:
            return self.validate({"response": reply.strip()}, context)
        try:
            parsed = extract_json(reply)
        except ParseError as exc:
            logger.warning("%s reply not parseable, using default: %s", self.kind, exc)
            return self.fallback(context)
        return self.validate(parsed, context)


def _json_system(role: str, schema: str) -> str:
    return f"{role} Respond with ONLY a JSON object, no prose, matching: {schema}"


def _message_block(message: dict[str, Any]) -> str:
    return (
        f"From: {message.get('sender', '')}\n"
        f"Subject: {message.get('subject', '')}\n"
        f"Received: {message.get('received_at', '')}\n\n"
        f"{(message.get('body') or '')[:4000]}"
    )


def _resolve_message(
    context: dict[str, Any], runtime: ProcessorRuntime, user_id: int | None
) -> dict[str, Any]:
    message = context.get("message")
    if message:
        return dict(message)
    message_id = context.get("message_id")
    if message_id is None:
        raise ValidationError("message or message_id is required")
    stored = runtime.store.get_message(int(message_id), user_id=user_id)
    if stored is None:
        raise MessageNotFound(int(message_id))
    return stored.to_dict()


def _string_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value if item]


def normalize_actions(raw_actions: Any) -> list[Action]:
    """Summary: Coerce model-proposed actions into Action records.

    Importance: Unknown action types are dropped and confidences clamped to [0, 1].
    Alternatives: Reject the whole response when one action is malformed.
    """

    actions: list[Action] = []
    if not isinstance(raw_actions, list):
        return actions
    for item in raw_actions:
        if not isinstance(item, dict):
            continue
        action_type = normalize_action_type(str(item.get("type") or ""))
        if action_type not in ACTION_TYPES:
            logger.info("Dropping unsupported action type %r.", item.get("type"))
            continue
        payload = item.get("payload") if isinstance(item.get("payload"), dict) else {}
        actions.append(
            Action(
                type=action_type,
                title=str(item.get("title") or action_type.replace("_", " ").capitalize()),
                payload=payload,
                confidence=clamp_confidence(item.get("confidence")),
                reasoning=str(item.get("reasoning") or ""),
            )
        )
    return actions


def default_action(priority_level: str) -> Action:
    """The low-confidence action used when the model proposes none."""

    if priority_level == "high":
        return Action(
            type="mark_as_priority",
            title="Mark as priority",
            confidence=DEFAULT_ACTION_CONFIDENCE,
            reasoning="High priority message with no specific action suggested.",
        )
    return Action(
        type="mark_read",
        title="Mark as read",
        confidence=DEFAULT_ACTION_CONFIDENCE,
        reasoning="No specific action suggested.",
    )


class EmailActionsProcessor(Processor):
    """Summary: Suggests follow-up actions for one inbound message.

    Importance: Drives the background worker and the prepare phase.
    Alternatives: Rule-based triage without suggestions.
    """

    kind = "email_actions"
    temperature = 0.0
    max_tokens = 900
    patterns = (
        re.compile(r"\b(what should i do|suggest(ed)? actions?|actions? for (this|the) (email|message))\b"),
        re.compile(r"\b(handle|deal with|respond to) (this|the) (email|message)\b"),
    )

    def collect_context(self, request: ProcessorRequest, runtime: ProcessorRuntime) -> dict[str, Any]:
        context = dict(request.payload)
        context["message"] = _resolve_message(context, runtime, request.user_id)
        return context

    def build_prompt(self, context: dict[str, Any]) -> ChatMessages:
        schema = (
            '{"summary": str, "priority_level": "high|medium|low", "category": str, '
            '"actions": [{"type": one of ' + ", ".join(ACTION_TYPES) + ', "title": str, '
            '"payload": object, "confidence": 0..1, "reasoning": str}], "followups": [str]}'
        )
        system = _json_system(
            "You are an email assistant that proposes follow-up actions. Only suggest actions "
            "the message clearly calls for. For create_task use payload {title, notes, due_date}; "
            "for create_event use payload {title, start, end} or {text}; for reply use payload "
            "{body}; for forward use payload {to, note}.",
            schema,
        )
        parts = [_message_block(context["message"])]
        selected = context.get("selected_action")
        if selected:
            parts.append(f"The user selected this action to refine: {selected}")
        busy = context.get("calendar_busy")
        if busy is not None:
            parts.append(f"Busy calendar intervals for the next days: {busy}")
        if context.get("instructions"):
            parts.append(f"User instructions: {context['instructions']}")
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": "\n\n".join(parts)},
        ]

    def validate(self, parsed: dict[str, Any], context: dict[str, Any]) -> ProcessorOutput:
        message = context["message"]
        data = apply_defaults(
            parsed,
            {"summary": message.get("subject") or "", "priority_level": "medium", "category": "general"},
        )
        priority = str(data["priority_level"]).lower()
        if priority not in PRIORITY_LEVELS:
            priority = "medium"
        actions = normalize_actions(data.get("actions"))
        if not actions:
            actions = [default_action(priority)]
        return ProcessorOutput(
            actions=actions,
            data={"summary": data["summary"], "priority_level": priority, "category": data["category"]},
            followups=_string_list(data.get("followups")),
        )

    def fallback(self, context: dict[str, Any]) -> ProcessorOutput:
        message = context["message"]
        return ProcessorOutput(
            actions=[default_action("medium")],
            data={"summary": message.get("subject") or "", "priority_level": "medium", "category": "general"},
        )


class EmailSummaryProcessor(Processor):
    kind = "email_summary"
    temperature = 0.3
    patterns = (
        re.compile(r"\bsummar(y|ize|ise)\b.*\b(emails?|inbox|mail|messages)\b"),
        re.compile(r"\b(emails?|inbox|mail|messages)\b.*\bsummar(y|ize|ise)\b"),
    )

    def collect_context(self, request: ProcessorRequest, runtime: ProcessorRuntime) -> dict[str, Any]:
        context = dict(request.payload)
        if "messages" not in context:
            hours = int(context.get("hours") or 24)
            since = runtime.clock() - timedelta(hours=hours)
            stored = runtime.store.list_messages_since(since, limit=50, user_id=request.user_id)
            context["messages"] = [message.to_dict() for message in stored]
            context["hours"] = hours
        return context

    def build_prompt(self, context: dict[str, Any]) -> ChatMessages:
        listing = "\n".join(
            f"- {message.get('sender', '')}: {message.get('subject', '')}"
            for message in context["messages"]
        )
        return [
            {
                "role": "system",
                "content": _json_system(
                    "You summarize a batch of emails for a busy reader.",
                    '{"summary": str, "highlights": [str], "action_items": [str]}',
                ),
            },
            {"role": "user", "content": listing or "No messages."},
        ]

    def validate(self, parsed: dict[str, Any], context: dict[str, Any]) -> ProcessorOutput:
        data = apply_defaults(parsed, {"summary": "", "highlights": list, "action_items": list})
        data["message_count"] = len(context["messages"])
        return ProcessorOutput(actions=[], data=data)

    def fallback(self, context: dict[str, Any]) -> ProcessorOutput:
        messages = context["messages"]
        return ProcessorOutput(
            actions=[],
            data={
                "summary": f"{len(messages)} messages received.",
                "highlights": [message.get("subject", "") for message in messages[:5]],
                "action_items": [],
                "message_count": len(messages),
            },
        )


class DailyBriefingProcessor(Processor):
    kind = "daily_briefing"
    temperature = 0.4
    patterns = (re.compile(r"\b(briefing|brief me|my day|today'?s agenda|what'?s on today)\b"),)

    def collect_context(self, request: ProcessorRequest, runtime: ProcessorRuntime) -> dict[str, Any]:
        context = dict(request.payload)
        since = runtime.clock() - timedelta(hours=24)
        stored = runtime.store.list_messages_since(since, limit=30, user_id=request.user_id)
        context["messages"] = [message.to_dict() for message in stored]
        context["pending_actions"] = runtime.store.count_pending_actions(user_id=request.user_id)
        context["user_name"] = request.user.display_name if request.user else ""
        return context

    def build_prompt(self, context: dict[str, Any]) -> ChatMessages:
        listing = "\n".join(
            f"- {message.get('subject', '')} (from {message.get('sender', '')})"
            for message in context["messages"]
        )
        return [
            {
                "role": "system",
                "content": _json_system(
                    "You write a short daily briefing for the user.",
                    '{"greeting": str, "overview": str, "priorities": [str], "schedule_notes": str}',
                ),
            },
            {
                "role": "user",
                "content": (
                    f"User: {context['user_name']}\n"
                    f"Pending actions: {context['pending_actions']}\n"
                    f"Recent messages:\n{listing or 'None'}"
                ),
            },
        ]

    def validate(self, parsed: dict[str, Any], context: dict[str, Any]) -> ProcessorOutput:
        data = apply_defaults(
            parsed,
            {"greeting": "Good day", "overview": "", "priorities": list, "schedule_notes": ""},
        )
        data["pending_actions"] = context["pending_actions"]
        return ProcessorOutput(actions=[], data=data)

    def fallback(self, context: dict[str, Any]) -> ProcessorOutput:
        return ProcessorOutput(
            actions=[],
            data={
                "greeting": "Good day",
                "overview": f"{len(context['messages'])} new messages in the last day.",
                "priorities": [message.get("subject", "") for message in context["messages"][:3]],
                "schedule_notes": "",
                "pending_actions": context["pending_actions"],
            },
        )


class MeetingNotesProcessor(Processor):
    """Turns a meeting transcript into a summary and follow-up tasks."""

    kind = "meeting_notes"
    temperature = 0.2
    max_tokens = 1200
    patterns = (re.compile(r"\b(meeting notes|transcript|minutes of|meeting minutes)\b"),)

    def collect_context(self, request: ProcessorRequest, runtime: ProcessorRuntime) -> dict[str, Any]:
        context = dict(request.payload)
        notes = context.get("transcript") or context.get("notes") or context.get("text")
        if not notes:
            raise ValidationError("transcript is required")
        context["transcript"] = str(notes)
        return context

    def build_prompt(self, context: dict[str, Any]) -> ChatMessages:
        return [
            {
                "role": "system",
                "content": _json_system(
                    "You turn meeting transcripts into notes.",
                    '{"summary": str, "decisions": [str], '
                    '"action_items": [{"title": str, "owner": str, "due_date": str}]}',
                ),
            },
            {"role": "user", "content": context["transcript"][:8000]},
        ]

    def validate(self, parsed: dict[str, Any], context: dict[str, Any]) -> ProcessorOutput:
        data = apply_defaults(parsed, {"summary": "", "decisions": list, "action_items": list})
        actions = []
        for item in data["action_items"] if isinstance(data["action_items"], list) else []:
            if isinstance(item, str):
                item = {"title": item}
            if not isinstance(item, dict) or not item.get("title"):
                continue
            actions.append(
                Action(
                    type="create_task",
                    title=str(item["title"]),
                    payload={
                        "title": str(item["title"]),
                        "notes": f"Owner: {item.get('owner') or 'unassigned'}",
                        "due_date": item.get("due_date") or None,
                    },
                    confidence=0.6,
                    reasoning="Action item from meeting notes.",
                )
            )
        return ProcessorOutput(actions=actions, data=data)

    def fallback(self, context: dict[str, Any]) -> ProcessorOutput:
        lines = context["transcript"].strip().splitlines()
        first_line = lines[0] if lines else ""
        return ProcessorOutput(
            actions=[], data={"summary": first_line[:200], "decisions": [], "action_items": []}
        )


class ChatResponseProcessor(Processor):
    kind = "chat_response"
    temperature = 0.6
    structured = False

    def build_prompt(self, context: dict[str, Any]) -> ChatMessages:
        messages: ChatMessages = [
            {
                "role": "system",
                "content": "You are ActionPilot, a concise assistant for email and scheduling.",
            }
        ]
        if context.get("message"):
            block = _message_block(context["message"])
            messages.append({"role": "user", "content": f"Context email:\n{block}"})
        for turn in context.get("conversation") or []:
            if isinstance(turn, dict) and turn.get("content"):
                role = "assistant" if turn.get("role") == "assistant" else "user"
                messages.append({"role": role, "content": str(turn["content"])})
        messages.append({"role": "user", "content": str(context.get("text") or "")})
        return messages

    def validate(self, parsed: dict[str, Any], context: dict[str, Any]) -> ProcessorOutput:
        return ProcessorOutput(actions=[], data={"response": parsed["response"]})


_TASK_PREFIX = re.compile(
    r"^\s*(please\s+)?(remind me to|create (a )?task( to)?|add (a )?task( to)?|todo:?|to-do:?)\s*",
    re.IGNORECASE,
)


class CreateTaskProcessor(Processor):
    kind = "create_task"
    temperature = 0.2
    patterns = (re.compile(r"\b(remind me|to-?do|add (a )?task|create (a )?task|new task)\b"),)

    def build_prompt(self, context: dict[str, Any]) -> ChatMessages:
        return [
            {
                "role": "system",
                "content": _json_system(
                    "You turn requests into a single task.",
                    '{"title": str, "notes": str, "due_date": "YYYY-MM-DD or null"}',
                ),
            },
            {"role": "user", "content": str(context.get("text") or "")},
        ]

    def validate(self, parsed: dict[str, Any], context: dict[str, Any]) -> ProcessorOutput:
        data = apply_defaults(
            parsed, {"title": lambda: _task_title(context), "notes": "", "due_date": None}
        )
        action = Action(
            type="create_task",
            title=str(data["title"]),
            payload={"title": str(data["title"]), "notes": data["notes"], "due_date": data["due_date"]},
            confidence=0.8,
            reasoning="Requested task.",
        )
        return ProcessorOutput(actions=[action], data=data)

    def fallback(self, context: dict[str, Any]) -> ProcessorOutput:
        return self.validate({}, context)


def _task_title(context: dict[str, Any]) -> str:
    title = _TASK_PREFIX.sub("", str(context.get("text") or "")).strip().rstrip(".")
    return (title[0].upper() + title[1:]) if title else "Follow up"


class CreateMeetingProcessor(Processor):
    """Summary: Resolves a scheduling request into a create_event suggestion.

    Importance: Delegates parsing to the meeting resolver, which owns its prompt
    and the deterministic fallback.
    Alternatives: Parse meetings with the generic JSON prompt path.
    """

    kind = "create_meeting"
    temperature = 0.1
    patterns = (
        re.compile(
            r"\b(schedule|book|set up|arrange|create|add|plan)\b.*"
            r"\b(meeting|call|sync|standup|stand-up|appointment|session|review|event)\b"
        ),
        re.compile(
            r"\b(meeting|call|sync|standup|appointment|session)\b.*"
            r"\b(today|tomorrow|monday|tuesday|wednesday|thursday|friday|saturday|sunday"
            r"|\d{1,2}\s*(am|pm))\b"
        ),
    )

    def build_prompt(self, context: dict[str, Any]) -> ChatMessages:
        return [{"role": "user", "content": str(context.get("text") or "")}]

    def run(self, request: ProcessorRequest, runtime: ProcessorRuntime) -> ProcessorOutput:
        context = self.collect_context(request, runtime)
        text = str(context.get("text") or "")
        try:
            spec = runtime.resolver.resolve(
                text,
                timezone_name=request.timezone,
                conversation=context.get("conversation"),
                user_id=request.user_id,
            )
        except ValidationError as exc:
            logger.info("Meeting request needs clarification: %s", exc.message)
            return ProcessorOutput(
                actions=[],
                data={"error": exc.code, "message": exc.message},
                followups=["What date and time should the meeting be?"],
            )
        action = Action(
            type="create_event",
            title=spec.title,
            payload=spec.to_payload(),
            confidence=0.9 if spec.source == "llm" else 0.7,
            reasoning=f"Resolved from request via {spec.source} parser.",
        )
        return ProcessorOutput(actions=[action], data={"meeting": spec.to_payload()})


def build_registry() -> dict[str, Processor]:
    """Summary: Build the kind to processor mapping.

    Importance: Insertion order is the rule-based detection order.
    Alternatives: Register processors via decorators at import time.
    """

    processors: list[Processor] = [
        MeetingNotesProcessor(),
        CreateTaskProcessor(),
        CreateMeetingProcessor(),
        DailyBriefingProcessor(),
        EmailSummaryProcessor(),
        EmailActionsProcessor(),
        ChatResponseProcessor(),
    ]
    return {processor.kind: processor for processor in processors}


def message_payload(message: StoredMessage) -> dict[str, Any]:
    return {"message": message.to_dict(), "message_id": message.id}
