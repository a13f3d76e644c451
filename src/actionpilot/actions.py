"""Summary: Two-phase action protocol: prepare (read-only) and execute (mutating).

Importance: Separates previewing suggestions from committing side effects, and
records every execution attempt in the audit log.
Alternatives: Execute suggested actions immediately after generation.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from email.message import EmailMessage
from typing import Any, Callable

from actionpilot.errors import (
    ActionPilotError,
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
from actionpilot.meetings import (
    MeetingResolver,
    build_recurrence_rule,
    normalize_attendees,
    parse_when,
    recurrence_from_payload,
    resolve_timezone,
)
from actionpilot.models import (
    EXECUTED,
    EXECUTION_FAILED,
    ExecutionAudit,
    normalize_action_type,
)
from actionpilot.storage.sqlite_store import SqliteStore, StoredMessage, StoredUser, utc_now
from actionpilot.suggestions import SuggestionEngine
from actionpilot.workspace import SCOPES, WorkspaceClient

logger = logging.getLogger(__name__)

DEFAULT_EVENT_MINUTES = 60
DEFAULT_REMINDER = {"method": "email", "minutes": 15}
FREE_BUSY_WINDOW = timedelta(days=3)


@dataclass(frozen=True)
class ActionContext:
    client: WorkspaceClient
    message: StoredMessage
    payload: dict[str, Any]
    resolver: MeetingResolver
    timezone: str
    user_id: int | None


@dataclass(frozen=True)
class ActionHandler:
    """Summary: One executable action type with its scope and payload contract.

    Importance: The scope drives permission-error messaging for this action.
    Alternatives: Branch on action strings inside execute.
    """

    action_type: str
    scope: str
    required_fields: tuple[str, ...]
    run: Callable[[ActionContext], dict[str, Any]]


@dataclass(frozen=True)
class ExecutionResult:
    ok: bool
    action_type: str
    message_id: int
    result: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "actionType": self.action_type, "result": self.result}


def _mark_read(context: ActionContext) -> dict[str, Any]:
    return context.client.mark_read(context.message.external_id)


def _mark_as_priority(context: ActionContext) -> dict[str, Any]:
    return context.client.mark_important(context.message.external_id)


def _trash(context: ActionContext) -> dict[str, Any]:
    return context.client.trash(context.message.external_id)


def _reply(context: ActionContext) -> dict[str, Any]:
    message = context.message
    subject = message.subject
    if not subject.lower().startswith("re:"):
        subject = f"Re: {subject}"
    raw = build_raw_message(message.sender, subject, str(context.payload["body"]))
    return context.client.send(raw, thread_id=context.payload.get("thread_id"))


def _forward(context: ActionContext) -> dict[str, Any]:
    message = context.message
    note = str(context.payload.get("note") or context.payload.get("body") or "")
    body = (
        f"{note}\n\n---------- Forwarded message ----------\n"
        f"From: {message.sender}\nSubject: {message.subject}\n\n{message.body}"
    ).lstrip()
    raw = build_raw_message(str(context.payload["to"]), f"Fwd: {message.subject}", body)
    return context.client.send(raw)


def _create_task(context: ActionContext) -> dict[str, Any]:
    payload = context.payload
    message = context.message
    notes = payload.get("notes") or f"From email: {message.subject} ({message.sender})"
    return context.client.create_task(
        title=str(payload["title"]), notes=str(notes), due_date=payload.get("due_date") or None
    )


def _create_event(context: ActionContext) -> dict[str, Any]:
    """Summary: Create a calendar event from resolved times or free text.

    Importance: Free text goes through the meeting resolver; explicit times are
    validated the same way before any calendar write.
    Alternatives: Require resolved times for every create_event call.
    """

    payload = context.payload
    tz = resolve_timezone(str(payload.get("timezone") or context.timezone))
    tz_name = str(payload.get("timezone") or context.timezone)
    start_raw = payload.get("start") or payload.get("start_time")
    end_raw = payload.get("end") or payload.get("end_time")
    text = payload.get("text") or payload.get("request")
    recurrence = recurrence_from_payload(payload.get("recurring"), tz)
    title = str(payload.get("title") or payload.get("summary") or "")
    description = str(payload.get("description") or "")
    attendees = normalize_attendees(payload.get("attendees"))
    location = payload.get("location") or None
    if start_raw:
        start = parse_when(start_raw, tz, "start")
        if end_raw:
            end = parse_when(end_raw, tz, "end")
        else:
            end = start + timedelta(minutes=DEFAULT_EVENT_MINUTES)
        if end <= start:
            raise ValidationError("end_time must be after start_time")
    elif text:
        spec = context.resolver.resolve(str(text), timezone_name=tz_name, user_id=context.user_id)
        start, end = spec.start, spec.end
        title = title or spec.title
        description = description or spec.description
        attendees = attendees or spec.attendees
        location = location or spec.location
        recurrence = recurrence or spec.recurrence
    else:
        raise MissingField("event_times")
    if not description:
        description = f"Created from email: {context.message.subject}"
    return context.client.create_event(
        summary=title or context.message.subject or "Meeting",
        description=description,
        start=start.isoformat(),
        end=end.isoformat(),
        timezone=tz_name,
        attendees=attendees,
        recurrence_rule=build_recurrence_rule(recurrence) if recurrence else None,
        reminders=normalize_reminders(payload.get("reminders")),
        location=location,
    )


def normalize_reminders(value: Any) -> list[dict[str, Any]]:
    """Coerce reminder overrides, defaulting to one email reminder."""

    if not value:
        return [dict(DEFAULT_REMINDER)]
    items = value if isinstance(value, list) else [value]
    reminders = []
    for item in items:
        if isinstance(item, (int, float)):
            item = {"minutes": item}
        if not isinstance(item, dict):
            continue
        method = item.get("method") if item.get("method") in ("email", "popup") else "email"
        try:
            minutes = int(item.get("minutes", DEFAULT_REMINDER["minutes"]))
        except (TypeError, ValueError) as exc:
            raise ValidationError("reminder minutes must be a number") from exc
        reminders.append({"method": method, "minutes": minutes})
    return reminders or [dict(DEFAULT_REMINDER)]


def build_raw_message(to: str, subject: str, body: str) -> str:
    """Summary: Build a base64url-encoded RFC 822 message for sending.

    Importance: Matches the raw format mailbox send APIs expect.
    Alternatives: Hand-assemble header lines with CRLF separators.
    """

    message = EmailMessage()
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


def build_handler_table() -> dict[str, ActionHandler]:
    """Summary: Register every executable action once.

    Importance: Fails at import when a handler names a scope outside the fixed set.
    Alternatives: Validate scopes lazily when a permission error occurs.
    """

    handlers = [
        ActionHandler("mark_read", "mailbox-modify", (), _mark_read),
        ActionHandler("mark_as_priority", "mailbox-modify", (), _mark_as_priority),
        ActionHandler("trash", "mailbox-modify", (), _trash),
        ActionHandler("reply", "mailbox-send", ("body",), _reply),
        ActionHandler("forward", "mailbox-send", ("to",), _forward),
        ActionHandler("create_task", "tasks", ("title",), _create_task),
        ActionHandler("create_event", "calendar", (), _create_event),
    ]
    table = {handler.action_type: handler for handler in handlers}
    unknown = [handler.action_type for handler in handlers if handler.scope not in SCOPES]
    if unknown:
        raise ValueError(f"Handlers with unknown scopes: {unknown}")
    return table


ACTION_HANDLERS = build_handler_table()


@dataclass
class ActionService:
    """Summary: Prepares and executes suggested actions for stored messages.

    Importance: Execute is the only path that mutates external services, and it
    always writes an audit row.
    Alternatives: Let the UI call workspace clients directly.
    """

    store: SqliteStore
    engine: SuggestionEngine
    client: WorkspaceClient
    resolver: MeetingResolver
    remediation_url: str = "/settings/permissions"
    reauth_url: str = "/auth/google"
    default_timezone: str = "UTC"
    clock: Callable[[], datetime] = utc_now
    handlers: dict[str, ActionHandler] = field(default_factory=lambda: dict(ACTION_HANDLERS))

    def prepare(
        self,
        message_id: int,
        selected_action: dict[str, Any] | str | None = None,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        """Summary: Generate a fresh suggestion set without side effects.

        Importance: Only the new SuggestedActionSet is written; scheduling hints
        add a free/busy lookup to the context.
        Alternatives: Reuse the worker's last suggestion set as-is.
        """

        message = self._get_message(message_id, user_id)
        user = self._owner(message)
        context: dict[str, Any] = {"message": message.to_dict(), "message_id": message.id}
        if isinstance(selected_action, str):
            selected_action = {"type": selected_action}
        if selected_action:
            context["selected_action"] = selected_action
            if normalize_action_type(str(selected_action.get("type") or "")) == "create_event":
                context["calendar_busy"] = self._busy_intervals()
        action_set = self.engine.generate_suggestions(
            "email_actions", user, context, message_id=message.id
        )
        set_id = self.store.save_action_set(action_set, user_id=message.user_id)
        logger.info("Prepared %s actions for message %s.", len(action_set.actions), message.id)
        return {
            "actions": [action.to_dict() for action in action_set.actions],
            "followups": action_set.followups,
            "actionSetId": set_id,
        }

    def execute(
        self,
        message_id: int,
        action_type: str,
        payload: dict[str, Any] | None = None,
        user_id: int | None = None,
    ) -> ExecutionResult:
        """Summary: Execute one confirmed action against the external service.

        Importance: actioned flips only on success; a repeat of an executed
        action is rejected before any remote call. Every dispatched attempt
        leaves one audit row.
        Alternatives: Retry failed executions automatically.
        """

        message = self._get_message(message_id, user_id)
        canonical = normalize_action_type(action_type)
        payload = dict(payload or {})
        handler = self.handlers.get(canonical)
        if handler is None:
            raise UnknownAction(action_type)
        if self.store.has_executed_action(message.id, canonical):
            raise AlreadyExecuted(message.id, canonical)
        for name in handler.required_fields:
            if payload.get(name) in (None, ""):
                raise MissingField(name)
        owner = self._owner(message)
        context = ActionContext(
            client=self.client,
            message=message,
            payload=payload,
            resolver=self.resolver,
            timezone=owner.timezone if owner else self.default_timezone,
            user_id=message.user_id,
        )
        try:
            result = handler.run(context)
        except ExternalServiceError as exc:
            error = self._classify(exc, handler.scope)
            self._record_failure(message, canonical, payload, error)
            raise error from exc
        except ActionPilotError as exc:
            self._record_failure(message, canonical, payload, exc)
            raise
        except Exception as exc:
            error = TransientError(f"{type(exc).__name__}: {exc}")
            self._record_failure(message, canonical, payload, error)
            raise error from exc
        self._audit(message, canonical, payload, EXECUTED, result, None)
        self.store.mark_actioned(message.id)
        logger.info("Executed %s for message %s.", canonical, message.id)
        return ExecutionResult(ok=True, action_type=canonical, message_id=message.id, result=result)

    def _classify(self, exc: ExternalServiceError, scope: str) -> ActionPilotError:
        if exc.status == 403:
            return InsufficientPermissions(scope, self.remediation_url, str(exc))
        if exc.status == 401:
            return TokenExpired(self.reauth_url, str(exc))
        return TransientError(str(exc))

    def _record_failure(
        self,
        message: StoredMessage,
        action_type: str,
        payload: dict[str, Any],
        error: ActionPilotError,
    ) -> None:
        self._audit(
            message, action_type, payload, EXECUTION_FAILED, None, f"{error.code}: {error.message}"
        )
        logger.warning("Action %s on message %s failed: %s", action_type, message.id, error.code)

    def _busy_intervals(self) -> list[dict[str, str]]:
        now = self.clock()
        try:
            return self.client.free_busy_query(
                now.isoformat(), (now + FREE_BUSY_WINDOW).isoformat()
            )
        except ExternalServiceError as exc:
            logger.warning("Free/busy lookup failed, preparing without it: %s", exc)
            return []

    def _audit(
        self,
        message: StoredMessage,
        action_type: str,
        payload: dict[str, Any],
        state: str,
        result: dict[str, Any] | None,
        error: str | None,
    ) -> None:
        self.store.add_execution_audit(
            ExecutionAudit(
                user_id=message.user_id,
                message_id=message.id,
                action_type=action_type,
                payload=payload,
                state=state,
                result=result,
                error=error,
                timestamp=self.clock(),
            )
        )

    def _get_message(self, message_id: int, user_id: int | None) -> StoredMessage:
        message = self.store.get_message(message_id, user_id=user_id)
        if message is None:
            raise MessageNotFound(message_id)
        return message

    def _owner(self, message: StoredMessage) -> StoredUser | None:
        return self.store.get_user(message.user_id) if message.user_id is not None else None
