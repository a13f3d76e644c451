"""Summary: Suggestion engine over the processor registry.

Importance: Single entrypoint that turns a request kind and context into a
SuggestedActionSet, with two-stage kind detection.
Alternatives: Call processors directly from the worker and the API.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from actionpilot.ai import AuditedChat
from actionpilot.classifier import RuleBasedClassifier
from actionpilot.errors import TransientError, UnknownRequestKind
from actionpilot.meetings import MeetingResolver
from actionpilot.models import REQUEST_KINDS, SuggestedActionSet
from actionpilot.processors import (
    Processor,
    ProcessorRequest,
    ProcessorRuntime,
    build_registry,
)
from actionpilot.storage.sqlite_store import SqliteStore, StoredUser, utc_now

logger = logging.getLogger(__name__)

DETECTION_TEMPERATURE = 0.1
DETECTION_MAX_TOKENS = 10


@dataclass
class SuggestionEngine:
    """Summary: Generates suggestion sets for any supported request kind.

    Importance: Inference failures surface as TransientError so the retry
    controller can count them; unparseable replies never escape a processor.
    Alternatives: Let each caller talk to the AI provider itself.
    """

    store: SqliteStore
    chat: AuditedChat | Callable[..., str]
    resolver: MeetingResolver
    clock: Callable[[], datetime] = utc_now
    briefing_ttl: timedelta = timedelta(hours=2)
    registry: dict[str, Processor] = field(default_factory=build_registry)
    _briefings: dict[int | None, tuple[datetime, SuggestedActionSet]] = field(
        default_factory=dict, init=False, repr=False
    )

    def __post_init__(self) -> None:
        self.classifier = RuleBasedClassifier.from_registry(self.registry.values())
        self.runtime = ProcessorRuntime(
            store=self.store, chat=self.chat, resolver=self.resolver, clock=self.clock
        )

    def generate_suggestions(
        self,
        kind: str,
        user: StoredUser | None,
        context_payload: dict[str, Any],
        options: dict[str, Any] | None = None,
        message_id: int | None = None,
    ) -> SuggestedActionSet:
        """Summary: Run the processor for a kind and wrap its output.

        Importance: Every kind returns the same SuggestedActionSet shape;
        kinds without actions carry their result in data.
        Alternatives: Return kind-specific result objects.
        """

        processor = self.registry.get(kind)
        if processor is None:
            raise UnknownRequestKind(kind)
        options = options or {}
        user_id = user.id if user else None
        if kind == "daily_briefing" and not options.get("refresh"):
            cached = self._briefings.get(user_id)
            if cached and cached[0] > self.clock():
                logger.info("Serving cached daily briefing for user %s.", user_id)
                return cached[1]
        request = ProcessorRequest(kind=kind, user=user, payload=context_payload, options=options)
        output = processor.run(request, self.runtime)
        result = SuggestedActionSet(
            kind=kind,
            actions=output.actions,
            created_at=self.clock(),
            data=output.data,
            followups=output.followups,
            message_id=message_id if message_id is not None else context_payload.get("message_id"),
        )
        if kind == "daily_briefing":
            self._briefings[user_id] = (self.clock() + self.briefing_ttl, result)
        logger.info("Generated %s with %s actions.", kind, len(result.actions))
        return result

    def detect_kind(
        self,
        text: str,
        context: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        user_id: int | None = None,
    ) -> str:
        """Summary: Detect the request kind with the model, falling back to rules.

        Importance: The rule verdict is computed first so a slow or missing
        model never blocks routing.
        Alternatives: Route purely on keywords.
        """

        rule_kind = self.classifier.classify(text, context)
        options = options or {}
        if options.get("use_llm", True) is False:
            return rule_kind
        labels = ", ".join(REQUEST_KINDS)
        messages = [
            {
                "role": "system",
                "content": (
                    "Classify the user's request. Reply with exactly one label from: "
                    f"{labels}. No other words."
                ),
            },
            {"role": "user", "content": text},
        ]
        try:
            reply = self.chat(
                messages,
                temperature=DETECTION_TEMPERATURE,
                max_tokens=DETECTION_MAX_TOKENS,
                purpose="detect_kind",
                user_id=user_id,
                model=options.get("model"),
            )
        except TransientError as exc:
            logger.warning("Kind detection fell back to rules: %s", exc)
            return rule_kind
        label = reply.strip().strip(".\"'`").lower().replace("-", "_").replace(" ", "_")
        if label in REQUEST_KINDS:
            return label
        logger.info("Model label %r outside known kinds; using %s.", reply[:40], rule_kind)
        return rule_kind


def process_email(
    engine: SuggestionEngine,
    user: StoredUser | None,
    message: dict[str, Any],
    options: dict[str, Any] | None = None,
) -> SuggestedActionSet:
    """Legacy entrypoint kept as a thin adapter over email_actions."""

    return engine.generate_suggestions(
        "email_actions",
        user,
        {"message": message, "message_id": message.get("id")},
        options,
        message_id=message.get("id"),
    )


def intelligent_process(
    engine: SuggestionEngine,
    user: StoredUser | None,
    text: str,
    context: dict[str, Any] | None = None,
    options: dict[str, Any] | None = None,
) -> SuggestedActionSet:
    """Summary: Detect the kind for free text and run it.

    Importance: Backs chat-style requests where the caller does not know the kind.
    Alternatives: Require the caller to pass an explicit kind.
    """

    payload = dict(context or {})
    payload.setdefault("text", text)
    kind = engine.detect_kind(text, payload, options, user_id=user.id if user else None)
    return engine.generate_suggestions(kind, user, payload, options)
