"""Summary: Keyword and regex request-kind detection.

Importance: Gives a deterministic verdict that never waits on the inference service.
Alternatives: Use an LLM-only router and fail when it is unavailable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol


class Detectable(Protocol):
    kind: str

    def detect(self, text: str) -> bool:
        ...


@dataclass(frozen=True)
class RuleBasedClassifier:
    """Summary: Picks the first processor whose patterns match the input.

    Importance: Processor order decides ties, so narrow kinds are listed before
    broad ones (meeting notes before meetings).
    Alternatives: Score every kind and pick the highest count of matches.
    """

    processors: tuple[Detectable, ...]

    @classmethod
    def from_registry(cls, processors: Iterable[Detectable]) -> "RuleBasedClassifier":
        return cls(tuple(processors))

    def classify(self, text: str, context: dict[str, Any] | None = None) -> str:
        """Summary: Return the detected kind for raw input text.

        Importance: Requests about a concrete email default to email_actions and
        everything else to chat_response.
        Alternatives: Return None and force the caller to choose.
        """

        lowered = (text or "").lower()
        for processor in self.processors:
            if processor.detect(lowered):
                return processor.kind
        if context and context.get("message"):
            return "email_actions"
        return "chat_response"
