"""Summary: Tolerant JSON recovery and schema defaulting for model output.

Importance: Model text is untrusted, so every structured response goes through here.
Alternatives: Use provider JSON modes and trust the output.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from actionpilot.errors import ParseError

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)")


def extract_json(text: str) -> dict[str, Any]:
    """Summary: Recover a JSON object from free-form model output.

    Importance: Tries the full text, a fenced block, then the outermost braces,
    and then each repair stage over each candidate, re-parsing after every stage.
    Alternatives: Ask the model again until it returns clean JSON.
    """

    if not text or not text.strip():
        raise ParseError("Empty response")
    candidates = _candidates(text)
    for candidate in candidates:
        parsed = _try_parse(candidate)
        if parsed is not None:
            return parsed
    for candidate in candidates:
        for stage in repair_stages(candidate):
            parsed = _try_parse(stage)
            if parsed is not None:
                logger.debug("Recovered JSON after repair.")
                return parsed
    raise ParseError(f"No JSON object found in response: {text[:120]!r}")


def repair_stages(text: str) -> list[str]:
    """Summary: Apply light syntactic repairs to near-JSON text, one at a time.

    Importance: Each stage builds on the previous one, so the least invasive
    repair that parses wins. Quote swapping comes last because it corrupts
    apostrophes inside string values.
    Alternatives: Use a permissive parser such as json5.
    """

    stages = [_TRAILING_COMMA.sub(r"\1", text)]
    stages.append(_BARE_KEY.sub(r'\1"\2"\3', stages[-1]))
    stages.append(stages[-1].replace("'", '"'))
    return stages


def require_fields(data: dict[str, Any], fields: list[str]) -> list[str]:
    """Return the required fields that are missing or empty."""

    missing = []
    for name in fields:
        value = data.get(name)
        if value is None or value == "" or value == []:
            missing.append(name)
    return missing


def apply_defaults(data: dict[str, Any], defaults: dict[str, Any]) -> dict[str, Any]:
    """Summary: Fill fields the model omitted with schema defaults.

    Importance: Downstream code can index fields without guarding every access.
    Alternatives: Reject responses with any missing field.
    """

    merged = dict(data)
    for key, value in defaults.items():
        if merged.get(key) in (None, ""):
            merged[key] = value() if callable(value) else value
    return merged


def clamp_confidence(value: Any, default: float = 0.5) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


def _candidates(text: str) -> list[str]:
    candidates = [text.strip()]
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])
    return candidates


def _try_parse(candidate: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None
