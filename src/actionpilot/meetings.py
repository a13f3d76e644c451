"""Summary: Natural-language meeting resolution and recurrence rules.

Importance: Turns free-text scheduling requests into validated time ranges.
The deterministic parser runs whenever the model cannot produce usable times,
so calendar writes never depend on inference availability alone.
Alternatives: Use dateparser or a hosted scheduling assistant.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from actionpilot.ai import AuditedChat
from actionpilot.errors import MissingDatetime, ParseError, TransientError, ValidationError
from actionpilot.extraction import extract_json
from actionpilot.models import MeetingSpec, RecurrenceSpec
from actionpilot.storage.sqlite_store import utc_now

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
RRULE_DAYS = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
FREQUENCIES = {"daily": "DAILY", "weekly": "WEEKLY", "monthly": "MONTHLY", "yearly": "YEARLY"}
DEFAULT_DURATION_MINUTES = 60
QUICK_DURATION_MINUTES = 30
FALLBACK_DURATION_MINUTES = 30
DEFAULT_TITLE = "Meeting"

_QUICK = re.compile(r"\b(quick|standup|stand-up|stand up|check-in|check in|huddle)\b")
_WEEKDAY = r"(monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
_RANGE = re.compile(
    r"(?<![\d\-])(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm)?\s*(?:to|-|–)\s*"
    r"(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm)?(?![\d\-])"
)
_TIME_PATTERNS = (
    re.compile(r"(?<![\d\-])(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm)\b"),
    re.compile(r"(?<![\d\-])(\d{1,2}):(\d{2})(?![\d\-])()"),
    re.compile(r"\bat\s+(\d{1,2})()()(?![\d:.\-])"),
)
_NOON = re.compile(r"\bnoon\b")
_EVERY = re.compile(r"\bevery\s+(?:(\d+)\s+)?(day|weekday|week|month|year|" + _WEEKDAY + r")s?\b")
_ADVERB = re.compile(r"\b(daily|weekly|monthly|yearly)\b")
_COUNT = re.compile(r"\bfor\s+(\d+)\s+(?:weeks|days|months|times|occurrences|sessions)\b")
_WEEKDAY_ANCHOR = re.compile(r"\b(?:next\s+|on\s+)?" + _WEEKDAY + r"\b")

_TIME_TOKEN = re.compile(r"^(\d{1,2}([:.]\d{2})?(am|pm)?|am|pm|noon|midnight|-|–)$")
_STOP_WORDS = {
    "create", "schedule", "book", "set", "setup", "up", "add", "arrange", "plan",
    "organize", "organise", "make", "put", "please", "can", "could", "you", "i",
    "me", "we", "us", "let's", "lets", "a", "an", "the", "new", "at", "on", "to",
    "from", "for", "in", "every", "next", "this", "today", "tomorrow", "tonight",
    "morning", "afternoon", "evening", "day", "week", "month", "daily", "weekly",
    "monthly", "yearly", "weekday", "minutes", "minute", "hour", "hours", "mins",
}
_GENERIC = {"meeting", "call", "event", "appointment", "session", "invite", "calendar", "with"}
_TOPIC_KEYWORD = re.compile(r"\b(project|team|review|standup)\s+([A-Za-z][\w-]+)", re.IGNORECASE)
_TOPIC_PHRASE = re.compile(
    r"\b(?:about|for|regarding)\s+(?:the\s+)?([A-Za-z][\w\s-]{2,40}?)(?=[.,!?;]|$)",
    re.IGNORECASE,
)

ChatFn = Callable[..., str]


@dataclass
class MeetingResolver:
    """Summary: Multi-stage resolver from free text to a MeetingSpec.

    Importance: Tries a strict LLM parse, validates and completes it, falls back
    to a regex parser, then infers a title.
    Alternatives: Require users to fill a structured event form.
    """

    chat: AuditedChat | ChatFn | None = None
    clock: Callable[[], datetime] = utc_now
    default_timezone: str = "UTC"

    def resolve(
        self,
        text: str,
        timezone_name: str | None = None,
        conversation: list[Any] | None = None,
        user_id: int | None = None,
    ) -> MeetingSpec:
        """Summary: Resolve a scheduling request into a concrete meeting.

        Importance: Raises ValidationError for inverted or unparseable ranges and
        MissingDatetime when no stage finds a time.
        Alternatives: Return partial specs and let the caller fill gaps.
        """

        tz_name = timezone_name or self.default_timezone
        tz = resolve_timezone(tz_name)
        now = self.clock().astimezone(tz)
        parsed = self._llm_parse(text, now, tz_name, conversation, user_id)
        llm_missing = bool(parsed) and parsed.get("error") == "missing_datetime"
        if parsed and not llm_missing and parsed.get("start_time"):
            spec = complete_from_llm(parsed, text, tz, tz_name)
        else:
            spec = fallback_parse(text, now, tz, tz_name)
            if spec is None:
                if llm_missing:
                    logger.info("Model and fallback parser both found no datetime.")
                raise MissingDatetime()
            if parsed and parsed.get("title") and not llm_missing:
                spec = _with_title(spec, str(parsed["title"]).strip())
        if not spec.title or spec.title.lower() in _GENERIC:
            spec = _with_title(spec, infer_title(text, conversation))
        logger.info("Resolved meeting %r via %s at %s.", spec.title, spec.source, spec.start)
        return spec

    def _llm_parse(
        self,
        text: str,
        now: datetime,
        tz_name: str,
        conversation: list[Any] | None,
        user_id: int | None,
    ) -> dict[str, Any] | None:
        if self.chat is None:
            return None
        messages = build_meeting_prompt(text, now, tz_name, conversation)
        try:
            reply = self.chat(
                messages, temperature=0.1, max_tokens=400, purpose="create_meeting", user_id=user_id
            )
            return extract_json(reply)
        except ParseError:
            logger.info("Meeting parse returned no JSON; using fallback parser.")
        except TransientError as exc:
            logger.warning("Meeting parse unavailable (%s); using fallback parser.", exc)
        return None


def build_meeting_prompt(
    text: str, now: datetime, tz_name: str, conversation: list[Any] | None = None
) -> list[dict[str, str]]:
    """Summary: Build the strict extraction prompt with date-anchored examples.

    Importance: Few-shot dates are computed from now, which pins the model's
    date arithmetic to the user's calendar.
    Alternatives: Ask the model to compute dates without examples.
    """

    tomorrow = (now + timedelta(days=1)).date()
    days_to_monday = (0 - now.weekday()) % 7 or 7
    next_monday = (now + timedelta(days=days_to_monday)).date()
    examples = [
        (
            "lunch with Ana tomorrow at 1pm",
            {
                "title": "Lunch with Ana",
                "start_time": f"{tomorrow.isoformat()}T13:00:00",
                "end_time": f"{tomorrow.isoformat()}T14:00:00",
                "duration_minutes": 60,
            },
        ),
        (
            "weekly team sync every monday at 10",
            {
                "title": "Team sync",
                "start_time": f"{next_monday.isoformat()}T10:00:00",
                "duration_minutes": 60,
                "recurring": {"frequency": "weekly", "interval": 1},
            },
        ),
        ("let's catch up sometime", {"error": "missing_datetime"}),
    ]
    shots = "\n".join(f"Input: {sample}\nOutput: {json.dumps(output)}" for sample, output in examples)
    system = (
        "You extract calendar events. Respond with ONLY a JSON object with keys "
        "title, description, start_time, end_time, duration_minutes, location, attendees, "
        "recurring {frequency, interval, until, count}. Use ISO 8601 local times without offset. "
        'If the request has no concrete date or time respond with {"error": "missing_datetime"}.\n'
        f"Current date: {now.strftime('%A')} {now.date().isoformat()} "
        f"{now.strftime('%H:%M')} ({tz_name}).\n\n{shots}"
    )
    messages = [{"role": "system", "content": system}]
    for turn in (conversation or [])[-4:]:
        role, content = _turn_parts(turn)
        messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": text})
    return messages


def complete_from_llm(
    data: dict[str, Any], text: str, tz: tzinfo, tz_name: str
) -> MeetingSpec:
    """Summary: Validate model output and fill in a missing end time.

    Importance: An inverted or unparseable range is rejected, never guessed.
    Alternatives: Swap start and end when they arrive inverted.
    """

    start = parse_when(data.get("start_time"), tz, "start_time")
    if data.get("end_time"):
        end = parse_when(data.get("end_time"), tz, "end_time")
    else:
        try:
            duration = int(data.get("duration_minutes") or default_duration(text))
        except (TypeError, ValueError) as exc:
            raise ValidationError("duration_minutes is not a number") from exc
        end = start + timedelta(minutes=duration)
    if end <= start:
        raise ValidationError("end_time must be after start_time")
    return MeetingSpec(
        title=str(data.get("title") or "").strip(),
        description=str(data.get("description") or ""),
        start=start,
        end=end,
        timezone=tz_name,
        location=data.get("location") or None,
        recurrence=recurrence_from_payload(data.get("recurring"), tz),
        attendees=normalize_attendees(data.get("attendees")),
        source="llm",
    )


def fallback_parse(text: str, now: datetime, tz: tzinfo, tz_name: str) -> MeetingSpec | None:
    """Summary: Deterministic regex parse of time, date anchor, and recurrence.

    Importance: Works without inference, so scheduling degrades instead of failing.
    Alternatives: Refuse scheduling whenever the model is unavailable.
    """

    lowered = text.lower()
    span = _find_time_range(lowered)
    if span is None:
        return None
    start_time, end_time = span
    recurrence = _find_recurrence(lowered)
    anchor = _find_anchor(lowered, recurrence)
    start = _anchor_datetime(anchor, start_time, now, tz)
    if end_time is not None:
        end = datetime.combine(start.date(), end_time, tzinfo=tz)
        if end <= start:
            raise ValidationError("end_time must be after start_time")
    else:
        end = start + timedelta(minutes=FALLBACK_DURATION_MINUTES)
    return MeetingSpec(
        title="",
        start=start,
        end=end,
        timezone=tz_name,
        recurrence=recurrence,
        source="fallback",
    )


def infer_title(text: str, conversation: list[Any] | None = None) -> str:
    """Summary: Derive a title from the request or the recent conversation.

    Importance: Events get a meaningful name even when the model gave none.
    Alternatives: Always title events with the raw request text.
    """

    kept = []
    for token in text.split():
        bare = token.strip(".,!?;:'\"()").lower()
        if not bare or bare in _STOP_WORDS or bare in WEEKDAYS or _TIME_TOKEN.match(bare):
            continue
        if bare.rstrip("s") in WEEKDAYS:
            continue
        kept.append(token.strip(".,!?;:'\"()"))
    residue = " ".join(kept).strip()
    meaningful = [word for word in residue.lower().split() if word not in _GENERIC]
    if meaningful and len(residue) >= 3:
        return residue[0].upper() + residue[1:]
    for turn in reversed(conversation or []):
        _, content = _turn_parts(turn)
        keyword = _TOPIC_KEYWORD.search(content)
        if keyword:
            return f"{keyword.group(1).capitalize()} {keyword.group(2)}"
        phrase = _TOPIC_PHRASE.search(content)
        if phrase:
            topic = phrase.group(1).strip()
            return topic[0].upper() + topic[1:]
    return DEFAULT_TITLE


def default_duration(text: str) -> int:
    return QUICK_DURATION_MINUTES if _QUICK.search(text.lower()) else DEFAULT_DURATION_MINUTES


def normalize_attendees(value: Any) -> list[str]:
    """Accept a list of addresses or one comma-separated string."""

    if not value:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    raise ValidationError("attendees must be a list of email addresses")


def parse_when(value: Any, tz: tzinfo, field_name: str) -> datetime:
    """Parse an ISO timestamp, attaching the user's timezone when it has none."""

    if not value or not isinstance(value, str):
        raise ValidationError(f"{field_name} is missing")
    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError as exc:
        raise ValidationError(f"{field_name} is not a valid timestamp") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def recurrence_from_payload(data: Any, tz: tzinfo) -> RecurrenceSpec | None:
    """Summary: Build a RecurrenceSpec from a model or API payload.

    Importance: Accepts the same shape from the resolver and from execute payloads.
    Alternatives: Accept RRULE strings from callers directly.
    """

    if not data or not isinstance(data, dict):
        return None
    if data.get("enabled") is False or not data.get("frequency"):
        return None
    frequency = str(data["frequency"]).lower()
    if frequency not in FREQUENCIES:
        raise ValidationError(f"unsupported recurrence frequency: {frequency}")
    try:
        interval = int(data.get("interval") or 1)
        count = int(data["count"]) if data.get("count") else None
    except (TypeError, ValueError) as exc:
        raise ValidationError("recurrence interval and count must be numbers") from exc
    if interval < 1:
        raise ValidationError("recurrence interval must be positive")
    until = None
    if data.get("until"):
        raw_until = str(data["until"])
        if len(raw_until) == 10:
            try:
                until_date = date.fromisoformat(raw_until)
            except ValueError as exc:
                raise ValidationError("recurrence until is not a valid date") from exc
            until = datetime.combine(until_date, time(23, 59, 59), tzinfo=tz)
        else:
            until = parse_when(raw_until, tz, "until")
    return RecurrenceSpec(
        frequency=frequency,
        interval=interval,
        until=until,
        count=None if until else count,
        by_day=data.get("by_day") or None,
    )


def build_recurrence_rule(recurrence: RecurrenceSpec) -> str:
    """Summary: Render a RecurrenceSpec as an RFC 5545 RRULE line.

    Importance: An until date wins over a count so the rule has one end condition.
    Alternatives: Use dateutil.rrule to build and serialize rules.
    """

    frequency = FREQUENCIES.get(recurrence.frequency.lower())
    if frequency is None:
        raise ValidationError(f"unsupported recurrence frequency: {recurrence.frequency}")
    parts = [f"FREQ={frequency}"]
    if recurrence.interval > 1:
        parts.append(f"INTERVAL={recurrence.interval}")
    if recurrence.by_day:
        parts.append(f"BYDAY={recurrence.by_day}")
    if recurrence.until is not None:
        until = recurrence.until.astimezone(timezone.utc)
        parts.append(f"UNTIL={until.strftime('%Y%m%dT%H%M%SZ')}")
    elif recurrence.count:
        parts.append(f"COUNT={recurrence.count}")
    return "RRULE:" + ";".join(parts)


def resolve_timezone(name: str) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"unknown timezone: {name}") from exc


def _find_time_range(lowered: str) -> tuple[time, time | None] | None:
    match = _RANGE.search(lowered)
    if match and (match.group(3) or match.group(6) or match.group(2) or match.group(5)):
        end_hour = _to_24h(int(match.group(4)), match.group(6))
        end_minute = int(match.group(5) or 0)
        start_hour = _start_hour(int(match.group(1)), match.group(3), match.group(6), end_hour)
        start_minute = int(match.group(2) or 0)
        if _valid(start_hour, start_minute) and _valid(end_hour, end_minute):
            return time(start_hour, start_minute), time(end_hour, end_minute)
    if _NOON.search(lowered):
        return time(12, 0), None
    for pattern in _TIME_PATTERNS:
        match = pattern.search(lowered)
        if not match:
            continue
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        meridiem = match.group(3) or None
        if meridiem and not 1 <= hour <= 12:
            return None
        hour = _to_24h(hour, meridiem)
        if not _valid(hour, minute):
            return None
        return time(hour, minute), None
    return None


def _start_hour(hour: int, meridiem: str | None, end_meridiem: str | None, end_hour: int) -> int:
    if meridiem:
        return _to_24h(hour, meridiem)
    if not end_meridiem:
        return hour
    candidate = _to_24h(hour, end_meridiem)
    if candidate > end_hour:
        candidate = _to_24h(hour, "am" if end_meridiem == "pm" else "pm")
    return candidate


def _to_24h(hour: int, meridiem: str | None) -> int:
    if meridiem == "am":
        return 0 if hour == 12 else hour
    if meridiem == "pm":
        return hour if hour == 12 else hour + 12
    return hour


def _valid(hour: int, minute: int) -> bool:
    return 0 <= hour <= 23 and 0 <= minute <= 59


def _find_recurrence(lowered: str) -> RecurrenceSpec | None:
    count_match = _COUNT.search(lowered)
    count = int(count_match.group(1)) if count_match else None
    every = _EVERY.search(lowered)
    if every:
        interval = int(every.group(1) or 1)
        unit = every.group(2)
        if unit in WEEKDAYS:
            return RecurrenceSpec(
                frequency="weekly",
                interval=interval,
                count=count,
                by_day=RRULE_DAYS[WEEKDAYS.index(unit)],
            )
        if unit == "weekday":
            return RecurrenceSpec(
                frequency="weekly", interval=interval, count=count, by_day="MO,TU,WE,TH,FR"
            )
        frequency = {"day": "daily", "week": "weekly", "month": "monthly", "year": "yearly"}[unit]
        return RecurrenceSpec(frequency=frequency, interval=interval, count=count)
    adverb = _ADVERB.search(lowered)
    if adverb:
        return RecurrenceSpec(frequency=adverb.group(1), count=count)
    return None


def _find_anchor(lowered: str, recurrence: RecurrenceSpec | None) -> str | int | None:
    if re.search(r"\btomorrow\b", lowered):
        return "tomorrow"
    if re.search(r"\b(today|tonight)\b", lowered):
        return "today"
    weekday = _WEEKDAY_ANCHOR.search(lowered)
    if weekday:
        return WEEKDAYS.index(weekday.group(1))
    if recurrence and recurrence.by_day and "," not in recurrence.by_day:
        return RRULE_DAYS.index(recurrence.by_day)
    return None


def _anchor_datetime(anchor: str | int | None, at: time, now: datetime, tz: tzinfo) -> datetime:
    today = now.date()
    if anchor == "today":
        return datetime.combine(today, at, tzinfo=tz)
    if anchor == "tomorrow":
        return datetime.combine(today + timedelta(days=1), at, tzinfo=tz)
    if isinstance(anchor, int):
        days_ahead = (anchor - today.weekday()) % 7
        candidate = datetime.combine(today + timedelta(days=days_ahead), at, tzinfo=tz)
        if candidate <= now:
            candidate += timedelta(days=7)
        return candidate
    candidate = datetime.combine(today, at, tzinfo=tz)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def _with_title(spec: MeetingSpec, title: str) -> MeetingSpec:
    return MeetingSpec(
        title=title,
        start=spec.start,
        end=spec.end,
        timezone=spec.timezone,
        description=spec.description,
        location=spec.location,
        recurrence=spec.recurrence,
        attendees=spec.attendees,
        source=spec.source,
    )


def _turn_parts(turn: Any) -> tuple[str, str]:
    if isinstance(turn, dict):
        role = turn.get("role") or "user"
        return ("assistant" if role == "assistant" else "user"), str(turn.get("content") or "")
    return "user", str(turn)
