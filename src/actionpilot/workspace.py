"""Summary: External mutating services used by executed actions.

Importance: Abstracts the mailbox, calendar, and task capabilities behind one
interface so the action protocol can classify failures uniformly.
Alternatives: Call provider SDKs directly inside each action handler.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from actionpilot.config import AppConfig
from actionpilot.errors import ExternalServiceError

logger = logging.getLogger(__name__)

SCOPES = ("mailbox-read", "mailbox-modify", "mailbox-send", "calendar", "tasks")


class WorkspaceClient(ABC):
    """Summary: Capabilities exposed by an external mailbox and calendar provider.

    Importance: Every method raises ExternalServiceError with the HTTP status on failure.
    Alternatives: Return status tuples and let callers inspect them.
    """

    @abstractmethod
    def mark_read(self, external_id: str) -> dict[str, Any]:
        """Remove the unread marker from a message."""

    @abstractmethod
    def mark_important(self, external_id: str) -> dict[str, Any]:
        """Flag a message as important."""

    @abstractmethod
    def trash(self, external_id: str) -> dict[str, Any]:
        """Move a message to the trash."""

    @abstractmethod
    def send(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        """Send a base64url-encoded RFC 822 message."""

    @abstractmethod
    def create_task(self, title: str, notes: str = "", due_date: str | None = None) -> dict[str, Any]:
        """Create a task in the default list."""

    @abstractmethod
    def create_event(
        self,
        summary: str,
        description: str,
        start: str,
        end: str,
        timezone: str,
        attendees: list[str] | None = None,
        recurrence_rule: str | None = None,
        reminders: list[dict[str, Any]] | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        """Create a calendar event on the primary calendar."""

    @abstractmethod
    def free_busy_query(self, time_min: str, time_max: str) -> list[dict[str, str]]:
        """Return busy intervals on the primary calendar."""


class GoogleWorkspaceClient(WorkspaceClient):
    """Summary: Gmail, Calendar, and Tasks REST client over urllib.

    Importance: Talks to the real services with a caller-supplied access token.
    Alternatives: Use google-api-python-client.
    """

    def __init__(self, access_token: str, base_url: str = "https://www.googleapis.com") -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")

    def mark_read(self, external_id: str) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/gmail/v1/users/me/messages/{_quote(external_id)}/modify",
            {"removeLabelIds": ["UNREAD"]},
        )

    def mark_important(self, external_id: str) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/gmail/v1/users/me/messages/{_quote(external_id)}/modify",
            {"addLabelIds": ["IMPORTANT", "STARRED"]},
        )

    def trash(self, external_id: str) -> dict[str, Any]:
        return self._request("POST", f"/gmail/v1/users/me/messages/{_quote(external_id)}/trash")

    def send(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        return self._request("POST", "/gmail/v1/users/me/messages/send", body)

    def create_task(self, title: str, notes: str = "", due_date: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"title": title, "notes": notes}
        if due_date:
            body["due"] = due_date if "T" in due_date else f"{due_date}T00:00:00.000Z"
        return self._request("POST", "/tasks/v1/lists/@default/tasks", body)

    def create_event(
        self,
        summary: str,
        description: str,
        start: str,
        end: str,
        timezone: str,
        attendees: list[str] | None = None,
        recurrence_rule: str | None = None,
        reminders: list[dict[str, Any]] | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start, "timeZone": timezone},
            "end": {"dateTime": end, "timeZone": timezone},
        }
        if location:
            body["location"] = location
        if attendees:
            body["attendees"] = [{"email": email} for email in attendees]
        if recurrence_rule:
            body["recurrence"] = [recurrence_rule]
        if reminders:
            body["reminders"] = {"useDefault": False, "overrides": reminders}
        return self._request("POST", "/calendar/v3/calendars/primary/events", body)

    def free_busy_query(self, time_min: str, time_max: str) -> list[dict[str, str]]:
        raw = self._request(
            "POST",
            "/calendar/v3/freeBusy",
            {"timeMin": time_min, "timeMax": time_max, "items": [{"id": "primary"}]},
        )
        return raw.get("calendars", {}).get("primary", {}).get("busy", [])

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        """Summary: Perform an authenticated JSON request.

        Importance: Preserves the HTTP status on failure for permission mapping.
        Alternatives: Use requests or httpx sessions.
        """

        data = json.dumps(body).encode("utf-8") if body is not None else None
        request = urllib.request.Request(
            url=f"{self._base_url}{path}",
            data=data,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Content-Type": "application/json",
            },
            method=method,
        )
        try:
            with urllib.request.urlopen(request, timeout=30) as response:
                payload = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")[:300]
            raise ExternalServiceError(exc.code, f"{method} {path} failed: {detail}") from exc
        except urllib.error.URLError as exc:
            raise ExternalServiceError(None, f"{method} {path} failed: {exc}") from exc
        except (TimeoutError, OSError) as exc:
            raise ExternalServiceError(None, f"{method} {path} failed: {exc!r}") from exc
        if not payload:
            return {}
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise ExternalServiceError(None, f"{method} {path} returned invalid JSON") from exc


@dataclass
class MockWorkspaceClient(WorkspaceClient):
    """Summary: In-memory workspace that records every capability call.

    Importance: Lets tests and local runs exercise execution and failure paths.
    Alternatives: Stub HTTP responses for the Google client.
    """

    failures: dict[str, int | None] = field(default_factory=dict)
    busy: list[dict[str, str]] = field(default_factory=list)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def mark_read(self, external_id: str) -> dict[str, Any]:
        return self._record("mark_read", {"external_id": external_id})

    def mark_important(self, external_id: str) -> dict[str, Any]:
        return self._record("mark_important", {"external_id": external_id})

    def trash(self, external_id: str) -> dict[str, Any]:
        return self._record("trash", {"external_id": external_id})

    def send(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        return self._record("send", {"raw": raw, "thread_id": thread_id})

    def create_task(self, title: str, notes: str = "", due_date: str | None = None) -> dict[str, Any]:
        return self._record("create_task", {"title": title, "notes": notes, "due_date": due_date})

    def create_event(
        self,
        summary: str,
        description: str,
        start: str,
        end: str,
        timezone: str,
        attendees: list[str] | None = None,
        recurrence_rule: str | None = None,
        reminders: list[dict[str, Any]] | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        return self._record(
            "create_event",
            {
                "summary": summary,
                "description": description,
                "start": start,
                "end": end,
                "timezone": timezone,
                "attendees": attendees or [],
                "recurrence_rule": recurrence_rule,
                "reminders": reminders or [],
                "location": location,
            },
        )

    def free_busy_query(self, time_min: str, time_max: str) -> list[dict[str, str]]:
        self._record("free_busy_query", {"time_min": time_min, "time_max": time_max})
        return list(self.busy)

    def _record(self, capability: str, arguments: dict[str, Any]) -> dict[str, Any]:
        if capability in self.failures:
            status = self.failures[capability]
            raise ExternalServiceError(status, f"{capability} failed with status {status}")
        self.calls.append((capability, arguments))
        return {"id": f"mock-{capability}-{len(self.calls)}", "status": "ok"}


def build_workspace(config: AppConfig) -> WorkspaceClient:
    """Summary: Construct the configured workspace client.

    Importance: Keeps provider selection next to the implementations.
    Alternatives: Wire clients manually at each entrypoint.
    """

    if config.workspace_provider == "google":
        if not config.google_access_token:
            raise ValueError("GOOGLE_ACCESS_TOKEN is required for the google workspace provider")
        return GoogleWorkspaceClient(config.google_access_token, config.google_api_base)
    logger.info("Using mock workspace client.")
    return MockWorkspaceClient()


def _quote(value: str) -> str:
    return urllib.parse.quote(value, safe="")
