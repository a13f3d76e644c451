"""Summary: Ingestion of inbound message rows into storage.

Importance: The only path by which new messages enter the pipeline; overlapping
polls are safe because duplicate external ids are ignored.
Alternatives: Let providers write directly into the messages table.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from actionpilot.errors import ValidationError
from actionpilot.models import InboundMessage
from actionpilot.storage.sqlite_store import SqliteStore, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


@dataclass
class IngestionService:
    store: SqliteStore
    user_id: int | None = None

    def ingest_rows(self, rows: Iterable[dict[str, Any]]) -> list[int]:
        """Summary: Map collaborator rows to messages and persist them.

        Importance: Returns the stored ids, including ids of rows seen before.
        Alternatives: Reject the whole batch when one row is malformed.
        """

        messages = [row_to_message(row) for row in rows]
        ids = self.store.save_messages(messages, user_id=self.user_id)
        logger.info("Ingested %s rows for user %s.", len(ids), self.user_id)
        return ids


def row_to_message(row: dict[str, Any]) -> InboundMessage:
    external_id = row.get("externalId") or row.get("external_id")
    if not external_id:
        raise ValidationError("externalId is required")
    received = row.get("receivedAt") or row.get("received_at")
    return InboundMessage(
        external_id=str(external_id),
        sender=str(row.get("sender") or ""),
        subject=str(row.get("subject") or ""),
        body=str(row.get("bodyPlain") or row.get("body") or ""),
        received_at=_parse_received(received),
    )


def _parse_received(value: Any) -> datetime:
    if not value:
        return utc_now()
    if isinstance(value, datetime):
        return value
    cleaned = str(value).strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        return parse_timestamp(cleaned)
    except ValueError as exc:
        raise ValidationError(f"receivedAt is not a valid timestamp: {value}") from exc


class MockInboundSource:
    """Summary: Reads inbound rows from a local JSON fixture.

    Importance: Feeds the ingestion timer without a real mailbox.
    Alternatives: Generate random messages on every poll.
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    def fetch(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            raise FileNotFoundError(f"Mock fixture not found: {self._path}")
        rows = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(rows, list):
            raise ValueError("Mock fixture must contain a JSON list of rows")
        return rows
