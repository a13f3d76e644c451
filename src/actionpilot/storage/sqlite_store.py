"""Summary: SQLite storage implementation for ActionPilot.

Importance: Durable message, suggestion, and audit store shared by every pipeline stage.
Alternatives: Use an ORM or an external database immediately.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from actionpilot.models import (
    EXECUTED,
    FAILED,
    PROCESSED,
    UNPROCESSED,
    Action,
    AiRequest,
    AiResponse,
    ExecutionAudit,
    InboundMessage,
    SuggestedActionSet,
    User,
)

_MESSAGE_COLUMNS = """
    id, user_id, external_id, sender, subject, body, received_at, created_at,
    is_read, action_required, processing_state, attempts, last_attempt_at,
    processing_error, actioned
"""


@dataclass(frozen=True)
class StoredMessage:
    """Summary: Inbound message record with processing bookkeeping.

    Importance: Exposes attempts and state so the retry controller can reason about it.
    Alternatives: Track processing state in a separate jobs table.
    """

    id: int
    user_id: int | None
    external_id: str
    sender: str
    subject: str
    body: str
    received_at: str
    created_at: str
    is_read: bool
    action_required: bool
    processing_state: str
    attempts: int
    last_attempt_at: str | None
    processing_error: str | None
    actioned: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "external_id": self.external_id,
            "sender": self.sender,
            "subject": self.subject,
            "body": self.body,
            "received_at": self.received_at,
            "is_read": self.is_read,
            "action_required": self.action_required,
            "processing_state": self.processing_state,
            "attempts": self.attempts,
            "last_attempt_at": self.last_attempt_at,
            "processing_error": self.processing_error,
            "actioned": self.actioned,
        }


@dataclass(frozen=True)
class StoredUser:
    id: int
    display_name: str
    email: str
    timezone: str


@dataclass(frozen=True)
class StoredActionSet:
    """Summary: Persisted suggestion set with database identifier.

    Importance: Lets the API return the authoritative set for a message.
    Alternatives: Keep only the latest actions inline on the message row.
    """

    id: int
    message_id: int | None
    user_id: int | None
    kind: str
    actions: list[Action]
    data: dict[str, Any]
    followups: list[str]
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "kind": self.kind,
            "actions": [action.to_dict() for action in self.actions],
            "data": self.data,
            "followups": self.followups,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class StoredAudit:
    id: int
    user_id: int | None
    message_id: int
    action_type: str
    payload: dict[str, Any]
    state: str
    result: dict[str, Any] | None
    error: str | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "message_id": self.message_id,
            "action_type": self.action_type,
            "payload": self.payload,
            "state": self.state,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ProcessingStats:
    """Summary: Rolling-window processing counters.

    Importance: Surfaces exhausted messages that need a manual reset.
    Alternatives: Compute counts in the API handler from raw rows.
    """

    total: int
    processed: int
    unprocessed: int
    failed: int
    exhausted: int
    avg_attempts_success: float
    window_hours: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "unprocessed": self.unprocessed,
            "failed": self.failed,
            "exhausted": self.exhausted,
            "avg_attempts_success": self.avg_attempts_success,
            "window_hours": self.window_hours,
        }


class SqliteStore:
    """Summary: SQLite-backed storage for ActionPilot.

    Importance: Every state transition is a single statement, so a crash leaves
    at most one step unrecorded.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready for ingestion and processing.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    external_id TEXT NOT NULL UNIQUE,
                    sender TEXT,
                    subject TEXT,
                    body TEXT,
                    received_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    action_required INTEGER NOT NULL DEFAULT 0,
                    processing_state TEXT NOT NULL DEFAULT 'unprocessed',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_attempt_at TEXT,
                    processing_error TEXT,
                    actioned INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS suggested_action_sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id INTEGER,
                    user_id INTEGER,
                    kind TEXT NOT NULL,
                    actions_json TEXT NOT NULL,
                    data_json TEXT NOT NULL,
                    followups_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_audits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    message_id INTEGER NOT NULL,
                    action_type TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    state TEXT NOT NULL,
                    result_json TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_responses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_id INTEGER NOT NULL,
                    response_text TEXT NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    token_estimate INTEGER NOT NULL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_action_sets_message "
                "ON suggested_action_sets (message_id, created_at)"
            )
            connection.commit()
        self._ensure_column("users", "timezone", "TEXT NOT NULL DEFAULT 'UTC'")
        self._ensure_column("ai_requests", "temperature", "REAL")

    def ensure_user(self, user: User) -> int:
        """Summary: Ensure a user exists and return their ID.

        Importance: Provides a stable owner for messages and audits.
        Alternatives: Omit user records in single-user mode.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO users (display_name, email, timezone) VALUES (?, ?, ?)",
                (user.display_name, user.email, user.timezone),
            )
            if cursor.rowcount:
                user_id = cursor.lastrowid
            else:
                cursor.execute("SELECT id FROM users WHERE email = ?", (user.email,))
                row = cursor.fetchone()
                user_id = int(row[0]) if row else 0
            connection.commit()
        return int(user_id)

    def get_user(self, user_id: int) -> StoredUser | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, display_name, email, timezone FROM users WHERE id = ?", (user_id,)
            )
            row = cursor.fetchone()
        return StoredUser(*row) if row else None

    def save_messages(
        self, messages: list[InboundMessage], user_id: int | None = None
    ) -> list[int]:
        """Summary: Persist inbound messages and return their database IDs.

        Importance: Duplicate external ids are ignored so polling can overlap safely.
        Alternatives: Upsert and overwrite message content on every poll.
        """

        ids: list[int] = []
        created_at = format_timestamp(utc_now())
        with self._connection() as connection:
            cursor = connection.cursor()
            for message in messages:
                cursor.execute(
                    """
                    INSERT OR IGNORE INTO messages (
                        user_id, external_id, sender, subject, body, received_at, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        message.external_id,
                        message.sender,
                        message.subject,
                        message.body,
                        format_timestamp(message.received_at),
                        created_at,
                    ),
                )
                if cursor.rowcount:
                    ids.append(int(cursor.lastrowid))
                else:
                    cursor.execute(
                        "SELECT id FROM messages WHERE external_id = ?", (message.external_id,)
                    )
                    row = cursor.fetchone()
                    if row:
                        ids.append(int(row[0]))
            connection.commit()
        return ids

    def get_message(self, message_id: int, user_id: int | None = None) -> StoredMessage | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            if user_id is None:
                cursor.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
                )
            else:
                cursor.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? AND user_id = ?",
                    (message_id, user_id),
                )
            row = cursor.fetchone()
        return _message_from_row(row) if row else None

    def list_messages(self, limit: int, user_id: int | None = None) -> list[StoredMessage]:
        """Summary: Retrieve recent messages from storage.

        Importance: Supplies API listings and briefing context.
        Alternatives: Stream messages from the provider directly.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            if user_id is None:
                cursor.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages ORDER BY received_at DESC LIMIT ?",
                    (limit,),
                )
            else:
                cursor.execute(
                    f"""
                    SELECT {_MESSAGE_COLUMNS} FROM messages
                    WHERE user_id = ?
                    ORDER BY received_at DESC
                    LIMIT ?
                    """,
                    (user_id, limit),
                )
            rows = cursor.fetchall()
        return [_message_from_row(row) for row in rows]

    def list_messages_since(
        self, since: datetime, limit: int, user_id: int | None = None
    ) -> list[StoredMessage]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE received_at >= ? AND (? IS NULL OR user_id = ?)
                ORDER BY received_at DESC
                LIMIT ?
                """,
                (format_timestamp(since), user_id, user_id, limit),
            )
            rows = cursor.fetchall()
        return [_message_from_row(row) for row in rows]

    def select_eligible_messages(
        self, max_attempts: int, retry_before: datetime, limit: int
    ) -> list[StoredMessage]:
        """Summary: Query messages that may be processed in this cycle.

        Importance: Encodes first-attempt and cooled-down retry eligibility in one query.
        Alternatives: Load all unprocessed rows and filter in Python.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE (processing_state = ? AND attempts = 0)
                   OR (
                        processing_state != ?
                        AND attempts < ?
                        AND (last_attempt_at IS NULL OR last_attempt_at <= ?)
                   )
                ORDER BY received_at DESC
                LIMIT ?
                """,
                (
                    UNPROCESSED,
                    PROCESSED,
                    max_attempts,
                    format_timestamp(retry_before),
                    limit,
                ),
            )
            rows = cursor.fetchall()
        return [_message_from_row(row) for row in rows]

    def increment_attempt(self, message_id: int, attempted_at: datetime) -> None:
        with self._connection() as connection:
            connection.execute(
                """
                UPDATE messages
                SET attempts = attempts + 1, last_attempt_at = ?
                WHERE id = ?
                """,
                (format_timestamp(attempted_at), message_id),
            )
            connection.commit()

    def set_processing_outcome(
        self, message_id: int, state: str, error: str | None, finished_at: datetime
    ) -> None:
        """Summary: Record the terminal state of a processing attempt.

        Importance: A processed message never goes back to unprocessed here.
        Alternatives: Delete failed rows and re-ingest them later.
        """

        with self._connection() as connection:
            if state == PROCESSED:
                connection.execute(
                    """
                    UPDATE messages
                    SET processing_state = ?, processing_error = NULL
                    WHERE id = ? AND processing_state != ?
                    """,
                    (PROCESSED, message_id, PROCESSED),
                )
            else:
                connection.execute(
                    """
                    UPDATE messages
                    SET processing_state = ?, processing_error = ?, last_attempt_at = ?
                    WHERE id = ? AND processing_state != ?
                    """,
                    (FAILED, error, format_timestamp(finished_at), message_id, PROCESSED),
                )
            connection.commit()

    def reset_failed_messages(self, max_attempts: int, user_id: int | None = None) -> int:
        with self._connection() as connection:
            cursor = connection.execute(
                """
                UPDATE messages
                SET attempts = 0, last_attempt_at = NULL, processing_error = NULL,
                    processing_state = ?
                WHERE processing_state != ?
                  AND (processing_state = ? OR attempts >= ?)
                  AND (? IS NULL OR user_id = ?)
                """,
                (UNPROCESSED, PROCESSED, FAILED, max_attempts, user_id, user_id),
            )
            count = cursor.rowcount
            connection.commit()
        return int(count)

    def processing_stats(
        self, since: datetime, max_attempts: int, window_hours: int, user_id: int | None = None
    ) -> ProcessingStats:
        """Summary: Aggregate processing counters over messages ingested since a time.

        Importance: Feeds the stats endpoint and exhausted-message alerts.
        Alternatives: Maintain counters incrementally in a separate table.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT
                    COUNT(*),
                    SUM(CASE WHEN processing_state = ? THEN 1 ELSE 0 END),
                    SUM(CASE WHEN processing_state = ? THEN 1 ELSE 0 END),
                    SUM(CASE WHEN processing_state = ? THEN 1 ELSE 0 END),
                    SUM(CASE WHEN processing_state != ? AND attempts >= ? THEN 1 ELSE 0 END),
                    AVG(CASE WHEN processing_state = ? THEN attempts END)
                FROM messages
                WHERE created_at >= ? AND (? IS NULL OR user_id = ?)
                """,
                (
                    PROCESSED,
                    UNPROCESSED,
                    FAILED,
                    PROCESSED,
                    max_attempts,
                    PROCESSED,
                    format_timestamp(since),
                    user_id,
                    user_id,
                ),
            )
            row = cursor.fetchone()
        return ProcessingStats(
            total=int(row[0] or 0),
            processed=int(row[1] or 0),
            unprocessed=int(row[2] or 0),
            failed=int(row[3] or 0),
            exhausted=int(row[4] or 0),
            avg_attempts_success=round(float(row[5] or 0.0), 2),
            window_hours=window_hours,
        )

    def mark_action_required(self, message_id: int) -> None:
        with self._connection() as connection:
            connection.execute(
                "UPDATE messages SET action_required = 1 WHERE id = ?", (message_id,)
            )
            connection.commit()

    def mark_actioned(self, message_id: int) -> None:
        """Summary: Flip the actioned flag for a message.

        Importance: The flag is monotonic, so this statement never clears it.
        Alternatives: Store actioned state per action in a separate table.
        """

        with self._connection() as connection:
            connection.execute(
                "UPDATE messages SET actioned = 1 WHERE id = ? AND actioned = 0", (message_id,)
            )
            connection.commit()

    def save_action_set(self, action_set: SuggestedActionSet, user_id: int | None = None) -> int:
        """Summary: Append a suggestion set.

        Importance: Older sets stay readable while the newest becomes authoritative.
        Alternatives: Upsert one row per message and lose history.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO suggested_action_sets (
                    message_id, user_id, kind, actions_json, data_json, followups_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    action_set.message_id,
                    user_id,
                    action_set.kind,
                    json.dumps([action.to_dict() for action in action_set.actions]),
                    json.dumps(action_set.data),
                    json.dumps(action_set.followups),
                    format_timestamp(action_set.created_at),
                ),
            )
            set_id = cursor.lastrowid
            connection.commit()
        return int(set_id)

    def latest_action_set(self, message_id: int) -> StoredActionSet | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, message_id, user_id, kind, actions_json, data_json, followups_json,
                    created_at
                FROM suggested_action_sets
                WHERE message_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (message_id,),
            )
            row = cursor.fetchone()
        if not row:
            return None
        actions = [Action(**item) for item in json.loads(row[4])]
        return StoredActionSet(
            id=row[0],
            message_id=row[1],
            user_id=row[2],
            kind=row[3],
            actions=actions,
            data=json.loads(row[5]),
            followups=json.loads(row[6]),
            created_at=row[7],
        )

    def count_action_sets(self, message_id: int) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT COUNT(*) FROM suggested_action_sets WHERE message_id = ?", (message_id,)
            )
            row = cursor.fetchone()
        return int(row[0])

    def add_execution_audit(self, audit: ExecutionAudit) -> int:
        """Summary: Append an execution audit row.

        Importance: No execution outcome may go unrecorded.
        Alternatives: Write audits to a log file.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO execution_audits (
                    user_id, message_id, action_type, payload_json, state, result_json, error,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    audit.user_id,
                    audit.message_id,
                    audit.action_type,
                    json.dumps(audit.payload, default=str),
                    audit.state,
                    json.dumps(audit.result, default=str) if audit.result is not None else None,
                    audit.error,
                    format_timestamp(audit.timestamp),
                ),
            )
            audit_id = cursor.lastrowid
            connection.commit()
        return int(audit_id)

    def list_execution_audits(
        self, message_id: int | None = None, user_id: int | None = None, limit: int = 50
    ) -> list[StoredAudit]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, user_id, message_id, action_type, payload_json, state, result_json,
                    error, created_at
                FROM execution_audits
                WHERE (? IS NULL OR message_id = ?) AND (? IS NULL OR user_id = ?)
                ORDER BY id DESC
                LIMIT ?
                """,
                (message_id, message_id, user_id, user_id, limit),
            )
            rows = cursor.fetchall()
        return [
            StoredAudit(
                id=row[0],
                user_id=row[1],
                message_id=row[2],
                action_type=row[3],
                payload=json.loads(row[4]),
                state=row[5],
                result=json.loads(row[6]) if row[6] else None,
                error=row[7],
                created_at=row[8],
            )
            for row in rows
        ]

    def has_executed_action(self, message_id: int, action_type: str) -> bool:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT 1 FROM execution_audits
                WHERE message_id = ? AND action_type = ? AND state = ?
                LIMIT 1
                """,
                (message_id, action_type, EXECUTED),
            )
            row = cursor.fetchone()
        return row is not None

    def count_pending_actions(self, user_id: int | None = None) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT COUNT(*) FROM messages
                WHERE action_required = 1 AND actioned = 0 AND (? IS NULL OR user_id = ?)
                """,
                (user_id, user_id),
            )
            row = cursor.fetchone()
        return int(row[0])

    def log_ai_request(self, request: AiRequest, user_id: int | None = None) -> int:
        """Summary: Persist an AI request for auditing.

        Importance: Tracks prompts, purposes, and sampling settings.
        Alternatives: Use structured logs instead of database storage.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_requests (
                    user_id, provider, model, prompt, purpose, timestamp, temperature
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    request.provider,
                    request.model,
                    request.prompt,
                    request.purpose,
                    format_timestamp(request.timestamp),
                    request.temperature,
                ),
            )
            request_id = cursor.lastrowid
            connection.commit()
        return int(request_id)

    def log_ai_response(self, response: AiResponse) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_responses (request_id, response_text, latency_ms, token_estimate)
                VALUES (?, ?, ?, ?)
                """,
                (
                    response.request_id,
                    response.response_text,
                    response.latency_ms,
                    response.token_estimate,
                ),
            )
            response_id = cursor.lastrowid
            connection.commit()
        return int(response_id)

    def list_ai_requests(self, limit: int = 20, user_id: int | None = None) -> list[dict[str, Any]]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, provider, model, purpose, timestamp, temperature
                FROM ai_requests
                WHERE (? IS NULL OR user_id = ?)
                ORDER BY id DESC
                LIMIT ?
                """,
                (user_id, user_id, limit),
            )
            rows = cursor.fetchall()
        return [
            {
                "id": row[0],
                "provider": row[1],
                "model": row[2],
                "purpose": row[3],
                "timestamp": row[4],
                "temperature": row[5],
            }
            for row in rows
        ]

    def _ensure_column(self, table: str, column: str, definition: str = "INTEGER") -> None:
        """Summary: Ensure a column exists in a table.

        Importance: Provides lightweight migration support for new fields.
        Alternatives: Use a migration tool to manage schema changes.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"PRAGMA table_info({table})")
            columns = {row[1] for row in cursor.fetchall()}
            if column in columns:
                return
            cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
            connection.commit()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
        finally:
            connection.close()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Summary: Normalize a datetime to a sortable UTC string.

    Importance: Eligibility and window queries compare timestamps as text.
    Alternatives: Store epoch integers instead of ISO strings.
    """

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _message_from_row(row: tuple[Any, ...]) -> StoredMessage:
    return StoredMessage(
        id=row[0],
        user_id=row[1],
        external_id=row[2],
        sender=row[3] or "",
        subject=row[4] or "",
        body=row[5] or "",
        received_at=row[6],
        created_at=row[7],
        is_read=bool(row[8]),
        action_required=bool(row[9]),
        processing_state=row[10],
        attempts=int(row[11]),
        last_attempt_at=row[12],
        processing_error=row[13],
        actioned=bool(row[14]),
    )
