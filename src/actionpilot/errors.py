"""Summary: Typed error taxonomy for the suggestion and execution pipeline.

Importance: Lets the API, CLI, and worker react to failures by kind instead of by message text.
Alternatives: Raise RuntimeError everywhere and parse messages at the edges.
"""

from __future__ import annotations

from typing import Any


class ActionPilotError(Exception):
    """Summary: Base class for pipeline errors with a stable code.

    Importance: Gives every surfaced failure a machine-readable code and HTTP status.
    Alternatives: Map exception classes to codes in the API layer only.
    """

    code = "error"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_payload(self) -> dict[str, Any]:
        """Summary: Render the error as a JSON-ready body.

        Importance: Keeps structured error shapes identical across API and CLI.
        Alternatives: Let FastAPI render HTTPException details.
        """

        return {"error": self.code, "message": self.message}


class ParseError(ActionPilotError):
    """Inference output could not be recovered as JSON."""

    code = "parse_error"
    status_code = 422


class ValidationError(ActionPilotError):
    """Summary: Structurally valid input that is semantically incomplete.

    Importance: Surfaces as a clarification request and is never retried automatically.
    Alternatives: Silently coerce inverted or partial time ranges.
    """

    code = "validation_error"
    status_code = 422

    def __init__(self, reason: str) -> None:
        super().__init__(f"VALIDATION_ERROR: {reason}")
        self.reason = reason


class MissingDatetime(ValidationError):
    """The request carried no usable date or time."""

    code = "missing_datetime"

    def __init__(self) -> None:
        ActionPilotError.__init__(self, "MISSING_DATETIME")
        self.reason = "missing_datetime"


class MissingField(ActionPilotError):
    """A required payload field was absent."""

    status_code = 400

    def __init__(self, field: str) -> None:
        self.field = field
        self.code = f"missing_{field}"
        super().__init__(f"Missing required field: {field}")


class UnknownAction(ActionPilotError):
    code = "unknown_action"
    status_code = 400

    def __init__(self, action_type: str) -> None:
        super().__init__(f"Unknown action type: {action_type}")
        self.action_type = action_type


class UnknownRequestKind(ActionPilotError):
    code = "unknown_kind"
    status_code = 400

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown request kind: {kind}")
        self.kind = kind


class MessageNotFound(ActionPilotError):
    code = "not_found"
    status_code = 404

    def __init__(self, message_id: int) -> None:
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class AlreadyExecuted(ActionPilotError):
    """Summary: A confirmed action was already executed for this message.

    Importance: Keeps execution idempotent from the caller's point of view.
    Alternatives: Return the previous result as a silent no-op.
    """

    code = "already_executed"
    status_code = 409

    def __init__(self, message_id: int, action_type: str) -> None:
        super().__init__(f"Action {action_type} already executed for message {message_id}")
        self.message_id = message_id
        self.action_type = action_type


class InsufficientPermissions(ActionPilotError):
    """Summary: The external service denied the call for lack of a scope.

    Importance: Tells the user the minimal capability to grant instead of a generic failure.
    Alternatives: Ask the user to reconnect every scope on any 403.
    """

    code = "insufficient_permissions"
    status_code = 403

    def __init__(self, required_scope: str, remediation_url: str, detail: str = "") -> None:
        super().__init__(detail or f"Missing permission: {required_scope}")
        self.required_scope = required_scope
        self.remediation_url = remediation_url

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["requiredPermission"] = self.required_scope
        payload["remediation"] = self.remediation_url
        return payload


class TokenExpired(ActionPilotError):
    code = "token_expired"
    status_code = 401

    def __init__(self, reauth_url: str, detail: str = "") -> None:
        super().__init__(detail or "Credentials expired, re-authentication required")
        self.reauth_url = reauth_url

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["reauthUrl"] = self.reauth_url
        return payload


class TransientError(ActionPilotError):
    """Network, rate-limit, or unknown failure that may be retried."""

    code = "transient_error"
    status_code = 502


class InferenceError(TransientError):
    """The inference provider could not be reached or returned garbage."""


class ExternalServiceError(Exception):
    """Summary: Raw failure from an external mutating service.

    Importance: Carries the HTTP status so the action layer can classify it.
    Alternatives: Classify inside each client and leak scope knowledge into it.
    """

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(message)
        self.status = status
