"""Summary: FastAPI application for ActionPilot.

Importance: Exposes the two-phase action protocol, processing controls, and
the suggestion engine to UI clients.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from actionpilot.app import AppServices, build_services
from actionpilot.commands import parse_command
from actionpilot.config import AppConfig
from actionpilot.errors import ActionPilotError, MessageNotFound
from actionpilot.suggestions import intelligent_process

logger = logging.getLogger(__name__)


class PrepareRequest(BaseModel):
    """Summary: Request payload for the prepare phase.

    Importance: The optional hint steers suggestions toward one action.
    Alternatives: Pass the hint as a query parameter.
    """

    model_config = ConfigDict(populate_by_name=True)

    selected_action: dict[str, Any] | str | None = Field(default=None, alias="selectedAction")


class ExecuteRequest(BaseModel):
    """Summary: Request payload for executing one confirmed action.

    Importance: Carries the user-edited payload that the handler validates.
    Alternatives: Execute the stored suggestion without edits.
    """

    model_config = ConfigDict(populate_by_name=True)

    action_type: str = Field(alias="actionType", min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class RetryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int | None = Field(default=None, alias="userId")


class IngestRequest(BaseModel):
    """Rows handed over by the ingestion collaborator."""

    rows: list[dict[str, Any]] = Field(default_factory=list, max_length=500)


class RunRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=500)


class ProcessRequest(BaseModel):
    """Summary: Request payload for an explicit-kind suggestion run.

    Importance: Lets clients call any processor directly.
    Alternatives: Route every request through kind detection.
    """

    model_config = ConfigDict(populate_by_name=True)

    kind: str
    context: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)
    message_id: int | None = Field(default=None, alias="messageId")


class IntelligentRequest(BaseModel):
    text: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)


class MeetingRequest(BaseModel):
    text: str = Field(min_length=1)
    timezone: str | None = None
    conversation: list[Any] = Field(default_factory=list)


class CommandRequest(BaseModel):
    """Summary: Envelope for the typed command channel.

    Importance: kind selects the command dataclass; body carries its fields.
    Alternatives: Expose one endpoint per UI trigger only.
    """

    kind: str
    body: dict[str, Any] = Field(default_factory=dict)


def create_app(config: AppConfig, services: AppServices | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to ActionPilot services.

    Importance: Ensures the API layer shares the same configuration and storage;
    tests pass prebuilt services with fakes.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="ActionPilot API", version="0.1.0")
    services = services or build_services(config)

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.exception_handler(ActionPilotError)
    def handle_pipeline_error(request: Request, exc: ActionPilotError) -> JSONResponse:
        logger.info("%s %s -> %s", request.method, request.url.path, exc.code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/ingest", dependencies=[Depends(require_api_key)])
    def ingest(payload: IngestRequest) -> dict[str, Any]:
        """Summary: Ingest rows from the ingestion collaborator.

        Importance: Duplicate external ids are ignored, so retries are safe.
        Alternatives: Poll providers from the API process.
        """

        ids = services.ingestion.ingest_rows(payload.rows)
        return {"ingested": len(ids), "ids": ids}

    @app.get("/messages", dependencies=[Depends(require_api_key)])
    def list_messages(limit: int = 20) -> list[dict[str, Any]]:
        return [
            message.to_dict()
            for message in services.store.list_messages(limit, user_id=services.user_id)
        ]

    @app.get("/messages/{message_id}/actions", dependencies=[Depends(require_api_key)])
    def latest_actions(message_id: int) -> dict[str, Any]:
        """Summary: Return the most recent suggestion set for a message.

        Importance: Earlier sets stay stored; only the latest is shown.
        Alternatives: Return the full suggestion history.
        """

        if services.store.get_message(message_id, user_id=services.user_id) is None:
            raise MessageNotFound(message_id)
        action_set = services.store.latest_action_set(message_id)
        if action_set is None:
            raise HTTPException(status_code=404, detail="No suggestions for this message yet")
        return action_set.to_dict()

    @app.post("/actions/prepare/{message_id}", dependencies=[Depends(require_api_key)])
    def prepare_action(message_id: int, payload: PrepareRequest | None = None) -> dict[str, Any]:
        selected = payload.selected_action if payload else None
        return services.actions.prepare(message_id, selected, user_id=services.user_id)

    @app.post("/actions/execute/{message_id}", dependencies=[Depends(require_api_key)])
    def execute_action(message_id: int, payload: ExecuteRequest) -> dict[str, Any]:
        """Summary: Execute one confirmed action.

        Importance: Failures come back as structured error payloads with status codes.
        Alternatives: Return 200 with an ok flag for every outcome.
        """

        result = services.actions.execute(
            message_id, payload.action_type, payload.payload, user_id=services.user_id
        )
        return result.to_dict()

    @app.get("/audit", dependencies=[Depends(require_api_key)])
    def audit(message_id: int | None = None, limit: int = 50) -> list[dict[str, Any]]:
        return [
            record.to_dict()
            for record in services.store.list_execution_audits(
                message_id=message_id, user_id=services.user_id, limit=limit
            )
        ]

    @app.get("/processing/stats", dependencies=[Depends(require_api_key)])
    def processing_stats(user_id: int | None = None) -> dict[str, Any]:
        return services.controller.stats(user_id).to_dict()

    @app.post("/processing/retry", dependencies=[Depends(require_api_key)])
    def processing_retry(payload: RetryRequest | None = None) -> dict[str, int]:
        """Summary: Reset failed and exhausted messages for another pass.

        Importance: The manual path back for messages that used every attempt.
        Alternatives: Reset automatically on a schedule.
        """

        user_id = payload.user_id if payload else None
        return {"reset": services.controller.reset_for_retry(user_id)}

    @app.post("/processing/run", dependencies=[Depends(require_api_key)])
    def processing_run(payload: RunRequest | None = None) -> dict[str, Any]:
        return services.cycle.run(payload.limit if payload else None).to_dict()

    @app.post("/llm/process", dependencies=[Depends(require_api_key)])
    def llm_process(payload: ProcessRequest) -> dict[str, Any]:
        user = services.store.get_user(services.user_id) if services.user_id else None
        action_set = services.engine.generate_suggestions(
            payload.kind, user, payload.context, payload.options, message_id=payload.message_id
        )
        return action_set.to_dict()

    @app.post("/llm/intelligent", dependencies=[Depends(require_api_key)])
    def llm_intelligent(payload: IntelligentRequest) -> dict[str, Any]:
        """Summary: Detect the request kind and run it.

        Importance: Backs free-form chat input in the UI.
        Alternatives: Require the client to choose a kind.
        """

        user = services.store.get_user(services.user_id) if services.user_id else None
        action_set = intelligent_process(
            services.engine, user, payload.text, payload.context, payload.options
        )
        return action_set.to_dict()

    @app.post("/meetings/resolve", dependencies=[Depends(require_api_key)])
    def resolve_meeting(payload: MeetingRequest) -> dict[str, Any]:
        user = services.store.get_user(services.user_id) if services.user_id else None
        spec = services.resolver.resolve(
            payload.text,
            timezone_name=payload.timezone or (user.timezone if user else None),
            conversation=payload.conversation,
            user_id=services.user_id,
        )
        return {"meeting": spec.to_payload()}

    @app.post("/commands", dependencies=[Depends(require_api_key)])
    def commands(payload: CommandRequest) -> dict[str, Any]:
        return services.commands.handle(parse_command(payload.kind, payload.body))

    return app
