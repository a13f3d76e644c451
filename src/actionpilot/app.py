"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI, API, and job scheduler.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from actionpilot.actions import ActionService
from actionpilot.ai import AiProvider, AiProviderFactory, AuditedChat
from actionpilot.commands import CommandIntake
from actionpilot.config import AppConfig
from actionpilot.ingestion import IngestionService, MockInboundSource
from actionpilot.jobs import IntervalJob, JobScheduler, ProcessingCycle
from actionpilot.meetings import MeetingResolver
from actionpilot.models import User
from actionpilot.retry import RetryController, RetryPolicy
from actionpilot.storage.sqlite_store import SqliteStore, utc_now
from actionpilot.suggestions import SuggestionEngine
from actionpilot.workspace import WorkspaceClient, build_workspace


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared application context for building user services.

    Importance: Reuses storage, the AI provider, and the workspace client
    across user-bound services.
    Alternatives: Rebuild dependencies for every request.
    """

    store: SqliteStore
    ai_provider: AiProvider
    model_name: str
    workspace: WorkspaceClient
    config: AppConfig
    clock: Callable[[], datetime] = utc_now
    sleep: Callable[[float], None] = time.sleep

    def services_for_user(self, user_id: int | None) -> "AppServices":
        """Summary: Build user-scoped services from shared context.

        Importance: Message lookups in prepare and execute are scoped to the user.
        Alternatives: Use a multi-tenant database with row-level security.
        """

        config = self.config
        chat = AuditedChat(
            provider=self.ai_provider,
            store=self.store,
            provider_name=config.ai_provider,
            model_name=self.model_name,
        )
        resolver = MeetingResolver(
            chat=chat, clock=self.clock, default_timezone=config.default_timezone
        )
        engine = SuggestionEngine(
            store=self.store,
            chat=chat,
            resolver=resolver,
            clock=self.clock,
            briefing_ttl=timedelta(minutes=config.briefing_cache_minutes),
        )
        controller = RetryController(
            store=self.store,
            policy=RetryPolicy(
                max_attempts=config.max_attempts,
                cooldown=timedelta(minutes=config.retry_cooldown_minutes),
                batch_limit=config.batch_limit,
                stats_window=timedelta(hours=config.stats_window_hours),
            ),
            clock=self.clock,
        )
        actions = ActionService(
            store=self.store,
            engine=engine,
            client=self.workspace,
            resolver=resolver,
            remediation_url=config.remediation_url,
            reauth_url=config.reauth_url,
            default_timezone=config.default_timezone,
            clock=self.clock,
        )
        cycle = ProcessingCycle(
            controller=controller,
            engine=engine,
            store=self.store,
            sleep=self.sleep,
            delay_ms=config.inter_message_delay_ms,
        )
        commands = CommandIntake(
            store=self.store,
            actions=actions,
            engine=engine,
            resolver=resolver,
            controller=controller,
            user_id=user_id,
        )
        return AppServices(
            store=self.store,
            user_id=user_id,
            config=config,
            engine=engine,
            resolver=resolver,
            controller=controller,
            actions=actions,
            cycle=cycle,
            ingestion=IngestionService(store=self.store, user_id=user_id),
            commands=commands,
            workspace=self.workspace,
            clock=self.clock,
        )


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for ActionPilot.

    Importance: Simplifies passing dependencies to UI, API, and CLI layers.
    Alternatives: Use a dependency injection container.
    """

    store: SqliteStore
    user_id: int | None
    config: AppConfig
    engine: SuggestionEngine
    resolver: MeetingResolver
    controller: RetryController
    actions: ActionService
    cycle: ProcessingCycle
    ingestion: IngestionService
    commands: CommandIntake
    workspace: WorkspaceClient
    clock: Callable[[], datetime]


def build_context(
    config: AppConfig,
    workspace: WorkspaceClient | None = None,
    ai_provider: AiProvider | None = None,
    clock: Callable[[], datetime] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> AppContext:
    """Summary: Build shared context for user-scoped services.

    Importance: Tests inject a scripted provider, a mock workspace, and a fixed clock.
    Alternatives: Construct dependencies separately per request.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    provider = ai_provider or AiProviderFactory(config).build()
    if config.ai_provider == "openai":
        model_name = config.openai_model
    elif config.ai_provider == "ollama":
        model_name = config.ollama_model
    else:
        model_name = "mock"
    return AppContext(
        store=store,
        ai_provider=provider,
        model_name=model_name,
        workspace=workspace or build_workspace(config),
        config=config,
        clock=clock or utc_now,
        sleep=sleep or time.sleep,
    )


def build_services(
    config: AppConfig,
    workspace: WorkspaceClient | None = None,
    ai_provider: AiProvider | None = None,
    clock: Callable[[], datetime] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> AppServices:
    """Summary: Build core services for the default user.

    Importance: Provides a single construction path for the application.
    Alternatives: Instantiate services directly within each entrypoint.
    """

    context = build_context(config, workspace, ai_provider, clock, sleep)
    user = User(
        display_name=config.default_user_name,
        email=config.default_user_email,
        timezone=config.default_timezone,
    )
    user_id = context.store.ensure_user(user)
    return context.services_for_user(user_id)


def build_scheduler(services: AppServices, source: MockInboundSource | None = None) -> JobScheduler:
    """Summary: Build the ingestion and processing interval jobs.

    Importance: Ingestion feeds new rows; processing drains eligible messages.
    Alternatives: Run both steps from one combined timer.
    """

    config = services.config
    inbound = source or MockInboundSource(config.mock_fixture_path)

    def ingest() -> None:
        services.ingestion.ingest_rows(inbound.fetch())

    def process() -> None:
        services.cycle.run()

    return JobScheduler(
        jobs=[
            IntervalJob("ingestion", config.ingestion_interval_seconds, ingest),
            IntervalJob("processing", config.processing_interval_seconds, process),
        ],
        clock=services.clock,
    )
