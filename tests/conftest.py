"""Summary: Shared fixtures for ActionPilot tests.

Importance: Gives every test isolated storage, a fixed clock, a scripted
AI provider, and a recording workspace.
Alternatives: Build configuration by hand in each test module.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from actionpilot.ai import MockAiProvider
from actionpilot.app import AppServices, build_services
from actionpilot.config import AppConfig
from actionpilot.models import InboundMessage
from actionpilot.storage.sqlite_store import SqliteStore
from actionpilot.workspace import MockWorkspaceClient

NOW = datetime(2025, 11, 23, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; tests advance it instead of sleeping."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def build_config(db_path: str, **overrides: object) -> AppConfig:
    """Summary: Build an AppConfig for tests.

    Importance: Ensures tests use isolated storage and no delays.
    Alternatives: Load AppConfig from environment variables.
    """

    values: dict[str, object] = {
        "db_path": db_path,
        "ai_provider": "mock",
        "openai_api_key": None,
        "openai_model": "gpt-4o-mini",
        "ollama_url": "http://localhost:11434",
        "ollama_model": "llama3",
        "api_host": "127.0.0.1",
        "api_port": 8000,
        "api_key": "",
        "default_user_name": "Local User",
        "default_user_email": "local@actionpilot",
        "default_timezone": "UTC",
        "inter_message_delay_ms": 0,
    }
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return build_config(str(tmp_path / "test.db"))


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "store.db"))
    store.initialize()
    return store


@pytest.fixture
def ai() -> MockAiProvider:
    return MockAiProvider()


@pytest.fixture
def workspace() -> MockWorkspaceClient:
    return MockWorkspaceClient()


@pytest.fixture
def services(
    config: AppConfig, ai: MockAiProvider, workspace: MockWorkspaceClient, clock: FakeClock
) -> AppServices:
    return build_services(
        config, workspace=workspace, ai_provider=ai, clock=clock, sleep=lambda _: None
    )


def make_message(
    external_id: str = "ext-1",
    subject: str = "Quarterly planning",
    body: str = "Can we meet tomorrow at 3pm?",
    received_at: datetime = NOW - timedelta(hours=1),
) -> InboundMessage:
    return InboundMessage(
        external_id=external_id,
        sender="maria@example.com",
        subject=subject,
        body=body,
        received_at=received_at,
    )
