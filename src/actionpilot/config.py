"""Summary: Application configuration for ActionPilot.

Importance: Centralizes environment, .env, and config defaults for the pipeline and API.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and the pipeline.

    Importance: Ensures the worker, API, and CLI derive settings from one source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    ollama_url: str
    ollama_model: str
    api_host: str
    api_port: int
    api_key: str
    default_user_name: str
    default_user_email: str
    default_timezone: str
    workspace_provider: str = "mock"
    google_access_token: str | None = None
    google_api_base: str = "https://www.googleapis.com"
    max_attempts: int = 3
    retry_cooldown_minutes: int = 60
    batch_limit: int = 50
    stats_window_hours: int = 24
    processing_interval_seconds: int = 60
    ingestion_interval_seconds: int = 300
    inter_message_delay_ms: int = 100
    briefing_cache_minutes: int = 120
    mock_fixture_path: str = "data/mock_messages.json"
    remediation_url: str = "/settings/permissions"
    reauth_url: str = "/auth/google"

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("ACTIONPILOT_DB_PATH", defaults["db_path"]),
            ai_provider=os.getenv("ACTIONPILOT_AI_PROVIDER", defaults["ai_provider"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            ollama_url=os.getenv("OLLAMA_URL", defaults["ollama_url"]),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults["ollama_model"]),
            api_host=os.getenv("ACTIONPILOT_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("ACTIONPILOT_API_PORT", defaults["api_port"])),
            api_key=os.getenv("ACTIONPILOT_API_KEY", defaults["api_key"]),
            default_user_name=os.getenv(
                "ACTIONPILOT_DEFAULT_USER_NAME", defaults["default_user_name"]
            ),
            default_user_email=os.getenv(
                "ACTIONPILOT_DEFAULT_USER_EMAIL", defaults["default_user_email"]
            ),
            default_timezone=os.getenv(
                "ACTIONPILOT_DEFAULT_TIMEZONE", defaults["default_timezone"]
            ),
            workspace_provider=os.getenv(
                "ACTIONPILOT_WORKSPACE_PROVIDER", defaults["workspace_provider"]
            ),
            google_access_token=os.getenv("GOOGLE_ACCESS_TOKEN")
            or defaults["google_access_token"]
            or None,
            google_api_base=os.getenv("ACTIONPILOT_GOOGLE_API_BASE", defaults["google_api_base"]),
            max_attempts=_env_int("ACTIONPILOT_MAX_ATTEMPTS", defaults["max_attempts"]),
            retry_cooldown_minutes=_env_int(
                "ACTIONPILOT_RETRY_COOLDOWN_MINUTES", defaults["retry_cooldown_minutes"]
            ),
            batch_limit=_env_int("ACTIONPILOT_BATCH_LIMIT", defaults["batch_limit"]),
            stats_window_hours=_env_int(
                "ACTIONPILOT_STATS_WINDOW_HOURS", defaults["stats_window_hours"]
            ),
            processing_interval_seconds=_env_int(
                "ACTIONPILOT_PROCESSING_INTERVAL_SECONDS",
                defaults["processing_interval_seconds"],
            ),
            ingestion_interval_seconds=_env_int(
                "ACTIONPILOT_INGESTION_INTERVAL_SECONDS",
                defaults["ingestion_interval_seconds"],
            ),
            inter_message_delay_ms=_env_int(
                "ACTIONPILOT_INTER_MESSAGE_DELAY_MS", defaults["inter_message_delay_ms"]
            ),
            briefing_cache_minutes=_env_int(
                "ACTIONPILOT_BRIEFING_CACHE_MINUTES", defaults["briefing_cache_minutes"]
            ),
            mock_fixture_path=os.getenv(
                "ACTIONPILOT_MOCK_FIXTURE_PATH", defaults["mock_fixture_path"]
            ),
            remediation_url=os.getenv("ACTIONPILOT_REMEDIATION_URL", defaults["remediation_url"]),
            reauth_url=os.getenv("ACTIONPILOT_REAUTH_URL", defaults["reauth_url"]),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def _env_int(name: str, default: str | int) -> int:
    """Read an integer override, falling back to the JSON default."""

    return int(os.getenv(name, default))
