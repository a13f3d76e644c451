"""Summary: Tests for the command-line entry point.

Importance: The CLI is the local-first way to drive ingestion and actions.
Alternatives: Drive every workflow through the HTTP API.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from actionpilot.cli import build_parser, run_cli

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "defaults.json").write_text(
        (REPO_ROOT / "config" / "defaults.json").read_text(encoding="utf-8"), encoding="utf-8"
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ACTIONPILOT_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("ACTIONPILOT_AI_PROVIDER", "mock")
    monkeypatch.setenv("ACTIONPILOT_WORKSPACE_PROVIDER", "mock")
    return tmp_path


def test_ingest_list_and_execute(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify the CLI ingests the fixture and executes an action.

    Importance: Confirms the CLI shares wiring with the API.
    Alternatives: Test services only.
    """

    fixture = REPO_ROOT / "data" / "mock_messages.json"
    run_cli(["ingest-mock", "--fixture", str(fixture)])
    assert "Ingested 3 rows" in capsys.readouterr().out
    run_cli(["list-messages"])
    assert "[unprocessed:0]" in capsys.readouterr().out
    run_cli(["execute", "1", "mark_read"])
    assert json.loads(capsys.readouterr().out)["actionType"] == "mark_read"
    run_cli(["audit", "--message-id", "1"])
    assert "mark_read executed" in capsys.readouterr().out


def test_pipeline_errors_exit_with_payload(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        run_cli(["execute", "42", "mark_read"])
    assert excinfo.value.code == 1
    assert json.loads(capsys.readouterr().out)["error"] == "not_found"


def test_detect_rules_only(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    run_cli(["detect", "--rules-only", "summarize my emails from today"])
    assert capsys.readouterr().out.strip() == "email_summary"


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
