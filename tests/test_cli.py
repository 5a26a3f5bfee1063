"""Tests for the gate CLI."""

from __future__ import annotations

import asyncio
import json
import shlex
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from gatekeeper.cli import main
from gatekeeper.config import ENV_CONFIG, ENV_DATA_DIR
from gatekeeper.feedback import FeedbackLedger, LedgerEntry
from samples import GENERIC_ANSWER, GENERIC_REQUEST


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(ENV_CONFIG, raising=False)
    monkeypatch.delenv(ENV_DATA_DIR, raising=False)


def invoke(tmp_path: Path, *args: str):
    return CliRunner().invoke(main, ["--data-dir", str(tmp_path), *args])


def worker_command(tmp_path: Path, output: str) -> str:
    """A worker that drains the prompt from stdin and prints ``output``."""
    script = tmp_path / "worker.py"
    script.write_text(f"import sys\nsys.stdin.read()\nprint({output!r})\n")
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"


def seed_ledger(path: Path, issue: str, times: int = 3) -> None:
    async def _seed() -> None:
        async with FeedbackLedger(str(path)) as ledger:
            for _ in range(times):
                await ledger.record(
                    LedgerEntry(
                        category="research",
                        aggregate_score=0.7,
                        disposition="enhance",
                        issues=(issue,),
                    )
                )

    asyncio.run(_seed())


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_init(tmp_path: Path) -> None:
    result = invoke(tmp_path, "init")
    assert result.exit_code == 0
    assert "initialized" in result.output.lower()
    assert (tmp_path / "config.toml").exists()
    assert (tmp_path / "ledger.db").exists()


def test_invalid_config(tmp_path: Path) -> None:
    (tmp_path / "config.toml").write_text("bogus = 1\n")
    result = invoke(tmp_path, "criteria")
    assert result.exit_code != 0
    assert "Invalid configuration" in result.output


def test_classify_json(tmp_path: Path) -> None:
    result = invoke(tmp_path, "classify", "Survey recent papers on dense retrieval", "--json")
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["category"] == "research"
    assert data["should_delegate"] is True


def test_classify_text(tmp_path: Path) -> None:
    result = invoke(tmp_path, "classify", "What's the difference between BFS and DFS?")
    assert result.exit_code == 0
    assert "generic" in result.output
    assert "no" in result.output


def test_validate_json(tmp_path: Path, research_artifact: str) -> None:
    artifact = tmp_path / "answer.md"
    artifact.write_text(research_artifact)
    result = invoke(
        tmp_path, "validate", str(artifact), "-c", "research", "--as-of-year", "2026", "--json"
    )
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["disposition"] == "pass"
    assert data["issues"] == []


def test_validate_table(tmp_path: Path, enhanceable_research_artifact: str) -> None:
    artifact = tmp_path / "answer.md"
    artifact.write_text(enhanceable_research_artifact)
    result = invoke(tmp_path, "validate", str(artifact), "-c", "research")
    assert result.exit_code == 0
    assert "ENHANCE" in result.output


def test_enhance_to_file(tmp_path: Path, enhanceable_research_artifact: str) -> None:
    artifact = tmp_path / "answer.md"
    artifact.write_text(enhanceable_research_artifact)
    repaired = tmp_path / "fixed.md"
    result = invoke(tmp_path, "enhance", str(artifact), "-c", "research", "-o", str(repaired))
    assert result.exit_code == 0
    text = repaired.read_text()
    assert "## References" in text
    assert "[ref 1]" not in text


def test_run_requires_worker(tmp_path: Path) -> None:
    result = invoke(tmp_path, "run", GENERIC_REQUEST, "--force")
    assert result.exit_code != 0
    assert "No worker command" in result.output


def test_run_pass(tmp_path: Path) -> None:
    command = worker_command(tmp_path, GENERIC_ANSWER)
    result = invoke(tmp_path, "run", GENERIC_REQUEST, "--force", "--command", command, "--json")
    assert result.exit_code == 0
    assert '"verdict": "pass"' in result.output

    history = invoke(tmp_path, "history")
    assert history.exit_code == 0
    assert "Ledger History" in history.output


def test_run_direct(tmp_path: Path) -> None:
    command = worker_command(tmp_path, GENERIC_ANSWER)
    result = invoke(tmp_path, "run", "What's the difference between BFS and DFS?",
                    "--command", command)
    assert result.exit_code == 0
    assert "DIRECT" in result.output


def test_run_failed_exits_nonzero(tmp_path: Path) -> None:
    command = worker_command(tmp_path, "too short")
    result = invoke(tmp_path, "run", GENERIC_REQUEST, "--force", "--command", command)
    assert result.exit_code == 1
    assert "FAILED" in result.output


def test_history_empty(tmp_path: Path) -> None:
    result = invoke(tmp_path, "history")
    assert result.exit_code == 0
    assert "No ledger entries" in result.output


def test_issues(tmp_path: Path) -> None:
    seed_ledger(tmp_path / "ledger.db", "has_references")
    result = invoke(tmp_path, "issues", "-c", "research")
    assert result.exit_code == 0
    assert "has_references" in result.output


def test_tune_requires_flag(tmp_path: Path) -> None:
    result = invoke(tmp_path, "tune")
    assert result.exit_code == 0
    assert "--dry-run" in result.output


def test_tune_dry_run_does_not_persist(tmp_path: Path) -> None:
    seed_ledger(tmp_path / "ledger.db", "has_references")
    result = invoke(tmp_path, "tune", "--dry-run")
    assert result.exit_code == 0
    assert "has_references" in result.output
    assert not (tmp_path / "criteria_overrides.json").exists()


def test_tune_apply_persists(tmp_path: Path) -> None:
    seed_ledger(tmp_path / "ledger.db", "has_references")
    result = invoke(tmp_path, "tune", "--apply")
    assert result.exit_code == 0
    overrides = json.loads((tmp_path / "criteria_overrides.json").read_text())
    assert "has_references" in overrides["categories"]["research"]["criteria"]

    shown = invoke(tmp_path, "criteria", "-c", "research")
    assert shown.exit_code == 0
    assert "0.4231" in shown.output


def test_criteria(tmp_path: Path) -> None:
    result = invoke(tmp_path, "criteria")
    assert result.exit_code == 0
    assert "fabricated_citation" in result.output
