"""Smoke tests for the evidence-verifier command line interface."""

import pytest
from typer.testing import CliRunner

from evidence_verifier import __version__
from evidence_verifier.cli import main as cli
from evidence_verifier.config.settings import Settings

runner = CliRunner()


@pytest.fixture
def local_settings(tmp_path, monkeypatch) -> Settings:
    """SQLite store in tmp_path and a process-local queue."""
    settings = Settings(
        store_backend="sqlite",
        database_path=str(tmp_path / "evidence.db"),
        queue_backend="memory",
    )
    monkeypatch.setattr(cli, "settings", settings)
    return settings


def test_version() -> None:
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_score_verified() -> None:
    result = runner.invoke(cli.app, ["score", "--source", "Journal of X", "--excerpt", "A" * 300])
    assert result.exit_code == 0
    assert "Score: 6" in result.stdout
    assert "VERIFIED" in result.stdout


def test_score_rejected() -> None:
    result = runner.invoke(cli.app, ["score", "--source", "wikipedia", "--excerpt", "short"])
    assert result.exit_code == 0
    assert "Score: -4" in result.stdout
    assert "REJECTED" in result.stdout


def test_seed_then_show(local_settings: Settings) -> None:
    seeded = runner.invoke(cli.app, ["seed"])
    assert seeded.exit_code == 0
    assert "Livro / Sistemas" in seeded.stdout

    shown = runner.invoke(cli.app, ["show", "1"])
    assert shown.exit_code == 0
    assert "PENDING" in shown.stdout


def test_show_missing(local_settings: Settings) -> None:
    result = runner.invoke(cli.app, ["show", "99"])
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_enqueue_missing_evidence_fails(local_settings: Settings) -> None:
    result = runner.invoke(cli.app, ["enqueue", "99"])
    assert result.exit_code == 1
    assert "Evidence 99 not found" in result.stdout


def test_submit_document(local_settings: Settings, tmp_path) -> None:
    text_file = tmp_path / "report.txt"
    text_file.write_text("Page one.\n\nPage two.", encoding="utf-8")

    result = runner.invoke(
        cli.app, ["submit-document", "--claim-id", "4", "--text-file", str(text_file)]
    )
    assert result.exit_code == 0
    assert "Evidence 1 created" in result.stdout


def test_health(local_settings: Settings) -> None:
    result = runner.invoke(cli.app, ["health"])
    assert result.exit_code == 0
    assert "Ready" in result.stdout
