"""Smoke tests for the Typer CLI against a throwaway SQLite file."""

import pytest
from loguru import logger
from typer.testing import CliRunner

from certprep import __version__
from certprep.cli.main import app
from certprep.config import get_settings

runner = CliRunner()


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_FILE", "")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("KNOWLEDGE_API_URL", "")
    get_settings.cache_clear()
    yield f"sqlite:///{tmp_path / 'cli.db'}"
    get_settings.cache_clear()
    logger.remove()


def _invoke(url, *args):
    return runner.invoke(app, ["--database-url", url, *args])


def test_version(cli_env):
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_db_init_is_idempotent(cli_env):
    assert _invoke(cli_env, "db", "init").exit_code == 0
    result = _invoke(cli_env, "db", "init")

    assert result.exit_code == 0
    assert "Database initialized" in result.output


def test_quiz_start_with_empty_catalog_fails_cleanly(cli_env):
    _invoke(cli_env, "db", "init")

    result = _invoke(cli_env, "quiz", "start", "nurse-1", "--count", "5")

    assert result.exit_code == 1
    assert "✗" in result.output


def test_invalid_difficulty_is_rejected(cli_env):
    result = _invoke(cli_env, "quiz", "start", "nurse-1", "--difficulty", "expert")

    assert result.exit_code != 0


def test_pool_stats_on_empty_database(cli_env):
    _invoke(cli_env, "db", "init")

    result = _invoke(cli_env, "pool", "stats")

    assert result.exit_code == 0
    assert "Active blueprints" in result.output


def test_status_of_unknown_session(cli_env):
    _invoke(cli_env, "db", "init")

    result = _invoke(cli_env, "quiz", "status", "session_missing")

    assert result.exit_code == 1
