"""Tests for logging configuration."""

import io
import logging

import pytest

from txflow.cli.main import cli
from txflow.logging_setup import configure_logging, parse_level


@pytest.mark.parametrize(
    "level, expected",
    [
        ("debug", logging.DEBUG),
        (" INFO ", logging.INFO),
        ("10", 10),
        (logging.ERROR, logging.ERROR),
    ],
)
def test_parse_level(level, expected):
    """Test levels given as names or numbers."""
    assert parse_level(level) == expected


def test_parse_level_fallbacks(monkeypatch):
    """Test unknown levels fall back to the environment, then WARNING."""
    monkeypatch.delenv("TXFLOW_LOG_LEVEL", raising=False)
    assert parse_level(None) == logging.WARNING
    assert parse_level("chatty") == logging.WARNING

    monkeypatch.setenv("TXFLOW_LOG_LEVEL", "error")
    assert parse_level(None) == logging.ERROR
    assert parse_level("info") == logging.INFO


def test_configure_logging_replaces_handler():
    """Test repeated configuration keeps a single handler."""
    stream = io.StringIO()
    configure_logging("info")
    logger = configure_logging("debug", fmt="%(levelname)s:%(message)s", stream=stream)

    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
    assert not logger.propagate

    logging.getLogger("txflow.domain.rules").debug("hello")
    assert stream.getvalue() == "DEBUG:hello\n"


def test_cli_log_level_option(cli_runner, fixtures_dir):
    """Test the CLI configures the package logger."""
    result = cli_runner.invoke(
        cli, ["--log-level", "DEBUG", "inspect", str(fixtures_dir / "semicolon_transactions.csv")]
    )

    assert result.exit_code == 0
    assert logging.getLogger("txflow").level == logging.DEBUG


def test_cli_log_level_from_environment(cli_runner, fixtures_dir):
    """Test the log level can come from the environment."""
    result = cli_runner.invoke(
        cli,
        ["inspect", str(fixtures_dir / "semicolon_transactions.csv")],
        env={"TXFLOW_LOG_LEVEL": "ERROR"},
    )

    assert result.exit_code == 0
    assert logging.getLogger("txflow").level == logging.ERROR
