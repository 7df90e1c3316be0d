"""Shared pytest fixtures for txflow tests."""

import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from txflow.domain.entities import (
    Rule,
    RuleAction,
    Transaction,
    TransactionType,
)

FIXED_NOW = datetime(2024, 3, 1, 12, 0, 0)


@pytest.fixture
def fixed_now():
    """Return the timestamp the fixed clock reports."""
    return FIXED_NOW


@pytest.fixture
def clock():
    """Create a clock that always returns the same instant."""
    return lambda: FIXED_NOW


@pytest.fixture
def make_transaction():
    """Return a factory for canonical transactions with sensible defaults."""

    def _make(**overrides) -> Transaction:
        values = dict(
            id="imp-1",
            account_id="default",
            date=datetime(2024, 1, 15),
            payee="Coffee Shop",
            amount=Decimal("42.50"),
            type=TransactionType.EXPENSE,
            category_id=None,
            description="",
            is_cleared=True,
            is_reconciled=False,
            tags=(),
            created_at=FIXED_NOW,
            updated_at=FIXED_NOW,
        )
        values.update(overrides)
        return Transaction(**values)

    return _make


@pytest.fixture
def make_rule():
    """Return a factory for active rules with sensible defaults."""

    def _make(conditions, category_id="cat-1", **overrides) -> Rule:
        values = dict(
            id=f"rule-{category_id}",
            name=f"Rule {category_id}",
            is_active=True,
            priority=100,
            conditions=tuple(conditions),
            action=RuleAction(category_id=category_id),
        )
        values.update(overrides)
        return Rule(**values)

    return _make


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()


@pytest.fixture
def fixtures_dir():
    """Return the path to the test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def legacy_statement(fixtures_dir):
    """Return the legacy-dialect statement fixture as text."""
    return (fixtures_dir / "statement_legacy.ofx").read_text(encoding="utf-8")


@pytest.fixture
def xml_statement(fixtures_dir):
    """Return the XML-dialect statement fixture as text."""
    return (fixtures_dir / "statement_xml.ofx").read_text(encoding="utf-8")


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Restore the package logger after tests that configure logging."""
    logger = logging.getLogger("txflow")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
