"""Tests for duplicate detection."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from txflow.domain.duplicates import DuplicateMatcher, find_duplicates


@pytest.fixture
def matcher(clock):
    """Create a matcher with the default window and a fixed clock."""
    return DuplicateMatcher(clock=clock)


def test_match_is_idempotent(matcher, make_transaction):
    """Test matching a ledger against itself finds only duplicates."""
    ledger = [
        make_transaction(id="imp-1"),
        make_transaction(id="stmt-A", payee="Payroll", amount=Decimal("100.00")),
        make_transaction(id="imp-3", payee="Grocer", date=datetime(2024, 2, 1)),
    ]

    result = matcher.match(ledger, ledger)

    assert result.unique == ()
    assert result.duplicates == tuple(ledger)
    assert result.updated == ()


def test_match_unique_against_empty_ledger(matcher, make_transaction):
    """Test everything is unique when the ledger is empty."""
    new = [make_transaction(id="imp-1"), make_transaction(id="imp-2", payee="Other")]

    result = find_duplicates(new, [])

    assert result.unique == tuple(new)
    assert result.duplicates == ()


@pytest.mark.parametrize("days, duplicate", [(0, True), (1, True), (-3, True), (3, True), (4, False), (-4, False)])
def test_heuristic_date_window(matcher, make_transaction, days, duplicate):
    """Test same payee and amount within three days is a duplicate."""
    existing = make_transaction(id="imp-old")
    new = make_transaction(id="imp-new", date=existing.date + timedelta(days=days))

    result = matcher.match([new], [existing])

    assert (result.duplicates == (new,)) is duplicate
    assert (result.unique == (new,)) is not duplicate


def test_heuristic_counts_calendar_days(matcher, make_transaction):
    """Test the window compares calendar days, not elapsed hours."""
    existing = make_transaction(id="imp-old", date=datetime(2024, 1, 15, 23, 59))
    new = make_transaction(id="imp-new", date=datetime(2024, 1, 18, 0, 1))

    assert matcher.match([new], [existing]).duplicates == (new,)


def test_heuristic_amount_epsilon(matcher, make_transaction):
    """Test amounts must agree within epsilon."""
    existing = make_transaction(id="imp-old", amount=Decimal("42.50"))
    close = make_transaction(id="imp-a", amount=Decimal("42.5005"))
    far = make_transaction(id="imp-b", amount=Decimal("42.51"))

    result = matcher.match([close, far], [existing])

    assert result.duplicates == (close,)
    assert result.unique == (far,)


def test_heuristic_requires_exact_payee(matcher, make_transaction):
    """Test a different payee is never a heuristic duplicate."""
    existing = make_transaction(id="imp-old", payee="Coffee Shop")
    new = make_transaction(id="imp-new", payee="coffee shop")

    assert matcher.match([new], [existing]).unique == (new,)


def test_identity_match_queues_update(matcher, make_transaction, fixed_now):
    """Test a re-imported record with changed content updates the original."""
    existing = make_transaction(
        id="stmt-TXN1",
        payee="Pending Merchant",
        amount=Decimal("10.00"),
        category_id="food",
        created_at=datetime(2024, 1, 1),
        updated_at=datetime(2024, 1, 1),
    )
    new = make_transaction(id="stmt-TXN1", payee="Final Merchant", amount=Decimal("12.00"))

    result = matcher.match([new], [existing])

    assert result.duplicates == (new,)
    assert result.unique == ()
    (updated,) = result.updated
    assert updated.id == "stmt-TXN1"
    assert updated.payee == "Final Merchant"
    assert updated.amount == Decimal("12.00")
    # Caller-owned fields are kept
    assert updated.category_id == "food"
    assert updated.created_at == datetime(2024, 1, 1)
    assert updated.updated_at == fixed_now


def test_identity_match_ignores_date_window(matcher, make_transaction):
    """Test identity matches apply regardless of date distance."""
    existing = make_transaction(id="stmt-TXN1", date=datetime(2023, 1, 1))
    new = make_transaction(id="stmt-TXN1", date=datetime(2024, 6, 1))

    result = matcher.match([new], [existing])

    assert result.duplicates == (new,)
    assert result.updated == ()


def test_malformed_date_stays_unique(matcher, make_transaction):
    """Test records whose dates cannot be compared are not matched heuristically."""
    existing = make_transaction(id="imp-old")
    new = make_transaction(id="imp-new")
    object.__setattr__(new, "date", "not a date")

    assert matcher.match([new], [existing]).unique == (new,)


def test_custom_window(clock, make_transaction):
    """Test the window is configurable."""
    existing = make_transaction(id="imp-old")
    new = make_transaction(id="imp-new", date=existing.date + timedelta(days=5))

    assert DuplicateMatcher(window_days=7, clock=clock).match([new], [existing]).duplicates == (new,)
