"""Duplicate detection of newly imported transactions against a ledger snapshot.

Matching runs in two tiers:

- identity: a new transaction whose native identifier (or id) equals an
  existing one is a duplicate, and is also queued as an update when its
  amount, payee or description changed;
- heuristic: otherwise an existing transaction with the exact payee, an
  amount within ``epsilon`` and a date within ``window_days`` calendar days
  marks it as a duplicate. Posted dates often shift by a day or two between
  exports of the same transaction.

Anything else is unique. Records whose dates cannot be compared stay unique.
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, Optional

from txflow.domain.entities import MatchResult, Transaction

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 3
DEFAULT_EPSILON = Decimal("0.001")


def _identity_key(txn: Transaction) -> str:
    return txn.native_id or txn.id


def _calendar_day(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _as_decimal(value) -> Optional[Decimal]:
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


class DuplicateMatcher:
    """Partition new transactions into unique, duplicate and updated."""

    def __init__(
        self,
        window_days: int = DEFAULT_WINDOW_DAYS,
        epsilon: Decimal = DEFAULT_EPSILON,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize matcher.

        Args:
            window_days: Maximum calendar-day distance for heuristic matches
            epsilon: Amount difference below which amounts are equal
            clock: Source of ``updated_at`` for refreshed records
        """
        self.window_days = window_days
        self.epsilon = epsilon
        self.clock = clock

    def _needs_update(self, existing: Transaction, new: Transaction) -> bool:
        return (
            _as_decimal(existing.amount) != _as_decimal(new.amount)
            or existing.payee != new.payee
            or existing.description != new.description
        )

    def _is_near_match(self, existing: Transaction, new: Transaction) -> bool:
        new_day = _calendar_day(new.date)
        existing_day = _calendar_day(existing.date)
        if new_day is None or existing_day is None:
            logger.debug(
                "Skipping date comparison of %s and %s: malformed date", new.id, existing.id
            )
            return False
        if abs((new_day - existing_day).days) > self.window_days:
            return False

        new_amount = _as_decimal(new.amount)
        existing_amount = _as_decimal(existing.amount)
        if new_amount is None or existing_amount is None:
            return False
        return abs(new_amount - existing_amount) < self.epsilon

    def match(
        self, new: Iterable[Transaction], existing: Iterable[Transaction]
    ) -> MatchResult:
        """Match new transactions against an existing ledger snapshot.

        Args:
            new: Freshly normalized transactions
            existing: Point-in-time snapshot of the ledger

        Returns:
            MatchResult; ``updated`` holds existing records refreshed with
            the new content
        """
        existing = list(existing)
        by_identity = {_identity_key(txn): txn for txn in existing}
        by_payee: dict[str, list[Transaction]] = defaultdict(list)
        for txn in existing:
            by_payee[txn.payee].append(txn)

        duplicates: list[Transaction] = []
        unique: list[Transaction] = []
        updated: list[Transaction] = []

        for txn in new:
            same = by_identity.get(_identity_key(txn))
            if same is not None:
                duplicates.append(txn)
                if self._needs_update(same, txn):
                    updated.append(
                        same.with_changes(
                            amount=txn.amount,
                            payee=txn.payee,
                            description=txn.description,
                            updated_at=self.clock(),
                        )
                    )
                continue

            if any(self._is_near_match(candidate, txn) for candidate in by_payee.get(txn.payee, ())):
                duplicates.append(txn)
            else:
                unique.append(txn)

        logger.debug(
            "Duplicate matching: %d unique, %d duplicates, %d updated",
            len(unique),
            len(duplicates),
            len(updated),
        )
        return MatchResult(
            duplicates=tuple(duplicates), unique=tuple(unique), updated=tuple(updated)
        )


def find_duplicates(
    new: Iterable[Transaction],
    existing: Iterable[Transaction],
    window_days: int = DEFAULT_WINDOW_DAYS,
    epsilon: Decimal = DEFAULT_EPSILON,
) -> MatchResult:
    """Match ``new`` against ``existing`` with a default matcher."""
    return DuplicateMatcher(window_days=window_days, epsilon=epsilon).match(new, existing)
