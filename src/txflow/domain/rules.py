"""Rule-based categorization.

Rules are evaluated in ascending priority order. Evaluation is pure: the
engine never mutates rules, it returns the statistics the caller should
persist (``RuleStatUpdate``) alongside the updated transactions.
"""

import logging
import re
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Sequence

from txflow.domain.entities import (
    AmountCondition,
    AmountOperator,
    Condition,
    DateCriterion,
    DateOperator,
    LogicalOperator,
    MetadataCondition,
    MetadataField,
    Rule,
    RuleAction,
    RuleStatUpdate,
    TextCondition,
    TextOperator,
    Transaction,
)
from txflow.domain.errors import RuleEvaluationAnomaly

logger = logging.getLogger(__name__)

# Amounts closer than this are equal
AMOUNT_TOLERANCE = Decimal("0.001")
DEFAULT_RULE_PRIORITY = 100


@dataclass(frozen=True)
class RuleOutcome:
    """Result of applying a single rule."""

    transaction: Transaction
    matched: bool
    stat_update: Optional[RuleStatUpdate] = None


@dataclass(frozen=True)
class RuleApplication:
    """Result of applying a rule set to one transaction."""

    transaction: Transaction
    matched_rules: tuple[Rule, ...] = ()
    stat_updates: tuple[RuleStatUpdate, ...] = ()


def _negate(condition: Condition, result: bool) -> bool:
    return not result if condition.is_negated else result


def _compile(pattern: str, case_sensitive: bool) -> re.Pattern:
    try:
        return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
    except re.error as e:
        raise RuleEvaluationAnomaly(pattern, str(e))


def evaluate_text_condition(condition: TextCondition, transaction: Transaction) -> bool:
    field_value = getattr(transaction, condition.field, None)
    if not field_value:
        return _negate(condition, False)

    text = str(field_value)
    if condition.operator == TextOperator.REGEX:
        try:
            result = _compile(condition.value, condition.case_sensitive).search(text) is not None
        except RuleEvaluationAnomaly as e:
            logger.warning("Regex condition treated as non-matching: %s", e)
            result = False
        return _negate(condition, result)

    value = condition.value if condition.case_sensitive else condition.value.lower()
    target = text if condition.case_sensitive else text.lower()
    if condition.operator == TextOperator.CONTAINS:
        result = value in target
    elif condition.operator == TextOperator.EQUALS:
        result = target == value
    elif condition.operator == TextOperator.STARTS_WITH:
        result = target.startswith(value)
    elif condition.operator == TextOperator.ENDS_WITH:
        result = target.endswith(value)
    else:
        result = False
    return _negate(condition, result)


def _decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def evaluate_amount_condition(condition: AmountCondition, transaction: Transaction) -> bool:
    """Compare the absolute transaction amount with the condition values."""
    amount = _decimal(transaction.amount)
    value = _decimal(condition.value)
    if amount is None or value is None:
        return _negate(condition, False)
    amount = abs(amount)

    if condition.operator == AmountOperator.EQUALS:
        result = abs(amount - value) < AMOUNT_TOLERANCE
    elif condition.operator == AmountOperator.GREATER_THAN:
        result = amount > value
    elif condition.operator == AmountOperator.LESS_THAN:
        result = amount < value
    elif condition.operator == AmountOperator.BETWEEN:
        value2 = _decimal(condition.value2)
        if value2 is None:
            result = False
        else:
            result = min(value, value2) <= amount <= max(value, value2)
    else:
        result = False
    return _negate(condition, result)


def _as_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time())
    return None


def _evaluate_date(criterion, transaction: Transaction) -> bool:
    if not isinstance(criterion, DateCriterion):
        return False
    txn_date = _as_datetime(transaction.date)
    compare_date = _as_datetime(criterion.date)
    if txn_date is None or compare_date is None:
        return False
    if criterion.operator == DateOperator.BEFORE:
        return txn_date < compare_date
    if criterion.operator == DateOperator.AFTER:
        return txn_date > compare_date
    if criterion.operator == DateOperator.ON:
        return txn_date.date() == compare_date.date()
    return False


def evaluate_metadata_condition(condition: MetadataCondition, transaction: Transaction) -> bool:
    """Evaluate an account, type, date or tags condition.

    Tags match when the transaction carries any of the listed tags.
    """
    if condition.field == MetadataField.ACCOUNT:
        result = transaction.account_id == condition.value
    elif condition.field == MetadataField.TYPE:
        result = transaction.type == condition.value
    elif condition.field == MetadataField.DATE:
        result = _evaluate_date(condition.value, transaction)
    elif condition.field == MetadataField.TAGS:
        wanted = (condition.value,) if isinstance(condition.value, str) else condition.value
        result = any(tag in transaction.tags for tag in wanted or ())
    else:
        result = False
    return _negate(condition, result)


def evaluate_condition(condition: Condition, transaction: Transaction) -> bool:
    """Evaluate one condition of any kind, negation included."""
    if isinstance(condition, TextCondition):
        return evaluate_text_condition(condition, transaction)
    if isinstance(condition, AmountCondition):
        return evaluate_amount_condition(condition, transaction)
    if isinstance(condition, MetadataCondition):
        return evaluate_metadata_condition(condition, transaction)
    raise TypeError(f"Unsupported condition type: {type(condition).__name__}")


def evaluate_rule(
    rule: Rule,
    transaction: Transaction,
    logical_operator: Optional[LogicalOperator] = None,
) -> bool:
    """Return True when an active rule's conditions match.

    Inactive rules and rules without conditions never match.

    Args:
        rule: Rule to evaluate
        transaction: Transaction to test
        logical_operator: Overrides the rule's own AND/OR combination
    """
    if not rule.is_active or not rule.conditions:
        return False
    operator = logical_operator or rule.logical_operator
    results = (evaluate_condition(c, transaction) for c in rule.conditions)
    if operator == LogicalOperator.OR:
        return any(results)
    return all(results)


def _merge_tags(current: Iterable[str], added: Iterable[str]) -> tuple[str, ...]:
    merged = list(current)
    for tag in added:
        if tag not in merged:
            merged.append(tag)
    return tuple(merged)


def apply_rule(
    rule: Rule, transaction: Transaction, now: Optional[datetime] = None
) -> RuleOutcome:
    """Apply a rule's action when it matches.

    Returns the original transaction unchanged when the rule does not match.
    """
    if not evaluate_rule(rule, transaction):
        return RuleOutcome(transaction=transaction, matched=False)

    updated = transaction.with_changes(
        category_id=rule.action.category_id,
        tags=_merge_tags(transaction.tags, rule.action.add_tags),
    )
    stat_update = RuleStatUpdate(
        rule_id=rule.id,
        match_count=rule.match_count + 1,
        last_match_date=now or datetime.now(),
    )
    return RuleOutcome(transaction=updated, matched=True, stat_update=stat_update)


def sort_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Sort rules by ascending priority, keeping input order for ties."""
    return sorted(rules, key=lambda r: r.priority)


def apply_rules(
    rules: Iterable[Rule],
    transaction: Transaction,
    stop_on_first_match: bool = True,
    now: Optional[datetime] = None,
) -> RuleApplication:
    """Apply rules to a transaction in priority order.

    With ``stop_on_first_match`` only the first matching rule applies.
    Otherwise every matching rule applies in order: a later match replaces
    the category while tags accumulate.

    Args:
        rules: Rules in any order
        transaction: Transaction to categorize
        stop_on_first_match: Stop after the first matching rule
        now: Timestamp recorded as the rules' last match date

    Returns:
        RuleApplication with the updated transaction
    """
    now = now or datetime.now()
    current = transaction
    matched: list[Rule] = []
    updates: list[RuleStatUpdate] = []
    for rule in sort_rules(rules):
        outcome = apply_rule(rule, current, now=now)
        if not outcome.matched:
            continue
        current = outcome.transaction
        matched.append(rule)
        updates.append(outcome.stat_update)
        if stop_on_first_match:
            break
    return RuleApplication(
        transaction=current, matched_rules=tuple(matched), stat_updates=tuple(updates)
    )


def categorize(
    transactions: Iterable[Transaction],
    rules: Sequence[Rule],
    stop_on_first_match: bool = True,
    now: Optional[datetime] = None,
) -> tuple[list[Transaction], list[RuleStatUpdate]]:
    """Categorize a batch of transactions.

    Returns the updated transactions and one stat update per rule that
    matched at least once, with match counts summed over the batch.
    """
    now = now or datetime.now()
    rules = sort_rules(rules)
    counts: Counter = Counter()
    categorized = []
    for txn in transactions:
        application = apply_rules(rules, txn, stop_on_first_match=stop_on_first_match, now=now)
        categorized.append(application.transaction)
        counts.update(rule.id for rule in application.matched_rules)

    updates = [
        RuleStatUpdate(rule_id=rule.id, match_count=rule.match_count + counts[rule.id], last_match_date=now)
        for rule in rules
        if counts[rule.id]
    ]
    if updates:
        logger.info(
            "Rules matched %d times across %d transactions",
            sum(counts.values()),
            len(categorized),
        )
    return categorized, updates


def preview_rule_application(
    rules: Iterable[Rule], transaction: Transaction
) -> tuple[Optional[Rule], Transaction]:
    """Return the first matching rule and the transaction it would produce."""
    for rule in sort_rules(rules):
        if evaluate_rule(rule, transaction):
            return rule, apply_rule(rule, transaction).transaction
    return None, transaction


def create_default_rule() -> Rule:
    """Return a new, empty rule. It cannot match until conditions are added."""
    return Rule(
        id=f"rule_{uuid.uuid4().hex}",
        name="New Rule",
        is_active=True,
        priority=DEFAULT_RULE_PRIORITY,
        conditions=(),
        action=RuleAction(category_id=""),
        match_count=0,
        last_match_date=None,
    )
