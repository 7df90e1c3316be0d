"""JSON codecs for ledger snapshots, rule sets and import results."""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

from txflow.domain.entities import (
    AmountCondition,
    AmountOperator,
    Condition,
    DateCriterion,
    DateOperator,
    ImportResult,
    LogicalOperator,
    MetadataCondition,
    MetadataField,
    Rule,
    RuleAction,
    RuleStatUpdate,
    TextCondition,
    TextOperator,
    Transaction,
    TransactionType,
)
from txflow.domain.errors import ValidationError


def _parse_datetime(value: Any, field: str) -> datetime:
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {field} '{value}': expected an ISO date")


def _parse_decimal(value: Any, field: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        number = None
    if number is None or not number.is_finite():
        raise ValidationError(f"Invalid {field} '{value}': expected a number")
    return number


def _optional_datetime(value: Any, field: str) -> Optional[datetime]:
    return None if value in (None, "") else _parse_datetime(value, field)


def _require_object(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError(f"Each {what} must be a JSON object, got {type(data).__name__}")
    return data


def transaction_to_dict(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "date": txn.date.isoformat(),
        "payee": txn.payee,
        "amount": str(txn.amount),
        "type": txn.type.value,
        "category_id": txn.category_id,
        "description": txn.description,
        "is_cleared": txn.is_cleared,
        "is_reconciled": txn.is_reconciled,
        "tags": list(txn.tags),
        "created_at": txn.created_at.isoformat(),
        "updated_at": txn.updated_at.isoformat(),
    }


def transaction_from_dict(data: dict[str, Any]) -> Transaction:
    """Build a Transaction from its JSON form.

    Raises:
        ValidationError: If a required key is missing or malformed
    """
    _require_object(data, "transaction")
    try:
        txn_date = _parse_datetime(data["date"], "date")
        created_at = _optional_datetime(data.get("created_at"), "created_at") or txn_date
        try:
            txn_type = TransactionType(data.get("type", "expense"))
        except ValueError:
            raise ValidationError(f"Invalid transaction type '{data.get('type')}'")
        return Transaction(
            id=str(data["id"]),
            account_id=str(data.get("account_id", "default")),
            date=txn_date,
            payee=data.get("payee") or "",
            amount=_parse_decimal(data["amount"], "amount"),
            type=txn_type,
            category_id=data.get("category_id") or None,
            description=data.get("description") or "",
            is_cleared=bool(data.get("is_cleared", False)),
            is_reconciled=bool(data.get("is_reconciled", False)),
            tags=tuple(data.get("tags") or ()),
            created_at=created_at,
            updated_at=_optional_datetime(data.get("updated_at"), "updated_at") or created_at,
        )
    except KeyError as e:
        raise ValidationError(f"Transaction is missing required key {e}")
    except ValidationError:
        raise
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Invalid transaction {data.get('id')!r}: {e}")


def _condition_from_dict(data: Any) -> Condition:
    _require_object(data, "condition")
    kind = data.get("kind")
    negated = bool(data.get("is_negated", False))
    try:
        if kind == "text":
            return TextCondition(
                field=data["field"],
                operator=TextOperator(data["operator"]),
                value=str(data["value"]),
                case_sensitive=bool(data.get("case_sensitive", False)),
                is_negated=negated,
            )
        if kind == "amount":
            value2 = data.get("value2")
            return AmountCondition(
                operator=AmountOperator(data["operator"]),
                value=_parse_decimal(data["value"], "value"),
                value2=None if value2 is None else _parse_decimal(value2, "value2"),
                is_negated=negated,
            )
        if kind == "metadata":
            field = MetadataField(data["field"])
            value = data["value"]
            if field == MetadataField.DATE:
                value = DateCriterion(
                    operator=DateOperator(value["operator"]),
                    date=_parse_datetime(value["date"], "date"),
                )
            elif field == MetadataField.TAGS:
                value = tuple([value] if isinstance(value, str) else value)
            return MetadataCondition(field=field, value=value, is_negated=negated)
    except KeyError as e:
        raise ValidationError(f"Condition is missing required key {e}")
    except ValidationError:
        raise
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Invalid {kind} condition: {e}")
    raise ValidationError(f"Unknown condition kind '{kind}'")


def rule_from_dict(data: dict[str, Any]) -> Rule:
    """Build a Rule from its JSON form.

    Raises:
        ValidationError: If a required key is missing or malformed
    """
    _require_object(data, "rule")
    try:
        action = _require_object(data["action"], "rule action")
        return Rule(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            is_active=bool(data.get("is_active", True)),
            priority=int(data.get("priority", 100)),
            conditions=tuple(_condition_from_dict(c) for c in data.get("conditions", ())),
            action=RuleAction(
                category_id=str(action["category_id"]),
                add_tags=tuple(action.get("add_tags") or ()),
            ),
            match_count=int(data.get("match_count", 0)),
            last_match_date=_optional_datetime(data.get("last_match_date"), "last_match_date"),
            description=data.get("description"),
            logical_operator=LogicalOperator(data.get("logical_operator", "and")),
        )
    except KeyError as e:
        raise ValidationError(f"Rule is missing required key {e}")
    except ValidationError:
        raise
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Invalid rule {data.get('id')!r}: {e}")


def rule_update_to_dict(update: RuleStatUpdate) -> dict[str, Any]:
    return {
        "rule_id": update.rule_id,
        "match_count": update.match_count,
        "last_match_date": update.last_match_date.isoformat(),
    }


def import_result_to_dict(result: ImportResult) -> dict[str, Any]:
    return {
        "source_format": result.source_format.value,
        "stats": {
            "added": result.stats.added,
            "duplicates": result.stats.duplicates,
            "updated": result.stats.updated,
            "errors": result.stats.errors,
        },
        "transactions": [transaction_to_dict(t) for t in result.transactions],
        "updated": [transaction_to_dict(t) for t in result.updated],
        "rule_updates": [rule_update_to_dict(u) for u in result.rule_updates],
        "anomalies": list(result.anomalies),
    }


def load_json_list(path: str, key: str) -> list[dict[str, Any]]:
    """Load a JSON list from ``path``; a top-level object must hold it under ``key``.

    Raises:
        ValidationError: If the file is not valid JSON or has the wrong shape
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"{path} is not valid JSON: {e}")
    if isinstance(data, dict):
        data = data.get(key)
    if not isinstance(data, list):
        raise ValidationError(f"{path} must contain a list of {key}")
    return data


def load_transactions(path: str) -> list[Transaction]:
    return [transaction_from_dict(item) for item in load_json_list(path, "transactions")]


def load_rules(path: str) -> list[Rule]:
    return [rule_from_dict(item) for item in load_json_list(path, "rules")]
