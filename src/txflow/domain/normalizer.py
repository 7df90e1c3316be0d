"""Conversion of raw records and statement records into canonical transactions."""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from txflow.domain.entities import (
    IMPORT_ID_PREFIX,
    STATEMENT_ID_PREFIX,
    FieldMapping,
    RawRecord,
    StatementTransaction,
    Transaction,
    TransactionType,
)
from txflow.domain.errors import FieldAnomaly
from txflow.domain.field_mapping import resolve_statement_mapping
from txflow.utils.amount_parser import parse_amount
from txflow.utils.date_parser import parse_transaction_date

logger = logging.getLogger(__name__)

INCOME_KEYWORDS = ("deposit", "credit", "income")
TRANSFER_KEYWORDS = ("transfer", "xfer")
STATEMENT_TRANSFER_HINTS = ("XFER", "TRANSFER")

_DATE_TOKEN = re.compile(r"\b\d{1,4}[/\-.]\d{1,2}[/\-.]\d{2,4}\b")
_AMOUNT_TOKEN = re.compile(r"[-+]?\(?[$€£¥]?-?\d[\d,]*\.\d{1,2}\)?-?")


@dataclass(frozen=True)
class NormalizedRecord:
    """A canonical transaction and the field anomalies hit while building it."""

    transaction: Transaction
    anomalies: tuple[FieldAnomaly, ...] = ()


def infer_type(explicit: Optional[str], signed_amount: Decimal) -> TransactionType:
    """Infer the transaction type.

    An explicit type value wins: deposit/credit/income keywords mean income,
    transfer keywords mean transfer and any other value means expense. Only
    without an explicit value does the amount sign decide (non-negative is
    income).
    """
    if explicit is not None and explicit.strip():
        lowered = explicit.strip().lower()
        if any(keyword in lowered for keyword in INCOME_KEYWORDS):
            return TransactionType.INCOME
        # Only an exact transfer keyword is a transfer; other non-income values
        # such as "transfer fee" stay expenses
        if lowered in TRANSFER_KEYWORDS:
            return TransactionType.TRANSFER
        return TransactionType.EXPENSE
    return TransactionType.INCOME if signed_amount >= 0 else TransactionType.EXPENSE


def split_combined_value(value: str) -> tuple[str, str, str]:
    """Split a value holding date, amount and text in one column.

    Returns (date_text, amount_text, remaining_text); parts that cannot be
    found are empty strings.
    """
    remaining = value
    date_text = ""
    date_match = _DATE_TOKEN.search(remaining)
    if date_match:
        date_text = date_match.group(0)
        remaining = remaining[: date_match.start()] + " " + remaining[date_match.end():]

    amount_text = ""
    amount_matches = list(_AMOUNT_TOKEN.finditer(remaining))
    if amount_matches:
        last = amount_matches[-1]
        amount_text = last.group(0)
        remaining = remaining[: last.start()] + " " + remaining[last.end():]

    text = re.sub(r"\s+", " ", re.sub(r"[,;|\t]", " ", remaining)).strip()
    return date_text, amount_text, text


def _new_import_id() -> str:
    return f"{IMPORT_ID_PREFIX}{uuid.uuid4().hex}"


class TransactionNormalizer:
    """Build canonical transactions for one account.

    Malformed fields never fail a record: they degrade to defaults (zero
    amount, current date, empty text) and are reported as anomalies.
    """

    def __init__(
        self,
        account_id: str,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = _new_import_id,
        statement_mapping: Optional[dict[str, Optional[str]]] = None,
    ):
        """Initialize normalizer.

        Args:
            account_id: Account the transactions belong to
            clock: Source of "now" for timestamps and date fallback
            id_factory: Id generator for records without a native id
            statement_mapping: Overrides for statement payee/description sources
        """
        self.account_id = account_id
        self.clock = clock
        self.id_factory = id_factory
        self.statement_mapping = resolve_statement_mapping(statement_mapping)

    def _parse_amount(self, raw: Optional[str], anomalies: list[FieldAnomaly]) -> Decimal:
        try:
            return parse_amount(raw)
        except FieldAnomaly as e:
            anomalies.append(e)
            return Decimal("0")

    def _parse_date(self, raw: Optional[str], anomalies: list[FieldAnomaly]) -> datetime:
        try:
            return parse_transaction_date(raw)
        except FieldAnomaly as e:
            anomalies.append(e)
            return self.clock()

    def normalize_record(self, record: RawRecord, mapping: FieldMapping) -> NormalizedRecord:
        """Normalize one delimited-text row.

        Args:
            record: Raw row keyed by header
            mapping: Canonical field to header

        Returns:
            NormalizedRecord with a fresh transaction id
        """

        def value(field: str) -> Optional[str]:
            source = mapping.get(field)
            if source is None:
                return None
            raw = record.get(source)
            return raw.strip() if raw is not None else None

        anomalies: list[FieldAnomaly] = []
        date_column = mapping.get("date")
        if date_column is not None and date_column == mapping.get("amount"):
            date_raw, amount_raw, text = split_combined_value(value("date") or "")
            payee = text if mapping.get("payee") == date_column else value("payee")
            description = text if mapping.get("description") == date_column else value("description")
        else:
            date_raw, amount_raw = value("date"), value("amount")
            payee, description = value("payee"), value("description")

        signed = self._parse_amount(amount_raw, anomalies)
        txn_date = self._parse_date(date_raw, anomalies)
        now = self.clock()

        transaction = Transaction(
            id=self.id_factory(),
            account_id=self.account_id,
            date=txn_date,
            payee=payee or "",
            amount=abs(signed),
            type=infer_type(value("type"), signed),
            category_id=value("category") or None,
            description=description or "",
            is_cleared=True,
            is_reconciled=False,
            tags=(),
            created_at=now,
            updated_at=now,
        )
        if anomalies:
            logger.debug("Record %s degraded: %s", transaction.id, "; ".join(map(str, anomalies)))
        return NormalizedRecord(transaction=transaction, anomalies=tuple(anomalies))

    def normalize_statement_transaction(self, stmt_txn: StatementTransaction) -> NormalizedRecord:
        """Normalize one statement transaction.

        The id is derived from the native identifier, so re-importing the
        same statement yields the same ids. The amount sign decides income
        versus expense; a transfer kind hint marks outflows as transfers.
        """
        payee_source = self.statement_mapping["payee"]
        payee = getattr(stmt_txn, payee_source) or stmt_txn.name or stmt_txn.payee
        description = getattr(stmt_txn, self.statement_mapping["description"])

        if stmt_txn.amount >= 0:
            txn_type = TransactionType.INCOME
        elif (stmt_txn.kind_hint or "").upper() in STATEMENT_TRANSFER_HINTS:
            txn_type = TransactionType.TRANSFER
        else:
            txn_type = TransactionType.EXPENSE

        now = self.clock()
        transaction = Transaction(
            id=f"{STATEMENT_ID_PREFIX}{stmt_txn.native_id}",
            account_id=self.account_id,
            date=stmt_txn.date,
            payee=payee or "",
            amount=abs(stmt_txn.amount),
            type=txn_type,
            category_id=None,
            description=description or "",
            is_cleared=True,
            is_reconciled=False,
            tags=(),
            created_at=now,
            updated_at=now,
        )
        return NormalizedRecord(transaction=transaction, anomalies=stmt_txn.anomalies)
