"""Import pipeline domain service."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional, Union

from txflow.domain.delimited import parse_delimited
from txflow.domain.duplicates import DEFAULT_EPSILON, DEFAULT_WINDOW_DAYS, DuplicateMatcher
from txflow.domain.entities import (
    FieldMapping,
    ImportResult,
    ImportStats,
    RawRecord,
    Rule,
    SignOnInfo,
    SourceFormat,
    Statement,
    Transaction,
)
from txflow.domain.errors import (
    InputError,
    StatementParseError,
    empty_input,
    missing_required_mappings,
    unreadable_input,
)
from txflow.domain.field_mapping import missing_required, resolve_mapping
from txflow.domain.normalizer import NormalizedRecord, TransactionNormalizer
from txflow.domain.rules import categorize
from txflow.domain.statement import is_statement_markup, parse_statement

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_ID = "default"
PREVIEW_ROWS = 5
STATEMENT_PREVIEW_HEADERS = (
    "date",
    "amount",
    "payee",
    "description",
    "check_number",
    "ref_number",
    "type",
)


@dataclass(frozen=True)
class ImportOptions:
    """Settings for one import run.

    Attributes:
        account_id: Account the imported transactions belong to
        source_format: Forces the format instead of sniffing it
        mapping: Canonical field to header overrides for delimited files
        statement_mapping: Payee/description source overrides for statements
        delimiter: Forces the delimiter instead of sniffing it
        prefer_comma: Bias the delimiter sniffer toward comma
        stop_on_first_match: Apply only the first matching rule
        duplicate_window_days: Date window of the heuristic duplicate match
        amount_epsilon: Amount tolerance of the heuristic duplicate match
    """

    account_id: str = DEFAULT_ACCOUNT_ID
    source_format: Optional[SourceFormat] = None
    mapping: Optional[dict[str, Optional[str]]] = None
    statement_mapping: Optional[dict[str, Optional[str]]] = None
    delimiter: Optional[str] = None
    prefer_comma: bool = True
    stop_on_first_match: bool = True
    duplicate_window_days: int = DEFAULT_WINDOW_DAYS
    amount_epsilon: Decimal = DEFAULT_EPSILON


@dataclass(frozen=True)
class ImportPreview:
    """First rows of an import file, before normalization."""

    source_format: SourceFormat
    headers: tuple[str, ...]
    rows: tuple[RawRecord, ...]
    mapping: FieldMapping = field(default_factory=dict)
    delimiter: Optional[str] = None
    statements: tuple[Statement, ...] = ()
    sign_on: Optional[SignOnInfo] = None


def decode_content(content: Union[bytes, str]) -> str:
    """Decode raw import content to text.

    Raises:
        InputError: If the content is empty or not text/bytes
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            content = content.decode("latin-1")
    elif not isinstance(content, str):
        raise InputError(unreadable_input(f"unsupported content type {type(content).__name__}"))

    if not content.strip():
        raise InputError(empty_input())
    return content


def detect_format(text: str) -> SourceFormat:
    """Detect the import format from the content signature."""
    if is_statement_markup(text):
        return SourceFormat.STATEMENT
    return SourceFormat.DELIMITED


def _ensure_unique_ids(records: list[NormalizedRecord]) -> list[NormalizedRecord]:
    """Suffix repeated ids deterministically so ids are unique per batch."""
    seen: Counter = Counter()
    result = []
    for record in records:
        txn_id = record.transaction.id
        seen[txn_id] += 1
        if seen[txn_id] > 1:
            logger.warning("Repeated transaction id %s in one import", txn_id)
            record = NormalizedRecord(
                transaction=record.transaction.with_changes(id=f"{txn_id}-{seen[txn_id]}"),
                anomalies=record.anomalies,
            )
        result.append(record)
    return result


class ImportService:
    """Service for running the import pipeline on one file."""

    def __init__(
        self,
        options: Optional[ImportOptions] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize import service.

        Args:
            options: Import settings
            clock: Source of "now" for timestamps and date fallbacks
        """
        self.options = options or ImportOptions()
        self.clock = clock
        self.normalizer = TransactionNormalizer(
            account_id=self.options.account_id,
            clock=clock,
            statement_mapping=self.options.statement_mapping,
        )
        self.matcher = DuplicateMatcher(
            window_days=self.options.duplicate_window_days,
            epsilon=self.options.amount_epsilon,
            clock=clock,
        )

    def _source_format(self, text: str) -> SourceFormat:
        if self.options.source_format is not None:
            return SourceFormat(self.options.source_format)
        return detect_format(text)

    def read_statement(self, text: str) -> tuple[list[NormalizedRecord], list[str], int]:
        """Parse and normalize a statement document.

        Returns:
            Tuple of (records, anomaly messages, number of degraded records)

        Raises:
            StatementParseError: If the document cannot be parsed
        """
        result = parse_statement(text, clock=self.clock)
        if not result.ok:
            raise StatementParseError(result.error)

        records = [self.normalizer.normalize_statement_transaction(t) for t in result.transactions]
        messages = [
            f"Transaction {stmt_txn.native_id}: {anomaly}"
            for stmt_txn in result.transactions
            for anomaly in stmt_txn.anomalies
        ]
        degraded = sum(1 for record in records if record.anomalies)
        return records, messages, degraded

    def read_delimited(self, text: str) -> tuple[list[NormalizedRecord], list[str], int]:
        """Parse and normalize delimited text.

        Returns:
            Tuple of (records, anomaly messages, number of degraded records)

        Raises:
            InputError: If the text is empty
            ParseError: If no header line or no data rows exist
        """
        table = parse_delimited(
            text, delimiter=self.options.delimiter, prefer_comma=self.options.prefer_comma
        )
        mapping = resolve_mapping(table.headers, self.options.mapping)
        missing = missing_required(mapping)
        if missing:
            logger.warning("%s; those fields will default", missing_required_mappings(missing))

        messages = [str(anomaly) for anomaly in table.anomalies]
        degraded_lines = {anomaly.line_number for anomaly in table.anomalies}
        records = []
        for line_number, row in zip(table.line_numbers, table.rows):
            record = self.normalizer.normalize_record(row, mapping)
            for anomaly in record.anomalies:
                messages.append(f"Line {line_number}: {anomaly}")
            if record.anomalies:
                degraded_lines.add(line_number)
            records.append(record)
        return records, messages, len(degraded_lines)

    def preview(self, content: Union[bytes, str], limit: int = PREVIEW_ROWS) -> ImportPreview:
        """Return the detected format and the first raw rows of a file.

        Raises:
            InputError: If the content is empty
            ParseError: If the content cannot be parsed
        """
        text = decode_content(content)
        source_format = self._source_format(text)
        if source_format == SourceFormat.STATEMENT:
            result = parse_statement(text, clock=self.clock)
            if not result.ok:
                raise StatementParseError(result.error)
            rows = tuple(
                {
                    "date": t.date.date().isoformat(),
                    "amount": str(t.amount),
                    "payee": t.name or t.payee or "",
                    "description": t.memo or "",
                    "check_number": t.check_number or "",
                    "ref_number": t.ref_number or "",
                    "type": t.kind_hint or "",
                }
                for t in result.transactions[:limit]
            )
            return ImportPreview(
                source_format=source_format,
                headers=STATEMENT_PREVIEW_HEADERS,
                rows=rows,
                statements=result.statements,
                sign_on=result.document.sign_on,
            )

        table = parse_delimited(
            text, delimiter=self.options.delimiter, prefer_comma=self.options.prefer_comma
        )
        return ImportPreview(
            source_format=source_format,
            headers=table.headers,
            rows=table.rows[:limit],
            mapping=resolve_mapping(table.headers, self.options.mapping),
            delimiter=table.delimiter,
        )

    def run(
        self,
        content: Union[bytes, str],
        existing: Iterable[Transaction] = (),
        rules: Iterable[Rule] = (),
    ) -> ImportResult:
        """Import one file.

        Args:
            content: Raw file content
            existing: Point-in-time snapshot of the ledger for duplicate matching
            rules: Categorization rules

        Returns:
            ImportResult with the new (unique, categorized) transactions,
            refreshed existing transactions and import statistics

        Raises:
            InputError: If the content is empty or unreadable
            ParseError: If the file cannot be parsed structurally
        """
        text = decode_content(content)
        source_format = self._source_format(text)
        logger.info("Importing %s content (%d characters)", source_format.value, len(text))

        if source_format == SourceFormat.STATEMENT:
            records, messages, degraded = self.read_statement(text)
        else:
            records, messages, degraded = self.read_delimited(text)

        records = _ensure_unique_ids(records)
        match = self.matcher.match((r.transaction for r in records), existing)
        categorized, rule_updates = categorize(
            match.unique,
            list(rules),
            stop_on_first_match=self.options.stop_on_first_match,
            now=self.clock(),
        )

        stats = ImportStats(
            added=len(match.unique),
            duplicates=len(match.duplicates),
            updated=len(match.updated),
            errors=degraded,
        )
        logger.info(
            "Import complete: %d added, %d duplicates, %d updated, %d errors",
            stats.added,
            stats.duplicates,
            stats.updated,
            stats.errors,
        )
        if stats.errors:
            logger.warning("%d records were degraded during import", stats.errors)

        return ImportResult(
            transactions=tuple(categorized),
            stats=stats,
            source_format=source_format,
            updated=match.updated,
            rule_updates=tuple(rule_updates),
            anomalies=tuple(messages),
        )
