"""Delimited-text parsing: delimiter sniffing, tokenizing and row repair."""

import csv
import io
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional

from txflow.domain.entities import RawRecord, Transaction, TransactionType
from txflow.domain.errors import (
    InputError,
    NoDataRowsError,
    NoHeadersError,
    ParseError,
    ValidationError,
    empty_input,
    invalid_delimiter,
    no_data_rows,
    no_headers,
)

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
DEFAULT_DELIMITER = ","

# Lines inspected for raw delimiter occurrences and for field-count consistency
OCCURRENCE_SAMPLE_LINES = 5
CONSISTENCY_SAMPLE_LINES = 10

EXPORT_COLUMNS = ("date", "amount", "payee", "category", "description")


@dataclass(frozen=True)
class RowAnomaly:
    """A data row whose field count was repaired beyond the common cases."""

    line_number: int
    expected: int
    actual: int

    def __str__(self) -> str:
        return (
            f"Line {self.line_number}: expected {self.expected} fields, "
            f"found {self.actual}"
        )


@dataclass(frozen=True)
class DelimitedTable:
    """Parsed delimited text."""

    headers: tuple[str, ...]
    rows: tuple[RawRecord, ...]
    delimiter: str
    anomalies: tuple[RowAnomaly, ...] = ()
    line_numbers: tuple[int, ...] = ()


@dataclass(frozen=True)
class _DelimiterScore:
    delimiter: str
    occurrences: int
    consistency: int
    viable: bool


def validate_delimiter(delimiter: str) -> str:
    """Return ``delimiter`` if it can separate fields.

    Raises:
        ValidationError: If it is not a single character, or is a quote or
            line break
    """
    if not isinstance(delimiter, str) or len(delimiter) != 1 or delimiter in "\"\r\n":
        raise ValidationError(invalid_delimiter(delimiter))
    return delimiter


def _normalize_text(text: str) -> str:
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n")


def split_line(line: str, delimiter: str) -> list[str]:
    """Split one line on ``delimiter``, honoring double-quoted fields.

    Values are trimmed and unwrapped of their surrounding quotes; a doubled
    quote inside a quoted field is a literal quote.
    """
    reader = csv.reader([line], delimiter=delimiter, skipinitialspace=True)
    try:
        row = next(reader, [])
    except csv.Error:
        return [line.strip()]
    return [value.strip() for value in row]


def _score_delimiter(lines: list[str], delimiter: str) -> _DelimiterScore:
    occurrences = sum(line.count(delimiter) for line in lines[:OCCURRENCE_SAMPLE_LINES])
    field_counts = [
        len(split_line(line, delimiter)) for line in lines[:CONSISTENCY_SAMPLE_LINES]
    ]
    splitting = Counter(count for count in field_counts if count > 1)
    consistency = splitting.most_common(1)[0][1] if splitting else 0
    return _DelimiterScore(
        delimiter=delimiter,
        occurrences=occurrences,
        consistency=consistency,
        viable=bool(splitting),
    )


def sniff_delimiter(text: str, prefer_comma: bool = True) -> str:
    """Pick the most likely field delimiter of ``text``.

    Each candidate is scored by field-count consistency across the first
    non-blank lines (how many lines share the most common field count), then
    by raw occurrence count. Candidates that never split a line are
    disqualified. With ``prefer_comma`` a viable comma wins any consistency
    tie, so a tab or pipe inside a quoted value cannot flip the choice.

    Args:
        text: Delimited text content
        prefer_comma: Bias toward comma for declared delimited-text input

    Returns:
        The chosen delimiter, comma when no candidate is viable
    """
    lines = [line for line in _normalize_text(text).split("\n") if line.strip()]
    scores = [_score_delimiter(lines, d) for d in CANDIDATE_DELIMITERS]
    viable = [s for s in scores if s.viable]
    if not viable:
        logger.debug("No delimiter splits the sample; defaulting to %r", DEFAULT_DELIMITER)
        return DEFAULT_DELIMITER

    best = max(viable, key=lambda s: (s.consistency, s.occurrences))
    comma = next((s for s in viable if s.delimiter == ","), None)
    if prefer_comma and comma is not None and comma.consistency >= best.consistency:
        best = comma

    logger.debug(
        "Sniffed delimiter %r (consistency=%d, occurrences=%d)",
        best.delimiter,
        best.consistency,
        best.occurrences,
    )
    return best.delimiter


def _unique_headers(headers: list[str]) -> list[str]:
    seen: Counter = Counter()
    result = []
    for index, header in enumerate(headers, start=1):
        name = header or f"Column {index}"
        seen[name] += 1
        if seen[name] > 1:
            name = f"{name} ({seen[name]})"
        result.append(name)
    return result


def _read_rows(text: str, delimiter: str) -> list[tuple[int, list[str]]]:
    """Return (line_number, values) for every non-blank logical row."""
    reader = csv.reader(io.StringIO(text), delimiter=delimiter, skipinitialspace=True)
    rows = []
    try:
        for row in reader:
            values = [value.strip() for value in row]
            if any(values):
                rows.append((reader.line_num, values))
    except csv.Error as e:
        raise ParseError(f"Line {reader.line_num}: {e}", line_number=reader.line_num)
    return rows


def parse_delimited(
    text: str, delimiter: Optional[str] = None, prefer_comma: bool = True
) -> DelimitedTable:
    """Parse delimited text into headers and raw records.

    Rows whose field count differs from the header count are repaired: one
    short is padded with an empty trailing field, one long is truncated.
    Larger mismatches are repaired the same way and reported as anomalies.

    Args:
        text: Delimited text content
        delimiter: Field delimiter, sniffed when None
        prefer_comma: Passed to the sniffer

    Returns:
        DelimitedTable with one RawRecord per data row

    Raises:
        InputError: If the text is empty
        NoHeadersError: If no usable header line exists
        NoDataRowsError: If the header is not followed by any data row
        ValidationError: If a forced delimiter is not a single character
    """
    if text is None or not text.strip():
        raise InputError(empty_input())

    text = _normalize_text(text)
    if delimiter is None:
        delimiter = sniff_delimiter(text, prefer_comma=prefer_comma)
    else:
        validate_delimiter(delimiter)

    rows = _read_rows(text, delimiter)
    if not rows:
        raise NoHeadersError(no_headers(1), line_number=1)

    header_line, headers = rows[0]
    if len(headers) == 1:
        embedded = next((d for d in CANDIDATE_DELIMITERS if d in headers[0]), None)
        if embedded is not None:
            logger.debug("Re-splitting single header on embedded delimiter %r", embedded)
            headers = split_line(headers[0], embedded)
            if embedded != delimiter:
                delimiter = embedded
                rows = [(header_line, headers)] + _read_rows(text, delimiter)[1:]

    headers = _unique_headers(headers)
    data_rows = rows[1:]
    if not data_rows:
        raise NoDataRowsError(no_data_rows(header_line + 1), line_number=header_line + 1)

    expected = len(headers)
    records: list[RawRecord] = []
    anomalies: list[RowAnomaly] = []
    for line_number, values in data_rows:
        actual = len(values)
        if actual != expected:
            if abs(actual - expected) > 1:
                anomalies.append(RowAnomaly(line_number, expected, actual))
            if actual < expected:
                values = values + [""] * (expected - actual)
            else:
                values = values[:expected]
        records.append(dict(zip(headers, values)))

    if anomalies:
        logger.info("Repaired %d malformed rows", len(anomalies))

    return DelimitedTable(
        headers=tuple(headers),
        rows=tuple(records),
        delimiter=delimiter,
        anomalies=tuple(anomalies),
        line_numbers=tuple(line_number for line_number, _ in data_rows),
    )


def export_delimited(
    transactions: Iterable[Transaction],
    delimiter: str = DEFAULT_DELIMITER,
    include_headers: bool = True,
) -> str:
    """Render transactions as delimited text.

    Columns are date (ISO), amount (signed by type), payee, category and
    description. Text fields are always quoted.

    Raises:
        ValidationError: If the delimiter is not a single character
    """
    validate_delimiter(delimiter)
    buffer = io.StringIO()
    writer = csv.writer(
        buffer, delimiter=delimiter, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n"
    )
    if include_headers:
        writer.writerow(EXPORT_COLUMNS)
    for txn in transactions:
        signed = -txn.amount if txn.type == TransactionType.EXPENSE else txn.amount
        writer.writerow(
            [
                txn.date.date().isoformat(),
                signed,
                txn.payee,
                txn.category_id or "",
                txn.description,
            ]
        )
    return buffer.getvalue()
