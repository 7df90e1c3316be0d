"""Shared domain error messages and error types."""

from typing import Optional


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class InputError(DomainError):
    """Import content is empty or unreadable. Aborts the whole import."""


class ParseError(DomainError):
    """Content could not be parsed structurally.

    Fatal for the file, but the caller may retry with a forced format.
    """

    def __init__(self, message: str, line_number: Optional[int] = None):
        super().__init__(message)
        self.line_number = line_number


class NoHeadersError(ParseError):
    """Delimited text has no header line."""


class NoDataRowsError(ParseError):
    """Delimited text has a header line but no data rows."""


class StatementParseError(ParseError):
    """Statement markup document could not be parsed."""


class FieldAnomaly(DomainError):
    """A single field of a single record could not be parsed.

    Raised by field parsers and recovered by the normalizer, which degrades
    the field to a default and counts the anomaly.
    """

    def __init__(self, field: str, raw_value: Optional[str], reason: str):
        super().__init__(f"Could not parse {field} {raw_value!r}: {reason}")
        self.field = field
        self.raw_value = raw_value
        self.reason = reason


class RuleEvaluationAnomaly(DomainError):
    """A rule condition could not be evaluated (e.g. invalid regex)."""

    def __init__(self, pattern: str, reason: str):
        super().__init__(f"Invalid regex pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


def empty_input() -> str:
    """Return message for empty import content."""
    return "Import content is empty"


def unreadable_input(reason: str) -> str:
    """Return message for content that cannot be decoded."""
    return f"Import content could not be read: {reason}"


def no_headers(line_number: int) -> str:
    """Return message for a missing header line."""
    return f"Line {line_number}: no header line found"


def no_data_rows(line_number: int) -> str:
    """Return message for delimited text with headers only."""
    return f"Line {line_number}: no data rows after header"


def invalid_delimiter(delimiter: str) -> str:
    """Return message for a delimiter that cannot separate fields."""
    return f"Invalid delimiter {delimiter!r}: expected a single character other than a quote or line break"


def unknown_canonical_field(field: str, valid: set[str]) -> str:
    """Return message for a mapping that targets an unknown field."""
    return (
        f"Invalid canonical field '{field}'. "
        f"Must be one of: {', '.join(sorted(valid))}"
    )


def unknown_source_field(source: str, field: str) -> str:
    """Return message for a mapping that names a missing column."""
    return f"Column '{source}' mapped to '{field}' is not present in the file headers"


def missing_required_mappings(missing: list[str]) -> str:
    """Return message when required canonical fields are unmapped."""
    return f"Field mapping is missing required fields: {', '.join(sorted(missing))}"
