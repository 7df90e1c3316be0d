"""Field mapping inference for delimited imports."""

import logging
from typing import Optional, Sequence

from txflow.domain.entities import FieldMapping
from txflow.domain.errors import (
    ValidationError,
    unknown_canonical_field,
    unknown_source_field,
)

logger = logging.getLogger(__name__)

CANONICAL_FIELDS = ("date", "amount", "payee", "description", "type", "category")
REQUIRED_FIELDS = ("date", "amount")

# Synonyms per canonical field, highest priority first. Fields are resolved
# in this order, so a column claimed by an earlier field is not reused.
FIELD_SYNONYMS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("date", ("date", "transaction date", "posted date", "posting date", "booking date")),
    ("amount", ("amount", "transaction amount", "value")),
    ("type", ("type", "transaction type", "debit/credit", "dr/cr")),
    ("category", ("category",)),
    ("payee", ("payee", "merchant", "name", "description")),
    ("description", ("memo", "description", "details", "notes", "narrative")),
)

# Fields allowed to share a column already claimed by another field
_SHAREABLE = {"description"}

_DEGENERATE_KEYWORDS = ("date", "amount", "description")

# Where statement transaction values come from by default
STATEMENT_FIELD_DEFAULTS: FieldMapping = {"payee": "name", "description": "memo"}
STATEMENT_SOURCE_FIELDS = ("name", "payee", "memo", "check_number", "ref_number", "kind_hint", "sic")


def _find_header(
    headers: Sequence[str], synonyms: Sequence[str], claimed: set[str]
) -> Optional[str]:
    available = [h for h in headers if h not in claimed]
    lowered = [(h, h.strip().lower()) for h in available]
    for synonym in synonyms:
        exact = next((h for h, name in lowered if name == synonym), None)
        if exact is not None:
            return exact
        partial = next((h for h, name in lowered if synonym in name), None)
        if partial is not None:
            return partial
    return None


def infer_mapping(headers: Sequence[str]) -> FieldMapping:
    """Infer a canonical field mapping from header names.

    Headers are compared case-insensitively against each field's synonyms,
    exact matches before substring matches. A lone header that names two or
    more of date, amount and description maps those fields to itself and
    leaves splitting the value to the normalizer.

    Args:
        headers: Header names from the file

    Returns:
        Mapping from canonical field to header; unmatched fields are absent
    """
    if len(headers) == 1:
        only = headers[0]
        keywords = [k for k in _DEGENERATE_KEYWORDS if k in only.lower()]
        if len(keywords) >= 2:
            logger.info("Single column '%s' holds several fields; mapping all to it", only)
            return {"date": only, "amount": only, "payee": only, "description": only}

    mapping: FieldMapping = {}
    claimed: set[str] = set()
    for field, synonyms in FIELD_SYNONYMS:
        header = _find_header(headers, synonyms, set() if field in _SHAREABLE else claimed)
        if header is not None:
            mapping[field] = header
            claimed.add(header)

    logger.debug("Inferred field mapping: %s", mapping)
    return mapping


def resolve_mapping(
    headers: Sequence[str], override: Optional[dict[str, Optional[str]]] = None
) -> FieldMapping:
    """Return the inferred mapping with caller overrides applied.

    Args:
        headers: Header names from the file
        override: Canonical field to header; None or "" unmaps the field

    Returns:
        Final field mapping

    Raises:
        ValidationError: If an override names an unknown field or header
    """
    mapping = infer_mapping(headers)
    for field, source in (override or {}).items():
        if field not in CANONICAL_FIELDS:
            raise ValidationError(unknown_canonical_field(field, set(CANONICAL_FIELDS)))
        if not source:
            mapping.pop(field, None)
            continue
        if source not in headers:
            raise ValidationError(unknown_source_field(source, field))
        mapping[field] = source
    return mapping


def resolve_statement_mapping(override: Optional[dict[str, Optional[str]]] = None) -> FieldMapping:
    """Return the statement field mapping with caller overrides applied.

    Raises:
        ValidationError: If an override names an unknown field or source
    """
    mapping = dict(STATEMENT_FIELD_DEFAULTS)
    for field, source in (override or {}).items():
        if field not in STATEMENT_FIELD_DEFAULTS:
            raise ValidationError(unknown_canonical_field(field, set(STATEMENT_FIELD_DEFAULTS)))
        if source not in STATEMENT_SOURCE_FIELDS:
            raise ValidationError(unknown_source_field(str(source), field))
        mapping[field] = source
    return mapping


def missing_required(mapping: FieldMapping) -> list[str]:
    """Return required canonical fields absent from ``mapping``."""
    return [field for field in REQUIRED_FIELDS if field not in mapping]
