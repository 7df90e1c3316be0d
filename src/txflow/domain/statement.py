"""Statement markup (OFX/QFX) parsing.

Two dialects exist: the legacy tag-based form (a colon-separated header
block followed by SGML-style tags whose leaf elements are usually left
unclosed) and the XML form (an ``<?xml ...?>`` / ``<?OFX ...?>`` prologue
followed by well-formed tags). Each dialect has its own cleanup pass; after
that a single recursive tag walker builds the tree for both.
"""

import html
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Union

from txflow.domain.entities import (
    Balance,
    FinancialInstitution,
    SignOnInfo,
    Statement,
    StatementDocument,
    StatementParseResult,
    StatementTransaction,
)
from txflow.domain.errors import FieldAnomaly, StatementParseError, empty_input
from txflow.utils.amount_parser import parse_amount
from txflow.utils.date_parser import parse_statement_date, read_statement_date

logger = logging.getLogger(__name__)

# Parsed tag tree: leaf text, nested mapping, or a list for repeated tags
TagValue = Union[str, dict[str, Any], list]

_OPEN_TAG = re.compile(r"<([A-Za-z0-9_.]+)>")
_ANY_TAG = re.compile(r"</?[A-Za-z0-9_.]+>")
_OFX_ROOT = re.compile(r"<OFX>(.*?)(?:</OFX>|\Z)", re.IGNORECASE | re.DOTALL)
_XML_DECLARATION = re.compile(r"<\?xml.*?\?>", re.IGNORECASE | re.DOTALL)
_OFX_DECLARATION = re.compile(r"<\?OFX(.*?)\?>", re.IGNORECASE | re.DOTALL)
_XML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_PI_VERSION = re.compile(r'VERSION\s*=\s*"?(\d+)"?', re.IGNORECASE)
_HEADER_VERSION = re.compile(r"^VERSION:(\d+)", re.MULTILINE)

BANK_ACCOUNT_TYPES = ("CHECKING", "SAVINGS", "MONEYMRKT", "CREDITLINE")

# Tolerance when comparing a ledger balance against a caller balance
BALANCE_TOLERANCE = Decimal("0.01")


class Dialect(str, Enum):
    """Statement markup dialect."""

    LEGACY = "sgml"
    XML = "xml"


@dataclass(frozen=True)
class BalanceCheck:
    """Outcome of comparing a statement balance with an account balance."""

    is_verified: bool
    difference: Decimal


def is_statement_markup(content: str) -> bool:
    """Return True when content looks like a statement markup document."""
    return "OFXHEADER:" in content or "<OFX>" in content.upper() or "<?OFX" in content.upper()


def detect_dialect(content: str) -> Dialect:
    """Detect the dialect of a statement document by its prologue."""
    head = content.lstrip()[:512].upper()
    if head.startswith("<?XML") or "<?OFX" in head:
        return Dialect.XML
    if "OFXHEADER:" in head:
        return Dialect.LEGACY
    return Dialect.XML


def _normalize_lines(content: str) -> str:
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line for line in content.split("\n") if line.strip())


def _clean_legacy(content: str) -> tuple[str, str]:
    """Drop the colon header block; return (markup, version)."""
    content = _normalize_lines(content)
    version_match = _HEADER_VERSION.search(content)
    version = version_match.group(1) if version_match else "1"
    start = content.upper().find("<OFX>")
    if start == -1:
        raise StatementParseError("Invalid statement: missing <OFX> tag")
    return content[start:], version


def _clean_xml(content: str) -> tuple[str, str]:
    """Drop XML and OFX processing instructions; return (markup, version)."""
    version = "2.0"
    pi = _OFX_DECLARATION.search(content)
    if pi:
        version_match = _PI_VERSION.search(pi.group(1))
        if version_match:
            version = version_match.group(1)
    content = _XML_DECLARATION.sub("", content)
    content = _OFX_DECLARATION.sub("", content)
    content = _XML_COMMENT.sub("", content)
    return _normalize_lines(content), version


_CLEANUP: dict[Dialect, Callable[[str], tuple[str, str]]] = {
    Dialect.LEGACY: _clean_legacy,
    Dialect.XML: _clean_xml,
}


def _find_close(content: str, name: str, start: int) -> Optional[tuple[int, int]]:
    """Find the close tag pairing with an open tag ending at ``start``.

    Nested same-name tags are counted so the innermost pairs are skipped.
    Returns (close_start, close_end) or None when the tag is never closed.
    """
    pattern = re.compile(rf"<(/?){re.escape(name)}>", re.IGNORECASE)
    depth = 1
    for match in pattern.finditer(content, start):
        depth += -1 if match.group(1) else 1
        if depth == 0:
            return match.start(), match.end()
    return None


def _add_child(node: dict[str, Any], name: str, value: TagValue) -> None:
    if name not in node:
        node[name] = value
    elif isinstance(node[name], list):
        node[name].append(value)
    else:
        node[name] = [node[name], value]


def parse_tags(content: str) -> dict[str, Any]:
    """Parse a markup slice into a tag tree.

    Finds the top-level child tags of ``content``. A tag whose text runs up
    to a different tag is an unclosed leaf (legacy style). Otherwise the
    tag is paired with its same-name close tag; the inner content is
    recursed into when it holds tags, and kept as stripped text when it
    does not. Repeated tags collect into lists.
    """
    node: dict[str, Any] = {}
    pos = 0
    while True:
        match = _OPEN_TAG.search(content, pos)
        if match is None:
            break
        name = match.group(1).upper()
        start = match.end()

        next_tag = _ANY_TAG.search(content, start)
        text_end = next_tag.start() if next_tag else len(content)
        text = content[start:text_end]
        closes_here = next_tag is not None and next_tag.group(0).upper() == f"</{name}>"

        if text.strip() and not closes_here:
            # Unclosed leaf: value runs to the next tag
            _add_child(node, name, html.unescape(text.strip()))
            pos = text_end
            continue

        close = _find_close(content, name, start)
        if close is None:
            # Empty unclosed leaf
            _add_child(node, name, "")
            pos = text_end
            continue

        inner, pos = content[start:close[0]], close[1]
        if _OPEN_TAG.search(inner):
            _add_child(node, name, parse_tags(inner))
        else:
            _add_child(node, name, html.unescape(inner.strip()))
    return node


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _get(node: Any, *path: str) -> Any:
    for key in path:
        if isinstance(node, list):
            node = node[0] if node else None
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _text(node: Any, *path: str) -> Optional[str]:
    value = _get(node, *path)
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str) and value:
        return value
    return None


def _parse_statement_amount(raw: Optional[str]) -> Decimal:
    # Some institutions use a decimal comma
    if raw and "," in raw and "." not in raw:
        raw = raw.replace(",", ".")
    return parse_amount(raw)


def _balance_amount(raw: Optional[str]) -> Decimal:
    try:
        return _parse_statement_amount(raw)
    except FieldAnomaly as e:
        logger.warning("Balance amount defaulted to 0: %s", e)
        return Decimal("0")


def _extract_sign_on(tree: dict[str, Any], clock: Callable[[], datetime]) -> SignOnInfo:
    sonrs = _get(tree, "SIGNONMSGSRSV1", "SONRS")
    if not isinstance(sonrs, dict):
        return SignOnInfo(
            status_code="0", status_severity="INFO", server_date=clock(), language="ENG"
        )

    institution = None
    if isinstance(sonrs.get("FI"), dict):
        institution = FinancialInstitution(
            name=_text(sonrs, "FI", "ORG") or "",
            fid=_text(sonrs, "FI", "FID") or "",
        )
    return SignOnInfo(
        status_code=_text(sonrs, "STATUS", "CODE") or "0",
        status_severity=_text(sonrs, "STATUS", "SEVERITY") or "INFO",
        status_message=_text(sonrs, "STATUS", "MESSAGE"),
        server_date=parse_statement_date(_text(sonrs, "DTSERVER"), clock),
        language=_text(sonrs, "LANGUAGE") or "ENG",
        institution=institution,
    )


def _extract_balance(
    node: Any, kind: str, clock: Callable[[], datetime]
) -> Optional[Balance]:
    if not isinstance(node, dict):
        return None
    return Balance(
        amount=_balance_amount(_text(node, "BALAMT")),
        as_of=parse_statement_date(_text(node, "DTASOF"), clock),
        kind=kind,
    )


def _extract_transactions(
    tran_list: Any, clock: Callable[[], datetime]
) -> tuple[StatementTransaction, ...]:
    transactions = []
    for trn in _as_list(_get(tran_list, "STMTTRN")):
        if not isinstance(trn, dict):
            continue
        anomalies = []
        try:
            posted = read_statement_date(_text(trn, "DTPOSTED"))
        except FieldAnomaly as e:
            anomalies.append(e)
            posted = clock()
        try:
            amount = _parse_statement_amount(_text(trn, "TRNAMT"))
        except FieldAnomaly as e:
            anomalies.append(e)
            amount = Decimal("0")
        native_id = _text(trn, "FITID") or uuid.uuid4().hex
        if anomalies:
            logger.debug("Statement record %s degraded: %s", native_id, "; ".join(map(str, anomalies)))
        transactions.append(
            StatementTransaction(
                native_id=native_id,
                date=posted,
                amount=amount,
                name=_text(trn, "NAME"),
                payee=_text(trn, "PAYEE") or _text(trn, "PAYEE", "NAME"),
                memo=_text(trn, "MEMO"),
                check_number=_text(trn, "CHECKNUM"),
                ref_number=_text(trn, "REFNUM"),
                kind_hint=_text(trn, "TRNTYPE"),
                sic=_text(trn, "SIC"),
                anomalies=tuple(anomalies),
            )
        )
    return tuple(transactions)


def _extract_statement(
    stmtrs: dict[str, Any], account_tag: str, credit_card: bool, clock: Callable[[], datetime]
) -> Statement:
    account = stmtrs.get(account_tag)
    if not isinstance(account, dict):
        account = {}
    tran_list = stmtrs.get("BANKTRANLIST")
    account_type = "CREDITCARD" if credit_card else (_text(account, "ACCTTYPE") or "CHECKING")
    return Statement(
        currency=_text(stmtrs, "CURDEF") or "USD",
        bank_id=None if credit_card else _text(account, "BANKID"),
        account_id=_text(account, "ACCTID") or "",
        account_type=account_type,
        start_date=parse_statement_date(_text(tran_list, "DTSTART"), clock),
        end_date=parse_statement_date(_text(tran_list, "DTEND"), clock),
        transactions=_extract_transactions(tran_list, clock),
        ledger_balance=_extract_balance(stmtrs.get("LEDGERBAL"), "ledger", clock),
        available_balance=_extract_balance(stmtrs.get("AVAILBAL"), "available", clock),
    )


def _extract_statements(
    tree: dict[str, Any], clock: Callable[[], datetime]
) -> tuple[Statement, ...]:
    statements = []
    sections = (
        ("BANKMSGSRSV1", "STMTTRNRS", "STMTRS", "BANKACCTFROM", False),
        ("CREDITCARDMSGSRSV1", "CCSTMTTRNRS", "CCSTMTRS", "CCACCTFROM", True),
    )
    for message_set, wrapper, response, account_tag, credit_card in sections:
        for trnrs in _as_list(_get(tree, message_set, wrapper)):
            for stmtrs in _as_list(_get(trnrs, response)):
                if isinstance(stmtrs, dict):
                    statements.append(
                        _extract_statement(stmtrs, account_tag, credit_card, clock)
                    )
    return tuple(statements)


def parse_statement(
    content: str, clock: Callable[[], datetime] = datetime.now
) -> StatementParseResult:
    """Parse a statement markup document.

    Never raises: failures are returned as a result with ``error`` set and no
    statements, so the caller can fall back to another format.

    Args:
        content: Document text
        clock: Source of "now" for unparseable dates

    Returns:
        StatementParseResult
    """
    dialect = Dialect.XML
    try:
        if content is None or not content.strip():
            raise StatementParseError(empty_input())
        dialect = detect_dialect(content)
        cleaned, version = _CLEANUP[dialect](content)

        root = _OFX_ROOT.search(cleaned)
        if root is None:
            raise StatementParseError("Invalid statement: missing OFX root element")

        tree = parse_tags(root.group(1))
        statements = _extract_statements(tree, clock)
        document = StatementDocument(
            version=version,
            dialect=dialect.value,
            statements=statements,
            sign_on=_extract_sign_on(tree, clock),
        )
        logger.debug(
            "Parsed %s statement document: %d statements, %d transactions",
            dialect.value,
            len(statements),
            len(document.transactions),
        )
        return StatementParseResult(document=document)
    except Exception as e:
        logger.warning("Statement parse failed: %s", e)
        return StatementParseResult(
            document=StatementDocument(version="unknown", dialect=dialect.value),
            error=str(e) or type(e).__name__,
        )


def verify_account_balance(statement: Statement, current_balance: Decimal) -> BalanceCheck:
    """Compare an account balance with the statement's ledger balance.

    Args:
        statement: Parsed statement
        current_balance: Balance the caller holds for the account

    Returns:
        BalanceCheck; unverified with zero difference when the statement has
        no ledger balance
    """
    if statement.ledger_balance is None:
        return BalanceCheck(is_verified=False, difference=Decimal("0"))
    difference = current_balance - statement.ledger_balance.amount
    return BalanceCheck(is_verified=abs(difference) < BALANCE_TOLERANCE, difference=difference)
