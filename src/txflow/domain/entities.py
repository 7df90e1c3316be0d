"""Domain model entities for txflow.

These are pure data classes representing the import pipeline's concepts,
independent of any storage schema. Parsers produce the statement entities,
the normalizer produces canonical transactions, and the rule engine reads
rules owned by the caller.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from txflow.domain.errors import FieldAnomaly, ValidationError

# Ordered mapping from source field name to raw string value.
RawRecord = dict[str, str]

# Mapping from canonical field name to source field name.
FieldMapping = dict[str, str]

STATEMENT_ID_PREFIX = "stmt-"
IMPORT_ID_PREFIX = "imp-"


class TransactionType(str, Enum):
    """Direction of money for a canonical transaction."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class SourceFormat(str, Enum):
    """Format of an import file."""

    DELIMITED = "csv"
    STATEMENT = "ofx"


@dataclass(frozen=True)
class Transaction:
    """Canonical transaction entity.

    The amount is always non-negative; direction is carried by ``type``.
    """

    id: str
    account_id: str
    date: datetime
    payee: str
    amount: Decimal
    type: TransactionType
    category_id: Optional[str]
    description: str
    is_cleared: bool
    is_reconciled: bool
    tags: tuple[str, ...]
    created_at: datetime
    updated_at: datetime

    def __post_init__(self):
        if self.amount < 0:
            raise ValidationError(
                f"Transaction {self.id} has negative amount {self.amount}; "
                "direction must be carried by type"
            )

    @property
    def native_id(self) -> Optional[str]:
        """Source-native identifier for statement imports, if any."""
        if self.id.startswith(STATEMENT_ID_PREFIX):
            return self.id[len(STATEMENT_ID_PREFIX):]
        return None

    def with_changes(self, **changes) -> "Transaction":
        """Return a copy of this transaction with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class FinancialInstitution:
    """Institution block of a statement sign-on response."""

    name: str
    fid: str


@dataclass(frozen=True)
class SignOnInfo:
    """Sign-on response of a statement document."""

    status_code: str
    status_severity: str
    server_date: datetime
    language: str
    status_message: Optional[str] = None
    institution: Optional[FinancialInstitution] = None


@dataclass(frozen=True)
class Balance:
    """Ledger or available balance reported by a statement."""

    amount: Decimal
    as_of: datetime
    kind: str


@dataclass(frozen=True)
class StatementTransaction:
    """One transaction record from a statement document.

    The amount keeps its native sign (negative = outflow). Fields that could
    not be parsed were defaulted and are listed in ``anomalies``.
    """

    native_id: str
    date: datetime
    amount: Decimal
    payee: Optional[str] = None
    name: Optional[str] = None
    memo: Optional[str] = None
    check_number: Optional[str] = None
    ref_number: Optional[str] = None
    kind_hint: Optional[str] = None
    sic: Optional[str] = None
    anomalies: tuple[FieldAnomaly, ...] = ()


@dataclass(frozen=True)
class Statement:
    """Account statement within a statement document."""

    currency: str
    account_id: str
    account_type: str
    start_date: datetime
    end_date: datetime
    transactions: tuple[StatementTransaction, ...]
    bank_id: Optional[str] = None
    ledger_balance: Optional[Balance] = None
    available_balance: Optional[Balance] = None

    @property
    def is_credit_card(self) -> bool:
        return self.account_type == "CREDITCARD"


@dataclass(frozen=True)
class StatementDocument:
    """Parsed statement document."""

    version: str
    dialect: str
    statements: tuple[Statement, ...] = ()
    sign_on: Optional[SignOnInfo] = None

    @property
    def bank_statements(self) -> tuple[Statement, ...]:
        return tuple(s for s in self.statements if not s.is_credit_card)

    @property
    def credit_card_statements(self) -> tuple[Statement, ...]:
        return tuple(s for s in self.statements if s.is_credit_card)

    @property
    def transactions(self) -> tuple[StatementTransaction, ...]:
        return tuple(t for s in self.statements for t in s.transactions)


@dataclass(frozen=True)
class StatementParseResult:
    """Result of parsing a statement document.

    On failure ``error`` is set and statements/transactions are empty.
    """

    document: StatementDocument
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def statements(self) -> tuple[Statement, ...]:
        return self.document.statements

    @property
    def transactions(self) -> tuple[StatementTransaction, ...]:
        return self.document.transactions


class TextOperator(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"


class AmountOperator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    BETWEEN = "between"


class MetadataField(str, Enum):
    ACCOUNT = "account"
    TYPE = "type"
    DATE = "date"
    TAGS = "tags"


class DateOperator(str, Enum):
    BEFORE = "before"
    AFTER = "after"
    ON = "on"


class LogicalOperator(str, Enum):
    """How the conditions of a rule combine."""

    AND = "and"
    OR = "or"


@dataclass(frozen=True)
class TextCondition:
    """Match payee or description text."""

    field: str
    operator: TextOperator
    value: str
    case_sensitive: bool = False
    is_negated: bool = False

    def __post_init__(self):
        if self.field not in ("payee", "description"):
            raise ValidationError(
                f"Text condition field must be 'payee' or 'description', got '{self.field}'"
            )


@dataclass(frozen=True)
class AmountCondition:
    """Compare the transaction amount."""

    operator: AmountOperator
    value: Decimal
    value2: Optional[Decimal] = None
    is_negated: bool = False

    def __post_init__(self):
        if self.operator == AmountOperator.BETWEEN and self.value2 is None:
            raise ValidationError("Amount condition 'between' requires value2")


@dataclass(frozen=True)
class DateCriterion:
    """Value of a date metadata condition."""

    operator: DateOperator
    date: datetime


@dataclass(frozen=True)
class MetadataCondition:
    """Match account, type, date or tags.

    ``value`` is a string for account and type, a DateCriterion for date and a
    tuple of tag names for tags.
    """

    field: MetadataField
    value: Union[str, DateCriterion, tuple[str, ...]]
    is_negated: bool = False


Condition = Union[TextCondition, AmountCondition, MetadataCondition]


@dataclass(frozen=True)
class RuleAction:
    """Action applied when a rule matches."""

    category_id: str
    add_tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class Rule:
    """Categorization rule. Lower priority numbers are evaluated first."""

    id: str
    name: str
    is_active: bool
    priority: int
    conditions: tuple[Condition, ...]
    action: RuleAction
    match_count: int = 0
    last_match_date: Optional[datetime] = None
    description: Optional[str] = None
    logical_operator: LogicalOperator = LogicalOperator.AND


@dataclass(frozen=True)
class RuleStatUpdate:
    """Statistics the caller should persist for a rule after matching."""

    rule_id: str
    match_count: int
    last_match_date: datetime


@dataclass(frozen=True)
class MatchResult:
    """Output of the duplicate matcher."""

    duplicates: tuple[Transaction, ...] = ()
    unique: tuple[Transaction, ...] = ()
    updated: tuple[Transaction, ...] = ()


@dataclass(frozen=True)
class ImportStats:
    """Import quality summary."""

    added: int = 0
    duplicates: int = 0
    updated: int = 0
    errors: int = 0


@dataclass(frozen=True)
class ImportResult:
    """Output of one import run."""

    transactions: tuple[Transaction, ...]
    stats: ImportStats
    source_format: SourceFormat
    updated: tuple[Transaction, ...] = ()
    rule_updates: tuple[RuleStatUpdate, ...] = ()
    anomalies: tuple[str, ...] = ()
