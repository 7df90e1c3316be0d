"""Tests for the import pipeline service."""

import logging

import pytest
from datetime import datetime
from decimal import Decimal

from txflow.domain.entities import (
    AmountCondition,
    AmountOperator,
    RuleAction,
    SourceFormat,
    TextCondition,
    TextOperator,
    TransactionType,
)
from txflow.domain.errors import InputError, NoDataRowsError, StatementParseError, ValidationError
from txflow.domain.import_service import (
    ImportOptions,
    ImportService,
    decode_content,
    detect_format,
)


@pytest.fixture
def service(clock):
    """Create an import service with default options and a fixed clock."""
    return ImportService(clock=clock)


def test_decode_content():
    """Test bytes are decoded and empty content is rejected."""
    assert decode_content(b"\xef\xbb\xbfDate,Amount\n") == "Date,Amount\n"
    assert decode_content("Caf\xe9".encode("latin-1")) == "Café"
    with pytest.raises(InputError):
        decode_content(b"   \n")
    with pytest.raises(InputError):
        decode_content(42)


def test_detect_format(legacy_statement):
    """Test statement markup is detected by its signature."""
    assert detect_format(legacy_statement) == SourceFormat.STATEMENT
    assert detect_format("Date,Amount\n2024-01-01,5") == SourceFormat.DELIMITED


def test_run_coffee_shop(service):
    """Test importing the simplest delimited file."""
    result = service.run("Date,Amount,Description\n01/15/2024,-42.50,Coffee Shop")

    assert result.source_format == SourceFormat.DELIMITED
    (transaction,) = result.transactions
    assert transaction.amount == Decimal("42.50")
    assert transaction.type == TransactionType.EXPENSE
    assert transaction.date == datetime(2024, 1, 15)
    assert transaction.payee == "Coffee Shop"
    assert transaction.id.startswith("imp-")
    assert result.stats.added == 1
    assert result.stats.errors == 0


def test_run_payroll_statement(service):
    """Test importing a one-transaction statement."""
    content = (
        "<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKTRANLIST>"
        "<STMTTRN><FITID>P1</FITID><TRNAMT>100.00</TRNAMT><NAME>Payroll</NAME></STMTTRN>"
        "</BANKTRANLIST></STMTRS></STMTTRNRS></BANKMSGSRSV1></OFX>"
    )
    result = service.run(content.encode("utf-8"))

    assert result.source_format == SourceFormat.STATEMENT
    (transaction,) = result.transactions
    assert transaction.id == "stmt-P1"
    assert transaction.amount == Decimal("100.00")
    assert transaction.type == TransactionType.INCOME
    assert transaction.payee == "Payroll"


def test_run_sample_file_counts_errors(service, fixtures_dir, caplog):
    """Test degraded records are counted and surfaced as a warning."""
    content = (fixtures_dir / "sample_transactions.csv").read_bytes()

    with caplog.at_level(logging.WARNING, logger="txflow"):
        result = service.run(content)

    assert result.stats.added == 4
    assert result.stats.errors == 1
    assert any("Line 5" in message for message in result.anomalies)
    assert "degraded" in caplog.text

    coffee, payroll, rent, mystery = result.transactions
    assert payroll.type == TransactionType.INCOME
    assert payroll.amount == Decimal("2500.00")
    assert rent.type == TransactionType.EXPENSE
    assert rent.amount == Decimal("1200.00")
    assert mystery.amount == Decimal("0")
    assert all(t.amount >= 0 for t in result.transactions)


def test_run_statement_counts_degraded_records(service, fixed_now, legacy_statement):
    """Test unparseable statement dates and amounts are counted as errors."""
    content = (
        "<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKTRANLIST>"
        "<STMTTRN><FITID>B1</FITID><DTPOSTED>garbage</DTPOSTED><TRNAMT>lots</TRNAMT>"
        "<NAME>Mystery</NAME></STMTTRN>"
        "<STMTTRN><FITID>G1</FITID><DTPOSTED>20240105</DTPOSTED><TRNAMT>-3.00</TRNAMT>"
        "<NAME>Bakery</NAME></STMTTRN>"
        "</BANKTRANLIST></STMTRS></STMTTRNRS></BANKMSGSRSV1></OFX>"
    )

    result = service.run(content)

    assert result.stats.added == 2
    assert result.stats.errors == 1
    bad, good = result.transactions
    assert bad.amount == Decimal("0")
    assert bad.date == fixed_now
    assert good.date == datetime(2024, 1, 5)
    assert len(result.anomalies) == 2
    assert all(message.startswith("Transaction B1:") for message in result.anomalies)

    assert service.run(legacy_statement).stats.errors == 0


def test_run_semicolon_file(service, fixtures_dir):
    """Test a semicolon file with non-standard headers."""
    result = service.run((fixtures_dir / "semicolon_transactions.csv").read_bytes())

    bakery, grocer = result.transactions
    assert bakery.payee == "Bakery"
    assert bakery.description == "Bread"
    assert bakery.amount == Decimal("12.50")
    assert grocer.date == datetime(2024, 2, 2)


def test_run_with_mapping_override(clock):
    """Test caller mapping overrides the inferred mapping."""
    options = ImportOptions(mapping={"payee": "Counterparty", "description": None})
    service = ImportService(options, clock=clock)

    result = service.run("Date,Amount,Description,Counterparty\n2024-01-01,-5.00,Card payment,Bakery")

    (transaction,) = result.transactions
    assert transaction.payee == "Bakery"
    assert transaction.description == ""


def test_run_single_column_file(service):
    """Test a degenerate single-column file is split per value."""
    result = service.run("Date Amount Description\n01/15/2024 -42.50 Coffee Shop")

    (transaction,) = result.transactions
    assert transaction.date == datetime(2024, 1, 15)
    assert transaction.amount == Decimal("42.50")
    assert transaction.type == TransactionType.EXPENSE
    assert transaction.payee == "Coffee Shop"


def test_run_account_id(clock):
    """Test imported transactions carry the configured account."""
    service = ImportService(ImportOptions(account_id="checking"), clock=clock)
    result = service.run("Date,Amount\n2024-01-01,1.00")

    assert result.transactions[0].account_id == "checking"


def test_run_reimport_statement_is_duplicate(service, legacy_statement):
    """Test importing the same statement twice adds nothing the second time."""
    first = service.run(legacy_statement)
    second = service.run(legacy_statement, existing=first.transactions)

    assert first.stats.added == 3
    assert second.stats.added == 0
    assert second.stats.duplicates == 3
    assert second.stats.updated == 0
    assert second.transactions == ()


def test_run_reimport_statement_with_changes_updates(service, legacy_statement):
    """Test a changed re-imported statement record updates the existing one."""
    first = service.run(legacy_statement)
    changed = legacy_statement.replace("<TRNAMT>-45.99", "<TRNAMT>-49.99")

    second = service.run(changed, existing=first.transactions)

    assert second.stats.updated == 1
    (updated,) = second.updated
    assert updated.id == "stmt-TXN002"
    assert updated.amount == Decimal("49.99")


def test_run_heuristic_duplicate(service, make_transaction):
    """Test a near match in the ledger is not added again."""
    existing = [make_transaction(id="imp-old", date=datetime(2024, 1, 14))]

    result = service.run("Date,Amount,Description\n01/15/2024,-42.50,Coffee Shop", existing=existing)

    assert result.stats.added == 0
    assert result.stats.duplicates == 1


def test_run_applies_rules_to_unique_only(service, make_rule, make_transaction):
    """Test rules categorize new transactions and report stats."""
    rule = make_rule(
        [TextCondition(field="payee", operator=TextOperator.CONTAINS, value="coffee")],
        action=RuleAction(category_id="food.coffee", add_tags=("caffeine",)),
    )
    existing = [make_transaction(id="imp-old", payee="Tea House", date=datetime(2024, 1, 15))]
    content = "Date,Amount,Payee\n01/15/2024,-42.50,Coffee Shop\n01/15/2024,-42.50,Tea House"

    result = service.run(content, existing=existing, rules=[rule])

    (transaction,) = result.transactions
    assert transaction.category_id == "food.coffee"
    assert transaction.tags == ("caffeine",)
    (update,) = result.rule_updates
    assert update.rule_id == rule.id
    assert update.match_count == 1


def test_run_all_matching_rules(clock, make_rule):
    """Test every matching rule applies when not stopping at the first."""
    rules = [
        make_rule(
            [TextCondition(field="payee", operator=TextOperator.CONTAINS, value="coffee")],
            category_id="coffee",
            priority=1,
        ),
        make_rule(
            [AmountCondition(operator=AmountOperator.GREATER_THAN, value=Decimal("10"))],
            category_id="big",
            priority=2,
        ),
    ]
    service = ImportService(ImportOptions(stop_on_first_match=False), clock=clock)

    result = service.run("Date,Amount,Payee\n01/15/2024,-42.50,Coffee Shop", rules=rules)

    assert result.transactions[0].category_id == "big"
    assert len(result.rule_updates) == 2


def test_run_repeated_native_ids_are_suffixed(service):
    """Test repeated statement ids within one file stay unique."""
    block = "<STMTTRN><FITID>SAME</FITID><TRNAMT>-1.00</TRNAMT><NAME>{}</NAME></STMTTRN>"
    content = (
        "<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKTRANLIST>"
        + block.format("One")
        + block.format("Two")
        + "</BANKTRANLIST></STMTRS></STMTTRNRS></BANKMSGSRSV1></OFX>"
    )

    result = service.run(content)

    assert [t.id for t in result.transactions] == ["stmt-SAME", "stmt-SAME-2"]


def test_run_errors(service):
    """Test structural failures raise typed errors."""
    with pytest.raises(InputError):
        service.run("")
    with pytest.raises(NoDataRowsError):
        service.run("Date,Amount,Payee")
    with pytest.raises(StatementParseError):
        service.run("OFXHEADER:100\nDATA:OFXSGML\n\nnothing else")


def test_forced_format_override(clock):
    """Test a forced delimited format skips statement detection."""
    service = ImportService(ImportOptions(source_format=SourceFormat.DELIMITED), clock=clock)

    result = service.run("Memo,Amount,Date\n<OFX> tag in text,1.00,2024-01-01")

    assert result.source_format == SourceFormat.DELIMITED
    assert result.transactions[0].payee == ""
    assert result.transactions[0].description == "<OFX> tag in text"


def test_invalid_statement_mapping_is_rejected():
    """Test an unknown statement source field fails at construction."""
    with pytest.raises(ValidationError):
        ImportService(ImportOptions(statement_mapping={"payee": "nowhere"}))


def test_preview_delimited(service, fixtures_dir):
    """Test previewing a delimited file."""
    preview = service.preview((fixtures_dir / "sample_transactions.csv").read_bytes(), limit=2)

    assert preview.source_format == SourceFormat.DELIMITED
    assert preview.delimiter == ","
    assert preview.headers == ("Date", "Amount", "Description", "Type")
    assert len(preview.rows) == 2
    assert preview.mapping["amount"] == "Amount"


def test_preview_statement(service, xml_statement):
    """Test previewing a statement."""
    preview = service.preview(xml_statement)

    assert preview.source_format == SourceFormat.STATEMENT
    assert len(preview.statements) == 1
    assert preview.sign_on.status_code == "0"
    assert preview.rows[0]["payee"] == "Streaming Service"
    assert preview.rows[0]["amount"] == "-19.99"
