"""Tests for field mapping inference."""

import pytest

from txflow.domain.errors import ValidationError
from txflow.domain.field_mapping import (
    infer_mapping,
    missing_required,
    resolve_mapping,
    resolve_statement_mapping,
)


def test_infer_mapping_exact_headers():
    """Test common headers map to their canonical fields."""
    mapping = infer_mapping(["Date", "Amount", "Description", "Type"])

    assert mapping["date"] == "Date"
    assert mapping["amount"] == "Amount"
    assert mapping["type"] == "Type"
    # Description feeds both payee and description
    assert mapping["payee"] == "Description"
    assert mapping["description"] == "Description"


def test_infer_mapping_is_case_insensitive_with_substrings():
    """Test substring synonyms match case-insensitively."""
    mapping = infer_mapping(["POSTED DATE", "Transaction Amount (USD)", "Merchant Name", "Memo"])

    assert mapping == {
        "date": "POSTED DATE",
        "amount": "Transaction Amount (USD)",
        "payee": "Merchant Name",
        "description": "Memo",
    }


def test_infer_mapping_prefers_exact_over_substring():
    """Test an exact synonym beats an earlier substring match."""
    mapping = infer_mapping(["Value Date", "Date", "Amount"])

    assert mapping["date"] == "Date"


def test_infer_mapping_does_not_reuse_claimed_columns():
    """Test a column claimed by date is not reused for type."""
    mapping = infer_mapping(["Transaction Date", "Amount", "Payee"])

    assert mapping["date"] == "Transaction Date"
    assert "type" not in mapping


def test_infer_mapping_single_degenerate_column():
    """Test a lone header naming several fields maps them all to itself."""
    header = "Date Amount Description"
    mapping = infer_mapping([header])

    assert mapping == {"date": header, "amount": header, "payee": header, "description": header}


def test_infer_mapping_single_plain_column():
    """Test a lone header with one keyword maps normally."""
    assert infer_mapping(["Amount"]) == {"amount": "Amount"}


def test_resolve_mapping_overrides():
    """Test caller overrides replace and remove inferred fields."""
    headers = ["Date", "Amount", "Description", "Notes"]
    mapping = resolve_mapping(headers, {"description": "Notes", "payee": None})

    assert mapping["description"] == "Notes"
    assert "payee" not in mapping
    assert mapping["date"] == "Date"


def test_resolve_mapping_unknown_field():
    """Test an override for an unknown field is rejected."""
    with pytest.raises(ValidationError, match="Invalid canonical field"):
        resolve_mapping(["Date"], {"colour": "Date"})


def test_resolve_mapping_unknown_header():
    """Test an override naming a missing header is rejected."""
    with pytest.raises(ValidationError, match="Column .Missing."):
        resolve_mapping(["Date"], {"payee": "Missing"})


def test_missing_required():
    """Test required fields absent from a mapping are reported."""
    assert missing_required({"payee": "Name"}) == ["date", "amount"]
    assert missing_required({"date": "D", "amount": "A"}) == []


def test_resolve_statement_mapping():
    """Test statement defaults and overrides."""
    assert resolve_statement_mapping() == {"payee": "name", "description": "memo"}
    assert resolve_statement_mapping({"description": "check_number"})["description"] == "check_number"

    with pytest.raises(ValidationError):
        resolve_statement_mapping({"description": "nonexistent"})
    with pytest.raises(ValidationError):
        resolve_statement_mapping({"amount": "memo"})
