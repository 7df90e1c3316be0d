"""Utility functions for txflow."""

from txflow.utils.date_parser import parse_transaction_date, parse_statement_date, read_statement_date
from txflow.utils.amount_parser import parse_amount

__all__ = ["parse_transaction_date", "parse_statement_date", "read_statement_date", "parse_amount"]
