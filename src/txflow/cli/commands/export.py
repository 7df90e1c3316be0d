"""Ledger export command."""

from pathlib import Path

import click

from txflow.cli.commands.import_cmd import parse_delimiter
from txflow.cli.error_handling import handle_domain_error
from txflow.cli.serialization import load_transactions
from txflow.domain.delimited import export_delimited
from txflow.domain.errors import DomainError


@click.command("export")
@click.argument("ledger_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", type=click.Path(dir_okay=False), help="Write to this file instead of stdout")
@click.option("--delimiter", default=",", show_default=True, help="Column delimiter")
@click.option("--no-headers", is_flag=True, default=False, help="Omit the header line")
@click.pass_context
def export_ledger(ctx, ledger_file: str, output: str | None, delimiter: str, no_headers: bool):
    """Export a JSON ledger as delimited text."""
    try:
        transactions = load_transactions(ledger_file)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    text = export_delimited(
        transactions, delimiter=parse_delimiter(delimiter), include_headers=not no_headers
    )
    if output:
        Path(output).write_text(text, encoding="utf-8")
        click.echo(f"Exported {len(transactions)} transaction(s) to {output}")
    else:
        click.echo(text, nl=False)


def register_commands(cli):
    """Register export command with main CLI."""
    cli.add_command(export_ledger)
