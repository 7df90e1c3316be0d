"""Import file inspection command."""

from pathlib import Path

import click

from txflow.cli.commands.import_cmd import parse_delimiter, parse_mappings
from txflow.cli.error_handling import handle_domain_error
from txflow.domain.entities import SourceFormat
from txflow.domain.errors import DomainError
from txflow.domain.field_mapping import missing_required
from txflow.domain.import_service import PREVIEW_ROWS, ImportOptions, ImportService
from txflow.domain.statement import verify_account_balance
from txflow.utils.amount_parser import parse_amount


def _echo_rows(headers, rows) -> None:
    click.echo(f"\nFirst {len(rows)} row(s):")
    for index, row in enumerate(rows, start=1):
        click.echo(f"  [{index}] " + " | ".join(f"{h}={row.get(h, '')}" for h in headers))


@click.command("inspect")
@click.argument("import_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format",
    "source_format",
    type=click.Choice([f.value for f in SourceFormat]),
    help="Force the file format instead of detecting it",
)
@click.option("--delimiter", help="Force the column delimiter (e.g. ';' or 'tab')")
@click.option("--map", "mappings", multiple=True, help="Map a field to a column header")
@click.option("--rows", default=PREVIEW_ROWS, show_default=True, help="Number of rows to show")
@click.option(
    "--balance",
    help="Current account balance to verify against the statement ledger balance",
)
@click.pass_context
def inspect_file(
    ctx,
    import_file: str,
    source_format: str | None,
    delimiter: str | None,
    mappings: tuple[str, ...],
    rows: int,
    balance: str | None,
):
    """Show the detected format, columns and first rows of an import file."""
    options = ImportOptions(
        source_format=SourceFormat(source_format) if source_format else None,
        mapping=parse_mappings(mappings),
        delimiter=parse_delimiter(delimiter),
    )
    try:
        preview = ImportService(options).preview(Path(import_file).read_bytes(), limit=rows)
        current_balance = parse_amount(balance) if balance is not None else None
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"Format: {preview.source_format.value}")
    if preview.source_format == SourceFormat.DELIMITED:
        click.echo(f"Delimiter: {preview.delimiter!r}")
        click.echo(f"Columns: {', '.join(preview.headers)}")
        click.echo("Mapping:")
        for field, header in preview.mapping.items():
            click.echo(f"  {field} -> {header}")
        missing = missing_required(preview.mapping)
        if missing:
            click.echo(f"Warning: no column found for {', '.join(missing)}", err=True)
    else:
        sign_on = preview.sign_on
        if sign_on is not None:
            click.echo(f"Server status: {sign_on.status_code} ({sign_on.status_severity})")
            if sign_on.institution is not None:
                click.echo(f"Institution: {sign_on.institution.name}")
        for statement in preview.statements:
            kind = "Credit card" if statement.is_credit_card else statement.account_type
            click.echo(
                f"Statement: {kind} {statement.account_id} ({statement.currency}), "
                f"{statement.start_date.date()} to {statement.end_date.date()}, "
                f"{len(statement.transactions)} transaction(s)"
            )
            if current_balance is None:
                continue
            check = verify_account_balance(statement, current_balance)
            if statement.ledger_balance is None:
                click.echo("  Balance: no ledger balance in statement")
            elif check.is_verified:
                click.echo(f"  Balance: verified ({statement.ledger_balance.amount})")
            else:
                click.echo(
                    f"  Balance: mismatch, ledger {statement.ledger_balance.amount}, "
                    f"difference {check.difference}"
                )

    _echo_rows(preview.headers, preview.rows)


def register_commands(cli):
    """Register inspect command with main CLI."""
    cli.add_command(inspect_file)
