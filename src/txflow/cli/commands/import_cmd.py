"""Transaction import command."""

import json
from pathlib import Path

import click

from txflow.cli.error_handling import handle_domain_error, report_anomalies
from txflow.cli.serialization import import_result_to_dict, load_rules, load_transactions
from txflow.domain.delimited import validate_delimiter
from txflow.domain.entities import SourceFormat
from txflow.domain.errors import DomainError, ValidationError
from txflow.domain.import_service import DEFAULT_ACCOUNT_ID, ImportOptions, ImportService

_DELIMITER_NAMES = {"tab": "\t", "\\t": "\t", "comma": ",", "semicolon": ";", "pipe": "|"}


def parse_delimiter(value: str | None) -> str | None:
    """Translate a delimiter given by name (e.g. ``tab``) to its character."""
    if value is None:
        return None
    try:
        return validate_delimiter(_DELIMITER_NAMES.get(value.lower(), value))
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="--delimiter")


def parse_mappings(values: tuple[str, ...]) -> dict[str, str | None] | None:
    """Parse ``field=Source`` pairs; an empty source unmaps the field."""
    if not values:
        return None
    mapping: dict[str, str | None] = {}
    for item in values:
        field, sep, source = item.partition("=")
        if not sep or not field.strip():
            raise click.BadParameter(f"expected field=Source, got '{item}'")
        mapping[field.strip()] = source.strip() or None
    return mapping


@click.command("import")
@click.argument("import_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--account",
    "account_id",
    default=DEFAULT_ACCOUNT_ID,
    show_default=True,
    envvar="TXFLOW_ACCOUNT_ID",
    help="Account the imported transactions belong to",
)
@click.option(
    "--format",
    "source_format",
    type=click.Choice([f.value for f in SourceFormat]),
    help="Force the file format instead of detecting it",
)
@click.option("--delimiter", help="Force the column delimiter (e.g. ';' or 'tab')")
@click.option(
    "--map",
    "mappings",
    multiple=True,
    help="Map a field to a column header, e.g. --map payee=Merchant",
)
@click.option(
    "--statement-map",
    "statement_mappings",
    multiple=True,
    help="Map payee/description to a statement field, e.g. --statement-map payee=memo",
)
@click.option(
    "--existing",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON ledger of existing transactions used for duplicate detection",
)
@click.option(
    "--rules",
    "rules_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file of categorization rules",
)
@click.option(
    "--all-rules",
    is_flag=True,
    default=False,
    help="Apply every matching rule instead of stopping at the first match",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False),
    help="Write the import result as JSON to this file",
)
@click.pass_context
def import_transactions(
    ctx,
    import_file: str,
    account_id: str,
    source_format: str | None,
    delimiter: str | None,
    mappings: tuple[str, ...],
    statement_mappings: tuple[str, ...],
    existing: str | None,
    rules_file: str | None,
    all_rules: bool,
    output: str | None,
):
    """Import transactions from a delimited or statement file."""
    options = ImportOptions(
        account_id=account_id,
        source_format=SourceFormat(source_format) if source_format else None,
        mapping=parse_mappings(mappings),
        statement_mapping=parse_mappings(statement_mappings),
        delimiter=parse_delimiter(delimiter),
        stop_on_first_match=not all_rules,
    )

    try:
        ledger = load_transactions(existing) if existing else []
        rules = load_rules(rules_file) if rules_file else []
        service = ImportService(options)
        result = service.run(Path(import_file).read_bytes(), existing=ledger, rules=rules)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo("\nImport complete:")
    click.echo(f"  Added: {result.stats.added} transactions")
    click.echo(f"  Duplicates: {result.stats.duplicates}")
    click.echo(f"  Updated: {result.stats.updated}")
    if result.rule_updates:
        click.echo(f"  Rules matched: {len(result.rule_updates)}")
    if result.stats.errors:
        click.echo(f"  Errors: {result.stats.errors}")
        report_anomalies(result.anomalies)

    if output:
        Path(output).write_text(
            json.dumps(import_result_to_dict(result), indent=2), encoding="utf-8"
        )
        click.echo(f"Result written to {output}")


def register_commands(cli):
    """Register import command with main CLI."""
    cli.add_command(import_transactions)
