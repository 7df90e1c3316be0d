"""CLI error reporting for import failures and degraded records."""

import logging

import click

from txflow.domain.errors import DomainError, StatementParseError

logger = logging.getLogger(__name__)

MAX_REPORTED_ANOMALIES = 20


def handle_domain_error(ctx: click.Context, error: DomainError | ValueError) -> None:
    """Print a domain error to stderr and exit with status 1.

    Statement parse failures get a hint, since the same file often imports
    fine when read as delimited text.
    """
    logger.debug("Command failed", exc_info=error)
    click.echo(f"Error: {error}", err=True)
    if isinstance(error, StatementParseError):
        click.echo("Hint: retry with --format csv to read the file as delimited text", err=True)
    ctx.exit(1)


def report_anomalies(messages, limit: int = MAX_REPORTED_ANOMALIES) -> None:
    """List degraded-record messages on stderr, truncated after ``limit``."""
    for message in messages[:limit]:
        click.echo(f"    {message}", err=True)
    if len(messages) > limit:
        click.echo(f"    ... and {len(messages) - limit} more", err=True)
