"""Main CLI entry point."""

import click

from txflow.cli.commands import export, import_cmd, inspect
from txflow.logging_setup import LOG_LEVEL_ENV, configure_logging


@click.group()
@click.option(
    "--log-level",
    help="Logging level name or number (overrides TXFLOW_LOG_LEVEL environment variable)",
    envvar=LOG_LEVEL_ENV,
)
def cli(log_level: str | None):
    """Txflow - Transaction import and auto-categorization.

    Import bank exports in delimited text or statement markup, drop
    transactions already in your ledger and categorize the rest with rules.
    """
    configure_logging(log_level)


# Register all commands
import_cmd.register_commands(cli)
inspect.register_commands(cli)
export.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
