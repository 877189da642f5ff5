"""Output helpers for the command-line interface.

Command results go to standard output, one line each, so they can be piped.
Errors, warnings and informational messages go to standard error.
"""

from collections.abc import Iterable

import click


class OutputFormatter:
    """Writes command results and diagnostics."""

    def __init__(self, quiet: bool = False):
        self.quiet = quiet

    def echo(self, line: str = "") -> None:
        """Print a result line on stdout."""
        click.echo(line)

    def lines(self, lines: Iterable[str]) -> None:
        for line in lines:
            click.echo(line)

    def error(self, message: str) -> None:
        click.echo(message, err=True)

    def item_error(self, item: str, error: object) -> None:
        """Report the failure of one item of a batch."""
        click.echo(f"{item}: {error}", err=True)

    def warning(self, message: str) -> None:
        click.echo(f"Warning: {message}", err=True)

    def info(self, message: str) -> None:
        if not self.quiet:
            click.echo(message, err=True)
