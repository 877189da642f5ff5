"""Command registry for the ``dbox`` command line.

Every subcommand is a :class:`DboxCommand` registered on the
:class:`DboxGroup` at import time. Each command owns its flags and a short
usage hint; the group resolves names, rejects unknown ones with the
top-level usage, and renders the ``help`` listing.
"""

from typing import Any, Optional

import click

HELP_COMMAND = "help"

TOP_LEVEL_USAGE = (
    "Usage: {prog} command command_arguments\n"
    "       Use help command to list available commands\n"
    "       Use command -h to get help for commands accepting options"
)


class DboxUsageError(click.UsageError):
    """Wrong arguments for a command, detected before any remote call."""

    exit_code = 1


class DboxCommand(click.Command):
    """A subcommand with a one-line usage hint (``[-k] file destination``)."""

    def __init__(self, *args: Any, usage_hint: str = "", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.usage_hint = usage_hint

    @property
    def description(self) -> str:
        """First line of the command help."""
        text = (self.short_help or self.help or "").strip()
        return text.splitlines()[0] if text else ""

    def collect_usage_pieces(self, ctx: click.Context) -> list[str]:
        if self.usage_hint:
            return [self.usage_hint]
        return super().collect_usage_pieces(ctx)


class DboxGroup(click.Group):
    """Registry of ``dbox`` subcommands."""

    command_class = DboxCommand

    def top_level_usage(self, ctx: click.Context) -> str:
        return TOP_LEVEL_USAGE.format(prog=ctx.command_path)

    def exit_with_usage(self, ctx: click.Context) -> None:
        """Print the top-level usage on stderr and exit with status 1."""
        click.echo(self.top_level_usage(ctx), err=True)
        ctx.exit(1)

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[Optional[str], Optional[click.Command], list[str]]:
        cmd_name = args[0]
        if (
            not ctx.resilient_parsing
            and not cmd_name.startswith("-")
            and self.get_command(ctx, cmd_name) is None
        ):
            click.echo(f"Unknown command '{cmd_name}'", err=True)
            self.exit_with_usage(ctx)
        return super().resolve_command(ctx, args)

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            # Argument errors of any subcommand exit with status 1
            e.exit_code = 1
            raise

    def format_command_list(self, ctx: click.Context) -> list[str]:
        """Render the ``help`` listing.

        All commands except ``help`` are listed in lexicographic order with
        their description and usage; the ``help`` line is appended last.
        """
        lines = ["Command list:"]
        for name in sorted(self.list_commands(ctx)):
            if name == HELP_COMMAND:
                continue
            cmd = self.get_command(ctx, name)
            description = getattr(cmd, "description", "")
            usage_hint = getattr(cmd, "usage_hint", "")
            lines.append(f"{name:>10}: {description}")
            lines.append(f"            Usage: {name} {usage_hint}".rstrip())

        help_cmd = self.get_command(ctx, HELP_COMMAND)
        if help_cmd is not None:
            lines.append(f"{HELP_COMMAND:>10}: {getattr(help_cmd, 'description', '')}")
        return lines
