"""Custom Click group with command aliases and help display on errors.

This module provides a custom Click Group class that resolves short
aliases (``spk deployment g`` for ``spk deployment get``) and displays
contextual help when syntax errors occur.
"""

import sys
from typing import Any

import click


class SpkGroup(click.Group):
    """Click group that resolves aliases and auto-displays help on errors."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # alias -> command name
        self.aliases: dict[str, str] = {}

    def add_alias(self, name: str, alias: str) -> None:
        self.aliases[alias] = name

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        return super().get_command(ctx, self.aliases.get(cmd_name, cmd_name))

    def main(self, *args: Any, **kwargs: Any) -> Any:
        """Override main to auto-display help on usage errors."""
        try:
            return super().main(*args, **kwargs)
        except (
            click.exceptions.UsageError,
            click.exceptions.BadParameter,
            click.exceptions.MissingParameter,
        ) as e:
            click.echo(f"Error: {e.format_message()}", err=True)

            ctx = e.ctx if hasattr(e, "ctx") and e.ctx else None
            if ctx:
                click.echo("")
                click.echo(ctx.get_help())
                ctx.exit(e.exit_code if hasattr(e, "exit_code") else 1)
                return None
            sys.exit(e.exit_code if hasattr(e, "exit_code") else 1)
            return None

    def invoke(self, ctx: click.Context) -> Any:
        """Show help for the failing subcommand on usage errors."""
        try:
            return super().invoke(ctx)
        except (
            click.exceptions.UsageError,
            click.exceptions.BadParameter,
            click.exceptions.MissingParameter,
        ) as e:
            click.echo(f"Error: {e.format_message()}", err=True)

            # Get the most specific context for help (the subcommand context if available)
            error_ctx = e.ctx if hasattr(e, "ctx") and e.ctx else ctx

            click.echo("")
            click.echo(error_ctx.get_help())
            error_ctx.exit(e.exit_code if hasattr(e, "exit_code") else 1)
            return None

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        """Override to show help when command is not found."""
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as e:
            # Let parameter errors propagate to invoke()
            if isinstance(e, click.exceptions.MissingParameter | click.exceptions.BadParameter):
                raise
            click.echo(f"Error: {e.format_message()}", err=True)
            click.echo("")
            click.echo(ctx.get_help())
            ctx.exit(1)
            return None, None, []


# Subgroups created with @main.group() also use SpkGroup
SpkGroup.group_class = SpkGroup
