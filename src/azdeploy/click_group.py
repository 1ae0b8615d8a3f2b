"""Custom Click group with automatic help display on usage errors."""

from typing import Any

import click


class DeployGroup(click.Group):
    """Click group that shows the relevant help when a command is misused."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except (
            click.exceptions.UsageError,
            click.exceptions.BadParameter,
            click.exceptions.MissingParameter,
        ) as e:
            click.echo(f"Error: {e.format_message()}", err=True)

            # Most specific context available (the subcommand's, if any)
            error_ctx = e.ctx if getattr(e, "ctx", None) else ctx
            click.echo("")
            click.echo(error_ctx.get_help())
            error_ctx.exit(getattr(e, "exit_code", 1))
            return None

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as e:
            if isinstance(e, click.exceptions.MissingParameter | click.exceptions.BadParameter):
                raise
            click.echo(f"Error: {e.format_message()}", err=True)
            click.echo("")
            click.echo(ctx.get_help())
            ctx.exit(1)
            return None, None, []


# Subgroups created with @group.group() use DeployGroup too
DeployGroup.group_class = DeployGroup
