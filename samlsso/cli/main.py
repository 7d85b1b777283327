"""CLI entry point for samlsso."""

import click

from samlsso import __version__
from samlsso.cli import certs as certs_commands
from samlsso.cli import config as config_commands
from samlsso.cli import serve as serve_commands
from samlsso.cli import sso as sso_commands


@click.group()
@click.version_option(version=__version__, prog_name="samlsso")
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    default=None,
    help="Protocol log level (default: from config)",
)
@click.option(
    "--trace",
    is_flag=True,
    help="Log full SAML messages and relay states (sensitive)",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, trace: bool) -> None:
    """samlsso - SAML 2.0 Web Browser SSO Service Provider."""
    ctx.ensure_object(dict)

    if log_level or trace:
        from samlsso.core.logging import configure_logging

        configure_logging(level=log_level or "DEBUG", trace_enabled=trace)


cli.add_command(config_commands.config)
cli.add_command(certs_commands.certs)
cli.add_command(sso_commands.sso)
cli.add_command(serve_commands.serve)
