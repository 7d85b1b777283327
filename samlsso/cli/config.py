"""Configuration management CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)

config_path_option = click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Path to config.yaml (default: ~/.samlsso/config.yaml)",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON or formatted text.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return
    for key, value in data.items():
        click.echo(f"{key}: {value}")


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.

    Args:
        message: Error message
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


@click.group()
def config() -> None:
    """Manage samlsso configuration."""
    pass


@config.command("init")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing config file.",
)
@config_path_option
@json_option
def config_init(force: bool, config_path: Path | None, output_json: bool) -> None:
    """Write a commented default config.yaml.

    Examples:

        # Create ~/.samlsso/config.yaml
        samlsso config init

        # Write to another location
        samlsso config init --config ./config.yaml
    """
    from samlsso.core.config import DEFAULT_CONFIG_FILE, get_default_config_yaml

    path = config_path or DEFAULT_CONFIG_FILE
    if path.exists() and not force:
        if output_json:
            output_result({"status": "exists", "config": str(path)}, as_json=True)
            return
        click.echo(f"Config file already exists: {path}")
        click.echo("Use --force to overwrite")
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_default_config_yaml())

    if output_json:
        output_result({"status": "created", "config": str(path)}, as_json=True)
    else:
        click.echo(f"Config file written to: {path}")
        click.echo("")
        click.echo("Next steps:")
        click.echo("  1. Set idp.metadata_url or idp.metadata_path")
        click.echo("  2. Run 'samlsso certs generate' if the SP signs requests")


@config.command("show")
@config_path_option
@json_option
def config_show(config_path: Path | None, output_json: bool) -> None:
    """Show the effective configuration (file plus environment)."""
    import yaml

    from samlsso.core.config import load_config

    app_config = load_config(config_path)
    if output_json:
        output_result(app_config.to_dict(), as_json=True)
        return
    if app_config.config_path:
        click.echo(f"# Loaded from {app_config.config_path}")
    click.echo(yaml.safe_dump(app_config.to_dict(), default_flow_style=False).rstrip())
