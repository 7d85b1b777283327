"""Server CLI commands."""

from pathlib import Path

import click

from samlsso.cli.config import config_path_option


@click.command()
@config_path_option
@click.option("--host", "-h", default=None, help="Host to bind to (default: from config)")
@click.option("--port", "-p", type=int, default=None, help="Port to bind to (default: from config)")
@click.option(
    "--idp-metadata",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=None,
    help="IdP metadata file, overriding idp.metadata_path",
)
@click.option("--no-tls", is_flag=True, help="Serve plain HTTP (IdPs expect an HTTPS ACS)")
@click.option(
    "--cert",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS certificate (PEM format)",
)
@click.option(
    "--key",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS private key (PEM format)",
)
@click.option("--debug", is_flag=True, help="Enable Flask debug mode")
def serve(
    config_path: Path | None,
    host: str | None,
    port: int | None,
    idp_metadata: Path | None,
    no_tls: bool,
    cert: Path | None,
    key: Path | None,
    debug: bool,
) -> None:
    """Start the SP web server.

    Serves /saml/login, which starts SSO, and /saml/acs, which receives
    the IdP's response.

    Examples:

        # TLS and IdP settings from config.yaml
        samlsso serve

        # Local IdP metadata over plain HTTP
        samlsso serve --no-tls --port 8080 --idp-metadata idp.xml
    """
    from samlsso.app import run_server
    from samlsso.core.config import load_config

    if bool(cert) != bool(key):
        raise click.ClickException("--cert and --key must be given together")

    app_config = load_config(config_path)
    tls = app_config.server.tls
    tls.enabled = tls.enabled and not no_tls
    tls.cert_path = cert or tls.cert_path
    tls.key_path = key or tls.key_path
    app_config.server.debug = app_config.server.debug or debug
    if idp_metadata:
        app_config.idp.metadata_path = idp_metadata

    try:
        run_server(app_config=app_config, host=host, port=port)
    except ValueError as e:
        raise click.ClickException(str(e)) from None
