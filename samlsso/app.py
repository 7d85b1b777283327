"""Flask application factory."""

from __future__ import annotations

import os
import secrets
import ssl
from pathlib import Path
from typing import TYPE_CHECKING, Any

from flask import Flask

if TYPE_CHECKING:
    from samlsso.core.config import AppConfig
    from samlsso.core.saml.sp import SAMLServiceProvider


def _secret_key() -> str:
    secret_key = os.environ.get("SAMLSSO_SECRET_KEY")
    if secret_key:
        return secret_key

    # Use a persistent secret key from the config directory
    key_path = Path.home() / ".samlsso" / "flask_secret.key"
    if key_path.exists():
        return key_path.read_text().strip()
    secret_key = secrets.token_hex(32)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_text(secret_key)
    key_path.chmod(0o600)
    return secret_key


def create_app(
    config: dict[str, Any] | None = None,
    app_config: AppConfig | None = None,
    service_provider: SAMLServiceProvider | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional Flask configuration overrides.
        app_config: samlsso configuration; loaded from file/env when the
            service provider is first needed if not given.
        service_provider: Ready service provider, mainly for tests.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    app.config.from_mapping(
        SESSION_COOKIE_SECURE=True,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="None",
    )
    if config:
        app.config.from_mapping(config)
    if not app.config.get("SECRET_KEY"):
        app.config["SECRET_KEY"] = _secret_key()

    app.extensions["samlsso"] = {
        "app_config": app_config,
        "service_provider": service_provider,
    }

    from samlsso.web import routes

    routes.init_app(app)

    return app


def create_ssl_context(
    cert_path: Path,
    key_path: Path,
) -> ssl.SSLContext:
    """Create an SSL context for HTTPS.

    Args:
        cert_path: Path to the certificate file (PEM format).
        key_path: Path to the private key file (PEM format).

    Returns:
        Configured SSL context.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(cert_path), str(key_path))
    return context


def run_server(
    app_config: AppConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the Flask development server.

    Args:
        app_config: Application configuration. Loads from file/env if not provided.
        host: Override host from config.
        port: Override port from config.

    Raises:
        ValueError: If TLS is enabled without a certificate and key.
    """
    from samlsso.core.config import load_config
    from samlsso.core.logging import configure_logging

    if app_config is None:
        app_config = load_config()

    configure_logging(
        level=app_config.logging.level,
        trace_enabled=app_config.logging.trace,
        log_file=app_config.logging.log_file,
    )

    server_host = host or app_config.server.host
    server_port = port or app_config.server.port
    tls_settings = app_config.server.tls

    app = create_app(app_config=app_config)
    app.debug = app_config.server.debug

    ssl_context: ssl.SSLContext | None = None
    if tls_settings.enabled:
        if not tls_settings.cert_path or not tls_settings.key_path:
            raise ValueError(
                "TLS is enabled but server.tls.cert_path and server.tls.key_path are not set"
            )
        ssl_context = create_ssl_context(tls_settings.cert_path, tls_settings.key_path)
        protocol = "https"
    else:
        protocol = "http"
        app.config["SESSION_COOKIE_SECURE"] = False
        print("WARNING: TLS is disabled. Most IdPs require an HTTPS ACS.")
        print("")

    print("Starting samlsso server...")
    print(f"  URL: {protocol}://{server_host}:{server_port}")
    print(f"  SSO: {protocol}://{server_host}:{server_port}/saml/login")
    print("")

    app.run(
        host=server_host,
        port=server_port,
        ssl_context=ssl_context,
    )
