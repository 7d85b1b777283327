"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from samlsso.core.saml.constants import (
    BINDING_ALIASES,
    BINDING_HTTP_REDIRECT,
    NAMEID_FORMAT_UNSPECIFIED,
    binding_uri,
)

logger = logging.getLogger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".samlsso"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_CERTS_DIR = DEFAULT_CONFIG_DIR / "certs"

# Environment variable prefix
ENV_PREFIX = "SAMLSSO_"


def _path(value: Any) -> Path | None:
    return Path(value).expanduser() if value else None


@dataclass
class SPSettings:
    """This service provider's identity and policy."""

    entity_id: str = "https://localhost:8443/saml/metadata"
    acs_url: str = "https://localhost:8443/saml/acs"
    acs_index: str | None = None
    authn_requests_signed: bool = False
    want_assertions_signed: bool = True
    name_id_format: str = NAMEID_FORMAT_UNSPECIFIED
    key_path: Path | None = None
    cert_path: Path | None = None
    clock_skew_seconds: int = 120
    maximum_authentication_lifetime: int = 3600

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SPSettings:
        """Create SPSettings from a dictionary."""
        defaults = cls()
        return cls(
            entity_id=data.get("entity_id", defaults.entity_id),
            acs_url=data.get("acs_url", defaults.acs_url),
            acs_index=str(data["acs_index"]) if data.get("acs_index") is not None else None,
            authn_requests_signed=data.get("authn_requests_signed", False),
            want_assertions_signed=data.get("want_assertions_signed", True),
            name_id_format=data.get("name_id_format", NAMEID_FORMAT_UNSPECIFIED),
            key_path=_path(data.get("key_path")),
            cert_path=_path(data.get("cert_path")),
            clock_skew_seconds=data.get("clock_skew_seconds", 120),
            maximum_authentication_lifetime=data.get("maximum_authentication_lifetime", 3600),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "entity_id": self.entity_id,
            "acs_url": self.acs_url,
            "acs_index": self.acs_index,
            "authn_requests_signed": self.authn_requests_signed,
            "want_assertions_signed": self.want_assertions_signed,
            "name_id_format": self.name_id_format,
            "key_path": str(self.key_path) if self.key_path else None,
            "cert_path": str(self.cert_path) if self.cert_path else None,
            "clock_skew_seconds": self.clock_skew_seconds,
            "maximum_authentication_lifetime": self.maximum_authentication_lifetime,
        }

    @property
    def resolved_key_path(self) -> Path:
        return self.key_path or DEFAULT_CERTS_DIR / "sp.key"

    @property
    def resolved_cert_path(self) -> Path:
        return self.cert_path or DEFAULT_CERTS_DIR / "sp.crt"


@dataclass
class IdPSettings:
    """Where to find the identity provider and how to reach it."""

    entity_id: str | None = None
    metadata_url: str | None = None
    metadata_path: Path | None = None
    binding: str = BINDING_HTTP_REDIRECT
    verify_ssl: bool = True
    timeout: float = 10.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IdPSettings:
        """Create IdPSettings from a dictionary.

        ``binding`` accepts a short name (``redirect``, ``post``) or a full URI.
        """
        return cls(
            entity_id=data.get("entity_id"),
            metadata_url=data.get("metadata_url"),
            metadata_path=_path(data.get("metadata_path")),
            binding=binding_uri(data.get("binding", "redirect")),
            verify_ssl=data.get("verify_ssl", True),
            timeout=float(data.get("timeout", 10.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        short = {uri: name for name, uri in BINDING_ALIASES.items()}
        return {
            "entity_id": self.entity_id,
            "metadata_url": self.metadata_url,
            "metadata_path": str(self.metadata_path) if self.metadata_path else None,
            "binding": short.get(self.binding, self.binding),
            "verify_ssl": self.verify_ssl,
            "timeout": self.timeout,
        }


@dataclass
class TLSSettings:
    """TLS/HTTPS configuration settings."""

    enabled: bool = True
    cert_path: Path | None = None
    key_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TLSSettings:
        """Create TLSSettings from a dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            cert_path=_path(data.get("cert_path")),
            key_path=_path(data.get("key_path")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "cert_path": str(self.cert_path) if self.cert_path else None,
            "key_path": str(self.key_path) if self.key_path else None,
        }


@dataclass
class ServerSettings:
    """Server configuration settings."""

    host: str = "127.0.0.1"
    port: int = 8443
    debug: bool = False
    tls: TLSSettings = field(default_factory=TLSSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        tls_data = data.get("tls", {})
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 8443),
            debug=data.get("debug", False),
            tls=TLSSettings.from_dict(tls_data) if tls_data else TLSSettings(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "tls": self.tls.to_dict(),
        }


@dataclass
class LoggingSettings:
    """Protocol logging settings."""

    level: str = "INFO"
    trace: bool = False
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            trace=data.get("trace", False),
            log_file=data.get("log_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level, "trace": self.trace, "log_file": self.log_file}


@dataclass
class AppConfig:
    """Main application configuration."""

    sp: SPSettings = field(default_factory=SPSettings)
    idp: IdPSettings = field(default_factory=IdPSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            sp=SPSettings.from_dict(data.get("sp") or {}),
            idp=IdPSettings.from_dict(data.get("idp") or {}),
            server=ServerSettings.from_dict(data.get("server") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "sp": self.sp.to_dict(),
            "idp": self.idp.to_dict(),
            "server": self.server.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.
    """
    config = AppConfig()

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
            config = AppConfig.from_dict(data, config_path=file_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring invalid config file {file_path}: {e}")

    # SP settings
    sp = config.sp
    if os.environ.get(f"{ENV_PREFIX}SP_ENTITY_ID"):
        sp.entity_id = os.environ[f"{ENV_PREFIX}SP_ENTITY_ID"]
    if os.environ.get(f"{ENV_PREFIX}SP_ACS_URL"):
        sp.acs_url = os.environ[f"{ENV_PREFIX}SP_ACS_URL"]
    if os.environ.get(f"{ENV_PREFIX}SP_KEY"):
        sp.key_path = Path(os.environ[f"{ENV_PREFIX}SP_KEY"])
    if os.environ.get(f"{ENV_PREFIX}SP_CERT"):
        sp.cert_path = Path(os.environ[f"{ENV_PREFIX}SP_CERT"])
    sp.authn_requests_signed = _get_env_bool(
        f"{ENV_PREFIX}SP_AUTHN_REQUESTS_SIGNED", sp.authn_requests_signed
    )
    sp.clock_skew_seconds = _get_env_int(f"{ENV_PREFIX}CLOCK_SKEW", sp.clock_skew_seconds)

    # IdP settings
    idp = config.idp
    if os.environ.get(f"{ENV_PREFIX}IDP_ENTITY_ID"):
        idp.entity_id = os.environ[f"{ENV_PREFIX}IDP_ENTITY_ID"]
    if os.environ.get(f"{ENV_PREFIX}IDP_METADATA_URL"):
        idp.metadata_url = os.environ[f"{ENV_PREFIX}IDP_METADATA_URL"]
    if os.environ.get(f"{ENV_PREFIX}IDP_METADATA_PATH"):
        idp.metadata_path = Path(os.environ[f"{ENV_PREFIX}IDP_METADATA_PATH"])
    if os.environ.get(f"{ENV_PREFIX}IDP_BINDING"):
        idp.binding = binding_uri(os.environ[f"{ENV_PREFIX}IDP_BINDING"])
    idp.verify_ssl = _get_env_bool(f"{ENV_PREFIX}IDP_VERIFY_SSL", idp.verify_ssl)

    # Server settings
    if os.environ.get(f"{ENV_PREFIX}HOST"):
        config.server.host = os.environ[f"{ENV_PREFIX}HOST"]
    if os.environ.get(f"{ENV_PREFIX}PORT"):
        config.server.port = _get_env_int(f"{ENV_PREFIX}PORT", config.server.port)
    config.server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", config.server.debug)
    config.server.tls.enabled = _get_env_bool(f"{ENV_PREFIX}TLS_ENABLED", config.server.tls.enabled)

    # Logging
    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"].upper()
    config.logging.trace = _get_env_bool(f"{ENV_PREFIX}LOG_TRACE", config.logging.trace)

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# samlsso Configuration File
# Environment variables override these settings (prefix: SAMLSSO_)

sp:
  # Entity ID this service provider presents to the IdP
  entity_id: "https://localhost:8443/saml/metadata"

  # Assertion Consumer Service the IdP posts responses to
  acs_url: "https://localhost:8443/saml/acs"

  # Sign AuthnRequests (the IdP may require it)
  authn_requests_signed: false

  # Reject assertions that are not individually signed
  want_assertions_signed: true

  # SP credential (PEM). Generate with: samlsso certs generate
  # key_path: ~/.samlsso/certs/sp.key
  # cert_path: ~/.samlsso/certs/sp.crt

  # Tolerated clock difference with the IdP, in seconds
  clock_skew_seconds: 120

  # Maximum age of the IdP authentication, in seconds
  maximum_authentication_lifetime: 3600

idp:
  # Entity ID of the identity provider
  # entity_id: "https://idp.example.com/metadata"

  # IdP metadata, fetched from a URL or read from a file
  # metadata_url: "https://idp.example.com/metadata"
  # metadata_path: ~/.samlsso/idp-metadata.xml

  # Binding used to send AuthnRequests: redirect or post
  binding: redirect

  verify_ssl: true
  timeout: 10

server:
  host: "127.0.0.1"
  port: 8443
  debug: false
  tls:
    enabled: true
    # cert_path: ~/.samlsso/certs/server.crt
    # key_path: ~/.samlsso/certs/server.key

logging:
  # ERROR, INFO, DEBUG or TRACE
  level: INFO
  # TRACE includes full SAML messages and relay states
  trace: false
"""
