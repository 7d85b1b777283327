"""SP credential management."""

from samlsso.core.crypto.credentials import (
    CertificateLoadError,
    Credential,
    CredentialError,
    CredentialProvider,
    KeyLoadError,
    generate_credential,
    generate_private_key,
    generate_self_signed_certificate,
    load_certificate,
    load_private_key,
    save_certificate,
    save_private_key,
)

__all__ = [
    "CertificateLoadError",
    "Credential",
    "CredentialError",
    "CredentialProvider",
    "KeyLoadError",
    "generate_credential",
    "generate_private_key",
    "generate_self_signed_certificate",
    "load_certificate",
    "load_private_key",
    "save_certificate",
    "save_private_key",
]
