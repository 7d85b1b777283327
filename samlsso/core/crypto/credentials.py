"""SP signing/encryption credentials.

Loads the SP's RSA key pair and X.509 certificate from PEM files and
generates self-signed credentials for development and testing.
"""

from __future__ import annotations

import base64
import os
import stat
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID


class CredentialError(Exception):
    """Base exception for credential errors."""


class CertificateLoadError(CredentialError):
    """Raised when a certificate cannot be loaded."""


class KeyLoadError(CredentialError):
    """Raised when a private key cannot be loaded."""


@dataclass(frozen=True)
class Credential:
    """An RSA key pair with its X.509 certificate."""

    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    entity_id: str | None = None

    @property
    def certificate_pem(self) -> str:
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    @property
    def certificate_b64(self) -> str:
        """Base64 DER, as it appears in ds:X509Certificate."""
        der = self.certificate.public_bytes(serialization.Encoding.DER)
        return base64.b64encode(der).decode("ascii")

    @property
    def private_key_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @property
    def fingerprint_sha256(self) -> str:
        return self.certificate.fingerprint(hashes.SHA256()).hex(":").upper()


def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def generate_self_signed_certificate(
    private_key: rsa.RSAPrivateKey,
    common_name: str,
    organization: str = "samlsso",
    days_valid: int = 365,
) -> x509.Certificate:
    """Generate a self-signed X.509 certificate for SAML signing.

    Args:
        private_key: RSA private key to sign the certificate.
        common_name: Common Name (CN) for the certificate subject.
        organization: Organization (O) for the certificate subject.
        days_valid: Number of days the certificate is valid.

    Returns:
        Self-signed X.509 certificate.
    """
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])

    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(
            x509.BasicConstraints(ca=False, path_length=None),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(private_key, hashes.SHA256())
    )


def generate_credential(
    common_name: str,
    entity_id: str | None = None,
    key_size: int = 2048,
    days_valid: int = 365,
) -> Credential:
    """Generate a fresh self-signed credential."""
    key = generate_private_key(key_size)
    cert = generate_self_signed_certificate(key, common_name=common_name, days_valid=days_valid)
    return Credential(private_key=key, certificate=cert, entity_id=entity_id)


def save_private_key(private_key: rsa.RSAPrivateKey, path: Path, password: bytes | None = None) -> None:
    """Save a private key to a PEM file readable only by the owner."""
    path.parent.mkdir(parents=True, exist_ok=True)

    encryption = (
        serialization.BestAvailableEncryption(password)
        if password
        else serialization.NoEncryption()
    )
    pem_data = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )

    path.touch(mode=0o600)
    path.write_bytes(pem_data)
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)


def save_certificate(cert: x509.Certificate, path: Path) -> None:
    """Save a certificate to a PEM file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


def load_private_key(path: Path, password: bytes | None = None) -> rsa.RSAPrivateKey:
    """Load an RSA private key from a PEM file.

    Raises:
        KeyLoadError: If the key cannot be loaded or is not RSA.
    """
    if not path.exists():
        raise KeyLoadError(f"Private key file not found: {path}")

    try:
        key = serialization.load_pem_private_key(path.read_bytes(), password=password)
    except (ValueError, TypeError) as e:
        raise KeyLoadError(f"Failed to load private key from {path}: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyLoadError(f"Expected RSA private key, got {type(key).__name__}")
    return key


def load_certificate(path: Path) -> x509.Certificate:
    """Load a certificate from a PEM file.

    Raises:
        CertificateLoadError: If the certificate cannot be loaded.
    """
    if not path.exists():
        raise CertificateLoadError(f"Certificate file not found: {path}")

    try:
        return x509.load_pem_x509_certificate(path.read_bytes())
    except ValueError as e:
        raise CertificateLoadError(f"Failed to load certificate from {path}: {e}") from e


class CredentialProvider:
    """Supplies the SP's own credential.

    Either wraps a ready :class:`Credential` or loads one lazily from PEM
    files on first use.
    """

    def __init__(
        self,
        credential: Credential | None = None,
        *,
        key_path: Path | None = None,
        cert_path: Path | None = None,
        password: bytes | None = None,
        entity_id: str | None = None,
    ) -> None:
        if credential is None and (key_path is None or cert_path is None):
            raise CredentialError("Either a credential or both key_path and cert_path are required")
        self._credential = credential
        self.key_path = key_path
        self.cert_path = cert_path
        self._password = password
        self.entity_id = entity_id

    @property
    def credential(self) -> Credential:
        if self._credential is None:
            assert self.key_path is not None and self.cert_path is not None
            key = load_private_key(self.key_path, self._password)
            cert = load_certificate(self.cert_path)
            if cert.public_key().public_numbers() != key.public_key().public_numbers():
                raise CredentialError(
                    f"Certificate {self.cert_path} does not match private key {self.key_path}"
                )
            self._credential = Credential(private_key=key, certificate=cert, entity_id=self.entity_id)
        return self._credential
