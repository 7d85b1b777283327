"""SP credential CLI commands."""

from pathlib import Path

import click

from samlsso.cli.config import error_result, json_option, output_result


@click.group()
def certs() -> None:
    """Manage the SP signing key and certificate.

    The SP credential is used when the SP signs its AuthnRequests.
    """
    pass


@certs.command("generate")
@click.option(
    "--common-name",
    "-cn",
    default="samlsso",
    help="Common Name (CN) for the certificate",
)
@click.option(
    "--days",
    "-d",
    type=int,
    default=365,
    help="Days the certificate is valid",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),  # type: ignore[type-var]
    help="Output directory for the key and certificate",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing files",
)
def certs_generate(common_name: str, days: int, output: Path | None, force: bool) -> None:
    """Generate a self-signed SP signing certificate.

    Examples:

        # Write ~/.samlsso/certs/sp.key and sp.crt
        samlsso certs generate

        # Generate to a specific directory
        samlsso certs generate --output ./certs --common-name sp.example.com
    """
    from samlsso.core.config import DEFAULT_CERTS_DIR
    from samlsso.core.crypto import (
        generate_private_key,
        generate_self_signed_certificate,
        save_certificate,
        save_private_key,
    )

    output_dir = output or DEFAULT_CERTS_DIR
    cert_path = output_dir / "sp.crt"
    key_path = output_dir / "sp.key"

    if not force and (cert_path.exists() or key_path.exists()):
        raise click.ClickException(
            f"Certificate files already exist at {output_dir}. Use --force to overwrite."
        )

    click.echo("Generating SP signing certificate...")
    click.echo(f"  Common Name: {common_name}")
    click.echo(f"  Valid for: {days} days")
    click.echo("")

    private_key = generate_private_key()
    cert = generate_self_signed_certificate(private_key, common_name=common_name, days_valid=days)

    save_private_key(private_key, key_path)
    save_certificate(cert, cert_path)

    click.echo(f"Private key: {key_path}")
    click.echo(f"Certificate: {cert_path}")


@certs.command("show")
@click.argument(
    "cert_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),  # type: ignore[type-var]
)
@json_option
def certs_show(cert_file: Path, output_json: bool) -> None:
    """Show details of a PEM certificate."""
    from cryptography.hazmat.primitives import hashes
    from cryptography.x509.oid import NameOID

    from samlsso.core.crypto import CertificateLoadError, load_certificate

    try:
        cert = load_certificate(cert_file)
    except CertificateLoadError as e:
        error_result(str(e), output_json)

    cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    output_result(
        {
            "path": str(cert_file),
            "common_name": cn[0].value if cn else None,
            "subject": cert.subject.rfc4514_string(),
            "issuer": cert.issuer.rfc4514_string(),
            "serial_number": format(cert.serial_number, "x"),
            "not_before": cert.not_valid_before_utc.isoformat(),
            "not_after": cert.not_valid_after_utc.isoformat(),
            "fingerprint_sha256": cert.fingerprint(hashes.SHA256()).hex(":").upper(),
        },
        as_json=output_json,
    )
