"""SSO CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from samlsso.cli.config import config_path_option, error_result, json_option, output_result

if TYPE_CHECKING:
    from samlsso.core.saml.sp import SAMLServiceProvider


def _service_provider(config_path: Path | None, binding: str | None, as_json: bool) -> SAMLServiceProvider:
    from samlsso.core.config import load_config
    from samlsso.core.saml import SAMLError
    from samlsso.core.saml.constants import binding_uri
    from samlsso.core.saml.encoding import Jinja2FormRenderer
    from samlsso.core.saml.sp import SAMLServiceProvider

    app_config = load_config(config_path)
    if binding:
        app_config.idp.binding = binding_uri(binding)
    try:
        return SAMLServiceProvider.from_config(app_config, form_renderer=Jinja2FormRenderer())
    except SAMLError as e:
        error_result(str(e), as_json)


@click.group()
def sso() -> None:
    """Run SP-initiated SSO against the configured IdP."""
    pass


@sso.command("endpoints")
@config_path_option
@json_option
def sso_endpoints(config_path: Path | None, output_json: bool) -> None:
    """List the IdP's SSO endpoints and signing requirements."""
    from samlsso.core.saml import SAMLError

    sp = _service_provider(config_path, None, output_json)
    try:
        context = sp.build_context()
        idp = context.idp_descriptor
    except SAMLError as e:
        error_result(str(e), output_json)

    data = {
        "entity_id": context.peer_entity().entity_id,
        "want_authn_requests_signed": idp.want_authn_requests_signed,
        "signing_certificates": len(idp.signing_certificates),
        "single_sign_on_services": [
            {"binding": s.binding, "location": s.location} for s in idp.single_sign_on_services
        ],
        "assertion_consumer_url": context.assertion_consumer_url,
    }
    if output_json:
        output_result(data, as_json=True)
        return

    click.echo(f"IdP: {data['entity_id']}")
    click.echo(f"  Wants signed AuthnRequests: {'yes' if idp.want_authn_requests_signed else 'no'}")
    click.echo(f"  Signing certificates: {data['signing_certificates']}")
    click.echo("  Single sign-on services:")
    for service in idp.single_sign_on_services:
        click.echo(f"    {service.binding}")
        click.echo(f"      {service.location}")
    click.echo(f"SP ACS: {context.assertion_consumer_url}")


@sso.command("request")
@click.option(
    "--binding",
    "-b",
    default=None,
    help="Binding to reach the IdP: redirect or post (default: from config)",
)
@click.option("--relay-state", "-r", default=None, help="RelayState to send with the request")
@click.option("--force-authn", is_flag=True, help="Ask the IdP to re-authenticate the user")
@click.option("--passive", is_flag=True, help="Ask the IdP not to interact with the user")
@config_path_option
@json_option
def sso_request(
    binding: str | None,
    relay_state: str | None,
    force_authn: bool,
    passive: bool,
    config_path: Path | None,
    output_json: bool,
) -> None:
    """Build an AuthnRequest and print where the browser would be sent.

    Examples:

        # Print the redirect URL
        samlsso sso request --relay-state /dashboard

        # Print the auto-submitting form for the POST binding
        samlsso sso request --binding post
    """
    from samlsso.core.crypto import CredentialError
    from samlsso.core.saml import SAMLError
    from samlsso.core.saml.transport import SimpleResponseAdapter

    sp = _service_provider(config_path, binding, output_json)
    response = SimpleResponseAdapter()
    try:
        outbound = sp.redirect_to_idp(
            response,
            relay_state=relay_state,
            force_authn=force_authn,
            is_passive=passive,
        )
    except (SAMLError, CredentialError) as e:
        error_result(str(e), output_json)

    endpoint = outbound.endpoint().endpoint
    data = {
        "request_id": outbound.request_id,
        "binding": outbound.binding().binding_uri,
        "destination": endpoint.location if endpoint else None,
        "relay_state": outbound.binding().relay_state,
    }
    if response.location:
        data["url"] = response.location
    else:
        data["form"] = response.body

    if output_json:
        output_result(data, as_json=True)
        return

    click.echo(f"AuthnRequest: {data['request_id']}")
    click.echo(f"Destination: {data['destination']}")
    click.echo("")
    click.echo(data.get("url") or data.get("form"))
