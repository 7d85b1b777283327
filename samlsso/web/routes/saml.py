"""SAML SSO routes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flask import Blueprint, Response, current_app, request, session

from samlsso.core.crypto import CredentialError
from samlsso.core.saml.encoding import Jinja2FormRenderer
from samlsso.core.saml.exceptions import SAMLError, SAMLTrustError
from samlsso.core.saml.transport import SimpleRequestAdapter, SimpleResponseAdapter

if TYPE_CHECKING:
    from samlsso.core.saml.sp import SAMLServiceProvider

logger = logging.getLogger(__name__)

saml_bp = Blueprint("saml", __name__, url_prefix="/saml")

# Session keys
REQUEST_ID_KEY = "saml_request_id"
SUBJECT_KEY = "saml_subject"


def get_service_provider() -> SAMLServiceProvider:
    """Return the app's service provider, building it from config on first use."""
    state = current_app.extensions["samlsso"]
    if state["service_provider"] is None:
        from samlsso.core.config import load_config
        from samlsso.core.saml.sp import SAMLServiceProvider

        app_config = state["app_config"] or load_config()
        state["service_provider"] = SAMLServiceProvider.from_config(
            app_config, form_renderer=Jinja2FormRenderer()
        )
    return state["service_provider"]


def to_flask_response(adapter: SimpleResponseAdapter) -> Response:
    return Response(adapter.body, status=adapter.status_code, headers=adapter.headers)


def from_flask_request() -> SimpleRequestAdapter:
    return SimpleRequestAdapter(
        method=request.method,
        url=request.base_url,
        query=request.args.to_dict(),
        form=request.form.to_dict(),
    )


@saml_bp.route("/login")
def login() -> Response | tuple[dict[str, Any], int]:
    """Start SP-initiated SSO.

    The optional ``RelayState`` query parameter is sent to the IdP and
    echoed back on the ACS.
    """
    relay_state = request.args.get("RelayState")
    adapter = SimpleResponseAdapter()
    try:
        outbound = get_service_provider().redirect_to_idp(adapter, relay_state=relay_state)
    except (SAMLError, CredentialError) as e:
        logger.error("Failed to start SSO: %s", e)
        return {"error": str(e)}, 500

    session[REQUEST_ID_KEY] = outbound.request_id
    return to_flask_response(adapter)


@saml_bp.route("/acs", methods=["GET", "POST"])
def acs() -> tuple[dict[str, Any], int]:
    """Assertion Consumer Service: receive and validate the IdP's response."""
    request_id = session.pop(REQUEST_ID_KEY, None)
    try:
        _, credentials = get_service_provider().process_response(
            from_flask_request(), request_id=request_id
        )
    except SAMLTrustError as e:
        logger.warning("Untrusted SAML response: %s", e)
        return {"error": str(e)}, 403
    except SAMLError as e:
        logger.warning("Invalid SAML response: %s", e)
        return {"error": str(e)}, 400

    session[SUBJECT_KEY] = credentials.name_id
    return {"status": "authenticated", **credentials.to_dict()}, 200
