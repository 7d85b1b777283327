"""Outbound SAML binding encoders.

An encoder is bound to a response sink, given a prepared outbound
:class:`~samlsso.core.saml.context.MessageContext`, initialized and then
asked to encode. Failures surface as :class:`MessageEncodingError` or
:class:`ComponentInitializationError`; the profile handler wraps both.
"""

from __future__ import annotations

import base64
import logging
import zlib
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from samlsso.core.saml.constants import BINDING_HTTP_POST, BINDING_HTTP_REDIRECT
from samlsso.core.saml.exceptions import ComponentInitializationError, MessageEncodingError
from samlsso.core.saml.models import AuthnRequest

if TYPE_CHECKING:
    from samlsso.core.saml.context import MessageContext
    from samlsso.core.saml.models import Endpoint
    from samlsso.core.saml.transport import SimpleResponseAdapter

logger = logging.getLogger(__name__)


def deflate_and_encode(xml: str) -> str:
    """Raw DEFLATE (no zlib header or checksum) followed by base64."""
    compressed = zlib.compress(xml.encode("utf-8"))[2:-4]
    return base64.b64encode(compressed).decode("ascii")


class FormRenderer(ABC):
    """Renders the auto-submitting form used by the POST binding."""

    @abstractmethod
    def render(self, action: str, fields: dict[str, str]) -> str:
        """Return an HTML page that posts ``fields`` to ``action``."""


class Jinja2FormRenderer(FormRenderer):
    """Form renderer backed by the package's jinja2 templates."""

    def __init__(self, template_name: str = "saml/post_form.html") -> None:
        from jinja2 import Environment, PackageLoader, select_autoescape

        self.template_name = template_name
        self.environment = Environment(
            loader=PackageLoader("samlsso", "templates"),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def render(self, action: str, fields: dict[str, str]) -> str:
        template = self.environment.get_template(self.template_name)
        return template.render(action=action, fields=fields)


class MessageEncoder(ABC):
    """Base class for binding encoders."""

    binding_uri: str

    def __init__(self, response: SimpleResponseAdapter | None) -> None:
        self.response = response
        self.message_context: MessageContext | None = None

    def initialize(self) -> None:
        """Check that the encoder has a context and somewhere to write.

        Raises:
            ComponentInitializationError: If either is missing.
        """
        if self.message_context is None:
            raise ComponentInitializationError("Message context has not been set")
        if self.response is None:
            raise ComponentInitializationError("No outbound transport to write the message to")

    def _prepare(self) -> tuple[AuthnRequest, Endpoint]:
        context = self.message_context
        assert context is not None

        request = context.message
        if not isinstance(request, AuthnRequest):
            raise MessageEncodingError(
                f"Cannot encode {type(request).__name__} with {type(self).__name__}"
            )

        endpoint_context = context.endpoint(create=False)
        endpoint = endpoint_context.endpoint if endpoint_context is not None else None
        if endpoint is None or not endpoint.location:
            raise MessageEncodingError("Outbound context has no destination endpoint")

        if request.destination != endpoint.location:
            request = replace(request, destination=endpoint.location)
            context.message = request

        security = context.security(create=False)
        if security is not None and security.encryption_parameters is not None:
            logger.debug("Encryption parameters present; an AuthnRequest carries no encryptable content")

        return request, endpoint

    def _relay_state(self) -> str | None:
        assert self.message_context is not None
        binding = self.message_context.binding(create=False)
        return binding.relay_state if binding is not None else None

    def encode(self) -> None:
        self.initialize()
        self._encode()

    @abstractmethod
    def _encode(self) -> None:
        """Write the message to the response sink."""


class HTTPRedirectDeflateEncoder(MessageEncoder):
    """HTTP-Redirect binding: deflated request in the query string of a 302."""

    binding_uri = BINDING_HTTP_REDIRECT

    def build_redirect_url(self, endpoint: Endpoint, request: AuthnRequest) -> str:
        params: dict[str, str] = {"SAMLRequest": deflate_and_encode(request.to_xml())}
        relay_state = self._relay_state()
        if relay_state is not None:
            params["RelayState"] = relay_state

        parsed = urlparse(endpoint.location)
        # Keep any query the IdP put on its SSO location
        existing = [(k, v) for k, v in parse_qsl(parsed.query) if k not in params]
        query = urlencode(existing + list(params.items()))
        return urlunparse(parsed._replace(query=query))

    def _encode(self) -> None:
        request, endpoint = self._prepare()
        url = self.build_redirect_url(endpoint, request)
        assert self.response is not None
        try:
            self.response.send_redirect(url)
        except RuntimeError as e:
            raise MessageEncodingError(str(e)) from e
        logger.debug("Encoded AuthnRequest %s for redirect to %s", request.id, endpoint.location)


class HTTPPostEncoder(MessageEncoder):
    """HTTP-POST binding: base64 request in an auto-submitting HTML form."""

    binding_uri = BINDING_HTTP_POST

    def __init__(
        self,
        response: SimpleResponseAdapter | None,
        renderer: FormRenderer | None = None,
    ) -> None:
        super().__init__(response)
        self.renderer = renderer

    def initialize(self) -> None:
        super().initialize()
        if self.renderer is None:
            raise ComponentInitializationError("POST binding requires a form renderer")

    def _encode(self) -> None:
        request, endpoint = self._prepare()
        fields = {
            "SAMLRequest": base64.b64encode(request.to_xml().encode("utf-8")).decode("ascii"),
        }
        relay_state = self._relay_state()
        if relay_state is not None:
            fields["RelayState"] = relay_state

        assert self.renderer is not None and self.response is not None
        try:
            html = self.renderer.render(endpoint.location, fields)
        except Exception as e:
            raise MessageEncodingError(f"Failed to render POST form: {e}") from e
        try:
            self.response.write_html(html)
        except RuntimeError as e:
            raise MessageEncodingError(str(e)) from e
        logger.debug("Encoded AuthnRequest %s as POST form to %s", request.id, endpoint.location)


ENCODERS: dict[str, type[MessageEncoder]] = {
    BINDING_HTTP_REDIRECT: HTTPRedirectDeflateEncoder,
    BINDING_HTTP_POST: HTTPPostEncoder,
}
