"""Tests for the outbound binding encoders."""

import base64
import zlib
from urllib.parse import parse_qs, urlparse

import pytest
from lxml import etree

from samlsso.core.saml.constants import BINDING_HTTP_POST, BINDING_HTTP_REDIRECT, NSMAP
from samlsso.core.saml.context import EncryptionParameters, MessageContext
from samlsso.core.saml.encoding import (
    ENCODERS,
    HTTPPostEncoder,
    HTTPRedirectDeflateEncoder,
    Jinja2FormRenderer,
    deflate_and_encode,
)
from samlsso.core.saml.exceptions import ComponentInitializationError, MessageEncodingError
from samlsso.core.saml.models import AuthnRequest, Endpoint
from samlsso.core.saml.transport import SimpleResponseAdapter

from tests.conftest import ACS_URL, IDP_POST_SSO, IDP_REDIRECT_SSO, SP_ENTITY_ID


def _outbound(location: str, relay_state: str | None = None) -> MessageContext:
    context = MessageContext()
    context.message = AuthnRequest.create(issuer=SP_ENTITY_ID, acs_url=ACS_URL)
    context.endpoint().endpoint = Endpoint(binding="urn:test", location=location)
    if relay_state is not None:
        context.binding().relay_state = relay_state
    return context


def _inflate(value: str) -> etree._Element:
    return etree.fromstring(zlib.decompress(base64.b64decode(value), -15))


def test_deflate_and_encode_is_raw_deflate():
    encoded = deflate_and_encode("<samlp:AuthnRequest/>")
    assert zlib.decompress(base64.b64decode(encoded), -15) == b"<samlp:AuthnRequest/>"


class TestRedirectEncoder:
    def test_redirects_with_deflated_request(self):
        sink = SimpleResponseAdapter()
        context = _outbound(IDP_REDIRECT_SSO, relay_state="/after-login")
        encoder = HTTPRedirectDeflateEncoder(sink)
        encoder.message_context = context

        encoder.encode()

        assert sink.status_code == 302
        url = urlparse(sink.location)
        assert f"{url.scheme}://{url.netloc}{url.path}" == IDP_REDIRECT_SSO
        params = parse_qs(url.query)
        assert params["RelayState"] == ["/after-login"]

        request = _inflate(params["SAMLRequest"][0])
        assert request.get("ID") == context.message.id
        assert request.get("Destination") == IDP_REDIRECT_SSO
        assert request.find("saml:Issuer", NSMAP).text == SP_ENTITY_ID

    def test_destination_written_back_to_context(self):
        context = _outbound(IDP_REDIRECT_SSO)
        encoder = HTTPRedirectDeflateEncoder(SimpleResponseAdapter())
        encoder.message_context = context
        encoder.encode()
        assert context.message.destination == IDP_REDIRECT_SSO

    def test_keeps_existing_query(self):
        sink = SimpleResponseAdapter()
        encoder = HTTPRedirectDeflateEncoder(sink)
        encoder.message_context = _outbound("https://idp.example.com/sso?tenant=acme")
        encoder.encode()

        params = parse_qs(urlparse(sink.location).query)
        assert params["tenant"] == ["acme"]
        assert "SAMLRequest" in params
        assert "RelayState" not in params

    def test_empty_relay_state_is_sent(self):
        sink = SimpleResponseAdapter()
        encoder = HTTPRedirectDeflateEncoder(sink)
        encoder.message_context = _outbound(IDP_REDIRECT_SSO, relay_state="")
        encoder.encode()

        params = parse_qs(urlparse(sink.location).query, keep_blank_values=True)
        assert params["RelayState"] == [""]

    def test_no_sink(self):
        encoder = HTTPRedirectDeflateEncoder(None)
        encoder.message_context = _outbound(IDP_REDIRECT_SSO)
        with pytest.raises(ComponentInitializationError):
            encoder.encode()

    def test_no_context(self):
        with pytest.raises(ComponentInitializationError):
            HTTPRedirectDeflateEncoder(SimpleResponseAdapter()).encode()

    def test_no_endpoint(self):
        context = MessageContext()
        context.message = AuthnRequest.create(issuer=SP_ENTITY_ID)
        encoder = HTTPRedirectDeflateEncoder(SimpleResponseAdapter())
        encoder.message_context = context
        with pytest.raises(MessageEncodingError):
            encoder.encode()

    def test_already_committed(self):
        sink = SimpleResponseAdapter()
        sink.write_html("<p>done</p>")
        encoder = HTTPRedirectDeflateEncoder(sink)
        encoder.message_context = _outbound(IDP_REDIRECT_SSO)
        with pytest.raises(MessageEncodingError):
            encoder.encode()

    def test_encryption_parameters_are_accepted(self):
        sink = SimpleResponseAdapter()
        context = _outbound(IDP_REDIRECT_SSO)
        context.security().encryption_parameters = EncryptionParameters()
        encoder = HTTPRedirectDeflateEncoder(sink)
        encoder.message_context = context
        encoder.encode()
        assert sink.status_code == 302


class TestPostEncoder:
    def test_renders_auto_submit_form(self):
        sink = SimpleResponseAdapter()
        context = _outbound(IDP_POST_SSO, relay_state="state<&>")
        encoder = HTTPPostEncoder(sink, Jinja2FormRenderer())
        encoder.message_context = context

        encoder.encode()

        assert sink.status_code == 200
        assert sink.headers["Content-Type"].startswith("text/html")
        page = etree.HTML(sink.body)
        form = page.find(".//form")
        assert form.get("action") == IDP_POST_SSO
        assert form.get("method").lower() == "post"

        fields = {i.get("name"): i.get("value") for i in form.findall(".//input[@type='hidden']")}
        assert fields["RelayState"] == "state<&>"
        request = etree.fromstring(base64.b64decode(fields["SAMLRequest"]))
        assert request.get("Destination") == IDP_POST_SSO
        # Relay state is escaped in the markup
        assert "state<&>" not in sink.body

    def test_empty_relay_state_is_sent(self):
        sink = SimpleResponseAdapter()
        encoder = HTTPPostEncoder(sink, Jinja2FormRenderer())
        encoder.message_context = _outbound(IDP_POST_SSO, relay_state="")
        encoder.encode()

        form = etree.HTML(sink.body).find(".//form")
        fields = {i.get("name"): i.get("value") for i in form.findall(".//input[@type='hidden']")}
        assert fields["RelayState"] == ""

    def test_requires_renderer(self):
        encoder = HTTPPostEncoder(SimpleResponseAdapter())
        encoder.message_context = _outbound(IDP_POST_SSO)
        with pytest.raises(ComponentInitializationError):
            encoder.encode()


def test_encoders_cover_exactly_post_and_redirect():
    assert set(ENCODERS) == {BINDING_HTTP_POST, BINDING_HTTP_REDIRECT}
