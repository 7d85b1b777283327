"""Pytest configuration and fixtures."""

from __future__ import annotations

import base64
import secrets
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from flask import Flask
from flask.testing import FlaskClient
from lxml import etree

from samlsso.app import create_app
from samlsso.core.config import IdPSettings, SPSettings
from samlsso.core.crypto import Credential, CredentialProvider, generate_credential
from samlsso.core.saml.constants import (
    BINDING_HTTP_POST,
    BINDING_HTTP_REDIRECT,
    CONFIRMATION_METHOD_BEARER,
    DSIG_NS,
    SAML20_NS,
    SAML20P_NS,
    STATUS_SUCCESS,
    XSI_NS,
)
from samlsso.core.saml.context import MessageContext
from samlsso.core.saml.encoding import Jinja2FormRenderer
from samlsso.core.saml.metadata import InMemoryMetadataResolver
from samlsso.core.saml.models import (
    Endpoint,
    EntityDescriptor,
    IDPSSODescriptor,
    IndexedEndpoint,
    SPSSODescriptor,
    format_instant,
)
from samlsso.core.saml.sp import SAMLServiceProvider
from samlsso.core.saml.transport import SimpleResponseAdapter

SP_ENTITY_ID = "https://sp.example.com/metadata"
ACS_URL = "https://sp.example.com/acs"
IDP_ENTITY_ID = "https://idp.example.com/metadata"
IDP_REDIRECT_SSO = "https://idp.example.com/sso/redirect"
IDP_POST_SSO = "https://idp.example.com/sso/post"


@pytest.fixture(scope="session")
def idp_credential() -> Credential:
    """Signing credential of the test IdP."""
    return generate_credential("idp.example.com", entity_id=IDP_ENTITY_ID)


@pytest.fixture(scope="session")
def sp_credential() -> Credential:
    """Credential of the SP under test."""
    return generate_credential("sp.example.com", entity_id=SP_ENTITY_ID)


@pytest.fixture
def sp_entity() -> EntityDescriptor:
    return EntityDescriptor(
        entity_id=SP_ENTITY_ID,
        sp_descriptor=SPSSODescriptor(
            assertion_consumer_services=[
                IndexedEndpoint(binding=BINDING_HTTP_POST, location=ACS_URL, index="0", is_default=True),
            ],
        ),
    )


@pytest.fixture
def idp_entity(idp_credential: Credential) -> EntityDescriptor:
    return EntityDescriptor(
        entity_id=IDP_ENTITY_ID,
        idp_descriptor=IDPSSODescriptor(
            single_sign_on_services=[
                Endpoint(binding=BINDING_HTTP_REDIRECT, location=IDP_REDIRECT_SSO),
                Endpoint(binding=BINDING_HTTP_POST, location=IDP_POST_SSO),
            ],
            signing_certificates=[idp_credential.certificate_b64],
        ),
    )


@pytest.fixture
def resolver(idp_entity: EntityDescriptor) -> InMemoryMetadataResolver:
    return InMemoryMetadataResolver([idp_entity])


@pytest.fixture
def sp_provider(sp_credential: Credential) -> CredentialProvider:
    return CredentialProvider(sp_credential)


@pytest.fixture
def make_context() -> Callable[..., MessageContext]:
    """Build a top-level context holding SP self metadata and IdP peer metadata."""

    def _make(
        sp: EntityDescriptor,
        idp: EntityDescriptor,
        sink: SimpleResponseAdapter | None = None,
    ) -> MessageContext:
        context = MessageContext()
        context.self_entity().entity_id = sp.entity_id
        context.self_metadata().entity_descriptor = sp
        context.self_metadata().role_descriptor = sp.sp_descriptor
        context.peer_metadata().entity_descriptor = idp
        context.peer_metadata().role_descriptor = idp.idp_descriptor
        context.profile_request().outbound_transport = sink if sink is not None else SimpleResponseAdapter()
        return context

    return _make


@pytest.fixture
def idp_metadata_xml(idp_credential: Credential) -> str:
    """Metadata document the test IdP would publish."""
    return f"""<?xml version="1.0"?>
<md:EntityDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata"
                     xmlns:ds="http://www.w3.org/2000/09/xmldsig#"
                     entityID="{IDP_ENTITY_ID}">
  <md:IDPSSODescriptor WantAuthnRequestsSigned="true"
                       protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">
    <md:KeyDescriptor use="signing">
      <ds:KeyInfo><ds:X509Data><ds:X509Certificate>
{idp_credential.certificate_b64}
      </ds:X509Certificate></ds:X509Data></ds:KeyInfo>
    </md:KeyDescriptor>
    <md:KeyDescriptor use="encryption">
      <ds:KeyInfo><ds:X509Data><ds:X509Certificate>MIIBIjAN</ds:X509Certificate></ds:X509Data></ds:KeyInfo>
    </md:KeyDescriptor>
    <md:NameIDFormat>urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress</md:NameIDFormat>
    <md:SingleSignOnService Binding="{BINDING_HTTP_REDIRECT}" Location="{IDP_REDIRECT_SSO}"/>
    <md:SingleSignOnService Binding="{BINDING_HTTP_POST}" Location="{IDP_POST_SSO}"/>
  </md:IDPSSODescriptor>
</md:EntityDescriptor>
"""


def _sign(element: etree._Element, credential: Credential) -> etree._Element:
    from signxml import (
        CanonicalizationMethod,
        DigestAlgorithm,
        SignatureConstructionMethod,
        SignatureMethod,
        XMLSigner,
    )

    signer = XMLSigner(
        method=SignatureConstructionMethod.enveloped,
        signature_algorithm=SignatureMethod.RSA_SHA256,
        digest_algorithm=DigestAlgorithm.SHA256,
        c14n_algorithm=CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
    )
    return signer.sign(
        element,
        key=credential.private_key_pem,
        cert=credential.certificate_pem,
        reference_uri=f"#{element.get('ID')}",
    )


def _signature_placeholder(after: etree._Element) -> None:
    placeholder = etree.Element(f"{{{DSIG_NS}}}Signature", nsmap={"ds": DSIG_NS})
    placeholder.set("Id", "placeholder")
    after.addnext(placeholder)


def build_response_xml(
    credential: Credential,
    *,
    in_response_to: str | None = None,
    issuer: str = IDP_ENTITY_ID,
    assertion_issuer: str | None = None,
    destination: str | None = ACS_URL,
    status: str = STATUS_SUCCESS,
    audience: str | None = SP_ENTITY_ID,
    recipient: str = ACS_URL,
    confirmation_method: str = CONFIRMATION_METHOD_BEARER,
    confirmation_in_response_to: str | None = None,
    name_id: str | None = "alice@example.com",
    base_id: bool = False,
    attributes: dict[str, list[str]] | None = None,
    not_before: timedelta = timedelta(minutes=-1),
    not_on_or_after: timedelta = timedelta(minutes=5),
    authn_age: timedelta = timedelta(seconds=0),
    sign_response: bool = False,
    sign_assertion: bool = True,
    signing_credential: Credential | None = None,
    now: datetime | None = None,
) -> str:
    """Build a SAML Response as the test IdP would issue it."""
    now = now or datetime.now(UTC)
    signer = signing_credential or credential
    nsmap = {"samlp": SAML20P_NS, "saml": SAML20_NS}

    response = etree.Element(f"{{{SAML20P_NS}}}Response", nsmap=nsmap)
    response.set("ID", f"_{secrets.token_hex(16)}")
    response.set("Version", "2.0")
    response.set("IssueInstant", format_instant(now))
    if destination:
        response.set("Destination", destination)
    if in_response_to:
        response.set("InResponseTo", in_response_to)
    response_issuer = etree.SubElement(response, f"{{{SAML20_NS}}}Issuer")
    response_issuer.text = issuer
    status_elem = etree.SubElement(response, f"{{{SAML20P_NS}}}Status")
    etree.SubElement(status_elem, f"{{{SAML20P_NS}}}StatusCode").set("Value", status)

    assertion = etree.Element(f"{{{SAML20_NS}}}Assertion", nsmap={"saml": SAML20_NS, "xsi": XSI_NS})
    assertion.set("ID", f"_{secrets.token_hex(16)}")
    assertion.set("Version", "2.0")
    assertion.set("IssueInstant", format_instant(now))
    assertion_issuer_elem = etree.SubElement(assertion, f"{{{SAML20_NS}}}Issuer")
    assertion_issuer_elem.text = assertion_issuer or issuer

    subject = etree.SubElement(assertion, f"{{{SAML20_NS}}}Subject")
    if name_id:
        name_id_elem = etree.SubElement(subject, f"{{{SAML20_NS}}}NameID")
        name_id_elem.set("Format", "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress")
        name_id_elem.text = name_id
    if base_id:
        base_id_elem = etree.SubElement(subject, f"{{{SAML20_NS}}}BaseID")
        base_id_elem.set(f"{{{XSI_NS}}}type", "ext:EmployeeID")
        base_id_elem.set("NameQualifier", issuer)
    confirmation = etree.SubElement(subject, f"{{{SAML20_NS}}}SubjectConfirmation")
    confirmation.set("Method", confirmation_method)
    data = etree.SubElement(confirmation, f"{{{SAML20_NS}}}SubjectConfirmationData")
    data.set("Recipient", recipient)
    data.set("NotOnOrAfter", format_instant(now + not_on_or_after))
    if confirmation_in_response_to or in_response_to:
        data.set("InResponseTo", confirmation_in_response_to or in_response_to)

    conditions = etree.SubElement(assertion, f"{{{SAML20_NS}}}Conditions")
    conditions.set("NotBefore", format_instant(now + not_before))
    conditions.set("NotOnOrAfter", format_instant(now + not_on_or_after))
    if audience:
        restriction = etree.SubElement(conditions, f"{{{SAML20_NS}}}AudienceRestriction")
        etree.SubElement(restriction, f"{{{SAML20_NS}}}Audience").text = audience

    authn = etree.SubElement(assertion, f"{{{SAML20_NS}}}AuthnStatement")
    authn.set("AuthnInstant", format_instant(now - authn_age))
    authn.set("SessionIndex", "_session_1")
    authn_context = etree.SubElement(authn, f"{{{SAML20_NS}}}AuthnContext")
    etree.SubElement(authn_context, f"{{{SAML20_NS}}}AuthnContextClassRef").text = (
        "urn:oasis:names:tc:SAML:2.0:ac:classes:PasswordProtectedTransport"
    )

    statement = etree.SubElement(assertion, f"{{{SAML20_NS}}}AttributeStatement")
    for name, values in (attributes or {"mail": ["alice@example.com"]}).items():
        attribute = etree.SubElement(statement, f"{{{SAML20_NS}}}Attribute")
        attribute.set("Name", name)
        for value in values:
            etree.SubElement(attribute, f"{{{SAML20_NS}}}AttributeValue").text = value

    if sign_assertion:
        _signature_placeholder(assertion_issuer_elem)
        assertion = _sign(assertion, signer)
    response.append(assertion)

    if sign_response:
        _signature_placeholder(response_issuer)
        response = _sign(response, signer)

    return etree.tostring(response, encoding="unicode")


@pytest.fixture
def saml_response(idp_credential: Credential) -> Callable[..., str]:
    """Factory for IdP responses signed with the test IdP credential."""

    def _build(**kwargs: Any) -> str:
        return build_response_xml(idp_credential, **kwargs)

    return _build


def encode_post(xml: str) -> str:
    return base64.b64encode(xml.encode("utf-8")).decode("ascii")


@pytest.fixture
def service_provider(
    resolver: InMemoryMetadataResolver,
    sp_provider: CredentialProvider,
) -> SAMLServiceProvider:
    return SAMLServiceProvider(
        SPSettings(entity_id=SP_ENTITY_ID, acs_url=ACS_URL),
        IdPSettings(entity_id=IDP_ENTITY_ID, binding=BINDING_HTTP_REDIRECT),
        resolver,
        sp_provider,
        form_renderer=Jinja2FormRenderer(),
    )


@pytest.fixture
def app(service_provider: SAMLServiceProvider) -> Generator[Flask, None, None]:
    """Create application for testing."""
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key",
            "SESSION_COOKIE_SECURE": False,
            "SESSION_COOKIE_SAMESITE": "Lax",
        },
        service_provider=service_provider,
    )
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()

