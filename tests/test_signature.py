"""Tests for signature inspection and the metadata trust engine."""

import pytest
from lxml import etree

from samlsso.core.crypto import generate_credential
from samlsso.core.saml.constants import DSIG_NS, SAML20_NS
from samlsso.core.saml.exceptions import SAMLTrustError
from samlsso.core.saml.metadata import InMemoryMetadataResolver
from samlsso.core.saml.signature import (
    KeyInfoGenerator,
    MetadataSignatureTrustEngine,
    SignatureInfo,
    SignatureLocation,
    describe_signatures,
)

from tests.conftest import IDP_ENTITY_ID


def _assertion(xml: str) -> etree._Element:
    return etree.fromstring(xml.encode()).find(f".//{{{SAML20_NS}}}Assertion")


def test_describe_signatures(saml_response):
    doc = etree.fromstring(saml_response(sign_response=True).encode())

    signatures = describe_signatures(doc)

    assert [s.location for s in signatures] == [SignatureLocation.RESPONSE, SignatureLocation.ASSERTION]
    for info in signatures:
        assert info.signature_algorithm_name == "RSA-SHA256"
        assert info.digest_algorithm_name == "SHA-256"
        assert info.certificate_embedded
        assert not info.is_weak
    assert signatures[0].reference_uri == f"#{doc.get('ID')}"


def test_sha1_is_weak():
    info = SignatureInfo(
        location=SignatureLocation.ASSERTION,
        signature_algorithm="http://www.w3.org/2000/09/xmldsig#rsa-sha1",
    )
    assert info.is_weak
    assert info.signature_algorithm_name == "RSA-SHA1"


def test_key_info_generator(idp_credential):
    key_info = KeyInfoGenerator(emit_key_name="idp-signing").generate(idp_credential.certificate_pem)

    assert key_info.tag == f"{{{DSIG_NS}}}KeyInfo"
    assert key_info.findtext(f"{{{DSIG_NS}}}KeyName") == "idp-signing"
    cert = key_info.findtext(f"{{{DSIG_NS}}}X509Data/{{{DSIG_NS}}}X509Certificate")
    assert cert == idp_credential.certificate_b64


class TestMetadataSignatureTrustEngine:
    def test_trusted_signature(self, resolver, saml_response, idp_credential):
        engine = MetadataSignatureTrustEngine(resolver)
        assertion = _assertion(saml_response())

        verified = engine.validate(assertion, IDP_ENTITY_ID, KeyInfoGenerator())

        assert verified.signed_element.get("ID") == assertion.get("ID")
        assert verified.certificate == idp_credential.certificate_b64
        assert verified.info.location == SignatureLocation.ASSERTION
        assert verified.key_info is not None
        assert verified.warnings == []

    def test_key_info_only_when_asked(self, resolver, saml_response):
        verified = MetadataSignatureTrustEngine(resolver).validate(_assertion(saml_response()), IDP_ENTITY_ID)
        assert verified.key_info is None

    def test_unsigned_element(self, resolver, saml_response):
        with pytest.raises(SAMLTrustError, match="is not signed"):
            MetadataSignatureTrustEngine(resolver).validate(
                _assertion(saml_response(sign_assertion=False)), IDP_ENTITY_ID
            )

    def test_unknown_entity(self, saml_response):
        engine = MetadataSignatureTrustEngine(InMemoryMetadataResolver())
        assert engine.trusted_certificates(IDP_ENTITY_ID) == []
        with pytest.raises(SAMLTrustError, match="No signing certificates"):
            engine.validate(_assertion(saml_response()), IDP_ENTITY_ID)

    def test_second_certificate_verifies(self, resolver, idp_entity, saml_response, idp_credential):
        # Key rollover: the old certificate is still listed first
        old = generate_credential("old.idp.example.com")
        idp_entity.idp_descriptor.signing_certificates.insert(0, old.certificate_b64)

        verified = MetadataSignatureTrustEngine(resolver).validate(_assertion(saml_response()), IDP_ENTITY_ID)

        assert verified.certificate == idp_credential.certificate_b64

    def test_rogue_signer(self, resolver, saml_response):
        rogue = generate_credential("rogue.example.com")
        with pytest.raises(SAMLTrustError, match="could not be verified"):
            MetadataSignatureTrustEngine(resolver).validate(
                _assertion(saml_response(signing_credential=rogue)), IDP_ENTITY_ID
            )


def test_describe_signatures_warns_on_sha1(saml_response, caplog):
    xml = saml_response().replace(
        "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256", "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
    )

    [info] = describe_signatures(etree.fromstring(xml.encode()))

    assert info.is_weak
    assert "Assertion signature" in caplog.text
    assert "uses SHA-1" in caplog.text
