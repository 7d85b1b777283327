"""XML signature trust for inbound SAML messages.

Signatures are verified with signxml against the signing certificates the
issuer publishes in its metadata. A :class:`KeyInfoGenerator` turns the
certificate that verified a signature into a ``ds:KeyInfo`` element so the
signer's key material can be surfaced on the message context.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from lxml import etree

from samlsso.core.saml.constants import DSIG_NS, SAML20_NS
from samlsso.core.saml.exceptions import SAMLTrustError
from samlsso.core.saml.models import certificate_der_b64

if TYPE_CHECKING:
    from samlsso.core.saml.metadata import MetadataResolver

logger = logging.getLogger(__name__)


class SignatureLocation(StrEnum):
    """Where a signature was found in the SAML document."""

    RESPONSE = "response"
    ASSERTION = "assertion"


# Mapping of signature algorithm URIs to friendly names
SIGNATURE_ALGORITHMS: dict[str, str] = {
    "http://www.w3.org/2000/09/xmldsig#rsa-sha1": "RSA-SHA1",
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256": "RSA-SHA256",
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha384": "RSA-SHA384",
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha512": "RSA-SHA512",
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256": "ECDSA-SHA256",
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha384": "ECDSA-SHA384",
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha512": "ECDSA-SHA512",
}

DIGEST_ALGORITHMS: dict[str, str] = {
    "http://www.w3.org/2000/09/xmldsig#sha1": "SHA-1",
    "http://www.w3.org/2001/04/xmlenc#sha256": "SHA-256",
    "http://www.w3.org/2001/04/xmldsig-more#sha384": "SHA-384",
    "http://www.w3.org/2001/04/xmlenc#sha512": "SHA-512",
}


@dataclass
class SignatureInfo:
    """Algorithms and reference of one ds:Signature element."""

    location: SignatureLocation
    signature_algorithm: str | None = None
    digest_algorithm: str | None = None
    reference_uri: str | None = None
    certificate_embedded: bool = False

    @property
    def signature_algorithm_name(self) -> str | None:
        return SIGNATURE_ALGORITHMS.get(self.signature_algorithm or "", self.signature_algorithm)

    @property
    def digest_algorithm_name(self) -> str | None:
        return DIGEST_ALGORITHMS.get(self.digest_algorithm or "", self.digest_algorithm)

    @property
    def is_weak(self) -> bool:
        return any(
            algo and "sha1" in algo.lower()
            for algo in (self.signature_algorithm, self.digest_algorithm)
        )


@dataclass
class VerifiedSignature:
    """A signature that verified against a trusted certificate."""

    signed_element: etree._Element
    certificate: str
    key_info: etree._Element | None = None
    info: SignatureInfo | None = None
    warnings: list[str] = field(default_factory=list)


def _signature_info(sig_elem: etree._Element, location: SignatureLocation) -> SignatureInfo:
    info = SignatureInfo(location=location)

    signed_info = sig_elem.find(f"{{{DSIG_NS}}}SignedInfo")
    if signed_info is not None:
        sig_method = signed_info.find(f"{{{DSIG_NS}}}SignatureMethod")
        if sig_method is not None:
            info.signature_algorithm = sig_method.get("Algorithm")

        reference = signed_info.find(f"{{{DSIG_NS}}}Reference")
        if reference is not None:
            info.reference_uri = reference.get("URI")
            digest_method = reference.find(f"{{{DSIG_NS}}}DigestMethod")
            if digest_method is not None:
                info.digest_algorithm = digest_method.get("Algorithm")

    cert = sig_elem.find(f"{{{DSIG_NS}}}KeyInfo/{{{DSIG_NS}}}X509Data/{{{DSIG_NS}}}X509Certificate")
    info.certificate_embedded = cert is not None and bool(cert.text)
    return info


def describe_signatures(doc: etree._Element) -> list[SignatureInfo]:
    """List the signatures on a Response and on its Assertions.

    Signatures using SHA-1 are logged as warnings.
    """
    signatures = [
        _signature_info(sig, SignatureLocation.RESPONSE)
        for sig in doc.findall(f"{{{DSIG_NS}}}Signature")
    ]
    for assertion in doc.findall(f".//{{{SAML20_NS}}}Assertion"):
        signatures.extend(
            _signature_info(sig, SignatureLocation.ASSERTION)
            for sig in assertion.findall(f"{{{DSIG_NS}}}Signature")
        )
    for info in signatures:
        if info.is_weak:
            logger.warning(
                "%s signature %s uses SHA-1 (%s, %s)",
                info.location.value.capitalize(),
                info.reference_uri,
                info.signature_algorithm_name,
                info.digest_algorithm_name,
            )
    return signatures


def _prepare_certificate(cert: str) -> str:
    """Ensure a certificate is in PEM format."""
    cert = cert.strip()
    if cert.startswith("-----BEGIN"):
        return cert
    return f"-----BEGIN CERTIFICATE-----\n{certificate_der_b64(cert)}\n-----END CERTIFICATE-----"


class KeyInfoGenerator:
    """Builds ``ds:KeyInfo`` elements for X.509 credentials."""

    def __init__(self, emit_certificate: bool = True, emit_key_name: str | None = None) -> None:
        self.emit_certificate = emit_certificate
        self.emit_key_name = emit_key_name

    def generate(self, certificate: str) -> etree._Element:
        key_info = etree.Element(f"{{{DSIG_NS}}}KeyInfo", nsmap={"ds": DSIG_NS})
        if self.emit_key_name:
            etree.SubElement(key_info, f"{{{DSIG_NS}}}KeyName").text = self.emit_key_name
        if self.emit_certificate:
            x509_data = etree.SubElement(key_info, f"{{{DSIG_NS}}}X509Data")
            etree.SubElement(x509_data, f"{{{DSIG_NS}}}X509Certificate").text = certificate_der_b64(
                certificate
            )
        return key_info


class SignatureTrustEngine(ABC):
    """Decides whether a signed element can be trusted for an issuer."""

    @abstractmethod
    def validate(
        self,
        element: etree._Element,
        entity_id: str,
        key_info_generator: KeyInfoGenerator | None = None,
    ) -> VerifiedSignature:
        """Verify the enveloped signature on ``element``.

        Raises:
            SAMLTrustError: If the element is unsigned or no trusted key verifies it.
        """


class MetadataSignatureTrustEngine(SignatureTrustEngine):
    """Trusts the signing certificates an IdP publishes in metadata."""

    def __init__(self, resolver: MetadataResolver) -> None:
        self.resolver = resolver

    def trusted_certificates(self, entity_id: str) -> list[str]:
        descriptor = self.resolver.resolve(entity_id)
        if descriptor is None or descriptor.idp_descriptor is None:
            return []
        return list(descriptor.idp_descriptor.signing_certificates)

    def validate(
        self,
        element: etree._Element,
        entity_id: str,
        key_info_generator: KeyInfoGenerator | None = None,
    ) -> VerifiedSignature:
        from signxml import XMLVerifier
        from signxml.exceptions import InvalidInput, InvalidSignature

        sig_elem = element.find(f"{{{DSIG_NS}}}Signature")
        if sig_elem is None:
            raise SAMLTrustError(f"Element {element.tag} is not signed")

        location = (
            SignatureLocation.ASSERTION
            if element.tag == f"{{{SAML20_NS}}}Assertion"
            else SignatureLocation.RESPONSE
        )
        info = _signature_info(sig_elem, location)

        certificates = self.trusted_certificates(entity_id)
        if not certificates:
            raise SAMLTrustError(f"No signing certificates are trusted for {entity_id}")

        element_id = element.get("ID")
        data = etree.tostring(element, with_tail=False)
        errors: list[str] = []

        for certificate in certificates:
            try:
                result = XMLVerifier().verify(data, x509_cert=_prepare_certificate(certificate))
            except (InvalidSignature, InvalidInput) as e:
                errors.append(str(e))
                continue

            signed = result.signed_xml
            if signed is None or signed.get("ID") != element_id:
                raise SAMLTrustError(
                    f"Signature on {element_id} references a different element"
                )

            verified = VerifiedSignature(
                signed_element=signed,
                certificate=certificate,
                info=info,
            )
            if key_info_generator is not None:
                verified.key_info = key_info_generator.generate(certificate)
            if info.is_weak:
                verified.warnings.append(
                    f"Signature at {location.value} uses SHA-1, which is deprecated"
                )

            logger.debug("Verified %s signature on %s from %s", location.value, element_id, entity_id)
            return verified

        raise SAMLTrustError(
            f"Signature on {element_id} could not be verified with any trusted "
            f"certificate of {entity_id}: {'; '.join(errors)}"
        )
