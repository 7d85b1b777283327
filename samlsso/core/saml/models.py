"""SAML message and metadata value types.

Descriptors mirror the parts of SAML metadata the SSO profile consumes.
Protocol messages are parsed with lxml; the parsed element is kept so
signatures can be verified against the original tree.
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape, quoteattr

from lxml import etree

from samlsso.core.saml.constants import (
    BINDING_HTTP_POST,
    DSIG_NS,
    NAMEID_FORMAT_UNSPECIFIED,
    NSMAP,
    SAML20_NS,
    SAML20P_NS,
    STATUS_SUCCESS,
    XSI_NS,
)
from samlsso.core.saml.exceptions import MessageDecodingError

if TYPE_CHECKING:
    from collections.abc import Iterable


def parse_instant(value: str | None) -> datetime | None:
    """Parse an xs:dateTime instant into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_instant(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _secure_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        huge_tree=False,
    )


def parse_xml(xml: str | bytes) -> etree._Element:
    """Parse untrusted XML with entity expansion and network access disabled.

    Raises:
        MessageDecodingError: If the document is not well-formed.
    """
    data = xml.encode("utf-8") if isinstance(xml, str) else xml
    try:
        return etree.fromstring(data, parser=_secure_parser())
    except etree.XMLSyntaxError as e:
        raise MessageDecodingError(f"Malformed XML: {e}") from e


# Metadata


@dataclass(frozen=True)
class Endpoint:
    """A metadata endpoint: binding URI and location."""

    binding: str
    location: str
    response_location: str | None = None


@dataclass(frozen=True)
class IndexedEndpoint(Endpoint):
    """An indexed endpoint, such as an AssertionConsumerService."""

    index: str | None = None
    is_default: bool = False


@dataclass
class SPSSODescriptor:
    """Service Provider role descriptor."""

    assertion_consumer_services: list[IndexedEndpoint] = field(default_factory=list)
    authn_requests_signed: bool = False
    want_assertions_signed: bool = False
    signing_certificates: list[str] = field(default_factory=list)
    encryption_certificates: list[str] = field(default_factory=list)
    name_id_formats: list[str] = field(default_factory=list)

    @property
    def default_assertion_consumer_service(self) -> IndexedEndpoint | None:
        """The first ACS explicitly flagged ``isDefault="true"``, if any."""
        for service in self.assertion_consumer_services:
            if service.is_default:
                return service
        return None


@dataclass
class IDPSSODescriptor:
    """Identity Provider role descriptor."""

    single_sign_on_services: list[Endpoint] = field(default_factory=list)
    want_authn_requests_signed: bool = False
    signing_certificates: list[str] = field(default_factory=list)
    name_id_formats: list[str] = field(default_factory=list)


@dataclass
class EntityDescriptor:
    """A federation entity and the SSO roles it publishes."""

    entity_id: str
    sp_descriptor: SPSSODescriptor | None = None
    idp_descriptor: IDPSSODescriptor | None = None
    metadata_xml: str | None = None


# Protocol messages


@dataclass
class AuthnRequest:
    """A SAML 2.0 AuthnRequest."""

    id: str
    issue_instant: str
    issuer: str
    destination: str | None = None
    acs_url: str | None = None
    protocol_binding: str = BINDING_HTTP_POST
    name_id_policy_format: str = NAMEID_FORMAT_UNSPECIFIED
    authn_context_class_ref: str | None = None
    force_authn: bool = False
    is_passive: bool = False

    @classmethod
    def create(
        cls,
        issuer: str,
        acs_url: str | None = None,
        *,
        protocol_binding: str = BINDING_HTTP_POST,
        force_authn: bool = False,
        is_passive: bool = False,
        authn_context_class_ref: str | None = None,
        name_id_policy_format: str = NAMEID_FORMAT_UNSPECIFIED,
    ) -> AuthnRequest:
        """Create a request with a fresh ID and the current UTC instant."""
        return cls(
            id=f"_{secrets.token_hex(20)}",
            issue_instant=format_instant(datetime.now(UTC)),
            issuer=issuer,
            acs_url=acs_url,
            protocol_binding=protocol_binding,
            force_authn=force_authn,
            is_passive=is_passive,
            authn_context_class_ref=authn_context_class_ref,
            name_id_policy_format=name_id_policy_format,
        )

    def to_xml(self) -> str:
        """Serialize the request to its XML form."""
        attrs = [
            f'ID={quoteattr(self.id)}',
            'Version="2.0"',
            f"IssueInstant={quoteattr(self.issue_instant)}",
        ]
        if self.destination:
            attrs.append(f"Destination={quoteattr(self.destination)}")
        if self.acs_url:
            attrs.append(f"AssertionConsumerServiceURL={quoteattr(self.acs_url)}")
        attrs.append(f"ProtocolBinding={quoteattr(self.protocol_binding)}")
        if self.force_authn:
            attrs.append('ForceAuthn="true"')
        if self.is_passive:
            attrs.append('IsPassive="true"')

        authn_context = ""
        if self.authn_context_class_ref:
            authn_context = (
                '<samlp:RequestedAuthnContext Comparison="exact">'
                f"<saml:AuthnContextClassRef>{escape(self.authn_context_class_ref)}"
                "</saml:AuthnContextClassRef>"
                "</samlp:RequestedAuthnContext>"
            )

        return (
            f'<samlp:AuthnRequest xmlns:samlp="{SAML20P_NS}" xmlns:saml="{SAML20_NS}" '
            f'{" ".join(attrs)}>'
            f"<saml:Issuer>{escape(self.issuer)}</saml:Issuer>"
            f"<samlp:NameIDPolicy Format={quoteattr(self.name_id_policy_format)} "
            'AllowCreate="true"/>'
            f"{authn_context}"
            "</samlp:AuthnRequest>"
        )


@dataclass(frozen=True)
class NameID:
    """A SAML NameID."""

    value: str
    format: str | None = None
    name_qualifier: str | None = None
    sp_name_qualifier: str | None = None

    @classmethod
    def from_element(cls, elem: etree._Element) -> NameID:
        return cls(
            value=(elem.text or "").strip(),
            format=elem.get("Format"),
            name_qualifier=elem.get("NameQualifier"),
            sp_name_qualifier=elem.get("SPNameQualifier"),
        )


@dataclass(frozen=True)
class BaseID:
    """A SAML BaseID, an extension point for non-NameID subject identifiers."""

    type: str | None = None
    name_qualifier: str | None = None
    sp_name_qualifier: str | None = None

    @classmethod
    def from_element(cls, elem: etree._Element) -> BaseID:
        return cls(
            type=elem.get(f"{{{XSI_NS}}}type"),
            name_qualifier=elem.get("NameQualifier"),
            sp_name_qualifier=elem.get("SPNameQualifier"),
        )


@dataclass(frozen=True)
class SubjectConfirmationData:
    """Constraints attached to a subject confirmation."""

    recipient: str | None = None
    in_response_to: str | None = None
    not_before: datetime | None = None
    not_on_or_after: datetime | None = None
    address: str | None = None


@dataclass(frozen=True)
class SubjectConfirmation:
    """A SAML SubjectConfirmation."""

    method: str
    name_id: NameID | None = None
    base_id: BaseID | None = None
    data: SubjectConfirmationData | None = None

    @classmethod
    def from_element(cls, elem: etree._Element) -> SubjectConfirmation:
        name_id_elem = elem.find("saml:NameID", NSMAP)
        base_id_elem = elem.find("saml:BaseID", NSMAP)
        data_elem = elem.find("saml:SubjectConfirmationData", NSMAP)

        data = None
        if data_elem is not None:
            data = SubjectConfirmationData(
                recipient=data_elem.get("Recipient"),
                in_response_to=data_elem.get("InResponseTo"),
                not_before=parse_instant(data_elem.get("NotBefore")),
                not_on_or_after=parse_instant(data_elem.get("NotOnOrAfter")),
                address=data_elem.get("Address"),
            )

        return cls(
            method=elem.get("Method", ""),
            name_id=NameID.from_element(name_id_elem) if name_id_elem is not None else None,
            base_id=BaseID.from_element(base_id_elem) if base_id_elem is not None else None,
            data=data,
        )


@dataclass
class Subject:
    """The subject of an assertion."""

    name_id: NameID | None = None
    base_id: BaseID | None = None
    confirmations: list[SubjectConfirmation] = field(default_factory=list)


@dataclass
class Assertion:
    """A SAML Assertion."""

    id: str
    issuer: str | None
    issue_instant: datetime | None = None
    subject: Subject = field(default_factory=Subject)
    not_before: datetime | None = None
    not_on_or_after: datetime | None = None
    audiences: list[str] = field(default_factory=list)
    authn_instant: datetime | None = None
    session_index: str | None = None
    authn_context_class_ref: str | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)
    element: etree._Element | None = field(default=None, repr=False, compare=False)

    @property
    def is_signed(self) -> bool:
        return self.element is not None and self.element.find(f"{{{DSIG_NS}}}Signature") is not None

    @classmethod
    def from_element(cls, elem: etree._Element) -> Assertion:
        """Parse an Assertion element."""
        issuer_elem = elem.find("saml:Issuer", NSMAP)

        subject = Subject()
        subject_elem = elem.find("saml:Subject", NSMAP)
        if subject_elem is not None:
            name_id_elem = subject_elem.find("saml:NameID", NSMAP)
            base_id_elem = subject_elem.find("saml:BaseID", NSMAP)
            subject = Subject(
                name_id=NameID.from_element(name_id_elem) if name_id_elem is not None else None,
                base_id=BaseID.from_element(base_id_elem) if base_id_elem is not None else None,
                confirmations=[
                    SubjectConfirmation.from_element(c)
                    for c in subject_elem.findall("saml:SubjectConfirmation", NSMAP)
                ],
            )

        not_before = not_on_or_after = None
        audiences: list[str] = []
        conditions = elem.find("saml:Conditions", NSMAP)
        if conditions is not None:
            not_before = parse_instant(conditions.get("NotBefore"))
            not_on_or_after = parse_instant(conditions.get("NotOnOrAfter"))
            audiences = [
                a.text.strip()
                for a in conditions.findall("saml:AudienceRestriction/saml:Audience", NSMAP)
                if a.text
            ]

        authn_instant = session_index = authn_context_class_ref = None
        authn_stmt = elem.find("saml:AuthnStatement", NSMAP)
        if authn_stmt is not None:
            authn_instant = parse_instant(authn_stmt.get("AuthnInstant"))
            session_index = authn_stmt.get("SessionIndex")
            ref = authn_stmt.find("saml:AuthnContext/saml:AuthnContextClassRef", NSMAP)
            if ref is not None and ref.text:
                authn_context_class_ref = ref.text.strip()

        attributes: dict[str, list[str]] = {}
        for attr_elem in elem.findall("saml:AttributeStatement/saml:Attribute", NSMAP):
            name = attr_elem.get("Name")
            if not name:
                continue
            values = [
                (v.text or "").strip()
                for v in attr_elem.findall("saml:AttributeValue", NSMAP)
            ]
            attributes.setdefault(name, []).extend(values)

        return cls(
            id=elem.get("ID", ""),
            issuer=issuer_elem.text.strip() if issuer_elem is not None and issuer_elem.text else None,
            issue_instant=parse_instant(elem.get("IssueInstant")),
            subject=subject,
            not_before=not_before,
            not_on_or_after=not_on_or_after,
            audiences=audiences,
            authn_instant=authn_instant,
            session_index=session_index,
            authn_context_class_ref=authn_context_class_ref,
            attributes=attributes,
            element=elem,
        )


@dataclass
class Response:
    """A decoded SAML 2.0 Response."""

    id: str
    in_response_to: str | None
    issuer: str | None
    destination: str | None
    issue_instant: datetime | None
    status_code: str | None
    status_message: str | None = None
    assertions: list[Assertion] = field(default_factory=list)
    raw_xml: str = field(default="", repr=False)
    element: etree._Element | None = field(default=None, repr=False, compare=False)

    @property
    def is_success(self) -> bool:
        return self.status_code == STATUS_SUCCESS

    @property
    def is_signed(self) -> bool:
        return self.element is not None and self.element.find(f"{{{DSIG_NS}}}Signature") is not None

    @classmethod
    def parse(cls, xml: str | bytes) -> Response:
        """Parse a Response document.

        Raises:
            MessageDecodingError: If the XML is malformed or not a samlp:Response.
        """
        root = parse_xml(xml)
        if root.tag != f"{{{SAML20P_NS}}}Response":
            raise MessageDecodingError(f"Expected samlp:Response, got {root.tag}")

        issuer_elem = root.find("saml:Issuer", NSMAP)
        status_elem = root.find("samlp:Status/samlp:StatusCode", NSMAP)
        status_msg_elem = root.find("samlp:Status/samlp:StatusMessage", NSMAP)

        # Re-serialized from the tree: the input may declare any encoding
        raw = etree.tostring(root, encoding="unicode")
        return cls(
            id=root.get("ID", ""),
            in_response_to=root.get("InResponseTo"),
            issuer=issuer_elem.text.strip() if issuer_elem is not None and issuer_elem.text else None,
            destination=root.get("Destination"),
            issue_instant=parse_instant(root.get("IssueInstant")),
            status_code=status_elem.get("Value") if status_elem is not None else None,
            status_message=status_msg_elem.text if status_msg_elem is not None else None,
            assertions=[
                Assertion.from_element(a) for a in root.findall("saml:Assertion", NSMAP)
            ],
            raw_xml=raw,
            element=root,
        )


def certificate_der_b64(pem_or_b64: str) -> str:
    """Normalize a certificate (PEM or bare base64) to single-line base64 DER."""
    lines = [
        line.strip()
        for line in pem_or_b64.strip().splitlines()
        if line.strip() and not line.startswith("-----")
    ]
    data = "".join("".join(lines).split())
    # Round-trip to reject garbage early
    base64.b64decode(data, validate=True)
    return data


def unique(values: Iterable[str]) -> list[str]:
    """Order-preserving de-duplication."""
    seen: set[str] = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
