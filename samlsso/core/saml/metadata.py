"""SAML federation metadata parsing and resolution.

Metadata documents (a single ``EntityDescriptor`` or an
``EntitiesDescriptor`` aggregate) are parsed with lxml into
:class:`~samlsso.core.saml.models.EntityDescriptor` values. Resolvers look
descriptors up by entity ID:

- :class:`InMemoryMetadataResolver` serves descriptors it was given.
- :class:`FilesystemMetadataResolver` loads a metadata file.
- :class:`HTTPMetadataResolver` fetches a metadata URL with httpx.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from lxml import etree

from samlsso.core.logging import LoggingClient, get_protocol_logger
from samlsso.core.saml.constants import NSMAP, SAML20MD_NS
from samlsso.core.saml.exceptions import MessageDecodingError, MetadataResolutionError
from samlsso.core.saml.models import (
    Endpoint,
    EntityDescriptor,
    IDPSSODescriptor,
    IndexedEndpoint,
    SPSSODescriptor,
    certificate_der_b64,
    parse_xml,
    unique,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def _bool_attr(elem: etree._Element, name: str) -> bool:
    return (elem.get(name) or "").strip().lower() in ("true", "1")


def _certificates(role: etree._Element, use: str) -> list[str]:
    """Collect certificates from KeyDescriptors with the given use (or no use)."""
    certs = []
    for key_descriptor in role.findall("md:KeyDescriptor", NSMAP):
        key_use = key_descriptor.get("use")
        if key_use is not None and key_use != use:
            continue
        for cert in key_descriptor.findall(".//ds:X509Certificate", NSMAP):
            if not cert.text or not cert.text.strip():
                continue
            try:
                certs.append(certificate_der_b64(cert.text))
            except ValueError as e:
                raise MetadataResolutionError(f"Invalid X509Certificate in metadata: {e}") from e
    return unique(certs)


def _name_id_formats(role: etree._Element) -> list[str]:
    return [
        f.text.strip() for f in role.findall("md:NameIDFormat", NSMAP) if f.text and f.text.strip()
    ]


def _parse_sp(role: etree._Element) -> SPSSODescriptor:
    services = [
        IndexedEndpoint(
            binding=acs.get("Binding", ""),
            location=acs.get("Location", ""),
            response_location=acs.get("ResponseLocation"),
            index=acs.get("index"),
            is_default=_bool_attr(acs, "isDefault"),
        )
        for acs in role.findall("md:AssertionConsumerService", NSMAP)
    ]
    return SPSSODescriptor(
        assertion_consumer_services=services,
        authn_requests_signed=_bool_attr(role, "AuthnRequestsSigned"),
        want_assertions_signed=_bool_attr(role, "WantAssertionsSigned"),
        signing_certificates=_certificates(role, "signing"),
        encryption_certificates=_certificates(role, "encryption"),
        name_id_formats=_name_id_formats(role),
    )


def _parse_idp(role: etree._Element) -> IDPSSODescriptor:
    services = [
        Endpoint(
            binding=sso.get("Binding", ""),
            location=sso.get("Location", ""),
            response_location=sso.get("ResponseLocation"),
        )
        for sso in role.findall("md:SingleSignOnService", NSMAP)
    ]
    return IDPSSODescriptor(
        single_sign_on_services=services,
        want_authn_requests_signed=_bool_attr(role, "WantAuthnRequestsSigned"),
        signing_certificates=_certificates(role, "signing"),
        name_id_formats=_name_id_formats(role),
    )


def _parse_entity(elem: etree._Element) -> EntityDescriptor:
    entity_id = elem.get("entityID")
    if not entity_id:
        raise MetadataResolutionError("EntityDescriptor has no entityID")

    sp_elem = elem.find("md:SPSSODescriptor", NSMAP)
    idp_elem = elem.find("md:IDPSSODescriptor", NSMAP)

    return EntityDescriptor(
        entity_id=entity_id,
        sp_descriptor=_parse_sp(sp_elem) if sp_elem is not None else None,
        idp_descriptor=_parse_idp(idp_elem) if idp_elem is not None else None,
        metadata_xml=etree.tostring(elem, encoding="unicode"),
    )


def parse_metadata(metadata_xml: str | bytes) -> list[EntityDescriptor]:
    """Parse a metadata document into entity descriptors.

    Args:
        metadata_xml: An ``EntityDescriptor`` or ``EntitiesDescriptor`` document.

    Returns:
        Entity descriptors in document order.

    Raises:
        MetadataResolutionError: If the document is malformed or holds no entities.
    """
    try:
        root = parse_xml(metadata_xml)
    except MessageDecodingError as e:
        raise MetadataResolutionError(f"Invalid metadata: {e}") from e

    if root.tag == f"{{{SAML20MD_NS}}}EntityDescriptor":
        elements = [root]
    elif root.tag == f"{{{SAML20MD_NS}}}EntitiesDescriptor":
        elements = root.findall(".//md:EntityDescriptor", NSMAP)
    else:
        raise MetadataResolutionError(f"Unexpected metadata root element: {root.tag}")

    if not elements:
        raise MetadataResolutionError("No EntityDescriptor found in metadata")

    return [_parse_entity(e) for e in elements]


class MetadataResolver(ABC):
    """Looks up entity descriptors by entity ID."""

    @abstractmethod
    def resolve(self, entity_id: str) -> EntityDescriptor | None:
        """Return the descriptor for ``entity_id``, or None if it is unknown."""

    @property
    @abstractmethod
    def entity_ids(self) -> list[str]:
        """Entity IDs this resolver knows, in declaration order."""

    def resolve_required(self, entity_id: str) -> EntityDescriptor:
        descriptor = self.resolve(entity_id)
        if descriptor is None:
            raise MetadataResolutionError(f"No metadata found for entity {entity_id}")
        return descriptor


class InMemoryMetadataResolver(MetadataResolver):
    """Resolver over a fixed set of descriptors."""

    def __init__(self, descriptors: Iterable[EntityDescriptor] = ()) -> None:
        self._descriptors: dict[str, EntityDescriptor] = {}
        for descriptor in descriptors:
            self.add(descriptor)

    def add(self, descriptor: EntityDescriptor) -> None:
        self._descriptors[descriptor.entity_id] = descriptor

    @property
    def entity_ids(self) -> list[str]:
        return list(self._descriptors)

    def resolve(self, entity_id: str) -> EntityDescriptor | None:
        return self._descriptors.get(entity_id)


class CompositeMetadataResolver(MetadataResolver):
    """Asks each resolver in turn; the first hit wins."""

    def __init__(self, resolvers: Iterable[MetadataResolver]) -> None:
        self.resolvers = list(resolvers)

    @property
    def entity_ids(self) -> list[str]:
        entity_ids: list[str] = []
        for resolver in self.resolvers:
            for entity_id in resolver.entity_ids:
                if entity_id not in entity_ids:
                    entity_ids.append(entity_id)
        return entity_ids

    def resolve(self, entity_id: str) -> EntityDescriptor | None:
        for resolver in self.resolvers:
            descriptor = resolver.resolve(entity_id)
            if descriptor is not None:
                return descriptor
        return None


class FilesystemMetadataResolver(InMemoryMetadataResolver):
    """Resolver backed by a metadata file, read once at construction."""

    def __init__(self, path: Path) -> None:
        try:
            data = path.read_bytes()
        except OSError as e:
            raise MetadataResolutionError(f"Cannot read metadata file {path}: {e}") from e
        super().__init__(parse_metadata(data))
        self.path = path
        logger.debug("Loaded %d entities from %s", len(self.entity_ids), path)


class HTTPMetadataResolver(MetadataResolver):
    """Resolver that fetches a metadata URL on first use.

    Fetched descriptors are kept until :meth:`refresh` is called.
    """

    def __init__(
        self,
        metadata_url: str,
        timeout: float = 10.0,
        verify_ssl: bool = True,
        client: httpx.Client | None = None,
    ) -> None:
        self.metadata_url = metadata_url
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._client = client
        self._lock = threading.Lock()
        self._resolver: InMemoryMetadataResolver | None = None

    def _fetch(self) -> str:
        try:
            if self._client is not None:
                response = self._client.get(self.metadata_url)
            else:
                with LoggingClient(
                    protocol_logger=get_protocol_logger(),
                    timeout=self.timeout,
                    verify=self.verify_ssl,
                ) as client:
                    response = client.get(self.metadata_url)
            response.raise_for_status()
            return response.text
        except httpx.TimeoutException as e:
            raise MetadataResolutionError(f"Timeout fetching metadata from {self.metadata_url}") from e
        except httpx.HTTPStatusError as e:
            raise MetadataResolutionError(
                f"HTTP {e.response.status_code} fetching metadata from {self.metadata_url}"
            ) from e
        except httpx.RequestError as e:
            raise MetadataResolutionError(f"Request error fetching metadata: {e}") from e

    def refresh(self) -> None:
        """Fetch and parse the metadata document again."""
        logger.debug("Fetching SAML metadata from %s", self.metadata_url)
        descriptors = parse_metadata(self._fetch())
        with self._lock:
            self._resolver = InMemoryMetadataResolver(descriptors)

    def _loaded(self) -> InMemoryMetadataResolver | None:
        with self._lock:
            resolver = self._resolver
        if resolver is None:
            self.refresh()
            with self._lock:
                resolver = self._resolver
        return resolver

    @property
    def entity_ids(self) -> list[str]:
        resolver = self._loaded()
        return resolver.entity_ids if resolver is not None else []

    def resolve(self, entity_id: str) -> EntityDescriptor | None:
        resolver = self._loaded()
        return resolver.resolve(entity_id) if resolver is not None else None


def build_metadata_resolver(
    metadata_path: Path | None = None,
    metadata_url: str | None = None,
    timeout: float = 10.0,
    verify_ssl: bool = True,
) -> MetadataResolver:
    """Build a resolver over a metadata file, a metadata URL, or both.

    The file is consulted first when both are given.

    Raises:
        MetadataResolutionError: If neither source is configured.
    """
    resolvers: list[MetadataResolver] = []
    if metadata_path is not None:
        resolvers.append(FilesystemMetadataResolver(metadata_path))
    if metadata_url:
        resolvers.append(HTTPMetadataResolver(metadata_url, timeout=timeout, verify_ssl=verify_ssl))
    if not resolvers:
        raise MetadataResolutionError("No IdP metadata path or URL is configured")
    return resolvers[0] if len(resolvers) == 1 else CompositeMetadataResolver(resolvers)
