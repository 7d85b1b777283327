"""Message context for one SAML exchange.

A :class:`MessageContext` is a small tree of typed subcontexts. Each
subcontext kind exists at most once per parent node; accessors create it
on first use unless called with ``create=False``, in which case an absent
subcontext is returned as ``None``::

    context = MessageContext()
    context.peer_entity() is context.peer_entity()   # same node
    context.peer_metadata().entity_descriptor = descriptor

Contexts are built fresh for every exchange and never shared between
requests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from samlsso.core.saml.exceptions import (
    ContextStateError,
    EndpointLookupError,
    SAMLConfigurationError,
)
from samlsso.core.saml.models import IDPSSODescriptor, SPSSODescriptor

if TYPE_CHECKING:
    from samlsso.core.crypto import Credential
    from samlsso.core.saml.metadata import MetadataResolver
    from samlsso.core.saml.models import (
        Assertion,
        AuthnRequest,
        BaseID,
        Endpoint,
        EntityDescriptor,
        IndexedEndpoint,
        NameID,
        Response,
        SubjectConfirmation,
    )
    from samlsso.core.saml.signature import KeyInfoGenerator, SignatureTrustEngine
    from samlsso.core.saml.transport import SimpleRequestAdapter, SimpleResponseAdapter

T = TypeVar("T", bound="BaseContext")


class BaseContext:
    """A node in the context tree."""

    def __init__(self, parent: BaseContext | None = None) -> None:
        self.parent = parent

    def _subcontext(self, attr: str, factory: Callable[[BaseContext], T], create: bool) -> T | None:
        current = getattr(self, attr)
        if current is None and create:
            current = factory(self)
            setattr(self, attr, current)
        return current


class ProtocolContext(BaseContext):
    """Protocol namespace in use by an entity."""

    def __init__(self, parent: BaseContext | None = None) -> None:
        super().__init__(parent)
        self.protocol: str | None = None


class EndpointContext(BaseContext):
    """The endpoint a message is sent to or was received on."""

    def __init__(self, parent: BaseContext | None = None) -> None:
        super().__init__(parent)
        self.endpoint: Endpoint | None = None


class MetadataContext(BaseContext):
    """Resolved federation metadata for one entity."""

    def __init__(self, parent: BaseContext | None = None) -> None:
        super().__init__(parent)
        self.entity_descriptor: EntityDescriptor | None = None
        self.role_descriptor: SPSSODescriptor | IDPSSODescriptor | None = None


class EntityContext(BaseContext):
    """Identity and role of one side of the exchange."""

    def __init__(self, parent: BaseContext | None = None) -> None:
        super().__init__(parent)
        self.entity_id: str | None = None
        self.role: str | None = None
        self._metadata: MetadataContext | None = None
        self._protocol: ProtocolContext | None = None
        self._endpoint: EndpointContext | None = None

    def metadata(self, create: bool = True) -> MetadataContext | None:
        return self._subcontext("_metadata", MetadataContext, create)

    def protocol(self, create: bool = True) -> ProtocolContext | None:
        return self._subcontext("_protocol", ProtocolContext, create)

    def endpoint(self, create: bool = True) -> EndpointContext | None:
        return self._subcontext("_endpoint", EndpointContext, create)


class BindingContext(BaseContext):
    """Transport binding and relay state.

    The relay state is opaque and set at most once.
    """

    def __init__(self, parent: BaseContext | None = None) -> None:
        super().__init__(parent)
        self.binding_uri: str | None = None
        self._relay_state: str | None = None

    @property
    def relay_state(self) -> str | None:
        return self._relay_state

    @relay_state.setter
    def relay_state(self, value: str | None) -> None:
        if self._relay_state is not None and value != self._relay_state:
            raise ContextStateError("Relay state is already set for this context")
        self._relay_state = value


@dataclass
class EncryptionParameters:
    """Parameters an encoder uses to encrypt outbound content."""

    key_transport_encryption_credential: Credential | None = None


@dataclass
class SigningParameters:
    """Parameters for signing outbound and inspecting inbound signatures."""

    signing_credential: Credential | None = None
    signature_algorithm: str | None = None
    key_info_generator: KeyInfoGenerator | None = None


class SecurityParametersContext(BaseContext):
    """Cryptographic parameters assembled for the current exchange."""

    def __init__(self, parent: BaseContext | None = None) -> None:
        super().__init__(parent)
        self.encryption_parameters: EncryptionParameters | None = None
        self.signing_parameters: SigningParameters | None = None
        self.trust_engine: SignatureTrustEngine | None = None
        # ds:KeyInfo of the credential that verified the inbound signature
        self.signer_key_info: Any = None

    def get_signing_parameters(self) -> SigningParameters:
        if self.signing_parameters is None:
            self.signing_parameters = SigningParameters()
        return self.signing_parameters


class ProfileRequestContext(BaseContext):
    """Outer scope of a profile run: profile ID and transport adapters."""

    def __init__(self, parent: BaseContext | None = None) -> None:
        super().__init__(parent)
        self._profile_id: str | None = None
        self.inbound_transport: SimpleRequestAdapter | None = None
        self.outbound_transport: SimpleResponseAdapter | None = None

    @property
    def profile_id(self) -> str | None:
        return self._profile_id

    @profile_id.setter
    def profile_id(self, value: str) -> None:
        if self._profile_id is not None and value != self._profile_id:
            raise ContextStateError(
                f"Profile is already {self._profile_id}, cannot change it to {value}"
            )
        self._profile_id = value


class SubjectNameIdentifierContext(BaseContext):
    """The NameID identifying the authenticated subject."""

    def __init__(self, parent: BaseContext | None = None) -> None:
        super().__init__(parent)
        self.name_id: NameID | None = None


@dataclass
class EndpointLookup:
    """Outcome of an endpoint lookup: an endpoint or the error explaining its absence."""

    endpoint: Endpoint | None = None
    error: SAMLConfigurationError | None = None

    @property
    def found(self) -> bool:
        return self.endpoint is not None

    def unwrap(self) -> Endpoint:
        if self.endpoint is None:
            raise self.error or SAMLConfigurationError("Endpoint lookup failed")
        return self.endpoint


class MessageContext(BaseContext):
    """All state for one SAML message exchange."""

    def __init__(self, parent: MessageContext | None = None) -> None:
        super().__init__(parent)
        self.message: AuthnRequest | Response | None = None
        self.request_id: str | None = None
        self.assertion_consumer_url: str | None = None
        self.base_id: BaseID | None = None
        self.metadata_resolver: MetadataResolver | None = None
        self._subject_assertion: Assertion | None = None
        self._subject_confirmations: list[SubjectConfirmation] | tuple[SubjectConfirmation, ...] = []

        self._profile_request: ProfileRequestContext | None = None
        self._self_entity: EntityContext | None = None
        self._peer_entity: EntityContext | None = None
        self._binding: BindingContext | None = None
        self._security: SecurityParametersContext | None = None
        self._subject_name_identifier: SubjectNameIdentifierContext | None = None

    # Subcontexts

    def profile_request(self, create: bool = True) -> ProfileRequestContext | None:
        return self._subcontext("_profile_request", ProfileRequestContext, create)

    def self_entity(self, create: bool = True) -> EntityContext | None:
        return self._subcontext("_self_entity", EntityContext, create)

    def peer_entity(self, create: bool = True) -> EntityContext | None:
        return self._subcontext("_peer_entity", EntityContext, create)

    def self_metadata(self, create: bool = True) -> MetadataContext | None:
        entity = self.self_entity(create)
        return entity.metadata(create) if entity is not None else None

    def peer_metadata(self, create: bool = True) -> MetadataContext | None:
        entity = self.peer_entity(create)
        return entity.metadata(create) if entity is not None else None

    def self_protocol(self, create: bool = True) -> ProtocolContext | None:
        entity = self.self_entity(create)
        return entity.protocol(create) if entity is not None else None

    def endpoint(self, create: bool = True) -> EndpointContext | None:
        """Destination endpoint, held under the peer entity."""
        entity = self.peer_entity(create)
        return entity.endpoint(create) if entity is not None else None

    def binding(self, create: bool = True) -> BindingContext | None:
        return self._subcontext("_binding", BindingContext, create)

    def security(self, create: bool = True) -> SecurityParametersContext | None:
        return self._subcontext("_security", SecurityParametersContext, create)

    def subject_name_identifier(self, create: bool = True) -> SubjectNameIdentifierContext | None:
        return self._subcontext("_subject_name_identifier", SubjectNameIdentifierContext, create)

    # Assertion-derived state

    @property
    def subject_assertion(self) -> Assertion | None:
        return self._subject_assertion

    @subject_assertion.setter
    def subject_assertion(self, assertion: Assertion) -> None:
        if self._subject_assertion is not None and assertion is not self._subject_assertion:
            raise ContextStateError("A subject assertion has already been accepted")
        self._subject_assertion = assertion

    @property
    def subject_confirmations(self) -> list[SubjectConfirmation] | tuple[SubjectConfirmation, ...]:
        return self._subject_confirmations

    def add_subject_confirmation(self, confirmation: SubjectConfirmation) -> None:
        if isinstance(self._subject_confirmations, tuple):
            raise ContextStateError("Subject evaluation is complete")
        self._subject_confirmations.append(confirmation)

    def complete_subject_evaluation(self) -> None:
        """Freeze the subject confirmations examined so far."""
        self._subject_confirmations = tuple(self._subject_confirmations)

    # Descriptors

    @property
    def sp_descriptor(self) -> SPSSODescriptor:
        metadata = self.self_metadata(create=False)
        descriptor = metadata.role_descriptor if metadata is not None else None
        if not isinstance(descriptor, SPSSODescriptor):
            raise SAMLConfigurationError(
                "Self metadata does not hold an SP SSO descriptor", descriptor=descriptor
            )
        return descriptor

    @property
    def idp_descriptor(self) -> IDPSSODescriptor:
        metadata = self.peer_metadata(create=False)
        descriptor = metadata.role_descriptor if metadata is not None else None
        if not isinstance(descriptor, IDPSSODescriptor):
            raise SAMLConfigurationError(
                "Peer metadata does not hold an IdP SSO descriptor", descriptor=descriptor
            )
        return descriptor

    # Endpoint resolution

    def lookup_sso_endpoint(self, binding: str) -> EndpointLookup:
        """Find the IdP's first SingleSignOnService declared for ``binding``."""
        descriptor = self.idp_descriptor
        for service in descriptor.single_sign_on_services:
            if service.binding == binding:
                return EndpointLookup(endpoint=service)
        return EndpointLookup(
            error=EndpointLookupError(
                "Identity provider has no single sign on service available for "
                f"binding {binding}: {descriptor}",
                binding=binding,
                descriptor=descriptor,
            )
        )

    def resolve_sso_endpoint(self, binding: str) -> Endpoint:
        return self.lookup_sso_endpoint(binding).unwrap()

    def lookup_acs(self, index: str | None = None) -> EndpointLookup:
        """Select the SP's AssertionConsumerService.

        An explicit index must match; otherwise the default ACS wins,
        then the first declared one.
        """
        descriptor = self.sp_descriptor
        services: list[IndexedEndpoint] = descriptor.assertion_consumer_services

        if index is not None:
            for service in services:
                if service.index == index:
                    return EndpointLookup(endpoint=service)
            return EndpointLookup(
                error=EndpointLookupError(
                    f"Assertion consumer service with index {index} could not be found "
                    f"for {descriptor}",
                    descriptor=descriptor,
                    index=index,
                )
            )

        default = descriptor.default_assertion_consumer_service
        if default is not None:
            return EndpointLookup(endpoint=default)

        if services:
            return EndpointLookup(endpoint=services[0])

        return EndpointLookup(
            error=SAMLConfigurationError(
                f"No assertion consumer services could be found for {descriptor}",
                descriptor=descriptor,
            )
        )

    def resolve_acs(self, index: str | None = None) -> IndexedEndpoint:
        return self.lookup_acs(index).unwrap()  # type: ignore[return-value]
