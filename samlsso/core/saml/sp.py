"""Service provider facade over the SSO profile.

:class:`SAMLServiceProvider` assembles fresh message contexts from the
configured SP settings and IdP metadata, and runs the two legs of SP
initiated SSO:

- :meth:`SAMLServiceProvider.redirect_to_idp` sends an AuthnRequest.
- :meth:`SAMLServiceProvider.process_response` receives and validates
  the IdP's Response.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from samlsso.core.logging import get_protocol_logger
from samlsso.core.saml.constants import (
    BINDING_HTTP_POST,
    BINDING_HTTP_REDIRECT,
    IDP_SSO_DESCRIPTOR,
    SP_SSO_DESCRIPTOR,
)
from samlsso.core.saml.context import MessageContext
from samlsso.core.saml.decoding import DECODERS
from samlsso.core.saml.exceptions import SAMLConfigurationError
from samlsso.core.saml.metadata import build_metadata_resolver
from samlsso.core.saml.models import (
    AuthnRequest,
    EntityDescriptor,
    IndexedEndpoint,
    SPSSODescriptor,
)
from samlsso.core.saml.profile import WebSSOProfileHandler
from samlsso.core.saml.signature import MetadataSignatureTrustEngine
from samlsso.core.saml.validation import ResponseValidator

if TYPE_CHECKING:
    from samlsso.core.config import AppConfig, IdPSettings, SPSettings
    from samlsso.core.crypto import CredentialProvider
    from samlsso.core.saml.encoding import FormRenderer
    from samlsso.core.saml.metadata import MetadataResolver
    from samlsso.core.saml.transport import SimpleRequestAdapter, SimpleResponseAdapter
    from samlsso.core.saml.validation import SAMLCredentials

logger = logging.getLogger(__name__)


def sp_entity_descriptor(settings: SPSettings) -> EntityDescriptor:
    """Describe this SP from its settings: one default POST ACS at index 0."""
    return EntityDescriptor(
        entity_id=settings.entity_id,
        sp_descriptor=SPSSODescriptor(
            assertion_consumer_services=[
                IndexedEndpoint(
                    binding=BINDING_HTTP_POST,
                    location=settings.acs_url,
                    index="0",
                    is_default=True,
                )
            ],
            authn_requests_signed=settings.authn_requests_signed,
            want_assertions_signed=settings.want_assertions_signed,
            name_id_formats=[settings.name_id_format],
        ),
    )


class SAMLServiceProvider:
    """SAML Service Provider for SP-initiated browser SSO."""

    def __init__(
        self,
        sp: SPSettings,
        idp: IdPSettings,
        resolver: MetadataResolver,
        credential_provider: CredentialProvider,
        form_renderer: FormRenderer | None = None,
        sp_descriptor: EntityDescriptor | None = None,
    ) -> None:
        """Initialize the service provider.

        Args:
            sp: SP identity and policy.
            idp: IdP entity ID and destination binding.
            resolver: Metadata resolver that knows the IdP.
            credential_provider: Supplies the SP credential.
            form_renderer: Renderer for the POST binding.
            sp_descriptor: SP metadata; built from ``sp`` if not given.
        """
        self.sp = sp
        self.idp = idp
        self.resolver = resolver
        self.credential_provider = credential_provider
        self.form_renderer = form_renderer
        self.sp_descriptor = sp_descriptor or sp_entity_descriptor(sp)
        self.trust_engine = MetadataSignatureTrustEngine(resolver)
        self.validator = ResponseValidator(
            clock_skew=timedelta(seconds=sp.clock_skew_seconds),
            maximum_authentication_lifetime=timedelta(seconds=sp.maximum_authentication_lifetime),
        )

    @classmethod
    def from_config(cls, config: AppConfig, form_renderer: FormRenderer | None = None) -> SAMLServiceProvider:
        """Build a service provider from application configuration."""
        from samlsso.core.crypto import CredentialProvider

        resolver = build_metadata_resolver(
            metadata_path=config.idp.metadata_path,
            metadata_url=config.idp.metadata_url,
            timeout=config.idp.timeout,
            verify_ssl=config.idp.verify_ssl,
        )
        credential_provider = CredentialProvider(
            key_path=config.sp.resolved_key_path,
            cert_path=config.sp.resolved_cert_path,
            entity_id=config.sp.entity_id,
        )
        return cls(config.sp, config.idp, resolver, credential_provider, form_renderer=form_renderer)

    @property
    def idp_entity_id(self) -> str:
        if self.idp.entity_id:
            return self.idp.entity_id
        # A resolver holding exactly one IdP needs no explicit entity ID
        idps = [
            e for e in self.resolver.entity_ids
            if (d := self.resolver.resolve(e)) is not None and d.idp_descriptor is not None
        ]
        if len(idps) == 1:
            return idps[0]
        raise SAMLConfigurationError("IdP entity ID is not configured")

    def handler(self, decoder_binding: str = BINDING_HTTP_POST) -> WebSSOProfileHandler:
        decoder_class = DECODERS.get(decoder_binding, DECODERS[BINDING_HTTP_POST])
        return WebSSOProfileHandler(
            credential_provider=self.credential_provider,
            decoder=decoder_class(self.resolver),
            destination_binding=self.idp.binding,
            form_renderer=self.form_renderer,
        )

    def build_context(
        self,
        inbound: SimpleRequestAdapter | None = None,
        outbound: SimpleResponseAdapter | None = None,
        include_peer: bool = True,
    ) -> MessageContext:
        """Build a fresh top-level context for one exchange.

        Raises:
            SAMLConfigurationError: If the IdP metadata or the ACS cannot be resolved.
        """
        context = MessageContext()
        context.metadata_resolver = self.resolver

        profile_request = context.profile_request()
        profile_request.inbound_transport = inbound
        profile_request.outbound_transport = outbound

        self_entity = context.self_entity()
        self_entity.entity_id = self.sp_descriptor.entity_id
        self_entity.role = SP_SSO_DESCRIPTOR
        self_metadata = context.self_metadata()
        self_metadata.entity_descriptor = self.sp_descriptor
        self_metadata.role_descriptor = self.sp_descriptor.sp_descriptor

        if include_peer:
            descriptor = self.resolver.resolve_required(self.idp_entity_id)
            if descriptor.idp_descriptor is None:
                raise SAMLConfigurationError(
                    f"Entity {descriptor.entity_id} has no IdP SSO descriptor",
                    descriptor=descriptor,
                )
            peer_entity = context.peer_entity()
            peer_entity.entity_id = descriptor.entity_id
            peer_entity.role = IDP_SSO_DESCRIPTOR
            peer_metadata = context.peer_metadata()
            peer_metadata.entity_descriptor = descriptor
            peer_metadata.role_descriptor = descriptor.idp_descriptor

        context.assertion_consumer_url = context.resolve_acs(self.sp.acs_index).location
        return context

    def create_authn_request(
        self,
        context: MessageContext,
        force_authn: bool = False,
        is_passive: bool = False,
        authn_context: str | None = None,
    ) -> AuthnRequest:
        """Create an AuthnRequest for the context's ACS."""
        return AuthnRequest.create(
            issuer=self.sp_descriptor.entity_id,
            acs_url=context.assertion_consumer_url,
            protocol_binding=BINDING_HTTP_POST,
            force_authn=force_authn,
            is_passive=is_passive,
            authn_context_class_ref=authn_context,
            name_id_policy_format=self.sp.name_id_format,
        )

    def redirect_to_idp(
        self,
        response: SimpleResponseAdapter,
        relay_state: str | None = None,
        force_authn: bool = False,
        is_passive: bool = False,
        authn_context: str | None = None,
    ) -> MessageContext:
        """Send an AuthnRequest to the IdP through ``response``.

        Returns:
            The outbound context; its ``request_id`` must be kept to
            correlate the IdP's response.
        """
        context = self.build_context(outbound=response)
        request = self.create_authn_request(
            context,
            force_authn=force_authn,
            is_passive=is_passive,
            authn_context=authn_context,
        )
        logger.info("Sending AuthnRequest %s to %s", request.id, self.idp_entity_id)
        return self.handler().send(context, request, relay_state)

    def process_response(
        self,
        request: SimpleRequestAdapter,
        request_id: str | None = None,
    ) -> tuple[MessageContext, SAMLCredentials]:
        """Receive and validate the IdP's response carried by ``request``.

        Args:
            request: The inbound ACS request.
            request_id: ID of the AuthnRequest this answers; None accepts
                unsolicited responses.

        Raises:
            SAMLError: If decoding, trust or validation fails.
        """
        binding = BINDING_HTTP_POST if request.method.upper() == "POST" else BINDING_HTTP_REDIRECT
        context = self.build_context(inbound=request, include_peer=False)
        context.request_id = request_id

        protocol_logger = get_protocol_logger()
        protocol_logger.start_flow(request_id or "unsolicited", "saml_response")
        try:
            self.handler(binding).receive(context, self.trust_engine)
            credentials = self.validator.validate(context)
        finally:
            protocol_logger.end_flow()
        return context, credentials
