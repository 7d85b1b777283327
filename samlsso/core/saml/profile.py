"""SAML 2.0 Web Browser SSO profile handler.

:class:`WebSSOProfileHandler` drives one side of each leg of the SSO
exchange:

- :meth:`~WebSSOProfileHandler.send` resolves the IdP's SSO endpoint for
  the configured binding, prepares a child outbound context around an
  AuthnRequest and hands it to the binding encoder.
- :meth:`~WebSSOProfileHandler.receive` primes an inbound context, runs
  the binding decoder and binds the decoded response to the issuer's
  metadata.

The handler holds only its construction-time configuration, so one
instance can serve concurrent exchanges as long as each call gets its own
context.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from samlsso.core.logging import MessageDirection, SAMLMessageRecord, get_protocol_logger
from samlsso.core.saml.constants import (
    IDP_SSO_DESCRIPTOR,
    SAML2_WEBSSO_PROFILE_URI,
    SAML20P_NS,
)
from samlsso.core.saml.context import EncryptionParameters, MessageContext
from samlsso.core.saml.encoding import ENCODERS, HTTPPostEncoder, MessageEncoder
from samlsso.core.saml.exceptions import (
    ComponentInitializationError,
    MessageDecodingError,
    MessageEncodingError,
    SAMLDecodingError,
    SAMLEncodingError,
    SAMLTrustError,
    UnsupportedBindingError,
)
from samlsso.core.saml.signature import KeyInfoGenerator

if TYPE_CHECKING:
    from samlsso.core.crypto import CredentialProvider
    from samlsso.core.saml.decoding import MessageDecoder
    from samlsso.core.saml.encoding import FormRenderer
    from samlsso.core.saml.models import AuthnRequest
    from samlsso.core.saml.signature import SignatureTrustEngine
    from samlsso.core.saml.transport import SimpleResponseAdapter

logger = logging.getLogger(__name__)


class WebSSOProfileHandler:
    """Sends AuthnRequests and receives Responses for the browser SSO profile."""

    def __init__(
        self,
        credential_provider: CredentialProvider,
        decoder: MessageDecoder,
        destination_binding: str,
        form_renderer: FormRenderer | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            credential_provider: Supplies the SP's own credential.
            decoder: Decoder for inbound responses.
            destination_binding: Binding URI used to reach the IdP's SSO service.
            form_renderer: HTML form renderer, required for the POST binding.
        """
        self.credential_provider = credential_provider
        self.decoder = decoder
        self.destination_binding = destination_binding
        self.form_renderer = form_renderer

    def _encoder_class(self) -> type[MessageEncoder]:
        encoder_class = ENCODERS.get(self.destination_binding)
        if encoder_class is None:
            raise UnsupportedBindingError(
                f"Binding type {self.destination_binding} is not supported",
                binding=self.destination_binding,
            )
        return encoder_class

    def _build_encoder(
        self,
        encoder_class: type[MessageEncoder],
        response: SimpleResponseAdapter | None,
    ) -> MessageEncoder:
        if encoder_class is HTTPPostEncoder:
            return HTTPPostEncoder(response, self.form_renderer)
        return encoder_class(response)

    def send(
        self,
        context: MessageContext,
        authn_request: AuthnRequest,
        relay_state: str | None = None,
    ) -> MessageContext:
        """Encode ``authn_request`` towards the IdP.

        ``context`` must hold SP self metadata and IdP peer metadata, and an
        outbound transport on its profile request. It is only read; the
        prepared message lives on a new child context, which is returned.

        Raises:
            UnsupportedBindingError: If the destination binding has no encoder.
            EndpointLookupError: If the IdP has no SSO service for the binding.
            SAMLEncodingError: If the encoder fails to initialize or encode.
        """
        encoder_class = self._encoder_class()

        sp_descriptor = context.sp_descriptor
        idp_descriptor = context.idp_descriptor
        endpoint = context.lookup_sso_endpoint(self.destination_binding).unwrap()

        outbound = MessageContext(parent=context)
        outbound.message = authn_request
        outbound.request_id = authn_request.id
        outbound.endpoint().endpoint = endpoint
        outbound.binding().binding_uri = self.destination_binding
        outbound.profile_request().profile_id = SAML2_WEBSSO_PROFILE_URI

        if relay_state is not None:
            outbound.binding().relay_state = relay_state

        if sp_descriptor.authn_requests_signed:
            outbound.security().encryption_parameters = EncryptionParameters(
                key_transport_encryption_credential=self.credential_provider.credential
            )
        elif idp_descriptor.want_authn_requests_signed:
            logger.warning(
                "IdP wants authn requests signed, it will perhaps reject your authn requests unless "
                "you provide a keystore"
            )

        profile_request = context.profile_request(create=False)
        sink = profile_request.outbound_transport if profile_request is not None else None

        encoder = self._build_encoder(encoder_class, sink)
        encoder.message_context = outbound
        try:
            encoder.encode()
        except (MessageEncodingError, ComponentInitializationError) as e:
            raise SAMLEncodingError(f"Error encoding saml message: {e}") from e

        binding = outbound.binding(create=False)
        get_protocol_logger().log_message(
            SAMLMessageRecord(
                direction=MessageDirection.OUTBOUND,
                message_type="AuthnRequest",
                message_id=authn_request.id,
                binding=self.destination_binding,
                endpoint=endpoint.location,
                issuer=authn_request.issuer,
                relay_state=binding.relay_state if binding is not None else None,
                xml=outbound.message.to_xml(),
            )
        )
        return outbound

    def receive(self, context: MessageContext, engine: SignatureTrustEngine) -> MessageContext:
        """Decode the inbound response into ``context`` and bind it to its issuer.

        Raises:
            SAMLDecodingError: If the decoder rejects the inbound message.
            SAMLTrustError: If no IdP metadata is known for the issuer.
        """
        context.peer_entity().role = IDP_SSO_DESCRIPTOR
        context.self_protocol().protocol = SAML20P_NS

        security = context.security()
        security.get_signing_parameters().key_info_generator = KeyInfoGenerator()
        security.trust_engine = engine

        try:
            self.decoder.decode(context)
        except MessageDecodingError as e:
            raise SAMLDecodingError(f"Error decoding saml message: {e}") from e

        metadata = context.peer_metadata(create=False)
        descriptor = metadata.entity_descriptor if metadata is not None else None
        if descriptor is None:
            raise SAMLTrustError("IDP Metadata cannot be null")

        context.peer_entity().entity_id = descriptor.entity_id
        context.profile_request().profile_id = SAML2_WEBSSO_PROFILE_URI
        logger.debug("Received response from %s", descriptor.entity_id)
        return context
