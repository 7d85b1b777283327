"""Inbound SAML binding decoders.

Decoders read a ``SAMLResponse`` from the inbound transport, parse it and
populate the message context: the decoded message, relay state, binding,
and the issuer's IdP metadata when the resolver knows it.
"""

from __future__ import annotations

import base64
import binascii
import logging
import zlib
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from samlsso.core.logging import MessageDirection, SAMLMessageRecord, get_protocol_logger
from samlsso.core.saml.constants import BINDING_HTTP_POST, BINDING_HTTP_REDIRECT
from samlsso.core.saml.exceptions import MessageDecodingError, MetadataResolutionError
from samlsso.core.saml.models import Response

if TYPE_CHECKING:
    from samlsso.core.saml.context import MessageContext
    from samlsso.core.saml.metadata import MetadataResolver
    from samlsso.core.saml.transport import SimpleRequestAdapter

logger = logging.getLogger(__name__)

RESPONSE_PARAMETER = "SAMLResponse"
RELAY_STATE_PARAMETER = "RelayState"


def decode_base64(value: str) -> bytes:
    try:
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MessageDecodingError(f"{RESPONSE_PARAMETER} is not valid base64: {e}") from e


def inflate(data: bytes) -> bytes:
    """Inverse of the Redirect binding's raw DEFLATE."""
    try:
        return zlib.decompress(data, -15)
    except zlib.error as e:
        raise MessageDecodingError(f"{RESPONSE_PARAMETER} is not DEFLATE-compressed: {e}") from e


class MessageDecoder(ABC):
    """Populates a message context from the inbound transport."""

    binding_uri: str

    def __init__(self, resolver: MetadataResolver) -> None:
        self.resolver = resolver

    def decode(self, context: MessageContext) -> None:
        """Decode the inbound message into ``context``.

        Raises:
            MessageDecodingError: If the request carries no well-formed response.
        """
        profile_request = context.profile_request(create=False)
        request = profile_request.inbound_transport if profile_request is not None else None
        if request is None:
            raise MessageDecodingError("No inbound transport to decode from")

        encoded = self._parameter(request, RESPONSE_PARAMETER)
        if not encoded:
            raise MessageDecodingError(f"Request has no {RESPONSE_PARAMETER} parameter")

        response = Response.parse(self._unwrap(request, encoded))

        context.message = response
        context.metadata_resolver = self.resolver
        binding = context.binding()
        binding.binding_uri = self.binding_uri
        relay_state = self._parameter(request, RELAY_STATE_PARAMETER)
        if relay_state:
            binding.relay_state = relay_state

        self._resolve_issuer(context, response)

        get_protocol_logger().log_message(
            SAMLMessageRecord(
                direction=MessageDirection.INBOUND,
                message_type="Response",
                message_id=response.id,
                binding=self.binding_uri,
                endpoint=request.url,
                issuer=response.issuer,
                relay_state=relay_state,
                xml=response.raw_xml,
            )
        )

    def _resolve_issuer(self, context: MessageContext, response: Response) -> None:
        if not response.issuer:
            logger.warning("Response %s carries no Issuer", response.id)
            return
        try:
            descriptor = self.resolver.resolve(response.issuer)
        except MetadataResolutionError as e:
            logger.warning("Metadata lookup for %s failed: %s", response.issuer, e)
            return
        if descriptor is None or descriptor.idp_descriptor is None:
            logger.warning("No IdP metadata known for issuer %s", response.issuer)
            return

        metadata = context.peer_metadata()
        metadata.entity_descriptor = descriptor
        metadata.role_descriptor = descriptor.idp_descriptor

    def _parameter(self, request: SimpleRequestAdapter, name: str) -> str | None:
        return request.parameter(name)

    @abstractmethod
    def _unwrap(self, request: SimpleRequestAdapter, encoded: str) -> bytes:
        """Undo the binding's transport encoding."""


class HTTPPostDecoder(MessageDecoder):
    """HTTP-POST binding: base64 ``SAMLResponse`` form field."""

    binding_uri = BINDING_HTTP_POST

    def _unwrap(self, request: SimpleRequestAdapter, encoded: str) -> bytes:
        if request.method.upper() != "POST":
            raise MessageDecodingError(f"HTTP-POST binding requires POST, got {request.method}")
        return decode_base64(encoded)


class HTTPRedirectDecoder(MessageDecoder):
    """HTTP-Redirect binding: deflated ``SAMLResponse`` query parameter."""

    binding_uri = BINDING_HTTP_REDIRECT

    def _parameter(self, request: SimpleRequestAdapter, name: str) -> str | None:
        # Form fields are ignored: this binding only carries the query string
        return request.query.get(name)

    def _unwrap(self, request: SimpleRequestAdapter, encoded: str) -> bytes:
        return inflate(decode_base64(encoded))


DECODERS: dict[str, type[MessageDecoder]] = {
    BINDING_HTTP_POST: HTTPPostDecoder,
    BINDING_HTTP_REDIRECT: HTTPRedirectDecoder,
}
