"""Exceptions raised by the SAML SSO profile.

Every protocol failure derives from :class:`SAMLError` so callers can
catch one type, while the subclasses keep the failure kinds apart.
Collaborator-level failures (encoders, decoders) have their own types
and are wrapped by the profile handler.
"""

from __future__ import annotations

from typing import Any


class SAMLError(Exception):
    """Base exception for SAML protocol errors."""


class SAMLConfigurationError(SAMLError):
    """Raised when metadata or handler configuration cannot satisfy the exchange."""

    def __init__(
        self,
        message: str,
        *,
        binding: str | None = None,
        descriptor: Any = None,
        index: str | None = None,
    ) -> None:
        super().__init__(message)
        self.binding = binding
        self.descriptor = descriptor
        self.index = index


class EndpointLookupError(SAMLConfigurationError):
    """Raised when an SSO-by-binding or ACS-by-index lookup finds no match."""


class UnsupportedBindingError(SAMLConfigurationError):
    """Raised when the configured destination binding has no encoder."""


class MetadataResolutionError(SAMLConfigurationError):
    """Raised when federation metadata cannot be fetched or parsed."""


class SAMLTrustError(SAMLError):
    """Raised when the peer cannot be trusted (unknown issuer, bad signature)."""


class SAMLEncodingError(SAMLError):
    """Raised when an outbound message cannot be encoded."""


class SAMLDecodingError(SAMLError):
    """Raised when an inbound message cannot be decoded."""


class SAMLValidationError(SAMLError):
    """Raised when a decoded response fails protocol validation."""


class ContextStateError(SAMLError):
    """Raised when a set-once message context field would be overwritten."""


# Collaborator failures


class MessageEncodingError(Exception):
    """Raised by an encoder that rejects the prepared message."""


class ComponentInitializationError(Exception):
    """Raised by an encoder that is missing what it needs to run."""


class MessageDecodingError(Exception):
    """Raised by a decoder that rejects the inbound bytes."""
