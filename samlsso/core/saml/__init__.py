"""SAML 2.0 Web Browser SSO profile for service providers."""

from samlsso.core.saml.constants import (
    BINDING_HTTP_ARTIFACT,
    BINDING_HTTP_POST,
    BINDING_HTTP_REDIRECT,
    SAML2_WEBSSO_PROFILE_URI,
)
from samlsso.core.saml.context import (
    BindingContext,
    EncryptionParameters,
    EndpointContext,
    EndpointLookup,
    EntityContext,
    MessageContext,
    MetadataContext,
    ProfileRequestContext,
    SecurityParametersContext,
    SigningParameters,
)
from samlsso.core.saml.decoding import HTTPPostDecoder, HTTPRedirectDecoder, MessageDecoder
from samlsso.core.saml.encoding import (
    FormRenderer,
    HTTPPostEncoder,
    HTTPRedirectDeflateEncoder,
    Jinja2FormRenderer,
    MessageEncoder,
)
from samlsso.core.saml.exceptions import (
    ContextStateError,
    EndpointLookupError,
    MetadataResolutionError,
    SAMLConfigurationError,
    SAMLDecodingError,
    SAMLEncodingError,
    SAMLError,
    SAMLTrustError,
    SAMLValidationError,
    UnsupportedBindingError,
)
from samlsso.core.saml.metadata import (
    CompositeMetadataResolver,
    FilesystemMetadataResolver,
    HTTPMetadataResolver,
    InMemoryMetadataResolver,
    MetadataResolver,
    parse_metadata,
)
from samlsso.core.saml.models import (
    Assertion,
    AuthnRequest,
    Endpoint,
    EntityDescriptor,
    IDPSSODescriptor,
    IndexedEndpoint,
    Response,
    SPSSODescriptor,
)
from samlsso.core.saml.profile import WebSSOProfileHandler
from samlsso.core.saml.signature import (
    KeyInfoGenerator,
    MetadataSignatureTrustEngine,
    SignatureTrustEngine,
)
from samlsso.core.saml.sp import SAMLServiceProvider
from samlsso.core.saml.transport import SimpleRequestAdapter, SimpleResponseAdapter
from samlsso.core.saml.validation import ResponseValidator, SAMLCredentials

__all__ = [
    # Constants
    "BINDING_HTTP_ARTIFACT",
    "BINDING_HTTP_POST",
    "BINDING_HTTP_REDIRECT",
    "SAML2_WEBSSO_PROFILE_URI",
    # Context
    "BindingContext",
    "EncryptionParameters",
    "EndpointContext",
    "EndpointLookup",
    "EntityContext",
    "MessageContext",
    "MetadataContext",
    "ProfileRequestContext",
    "SecurityParametersContext",
    "SigningParameters",
    # Bindings
    "FormRenderer",
    "HTTPPostDecoder",
    "HTTPPostEncoder",
    "HTTPRedirectDecoder",
    "HTTPRedirectDeflateEncoder",
    "Jinja2FormRenderer",
    "MessageDecoder",
    "MessageEncoder",
    "SimpleRequestAdapter",
    "SimpleResponseAdapter",
    # Errors
    "ContextStateError",
    "EndpointLookupError",
    "MetadataResolutionError",
    "SAMLConfigurationError",
    "SAMLDecodingError",
    "SAMLEncodingError",
    "SAMLError",
    "SAMLTrustError",
    "SAMLValidationError",
    "UnsupportedBindingError",
    # Metadata
    "CompositeMetadataResolver",
    "FilesystemMetadataResolver",
    "HTTPMetadataResolver",
    "InMemoryMetadataResolver",
    "MetadataResolver",
    "parse_metadata",
    # Models
    "Assertion",
    "AuthnRequest",
    "Endpoint",
    "EntityDescriptor",
    "IDPSSODescriptor",
    "IndexedEndpoint",
    "Response",
    "SPSSODescriptor",
    # Profile
    "ResponseValidator",
    "SAMLCredentials",
    "SAMLServiceProvider",
    "WebSSOProfileHandler",
    # Signature
    "KeyInfoGenerator",
    "MetadataSignatureTrustEngine",
    "SignatureTrustEngine",
]
