"""SAML 2.0 URIs and XML namespaces used across the SSO profile."""

from __future__ import annotations

# Bindings
BINDING_HTTP_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
BINDING_HTTP_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
BINDING_HTTP_ARTIFACT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Artifact"

# Short names accepted in configuration files and on the command line
BINDING_ALIASES: dict[str, str] = {
    "post": BINDING_HTTP_POST,
    "redirect": BINDING_HTTP_REDIRECT,
    "artifact": BINDING_HTTP_ARTIFACT,
}

# SAML2 browser SSO profile
SAML2_WEBSSO_PROFILE_URI = "urn:oasis:names:tc:SAML:2.0:profiles:SSO:browser"

# Namespaces
SAML20_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAML20P_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
SAML20MD_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

NSMAP = {
    "saml": SAML20_NS,
    "samlp": SAML20P_NS,
    "md": SAML20MD_NS,
    "ds": DSIG_NS,
    "xsi": XSI_NS,
}

# Role descriptor element names
SP_SSO_DESCRIPTOR = f"{{{SAML20MD_NS}}}SPSSODescriptor"
IDP_SSO_DESCRIPTOR = f"{{{SAML20MD_NS}}}IDPSSODescriptor"

# Status codes
STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"

# Subject confirmation methods
CONFIRMATION_METHOD_BEARER = "urn:oasis:names:tc:SAML:2.0:cm:bearer"
CONFIRMATION_METHOD_HOLDER_OF_KEY = "urn:oasis:names:tc:SAML:2.0:cm:holder-of-key"

NAMEID_FORMAT_UNSPECIFIED = "urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"


def binding_uri(name: str) -> str:
    """Map a short binding name (``post``, ``redirect``) to its URI.

    Full URIs are returned unchanged.
    """
    return BINDING_ALIASES.get(name.strip().lower(), name.strip())
