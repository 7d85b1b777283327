"""samlsso - SAML 2.0 Web Browser SSO for Service Providers."""

__version__ = "0.1.0"
