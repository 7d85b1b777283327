"""Tests for the service provider facade."""

import httpx
import pytest

from samlsso.core.config import IdPSettings, SPSettings
from samlsso.core.saml.exceptions import SAMLConfigurationError
from samlsso.core.saml.metadata import HTTPMetadataResolver, InMemoryMetadataResolver
from samlsso.core.saml.models import EntityDescriptor, IDPSSODescriptor
from samlsso.core.saml.sp import SAMLServiceProvider

from tests.conftest import ACS_URL, IDP_ENTITY_ID, SP_ENTITY_ID


def _service_provider(resolver, sp_provider, idp_entity_id=None):
    return SAMLServiceProvider(
        SPSettings(entity_id=SP_ENTITY_ID, acs_url=ACS_URL),
        IdPSettings(entity_id=idp_entity_id),
        resolver,
        sp_provider,
    )


def test_single_idp_from_metadata_url(idp_metadata_xml, sp_provider):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text=idp_metadata_xml))
    client = httpx.Client(transport=transport)
    resolver = HTTPMetadataResolver("https://idp.example.com/metadata", client=client)

    context = _service_provider(resolver, sp_provider).build_context()

    assert context.peer_entity().entity_id == IDP_ENTITY_ID
    assert context.assertion_consumer_url == ACS_URL


def test_configured_entity_id_wins(resolver, sp_provider):
    sp = _service_provider(resolver, sp_provider, idp_entity_id="https://configured.example.com")
    assert sp.idp_entity_id == "https://configured.example.com"


def test_ambiguous_idps_need_configuration(idp_entity, sp_provider):
    other = EntityDescriptor(entity_id="https://idp2.example.com", idp_descriptor=IDPSSODescriptor())
    sp = _service_provider(InMemoryMetadataResolver([idp_entity, other]), sp_provider)

    with pytest.raises(SAMLConfigurationError, match="IdP entity ID is not configured"):
        sp.idp_entity_id
