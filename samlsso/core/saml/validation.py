"""Validation of decoded SAML Responses.

:class:`ResponseValidator` runs after the profile handler has received a
response. It checks the response envelope, verifies signatures through
the context's trust engine and evaluates each assertion until one is
acceptable, which then becomes the context's subject assertion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from lxml import etree

from samlsso.core.saml.constants import CONFIRMATION_METHOD_BEARER
from samlsso.core.saml.exceptions import SAMLTrustError, SAMLValidationError
from samlsso.core.saml.models import Assertion, Response
from samlsso.core.saml.signature import SignatureTrustEngine, describe_signatures

if TYPE_CHECKING:
    from samlsso.core.saml.context import MessageContext
    from samlsso.core.saml.models import BaseID, NameID, SubjectConfirmation

logger = logging.getLogger(__name__)


@dataclass
class SAMLCredentials:
    """Identity claims extracted from an accepted assertion."""

    name_id: str | None
    name_id_format: str | None
    issuer: str | None
    assertion_id: str
    session_index: str | None = None
    authn_instant: datetime | None = None
    authn_context_class_ref: str | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)
    relay_state: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name_id": self.name_id,
            "name_id_format": self.name_id_format,
            "issuer": self.issuer,
            "assertion_id": self.assertion_id,
            "session_index": self.session_index,
            "authn_instant": self.authn_instant.isoformat() if self.authn_instant else None,
            "authn_context_class_ref": self.authn_context_class_ref,
            "attributes": self.attributes,
            "relay_state": self.relay_state,
        }


class ResponseValidator:
    """Validates a received Response and selects its subject assertion."""

    def __init__(
        self,
        clock_skew: timedelta = timedelta(seconds=120),
        maximum_authentication_lifetime: timedelta = timedelta(hours=1),
    ) -> None:
        self.clock_skew = clock_skew
        self.maximum_authentication_lifetime = maximum_authentication_lifetime

    def validate(self, context: MessageContext, now: datetime | None = None) -> SAMLCredentials:
        """Validate the response held by ``context``.

        Args:
            context: A context populated by the profile handler's ``receive``.
            now: Evaluation instant; defaults to the current UTC time.

        Returns:
            Claims from the accepted assertion.

        Raises:
            SAMLValidationError: If the response or every assertion is invalid.
            SAMLTrustError: If a signature cannot be verified or nothing is signed.
        """
        now = now or datetime.now(UTC)
        response = context.message
        if not isinstance(response, Response):
            raise SAMLValidationError("Context does not hold a SAML Response")

        peer_entity = context.peer_entity(create=False)
        peer_id = peer_entity.entity_id if peer_entity is not None else None
        if not peer_id:
            raise SAMLTrustError("Peer entity has not been identified")

        security = context.security(create=False)
        engine = security.trust_engine if security is not None else None
        if engine is None:
            raise SAMLTrustError("No signature trust engine is configured")

        self._validate_envelope(context, response, peer_id)
        if response.element is not None:
            describe_signatures(response.element)

        response_signed = False
        if response.is_signed:
            assert response.element is not None
            signed = self._verify(context, engine, response.element, peer_id)
            response = Response.parse(etree.tostring(signed))
            response_signed = True

        if not response.assertions:
            raise SAMLValidationError("Response contains no assertions")

        errors: list[str] = []
        try:
            for assertion in response.assertions:
                try:
                    accepted = self._validate_assertion(
                        context, engine, assertion, peer_id, response_signed, now
                    )
                except SAMLValidationError as e:
                    logger.debug("Assertion %s rejected: %s", assertion.id, e)
                    errors.append(f"{assertion.id}: {e}")
                    continue
                return self._accept(context, accepted)
        finally:
            context.complete_subject_evaluation()

        raise SAMLValidationError(f"No valid assertion in response: {'; '.join(errors)}")

    def _validate_envelope(self, context: MessageContext, response: Response, peer_id: str) -> None:
        if not response.is_success:
            detail = f": {response.status_message}" if response.status_message else ""
            raise SAMLValidationError(f"Response status is {response.status_code}{detail}")

        if context.request_id and response.in_response_to != context.request_id:
            raise SAMLValidationError(
                f"InResponseTo {response.in_response_to} does not match request {context.request_id}"
            )

        if response.issuer and response.issuer != peer_id:
            raise SAMLValidationError(
                f"Response issuer {response.issuer} does not match IdP entity ID {peer_id}"
            )

        acs_url = context.assertion_consumer_url
        if response.destination and acs_url and response.destination != acs_url:
            raise SAMLValidationError(
                f"Response destination {response.destination} does not match ACS URL {acs_url}"
            )

    def _verify(
        self,
        context: MessageContext,
        engine: SignatureTrustEngine,
        element: etree._Element,
        peer_id: str,
    ) -> etree._Element:
        security = context.security()
        generator = security.get_signing_parameters().key_info_generator
        verified = engine.validate(element, peer_id, generator)
        if verified.key_info is not None:
            security.signer_key_info = verified.key_info
        return verified.signed_element

    def _validate_assertion(
        self,
        context: MessageContext,
        engine: SignatureTrustEngine,
        assertion: Assertion,
        peer_id: str,
        response_signed: bool,
        now: datetime,
    ) -> Assertion:
        if assertion.is_signed:
            assert assertion.element is not None
            assertion = Assertion.from_element(
                self._verify(context, engine, assertion.element, peer_id)
            )
        elif not response_signed:
            raise SAMLTrustError("Neither the response nor the assertion is signed")
        elif context.sp_descriptor.want_assertions_signed:
            raise SAMLValidationError("SP requires signed assertions but the assertion is unsigned")

        if assertion.issuer != peer_id:
            raise SAMLValidationError(
                f"Assertion issuer {assertion.issuer} does not match IdP entity ID {peer_id}"
            )

        self._validate_conditions(context, assertion, now)
        self._validate_authentication(assertion, now)
        self._validate_subject(context, assertion, now)
        return assertion

    def _validate_conditions(self, context: MessageContext, assertion: Assertion, now: datetime) -> None:
        if assertion.not_before and now + self.clock_skew < assertion.not_before:
            raise SAMLValidationError(f"Assertion is not yet valid (NotBefore {assertion.not_before})")
        if assertion.not_on_or_after and now - self.clock_skew >= assertion.not_on_or_after:
            raise SAMLValidationError(f"Assertion has expired (NotOnOrAfter {assertion.not_on_or_after})")

        if not assertion.audiences:
            raise SAMLValidationError("Assertion has no audience restriction")
        self_entity = context.self_entity(create=False)
        sp_entity_id = self_entity.entity_id if self_entity is not None else None
        if sp_entity_id not in assertion.audiences:
            raise SAMLValidationError(
                f"SP entity ID {sp_entity_id} is not in audiences {assertion.audiences}"
            )

    def _validate_authentication(self, assertion: Assertion, now: datetime) -> None:
        if assertion.authn_instant is None:
            return
        if now + self.clock_skew < assertion.authn_instant:
            raise SAMLValidationError(f"AuthnInstant {assertion.authn_instant} is in the future")
        if now - self.clock_skew >= assertion.authn_instant + self.maximum_authentication_lifetime:
            raise SAMLValidationError(
                f"Authentication at {assertion.authn_instant} is older than the allowed lifetime"
            )

    def _bearer_confirmation_valid(
        self,
        context: MessageContext,
        confirmation: SubjectConfirmation,
        now: datetime,
    ) -> bool:
        if confirmation.method != CONFIRMATION_METHOD_BEARER:
            return False
        data = confirmation.data
        if data is None or data.not_on_or_after is None:
            return False
        # NotBefore is not allowed on bearer confirmations
        if data.not_before is not None:
            return False
        if now - self.clock_skew >= data.not_on_or_after:
            return False
        if context.assertion_consumer_url and data.recipient != context.assertion_consumer_url:
            return False
        if context.request_id and data.in_response_to and data.in_response_to != context.request_id:
            return False
        return True

    def _validate_subject(self, context: MessageContext, assertion: Assertion, now: datetime) -> None:
        valid = False
        for confirmation in assertion.subject.confirmations:
            context.add_subject_confirmation(confirmation)
            if not valid and self._bearer_confirmation_valid(context, confirmation, now):
                valid = True
        if not valid:
            raise SAMLValidationError("Assertion has no valid bearer subject confirmation")

    def _subject_identifiers(self, assertion: Assertion) -> tuple[NameID | None, BaseID | None]:
        name_id = assertion.subject.name_id
        base_id = assertion.subject.base_id
        for confirmation in assertion.subject.confirmations:
            if name_id is None and confirmation.name_id is not None:
                name_id = confirmation.name_id
            if base_id is None and confirmation.base_id is not None:
                base_id = confirmation.base_id
        return name_id, base_id

    def _accept(self, context: MessageContext, assertion: Assertion) -> SAMLCredentials:
        context.subject_assertion = assertion
        name_id, base_id = self._subject_identifiers(assertion)
        if name_id is not None:
            context.subject_name_identifier().name_id = name_id
        if base_id is not None:
            context.base_id = base_id

        binding = context.binding(create=False)
        logger.info("Accepted assertion %s from %s", assertion.id, assertion.issuer)
        return SAMLCredentials(
            name_id=name_id.value if name_id else None,
            name_id_format=name_id.format if name_id else None,
            issuer=assertion.issuer,
            assertion_id=assertion.id,
            session_index=assertion.session_index,
            authn_instant=assertion.authn_instant,
            authn_context_class_ref=assertion.authn_context_class_ref,
            attributes=dict(assertion.attributes),
            relay_state=binding.relay_state if binding is not None else None,
        )
