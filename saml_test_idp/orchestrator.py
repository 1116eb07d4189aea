import logging
import typing
from dataclasses import dataclass

from saml_test_idp.errors import InvalidOrExpiredToken, UnknownIdentity, UnknownRequester
from saml_test_idp.nameid import Attribute, build_claim_attributes, resolve_name_id_format
from saml_test_idp.registry import IdentityDescriptor, IdentityRecord, IdentityRegistry
from saml_test_idp.sessions import PendingRequestStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimSet(object):
	name_id: str
	name_id_format: str
	attributes: typing.Tuple[Attribute, ...] = ()

	def identity(self) -> typing.Dict[str, typing.List[str]]:
		"""Attribute values in the shape pysaml2 expects for an identity"""
		return {name: list(values) for name, values in self.attributes}


class PendingFlow(typing.NamedTuple):
	token: str
	descriptor: IdentityDescriptor

	@property
	def identities(self) -> typing.Tuple[IdentityRecord, ...]:
		return self.descriptor.identities


class CompletedFlow(typing.NamedTuple):
	claims: ClaimSet
	request_handle: typing.Any


class SSOOrchestrator(object):
	def __init__(self, registry: IdentityRegistry, store: PendingRequestStore):
		self.registry = registry
		self.store = store

	def begin_flow(self, requester: str, request_handle) -> PendingFlow:
		descriptor = self.registry.resolve(requester)
		if descriptor is None:
			logger.info("Unknown service provider: %s", requester)
			raise UnknownRequester(requester)

		token = self.store.create(descriptor, request_handle)
		return PendingFlow(token=token, descriptor=descriptor)

	def describe_flow(self, token: str) -> PendingFlow:
		entry = self.store.get(token)
		if entry is None:
			raise InvalidOrExpiredToken(token)
		return PendingFlow(token=token, descriptor=entry.descriptor)

	@staticmethod
	def build_claims(descriptor: IdentityDescriptor, record: IdentityRecord) -> ClaimSet:
		return ClaimSet(
			name_id=record.name_id,
			name_id_format=resolve_name_id_format(descriptor.name_id_format),
			attributes=build_claim_attributes(record)
		)

	def complete_flow(self, token: str, chosen_name: str) -> CompletedFlow:
		"""Turns the operator's choice into claims and consumes the pending request

		An unknown user name leaves the request pending so the choice can be
		retried. Once claims are returned the token is gone, even if signing
		the response fails afterwards.
		:param token:
		:param chosen_name:
		:return:
		"""
		entry = self.store.get(token)
		if entry is None:
			raise InvalidOrExpiredToken(token)

		record = self.registry.find_identity(entry.descriptor, chosen_name)
		if record is None:
			raise UnknownIdentity(chosen_name)

		claims = self.build_claims(entry.descriptor, record)

		# another request may have consumed the token since get()
		if not self.store.consume(token):
			raise InvalidOrExpiredToken(token)

		logger.info("Issuing assertion for %s to %s", record.name_id, entry.descriptor.entity_id)
		return CompletedFlow(claims=claims, request_handle=entry.request_handle)
