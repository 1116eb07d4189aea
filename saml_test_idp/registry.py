import logging
import typing
from dataclasses import dataclass
from types import MappingProxyType
from xml.etree.ElementTree import ParseError

from saml2 import BINDING_HTTP_POST
from saml2 import md
from saml2 import samlp

from saml_test_idp.errors import ConfigurationError
from saml_test_idp.nameid import DEFAULT_NAME_ID_FORMAT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityRecord(object):
	name: str
	name_id: str
	attributes: typing.Mapping[str, typing.Any]


@dataclass(frozen=True)
class IdentityDescriptor(object):
	"""A registered service provider and the test identities offered to it

	``metadata`` is the SAML metadata trusted for the service provider, either
	supplied in the configuration or derived from ``acs_url``.
	"""
	entity_id: str
	acs_url: str
	metadata: str
	name_id_format: str
	identities: typing.Tuple[IdentityRecord, ...]

	@property
	def identity_names(self) -> typing.List[str]:
		return [identity.name for identity in self.identities]


def sp_metadata(entity_id: str, acs_url: str) -> str:
	"""Builds minimal SP metadata with a single HTTP-POST assertion consumer service
	:param entity_id:
	:param acs_url:
	:return:
	"""
	descriptor = md.EntityDescriptor(
		entity_id=entity_id,
		spsso_descriptor=[md.SPSSODescriptor(
			protocol_support_enumeration=samlp.NAMESPACE,
			assertion_consumer_service=[md.AssertionConsumerService(
				binding=BINDING_HTTP_POST,
				location=acs_url,
				index='1'
			)]
		)]
	)
	return str(descriptor)


def _freeze(attributes) -> typing.Mapping[str, typing.Any]:
	frozen = {}
	for name, value in (attributes or {}).items():
		frozen[name] = tuple(value) if isinstance(value, list) else value
	return MappingProxyType(frozen)


class IdentityRegistry(object):
	def __init__(self, service_providers):
		descriptors: typing.Dict[str, IdentityDescriptor] = {}

		for index, sp in enumerate(service_providers):
			if not sp.entity_id:
				raise ConfigurationError(f"Service provider #{index} has no entity_id")
			if sp.entity_id in descriptors:
				raise ConfigurationError(f"Duplicate service provider entity_id: {sp.entity_id}")
			descriptors[sp.entity_id] = self.create_descriptor(sp)

		self._descriptors = MappingProxyType(descriptors)

	@staticmethod
	def create_descriptor(sp) -> IdentityDescriptor:
		if sp.metadata:
			try:
				parsed = md.entity_descriptor_from_string(sp.metadata)
			except (ParseError, ValueError) as e:
				raise ConfigurationError(f"Failed to parse metadata for {sp.entity_id}: {e}")
			if parsed is None:
				raise ConfigurationError(f"Metadata for {sp.entity_id} is not an EntityDescriptor")
			if parsed.entity_id != sp.entity_id:
				logger.warning("Metadata entityID %s differs from configured entity_id %s",
				               parsed.entity_id, sp.entity_id)
			metadata = sp.metadata
		elif sp.acs_url:
			metadata = sp_metadata(sp.entity_id, sp.acs_url)
		else:
			raise ConfigurationError(f"Service provider {sp.entity_id} must have either acs_url or metadata_file")

		identities = []
		for user in sp.users:
			if user.name in (identity.name for identity in identities):
				raise ConfigurationError(f"Duplicate user name {user.name!r} for {sp.entity_id}")
			identities.append(IdentityRecord(name=user.name, name_id=user.name_id,
			                                 attributes=_freeze(user.attributes)))

		return IdentityDescriptor(
			entity_id=sp.entity_id,
			acs_url=sp.acs_url or '',
			metadata=metadata,
			name_id_format=sp.name_id_format or DEFAULT_NAME_ID_FORMAT,
			identities=tuple(identities)
		)

	def resolve(self, entity_id: str) -> typing.Optional[IdentityDescriptor]:
		return self._descriptors.get(entity_id)

	def all_descriptors(self) -> typing.Tuple[IdentityDescriptor, ...]:
		return tuple(self._descriptors.values())

	@staticmethod
	def find_identity(descriptor: IdentityDescriptor, name: str) -> typing.Optional[IdentityRecord]:
		for identity in descriptor.identities:
			if identity.name == name:
				return identity
		return None

	def metadata_documents(self) -> typing.List[str]:
		return [descriptor.metadata for descriptor in self._descriptors.values()]

	def __len__(self):
		return len(self._descriptors)
