"""YAML configuration of the test IdP

Example::

    server:
      host: localhost
      port: 8080
    idp:
      certificate_path: certs/idp.crt
      private_key_path: certs/idp.key
    service_providers:
      - entity_id: https://sp.example.com
        acs_url: https://sp.example.com/acs
        name_id_format: persistent
        users:
          - name: Ann
            name_id: ann@example.com
            attributes:
              groups: [admin, users]

Relative paths are resolved against the directory holding the config file.
"""
import logging
import os
import typing
from dataclasses import dataclass, field

import yaml
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from saml_test_idp.errors import ConfigurationError
from saml_test_idp.nameid import DEFAULT_NAME_ID_FORMAT

logger = logging.getLogger(__name__)

DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 8080


def resolve_path(base_dir: str, path: str) -> str:
	if not path:
		return ''
	if os.path.isabs(path):
		return path
	return os.path.join(base_dir, path)


def _read(path: str) -> bytes:
	try:
		with open(path, 'rb') as file:
			return file.read()
	except OSError as e:
		raise ConfigurationError(f"Failed to read {path}: {e}")


@dataclass
class ServerConfig(object):
	host: str = DEFAULT_HOST
	port: int = DEFAULT_PORT
	base_url: str = ''


@dataclass
class IdPSettings(object):
	entity_id: str = ''
	certificate: str = ''
	certificate_path: str = ''
	private_key: str = ''
	private_key_path: str = ''
	base_dir: str = ''

	def certificate_pem(self) -> bytes:
		if self.certificate:
			return self.certificate.encode()
		if self.certificate_path:
			return _read(resolve_path(self.base_dir, self.certificate_path))
		raise ConfigurationError("No certificate provided (use certificate or certificate_path)")

	def private_key_pem(self) -> bytes:
		if self.private_key:
			return self.private_key.encode()
		if self.private_key_path:
			return _read(resolve_path(self.base_dir, self.private_key_path))
		raise ConfigurationError("No private key provided (use private_key or private_key_path)")

	def load_certificate(self) -> x509.Certificate:
		try:
			return x509.load_pem_x509_certificate(self.certificate_pem())
		except ValueError as e:
			raise ConfigurationError(f"Failed to parse certificate: {e}")

	def load_private_key(self) -> RSAPrivateKey:
		"""Loads the signing key, PKCS#1 and PKCS#8 PEM are both accepted
		:return:
		"""
		try:
			key = serialization.load_pem_private_key(self.private_key_pem(), password=None)
		except (ValueError, TypeError) as e:
			raise ConfigurationError(f"Failed to parse private key: {e}")
		if not isinstance(key, RSAPrivateKey):
			raise ConfigurationError("Private key is not an RSA key")
		return key


@dataclass
class UserConfig(object):
	name: str
	name_id: str = ''
	attributes: typing.Dict[str, typing.Any] = field(default_factory=dict)


@dataclass
class ServiceProviderConfig(object):
	entity_id: str
	acs_url: str = ''
	metadata_file: str = ''
	metadata: str = ''
	name_id_format: str = DEFAULT_NAME_ID_FORMAT
	users: typing.List[UserConfig] = field(default_factory=list)


@dataclass
class Config(object):
	server: ServerConfig = field(default_factory=ServerConfig)
	idp: IdPSettings = field(default_factory=IdPSettings)
	service_providers: typing.List[ServiceProviderConfig] = field(default_factory=list)

	def apply_defaults(self):
		if not self.server.base_url:
			self.server.base_url = f"http://{self.server.host}:{self.server.port}"
		self.server.base_url = self.server.base_url.rstrip('/')
		if not self.idp.entity_id:
			self.idp.entity_id = f"{self.server.base_url}/metadata"


def _section(data: dict, name: str) -> dict:
	section = data.get(name) or {}
	if not isinstance(section, dict):
		raise ConfigurationError(f"'{name}' must be a mapping")
	return section


def parse_service_provider(data: dict, base_dir: str) -> ServiceProviderConfig:
	if not isinstance(data, dict):
		raise ConfigurationError("Each service provider must be a mapping")

	entity_id = data.get('entity_id')
	users = []
	for user in data.get('users') or []:
		if not isinstance(user, dict) or not user.get('name'):
			raise ConfigurationError(f"Invalid user for service provider {entity_id}: {user!r}")
		attributes = user.get('attributes') or {}
		if not isinstance(attributes, dict):
			raise ConfigurationError(f"Attributes of user {user['name']} for service provider {entity_id} "
			                         f"must be a mapping")
		users.append(UserConfig(
			name=str(user['name']),
			name_id=str(user.get('name_id') or ''),
			attributes=dict(attributes)
		))

	sp = ServiceProviderConfig(
		entity_id=str(data.get('entity_id') or ''),
		acs_url=str(data.get('acs_url') or ''),
		metadata_file=resolve_path(base_dir, str(data.get('metadata_file') or '')),
		name_id_format=str(data.get('name_id_format') or DEFAULT_NAME_ID_FORMAT),
		users=users
	)
	if sp.metadata_file:
		try:
			sp.metadata = _read(sp.metadata_file).decode()
		except UnicodeDecodeError as e:
			raise ConfigurationError(f"Metadata file of service provider {entity_id} is not UTF-8: {e}")
	return sp


def parse_config(data: dict, base_dir: str) -> Config:
	if not isinstance(data, dict):
		raise ConfigurationError("Configuration must be a mapping")

	server = _section(data, 'server')
	idp = _section(data, 'idp')

	try:
		port = int(server.get('port') or DEFAULT_PORT)
	except (TypeError, ValueError):
		raise ConfigurationError(f"Invalid server port: {server.get('port')!r}")

	config = Config(
		server=ServerConfig(
			host=str(server.get('host') or DEFAULT_HOST),
			port=port,
			base_url=str(server.get('base_url') or '')
		),
		idp=IdPSettings(
			entity_id=str(idp.get('entity_id') or ''),
			certificate=idp.get('certificate') or '',
			certificate_path=idp.get('certificate_path') or '',
			private_key=idp.get('private_key') or '',
			private_key_path=idp.get('private_key_path') or '',
			base_dir=base_dir
		),
		service_providers=[parse_service_provider(sp, base_dir) for sp in data.get('service_providers') or []]
	)
	config.apply_defaults()
	return config


def load_config(path: str) -> Config:
	try:
		with open(path, 'r') as file:
			data = yaml.safe_load(file)
	except OSError as e:
		raise ConfigurationError(f"Failed to read config file: {e}")
	except yaml.YAMLError as e:
		raise ConfigurationError(f"Failed to parse config file: {e}")

	base_dir = os.path.dirname(os.path.abspath(path))
	config = parse_config(data or {}, base_dir)
	logger.debug("Loaded %d service providers from %s", len(config.service_providers), path)
	return config
