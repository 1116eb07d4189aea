import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from saml_test_idp.config import ServiceProviderConfig, UserConfig
from saml_test_idp.orchestrator import SSOOrchestrator
from saml_test_idp.registry import IdentityRegistry
from saml_test_idp.sessions import PendingRequestStore


class Clock(object):
	def __init__(self):
		self.now = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

	def __call__(self):
		return self.now

	def advance(self, **kwargs):
		self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock():
	return Clock()


@pytest.fixture(scope='session')
def rsa_key():
	return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope='session')
def key_pem(rsa_key) -> bytes:
	return rsa_key.private_bytes(
		encoding=serialization.Encoding.PEM,
		format=serialization.PrivateFormat.TraditionalOpenSSL,
		encryption_algorithm=serialization.NoEncryption()
	)


@pytest.fixture(scope='session')
def cert_pem(rsa_key) -> bytes:
	name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "SAML Test IDP")])
	now = datetime.datetime.now(datetime.timezone.utc)
	certificate = x509.CertificateBuilder() \
		.subject_name(name) \
		.issuer_name(name) \
		.public_key(rsa_key.public_key()) \
		.serial_number(x509.random_serial_number()) \
		.not_valid_before(now - datetime.timedelta(days=1)) \
		.not_valid_after(now + datetime.timedelta(days=365)) \
		.sign(rsa_key, hashes.SHA256())
	return certificate.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def service_providers():
	return [
		ServiceProviderConfig(
			entity_id='sp-1',
			acs_url='https://sp-1.example.com/acs',
			name_id_format='persistent',
			users=[UserConfig(name='Ann', name_id='ann@example.com', attributes={'role': 'admin'})]
		),
		ServiceProviderConfig(
			entity_id='https://sp.example.com',
			acs_url='https://sp.example.com/acs',
			users=[
				UserConfig(name='Test User', name_id='test@example.com', attributes={
					'email': 'test@example.com',
					'groups': ['admin', 'users'],
					'active': True,
				}),
				UserConfig(name='No Attrs', name_id='noattrs@example.com'),
			]
		),
	]


@pytest.fixture
def registry(service_providers):
	return IdentityRegistry(service_providers)


@pytest.fixture
def store(clock):
	return PendingRequestStore(clock=clock)


@pytest.fixture
def orchestrator(registry, store):
	return SSOOrchestrator(registry=registry, store=store)
