import base64
import os
import re
import shutil
import tempfile

import pytest
from saml2 import BINDING_HTTP_POST
from saml2 import BINDING_HTTP_REDIRECT
from saml2 import saml
from saml2 import samlp
from saml2.s_utils import deflate_and_base64_encode
from saml2.s_utils import sid
from saml2.saml import NAME_FORMAT_BASIC
from saml2.saml import NAMEID_FORMAT_PERSISTENT
from saml2.time_util import instant

from saml_test_idp.config import Config, IdPSettings, ServerConfig, ServiceProviderConfig, UserConfig
from saml_test_idp.IdP import create_idp
from saml_test_idp.errors import ConfigurationError, RequestValidationError
from saml_test_idp.idp_conf import build_config, load_idp_config
from saml_test_idp.nameid import NAME_ID_FORMATS
from saml_test_idp.orchestrator import SSOOrchestrator
from saml_test_idp.registry import IdentityRegistry
from saml_test_idp.saml import SAMLIdentityProvider
from saml_test_idp.sessions import PendingRequestStore

IDP_BASE = 'http://idp.test'
SP_ENTITY_ID = 'https://sp.example.com'
SP_ACS = 'https://sp.example.com/acs'

requires_xmlsec = pytest.mark.skipif(shutil.which('xmlsec1') is None, reason="xmlsec1 is not installed")


@pytest.fixture
def idp_config(cert_pem, key_pem):
	config = Config(
		server=ServerConfig(base_url=IDP_BASE),
		idp=IdPSettings(certificate=cert_pem.decode(), private_key=key_pem.decode()),
		service_providers=[ServiceProviderConfig(
			entity_id=SP_ENTITY_ID,
			acs_url=SP_ACS,
			name_id_format='persistent',
			users=[UserConfig(name='Ann', name_id='ann-0001', attributes={
				'email': 'ann@example.com',
				'groups': ['a', 'b'],
				'active': True,
				'Role': 'admin',
			})]
		)]
	)
	config.apply_defaults()
	return config


@pytest.fixture
def registry(idp_config):
	return IdentityRegistry(idp_config.service_providers)


@pytest.fixture
def provider(idp_config, registry, tmp_path):
	return SAMLIdentityProvider(load_idp_config(idp_config, registry, key_directory=str(tmp_path)))


def authn_request(issuer=SP_ENTITY_ID) -> str:
	request = samlp.AuthnRequest(
		id=sid(),
		version='2.0',
		issue_instant=instant(),
		destination=f"{IDP_BASE}/sso",
		assertion_consumer_service_url=SP_ACS,
		protocol_binding=BINDING_HTTP_POST,
		issuer=saml.Issuer(text=issuer, format=saml.NAMEID_FORMAT_ENTITY)
	)
	return deflate_and_base64_encode(str(request)).decode()


def test_build_config_writes_inline_pem(idp_config, registry, tmp_path, key_pem):
	config = build_config(idp_config, registry, key_directory=str(tmp_path))

	assert config['entityid'] == f"{IDP_BASE}/metadata"
	assert (tmp_path / 'idp.key').read_bytes() == key_pem
	assert config['cert_file'] == str(tmp_path / 'idp.crt')
	assert config['service']['idp']['name_id_format'] == list(NAME_ID_FORMATS.values())
	assert config['metadata']['inline'] == registry.metadata_documents()
	assert (f"{IDP_BASE}/sso", BINDING_HTTP_REDIRECT) in \
		config['service']['idp']['endpoints']['single_sign_on_service']


@requires_xmlsec
def test_metadata(provider):
	metadata = provider.metadata()

	assert 'IDPSSODescriptor' in metadata
	assert f"{IDP_BASE}/sso" in metadata
	for name_id_format in NAME_ID_FORMATS.values():
		assert name_id_format in metadata


@requires_xmlsec
def test_parse_request(provider):
	handle = provider.parse_request(authn_request(), BINDING_HTTP_REDIRECT, relay_state='relay')

	assert handle.requester == SP_ENTITY_ID
	assert handle.binding == BINDING_HTTP_REDIRECT
	assert handle.relay_state == 'relay'


@requires_xmlsec
@pytest.mark.parametrize('saml_request', ['', 'bm90IGEgcmVxdWVzdA=='])
def test_parse_invalid_request(provider, saml_request):
	with pytest.raises(RequestValidationError):
		provider.parse_request(saml_request, BINDING_HTTP_REDIRECT)


@requires_xmlsec
def test_signed_response_round_trip(provider, registry):
	orchestrator = SSOOrchestrator(registry=registry, store=PendingRequestStore())
	handle = provider.parse_request(authn_request(), BINDING_HTTP_REDIRECT, relay_state='relay')

	flow = orchestrator.begin_flow(handle.requester, handle)
	completed = orchestrator.complete_flow(flow.token, 'Ann')
	http_args = provider.create_response(completed.request_handle, completed.claims)

	form = http_args['data']
	assert SP_ACS in form
	saml_response = re.search(r'name="SAMLResponse" value="([^"]+)"', form).group(1)
	response = base64.b64decode(saml_response).decode()
	assert 'ann-0001' in response
	assert NAMEID_FORMAT_PERSISTENT in response
	assert 'Signature' in response


def test_attribute_statement_uses_configured_names(provider, registry, monkeypatch):
	# xmlsec1 is only needed for the signature itself
	monkeypatch.setattr(provider.server.sec, 'sign_statement', lambda statement, *args, **kwargs: statement)
	orchestrator = SSOOrchestrator(registry=registry, store=PendingRequestStore())
	handle = provider.parse_request(authn_request(), BINDING_HTTP_REDIRECT)

	flow = orchestrator.begin_flow(handle.requester, handle)
	completed = orchestrator.complete_flow(flow.token, 'Ann')
	http_args = provider.create_response(completed.request_handle, completed.claims)

	saml_response = re.search(r'name="SAMLResponse" value="([^"]+)"', http_args['data']).group(1)
	response = samlp.response_from_string(base64.b64decode(saml_response).decode())
	assertion = response.assertion[0]
	assert assertion.subject.name_id.text == 'ann-0001'

	attributes = assertion.attribute_statement[0].attribute
	assert [attribute.name for attribute in attributes] == ['email', 'groups', 'active', 'Role']
	assert {attribute.name_format for attribute in attributes} == {NAME_FORMAT_BASIC}
	values = {attribute.name: [value.text for value in attribute.attribute_value] for attribute in attributes}
	assert values == {
		'email': ['ann@example.com'],
		'groups': ['a', 'b'],
		'active': ['true'],
		'Role': ['admin'],
	}


def test_close_removes_inline_key_material(idp_config):
	idp = create_idp(idp_config)
	key_file = idp.provider.server.config.key_file
	assert os.path.exists(key_file)

	idp.provider.close()
	assert not os.path.exists(key_file)
	assert not os.path.exists(os.path.dirname(key_file))


def test_key_material_removed_when_config_is_rejected(idp_config, monkeypatch, tmp_path):
	created = []

	class RecordingDirectory(tempfile.TemporaryDirectory):
		def __init__(self, *args, **kwargs):
			super().__init__(*args, dir=str(tmp_path), **kwargs)
			created.append(self.name)

	monkeypatch.setattr(tempfile, 'TemporaryDirectory', RecordingDirectory)
	idp_config.idp.private_key = 'garbage'

	with pytest.raises(ConfigurationError):
		create_idp(idp_config)
	assert created and not os.path.exists(created[0])
