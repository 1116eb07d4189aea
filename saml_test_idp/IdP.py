import os
import tempfile
from urllib.parse import urlencode

import cherrypy
from mako.template import Template
from saml2 import BINDING_HTTP_POST
from saml2 import BINDING_HTTP_REDIRECT

from saml_test_idp.errors import InvalidOrExpiredToken, RequestValidationError, SigningError, \
	UnknownIdentity, UnknownRequester
from saml_test_idp.idp_conf import load_idp_config
from saml_test_idp.orchestrator import SSOOrchestrator
from saml_test_idp.registry import IdentityRegistry
from saml_test_idp.saml import SAMLIdentityProvider
from saml_test_idp.sessions import PendingRequestStore

TEMPLATES_DIRECTORY = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')
METADATA_CONTENT_TYPE = 'application/samlmetadata+xml'


class IdP(object):
	def __init__(self, orchestrator: SSOOrchestrator, provider: SAMLIdentityProvider):
		self.orchestrator = orchestrator
		self.provider = provider
		self.login_template = Template(filename=os.path.join(TEMPLATES_DIRECTORY, 'login.html'))

	@cherrypy.expose
	def metadata(self):
		"""IdP metadata listing the SSO endpoints and every supported NameID format
		:return:
		"""
		try:
			metadata = self.provider.metadata()
		except Exception as e:
			cherrypy.log(f"Error generating metadata: {e}", traceback=True)
			raise cherrypy.HTTPError(500, message="Failed to generate metadata")

		cherrypy.response.headers['Content-Type'] = METADATA_CONTENT_TYPE
		return metadata

	@cherrypy.expose
	def sso(self, SAMLRequest: str = None, RelayState: str = '', SigAlg: str = None, Signature: str = None,
	        **kwargs):
		"""Receives an AuthnRequest and sends the browser to the user chooser
		Every request shows the chooser, there is no IdP session to reuse.
		:return:
		"""
		method = cherrypy.request.method
		if method == 'GET':
			binding = BINDING_HTTP_REDIRECT
		elif method == 'POST':
			binding = BINDING_HTTP_REDIRECT if SigAlg or Signature else BINDING_HTTP_POST
		else:
			raise cherrypy.HTTPError(405, message="Method not allowed")

		if any(isinstance(value, list) for value in (SAMLRequest, RelayState, SigAlg, Signature)):
			raise cherrypy.HTTPError(400, message="Repeated parameter")

		try:
			request_handle = self.provider.parse_request(SAMLRequest, binding, relay_state=RelayState,
			                                             sigalg=SigAlg, signature=Signature)
		except RequestValidationError as e:
			cherrypy.log(f"Error validating SAML request: {e}")
			raise cherrypy.HTTPError(400, message="Invalid SAML request")

		try:
			flow = self.orchestrator.begin_flow(request_handle.requester, request_handle)
		except UnknownRequester as e:
			cherrypy.log(str(e))
			raise cherrypy.HTTPError(400, message="Unknown service provider")

		raise cherrypy.HTTPRedirect(f"/login?{urlencode({'request_id': flow.token})}", 302)

	@cherrypy.expose
	def login(self, request_id: str = None, user: str = None, **kwargs):
		"""Shows the user chooser (GET) or answers the SP for the chosen user (POST)
		:param request_id: pending request token
		:param user: chosen user name
		:return:
		"""
		if not request_id:
			raise cherrypy.HTTPError(400, message="Missing request_id")
		if not isinstance(request_id, str) or not isinstance(user, (str, type(None))):
			raise cherrypy.HTTPError(400, message="Repeated parameter")

		try:
			flow = self.orchestrator.describe_flow(request_id)
		except InvalidOrExpiredToken:
			raise cherrypy.HTTPError(400, message="Invalid or expired request")

		method = cherrypy.request.method
		if method == 'GET':
			return self.login_template.render(
				request_id=flow.token,
				sp_name=flow.descriptor.entity_id,
				users=flow.identities
			)
		if method == 'POST':
			return self.process_login(request_id, user)

		raise cherrypy.HTTPError(405, message="Method not allowed")

	def process_login(self, request_id: str, user: str):
		if not user:
			raise cherrypy.HTTPError(400, message="No user selected")

		try:
			completed = self.orchestrator.complete_flow(request_id, user)
		except InvalidOrExpiredToken:
			raise cherrypy.HTTPError(400, message="Invalid or expired request")
		except UnknownIdentity:
			raise cherrypy.HTTPError(400, message="Invalid user")

		try:
			http_args = self.provider.create_response(completed.request_handle, completed.claims)
		except SigningError as e:
			cherrypy.log(str(e), traceback=True)
			raise cherrypy.HTTPError(500, message="Failed to create assertion")

		for header, value in http_args.get('headers', []):
			cherrypy.response.headers[header] = value
		cherrypy.response.status = http_args.get('status', 200)
		return http_args['data']


def create_idp(config) -> IdP:
	"""Wires registry, pending request store, orchestrator and pysaml2 together
	:param config: loaded ``Config``
	:return:
	"""
	registry = IdentityRegistry(config.service_providers)
	orchestrator = SSOOrchestrator(registry=registry, store=PendingRequestStore())

	# pysaml2 signs with key files, inline PEM lives here until the provider is closed
	key_directory = tempfile.TemporaryDirectory(prefix='saml-test-idp-')
	try:
		provider = SAMLIdentityProvider(load_idp_config(config, registry, key_directory.name), key_directory)
	except Exception:
		key_directory.cleanup()
		raise
	return IdP(orchestrator=orchestrator, provider=provider)
