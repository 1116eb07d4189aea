"""pysaml2 side of the IdP: reads AuthnRequests and signs Responses

The orchestration core never looks inside a ``RequestHandle``; it only
stores it with the pending request and hands it back here for signing.
"""
import logging
import tempfile
import typing
from dataclasses import dataclass

from saml2 import BINDING_HTTP_POST
from saml2.authn_context import UNSPECIFIED
from saml2.metadata import entity_descriptor
from saml2.saml import NameID
from saml2.server import Server

from saml_test_idp.errors import RequestValidationError, SigningError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestHandle(object):
	authn_request: typing.Any       # saml2.request.AuthnRequest
	requester: str
	binding: str
	relay_state: str = ''


class SAMLIdentityProvider(object):
	def __init__(self, idp_config, key_directory: tempfile.TemporaryDirectory = None):
		"""
		:param idp_config: loaded pysaml2 ``IdPConfig``
		:param key_directory: holds key material written for pysaml2, removed by ``close``
		"""
		self.server = Server(config=idp_config)
		self.key_directory = key_directory

	def close(self):
		if self.key_directory is not None:
			self.key_directory.cleanup()

	@property
	def entity_id(self) -> str:
		return self.server.config.entityid

	def parse_request(self, saml_request: str, binding: str, relay_state: str = '',
	                  sigalg: str = None, signature: str = None) -> RequestHandle:
		"""Decodes and verifies an AuthnRequest
		:param saml_request: the SAMLRequest parameter as received
		:param binding: HTTP-Redirect or HTTP-POST
		:param relay_state:
		:param sigalg: SigAlg of a signed redirect
		:param signature: Signature of a signed redirect
		:return:
		"""
		if not saml_request:
			raise RequestValidationError("Missing SAMLRequest")

		try:
			request = self.server.parse_authn_request(saml_request, binding, relay_state=relay_state,
			                                          sigalg=sigalg, signature=signature)
		except Exception as e:
			# pysaml2 reports decoding, schema and signature problems with unrelated exception types
			logger.info("Error parsing SAML request: %s", e)
			raise RequestValidationError(f"Invalid SAML request: {e}") from e

		if request is None or request.message is None:
			raise RequestValidationError("Invalid SAML request")
		issuer = request.message.issuer
		if issuer is None or not issuer.text:
			raise RequestValidationError("SAML request has no Issuer")

		return RequestHandle(
			authn_request=request,
			requester=issuer.text.strip(),
			binding=binding,
			relay_state=relay_state or ''
		)

	def create_response(self, request_handle: RequestHandle, claims) -> dict:
		"""Builds the signed Response for a completed flow
		:param request_handle:
		:param claims: ``ClaimSet`` of the chosen user
		:return: pysaml2 http info with ``data``, ``headers`` and ``status``
		"""
		try:
			resp_args = self.server.response_args(request_handle.authn_request.message, [BINDING_HTTP_POST])
			binding = resp_args.pop('binding', BINDING_HTTP_POST)
			destination = resp_args['destination']

			response = self.server.create_authn_response(
				claims.identity(),
				userid=claims.name_id,
				name_id=NameID(format=claims.name_id_format, text=claims.name_id),
				authn={'class_ref': UNSPECIFIED, 'authn_auth': self.entity_id},
				sign_response=True,
				sign_assertion=True,
				**resp_args
			)
			http_args = self.server.apply_binding(binding, "%s" % response, destination,
			                                      request_handle.relay_state, response=True)
		except Exception as e:
			logger.error("Error making assertion for %s: %s", request_handle.requester, e)
			raise SigningError(f"Failed to create assertion: {e}") from e

		return http_args

	def metadata(self) -> str:
		return str(entity_descriptor(self.server.config))
