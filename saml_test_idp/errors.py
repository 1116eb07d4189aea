class IdPError(Exception):
	"""Base class for every error raised by the identity provider"""


class ConfigurationError(IdPError):
	"""Invalid configuration, fatal at startup"""


class UnknownRequester(IdPError):
	"""No service provider is registered under the requester's entity id"""

	def __init__(self, entity_id: str):
		super().__init__(f"Unknown service provider: {entity_id}")
		self.entity_id = entity_id


class InvalidOrExpiredToken(IdPError):
	def __init__(self, token: str):
		super().__init__("Invalid or expired request")
		self.token = token


class UnknownIdentity(IdPError):
	def __init__(self, name: str):
		super().__init__(f"Invalid user: {name}")
		self.name = name


class RequestValidationError(IdPError):
	"""The inbound SAML request could not be parsed or verified"""


class SigningError(IdPError):
	"""The SAML response could not be built, signed or bound"""
