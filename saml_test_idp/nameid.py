import typing

from saml2.saml import NAMEID_FORMAT_EMAILADDRESS
from saml2.saml import NAMEID_FORMAT_PERSISTENT
from saml2.saml import NAMEID_FORMAT_TRANSIENT
from saml2.saml import NAMEID_FORMAT_UNSPECIFIED

DEFAULT_NAME_ID_FORMAT = 'email'

# config keyword -> NameID format URI
NAME_ID_FORMATS: typing.Dict[str, str] = {
	'email': NAMEID_FORMAT_EMAILADDRESS,
	'persistent': NAMEID_FORMAT_PERSISTENT,
	'transient': NAMEID_FORMAT_TRANSIENT,
	'unspecified': NAMEID_FORMAT_UNSPECIFIED,
}

Attribute = typing.Tuple[str, typing.Tuple[str, ...]]


def resolve_name_id_format(keyword: str) -> str:
	"""Returns the NameID format URI for a configuration keyword
	Unknown or empty keywords fall back to the email address format.
	:param keyword:
	:return:
	"""
	return NAME_ID_FORMATS.get(keyword or DEFAULT_NAME_ID_FORMAT, NAME_ID_FORMATS[DEFAULT_NAME_ID_FORMAT])


def format_to_keyword(uri: str) -> str:
	for keyword, name_id_format in NAME_ID_FORMATS.items():
		if name_id_format == uri:
			return keyword
	return DEFAULT_NAME_ID_FORMAT


def _to_string(value) -> str:
	if value is None:
		return ''
	if isinstance(value, bool):
		return 'true' if value else 'false'
	return str(value)


def attribute_values(value) -> typing.Tuple[str, ...]:
	"""Converts a configured attribute value to its claim values
	A non empty list gives one value per element, anything else exactly one.
	:param value:
	:return:
	"""
	if isinstance(value, (list, tuple)) and value:
		return tuple(_to_string(v) for v in value)
	if isinstance(value, (list, tuple)):
		return ('',)
	return (_to_string(value),)


def build_claim_attributes(record) -> typing.Tuple[Attribute, ...]:
	if record is None or not record.attributes:
		return ()
	return tuple((name, attribute_values(value)) for name, value in record.attributes.items())
