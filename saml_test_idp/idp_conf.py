import os.path

from saml2 import BINDING_HTTP_REDIRECT
from saml2 import BINDING_HTTP_POST
from saml2 import saml
from saml2.attribute_converter import AttributeConverter
from saml2.config import IdPConfig
from saml2.s_utils import do_ava
from saml2.s_utils import factory
from saml2.saml import NAME_FORMAT_BASIC
from saml2.sigver import SigverError
from saml2.sigver import get_xmlsec_binary

from saml_test_idp.config import resolve_path
from saml_test_idp.nameid import NAME_ID_FORMATS

ASSERTION_LIFETIME = 5      # minutes


def xmlsec_path():
    try:
        return get_xmlsec_binary(["/opt/local/bin", "/usr/local/bin"])
    except SigverError:
        return '/usr/bin/xmlsec1'


class ConfiguredNameConverter(AttributeConverter):
    """Sends each attribute under the name it has in the configuration

    The stock converters translate well known names such as ``email`` into
    urn:mace or urn:oid names and leave the rest in the uri format.
    """

    def __init__(self):
        super().__init__(NAME_FORMAT_BASIC)

    def to_(self, attrvals):
        return [factory(saml.Attribute, name=name, name_format=self.name_format, attribute_value=do_ava(values))
                for name, values in attrvals.items()]


def pem_file(pem, path, directory, name):
    """pysaml2 reads key material from files, inline PEM is written to ``directory``"""
    if path:
        return path
    full_path = os.path.join(directory, name)
    with open(full_path, 'wb') as file:
        file.write(pem)
    os.chmod(full_path, 0o600)
    return full_path


def build_config(config, registry, key_directory):
    """pysaml2 configuration dict for the IdP
    :param config: loaded ``Config``
    :param registry: ``IdentityRegistry`` whose SP metadata is trusted inline
    :param key_directory: where inline PEM material is written
    :return:
    """
    base = config.server.base_url
    idp = config.idp

    # fail early on unreadable or non RSA material
    idp.load_certificate()
    idp.load_private_key()

    # inline PEM takes precedence over the path, as in IdPSettings
    key_path = '' if idp.private_key else resolve_path(idp.base_dir, idp.private_key_path)
    cert_path = '' if idp.certificate else resolve_path(idp.base_dir, idp.certificate_path)
    return {
        "entityid": idp.entity_id,
        "description": "SAML test IdP",
        "valid_for": 168,
        "service": {
            "idp": {
                "name": "SAML Test IdP",
                "endpoints": {
                    "single_sign_on_service": [
                        ("%s/sso" % base, BINDING_HTTP_REDIRECT),
                        ("%s/sso" % base, BINDING_HTTP_POST),
                    ],
                },
                "want_authn_requests_signed": False,
                "policy": {
                    "default": {
                        "lifetime": {"minutes": ASSERTION_LIFETIME},
                        "name_form": NAME_FORMAT_BASIC
                    },
                },
                "name_id_format": list(NAME_ID_FORMATS.values())
            },
        },
        "metadata": {
            "inline": registry.metadata_documents(),
        },
        'key_file': pem_file(idp.private_key_pem(), key_path, key_directory, 'idp.key'),
        'cert_file': pem_file(idp.certificate_pem(), cert_path, key_directory, 'idp.crt'),
        'xmlsec_binary': xmlsec_path(),
    }


def load_idp_config(config, registry, key_directory) -> IdPConfig:
    idp_config = IdPConfig().load(build_config(config, registry, key_directory))
    idp_config.attribute_converters = [ConfiguredNameConverter()]
    return idp_config
