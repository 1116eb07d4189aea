import logging

import cherrypy
import click
from cherrypy.process.plugins import Monitor

from saml_test_idp.config import load_config
from saml_test_idp.errors import ConfigurationError
from saml_test_idp.IdP import create_idp

SWEEP_FREQUENCY = 60        # seconds

logger = logging.getLogger('saml_test_idp')


@click.command()
@click.option('--config', 'config_path', default='config.yaml', show_default=True,
              help="Path to YAML configuration file.")
@click.option('--log-level', default='INFO', show_default=True,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
@click.version_option(package_name='saml-test-idp')
def main(config_path: str, log_level: str):
	"""SAML identity provider that signs in as a chosen test user"""
	logging.basicConfig(level=log_level.upper(), format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s")

	try:
		config = load_config(config_path)
		idp = create_idp(config)
	except ConfigurationError as e:
		raise click.ClickException(f"Failed to load config: {e}")

	base_url = config.server.base_url
	logger.info("Starting SAML IDP server on %s:%d", config.server.host, config.server.port)
	logger.info("  Metadata URL: %s/metadata", base_url)
	logger.info("  SSO URL: %s/sso", base_url)

	# expired pending requests are also rejected on lookup, this only bounds memory
	Monitor(cherrypy.engine, idp.orchestrator.store.sweep, frequency=SWEEP_FREQUENCY,
	        name='PendingRequestSweep').subscribe()
	cherrypy.engine.subscribe('stop', idp.provider.close)

	cherrypy.config.update({'server.socket_host': config.server.host,
	                        'server.socket_port': config.server.port,
	                        'engine.autoreload.on': False})
	cherrypy.quickstart(idp)


if __name__ == '__main__':
	main()
