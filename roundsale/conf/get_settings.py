import importlib
import logging
import os
from functools import lru_cache

from roundsale.conf.settings import SaleSettings

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV_VAR = 'ROUNDSALE_CONFIG_FILE'
DEFAULT_CONFIG_MODULE = 'roundsale.conf.localnet'


@lru_cache(maxsize=1)
def get_global_settings() -> SaleSettings:
    """Load the settings module named by ROUNDSALE_CONFIG_FILE, or the localnet one.

    The module must define a `SETTINGS` object of type SaleSettings.
    """
    module_name = os.environ.get(CONFIG_FILE_ENV_VAR, DEFAULT_CONFIG_MODULE)
    module = importlib.import_module(module_name)
    settings = getattr(module, 'SETTINGS', None)
    if not isinstance(settings, SaleSettings):
        raise TypeError(f'{module_name}.SETTINGS must be a SaleSettings instance')
    logger.debug('loaded settings %s from %s', settings.NETWORK_NAME, module_name)
    return settings
