from roundsale.conf.get_settings import get_global_settings
from roundsale.conf.settings import SaleSettings

settings = get_global_settings()

__all__ = ['SaleSettings', 'get_global_settings', 'settings']
