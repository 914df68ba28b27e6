# Integration service clients
from .google_ads import GoogleAdsClient
from .greyfinch import GreyfinchClient, GreyfinchConfig, config_for_user
from .meta_ads import MetaAdsClient
from .quickbooks import QuickBooksClient

__all__ = [
    'GoogleAdsClient',
    'GreyfinchClient',
    'GreyfinchConfig',
    'MetaAdsClient',
    'QuickBooksClient',
    'config_for_user',
]
