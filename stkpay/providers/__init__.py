from typing import Dict, Type
from flask import current_app

from stkpay.providers.base import PaymentProvider, PaymentRequest, PaymentResult
from stkpay.providers.mpesa_provider import MPesaProvider

# Provider registry
PROVIDERS: Dict[str, Type[PaymentProvider]] = {
    'mpesa': MPesaProvider,
}


def get_provider(provider_name: str = 'mpesa') -> PaymentProvider:
    """
    Get provider instance by name.

    A fresh instance is built per call, so access tokens never outlive the
    request that fetched them.

    Raises:
        ValueError: If provider not found
        ConfigurationError: If the provider settings are incomplete
    """
    provider_class = PROVIDERS.get(provider_name.lower())

    if not provider_class:
        raise ValueError(f'Unknown provider: {provider_name}')

    config = get_provider_config(provider_name.lower())
    return provider_class(config)


def get_provider_config(provider_name: str) -> dict:
    """Get provider configuration from Flask app config."""

    if provider_name == 'mpesa':
        return {
            # Required
            'consumer_key':    current_app.config.get('MPESA_CONSUMER_KEY'),
            'consumer_secret': current_app.config.get('MPESA_CONSUMER_SECRET'),
            'shortcode':       current_app.config.get('MPESA_SHORTCODE'),
            'passkey':         current_app.config.get('MPESA_PASSKEY'),
            'callback_url':    current_app.config.get('MPESA_CALLBACK_URL', ''),
            # Environment
            'environment':     current_app.config.get('MPESA_ENV', 'sandbox'),
            'base_url':        current_app.config.get('MPESA_BASE_URL'),
            # Payment behaviour
            'transaction_type':   current_app.config.get('MPESA_TRANSACTION_TYPE', 'CustomerPayBillOnline'),
            'timeout':            current_app.config.get('MPESA_TIMEOUT', 10),
            'country_code':       current_app.config.get('MPESA_COUNTRY_CODE', '254'),
            'account_prefix':     current_app.config.get('MPESA_ACCOUNT_PREFIX', ''),
            'timestamp_timezone': current_app.config.get('MPESA_TIMESTAMP_TIMEZONE', 'UTC'),
        }

    return {}


def list_available_providers():
    """List all available providers."""
    return list(PROVIDERS.keys())


__all__ = [
    'get_provider', 'get_provider_config', 'list_available_providers', 'PROVIDERS',
    'PaymentProvider', 'PaymentRequest', 'PaymentResult', 'MPesaProvider'
]
