from typing import Dict, Type
from app.providers.base import PaymentProvider
from app.providers.mpesa_provider import MPesaProvider
from app.providers.intasend_provider import IntaSendProvider
from flask import current_app

# Provider registry
PROVIDERS: Dict[str, Type[PaymentProvider]] = {
    'mpesa':    MPesaProvider,
    'intasend': IntaSendProvider,
}

def get_provider(provider_name: str, platform_config=None) -> PaymentProvider:
    """
    Get provider instance by name.

    Args:
        provider_name: 'mpesa' or 'intasend'
        platform_config: PlatformConfig whose tenant credentials the M-Pesa
            provider should use (API mode)

    Returns:
        Initialized provider instance

    Raises:
        ValueError: If provider not found or misconfigured
    """
    provider_class = PROVIDERS.get(provider_name.lower())

    if not provider_class:
        raise ValueError(f'Unknown provider: {provider_name}')

    config = _get_provider_config(provider_name.lower(), platform_config)
    return provider_class(config)

def get_c2b_provider() -> MPesaProvider:
    """M-Pesa provider for the shared C2B shortcode, using environment credentials."""
    return MPesaProvider(_get_c2b_config())

def _daraja_urls() -> dict:
    base_url = current_app.config.get('BASE_URL', '').rstrip('/')
    return {
        'environment':       current_app.config.get('MPESA_ENV', 'sandbox'),
        'callback_url':      current_app.config.get('MPESA_CALLBACK_URL') or f'{base_url}/mpesa/callback',
        'result_url':        f'{base_url}/mpesa/result',
        'queue_timeout_url': f'{base_url}/mpesa/timeout',
        'cert_path':         current_app.config.get('MPESA_CERT_PATH', ''),
        'timeout':           current_app.config.get('PROVIDER_TIMEOUT', 30),
    }

def _get_c2b_config() -> dict:
    return {
        'consumer_key':       current_app.config.get('MPESA_C2B_CONSUMER_KEY'),
        'consumer_secret':    current_app.config.get('MPESA_C2B_CONSUMER_SECRET'),
        'shortcode':          current_app.config.get('MPESA_C2B_SHORT_CODE'),
        'shortcode_type':     current_app.config.get('MPESA_C2B_SHORT_CODE_TYPE', 'Paybill'),
        'passkey':            current_app.config.get('MPESA_C2B_PASS_KEY'),
        'initiator_name':     current_app.config.get('MPESA_C2B_INITIATOR_NAME'),
        'initiator_password': current_app.config.get('MPESA_C2B_INITIATOR_PASSWORD'),
        **_daraja_urls(),
    }

def _get_provider_config(provider_name: str, platform_config=None) -> dict:
    """Get provider configuration from the tenant config or Flask app config."""

    if provider_name == 'mpesa':
        if platform_config is None:
            return _get_c2b_config()
        return {
            'consumer_key':       platform_config.mpesa_consumer_key,
            'consumer_secret':    platform_config.mpesa_consumer_secret,
            'shortcode':          platform_config.mpesa_short_code,
            'shortcode_type':     platform_config.mpesa_short_code_type or 'Paybill',
            'passkey':            platform_config.mpesa_pass_key,
            'initiator_name':     platform_config.mpesa_account_initiator,
            'initiator_password': platform_config.mpesa_account_initiator_password,
            **_daraja_urls(),
        }

    elif provider_name == 'intasend':
        return {
            'publishable_key': current_app.config.get('INTASEND_PUBLISHABLE_KEY'),
            'secret_key':      current_app.config.get('INTASEND_SECRET_KEY'),
            'challenge':       current_app.config.get('INTASEND_CHALLENGE'),
            'test_mode':       current_app.config.get('INTASEND_TEST_MODE', True),
            'timeout':         current_app.config.get('PROVIDER_TIMEOUT', 30),
        }

    return {}


__all__ = ['get_provider', 'get_c2b_provider', 'PROVIDERS']
