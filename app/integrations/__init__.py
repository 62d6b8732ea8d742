from flask import current_app

from app.integrations.base import ProvisioningClient, SMSSender, Mailer, Authenticator
from app.integrations.http_clients import (
    HttpProvisioningClient,
    HttpSMSSender,
    HttpMailer,
    JWTAuthenticator
)


def _registered(name: str, factory):
    """Instance registered under app.extensions[name], else one built from config"""
    instance = current_app.extensions.get(name)
    if instance is None:
        instance = factory()
        current_app.extensions[name] = instance
    return instance


def get_provisioning_client() -> ProvisioningClient:
    cfg = current_app.config
    return _registered('provisioning_client', lambda: HttpProvisioningClient(
        cfg.get('PROVISIONING_API_URL'), cfg.get('PROVISIONING_API_KEY'), cfg.get('PROVIDER_TIMEOUT', 30)
    ))


def get_sms_sender() -> SMSSender:
    cfg = current_app.config
    return _registered('sms_sender', lambda: HttpSMSSender(
        cfg.get('SMS_API_URL'),
        api_key=cfg.get('SMS_API_KEY'),
        partner_id=cfg.get('SMS_PARTNER_ID'),
        shortcode=cfg.get('SMS_SHORTCODE'),
        timeout=cfg.get('PROVIDER_TIMEOUT', 30)
    ))


def get_mailer() -> Mailer:
    cfg = current_app.config
    return _registered('mailer', lambda: HttpMailer(
        cfg.get('MAILER_API_URL'), cfg.get('MAILER_API_KEY'), cfg.get('PROVIDER_TIMEOUT', 30)
    ))


def get_authenticator() -> Authenticator:
    return _registered('authenticator', JWTAuthenticator)


__all__ = [
    'ProvisioningClient', 'SMSSender', 'Mailer', 'Authenticator',
    'get_provisioning_client', 'get_sms_sender', 'get_mailer', 'get_authenticator',
]
