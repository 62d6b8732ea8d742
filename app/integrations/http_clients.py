"""
HTTP implementations of the collaborator interfaces
"""

import logging
from typing import Any, Dict, Optional

import requests
from flask_jwt_extended import decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError

from app.integrations.base import ProvisioningClient, SMSSender, Mailer, Authenticator
from app.utils.validators import format_phone_number

logger = logging.getLogger(__name__)


class _JSONClient:
    """Shared requests plumbing: base URL, API key header, timeout"""

    def __init__(self, base_url: str, api_key: str = '', timeout: int = 30):
        self.base_url = (base_url or '').rstrip('/')
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({'Content-Type': 'application/json'})
        if api_key:
            self._session.headers.update({'X-API-Key': api_key})

    def _request(self, method: str, path: str, context: str, **kwargs) -> Dict[str, Any]:
        if not self.base_url:
            return {'success': False, 'message': f'{context}: service URL not configured'}

        try:
            resp = self._session.request(method, f'{self.base_url}{path}', timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error('%s network error: %s', context, exc)
            return {'success': False, 'message': str(exc), 'status_code': None}

        try:
            data = resp.json()
        except ValueError:
            data = {'message': resp.text[:300]}
        if not isinstance(data, dict):
            data = {'data': data}

        data.setdefault('status_code', resp.status_code)
        if not resp.ok:
            data['success'] = False
            data.setdefault('message', f'HTTP {resp.status_code}')
        return data


class HttpProvisioningClient(_JSONClient, ProvisioningClient):

    def add_manual_code(self, data: Dict[str, Any]) -> Dict[str, Any]:
        result = self._request('POST', '/hotspot/manual-code', 'add_manual_code', json=data)
        return {
            'success': bool(result.get('success')),
            'code': result.get('code'),
            'message': result.get('message', ''),
        }

    def manage_pppoe(self, data: Dict[str, Any]) -> Dict[str, Any]:
        result = self._request('POST', '/pppoe/manage', 'manage_pppoe', json=data)
        return {'success': bool(result.get('success')), 'message': result.get('message', '')}

    def find_user(self, code: str, platform_id: str) -> Optional[Dict[str, Any]]:
        result = self._request(
            'GET', '/hotspot/users', 'find_user',
            params={'code': code, 'platformID': platform_id}
        )
        if result.get('status_code') == 200 and result.get('user'):
            return result['user']
        return None


class HttpSMSSender(_JSONClient, SMSSender):

    def __init__(self, base_url: str, api_key: str = '', partner_id: str = '', shortcode: str = '', timeout: int = 30):
        super().__init__(base_url, timeout=timeout)
        self.api_key = api_key
        self.partner_id = partner_id
        self.shortcode = shortcode

    def send(self, phone: str, message: str, wallet) -> Dict[str, Any]:
        if not phone or not message or wallet is None:
            return {'success': False, 'message': 'Missing credentials required'}

        payload = {
            'apikey': self.api_key,
            'partnerID': self.partner_id,
            'message': message,
            'shortcode': self.shortcode,
            'mobile': format_phone_number(phone) or phone,
        }
        result = self._request('POST', '', 'send_sms', json=payload)

        responses = result.get('responses')
        first = responses[0] if isinstance(responses, list) and responses else result
        description = str(first.get('response-description') or first.get('message') or '')
        success = str(first.get('response-code')) == '200' or description.lower() == 'success'
        return {'success': success, 'message': description or 'Message sent successfully'}


class HttpMailer(_JSONClient, Mailer):

    def send(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data.get('to') or not data.get('subject') or not data.get('message'):
            return {'success': False, 'message': 'Missing required credentials!'}

        result = self._request('POST', '/send', 'send_email', json=data)
        if result.get('status_code') and result.get('success') is not False:
            return {'success': True, 'message': 'Email sent successfully!'}
        return {'success': False, 'message': result.get('message', 'Failed to send email.')}


class JWTAuthenticator(Authenticator):
    """Decode a dashboard access token issued with platformID/adminID/role claims"""

    def authenticate(self, token: str) -> Dict[str, Any]:
        if not token:
            return {'success': False, 'message': 'Missing token'}

        try:
            claims = decode_token(token)
        except (PyJWTError, JWTExtendedException) as exc:
            return {'success': False, 'message': str(exc)}

        platform_id = claims.get('platformID')
        if not platform_id:
            return {'success': False, 'message': 'Token carries no platform'}

        return {
            'success': True,
            'admin': {
                'platformID': platform_id,
                'adminID': claims.get('adminID') or claims.get('sub'),
                'role': claims.get('role', 'admin'),
            },
        }
