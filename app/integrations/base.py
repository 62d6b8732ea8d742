"""
Collaborator interfaces

Provisioning, notification and admin authentication live outside this
service. Every method returns a plain result dict and never raises for
remote failures, so a payment's lifecycle continues regardless.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class ProvisioningClient(ABC):
    """Network-provisioning controller (hotspot vouchers, PPPoE secrets)"""

    @abstractmethod
    def add_manual_code(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a hotspot login for a paid package.

        data: phone, packageID, platformID, code, mac, token (and optional package)

        Returns:
            {'success': True, 'code': {...}} or {'success': False, 'message': str}
        """

    @abstractmethod
    def manage_pppoe(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Enable a PPPoE secret.

        data: platformID, service, user, host

        Returns:
            {'success': bool, 'message': str}
        """

    @abstractmethod
    def find_user(self, code: str, platform_id: str) -> Optional[Dict[str, Any]]:
        """Existing hotspot user created for a settlement code, or None"""


class SMSSender(ABC):

    @abstractmethod
    def send(self, phone: str, message: str, wallet) -> Dict[str, Any]:
        """Returns {'success': bool, 'message': str}"""


class Mailer(ABC):

    @abstractmethod
    def send(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        data: to, subject, message, name, company

        Returns {'success': bool, 'message': str}
        """


class Authenticator(ABC):

    @abstractmethod
    def authenticate(self, token: str) -> Dict[str, Any]:
        """
        Returns:
            {'success': True, 'admin': {'platformID', 'adminID', 'role'}}
            or {'success': False, 'message': str}
        """
