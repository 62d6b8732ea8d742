from typing import Optional

from app.models import (
    Platform,
    PlatformConfig,
    SystemSettings,
    BlockedUser,
    Admin,
    Package,
    PPPoESubscription,
    PlatformBill,
    SMSWallet
)
from app.integrations import get_authenticator
from app.utils.validators import validate_phone_number


class PlatformService:
    """Read access to tenant settings and the product catalog"""

    @staticmethod
    def maintenance_reason() -> Optional[str]:
        """The maintenance message when the system is down for maintenance, else None"""
        settings = SystemSettings.query.first()
        if settings and settings.under_maintenance:
            return settings.maintenance_reason or 'System is under maintenance, try again later.'
        return None

    @staticmethod
    def get_platform(platform_id: str) -> Optional[Platform]:
        return Platform.query.filter_by(platform_id=platform_id).first()

    @staticmethod
    def get_config(platform_id: str) -> Optional[PlatformConfig]:
        return PlatformConfig.query.filter_by(platform_id=platform_id).first()

    @staticmethod
    def find_config_by_shortcode(shortcode: str) -> Optional[PlatformConfig]:
        if not shortcode:
            return None
        shortcode = str(shortcode)
        return (PlatformConfig.query.filter_by(mpesa_short_code=shortcode).first()
                or PlatformConfig.query.filter_by(mpesa_c2b_short_code=shortcode).first())

    @staticmethod
    def blocked_entry(platform_id: str, phone: str) -> Optional[BlockedUser]:
        candidates = {phone}
        local = validate_phone_number(phone)
        if local:
            candidates.update({local, '254' + local[1:]})
        return BlockedUser.query.filter(
            BlockedUser.platform_id == platform_id,
            BlockedUser.phone.in_(candidates),
            BlockedUser.status == 'blocked'
        ).first()

    @staticmethod
    def get_admin(admin_id: str) -> Optional[Admin]:
        if not admin_id:
            return None
        return Admin.query.filter_by(id=admin_id).first()

    @staticmethod
    def super_admins(platform_id: str) -> list:
        return Admin.query.filter_by(platform_id=platform_id, role='superuser').all()

    @staticmethod
    def authenticate(token: Optional[str]) -> dict:
        """Resolve a dashboard token to {'success', 'admin'} via the configured authenticator"""
        return get_authenticator().authenticate(token)

    # Catalog

    @staticmethod
    def find_package(platform_id: str, amount, package_id: str) -> Optional[Package]:
        """Package matching the tenant, the integer-truncated paid amount and the package id"""
        try:
            price = int(float(amount))
        except (TypeError, ValueError):
            return None
        return Package.query.filter_by(platform_id=platform_id, id=package_id, price=price).first()

    @staticmethod
    def get_package(platform_id: str, package_id: str) -> Optional[Package]:
        return Package.query.filter_by(platform_id=platform_id, id=package_id).first()

    @staticmethod
    def find_package_by_account(platform_id: str, account_number: str) -> Optional[Package]:
        if not account_number:
            return None
        return Package.query.filter_by(platform_id=platform_id, account_number=account_number).first()

    @staticmethod
    def find_pppoe_by_link(payment_link: str) -> Optional[PPPoESubscription]:
        if not payment_link:
            return None
        return PPPoESubscription.query.filter_by(payment_link=payment_link).first()

    @staticmethod
    def find_pppoe_by_account(platform_id: str, account_number: str) -> Optional[PPPoESubscription]:
        if not account_number:
            return None
        return PPPoESubscription.query.filter_by(platform_id=platform_id, account_number=account_number).first()

    @staticmethod
    def get_bill(bill_id: str) -> Optional[PlatformBill]:
        if not bill_id:
            return None
        return PlatformBill.query.filter_by(id=bill_id).first()

    @staticmethod
    def get_sms_wallet(platform_id: str) -> Optional[SMSWallet]:
        return SMSWallet.query.filter_by(platform_id=platform_id).first()
