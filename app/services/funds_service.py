"""
Funds Accounting
Per-tenant balance, deposit and withdrawal totals, updated with atomic SQL increments
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.errors import InsufficientFunds
from app.models import FundsAccount
from app.utils.logger import get_logger

logger = get_logger(__name__)


class FundsService:

    @staticmethod
    def get(platform_id: str) -> Optional[FundsAccount]:
        return FundsAccount.query.filter_by(platform_id=platform_id).first()

    @staticmethod
    def credit(platform_id: str, net_amount) -> FundsAccount:
        """
        Add a confirmed deposit to the tenant's balance, creating the account on first deposit.
        """
        amount = Decimal(str(net_amount))

        updated = FundsService._increment(platform_id, amount)
        if not updated:
            try:
                db.session.add(FundsAccount(
                    platform_id=platform_id,
                    balance=amount,
                    deposits=amount,
                    withdrawals=0
                ))
                db.session.commit()
            except IntegrityError:
                # Another worker created the row first
                db.session.rollback()
                FundsService._increment(platform_id, amount)

        logger.info(f'Credited {amount} to {platform_id}')
        return FundsService._fresh(platform_id)

    @staticmethod
    def _increment(platform_id: str, amount: Decimal) -> int:
        updated = FundsAccount.query.filter_by(platform_id=platform_id).update({
            FundsAccount.balance: FundsAccount.balance + amount,
            FundsAccount.deposits: FundsAccount.deposits + amount,
            FundsAccount.updated_at: datetime.utcnow(),
        }, synchronize_session=False)
        db.session.commit()
        return updated

    @staticmethod
    def debit(platform_id: str, gross_amount) -> FundsAccount:
        """
        Subtract a confirmed withdrawal, guarded by balance >= amount in the same UPDATE.

        Raises:
            InsufficientFunds: the balance does not cover the amount
        """
        amount = Decimal(str(gross_amount))

        updated = FundsAccount.query.filter(
            FundsAccount.platform_id == platform_id,
            FundsAccount.balance >= amount
        ).update({
            FundsAccount.balance: FundsAccount.balance - amount,
            FundsAccount.withdrawals: FundsAccount.withdrawals + amount,
            FundsAccount.updated_at: datetime.utcnow(),
        }, synchronize_session=False)
        db.session.commit()

        if not updated:
            logger.warning(f'Debit of {amount} refused for {platform_id}: insufficient funds')
            raise InsufficientFunds('Insufficient funds for withdrawal!')

        logger.info(f'Debited {amount} from {platform_id}')
        return FundsService._fresh(platform_id)

    @staticmethod
    def record_settlement_balance(platform_id: str, value) -> Optional[FundsAccount]:
        """Store the provider-reported shortcode balance"""
        account = FundsService.get(platform_id)
        if account is None:
            account = FundsAccount(platform_id=platform_id, balance=0, deposits=0, withdrawals=0)
            db.session.add(account)
        account.short_code_balance = Decimal(str(value))
        db.session.commit()
        return account

    @staticmethod
    def remember_balance_query(platform_id: str, originator_id: str) -> FundsAccount:
        """Keep the originator id of the latest balance query for untracked result callbacks"""
        account = FundsService.get(platform_id)
        if account is None:
            account = FundsAccount(platform_id=platform_id, balance=0, deposits=0, withdrawals=0)
            db.session.add(account)
        account.short_identifier = originator_id
        db.session.commit()
        return account

    @staticmethod
    def find_by_short_identifier(originator_id: str) -> Optional[FundsAccount]:
        if not originator_id:
            return None
        return FundsAccount.query.filter_by(short_identifier=originator_id).first()

    @staticmethod
    def _fresh(platform_id: str) -> Optional[FundsAccount]:
        account = FundsService.get(platform_id)
        if account is not None:
            db.session.refresh(account)
        return account
