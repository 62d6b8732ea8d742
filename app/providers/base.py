from abc import ABC, abstractmethod
from typing import Dict, Any, Optional


class PaymentProvider(ABC):
    """Abstract base class for payment providers"""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize provider with configuration

        Args:
            config: Provider-specific configuration
        """
        self.config = config

    @abstractmethod
    def initialize_payment(
            self,
            amount: float,
            currency: str,
            customer_data: Dict[str, Any],
            metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Start a mobile-money collection

        Args:
            amount: Payment amount
            currency: Currency code ('KES')
            customer_data: Customer information (phone)
            metadata: account_reference, transaction_desc and provider extras

        Returns:
            Dict containing:
                - transaction_id: Provider request code (CheckoutRequestID / invoice id)
                - status: Payment status
                - additional_data: Provider-specific data
        """
        pass

    @abstractmethod
    def verify_payment(self, provider_transaction_id: str) -> Dict[str, Any]:
        """
        Query payment status with the provider

        Returns:
            Dict containing:
                - status: PENDING | PROCESSING | COMPLETE | FAILED
                - additional_data: Provider-specific data
        """
        pass

    @abstractmethod
    def verify_webhook_signature(self, payload: Dict[str, Any], signature: Optional[str] = None) -> bool:
        """
        Check that a callback really came from the provider
        """
        pass


class PaymentProviderError(Exception):
    """
    Base exception for provider errors.

    Carries the HTTP status and decoded body so callers can diagnose
    credential failures.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_data = response_data

    @property
    def provider_message(self) -> str:
        """The provider's own error text when the body carries one"""
        if isinstance(self.response_data, dict):
            for key in ('errorMessage', 'ResponseDescription', 'ResultDesc', 'message', 'detail', 'error'):
                value = self.response_data.get(key)
                if value:
                    return str(value)
        return self.message


class PaymentInitializationError(PaymentProviderError):
    """Raised when payment initialization fails"""
    pass


class PaymentVerificationError(PaymentProviderError):
    """Raised when payment verification fails"""
    pass


class TransferError(PaymentProviderError):
    """Raised when an outbound transfer, payout or initiator command fails"""
    pass
