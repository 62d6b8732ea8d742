"""
IntaSend Payment Provider

Collections (M-PESA STK push) and payouts (M-PESA B2C / B2B) for tenants
running in B2B mode, plus platform bill and SMS top-up collections.

    POST /api/v1/payment/mpesa-stk-push/     collection
    POST /api/v1/payment/status/             invoice status
    POST /api/v1/send-money/initiate/        payouts

Callbacks carry a shared `challenge` string configured on the IntaSend
dashboard instead of a signature.
"""

import hmac
import logging
from typing import Any, Dict, Optional

import requests

from app.providers.base import (
    PaymentProvider,
    PaymentInitializationError,
    PaymentVerificationError,
    TransferError
)
from app.utils.validators import format_phone_number

logger = logging.getLogger(__name__)

_BASE_URLS = {
    "live":    "https://payment.intasend.com",
    "sandbox": "https://sandbox.intasend.com",
}

PAYOUT_MPESA = "MPESA-B2C"
PAYOUT_MPESA_B2B = "MPESA-B2B"


class IntaSendProvider(PaymentProvider):
    """IntaSend REST adapter."""

    _EP_STK_PUSH = "/api/v1/payment/mpesa-stk-push/"
    _EP_STATUS   = "/api/v1/payment/status/"
    _EP_PAYOUT   = "/api/v1/send-money/initiate/"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)

        self.publishable_key = config.get("publishable_key") or ""
        self.secret_key      = config.get("secret_key") or ""
        self.challenge       = config.get("challenge") or ""
        self.test_mode       = bool(config.get("test_mode", True))
        self.timeout         = config.get("timeout") or 30

        if not self.secret_key:
            raise ValueError("IntaSendProvider: 'secret_key' is required")

        self.base_url = _BASE_URLS["sandbox" if self.test_mode else "live"]

        self._session = requests.Session()
        self._session.headers.update({
            "Content-Type":  "application/json",
            "Authorization": f"Bearer {self.secret_key}",
        })

    @staticmethod
    def normalize_status(state) -> str:
        """Map an IntaSend invoice state onto a payment status"""
        raw = str(state or "").upper()
        if raw in ("COMPLETED", "SUCCESS", "COMPLETE"):
            return "COMPLETE"
        if raw in ("FAILED", "CANCELLED"):
            return "FAILED"
        if raw == "PROCESSING":
            return "PROCESSING"
        return "PENDING"

    @staticmethod
    def looks_like_invoice_id(code: str) -> bool:
        """IntaSend invoice ids are short upper-case tokens, unlike Daraja ws_CO_ ids"""
        return bool(code) and code == code.upper() and len(code) < 8

    # PaymentProvider ABC

    def initialize_payment(
        self,
        amount: float,
        currency: str,
        customer_data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send an M-PESA STK prompt through IntaSend.

        Returns:
            transaction_id  – invoice id (stored as the payment's request code)
            status          – normalized invoice state
        """
        metadata = metadata or {}
        phone = format_phone_number(customer_data.get("phone", ""))
        if not phone:
            raise PaymentInitializationError("IntaSendProvider: a valid 'phone' is required")

        payload = {
            "public_key":   self.publishable_key,
            "amount":       str(amount),
            "currency":     currency or "KES",
            "phone_number": phone,
            "api_ref":      metadata.get("api_ref", "WiFi Payment"),
            "email":        customer_data.get("email", ""),
            "first_name":   customer_data.get("first_name", ""),
            "last_name":    customer_data.get("last_name", ""),
        }

        data = self._post(self._EP_STK_PUSH, payload, "initialize_payment", PaymentInitializationError)

        invoice = data.get("invoice") or {}
        invoice_id = invoice.get("invoice_id")
        if not invoice_id:
            raise PaymentInitializationError(
                "IntaSendProvider [initialize_payment]: missing invoice_id",
                response_data=data,
            )

        return {
            "transaction_id": invoice_id,
            "status":         self.normalize_status(invoice.get("state")),
            "additional_data": {"invoice": invoice, "raw_response": data},
        }

    def verify_payment(self, provider_transaction_id: str) -> Dict[str, Any]:
        """Look up an invoice's current state."""
        data = self._post(
            self._EP_STATUS,
            {"invoice_id": provider_transaction_id},
            "verify_payment",
            PaymentVerificationError,
        )

        invoice = data.get("invoice") or data.get("data") or data
        return {
            "status":         self.normalize_status(invoice.get("state")),
            "amount":         invoice.get("value"),
            "net_amount":     invoice.get("net_amount"),
            "failed_reason":  invoice.get("failed_reason"),
            "mpesa_reference": invoice.get("mpesa_reference"),
            "additional_data": {"invoice": invoice, "raw_response": data},
        }

    def verify_webhook_signature(self, payload: Dict[str, Any], signature: Optional[str] = None) -> bool:
        """Compare the callback's challenge field against the configured secret"""
        supplied = signature if signature is not None else (payload or {}).get("challenge")
        return self.verify_challenge(supplied)

    def verify_challenge(self, challenge) -> bool:
        if not self.challenge or challenge is None:
            return False
        return hmac.compare_digest(str(challenge), str(self.challenge))

    @staticmethod
    def parse_callback(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten a deposit (invoice) or withdrawal (file) callback"""
        payload = payload if isinstance(payload, dict) else {}
        if "file_id" in payload or "transactions" in payload:
            transactions = payload.get("transactions") or []
            first = transactions[0] if transactions else {}
            return {
                "kind":    "withdrawal",
                "file_id": payload.get("file_id"),
                "status":  first.get("status"),
                "amount":  first.get("amount"),
                "charge":  first.get("charge"),
                "transactions": transactions,
            }

        return {
            "kind":            "deposit",
            "invoice_id":      payload.get("invoice_id"),
            "state":           payload.get("state"),
            "status":          IntaSendProvider.normalize_status(payload.get("state")),
            "net_amount":      payload.get("net_amount"),
            "value":           payload.get("value"),
            "account":         payload.get("account"),
            "mpesa_reference": payload.get("mpesa_reference"),
            "failed_reason":   payload.get("failed_reason"),
        }

    # Payouts

    def payout_mpesa(self, phone: str, amount, narrative: str = "Withdrawal", name: str = "Client") -> Dict[str, Any]:
        """Send money to an M-PESA phone number"""
        account = format_phone_number(phone)
        if not account:
            raise TransferError(f"IntaSendProvider: invalid payout phone '{phone}'")

        return self._payout(PAYOUT_MPESA, [{
            "name":      name,
            "account":   account,
            "amount":    str(amount),
            "narrative": narrative,
        }])

    def payout_b2b(
        self,
        shortcode: str,
        account_type: str,
        account_reference: str,
        amount,
        narrative: str = "Withdrawal",
        name: str = "Client",
    ) -> Dict[str, Any]:
        """
        Pay a till or paybill.

        account_type: "TillNumber" | "PayBill"
        """
        return self._payout(PAYOUT_MPESA_B2B, [{
            "name":              name,
            "account":           str(shortcode),
            "account_type":      account_type,
            "account_reference": account_reference if account_type == "PayBill" else "",
            "amount":            str(amount),
            "narrative":         narrative,
        }])

    def _payout(self, provider: str, transactions: list) -> Dict[str, Any]:
        payload = {
            "provider":          provider,
            "currency":          "KES",
            "requires_approval": "NO",
            "transactions":      transactions,
        }
        return self._post(self._EP_PAYOUT, payload, "payout", TransferError)

    # HTTP

    def _post(self, endpoint: str, payload: Dict[str, Any], context: str, error_cls) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self._session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise error_cls(f"IntaSendProvider [{context}]: network error – {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}

        logger.debug("IntaSend [%s] HTTP %s: %s", context, resp.status_code, data)

        if not resp.ok:
            detail = resp.text[:300]
            if isinstance(data, dict):
                detail = data.get("detail") or data.get("errors") or detail
            raise error_cls(
                f"IntaSendProvider [{context}] HTTP {resp.status_code}: {detail}",
                status_code=resp.status_code,
                response_data=data,
            )

        return data
