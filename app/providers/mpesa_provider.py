"""
M-Pesa Payment Provider
Based on the Safaricom Daraja API.

Supported flows
---------------
STK Push (Lipa na M-Pesa Online)
    POST /mpesa/stkpush/v1/processrequest
    POST /mpesa/stkpushquery/v1/query         (status poll)

C2B URL registration
    POST /mpesa/c2b/v1/registerurl

B2B / B2Pochi transfers (initiator authenticated)
    POST /mpesa/b2b/v1/paymentrequest
    POST /mpesa/b2pochi/v1/paymentrequest

Account balance, transaction status, reversal (initiator authenticated)
    POST /mpesa/accountbalance/v1/query
    POST /mpesa/transactionstatus/v1/query
    POST /mpesa/reversal/v1/request

Authentication
    GET  /oauth/v1/generate?grant_type=client_credentials  (Basic auth)
    Tokens are cached per provider instance and refreshed on expiry.

Initiator commands are answered asynchronously on result_url; the
OriginatorConversationID in the synchronous response is what the
result callback carries back.

Config keys
-----------
    consumer_key, consumer_secret   – Daraja app credentials (required)
    shortcode                       – Business shortcode
    shortcode_type                  – "Paybill" | "Till" | "Phone"
    passkey                         – STK passkey
    environment                     – "sandbox" (default) | "production"
    initiator_name                  – API operator username
    initiator_password              – Plain initiator password
    cert_path                       – Safaricom public certificate
    callback_url                    – STK callback endpoint
    result_url / queue_timeout_url  – initiator command endpoints
    timeout                         – HTTP timeout in seconds
"""

import base64
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from app.providers.base import (
    PaymentProvider,
    PaymentProviderError,
    PaymentInitializationError,
    PaymentVerificationError,
    TransferError
)
from app.utils.encryption import generate_security_credential
from app.utils.validators import format_phone_number

logger = logging.getLogger(__name__)

# Daraja base URLs
_BASE_URLS = {
    "sandbox":    "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}

# paymentRequestStatus values that appear in STK query responses
_STK_STATUS_MAP: Dict[str, str] = {
    "0":    "COMPLETE",
    "1":    "FAILED",
    "1032": "FAILED",
    "1037": "FAILED",
    "2001": "FAILED",
}


def _items_to_dict(items, key_field: str, value_field: str) -> Dict[str, Any]:
    if isinstance(items, dict):
        items = [items]
    return {
        item.get(key_field): item.get(value_field)
        for item in (items or [])
        if isinstance(item, dict) and item.get(key_field)
    }


class MPesaProvider(PaymentProvider):
    """M-Pesa (Daraja API) payment provider adapter."""

    # Daraja endpoint paths
    _EP_AUTH          = "/oauth/v1/generate"
    _EP_STK_PUSH      = "/mpesa/stkpush/v1/processrequest"
    _EP_STK_QUERY     = "/mpesa/stkpushquery/v1/query"
    _EP_C2B_REGISTER  = "/mpesa/c2b/v1/registerurl"
    _EP_B2B           = "/mpesa/b2b/v1/paymentrequest"
    _EP_B2POCHI       = "/mpesa/b2pochi/v1/paymentrequest"
    _EP_TX_STATUS     = "/mpesa/transactionstatus/v1/query"
    _EP_REVERSAL      = "/mpesa/reversal/v1/request"
    _EP_BALANCE       = "/mpesa/accountbalance/v1/query"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)

        self.consumer_key    = config.get("consumer_key") or ""
        self.consumer_secret = config.get("consumer_secret") or ""
        self.shortcode       = str(config.get("shortcode") or "")
        self.shortcode_type  = str(config.get("shortcode_type") or "Paybill")
        self.passkey         = config.get("passkey") or ""
        self.environment     = (config.get("environment") or "sandbox").lower()

        self.initiator_name      = config.get("initiator_name") or ""
        self.initiator_password  = config.get("initiator_password") or ""
        self.cert_path           = config.get("cert_path") or ""
        self.callback_url        = config.get("callback_url") or ""
        self.result_url          = config.get("result_url") or ""
        self.queue_timeout_url   = config.get("queue_timeout_url") or ""
        self.timeout             = config.get("timeout") or 30

        if not self.consumer_key or not self.consumer_secret:
            raise ValueError("MPesaProvider: 'consumer_key' and 'consumer_secret' are required")
        if self.environment not in _BASE_URLS:
            raise ValueError(f"MPesaProvider: environment must be 'sandbox' or 'production', got '{self.environment}'")

        self.base_url = _BASE_URLS[self.environment]

        # Token cache
        self._access_token: Optional[str] = None
        self._token_expiry: float = 0.0

        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    @property
    def is_paybill(self) -> bool:
        return self.shortcode_type.lower() == "paybill"

    # PaymentProvider ABC

    def initialize_payment(
        self,
        amount: float,
        currency: str,
        customer_data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Initiate an STK push.

        customer_data: phone
        metadata: account_reference, transaction_desc, party_b, transaction_type
        """
        metadata = metadata or {}
        return self.stk_push(
            amount,
            customer_data.get("phone", ""),
            metadata.get("account_reference") or self.shortcode,
            metadata.get("transaction_desc") or "Payment",
            party_b=metadata.get("party_b"),
            transaction_type=metadata.get("transaction_type"),
        )

    def stk_push(
        self,
        amount,
        phone: str,
        account_reference: str,
        transaction_desc: str,
        party_b: Optional[str] = None,
        transaction_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a Lipa na M-Pesa Online prompt to the payer's phone.

        Returns:
            transaction_id  – CheckoutRequestID
            status          – "PENDING"
            additional_data – Daraja response fields
        """
        if not self.passkey:
            raise PaymentInitializationError("MPesaProvider: 'passkey' is required for STK Push")
        if not self.callback_url:
            raise PaymentInitializationError("MPesaProvider: 'callback_url' is required for STK Push")

        msisdn = format_phone_number(phone)
        if not msisdn:
            raise PaymentInitializationError(f"MPesaProvider: invalid phone number '{phone}'")

        timestamp, password = self._generate_password()
        tx_type = transaction_type or (
            "CustomerPayBillOnline" if self.is_paybill else "CustomerBuyGoodsOnline"
        )

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password":          password,
            "Timestamp":         timestamp,
            "TransactionType":   tx_type,
            "Amount":            str(int(float(amount))),
            "PartyA":            msisdn,
            "PartyB":            str(party_b or self.shortcode),
            "PhoneNumber":       msisdn,
            "CallBackURL":       self.callback_url,
            "AccountReference":  str(account_reference)[:12],
            "TransactionDesc":   str(transaction_desc)[:13],
        }

        resp = self._post(self._EP_STK_PUSH, payload, context="stk_push",
                          error_cls=PaymentInitializationError)

        checkout_id = resp.get("CheckoutRequestID")
        if not checkout_id:
            raise PaymentInitializationError(
                "MPesaProvider [stk_push]: missing CheckoutRequestID",
                response_data=resp,
            )

        return {
            "transaction_id": checkout_id,
            "status":         "PENDING",
            "additional_data": {
                "checkout_request_id":  checkout_id,
                "merchant_request_id":  resp.get("MerchantRequestID"),
                "response_code":        resp.get("ResponseCode"),
                "response_description": resp.get("ResponseDescription"),
                "customer_message":     resp.get("CustomerMessage"),
                "raw_response":         resp,
            },
        }

    def verify_payment(self, provider_transaction_id: str) -> Dict[str, Any]:
        """Query the status of an STK Push by CheckoutRequestID."""
        timestamp, password = self._generate_password()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password":          password,
            "Timestamp":         timestamp,
            "CheckoutRequestID": provider_transaction_id,
        }

        resp = self._post(self._EP_STK_QUERY, payload, context="verify_payment",
                          error_cls=PaymentVerificationError)

        result_code = str(resp.get("ResultCode", ""))
        return {
            "status": _STK_STATUS_MAP.get(result_code, "PENDING"),
            "additional_data": {
                "checkout_request_id": resp.get("CheckoutRequestID"),
                "result_code":         result_code,
                "result_desc":         resp.get("ResultDesc"),
                "raw_response":        resp,
            },
        }

    def verify_webhook_signature(self, payload: Dict[str, Any], signature: Optional[str] = None) -> bool:
        """
        Daraja callbacks are unsigned; authenticity comes from matching the
        request code against a record this service created.
        """
        return isinstance(payload, dict)

    @staticmethod
    def parse_callback(payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Parse an M-Pesa callback.

        Handles the STK callback (Body.stkCallback) and the initiator
        command result (Result). Needs no credentials.
        """
        payload = payload if isinstance(payload, dict) else {}
        stk = (payload.get("Body") or {}).get("stkCallback") or {}
        if stk:
            return MPesaProvider._parse_stk_callback(stk)

        result = payload.get("Result") or {}
        if result:
            return MPesaProvider._parse_result_callback(result)

        logger.warning("MPesaProvider.parse_callback: unrecognised payload shape: %s", list(payload.keys()))
        return {"kind": "unknown", "raw_callback": payload}

    # Initiator commands

    def b2b_transfer(
        self,
        amount,
        destination_type: str,
        destination_shortcode: str,
        account_reference: str = "",
        remarks: str = "Business transfer",
    ) -> Dict[str, Any]:
        """
        Pay a till (BusinessBuyGoods) or paybill (BusinessPayBill) from this shortcode.
        """
        self._assert_initiator_config("b2b_transfer")

        is_paybill = str(destination_type).lower() == "paybill"
        payload = {
            "Initiator":              self.initiator_name,
            "SecurityCredential":     self._security_credential(),
            "CommandID":              "BusinessPayBill" if is_paybill else "BusinessBuyGoods",
            "SenderIdentifierType":   "4",
            "RecieverIdentifierType": "4" if is_paybill else "2",
            "Amount":                 str(amount),
            "PartyA":                 self.shortcode,
            "PartyB":                 str(destination_shortcode),
            "AccountReference":       str(account_reference) if is_paybill else "",
            "Remarks":                remarks,
            "QueueTimeOutURL":        self.queue_timeout_url,
            "ResultURL":              self.result_url,
        }

        return self._post(self._EP_B2B, payload, context="b2b_transfer", error_cls=TransferError)

    def b2pochi_transfer(
        self,
        amount,
        phone: str,
        reference: str,
        remarks: str = "",
        occasion: str = "",
    ) -> Dict[str, Any]:
        """Pay a Pochi la Biashara wallet identified by phone number."""
        self._assert_initiator_config("b2pochi_transfer")

        payload = {
            "OriginatorConversationID": reference,
            "InitiatorName":            self.initiator_name,
            "SecurityCredential":       self._security_credential(),
            "CommandID":                "BusinessPayToPochi",
            "Amount":                   str(amount),
            "PartyA":                   self.shortcode,
            "PartyB":                   format_phone_number(phone) or str(phone),
            "Remarks":                  remarks or reference,
            "QueueTimeOutURL":          self.queue_timeout_url,
            "ResultURL":                self.result_url,
            "Occassion":                occasion,
        }

        return self._post(self._EP_B2POCHI, payload, context="b2pochi_transfer", error_cls=TransferError)

    def account_balance(self, remarks: str = "Checking balance") -> Dict[str, Any]:
        self._assert_initiator_config("account_balance")

        payload = {
            "Initiator":          self.initiator_name,
            "SecurityCredential": self._security_credential(),
            "CommandID":          "AccountBalance",
            "PartyA":             self.shortcode,
            "IdentifierType":     "4",
            "Remarks":            remarks,
            "QueueTimeOutURL":    self.queue_timeout_url,
            "ResultURL":          self.result_url,
        }

        return self._post(self._EP_BALANCE, payload, context="account_balance", error_cls=TransferError)

    def transaction_status(self, transaction_id: str) -> Dict[str, Any]:
        """
        Query any transaction by its receipt. Different from verify_payment(),
        which takes a CheckoutRequestID.
        """
        self._assert_initiator_config("transaction_status")

        payload = {
            "Initiator":          self.initiator_name,
            "SecurityCredential": self._security_credential(),
            "CommandID":          "TransactionStatusQuery",
            "TransactionID":      transaction_id,
            "PartyA":             self.shortcode,
            "IdentifierType":     "4",
            "Remarks":            "Transaction status query",
            "Occasion":           "StatusQuery",
            "QueueTimeOutURL":    self.queue_timeout_url,
            "ResultURL":          self.result_url,
        }

        return self._post(self._EP_TX_STATUS, payload, context="transaction_status", error_cls=TransferError)

    def reverse(self, transaction_id: str, amount) -> Dict[str, Any]:
        """Reverse a receipt back to the payer. The outcome arrives on result_url."""
        self._assert_initiator_config("reverse")

        payload = {
            "Initiator":              self.initiator_name,
            "SecurityCredential":     self._security_credential(),
            "CommandID":              "TransactionReversal",
            "TransactionID":          transaction_id,
            "Amount":                 str(amount),
            "ReceiverParty":          self.shortcode,
            "RecieverIdentifierType": "11",
            "Remarks":                "Transaction reversal",
            "Occasion":               "Reversal",
            "QueueTimeOutURL":        self.queue_timeout_url,
            "ResultURL":              self.result_url,
        }

        return self._post(self._EP_REVERSAL, payload, context="reverse", error_cls=TransferError)

    def register_c2b_urls(
        self,
        confirmation_url: str,
        validation_url: str,
        response_type: str = "Completed",
    ) -> Dict[str, Any]:
        """
        Register C2B confirmation and validation URLs for this shortcode.
        """
        payload = {
            "ShortCode":       self.shortcode,
            "ResponseType":    response_type,
            "ConfirmationURL": confirmation_url,
            "ValidationURL":   validation_url,
        }
        return self._post(self._EP_C2B_REGISTER, payload, context="register_c2b_urls")

    # Private – callback parsers

    @staticmethod
    def _parse_stk_callback(stk: Dict[str, Any]) -> Dict[str, Any]:
        result_code = str(stk.get("ResultCode", ""))
        meta = _items_to_dict((stk.get("CallbackMetadata") or {}).get("Item"), "Name", "Value")

        return {
            "kind":                 "stk",
            "checkout_request_id":  stk.get("CheckoutRequestID", ""),
            "merchant_request_id":  stk.get("MerchantRequestID", ""),
            "result_code":          result_code,
            "result_desc":          stk.get("ResultDesc") or "",
            "success":              result_code == "0",
            "mpesa_receipt_number": meta.get("MpesaReceiptNumber"),
            "amount":               meta.get("Amount"),
            "phone_number":         meta.get("PhoneNumber"),
            "transaction_date":     meta.get("TransactionDate"),
        }

    @staticmethod
    def _parse_result_callback(result: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "kind":                       "result",
            "originator_conversation_id": result.get("OriginatorConversationID"),
            "conversation_id":            result.get("ConversationID"),
            "result_code":                str(result.get("ResultCode", "")),
            "result_desc":                result.get("ResultDesc"),
            "transaction_id":             result.get("TransactionID") or result.get("TransID"),
            "result_params":              _items_to_dict(
                (result.get("ResultParameters") or {}).get("ResultParameter"), "Key", "Value"
            ),
            "raw_result":                 result,
        }

    # Private – auth & HTTP helpers

    def _get_access_token(self) -> str | None:
        """Return a valid OAuth access token, refreshing if expired."""
        if self._access_token and time.time() < self._token_expiry:
            return self._access_token

        url = f"{self.base_url}{self._EP_AUTH}?grant_type=client_credentials"
        try:
            resp = requests.get(
                url,
                auth=(self.consumer_key, self.consumer_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PaymentProviderError(
                f"MPesaProvider: failed to obtain access token – {exc}"
            ) from exc

        if not resp.ok:
            try:
                body = resp.json()
            except ValueError:
                body = {"raw": resp.text}
            raise PaymentProviderError(
                f"MPesaProvider: failed to obtain access token – HTTP {resp.status_code}",
                status_code=resp.status_code,
                response_data=body,
            )

        data = resp.json()
        self._access_token = data.get("access_token", "")
        # Safaricom tokens expire in 3600s; cache with a 60s safety margin
        expires_in = int(data.get("expires_in", 3600))
        self._token_expiry = time.time() + expires_in - 60

        logger.debug("MPesaProvider: access token refreshed (expires in %ds)", expires_in)
        return self._access_token

    def _post(
        self, endpoint: str, payload: Dict[str, Any], context: str = "",
        error_cls=PaymentProviderError,
    ) -> Dict[str, Any]:
        """Execute an authenticated POST to a Daraja endpoint."""
        token = self._get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type":  "application/json",
        }

        url = f"{self.base_url}{endpoint}"
        try:
            resp = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise error_cls(
                f"MPesaProvider [{context}]: network error – {exc}"
            ) from exc

        return self._handle_response(resp, context, error_cls)

    def _handle_response(
        self, resp: requests.Response, context: str, error_cls=PaymentProviderError
    ) -> Dict[str, Any]:
        """Parse Daraja response, raising on error codes."""
        try:
            data: Dict[str, Any] = resp.json()
        except ValueError:
            data = {"raw": resp.text}

        logger.debug("MPesa [%s] HTTP %s: %s", context, resp.status_code, data)

        error_code = data.get("errorCode")
        error_msg  = (
            data.get("errorMessage")
            or data.get("ResponseDescription")
            or data.get("ResultDesc")
            or resp.text[:300]
        )

        if not resp.ok:
            raise error_cls(
                f"MPesaProvider [{context}] HTTP {resp.status_code}: {error_msg}",
                status_code=resp.status_code,
                response_data=data,
            )

        # Daraja sometimes returns 200 with an error in the body (e.g. "500.001.1001")
        if error_code and str(error_code).startswith(("500", "400", "401", "404")):
            raise error_cls(
                f"MPesaProvider [{context}] Daraja error {error_code}: {error_msg}",
                status_code=resp.status_code,
                response_data=data,
            )

        return data

    def _generate_password(self):
        """
        Generate the STK Push password and timestamp.

        Password = Base64(BusinessShortCode + Passkey + Timestamp)
        Timestamp = YYYYMMDDHHmmss
        """
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        password = base64.b64encode(raw.encode("utf-8")).decode("utf-8")
        return timestamp, password

    def _security_credential(self) -> str:
        try:
            return generate_security_credential(self.initiator_password, self.cert_path)
        except (OSError, ValueError) as exc:
            raise TransferError(
                f"MPesaProvider: cannot build security credential – {exc}"
            ) from exc

    def _assert_initiator_config(self, context: str) -> None:
        """Raise if initiator credentials are not configured."""
        missing = []
        if not self.initiator_name:
            missing.append("initiator_name")
        if not self.initiator_password:
            missing.append("initiator_password")
        if not self.result_url:
            missing.append("result_url")
        if not self.queue_timeout_url:
            missing.append("queue_timeout_url")
        if missing:
            raise TransferError(
                f"MPesaProvider [{context}]: missing config – {', '.join(missing)}"
            )
