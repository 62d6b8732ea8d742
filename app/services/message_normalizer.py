"""
Message Normalizer
Maps raw provider error/status strings to a canonical ErrorKind and a friendly message
"""

from enum import Enum
from typing import Optional


GENERIC_ERROR_MESSAGE = 'An error occurred. Please try again.'


class ErrorKind(str, Enum):
    CANCELLED_BY_USER = 'CANCELLED_BY_USER'
    PHONE_UNREACHABLE = 'PHONE_UNREACHABLE'
    PUSH_REQUEST_ERROR = 'PUSH_REQUEST_ERROR'
    INSUFFICIENT_FUNDS = 'INSUFFICIENT_FUNDS'
    WRONG_PIN = 'WRONG_PIN'
    INVALID_AMOUNT = 'INVALID_AMOUNT'
    DUPLICATE_REQUEST = 'DUPLICATE_REQUEST'
    PROMPT_TIMEOUT = 'PROMPT_TIMEOUT'
    TRANSACTION_IN_PROGRESS = 'TRANSACTION_IN_PROGRESS'
    PROVIDER_BUSY = 'PROVIDER_BUSY'
    INVALID_PHONE = 'INVALID_PHONE'
    AUTH_FAILED = 'AUTH_FAILED'
    INVALID_SHORTCODE = 'INVALID_SHORTCODE'
    INVALID_PASSKEY = 'INVALID_PASSKEY'
    INVALID_CALLBACK_URL = 'INVALID_CALLBACK_URL'


MESSAGES = {
    ErrorKind.CANCELLED_BY_USER: 'You cancelled the payment request!',
    ErrorKind.PHONE_UNREACHABLE: 'The phone number trying to pay is switched off.',
    ErrorKind.PUSH_REQUEST_ERROR: 'There was an issue requesting payment, try again.',
    ErrorKind.INSUFFICIENT_FUNDS: 'You have insufficient funds in your M-PESA balance.',
    ErrorKind.WRONG_PIN: 'You entered the wrong M-PESA PIN.',
    ErrorKind.INVALID_AMOUNT: 'The amount is invalid. Enter a valid amount and try again.',
    ErrorKind.DUPLICATE_REQUEST: 'This request is already being processed. Please wait and check again.',
    ErrorKind.PROMPT_TIMEOUT: 'The M-PESA prompt timed out, retry the payment.',
    ErrorKind.TRANSACTION_IN_PROGRESS: 'Another transaction is in progress for this number. Please wait and try again.',
    ErrorKind.PROVIDER_BUSY: 'M-PESA is busy at the moment. Please try again shortly.',
    ErrorKind.INVALID_PHONE: 'The phone number is invalid. Confirm the number and try again.',
    ErrorKind.AUTH_FAILED: 'M-PESA authentication failed. Check the consumer key/secret and try again.',
    ErrorKind.INVALID_SHORTCODE: 'The M-PESA shortcode is invalid. Check the shortcode in settings.',
    ErrorKind.INVALID_PASSKEY: 'The M-PESA passkey is invalid. Update it and try again.',
    ErrorKind.INVALID_CALLBACK_URL: 'The callback URL is invalid or unreachable. Update it and try again.',
}

# Ordered: multi-keyword and specific rules precede single-keyword generic ones.
# Each rule lists alternatives; an alternative matches when all its keywords are present.
RULES = [
    (ErrorKind.CANCELLED_BY_USER, [('request canceled by user',), ('request cancelled by user',)]),
    (ErrorKind.PHONE_UNREACHABLE, [('ds timeout',), ('user unreachable',)]),
    (ErrorKind.PUSH_REQUEST_ERROR, [('issue with push request',), ('general push request error',)]),
    (ErrorKind.INSUFFICIENT_FUNDS, [('insufficient balance',), ('insufficient funds',)]),
    (ErrorKind.WRONG_PIN, [('initiator', 'invalid'), ('security credential', 'invalid')]),
    (ErrorKind.INVALID_AMOUNT, [('invalid amount',)]),
    (ErrorKind.DUPLICATE_REQUEST, [('duplicate', 'request')]),
    (ErrorKind.PROMPT_TIMEOUT, [('timeout',), ('timed out',)]),
    (ErrorKind.TRANSACTION_IN_PROGRESS, [('unable to lock subscriber',), ('transaction in process',)]),
    (ErrorKind.PROVIDER_BUSY, [('system busy',), ('system error',)]),
    (ErrorKind.INVALID_PHONE, [('invalid msisdn',), ('invalid phone',)]),
    (ErrorKind.AUTH_FAILED, [('access token',)]),
    (ErrorKind.INVALID_SHORTCODE, [('shortcode',), ('short code',)]),
    (ErrorKind.INVALID_PASSKEY, [('passkey',)]),
    (ErrorKind.INVALID_CALLBACK_URL, [('callbackurl',), ('callback url',)]),
]


class MessageNormalizer:

    @staticmethod
    def classify(raw_message) -> Optional[ErrorKind]:
        """Return the first ErrorKind whose rule matches, or None"""
        if not raw_message:
            return None

        text = str(raw_message).lower()
        for kind, alternatives in RULES:
            for keywords in alternatives:
                if all(keyword in text for keyword in keywords):
                    return kind
        return None

    @staticmethod
    def to_user_message(raw_message) -> str:
        """
        Translate a provider message for end users.

        Unmatched text is returned verbatim; empty input yields the generic message.
        """
        if raw_message is None or not str(raw_message).strip():
            return GENERIC_ERROR_MESSAGE

        kind = MessageNormalizer.classify(raw_message)
        if kind is None:
            return str(raw_message)
        return MESSAGES[kind]
