"""
Utils Package
Utility functions and helpers
"""

from app.utils.logger import get_logger, configure_app_logging, RequestLogger
from app.utils.decorators import rate_limit, log_execution_time
from app.utils.periods import add_period, package_minutes
from app.utils.validators import (
    validate_phone_number,
    format_phone_number,
    validate_withdrawal_amount,
    format_message,
    to_decimal
)

__all__ = [
    'get_logger',
    'configure_app_logging',
    'RequestLogger',
    'rate_limit',
    'log_execution_time',
    'add_period',
    'package_minutes',
    'validate_phone_number',
    'format_phone_number',
    'validate_withdrawal_amount',
    'format_message',
    'to_decimal'
]
