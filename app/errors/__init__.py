from app.errors.exceptions import (
    AppError,
    ValidationError,
    PaymentNotFound,
    Unauthorized,
    Forbidden,
    DuplicateRequest,
    InsufficientFunds,
    ConfigurationError,
)

__all__= [
    'AppError',
    'ValidationError',
    'PaymentNotFound',
    'Unauthorized',
    'Forbidden',
    'DuplicateRequest',
    'InsufficientFunds',
    'ConfigurationError',
]
