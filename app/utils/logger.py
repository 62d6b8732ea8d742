"""
Logging Configuration
Centralized logging setup for the billing service
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

LOG_DIR = os.getenv('LOG_DIR', 'logs')
LOG_FILE = 'hotspot-billing.log'
MAX_BYTES = 10485760  # 10MB
BACKUP_COUNT = 10


def _ensure_log_dir() -> bool:
    """Create the log directory if possible; report whether it exists."""
    if not os.path.exists(LOG_DIR):
        try:
            os.makedirs(LOG_DIR)
        except OSError:
            return False
    return True


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        logger.setLevel(logging.INFO)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(
            '%(levelname)s - %(name)s - %(message)s'
        ))
        logger.addHandler(console_handler)

        if _ensure_log_dir():
            file_handler = RotatingFileHandler(
                os.path.join(LOG_DIR, LOG_FILE),
                maxBytes=MAX_BYTES,
                backupCount=BACKUP_COUNT
            )
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            logger.addHandler(file_handler)

    return logger


def configure_app_logging(app):
    """
    Attach the error log to the Flask application logger

    Args:
        app: Flask application instance
    """
    app.logger.setLevel(logging.INFO)

    if app.config.get('TESTING') or not _ensure_log_dir():
        return

    error_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, 'error.log'),
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s\n%(pathname)s:%(lineno)d',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    app.logger.addHandler(error_handler)


class RequestLogger:
    """Middleware to log all requests"""

    def __init__(self, app=None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize request logging"""

        @app.before_request
        def log_request():
            from flask import request
            get_logger('request').info(
                f'{request.method} {request.path} - '
                f'IP: {request.remote_addr} - '
                f'User-Agent: {request.headers.get("User-Agent", "Unknown")}'
            )

        @app.after_request
        def log_response(response):
            from flask import request
            get_logger('response').info(
                f'{request.method} {request.path} - '
                f'Status: {response.status_code}'
            )
            return response
