"""
Custom Decorators
Rate limiting and timing decorators
"""

from functools import wraps
from flask import request, jsonify, current_app
import time
from app.extensions import redis_client


def rate_limit(max_requests=100, window_seconds=60, key_prefix='rate_limit'):
    """
    Rate limiting decorator

    Args:
        max_requests: Maximum number of requests allowed
        window_seconds: Time window in seconds
        key_prefix: Redis key prefix

    Usage:
        @rate_limit(max_requests=10, window_seconds=60)
        def stk_push():
            ...
    """

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if request.headers.get('X-Forwarded-For'):
                client_id = request.headers.get('X-Forwarded-For').split(',')[0].strip()
            else:
                client_id = request.remote_addr

            current_window = int(time.time() / window_seconds)
            key = f'{key_prefix}:{request.endpoint}:{client_id}:{current_window}'

            try:
                count = redis_client.get(key)
                count = 0 if count is None else int(count)

                if count >= max_requests:
                    return jsonify({
                        'success': False,
                        'type': 'error',
                        'message': f'Too many requests. Maximum {max_requests} per {window_seconds} seconds',
                        'retry_after': window_seconds
                    }), 429

                redis_client.set(key, count + 1, ex=window_seconds)

            except Exception as e:
                # Fail open when Redis is unavailable
                current_app.logger.warning(f'Rate limit check failed: {str(e)}')

            return f(*args, **kwargs)

        return decorated_function

    return decorator


def log_execution_time(f):
    """
    Log execution time of a function

    Usage:
        @log_execution_time
        def reconcile():
            ...
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        from app.utils.logger import get_logger
        logger = get_logger(__name__)

        start_time = time.time()
        result = f(*args, **kwargs)
        execution_time = time.time() - start_time

        logger.info(f'{f.__name__} executed in {execution_time:.4f} seconds')

        return result

    return decorated_function
