import json
from functools import wraps
from flask import request, jsonify
from app.extensions import redis_client
from app.utils.logger import get_logger

logger = get_logger(__name__)


class IdempotencyService:
    """Cache mutation responses in Redis keyed by the client's Idempotency-Key"""

    DEFAULT_TTL = 86400  # 24 hours

    @staticmethod
    def get_key(idempotency_key: str, scope: str = '') -> str:
        """Generate Redis key, namespaced by endpoint"""
        if scope:
            return f'idempotency:{scope}:{idempotency_key}'
        return f'idempotency:{idempotency_key}'

    @staticmethod
    def get_cached_response(idempotency_key: str, scope: str = ''):
        cached = redis_client.get(IdempotencyService.get_key(idempotency_key, scope))

        if cached:
            return json.loads(cached)
        return None

    @staticmethod
    def cache_response(idempotency_key: str, response_data: dict, ttl: int = DEFAULT_TTL, scope: str = ''):
        key = IdempotencyService.get_key(idempotency_key, scope)
        redis_client.set(key, json.dumps(response_data), ex=ttl)

    @staticmethod
    def delete_cached_response(idempotency_key: str, scope: str = ''):
        redis_client.delete(IdempotencyService.get_key(idempotency_key, scope))


def idempotent(ttl: int = IdempotencyService.DEFAULT_TTL):
    """
    Replay the first response for a repeated Idempotency-Key.

    Requests without the header run normally. Server errors are not cached
    so the client can retry them.
    """

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            idempotency_key = request.headers.get('Idempotency-Key')

            if not idempotency_key:
                return f(*args, **kwargs)

            scope = request.endpoint or ''
            cached = IdempotencyService.get_cached_response(idempotency_key, scope)

            if cached:
                status_code = cached.pop('_status_code', 200)
                logger.info(f'Replaying cached response for idempotency key {idempotency_key}')
                return jsonify(cached), status_code

            result = f(*args, **kwargs)

            if isinstance(result, tuple):
                response_data, status_code = result
            else:
                response_data, status_code = result, getattr(result, 'status_code', 200)

            if status_code < 500:
                if hasattr(response_data, 'get_json'):
                    response_json = dict(response_data.get_json() or {})
                else:
                    response_json = dict(response_data)

                response_json['_status_code'] = status_code
                IdempotencyService.cache_response(idempotency_key, response_json, ttl, scope)

            return result

        return decorated_function

    return decorator
