import json
from functools import wraps
from typing import Optional

import redis
from flask import request, jsonify, current_app
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from stkpay.extensions import redis_client

ANONYMOUS = 'anonymous'


def _owner() -> Optional[str]:
    """Identity of the caller, if the request carries a valid token"""
    try:
        verify_jwt_in_request(optional=True)
        identity = get_jwt_identity()
    except (JWTExtendedException, PyJWTError):
        return None
    return str(identity) if identity else None


class IdempotencyService:
    """
    Replay successful responses for repeated Idempotency-Key headers using Redis.

    Keys are namespaced by caller identity, so two clients that pick the same
    Idempotency-Key never see each other's responses.
    """

    DEFAULT_TTL = 86400  # 24 hours

    @staticmethod
    def get_key(idempotency_key: str, scope: str = 'stkpush', owner: Optional[str] = None) -> str:
        """Generate Redis key for idempotency"""
        return f'idempotency:{scope}:{owner or ANONYMOUS}:{idempotency_key}'

    @staticmethod
    def get_cached_response(idempotency_key: str, scope: str = 'stkpush', owner: Optional[str] = None):
        """Get cached response for idempotency key"""
        cached = redis_client.get(IdempotencyService.get_key(idempotency_key, scope, owner))

        if cached:
            return json.loads(cached)
        return None

    @staticmethod
    def cache_response(idempotency_key: str, body: dict, status_code: int,
                       ttl: int = DEFAULT_TTL, scope: str = 'stkpush', owner: Optional[str] = None):
        """Cache response for future idempotent requests"""
        redis_client.set(
            IdempotencyService.get_key(idempotency_key, scope, owner),
            json.dumps({'body': body, 'status_code': status_code}),
            ex=ttl
        )

    @staticmethod
    def delete_cached_response(idempotency_key: str, scope: str = 'stkpush', owner: Optional[str] = None):
        """Delete cached response"""
        redis_client.delete(IdempotencyService.get_key(idempotency_key, scope, owner))


def idempotent(ttl: int = IdempotencyService.DEFAULT_TTL, scope: str = 'stkpush'):
    """
    Decorator replaying the first successful response for an Idempotency-Key.

    The header is optional. Only 2xx responses are cached, so a request that
    failed upstream can be retried with the same key. Replays are limited to
    the identity that made the original request.
    """

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            idempotency_key = request.headers.get('Idempotency-Key')

            if not idempotency_key:
                return f(*args, **kwargs)

            owner = _owner()

            try:
                cached = IdempotencyService.get_cached_response(idempotency_key, scope, owner)
            except redis.RedisError as e:
                current_app.logger.warning(f'Idempotency lookup failed: {str(e)}')
                cached = None

            if cached:
                response = jsonify(cached['body'])
                response.headers['Idempotent-Replayed'] = 'true'
                return response, cached['status_code']

            result = f(*args, **kwargs)

            response, status_code = result if isinstance(result, tuple) else (result, 200)
            if 200 <= status_code < 300:
                body = response.get_json() if hasattr(response, 'get_json') else response
                try:
                    IdempotencyService.cache_response(idempotency_key, body, status_code, ttl, scope, owner)
                except redis.RedisError as e:
                    current_app.logger.warning(f'Idempotency cache write failed: {str(e)}')

            return result

        return decorated_function

    return decorator
