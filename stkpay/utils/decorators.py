"""
Custom Decorators
Rate limiting for client-facing polling endpoints
"""

from functools import wraps
from flask import request, jsonify, current_app
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
import redis
import time
from stkpay.extensions import redis_client


def _client_id():
    if request.headers.get('X-Forwarded-For'):
        client_id = request.headers.get('X-Forwarded-For').split(',')[0].strip()
    else:
        client_id = request.remote_addr

    # Prefer the authenticated identity when a token is present
    try:
        verify_jwt_in_request(optional=True)
        identity = get_jwt_identity()
        if identity:
            client_id = f'user:{identity}'
    except (JWTExtendedException, PyJWTError):
        pass

    return client_id


def rate_limit(max_requests=None, window_seconds=60, key_prefix='rate_limit', config_key=None):
    """
    Rate limiting decorator

    Args:
        max_requests: Maximum number of requests allowed
        window_seconds: Time window in seconds
        key_prefix: Redis key prefix
        config_key: App config key read for max_requests at request time

    Usage:
        @rate_limit(config_key='STATUS_QUERY_RATE_LIMIT')
        def my_endpoint():
            return "Success"
    """

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            limit = max_requests
            if config_key:
                limit = current_app.config.get(config_key, limit)
            if not limit:
                return f(*args, **kwargs)

            current_window = int(time.time() / window_seconds)
            key = f'{key_prefix}:{_client_id()}:{current_window}'

            try:
                count = redis_client.incr(key)
                if count == 1:
                    redis_client.expire(key, window_seconds)

                if count > limit:
                    return jsonify({
                        'success': False,
                        'error': 'Rate limit exceeded',
                        'message': f'Maximum {limit} requests per {window_seconds} seconds',
                        'retry_after': window_seconds
                    }), 429

            except redis.RedisError as e:
                # If Redis fails, allow the request (fail open)
                current_app.logger.warning(f'Rate limit check failed: {str(e)}')

            return f(*args, **kwargs)

        return decorated_function

    return decorator
