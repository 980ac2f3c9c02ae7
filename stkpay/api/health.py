"""
Health Check and System Monitoring Endpoints
"""

from flask import Blueprint, jsonify
from datetime import datetime
import os
import psutil
import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from stkpay.extensions import db, redis_client
from stkpay.services.reconciliation_store import ReconciliationStore

health_bp = Blueprint('health', __name__)

SERVICE_NAME = 'stkpay'
SERVICE_VERSION = '1.0.0'


def _check_database():
    try:
        db.session.execute(text('SELECT 1'))
        return True, 'Database connection OK'
    except SQLAlchemyError as e:
        db.session.rollback()
        return False, f'Database error: {str(e)}'


def _check_redis():
    try:
        redis_client.set('health_check', 'ok', ex=10)
        if redis_client.get('health_check') == 'ok':
            return True, 'Redis connection OK'
        return False, 'Redis read/write failed'
    except redis.RedisError as e:
        return False, f'Redis error: {str(e)}'


@health_bp.route('/health', methods=['GET'])
def health_check():
    """
    Basic health check endpoint

    Returns:
        200 if system is healthy
        503 if system has issues
    """
    checks = {}
    overall_healthy = True

    for name, check in (('database', _check_database), ('redis', _check_redis)):
        healthy, message = check()
        checks[name] = {
            'status': 'healthy' if healthy else 'unhealthy',
            'message': message
        }
        overall_healthy = overall_healthy and healthy

    return jsonify({
        'status': 'healthy' if overall_healthy else 'unhealthy',
        'timestamp': datetime.utcnow().isoformat(),
        'service': SERVICE_NAME,
        'version': SERVICE_VERSION,
        'checks': checks
    }), 200 if overall_healthy else 503


@health_bp.route('/health/live', methods=['GET'])
def liveness_check():
    """
    Kubernetes liveness check
    Returns 200 if the application is running
    """
    return jsonify({
        'status': 'alive',
        'timestamp': datetime.utcnow().isoformat()
    }), 200


@health_bp.route('/health/ready', methods=['GET'])
def readiness_check():
    """
    Kubernetes readiness check
    Returns 200 if the application is ready to serve traffic
    """
    database_ok, _ = _check_database()
    try:
        redis_ok = bool(redis_client.ping())
    except redis.RedisError:
        redis_ok = False

    ready = database_ok and redis_ok
    return jsonify({
        'status': 'ready' if ready else 'not_ready',
        'checks': {
            'database': 'ready' if database_ok else 'not_ready',
            'redis': 'ready' if redis_ok else 'not_ready'
        },
        'timestamp': datetime.utcnow().isoformat()
    }), 200 if ready else 503


@health_bp.route('/metrics', methods=['GET'])
def metrics():
    """
    Process and reconciliation metrics
    """
    try:
        stats = ReconciliationStore(db.session).statistics()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    memory = psutil.virtual_memory()

    return jsonify({
        'timestamp': datetime.utcnow().isoformat(),
        'system': {
            'cpu_percent': psutil.cpu_percent(interval=None),
            'memory': {
                'total': memory.total,
                'available': memory.available,
                'percent': memory.percent
            },
            'process': {
                'pid': os.getpid(),
                'threads': psutil.Process().num_threads()
            }
        },
        'application': stats
    }), 200
