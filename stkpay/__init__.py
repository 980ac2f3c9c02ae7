import os

from flask import Flask, jsonify
from flask_cors import CORS

from stkpay.config import config
from stkpay.errors import AppError
from stkpay.ext.celery_extension import init_celery
from stkpay.extensions import db, migrate, jwt, redis_client, socketio, celery_app
from stkpay.utils.logger import configure_app_logging, RequestLogger


def create_app(config_name=None):
    """Application factory pattern"""
    app = Flask(__name__)

    # Load configuration
    config_name = config_name or os.getenv('FLASK_ENV', 'development')
    app.config.from_object(config.get(config_name, config['default']))

    # Initialize extensions
    from stkpay import models  # noqa: F401  (registers tables with SQLAlchemy)
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    redis_client.init_app(app)
    socketio.init_app(app, cors_allowed_origins="*")
    CORS(app)
    init_celery(celery_app, app)

    configure_app_logging(app)
    RequestLogger(app)

    # Register blueprints
    from stkpay.api import register_blueprints
    register_blueprints(app)

    # Background tasks
    from stkpay.tasks import reconcile_callbacks_task  # noqa: F401

    # Error handlers
    register_error_handlers(app)

    return app


def register_error_handlers(app):
    """Register error handlers"""

    @app.errorhandler(AppError)
    def app_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({'success': False, 'error': 'Bad request', 'message': str(error)}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Not found', 'message': str(error)}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed', 'message': str(error)}), 405

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'success': False, 'error': 'Internal server error', 'message': str(error)}), 500
