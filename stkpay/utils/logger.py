"""
Logging Configuration
Centralized logging setup for the payment service
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

LOG_DIR = os.getenv('LOG_DIR', 'logs')


def _ensure_log_dir() -> bool:
    if not os.path.exists(LOG_DIR):
        try:
            os.makedirs(LOG_DIR)
        except OSError:
            return False
    return True


def mask_phone(phone) -> str:
    """Keep the first four and last three digits: 254712345678 -> 2547*****678"""
    if not phone:
        return ''
    phone = str(phone)
    if len(phone) <= 7:
        return '*' * len(phone)
    return phone[:4] + '*' * (len(phone) - 7) + phone[-3:]


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
                os.path.join(LOG_DIR, 'stkpay.log'),
                maxBytes=10485760,  # 10MB
                backupCount=10
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
    Configure logging for the Flask application and the stkpay package loggers

    Args:
        app: Flask application instance
    """
    level = logging.DEBUG if app.debug else logging.INFO
    app.logger.setLevel(level)
    logging.getLogger('stkpay').setLevel(level)

    if app.testing or not _ensure_log_dir():
        return

    error_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, 'error.log'),
        maxBytes=10485760,
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s\n%(pathname)s:%(lineno)d',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    app.logger.addHandler(error_handler)
    logging.getLogger('stkpay').addHandler(error_handler)


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
            logger = get_logger('stkpay.request')
            logger.info(
                f'{request.method} {request.path} - '
                f'IP: {request.remote_addr} - '
                f'User-Agent: {request.headers.get("User-Agent", "Unknown")}'
            )

        @app.after_request
        def log_response(response):
            from flask import request
            logger = get_logger('stkpay.response')
            logger.info(
                f'{request.method} {request.path} - '
                f'Status: {response.status_code} - '
                f'IP: {request.remote_addr}'
            )
            return response
