"""
API Blueprints Package
Registers all API blueprints
"""

from stkpay.api.mpesa import mpesa_bp
from stkpay.api.health import health_bp

# Export blueprints
__all__ = [
    'mpesa_bp',
    'health_bp',
    'register_blueprints'
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app

    Args:
        app: Flask application instance
    """

    url_base: str = '/api/v1'

    app.register_blueprint(mpesa_bp, url_prefix=f'{url_base}/mpesa')
    app.register_blueprint(health_bp, url_prefix=url_base)
