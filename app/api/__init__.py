"""
API Blueprints Package
Registers all API blueprints
"""

from app.api.payments import payments_bp
from app.api.webhooks import webhooks_bp
from app.api.health import health_bp

__all__ = [
    'payments_bp',
    'webhooks_bp',
    'health_bp'
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app

    Payment routes and provider callbacks share the /mpesa prefix that
    callback URLs registered with Daraja point at.
    """
    app.register_blueprint(payments_bp, url_prefix='/mpesa')
    app.register_blueprint(webhooks_bp, url_prefix='/mpesa')
    app.register_blueprint(health_bp, url_prefix='/api/v1')
