from flask import Flask
from flask_cors import CORS
from app.extensions import db, migrate, jwt, redis_client, socketio, celery_app
from app.extentions.celery_extention import init_celery
from app.config import config
from app.utils.logger import configure_app_logging, RequestLogger


def create_app(config_name='development'):
    """Application factory pattern"""
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    redis_client.init_app(app)
    socketio.init_app(app, cors_allowed_origins="*")
    init_celery(celery_app, app)
    CORS(app)

    configure_app_logging(app)
    RequestLogger(app)

    # Register models and socket handlers
    from app import models  # noqa: F401
    from app.websockets import events  # noqa: F401

    # Register blueprints
    from app.api import register_blueprints
    register_blueprints(app)

    # Error handlers
    register_error_handlers(app)

    return app


def register_error_handlers(app):
    """Register error handlers"""
    from flask import jsonify
    from app.errors import AppError

    @app.errorhandler(AppError)
    def app_error(error):
        return jsonify({
            'success': False,
            'error': error.error,
            'message': error.message
        }), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({'success': False, 'error': 'Bad request', 'message': str(error)}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({'success': False, 'error': 'Unauthorized', 'message': str(error)}), 401

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Not found', 'message': str(error)}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'success': False, 'error': 'Internal server error', 'message': str(error)}), 500
