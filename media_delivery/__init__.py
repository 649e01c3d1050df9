"""
Flask application factory and configuration.

This module contains the Flask application factory that loads the delivery
configuration, wires the delivery services and registers the blueprints and
error handlers.
"""
import os
import uuid

from flask import Flask, g, request

from config.settings import DevelopmentConfig, ProductionConfig, TestingConfig


def create_app(config_class=None, test_config=None):
    """
    Create and configure Flask application.

    Args:
        config_class: Configuration class to use. If None, will be determined
                     from FLASK_ENV environment variable.
        test_config: Optional mapping applied on top of the configuration
                     class before any extension is initialized.

    Returns:
        Flask: Configured Flask application instance
    """
    preferred_instance = os.environ.get("MEDIA_DELIVERY_INSTANCE_PATH")
    if preferred_instance:
        os.makedirs(preferred_instance, exist_ok=True)
        app = Flask(__name__, instance_path=preferred_instance)
    else:
        app = Flask(__name__)

    if config_class is None:
        env = os.environ.get("FLASK_ENV", "development")
        if env == "production":
            config_class = ProductionConfig
        elif env == "testing":
            config_class = TestingConfig
        else:
            config_class = DevelopmentConfig

    app.config.from_object(config_class)
    if test_config:
        app.config.update(test_config)

    # Configure structured logging early (no file handlers during tests)
    from media_delivery.structured_logging import configure_structlog

    configure_structlog(app, role="web")

    # Load the delivery configuration once; a broken config must fail startup
    from media_delivery.extension import init_delivery

    delivery = init_delivery(app)

    register_request_hooks(app)
    register_blueprints(app, delivery)
    register_error_handlers(app)

    return app


def register_request_hooks(app):
    """Tag every request with an id that logs and error bodies carry."""

    @app.before_request
    def _assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def _echo_request_id(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response


def register_blueprints(flask_app, delivery):
    """
    Register Flask blueprints.

    Image and video routes are mounted at the prefixes named in the delivery
    settings so outbound URLs and inbound routes always agree.
    """
    from media_delivery.api import api_bp, image_bp, video_bp

    # Import route modules so they register on the shared blueprints
    import media_delivery.api.health  # noqa: F401
    import media_delivery.api.media  # noqa: F401

    settings = delivery.config.settings
    flask_app.register_blueprint(api_bp)
    flask_app.register_blueprint(image_bp, url_prefix=settings.route)
    flask_app.register_blueprint(video_bp, url_prefix=settings.video_route)


def register_error_handlers(app):
    """
    Register JSON error handlers for the statuses routes abort with.

    Args:
        app: Flask application instance
    """
    from media_delivery.error_utils import error_response

    @app.errorhandler(403)
    def forbidden(error):
        return error_response(403)

    @app.errorhandler(404)
    def not_found(error):
        return error_response(404)

    @app.errorhandler(412)
    def precondition_failed(error):
        return error_response(412)

    @app.errorhandler(500)
    def internal_error(error):
        return error_response(500)

    @app.errorhandler(504)
    def gateway_timeout(error):
        return error_response(504)
