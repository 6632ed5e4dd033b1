"""Flask application factory."""
import logging
import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from backoffice.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Prometheus metrics instrumentation
    from backoffice.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust X-Forwarded-* from the reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Error Handlers
    from backoffice.exceptions import BackofficeError

    @app.errorhandler(BackofficeError)
    def handle_backoffice_error(error):
        """Map business errors to their JSON body and status code."""
        if error.status_code >= 500:
            app.logger.error(f"BackofficeError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"BackofficeError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'success': False, 'error': error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'success': False, 'error': 'Error interno del servidor'}), 500

    # Register blueprints
    from backoffice.blueprints.main import main_bp
    from backoffice.blueprints.metrics import metrics_bp
    from backoffice.blueprints.stock_counts import stock_counts_bp
    from backoffice.blueprints.materials import materials_bp
    from backoffice.blueprints.stock import stock_bp
    from backoffice.blueprints.current_accounts import current_accounts_bp
    from backoffice.blueprints.units import units_bp
    from backoffice.blueprints.recipes import recipes_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(stock_counts_bp)
    app.register_blueprint(materials_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(current_accounts_bp)
    app.register_blueprint(units_bp)
    app.register_blueprint(recipes_bp)

    # Register CLI commands
    from backoffice.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
