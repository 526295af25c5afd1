"""Flask application factory."""
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from qrorder.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _init_sentry(app)

    # Flask-Mail for order confirmations
    from qrorder.services.email_service import init_mail, OrderConfirmationMailer
    init_mail(app)

    # Prometheus metrics instrumentation
    from qrorder.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    if app.config.get('ENV') == 'production':
        _trust_reverse_proxy(app)

    # Initialize database
    init_db(app)

    # Payment processor client and order notifier (tests swap these)
    from qrorder.services.mercadopago_service import MercadoPagoService
    app.extensions.setdefault('processor_factory', MercadoPagoService)
    app.extensions.setdefault('order_notifier', OrderConfirmationMailer())

    # Error Handlers
    from qrorder.exceptions import OrderingError

    @app.errorhandler(OrderingError)
    def handle_ordering_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"OrderingError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"OrderingError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception on {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from qrorder.blueprints.orders import orders_bp
    from qrorder.blueprints.payments import payments_bp
    from qrorder.blueprints.webhooks import webhooks_bp
    from qrorder.blueprints.metrics import metrics_bp

    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from qrorder.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")
    app.logger.info(f"PUBLIC_BASE_URL={app.config.get('PUBLIC_BASE_URL')}")

    return app


def _init_sentry(app):
    """Report errors to Sentry when a DSN is configured for production."""
    dsn = os.getenv('SENTRY_DSN')
    env = os.getenv('FLASK_ENV', app.config.get('ENV') or 'production')
    if not dsn or env != 'production':
        return

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=float(os.getenv('SENTRY_TRACES_SAMPLE_RATE', '0.1')),
        environment=env,
        release=os.getenv('GIT_COMMIT', 'unknown'),
    )
    app.logger.info("[SENTRY] error reporting enabled")


def _trust_reverse_proxy(app):
    """Honour X-Forwarded-* from the single Nginx hop so redirect URLs keep https."""
    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)
