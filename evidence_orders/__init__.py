from flask import Flask, jsonify
from flask_migrate import Migrate
from flask_login import LoginManager
from werkzeug.exceptions import HTTPException
from evidence_orders.extensions import db
from evidence_orders.config import Config
from evidence_orders.middleware import (
    load_actor_from_request,
    setup_auth_middleware,
)
from evidence_orders.services.clock import SystemClock
import logging

logger = logging.getLogger(__name__)

migrate = Migrate()
login_manager = LoginManager()


def _configure_logging(app):
    # Configure logging once per process
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(app.config['LOG_FILE']),
            logging.StreamHandler()
        ]
    )


def _register_error_handlers(app):

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Unhandled error")
        return jsonify({'error': 'Internal server error'}), 500


def create_app(config_class=Config, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_class)
    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    app.extensions['order_clock'] = clock or SystemClock()

    @login_manager.request_loader
    def load_actor(request):
        return load_actor_from_request(request)

    # Register blueprints
    from evidence_orders.blueprints import (
        delivery,
        disputes,
        evidence,
        orders,
        payments,
    )

    app.register_blueprint(orders.bp, url_prefix='/')
    app.register_blueprint(payments.bp, url_prefix='/')
    app.register_blueprint(evidence.bp, url_prefix='/')
    app.register_blueprint(delivery.bp, url_prefix='/')
    app.register_blueprint(disputes.bp, url_prefix='/')

    # Every /api/ route except the health check needs an actor
    setup_auth_middleware(app)
    _register_error_handlers(app)

    from evidence_orders.jobs import OrderSweepScheduler, register_commands
    register_commands(app)
    if app.config.get('SCHEDULER_ENABLED'):
        scheduler = OrderSweepScheduler(app)
        scheduler.start()
        app.extensions['order_sweeps'] = scheduler

    # Note: Database tables are managed via Flask-Migrate
    # Use 'flask db upgrade' to create/update tables

    logger.info("Flask application initialized")
    return app
