import os
import logging
import traceback
from flask import Flask, jsonify
from flask_cors import CORS

from outreach_sequencer.config import config
from outreach_sequencer.extensions import db

LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'

# (module path, blueprint attribute, url prefix)
BLUEPRINTS = (
    ('outreach_sequencer.routes.sequence', 'sequence_bp', '/api/v1'),
    ('outreach_sequencer.routes.run', 'run_bp', '/api/v1'),
    ('outreach_sequencer.routes.automation', 'automation_bp', '/api/v1/automation'),
)


def _configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.getLogger('outreach_sequencer').setLevel(level)

    if not app.debug and not app.testing:
        if not os.path.exists('logs'):
            os.mkdir('logs')
        file_handler = logging.FileHandler('logs/sequence_engine.log')
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        app.logger.addHandler(file_handler)
        logging.getLogger('outreach_sequencer').addHandler(file_handler)
        app.logger.setLevel(level)
        app.logger.info('Lead Sequence Engine startup')


def _register_blueprints(app):
    import importlib

    for module_path, attribute, prefix in BLUEPRINTS:
        try:
            module = importlib.import_module(module_path)
            app.register_blueprint(getattr(module, attribute), url_prefix=prefix)
            app.logger.info(f"Registered {attribute} blueprint")
        except Exception as e:
            app.logger.error(f"Failed to register {attribute} blueprint: {str(e)}")
            app.logger.error(f"{attribute} error traceback: {traceback.format_exc()}")
            if app.testing:
                raise


def create_app(config_name=None, engine=None):
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app.config.from_object(config[config_name])

    # Validate production configuration if needed
    if config_name == 'production':
        config[config_name].validate_config()

    # Configure CORS
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    # Initialize extensions
    db.init_app(app)

    # Configure logging first so we can see route registration errors
    _configure_logging(app)

    _register_blueprints(app)

    # Register global error handlers
    from outreach_sequencer.utils.error_handlers import register_error_handlers
    register_error_handlers(app)
    app.logger.info("Registered global error handlers")

    # Engine and scheduler
    from outreach_sequencer.services.sequence_engine import init_sequence_engine
    from outreach_sequencer.services.scheduler import get_sequence_scheduler
    init_sequence_engine(app, engine)

    scheduler = get_sequence_scheduler()
    scheduler.init_app(app)
    app.extensions['sequence_scheduler'] = scheduler

    # Create database tables (avoid fatal boot failures in production)
    try:
        with app.app_context():
            if config_name != 'production' or os.environ.get('STARTUP_DB_CREATE_ALL', 'false').lower() == 'true':
                db.create_all()
                app.logger.info("Database tables created/verified")
            else:
                app.logger.info("Skipping db.create_all() on startup in production")
    except Exception as e:
        app.logger.error(f"Failed to create/verify database tables on startup: {str(e)}")
        if app.testing:
            raise

    # Start scheduler when explicitly requested
    if app.config.get('START_SCHEDULER', False):
        try:
            scheduler.start()
            app.logger.info("Sequence scheduler started automatically")
        except Exception as e:
            app.logger.error(f"Failed to start scheduler: {str(e)}")

    # Simple health check endpoint
    @app.route('/')
    def index():
        return jsonify({'status': 'ok', 'message': 'Lead Sequence Engine is running'})

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=5001, debug=True)
