import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


__version__ = '1.0.0'


def configure_logging(config_obj, logger=None):
    """
    Configure application logging.

    Args:
        config_obj: Configuration class (LOG_DIR, LOG_LEVEL)
        logger: Extra logger to attach the handlers to (e.g. app.logger)
    """

    # Create logs directory if it doesn't exist
    log_dir = config_obj.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    log_level = logging.getLevelName(config_obj.LOG_LEVEL)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'backuper.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler], force=True)

    # APScheduler is chatty at INFO on every tick
    logging.getLogger('apscheduler').setLevel(max(log_level, logging.WARNING))

    if logger is not None:
        logger.setLevel(log_level)

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, backup_scheduler=None):
    """
    Flask application factory for the status server.

    Args:
        config_name: Key into backuper.config.config
        backup_scheduler: BackupScheduler the endpoints report on
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('BACKUPER_ENV', 'production')

    from backuper.config import config
    app.config.from_object(config[config_name])

    configure_logging(config[config_name], app.logger)

    app.extensions['backup_scheduler'] = backup_scheduler

    from backuper.routes import status_routes
    app.register_blueprint(status_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    return app
