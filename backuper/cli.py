"""
Command line entry point.

    backuper [--config config.yml] [--once] [--version]
"""

import argparse
import atexit
import logging
import os
import signal
import sys
import threading

from backuper import __version__, configure_logging, create_app
from backuper.config import config, load_settings, ConfigurationError
from backuper.backup.storage import StorageError
from backuper.scheduler import BackupScheduler, SchedulerError


logger = logging.getLogger(__name__)

COMMIT = os.environ.get('BACKUPER_COMMIT', 'none')
BUILD_DATE = os.environ.get('BACKUPER_BUILD_DATE', 'unknown')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='backuper',
        description='Archive folders on a schedule and upload them to object storage.'
    )
    parser.add_argument(
        '--config',
        default=os.environ.get('BACKUPER_CONFIG', 'config.yml'),
        help='Path to configuration file'
    )
    parser.add_argument('--once', action='store_true', help='Run backup once and exit')
    parser.add_argument('--version', action='store_true', help='Show version information')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    if args.version:
        print("Backuper")
        print(f"Version:    {__version__}")
        print(f"Commit:     {COMMIT}")
        print(f"Build Date: {BUILD_DATE}")
        return 0

    config_name = os.environ.get('BACKUPER_ENV', 'production')
    app_config = config.get(config_name)
    if app_config is None:
        print(
            f"Failed to start: unknown BACKUPER_ENV {config_name!r} "
            f"(expected one of: {', '.join(sorted(config))})",
            file=sys.stderr
        )
        return 1
    configure_logging(app_config)

    try:
        settings = load_settings(args.config)
        logger.info("Configuration loaded successfully")

        os.makedirs(app_config.TEMP_DIR, exist_ok=True)
        backup_scheduler = BackupScheduler.from_settings(
            settings,
            temp_dir=app_config.TEMP_DIR,
            timezone_name=app_config.SCHEDULER_TIMEZONE
        )
    except (ConfigurationError, StorageError) as e:
        logger.critical(f"Failed to start: {e}")
        return 1

    if args.once:
        logger.info("Running backup once...")
        try:
            backup_scheduler.run_once()
        except Exception as e:
            logger.critical(f"Backup failed: {e}")
            return 1
        logger.info("Backup completed successfully")
        return 0

    try:
        backup_scheduler.start()
    except SchedulerError as e:
        logger.critical(f"Failed to start scheduler: {e}")
        return 1

    # Register cleanup function to stop scheduler on shutdown
    atexit.register(backup_scheduler.stop)

    if settings.status_server.enabled:
        # SIGTERM is turned into KeyboardInterrupt, which stops the dev server
        signal.signal(signal.SIGTERM, signal.default_int_handler)
        app = create_app(config_name, backup_scheduler)
        logger.info(
            f"Status server listening on {settings.status_server.host}:{settings.status_server.port}"
        )
        try:
            app.run(host=settings.status_server.host, port=settings.status_server.port, use_reloader=False)
        except KeyboardInterrupt:
            pass
    else:
        wait_for_shutdown_signal()

    logger.info("Shutting down...")
    backup_scheduler.stop()
    logger.info("Shutdown complete")
    return 0


def wait_for_shutdown_signal():
    """Block until SIGINT or SIGTERM is received."""
    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    logger.info("Backuper is running. Press Ctrl+C to exit.")
    while not stop_event.wait(timeout=1):
        pass


if __name__ == '__main__':
    sys.exit(main())
