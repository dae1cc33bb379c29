import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from backup_runner.config import Settings, load_config


__version__ = '1.0.0'


def configure_logging(settings: Settings):
    """Configure application logging"""

    log_level = getattr(logging, settings.log_level, logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    ))
    handlers = [console_handler]

    # File handler
    if settings.log_file:
        log_dir = os.path.dirname(settings.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        ))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # APScheduler logs every submission at INFO
    logging.getLogger('apscheduler').setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_runner(settings: Optional[Settings] = None, blocking: bool = True):
    """
    Load configuration and build a scheduler with every backup registered.

    Args:
        settings: Process settings (default: read from environment)
        blocking: Build a BlockingScheduler for the main thread

    Returns:
        Configured, not yet started scheduler

    Raises:
        ConfigError: If the configuration cannot be loaded
        ScheduleError: If a schedule expression is invalid
    """
    from backup_runner.scheduler import init_scheduler, register_backup_jobs

    if settings is None:
        settings = Settings.from_env()

    logger = logging.getLogger(__name__)
    logger.info(f"Loading configuration from {settings.config_file}")

    config = load_config(settings.config_file)
    logger.info(
        f"Loaded {len(config.destinations)} destinations and {len(config.backups)} backups"
    )

    scheduler = init_scheduler(settings, blocking=blocking)
    register_backup_jobs(config, settings)
    return scheduler
