"""Entry point: python -m backup_runner"""

import logging
import signal
import sys

from backup_runner import configure_logging, create_runner
from backup_runner.config import ConfigError, Settings
from backup_runner.scheduler import ScheduleError, start_scheduler, stop_scheduler

logger = logging.getLogger('backup_runner')


def _handle_sigterm(signum, frame):
    raise SystemExit(0)


def main() -> int:
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logging.basicConfig()
        logger.error(f"settings: {e}")
        return 1

    configure_logging(settings)

    try:
        create_runner(settings)
    except (ConfigError, ScheduleError) as e:
        logger.error(f"startup failed: {e}")
        return 1

    signal.signal(signal.SIGTERM, _handle_sigterm)

    try:
        start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down")
        stop_scheduler(wait=False)

    return 0


if __name__ == '__main__':
    sys.exit(main())
