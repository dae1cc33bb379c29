"""
APScheduler configuration and job scheduling for backup-runner.

Manages:
- Parsing of cron schedule expressions (5 or 6 fields, descriptors)
- One recurring job per backup definition
- Per-job failure containment and overlap skipping
"""

import logging
import re
from typing import List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from backup_runner.config import RunnerConfig, Settings
from backup_runner.backup.executor import BackupResult, JobContext, execute_backup_job

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None

DESCRIPTORS = {
    '@yearly': '0 0 1 1 *',
    '@annually': '0 0 1 1 *',
    '@monthly': '0 0 1 * *',
    '@weekly': '0 0 * * 0',
    '@daily': '0 0 * * *',
    '@midnight': '0 0 * * *',
    '@hourly': '0 * * * *',
}

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(h|m|s)')
_DURATION = re.compile(r'^(?:\d+(?:\.\d+)?(?:h|m|s))+$')
_DURATION_UNITS = {'h': 3600, 'm': 60, 's': 1}

_WEEKDAY_NUMERIC = re.compile(r'^(\*|\?|\d+)(?:-(\d+))?(?:/(\d+))?$')


class ScheduleError(Exception):
    """Raised when a schedule expression cannot be parsed."""
    pass


def _parse_duration(text: str) -> float:
    """Parse durations like '90s', '5m' or '1h30m' into seconds."""
    text = text.strip()
    if not _DURATION.match(text):
        raise ScheduleError(f"invalid duration: {text!r}")

    seconds = sum(
        float(amount) * _DURATION_UNITS[unit]
        for amount, unit in _DURATION_PART.findall(text)
    )
    if seconds < 1:
        raise ScheduleError(f"interval must be at least one second: {text!r}")
    return seconds


def _cron_day_of_week(field: str) -> str:
    """
    Translate a cron day-of-week field to APScheduler's numbering.

    Cron counts from Sunday (0 or 7), APScheduler from Monday (0). Numeric
    values, ranges and steps are expanded to explicit day numbers; day names
    are passed through since both agree on them.
    """
    if field in ('*', '?'):
        return '*'

    days = []
    for part in field.split(','):
        match = _WEEKDAY_NUMERIC.match(part)
        if not match:
            days.append(part.lower())
            continue

        start, end, step = match.groups()
        if start in ('*', '?'):
            if end is not None:
                raise ScheduleError(f"invalid day-of-week: {part!r}")
            low, high = 0, 6
        else:
            low = int(start)
            high = int(end) if end is not None else (6 if step else low)

        step = int(step) if step else 1
        if high > 7 or low > high or step < 1:
            raise ScheduleError(f"invalid day-of-week: {part!r}")

        for day in range(low, high + 1, step):
            mapped = str((day - 1) % 7)
            if mapped not in days:
                days.append(mapped)

    return ','.join(days)


def parse_schedule(expression: str, timezone: Optional[str] = None):
    """
    Parse a schedule expression into an APScheduler trigger.

    Accepts:
    - 5-field cron: minute hour day month day-of-week
    - 6-field cron: second minute hour day month day-of-week
    - Descriptors: @yearly, @annually, @monthly, @weekly, @daily, @midnight, @hourly
    - @every <duration>, e.g. '@every 1h30m'

    Args:
        expression: Schedule expression
        timezone: Timezone for wall-clock interpretation (default: local)

    Returns:
        CronTrigger, OrTrigger (day-of-month or day-of-week) or IntervalTrigger

    Raises:
        ScheduleError: If the expression is invalid
    """
    text = (expression or '').strip()
    if not text:
        raise ScheduleError("empty schedule expression")

    if text.startswith('@every'):
        seconds = _parse_duration(text[len('@every'):])
        return IntervalTrigger(seconds=seconds, timezone=timezone)

    if text.startswith('@'):
        if text.lower() not in DESCRIPTORS:
            raise ScheduleError(f"unrecognized descriptor: {text!r}")
        text = DESCRIPTORS[text.lower()]

    fields = text.split()
    if len(fields) == 5:
        fields = ['0'] + fields
    elif len(fields) != 6:
        raise ScheduleError(f"expected 5 or 6 fields, found {len(fields)}: {expression!r}")

    second, minute, hour, day, month, day_of_week = fields
    if day == '?':
        day = '*'

    day_of_week = _cron_day_of_week(day_of_week)

    def _cron(day, day_of_week):
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=timezone
        )

    try:
        # Cron fires when either day field matches if both are restricted
        if day != '*' and day_of_week != '*':
            return OrTrigger([_cron(day, '*'), _cron('*', day_of_week)])
        return _cron(day, day_of_week)
    except ValueError as e:
        raise ScheduleError(f"invalid cron expression {expression!r}: {e}")


def init_scheduler(settings: Settings, blocking: bool = True):
    """
    Initialize and configure APScheduler.

    Args:
        settings: Process settings
        blocking: Use a BlockingScheduler (False gives a BackgroundScheduler)
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    executors = {
        'default': ThreadPoolExecutor(max_workers=settings.scheduler_max_workers)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # A trigger arriving mid-run is skipped
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    options = {'executors': executors, 'job_defaults': job_defaults}
    if settings.scheduler_timezone:
        options['timezone'] = settings.scheduler_timezone

    scheduler_class = BlockingScheduler if blocking else BackgroundScheduler
    scheduler = scheduler_class(**options)
    scheduler.add_listener(_on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED)

    return scheduler


def register_backup_jobs(config: RunnerConfig, settings: Settings) -> List[str]:
    """
    Add one recurring job per backup definition.

    Every schedule and destination is checked before the first job is
    added, so a bad entry leaves the scheduler empty.

    Returns:
        IDs of the registered jobs

    Raises:
        RuntimeError: If the scheduler is not initialized
        ConfigError: If a backup references an unknown destination
        ScheduleError: If a schedule expression is invalid
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    pending = []
    for backup in config.backups:
        destination = config.destination_for(backup)
        try:
            trigger = parse_schedule(backup.schedule, settings.scheduler_timezone)
        except ScheduleError as e:
            raise ScheduleError(f"schedule for backup '{backup.name}': {e}")

        pending.append((JobContext(backup=backup, destination=destination, settings=settings), trigger))

    job_ids = []
    for context, trigger in pending:
        scheduler.add_job(
            func=_execute_backup_wrapper,
            args=[context],
            trigger=trigger,
            id=context.job_id,
            name=f"Backup: {context.backup.name}",
            replace_existing=True
        )
        job_ids.append(context.job_id)
        logger.info(f"[scheduler] scheduled {context.backup.name} ({context.backup.schedule})")

    return job_ids


def start_scheduler():
    """
    Start the APScheduler.

    With a BlockingScheduler this call does not return until shutdown.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info(f"[scheduler] already running (state={scheduler.state})")
        return

    jobs = scheduler.get_jobs()
    if jobs:
        logger.info(f"[scheduler] {len(jobs)} scheduled jobs:")
        for job in jobs:
            logger.info(f"[scheduler]   - {job.id}: {job.trigger}")
    else:
        logger.warning("[scheduler] no backups configured")

    logger.info("[scheduler] running")
    scheduler.start()


def stop_scheduler(wait: bool = True):
    """Stop the APScheduler."""
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("[scheduler] stopped")


def _execute_backup_wrapper(context: JobContext) -> BackupResult:
    """
    Run one firing of a job on a scheduler worker thread.

    Any exception is contained here so one faulty job cannot affect the
    scheduler or other jobs.
    """
    try:
        result = execute_backup_job(context)
        logger.info(f"[scheduler] {context.job_id} completed with status: {result.status}")
        return result
    except Exception as e:
        logger.exception(f"[scheduler] {context.job_id} crashed: {e}")
        return BackupResult(status='failed', error=str(e))


def _on_job_event(event):
    if event.code == EVENT_JOB_MAX_INSTANCES:
        logger.warning(f"[scheduler] {event.job_id} still running, skipped this trigger")
    elif event.code == EVENT_JOB_MISSED:
        logger.warning(f"[scheduler] {event.job_id} missed its run time ({event.scheduled_run_time})")
    elif event.code == EVENT_JOB_ERROR:
        logger.error(f"[scheduler] {event.job_id} raised {event.exception!r}\n{event.traceback or ''}")

