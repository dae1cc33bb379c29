"""
Backup executor - runs one firing of one backup job.

Workflow:
1. Dump the database into a unique scratch file
2. Derive the object key from the firing time
3. Upload to the destination bucket
4. Keep a local copy (if the local backup directory exists)
5. Prune old dumps (if maxHistory > 0)
6. Remove the scratch file, whatever happened
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from backup_runner.config import BackupDefinition, Destination, Settings
from .dump import run_pg_dump, DumpError
from .naming import database_name, base_path, object_key, format_timestamp
from .retention import prune_history
from .storage import S3Storage, LocalStorage, StorageError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class JobContext:
    """Everything one scheduled job needs, bound once at registration."""

    backup: BackupDefinition
    destination: Destination
    settings: Settings

    @property
    def job_id(self) -> str:
        return self.backup.name


@dataclass
class BackupResult:
    """Outcome of one firing."""

    status: str = 'running'
    key: Optional[str] = None
    local_path: Optional[str] = None
    deleted: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'


class BackupExecutor:
    """
    Orchestrates the backup pipeline for one job firing.
    """

    def __init__(self, context: JobContext, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize backup executor.

        Args:
            context: Job context to execute
            clock: Returns the firing time (default: current UTC time)
        """
        self.context = context
        self.clock = clock or utcnow
        self.scratch_path = None
        self.result = BackupResult()

    def execute(self) -> BackupResult:
        """
        Execute the backup job.

        Dump and upload failures end the firing as failed. Local copy and
        pruning failures are logged and do not change the outcome.

        Returns:
            BackupResult with execution results
        """
        backup = self.context.backup
        destination = self.context.destination
        settings = self.context.settings

        moment = self.clock()
        database = database_name(backup.url)
        base = base_path(destination.prefix, database)
        key = object_key(base, moment)

        logger.info(f"[backup] start {backup.name} (database: {database}, destination: {destination.name})")

        try:
            # Step 1: Dump
            self.scratch_path = self._create_scratch_file(format_timestamp(moment))
            try:
                run_pg_dump(
                    backup.url,
                    self.scratch_path,
                    connect_timeout=settings.pg_connect_timeout,
                    timeout=settings.dump_timeout
                )
            except DumpError as e:
                return self._fail(f"pg_dump failed: {e}")

            # Step 2: Upload
            try:
                storage = S3Storage.for_destination(destination)
                self.result.key = storage.upload(self.scratch_path, key)
            except StorageError as e:
                return self._fail(f"upload failed: {e}")

            logger.info(f"[backup] uploaded {storage.uri(self.result.key)}")
            self.result.status = 'success'

            # Step 3: Local copy
            self._store_locally(database, key)

            # Step 4: Prune
            if backup.max_history > 0:
                self._prune(storage, base, backup.max_history)

            return self.result

        finally:
            self._cleanup()

    def _create_scratch_file(self, timestamp: str) -> str:
        """Reserve a scratch file name unique across concurrent firings."""
        fd, path = tempfile.mkstemp(
            prefix=f"pgdump-{timestamp}-",
            suffix='.dump',
            dir=self.context.settings.temp_dir
        )
        os.close(fd)
        return path

    def _store_locally(self, database: str, key: str):
        local_storage = LocalStorage(self.context.settings.local_backup_dir)
        if not local_storage.is_available():
            return

        try:
            self.result.local_path = local_storage.store(
                self.scratch_path,
                os.path.join(database, os.path.basename(key))
            )
            logger.info(f"[backup] kept local copy {self.result.local_path}")
        except StorageError as e:
            logger.warning(f"[backup] local copy failed: {e}")

    def _prune(self, storage: S3Storage, base: str, keep: int):
        try:
            self.result.deleted = prune_history(storage, base, keep)
            logger.info(f"[prune] deleted {self.result.deleted} old backups under {storage.uri(base)}")
        except StorageError as e:
            logger.error(f"[prune] failed under {storage.uri(base)}: {e}")
        except Exception as e:
            logger.exception(f"[prune] failed under {storage.uri(base)}: {e}")

    def _fail(self, message: str) -> BackupResult:
        self.result.status = 'failed'
        self.result.error = message
        logger.error(f"[backup] {self.context.backup.name}: {message}")
        return self.result

    def _cleanup(self):
        """Remove the scratch dump unless it was moved to local storage."""
        if self.scratch_path and os.path.exists(self.scratch_path):
            try:
                os.remove(self.scratch_path)
            except OSError as e:
                logger.warning(f"[backup] failed to remove scratch file {self.scratch_path}: {e}")


def execute_backup_job(context: JobContext) -> BackupResult:
    """
    Execute one firing of a backup job.

    Args:
        context: Job context bound at registration

    Returns:
        BackupResult with execution results
    """
    executor = BackupExecutor(context)
    return executor.execute()
