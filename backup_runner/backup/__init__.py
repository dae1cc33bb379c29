"""
Backup module for backup-runner.

This module handles one firing of a backup job:
- Database dump (pg_dump)
- Object key naming
- Storage (S3-compatible and local copy)
- Execution orchestration
- Retention by maximum history
"""

from .executor import BackupExecutor, BackupResult, JobContext, execute_backup_job
from .dump import run_pg_dump, DumpError
from .storage import S3Storage, LocalStorage, StorageError
from .retention import StoredObject, select_expired, chunk_keys, prune_history

__all__ = [
    'BackupExecutor',
    'BackupResult',
    'JobContext',
    'execute_backup_job',
    'run_pg_dump',
    'DumpError',
    'S3Storage',
    'LocalStorage',
    'StorageError',
    'StoredObject',
    'select_expired',
    'chunk_keys',
    'prune_history'
]
