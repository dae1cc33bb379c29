"""
pg_dump collaborator.

Runs `pg_dump -Fc <url> -f <output>` and reports failure as DumpError. The
connection string is passed through untouched.
"""

import os
import subprocess
from typing import Optional


class DumpError(Exception):
    """Raised when the database dump fails."""
    pass


def run_pg_dump(url: str, output_path: str, connect_timeout: int = 10, timeout: Optional[int] = None) -> str:
    """
    Dump a PostgreSQL database in custom format.

    Args:
        url: Connection string
        output_path: File to write
        connect_timeout: PGCONNECT_TIMEOUT for the dump process
        timeout: Overall timeout in seconds (None for no limit)

    Returns:
        output_path

    Raises:
        DumpError: If pg_dump is missing, times out or exits non-zero
    """
    env = os.environ.copy()
    env['PGCONNECT_TIMEOUT'] = str(connect_timeout)

    cmd = ['pg_dump', '-Fc', url, '-f', output_path]

    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
            timeout=timeout
        )
    except FileNotFoundError:
        raise DumpError("pg_dump not found - install postgresql-client")
    except subprocess.TimeoutExpired:
        raise DumpError(f"pg_dump timed out after {timeout} seconds")

    if result.returncode != 0:
        stderr = result.stderr.decode(errors='replace').strip()
        raise DumpError(f"pg_dump exited with status {result.returncode}: {stderr[:500]}")

    return output_path
