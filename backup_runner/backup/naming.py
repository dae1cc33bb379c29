"""
Object key naming for uploaded dumps.

Keys have the form:
    {prefix}/{database}/pgdump-{YYYYMMDDTHHMMSSZ}.dump

The timestamp is UTC with second precision and no separators, so listing a
bucket and sorting keys lexicographically yields chronological order. Other
tools reading the bucket rely on this layout.
"""

import posixpath
from datetime import datetime, timezone

KEY_PREFIX = 'pgdump-'
KEY_SUFFIX = '.dump'
TIMESTAMP_FORMAT = '%Y%m%dT%H%M%SZ'


def database_name(url: str) -> str:
    """
    Derive the database name from a source connection string.

    Takes the text after the last '/', without any query string. Returns
    'all' when there is no '/' or nothing but a query string follows it.
    """
    index = url.rfind('/')
    if index < 0 or index == len(url) - 1:
        return 'all'

    return url[index + 1:].split('?', 1)[0] or 'all'


def base_path(prefix: str, database: str) -> str:
    """Return the key prefix under which a database's dumps are stored."""
    segments = [segment for segment in (prefix.strip('/'), database) if segment]
    return '/'.join(segments) + '/'


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as a UTC key timestamp (naive values are taken as UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def object_key(base: str, moment: datetime) -> str:
    return f"{base}{KEY_PREFIX}{format_timestamp(moment)}{KEY_SUFFIX}"


def is_dump_key(key: str) -> bool:
    """True if the key's basename looks like a dump written by this agent."""
    name = posixpath.basename(key)
    return name.startswith(KEY_PREFIX) and name.endswith(KEY_SUFFIX)
