"""
Configuration loading for backup-runner.

Two layers:
- Settings: process settings read from environment variables
- RunnerConfig: destinations and backup definitions read from the YAML
  document named by CONFIG_FILE

The YAML text is environment-expanded as a whole before parsing, then every
destination gets credential fallbacks from the standard AWS variables.
"""

import os
import tempfile
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

import yaml

from backup_runner.utils.envexpand import expand_env


DEFAULT_CONFIG_FILE = '/config.yaml'
DEFAULT_LOCAL_BACKUP_DIR = '/backups'

# Destination field -> environment fallback
CREDENTIAL_FALLBACKS = {
    'access_key': 'AWS_ACCESS_KEY_ID',
    'secret_key': 'AWS_SECRET_ACCESS_KEY',
    'region': 'AWS_DEFAULT_REGION',
    'endpoint': 'AWS_ENDPOINT_URL',
}


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


def _int_or_none(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == '':
        return None
    return int(value)


@dataclass(frozen=True)
class Settings:
    """Process settings"""

    config_file: str = DEFAULT_CONFIG_FILE
    local_backup_dir: str = DEFAULT_LOCAL_BACKUP_DIR
    temp_dir: str = field(default_factory=tempfile.gettempdir)
    pg_connect_timeout: int = 10
    dump_timeout: Optional[int] = None
    log_level: str = 'INFO'
    log_file: Optional[str] = None
    scheduler_timezone: Optional[str] = None
    scheduler_max_workers: int = 10

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Raises:
            ConfigError: If a numeric setting is not an integer
        """
        env = os.environ if environ is None else environ

        try:
            return cls(
                config_file=env.get('CONFIG_FILE') or DEFAULT_CONFIG_FILE,
                local_backup_dir=env.get('LOCAL_BACKUP_DIR') or DEFAULT_LOCAL_BACKUP_DIR,
                temp_dir=env.get('TEMP_DIR') or tempfile.gettempdir(),
                pg_connect_timeout=_int_or_none(env.get('PGCONNECT_TIMEOUT')) or 10,
                dump_timeout=_int_or_none(env.get('DUMP_TIMEOUT')),
                log_level=(env.get('LOG_LEVEL') or 'INFO').upper(),
                log_file=env.get('LOG_FILE') or None,
                scheduler_timezone=env.get('SCHEDULER_TIMEZONE') or None,
                scheduler_max_workers=_int_or_none(env.get('SCHEDULER_MAX_WORKERS')) or 10,
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}")


@dataclass(frozen=True)
class Destination:
    """Named object-storage target."""

    name: str
    bucket: str
    prefix: str = ''
    endpoint: str = ''
    access_key: str = ''
    secret_key: str = ''
    region: str = ''

    @classmethod
    def from_dict(cls, name: str, data: Optional[Dict[str, Any]]) -> 'Destination':
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Destination '{name}' must be a mapping")

        bucket = _as_text(data.get('bucket'))
        if not bucket:
            raise ConfigError(f"Destination '{name}' has no bucket")

        return cls(
            name=str(name),
            bucket=bucket,
            prefix=_as_text(data.get('prefix')),
            endpoint=_as_text(data.get('endpoint')),
            access_key=_as_text(data.get('accessKey')),
            secret_key=_as_text(data.get('secretKey')),
            region=_as_text(data.get('region')),
        )


@dataclass(frozen=True)
class BackupDefinition:
    """One recurring backup: source, destination, schedule and retention."""

    name: str
    url: str
    destination: str
    schedule: str
    max_history: int = 0

    @classmethod
    def from_dict(cls, index: int, data: Any) -> 'BackupDefinition':
        if not isinstance(data, dict):
            raise ConfigError(f"Backup #{index} must be a mapping")

        for required in ('url', 'destination', 'schedule'):
            if not _as_text(data.get(required)):
                raise ConfigError(f"Backup #{index} is missing '{required}'")

        max_history = data.get('maxHistory')
        if max_history is None or max_history == '':
            max_history = 0
        try:
            if isinstance(max_history, bool):
                raise ValueError(max_history)
            max_history = int(max_history)
        except (TypeError, ValueError):
            raise ConfigError(f"Backup #{index} has invalid maxHistory: {data.get('maxHistory')!r}")
        if max_history < 0:
            raise ConfigError(f"Backup #{index} has negative maxHistory: {max_history}")

        return cls(
            name=_as_text(data.get('name')) or f"backup_{index}",
            url=_as_text(data.get('url')),
            destination=_as_text(data.get('destination')),
            schedule=_as_text(data.get('schedule')),
            max_history=max_history,
        )


@dataclass(frozen=True)
class RunnerConfig:
    """Parsed and resolved configuration document."""

    destinations: Dict[str, Destination]
    backups: List[BackupDefinition]

    def destination_for(self, backup: BackupDefinition) -> Destination:
        try:
            return self.destinations[backup.destination]
        except KeyError:
            raise ConfigError(f"unknown destination '{backup.destination}' in backup '{backup.name}'")


def _as_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def resolve_destinations(
    destinations: Mapping[str, Destination],
    environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Destination]:
    """
    Fill empty credential fields from environment fallbacks.

    Explicit values win. Returns a new mapping of new Destination values;
    the input is left untouched. Fields that stay empty are passed through.
    """
    env = os.environ if environ is None else environ

    resolved = {}
    for name, destination in destinations.items():
        updates = {
            attr: env.get(var, '')
            for attr, var in CREDENTIAL_FALLBACKS.items()
            if not getattr(destination, attr)
        }
        resolved[name] = replace(destination, **updates) if updates else destination

    return resolved


def parse_config(text: str, environ: Optional[Mapping[str, str]] = None) -> RunnerConfig:
    """
    Expand, parse and resolve a configuration document.

    Args:
        text: Raw YAML text
        environ: Environment used for expansion and fallbacks

    Returns:
        RunnerConfig with resolved destinations

    Raises:
        ConfigError: If the document is malformed or references an unknown destination
    """
    expanded = expand_env(text, environ)

    try:
        data = yaml.safe_load(expanded)
    except yaml.YAMLError as e:
        raise ConfigError(f"parse config: {e}")

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    raw_destinations = data.get('destinations') or {}
    if not isinstance(raw_destinations, dict):
        raise ConfigError("'destinations' must be a mapping")

    raw_backups = data.get('backups') or []
    if not isinstance(raw_backups, list):
        raise ConfigError("'backups' must be a list")

    destinations = {
        str(name): Destination.from_dict(name, entry)
        for name, entry in raw_destinations.items()
    }
    backups = [BackupDefinition.from_dict(i, entry) for i, entry in enumerate(raw_backups)]

    names = [backup.name for backup in backups]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate backup names: {', '.join(duplicates)}")

    config = RunnerConfig(
        destinations=resolve_destinations(destinations, environ),
        backups=backups,
    )

    # Every reference must resolve before anything is scheduled
    for backup in config.backups:
        config.destination_for(backup)

    return config


def load_config(path: str, environ: Optional[Mapping[str, str]] = None) -> RunnerConfig:
    """
    Read and parse the configuration file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = f.read()
    except OSError as e:
        raise ConfigError(f"read config: {e}")

    return parse_config(raw, environ)
