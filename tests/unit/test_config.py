"""
Unit tests for configuration loading (backup_runner/config.py).

Tests expansion, parsing, validation and credential fallbacks.
"""

import pytest

from backup_runner.config import (
    Settings,
    Destination,
    ConfigError,
    load_config,
    parse_config,
    resolve_destinations
)


CONFIG_TEXT = """
destinations:
  primary:
    bucket: ${BUCKET:-default-bucket}
    prefix: /pg/
    accessKey: ${ACCESS-}
  minio:
    bucket: local
    endpoint: http://minio:9000
    accessKey: minio
    secretKey: minio123
    region: eu-west-1
backups:
  - url: postgres://u:p@h/app
    destination: primary
    schedule: "0 2 * * *"
    maxHistory: 3
  - name: events
    url: postgres://u:p@h/events
    destination: minio
    schedule: "@daily"
"""


class TestParseConfig:
    """Test parse_config."""

    def test_parses_destinations_and_backups(self):
        config = parse_config(CONFIG_TEXT, {})

        assert set(config.destinations) == {'primary', 'minio'}
        assert config.destinations['primary'].bucket == 'default-bucket'
        assert config.destinations['primary'].prefix == '/pg/'
        assert config.destinations['minio'].endpoint == 'http://minio:9000'

        assert len(config.backups) == 2
        first, second = config.backups
        assert first.name == 'backup_0'
        assert first.max_history == 3
        assert second.name == 'events'
        assert second.max_history == 0

    def test_expansion_applies_before_parsing(self):
        config = parse_config(CONFIG_TEXT, {'BUCKET': 'prod-dumps'})
        assert config.destinations['primary'].bucket == 'prod-dumps'

    def test_placeholder_in_key_and_list(self):
        text = (
            "destinations:\n"
            "  ${DEST}:\n"
            "    bucket: b\n"
            "backups:\n"
            "  - {url: '$URL', destination: $DEST, schedule: '@hourly'}\n"
        )
        config = parse_config(text, {'DEST': 'main', 'URL': 'postgres://h/x'})

        assert 'main' in config.destinations
        assert config.backups[0].url == 'postgres://h/x'
        assert config.backups[0].destination == 'main'

    def test_fallbacks_fill_empty_fields(self):
        env = {
            'AWS_ACCESS_KEY_ID': 'env-access',
            'AWS_SECRET_ACCESS_KEY': 'env-secret',
            'AWS_DEFAULT_REGION': 'us-west-2',
            'AWS_ENDPOINT_URL': 'http://env-endpoint',
        }
        config = parse_config(CONFIG_TEXT, env)

        primary = config.destinations['primary']
        assert primary.access_key == 'env-access'
        assert primary.secret_key == 'env-secret'
        assert primary.region == 'us-west-2'
        assert primary.endpoint == 'http://env-endpoint'

        # Explicit values win
        minio = config.destinations['minio']
        assert minio.access_key == 'minio'
        assert minio.secret_key == 'minio123'
        assert minio.region == 'eu-west-1'
        assert minio.endpoint == 'http://minio:9000'

    def test_expanded_value_wins_over_fallback(self):
        config = parse_config(CONFIG_TEXT, {'ACCESS': 'from-config', 'AWS_ACCESS_KEY_ID': 'env'})
        assert config.destinations['primary'].access_key == 'from-config'

    def test_no_placeholder_left_in_resolved_fields(self):
        config = parse_config(CONFIG_TEXT, {})
        for destination in config.destinations.values():
            for value in (destination.access_key, destination.secret_key, destination.region, destination.endpoint):
                assert '$' not in value

    def test_unknown_destination_is_fatal(self):
        text = (
            "destinations:\n  a: {bucket: b}\n"
            "backups:\n  - {url: x, destination: missing, schedule: '@daily'}\n"
        )
        with pytest.raises(ConfigError, match="unknown destination 'missing'"):
            parse_config(text, {})

    def test_missing_bucket(self):
        with pytest.raises(ConfigError, match="no bucket"):
            parse_config("destinations:\n  a: {prefix: x}\n", {})

    def test_bucket_expanding_to_empty(self):
        with pytest.raises(ConfigError, match="no bucket"):
            parse_config("destinations:\n  a: {bucket: $NOPE}\n", {})

    @pytest.mark.parametrize('field', ['url', 'destination', 'schedule'])
    def test_backup_missing_required_field(self, field):
        entry = {'url': 'postgres://h/db', 'destination': 'a', 'schedule': '@daily'}
        del entry[field]
        items = ', '.join(f"{k}: '{v}'" for k, v in entry.items())
        text = f"destinations:\n  a: {{bucket: b}}\nbackups:\n  - {{{items}}}\n"

        with pytest.raises(ConfigError, match=field):
            parse_config(text, {})

    @pytest.mark.parametrize('value', ['-1', 'lots', 'true'])
    def test_invalid_max_history(self, value):
        text = (
            "destinations:\n  a: {bucket: b}\n"
            f"backups:\n  - {{url: x, destination: a, schedule: '@daily', maxHistory: {value}}}\n"
        )
        with pytest.raises(ConfigError, match="maxHistory"):
            parse_config(text, {})

    def test_max_history_from_env_string(self):
        text = (
            "destinations:\n  a: {bucket: b}\n"
            "backups:\n  - {url: x, destination: a, schedule: '@daily', maxHistory: '$KEEP'}\n"
        )
        config = parse_config(text, {'KEEP': '5'})
        assert config.backups[0].max_history == 5

    def test_duplicate_backup_names(self):
        text = (
            "destinations:\n  a: {bucket: b}\n"
            "backups:\n"
            "  - {name: x, url: u, destination: a, schedule: '@daily'}\n"
            "  - {name: x, url: v, destination: a, schedule: '@daily'}\n"
        )
        with pytest.raises(ConfigError, match="Duplicate"):
            parse_config(text, {})

    def test_invalid_yaml(self):
        with pytest.raises(ConfigError, match="parse config"):
            parse_config("destinations: [unclosed", {})

    def test_root_must_be_mapping(self):
        with pytest.raises(ConfigError, match="root"):
            parse_config("- a\n- b\n", {})

    def test_empty_document(self):
        config = parse_config("", {})
        assert config.destinations == {}
        assert config.backups == []


class TestResolveDestinations:
    """Test resolve_destinations."""

    def test_returns_new_values(self):
        original = {'a': Destination(name='a', bucket='b')}
        resolved = resolve_destinations(original, {'AWS_DEFAULT_REGION': 'eu-central-1'})

        assert resolved['a'].region == 'eu-central-1'
        assert original['a'].region == ''
        assert resolved is not original

    def test_missing_fallbacks_stay_empty(self):
        resolved = resolve_destinations({'a': Destination(name='a', bucket='b')}, {})
        assert resolved['a'].access_key == ''
        assert resolved['a'].secret_key == ''


class TestLoadConfig:
    """Test load_config."""

    def test_load_from_file(self, write_config):
        path = write_config("destinations:\n  a: {bucket: b}\nbackups: []\n")
        config = load_config(path, {})
        assert config.destinations['a'].bucket == 'b'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="read config"):
            load_config(str(tmp_path / 'missing.yaml'), {})


class TestSettings:
    """Test Settings.from_env."""

    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.config_file == '/config.yaml'
        assert settings.local_backup_dir == '/backups'
        assert settings.pg_connect_timeout == 10
        assert settings.dump_timeout is None
        assert settings.log_level == 'INFO'
        assert settings.scheduler_timezone is None

    def test_overrides(self):
        settings = Settings.from_env({
            'CONFIG_FILE': '/etc/runner.yaml',
            'LOCAL_BACKUP_DIR': '/srv/dumps',
            'PGCONNECT_TIMEOUT': '30',
            'DUMP_TIMEOUT': '3600',
            'LOG_LEVEL': 'debug',
            'SCHEDULER_TIMEZONE': 'Europe/Berlin',
            'SCHEDULER_MAX_WORKERS': '2',
        })

        assert settings.config_file == '/etc/runner.yaml'
        assert settings.local_backup_dir == '/srv/dumps'
        assert settings.pg_connect_timeout == 30
        assert settings.dump_timeout == 3600
        assert settings.log_level == 'DEBUG'
        assert settings.scheduler_timezone == 'Europe/Berlin'
        assert settings.scheduler_max_workers == 2

    def test_invalid_number(self):
        with pytest.raises(ConfigError):
            Settings.from_env({'DUMP_TIMEOUT': 'soon'})
