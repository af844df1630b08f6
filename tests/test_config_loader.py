"""Tests for YAML configuration loading."""

import logging

import pytest
import yaml

from config_loader import TimezoneFormatter, get_sample_config, load_config


def write_config(tmp_path, data):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestLoadConfig:
    def test_defaults_applied(self, tmp_path):
        config = load_config(write_config(tmp_path, {'discovery': {'timeout_ms': 1500}, 'gateway': {}}))
        assert config['discovery']['timeout_ms'] == 1500
        assert config['discovery']['port'] == 1901
        assert config['gateway']['username'] == 'admin'
        assert config['setup']['factory_default_ip'] == '192.168.0.7'
        assert config['api']['port'] == 3001

    def test_sample_config_is_valid(self, tmp_path):
        config = load_config(write_config(tmp_path, get_sample_config()))
        assert config['logging']['timezone'] == 'Europe/Rome'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / 'absent.yaml'))

    def test_missing_section(self, tmp_path):
        with pytest.raises(ValueError, match='gateway'):
            load_config(write_config(tmp_path, {'discovery': {}}))

    @pytest.mark.parametrize('discovery', [{'port': 70000}, {'port': 'x'}, {'timeout_ms': 0}])
    def test_invalid_discovery(self, tmp_path, discovery):
        with pytest.raises(ValueError):
            load_config(write_config(tmp_path, {'discovery': discovery, 'gateway': {}}))

    def test_unknown_timezone(self, tmp_path):
        data = {'discovery': {}, 'gateway': {}, 'logging': {'timezone': 'Mars/Olympus'}}
        with pytest.raises(ValueError):
            load_config(write_config(tmp_path, data))


class TestTimezoneFormatter:
    def test_renders_in_zone(self):
        formatter = TimezoneFormatter('%(asctime)s %(message)s', 'UTC')
        record = logging.LogRecord('t', logging.INFO, __file__, 1, 'hello', None, None)
        record.created = 0
        assert formatter.format(record) == '1970-01-01 00:00:00 UTC hello'
