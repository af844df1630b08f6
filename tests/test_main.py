"""Tests for the command line entry point."""

import asyncio
import json

import yaml

import main as main_module
from discovery.models import DiscoveredDevice, DiscoveryResult


class FakeDiscovery:
    devices = []

    def __init__(self, config):
        self.config = config

    async def discover(self, timeout_ms=None):
        return DiscoveryResult(devices=list(self.devices), method='udp_broadcast', duration_seconds=0.5,
                               devices_tested=0, success_count=len(self.devices))


def write_config(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'discovery': {}, 'gateway': {},
        'logging': {'console_output': False, 'file': None},
    }))
    return str(path)


class TestArguments:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv('CONFIG_FILE', raising=False)
        args = main_module.parse_args([])
        assert args.config == 'config/config.yaml'
        assert args.scan is False
        assert args.timeout_ms is None

    def test_scan_options(self):
        args = main_module.parse_args(['--scan', '-t', '1500', '-c', 'other.yaml'])
        assert args.scan and args.timeout_ms == 1500 and args.config == 'other.yaml'


class TestScanOnce:
    def test_prints_gateways(self, tmp_path, monkeypatch, capsys):
        FakeDiscovery.devices = [DiscoveredDevice(mac='AA-BB-CC-DD-EE-FF', ip='192.168.1.57')]
        monkeypatch.setattr(main_module, 'GatewayDiscovery', FakeDiscovery)

        assert asyncio.run(main_module.scan_once(write_config(tmp_path))) == 0
        output = json.loads(capsys.readouterr().out)
        assert output['method'] == 'udp_broadcast'
        assert [g['ip'] for g in output['gateways']] == ['192.168.1.57']

    def test_nothing_found(self, tmp_path, monkeypatch, capsys):
        FakeDiscovery.devices = []
        monkeypatch.setattr(main_module, 'GatewayDiscovery', FakeDiscovery)
        assert asyncio.run(main_module.scan_once(write_config(tmp_path))) == 1
