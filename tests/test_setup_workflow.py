"""Tests for the setup workflow state machine, with scripted discovery and gateways."""

import asyncio

import pytest

from discovery.models import DiscoveredDevice, GatewayFamily
from discovery.network_discovery import NetworkConfigResult
from discovery.packets import Credentials
from gateways.errors import GatewayUnavailableError
from services.setup_workflow import PHASES, SetupState, SetupWorkflow

MAC = 'D4-AD-20-C0-0C-5E'
STATIC_IP = '192.168.1.200'
DHCP_IP = '192.168.1.57'

NO_WAIT = {
    'setup': {
        'static_wait_seconds': 0, 'static_scan_attempts': 3,
        'dhcp_wait_seconds': 0, 'dhcp_scan_attempts': 3,
        'scan_interval_seconds': 0,
        'detect_attempts': 2, 'detect_interval_seconds': 0,
        'ready_attempts': 2, 'ready_interval_seconds': 0,
    },
    'udp_config': {'static_ip': STATIC_IP, 'save_delay_seconds': 0, 'ack_timeout_seconds': 0.1},
}


def sighting(ip, family=GatewayFamily.UNKNOWN):
    return DiscoveredDevice(mac=MAC, ip=ip, family=family)


class FakeDiscovery:
    """find_by_mac answers from a script, then None"""

    def __init__(self, sightings):
        self.sightings = list(sightings)
        self.calls = 0

    async def find_by_mac(self, mac, timeout_ms=None):
        self.calls += 1
        return self.sightings.pop(0) if self.sightings else None


class FakeSender:
    def __init__(self, acked=True):
        self.acked = acked
        self.sent = []

    async def __call__(self, mac, settings, credentials=None, **kwargs):
        self.sent.append(settings)
        return NetworkConfigResult(config_acked=self.acked, save_acked=self.acked)


class FakeAdapter:
    def __init__(self, host, ready=True, prepare_error=None):
        self.host = host
        self.ready = ready
        self.prepare_error = prepare_error
        self.calls = []

    async def wait_until_ready(self, attempts, interval_seconds):
        self.calls.append('wait_until_ready')
        return self.ready

    async def enable_dhcp(self):
        self.calls.append('enable_dhcp')
        return True

    async def configure_uart1(self):
        self.calls.append('configure_uart1')
        if self.prepare_error:
            raise self.prepare_error
        return True

    async def remove_default_devices(self):
        self.calls.append('remove_default_devices')

    async def configure_port1(self):
        self.calls.append('configure_port1')
        return True


class Harness:
    """Workflow wired to fakes; records every adapter it hands out"""

    def __init__(self, sightings, family=GatewayFamily.N720, acked=True, ready=True,
                 prepare_error=None, config=None):
        self.family = family
        self.ready = ready
        self.prepare_error = prepare_error
        self.adapters = []
        self.detected = []
        self.discovery = FakeDiscovery(sightings)
        self.sender = FakeSender(acked)
        self.workflow = SetupWorkflow(config or NO_WAIT, self.discovery, send_config=self.sender,
                                      adapter_factory=self.adapter_factory, detector=self.detector)

    def adapter_factory(self, family, host, gateway_config=None):
        adapter = FakeAdapter(host, self.ready, self.prepare_error)
        self.adapters.append((family, adapter))
        return adapter

    async def detector(self, host, gateway_config=None, timeout=None):
        self.detected.append(host)
        return self.family

    def run(self):
        return asyncio.run(self.workflow.run(MAC))


def statuses(progress):
    return {p['phase']: p['status'] for p in progress.phase_history}


class TestHappyPath:
    def test_static_then_dhcp(self):
        harness = Harness([sighting('0.0.0.0'), sighting(STATIC_IP), sighting(STATIC_IP), sighting(DHCP_IP)])
        progress = harness.run()

        assert progress.state == SetupState.READY
        assert progress.ip == DHCP_IP
        assert progress.family == GatewayFamily.N720
        assert [s.dhcp for s in harness.sender.sent] == [False, True]
        assert harness.sender.sent[0].ip == STATIC_IP
        assert set(statuses(progress).values()) == {'completed'}
        assert [p['phase'] for p in progress.phase_history] == PHASES
        assert progress.to_dict()['state'] == 'ready'

    def test_find_phases_record_attempts(self):
        harness = Harness([None, sighting(STATIC_IP), sighting(DHCP_IP)])
        progress = harness.run()
        history = {p['phase']: p for p in progress.phase_history}
        assert history['find_static']['attempts'] == 2
        assert history['find_dhcp']['attempts'] == 1

    def test_n720_prepared_after_ready(self):
        harness = Harness([sighting(STATIC_IP), sighting(DHCP_IP)])
        harness.run()
        family, adapter = harness.adapters[-1]
        assert family == GatewayFamily.N720
        assert adapter.host == DHCP_IP
        assert adapter.calls == ['wait_until_ready', 'configure_uart1']

    def test_n510_dhcp_through_web_interface(self):
        harness = Harness([sighting(STATIC_IP, GatewayFamily.N510), sighting(DHCP_IP)],
                          family=GatewayFamily.N510)
        progress = harness.run()
        assert progress.state == SetupState.READY
        assert len(harness.sender.sent) == 1
        family, adapter = harness.adapters[0]
        assert adapter.calls == ['enable_dhcp']
        assert harness.adapters[-1][1].calls == ['wait_until_ready', 'remove_default_devices', 'configure_port1']

    def test_already_on_dhcp_skips_dhcp_phases(self):
        harness = Harness([sighting(DHCP_IP)])
        progress = harness.run()
        assert progress.state == SetupState.READY
        assert progress.ip == DHCP_IP
        assert statuses(progress)['enable_dhcp'] == 'skipped'
        assert statuses(progress)['find_dhcp'] == 'skipped'
        assert len(harness.sender.sent) == 1

    def test_preparation_errors_do_not_fail_setup(self):
        harness = Harness([sighting(DHCP_IP)], prepare_error=GatewayUnavailableError('reset'))
        assert harness.run().state == SetupState.READY

    def test_preparation_can_be_disabled(self):
        config = {**NO_WAIT, 'setup': {**NO_WAIT['setup'], 'prepare_gateway': False}}
        harness = Harness([sighting(DHCP_IP)], config=config)
        harness.run()
        assert harness.adapters[-1][1].calls == ['wait_until_ready']


class TestFailures:
    def test_no_ack(self):
        harness = Harness([], acked=False)
        progress = harness.run()
        assert progress.state == SetupState.FAILED
        assert progress.message.startswith('Failed to set static IP')
        assert harness.discovery.calls == 0
        history = statuses(progress)
        assert history['static_ip'] == 'failed'
        assert all(history[p] == 'skipped' for p in PHASES[1:])

    def test_not_found_after_static_ip(self):
        harness = Harness([sighting('0.0.0.0'), sighting('192.168.0.7')])
        progress = harness.run()
        assert progress.state == SetupState.FAILED
        assert f'connect to {STATIC_IP} directly' in progress.message
        assert harness.discovery.calls == 3

    def test_not_found_after_dhcp(self):
        harness = Harness([sighting(STATIC_IP)])
        progress = harness.run()
        assert progress.state == SetupState.FAILED
        assert statuses(progress)['find_dhcp'] == 'failed'
        assert STATIC_IP in progress.message

    def test_not_ready(self):
        harness = Harness([sighting(DHCP_IP)], ready=False)
        progress = harness.run()
        assert progress.state == SetupState.FAILED
        assert statuses(progress)['ready'] == 'failed'

    def test_unknown_family_ends_ready_without_adapter(self):
        harness = Harness([sighting(DHCP_IP)], family=GatewayFamily.UNKNOWN)
        progress = harness.run()
        assert progress.state == SetupState.READY
        assert progress.family == GatewayFamily.UNKNOWN
        assert statuses(progress)['ready'] == 'skipped'
        assert harness.detected == [DHCP_IP, DHCP_IP]
        assert harness.adapters == []

    def test_discovered_family_used_when_detection_fails(self):
        harness = Harness([sighting(DHCP_IP, GatewayFamily.N510)], family=GatewayFamily.UNKNOWN)
        progress = harness.run()
        assert progress.family == GatewayFamily.N510
        assert progress.state == SetupState.READY


class TestStart:
    def test_rejects_invalid_mac(self):
        harness = Harness([])
        with pytest.raises(ValueError):
            harness.workflow.start('not a mac')
        assert harness.workflow.progress == {}

    def test_rejects_long_password_before_scheduling(self):
        harness = Harness([])
        with pytest.raises(ValueError, match='password'):
            harness.workflow.start(MAC, credentials=Credentials('admin', 'admin12'))
        assert harness.workflow.active == {}

    def test_duplicate_start_rejected(self):
        harness = Harness([sighting(DHCP_IP)])

        async def scenario():
            progress = harness.workflow.start(MAC.lower())
            assert harness.workflow.is_active(MAC)
            with pytest.raises(RuntimeError):
                harness.workflow.start(MAC)
            await harness.workflow.active['D4AD20C00C5E']
            return progress

        progress = asyncio.run(scenario())
        assert progress.state == SetupState.READY
        assert harness.workflow.get_progress('d4:ad:20:c0:0c:5e') is progress
        assert not harness.workflow.is_active(MAC)
