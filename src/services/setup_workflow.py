"""
Initial setup workflow for factory-fresh gateways
Moves a gateway onto the local subnet with a static address over UDP, finds it
again by MAC, switches it to DHCP and waits until its web services answer.
Progress is tracked per MAC with a phase_history array for the UI.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from discovery.manager import GatewayDiscovery
from discovery.models import DiscoveredDevice, GatewayFamily, format_mac, normalize_mac
from discovery.network_discovery import send_network_config
from discovery.packets import Credentials, NetworkSettings, encode_set_config
from gateways import adapter_for, detect_family
from gateways.errors import GatewayError

logger = logging.getLogger(__name__)


class SetupState(Enum):
    """Setup state, in the order a successful run passes through them"""
    UNCONFIGURED = "unconfigured"
    STATIC_IP_SET = "static_ip_set"
    DISCOVERED_AT_STATIC_IP = "discovered_at_static_ip"
    DHCP_ENABLED = "dhcp_enabled"
    DISCOVERED_AT_DHCP_IP = "discovered_at_dhcp_ip"
    READY = "ready"
    FAILED = "failed"


PHASES = ["static_ip", "find_static", "enable_dhcp", "find_dhcp", "detect", "ready"]


@dataclass
class SetupProgress:
    """Setup progress for one gateway"""
    mac: str
    state: SetupState = SetupState.UNCONFIGURED
    ip: Optional[str] = None
    family: GatewayFamily = GatewayFamily.UNKNOWN
    message: str = ""
    execution_time_seconds: float = 0.0
    phase_history: List[Dict] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def finished(self) -> bool:
        return self.state in (SetupState.READY, SetupState.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mac': self.mac,
            'state': self.state.value,
            'ip': self.ip,
            'family': self.family.value,
            'message': self.message,
            'execution_time_seconds': round(self.execution_time_seconds, 1),
            'phase_history': [dict(p) for p in self.phase_history],
            'timestamp': self.timestamp.isoformat(),
        }


class SetupFailed(Exception):
    """Raised inside a run to abandon the remaining phases"""

    def __init__(self, phase: str, message: str):
        super().__init__(message)
        self.phase = phase
        self.message = message


class _Run:
    """Timers and phase bookkeeping for one workflow execution"""

    def __init__(self, progress: SetupProgress):
        self.progress = progress
        self.start_time = time.time()
        self.phase_start_time = None
        progress.phase_history = [
            {"phase": phase, "status": "waiting", "elapsed_time": 0.0,
             "attempts": 0, "current_action": "Waiting"}
            for phase in PHASES
        ]

    def _phase(self, name: str) -> Dict:
        return next(p for p in self.progress.phase_history if p["phase"] == name)

    def _touch(self, message: Optional[str] = None):
        self.progress.execution_time_seconds = time.time() - self.start_time
        self.progress.timestamp = datetime.now(timezone.utc)
        if message is not None:
            self.progress.message = message

    def begin(self, name: str, action: str):
        self.phase_start_time = time.time()
        self.update(name, action)

    def update(self, name: str, action: str, attempts: Optional[int] = None):
        phase = self._phase(name)
        phase["status"] = "inprogress"
        phase["current_action"] = action
        phase["elapsed_time"] = time.time() - self.phase_start_time
        if attempts is not None:
            phase["attempts"] = attempts
        self._touch(action)

    def complete(self, name: str, state: Optional[SetupState], action: str):
        phase = self._phase(name)
        phase["status"] = "completed"
        phase["current_action"] = action
        phase["elapsed_time"] = time.time() - self.phase_start_time
        if state is not None:
            self.progress.state = state
        self._touch(action)

    def skip(self, name: str, action: str, state: Optional[SetupState] = None):
        phase = self._phase(name)
        phase["status"] = "skipped"
        phase["current_action"] = action
        if state is not None:
            self.progress.state = state
            self._touch(action)

    def fail(self, name: str, message: str):
        phase = self._phase(name)
        phase["status"] = "failed"
        phase["current_action"] = message
        if self.phase_start_time is not None:
            phase["elapsed_time"] = time.time() - self.phase_start_time
        for p in self.progress.phase_history:
            if p["status"] == "waiting":
                p["status"] = "skipped"
        self.progress.state = SetupState.FAILED
        self._touch(message)


class SetupWorkflow:
    """Runs the static IP -> DHCP setup sequence and keeps per-MAC progress"""

    def __init__(self, config: Dict, discovery: GatewayDiscovery,
                 send_config: Callable = send_network_config,
                 adapter_factory: Callable = adapter_for,
                 detector: Callable = detect_family):
        self.discovery = discovery
        self.send_config = send_config
        self.adapter_factory = adapter_factory
        self.detector = detector

        self.gateway_config = config.get('gateway', {})
        self.udp_config = config.get('udp_config', {})
        setup = config.get('setup', {})
        self.discovery_port = config.get('discovery', {}).get('port', 1901)
        self.factory_default_ip = setup.get('factory_default_ip', '192.168.0.7')
        self.static_wait_seconds = setup.get('static_wait_seconds', 12)
        self.static_scan_attempts = setup.get('static_scan_attempts', 6)
        self.dhcp_wait_seconds = setup.get('dhcp_wait_seconds', 20)
        self.dhcp_scan_attempts = setup.get('dhcp_scan_attempts', 5)
        self.scan_interval_seconds = setup.get('scan_interval_seconds', 4)
        self.detect_attempts = setup.get('detect_attempts', 5)
        self.detect_interval_seconds = setup.get('detect_interval_seconds', 2)
        self.ready_attempts = setup.get('ready_attempts', 20)
        self.ready_interval_seconds = setup.get('ready_interval_seconds', 1.5)
        self.prepare_gateway = setup.get('prepare_gateway', True)

        self.progress: Dict[str, SetupProgress] = {}
        self.active: Dict[str, asyncio.Task] = {}

    # ================== PUBLIC API ==================

    def get_progress(self, mac: str) -> Optional[SetupProgress]:
        return self.progress.get(normalize_mac(mac))

    def is_active(self, mac: str) -> bool:
        task = self.active.get(normalize_mac(mac))
        return task is not None and not task.done()

    def _resolve(self, settings: Optional[NetworkSettings],
                 credentials: Optional[Credentials]):
        settings = settings or self.default_static_settings()
        credentials = credentials or Credentials(self.gateway_config.get('username', 'admin'),
                                                 self.gateway_config.get('password', 'admin'))
        return settings, credentials

    def validate(self, mac: str, settings: Optional[NetworkSettings] = None,
                 credentials: Optional[Credentials] = None):
        """Raise ValueError for a MAC, address or credential the UDP command cannot carry"""
        settings, credentials = self._resolve(settings, credentials)
        encode_set_config(mac, credentials, settings)
        return settings, credentials

    def start(self, mac: str, settings: Optional[NetworkSettings] = None,
              credentials: Optional[Credentials] = None) -> SetupProgress:
        """Schedule a run on the current loop and return its initial progress"""
        settings, credentials = self.validate(mac, settings, credentials)
        key = normalize_mac(mac)
        if self.is_active(key):
            raise RuntimeError(f"Setup already in progress for {format_mac(key)}")

        progress = SetupProgress(mac=format_mac(key), message="Setup accepted")
        self.progress[key] = progress
        self.active[key] = asyncio.create_task(self.run(mac, settings, credentials, progress))
        return progress

    async def run(self, mac: str, settings: Optional[NetworkSettings] = None,
                  credentials: Optional[Credentials] = None,
                  progress: Optional[SetupProgress] = None) -> SetupProgress:
        """Execute every phase; failures end in FAILED rather than raising"""
        settings, credentials = self.validate(mac, settings, credentials)
        key = normalize_mac(mac)
        progress = progress or SetupProgress(mac=format_mac(key))
        self.progress[key] = progress
        run = _Run(progress)

        logger.info(f"[LAUNCH] Starting setup for {progress.mac}, static address {settings.ip}")
        try:
            current_phase = "static_ip"
            await self._set_static_ip(run, progress.mac, settings, credentials)

            current_phase = "find_static"
            device = await self._find_at_static_ip(run, progress.mac, settings.ip)

            if device.ip == settings.ip:
                current_phase = "enable_dhcp"
                await self._enable_dhcp(run, device, settings, credentials)
                current_phase = "find_dhcp"
                await self._find_at_dhcp_ip(run, progress.mac, settings.ip)
            else:
                action = f"Gateway found at {device.ip} (DHCP already active)"
                run.skip("enable_dhcp", action)
                run.skip("find_dhcp", action, SetupState.DISCOVERED_AT_DHCP_IP)
                logger.info(action)

            current_phase = "detect"
            await self._detect_family(run, device)

            current_phase = "ready"
            await self._wait_until_ready(run)

        except SetupFailed as e:
            run.fail(e.phase, e.message)
            logger.error(f"[FAIL] Setup for {progress.mac} failed in {e.phase}: {e.message}")
        except GatewayError as e:
            run.fail(current_phase, str(e))
            logger.error(f"[FAIL] Setup for {progress.mac} failed in {current_phase}: {e}")
        except Exception as e:
            run.fail(current_phase, f"Unexpected error: {e}")
            logger.exception(f"[FAIL] Setup for {progress.mac} crashed in {current_phase}")
        else:
            logger.info(f"[PASS] Setup for {progress.mac} complete: {progress.family.value} at {progress.ip} "
                        f"({progress.execution_time_seconds:.1f}s)")
        finally:
            self.active.pop(key, None)

        return progress

    def default_static_settings(self) -> NetworkSettings:
        return NetworkSettings(
            dhcp=False,
            ip=self.udp_config.get('static_ip', '192.168.1.200'),
            gateway=self.udp_config.get('gateway', '192.168.1.1'),
            netmask=self.udp_config.get('netmask', '255.255.255.0'),
            model=self.udp_config.get('model', 'USR-N510'),
        )

    # ================== PHASES ==================

    async def _push_settings(self, mac: str, settings: NetworkSettings, credentials: Credentials):
        return await self.send_config(
            mac, settings, credentials,
            port=self.discovery_port,
            save_delay_seconds=self.udp_config.get('save_delay_seconds', 0.5),
            ack_timeout_seconds=self.udp_config.get('ack_timeout_seconds', 3),
        )

    async def _set_static_ip(self, run: _Run, mac: str, settings: NetworkSettings, credentials: Credentials):
        run.begin("static_ip", f"Setting static IP ({settings.ip}) over UDP")
        result = await self._push_settings(mac, settings, credentials)
        if not result.success:
            raise SetupFailed("static_ip", f"Failed to set static IP: {result.message}")

        run.complete("static_ip", SetupState.STATIC_IP_SET,
                     f"Static IP configured, waiting {self.static_wait_seconds}s for restart")
        await asyncio.sleep(self.static_wait_seconds)

    async def _find_at_static_ip(self, run: _Run, mac: str, static_ip: str) -> DiscoveredDevice:
        run.begin("find_static", "Scanning for gateway by MAC address")
        device = await self._find_by_mac(run, "find_static", mac, self.static_scan_attempts,
                                         excluded={self.factory_default_ip})
        if device is None:
            raise SetupFailed(
                "find_static",
                f"Could not find gateway (MAC: {mac}) on network after setup. "
                f"Try scanning manually or connect to {static_ip} directly.")

        run.progress.ip = device.ip
        run.progress.family = device.family
        run.complete("find_static", SetupState.DISCOVERED_AT_STATIC_IP, f"Gateway found at {device.ip}")
        return device

    async def _enable_dhcp(self, run: _Run, device: DiscoveredDevice,
                           settings: NetworkSettings, credentials: Credentials):
        run.begin("enable_dhcp", f"Enabling DHCP on {device.ip}")
        family = device.family
        if family == GatewayFamily.UNKNOWN:
            family = await self.detector(device.ip, self.gateway_config)

        if family == GatewayFamily.N510:
            adapter = self.adapter_factory(family, device.ip, self.gateway_config)
            await adapter.enable_dhcp()
        else:
            dhcp_settings = NetworkSettings(dhcp=True, ip=settings.ip, gateway=settings.gateway,
                                            netmask=settings.netmask, model=settings.model)
            result = await self._push_settings(run.progress.mac, dhcp_settings, credentials)
            if not result.success:
                raise SetupFailed(
                    "enable_dhcp",
                    f"Failed to enable DHCP: {result.message}. Gateway is reachable at {device.ip}.")

        run.complete("enable_dhcp", SetupState.DHCP_ENABLED,
                     f"DHCP enabled, waiting {self.dhcp_wait_seconds}s for reboot")
        await asyncio.sleep(self.dhcp_wait_seconds)

    async def _find_at_dhcp_ip(self, run: _Run, mac: str, static_ip: str):
        run.begin("find_dhcp", "Finding gateway at new DHCP address")
        device = await self._find_by_mac(run, "find_dhcp", mac, self.dhcp_scan_attempts,
                                         excluded={self.factory_default_ip, static_ip})
        if device is None:
            raise SetupFailed(
                "find_dhcp",
                f"Could not find gateway (MAC: {mac}) at a DHCP address; last known address {static_ip}. "
                f"Scan again once the gateway has finished rebooting.")

        run.progress.ip = device.ip
        run.complete("find_dhcp", SetupState.DISCOVERED_AT_DHCP_IP, f"Gateway found at new IP: {device.ip}")

    async def _detect_family(self, run: _Run, device: DiscoveredDevice):
        ip = run.progress.ip
        run.begin("detect", "Detecting gateway type")
        family = GatewayFamily.UNKNOWN
        for attempt in range(1, self.detect_attempts + 1):
            run.update("detect", f"Detecting gateway type (attempt {attempt}/{self.detect_attempts})", attempt)
            family = await self.detector(ip, self.gateway_config)
            if family != GatewayFamily.UNKNOWN:
                break
            if attempt < self.detect_attempts:
                await asyncio.sleep(self.detect_interval_seconds)

        if family == GatewayFamily.UNKNOWN and device.family != GatewayFamily.UNKNOWN:
            family = device.family
            logger.info(f"Using family from discovery for {ip}: {family.value}")

        run.progress.family = family
        run.complete("detect", None, f"Gateway type: {family.value}")

    async def _wait_until_ready(self, run: _Run):
        progress = run.progress
        if progress.family == GatewayFamily.UNKNOWN:
            message = f"Gateway at {progress.ip} is up but its type could not be detected"
            run.skip("ready", message, SetupState.READY)
            logger.warning(f"[WARN] {message}")
            return

        run.begin("ready", f"Waiting for {progress.family.value} to stabilize")
        adapter = self.adapter_factory(progress.family, progress.ip, self.gateway_config)
        ready = await adapter.wait_until_ready(self.ready_attempts, self.ready_interval_seconds)
        if not ready:
            raise SetupFailed(
                "ready",
                f"{progress.family.value} at {progress.ip} did not answer after {self.ready_attempts} polls")

        if self.prepare_gateway:
            await self._prepare(run, adapter)

        run.complete("ready", SetupState.READY,
                     f"{progress.family.value} gateway ready at {progress.ip}")

    async def _prepare(self, run: _Run, adapter):
        """Bring a fresh gateway to the serial defaults; problems here are logged only"""
        family = run.progress.family
        try:
            if family == GatewayFamily.N720:
                run.update("ready", "Configuring Uart1 for RS485")
                if not await adapter.configure_uart1():
                    logger.warning(f"[WARN] Uart1 configuration not accepted by {adapter.host}")
            else:
                run.update("ready", "Cleaning up default configuration")
                await adapter.remove_default_devices()
                run.update("ready", "Configuring port 1 for Modbus RTU")
                await adapter.configure_port1()
        except GatewayError as e:
            logger.warning(f"[WARN] Post-setup configuration on {adapter.host} incomplete: {e}")

    # ================== HELPERS ==================

    async def _find_by_mac(self, run: _Run, phase: str, mac: str, attempts: int,
                           excluded: Set[str]) -> Optional[DiscoveredDevice]:
        """Rescan until the MAC answers with a usable address outside `excluded`"""
        for attempt in range(1, attempts + 1):
            run.update(phase, f"Scanning for gateway by MAC address (attempt {attempt}/{attempts})", attempt)
            device = await self.discovery.find_by_mac(mac)
            if device is None:
                logger.info(f"Target MAC {mac} not found in scan {attempt}/{attempts}")
            elif not device.has_valid_address:
                logger.info(f"Gateway {mac} answered with {device.ip}, still booting")
            elif device.ip in excluded:
                logger.info(f"Gateway {mac} still at {device.ip}, waiting for new address")
            else:
                return device

            if attempt < attempts:
                await asyncio.sleep(self.scan_interval_seconds)
        return None
