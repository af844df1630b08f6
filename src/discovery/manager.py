"""
Main discovery manager: UDP broadcast scan, HTTP fallback on known addresses,
identity enrichment, and the registry of gateways seen so far
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from gateways.detector import apply_identity, identify, probe_gateway
from .interfaces import get_local_interfaces
from .models import DiscoveredDevice, DiscoveryResult, LocalInterface, normalize_mac
from .network_discovery import BroadcastTransport
from .reconciler import DeviceRegistry

logger = logging.getLogger(__name__)


class GatewayDiscovery:
    """Discovery service for USR gateways"""

    def __init__(self, config: Dict, transport: Optional[BroadcastTransport] = None,
                 interfaces_provider: Callable[[], List[LocalInterface]] = get_local_interfaces):
        discovery_config = config.get('discovery', {})
        self.gateway_config = config.get('gateway', {})
        self.timeout_ms = discovery_config.get('timeout_ms', 3000)
        self.known_gateway_ips = discovery_config.get('known_gateway_ips', ['192.168.0.7', '192.168.1.200'])
        self.probe_timeout = discovery_config.get('probe_timeout', 3)
        self.max_concurrent_probes = discovery_config.get('max_concurrent_probes', 5)
        self.interfaces_provider = interfaces_provider
        self.transport = transport or BroadcastTransport(
            port=discovery_config.get('port', 1901),
            timeout_ms=self.timeout_ms,
            interfaces_provider=interfaces_provider,
        )
        self.known_devices = DeviceRegistry()

    async def scan(self, timeout_ms: Optional[int] = None) -> List[DiscoveredDevice]:
        """One raw UDP scan, without fallback or enrichment"""
        return await self.transport.scan(timeout_ms)

    async def discover(self, timeout_ms: Optional[int] = None, enrich: bool = True) -> DiscoveryResult:
        """
        Scan, fall back to probing known addresses when nothing answers, then
        record the results in the registry. The returned records are this
        scan's own; an earlier scan never masks a newer valid address.
        """
        logger.info("[SEARCH] Starting gateway discovery...")
        start_time = time.time()

        devices = await self.transport.scan(timeout_ms)
        method = "udp_broadcast"
        devices_tested = len(devices)

        if not devices:
            logger.info("No gateways answered the broadcast, probing known addresses over HTTP...")
            devices = await self.probe_known_addresses()
            method = "http_probe"
            devices_tested = len(self.known_gateway_ips)
        elif enrich:
            devices = await self.enrich(devices)

        for device in devices:
            self.known_devices.update(device)

        duration = time.time() - start_time
        logger.info(f"[PASS] Discovery complete: {len(devices)} gateway(s) via {method} in {duration:.1f}s")
        return DiscoveryResult(devices, method, duration, devices_tested, len(devices))

    async def probe(self, ip: str) -> Optional[DiscoveredDevice]:
        """HTTP identity probe of one address"""
        device = await probe_gateway(ip, self.interfaces_provider(), self.gateway_config, self.probe_timeout)
        if device and normalize_mac(device.mac):
            self.known_devices.update(device)
        return device

    async def probe_known_addresses(self) -> List[DiscoveredDevice]:
        interfaces = self.interfaces_provider()
        semaphore = asyncio.Semaphore(self.max_concurrent_probes)

        async def _probe(ip: str):
            async with semaphore:
                return await probe_gateway(ip, interfaces, self.gateway_config, self.probe_timeout)

        results = await asyncio.gather(*[_probe(ip) for ip in self.known_gateway_ips])
        return [device for device in results if device is not None]

    async def enrich(self, devices: List[DiscoveredDevice]) -> List[DiscoveredDevice]:
        """Fill family, model and firmware for devices with a usable address"""
        semaphore = asyncio.Semaphore(self.max_concurrent_probes)

        async def _enrich(device: DiscoveredDevice):
            if not device.has_valid_address:
                return device
            async with semaphore:
                family, document = await identify(device.ip, self.gateway_config, self.probe_timeout)
            if document is not None:
                apply_identity(device, family, document)
                logger.info(f"Enriched {family.value} gateway {device.ip}: "
                            f"firmware={device.firmware}, model={device.model}, mac={device.mac}")
            return device

        return list(await asyncio.gather(*[_enrich(d) for d in devices]))

    async def find_by_mac(self, mac: str, timeout_ms: Optional[int] = None) -> Optional[DiscoveredDevice]:
        """Scan once and return the reply for one hardware address, if any"""
        key = normalize_mac(mac)
        for device in await self.transport.scan(timeout_ms):
            if device.key == key:
                self.known_devices.update(device)
                return device
        return None

    def get_devices(self) -> List[DiscoveredDevice]:
        return self.known_devices.devices()
