"""
Hardware-address keyed reconciliation of discovery replies

Gateways change address while being configured (factory default, static, DHCP,
and 0.0.0.0 while rebooting), so records are keyed by MAC only.
"""

import logging
import time
from typing import Dict, Iterable, List, Optional

from .models import DiscoveredDevice, normalize_mac

logger = logging.getLogger(__name__)


def merge(existing: Dict[str, DiscoveredDevice],
          device: DiscoveredDevice) -> Dict[str, DiscoveredDevice]:
    """
    Merge one accepted reply into a MAC-keyed map, in place

    A known record is only replaced when it has no usable address and the new
    reply does; a good address never regresses to a sentinel, and two valid
    addresses never flap within a scan window.
    """
    key = normalize_mac(device.mac)
    if not key:
        return existing

    current = existing.get(key)
    if current is None:
        existing[key] = device
        return existing

    if device.has_valid_address and not current.has_valid_address:
        logger.info(f"[OK] {device.mac} resolved address {current.ip} -> {device.ip}")
        current.ip = device.ip
        current.model = device.model
        current.firmware = device.firmware
        current.family = device.family
        current.same_subnet = device.same_subnet
        current.discovery_method = device.discovery_method

    current.last_seen = max(current.last_seen, device.last_seen, time.time())
    return existing


class DeviceRegistry:
    """Mutable set of gateways keyed by hardware address"""

    def __init__(self, devices: Optional[Iterable[DiscoveredDevice]] = None):
        self._devices: Dict[str, DiscoveredDevice] = {}
        for device in devices or ():
            self.merge(device)

    def merge(self, device: DiscoveredDevice) -> DiscoveredDevice:
        merge(self._devices, device)
        return self._devices.get(normalize_mac(device.mac), device)

    def update(self, device: DiscoveredDevice) -> DiscoveredDevice:
        """
        Record a device seen by a newer scan

        A valid address replaces whatever is stored, so a gateway that moved
        (static to DHCP) is reported at its new address. A sentinel address
        falls back to `merge` and never overwrites a valid one.
        """
        key = normalize_mac(device.mac)
        if not key:
            return device
        current = self._devices.get(key)
        if current is None or not device.has_valid_address:
            return self.merge(device)
        if current.ip != device.ip:
            logger.info(f"[OK] {device.mac} moved {current.ip} -> {device.ip}")
        device.last_seen = max(current.last_seen, device.last_seen)
        self._devices[key] = device
        return device

    def get(self, mac: str) -> Optional[DiscoveredDevice]:
        return self._devices.get(normalize_mac(mac))

    def devices(self) -> List[DiscoveredDevice]:
        return list(self._devices.values())

    def clear(self):
        self._devices.clear()

    def __len__(self):
        return len(self._devices)

    def __contains__(self, mac: str) -> bool:
        return normalize_mac(mac) in self._devices
