"""
Discovery data structures and models
"""

import re
import time
from enum import Enum
from typing import List, Optional
from dataclasses import dataclass, field

SENTINEL_ADDRESSES = ('0.0.0.0', '255.255.255.255')

UNKNOWN_MODEL = 'USR Gateway'
UNKNOWN_FIRMWARE = '-'


class GatewayFamily(str, Enum):
    """Closed set of gateway protocol generations"""
    N510 = 'N510'
    N720 = 'N720'
    UNKNOWN = 'unknown'


def normalize_mac(mac: str) -> str:
    """Identity key for a hardware address: 12 uppercase hex digits, no separators"""
    return re.sub(r'[^0-9A-Fa-f]', '', mac or '').upper()


def format_mac(mac: str) -> str:
    """Canonical display form AA-BB-CC-DD-EE-FF"""
    key = normalize_mac(mac)
    return '-'.join(key[i:i + 2] for i in range(0, len(key), 2))


def is_valid_address(ip: Optional[str]) -> bool:
    """False for missing addresses and the sentinels devices report mid-transition"""
    return bool(ip) and ip not in SENTINEL_ADDRESSES


@dataclass
class DiscoveredDevice:
    """A gateway identified by its hardware address"""
    mac: str
    ip: str
    model: str = UNKNOWN_MODEL
    firmware: str = UNKNOWN_FIRMWARE
    family: GatewayFamily = GatewayFamily.UNKNOWN
    same_subnet: Optional[bool] = None
    discovery_method: str = "udp_broadcast"  # "udp_broadcast", "http_probe"
    last_seen: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return normalize_mac(self.mac)

    @property
    def has_valid_address(self) -> bool:
        return is_valid_address(self.ip)

    def to_dict(self) -> dict:
        return {
            'mac': self.mac,
            'ip': self.ip,
            'model': self.model,
            'firmware': self.firmware,
            'family': self.family.value,
            'same_subnet': self.same_subnet,
            'discovery_method': self.discovery_method,
            'last_seen': self.last_seen,
        }


@dataclass(frozen=True)
class LocalInterface:
    """A non-loopback IPv4 interface of this host"""
    name: str
    address: str
    netmask: str


@dataclass
class DiscoveryResult:
    """Results from discovery operations"""
    devices: List[DiscoveredDevice]
    method: str
    duration_seconds: float
    devices_tested: int
    success_count: int
