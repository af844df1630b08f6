"""
Local IPv4 interface enumeration and subnet arithmetic
"""

import ipaddress
import logging
import socket
from typing import Iterable, List, Optional

import psutil

from .models import LocalInterface

logger = logging.getLogger(__name__)

# Docker bridge, VirtualBox host-only and docker-machine networks never host gateways
VIRTUAL_PREFIXES = ('172.17.', '192.168.56.', '192.168.99.')


def get_local_interfaces() -> List[LocalInterface]:
    """All non-loopback IPv4 interfaces with an address and netmask"""
    interfaces = []
    try:
        addresses = psutil.net_if_addrs()
    except (OSError, RuntimeError) as e:
        logger.warning(f"Could not enumerate network interfaces: {e}")
        return interfaces

    for name, addrs in addresses.items():
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            if addr.address.startswith('127.'):
                continue
            interfaces.append(LocalInterface(name=name, address=addr.address, netmask=addr.netmask))
    return interfaces


def directed_broadcast(address: str, netmask: str) -> str:
    """Highest address of the subnet: address | ~netmask, per octet"""
    addr_octets = [int(o) for o in address.split('.')]
    mask_octets = [int(o) for o in netmask.split('.')]
    return '.'.join(str(a | (~m & 0xFF)) for a, m in zip(addr_octets, mask_octets))


def _network_part(address: str, netmask: str) -> int:
    return int(ipaddress.IPv4Address(address)) & int(ipaddress.IPv4Address(netmask))


def is_reachable(candidate: str, interfaces: Iterable[LocalInterface]) -> bool:
    """True when candidate shares a subnet with any local interface (no gateway hop)"""
    try:
        ipaddress.IPv4Address(candidate)
    except ValueError:
        return False

    for iface in interfaces:
        try:
            if _network_part(candidate, iface.netmask) == _network_part(iface.address, iface.netmask):
                return True
        except ValueError:
            logger.debug(f"Skipping interface {iface.name} with unusable address {iface.address}")
    return False


def broadcast_targets(interfaces: Iterable[LocalInterface]) -> List[str]:
    """Global broadcast plus each interface's directed broadcast, deduplicated"""
    targets = ['255.255.255.255']
    for iface in interfaces:
        try:
            target = directed_broadcast(iface.address, iface.netmask)
        except ValueError:
            continue
        if target not in targets:
            targets.append(target)
    return targets


def pick_primary_interface(interfaces: Iterable[LocalInterface]) -> Optional[LocalInterface]:
    """Prefer a physical LAN interface over container/VM bridges"""
    candidates = list(interfaces)
    for iface in candidates:
        if not iface.address.startswith(VIRTUAL_PREFIXES):
            return iface
    return candidates[0] if candidates else None


def suggest_static_settings(iface: LocalInterface) -> dict:
    """Suggested static address (.200) and gateway (.1) on the interface's network"""
    prefix = '.'.join(iface.address.split('.')[:3])
    return {
        'suggested_static_ip': f"{prefix}.200",
        'suggested_gateway': f"{prefix}.1",
        'subnet_mask': iface.netmask,
    }
