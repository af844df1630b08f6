"""
Discovery module for USR gateway discovery and identity resolution
"""

from .models import DiscoveredDevice, DiscoveryResult, GatewayFamily, LocalInterface
from .parser import parse_discovery_response
from .reconciler import DeviceRegistry, merge
from .interfaces import get_local_interfaces, is_reachable, directed_broadcast
from .network_discovery import BroadcastTransport, NetworkConfigResult, send_network_config
from .manager import GatewayDiscovery

__all__ = ['DiscoveredDevice', 'DiscoveryResult', 'GatewayFamily', 'LocalInterface',
           'parse_discovery_response', 'DeviceRegistry', 'merge',
           'get_local_interfaces', 'is_reachable', 'directed_broadcast',
           'BroadcastTransport', 'NetworkConfigResult', 'send_network_config',
           'GatewayDiscovery']
