"""
Gateway family detection and HTTP identity probing

N510 answers /define.json with a document carrying `modename`; N720 answers
download_flex.cgi?name=status with `soft_ver`. Probes run one after the other
and are read-only.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

from discovery.interfaces import is_reachable
from discovery.models import (DiscoveredDevice, GatewayFamily, LocalInterface,
                              format_mac, normalize_mac)
from .client import GatewayClient
from .errors import GatewayError

logger = logging.getLogger(__name__)

N510_PROBE_PATH = 'define.json'
N720_PROBE_PATH = 'download_flex.cgi?name=status'


async def _probe(client: GatewayClient, path: str, marker: str, timeout: Optional[float]) -> Optional[Dict]:
    try:
        document = await client.get_json(path, timeout=timeout)
    except GatewayError as e:
        logger.debug(f"Probe {path} on {client.host} failed: {e}")
        return None
    if isinstance(document, dict) and document.get(marker):
        return document
    return None


async def identify(host: str, gateway_config: Optional[Dict] = None,
                   timeout: Optional[float] = None) -> Tuple[GatewayFamily, Optional[Dict]]:
    client = GatewayClient(host, gateway_config)

    define = await _probe(client, N510_PROBE_PATH, 'modename', timeout)
    if define is not None:
        return GatewayFamily.N510, define

    status = await _probe(client, N720_PROBE_PATH, 'soft_ver', timeout)
    if status is not None:
        return GatewayFamily.N720, status

    return GatewayFamily.UNKNOWN, None


async def detect_family(host: str, gateway_config: Optional[Dict] = None,
                        timeout: Optional[float] = None) -> GatewayFamily:
    """
    Classify a gateway as N510, N720 or unknown

    Unknown is a normal answer while a device reboots; callers retry with backoff.
    """
    family, _ = await identify(host, gateway_config, timeout)
    if family == GatewayFamily.UNKNOWN:
        logger.info(f"[WARN] Could not detect gateway family at {host}")
    else:
        logger.info(f"[OK] Gateway at {host} detected as {family.value}")
    return family


def apply_identity(device: DiscoveredDevice, family: GatewayFamily, document: Dict) -> DiscoveredDevice:
    """Fill family, model and firmware from a probe document; the MAC only when unknown"""
    device.family = family
    if family == GatewayFamily.N510:
        device.firmware = document.get('ver') or device.firmware
        device.model = document.get('modename') or device.model
        reported_mac = document.get('usermac')
    else:
        device.firmware = document.get('soft_ver') or device.firmware
        device.model = 'N720'
        reported_mac = document.get('mac')

    if reported_mac and not normalize_mac(device.mac):
        device.mac = format_mac(reported_mac)
    return device


async def probe_gateway(host: str, interfaces: Iterable[LocalInterface] = (),
                        gateway_config: Optional[Dict] = None,
                        timeout: Optional[float] = None) -> Optional[DiscoveredDevice]:
    """Identify a gateway at a known address over HTTP, None when nothing answers"""
    family, document = await identify(host, gateway_config, timeout)
    if document is None:
        logger.debug(f"No gateway found at {host}")
        return None

    device = DiscoveredDevice(
        mac='Unknown',
        ip=host,
        model='USR-N510' if family == GatewayFamily.N510 else 'N720',
        firmware='-',
        same_subnet=is_reachable(host, interfaces),
        discovery_method="http_probe",
    )
    apply_identity(device, family, document)
    logger.info(f"[OK] Found {family.value} gateway at {host} (MAC {device.mac}, fw {device.firmware})")
    return device
