"""
UDP broadcast transport for USR gateways (port 1901)
Discovery scans and the network-settings command path share this module
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .interfaces import broadcast_targets, get_local_interfaces, is_reachable
from .models import DiscoveredDevice, LocalInterface
from .packets import (Credentials, NetworkSettings, classify_reply,
                      encode_save_reboot, encode_set_config)
from .parser import DISCOVERY_KEYWORD, DISCOVERY_PORT, parse_discovery_response
from .reconciler import DeviceRegistry

logger = logging.getLogger(__name__)


class _DatagramCollector(asyncio.DatagramProtocol):
    """Hands every inbound datagram to a callback"""

    def __init__(self, on_datagram: Callable[[bytes, str], None]):
        self.on_datagram = on_datagram
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        try:
            self.on_datagram(data, addr[0])
        except Exception as e:
            logger.warning(f"Error handling datagram from {addr[0]}: {e}")

    def error_received(self, exc):
        # Unreachable broadcast targets surface here on some platforms
        logger.debug(f"UDP error: {exc}")


async def _open_broadcast_endpoint(on_datagram: Callable[[bytes, str], None]):
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        lambda: _DatagramCollector(on_datagram),
        local_addr=('0.0.0.0', 0),
        allow_broadcast=True,
    )
    return transport


class BroadcastTransport:
    """Sends the discovery keyword and collects replies for a fixed window"""

    def __init__(self, port: int = DISCOVERY_PORT, timeout_ms: int = 3000,
                 interfaces_provider: Callable[[], List[LocalInterface]] = get_local_interfaces):
        self.port = port
        self.timeout_ms = timeout_ms
        self.interfaces_provider = interfaces_provider

    async def scan(self, timeout_ms: Optional[int] = None,
                   targets: Optional[Iterable[str]] = None) -> List[DiscoveredDevice]:
        """
        Broadcast one keyword datagram per target and listen for the full window

        Never returns early: devices coming out of a reboot may answer late.
        Socket failures are logged and yield whatever was collected (possibly
        nothing); a network that blocks broadcast is not an error.
        """
        timeout = (timeout_ms if timeout_ms is not None else self.timeout_ms) / 1000
        interfaces = self.interfaces_provider()
        registry = DeviceRegistry()

        def on_datagram(data: bytes, sender: str):
            device = parse_discovery_response(data, sender)
            if device is None:
                return
            device.same_subnet = is_reachable(device.ip, interfaces)
            registry.merge(device)
            logger.debug(f"Reply from {device.mac} at {device.ip} ({device.model} {device.firmware})")

        try:
            transport = await _open_broadcast_endpoint(on_datagram)
        except OSError as e:
            logger.error(f"[FAIL] Could not open UDP discovery socket: {e}")
            return []

        start_time = time.time()
        try:
            target_list = list(targets) if targets is not None else broadcast_targets(interfaces)
            for target in target_list:
                try:
                    transport.sendto(DISCOVERY_KEYWORD, (target, self.port))
                    logger.debug(f"Sent discovery keyword to {target}:{self.port}")
                except OSError as e:
                    logger.warning(f"Discovery send to {target} failed: {e}")

            logger.info(f"[SEARCH] Listening {timeout:.1f}s for gateway replies on {len(target_list)} target(s)")
            await asyncio.sleep(timeout)
        finally:
            transport.close()

        devices = registry.devices()
        logger.info(f"[OK] UDP scan found {len(devices)} gateway(s) in {time.time() - start_time:.1f}s")
        return devices


@dataclass
class NetworkConfigResult:
    """Outcome of a settings + save/reboot exchange, judged by acknowledgements"""
    config_acked: bool = False
    save_acked: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        # The save/reboot ack alone is enough: the settings ack is sometimes lost
        return self.save_acked

    @property
    def message(self) -> str:
        if self.error:
            return f"UDP configuration failed: {self.error}"
        if self.config_acked and self.save_acked:
            return "Configuration applied, gateway is rebooting"
        if self.save_acked:
            return "Gateway rebooting, configuration may have been applied"
        return "No acknowledgement from gateway, check the MAC address and network"


async def send_network_config(mac: str,
                              settings: NetworkSettings,
                              credentials: Credentials = Credentials(),
                              port: int = DISCOVERY_PORT,
                              target: str = '255.255.255.255',
                              save_delay_seconds: float = 0.5,
                              ack_timeout_seconds: float = 3.0) -> NetworkConfigResult:
    """
    Push network settings to a gateway by MAC over UDP broadcast

    Works across subnets since it needs no IP connectivity. Sends the settings
    command, then save-and-reboot after a short gap, and listens for both
    acknowledgements until the save ack arrives or the window closes.
    """
    set_packet = encode_set_config(mac, credentials, settings)
    save_packet = encode_save_reboot(mac, credentials)

    result = NetworkConfigResult()
    saved = asyncio.Event()

    def on_datagram(data: bytes, sender: str):
        kind = classify_reply(data)
        if kind == 'set_config':
            logger.info(f"[OK] Settings acknowledged by {sender}")
            result.config_acked = True
        elif kind == 'save_reboot':
            logger.info(f"[OK] Save/reboot acknowledged by {sender}")
            result.save_acked = True
            saved.set()
        elif kind == 'other':
            logger.debug(f"Unrelated UDP reply from {sender}: {data.hex().upper()}")

    mode = 'DHCP' if settings.dhcp else f"static {settings.ip}/{settings.netmask} gw {settings.gateway}"
    logger.info(f"Sending UDP network config to {mac}: {mode}")

    try:
        transport = await _open_broadcast_endpoint(on_datagram)
    except OSError as e:
        logger.error(f"[FAIL] Could not open UDP config socket: {e}")
        result.error = str(e)
        return result

    try:
        transport.sendto(set_packet, (target, port))
        await asyncio.sleep(save_delay_seconds)
        transport.sendto(save_packet, (target, port))

        remaining = max(ack_timeout_seconds - save_delay_seconds, 0)
        try:
            await asyncio.wait_for(saved.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            logger.debug(f"No save/reboot ack from {mac} within {ack_timeout_seconds}s")
    except OSError as e:
        logger.error(f"[FAIL] UDP config send failed: {e}")
        result.error = str(e)
    finally:
        transport.close()

    logger.info(f"UDP config result for {mac}: set={result.config_acked} save={result.save_acked}")
    return result
