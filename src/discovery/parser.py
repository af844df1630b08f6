"""
Decoder for USR discovery replies (UDP port 1901)

Reply layout as observed from N510/N720 firmware:
    bytes 0-1   header marker, FF24 or FF01
    bytes 5-8   configured IPv4 address
    bytes 9-14  hardware address
    bytes 15-   ASCII region carrying firmware and model strings
"""

import logging
import re
from typing import Optional, Tuple

from .models import (DiscoveredDevice, UNKNOWN_MODEL, UNKNOWN_FIRMWARE,
                     SENTINEL_ADDRESSES, format_mac)

logger = logging.getLogger(__name__)

DISCOVERY_KEYWORD = bytes.fromhex('FF010102')
DISCOVERY_PORT = 1901

MIN_RESPONSE_LENGTH = 20
ACCEPTED_HEADERS = ('FF24', 'FF01')

IP_FIELD = slice(5, 9)
MAC_FIELD = slice(9, 15)
TEXT_OFFSET = 15
TEXT_WINDOW_END = 40

FIRMWARE_PATTERN = re.compile(r'V?(\d+\.\d+\.\d+)')
MODEL_PATTERN = re.compile(r'(USR-)?N\d{3}', re.IGNORECASE)


def _printable(data: bytes, filler: str = ' ') -> str:
    return ''.join(chr(b) if 32 <= b < 127 else filler for b in data)


def _text_windows(data: bytes):
    """
    Texts searched in order: the trailing region with control bytes as spaces,
    then the fixed window and the whole buffer with control bytes dropped, which
    rejoins a version string split by a control byte
    """
    yield _printable(data[TEXT_OFFSET:])
    if len(data) >= 30:
        yield _printable(data[TEXT_OFFSET:TEXT_WINDOW_END], filler='')
    yield _printable(data, filler='')


def _extract_identity(data: bytes) -> Tuple[str, str]:
    firmware = None
    model = None
    for text in _text_windows(data):
        if firmware is None:
            match = FIRMWARE_PATTERN.search(text)
            if match:
                firmware = match.group(0)
        if model is None:
            match = MODEL_PATTERN.search(text)
            if match:
                model = match.group(0).upper()
        if firmware and model:
            break
    return model or UNKNOWN_MODEL, firmware or UNKNOWN_FIRMWARE


def parse_discovery_response(data: bytes, sender: str) -> Optional[DiscoveredDevice]:
    """
    Decode one discovery reply into a device record

    Returns None for anything that is not a device reply (short buffers, foreign
    headers, our own keyword echoed back). Never raises: broadcast noise is expected.
    The sender address always wins over the embedded one, since the embedded field
    is the configured address which the device may not be using yet.
    """
    try:
        if len(data) < MIN_RESPONSE_LENGTH:
            logger.debug(f"Ignoring undersized reply from {sender} ({len(data)} bytes)")
            return None

        if data == DISCOVERY_KEYWORD:
            return None

        header = data[:2].hex().upper()
        if header not in ACCEPTED_HEADERS:
            logger.debug(f"Ignoring reply from {sender} with header {header}")
            return None

        embedded_ip = '.'.join(str(b) for b in data[IP_FIELD])
        mac = format_mac(data[MAC_FIELD].hex())
        model, firmware = _extract_identity(data)

        ip = sender or embedded_ip
        if sender and embedded_ip != sender:
            logger.debug(f"Device {mac} embeds {embedded_ip} but replied from {sender}, using sender")
        if ip in SENTINEL_ADDRESSES:
            logger.debug(f"Device {mac} has no usable address yet ({ip})")

        return DiscoveredDevice(mac=mac, ip=ip, model=model, firmware=firmware)

    except Exception as e:
        logger.debug(f"Failed to parse discovery reply from {sender}: {e}")
        return None
