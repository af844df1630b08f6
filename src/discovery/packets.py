"""
USR UDP configuration commands (the protocol used by the vendor's MXX setup tool)

Two packets are broadcast to port 1901 for a target MAC: a fixed 89-byte
settings command followed by a save-and-reboot command. Both end in a one-byte
checksum, the sum of every byte after the first modulo 256. The device answers
each with a 4-byte acknowledgement.
"""

import ipaddress
import struct
from dataclasses import dataclass
from typing import Dict, Tuple

SET_CONFIG_HEADER = bytes([0xFF, 0x56, 0x05])
SAVE_REBOOT_HEADER = bytes([0xFF, 0x13, 0x04])

SET_CONFIG_ACK = bytes.fromhex('FF01054B')
SAVE_REBOOT_ACK = bytes.fromhex('FF01044B')
# Our own broadcasts come back to the listening socket
ECHO_PREFIXES = (bytes.fromhex('FF1303'), bytes.fromhex('FF5605'), bytes.fromhex('FF1304'))

DHCP_ENABLED_FLAG = 0x80
STATIC_IP_FLAG = 0x00

CREDENTIAL_WIDTH = 6
MODEL_WIDTH = 16

# (field name, struct code); offsets are derived, see field_ranges()
SET_CONFIG_LAYOUT: Tuple[Tuple[str, str], ...] = (
    ('header', '3s'),           # 0-2    FF 56 05
    ('mac', '6s'),              # 3-8
    ('username', '6s'),         # 9-14   null padded
    ('password', '6s'),         # 15-20  null padded
    ('config_header', '3s'),    # 21-23  08 59 03
    ('dhcp_flag', 'B'),         # 24     0x80 DHCP / 0x00 static
    ('reserved', '5s'),         # 25-29  20 19 50 00 00
    ('ip', '4s'),               # 30-33  octets reversed
    ('gateway', '4s'),          # 34-37  octets reversed
    ('netmask', '4s'),          # 38-41  octets reversed
    ('model', '16s'),           # 42-57  null padded
    ('web_username', '6s'),     # 58-63
    ('web_password', '6s'),     # 64-69
    ('options', '4s'),          # 70-73  02 01 00 00
    ('mac_repeat', '6s'),       # 74-79
    ('padding', '8s'),          # 80-87  zeros
    ('checksum', 'B'),          # 88
)
SET_CONFIG_FORMAT = '<' + ''.join(code for _, code in SET_CONFIG_LAYOUT)
SET_CONFIG_LENGTH = struct.calcsize(SET_CONFIG_FORMAT)

_CONFIG_HEADER = bytes([0x08, 0x59, 0x03])
_RESERVED = bytes([0x20, 0x19, 0x50, 0x00, 0x00])
_OPTIONS = bytes([0x02, 0x01, 0x00, 0x00])


def field_ranges(layout: Tuple[Tuple[str, str], ...] = SET_CONFIG_LAYOUT) -> Dict[str, Tuple[int, int]]:
    """Map field name -> (start, end) byte offsets for a layout"""
    ranges = {}
    offset = 0
    for name, code in layout:
        size = struct.calcsize('<' + code)
        ranges[name] = (offset, offset + size)
        offset += size
    return ranges


@dataclass(frozen=True)
class Credentials:
    username: str = 'admin'
    password: str = 'admin'


@dataclass(frozen=True)
class NetworkSettings:
    """Desired addressing; ip/gateway/netmask are still sent when dhcp is True"""
    dhcp: bool = True
    ip: str = '192.168.1.200'
    gateway: str = '192.168.1.1'
    netmask: str = '255.255.255.0'
    model: str = 'USR-N510'


def checksum(packet: bytes) -> int:
    """Sum of bytes 1..len-2 (header marker and checksum slot excluded), mod 256"""
    return sum(packet[1:-1]) & 0xFF


def mac_to_bytes(mac: str) -> bytes:
    """Accepts AA-BB-.., AA:BB:.. or bare hex"""
    cleaned = mac.replace('-', '').replace(':', '').strip()
    try:
        raw = bytes.fromhex(cleaned)
    except ValueError:
        raise ValueError(f"Invalid MAC address format: {mac!r}")
    if len(raw) != 6:
        raise ValueError(f"Invalid MAC address format: {mac!r}")
    return raw


def reversed_octets(address: str) -> bytes:
    """Dotted quad with its octets in reverse order (192.168.1.200 -> C8 01 A8 C0)"""
    return bytes(reversed(ipaddress.IPv4Address(address).packed))


def _fixed_width(value: str, width: int, name: str) -> bytes:
    raw = value.encode('ascii')
    if len(raw) > width:
        raise ValueError(f"{name} longer than {width} bytes")
    return raw


def encode_set_config(mac: str, credentials: Credentials, settings: NetworkSettings) -> bytes:
    """Build the 89-byte network settings command"""
    mac_raw = mac_to_bytes(mac)
    user = _fixed_width(credentials.username, CREDENTIAL_WIDTH, 'username')
    password = _fixed_width(credentials.password, CREDENTIAL_WIDTH, 'password')
    model = _fixed_width(settings.model, MODEL_WIDTH, 'model')

    body = struct.pack(
        SET_CONFIG_FORMAT,
        SET_CONFIG_HEADER,
        mac_raw,
        user,
        password,
        _CONFIG_HEADER,
        DHCP_ENABLED_FLAG if settings.dhcp else STATIC_IP_FLAG,
        _RESERVED,
        reversed_octets(settings.ip),
        reversed_octets(settings.gateway),
        reversed_octets(settings.netmask),
        model,
        user,
        password,
        _OPTIONS,
        mac_raw,
        b'',
        0,
    )
    return body[:-1] + bytes([checksum(body)])


def encode_save_reboot(mac: str, credentials: Credentials) -> bytes:
    """Build the save-and-reboot command: header, MAC, NUL-terminated credentials, checksum"""
    user = credentials.username.encode('ascii')
    password = credentials.password.encode('ascii')
    fmt = f'<3s6s{len(user) + 1}s{len(password) + 1}sB'
    body = struct.pack(fmt, SAVE_REBOOT_HEADER, mac_to_bytes(mac), user, password, 0)
    return body[:-1] + bytes([checksum(body)])


def classify_reply(data: bytes) -> str:
    """'set_config', 'save_reboot', 'echo' or 'other' for a datagram seen while configuring"""
    if data == SET_CONFIG_ACK:
        return 'set_config'
    if data == SAVE_REBOOT_ACK:
        return 'save_reboot'
    if data.startswith(ECHO_PREFIXES):
        return 'echo'
    return 'other'
