"""
N720 flash payload framing and firmware response repair

Payloads written to /upload/nv1 and /upload/nv2 carry a 4-byte little-endian
CRC32 header; the firmware checks it at restart and strips it again when the
file is read back through download_nv.cgi.
"""

import binascii
import json
import logging
import struct
from typing import Any, Dict

logger = logging.getLogger(__name__)

CRC_HEADER_SIZE = 4

# The link file is written with a fixed header captured from the vendor UI
LINK_FILE_PREFIX = bytes([0x80, 0xA4, 0xD0, 0x09])
LINK_FILE_CONTENT = '{"tcpc":[]}'

CONVER_CSV_CONTENT = 'S,1,6,10,JSON\r\n'

# download_nv.cgi?name=edge_report drops the first four characters of the body
TRUNCATED_MARKER = 'oup":['
TRUNCATED_PREFIX = '{"gr'
EDGE_REPORT_START = '{"group"'


def crc32(data: bytes) -> int:
    """Standard CRC-32 (poly 0xEDB88320, reflected, complemented)"""
    return binascii.crc32(data) & 0xFFFFFFFF


def prepend_crc(payload: bytes) -> bytes:
    return struct.pack('<I', crc32(payload)) + payload


def strip_crc(framed: bytes) -> bytes:
    if len(framed) < CRC_HEADER_SIZE:
        raise ValueError("Framed payload shorter than CRC header")
    return framed[CRC_HEADER_SIZE:]


def crc_matches(framed: bytes) -> bool:
    """True when the stored header matches the CRC of the content after it"""
    if len(framed) < CRC_HEADER_SIZE:
        return False
    stored, = struct.unpack('<I', framed[:CRC_HEADER_SIZE])
    return stored == crc32(framed[CRC_HEADER_SIZE:])


def normalize_crlf(text: str) -> str:
    """Windows line endings, as the N720 CSV parsers expect"""
    return text.replace('\r\n', '\n').replace('\n', '\r\n')


def build_link_payload() -> bytes:
    return LINK_FILE_PREFIX + LINK_FILE_CONTENT.encode('utf-8')


def _close_brackets(text: str) -> str:
    """Append closers for any '{' / '[' left open outside string literals"""
    stack = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in '{[':
            stack.append('}' if ch == '{' else ']')
        elif ch in '}]' and stack:
            stack.pop()
    return text + ''.join(reversed(stack))


def repair_truncated_json(text: str) -> str:
    """
    Rebuild a JSON body damaged by the N720 download_nv.cgi bug

    Handles a binary CRC header left in front of the document and the
    truncated form that starts with 'oup":[' instead of '{"group":['.
    Bodies that already start with '{' or '[' are returned unchanged.
    """
    body = text.strip()

    start = body.find(EDGE_REPORT_START)
    if start > 0:
        logger.debug(f"Stripped {start} byte header from N720 response")
        return _close_brackets(body[start:])
    if body.startswith(('{', '[')):
        return body

    start = body.find(TRUNCATED_MARKER)
    if start >= 0:
        logger.debug("Repaired truncated N720 edge_report response")
        return _close_brackets(TRUNCATED_PREFIX + body[start:])

    start = body.find('{')
    if start > 0:
        return _close_brackets(body[start:])
    return body


def parse_edge_report(text: str) -> Dict[str, Any]:
    """edge_report as a dict with a 'group' list; empty when it cannot be recovered"""
    repaired = repair_truncated_json(text)
    try:
        parsed = json.loads(repaired)
    except ValueError as e:
        logger.warning(f"Could not parse N720 edge_report ({e}), treating as empty")
        return {'group': []}

    if isinstance(parsed, dict) and isinstance(parsed.get('group'), list):
        return parsed
    logger.warning("N720 edge_report has no group list, treating as empty")
    return {'group': []}
