"""Tests for discovery reply decoding."""

from discovery.models import GatewayFamily, UNKNOWN_FIRMWARE, UNKNOWN_MODEL
from discovery.parser import DISCOVERY_KEYWORD, parse_discovery_response

MAC_BYTES = bytes.fromhex('D4AD20C00C5E')


def make_reply(ip=(192, 168, 1, 200), mac=MAC_BYTES, text=b'V1.0.5 USR-N510', header=b'\xff\x24'):
    return header + b'\x00\x00\x00' + bytes(ip) + mac + text


class TestRejection:
    def test_short_buffer_is_ignored(self):
        assert parse_discovery_response(b'\xff\x24' + b'\x00' * 10, '192.168.1.200') is None

    def test_nineteen_bytes_is_ignored(self):
        assert parse_discovery_response(make_reply(text=b'\x00' * 4), '192.168.1.200') is None

    def test_foreign_header_is_ignored(self):
        assert parse_discovery_response(make_reply(header=b'\xab\xcd'), '192.168.1.200') is None

    def test_keyword_echo_is_ignored(self):
        assert parse_discovery_response(DISCOVERY_KEYWORD, '192.168.1.10') is None

    def test_garbage_never_raises(self):
        assert parse_discovery_response(b'\x00' * 64, '10.0.0.1') is None
        assert parse_discovery_response(b'', '10.0.0.1') is None


class TestDecoding:
    def test_minimal_reply(self):
        data = make_reply(text=b'\x00' * 5)
        assert len(data) == 20
        device = parse_discovery_response(data, '192.168.1.200')
        assert device is not None
        assert device.mac == 'D4-AD-20-C0-0C-5E'
        assert device.ip == '192.168.1.200'
        assert device.model == UNKNOWN_MODEL
        assert device.firmware == UNKNOWN_FIRMWARE
        assert device.family == GatewayFamily.UNKNOWN
        assert device.discovery_method == 'udp_broadcast'

    def test_ff01_header_accepted(self):
        device = parse_discovery_response(make_reply(header=b'\xff\x01'), '192.168.1.200')
        assert device is not None

    def test_firmware_keeps_v_prefix(self):
        device = parse_discovery_response(make_reply(), '192.168.1.200')
        assert device.firmware == 'V1.0.5'

    def test_firmware_without_prefix(self):
        device = parse_discovery_response(make_reply(text=b'fw 3.2.11 N720'), '192.168.1.200')
        assert device.firmware == '3.2.11'

    def test_model_is_uppercased_as_matched(self):
        device = parse_discovery_response(make_reply(text=b'V1.0.5 usr-n510'), '192.168.1.200')
        assert device.model == 'USR-N510'

    def test_bare_model_is_not_prefixed(self):
        device = parse_discovery_response(make_reply(text=b'\x01\x02N720 V1.2.3'), '192.168.1.200')
        assert device.model == 'N720'
        assert device.firmware == 'V1.2.3'

    def test_non_printables_do_not_break_matching(self):
        device = parse_discovery_response(make_reply(text=b'\x00\x07V2.0.1\xffUSR-N510\x00'), '10.0.0.5')
        assert device.firmware == 'V2.0.1'
        assert device.model == 'USR-N510'

    def test_version_split_by_control_byte_is_rejoined(self):
        device = parse_discovery_response(make_reply(text=b'V1.\x000.5 USR-N510'), '10.0.0.5')
        assert device.firmware == 'V1.0.5'
        assert device.model == 'USR-N510'


class TestAddressSelection:
    def test_sender_wins_over_embedded(self):
        device = parse_discovery_response(make_reply(ip=(192, 168, 0, 7)), '192.168.1.57')
        assert device.ip == '192.168.1.57'

    def test_sentinel_sender_is_returned_not_dropped(self):
        device = parse_discovery_response(make_reply(ip=(0, 0, 0, 0)), '0.0.0.0')
        assert device is not None
        assert device.ip == '0.0.0.0'
        assert not device.has_valid_address

    def test_embedded_used_when_sender_missing(self):
        device = parse_discovery_response(make_reply(ip=(10, 1, 2, 3)), '')
        assert device.ip == '10.1.2.3'
