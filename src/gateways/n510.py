"""
N510 protocol adapter: flat JSON resources, query-string CGI writes, and the
edge configuration document uploaded as multipart to /edge_model
"""

import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

from discovery.models import GatewayFamily
from .client import GatewayClient
from .errors import GatewayError, GatewayUnavailableError
from .models import WriteResult, SAVED_VERIFIED, SAVED_UNVERIFIED, FAILED

logger = logging.getLogger(__name__)

RESOURCES = {
    'define': 'define.json',
    'temp': 'temp.json',
    'misc': 'misc.json',
    'ipconfig': 'ipconfig.json',
    'mqtt': 'mqttbase.json',
    'econfig': 'econfig.json',
    'edge': 'edge.json',
    'port0': 'port0.json',
}

# The device's TCP stack resets the connection on these CGIs after the command
# has been processed; a reset is their normal acknowledgement.
RESET_IS_SUCCESS_ENDPOINTS = ('port$.cgi', 'misc.cgi', 'econfig.cgi')

# Named "edge.json" the upload is accepted and then silently discarded
EDGE_UPLOAD_PATH = 'edge_model'
EDGE_UPLOAD_FIELD = 'file'
EDGE_UPLOAD_FILENAME = 'blob'
EDGE_UPLOAD_OK = 'Upload OK'

DEFAULT_DEVICE_NAME = re.compile(r'^device\d+$', re.IGNORECASE)

# Modbus RTU on port 1: 9600 8N1, RS485 (serialmode=3), edge computing socket mode
PORT1_PARAMS = {
    'buad': 9600, 'datasize': 8, 'parity': 0, 'stopbit': 1, 'serialmode': 3,
    'flowc': 0, 'packlen': 0, 'packtime': 0, 'rfc2217': 1,
    'phearten': 0, 'pheartdata': 'heartbeat', 'phearthex': 0, 'pheartasc': 1, 'phearttime': 30,
    'workmodea': 4, 'sockmode': 0, 'maxclient': 8, 'overclient': 0, 'httptype': 0, 'rmhead': 1,
    'url': '/1.php?', 'packhead': 'User_Agent: Mozilla/4.0\r\n',
    'rurl': '192.168.0.201', 'lports': 23, 'lport': 0, 'rporta': 23, 'udpcheckport': 0,
    'reconnecttime': 0, 'shortcontime': 3, 'waittime': 10, 'netpr': 0, 'poll': 0, 'modbusack': 0,
    'nhearten': 0, 'nheartdata': 'heartbeat', 'nhearthex': 0, 'nheartasc': 1, 'nhearttime': 30,
    'regdatatype': 0, 'regdata': 'register', 'reghex': 0, 'regasc': 1,
    'deviceid': 0, 'cloudpasw': 0, 'sslm': 0, 'sslv': 0,
    'workmodeb': 0, 'rurlb': '192.168.0.201', 'lportb': 0, 'rportb': 20105,
}


def edge_counts(document: Optional[Dict]) -> Dict[str, int]:
    """Structural counts used to verify an edge document after upload"""
    document = document if isinstance(document, dict) else {}
    rtable = document.get('rtable') or {}
    formats = rtable.get('format') or [{}]
    template = (formats[0] or {}).get('template') or {}
    return {
        'ctable': len(document.get('ctable') or []),
        'template': len(template),
        'datas': len(rtable.get('datas') or []),
    }


class N510Adapter:
    """Read/write/verify against an N510 gateway"""

    family = GatewayFamily.N510

    def __init__(self, host: str, gateway_config: Optional[Dict] = None,
                 settle_seconds: float = 0.5, verify_attempts: int = 3,
                 verify_interval_seconds: float = 0.5):
        self.host = host
        self.client = GatewayClient(host, gateway_config)
        self.settle_seconds = settle_seconds
        self.verify_attempts = verify_attempts
        self.verify_interval = verify_interval_seconds

    # ================== READ / WRITE ==================

    async def read(self, resource: str) -> Any:
        """Fetch a resource by short name (e.g. 'edge') or device path"""
        path = RESOURCES.get(resource, resource)
        return await self.client.get_json(path)

    async def write(self, path: str, params: Optional[Dict[str, Any]] = None) -> bool:
        """Query-string CGI write; resets on RESET_IS_SUCCESS_ENDPOINTS count as success"""
        endpoint = path.split('?', 1)[0]
        quirk = endpoint in RESET_IS_SUCCESS_ENDPOINTS
        full_path = f"{path}?{urlencode(params, quote_via=quote)}" if params else path

        try:
            await self.client.get_text(full_path, retry=not quirk)
        except GatewayUnavailableError as e:
            if quirk and e.connection_reset:
                logger.info(f"{endpoint} on {self.host} reset the connection after the command (expected)")
                return True
            raise
        logger.debug(f"CGI write {endpoint} on {self.host} OK")
        return True

    # ================== EDGE CONFIGURATION ==================

    async def verify(self, expected: Dict, attempts: int = 1) -> WriteResult:
        """
        Re-read edge.json and compare entry and field-key counts

        The device may cap the document without reporting an error, so a
        successful upload is only "verified" once the readback is at least as
        large as what was sent.
        """
        wanted = edge_counts(expected)
        actual: Dict[str, int] = {}
        for attempt in range(1, attempts + 1):
            try:
                actual = edge_counts(await self.read('edge'))
            except GatewayError as e:
                logger.debug(f"Verify read failed on {self.host}: {e}")
                actual = {}
            if actual and actual['ctable'] >= wanted['ctable'] and actual['template'] >= wanted['template']:
                logger.info(f"[PASS] edge.json verified on {self.host}: {actual}")
                return WriteResult(SAVED_VERIFIED, "Configuration saved and verified",
                                   {'expected': wanted, 'actual': actual})
            if attempt < attempts:
                await asyncio.sleep(self.verify_interval)

        logger.warning(f"[WARN] edge.json on {self.host} smaller than uploaded: expected {wanted}, got {actual}")
        return WriteResult(SAVED_UNVERIFIED,
                           "Configuration saved but not fully verified; the gateway may have hit a capacity limit",
                           {'expected': wanted, 'actual': actual})

    async def save_edge_config(self, document: Dict) -> WriteResult:
        """Upload an edge document, enable edge computing and verify the readback"""
        payload = json.dumps(document, separators=(',', ':')).encode('utf-8')
        logger.info(f"Uploading edge config to {self.host}: {len(payload)} bytes, {edge_counts(document)}")

        status, body = await self.client.post_file(EDGE_UPLOAD_PATH, EDGE_UPLOAD_FIELD,
                                                   EDGE_UPLOAD_FILENAME, payload)
        if not (200 <= status < 300) or EDGE_UPLOAD_OK not in body:
            logger.error(f"[FAIL] Edge upload to {self.host} rejected: HTTP {status} {body[:100]!r}")
            return WriteResult(FAILED, f"Upload rejected (HTTP {status})", {'response': body[:200]})

        await asyncio.sleep(self.settle_seconds)
        first = await self.verify(document)

        await self.enable_edge_computing()

        final = first if first.verified else await self.verify(document, attempts=self.verify_attempts)
        final.details['first_check'] = first.status
        return final

    async def enable_edge_computing(self) -> bool:
        """econfig.cgi with edgeen=1, keeping the current query settings; also commits to flash"""
        try:
            econfig = await self.read('econfig')
        except GatewayError as e:
            logger.debug(f"Could not read econfig on {self.host}, using defaults: {e}")
            econfig = {}
        econfig = econfig if isinstance(econfig, dict) else {}

        return await self.write('econfig.cgi', {
            'edgeen': 1,
            'inqu_en': econfig.get('inqu_en', 0),
            'inqu_m': econfig.get('inqu_m', 0),
            'inqu_t': econfig.get('inqu_t', '/QueryTopic'),
            'inqu_qos': econfig.get('inqu_qos', 0),
        })

    async def get_reporting_interval(self) -> Optional[int]:
        edge = await self.read('edge')
        if not isinstance(edge, dict):
            return None
        rules = (edge.get('rtable') or {}).get('rules') or []
        for rule in rules:
            if rule.get('type') == 1:
                return rule.get('period')
        return None

    async def set_reporting_interval(self, seconds: int) -> WriteResult:
        """Set the periodic (type 1) report rule, creating a minimal document if needed"""
        edge = await self.read('edge')
        edge = edge if isinstance(edge, dict) else {}
        rtable = edge.get('rtable')

        if not rtable:
            edge = {
                'stamp': int(time.time() * 1000),
                'ctable': edge.get('ctable') or [],
                'rtable': {
                    'rules': [{'type': 1, 'period': seconds}],
                    'format': [{'topic': '/v1/gateway/telemetry', 'type': 1, 'template': {}}],
                    'datas': [],
                },
            }
        else:
            rules = rtable.setdefault('rules', [])
            periodic = [rule for rule in rules if rule.get('type') == 1]
            for rule in periodic:
                rule['period'] = seconds
            if not periodic:
                rules.append({'type': 1, 'period': seconds})
            edge['stamp'] = int(time.time() * 1000)

        logger.info(f"Setting reporting interval on {self.host} to {seconds}s")
        return await self.save_edge_config(edge)

    async def remove_default_devices(self) -> Optional[WriteResult]:
        """Drop factory placeholder devices (device1, device2, ...); None when there are none"""
        edge = await self.read('edge')
        if not isinstance(edge, dict) or not edge.get('ctable'):
            return None

        defaults = [entry for entry in edge['ctable'] if DEFAULT_DEVICE_NAME.match(entry.get('name', ''))]
        if not defaults:
            return None

        removed_keys = {d.get('key') for entry in defaults for d in entry.get('datas') or []}
        edge['ctable'] = [entry for entry in edge['ctable'] if entry not in defaults]

        rtable = edge.get('rtable') or {}
        if removed_keys and rtable.get('datas'):
            rtable['datas'] = [d for d in rtable['datas'] if d.get('key') not in removed_keys]

        formats = rtable.get('format') or []
        if formats and isinstance(formats[0].get('template'), dict):
            template = formats[0]['template']
            for key in [k for k, v in template.items() if isinstance(v, str)]:
                del template[key]

        edge['stamp'] = int(time.time() * 1000)
        logger.info(f"Removing {len(defaults)} default device(s) from {self.host}")
        return await self.save_edge_config(edge)

    # ================== NETWORK / SERVICES ==================

    async def enable_dhcp(self) -> bool:
        """Switch to DHCP (keeping static values as fallback) and reboot"""
        current = await self.read('ipconfig')
        current = current if isinstance(current, dict) else {}

        await self.write('ipconfig.cgi', {
            'staticip': 0,
            'statdns': 0,
            'sip': current.get('sip') or '192.168.0.7',
            'gip': current.get('gip') or '192.168.0.1',
            'mip': current.get('mip') or '255.255.255.0',
            'dip': current.get('dip') or '8.8.8.8',
            'sdip': current.get('sdip') or '8.8.4.4',
        })
        logger.info(f"DHCP enabled on {self.host}, rebooting")
        return await self.reboot()

    async def save_mqtt_config(self, client_id: str, username: str, server_address: str,
                               port: int = 1883) -> bool:
        return await self.write('mqttbase.cgi', {
            'mqtten': 1, 'mqttver': 4, 'cid': client_id, 'addr': server_address,
            'lpt': 0, 'rpt': port, 'ka': 60, 'ndtrct': 0, 'rctime': 5, 'cs': 0,
            'mqv': 1, 'usr': username, 'pwd': '',
            'wf': 0, 'wtop': '/will', 'wmsg': 'offline', 'wqos': 0, 'wrtd': 0,
            'sslm': 0, 'sslv': 0, 'hosten': 0, 'hostname': '',
        })

    async def configure_port1(self) -> bool:
        """Modbus RTU settings on port 1; applied by the device at next reboot"""
        try:
            current = await self.read('port0')
            if isinstance(current, dict) and str(current.get('buad')) == '9600' \
                    and str(current.get('serialmode')) == '3':
                logger.info(f"Port 1 on {self.host} already configured")
                return True
        except GatewayError as e:
            logger.debug(f"Could not read port0.json on {self.host}: {e}")

        # Without this page load port$.cgi answers with a reset and ignores the command
        try:
            await self.client.get_text('indexcn.cgi?port=0', retry=False)
        except GatewayError as e:
            logger.debug(f"indexcn.cgi warm-up on {self.host} failed: {e}")

        return await self.write('port$.cgi', PORT1_PARAMS)

    async def reboot(self) -> bool:
        try:
            await self.write('misc.cgi', {'reboot': 1})
        except GatewayUnavailableError as e:
            logger.info(f"Reboot sent to {self.host}, connection dropped ({e})")
        return True

    restart = reboot

    async def wait_until_ready(self, attempts: int = 20, interval_seconds: float = 1.5) -> bool:
        for attempt in range(1, attempts + 1):
            try:
                await self.read('port0')
                logger.info(f"[OK] N510 at {self.host} ready after {attempt} poll(s)")
                return True
            except GatewayError:
                if attempt < attempts:
                    await asyncio.sleep(interval_seconds)
        logger.warning(f"[WARN] N510 at {self.host} not ready after {attempts} polls")
        return False

    async def get_full_status(self) -> Dict[str, Any]:
        """define + temp + ipconfig, for the status panel"""
        try:
            define = await self.read('define')
            temp = await self.read('temp')
            ipconfig = await self.read('ipconfig')
        except GatewayError as e:
            logger.debug(f"Status read failed on {self.host}: {e}")
            return {'connected': False, 'ip': self.host}
        return {'connected': True, 'ip': self.host, 'define': define, 'temp': temp, 'ipconfig': ipconfig}
