"""
N720 protocol adapter

Reads go through download_flex.cgi / download_nv.cgi, RAM writes through
update_nv.cgi with typed bracketed parameters (n_ numeric, s_ string), and
flash writes through multipart uploads (field "c") to two redundant slots.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, urlencode

from discovery.models import GatewayFamily
from .client import GatewayClient, decode_body
from .errors import GatewayError, GatewayUnavailableError
from .flash import (CONVER_CSV_CONTENT, build_link_payload, normalize_crlf,
                    parse_edge_report, prepend_crc, repair_truncated_json)
from .models import (FlashUploadResult, SlotResult, WriteResult,
                     SAVED_VERIFIED, SAVED_UNVERIFIED, FAILED)
from .report_groups import (MeterReport, build_edge_report, build_template_file,
                            encode_edge_report)

logger = logging.getLogger(__name__)

RESOURCES = {
    'status': 'download_flex.cgi?name=status',
    'network': 'download_flex.cgi?name=network',
    'misc': 'download_nv.cgi?name=misc',
    'comm_tunnel': 'download_nv.cgi?name=comm_tunnel',
    'edge': 'download_nv.cgi?name=edge',
    'edge_access': 'download_nv.cgi?name=edge_access',
    'edge_report': 'download_nv.cgi?name=edge_report',
    'uart': 'download_nv.cgi?name=uart',
    'link': 'download_nv.cgi?name=link',
}

# Redundant flash slots; every flash write goes to both
NV_SLOTS = ('upload/nv1', 'upload/nv2')
UPLOAD_FIELD = 'c'

# Endpoints whose bodies may arrive truncated or with a binary header in front
TRUNCATING_ENDPOINT = 'download_nv.cgi'

DEFAULT_UART = {'baud_rate': 9600, 'data_bit': 8, 'parity': 0, 'stop_bit': 1, 'work_mode': 2}


def build_nv_params(file: str, values: Dict[str, Any]) -> Dict[str, str]:
    """
    Typed update_nv.cgi parameters

    Keys are written without prefix ('UART[0].baud_rate'); numbers get n_ and
    strings s_. Keys that already carry a prefix are passed through.
    """
    params = {'file': file}
    for key, value in values.items():
        if key.startswith(('n_', 's_')):
            params[key] = str(value)
        elif isinstance(value, (bool, int, float)):
            params[f"n_{key}"] = str(int(value))
        else:
            params[f"s_{key}"] = '' if value is None else str(value)
    return params


def _upload_accepted(status: int, body: str) -> bool:
    """HTTP 200 and {"err": 0} (a body without err also counts)"""
    if status != 200:
        return False
    decoded = decode_body(body) if body else None
    if isinstance(decoded, dict):
        return decoded.get('err') in (0, None)
    return True


def _csv_device_name(csv_content: str) -> str:
    for line in csv_content.splitlines():
        if line.startswith('SC,') and 'System_Slave' not in line:
            parts = line.split(',')
            if len(parts) > 1 and parts[1]:
                return parts[1]
    return 'System_Slave'


def _mqtt_channel_values(index: int, enabled: bool, server: str, port: int,
                         client_id: str, username: str) -> Dict[str, Any]:
    prefix = f"MQTT[{index}]"
    return {
        f"{prefix}.enable": 1 if enabled else 0,
        f"{prefix}.mqtt_ver": 4,
        f"{prefix}.server_ip": server,
        f"{prefix}.loacl_port": 0,  # sic, firmware field name
        f"{prefix}.server_port": port,
        f"{prefix}.keepalive": 60,
        f"{prefix}.reconn_space": 5,
        f"{prefix}.clean_session": 0,
        f"{prefix}.client_id": client_id,
        f"{prefix}.conn_verify": 1 if username else 0,
        f"{prefix}.conn_user_name": username,
        f"{prefix}.conn_user_password": '',
        f"{prefix}.will_flag": 0,
        f"{prefix}.will.topic": '/will',
        f"{prefix}.will.msg": 'offline',
        f"{prefix}.will.qos": 0,
        f"{prefix}.will.retention": 0,
        f"{prefix}.ssl_mode": 0,
        f"{prefix}.ssl_verify": 0,
    }


class N720Adapter:
    """Read/write/verify against an N720 gateway"""

    family = GatewayFamily.N720

    def __init__(self, host: str, gateway_config: Optional[Dict] = None,
                 verify_attempts: int = 3, verify_interval_seconds: float = 0.5):
        self.host = host
        self.client = GatewayClient(host, gateway_config)
        self.verify_attempts = verify_attempts
        self.verify_interval = verify_interval_seconds

    # ================== READ / WRITE ==================

    async def read(self, resource: str) -> Any:
        """
        Fetch a resource by short name (e.g. 'edge_report') or device path

        edge_report always comes back as a dict with a 'group' list: the
        firmware drops leading bytes of that body, which is rebuilt here.
        """
        path = RESOURCES.get(resource, resource)
        text = await self.client.get_text(path)

        if 'name=edge_report' in path:
            return parse_edge_report(text)
        if path.startswith(TRUNCATING_ENDPOINT) and not text.lstrip().startswith(('{', '[')):
            text = repair_truncated_json(text)
        return decode_body(text)

    async def write(self, file: str, params: Dict[str, Any]) -> bool:
        """RAM write through update_nv.cgi; flash persistence needs an upload or Save Current"""
        query = urlencode(build_nv_params(file, params), quote_via=quote)
        body = await self.client.get_text(f"update_nv.cgi?{query}")
        response = decode_body(body) if body else None
        if isinstance(response, dict) and response.get('err') not in (0, None):
            logger.warning(f"[FAIL] update_nv.cgi file={file} on {self.host} returned {response}")
            return False
        logger.debug(f"update_nv.cgi file={file} on {self.host} OK")
        return True

    # ================== FLASH UPLOADS ==================

    async def upload_file(self, path: str, filename: str, content: bytes) -> SlotResult:
        try:
            status, body = await self.client.post_file(path, UPLOAD_FIELD, filename, content)
        except GatewayError as e:
            logger.error(f"[FAIL] Upload {filename} to {self.host}/{path}: {e}")
            return SlotResult(endpoint=path, success=False, error=str(e))

        accepted = _upload_accepted(status, body)
        if accepted:
            logger.info(f"[OK] Uploaded {filename} to {self.host}/{path}")
        else:
            logger.error(f"[FAIL] Upload {filename} to {self.host}/{path}: HTTP {status} {body[:100]!r}")
        return SlotResult(endpoint=path, success=accepted, status=status, response=decode_body(body))

    async def upload_nv_config(self, name: str, content: Union[str, bytes]) -> FlashUploadResult:
        """
        Write a config file to both flash slots

        Text is sent with CRLF line endings. Both slots are always attempted;
        the upload only succeeds when both accept it.
        """
        data = normalize_crlf(content).encode('utf-8') if isinstance(content, str) else content
        filename = 'conf' if name == 'edge' else name

        result = FlashUploadResult(name=name)
        for slot in NV_SLOTS:
            result.slots.append(await self.upload_file(slot, filename, data))
        return result

    async def upload_edge_report(self, edge_report: Dict) -> FlashUploadResult:
        """edge_report to both slots with its CRC32 header; the firmware rejects it at restart otherwise"""
        framed = prepend_crc(encode_edge_report(edge_report))
        return await self.upload_nv_config('edge_report', framed)

    async def verify(self, expected: Dict, attempts: Optional[int] = None) -> WriteResult:
        """Re-read edge_report and compare the number of report groups"""
        wanted = len(expected.get('group') or [])
        actual = 0
        attempts = attempts or self.verify_attempts
        for attempt in range(1, attempts + 1):
            try:
                actual = len((await self.read('edge_report')).get('group') or [])
            except GatewayError as e:
                logger.debug(f"edge_report readback failed on {self.host}: {e}")
                actual = 0
            if actual >= wanted:
                return WriteResult(SAVED_VERIFIED, "Report groups saved and verified",
                                   {'expected': wanted, 'actual': actual})
            if attempt < attempts:
                await asyncio.sleep(self.verify_interval)

        logger.warning(f"[WARN] edge_report on {self.host} has {actual} group(s), expected {wanted}")
        return WriteResult(SAVED_UNVERIFIED, "Report groups saved but not fully verified",
                           {'expected': wanted, 'actual': actual})

    async def save_report_groups(self, meters: List[MeterReport], topic: str = 'UploadTopic',
                                 period: int = 60) -> WriteResult:
        """Templates to /upload/template, then edge_report to both slots, then readback"""
        template = build_template_file(meters, topic)
        if template:
            slot = await self.upload_file('upload/template', 'report', template.encode('utf-8'))
            if not slot.success:
                return WriteResult(FAILED, "Template upload failed", {'template': slot.__dict__})

        edge_report = build_edge_report(meters, topic, period)
        upload = await self.upload_edge_report(edge_report)
        if not upload.slots[0].success:
            return WriteResult(FAILED, "edge_report upload to primary slot failed", upload.to_dict())
        if not upload.success:
            logger.warning(f"[WARN] edge_report backup slot rejected on {self.host}, primary OK")

        result = await self.verify(edge_report)
        result.details['upload'] = upload.to_dict()
        return result

    async def _refresh_edge(self, device_name: str):
        try:
            await self.client.get_text(f"download_flex.cgi?name=edge&ext={quote(device_name)}")
        except GatewayError as e:
            logger.debug(f"Edge refresh on {self.host} failed: {e}")

    async def save_edge_configuration(self, csv_content: str, meters: List[MeterReport],
                                      topic: str = 'UploadTopic', period: int = 60,
                                      restart: bool = True) -> WriteResult:
        """
        Persist data acquisition and reporting the way the vendor UI's Save Current does:
        CSV, link file, conver_csv, templates + edge_report, then one restart
        """
        device_name = _csv_device_name(csv_content)
        steps: Dict[str, Any] = {}

        csv_slot = await self.upload_file('upload/edge', 'conf', normalize_crlf(csv_content).encode('utf-8'))
        steps['csv'] = csv_slot.success
        if not csv_slot.success:
            return WriteResult(FAILED, "CSV upload failed", steps)

        await self._refresh_edge(device_name)
        link = await self.upload_nv_config('link', build_link_payload())
        steps['link'] = link.to_dict()
        await self._refresh_edge(device_name)

        conver = await self.upload_file('upload/conver_csv', 'conver_csv', CONVER_CSV_CONTENT.encode('utf-8'))
        steps['conver_csv'] = conver.success

        if meters:
            report = await self.save_report_groups(meters, topic, period)
            steps['report_groups'] = report.to_dict()
            if not report.success:
                return WriteResult(FAILED, report.message, steps)
            status, message = report.status, report.message
        else:
            status, message = SAVED_VERIFIED, "Data acquisition saved"

        if restart:
            steps['restart'] = await self.restart()
        return WriteResult(status, message, steps)

    # ================== DEVICE SETTINGS ==================

    async def configure_uart1(self) -> bool:
        """UART1 as RS485 9600 8N1 feeding edge computing; UART2 settings are preserved"""
        current = await self.read('uart')
        uarts = current.get('UART') if isinstance(current, dict) else None
        uart2 = uarts[1] if isinstance(uarts, list) and len(uarts) > 1 and uarts[1] else DEFAULT_UART

        values = {f"UART[0].{k}": v for k, v in DEFAULT_UART.items()}
        values['UART[0].func'] = 1
        for key in DEFAULT_UART:
            values[f"UART[1].{key}"] = int(uart2.get(key, DEFAULT_UART[key]))
        return await self.write('uart', values)

    async def save_mqtt_config(self, channel: int, server_address: str, port: int,
                               client_id: str, username: str) -> bool:
        """Configure one MQTT channel; the firmware needs both channels in one request"""
        if channel not in (1, 2):
            raise ValueError("channel must be 1 or 2")
        index = channel - 1
        other = 1 - index

        values = _mqtt_channel_values(index, True, server_address, port, client_id, username)
        values.update(_mqtt_channel_values(other, False, '192.168.0.201', 1883, '', ''))
        if not await self.write('comm_tunnel', values):
            return False

        # tunnel[2] is MQTT1's offline cache, tunnel[3] MQTT2's
        return await self.write('offline_cache', {
            f"tunnel[{index + 2}].enable": 1,
            f"tunnel[{other + 2}].enable": 0,
        })

    async def configure_ntp(self, utc_offset: int = 1, servers=('ntp1.inrim.it', 'ntp1.inrim.it')) -> bool:
        values = {'ntp_utc': utc_offset, 'ntp_sync_en': 1}
        for i, server in enumerate(servers):
            values[f"ntp_url[{i}]"] = server
        return await self.write('misc', values)

    async def restart(self) -> bool:
        try:
            await self.client.get_text('action_restart.cgi', retry=False)
        except GatewayUnavailableError as e:
            logger.info(f"Restart sent to {self.host}, connection dropped ({e})")
        return True

    async def get_tf_card_status(self) -> str:
        try:
            info = await self.client.get_json('action_tf.cgi?act=getinfo')
        except GatewayError as e:
            logger.debug(f"TF card status on {self.host} unavailable: {e}")
            return 'unknown'
        if not isinstance(info, dict) or info.get('err') != 0:
            return 'unknown'
        return 'identified' if info.get('status') == 0 else 'unidentified'

    async def get_full_status(self) -> Dict[str, Any]:
        """status + TF card, for the status panel"""
        try:
            status = await self.read('status')
        except GatewayError as e:
            logger.debug(f"Status read failed on {self.host}: {e}")
            return {'connected': False, 'ip': self.host}
        return {'connected': True, 'ip': self.host, 'status': status,
                'tf_card': await self.get_tf_card_status()}

    async def wait_until_ready(self, attempts: int = 20, interval_seconds: float = 1.5) -> bool:
        for attempt in range(1, attempts + 1):
            try:
                await self.read('status')
                logger.info(f"[OK] N720 at {self.host} ready after {attempt} poll(s)")
                return True
            except GatewayError:
                if attempt < attempts:
                    await asyncio.sleep(interval_seconds)
        logger.warning(f"[WARN] N720 at {self.host} not ready after {attempts} polls")
        return False
