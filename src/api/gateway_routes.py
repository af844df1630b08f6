"""
Gateway read/write API routes

Every route resolves the gateway family first (from the request, or by
detection) and dispatches to the matching protocol adapter. Adapter errors
map to HTTP statuses: family mismatch 409, gateway unreachable 503, gateway
refused the request 502.
"""

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import json
import logging

from discovery.models import GatewayFamily
from gateways import adapter_for, detect_family
from gateways.errors import GatewayError, GatewayFamilyError, GatewayRequestError, GatewayUnavailableError
from gateways.report_groups import MeterReport

logger = logging.getLogger(__name__)


# Request models
class WriteRequest(BaseModel):
    path: str
    params: Dict[str, Any] = {}
    family: Optional[str] = None


class EdgeConfigRequest(BaseModel):
    document: Dict[str, Any]


class NvConfigRequest(BaseModel):
    name: str
    content: str


class MeterModel(BaseModel):
    name: str
    meter_type: str = 'XMC34F'
    meter_index: Optional[int] = None


class ReportGroupsRequest(BaseModel):
    meters: List[MeterModel]
    topic: str = 'UploadTopic'
    period: int = 60
    csv_content: Optional[str] = None
    restart: bool = True


class ReportingIntervalRequest(BaseModel):
    seconds: int


class MqttRequest(BaseModel):
    server_address: str
    port: int = 1883
    client_id: str
    username: str = ''
    channel: int = 1  # N720 only


class NtpRequest(BaseModel):
    utc_offset: int = 1
    servers: List[str] = ['ntp1.inrim.it', 'ntp1.inrim.it']


def gateway_http_error(error: GatewayError) -> HTTPException:
    """Map an adapter error onto the HTTP status the UI expects"""
    if isinstance(error, GatewayFamilyError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, GatewayUnavailableError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, GatewayRequestError):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def create_gateway_routes(config, adapter_factory=adapter_for, detector=detect_family):
    """Create per-gateway read/write routes"""
    router = APIRouter(prefix="/api/gateways", tags=["gateways"])
    gateway_config = config.get('gateway', {})

    async def _family(host: str, family: Optional[str]) -> GatewayFamily:
        if family:
            try:
                return GatewayFamily(family)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown gateway family: {family}")
        return await detector(host, gateway_config)

    async def _adapter(host: str, family: Optional[str], required: Optional[GatewayFamily] = None):
        resolved = await _family(host, family)
        if required is not None and resolved != required:
            raise GatewayFamilyError(
                f"Gateway at {host} is {resolved.value}, this operation needs {required.value}")
        return adapter_factory(resolved, host, gateway_config)

    @router.get("/{host}/family")
    async def get_family(host: str):
        """Detect whether the gateway is an N510 or an N720"""
        family = await detector(host, gateway_config)
        return {"host": host, "family": family.value}

    @router.get("/{host}/read")
    async def read(host: str, path: str = Query(..., min_length=1), family: Optional[str] = None):
        """Read a resource by short name or device path"""
        try:
            adapter = await _adapter(host, family)
            return await adapter.read(path)
        except GatewayError as e:
            logger.warning(f"Read {path} from {host} failed: {e}")
            raise gateway_http_error(e)

    @router.post("/{host}/write")
    async def write(host: str, request: WriteRequest):
        """CGI write (N510) or update_nv.cgi RAM write (N720)"""
        try:
            adapter = await _adapter(host, request.family)
            success = await adapter.write(request.path, request.params)
        except GatewayError as e:
            logger.warning(f"Write {request.path} to {host} failed: {e}")
            raise gateway_http_error(e)
        return {"success": success}

    @router.post("/{host}/edge-config")
    async def save_edge_config(host: str, request: EdgeConfigRequest, family: Optional[str] = None):
        """Upload an N510 edge document and verify the readback"""
        try:
            adapter = await _adapter(host, family, required=GatewayFamily.N510)
            result = await adapter.save_edge_config(request.document)
        except GatewayError as e:
            logger.error(f"Edge config upload to {host} failed: {e}")
            raise gateway_http_error(e)
        return result.to_dict()

    @router.post("/{host}/nv-config")
    async def upload_nv_config(host: str, request: NvConfigRequest, family: Optional[str] = None):
        """Write an N720 config file to both flash slots"""
        try:
            adapter = await _adapter(host, family, required=GatewayFamily.N720)
            if request.name == 'edge_report':
                try:
                    document = json.loads(request.content)
                except ValueError:
                    raise HTTPException(status_code=400, detail="edge_report content must be JSON")
                result = await adapter.upload_edge_report(document)
            else:
                result = await adapter.upload_nv_config(request.name, request.content)
        except GatewayError as e:
            logger.error(f"Flash upload of {request.name} to {host} failed: {e}")
            raise gateway_http_error(e)
        return result.to_dict()

    @router.post("/{host}/report-groups")
    async def save_report_groups(host: str, request: ReportGroupsRequest, family: Optional[str] = None):
        """Save N720 report groups, optionally with the data acquisition CSV"""
        meters = [MeterReport(m.name, m.meter_type, m.meter_index) for m in request.meters]
        try:
            adapter = await _adapter(host, family, required=GatewayFamily.N720)
            if request.csv_content:
                result = await adapter.save_edge_configuration(
                    request.csv_content, meters, request.topic, request.period, restart=request.restart)
            else:
                result = await adapter.save_report_groups(meters, request.topic, request.period)
        except GatewayError as e:
            logger.error(f"Report group save on {host} failed: {e}")
            raise gateway_http_error(e)
        return result.to_dict()

    @router.get("/{host}/status")
    async def get_status(host: str, family: Optional[str] = None):
        """Identity and health summary for the status panel"""
        try:
            adapter = await _adapter(host, family)
            return await adapter.get_full_status()
        except GatewayError as e:
            logger.warning(f"Status of {host} failed: {e}")
            raise gateway_http_error(e)

    @router.get("/{host}/reporting-interval")
    async def get_reporting_interval(host: str, family: Optional[str] = None):
        try:
            adapter = await _adapter(host, family, required=GatewayFamily.N510)
            seconds = await adapter.get_reporting_interval()
        except GatewayError as e:
            logger.warning(f"Reading reporting interval of {host} failed: {e}")
            raise gateway_http_error(e)
        return {"host": host, "seconds": seconds}

    @router.post("/{host}/reporting-interval")
    async def set_reporting_interval(host: str, request: ReportingIntervalRequest, family: Optional[str] = None):
        """Rewrite the periodic report rule of the N510 edge document"""
        if request.seconds <= 0:
            raise HTTPException(status_code=400, detail="seconds must be positive")
        try:
            adapter = await _adapter(host, family, required=GatewayFamily.N510)
            result = await adapter.set_reporting_interval(request.seconds)
        except GatewayError as e:
            logger.error(f"Setting reporting interval on {host} failed: {e}")
            raise gateway_http_error(e)
        return result.to_dict()

    @router.post("/{host}/edge-computing")
    async def enable_edge_computing(host: str, family: Optional[str] = None):
        try:
            adapter = await _adapter(host, family, required=GatewayFamily.N510)
            success = await adapter.enable_edge_computing()
        except GatewayError as e:
            logger.error(f"Enabling edge computing on {host} failed: {e}")
            raise gateway_http_error(e)
        return {"success": success}

    @router.post("/{host}/mqtt")
    async def save_mqtt_config(host: str, request: MqttRequest, family: Optional[str] = None):
        """MQTT broker settings; the N720 takes a channel (1 or 2)"""
        try:
            adapter = await _adapter(host, family)
            if adapter.family == GatewayFamily.N720:
                success = await adapter.save_mqtt_config(request.channel, request.server_address, request.port,
                                                         request.client_id, request.username)
            else:
                success = await adapter.save_mqtt_config(request.client_id, request.username,
                                                         request.server_address, request.port)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except GatewayError as e:
            logger.error(f"MQTT config on {host} failed: {e}")
            raise gateway_http_error(e)
        return {"success": success}

    @router.post("/{host}/ntp")
    async def configure_ntp(host: str, request: NtpRequest, family: Optional[str] = None):
        try:
            adapter = await _adapter(host, family, required=GatewayFamily.N720)
            success = await adapter.configure_ntp(request.utc_offset, tuple(request.servers))
        except GatewayError as e:
            logger.error(f"NTP config on {host} failed: {e}")
            raise gateway_http_error(e)
        return {"success": success}

    return router
