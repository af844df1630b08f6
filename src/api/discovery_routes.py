"""
Gateway discovery and UDP configuration API routes
"""

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel
from typing import List, Optional
import logging

from discovery.network_discovery import send_network_config
from discovery.packets import Credentials, NetworkSettings

logger = logging.getLogger(__name__)


# Request / response models
class DeviceResponse(BaseModel):
    mac: str
    ip: str
    model: str
    firmware: str
    family: str
    same_subnet: Optional[bool] = None
    discovery_method: str
    last_seen: float


class DiscoverResponse(BaseModel):
    gateways: List[DeviceResponse]
    method: str
    duration_seconds: float


class ProbeResponse(BaseModel):
    found: bool
    gateway: Optional[DeviceResponse] = None


class UdpConfigRequest(BaseModel):
    mac: str
    enable_dhcp: bool = False
    static_ip: Optional[str] = None
    gateway: Optional[str] = None
    subnet_mask: Optional[str] = None
    username: str = 'admin'
    password: str = 'admin'
    model: Optional[str] = None


class UdpConfigResponse(BaseModel):
    success: bool
    config_acked: bool
    save_acked: bool
    message: str


def create_discovery_routes(config, discovery, send_config=send_network_config):
    """Create discovery, probe and UDP configuration routes"""
    router = APIRouter(prefix="/api", tags=["discovery"])
    udp_config = config.get('udp_config', {})
    port = config.get('discovery', {}).get('port', 1901)

    @router.get("/discover", response_model=DiscoverResponse)
    async def discover(timeout_ms: Optional[int] = Query(None, gt=0, le=30000)):
        """Broadcast scan, with HTTP probing of known addresses as fallback"""
        result = await discovery.discover(timeout_ms)
        return DiscoverResponse(
            gateways=[DeviceResponse(**device.to_dict()) for device in result.devices],
            method=result.method,
            duration_seconds=round(result.duration_seconds, 2),
        )

    @router.get("/devices", response_model=List[DeviceResponse])
    async def get_devices():
        """Every gateway seen since startup, one record per MAC"""
        return [DeviceResponse(**device.to_dict()) for device in discovery.get_devices()]

    @router.get("/probe-gateway", response_model=ProbeResponse)
    async def probe_gateway(ip: str = Query(..., min_length=1)):
        """Identify a gateway at a manually entered address"""
        device = await discovery.probe(ip)
        if device is None:
            return ProbeResponse(found=False)
        return ProbeResponse(found=True, gateway=DeviceResponse(**device.to_dict()))

    @router.post("/udp-config", response_model=UdpConfigResponse)
    async def udp_config_route(request: UdpConfigRequest):
        """Push static or DHCP addressing to a gateway by MAC, across subnets"""
        settings = NetworkSettings(
            dhcp=request.enable_dhcp,
            ip=request.static_ip or udp_config.get('static_ip', '192.168.1.200'),
            gateway=request.gateway or udp_config.get('gateway', '192.168.1.1'),
            netmask=request.subnet_mask or udp_config.get('netmask', '255.255.255.0'),
            model=request.model or udp_config.get('model', 'USR-N510'),
        )
        try:
            result = await send_config(
                request.mac, settings, Credentials(request.username, request.password),
                port=port,
                save_delay_seconds=udp_config.get('save_delay_seconds', 0.5),
                ack_timeout_seconds=udp_config.get('ack_timeout_seconds', 3),
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if result.error:
            raise HTTPException(status_code=500, detail=result.message)
        return UdpConfigResponse(
            success=result.success,
            config_acked=result.config_acked,
            save_acked=result.save_acked,
            message=result.message,
        )

    return router
