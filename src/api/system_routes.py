"""
System health and host network API routes
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime, timezone
import logging

from discovery.interfaces import get_local_interfaces, pick_primary_interface, suggest_static_settings

logger = logging.getLogger(__name__)


# Response models
class InterfaceInfo(BaseModel):
    name: str
    address: str
    netmask: str


class NetworkInfoResponse(BaseModel):
    local_ip: str
    netmask: str
    suggested_static_ip: str
    suggested_gateway: str
    all_interfaces: List[InterfaceInfo]


class HealthResponse(BaseModel):
    status: str
    active_setups: int
    known_gateways: int
    timestamp: str
    version: Optional[str] = None


def create_system_routes(config, discovery=None, workflow=None, interfaces_provider=get_local_interfaces):
    """Create health and network-info routes"""
    router = APIRouter(prefix="/api", tags=["system"])

    @router.get("/health", response_model=HealthResponse)
    async def health():
        """Liveness check"""
        active = 0
        if workflow is not None:
            active = sum(1 for task in workflow.active.values() if not task.done())
        return HealthResponse(
            status="ok",
            active_setups=active,
            known_gateways=len(discovery.known_devices) if discovery is not None else 0,
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=config.get('api', {}).get('version'),
        )

    @router.get("/network-info", response_model=NetworkInfoResponse)
    async def network_info():
        """Primary interface and suggested static settings for initial setup"""
        interfaces = interfaces_provider()
        primary = pick_primary_interface(interfaces)
        if primary is None:
            raise HTTPException(status_code=500, detail="No network interfaces found")

        suggested = suggest_static_settings(primary)
        return NetworkInfoResponse(
            local_ip=primary.address,
            netmask=primary.netmask,
            suggested_static_ip=suggested['suggested_static_ip'],
            suggested_gateway=suggested['suggested_gateway'],
            all_interfaces=[InterfaceInfo(name=i.name, address=i.address, netmask=i.netmask)
                            for i in interfaces],
        )

    return router
