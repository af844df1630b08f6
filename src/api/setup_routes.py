"""
Initial setup workflow API routes
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Optional
import logging

from discovery.packets import Credentials, NetworkSettings

logger = logging.getLogger(__name__)


class SetupRequest(BaseModel):
    mac: str
    static_ip: Optional[str] = None
    gateway: Optional[str] = None
    subnet_mask: Optional[str] = None
    username: str = 'admin'
    password: str = 'admin'


def create_setup_routes(workflow):
    """Create setup start/progress routes"""
    router = APIRouter(prefix="/api/setup", tags=["setup"])

    @router.post("", status_code=202)
    async def start_setup(request: SetupRequest):
        """Start the static IP -> DHCP sequence; poll GET /api/setup/{mac} for progress"""
        defaults = workflow.default_static_settings()
        settings = NetworkSettings(
            dhcp=False,
            ip=request.static_ip or defaults.ip,
            gateway=request.gateway or defaults.gateway,
            netmask=request.subnet_mask or defaults.netmask,
            model=defaults.model,
        )
        if workflow.is_active(request.mac):
            raise HTTPException(status_code=409, detail=f"Setup already in progress for {request.mac}")
        try:
            progress = workflow.start(request.mac, settings, Credentials(request.username, request.password))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return progress.to_dict()

    @router.get("/{mac}")
    async def get_setup_progress(mac: str):
        progress = workflow.get_progress(mac)
        if progress is None:
            raise HTTPException(status_code=404, detail=f"No setup has run for {mac}")
        return progress.to_dict()

    return router
