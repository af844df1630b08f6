"""
Gateway protocol adapters for USR N510 and N720 devices
"""

from typing import Dict, Optional, Union

from discovery.models import GatewayFamily
from .detector import detect_family, identify, probe_gateway
from .errors import GatewayError, GatewayFamilyError, GatewayRequestError, GatewayUnavailableError
from .models import WriteResult, FlashUploadResult
from .n510 import N510Adapter
from .n720 import N720Adapter

GatewayAdapter = Union[N510Adapter, N720Adapter]


def adapter_for(family: Union[GatewayFamily, str], host: str,
                gateway_config: Optional[Dict] = None) -> GatewayAdapter:
    """Adapter for a detected family; unknown families are refused rather than guessed"""
    try:
        family = GatewayFamily(family)
    except ValueError:
        raise GatewayFamilyError(f"Unsupported gateway family: {family!r}")

    if family == GatewayFamily.N510:
        return N510Adapter(host, gateway_config)
    if family == GatewayFamily.N720:
        return N720Adapter(host, gateway_config)
    raise GatewayFamilyError(f"Gateway family for {host} is not known; detect it before reading or writing")


__all__ = ['adapter_for', 'GatewayAdapter', 'detect_family', 'identify', 'probe_gateway',
           'N510Adapter', 'N720Adapter', 'WriteResult', 'FlashUploadResult',
           'GatewayError', 'GatewayFamilyError', 'GatewayRequestError', 'GatewayUnavailableError']
