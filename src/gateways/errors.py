"""
Gateway error types
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for gateway communication errors"""


class GatewayUnavailableError(GatewayError):
    """Connection reset/refused/timeout, usually a reboot window; callers may rescan and retry"""

    def __init__(self, message: str, connection_reset: bool = False):
        super().__init__(message)
        self.connection_reset = connection_reset


class GatewayRequestError(GatewayError):
    """Gateway answered with a non-200 status"""

    def __init__(self, path: str, status: int, body: Optional[str] = None):
        super().__init__(f"HTTP {status} for {path}")
        self.path = path
        self.status = status
        self.body = body


class GatewayFamilyError(GatewayError):
    """Operation requested for an undetected or mismatched gateway family"""
