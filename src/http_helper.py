# HTTP Helper for Gateway Connections
# Session configuration and transient-error retry for local USR gateways

import asyncio
import errno
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar('T')


def create_gateway_session(timeout_seconds: float = 10,
                           username: Optional[str] = 'admin',
                           password: Optional[str] = 'admin') -> aiohttp.ClientSession:
    """
    Create properly configured aiohttp session for local gateway connections
    Gateways close sockets aggressively, so connections are never reused
    """
    connector = aiohttp.TCPConnector(
        limit_per_host=2,           # Gateways serve very few parallel requests
        ssl=False,                  # Local gateways use HTTP only; tunnels terminate TLS upstream
        force_close=True,           # Force connection cleanup
        enable_cleanup_closed=True
    )

    auth = aiohttp.BasicAuth(username, password or '') if username else None

    return aiohttp.ClientSession(
        connector=connector,
        auth=auth,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds)
    )


def gateway_url(host: str, path: str) -> str:
    """Build a device URL; tunnelled (ngrok) hosts are only reachable over https"""
    protocol = 'https' if 'ngrok' in host else 'http'
    return f"{protocol}://{host}/{path.lstrip('/')}"


def gateway_headers(host: str) -> dict:
    if 'ngrok' in host:
        return {'ngrok-skip-browser-warning': 'true'}
    return {}


def is_connection_reset(exc: BaseException) -> bool:
    """True for ECONNRESET / 'socket hang up' style failures"""
    if isinstance(exc, (aiohttp.ServerDisconnectedError, ConnectionResetError)):
        return True
    if isinstance(exc, aiohttp.ClientOSError):
        return exc.errno == errno.ECONNRESET
    return False


async def fetch_with_retry(operation: Callable[[], Awaitable[T]],
                           attempts: int = 3,
                           delay_seconds: float = 0.5,
                           description: str = "request") -> T:
    """
    Run an HTTP operation, retrying connection resets a bounded number of times
    Any other error, or the last reset, is raised to the caller
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except (aiohttp.ClientError, ConnectionResetError) as e:
            if not is_connection_reset(e) or attempt >= attempts:
                raise
            logger.debug(f"{description} reset by peer, retrying in {delay_seconds}s "
                         f"(attempt {attempt}/{attempts})")
            await asyncio.sleep(delay_seconds)
    raise RuntimeError("fetch_with_retry called with attempts < 1")
