"""
Thin HTTP client for a single gateway host
Maps aiohttp failures onto the gateway error types
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from http_helper import (create_gateway_session, fetch_with_retry, gateway_headers,
                         gateway_url, is_connection_reset)
from .errors import GatewayError, GatewayRequestError, GatewayUnavailableError

logger = logging.getLogger(__name__)


def decode_body(text: str) -> Any:
    """Parsed JSON when the body is JSON, the raw text otherwise"""
    try:
        return json.loads(text)
    except ValueError:
        return text


class GatewayClient:
    """Basic-auth HTTP access to one gateway; a fresh session per request"""

    def __init__(self, host: str, gateway_config: Optional[Dict] = None):
        config = gateway_config or {}
        self.host = host
        self.username = config.get('username', 'admin')
        self.password = config.get('password', 'admin')
        self.request_timeout = config.get('request_timeout', 10)
        self.upload_timeout = config.get('upload_timeout', 30)
        self.retry_attempts = config.get('retry_attempts', 3)
        self.retry_delay = config.get('retry_delay_seconds', 0.5)

    def _session(self, timeout: float) -> aiohttp.ClientSession:
        return create_gateway_session(timeout, self.username, self.password)

    async def _guarded(self, operation, description: str, retry: bool):
        attempts = self.retry_attempts if retry else 1
        try:
            return await fetch_with_retry(operation, attempts, self.retry_delay, description)
        except GatewayError:
            raise
        except asyncio.TimeoutError as e:
            raise GatewayUnavailableError(f"{self.host}: timeout on {description}") from e
        except (aiohttp.ClientError, ConnectionError) as e:
            raise GatewayUnavailableError(f"{self.host}: {description} failed: {e}",
                                          connection_reset=is_connection_reset(e)) from e

    async def get_text(self, path: str, timeout: Optional[float] = None, retry: bool = True) -> str:
        """GET a device path; raises GatewayRequestError on non-200"""
        url = gateway_url(self.host, path)

        async def _get():
            async with self._session(timeout or self.request_timeout) as session:
                async with session.get(url, headers=gateway_headers(self.host)) as response:
                    body = await response.text(errors='replace')
                    if response.status != 200:
                        raise GatewayRequestError(path, response.status, body)
                    return body

        return await self._guarded(_get, f"GET {path}", retry)

    async def get_json(self, path: str, timeout: Optional[float] = None) -> Any:
        return decode_body(await self.get_text(path, timeout))

    async def post_file(self, path: str, field: str, filename: str, content: bytes,
                        timeout: Optional[float] = None) -> Tuple[int, str]:
        """
        Multipart upload of one octet-stream part; returns (status, body)

        Not retried: a reset may arrive after the device has already written
        the file, and a second attempt would write the slot again.
        """
        url = gateway_url(self.host, path)

        async def _post():
            form = aiohttp.FormData()
            form.add_field(field, content, filename=filename,
                           content_type='application/octet-stream')
            async with self._session(timeout or self.upload_timeout) as session:
                async with session.post(url, data=form, headers=gateway_headers(self.host)) as response:
                    return response.status, await response.text(errors='replace')

        logger.debug(f"Uploading {len(content)} bytes to {self.host}/{path} as {field}={filename}")
        return await self._guarded(_post, f"POST {path}", retry=False)
