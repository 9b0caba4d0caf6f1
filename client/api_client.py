"""
HTTP transport for the authenticated API client.

This module provides the aiohttp-backed transport used to talk to the auth
server and the immutable client context (base URL + transport) that is created
once at start-up and handed to every component that issues requests.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, Union

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError
from multidict import CIMultiDict

from shared.exceptions import TransportError, ErrorCode
from shared.interfaces import IHttpTransport
from shared.models import HttpResponse

logger = logging.getLogger(__name__)


class AiohttpTransport(IHttpTransport):
    """
    HTTP transport built on a lazily created aiohttp session.

    Every call either returns a fully read HttpResponse (whatever its status)
    or raises TransportError when no response was received.
    """

    def __init__(self, timeout: float = 30.0, user_agent: str = 'AuthClient/1.0'):
        self.timeout = ClientTimeout(total=timeout)
        self.user_agent = user_agent

        self._session: Optional[ClientSession] = None
        self._is_offline = False
        self._last_connection_attempt: Optional[datetime] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={'User-Agent': self.user_agent}
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        url: str,
        json: Optional[Any] = None,
        data: Optional[Union[str, bytes]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> HttpResponse:
        await self._ensure_session()

        logger.debug(f"Making {method} request to {url}")
        self._last_connection_attempt = datetime.now()

        try:
            async with self._session.request(
                method=method,
                url=url,
                json=json,
                data=data,
                headers=headers or {}
            ) as response:
                body = await response.read()
                self._is_offline = False
                return HttpResponse(
                    status=response.status,
                    headers=CIMultiDict(response.headers),
                    body=body
                )

        except asyncio.TimeoutError as e:
            self._is_offline = True
            logger.warning(f"Request to {url} timed out")
            raise TransportError(
                f"{method} {url} timed out after {self.timeout.total}s",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                context={'method': method, 'url': url},
                cause=e
            )
        except (ClientError, OSError) as e:
            self._is_offline = True
            logger.warning(f"Network error on {method} {url}: {e}")
            raise TransportError(
                f"{method} {url} failed: {e}",
                context={'method': method, 'url': url},
                cause=e
            )

    def is_offline(self) -> bool:
        """Check if the last request failed at the network level."""
        return self._is_offline

    def get_last_connection_attempt(self) -> Optional[datetime]:
        """Get timestamp of last connection attempt."""
        return self._last_connection_attempt


@dataclass(frozen=True)
class ClientContext:
    """Base URL and transport shared by every component; immutable once built."""
    base_url: str
    transport: IHttpTransport

    def __post_init__(self):
        if not self.base_url:
            raise ValueError("Base URL cannot be empty")
        object.__setattr__(self, 'base_url', self.base_url.rstrip('/'))

    def url(self, path: str) -> str:
        """Absolute URL for an API path such as ``/auth/login``."""
        return f"{self.base_url}/{path.lstrip('/')}"

    @classmethod
    def from_config(cls, config) -> "ClientContext":
        """Build the context from a ClientConfiguration."""
        transport = AiohttpTransport(timeout=config.get_server_timeout())
        logger.info(f"Client context initialized for server: {config.get_server_url()}")
        return cls(base_url=config.get_server_url(), transport=transport)

    async def close(self) -> None:
        await self.transport.close()
