"""
Network reachability signal.

Only consulted by sync status reporting; writes never branch on it.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_PROBE_URL = "https://www.gstatic.com/generate_204"


class ConnectivityProbe(ABC):
    """Answers whether the device currently has network access."""

    @abstractmethod
    async def is_online(self) -> bool:
        pass


class HttpConnectivityProbe(ConnectivityProbe):
    """Probe that issues a HEAD request and treats any response as online."""

    def __init__(self, url: str = DEFAULT_PROBE_URL, timeout: float = 3.0):
        self.url = url
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> HttpConnectivityProbe:
        """Create probe from environment variables."""
        return cls(
            url=os.environ.get("LEVELUP_CONNECTIVITY_URL", DEFAULT_PROBE_URL),
            timeout=float(os.environ.get("LEVELUP_CONNECTIVITY_TIMEOUT", "3.0")),
        )

    async def is_online(self) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.head(self.url, allow_redirects=False):
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Connectivity probe failed: {e}", extra={"url": self.url})
            return False


class StaticConnectivity(ConnectivityProbe):
    """Fixed answer, for tests and hosts that track connectivity themselves."""

    def __init__(self, online: bool = True):
        self.online = online

    async def is_online(self) -> bool:
        return self.online
