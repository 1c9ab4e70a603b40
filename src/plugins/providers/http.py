"""
HTTP provider - raw manifests fetched from an http(s) URL.
"""

import asyncio
import logging
from typing import List

import aiohttp

from errors import ConfigError
from plugins.base import ConfigProvider
from resources import DeclaredResource, parse_manifests

logger = logging.getLogger(__name__)


class RawConfigHTTPProvider(ConfigProvider):
    """Provides declared resources from HTTP URLs."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "http"

    def is_supported(self, path: str) -> bool:
        return path.startswith(("http://", "https://"))

    async def get_config(self, path: str) -> List[DeclaredResource]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(path) as response:
                    if response.status != 200:
                        raise ConfigError(
                            f"Fetching {path} failed: HTTP {response.status}"
                        )
                    text = await response.text()
        except asyncio.TimeoutError:
            raise ConfigError(f"Fetching {path} timed out")
        except aiohttp.ClientError as e:
            raise ConfigError(f"Fetching {path} failed: {e}")

        return parse_manifests(text, source=path)
