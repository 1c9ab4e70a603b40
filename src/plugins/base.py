"""
Config Provider Base - Abstract interface for declared resource sources.

Config providers turn a path into an ordered list of declared resources:
- kustomize: Render a kustomization directory
- http: Fetch raw manifests from a URL
- file: Read raw manifest files or a directory of them
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from resources import DeclaredResource

logger = logging.getLogger(__name__)


class ConfigProvider(ABC):
    """
    Abstract base class for config providers.

    The registry asks each provider in turn whether it supports a path and
    loads the path with the first one that does.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider (e.g., 'kustomize', 'file')."""
        pass

    @abstractmethod
    def is_supported(self, path: str) -> bool:
        """
        Check whether this provider can load the given path.

        Must not have side effects; the registry may call it for every
        provider before one is chosen.
        """
        pass

    @abstractmethod
    async def get_config(self, path: str) -> List[DeclaredResource]:
        """
        Load the declared resources for a path.

        Args:
            path: Filesystem path or URL

        Returns:
            Declared resources in declaration order

        Raises:
            ConfigError: If the input is missing or malformed
        """
        pass
