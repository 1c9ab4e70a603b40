"""
Kustomize provider - renders a kustomization directory with `kustomize build`.
"""

import asyncio
import logging
from pathlib import Path
from typing import List

from errors import ConfigError
from plugins.base import ConfigProvider
from resources import DeclaredResource, parse_manifests

logger = logging.getLogger(__name__)

KUSTOMIZATION_FILES = ("kustomization.yaml", "kustomization.yml", "Kustomization")


class KustomizeProvider(ConfigProvider):
    """Provides declared resources from kustomize targets."""

    def __init__(self, binary: str = "kustomize"):
        self.binary = binary

    @property
    def name(self) -> str:
        return "kustomize"

    def is_supported(self, path: str) -> bool:
        p = Path(path)
        return p.is_dir() and any((p / f).is_file() for f in KUSTOMIZATION_FILES)

    async def get_config(self, path: str) -> List[DeclaredResource]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                "build",
                path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ConfigError(
                f"kustomize binary '{self.binary}' not found; install kustomize "
                f"or set KAPPLY_KUSTOMIZE_BINARY"
            )

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise ConfigError(
                f"kustomize build {path} failed: {stderr.decode().strip()}"
            )

        resources = parse_manifests(stdout.decode(), source=path)
        logger.info(f"Rendered {len(resources)} resources from {path}")
        return resources
