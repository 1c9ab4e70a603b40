"""
Raw file provider - manifests from a YAML/JSON file or a directory of them.
"""

import logging
from pathlib import Path
from typing import List

from errors import ConfigError
from plugins.base import ConfigProvider
from plugins.providers.kustomize import KUSTOMIZATION_FILES
from resources import DeclaredResource, parse_manifests

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


class RawConfigFileProvider(ConfigProvider):
    """Loads raw manifests from the local filesystem."""

    @property
    def name(self) -> str:
        return "file"

    def is_supported(self, path: str) -> bool:
        if "://" in path:
            return False
        p = Path(path)
        if p.is_dir():
            return True
        return p.suffix.lower() in MANIFEST_SUFFIXES

    async def get_config(self, path: str) -> List[DeclaredResource]:
        p = Path(path)

        # Running on the kustomization file itself would treat the
        # Kustomization as a resource; the directory is what is meant
        if p.name in KUSTOMIZATION_FILES:
            raise ConfigError(
                f"Cannot run on {p.name} - use the directory ({p.parent}) instead"
            )

        if p.is_dir():
            files = sorted(
                f
                for f in p.iterdir()
                if f.is_file()
                and f.suffix.lower() in MANIFEST_SUFFIXES
                and f.name not in KUSTOMIZATION_FILES
            )
        elif p.is_file():
            files = [p]
        else:
            raise ConfigError(f"No such file or directory: {path}")

        resources: List[DeclaredResource] = []
        for f in files:
            try:
                text = f.read_text()
            except OSError as e:
                raise ConfigError(f"Cannot read {f}: {e}")
            resources.extend(parse_manifests(text, source=str(f)))

        logger.info(f"Loaded {len(resources)} resources from {len(files)} file(s)")
        return resources
