"""
Plugin system for kapply.

Config providers turn a path or URL into the declared resource set that
apply, prune, delete and status operate on.
"""

from plugins.base import ConfigProvider
from plugins.registry import ProviderRegistry, build_registry

__all__ = [
    "ConfigProvider",
    "ProviderRegistry",
    "build_registry",
]
