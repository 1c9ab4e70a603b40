"""
Built-in config providers.

Third party providers register through the 'kapply.config_providers'
entry point group.
"""

from plugins.providers.file import RawConfigFileProvider
from plugins.providers.http import RawConfigHTTPProvider
from plugins.providers.kustomize import KustomizeProvider

__all__ = ["KustomizeProvider", "RawConfigFileProvider", "RawConfigHTTPProvider"]
