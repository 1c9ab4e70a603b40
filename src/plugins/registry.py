"""
Provider Registry - Discovery and ordering of config providers.

Providers are tried in registration order. Built-in providers are
registered first; third party providers are discovered through the
'kapply.config_providers' entry point group.
"""

from importlib.metadata import entry_points
from typing import Dict, List, Optional, Type

from config import ProviderConfig
from errors import ConfigError
from plugins.base import ConfigProvider, logger
from resources import DeclaredResource

ENTRY_POINT_GROUP = "kapply.config_providers"


class ProviderRegistry:
    """
    Ordered registry of config providers.

    Adding a provider never requires changes to the reconciler; it only
    asks the registry for the declared resources of a path.
    """

    def __init__(self):
        self._providers: Dict[str, ConfigProvider] = {}

    def register(self, provider: ConfigProvider) -> None:
        """
        Register a provider instance at the end of the lookup order.

        Re-registering a name replaces the provider in its original slot.
        """
        if provider.name in self._providers:
            logger.warning(f"Overwriting existing config provider: {provider.name}")

        self._providers[provider.name] = provider
        logger.debug(f"Registered config provider: {provider.name}")

    def list_providers(self) -> List[str]:
        """List registered provider names in lookup order."""
        return list(self._providers.keys())

    def has_provider(self, name: str) -> bool:
        """Check if a provider is registered."""
        return name in self._providers

    def find(self, path: str) -> Optional[ConfigProvider]:
        """Return the first provider that supports the path."""
        for provider in self._providers.values():
            if provider.is_supported(path):
                return provider
        return None

    async def get_config(self, path: str) -> List[DeclaredResource]:
        """
        Load declared resources with the first provider that supports path.

        Raises:
            ConfigError: If no provider supports the path or loading fails
        """
        provider = self.find(path)
        if provider is None:
            available = ", ".join(self._providers.keys()) or "none"
            raise ConfigError(
                f"No config provider supports {path}. "
                f"Available providers: {available}"
            )

        logger.info(f"Loading {path} with the {provider.name} provider")
        return await provider.get_config(path)


def builtin_providers(config: ProviderConfig) -> List[ConfigProvider]:
    """Instantiate the built-in providers in their default lookup order."""
    from plugins.providers.file import RawConfigFileProvider
    from plugins.providers.http import RawConfigHTTPProvider
    from plugins.providers.kustomize import KustomizeProvider

    return [
        KustomizeProvider(binary=config.kustomize_binary),
        RawConfigHTTPProvider(),
        RawConfigFileProvider(),
    ]


def discover_providers() -> List[ConfigProvider]:
    """Instantiate providers advertised through entry points."""
    providers = []
    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            provider_class: Type[ConfigProvider] = ep.load()
            providers.append(provider_class())
        except Exception as e:
            logger.warning(
                f"Could not load config provider {ep.name}: {e}", exc_info=True
            )
    return providers


def build_registry(config: Optional[ProviderConfig] = None) -> ProviderRegistry:
    """
    Build a registry with built-in and discovered providers.

    If config.enabled_providers is set, only those providers are registered,
    in the order given there.
    """
    config = config or ProviderConfig()
    registry = ProviderRegistry()

    available = {p.name: p for p in builtin_providers(config)}
    for provider in discover_providers():
        available.setdefault(provider.name, provider)

    names = config.enabled_providers or list(available.keys())
    for name in names:
        if name not in available:
            logger.warning(f"Config provider '{name}' not found, skipping")
            continue
        registry.register(available[name])

    return registry
