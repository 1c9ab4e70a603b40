"""
Composition root for kapply.

build_reconciler() wires the applier, pruner, deleter and config providers
around one cluster connection. Application owns that connection for the
lifetime of a command.
"""

import logging
from typing import List, Optional

from applier import Applier
from cluster import ClusterClient, ResourceStore
from config import Config
from deleter import Deleter
from namespaces import NamespaceDefaulter
from plugins.registry import ProviderRegistry, build_registry
from pruner import Pruner
from reconciler import Operation, Reconciler, ReconcileResult
from status import ResourceStatus, collect_status

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_reconciler(
    config: Config,
    store: ResourceStore,
    providers: Optional[ProviderRegistry] = None,
) -> Reconciler:
    """Build a reconciler and its components from one configuration value."""
    defaulter = NamespaceDefaulter(store, config.cluster.namespace)
    return Reconciler(
        applier=Applier(store, config.apply),
        pruner=Pruner(store, config.apply, defaulter=defaulter),
        deleter=Deleter(store, config.apply),
        providers=providers or build_registry(config.providers),
        timeout=config.apply.operation_timeout,
        defaulter=defaulter,
    )


class Application:
    """One kapply invocation: a cluster connection plus a reconciler."""

    def __init__(self, config: Config, store: Optional[ResourceStore] = None):
        self.config = config
        self.store: ResourceStore = store or ClusterClient(config.cluster)
        self.reconciler = build_reconciler(config, self.store)

    async def __aenter__(self) -> "Application":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def run(self, operation: Operation, path: str) -> ReconcileResult:
        """Run apply, prune or delete on the resources declared at path."""
        logger.info(f"Running {operation.value} against {self.config.cluster.server}")
        return await self.reconciler.run(operation, path)

    async def status(self, path: str) -> List[ResourceStatus]:
        """Report presence of every resource declared at path."""
        resources = await self.reconciler.normalize(
            await self.reconciler.load(path)
        )
        return await collect_status(self.store, resources)

    async def close(self) -> None:
        await self.store.close()
