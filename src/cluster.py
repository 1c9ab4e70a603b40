"""
Cluster API client - the remote object store.

ResourceStore is the interface the applier, pruner and deleter work against.
ClusterClient implements it over the Kubernetes REST conventions, using API
discovery to map kinds to URL paths.
"""

import asyncio
import json
import logging
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from config import ClusterConfig
from errors import (
    ClusterError,
    ConflictError,
    NotFoundError,
    TypeNotRegisteredError,
)
from resources import ResourceReference

logger = logging.getLogger(__name__)


class ResourceStore(ABC):
    """
    Abstract interface to a remote object store.

    NotFoundError is a distinguished, non-fatal outcome of get and delete.
    """

    @abstractmethod
    async def get(self, reference: ResourceReference) -> Dict[str, Any]:
        """
        Fetch a live object.

        Raises:
            NotFoundError: If the object does not exist
        """
        pass

    @abstractmethod
    async def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Create an object and return the stored version."""
        pass

    @abstractmethod
    async def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace an object.

        If obj carries metadata.resourceVersion the write is conditioned on it.

        Raises:
            ConflictError: If the resourceVersion is stale
        """
        pass

    @abstractmethod
    async def delete(self, reference: ResourceReference) -> None:
        """
        Delete an object.

        Raises:
            NotFoundError: If the object does not exist
        """
        pass

    @abstractmethod
    async def list(
        self, group: str, version: str, kind: str, namespace: str = ""
    ) -> List[Dict[str, Any]]:
        """List objects of a kind, in one namespace or across all of them."""
        pass

    async def is_namespaced(self, reference: ResourceReference) -> Optional[bool]:
        """
        Whether objects of the reference's kind live in a namespace.

        Returns None when the store cannot tell, such as for a kind it does
        not serve.
        """
        return None

    async def close(self) -> None:
        """Release connections held by the store."""
        pass


@dataclass(frozen=True)
class APIResource:
    """A kind served by the cluster, as reported by discovery."""

    kind: str
    plural: str
    namespaced: bool


def group_version_path(group: str, version: str) -> str:
    if group:
        return f"/apis/{group}/{version}"
    return f"/api/{version}"


class ClusterClient(ResourceStore):
    """
    ResourceStore backed by a cluster REST API.

    Discovery results are cached per group/version for the lifetime of the
    client. A miss invalidates the cached entry, so a kind registered while
    the command runs is picked up on the next attempt.
    """

    def __init__(
        self,
        config: ClusterConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._discovery: Dict[str, Dict[str, APIResource]] = {}

    async def __aenter__(self) -> "ClusterClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    # ResourceStore implementation

    async def get(self, reference: ResourceReference) -> Dict[str, Any]:
        api_resource = await self._resolve(reference)
        path = self._object_path(api_resource, reference)
        status, body = await self._request("GET", path, reference=reference)
        self._raise_for_status(status, body, "get", reference)
        return body

    async def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        reference = ResourceReference.from_object(obj)
        api_resource = await self._resolve(reference)
        path = self._collection_path(
            api_resource,
            reference.group,
            reference.version,
            self._namespace_for(api_resource, reference.namespace),
        )
        status, body = await self._request(
            "POST", path, payload=obj, reference=reference
        )
        self._raise_for_status(status, body, "create", reference)
        logger.debug(f"Created {reference}")
        return body

    async def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        reference = ResourceReference.from_object(obj)
        api_resource = await self._resolve(reference)
        path = self._object_path(api_resource, reference)
        status, body = await self._request(
            "PUT", path, payload=obj, reference=reference
        )
        self._raise_for_status(status, body, "update", reference)
        logger.debug(f"Updated {reference}")
        return body

    async def delete(self, reference: ResourceReference) -> None:
        api_resource = await self._resolve(reference)
        path = self._object_path(api_resource, reference)
        status, body = await self._request(
            "DELETE",
            path,
            payload={"propagationPolicy": "Background"},
            reference=reference,
        )
        self._raise_for_status(status, body, "delete", reference)
        logger.debug(f"Deleted {reference}")

    async def list(
        self, group: str, version: str, kind: str, namespace: str = ""
    ) -> List[Dict[str, Any]]:
        reference = ResourceReference(group, version, kind, namespace, "")
        api_resource = await self._resolve(reference)
        path = self._collection_path(
            api_resource,
            group,
            version,
            namespace if api_resource.namespaced else "",
        )
        status, body = await self._request("GET", path)
        self._raise_for_status(status, body, "list", reference)

        items = body.get("items") or []
        # List responses omit apiVersion/kind on the items
        for item in items:
            item.setdefault("apiVersion", reference.api_version)
            item.setdefault("kind", kind)
        return items

    async def is_namespaced(self, reference: ResourceReference) -> Optional[bool]:
        try:
            api_resource = await self._resolve(reference)
        except TypeNotRegisteredError:
            return None
        return api_resource.namespaced

    # Discovery

    async def _resolve(self, reference: ResourceReference) -> APIResource:
        """Map a reference's kind to the resource the cluster serves."""
        gv_path = group_version_path(reference.group, reference.version)
        resources = self._discovery.get(gv_path)
        if resources is None:
            resources = await self._discover(reference, gv_path)

        api_resource = resources.get(reference.kind)
        if api_resource is None:
            self._discovery.pop(gv_path, None)
            raise TypeNotRegisteredError(
                f"Kind {reference.kind} is not served by "
                f"{reference.api_version or '(empty apiVersion)'}",
                status=404,
                reason="NotRegistered",
                reference=reference,
            )
        return api_resource

    async def _discover(
        self, reference: ResourceReference, gv_path: str
    ) -> Dict[str, APIResource]:
        status, body = await self._request("GET", gv_path, reference=reference)
        if status == 404:
            raise TypeNotRegisteredError(
                f"API {reference.api_version} is not served by the cluster",
                status=404,
                reason="NotRegistered",
                reference=reference,
            )
        self._raise_for_status(status, body, "discover", reference)

        resources = {}
        for item in body.get("resources") or []:
            # Skip subresources such as deployments/status
            if "/" in item.get("name", ""):
                continue
            resources[item["kind"]] = APIResource(
                kind=item["kind"],
                plural=item["name"],
                namespaced=bool(item.get("namespaced", False)),
            )

        self._discovery[gv_path] = resources
        logger.debug(f"Discovered {len(resources)} kinds under {gv_path}")
        return resources

    # Paths

    def _namespace_for(self, api_resource: APIResource, namespace: str) -> str:
        if not api_resource.namespaced:
            return ""
        return namespace or self.config.namespace

    def _collection_path(
        self, api_resource: APIResource, group: str, version: str, namespace: str
    ) -> str:
        base = group_version_path(group, version)
        if namespace:
            return f"{base}/namespaces/{namespace}/{api_resource.plural}"
        return f"{base}/{api_resource.plural}"

    def _object_path(
        self, api_resource: APIResource, reference: ResourceReference
    ) -> str:
        collection = self._collection_path(
            api_resource,
            reference.group,
            reference.version,
            self._namespace_for(api_resource, reference.namespace),
        )
        return f"{collection}/{reference.name}"

    # HTTP

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for cluster API requests."""
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            if self.config.insecure_skip_tls_verify:
                connector = aiohttp.TCPConnector(ssl=False)
            elif self.config.certificate_authority:
                connector = aiohttp.TCPConnector(
                    ssl=ssl.create_default_context(
                        cafile=self.config.certificate_authority
                    )
                )
            else:
                connector = aiohttp.TCPConnector()

            self._session = aiohttp.ClientSession(
                connector=connector,
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        reference: Optional[ResourceReference] = None,
    ) -> Tuple[int, Any]:
        """Send a request and return (status, decoded body)."""
        url = f"{self.config.server.rstrip('/')}{path}"
        session = self._get_session()

        try:
            async with session.request(method, url, json=payload) as response:
                text = await response.text()
                status = response.status
        except asyncio.TimeoutError:
            # aiohttp signals ClientTimeout expiry this way
            raise ClusterError(f"{method} {url} timed out", reference=reference)
        except aiohttp.ClientError as e:
            raise ClusterError(f"{method} {url} failed: {e}", reference=reference)

        try:
            body = json.loads(text) if text else {}
        except ValueError:
            body = text
        return status, body

    def _raise_for_status(
        self,
        status: int,
        body: Any,
        action: str,
        reference: ResourceReference,
    ) -> None:
        """Translate an error response into the error taxonomy."""
        if status < 400:
            return

        is_status = isinstance(body, dict) and body.get("kind") == "Status"
        if is_status:
            message = body.get("message") or f"HTTP {status}"
            reason = body.get("reason")
        else:
            message = str(body).strip() or f"HTTP {status}"
            reason = None

        if status == 404:
            details = (body.get("details") or {}) if is_status else {}
            if details.get("name"):
                raise NotFoundError(
                    message, status=status, reason=reason, reference=reference
                )
            # Unknown path: the kind is not (or no longer) served
            self._discovery.pop(
                group_version_path(reference.group, reference.version), None
            )
            raise TypeNotRegisteredError(
                message, status=status, reason=reason, reference=reference
            )

        if status == 409 and reason == "AlreadyExists":
            raise ClusterError(
                f"Cannot {action} {reference}: {message}",
                status=status,
                reason=reason,
                reference=reference,
            )

        if status == 409:
            raise ConflictError(
                f"Cannot {action} {reference}: {message}",
                status=status,
                reason=reason,
                reference=reference,
            )

        raise ClusterError(
            f"Cannot {action} {reference}: HTTP {status}: {message}",
            status=status,
            reason=reason,
            reference=reference,
        )
