"""Mock cloud provider for development and testing."""

import asyncio
import itertools
from typing import Any

from outpost_schemas import DNSZone, LifecycleState, ResourceKind, ResourceNode

from apps.deploy.exceptions import (
    DependencyInUse,
    ProviderError,
    ResourceAlreadyExists,
    ResourceNotFound,
)
from apps.deploy.lifecycle.catalog import CATALOG_BY_KIND

K = ResourceKind

# Deleting the key kind fails while any of the value kinds still exist.
HELD_BY: dict[ResourceKind, tuple[ResourceKind, ...]] = {
    K.SECURITY_GROUP: (K.ROLE_BINDING,),
    K.CREDENTIAL: (K.INSTANCE,),
    K.FLOATING_IP: (K.IP_ASSOCIATION,),
    K.INSTANCE: (K.IP_ASSOCIATION, K.LOAD_BALANCER),
    K.CERTIFICATE: (K.LOAD_BALANCER,),
    K.LOG_SINK: (K.LOG_SUBSCRIPTION,),
    K.LOG_FUNCTION: (K.LOG_SUBSCRIPTION,),
}


class MockProvider:
    """
    In-memory provider implementing the CloudProvider protocol.

    Tracks created objects per kind, records every call, and can be told
    to fail specific operations, either permanently or a fixed number of
    times, to exercise retry and branch-isolation behaviour.
    """

    def __init__(
        self,
        zones: list[DNSZone] | None = None,
        api_delay_ms: int = 0,
    ) -> None:
        self.zones = list(zones or [])
        self.api_delay_ms = api_delay_ms
        self.resources: dict[ResourceKind, dict[str, ResourceNode]] = {k: {} for k in K}
        self.addresses: dict[tuple[ResourceKind, str], str] = {}
        self.calls: list[tuple[str, ResourceKind, str]] = []
        self._failures: dict[tuple[str, ResourceKind], list[Any]] = {}
        self._ids = itertools.count(1)
        self.closed = False

    @property
    def name(self) -> str:
        return "mock"

    @property
    def kinds(self) -> frozenset[ResourceKind]:
        return frozenset(K)

    # =========================================================================
    # Configuration methods (for test setup)
    # =========================================================================

    def fail(
        self,
        op: str,
        kind: ResourceKind,
        error: ProviderError,
        times: int | None = None,
    ) -> None:
        """
        Make `op` ("describe", "create", "update", "delete") on `kind` raise `error`.

        With `times`, only the next `times` calls fail; otherwise all do.
        """
        self._failures[(op, kind)] = [error, times]

    def seed(self, node: ResourceNode, address: str | None = None) -> ResourceNode:
        """Insert an existing object, e.g. a resource left behind by a past run."""
        stored = node.model_copy(
            update={
                "lifecycle_state": LifecycleState.PRESENT,
                "provider_id": node.provider_id or f"{node.kind.value}-{next(self._ids)}",
            }
        )
        self.resources[node.kind][node.logical_name] = stored
        if address:
            self.addresses[(node.kind, node.logical_name)] = address
        return stored

    def add_floating_ip(self, name: str, address: str) -> None:
        """Register a pre-existing floating IP that this deployment does not own."""
        self.addresses[(K.FLOATING_IP, name)] = address

    def exists(self, kind: ResourceKind, name: str | None = None) -> bool:
        if name is None:
            return bool(self.resources[kind])
        return name in self.resources[kind]

    def count(self, op: str) -> int:
        return sum(1 for call in self.calls if call[0] == op)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _enter(self, op: str, node_kind: ResourceKind, name: str) -> None:
        self.calls.append((op, node_kind, name))
        if self.api_delay_ms:
            await asyncio.sleep(self.api_delay_ms / 1000)

        failure = self._failures.get((op, node_kind))
        if failure is None:
            return
        error, remaining = failure
        if remaining is not None:
            if remaining <= 0:
                return
            failure[1] = remaining - 1
        raise error

    def _allocate_address(self, kind: ResourceKind, name: str) -> None:
        n = next(self._ids)
        prefix = "198.51.100" if kind == K.LOAD_BALANCER else "203.0.113"
        self.addresses[(kind, name)] = f"{prefix}.{n % 250 + 1}"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def describe(self, node: ResourceNode) -> ResourceNode | None:
        await self._enter("describe", node.kind, node.logical_name)
        return self.resources[node.kind].get(node.logical_name)

    async def create(self, node: ResourceNode) -> ResourceNode:
        await self._enter("create", node.kind, node.logical_name)
        if node.logical_name in self.resources[node.kind]:
            raise ResourceAlreadyExists(
                f"{node.kind.value} {node.logical_name} already exists",
                provider=self.name,
                kind=node.kind,
                logical_name=node.logical_name,
            )

        attributes = dict(node.attributes)
        if node.kind == K.DNS_RECORD and "content" not in attributes:
            target_kind = K(attributes.get("target_kind", K.FLOATING_IP.value))
            content = await self.find_address(target_kind, attributes.get("target_name") or "")
            if content is None:
                raise ResourceNotFound(
                    f"DNS target {attributes.get('target_name')} has no address",
                    provider=self.name,
                    kind=node.kind,
                    logical_name=node.logical_name,
                )
            attributes["content"] = content
        if node.kind == K.IP_ASSOCIATION and attributes.get("floating_ip"):
            if (K.FLOATING_IP, attributes["floating_ip"]) not in self.addresses:
                raise ResourceNotFound(
                    f"floating IP {attributes['floating_ip']} not found",
                    provider=self.name,
                    kind=node.kind,
                    logical_name=node.logical_name,
                )

        created = node.model_copy(
            update={
                "lifecycle_state": LifecycleState.PRESENT,
                "provider_id": f"{node.kind.value}-{next(self._ids)}",
                "attributes": attributes,
            }
        )
        self.resources[node.kind][node.logical_name] = created
        if node.kind in (K.FLOATING_IP, K.LOAD_BALANCER):
            self._allocate_address(node.kind, node.logical_name)
        return created

    async def update(self, node: ResourceNode, existing: ResourceNode) -> ResourceNode:
        await self._enter("update", node.kind, node.logical_name)
        stored = self.resources[node.kind].get(node.logical_name)
        if stored is None:
            raise ResourceNotFound(
                f"{node.kind.value} {node.logical_name} not found",
                provider=self.name,
                kind=node.kind,
                logical_name=node.logical_name,
            )
        shape = {
            key: node.attributes[key]
            for key in CATALOG_BY_KIND[node.kind].shape
            if node.attributes.get(key) is not None
        }
        updated = stored.model_copy(update={"attributes": {**stored.attributes, **shape}})
        self.resources[node.kind][node.logical_name] = updated
        return updated

    async def delete(self, node: ResourceNode) -> None:
        await self._enter("delete", node.kind, node.logical_name)
        if node.logical_name not in self.resources[node.kind]:
            raise ResourceNotFound(
                f"{node.kind.value} {node.logical_name} not found",
                provider=self.name,
                kind=node.kind,
                logical_name=node.logical_name,
            )
        holders = [k for k in HELD_BY.get(node.kind, ()) if self.resources[k]]
        if holders:
            raise DependencyInUse(
                f"{node.kind.value} {node.logical_name} still used by "
                + ", ".join(k.value for k in holders),
                provider=self.name,
                kind=node.kind,
                logical_name=node.logical_name,
            )
        del self.resources[node.kind][node.logical_name]
        self.addresses.pop((node.kind, node.logical_name), None)

    # =========================================================================
    # Discovery & lookups
    # =========================================================================

    async def discover(self, kind: ResourceKind, labels: dict[str, str]) -> list[ResourceNode]:
        await self._enter("discover", kind, ",".join(f"{k}={v}" for k, v in labels.items()))
        return [
            node
            for node in self.resources[kind].values()
            if all(node.labels.get(k) == v for k, v in labels.items())
        ]

    async def list_zones(self) -> list[DNSZone]:
        return list(self.zones)

    async def find_address(self, kind: ResourceKind, name: str) -> str | None:
        return self.addresses.get((kind, name))

    async def close(self) -> None:
        self.closed = True
