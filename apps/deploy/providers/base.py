"""Base provider protocols - the capability surface of a cloud API."""

from typing import Protocol, runtime_checkable

from outpost_schemas import DNSZone, ResourceKind, ResourceNode


@runtime_checkable
class ResourceProvider(Protocol):
    """
    Create/describe/delete-by-kind surface for one cloud provider.

    Every call is eventually consistent and may raise one of the
    ProviderError categories. Methods are async since each is a network
    round-trip.
    """

    @property
    def name(self) -> str:
        """Provider name used in error reports."""
        ...

    @property
    def kinds(self) -> frozenset[ResourceKind]:
        """Resource kinds this provider owns."""
        ...

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def describe(self, node: ResourceNode) -> ResourceNode | None:
        """
        Probe for the object matching a node's logical name.

        Returns:
            The node with `provider_id` set and state PRESENT, or None.
        """
        ...

    async def create(self, node: ResourceNode) -> ResourceNode:
        """
        Create the object for a node.

        Returns:
            The node with `provider_id` set and state PRESENT.

        Raises:
            ResourceAlreadyExists: If an object with that name exists.
        """
        ...

    async def update(self, node: ResourceNode, existing: ResourceNode) -> ResourceNode:
        """
        Bring an existing object in line with the node's shape attributes.

        Returns:
            The node with `provider_id` set and state PRESENT.

        Raises:
            ResourceNotFound: If the object vanished.
            ValueError: If the kind cannot be changed in place.
        """
        ...

    async def delete(self, node: ResourceNode) -> None:
        """
        Delete the object for a node and wait until it is gone.

        Raises:
            ResourceNotFound: If there is nothing to delete.
            DependencyInUse: If something still holds on to it.
        """
        ...

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover(self, kind: ResourceKind, labels: dict[str, str]) -> list[ResourceNode]:
        """Find objects of a kind matching the deployment's labels or names."""
        ...

    async def close(self) -> None:
        """Release HTTP resources."""
        ...


@runtime_checkable
class CloudProvider(ResourceProvider, Protocol):
    """Full surface the services need: resources plus lookups."""

    async def list_zones(self) -> list[DNSZone]:
        """Zones managed by the DNS account."""
        ...

    async def find_address(self, kind: ResourceKind, name: str) -> str | None:
        """Public IPv4 of a floating IP or load balancer, by name."""
        ...
