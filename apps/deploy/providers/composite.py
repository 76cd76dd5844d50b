"""Composite provider - routes each resource kind to the provider that owns it."""

import logging

from outpost_schemas import DNSZone, ResourceKind, ResourceNode

from apps.deploy.exceptions import ResourceNotFound
from apps.deploy.providers.cloudflare import CloudflareProvider
from apps.deploy.providers.hetzner import HetznerProvider

logger = logging.getLogger(__name__)


class CompositeProvider:
    """
    Hetzner for compute and addressing, Cloudflare for DNS and logging.

    DNS records are the one place the two meet: the record's address is
    looked up on Hetzner just before Cloudflare creates or updates it.
    """

    def __init__(self, hetzner: HetznerProvider, cloudflare: CloudflareProvider) -> None:
        self.hetzner = hetzner
        self.cloudflare = cloudflare

    @property
    def name(self) -> str:
        return "hetzner+cloudflare"

    @property
    def kinds(self) -> frozenset[ResourceKind]:
        return self.hetzner.kinds | self.cloudflare.kinds

    def _route(self, kind: ResourceKind) -> HetznerProvider | CloudflareProvider:
        if kind in self.cloudflare.kinds:
            return self.cloudflare
        return self.hetzner

    async def describe(self, node: ResourceNode) -> ResourceNode | None:
        return await self._route(node.kind).describe(node)

    async def create(self, node: ResourceNode) -> ResourceNode:
        if node.kind == ResourceKind.DNS_RECORD and not node.attributes.get("content"):
            node = await self._bind_record_target(node)
        return await self._route(node.kind).create(node)

    async def update(self, node: ResourceNode, existing: ResourceNode) -> ResourceNode:
        if node.kind == ResourceKind.DNS_RECORD and not node.attributes.get("content"):
            node = await self._bind_record_target(node)
        return await self._route(node.kind).update(node, existing)

    async def delete(self, node: ResourceNode) -> None:
        await self._route(node.kind).delete(node)

    async def discover(self, kind: ResourceKind, labels: dict[str, str]) -> list[ResourceNode]:
        return await self._route(kind).discover(kind, labels)

    async def list_zones(self) -> list[DNSZone]:
        return await self.cloudflare.list_zones()

    async def find_address(self, kind: ResourceKind, name: str) -> str | None:
        return await self.hetzner.find_address(kind, name)

    async def _bind_record_target(self, node: ResourceNode) -> ResourceNode:
        target_kind = ResourceKind(node.attributes.get("target_kind", ResourceKind.FLOATING_IP))
        target_name = node.attributes.get("target_name") or ""
        address = await self.hetzner.find_address(target_kind, target_name)
        if address is None:
            raise ResourceNotFound(
                f"{target_kind.value} {target_name} has no public address yet",
                provider=self.name,
                kind=node.kind,
                logical_name=node.logical_name,
            )
        logger.info("Pointing %s at %s", node.attributes.get("name"), address)
        return node.model_copy(update={"attributes": {**node.attributes, "content": address}})

    async def close(self) -> None:
        await self.hetzner.close()
        await self.cloudflare.close()
