"""Hetzner Cloud provider - compute, firewall, floating IP and load balancer."""

import asyncio
import logging
from typing import Any

import httpx
from outpost_schemas import LifecycleState, ResourceKind, ResourceNode

from apps.deploy.exceptions import (
    AccessDenied,
    DependencyInUse,
    ProviderError,
    ProviderUnavailable,
    QuotaExceeded,
    RateLimited,
    ResourceAlreadyExists,
    ResourceNotFound,
)

logger = logging.getLogger(__name__)

K = ResourceKind

# Hetzner error codes -> error class
ERROR_CODES: dict[str, type[ProviderError]] = {
    "uniqueness_error": ResourceAlreadyExists,
    "not_found": ResourceNotFound,
    "resource_in_use": DependencyInUse,
    "conflict": DependencyInUse,
    "locked": DependencyInUse,
    "unauthorized": AccessDenied,
    "forbidden": AccessDenied,
    "token_readonly": AccessDenied,
    "rate_limit_exceeded": RateLimited,
    "resource_limit_exceeded": QuotaExceeded,
    "resource_unavailable": ProviderUnavailable,
    "server_error": ProviderUnavailable,
    "timeout": ProviderUnavailable,
    "unavailable": ProviderUnavailable,
}

STATUS_CODES: dict[int, type[ProviderError]] = {
    401: AccessDenied,
    403: AccessDenied,
    404: ResourceNotFound,
    409: ResourceAlreadyExists,
    423: DependencyInUse,
    429: RateLimited,
}

# Kinds backed by a named Hetzner collection
COLLECTIONS: dict[ResourceKind, str] = {
    K.SECURITY_GROUP: "firewalls",
    K.CREDENTIAL: "ssh_keys",
    K.INSTANCE: "servers",
    K.FLOATING_IP: "floating_ips",
    K.CERTIFICATE: "certificates",
    K.LOAD_BALANCER: "load_balancers",
}

WORLD = ["0.0.0.0/0", "::/0"]


class HetznerProvider:
    """
    Hetzner Cloud adapter implementing the ResourceProvider protocol.

    Objects are identified by name; every owned object also carries the
    deployment labels so discovery can find it without recorded IDs.
    Destructive calls wait for the resulting action, so "deleted" means
    the API confirmed it.

    API Reference: https://docs.hetzner.cloud/
    """

    BASE_URL = "https://api.hetzner.cloud/v1"

    ACTION_POLL_SECONDS = 2.0
    ACTION_TIMEOUT_SECONDS = 300.0
    LOAD_BALANCER_TYPE = "lb11"

    def __init__(self, token: str, http_client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the Hetzner adapter.

        Args:
            token: Hetzner Cloud API token (read/write).
            http_client: Optional HTTP client for dependency injection (testing).
        """
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = http_client is None
        self._headers = {"Authorization": f"Bearer {token}"}

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def name(self) -> str:
        return "hetzner"

    @property
    def kinds(self) -> frozenset[ResourceKind]:
        return frozenset(COLLECTIONS) | {K.ROLE_BINDING, K.IP_ASSOCIATION}

    # =========================================================================
    # HTTP Helpers
    # =========================================================================

    def _error_for(
        self, response: httpx.Response, node: ResourceNode | None
    ) -> ProviderError:
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        code = error.get("code", "")
        message = error.get("message") or response.text or f"HTTP {response.status_code}"

        error_cls = ERROR_CODES.get(code) or STATUS_CODES.get(response.status_code)
        if error_cls is None:
            error_cls = ProviderUnavailable if response.status_code >= 500 else ProviderError

        kwargs: dict[str, Any] = {
            "provider": self.name,
            "kind": node.kind if node else None,
            "logical_name": node.logical_name if node else None,
            "status_code": response.status_code,
        }
        if error_cls is RateLimited:
            retry_after = response.headers.get("Retry-After")
            return RateLimited(
                f"Hetzner rate limit exceeded: {message}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                **kwargs,
            )
        return error_cls(f"Hetzner {code or response.status_code}: {message}", **kwargs)

    async def _request(
        self,
        method: str,
        path: str,
        node: ResourceNode | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Make an API request and translate failures into provider errors.

        Raises:
            ProviderError: A subclass matching the Hetzner error code.
        """
        try:
            response = await self._client.request(
                method, f"{self.BASE_URL}{path}", headers=self._headers, **kwargs
            )
        except httpx.RequestError as e:
            raise ProviderUnavailable(
                f"Hetzner request failed: {e}",
                provider=self.name,
                kind=node.kind if node else None,
                logical_name=node.logical_name if node else None,
            ) from e

        if response.status_code >= 400:
            raise self._error_for(response, node)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def _wait_for_action(self, action: dict[str, Any] | None, node: ResourceNode) -> None:
        """Poll an action until it leaves the running state."""
        if not action:
            return
        elapsed = 0.0
        while action.get("status") == "running":
            if elapsed >= self.ACTION_TIMEOUT_SECONDS:
                raise ProviderUnavailable(
                    f"Hetzner action {action.get('command')} still running after {elapsed:.0f}s",
                    provider=self.name,
                    kind=node.kind,
                    logical_name=node.logical_name,
                )
            await asyncio.sleep(self.ACTION_POLL_SECONDS)
            elapsed += self.ACTION_POLL_SECONDS
            data = await self._request("GET", f"/actions/{action['id']}", node)
            action = data["action"]

        if action.get("status") == "error":
            error = action.get("error") or {}
            error_cls = ERROR_CODES.get(error.get("code", ""), ProviderError)
            raise error_cls(
                f"Hetzner action {action.get('command')} failed: {error.get('message')}",
                provider=self.name,
                kind=node.kind,
                logical_name=node.logical_name,
            )

    async def _find(
        self, collection: str, name: str, node: ResourceNode | None = None
    ) -> dict[str, Any] | None:
        data = await self._request("GET", f"/{collection}", node, params={"name": name})
        items = data.get(collection, [])
        return items[0] if items else None

    async def _list(
        self, collection: str, params: dict[str, Any], node: ResourceNode | None = None
    ) -> list[dict[str, Any]]:
        """Every item of a collection, following `meta.pagination.next_page`."""
        items: list[dict[str, Any]] = []
        page: int | None = 1
        while page:
            data = await self._request(
                "GET", f"/{collection}", node, params={**params, "page": page, "per_page": 50}
            )
            items.extend(data.get(collection, []))
            page = ((data.get("meta") or {}).get("pagination") or {}).get("next_page")
        return items

    async def _require(self, collection: str, name: str, node: ResourceNode) -> dict[str, Any]:
        item = await self._find(collection, name, node)
        if item is None:
            raise ResourceNotFound(
                f"{collection[:-1]} {name} not found",
                provider=self.name,
                kind=node.kind,
                logical_name=node.logical_name,
            )
        return item

    @staticmethod
    def _present(node: ResourceNode, provider_id: Any, **attributes: Any) -> ResourceNode:
        return node.model_copy(
            update={
                "lifecycle_state": LifecycleState.PRESENT,
                "provider_id": str(provider_id),
                "attributes": {**node.attributes, **attributes},
            }
        )

    # =========================================================================
    # Naming helpers
    # =========================================================================

    @staticmethod
    def _firewall_name(node: ResourceNode) -> str:
        return node.attributes.get("firewall") or node.logical_name.removesuffix("-binding")

    @staticmethod
    def _selector_entries(firewall: dict[str, Any]) -> list[dict[str, Any]]:
        return [a for a in firewall.get("applied_to", []) if a.get("type") == "label_selector"]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def describe(self, node: ResourceNode) -> ResourceNode | None:
        if node.kind in COLLECTIONS:
            item = await self._find(COLLECTIONS[node.kind], node.logical_name, node)
            return self._present(node, item["id"]) if item else None

        if node.kind == K.ROLE_BINDING:
            firewall = await self._find("firewalls", self._firewall_name(node), node)
            if firewall is None:
                return None
            selector = node.attributes.get("label_selector")
            for entry in self._selector_entries(firewall):
                applied = entry["label_selector"]["selector"]
                if selector is None or applied == selector:
                    return self._present(node, f"{firewall['id']}:{applied}")
            return None

        if node.kind == K.IP_ASSOCIATION:
            return await self._describe_association(node)

        raise ValueError(f"Hetzner does not manage {node.kind.value}")

    async def _describe_association(self, node: ResourceNode) -> ResourceNode | None:
        fip_name = node.attributes.get("floating_ip")
        server_name = node.attributes.get("server")
        if fip_name and server_name:
            fip = await self._find("floating_ips", fip_name, node)
            server = await self._find("servers", server_name, node)
            if fip and server and fip.get("server") == server["id"]:
                return self._present(node, f"{fip['id']}:{server['id']}")
            return None

        # Node from state or discovery: trust the recorded ids.
        if not node.provider_id:
            return None
        fip_id, _, server_id = node.provider_id.partition(":")
        try:
            data = await self._request("GET", f"/floating_ips/{fip_id}", node)
        except ResourceNotFound:
            return None
        if str(data["floating_ip"].get("server")) == server_id:
            return node.model_copy(update={"lifecycle_state": LifecycleState.PRESENT})
        return None

    async def create(self, node: ResourceNode) -> ResourceNode:
        attrs = node.attributes
        logger.info("Creating %s %s", node.kind.value, node.logical_name)

        if node.kind == K.SECURITY_GROUP:
            data = await self._request(
                "POST",
                "/firewalls",
                node,
                json={
                    "name": node.logical_name,
                    "labels": node.labels,
                    "rules": [
                        {
                            "direction": "in",
                            "protocol": "tcp",
                            "port": str(port),
                            "source_ips": WORLD,
                            "description": f"port {port}",
                        }
                        for port in attrs.get("ports", [22, 80, 443])
                    ],
                },
            )
            return self._present(node, data["firewall"]["id"])

        if node.kind == K.CREDENTIAL:
            if not attrs.get("public_key"):
                raise ProviderError(
                    "machine.ssh_public_key is required to create the SSH key",
                    provider=self.name,
                    kind=node.kind,
                    logical_name=node.logical_name,
                )
            data = await self._request(
                "POST",
                "/ssh_keys",
                node,
                json={
                    "name": node.logical_name,
                    "public_key": attrs["public_key"],
                    "labels": node.labels,
                },
            )
            return self._present(node, data["ssh_key"]["id"])

        if node.kind == K.ROLE_BINDING:
            firewall = await self._require("firewalls", self._firewall_name(node), node)
            selector = attrs["label_selector"]
            data = await self._request(
                "POST",
                f"/firewalls/{firewall['id']}/actions/apply_to_resources",
                node,
                json={
                    "apply_to": [
                        {"type": "label_selector", "label_selector": {"selector": selector}}
                    ]
                },
            )
            for action in data.get("actions", []):
                await self._wait_for_action(action, node)
            return self._present(node, f"{firewall['id']}:{selector}")

        if node.kind == K.INSTANCE:
            data = await self._request(
                "POST",
                "/servers",
                node,
                json={
                    "name": node.logical_name,
                    "server_type": attrs["server_type"],
                    "image": attrs["image"],
                    "location": attrs["location"],
                    "ssh_keys": [attrs["ssh_key"]],
                    "labels": node.labels,
                    "user_data": attrs.get("user_data", ""),
                    "public_net": {"enable_ipv4": True, "enable_ipv6": True},
                },
            )
            await self._wait_for_action(data.get("action"), node)
            server = data["server"]
            return self._present(node, server["id"], ipv4=server["public_net"]["ipv4"]["ip"])

        if node.kind == K.FLOATING_IP:
            data = await self._request(
                "POST",
                "/floating_ips",
                node,
                json={
                    "type": "ipv4",
                    "name": node.logical_name,
                    "home_location": attrs["location"],
                    "labels": node.labels,
                    "description": node.logical_name,
                },
            )
            fip = data["floating_ip"]
            return self._present(node, fip["id"], ip=fip["ip"])

        if node.kind == K.IP_ASSOCIATION:
            fip = await self._require("floating_ips", attrs["floating_ip"], node)
            server = await self._require("servers", attrs["server"], node)
            data = await self._request(
                "POST",
                f"/floating_ips/{fip['id']}/actions/assign",
                node,
                json={"server": server["id"]},
            )
            await self._wait_for_action(data.get("action"), node)
            return self._present(node, f"{fip['id']}:{server['id']}")

        if node.kind == K.CERTIFICATE:
            data = await self._request(
                "POST",
                "/certificates",
                node,
                json={
                    "name": node.logical_name,
                    "type": "managed",
                    "domain_names": attrs["domains"],
                    "labels": node.labels,
                },
            )
            # Issuance continues in the background; convergence checks cover it.
            return self._present(node, data["certificate"]["id"])

        if node.kind == K.LOAD_BALANCER:
            return await self._create_load_balancer(node)

        raise ValueError(f"Hetzner does not manage {node.kind.value}")

    async def _create_load_balancer(self, node: ResourceNode) -> ResourceNode:
        attrs = node.attributes
        server = await self._require("servers", attrs["server"], node)
        certificate = attrs.get("certificate")
        if isinstance(certificate, str):
            certificate = (await self._require("certificates", certificate, node))["id"]

        data = await self._request(
            "POST",
            "/load_balancers",
            node,
            json={
                "name": node.logical_name,
                "load_balancer_type": self.LOAD_BALANCER_TYPE,
                "location": attrs["location"],
                "labels": node.labels,
                "targets": [{"type": "server", "server": {"id": server["id"]}}],
                "services": [
                    {
                        "protocol": "https",
                        "listen_port": 443,
                        "destination_port": attrs.get("destination_port", 80),
                        "http": {"certificates": [certificate], "redirect_http": True},
                    }
                ],
            },
        )
        await self._wait_for_action(data.get("action"), node)
        lb = data["load_balancer"]
        return self._present(node, lb["id"], ip=lb["public_net"]["ipv4"]["ip"])

    async def update(self, node: ResourceNode, existing: ResourceNode) -> ResourceNode:
        raise ValueError(f"Hetzner cannot update {node.kind.value} in place")

    async def delete(self, node: ResourceNode) -> None:
        logger.info("Deleting %s %s", node.kind.value, node.logical_name)

        if node.kind == K.ROLE_BINDING:
            firewall = await self._require("firewalls", self._firewall_name(node), node)
            entries = self._selector_entries(firewall)
            if not entries:
                raise ResourceNotFound(
                    f"firewall {firewall['name']} is not applied to anything",
                    provider=self.name,
                    kind=node.kind,
                    logical_name=node.logical_name,
                )
            data = await self._request(
                "POST",
                f"/firewalls/{firewall['id']}/actions/remove_from_resources",
                node,
                json={"remove_from": entries},
            )
            for action in data.get("actions", []):
                await self._wait_for_action(action, node)
            return

        if node.kind == K.IP_ASSOCIATION:
            existing = await self.describe(node)
            if existing is None or not existing.provider_id:
                raise ResourceNotFound(
                    "floating IP is not assigned",
                    provider=self.name,
                    kind=node.kind,
                    logical_name=node.logical_name,
                )
            fip_id = existing.provider_id.partition(":")[0]
            data = await self._request("POST", f"/floating_ips/{fip_id}/actions/unassign", node)
            await self._wait_for_action(data.get("action"), node)
            return

        if node.kind not in COLLECTIONS:
            raise ValueError(f"Hetzner does not manage {node.kind.value}")

        collection = COLLECTIONS[node.kind]
        item = await self._require(collection, node.logical_name, node)
        data = await self._request("DELETE", f"/{collection}/{item['id']}", node)
        # Servers return an action; wait so termination is confirmed.
        await self._wait_for_action(data.get("action"), node)

    # =========================================================================
    # Discovery & lookups
    # =========================================================================

    async def discover(self, kind: ResourceKind, labels: dict[str, str]) -> list[ResourceNode]:
        selector = ",".join(f"{k}={v}" for k, v in labels.items())

        if kind in COLLECTIONS:
            collection = COLLECTIONS[kind]
            items = await self._list(
                collection, {"label_selector": f"{selector},kind={kind.value}"}
            )
            return [
                ResourceNode(
                    kind=kind,
                    logical_name=item["name"],
                    lifecycle_state=LifecycleState.PRESENT,
                    provider_id=str(item["id"]),
                    labels=item.get("labels", {}),
                )
                for item in items
            ]

        if kind == K.ROLE_BINDING:
            firewalls = await self.discover(K.SECURITY_GROUP, labels)
            nodes = []
            for fw in firewalls:
                data = await self._request("GET", f"/firewalls/{fw.provider_id}")
                if self._selector_entries(data["firewall"]):
                    nodes.append(
                        fw.model_copy(
                            update={
                                "kind": K.ROLE_BINDING,
                                "logical_name": f"{fw.logical_name}-binding",
                                "attributes": {"firewall": fw.logical_name},
                            }
                        )
                    )
            return nodes

        if kind == K.IP_ASSOCIATION:
            servers = {int(s.provider_id or 0): s for s in await self.discover(K.INSTANCE, labels)}
            if not servers:
                return []
            floating_ips = await self._list("floating_ips", {})
            return [
                ResourceNode(
                    kind=K.IP_ASSOCIATION,
                    logical_name=_association_name(servers[fip["server"]].logical_name),
                    lifecycle_state=LifecycleState.PRESENT,
                    provider_id=f"{fip['id']}:{fip['server']}",
                    labels={**labels, "kind": K.IP_ASSOCIATION.value},
                )
                for fip in floating_ips
                if fip.get("server") in servers
            ]

        return []

    async def find_address(self, kind: ResourceKind, name: str) -> str | None:
        """Public IPv4 of a floating IP or load balancer."""
        if kind == K.FLOATING_IP:
            fip = await self._find("floating_ips", name)
            return fip["ip"] if fip else None
        if kind == K.LOAD_BALANCER:
            lb = await self._find("load_balancers", name)
            return lb["public_net"]["ipv4"]["ip"] if lb else None
        return None

    async def get_pricing(self) -> dict[str, Any]:
        """Current price list (`GET /pricing`)."""
        data = await self._request("GET", "/pricing")
        return data["pricing"]


def _association_name(server_name: str) -> str:
    return f"{server_name.removesuffix('-server')}-ip-assignment"
