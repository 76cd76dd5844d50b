"""Cloudflare provider - DNS record, R2 log sink, log-forwarding Worker, Logpush job."""

import json
import logging
from typing import Any

import httpx
from outpost_schemas import DNSZone, LifecycleState, ResourceKind, ResourceNode

from apps.deploy.exceptions import (
    AccessDenied,
    DependencyInUse,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    ResourceAlreadyExists,
    ResourceNotFound,
)
from apps.deploy.lifecycle.catalog import CATALOG_BY_KIND, MANAGED_BY, logical_name
from apps.deploy.topology.zones import find_zone

logger = logging.getLogger(__name__)

K = ResourceKind

# Cloudflare API error codes -> error class
ERROR_CODES: dict[int, type[ProviderError]] = {
    81053: ResourceAlreadyExists,  # A/AAAA record with that host already exists
    81057: ResourceAlreadyExists,  # identical record already exists
    81058: ResourceAlreadyExists,
    81044: ResourceNotFound,  # record does not exist
    10006: ResourceNotFound,  # bucket does not exist
    10007: ResourceNotFound,  # worker script not found
    10004: ResourceAlreadyExists,  # bucket already exists
    10008: DependencyInUse,  # bucket not empty
    10000: AccessDenied,  # authentication error
    9109: AccessDenied,  # invalid access token
}

STATUS_CODES: dict[int, type[ProviderError]] = {
    401: AccessDenied,
    403: AccessDenied,
    404: ResourceNotFound,
    409: ResourceAlreadyExists,
    429: RateLimited,
}

LOG_FORWARDER_SCRIPT = """\
export default {
  async fetch(request, env, ctx) {
    const url = new URL(request.url);
    console.log(JSON.stringify({
      deployment: env.DEPLOYMENT,
      method: request.method,
      path: url.pathname,
      ray: request.headers.get("cf-ray"),
    }));
    return fetch(request);
  },
};
"""


class CloudflareProvider:
    """
    Cloudflare adapter implementing the ResourceProvider protocol.

    DNS records are tagged through their comment (`outpost:<deployment>`);
    R2 buckets, Workers and Logpush jobs have no labels and are matched by
    name convention instead.

    API Reference: https://developers.cloudflare.com/api/
    """

    BASE_URL = "https://api.cloudflare.com/client/v4"
    COMPATIBILITY_DATE = "2024-09-23"

    def __init__(
        self,
        api_token: str,
        account_id: str,
        r2_access_key_id: str | None = None,
        r2_secret_access_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the Cloudflare adapter.

        Args:
            api_token: API token with DNS, Workers, R2 and Logpush edit rights.
            account_id: Account owning the R2 bucket, Worker and Logpush job.
            r2_access_key_id: R2 S3 credentials Logpush writes with.
            r2_secret_access_key: R2 S3 credentials Logpush writes with.
            http_client: Optional HTTP client for dependency injection (testing).
        """
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = http_client is None
        self._headers = {"Authorization": f"Bearer {api_token}"}
        self.account_id = account_id
        self._r2_key = r2_access_key_id
        self._r2_secret = r2_secret_access_key

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def name(self) -> str:
        return "cloudflare"

    @property
    def kinds(self) -> frozenset[ResourceKind]:
        return frozenset({K.DNS_RECORD, K.LOG_SINK, K.LOG_FUNCTION, K.LOG_SUBSCRIPTION})

    @property
    def _account(self) -> str:
        return f"/accounts/{self.account_id}"

    # =========================================================================
    # HTTP Helpers
    # =========================================================================

    def _error_for(self, response: httpx.Response, node: ResourceNode | None) -> ProviderError:
        try:
            errors = response.json().get("errors") or []
        except ValueError:
            errors = []
        first = errors[0] if errors else {}
        code = first.get("code")
        message = first.get("message") or f"HTTP {response.status_code}"

        error_cls = ERROR_CODES.get(code) if isinstance(code, int) else None
        error_cls = error_cls or STATUS_CODES.get(response.status_code)
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
                f"Cloudflare rate limit exceeded: {message}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                **kwargs,
            )
        return error_cls(f"Cloudflare {code or response.status_code}: {message}", **kwargs)

    async def _request(
        self,
        method: str,
        path: str,
        node: ResourceNode | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Make an API request and return the envelope's `result`.

        Raises:
            ProviderError: A subclass matching the Cloudflare error.
        """
        try:
            response = await self._client.request(
                method, f"{self.BASE_URL}{path}", headers=self._headers, **kwargs
            )
        except httpx.RequestError as e:
            raise ProviderUnavailable(
                f"Cloudflare request failed: {e}",
                provider=self.name,
                kind=node.kind if node else None,
                logical_name=node.logical_name if node else None,
            ) from e

        if response.status_code >= 400:
            raise self._error_for(response, node)
        if not response.content:
            return None
        body = response.json()
        if body.get("success") is False:
            raise self._error_for(response, node)
        return body.get("result")

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
    # DNS
    # =========================================================================

    async def list_zones(self) -> list[DNSZone]:
        result = await self._request("GET", "/zones", params={"per_page": 50})
        return [DNSZone(id=z["id"], name=z["name"]) for z in result or []]

    async def _zone_id(self, node: ResourceNode) -> str:
        zone_id = node.attributes.get("zone_id")
        if zone_id:
            return zone_id
        domain = node.attributes.get("name")
        if not domain:
            raise ResourceNotFound(
                "DNS record has neither zone_id nor name",
                provider=self.name,
                kind=node.kind,
                logical_name=node.logical_name,
            )
        return find_zone(domain, await self.list_zones()).id

    async def _find_record(self, node: ResourceNode) -> dict[str, Any] | None:
        zone_id = await self._zone_id(node)
        result = await self._request(
            "GET",
            f"/zones/{zone_id}/dns_records",
            node,
            params={"type": node.attributes.get("type", "A"), "name": node.attributes["name"]},
        )
        return result[0] if result else None

    async def _describe_record_by_id(self, node: ResourceNode) -> ResourceNode | None:
        zone_id = node.attributes.get("zone_id")
        if not zone_id or not node.provider_id:
            return None
        try:
            await self._request("GET", f"/zones/{zone_id}/dns_records/{node.provider_id}", node)
        except ResourceNotFound:
            return None
        return node.model_copy(update={"lifecycle_state": LifecycleState.PRESENT})

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def describe(self, node: ResourceNode) -> ResourceNode | None:
        if node.kind == K.DNS_RECORD:
            if not node.attributes.get("name"):
                return await self._describe_record_by_id(node)
            record = await self._find_record(node)
            if record is None:
                return None
            return self._present(
                node,
                record["id"],
                zone_id=record.get("zone_id"),
                content=record.get("content"),
                proxied=record.get("proxied"),
            )

        if node.kind == K.LOG_SINK:
            try:
                await self._request("GET", f"{self._account}/r2/buckets/{node.logical_name}", node)
            except ResourceNotFound:
                return None
            return self._present(node, node.logical_name)

        if node.kind == K.LOG_FUNCTION:
            scripts = await self._request("GET", f"{self._account}/workers/scripts", node)
            for script in scripts or []:
                if script.get("id") == node.logical_name:
                    return self._present(node, script["id"])
            return None

        if node.kind == K.LOG_SUBSCRIPTION:
            job = await self._find_job(node.logical_name, node)
            return self._present(node, job["id"]) if job else None

        raise ValueError(f"Cloudflare does not manage {node.kind.value}")

    async def create(self, node: ResourceNode) -> ResourceNode:
        attrs = node.attributes
        logger.info("Creating %s %s", node.kind.value, node.logical_name)

        if node.kind == K.DNS_RECORD:
            if not attrs.get("content"):
                raise ResourceNotFound(
                    f"no address to point {attrs.get('name')} at",
                    provider=self.name,
                    kind=node.kind,
                    logical_name=node.logical_name,
                )
            zone_id = await self._zone_id(node)
            record = await self._request(
                "POST",
                f"/zones/{zone_id}/dns_records",
                node,
                json={
                    "type": attrs.get("type", "A"),
                    "name": attrs["name"],
                    "content": attrs["content"],
                    "proxied": bool(attrs.get("proxied")),
                    "ttl": 1,  # Auto TTL
                    "comment": attrs.get("comment", MANAGED_BY),
                },
            )
            return self._present(node, record["id"], zone_id=zone_id)

        if node.kind == K.LOG_SINK:
            await self._request(
                "POST", f"{self._account}/r2/buckets", node, json={"name": node.logical_name}
            )
            return self._present(node, node.logical_name)

        if node.kind == K.LOG_FUNCTION:
            metadata = {
                "main_module": "worker.js",
                "compatibility_date": self.COMPATIBILITY_DATE,
                "logpush": True,
                "bindings": [
                    {
                        "type": "plain_text",
                        "name": "DEPLOYMENT",
                        "text": node.labels.get("deployment", ""),
                    }
                ],
            }
            result = await self._request(
                "PUT",
                f"{self._account}/workers/scripts/{node.logical_name}",
                node,
                files={
                    "metadata": (None, json.dumps(metadata), "application/json"),
                    "worker.js": (
                        "worker.js",
                        LOG_FORWARDER_SCRIPT,
                        "application/javascript+module",
                    ),
                },
            )
            return self._present(node, (result or {}).get("id", node.logical_name))

        if node.kind == K.LOG_SUBSCRIPTION:
            job = await self._request(
                "POST",
                f"{self._account}/logpush/jobs",
                node,
                json={
                    "name": node.logical_name,
                    "dataset": attrs.get("dataset", "workers_trace_events"),
                    "destination_conf": self._destination(attrs["bucket"]),
                    "filter": json.dumps(
                        {"where": {"key": "ScriptName", "operator": "eq", "value": attrs["script"]}}
                    ),
                    "enabled": True,
                },
            )
            return self._present(node, job["id"])

        raise ValueError(f"Cloudflare does not manage {node.kind.value}")

    async def update(self, node: ResourceNode, existing: ResourceNode) -> ResourceNode:
        if node.kind != K.DNS_RECORD:
            raise ValueError(f"Cloudflare cannot update {node.kind.value} in place")
        attrs = node.attributes
        logger.info("Updating %s %s", node.kind.value, node.logical_name)
        zone_id = existing.attributes.get("zone_id") or await self._zone_id(node)
        body: dict[str, Any] = {}
        for key in CATALOG_BY_KIND[node.kind].shape:
            if attrs.get(key) is not None:
                body[key] = attrs[key]
        record = await self._request(
            "PATCH", f"/zones/{zone_id}/dns_records/{existing.provider_id}", node, json=body
        )
        return self._present(node, record["id"], zone_id=zone_id)

    def _destination(self, bucket: str) -> str:
        return (
            f"r2://{bucket}/{{DATE}}?account-id={self.account_id}"
            f"&access-key-id={self._r2_key or ''}&secret-access-key={self._r2_secret or ''}"
        )

    async def _find_job(self, name: str, node: ResourceNode | None = None) -> dict[str, Any] | None:
        jobs = await self._request("GET", f"{self._account}/logpush/jobs", node)
        for job in jobs or []:
            if job.get("name") == name:
                return job
        return None

    async def delete(self, node: ResourceNode) -> None:
        logger.info("Deleting %s %s", node.kind.value, node.logical_name)

        if node.kind == K.DNS_RECORD:
            if node.attributes.get("name"):
                record = await self._find_record(node)
                if record is None:
                    raise ResourceNotFound(
                        f"no A record for {node.attributes['name']}",
                        provider=self.name,
                        kind=node.kind,
                        logical_name=node.logical_name,
                    )
                zone_id = record.get("zone_id") or await self._zone_id(node)
                record_id = record["id"]
            else:
                zone_id, record_id = node.attributes["zone_id"], node.provider_id
            await self._request("DELETE", f"/zones/{zone_id}/dns_records/{record_id}", node)
            return

        if node.kind == K.LOG_SINK:
            await self._request("DELETE", f"{self._account}/r2/buckets/{node.logical_name}", node)
            return

        if node.kind == K.LOG_FUNCTION:
            await self._request(
                "DELETE", f"{self._account}/workers/scripts/{node.logical_name}", node
            )
            return

        if node.kind == K.LOG_SUBSCRIPTION:
            job = await self._find_job(node.logical_name, node)
            if job is None:
                raise ResourceNotFound(
                    f"logpush job {node.logical_name} not found",
                    provider=self.name,
                    kind=node.kind,
                    logical_name=node.logical_name,
                )
            await self._request("DELETE", f"{self._account}/logpush/jobs/{job['id']}", node)
            return

        raise ValueError(f"Cloudflare does not manage {node.kind.value}")

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover(self, kind: ResourceKind, labels: dict[str, str]) -> list[ResourceNode]:
        deployment, environment = labels["deployment"], labels["environment"]
        expected = logical_name(kind, deployment, environment)
        node_labels = {**labels, "kind": kind.value}

        if kind == K.DNS_RECORD:
            comment = f"{MANAGED_BY}:{deployment}-{environment}"
            nodes = []
            for zone in await self.list_zones():
                records = await self._request(
                    "GET",
                    f"/zones/{zone.id}/dns_records",
                    params={"comment.exact": comment, "per_page": 50},
                )
                nodes.extend(
                    ResourceNode(
                        kind=kind,
                        logical_name=expected,
                        lifecycle_state=LifecycleState.PRESENT,
                        provider_id=record["id"],
                        labels=node_labels,
                        attributes={"zone_id": zone.id, "record": record["name"]},
                    )
                    for record in records or []
                )
            return nodes

        probe = ResourceNode(kind=kind, logical_name=expected, labels=node_labels)
        found = await self.describe(probe)
        return [found] if found else []
