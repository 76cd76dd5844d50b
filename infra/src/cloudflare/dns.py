"""Cloudflare DNS record for the deployment's domain."""

import pulumi
import pulumi_cloudflare as cloudflare
from outpost_schemas import ResolvedTopology, ResourceKind, TLSStrategy

from apps.deploy.lifecycle.catalog import MANAGED_BY, logical_name


def create_dns_record(
    topology: ResolvedTopology, address: pulumi.Output[str]
) -> cloudflare.Record:
    """Create the A record pointing the domain at the endpoint address.

    The zone comes from the settings document (`dns.zone_id`) or the
    `cloudflare_zone_id` stack config.

    Args:
        topology: Resolved topology (must manage the record)
        address: Floating IP or load balancer address

    Returns:
        The created DNS record
    """
    zone_id = topology.dns_zone_id or pulumi.Config().require("cloudflare_zone_id")
    name = logical_name(ResourceKind.DNS_RECORD, topology.deployment, topology.environment)
    proxied = topology.tls_strategy == TLSStrategy.EDGE_PROXY

    return cloudflare.Record(
        name,
        zone_id=zone_id,
        name=topology.domain,
        content=address,
        type="A",
        proxied=proxied,
        ttl=1,  # Auto TTL
        comment=f"{MANAGED_BY}:{topology.identifier}",
    )
