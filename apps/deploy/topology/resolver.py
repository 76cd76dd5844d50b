"""Topology resolver: validated config in, concrete topology out."""

from collections.abc import Iterable

from outpost_schemas import (
    DeploymentConfig,
    DNSAuthority,
    DNSZone,
    FloatingIPStrategy,
    LoadBalancerTLS,
    ResolvedTopology,
    ResourceKind,
    ReuseFloatingIP,
    TLSStrategy,
)

from apps.deploy.exceptions import ResolutionError
from apps.deploy.topology.zones import find_zone

REVERSE_PROXY_STRATEGIES = frozenset({TLSStrategy.ACME, TLSStrategy.EDGE_PROXY})

ALWAYS_PRESENT = frozenset(
    {
        ResourceKind.SECURITY_GROUP,
        ResourceKind.CREDENTIAL,
        ResourceKind.ROLE_BINDING,
        ResourceKind.INSTANCE,
        ResourceKind.IP_ASSOCIATION,
        ResourceKind.LOG_SINK,
        ResourceKind.LOG_FUNCTION,
        ResourceKind.LOG_SUBSCRIPTION,
    }
)


def manages_dns_record(config: DeploymentConfig) -> bool:
    """Whether this deployment creates the DNS record itself."""
    dns = config.dns
    return (
        dns.enabled
        and dns.authority == DNSAuthority.SELF
        and not dns.records_managed_externally
    )


def required_kinds(config: DeploymentConfig) -> tuple[ResourceKind, ...]:
    """Resource kinds the config implies, in catalog declaration order."""
    needed = set(ALWAYS_PRESENT)
    if config.floating_ip.strategy == FloatingIPStrategy.CREATE:
        needed.add(ResourceKind.FLOATING_IP)
    if isinstance(config.tls, LoadBalancerTLS):
        needed.add(ResourceKind.LOAD_BALANCER)
        if config.tls.certificate_id is None:
            needed.add(ResourceKind.CERTIFICATE)
    if manages_dns_record(config):
        needed.add(ResourceKind.DNS_RECORD)
    return tuple(kind for kind in ResourceKind if kind in needed)


def _resolve_zone(
    config: DeploymentConfig, zones: Iterable[DNSZone] | None
) -> tuple[str | None, str | None]:
    explicit = config.dns.zone_id
    if zones is None:
        # Offline: leave the zone for the provider to resolve at apply time.
        return explicit, None

    snapshot = list(zones)
    if explicit:
        for zone in snapshot:
            if zone.id == explicit:
                return zone.id, zone.name
        raise ResolutionError(f"dns.zone_id '{explicit}' is not a zone this account manages")

    zone = find_zone(config.dns.domain, snapshot)
    return zone.id, zone.name


def resolve(
    config: DeploymentConfig,
    zones: Iterable[DNSZone] | None = None,
    address: str | None = None,
) -> ResolvedTopology:
    """
    Derive the concrete topology for a validated config.

    Pure over its inputs: the zone list is a snapshot fetched beforehand,
    so resolving the same config against the same snapshot always yields
    an equal topology.

    Args:
        config: Validated settings.
        zones: Zones reported by the DNS provider, or None when offline.
        address: Floating address, if already known (IP-only mode endpoint).

    Raises:
        ResolutionError: If the record's zone cannot be determined.
    """
    strategy = config.tls.kind
    owns_record = manages_dns_record(config)

    zone_id: str | None = None
    zone_name: str | None = None
    if owns_record:
        zone_id, zone_name = _resolve_zone(config, zones)

    domain = config.dns.domain if config.dns.enabled else None

    return ResolvedTopology(
        deployment=config.deployment.name,
        environment=config.deployment.environment,
        location=config.deployment.location,
        tls_strategy=strategy,
        needs_reverse_proxy_tier=strategy in REVERSE_PROXY_STRATEGIES,
        needs_load_balancer_tier=strategy == TLSStrategy.LOAD_BALANCER,
        manages_dns_record=owns_record,
        domain=domain,
        dns_zone_id=zone_id,
        dns_zone_name=zone_name,
        public_endpoint=domain or address,
        endpoint_scheme="http" if strategy == TLSStrategy.NONE else "https",
        floating_ip_owned=config.floating_ip.strategy == "create",
        floating_ip_tag=(
            config.floating_ip.tag if isinstance(config.floating_ip, ReuseFloatingIP) else None
        ),
        resource_kinds=required_kinds(config),
    )
