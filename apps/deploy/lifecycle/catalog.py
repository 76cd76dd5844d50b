"""Resource catalog - the kinds a deployment can own and how they depend on each other.

The dependency graph is data, not prose: planning derives every ordering
from `depends_on` (provision) and its reverse plus `release_after`
(teardown). Adding a kind means adding a row here.
"""

from dataclasses import dataclass, field
from typing import Any

from outpost_schemas import (
    DeploymentConfig,
    LoadBalancerTLS,
    ResolvedTopology,
    ResourceKind,
    ResourceNode,
    TLSStrategy,
)

K = ResourceKind

MANAGED_BY = "outpost"


@dataclass(frozen=True)
class CatalogEntry:
    """One row of the catalog."""

    kind: ResourceKind
    suffix: str
    depends_on: frozenset[ResourceKind] = frozenset()
    # Teardown-only: delete this kind only after these kinds are gone.
    release_after: frozenset[ResourceKind] = frozenset()
    # Attributes an existing object must match to count as converged.
    shape: tuple[str, ...] = ()
    description: str = ""


# Declaration order is the provision tie-break order.
CATALOG: tuple[CatalogEntry, ...] = (
    CatalogEntry(K.SECURITY_GROUP, "fw", description="Hetzner firewall"),
    CatalogEntry(K.CREDENTIAL, "key", description="SSH key for the deploy user"),
    CatalogEntry(
        K.ROLE_BINDING,
        "fw-binding",
        depends_on=frozenset({K.SECURITY_GROUP}),
        description="Firewall applied to the deployment's servers by label",
    ),
    CatalogEntry(
        K.INSTANCE,
        "server",
        depends_on=frozenset({K.ROLE_BINDING, K.CREDENTIAL}),
        description="Application server",
    ),
    CatalogEntry(
        K.FLOATING_IP,
        "ip",
        release_after=frozenset({K.INSTANCE}),
        description="Floating IPv4 owned by this deployment",
    ),
    CatalogEntry(
        K.IP_ASSOCIATION,
        "ip-assignment",
        depends_on=frozenset({K.INSTANCE, K.FLOATING_IP}),
        description="Floating IP assigned to the server",
    ),
    CatalogEntry(K.CERTIFICATE, "cert", description="Managed TLS certificate"),
    CatalogEntry(
        K.LOAD_BALANCER,
        "lb",
        depends_on=frozenset({K.INSTANCE, K.CERTIFICATE}),
        description="Load balancer terminating TLS",
    ),
    CatalogEntry(
        K.DNS_RECORD,
        "dns",
        depends_on=frozenset({K.IP_ASSOCIATION, K.LOAD_BALANCER}),
        shape=("content", "proxied"),
        description="A record for the public domain",
    ),
    CatalogEntry(K.LOG_SINK, "logs", description="R2 bucket receiving logs"),
    CatalogEntry(K.LOG_FUNCTION, "log-forwarder", description="Worker forwarding app logs"),
    CatalogEntry(
        K.LOG_SUBSCRIPTION,
        "logpush",
        depends_on=frozenset({K.LOG_SINK, K.LOG_FUNCTION}),
        description="Logpush job from the Worker to the bucket",
    ),
)

CATALOG_BY_KIND: dict[ResourceKind, CatalogEntry] = {e.kind: e for e in CATALOG}
CATALOG_INDEX: dict[ResourceKind, int] = {e.kind: i for i, e in enumerate(CATALOG)}


def logical_name(kind: ResourceKind, deployment: str, environment: str) -> str:
    """Name convention shared by creation and discovery."""
    return f"{deployment}-{environment}-{CATALOG_BY_KIND[kind].suffix}"


def drift(desired: ResourceNode, observed: ResourceNode) -> dict[str, tuple[Any, Any]]:
    """
    Shape attributes where an existing object differs from the intended node.

    Attributes the intended node leaves unset are not compared; they are
    filled in by the provider at create time.

    Returns:
        `{attribute: (wanted, observed)}`, empty when converged.
    """
    differences = {}
    for key in CATALOG_BY_KIND[desired.kind].shape:
        wanted = desired.attributes.get(key)
        if wanted is None:
            continue
        found = observed.attributes.get(key)
        if found != wanted:
            differences[key] = (wanted, found)
    return differences


def deployment_labels(deployment: str, environment: str) -> dict[str, str]:
    """Labels every owned resource carries; discovery matches on these."""
    return {
        "deployment": deployment,
        "environment": environment,
        "managed_by": MANAGED_BY,
    }


def node_labels(kind: ResourceKind, deployment: str, environment: str) -> dict[str, str]:
    return {**deployment_labels(deployment, environment), "kind": kind.value}


def dependencies_within(
    kind: ResourceKind, kinds: frozenset[ResourceKind]
) -> frozenset[ResourceKind]:
    """Dependencies of `kind` restricted to the kinds actually present."""
    return CATALOG_BY_KIND[kind].depends_on & kinds


@dataclass
class _AttributeContext:
    topology: ResolvedTopology
    config: DeploymentConfig | None
    user_data: str | None
    names: dict[ResourceKind, str] = field(default_factory=dict)


def _attributes(kind: ResourceKind, ctx: _AttributeContext) -> dict[str, Any]:
    """Provider inputs for a node. Empty when built without a config."""
    topo, config = ctx.topology, ctx.config
    if config is None:
        return {}

    machine = config.machine
    server_name = ctx.names[K.INSTANCE]
    floating_ip_name = topo.floating_ip_tag or ctx.names.get(K.FLOATING_IP)

    if kind == K.SECURITY_GROUP:
        return {"ports": [22, 80, 443]}
    if kind == K.CREDENTIAL:
        return {"public_key": machine.ssh_public_key}
    if kind == K.ROLE_BINDING:
        return {
            "firewall": ctx.names[K.SECURITY_GROUP],
            "label_selector": ",".join(
                f"{k}={v}" for k, v in deployment_labels(topo.deployment, topo.environment).items()
            ),
        }
    if kind == K.INSTANCE:
        return {
            "server_type": machine.server_type,
            "image": machine.image,
            "location": topo.location,
            "ssh_key": ctx.names[K.CREDENTIAL],
            "user_data": ctx.user_data or "",
        }
    if kind == K.FLOATING_IP:
        return {"location": topo.location}
    if kind == K.IP_ASSOCIATION:
        return {"server": server_name, "floating_ip": floating_ip_name}
    if kind == K.CERTIFICATE:
        return {"domains": [topo.domain]}
    if kind == K.LOAD_BALANCER:
        certificate: int | str | None = ctx.names.get(K.CERTIFICATE)
        if isinstance(config.tls, LoadBalancerTLS) and config.tls.certificate_id is not None:
            certificate = config.tls.certificate_id
        return {
            "location": topo.location,
            "server": server_name,
            "certificate": certificate,
            "destination_port": 80,
        }
    if kind == K.DNS_RECORD:
        if topo.needs_load_balancer_tier:
            target_kind, target_name = K.LOAD_BALANCER, ctx.names[K.LOAD_BALANCER]
        else:
            target_kind, target_name = K.FLOATING_IP, floating_ip_name
        return {
            "zone_id": topo.dns_zone_id,
            "name": topo.domain,
            "type": "A",
            "proxied": topo.tls_strategy == TLSStrategy.EDGE_PROXY,
            "target_kind": target_kind.value,
            "target_name": target_name,
            "comment": f"{MANAGED_BY}:{topo.identifier}",
        }
    if kind == K.LOG_SINK:
        return {"bucket": ctx.names[K.LOG_SINK]}
    if kind == K.LOG_FUNCTION:
        return {"script": ctx.names[K.LOG_FUNCTION]}
    if kind == K.LOG_SUBSCRIPTION:
        return {
            "bucket": ctx.names[K.LOG_SINK],
            "script": ctx.names[K.LOG_FUNCTION],
            "dataset": "workers_trace_events",
        }
    return {}


def intended_nodes(
    topology: ResolvedTopology,
    config: DeploymentConfig | None = None,
    user_data: str | None = None,
) -> list[ResourceNode]:
    """
    The nodes a topology calls for, in catalog order.

    Args:
        topology: Resolved topology.
        config: When given, provider inputs are filled into node attributes.
            Planning alone (dry-run, destroy) does not need them.
        user_data: Rendered cloud-init for the instance.
    """
    kinds = frozenset(topology.resource_kinds)
    ctx = _AttributeContext(
        topology=topology,
        config=config,
        user_data=user_data,
        names={
            k: logical_name(k, topology.deployment, topology.environment) for k in CATALOG_BY_KIND
        },
    )
    return [
        ResourceNode(
            kind=entry.kind,
            logical_name=ctx.names[entry.kind],
            depends_on=dependencies_within(entry.kind, kinds),
            labels=node_labels(entry.kind, topology.deployment, topology.environment),
            attributes=_attributes(entry.kind, ctx),
        )
        for entry in CATALOG
        if entry.kind in kinds
    ]
