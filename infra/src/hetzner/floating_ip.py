"""Floating IPv4: allocated for the deployment or reused by name."""

import pulumi
import pulumi_hcloud as hcloud
from outpost_schemas import ResolvedTopology, ResourceKind

from apps.deploy.lifecycle.catalog import logical_name, node_labels


def floating_ip(topology: ResolvedTopology) -> tuple[pulumi.Output[int], pulumi.Output[str]]:
    """ID and address of the deployment's floating IP.

    Owned addresses are created here; reused ones are looked up by the
    `floating_ip.tag` name and never managed by this stack.
    """
    if not topology.floating_ip_owned:
        existing = hcloud.get_floating_ip_output(name=topology.floating_ip_tag)
        return existing.id.apply(int), existing.ip_address

    name = logical_name(ResourceKind.FLOATING_IP, topology.deployment, topology.environment)
    created = hcloud.FloatingIp(
        name,
        name=name,
        type="ipv4",
        home_location=topology.location,
        description=name,
        labels=node_labels(ResourceKind.FLOATING_IP, topology.deployment, topology.environment),
    )
    return created.id.apply(int), created.ip_address


def assign_floating_ip(
    topology: ResolvedTopology,
    floating_ip_id: pulumi.Output[int],
    server: hcloud.Server,
) -> hcloud.FloatingIpAssignment:
    name = logical_name(ResourceKind.IP_ASSOCIATION, topology.deployment, topology.environment)
    return hcloud.FloatingIpAssignment(
        name,
        floating_ip_id=floating_ip_id,
        server_id=server.id.apply(int),
    )
