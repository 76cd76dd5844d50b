"""Hetzner firewall and its label-selector binding."""

import pulumi
import pulumi_hcloud as hcloud
from outpost_schemas import ResolvedTopology, ResourceKind

from apps.deploy.lifecycle.catalog import deployment_labels, logical_name, node_labels

WORLD = ["0.0.0.0/0", "::/0"]

# Port -> description. SSH stays open; restrict it with admin_ssh_ips.
PORTS = {
    22: "SSH",
    80: "HTTP",
    443: "HTTPS",
}


def create_firewall(topology: ResolvedTopology) -> hcloud.Firewall:
    """Create the deployment's firewall.

    SSH is limited to `admin_ssh_ips` from the stack config when set.

    Args:
        topology: Resolved topology

    Returns:
        The created Hetzner firewall
    """
    config = pulumi.Config()
    admin_ssh_ips = config.get_object("admin_ssh_ips") or WORLD
    name = logical_name(ResourceKind.SECURITY_GROUP, topology.deployment, topology.environment)

    rules = [
        hcloud.FirewallRuleArgs(
            direction="in",
            protocol="tcp",
            port=str(port),
            source_ips=admin_ssh_ips if port == 22 else WORLD,
            description=description,
        )
        for port, description in PORTS.items()
    ]

    return hcloud.Firewall(
        name,
        name=name,
        rules=rules,
        labels=node_labels(ResourceKind.SECURITY_GROUP, topology.deployment, topology.environment),
    )


def bind_firewall(
    topology: ResolvedTopology, firewall: hcloud.Firewall
) -> hcloud.FirewallAttachment:
    """Apply the firewall to every server carrying the deployment labels."""
    selector = ",".join(
        f"{k}={v}" for k, v in deployment_labels(topology.deployment, topology.environment).items()
    )
    name = logical_name(ResourceKind.ROLE_BINDING, topology.deployment, topology.environment)
    return hcloud.FirewallAttachment(
        name,
        firewall_id=firewall.id.apply(int),
        label_selectors=[selector],
    )
