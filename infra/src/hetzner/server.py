"""Hetzner server and SSH key for the deployment."""

import pulumi
import pulumi_hcloud as hcloud
from outpost_schemas import DeploymentConfig, ResolvedTopology, ResourceKind

from apps.deploy.lifecycle.catalog import logical_name, node_labels


def create_ssh_key(config: DeploymentConfig, topology: ResolvedTopology) -> hcloud.SshKey:
    """Create SSH key for server access.

    Uses `machine.ssh_public_key` from the settings document, falling back
    to the `ssh_public_key` stack secret.

    Args:
        config: Validated deployment settings
        topology: Resolved topology

    Returns:
        The created Hetzner SSH key
    """
    public_key: str | pulumi.Output[str] | None = config.machine.ssh_public_key
    if not public_key:
        public_key = pulumi.Config().require_secret("ssh_public_key")
    name = logical_name(ResourceKind.CREDENTIAL, topology.deployment, topology.environment)

    return hcloud.SshKey(
        name,
        name=name,
        public_key=public_key,
        labels=node_labels(ResourceKind.CREDENTIAL, topology.deployment, topology.environment),
    )


def create_server(
    config: DeploymentConfig,
    topology: ResolvedTopology,
    ssh_key_id: pulumi.Output[int],
    user_data: str,
    binding: pulumi.Resource,
) -> hcloud.Server:
    """Create the application server.

    Args:
        config: Validated deployment settings
        topology: Resolved topology
        ssh_key_id: ID of the SSH key for access
        user_data: Rendered cloud-init document
        binding: Firewall binding that must exist before the server boots

    Returns:
        The created Hetzner server
    """
    name = logical_name(ResourceKind.INSTANCE, topology.deployment, topology.environment)

    return hcloud.Server(
        name,
        name=name,
        server_type=config.machine.server_type,
        location=topology.location,
        image=config.machine.image,
        ssh_keys=[ssh_key_id.apply(str)],
        user_data=user_data,
        public_nets=[
            hcloud.ServerPublicNetArgs(
                ipv4_enabled=True,
                ipv6_enabled=True,
            )
        ],
        labels=node_labels(ResourceKind.INSTANCE, topology.deployment, topology.environment),
        opts=pulumi.ResourceOptions(depends_on=[binding]),
    )
