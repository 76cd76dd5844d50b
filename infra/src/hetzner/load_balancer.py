"""Load balancer tier terminating TLS in front of the server."""

import pulumi
import pulumi_hcloud as hcloud
from outpost_schemas import DeploymentConfig, LoadBalancerTLS, ResolvedTopology, ResourceKind

from apps.deploy.lifecycle.catalog import logical_name, node_labels
from apps.deploy.providers.hetzner import HetznerProvider


def create_load_balancer(
    config: DeploymentConfig,
    topology: ResolvedTopology,
    server: hcloud.Server,
) -> hcloud.LoadBalancer:
    """Create the load balancer, its certificate and its HTTPS service.

    A managed certificate is requested for the domain unless
    `tls.certificate_id` names an existing one.

    Args:
        config: Validated deployment settings
        topology: Resolved topology (must have the load-balancer tier)
        server: Target server

    Returns:
        The created load balancer
    """
    deployment, environment = topology.deployment, topology.environment

    certificate_id: pulumi.Input[int]
    if isinstance(config.tls, LoadBalancerTLS) and config.tls.certificate_id is not None:
        certificate_id = config.tls.certificate_id
    else:
        cert_name = logical_name(ResourceKind.CERTIFICATE, deployment, environment)
        certificate = hcloud.ManagedCertificate(
            cert_name,
            name=cert_name,
            domain_names=[topology.domain or ""],
            labels=node_labels(ResourceKind.CERTIFICATE, deployment, environment),
        )
        certificate_id = certificate.id.apply(int)

    name = logical_name(ResourceKind.LOAD_BALANCER, deployment, environment)
    lb = hcloud.LoadBalancer(
        name,
        name=name,
        load_balancer_type=HetznerProvider.LOAD_BALANCER_TYPE,
        location=topology.location,
        labels=node_labels(ResourceKind.LOAD_BALANCER, deployment, environment),
    )

    hcloud.LoadBalancerTarget(
        f"{name}-target",
        type="server",
        load_balancer_id=lb.id.apply(int),
        server_id=server.id.apply(int),
    )

    hcloud.LoadBalancerService(
        f"{name}-https",
        load_balancer_id=lb.id,
        protocol="https",
        listen_port=443,
        destination_port=80,
        http=hcloud.LoadBalancerServiceHttpArgs(
            certificates=[certificate_id],
            redirect_http=True,
        ),
    )

    return lb
