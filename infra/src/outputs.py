"""Stack outputs for consumption by other tools."""

from typing import Any

import pulumi
from outpost_schemas import ResolvedTopology
from pulumi_hcloud import Server


def export_outputs(
    topology: ResolvedTopology,
    server: Server,
    address: pulumi.Output[str],
    logs: dict[str, Any],
    dns_record: Any | None = None,
) -> None:
    """Export stack outputs for use by `outpost verify` and other tools."""
    # Deployment
    pulumi.export("deployment", topology.identifier)
    pulumi.export("tls_strategy", topology.tls_strategy.value)

    # Server
    pulumi.export("server_ip", server.ipv4_address)
    pulumi.export("server_id", server.id)

    # Endpoint
    pulumi.export("address", address)
    pulumi.export(
        "url",
        topology.url or address.apply(lambda ip: f"{topology.endpoint_scheme}://{ip}"),
    )
    if dns_record is not None:
        pulumi.export("dns_record_id", dns_record.id)

    # Logs
    pulumi.export("log_bucket", logs["bucket"].name)
    pulumi.export("logpush_job_id", logs["job"].id)
