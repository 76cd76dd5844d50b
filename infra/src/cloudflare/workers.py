"""Cloudflare Worker forwarding request logs through Logpush."""

import pulumi_cloudflare as cloudflare
from outpost_schemas import ResolvedTopology, ResourceKind

from apps.deploy.lifecycle.catalog import logical_name
from apps.deploy.providers.cloudflare import LOG_FORWARDER_SCRIPT, CloudflareProvider


def create_log_forwarder(topology: ResolvedTopology, account_id: str) -> cloudflare.WorkersScript:
    """Upload the log-forwarding Worker with Logpush enabled.

    Args:
        topology: Resolved topology
        account_id: Cloudflare account owning the Worker

    Returns:
        The Worker script resource
    """
    name = logical_name(ResourceKind.LOG_FUNCTION, topology.deployment, topology.environment)

    return cloudflare.WorkersScript(
        name,
        account_id=account_id,
        name=name,
        content=LOG_FORWARDER_SCRIPT,
        module=True,
        logpush=True,
        compatibility_date=CloudflareProvider.COMPATIBILITY_DATE,
        plain_text_bindings=[
            cloudflare.WorkersScriptPlainTextBindingArgs(
                name="DEPLOYMENT",
                text=topology.deployment,
            )
        ],
    )
