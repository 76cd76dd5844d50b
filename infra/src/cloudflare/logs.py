"""R2 log bucket and the Logpush job feeding it."""

import json
from typing import Any

import pulumi
import pulumi_cloudflare as cloudflare
from outpost_schemas import ResolvedTopology, ResourceKind

from apps.deploy.lifecycle.catalog import logical_name


def create_log_pipeline(
    topology: ResolvedTopology,
    account_id: str,
    worker: cloudflare.WorkersScript,
) -> dict[str, Any]:
    """Create the log bucket and the Logpush job from the Worker to it.

    R2 S3 credentials come from the `r2_access_key_id` and
    `r2_secret_access_key` stack secrets.

    Args:
        topology: Resolved topology
        account_id: Cloudflare account
        worker: Log-forwarding Worker

    Returns:
        Dictionary with the bucket and job resources
    """
    config = pulumi.Config()
    deployment, environment = topology.deployment, topology.environment

    bucket_name = logical_name(ResourceKind.LOG_SINK, deployment, environment)
    bucket = cloudflare.R2Bucket(
        bucket_name,
        account_id=account_id,
        name=bucket_name,
    )

    destination = pulumi.Output.all(
        config.require_secret("r2_access_key_id"),
        config.require_secret("r2_secret_access_key"),
    ).apply(
        lambda keys: (
            f"r2://{bucket_name}/{{DATE}}?account-id={account_id}"
            f"&access-key-id={keys[0]}&secret-access-key={keys[1]}"
        )
    )

    job_name = logical_name(ResourceKind.LOG_SUBSCRIPTION, deployment, environment)
    job = cloudflare.LogpushJob(
        job_name,
        account_id=account_id,
        name=job_name,
        dataset="workers_trace_events",
        destination_conf=destination,
        filter=worker.name.apply(
            lambda script: json.dumps(
                {"where": {"key": "ScriptName", "operator": "eq", "value": script}}
            )
        ),
        enabled=True,
        opts=pulumi.ResourceOptions(depends_on=[bucket, worker]),
    )

    return {"bucket": bucket, "job": job}
