"""Best-effort resource discovery for teardown without trusted state.

Discovery matches on labels and naming conventions, never on recorded IDs.
It can miss resources whose labels drifted and cannot tell a foreign
resource that happens to match the convention from one of ours, so it is a
fallback for missing or corrupted state, not a replacement.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from outpost_schemas import LifecycleState, ResourceKind, ResourceNode

from apps.deploy.exceptions import ProviderError
from apps.deploy.lifecycle.catalog import CATALOG, dependencies_within, deployment_labels
from apps.deploy.lifecycle.retry import RetryPolicy
from apps.deploy.providers.base import ResourceProvider

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    nodes: list[ResourceNode] = field(default_factory=list)
    # Kinds whose lookup failed, with the error message.
    errors: dict[ResourceKind, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.errors


async def discover(
    provider: ResourceProvider,
    deployment: str,
    environment: str,
    kinds: Iterable[ResourceKind] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> DiscoveryResult:
    """
    Query every catalog kind for objects carrying the deployment's labels.

    Each found object becomes a PRESENT node. Dependencies are recomputed
    among the kinds found so the teardown plan still orders correctly. A
    failing lookup for one kind is recorded and the others still run.
    """
    policy = retry_policy or RetryPolicy()
    labels = deployment_labels(deployment, environment)
    wanted = set(kinds) if kinds is not None else {e.kind for e in CATALOG}
    result = DiscoveryResult()

    for entry in CATALOG:
        if entry.kind not in wanted:
            continue
        kind = entry.kind

        async def lookup(kind: ResourceKind = kind) -> list[ResourceNode]:
            return await provider.discover(kind, labels)

        try:
            found, _ = await policy.run(lookup, label=f"discover {kind.value}")
        except ProviderError as e:
            logger.warning("Discovery of %s failed: %s", kind.value, e.message)
            result.errors[kind] = e.message
            continue
        if found:
            logger.info("Discovered %d %s", len(found), kind.value)
        result.nodes.extend(found)

    found_kinds = frozenset(n.kind for n in result.nodes)
    result.nodes = [
        n.model_copy(
            update={
                "lifecycle_state": LifecycleState.PRESENT,
                "depends_on": dependencies_within(n.kind, found_kinds),
            }
        )
        for n in result.nodes
    ]
    return result
