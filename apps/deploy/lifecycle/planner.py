"""Operation planning: topological ordering of resource nodes.

Plans are pure functions of their inputs. Touching the provider is the
caller's business (see `survey`), so a plan built without an inventory is
safe to render in dry-run without any network access.
"""

import heapq
import logging
from collections.abc import Iterable, Mapping

from outpost_schemas import (
    DeploymentConfig,
    Direction,
    LifecycleState,
    OperationPlan,
    PlanAction,
    PlanStep,
    ResolvedTopology,
    ResourceKind,
    ResourceNode,
)

from apps.deploy.lifecycle.catalog import CATALOG_BY_KIND, CATALOG_INDEX, drift, intended_nodes
from apps.deploy.providers.base import ResourceProvider

logger = logging.getLogger(__name__)

Inventory = Mapping[ResourceKind, ResourceNode]


def must_precede(
    nodes: Iterable[ResourceNode], direction: Direction
) -> dict[ResourceKind, set[ResourceKind]]:
    """
    For each kind, the kinds whose step must run before it.

    Provision: a node's dependencies. Destroy: the nodes depending on it,
    plus its `release_after` kinds.
    """
    nodes = list(nodes)
    kinds = {n.kind for n in nodes}
    before: dict[ResourceKind, set[ResourceKind]] = {k: set() for k in kinds}
    for node in nodes:
        if direction == Direction.PROVISION:
            before[node.kind] |= node.depends_on & kinds
        else:
            for dep in node.depends_on & kinds:
                before[dep].add(node.kind)
            before[node.kind] |= CATALOG_BY_KIND[node.kind].release_after & kinds
    return before


def order_nodes(nodes: Iterable[ResourceNode], direction: Direction) -> list[ResourceNode]:
    """
    Topologically sort nodes, breaking ties by catalog order.

    Provision prefers earlier catalog rows; destroy prefers later ones, so
    the teardown reads as the reverse of provisioning except where
    `release_after` defers a kind.

    Raises:
        ValueError: If the nodes' dependencies form a cycle.
    """
    by_kind: dict[ResourceKind, list[ResourceNode]] = {}
    for node in nodes:
        by_kind.setdefault(node.kind, []).append(node)
    before = must_precede((n for group in by_kind.values() for n in group), direction)
    sign = 1 if direction == Direction.PROVISION else -1

    waiting = {k: len(v) for k, v in before.items()}
    unblocks: dict[ResourceKind, list[ResourceKind]] = {k: [] for k in by_kind}
    for kind, preds in before.items():
        for pred in preds:
            unblocks[pred].append(kind)

    ready = [(sign * CATALOG_INDEX[k], k.value, k) for k, n in waiting.items() if n == 0]
    heapq.heapify(ready)
    ordered: list[ResourceNode] = []
    while ready:
        _, _, kind = heapq.heappop(ready)
        ordered.extend(by_kind[kind])
        for nxt in unblocks[kind]:
            waiting[nxt] -= 1
            if waiting[nxt] == 0:
                heapq.heappush(ready, (sign * CATALOG_INDEX[nxt], nxt.value, nxt))

    if any(n > 0 for n in waiting.values()):
        stuck = sorted(k.value for k, n in waiting.items() if n > 0)
        raise ValueError(f"dependency cycle among: {', '.join(stuck)}")
    return ordered


def build_plan(
    nodes: Iterable[ResourceNode],
    direction: Direction,
    deployment: str,
    inventory: Inventory | None = None,
) -> OperationPlan:
    """
    Build an operation plan for a set of nodes.

    Args:
        nodes: Intended nodes (provision) or believed-present nodes (destroy).
        direction: Provision or destroy.
        deployment: Deployment identifier, for display.
        inventory: Nodes observed present, keyed by kind. With an inventory,
            already-satisfied steps become `skip`; without one every node
            gets its create/delete action. An existing object whose shape
            differs from the node gets `update`.
    """
    steps = []
    for node in order_nodes(nodes, direction):
        if direction == Direction.PROVISION:
            if inventory is not None and node.kind in inventory:
                found = inventory[node.kind]
                differences = drift(node, found)
                if differences:
                    steps.append(
                        PlanStep(
                            node=node.model_copy(
                                update={
                                    "lifecycle_state": LifecycleState.PRESENT,
                                    "provider_id": found.provider_id,
                                }
                            ),
                            action=PlanAction.UPDATE,
                            reason=", ".join(
                                f"{key} {have} -> {want}"
                                for key, (want, have) in differences.items()
                            ),
                        )
                    )
                    continue
                steps.append(
                    PlanStep(
                        node=node.model_copy(
                            update={
                                "lifecycle_state": LifecycleState.PRESENT,
                                "provider_id": found.provider_id,
                            }
                        ),
                        action=PlanAction.SKIP,
                        reason="already exists",
                    )
                )
            else:
                steps.append(PlanStep(node=node, action=PlanAction.CREATE))
        else:
            if inventory is not None and node.kind not in inventory:
                steps.append(PlanStep(node=node, action=PlanAction.SKIP, reason="already absent"))
            elif inventory is not None:
                found = inventory[node.kind]
                present = node.model_copy(
                    update={
                        "lifecycle_state": LifecycleState.PRESENT,
                        "provider_id": node.provider_id or found.provider_id,
                    }
                )
                steps.append(PlanStep(node=present, action=PlanAction.DELETE))
            else:
                steps.append(PlanStep(node=node, action=PlanAction.DELETE))

    return OperationPlan(direction=direction, deployment=deployment, steps=tuple(steps))


def plan(
    topology: ResolvedTopology,
    direction: Direction,
    inventory: Inventory | None = None,
    config: DeploymentConfig | None = None,
    user_data: str | None = None,
) -> OperationPlan:
    """Plan provisioning toward, or teardown of, a resolved topology."""
    nodes = intended_nodes(topology, config=config, user_data=user_data)
    return build_plan(nodes, direction, topology.identifier, inventory)


async def survey(
    provider: ResourceProvider, nodes: Iterable[ResourceNode]
) -> dict[ResourceKind, ResourceNode]:
    """Read-only probe of each node. Returns the ones that exist."""
    targets = list(nodes)
    found: dict[ResourceKind, ResourceNode] = {}
    for node in targets:
        existing = await provider.describe(node)
        if existing is not None:
            found[node.kind] = existing
    logger.info("Survey found %d of %d resources present", len(found), len(targets))
    return found
