"""
Deployment services - provision, teardown and verification workflows.

Each workflow takes its collaborators (provider, state store, retry policy)
as arguments; the CLI builds them from the operator settings.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx
from outpost_schemas import (
    DeploymentConfig,
    Direction,
    ExecutionReport,
    OperationPlan,
    ResolvedTopology,
    ResourceKind,
    ResourceNode,
    VerificationReport,
)

from apps.deploy.cloud_init import generate_cloud_init
from apps.deploy.exceptions import ConfigurationError, ProviderError, StateCorruptedError
from apps.deploy.lifecycle.catalog import intended_nodes, logical_name
from apps.deploy.lifecycle.executor import execute
from apps.deploy.lifecycle.planner import build_plan, survey
from apps.deploy.lifecycle.retry import RetryPolicy
from apps.deploy.providers.base import CloudProvider
from apps.deploy.settings import OperatorSettings
from apps.deploy.state import DiscoveryResult, FileStateStore, Snapshot, discover
from apps.deploy.topology import manages_dns_record, resolve
from apps.deploy.verify import Budgets, ConvergenceVerifier, build_checks

logger = logging.getLogger(__name__)


@dataclass
class ProvisionOutcome:
    topology: ResolvedTopology
    report: ExecutionReport
    address: str | None = None


@dataclass
class TeardownOutcome:
    report: ExecutionReport
    snapshot: Snapshot
    discovery: DiscoveryResult | None = None
    purged: bool = False


def retry_policy_from(settings: OperatorSettings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        delays=tuple(settings.retry_delays),
    )


def store_for(config: DeploymentConfig, settings: OperatorSettings) -> FileStateStore:
    return FileStateStore(settings.state_dir, config.identifier)


# =============================================================================
# Resolution
# =============================================================================


def read_startup_script(config: DeploymentConfig, config_path: str | Path | None) -> str | None:
    """
    Load the custom startup script, if enabled.

    Relative paths resolve against the settings document's directory.

    Raises:
        ConfigurationError: If the script cannot be read.
    """
    section = config.startup_script
    if not section.enabled or not section.path:
        return None
    path = Path(section.path)
    if not path.is_absolute() and config_path is not None:
        path = Path(config_path).parent / path
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            [f"startup_script.path: cannot read {path}: {e.strerror or e}"],
            source=str(config_path) if config_path else None,
        ) from e


async def resolve_topology(
    config: DeploymentConfig,
    provider: CloudProvider,
    retry_policy: RetryPolicy,
) -> ResolvedTopology:
    """Resolve the topology, fetching the zone list when a record is managed."""
    zones = None
    if manages_dns_record(config):
        zones, _ = await retry_policy.run(provider.list_zones, label="list zones")
    return resolve(config, zones)


def render_user_data(
    config: DeploymentConfig, topology: ResolvedTopology, config_path: str | Path | None
) -> str:
    return generate_cloud_init(config, topology, read_startup_script(config, config_path))


async def endpoint_address(provider: CloudProvider, topology: ResolvedTopology) -> str | None:
    """Public IPv4 that traffic for the deployment reaches first."""
    if topology.needs_load_balancer_tier:
        name = logical_name(ResourceKind.LOAD_BALANCER, topology.deployment, topology.environment)
        return await provider.find_address(ResourceKind.LOAD_BALANCER, name)
    if topology.floating_ip_owned:
        name = logical_name(ResourceKind.FLOATING_IP, topology.deployment, topology.environment)
    else:
        name = topology.floating_ip_tag or ""
    return await provider.find_address(ResourceKind.FLOATING_IP, name)


async def bind_record_targets(
    provider: CloudProvider, nodes: list[ResourceNode]
) -> list[ResourceNode]:
    """
    Fill in the address each DNS record should point at, where it exists.

    Without a bound address a surveyed record cannot be compared with what
    it should hold, so a stale record would pass as converged. Targets that
    do not exist yet stay unbound and are looked up when the record is made.
    """
    bound = []
    for node in nodes:
        attrs = node.attributes
        if node.kind == ResourceKind.DNS_RECORD and not attrs.get("content"):
            target_kind = ResourceKind(attrs.get("target_kind", ResourceKind.FLOATING_IP))
            address = await provider.find_address(target_kind, attrs.get("target_name") or "")
            if address:
                node = node.model_copy(update={"attributes": {**attrs, "content": address}})
        bound.append(node)
    return bound


# =============================================================================
# Provision
# =============================================================================


def draft_provision_plan(
    config: DeploymentConfig, config_path: str | Path | None = None
) -> OperationPlan:
    """
    Provisioning plan without any provider access.

    Every node gets its create step and the record's zone is left for the
    provider to find at apply time.
    """
    topology = resolve(config)
    nodes = intended_nodes(topology, config, render_user_data(config, topology, config_path))
    return build_plan(nodes, Direction.PROVISION, topology.identifier)


async def plan_provision(
    config: DeploymentConfig,
    provider: CloudProvider,
    retry_policy: RetryPolicy,
    config_path: str | Path | None = None,
) -> OperationPlan:
    """
    Build the provisioning plan without changing anything.

    The provider is surveyed so existing resources show as `skip`, or as
    `update` when they have drifted.
    """
    topology = await resolve_topology(config, provider, retry_policy)
    nodes = intended_nodes(topology, config, render_user_data(config, topology, config_path))
    nodes = await bind_record_targets(provider, nodes)
    inventory = await survey(provider, nodes)
    return build_plan(nodes, Direction.PROVISION, topology.identifier, inventory)


async def provision(
    config: DeploymentConfig,
    provider: CloudProvider,
    store: FileStateStore,
    retry_policy: RetryPolicy,
    config_path: str | Path | None = None,
) -> ProvisionOutcome:
    """
    Converge the deployment toward its resolved topology.

    Safe to re-run: existing resources are skipped or brought back in line,
    and a run interrupted part-way resumes where it stopped.

    Raises:
        ResolutionError: If the DNS zone cannot be determined.
        LockHeldError: If another run holds the state lock.
    """
    topology = await resolve_topology(config, provider, retry_policy)
    user_data = render_user_data(config, topology, config_path)

    with store.lock("apply"):
        nodes = await bind_record_targets(provider, intended_nodes(topology, config, user_data))
        inventory = await survey(provider, nodes)
        operation_plan = build_plan(nodes, Direction.PROVISION, topology.identifier, inventory)
        report = await execute(
            operation_plan,
            provider,
            retry_policy,
            on_result=store.recorder(Direction.PROVISION),
            on_transition=store.transition,
        )

    outcome = ProvisionOutcome(topology=topology, report=report)
    if report.succeeded:
        try:
            outcome.address = await endpoint_address(provider, topology)
        except ProviderError as e:
            logger.warning("Could not look up the public address: %s", e.message)
        if outcome.address and not topology.domain:
            outcome.topology = topology.with_address(outcome.address)
    return outcome


# =============================================================================
# Teardown
# =============================================================================


async def teardown_nodes(
    config: DeploymentConfig,
    provider: CloudProvider,
    store: FileStateStore,
    retry_policy: RetryPolicy,
    force_discovery: bool = False,
) -> tuple[list[ResourceNode], DiscoveryResult | None]:
    """
    Nodes believed present, from state or by discovery.

    Discovery runs when state is missing or unreadable, or on request. With
    both, recorded nodes win over discovered ones of the same name.
    """
    try:
        document = store.read()
    except StateCorruptedError as e:
        logger.warning("%s; falling back to discovery", e.message)
        document = None

    recorded = list(document.nodes) if document else []
    if document is not None and not force_discovery:
        return recorded, None

    if document is None:
        logger.info("No usable state for %s; discovering resources", config.identifier)
    result = await discover(
        provider,
        config.deployment.name,
        config.deployment.environment,
        retry_policy=retry_policy,
    )
    known = {(n.kind, n.logical_name) for n in recorded}
    nodes = recorded + [n for n in result.nodes if (n.kind, n.logical_name) not in known]
    return nodes, result


def draft_teardown_plan(config: DeploymentConfig, store: FileStateStore) -> OperationPlan:
    """Teardown plan from recorded state, or from the resolved topology without state."""
    try:
        document = store.read()
    except StateCorruptedError:
        document = None
    nodes = list(document.nodes) if document else intended_nodes(resolve(config))
    return build_plan(nodes, Direction.DESTROY, config.identifier)


async def plan_teardown(
    config: DeploymentConfig,
    provider: CloudProvider,
    store: FileStateStore,
    retry_policy: RetryPolicy,
    force_discovery: bool = False,
) -> OperationPlan:
    """Build the teardown plan without changing anything."""
    nodes, _ = await teardown_nodes(config, provider, store, retry_policy, force_discovery)
    inventory = await survey(provider, nodes)
    return build_plan(nodes, Direction.DESTROY, config.identifier, inventory)


async def destroy(
    config: DeploymentConfig,
    provider: CloudProvider,
    store: FileStateStore,
    retry_policy: RetryPolicy,
    force_discovery: bool = False,
) -> TeardownOutcome:
    """
    Tear the deployment down.

    State is snapshotted before anything is deleted, even when there is
    nothing to snapshot. State is purged only after a clean run; otherwise
    it keeps the resources that are still there.

    Raises:
        LockHeldError: If another run holds the state lock.
    """
    with store.lock("destroy"):
        snapshot = store.snapshot()
        nodes, discovery = await teardown_nodes(
            config, provider, store, retry_policy, force_discovery
        )
        if discovery is not None:
            # Partial teardown must leave state describing what remains.
            store.write(nodes)

        inventory = await survey(provider, nodes)
        operation_plan = build_plan(nodes, Direction.DESTROY, config.identifier, inventory)
        report = await execute(
            operation_plan,
            provider,
            retry_policy,
            on_result=store.recorder(Direction.DESTROY),
            on_transition=store.transition,
        )

        outcome = TeardownOutcome(report=report, snapshot=snapshot, discovery=discovery)
        if report.succeeded and (discovery is None or discovery.complete):
            store.purge()
            outcome.purged = True
        elif discovery is not None and not discovery.complete:
            logger.warning(
                "Discovery failed for %s; keeping state",
                ", ".join(k.value for k in discovery.errors),
            )
    return outcome


# =============================================================================
# Verification
# =============================================================================


async def verify(
    topology: ResolvedTopology,
    address: str | None,
    settings: OperatorSettings,
    verifier: ConvergenceVerifier | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> VerificationReport:
    """
    Poll until the deployment is observably reachable or budgets run out.

    `settings.verify_budget`, when set, caps the whole run; checks not
    started by then are reported as skipped.

    Never raises on a timeout; the report lists pending checks with hints.
    """
    verifier = verifier or ConvergenceVerifier()
    client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        checks = build_checks(topology, address, client, Budgets.from_settings(settings))
        results = await verifier.verify(checks, overall_budget=settings.verify_budget)
    finally:
        if http_client is None:
            await client.aclose()
    return VerificationReport(endpoint=topology.url or address, results=results)
