"""Resource lifecycle schemas - nodes, plans and execution reports."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Enums
# =============================================================================


class ResourceKind(str, Enum):
    """Cloud object categories a deployment can own."""

    SECURITY_GROUP = "security_group"
    CREDENTIAL = "credential"
    ROLE_BINDING = "role_binding"
    INSTANCE = "instance"
    FLOATING_IP = "floating_ip"
    IP_ASSOCIATION = "ip_association"
    CERTIFICATE = "certificate"
    LOAD_BALANCER = "load_balancer"
    DNS_RECORD = "dns_record"
    LOG_SINK = "log_sink"
    LOG_FUNCTION = "log_function"
    LOG_SUBSCRIPTION = "log_subscription"


class LifecycleState(str, Enum):
    """Where a node stands. PROVISIONING and DESTROYING mark a step in flight."""

    ABSENT = "absent"
    PROVISIONING = "provisioning"
    PRESENT = "present"
    DESTROYING = "destroying"
    ERROR = "error"


class Direction(str, Enum):
    PROVISION = "provision"
    DESTROY = "destroy"


class PlanAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"  # exists with the wrong shape
    DELETE = "delete"
    SKIP = "skip"


class StepOutcome(str, Enum):
    """How a plan step ended."""

    APPLIED = "applied"
    SATISFIED = "satisfied"  # already in the desired state
    FAILED = "failed"
    BLOCKED = "blocked"  # a dependency failed first


class ErrorCategory(str, Enum):
    """Provider error categories surfaced to the operator."""

    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    DEPENDENCY_IN_USE = "dependency_in_use"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


# =============================================================================
# Nodes & Plans
# =============================================================================


class ResourceNode(BaseModel):
    """One real or intended cloud object."""

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    logical_name: str
    depends_on: frozenset[ResourceKind] = frozenset()
    lifecycle_state: LifecycleState = LifecycleState.ABSENT
    provider_id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)


class PlanStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    node: ResourceNode
    action: PlanAction
    reason: str = ""

    def describe(self) -> str:
        """Human-readable one-liner for dry-run output."""
        line = f"{self.action.value:<6} {self.node.kind.value:<17} {self.node.logical_name}"
        if self.reason:
            line = f"{line}  ({self.reason})"
        return line


class OperationPlan(BaseModel):
    """Ordered steps for one invocation. Built fresh each run, never persisted."""

    model_config = ConfigDict(frozen=True)

    direction: Direction
    deployment: str
    steps: tuple[PlanStep, ...] = ()

    @property
    def creates(self) -> list[PlanStep]:
        return [s for s in self.steps if s.action == PlanAction.CREATE]

    @property
    def updates(self) -> list[PlanStep]:
        return [s for s in self.steps if s.action == PlanAction.UPDATE]

    @property
    def deletes(self) -> list[PlanStep]:
        return [s for s in self.steps if s.action == PlanAction.DELETE]

    @property
    def is_noop(self) -> bool:
        return all(s.action == PlanAction.SKIP for s in self.steps)

    def render(self) -> list[str]:
        header = f"{self.direction.value} plan for {self.deployment} ({len(self.steps)} steps)"
        return [header, *(f"  {i}. {s.describe()}" for i, s in enumerate(self.steps, 1))]


# =============================================================================
# Execution
# =============================================================================


def settled_state(
    direction: Direction, outcome: StepOutcome, prior: LifecycleState
) -> LifecycleState:
    """Lifecycle state of a node once its step has ended."""
    if outcome == StepOutcome.FAILED:
        return LifecycleState.ERROR
    if outcome == StepOutcome.BLOCKED:
        return prior
    if direction == Direction.PROVISION:
        return LifecycleState.PRESENT
    return LifecycleState.ABSENT


class StepResult(BaseModel):
    step: PlanStep
    outcome: StepOutcome
    error_category: ErrorCategory | None = None
    message: str = ""
    attempts: int = 0
    provider_id: str | None = None


class ExecutionReport(BaseModel):
    """Result of executing an OperationPlan."""

    direction: Direction
    deployment: str
    results: list[StepResult] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and all(
            r.outcome in (StepOutcome.APPLIED, StepOutcome.SATISFIED) for r in self.results
        )

    @property
    def failures(self) -> list[StepResult]:
        return [r for r in self.results if r.outcome == StepOutcome.FAILED]

    @property
    def blocked(self) -> list[StepResult]:
        return [r for r in self.results if r.outcome == StepOutcome.BLOCKED]

    @property
    def nodes(self) -> list[ResourceNode]:
        """Every planned node in the state it settled in."""
        nodes = []
        for r in self.results:
            node = r.step.node
            nodes.append(
                node.model_copy(
                    update={
                        "lifecycle_state": settled_state(
                            self.direction, r.outcome, node.lifecycle_state
                        ),
                        "provider_id": r.provider_id or node.provider_id,
                    }
                )
            )
        return nodes

    @property
    def present(self) -> list[ResourceNode]:
        """
        Nodes believed to exist after this run.

        A failed delete leaves its object in place, so on teardown ERROR
        nodes count as present too.
        """
        states = {LifecycleState.PRESENT}
        if self.direction == Direction.DESTROY:
            states.add(LifecycleState.ERROR)
        return [n for n in self.nodes if n.lifecycle_state in states]

    @property
    def errored(self) -> list[ResourceNode]:
        return [n for n in self.nodes if n.lifecycle_state == LifecycleState.ERROR]

    @property
    def absent(self) -> list[ResourceNode]:
        """Nodes believed missing after this run: deleted, or never created."""
        return [n for n in self.nodes if n.lifecycle_state == LifecycleState.ABSENT]
