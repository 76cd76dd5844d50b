"""Plan execution - sequential, idempotent, failure-isolating."""

import asyncio
import logging
from collections.abc import Callable

from outpost_schemas import (
    Direction,
    ErrorCategory,
    ExecutionReport,
    LifecycleState,
    OperationPlan,
    PlanAction,
    PlanStep,
    ResourceKind,
    ResourceNode,
    StepOutcome,
    StepResult,
)

from apps.deploy.exceptions import ProviderError, ResourceAlreadyExists, ResourceNotFound
from apps.deploy.lifecycle.catalog import drift
from apps.deploy.lifecycle.planner import must_precede
from apps.deploy.lifecycle.retry import RetryPolicy
from apps.deploy.providers.base import ResourceProvider

logger = logging.getLogger(__name__)

StepCallback = Callable[[StepResult], None]
NodeCallback = Callable[[ResourceNode], None]

IN_FLIGHT = {
    Direction.PROVISION: LifecycleState.PROVISIONING,
    Direction.DESTROY: LifecycleState.DESTROYING,
}


class PlanExecutor:
    """
    Runs an OperationPlan step by step against a provider.

    - Creates probe first. An existing object counts as satisfied when its
      shape matches the node, and is updated in place when it does not.
    - Deletes treat an absent object as satisfied.
    - Transient errors are retried by the injected RetryPolicy.
    - Any other error fails the step and blocks the steps that must follow
      it; unrelated branches keep going.
    - Before each provider call the node is reported in flight
      (PROVISIONING or DESTROYING) through `on_transition`.
    - Cancellation stops the run without rollback. Re-running the same plan
      resumes, since every step is idempotent.
    """

    def __init__(
        self,
        provider: ResourceProvider,
        retry_policy: RetryPolicy | None = None,
        on_result: StepCallback | None = None,
        on_transition: NodeCallback | None = None,
    ) -> None:
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.on_result = on_result
        self.on_transition = on_transition

    async def execute(self, plan: OperationPlan) -> ExecutionReport:
        report = ExecutionReport(direction=plan.direction, deployment=plan.deployment)
        before = must_precede((s.node for s in plan.steps), plan.direction)
        broken: set[ResourceKind] = set()

        logger.info(
            "Executing %s plan for %s (%d steps)",
            plan.direction.value,
            plan.deployment,
            len(plan.steps),
        )

        for step in plan.steps:
            blockers = before.get(step.node.kind, set()) & broken
            if blockers:
                result = StepResult(
                    step=step,
                    outcome=StepOutcome.BLOCKED,
                    message="blocked by failed " + ", ".join(sorted(k.value for k in blockers)),
                )
                broken.add(step.node.kind)
                logger.warning(
                    "Skipping %s %s: %s",
                    step.node.kind.value,
                    step.node.logical_name,
                    result.message,
                )
            else:
                try:
                    result = await self._run_step(step, plan.direction)
                except (asyncio.CancelledError, KeyboardInterrupt):
                    report.cancelled = True
                    logger.warning(
                        "Cancelled during %s %s; re-run to resume",
                        step.node.kind.value,
                        step.node.logical_name,
                    )
                    raise
                if result.outcome == StepOutcome.FAILED:
                    broken.add(step.node.kind)

            report.results.append(result)
            if self.on_result is not None:
                self.on_result(result)

        if report.failures or report.blocked:
            logger.error(
                "%s of %s finished with %d failed and %d blocked step(s)",
                plan.direction.value.capitalize(),
                plan.deployment,
                len(report.failures),
                len(report.blocked),
            )
        else:
            logger.info("%s of %s complete", plan.direction.value.capitalize(), plan.deployment)
        return report

    async def _run_step(self, step: PlanStep, direction: Direction) -> StepResult:
        node = step.node
        label = f"{step.action.value} {node.kind.value} {node.logical_name}"

        if step.action == PlanAction.SKIP:
            return StepResult(
                step=step,
                outcome=StepOutcome.SATISFIED,
                message=step.reason,
                provider_id=node.provider_id,
            )

        operation = self._delete if step.action == PlanAction.DELETE else self._converge
        attempts = 0

        if self.on_transition is not None:
            self.on_transition(node.model_copy(update={"lifecycle_state": IN_FLIGHT[direction]}))

        async def attempt() -> tuple[StepOutcome, str | None]:
            nonlocal attempts
            attempts += 1
            return await operation(node)

        try:
            (outcome, provider_id), _ = await self.retry_policy.run(attempt, label=label)
        except ProviderError as e:
            logger.error(
                "Failed to %s %s %s [%s]: %s",
                step.action.value,
                node.kind.value,
                node.logical_name,
                e.category.value,
                e.message,
            )
            return StepResult(
                step=step,
                outcome=StepOutcome.FAILED,
                error_category=e.category,
                message=e.message,
                attempts=attempts,
            )
        except (ValueError, KeyError) as e:
            logger.error("Failed to %s: %s", label, e)
            return StepResult(
                step=step,
                outcome=StepOutcome.FAILED,
                error_category=ErrorCategory.UNKNOWN,
                message=str(e),
                attempts=attempts,
            )

        logger.info("%s: %s", label, outcome.value)
        return StepResult(step=step, outcome=outcome, attempts=attempts, provider_id=provider_id)

    async def _converge(self, node: ResourceNode) -> tuple[StepOutcome, str | None]:
        """Create the object, or update an existing one whose shape drifted."""
        existing = await self.provider.describe(node)
        if existing is not None:
            differences = drift(node, existing)
            if not differences:
                return StepOutcome.SATISFIED, existing.provider_id
            logger.info(
                "Updating %s %s: %s",
                node.kind.value,
                node.logical_name,
                ", ".join(f"{k} {have} -> {want}" for k, (want, have) in differences.items()),
            )
            updated = await self.provider.update(node, existing)
            return StepOutcome.APPLIED, updated.provider_id
        try:
            created = await self.provider.create(node)
        except ResourceAlreadyExists:
            existing = await self.provider.describe(node)
            return StepOutcome.SATISFIED, existing.provider_id if existing else None
        return StepOutcome.APPLIED, created.provider_id

    async def _delete(self, node: ResourceNode) -> tuple[StepOutcome, str | None]:
        existing = await self.provider.describe(node)
        if existing is None:
            return StepOutcome.SATISFIED, None
        try:
            await self.provider.delete(existing)
        except ResourceNotFound:
            return StepOutcome.SATISFIED, None
        return StepOutcome.APPLIED, existing.provider_id


async def execute(
    plan: OperationPlan,
    provider: ResourceProvider,
    retry_policy: RetryPolicy | None = None,
    on_result: StepCallback | None = None,
    on_transition: NodeCallback | None = None,
) -> ExecutionReport:
    """Execute a plan. See PlanExecutor."""
    executor = PlanExecutor(provider, retry_policy, on_result, on_transition)
    return await executor.execute(plan)


def summarize(report: ExecutionReport) -> list[str]:
    """Per-kind lines for the operator: what failed and why."""
    lines = []
    for result in report.failures + report.blocked:
        node = result.step.node
        category = result.error_category.value if result.error_category else "blocked"
        lines.append(f"{node.kind.value} {node.logical_name}: {category}: {result.message}")
    if report.direction == Direction.DESTROY:
        for node in report.present:
            lines.append(f"still present: {node.kind.value} {node.logical_name}")
    return lines
