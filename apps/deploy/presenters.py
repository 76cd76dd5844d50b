"""Rich renderings of plans, reports and estimates for the CLI."""

from outpost_schemas import (
    CheckStatus,
    ExecutionReport,
    OperationPlan,
    PlanAction,
    StepOutcome,
    VerificationReport,
)
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from apps.deploy.estimate import CostEstimate

ACTION_STYLES = {
    PlanAction.CREATE: "green",
    PlanAction.UPDATE: "cyan",
    PlanAction.DELETE: "red",
    PlanAction.SKIP: "dim",
}

OUTCOME_STYLES = {
    StepOutcome.APPLIED: "green",
    StepOutcome.SATISFIED: "dim",
    StepOutcome.FAILED: "bold red",
    StepOutcome.BLOCKED: "yellow",
}

CHECK_STYLES = {
    CheckStatus.SATISFIED: "green",
    CheckStatus.TIMED_OUT: "yellow",
    CheckStatus.SKIPPED: "dim",
}


def plan_table(plan: OperationPlan) -> Table:
    table = Table(title=f"{plan.direction.value.capitalize()} plan: {plan.deployment}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Action", no_wrap=True)
    table.add_column("Kind", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Note", style="dim")
    for index, step in enumerate(plan.steps, start=1):
        table.add_row(
            str(index),
            Text(step.action.value, style=ACTION_STYLES[step.action]),
            step.node.kind.value,
            step.node.logical_name,
            step.reason or "",
        )
    table.caption = (
        f"{len(plan.creates)} to create, {len(plan.updates)} to update, "
        f"{len(plan.deletes)} to delete"
        if not plan.is_noop
        else "nothing to do"
    )
    return table


def report_table(report: ExecutionReport) -> Table:
    table = Table(title=f"{report.direction.value.capitalize()} of {report.deployment}")
    table.add_column("Kind", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Outcome", no_wrap=True)
    table.add_column("Tries", justify="right", style="dim")
    table.add_column("Detail", style="dim")
    for result in report.results:
        detail = result.message or ""
        if result.error_category is not None:
            detail = f"[{result.error_category.value}] {detail}"
        table.add_row(
            result.step.node.kind.value,
            result.step.node.logical_name,
            Text(result.outcome.value, style=OUTCOME_STYLES[result.outcome]),
            str(result.attempts) if result.attempts else "",
            Text(detail),
        )
    return table


def verification_table(report: VerificationReport) -> Table:
    table = Table(title=f"Convergence: {report.endpoint or 'unknown endpoint'}")
    table.add_column("Check", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Target", style="white")
    table.add_column("Observed", style="dim")
    table.add_column("Time", justify="right", style="dim")
    for result in report.results:
        table.add_row(
            result.check.value,
            Text(result.status.value, style=CHECK_STYLES[result.status]),
            result.target,
            result.observed or "",
            f"{result.elapsed_seconds:.0f}s" if result.attempts else "",
        )
    return table


def verification_hints(report: VerificationReport) -> Panel | None:
    """Follow-up commands for checks that did not converge."""
    hints = [f"- {r.check.value}: {r.hint}" for r in report.pending if r.hint]
    if not hints:
        return None
    body = Text("Some checks have not converged yet. This is usually a matter of time.\n\n")
    body.append("\n".join(hints))
    return Panel(body, title="Pending", border_style="yellow")


def estimate_table(estimate: CostEstimate) -> Table:
    table = Table(title=f"Estimated monthly cost ({estimate.location})")
    table.add_column("Item", style="cyan", no_wrap=True)
    table.add_column("Type", style="white")
    table.add_column(f"{estimate.currency}/month", justify="right")
    for line in estimate.lines:
        table.add_row(line.item, line.detail, f"{line.monthly:.2f}")
    table.add_section()
    table.add_row(Text("total", style="bold"), "", Text(f"{estimate.total:.2f}", style="bold"))
    if estimate.budget is not None:
        style = "bold red" if estimate.over_budget else "green"
        table.add_row("budget", "", Text(f"{estimate.budget:.2f}", style=style))
    return table
