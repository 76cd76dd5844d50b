"""
Operator CLI - `outpost validate|plan|apply|destroy|verify|estimate|unlock`.

Exit codes:
    0  success, including checks that have not converged yet
    1  provider or state failures, refused confirmation, any invalid
       document when validating several
    2  invalid settings or unresolvable topology
    3  state lock held by another run
"""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from outpost_schemas import VerificationReport
from rich.console import Console
from rich.logging import RichHandler

from apps.deploy import presenters, services
from apps.deploy.config import load_config
from apps.deploy.estimate import CostEstimate, PricingUnavailable, fetch_estimate
from apps.deploy.exceptions import (
    AccessDenied,
    ConfigurationError,
    ConfirmationRequired,
    LockHeldError,
    OutpostError,
    ProviderError,
    ResolutionError,
    StateError,
)
from apps.deploy.lifecycle.executor import summarize
from apps.deploy.providers import CloudProvider, HetznerProvider, get_provider
from apps.deploy.settings import OperatorSettings, get_settings
from apps.deploy.topology import resolve

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_LOCKED = 3

T = TypeVar("T")

app = typer.Typer(
    no_args_is_help=True,
    help="Provision, verify and tear down single-server deployments.",
)

_console = Console()
_err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

ConfigArg = Annotated[Path, typer.Argument(help="Deployment settings document (YAML).")]
BudgetOption = Annotated[
    float | None,
    typer.Option("--budget", min=1, help="Cap in seconds across all convergence checks."),
]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=_err_console, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _interactive() -> bool:
    return sys.stdin.isatty()


@contextmanager
def _exit_codes() -> Iterator[None]:
    """Translate domain errors into operator messages and exit codes."""
    try:
        yield
    except ConfigurationError as e:
        where = f" in {e.source}" if e.source else ""
        _err_console.print(f"[bold red]Invalid settings{where}:[/bold red]")
        for violation in e.violations:
            _err_console.print(f"  - {violation}")
        raise typer.Exit(EXIT_INVALID) from e
    except ResolutionError as e:
        _err_console.print(f"[bold red]Cannot resolve topology:[/bold red] {e.message}")
        raise typer.Exit(EXIT_INVALID) from e
    except LockHeldError as e:
        _err_console.print(f"[bold red]Locked:[/bold red] {e.message}")
        raise typer.Exit(EXIT_LOCKED) from e
    except ConfirmationRequired as e:
        _err_console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(EXIT_FAILED) from e
    except (ProviderError, StateError) as e:
        _err_console.print(f"[bold red]{type(e).__name__}:[/bold red] {e.message}")
        raise typer.Exit(EXIT_FAILED) from e
    except OutpostError as e:
        _err_console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(EXIT_FAILED) from e


def _run_with_provider(
    settings: OperatorSettings, operation: Callable[[CloudProvider], Awaitable[T]]
) -> T:
    """Run an async operation with a provider that is closed afterwards."""

    async def runner() -> T:
        provider = get_provider(settings.provider, settings)
        try:
            return await operation(provider)
        finally:
            await provider.close()

    return asyncio.run(runner())


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR.")
    ] = None,
    provider: Annotated[
        str | None, typer.Option("--provider", help="Provider backend: cloud or mock.")
    ] = None,
    state_dir: Annotated[
        Path | None, typer.Option("--state-dir", help="Directory holding state and locks.")
    ] = None,
) -> None:
    """Settings come from OUTPOST_* environment variables (or .env); flags override them."""
    settings = get_settings()
    overrides = {
        key: value
        for key, value in (
            ("log_level", log_level),
            ("provider", provider),
            ("state_dir", state_dir),
        )
        if value is not None
    }
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(settings.log_level)
    ctx.obj = settings


# =============================================================================
# Commands
# =============================================================================


@app.command()
def validate(
    config_paths: Annotated[
        list[Path], typer.Argument(help="Deployment settings documents (YAML).")
    ],
) -> None:
    """
    Check settings documents without touching any provider.

    Every document is reported. A single invalid document exits 2; with
    several, any invalid one makes the run exit 1.
    """
    failures = []
    for config_path in config_paths:
        try:
            with _exit_codes():
                config = load_config(config_path)
                topology = resolve(config)
        except typer.Exit as e:
            failures.append(e.exit_code)
            continue

        _console.print(f"[green]valid[/green] {config.identifier} ({config_path})")
        _console.print(f"  tls: {topology.tls_strategy.value}")
        _console.print(f"  endpoint: {topology.url or 'floating address (assigned at apply)'}")
        _console.print(f"  resources: {', '.join(k.value for k in topology.resource_kinds)}")

    if failures:
        _err_console.print(
            f"[bold red]{len(failures)} of {len(config_paths)} documents invalid[/bold red]"
        )
        raise typer.Exit(failures[0] if len(config_paths) == 1 else EXIT_FAILED)


@app.command()
def plan(
    ctx: typer.Context,
    config_path: ConfigArg,
    destroy: Annotated[bool, typer.Option("--destroy", help="Plan teardown instead.")] = False,
    offline: Annotated[
        bool, typer.Option("--offline", help="Do not query providers; show every step.")
    ] = False,
    discover: Annotated[
        bool, typer.Option("--discover", help="Teardown: also discover unrecorded resources.")
    ] = False,
) -> None:
    """Show the ordered steps an apply or destroy would take."""
    settings: OperatorSettings = ctx.obj
    with _exit_codes():
        config = load_config(config_path)
        policy = services.retry_policy_from(settings)
        store = services.store_for(config, settings)
        if offline and destroy:
            operation_plan = services.draft_teardown_plan(config, store)
        elif offline:
            operation_plan = services.draft_provision_plan(config, config_path)
        elif destroy:
            operation_plan = _run_with_provider(
                settings,
                lambda provider: services.plan_teardown(
                    config, provider, store, policy, force_discovery=discover
                ),
            )
        else:
            operation_plan = _run_with_provider(
                settings,
                lambda provider: services.plan_provision(
                    config, provider, policy, config_path=config_path
                ),
            )
    _console.print(presenters.plan_table(operation_plan))


@app.command()
def apply(
    ctx: typer.Context,
    config_path: ConfigArg,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Render the plan without executing it.")
    ] = False,
    verify: Annotated[
        bool, typer.Option("--verify/--no-verify", help="Wait for convergence afterwards.")
    ] = True,
    budget: BudgetOption = None,
) -> None:
    """Provision the deployment, or converge it if it already exists."""
    settings: OperatorSettings = ctx.obj
    if budget is not None:
        settings = settings.model_copy(update={"verify_budget": budget})
    with _exit_codes():
        config = load_config(config_path)
        policy = services.retry_policy_from(settings)

        if dry_run:
            operation_plan = _run_with_provider(
                settings,
                lambda provider: services.plan_provision(
                    config, provider, policy, config_path=config_path
                ),
            )
            _console.print(presenters.plan_table(operation_plan))
            _console.print("[dim]dry run: nothing was changed[/dim]")
            return

        store = services.store_for(config, settings)
        outcome = _run_with_provider(
            settings,
            lambda provider: services.provision(
                config, provider, store, policy, config_path=config_path
            ),
        )

    _console.print(presenters.report_table(outcome.report))
    if not outcome.report.succeeded:
        for line in summarize(outcome.report):
            _err_console.print(f"  - {line}")
        _err_console.print("[yellow]Re-run apply to resume once the cause is fixed.[/yellow]")
        raise typer.Exit(EXIT_FAILED)

    _console.print(f"[green]Deployed[/green] {outcome.topology.url or outcome.address or ''}")
    if verify:
        report = asyncio.run(services.verify(outcome.topology, outcome.address, settings))
        _show_verification(report)


@app.command()
def destroy(
    ctx: typer.Context,
    config_path: ConfigArg,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Render the teardown plan only.")
    ] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the confirmation prompt.")] = False,
    discover: Annotated[
        bool, typer.Option("--discover", help="Also discover resources missing from state.")
    ] = False,
) -> None:
    """Tear the deployment down. State is backed up first."""
    settings: OperatorSettings = ctx.obj
    with _exit_codes():
        config = load_config(config_path)
        policy = services.retry_policy_from(settings)
        store = services.store_for(config, settings)

        if dry_run:
            operation_plan = _run_with_provider(
                settings,
                lambda provider: services.plan_teardown(
                    config, provider, store, policy, force_discovery=discover
                ),
            )
            _console.print(presenters.plan_table(operation_plan))
            _console.print("[dim]dry run: nothing was changed[/dim]")
            return

        if not yes:
            if not _interactive():
                raise ConfirmationRequired(
                    "Refusing to destroy without confirmation; pass --yes to proceed"
                )
            answer = typer.prompt(f"Type 'yes' to destroy {config.identifier}")
            if answer.strip() != "yes":
                raise ConfirmationRequired("Destroy cancelled")

        outcome = _run_with_provider(
            settings,
            lambda provider: services.destroy(
                config, provider, store, policy, force_discovery=discover
            ),
        )

    _console.print(presenters.report_table(outcome.report))
    _console.print(
        f"[dim]state snapshot: {outcome.snapshot.path}"
        f"{' (empty)' if outcome.snapshot.empty else ''}[/dim]"
    )
    if not outcome.purged:
        for line in summarize(outcome.report):
            _err_console.print(f"  - {line}")
        if outcome.discovery is not None:
            for kind, error in outcome.discovery.errors.items():
                _err_console.print(f"  - discovery of {kind.value} failed: {error}")
        _err_console.print("[yellow]Teardown incomplete; state keeps what remains.[/yellow]")
        raise typer.Exit(EXIT_FAILED)
    _console.print(
        f"[green]Destroyed[/green] {config.identifier} "
        f"({len(outcome.report.absent)} resources absent)"
    )


@app.command(name="verify")
def verify_command(
    ctx: typer.Context, config_path: ConfigArg, budget: BudgetOption = None
) -> None:
    """Poll DNS, HTTP and certificate readiness of a deployed endpoint."""
    settings: OperatorSettings = ctx.obj
    if budget is not None:
        settings = settings.model_copy(update={"verify_budget": budget})
    with _exit_codes():
        config = load_config(config_path)
        topology = resolve(config)

        async def run(provider: CloudProvider) -> VerificationReport:
            address = await services.endpoint_address(provider, topology)
            bound = topology.with_address(address) if address else topology
            return await services.verify(bound, address, settings)

        report = _run_with_provider(settings, run)
    _show_verification(report)


@app.command()
def estimate(ctx: typer.Context, config_path: ConfigArg) -> None:
    """Estimate the monthly compute cost from current Hetzner prices."""
    settings: OperatorSettings = ctx.obj
    with _exit_codes():
        config = load_config(config_path)
        topology = resolve(config)
        if not settings.hcloud_token:
            raise AccessDenied("missing credentials: OUTPOST_HCLOUD_TOKEN", provider="hetzner")

        async def run() -> CostEstimate:
            provider = HetznerProvider(token=settings.hcloud_token or "")
            try:
                return await fetch_estimate(config, topology, provider)
            finally:
                await provider.close()

        try:
            cost = asyncio.run(run())
        except PricingUnavailable as e:
            _err_console.print(f"[bold red]Pricing unavailable:[/bold red] {e}")
            raise typer.Exit(EXIT_FAILED) from e

    _console.print(presenters.estimate_table(cost))
    if cost.over_budget:
        _err_console.print(
            f"[yellow]Estimate exceeds the configured monthly budget of {cost.budget}.[/yellow]"
        )


@app.command()
def unlock(
    ctx: typer.Context,
    config_path: ConfigArg,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the confirmation prompt.")] = False,
) -> None:
    """Remove a stale state lock left by a crashed run."""
    settings: OperatorSettings = ctx.obj
    with _exit_codes():
        config = load_config(config_path)
        store = services.store_for(config, settings)
        holder = store.lock_info()
        if holder is None:
            _console.print(f"{config.identifier} is not locked")
            return
        if not yes:
            if not _interactive():
                raise ConfirmationRequired("Refusing to unlock without confirmation; pass --yes")
            if not typer.confirm(f"Remove lock held by {holder.get('owner')}?"):
                raise ConfirmationRequired("Unlock cancelled")
        store.force_unlock()
    _console.print(f"[green]Unlocked[/green] {config.identifier}")


def _show_verification(report: VerificationReport) -> None:
    _console.print(presenters.verification_table(report))
    hints = presenters.verification_hints(report)
    if hints is not None:
        _console.print(hints)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
