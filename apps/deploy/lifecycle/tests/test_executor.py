"""Tests for PlanExecutor - idempotency, retries and failure isolation."""

import asyncio

import pytest
from outpost_schemas import (
    Direction,
    ErrorCategory,
    LifecycleState,
    PlanAction,
    ResourceKind,
    StepOutcome,
)

from apps.deploy.exceptions import (
    AccessDenied,
    DependencyInUse,
    ProviderUnavailable,
    QuotaExceeded,
    RateLimited,
)
from apps.deploy.lifecycle.catalog import intended_nodes
from apps.deploy.lifecycle.executor import PlanExecutor, execute, summarize
from apps.deploy.lifecycle.planner import build_plan, survey
from apps.deploy.lifecycle.retry import RetryPolicy
from apps.deploy.topology import resolve

K = ResourceKind


@pytest.fixture
def config(make_config):
    """Edge-proxied deployment with a managed DNS record."""
    return make_config(
        dns={"enabled": True, "domain": "shop.example.com"},
        tls={"strategy": "edge-proxy"},
    )


@pytest.fixture
def nodes(config, zones):
    return intended_nodes(resolve(config, zones), config, user_data="#cloud-config")


async def _provision(provider, nodes, policy, on_result=None):
    inventory = await survey(provider, nodes)
    operation_plan = build_plan(nodes, Direction.PROVISION, "shop-test", inventory)
    return await execute(operation_plan, provider, policy, on_result)


async def _destroy(provider, nodes, policy):
    inventory = await survey(provider, nodes)
    operation_plan = build_plan(nodes, Direction.DESTROY, "shop-test", inventory)
    return await execute(operation_plan, provider, policy)


# =============================================================================
# Provision
# =============================================================================


class TestProvision:
    """Tests for executing provisioning plans."""

    @pytest.mark.asyncio
    async def test_creates_everything(self, provider, nodes, fast_retry):
        report = await _provision(provider, nodes, fast_retry)

        assert report.succeeded
        assert all(r.outcome == StepOutcome.APPLIED for r in report.results)
        assert all(provider.exists(n.kind, n.logical_name) for n in nodes)
        assert len(report.present) == len(nodes)

    @pytest.mark.asyncio
    async def test_dns_record_points_at_floating_ip(self, provider, nodes, fast_retry):
        await _provision(provider, nodes, fast_retry)

        record = provider.resources[K.DNS_RECORD]["shop-test-dns"]
        assert record.attributes["content"] == provider.addresses[(K.FLOATING_IP, "shop-test-ip")]

    @pytest.mark.asyncio
    async def test_second_run_creates_nothing(self, provider, nodes, fast_retry):
        """Provisioning is idempotent: a re-run only skips."""
        await _provision(provider, nodes, fast_retry)
        creates = provider.count("create")

        report = await _provision(provider, nodes, fast_retry)

        assert report.succeeded
        assert provider.count("create") == creates
        assert {r.step.action for r in report.results} == {PlanAction.SKIP}
        assert {r.outcome for r in report.results} == {StepOutcome.SATISFIED}

    @pytest.mark.asyncio
    async def test_resumes_after_partial_run(self, provider, nodes, fast_retry):
        """Resources created by an earlier partial run are not recreated."""
        for node in nodes[:3]:
            provider.seed(node)

        report = await _provision(provider, nodes, fast_retry)

        assert report.succeeded
        assert provider.count("create") == len(nodes) - 3

    @pytest.mark.asyncio
    async def test_race_with_existing_object_is_satisfied(self, provider, nodes, fast_retry):
        """A create that finds the object already there counts as done."""
        operation_plan = build_plan(nodes, Direction.PROVISION, "shop-test")
        instance = next(n for n in nodes if n.kind == K.INSTANCE)
        provider.seed(instance)

        report = await execute(operation_plan, provider, fast_retry)

        result = next(r for r in report.results if r.step.node.kind == K.INSTANCE)
        assert result.outcome == StepOutcome.SATISFIED
        assert report.succeeded

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, provider, nodes, fast_retry, caplog):
        provider.fail(
            "create",
            K.INSTANCE,
            ProviderUnavailable("server busy", provider="mock"),
            times=2,
        )

        report = await _provision(provider, nodes, fast_retry)

        result = next(r for r in report.results if r.step.node.kind == K.INSTANCE)
        assert result.outcome == StepOutcome.APPLIED
        assert result.attempts == 3
        assert "attempt 1/3" in caplog.text

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, provider, nodes, fast_retry):
        provider.fail("create", K.INSTANCE, ProviderUnavailable("down", provider="mock"))

        report = await _provision(provider, nodes, fast_retry)

        result = next(r for r in report.results if r.step.node.kind == K.INSTANCE)
        assert result.outcome == StepOutcome.FAILED
        assert result.error_category == ErrorCategory.UNAVAILABLE
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_hard_error_not_retried(self, provider, nodes, fast_retry):
        provider.fail("create", K.INSTANCE, QuotaExceeded("server limit", provider="mock"))

        report = await _provision(provider, nodes, fast_retry)

        result = next(r for r in report.results if r.step.node.kind == K.INSTANCE)
        assert result.outcome == StepOutcome.FAILED
        assert result.error_category == ErrorCategory.QUOTA_EXCEEDED
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_failure_blocks_only_dependents(self, provider, nodes, fast_retry):
        """A failed instance blocks its dependents; the log branch still runs."""
        provider.fail("create", K.INSTANCE, AccessDenied("forbidden", provider="mock"))

        report = await _provision(provider, nodes, fast_retry)

        outcomes = {r.step.node.kind: r.outcome for r in report.results}
        assert outcomes[K.INSTANCE] == StepOutcome.FAILED
        assert outcomes[K.IP_ASSOCIATION] == StepOutcome.BLOCKED
        assert outcomes[K.DNS_RECORD] == StepOutcome.BLOCKED
        assert outcomes[K.FLOATING_IP] == StepOutcome.APPLIED
        assert outcomes[K.LOG_SUBSCRIPTION] == StepOutcome.APPLIED
        assert not report.succeeded
        assert not provider.exists(K.DNS_RECORD)

    @pytest.mark.asyncio
    async def test_summary_names_kind_and_category(self, provider, nodes, fast_retry):
        provider.fail("create", K.INSTANCE, AccessDenied("forbidden", provider="mock"))

        report = await _provision(provider, nodes, fast_retry)
        lines = summarize(report)

        assert "instance shop-test-server: access_denied: forbidden" in lines
        assert any(line.startswith("dns_record shop-test-dns: blocked") for line in lines)

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, provider, nodes):
        waits: list[float] = []

        async def record_sleep(seconds: float) -> None:
            waits.append(seconds)

        policy = RetryPolicy(max_attempts=3, delays=(5.0,), sleep=record_sleep)
        provider.fail(
            "create",
            K.LOG_SINK,
            RateLimited("slow down", retry_after=7, provider="mock"),
            times=1,
        )

        report = await _provision(provider, nodes, policy)

        assert report.succeeded
        assert waits == [7.0]

    @pytest.mark.asyncio
    async def test_stale_record_is_repointed(self, provider, nodes, fast_retry):
        """A record left pointing elsewhere is updated, not reported as converged."""
        for node in nodes:
            if node.kind == K.FLOATING_IP:
                provider.seed(node, address="203.0.113.8")
            elif node.kind == K.DNS_RECORD:
                provider.seed(
                    node.model_copy(
                        update={"attributes": {**node.attributes, "content": "192.0.2.99"}}
                    )
                )
        bound = [
            n.model_copy(update={"attributes": {**n.attributes, "content": "203.0.113.8"}})
            if n.kind == K.DNS_RECORD
            else n
            for n in nodes
        ]

        report = await _provision(provider, bound, fast_retry)

        result = next(r for r in report.results if r.step.node.kind == K.DNS_RECORD)
        assert result.step.action == PlanAction.UPDATE
        assert result.outcome == StepOutcome.APPLIED
        assert provider.count("update") == 1
        record = provider.resources[K.DNS_RECORD]["shop-test-dns"]
        assert record.attributes["content"] == "203.0.113.8"

    @pytest.mark.asyncio
    async def test_drift_found_at_execution_is_updated(self, provider, nodes, fast_retry):
        """A record that drifts between planning and execution is still fixed."""
        bound = [
            n.model_copy(update={"attributes": {**n.attributes, "content": "203.0.113.8"}})
            if n.kind == K.DNS_RECORD
            else n
            for n in nodes
        ]
        operation_plan = build_plan(bound, Direction.PROVISION, "shop-test")
        record = next(n for n in nodes if n.kind == K.DNS_RECORD)
        provider.seed(
            record.model_copy(update={"attributes": {**record.attributes, "content": "192.0.2.99"}})
        )

        report = await execute(operation_plan, provider, fast_retry)

        result = next(r for r in report.results if r.step.node.kind == K.DNS_RECORD)
        assert result.outcome == StepOutcome.APPLIED
        assert provider.resources[K.DNS_RECORD]["shop-test-dns"].attributes["content"] == (
            "203.0.113.8"
        )

    @pytest.mark.asyncio
    async def test_nodes_pass_through_provisioning(self, provider, nodes, fast_retry):
        seen = []

        report = await execute(
            build_plan(nodes, Direction.PROVISION, "shop-test"),
            provider,
            fast_retry,
            on_transition=seen.append,
        )

        assert [n.logical_name for n in seen] == [r.step.node.logical_name for r in report.results]
        assert {n.lifecycle_state for n in seen} == {LifecycleState.PROVISIONING}
        assert {n.lifecycle_state for n in report.nodes} == {LifecycleState.PRESENT}

    @pytest.mark.asyncio
    async def test_skipped_steps_do_not_transition(self, provider, nodes, fast_retry):
        await _provision(provider, nodes, fast_retry)
        seen = []

        inventory = await survey(provider, nodes)
        operation_plan = build_plan(nodes, Direction.PROVISION, "shop-test", inventory)
        await execute(operation_plan, provider, fast_retry, on_transition=seen.append)

        assert seen == []

    @pytest.mark.asyncio
    async def test_failed_node_is_in_error(self, provider, nodes, fast_retry):
        provider.fail("create", K.INSTANCE, AccessDenied("forbidden", provider="mock"))

        report = await _provision(provider, nodes, fast_retry)

        assert [(n.kind, n.lifecycle_state) for n in report.errored] == [
            (K.INSTANCE, LifecycleState.ERROR)
        ]
        blocked = {r.step.node.logical_name for r in report.blocked}
        assert blocked <= {n.logical_name for n in report.absent}
        assert K.INSTANCE not in {n.kind for n in report.present}

    @pytest.mark.asyncio
    async def test_results_reported_as_they_happen(self, provider, nodes, fast_retry):
        seen = []

        report = await _provision(provider, nodes, fast_retry, on_result=seen.append)

        assert seen == report.results


# =============================================================================
# Destroy
# =============================================================================


class TestDestroy:
    """Tests for executing teardown plans."""

    @pytest.mark.asyncio
    async def test_removes_everything(self, provider, nodes, fast_retry):
        await _provision(provider, nodes, fast_retry)

        report = await _destroy(provider, nodes, fast_retry)

        assert report.succeeded
        assert not any(provider.exists(k) for k in K)
        assert report.present == []

    @pytest.mark.asyncio
    async def test_second_destroy_is_noop(self, provider, nodes, fast_retry):
        """Teardown is idempotent: a re-run deletes nothing."""
        await _provision(provider, nodes, fast_retry)
        await _destroy(provider, nodes, fast_retry)
        deletes = provider.count("delete")

        report = await _destroy(provider, nodes, fast_retry)

        assert report.succeeded
        assert provider.count("delete") == deletes
        assert {r.step.reason for r in report.results} == {"already absent"}

    @pytest.mark.asyncio
    async def test_already_absent_is_success(self, provider, nodes, fast_retry):
        """Deleting something that vanished since planning is not an error."""
        await _provision(provider, nodes, fast_retry)
        operation_plan = build_plan(nodes, Direction.DESTROY, "shop-test")
        del provider.resources[K.LOG_SINK]["shop-test-logs"]

        report = await execute(operation_plan, provider, fast_retry)

        result = next(r for r in report.results if r.step.node.kind == K.LOG_SINK)
        assert result.outcome == StepOutcome.SATISFIED
        assert report.succeeded

    @pytest.mark.asyncio
    async def test_dependency_in_use_retried(self, provider, nodes, fast_retry):
        await _provision(provider, nodes, fast_retry)
        provider.fail(
            "delete",
            K.FLOATING_IP,
            DependencyInUse("still detaching", provider="mock"),
            times=1,
        )

        report = await _destroy(provider, nodes, fast_retry)

        result = next(r for r in report.results if r.step.node.kind == K.FLOATING_IP)
        assert result.outcome == StepOutcome.APPLIED
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_nodes_pass_through_destroying(self, provider, nodes, fast_retry):
        await _provision(provider, nodes, fast_retry)
        seen = []

        inventory = await survey(provider, nodes)
        operation_plan = build_plan(nodes, Direction.DESTROY, "shop-test", inventory)
        report = await execute(operation_plan, provider, fast_retry, on_transition=seen.append)

        assert len(seen) == len(nodes)
        assert {n.lifecycle_state for n in seen} == {LifecycleState.DESTROYING}
        assert {n.logical_name for n in report.absent} == {n.logical_name for n in nodes}

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_dependencies(self, provider, nodes, fast_retry):
        """If the instance cannot be deleted, its dependencies stay."""
        await _provision(provider, nodes, fast_retry)
        provider.fail("delete", K.INSTANCE, AccessDenied("protected", provider="mock"))

        report = await _destroy(provider, nodes, fast_retry)

        outcomes = {r.step.node.kind: r.outcome for r in report.results}
        assert outcomes[K.INSTANCE] == StepOutcome.FAILED
        assert outcomes[K.FLOATING_IP] == StepOutcome.BLOCKED
        assert outcomes[K.ROLE_BINDING] == StepOutcome.BLOCKED
        assert outcomes[K.LOG_SINK] == StepOutcome.APPLIED
        assert {n.kind for n in report.present} >= {K.INSTANCE, K.FLOATING_IP, K.CREDENTIAL}
        assert [n.kind for n in report.errored] == [K.INSTANCE]
        assert any(line.startswith("still present: instance") for line in summarize(report))


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Tests for interrupted runs."""

    @pytest.mark.asyncio
    async def test_cancel_marks_report_and_propagates(self, provider, nodes):
        provider.api_delay_ms = 50
        executor = PlanExecutor(provider, RetryPolicy.no_retry())
        operation_plan = build_plan(nodes, Direction.PROVISION, "shop-test")
        seen = []
        executor.on_result = seen.append

        task = asyncio.create_task(executor.execute(operation_plan))
        await asyncio.sleep(0.12)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert 0 < len(seen) < len(nodes)

    @pytest.mark.asyncio
    async def test_rerun_after_cancel_completes(self, provider, nodes, fast_retry):
        provider.api_delay_ms = 50
        operation_plan = build_plan(nodes, Direction.PROVISION, "shop-test")
        task = asyncio.create_task(execute(operation_plan, provider, fast_retry))
        await asyncio.sleep(0.12)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        provider.api_delay_ms = 0
        report = await _provision(provider, nodes, fast_retry)

        assert report.succeeded
        assert all(provider.exists(n.kind, n.logical_name) for n in nodes)
