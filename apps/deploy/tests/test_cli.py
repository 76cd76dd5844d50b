"""Tests for the operator CLI - commands, prompts and exit codes."""

import pytest
from outpost_schemas import (
    CheckName,
    CheckStatus,
    ResourceKind,
    VerificationReport,
    VerificationResult,
)
from typer.testing import CliRunner

from apps.deploy import cli
from apps.deploy.exceptions import AccessDenied

K = ResourceKind

runner = CliRunner()

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def shared_provider(monkeypatch, provider):
    """Every command talks to the same in-memory provider."""
    monkeypatch.setattr(cli, "get_provider", lambda name, settings: provider)
    monkeypatch.setattr(cli, "_interactive", lambda: False)
    for name in ("HCLOUD_TOKEN", "PROVIDER", "STATE_DIR"):
        monkeypatch.delenv(f"OUTPOST_{name}", raising=False)
    return provider


@pytest.fixture
def invoke(tmp_path):
    """Run the CLI against a temporary state directory."""

    def run(*args: str, input: str | None = None):
        return runner.invoke(
            cli.app, ["--state-dir", str(tmp_path / "state"), *args], input=input
        )

    return run


@pytest.fixture
def config_path(write_config, edge_proxy_overrides):
    return str(write_config(**edge_proxy_overrides))


@pytest.fixture
def applied(invoke, config_path):
    """A deployment that has been applied once."""
    result = invoke("apply", config_path, "--no-verify")
    assert result.exit_code == 0, result.output
    return result


# =============================================================================
# validate & plan
# =============================================================================


class TestValidate:
    """Tests for `outpost validate`."""

    def test_valid(self, invoke, config_path):
        result = invoke("validate", config_path)

        assert result.exit_code == cli.EXIT_OK
        assert "valid shop-test" in result.output
        assert "edge-proxy" in result.output

    def test_invalid_exits_2(self, invoke, write_config):
        path = write_config(tls={"strategy": "edge-proxy"})

        result = invoke("validate", str(path))

        assert result.exit_code == cli.EXIT_INVALID
        assert "Invalid settings" in result.output

    def test_every_document_reported(self, invoke, write_config, edge_proxy_overrides):
        good = write_config("good.yaml", **edge_proxy_overrides)
        bad = write_config("bad.yaml", tls={"strategy": "edge-proxy"})
        also_good = write_config("also-good.yaml")

        result = invoke("validate", str(good), str(bad), str(also_good))

        assert result.exit_code == cli.EXIT_FAILED
        assert result.output.count("valid shop-test") == 2
        assert "bad.yaml" in result.output
        assert "1 of 3 documents invalid" in result.output

    def test_all_valid_documents(self, invoke, write_config, edge_proxy_overrides):
        first = write_config("first.yaml", **edge_proxy_overrides)
        second = write_config("second.yaml")

        result = invoke("validate", str(first), str(second))

        assert result.exit_code == cli.EXIT_OK
        assert "second.yaml" in result.output

    def test_missing_file_exits_2(self, invoke, tmp_path):
        result = invoke("validate", str(tmp_path / "nope.yaml"))

        assert result.exit_code == cli.EXIT_INVALID


class TestPlan:
    """Tests for `outpost plan`."""

    def test_offline_needs_no_provider(self, invoke, config_path, monkeypatch):
        def no_provider(name, settings):
            raise AccessDenied("no credentials", provider=name)

        monkeypatch.setattr(cli, "get_provider", no_provider)

        result = invoke("plan", config_path, "--offline")

        assert result.exit_code == cli.EXIT_OK, result.output
        assert "to create" in result.output

    def test_plan_reads_provider(self, invoke, config_path, shared_provider):
        result = invoke("plan", config_path)

        assert result.exit_code == cli.EXIT_OK, result.output
        assert shared_provider.count("describe") > 0
        assert shared_provider.count("create") == 0

    def test_plan_shows_stale_record_update(self, invoke, config_path, applied, shared_provider):
        record = shared_provider.resources[K.DNS_RECORD]["shop-test-dns"]
        shared_provider.resources[K.DNS_RECORD]["shop-test-dns"] = record.model_copy(
            update={"attributes": {**record.attributes, "content": "192.0.2.99"}}
        )

        result = invoke("plan", config_path)

        assert result.exit_code == cli.EXIT_OK, result.output
        assert "1 to update" in result.output
        assert shared_provider.count("update") == 0

    def test_unresolvable_zone_exits_2(self, invoke, write_config):
        path = write_config(dns={"enabled": True, "domain": "shop.unknown.net"})

        result = invoke("plan", str(path))

        assert result.exit_code == cli.EXIT_INVALID
        assert "Cannot resolve topology" in result.output


# =============================================================================
# apply
# =============================================================================


class TestApply:
    """Tests for `outpost apply`."""

    def test_apply(self, applied, shared_provider, store):
        assert "Deployed https://app.team.example.com" in applied.output
        assert shared_provider.exists(K.INSTANCE, "shop-test-server")
        assert store.read() is not None

    def test_dry_run_changes_nothing(self, invoke, config_path, shared_provider):
        result = invoke("apply", config_path, "--dry-run")

        assert result.exit_code == cli.EXIT_OK
        assert "dry run" in result.output
        assert shared_provider.count("create") == 0

    def test_failure_exits_1(self, invoke, config_path, shared_provider):
        shared_provider.fail("create", K.INSTANCE, AccessDenied("forbidden", provider="mock"))

        result = invoke("apply", config_path, "--no-verify")

        assert result.exit_code == cli.EXIT_FAILED
        assert "access_denied: forbidden" in result.output

    def test_locked_exits_3(self, invoke, config_path, store):
        with store.lock("destroy"):
            result = invoke("apply", config_path, "--no-verify")

        assert result.exit_code == cli.EXIT_LOCKED
        assert "Locked" in result.output

    def test_verification_runs_after_apply(self, invoke, config_path, monkeypatch):
        async def fake_verify(topology, address, settings, **kwargs):
            return VerificationReport(
                endpoint=topology.url,
                results=[
                    VerificationResult(
                        check=CheckName.DNS,
                        status=CheckStatus.TIMED_OUT,
                        target="app.team.example.com",
                        hint="check later with dig",
                    )
                ],
            )

        monkeypatch.setattr(cli.services, "verify", fake_verify)

        result = invoke("apply", config_path)

        assert result.exit_code == cli.EXIT_OK
        assert "check later with dig" in result.output


# =============================================================================
# destroy & unlock
# =============================================================================


class TestDestroy:
    """Tests for `outpost destroy`."""

    def test_refuses_without_confirmation(self, invoke, config_path, applied, shared_provider):
        result = invoke("destroy", config_path)

        assert result.exit_code == cli.EXIT_FAILED
        assert "--yes" in result.output
        assert shared_provider.count("delete") == 0

    def test_prompt_declined(self, invoke, config_path, applied, shared_provider, monkeypatch):
        monkeypatch.setattr(cli, "_interactive", lambda: True)

        result = invoke("destroy", config_path, input="no\n")

        assert result.exit_code == cli.EXIT_FAILED
        assert "Destroy cancelled" in result.output
        assert shared_provider.count("delete") == 0

    def test_prompt_accepted(self, invoke, config_path, applied, shared_provider, monkeypatch):
        monkeypatch.setattr(cli, "_interactive", lambda: True)

        result = invoke("destroy", config_path, input="yes\n")

        assert result.exit_code == cli.EXIT_OK, result.output
        assert not shared_provider.exists(K.INSTANCE)

    def test_destroy(self, invoke, config_path, applied, shared_provider, store):
        result = invoke("destroy", config_path, "--yes")

        assert result.exit_code == cli.EXIT_OK, result.output
        assert "Destroyed shop-test" in result.output
        assert "resources absent" in result.output
        assert not any(shared_provider.exists(k) for k in K)
        assert store.read() is None

    def test_destroy_without_state(self, invoke, config_path):
        result = invoke("destroy", config_path, "--yes")

        assert result.exit_code == cli.EXIT_OK, result.output
        assert "(empty)" in result.output

    def test_incomplete_teardown_exits_1(self, invoke, config_path, applied, shared_provider):
        shared_provider.fail("delete", K.INSTANCE, AccessDenied("protected", provider="mock"))

        result = invoke("destroy", config_path, "--yes")

        assert result.exit_code == cli.EXIT_FAILED
        assert "Teardown incomplete" in result.output

    def test_dry_run(self, invoke, config_path, applied, shared_provider):
        result = invoke("destroy", config_path, "--dry-run")

        assert result.exit_code == cli.EXIT_OK
        assert shared_provider.count("delete") == 0


class TestUnlock:
    """Tests for `outpost unlock`."""

    def test_not_locked(self, invoke, config_path):
        result = invoke("unlock", config_path)

        assert result.exit_code == cli.EXIT_OK
        assert "is not locked" in result.output

    def test_unlock_stale_lock(self, invoke, config_path, store):
        store.root.mkdir(parents=True)
        store.lock_path.write_text('{"owner": "ghost:1", "operation": "apply"}', encoding="utf-8")

        result = invoke("unlock", config_path, "--yes")

        assert result.exit_code == cli.EXIT_OK
        assert not store.lock_path.exists()


# =============================================================================
# verify & estimate
# =============================================================================


class TestVerify:
    """Tests for `outpost verify`."""

    def test_pending_checks_do_not_fail(self, invoke, config_path, applied, monkeypatch):
        seen = {}

        async def fake_verify(topology, address, settings, **kwargs):
            seen["address"] = address
            return VerificationReport(endpoint=topology.url, results=[])

        monkeypatch.setattr(cli.services, "verify", fake_verify)

        result = invoke("verify", config_path)

        assert result.exit_code == cli.EXIT_OK, result.output
        assert seen["address"] is not None

    def test_budget_caps_verification(self, invoke, config_path, applied, monkeypatch):
        seen = {}

        async def fake_verify(topology, address, settings, **kwargs):
            seen["budget"] = settings.verify_budget
            return VerificationReport(endpoint=topology.url, results=[])

        monkeypatch.setattr(cli.services, "verify", fake_verify)

        result = invoke("verify", config_path, "--budget", "90")

        assert result.exit_code == cli.EXIT_OK, result.output
        assert seen["budget"] == 90.0


class TestEstimate:
    """Tests for `outpost estimate`."""

    def test_requires_token(self, invoke, config_path):
        result = invoke("estimate", config_path)

        assert result.exit_code == cli.EXIT_FAILED
        assert "OUTPOST_HCLOUD_TOKEN" in result.output
