"""Main entry point for the Outpost CI pipeline."""

from __future__ import annotations

import asyncio
import json
import sys
import time

import dagger
from dagger import dag, function, object_type

EXAMPLES_DIR = "apps/deploy/config/examples"

Result = tuple[str, str, bool, str]
TimedResult = tuple[str, str, bool, str, float]


@object_type
class OutpostPipeline:
    """Validation pipeline for the Outpost deploy engine."""

    @function
    async def check(self, source: dagger.Directory, json_output: bool = False) -> str:
        """Run every validation stage.

        1. Quality: ruff, mypy and pytest (parallel)
        2. Configs: `outpost validate` on each bundled example (parallel)

        Parameters
        ----------
        source:
            The project source directory (pass . from the repo root).
        json_output:
            If True, return JSON-formatted output for machine parsing.

        Returns:
            Formatted report with pass/fail status and timing.
        """
        results: list[TimedResult] = []
        stage_times: dict[str, float] = {}
        total_start = time.time()

        def log(msg: str) -> None:
            print(msg, file=sys.stderr, flush=True)

        log("═" * 60)
        log("  OUTPOST VALIDATION STARTING")
        log("═" * 60)

        log("\n▶ Stage 1/2: Quality checks...")
        stage_start = time.time()
        quality_results = await asyncio.gather(
            self._timed_check(self._run_ruff(source)),
            self._timed_check(self._run_mypy(source)),
            self._timed_check(self._run_pytest(source)),
        )
        stage_times["Quality"] = time.time() - stage_start
        results.extend(quality_results)
        self._log_stage(log, "Quality", quality_results, stage_times["Quality"])

        log("\n▶ Stage 2/2: Example configurations...")
        stage_start = time.time()
        names = await self._example_names(source)
        config_results = await asyncio.gather(
            *(self._timed_check(self._validate_config(source, name)) for name in names)
        )
        stage_times["Configs"] = time.time() - stage_start
        results.extend(config_results)
        self._log_stage(log, "Configs", config_results, stage_times["Configs"])

        total_time = time.time() - total_start
        log(f"\n═ Total: {total_time:.1f}s ═")

        if json_output:
            return self._format_json_report(results, stage_times, total_time)
        return self._format_report(results, stage_times, total_time)

    @function
    async def quality(self, source: dagger.Directory, json_output: bool = False) -> str:
        """Run only the quality checks (parallel)."""
        results = await asyncio.gather(
            self._timed_check(self._run_ruff(source)),
            self._timed_check(self._run_mypy(source)),
            self._timed_check(self._run_pytest(source)),
        )
        return self._report(list(results), json_output)

    @function
    async def configs(self, source: dagger.Directory, json_output: bool = False) -> str:
        """Validate every bundled example configuration."""
        names = await self._example_names(source)
        results = await asyncio.gather(
            *(self._timed_check(self._validate_config(source, name)) for name in names)
        )
        return self._report(list(results), json_output)

    @function
    async def test(self, source: dagger.Directory) -> str:
        """Run the unit tests and return pytest's output."""
        container = self._get_python_container(source)
        return await container.with_exec(["pytest", "--tb=short", "-q"]).stdout()

    async def _timed_check(self, coro: object) -> TimedResult:
        """Wrap a check coroutine to add timing."""
        start = time.time()
        result = await coro  # type: ignore[misc]
        return (*result, time.time() - start)  # type: ignore[return-value]

    def _log_stage(self, log, stage: str, results, duration: float) -> None:
        for r in results:
            icon = "✓" if r[2] else "✗"
            log(f"  {icon} {r[1]} ({r[4]:.1f}s)")
        log(f"  {stage} stage: {duration:.1f}s")

    # =========================================================================
    # Container
    # =========================================================================

    def _get_python_container(self, source: dagger.Directory) -> dagger.Container:
        """Python container with the project and its test extra installed."""
        src = (
            source.without_directory(".venv")
            .without_directory(".git")
            .without_directory(".outpost")
            .without_directory("dagger")
        )

        return (
            dag.container()
            .from_("python:3.13-slim")
            .with_workdir("/app")
            .with_file(
                "/usr/local/bin/uv",
                dag.container().from_("ghcr.io/astral-sh/uv:latest").file("/uv"),
            )
            # No cloud credentials inside CI
            .with_env_variable("OUTPOST_PROVIDER", "mock")
            .with_directory("/app", src)
            .with_exec(["uv", "pip", "install", "--system", "-e", ".[test,dev]"])
        )

    async def _example_names(self, source: dagger.Directory) -> list[str]:
        entries = await source.directory(EXAMPLES_DIR).entries()
        return sorted(e for e in entries if e.endswith((".yaml", ".yml")))

    # =========================================================================
    # Quality Stage
    # =========================================================================

    async def _run_ruff(self, source: dagger.Directory) -> Result:
        """Run ruff linter and formatter check."""
        try:
            container = self._get_python_container(source)
            await container.with_exec(["ruff", "check", "."]).stdout()
            await container.with_exec(["ruff", "format", "--check", "."]).stdout()
            return ("Quality", "ruff check", True, "")
        except dagger.ExecError as e:
            return ("Quality", "ruff check", False, e.stdout or str(e))

    async def _run_mypy(self, source: dagger.Directory) -> Result:
        """Run mypy over the engine and the schema package."""
        try:
            container = self._get_python_container(source)
            await container.with_exec(
                ["mypy", "apps/deploy", "packages/schemas/outpost_schemas"]
            ).stdout()
            return ("Quality", "mypy", True, "")
        except dagger.ExecError as e:
            return ("Quality", "mypy", False, e.stdout or str(e))

    async def _run_pytest(self, source: dagger.Directory) -> Result:
        """Run the unit tests."""
        try:
            container = self._get_python_container(source)
            output = await container.with_exec(["pytest", "--tb=short", "-q"]).stdout()
            summary = output.strip().split("\n")[-1] if output else "no tests"
            return ("Quality", f"pytest ({summary})", True, "")
        except dagger.ExecError as e:
            error_msg = e.stdout or str(e)
            failures = [line for line in error_msg.split("\n") if "FAILED" in line][:3]
            return ("Quality", "pytest", False, "\n".join(failures) or error_msg)

    # =========================================================================
    # Configs Stage
    # =========================================================================

    async def _validate_config(self, source: dagger.Directory, name: str) -> Result:
        """Validate one example and plan it offline."""
        path = f"{EXAMPLES_DIR}/{name}"
        try:
            container = self._get_python_container(source)
            await container.with_exec(["outpost", "validate", path]).stdout()
            await container.with_exec(["outpost", "plan", path, "--offline"]).stdout()
            return ("Configs", name, True, "")
        except dagger.ExecError as e:
            return ("Configs", name, False, e.stdout or e.stderr or str(e))

    # =========================================================================
    # Output Formatting
    # =========================================================================

    def _report(self, results: list[TimedResult], json_output: bool) -> str:
        total = sum(r[4] for r in results)
        stage_times: dict[str, float] = {}
        for r in results:
            stage_times[r[0]] = max(stage_times.get(r[0], 0.0), r[4])
        if json_output:
            return self._format_json_report(results, stage_times, total)
        return self._format_report(results, stage_times, total)

    def _format_report(
        self,
        results: list[TimedResult],
        stage_times: dict[str, float],
        total_time: float,
    ) -> str:
        """Format results with timing into a clear report."""
        rule = "═" * 62
        lines = [rule, "  OUTPOST VALIDATION", rule, ""]

        all_passed = all(r[2] for r in results)

        stages: dict[str, list[TimedResult]] = {}
        for r in results:
            stages.setdefault(r[0], []).append(r)

        for stage_name, checks in stages.items():
            status = "✓" if all(c[2] for c in checks) else "✗"
            header = f"{stage_name} Stage {status}".ljust(50)
            lines.append(f"{header}[{stage_times.get(stage_name, 0):.1f}s]")

            for _stage, name, passed, message, duration in checks:
                icon = "✓" if passed else "✗"
                lines.append(f"  {icon} {name}".ljust(48) + f"({duration:.1f}s)")
                if not passed and message:
                    for msg_line in message.split("\n")[:3]:
                        lines.append(f"    → {msg_line}")

            lines.append("")

        lines.append(rule)
        status = "PASSED" if all_passed else "FAILED"
        lines.append(f"  RESULT: {status}".ljust(48) + f"Total: {total_time:.1f}s")
        lines.append(rule)

        if not all_passed:
            failed_count = sum(1 for r in results if not r[2])
            lines.append("")
            lines.append(f"{failed_count} check(s) failed. Fix issues and retry.")

        return "\n".join(lines)

    def _format_json_report(
        self,
        results: list[TimedResult],
        stage_times: dict[str, float],
        total_time: float,
    ) -> str:
        """Format results with timing as JSON for machine parsing."""
        stages: dict[str, dict[str, object]] = {}
        for stage, name, passed, message, duration in results:
            entry = stages.setdefault(
                stage.lower(),
                {
                    "status": "passed",
                    "duration_seconds": round(stage_times.get(stage, 0.0), 2),
                    "checks": [],
                },
            )

            check: dict[str, object] = {
                "name": name,
                "status": "passed" if passed else "failed",
                "duration_seconds": round(duration, 2),
            }
            if not passed and message:
                check["error"] = message

            entry["checks"].append(check)  # type: ignore[attr-defined]
            if not passed:
                entry["status"] = "failed"

        report = {
            "result": "passed" if all(r[2] for r in results) else "failed",
            "duration_seconds": round(total_time, 2),
            "stages": stages,
        }
        return json.dumps(report, indent=2)
