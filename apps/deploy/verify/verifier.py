"""Convergence verifier - bounded polling of externally observable readiness."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from outpost_schemas import CheckStatus, VerificationResult

from apps.deploy.verify.checks import Check

logger = logging.getLogger(__name__)


class ConvergenceVerifier:
    """
    Runs checks in order, polling each until satisfied or out of budget.

    Per check: Pending -> Satisfied | TimedOut. Once a check times out the
    remaining ones are skipped, since they depend on it. Nothing here
    raises on a timeout; convergence is a property of the outside world.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.clock = clock
        self.sleep = sleep

    async def run_check(self, check: Check, budget: float | None = None) -> VerificationResult:
        timeout = check.timeout if budget is None else min(check.timeout, budget)
        started = self.clock()

        if check.initial_delay:
            logger.info("Waiting %.0fs before %s check", check.initial_delay, check.name.value)
            await self.sleep(check.initial_delay)

        attempts = 0
        observed: str | None = None
        poll_started = self.clock()
        while True:
            attempts += 1
            outcome = await check.probe()
            observed = outcome.observed
            if outcome.satisfied:
                logger.info("%s check satisfied: %s", check.name.value, observed)
                return VerificationResult(
                    check=check.name,
                    status=CheckStatus.SATISFIED,
                    target=check.target,
                    observed=observed,
                    attempts=attempts,
                    elapsed_seconds=self.clock() - started,
                )

            waited = self.clock() - poll_started
            if waited + check.interval > timeout:
                break
            logger.debug(
                "%s check pending (attempt %d, %.0fs/%.0fs): %s",
                check.name.value,
                attempts,
                waited,
                timeout,
                observed,
            )
            await self.sleep(check.interval)

        logger.warning(
            "%s check timed out after %.0fs (%s). %s",
            check.name.value,
            timeout,
            observed,
            check.hint or "",
        )
        return VerificationResult(
            check=check.name,
            status=CheckStatus.TIMED_OUT,
            target=check.target,
            observed=observed,
            attempts=attempts,
            elapsed_seconds=self.clock() - started,
            hint=check.hint,
        )

    async def verify(
        self, checks: list[Check], overall_budget: float | None = None
    ) -> list[VerificationResult]:
        """
        Run `checks` in order.

        Args:
            checks: Ordered checks; later ones depend on earlier ones.
            overall_budget: Optional cap (seconds) across all checks. Checks
                not started before it runs out are skipped.

        Returns:
            One result per check.
        """
        results: list[VerificationResult] = []
        started = self.clock()
        skip_hint: str | None = None

        for check in checks:
            remaining = None
            if overall_budget is not None and skip_hint is None:
                remaining = max(overall_budget - (self.clock() - started), 0.0)
                if remaining == 0:
                    logger.warning("Verification budget of %.0fs used up", overall_budget)
                    skip_hint = "skipped because the verification budget ran out"

            if skip_hint is not None:
                results.append(
                    VerificationResult(
                        check=check.name,
                        status=CheckStatus.SKIPPED,
                        target=check.target,
                        hint=skip_hint,
                    )
                )
                continue

            result = await self.run_check(check, remaining)
            results.append(result)
            if result.status == CheckStatus.TIMED_OUT:
                skip_hint = "skipped because an earlier check timed out"

        return results
