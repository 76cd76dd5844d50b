"""Post-provision convergence checks."""

from apps.deploy.verify.checks import Budgets, Check, ProbeOutcome, build_checks
from apps.deploy.verify.verifier import ConvergenceVerifier

__all__ = [
    "Budgets",
    "Check",
    "ConvergenceVerifier",
    "ProbeOutcome",
    "build_checks",
]
