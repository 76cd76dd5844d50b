"""Outpost CI Pipeline - Dagger Module.

Pre-release validation for the deploy engine: lint, type check, unit
tests and a validation pass over the bundled example configurations.

Usage:
    dagger call check --source=.
    dagger call quality --source=.
    dagger call configs --source=.
"""

from .main import OutpostPipeline as OutpostPipeline
