"""Settings document model and validator."""

from apps.deploy.config.loader import load_config, load_document, validate
from apps.deploy.config.rules import RULES, check_rules

__all__ = ["RULES", "check_rules", "load_config", "load_document", "validate"]
