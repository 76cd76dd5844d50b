"""Cloudflare infrastructure modules."""

from src.cloudflare import dns, logs, workers

__all__ = ["dns", "logs", "workers"]
