"""
Pytest configuration for deploy engine tests.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml
from outpost_schemas import DeploymentConfig, DNSZone

from apps.deploy.config import validate
from apps.deploy.lifecycle.retry import RetryPolicy
from apps.deploy.providers import MockProvider
from apps.deploy.state import FileStateStore


async def _no_sleep(_: float) -> None:
    return None


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


BASE_DOCUMENT: dict[str, Any] = {
    "deployment": {"name": "shop", "environment": "test", "location": "fsn1"},
    "machine": {"ssh_public_key": "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITest operator@laptop"},
}


@pytest.fixture
def document() -> Callable[..., dict[str, Any]]:
    """Build a raw settings document from the IP-only base plus overrides."""

    def build(**overrides: Any) -> dict[str, Any]:
        return _merge(BASE_DOCUMENT, overrides)

    return build


@pytest.fixture
def make_config(document) -> Callable[..., DeploymentConfig]:
    """Build a validated DeploymentConfig from overrides."""

    def build(**overrides: Any) -> DeploymentConfig:
        return validate(document(**overrides))

    return build


@pytest.fixture
def edge_proxy_overrides() -> dict[str, Any]:
    """Edge-proxied record under a zone two labels up."""
    return {
        "dns": {"enabled": True, "domain": "app.team.example.com"},
        "tls": {"strategy": "edge-proxy"},
    }


@pytest.fixture
def zones() -> list[DNSZone]:
    """Zones the DNS account manages."""
    return [
        DNSZone(id="zone-example", name="example.com"),
        DNSZone(id="zone-other", name="other.org"),
    ]


@pytest.fixture
def provider(zones) -> MockProvider:
    """In-memory provider with the standard zones."""
    return MockProvider(zones=zones)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy that does not actually wait."""
    return RetryPolicy(max_attempts=3, delays=(5.0, 15.0, 30.0), sleep=_no_sleep)


@pytest.fixture
def store(tmp_path: Path) -> FileStateStore:
    """State store rooted in a temporary directory."""
    return FileStateStore(tmp_path / "state", "shop-test")


@pytest.fixture
def write_config(tmp_path: Path, document) -> Callable[..., Path]:
    """Write a settings document to disk and return its path."""

    def write(name: str = "outpost.yaml", **overrides: Any) -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(document(**overrides)), encoding="utf-8")
        return path

    return write
