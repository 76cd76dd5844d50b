"""State store, backups and discovery."""

from apps.deploy.state.discovery import DiscoveryResult, discover
from apps.deploy.state.store import FileStateStore, Snapshot, StateDocument

__all__ = ["DiscoveryResult", "FileStateStore", "Snapshot", "StateDocument", "discover"]
