"""Authoritative state store - one versioned blob per deployment plus an advisory lock."""

import json
import logging
import os
import socket
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from outpost_schemas import (
    Direction,
    LifecycleState,
    ResourceNode,
    StepOutcome,
    StepResult,
    settled_state,
)
from pydantic import BaseModel, Field, ValidationError

from apps.deploy.exceptions import LockHeldError, StateCorruptedError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class StateDocument(BaseModel):
    """On-disk format of the state blob."""

    version: int = STATE_VERSION
    serial: int = 0
    deployment: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    nodes: list[ResourceNode] = Field(default_factory=list)


@dataclass(frozen=True)
class Snapshot:
    """Immutable record of a pre-destroy backup."""

    path: Path
    taken_at: datetime
    empty: bool
    serial: int | None


class FileStateStore:
    """
    State store on the local filesystem.

    The store is a handle passed to whoever needs it; there is no module
    level instance. Mutations happen under `lock()`, which is released on
    every exit path including errors and cancellation.
    """

    def __init__(self, root: str | Path, deployment: str) -> None:
        """
        Args:
            root: Directory holding state, lock and backups.
            deployment: Deployment identifier (`<name>-<environment>`).
        """
        self.root = Path(root)
        self.deployment = deployment
        self.state_path = self.root / f"{deployment}.json"
        self.lock_path = self.root / f"{deployment}.lock"
        self.backup_dir = self.root / "backups"

    # =========================================================================
    # Lock
    # =========================================================================

    @contextmanager
    def lock(self, operation: str) -> Iterator[None]:
        """
        Hold the advisory lock for the duration of the block.

        Raises:
            LockHeldError: If another invocation holds the lock.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        info = {
            "operation": operation,
            "owner": f"{socket.gethostname()}:{os.getpid()}",
            "acquired_at": datetime.now(UTC).isoformat(),
        }
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as e:
            holder = self.lock_info() or {}
            raise LockHeldError(
                f"state for {self.deployment} is locked by {holder.get('owner', 'unknown')} "
                f"({holder.get('operation', '?')} since {holder.get('acquired_at', '?')}); "
                "run `outpost unlock` if that process is gone",
                owner=holder.get("owner"),
            ) from e

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(info, f)
        logger.debug("Acquired state lock for %s", self.deployment)
        try:
            yield
        finally:
            self.lock_path.unlink(missing_ok=True)
            logger.debug("Released state lock for %s", self.deployment)

    def lock_info(self) -> dict[str, str] | None:
        try:
            return json.loads(self.lock_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError:
            return {"owner": "unreadable lock file"}

    def force_unlock(self) -> bool:
        """Remove a stale lock. Returns whether there was one."""
        if not self.lock_path.exists():
            return False
        logger.warning("Force-removing lock for %s: %s", self.deployment, self.lock_info())
        self.lock_path.unlink(missing_ok=True)
        return True

    # =========================================================================
    # State blob
    # =========================================================================

    def read(self) -> StateDocument | None:
        """
        Load the state blob.

        Returns:
            The document, or None when no state exists.

        Raises:
            StateCorruptedError: If the blob exists but cannot be parsed.
        """
        try:
            raw = self.state_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            document = StateDocument.model_validate_json(raw)
        except ValidationError as e:
            raise StateCorruptedError(f"state for {self.deployment} is unreadable: {e}") from e
        if document.version > STATE_VERSION:
            raise StateCorruptedError(
                f"state version {document.version} is newer than supported ({STATE_VERSION})"
            )
        return document

    def write(self, nodes: list[ResourceNode]) -> StateDocument:
        """Replace the recorded nodes atomically, bumping the serial."""
        try:
            previous = self.read()
        except StateCorruptedError:
            previous = None
        document = StateDocument(
            deployment=self.deployment,
            serial=(previous.serial + 1) if previous else 1,
            nodes=nodes,
        )
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = self.state_path.with_suffix(".json.tmp")
        tmp.write_text(document.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.state_path)
        return document

    def record(self, result: StepResult, direction: Direction) -> None:
        """
        Fold one executed step into the state.

        Used as the executor's per-step callback (see `recorder`) so an
        interrupted run leaves state matching what actually happened. A
        failed step keeps its node in ERROR, since the object may exist.
        """
        if result.outcome == StepOutcome.BLOCKED:
            return
        node = result.step.node
        state = settled_state(direction, result.outcome, node.lifecycle_state)
        if state == LifecycleState.ABSENT:
            self._replace(node, None)
        else:
            settled = node.model_copy(
                update={
                    "lifecycle_state": state,
                    "provider_id": result.provider_id or node.provider_id,
                }
            )
            self._replace(node, settled)

    def transition(self, node: ResourceNode) -> None:
        """Record a node whose step is in flight (PROVISIONING or DESTROYING)."""
        self._replace(node, node)

    def _replace(self, key_node: ResourceNode, node: ResourceNode | None) -> None:
        try:
            current = self.read()
        except StateCorruptedError:
            current = None
        nodes = {(n.kind, n.logical_name): n for n in (current.nodes if current else [])}
        key = (key_node.kind, key_node.logical_name)
        if node is None:
            nodes.pop(key, None)
        else:
            # user_data can be large and is not needed to delete.
            attributes = {k: v for k, v in node.attributes.items() if k != "user_data"}
            update: dict[str, Any] = {"attributes": attributes}
            if node.provider_id is None and key in nodes:
                update["provider_id"] = nodes[key].provider_id
            nodes[key] = node.model_copy(update=update)
        self.write(list(nodes.values()))

    def recorder(self, direction: Direction) -> Callable[[StepResult], None]:
        return lambda result: self.record(result, direction)

    # =========================================================================
    # Backup & purge
    # =========================================================================

    def snapshot(self) -> Snapshot:
        """
        Back up the current state before destructive work.

        Always writes a backup file, even with nothing to back up; an empty
        snapshot is recorded as such rather than skipped. Unreadable state
        is copied byte-for-byte.
        """
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        taken_at = datetime.now(UTC)
        path = self.backup_dir / f"{self.deployment}-{taken_at:%Y%m%dT%H%M%S%fZ}.json"

        serial: int | None = None
        if self.state_path.exists():
            raw = self.state_path.read_bytes()
            path.write_bytes(raw)
            empty = not raw.strip()
            try:
                document = self.read()
                serial = document.serial if document else None
                empty = empty or (document is not None and not document.nodes)
            except StateCorruptedError:
                logger.warning("Backing up unreadable state for %s as-is", self.deployment)
        else:
            path.write_text(
                json.dumps({"deployment": self.deployment, "empty": True}), encoding="utf-8"
            )
            empty = True

        logger.info(
            "State snapshot for %s written to %s%s",
            self.deployment,
            path,
            " (empty)" if empty else "",
        )
        return Snapshot(path=path, taken_at=taken_at, empty=empty, serial=serial)

    def purge(self) -> None:
        """Remove state after a clean teardown. Backups are kept."""
        for path in (self.state_path, self.state_path.with_suffix(".json.tmp")):
            path.unlink(missing_ok=True)
        logger.info("Purged state for %s", self.deployment)
