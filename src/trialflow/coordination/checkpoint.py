"""Participant checkpoints for resuming interrupted sessions.

A checkpoint records the last completed position of a participant in the
flattened trial sequence. The experiment server is authoritative; a local
store keeps the position until the server has acknowledged it.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ..control.retry import LOAD_RETRY, SAVE_RETRY, RetryConfig, RetryStrategy, SleepFn
from ..exceptions import CheckpointError, GatewayError
from ..types import Checkpoint

logger = logging.getLogger(__name__)


def checkpoint_key(participant_id: str, experiment_id: str) -> str:
    """Storage key for a (participant, experiment) pair."""
    return f"trialflow_checkpoint_{experiment_id}_{participant_id}"


# =============================================================================
# Local storage
# =============================================================================


class CheckpointStorage(ABC):
    """Abstract base class for local checkpoint backends."""

    @abstractmethod
    def save(self, checkpoint: Checkpoint) -> None:
        """Save (overwrite) the checkpoint for its pair."""
        pass

    @abstractmethod
    def load(self, participant_id: str, experiment_id: str) -> Checkpoint | None:
        pass

    @abstractmethod
    def delete(self, participant_id: str, experiment_id: str) -> bool:
        pass

    def exists(self, participant_id: str, experiment_id: str) -> bool:
        return self.load(participant_id, experiment_id) is not None


class InMemoryCheckpointStorage(CheckpointStorage):
    """In-memory storage for tests and short-lived sessions."""

    def __init__(self):
        self._checkpoints: dict[str, Checkpoint] = {}
        self._lock = threading.RLock()

    def save(self, checkpoint: Checkpoint) -> None:
        with self._lock:
            self._checkpoints[checkpoint_key(checkpoint.participant_id, checkpoint.experiment_id)] = checkpoint

    def load(self, participant_id: str, experiment_id: str) -> Checkpoint | None:
        with self._lock:
            return self._checkpoints.get(checkpoint_key(participant_id, experiment_id))

    def delete(self, participant_id: str, experiment_id: str) -> bool:
        with self._lock:
            return self._checkpoints.pop(checkpoint_key(participant_id, experiment_id), None) is not None


class FileCheckpointStorage(CheckpointStorage):
    """One JSON file per (participant, experiment) pair."""

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, participant_id: str, experiment_id: str) -> Path:
        key = checkpoint_key(participant_id, experiment_id)
        safe_key = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        return self._base_dir / f"{safe_key}.json"

    def save(self, checkpoint: Checkpoint) -> None:
        with self._lock:
            path = self._path(checkpoint.participant_id, checkpoint.experiment_id)
            temp_path = path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                json.dump(checkpoint.model_dump(mode="json"), f, indent=2)
            temp_path.replace(path)

    def load(self, participant_id: str, experiment_id: str) -> Checkpoint | None:
        with self._lock:
            path = self._path(participant_id, experiment_id)
            if not path.exists():
                return None
            try:
                with open(path) as f:
                    return Checkpoint.model_validate(json.load(f))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                raise CheckpointError(participant_id, experiment_id, f"unreadable file {path}: {e}") from e

    def delete(self, participant_id: str, experiment_id: str) -> bool:
        with self._lock:
            path = self._path(participant_id, experiment_id)
            if path.exists():
                path.unlink()
                return True
            return False


# =============================================================================
# Remote + local store
# =============================================================================


class CheckpointRemote(Protocol):
    """Remote checkpoint endpoint, e.g. ExperimentClient."""

    async def get_checkpoint(self, participant_id: str, experiment_id: str) -> int | None: ...

    async def put_checkpoint(self, participant_id: str, experiment_id: str, index: int) -> None: ...


class CheckpointStore:
    """Saves and loads checkpoints, remote first with a local fallback.

    Example:
        store = CheckpointStore(remote=client, local=FileCheckpointStorage("./checkpoints"))
        await store.save("p-1", "exp-1", 2)
        index = await store.load("p-1", "exp-1", sequence_length=10)
    """

    def __init__(
        self,
        remote: CheckpointRemote | None = None,
        local: CheckpointStorage | None = None,
        save_retry: RetryConfig | None = None,
        load_retry: RetryConfig | None = None,
        sleep_fn: SleepFn | None = None,
    ):
        """Initialize the store.

        Args:
            remote: Remote endpoint. Without one, only the local store is used.
            local: Local fallback. Defaults to in-memory.
            save_retry: Retry policy for remote saves (3 attempts by default).
            load_retry: Retry policy for remote loads (2 attempts by default).
            sleep_fn: Sleep used between retries.
        """
        self._remote = remote
        self._local = local or InMemoryCheckpointStorage()
        self._save_strategy = RetryStrategy(save_retry or SAVE_RETRY, sleep_fn=sleep_fn)
        self._load_strategy = RetryStrategy(load_retry or LOAD_RETRY, sleep_fn=sleep_fn)

    @property
    def local(self) -> CheckpointStorage:
        return self._local

    @property
    def has_remote(self) -> bool:
        return self._remote is not None

    def save_local(self, participant_id: str, experiment_id: str, index: int) -> bool:
        """Best-effort synchronous write to the local store."""
        try:
            self._local.save(
                Checkpoint(participant_id=participant_id, experiment_id=experiment_id, completed_index=index)
            )
            logger.debug(f"Local checkpoint saved at index {index}")
            return True
        except (OSError, ValidationError, CheckpointError) as e:
            logger.warning(f"Failed to save local checkpoint: {e}")
            return False

    def _load_local(self, participant_id: str, experiment_id: str) -> int | None:
        try:
            checkpoint = self._local.load(participant_id, experiment_id)
        except CheckpointError as e:
            logger.warning(str(e))
            return None
        return checkpoint.completed_index if checkpoint else None

    def _clear_local(self, participant_id: str, experiment_id: str) -> None:
        try:
            self._local.delete(participant_id, experiment_id)
        except OSError as e:
            logger.warning(f"Failed to clear local checkpoint: {e}")

    async def sync_remote(self, participant_id: str, experiment_id: str, index: int) -> bool:
        """Push an index to the remote store, clearing the local copy on success."""
        if self._remote is None:
            return False
        try:
            await self._save_strategy.execute(self._remote.put_checkpoint, participant_id, experiment_id, index)
        except GatewayError as e:
            logger.warning(f"Remote checkpoint save failed, keeping local checkpoint: {e}")
            return False
        self._clear_local(participant_id, experiment_id)
        return True

    async def save(self, participant_id: str, experiment_id: str, index: int) -> bool:
        """Persist a completed index.

        Writes locally first, then remotely with retries. On remote success
        the local entry is cleared.

        Returns:
            True if the index is stored somewhere.
        """
        saved_locally = self.save_local(participant_id, experiment_id, index)
        if self._remote is None:
            return saved_locally
        synced = await self.sync_remote(participant_id, experiment_id, index)
        return synced or saved_locally

    async def load(self, participant_id: str, experiment_id: str, sequence_length: int) -> int | None:
        """Load the last completed index, remote first.

        Args:
            participant_id: Participant identifier.
            experiment_id: Experiment identifier.
            sequence_length: Length of the current flattened sequence.

        Returns:
            The index, or None if absent or outside ``[0, sequence_length)``.
        """
        index: int | None = None
        if self._remote is not None:
            try:
                index = await self._load_strategy.execute(self._remote.get_checkpoint, participant_id, experiment_id)
            except GatewayError as e:
                logger.warning(f"Remote checkpoint unavailable, trying local: {e}")
            if index is None:
                logger.debug("No remote checkpoint found")

        if index is None:
            index = self._load_local(participant_id, experiment_id)

        if index is None:
            return None
        if index < 0 or index >= sequence_length:
            logger.warning(
                f"Checkpoint index {index} is outside the sequence of {sequence_length} trials; ignoring"
            )
            return None
        return index
