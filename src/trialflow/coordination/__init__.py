"""Coordination layer: checkpoints and active conditions."""

from .checkpoint import (
    CheckpointRemote,
    CheckpointStorage,
    CheckpointStore,
    FileCheckpointStorage,
    InMemoryCheckpointStorage,
    checkpoint_key,
)
from .conditions import ConditionCache, ConditionChange, ConditionSink

__all__ = [
    "CheckpointRemote",
    "CheckpointStorage",
    "CheckpointStore",
    "ConditionCache",
    "ConditionChange",
    "ConditionSink",
    "FileCheckpointStorage",
    "InMemoryCheckpointStorage",
    "checkpoint_key",
]
