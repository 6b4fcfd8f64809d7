"""Local persistence - key/value store and session save/checkpoint slots."""

from .state_store import (
    CHECKPOINT_KEY,
    STATE_KEY,
    Checkpoint,
    RestoreResult,
    SaveResult,
    StateStore,
)
from .store import KeyValueStore

__all__ = [
    "CHECKPOINT_KEY",
    "STATE_KEY",
    "Checkpoint",
    "KeyValueStore",
    "RestoreResult",
    "SaveResult",
    "StateStore",
]
