"""Local save/restore of session state.

Two independent slots live in the key/value store:

- the save slot, written on every auto-save
- the checkpoint slot, written only at deliberate rollback points
  (for example when the context budget reaches the emergency tier)

Both hold the same compacted projection: modules and full field
records, with conversation history capped to the most recent turns.
Nothing here raises to the caller; failures come back as result values.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from feynman.session.models import STATE_VERSION, SessionState
from feynman.storage.store import KeyValueStore

logger = logging.getLogger(__name__)

STATE_KEY = "feynman_state"
CHECKPOINT_KEY = "feynman_checkpoint"
DEFAULT_HISTORY_LIMIT = 10


@dataclass
class SaveResult:
    """Outcome of a save. `ok=False` means progress lives only in memory."""

    ok: bool
    error: Optional[str] = None


@dataclass
class RestoreResult:
    """Outcome of a restore.

    Attributes:
        state: The restored state, or None if nothing usable was stored
        reset: True if a stored record had a different version and a
            fresh state was returned instead
        error: Why a stored record could not be read, if it could not
    """

    state: Optional[SessionState] = None
    reset: bool = False
    error: Optional[str] = None


class Checkpoint(BaseModel):
    """A deliberate rollback point."""

    timestamp: datetime = Field(default_factory=datetime.utcnow)
    token_estimate: int = 0
    state: dict[str, Any]


class StateStore:
    """Saves and restores SessionState through a KeyValueStore."""

    def __init__(
        self,
        store: KeyValueStore,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.store = store
        self.history_limit = history_limit

    def compact(self, state: SessionState) -> dict[str, Any]:
        """Project state for storage: history capped, everything else kept."""
        data = state.model_dump(mode="json")
        history = data["conversation_history"]
        data["conversation_history"] = (
            history[-self.history_limit:] if self.history_limit > 0 else []
        )
        return data

    def save(self, state: SessionState) -> SaveResult:
        """Write the compacted state to the save slot."""
        try:
            self.store.set(STATE_KEY, json.dumps(self.compact(state)))
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to save state: {e}")
            return SaveResult(ok=False, error=str(e))
        return SaveResult(ok=True)

    def restore(self) -> RestoreResult:
        """Read the save slot back.

        A record written by a different version is not migrated: a fresh
        state is returned with `reset=True`.
        """
        try:
            stored = self.store.get(STATE_KEY)
        except sqlite3.Error as e:
            logger.error(f"Failed to read saved state: {e}")
            return RestoreResult(error=str(e))

        if stored is None:
            return RestoreResult()

        try:
            data = json.loads(stored)
        except ValueError as e:
            logger.error(f"Saved state is not valid JSON: {e}")
            return RestoreResult(error=str(e))

        version = data.get("version") if isinstance(data, dict) else None
        if version != STATE_VERSION:
            logger.warning(
                f"State version mismatch (stored={version}, current={STATE_VERSION}), "
                "creating fresh state"
            )
            return RestoreResult(state=SessionState.create(), reset=True)

        try:
            return RestoreResult(state=SessionState.model_validate(data))
        except ValidationError as e:
            logger.error(f"Saved state failed validation: {e}")
            return RestoreResult(error=str(e))

    def checkpoint(self, state: SessionState) -> Optional[Checkpoint]:
        """Write a rollback point to the checkpoint slot.

        Returns:
            The checkpoint written, or None if writing failed
        """
        checkpoint = Checkpoint(
            token_estimate=state.token_estimate,
            state=self.compact(state),
        )
        try:
            self.store.set(CHECKPOINT_KEY, checkpoint.model_dump_json())
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Failed to create checkpoint: {e}")
            return None

        logger.info(f"Checkpoint created at {state.token_estimate} tokens")
        return checkpoint

    def restore_checkpoint(self) -> Optional[SessionState]:
        """Read the checkpoint slot back, or None if absent or unreadable."""
        try:
            stored = self.store.get(CHECKPOINT_KEY)
            if stored is None:
                return None
            checkpoint = Checkpoint.model_validate_json(stored)
            return SessionState.model_validate(checkpoint.state)
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Failed to restore checkpoint: {e}")
            return None

    def clear(self) -> SaveResult:
        """Remove both slots."""
        try:
            self.store.delete(STATE_KEY)
            self.store.delete(CHECKPOINT_KEY)
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Failed to clear saved state: {e}")
            return SaveResult(ok=False, error=str(e))
        return SaveResult(ok=True)
