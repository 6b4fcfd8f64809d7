"""Pydantic models for a Feynman learning session.

A session walks one concept through seven fields, in a fixed order:

    definition → mechanism → example → analogy →
    why_it_matters → misconception → integration

Each field unlocks only once its predecessor is approved. The session
is complete when every field is approved.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from feynman.context.budget import estimate_tokens

STATE_VERSION = "1.0.0"


class InvalidTransitionError(Exception):
    """Raised when a field state change breaks the unlock order."""


# =============================================================================
# Enums
# =============================================================================


class FieldName(str, Enum):
    """The seven semantic fields of a concept."""

    DEFINITION = "definition"
    MECHANISM = "mechanism"
    EXAMPLE = "example"
    ANALOGY = "analogy"
    WHY_IT_MATTERS = "why_it_matters"
    MISCONCEPTION = "misconception"
    INTEGRATION = "integration"


FIELD_ORDER: tuple[FieldName, ...] = tuple(FieldName)


def next_field(name: FieldName) -> Optional[FieldName]:
    """Get the field unlocked by approving `name`, or None for the last one."""
    index = FIELD_ORDER.index(FieldName(name))
    if index + 1 < len(FIELD_ORDER):
        return FIELD_ORDER[index + 1]
    return None


def previous_field(name: FieldName) -> Optional[FieldName]:
    """Get the field whose approval unlocks `name`."""
    index = FIELD_ORDER.index(FieldName(name))
    return FIELD_ORDER[index - 1] if index > 0 else None


class FieldStatus(str, Enum):
    """Where a field is in its validation cycle."""

    LOCKED = "locked"  # Predecessor not yet approved
    PENDING = "pending"  # Unlocked, waiting for a submission
    ANALYZING = "analyzing"  # Submission in flight
    NEEDS_REVISION = "needs_revision"
    APPROVED = "approved"


class TurnRole(str, Enum):
    """Who produced a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


# =============================================================================
# Component models
# =============================================================================


class Turn(BaseModel):
    """One role-tagged unit of conversation."""

    role: TurnRole
    content: str

    def to_message(self) -> dict[str, str]:
        """Convert to a chat-completions message dict."""
        return {"role": self.role.value, "content": self.content}


class Attempt(BaseModel):
    """A past submission for a field and the verdict it received."""

    text: str
    status: FieldStatus
    issues: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    suggestion: Optional[str] = None
    submitted_at: datetime = Field(default_factory=datetime.utcnow)


class FieldRecord(BaseModel):
    """Progress on one field."""

    value: str = ""
    status: FieldStatus = FieldStatus.LOCKED
    unlocked: bool = False
    attempts: list[Attempt] = Field(default_factory=list)


class LearningModule(BaseModel):
    """A decomposition unit of a larger concept."""

    name: str
    description: str = ""
    order: int = 1


class EmotionalState(BaseModel):
    """Informational counters for encouragement. No coupling to progress."""

    frustration_indicators: list[str] = Field(default_factory=list)
    encouragement_given: int = 0


def _initial_fields() -> dict[FieldName, FieldRecord]:
    fields = {name: FieldRecord() for name in FIELD_ORDER}
    fields[FieldName.DEFINITION] = FieldRecord(status=FieldStatus.PENDING, unlocked=True)
    return fields


# =============================================================================
# Session State
# =============================================================================


class SessionState(BaseModel):
    """The canonical state of one learning session.

    Exactly one live instance exists at a time. It is replaced, not
    destroyed, when the learner starts a new concept.
    """

    version: str = STATE_VERSION
    concept: Optional[str] = None
    modules: list[LearningModule] = Field(default_factory=list)
    current_module_index: int = Field(default=0, ge=0)
    fields: dict[FieldName, FieldRecord] = Field(default_factory=_initial_fields)
    conversation_history: list[Turn] = Field(default_factory=list)
    token_estimate: int = Field(default=0, ge=0)
    token_usage: int = Field(
        default=0, ge=0, description="Cumulative tokens reported by the model"
    )
    start_time: Optional[datetime] = None
    last_update_time: datetime = Field(default_factory=datetime.utcnow)
    emotional_state: EmotionalState = Field(default_factory=EmotionalState)

    @field_validator("fields")
    @classmethod
    def _check_field_keys(
        cls, value: dict[FieldName, FieldRecord]
    ) -> dict[FieldName, FieldRecord]:
        missing = set(FIELD_ORDER) - set(value)
        if missing:
            names = sorted(f.value for f in missing)
            raise ValueError(f"Missing field records: {names}")
        # Keep the canonical order regardless of how the mapping was built
        return {name: value[name] for name in FIELD_ORDER}

    @model_validator(mode="after")
    def _check_module_index(self) -> "SessionState":
        if self.modules and self.current_module_index >= len(self.modules):
            raise ValueError(
                f"current_module_index {self.current_module_index} out of range "
                f"for {len(self.modules)} modules"
            )
        return self

    @classmethod
    def create(cls) -> "SessionState":
        """Create a fresh state: only `definition` is unlocked."""
        return cls()

    # =========================================================================
    # Mutations
    # =========================================================================

    def touch(self) -> None:
        """Record that the state changed."""
        self.last_update_time = datetime.utcnow()

    def start_concept(
        self,
        concept: str,
        modules: Optional[list[LearningModule]] = None,
    ) -> None:
        """Begin learning a concept. Sets start_time once."""
        self.concept = concept
        self.modules = sorted(modules or [], key=lambda m: m.order)
        self.current_module_index = 0
        if self.start_time is None:
            self.start_time = datetime.utcnow()
        self.touch()

    def set_field_value(self, name: FieldName, value: str) -> None:
        """Update the learner's text for a field.

        Allowed while the field is analyzing; the in-flight verdict is
        then treated as stale by the validator.
        """
        self.fields[FieldName(name)].value = value
        self.touch()

    def mark_analyzing(self, name: FieldName) -> FieldStatus:
        """Flag a field as having a submission in flight.

        Returns:
            The status before the change, for reverting on failure

        Raises:
            InvalidTransitionError: If the field is locked
        """
        record = self.fields[FieldName(name)]
        if not record.unlocked:
            raise InvalidTransitionError(f"Field '{FieldName(name).value}' is locked")
        previous = record.status
        record.status = FieldStatus.ANALYZING
        self.touch()
        return previous

    def revert_status(self, name: FieldName, status: FieldStatus) -> None:
        """Put a field back to its pre-request status after an inconclusive request."""
        self.fields[FieldName(name)].status = status
        self.touch()

    def record_attempt(self, name: FieldName, attempt: Attempt) -> None:
        """Append an attempt and apply its verdict status.

        An approved attempt unlocks the next field.
        """
        name = FieldName(name)
        record = self.fields[name]
        if not record.unlocked:
            raise InvalidTransitionError(f"Field '{name.value}' is locked")
        record.attempts.append(attempt)
        record.status = attempt.status
        if attempt.status == FieldStatus.APPROVED:
            successor = next_field(name)
            if successor is not None:
                self.unlock_next(name)
        self.touch()

    def unlock_next(self, name: FieldName) -> Optional[FieldName]:
        """Unlock the successor of an approved field.

        Returns:
            The unlocked field, or None if `name` is the last field

        Raises:
            InvalidTransitionError: If `name` is not approved yet
        """
        name = FieldName(name)
        if self.fields[name].status != FieldStatus.APPROVED:
            raise InvalidTransitionError(
                f"Cannot unlock after '{name.value}': it is {self.fields[name].status.value}"
            )
        successor = next_field(name)
        if successor is None:
            return None
        record = self.fields[successor]
        if not record.unlocked:
            record.unlocked = True
            record.status = FieldStatus.PENDING
            self.touch()
        return successor

    def add_turn(self, role: TurnRole, content: str) -> Turn:
        """Append a turn to the history and recompute the token estimate."""
        turn = Turn(role=role, content=content)
        self.conversation_history.append(turn)
        self.recompute_token_estimate()
        self.touch()
        return turn

    def recompute_token_estimate(self) -> int:
        """Recompute the estimate fresh from the current history."""
        self.token_estimate = estimate_tokens(self.conversation_history)
        return self.token_estimate

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def approved_count(self) -> int:
        return sum(1 for r in self.fields.values() if r.status == FieldStatus.APPROVED)

    @property
    def completed_fields(self) -> list[FieldName]:
        return [n for n in FIELD_ORDER if self.fields[n].status == FieldStatus.APPROVED]

    @property
    def current_field(self) -> Optional[FieldName]:
        """The first unlocked field that is not approved yet."""
        for name in FIELD_ORDER:
            record = self.fields[name]
            if record.unlocked and record.status != FieldStatus.APPROVED:
                return name
        return None

    @property
    def current_module(self) -> Optional[LearningModule]:
        if not self.modules:
            return None
        return self.modules[self.current_module_index]

    def is_complete(self) -> bool:
        """True iff all seven fields are approved."""
        return all(r.status == FieldStatus.APPROVED for r in self.fields.values())

    def check_invariants(self) -> list[str]:
        """Check the cross-field invariants.

        Returns:
            List of violation messages (empty if consistent)
        """
        problems = []

        for name in FIELD_ORDER:
            record = self.fields[name]
            if record.status == FieldStatus.APPROVED and not record.unlocked:
                problems.append(f"{name.value}: approved but not unlocked")
            if record.status == FieldStatus.LOCKED and record.unlocked:
                problems.append(f"{name.value}: unlocked but status is locked")

        if not self.fields[FieldName.DEFINITION].unlocked:
            problems.append("definition: must always be unlocked")

        # Unlocking never reverts, so an earlier approval is enough
        for name in FIELD_ORDER[1:]:
            predecessor = previous_field(name)
            record = self.fields[predecessor]
            ever_approved = record.status == FieldStatus.APPROVED or any(
                a.status == FieldStatus.APPROVED for a in record.attempts
            )
            if self.fields[name].unlocked and not ever_approved:
                problems.append(
                    f"{name.value}: unlocked before {predecessor.value} was approved"
                )

        analyzing = [
            n.value for n in FIELD_ORDER if self.fields[n].status == FieldStatus.ANALYZING
        ]
        if len(analyzing) > 1:
            problems.append(f"more than one field analyzing: {analyzing}")

        return problems

    def export_json(self) -> str:
        """Pretty JSON dump for debugging."""
        return json.dumps(self.model_dump(mode="json"), indent=2)
