"""Learning session coordinator.

Ties the live SessionState to validation, compression advice,
persistence and continuation codes. Every mutation auto-saves; a
failed save never interrupts the learner, it only shows up in
`last_save`.
"""

import logging
import random
from datetime import datetime
from typing import Optional

from feynman.context.compression import CompressionAdvice, ContextCompressor
from feynman.session.continuation import decode_state, encode_state
from feynman.session.emotion import (
    BehaviorTracker,
    choose_encouragement,
    detect_frustration,
    should_encourage,
)
from feynman.session.models import (
    FieldName,
    FieldStatus,
    InvalidTransitionError,
    SessionState,
    TurnRole,
)
from feynman.storage.state_store import (
    Checkpoint,
    RestoreResult,
    SaveResult,
    StateStore,
)
from feynman.validation.orchestrator import (
    OutcomeKind,
    TeachingFeedback,
    ValidationOrchestrator,
    ValidationOutcome,
)
from feynman.validation.prompts import build_framing_prompt, build_framing_reply

logger = logging.getLogger(__name__)


class LearningSession:
    """One learner's live session and everything that acts on it."""

    def __init__(
        self,
        state: SessionState,
        store: StateStore,
        compressor: Optional[ContextCompressor] = None,
        validator: Optional[ValidationOrchestrator] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the session.

        Args:
            state: The live state
            store: Save and checkpoint slots
            compressor: Compression policy (the validator's if omitted)
            validator: Needed for submissions and concept decomposition
            rng: Randomness for code prefixes and encouragement wording
        """
        self.state = state
        self.store = store
        self.validator = validator
        if compressor is None:
            compressor = validator.compressor if validator else ContextCompressor()
        self.compressor = compressor
        self.tracker = BehaviorTracker()
        self.last_save: Optional[SaveResult] = None
        self.last_encouraged_at: Optional[datetime] = None
        self.restore_result: Optional[RestoreResult] = None
        self._rng = rng or random.Random()

    @classmethod
    def open(
        cls,
        store: StateStore,
        compressor: Optional[ContextCompressor] = None,
        validator: Optional[ValidationOrchestrator] = None,
        rng: Optional[random.Random] = None,
    ) -> "LearningSession":
        """Restore the saved session, or start a fresh one."""
        result = store.restore()
        if result.error:
            logger.warning(f"Could not restore saved session, starting fresh: {result.error}")
        state = result.state or SessionState.create()

        # A request cannot survive the process that sent it
        for name, record in state.fields.items():
            if record.status == FieldStatus.ANALYZING:
                recovered = record.attempts[-1].status if record.attempts else FieldStatus.PENDING
                logger.info(f"{name.value} was left analyzing, reverting to {recovered.value}")
                state.revert_status(name, recovered)

        session = cls(state, store, compressor=compressor, validator=validator, rng=rng)
        session.restore_result = result
        return session

    @property
    def was_reset(self) -> bool:
        """True if the saved session was from another version and was discarded."""
        return bool(self.restore_result and self.restore_result.reset)

    def save(self) -> SaveResult:
        self.last_save = self.store.save(self.state)
        return self.last_save

    def _replace_state(self, state: SessionState) -> None:
        self.state = state
        self.tracker.clear()
        self.last_encouraged_at = None
        self.save()

    # =========================================================================
    # Concept lifecycle
    # =========================================================================

    async def start_concept(self, concept: str, decompose: bool = True) -> SessionState:
        """Replace the live state with a fresh session for `concept`.

        Args:
            concept: What the learner wants to explain
            decompose: Research the concept and ask the model whether to
                split it into modules

        Returns:
            The new state
        """
        concept = concept.strip()
        if not concept:
            raise ValueError("Concept must not be empty")

        modules = []
        research = None
        if decompose and self.validator is not None:
            research = await self.validator.research_concept(concept)
            modules = await self.validator.analyze_concept(
                concept, research.notes if research else None
            )

        state = SessionState.create()
        state.start_concept(concept, modules)
        if research is not None:
            state.token_usage += research.token_usage
        module_names = [m.name for m in state.modules] if len(state.modules) > 1 else []
        state.add_turn(TurnRole.USER, build_framing_prompt(concept, module_names))
        state.add_turn(TurnRole.ASSISTANT, build_framing_reply(FieldName.DEFINITION))

        logger.info(f"Started concept '{concept}' with {len(state.modules)} module(s)")
        self._replace_state(state)
        return state

    def new_concept(self) -> SessionState:
        """Discard progress and return to an empty session."""
        self._replace_state(SessionState.create())
        return self.state

    # =========================================================================
    # Fields
    # =========================================================================

    def edit_field(self, field: FieldName, text: str) -> None:
        """Update a field's text. Allowed while the field is analyzing.

        Raises:
            InvalidTransitionError: If the field is still locked
        """
        field = FieldName(field)
        record = self.state.fields[field]
        if not record.unlocked:
            raise InvalidTransitionError(f"Field '{field.value}' is locked")

        delta = len(text) - len(record.value)
        if not text:
            self.tracker.record_clear()
        elif delta < 0:
            self.tracker.record_deletion(-delta)
        elif delta > 0:
            self.tracker.record_typing(delta)

        self.state.set_field_value(field, text)
        self.save()

    async def submit(self, field: FieldName) -> ValidationOutcome:
        """Validate a field's current text.

        Writes a checkpoint when the context budget reaches the emergency
        tier, and saves whatever happened.
        """
        if self.validator is None:
            raise RuntimeError("No validator configured; submissions need a model")

        field = FieldName(field)
        record = self.state.fields[field]
        previous = [a.text for a in record.attempts]

        signal = detect_frustration(self.tracker.events, record.value, previous)
        self.state.emotional_state.frustration_indicators = signal.active_indicators

        encouragement = None
        if should_encourage(signal, self.last_encouraged_at):
            encouragement = choose_encouragement(signal.level, field, len(previous), self._rng)

        self.tracker.record_submit(record.value)
        outcome = await self.validator.validate_field(
            self.state, field, encouragement=encouragement
        )
        if outcome.kind == OutcomeKind.REJECTED:
            return outcome

        if encouragement:
            self.state.emotional_state.encouragement_given += 1
            self.last_encouraged_at = datetime.utcnow()

        if outcome.final.must_checkpoint or outcome.must_checkpoint:
            self.checkpoint()

        self.save()
        return outcome

    async def ask_tutor(self, field: FieldName) -> Optional[TeachingFeedback]:
        """Get guidance on a field's current draft without submitting it.

        Returns None if the tutor could not be reached.

        Raises:
            InvalidTransitionError: If the field is still locked
            ValueError: If the field is empty
        """
        if self.validator is None:
            raise RuntimeError("No validator configured; guidance needs a model")

        feedback = await self.validator.teach_field(self.state, FieldName(field))
        if feedback is not None:
            if feedback.must_checkpoint:
                self.checkpoint()
            self.save()
        return feedback

    # =========================================================================
    # Budget, codes, checkpoints
    # =========================================================================

    def advice(self) -> CompressionAdvice:
        return self.compressor.advise_level(self.state.token_estimate)

    def continuation_code(self) -> str:
        return encode_state(self.state, self._rng)

    def resume_from_code(self, code: str) -> SessionState:
        """Replace the live state with one decoded from a continuation code.

        Raises:
            ContinuationCodeError: If the code is invalid; the live state
                is left untouched
        """
        state = decode_state(code)
        logger.info(f"Resumed '{state.concept}' from continuation code")
        self._replace_state(state)
        return state

    def checkpoint(self) -> Optional[Checkpoint]:
        return self.store.checkpoint(self.state)

    def rollback(self) -> bool:
        """Replace the live state with the checkpoint, if there is one."""
        state = self.store.restore_checkpoint()
        if state is None:
            return False
        logger.info(f"Rolled back to checkpoint ({state.approved_count} fields approved)")
        self._replace_state(state)
        return True
