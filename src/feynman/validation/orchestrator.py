"""Field validation against the model.

The orchestrator takes a submission for one field, builds compressed
context, asks the model for a verdict and applies it to the session.
Every failure path ends in a defined state plus an outcome value:

- field locked or already analyzing: rejected, nothing changes
- transport failure after retries: status reverted, text kept
- unreadable or inconclusive verdict: status reverted, no attempt recorded
- verdict applied: attempt appended, successor unlocked on approval

The `analyzing` status is the only guard against double submission.
Edits are still allowed while a request is in flight; a verdict for
text that has since changed is applied and then the current text is
validated again.

Two requests share the same gateway without judging anything: concept
research, whose notes feed module analysis, and free-form guidance on
a draft, which only adds to history.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from feynman.context.compression import CompressionLevel, ContextCompressor
from feynman.session.models import (
    Attempt,
    FieldName,
    FieldStatus,
    InvalidTransitionError,
    LearningModule,
    SessionState,
    Turn,
    TurnRole,
)
from feynman.validation.gateway import ModelGateway, ModelRequestError
from feynman.validation.prompts import (
    build_analysis_prompt,
    build_attempt_prompt,
    build_research_prompt,
    build_teaching_prompt,
    get_analysis_system_prompt,
    get_research_system_prompt,
    get_teaching_system_prompt,
    get_validation_system_prompt,
    render_verdict_turn,
)
from feynman.validation.verdict import (
    MalformedVerdictError,
    Verdict,
    extract_json,
    parse_verdict,
)

logger = logging.getLogger(__name__)

RETRY_MESSAGE = "I couldn't make sense of the feedback this time. Please try submitting again."
FAILURE_MESSAGE = "The tutor could not be reached. Your explanation is saved; try again in a moment."
ANALYSIS_MAX_TOKENS = 1024
RESEARCH_MAX_TOKENS = 2048


class OutcomeKind(str, Enum):
    """How a validation request ended."""

    APPLIED = "applied"
    INCONCLUSIVE = "inconclusive"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass
class ValidationOutcome:
    """Result of one validation request."""

    kind: OutcomeKind
    field: FieldName
    status: FieldStatus
    message: str = ""
    verdict: Optional[Verdict] = None
    compression_level: CompressionLevel = CompressionLevel.NORMAL
    must_checkpoint: bool = False
    stale: bool = False
    followup: Optional["ValidationOutcome"] = None

    @property
    def final(self) -> "ValidationOutcome":
        """The last outcome in a chain of stale re-validations."""
        outcome = self
        while outcome.followup is not None:
            outcome = outcome.followup
        return outcome


@dataclass
class ConceptResearch:
    """Teaching notes gathered before a concept is split into modules."""

    concept: str
    notes: str
    token_usage: int = 0


@dataclass
class TeachingFeedback:
    """Free-form tutor guidance on a draft. Carries no verdict."""

    field: FieldName
    content: str
    token_usage: int = 0
    compression_level: CompressionLevel = CompressionLevel.NORMAL
    must_checkpoint: bool = False


class ConceptAnalysis(BaseModel):
    """Model's answer to whether a concept needs modules."""

    model_config = ConfigDict(populate_by_name=True)

    needs_modules: bool = Field(default=False, alias="needsModules")
    modules: list[LearningModule] = Field(default_factory=list)
    rationale: str = ""


class ValidationOrchestrator:
    """Validates field submissions and applies verdicts to a session."""

    def __init__(
        self,
        gateway: ModelGateway,
        compressor: ContextCompressor,
        revalidate_stale: bool = True,
    ):
        """Initialize the orchestrator.

        Args:
            gateway: Outbound model requests
            compressor: Decides what context to send
            revalidate_stale: Re-validate when text changed mid-request
        """
        self.gateway = gateway
        self.compressor = compressor
        self.revalidate_stale = revalidate_stale

    async def validate_field(
        self,
        state: SessionState,
        field: FieldName,
        text: Optional[str] = None,
        encouragement: Optional[str] = None,
    ) -> ValidationOutcome:
        """Validate one submission and apply the verdict.

        Args:
            state: The live session (mutated in place)
            field: Field being submitted
            text: Submission text (the field's current value if None)
            encouragement: Optional opener to ask the model to use

        Returns:
            ValidationOutcome describing what happened
        """
        field = FieldName(field)
        record = state.fields[field]

        if not record.unlocked:
            return self._rejected(field, record.status, f"{field.value} is still locked")
        if record.status == FieldStatus.ANALYZING:
            return self._rejected(
                field, record.status, f"{field.value} is already being analyzed"
            )

        text = record.value if text is None else text
        if not text.strip():
            return self._rejected(field, record.status, "Write an explanation before submitting")

        state.set_field_value(field, text)
        previous_status = state.mark_analyzing(field)

        prompt = build_attempt_prompt(
            field,
            state.concept,
            text,
            attempt_number=len(record.attempts) + 1,
            encouragement=encouragement,
        )
        prompt_turn = Turn(role=TurnRole.USER, content=prompt)
        context = self.compressor.build_context(state.conversation_history, prompt_turn)

        try:
            reply = await self.gateway.request(
                get_validation_system_prompt(field, state.concept),
                context.turns,
            )
        except Exception as e:
            if isinstance(e, ModelRequestError):
                logger.error(f"Validation of {field.value} failed: {e}")
            else:
                logger.exception(f"Unexpected error validating {field.value}: {e}")
            state.revert_status(field, previous_status)
            return ValidationOutcome(
                kind=OutcomeKind.FAILED,
                field=field,
                status=previous_status,
                message=FAILURE_MESSAGE,
                compression_level=context.level,
                must_checkpoint=context.must_checkpoint,
            )

        state.token_usage += reply.token_usage

        try:
            verdict = parse_verdict(reply.content, reply.token_usage)
        except MalformedVerdictError:
            verdict = None

        if verdict is None or not verdict.is_conclusive:
            logger.warning(f"Inconclusive verdict for {field.value}, reverting to {previous_status.value}")
            state.revert_status(field, previous_status)
            return ValidationOutcome(
                kind=OutcomeKind.INCONCLUSIVE,
                field=field,
                status=previous_status,
                message=RETRY_MESSAGE,
                verdict=verdict,
                compression_level=context.level,
                must_checkpoint=context.must_checkpoint,
            )

        status = FieldStatus(verdict.status.value)
        state.record_attempt(
            field,
            Attempt(
                text=text,
                status=status,
                issues=verdict.issues,
                strengths=verdict.strengths,
                suggestion=verdict.suggestion,
            ),
        )
        state.add_turn(TurnRole.USER, prompt)
        state.add_turn(TurnRole.ASSISTANT, render_verdict_turn(field, verdict))

        advice = self.compressor.advise_level(state.token_estimate)
        outcome = ValidationOutcome(
            kind=OutcomeKind.APPLIED,
            field=field,
            status=status,
            message=verdict.suggestion or "",
            verdict=verdict,
            compression_level=advice.level,
            must_checkpoint=advice.must_checkpoint,
        )
        logger.info(f"Verdict for {field.value}: {status.value}")

        if state.fields[field].value != text:
            outcome.stale = True
            logger.info(f"{field.value} changed while analyzing; verdict is stale")
            if self.revalidate_stale:
                outcome.followup = await self.validate_field(state, field)

        return outcome

    async def research_concept(self, concept: str) -> Optional[ConceptResearch]:
        """Ask the model for teaching notes on a concept.

        Returns None when the model cannot be reached; module analysis
        then runs without notes.
        """
        try:
            reply = await self.gateway.request(
                get_research_system_prompt(),
                [Turn(role=TurnRole.USER, content=build_research_prompt(concept))],
                max_tokens=RESEARCH_MAX_TOKENS,
            )
        except ModelRequestError as e:
            logger.warning(f"Research on '{concept}' failed, continuing without notes: {e}")
            return None

        notes = reply.content.strip()
        if not notes:
            return None
        return ConceptResearch(concept=concept, notes=notes, token_usage=reply.token_usage)

    async def analyze_concept(
        self, concept: str, research: Optional[str] = None
    ) -> list[LearningModule]:
        """Ask the model whether a concept should be split into modules.

        Falls back to a single module named after the concept on any failure.
        """
        fallback = [LearningModule(name=concept, description="Complete concept", order=1)]
        try:
            reply = await self.gateway.request(
                get_analysis_system_prompt(),
                [Turn(role=TurnRole.USER, content=build_analysis_prompt(concept, research))],
                max_tokens=ANALYSIS_MAX_TOKENS,
            )
            analysis = ConceptAnalysis.model_validate(json.loads(extract_json(reply.content)))
        except (ModelRequestError, ValueError, ValidationError) as e:
            logger.warning(f"Concept analysis failed, using a single module: {e}")
            return fallback

        if not analysis.needs_modules or not analysis.modules:
            return fallback
        return sorted(analysis.modules, key=lambda m: m.order)

    async def teach_field(
        self,
        state: SessionState,
        field: FieldName,
        draft: Optional[str] = None,
    ) -> Optional[TeachingFeedback]:
        """Ask the tutor for guidance on a draft without judging it.

        The exchange is appended to history so later requests see it. The
        field's status and attempts are not touched.

        Args:
            state: The live session (history and token usage updated)
            field: Field the draft belongs to
            draft: Draft text (the field's current value if None)

        Returns:
            The tutor's guidance, or None if the model could not be reached

        Raises:
            InvalidTransitionError: If the field is still locked
            ValueError: If there is no draft to discuss
        """
        field = FieldName(field)
        record = state.fields[field]
        if not record.unlocked:
            raise InvalidTransitionError(f"{field.value} is still locked")

        draft = record.value if draft is None else draft
        if not draft.strip():
            raise ValueError("Write a draft before asking for guidance")

        prompt = build_teaching_prompt(field, state.concept, draft, len(record.attempts))
        context = self.compressor.build_context(
            state.conversation_history, Turn(role=TurnRole.USER, content=prompt)
        )

        try:
            reply = await self.gateway.request(
                get_teaching_system_prompt(field, state.concept),
                context.turns,
            )
        except ModelRequestError as e:
            logger.error(f"Guidance for {field.value} failed: {e}")
            return None

        state.token_usage += reply.token_usage
        content = reply.content.strip()
        if not content:
            logger.warning(f"Empty guidance for {field.value}")
            return None

        state.add_turn(TurnRole.USER, prompt)
        state.add_turn(TurnRole.ASSISTANT, f"Field: {field.value}\nGuidance: {content}")
        advice = self.compressor.advise_level(state.token_estimate)
        return TeachingFeedback(
            field=field,
            content=content,
            token_usage=reply.token_usage,
            compression_level=advice.level,
            must_checkpoint=advice.must_checkpoint,
        )

    def _rejected(self, field: FieldName, status: FieldStatus, message: str) -> ValidationOutcome:
        logger.debug(f"Submission rejected for {field.value}: {message}")
        return ValidationOutcome(
            kind=OutcomeKind.REJECTED,
            field=field,
            status=status,
            message=message,
        )
