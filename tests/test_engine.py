"""Tests for the learning session coordinator."""

import json
import sqlite3
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from feynman.context.compression import CompressionThresholds, ContextCompressor
from feynman.session.continuation import ContinuationCodeError
from feynman.session.emotion import BehaviorType
from feynman.session.engine import LearningSession
from feynman.session.models import (
    Attempt,
    FieldName,
    FieldStatus,
    InvalidTransitionError,
    SessionState,
)
from feynman.storage.state_store import STATE_KEY, StateStore
from feynman.storage.store import KeyValueStore
from feynman.validation.orchestrator import OutcomeKind, ValidationOrchestrator

from tests.conftest import make_completion, verdict_json


@pytest.fixture
def session(state_store, orchestrator):
    return LearningSession(SessionState.create(), state_store, validator=orchestrator)


class TestOpen:
    """Tests for LearningSession.open()."""

    def test_fresh_when_nothing_saved(self, state_store):
        session = LearningSession.open(state_store)
        assert session.state.concept is None
        assert not session.was_reset

    def test_restores_saved_state(self, state_store, started_state):
        state_store.save(started_state)
        session = LearningSession.open(state_store)
        assert session.state.concept == "photosynthesis"
        assert len(session.state.conversation_history) == 2

    def test_version_mismatch_reported(self, state_store, kv_store, started_state):
        state_store.save(started_state)
        data = json.loads(kv_store.get(STATE_KEY))
        data["version"] = "2.0.0"
        kv_store.set(STATE_KEY, json.dumps(data))

        session = LearningSession.open(state_store)

        assert session.was_reset
        assert session.state.concept is None

    def test_interrupted_analysis_recovered(self, state_store, started_state):
        """A field saved mid-request comes back to its last verdict."""
        started_state.record_attempt(
            FieldName.DEFINITION, Attempt(text="a", status=FieldStatus.NEEDS_REVISION)
        )
        started_state.mark_analyzing(FieldName.DEFINITION)
        state_store.save(started_state)

        session = LearningSession.open(state_store)

        assert session.state.fields[FieldName.DEFINITION].status == FieldStatus.NEEDS_REVISION

    def test_compressor_defaults_to_validators(self, state_store, orchestrator):
        session = LearningSession.open(state_store, validator=orchestrator)
        assert session.compressor is orchestrator.compressor


@pytest.mark.asyncio
class TestStartConcept:
    """Tests for starting a concept."""

    async def test_without_decomposition(self, session, state_store, mock_llm_client):
        state = await session.start_concept("  gravity ", decompose=False)

        assert state.concept == "gravity"
        assert state.start_time is not None
        assert len(state.conversation_history) == 2
        assert state.conversation_history[0].content.startswith('Concept: "gravity"')
        assert "Field: definition" in state.conversation_history[1].content
        assert session.last_save.ok
        assert state_store.restore().state.concept == "gravity"
        mock_llm_client.chat.completions.create.assert_not_called()

    async def test_with_modules(self, session, mock_llm_client):
        body = {
            "needsModules": True,
            "modules": [
                {"name": "Orbits", "order": 2},
                {"name": "Mass", "order": 1},
            ],
        }
        mock_llm_client.chat.completions.create.return_value = make_completion(json.dumps(body))

        state = await session.start_concept("gravity")

        assert [m.name for m in state.modules] == ["Mass", "Orbits"]
        assert "Modules: Mass, Orbits" in state.conversation_history[0].content

    async def test_research_feeds_analysis(self, session, mock_llm_client):
        body = {"needsModules": True, "modules": [{"name": "Mass", "order": 1}, {"name": "Orbits", "order": 2}]}
        mock_llm_client.chat.completions.create.side_effect = [
            make_completion("Mass attracts mass.", prompt_tokens=30, completion_tokens=20),
            make_completion(json.dumps(body)),
        ]

        state = await session.start_concept("gravity")

        calls = mock_llm_client.chat.completions.create.call_args_list
        assert len(calls) == 2
        assert "Research notes:\nMass attracts mass." in calls[1].kwargs["messages"][-1]["content"]
        assert [m.name for m in state.modules] == ["Mass", "Orbits"]
        assert state.token_usage == 50

    async def test_research_failure_still_starts(self, session, mock_llm_client, no_sleep):
        mock_llm_client.chat.completions.create.side_effect = [
            TimeoutError(),
            TimeoutError(),
            TimeoutError(),
            make_completion('{"needsModules": false}'),
        ]

        state = await session.start_concept("gravity")

        assert state.concept == "gravity"
        assert [m.name for m in state.modules] == ["gravity"]

    async def test_replaces_previous_progress(self, session):
        await session.start_concept("gravity", decompose=False)
        session.edit_field(FieldName.DEFINITION, "things pull")

        state = await session.start_concept("entropy", decompose=False)

        assert state.fields[FieldName.DEFINITION].value == ""
        assert session.tracker.events == []

    async def test_empty_concept_rejected(self, session):
        with pytest.raises(ValueError):
            await session.start_concept("   ")


class TestEditField:
    """Tests for edit_field()."""

    def test_saves_value(self, session, state_store):
        session.edit_field(FieldName.DEFINITION, "draft")
        assert session.last_save.ok
        restored = state_store.restore().state
        assert restored.fields[FieldName.DEFINITION].value == "draft"

    def test_locked_field(self, session):
        with pytest.raises(InvalidTransitionError):
            session.edit_field(FieldName.MECHANISM, "too early")

    def test_tracks_behavior(self, session):
        session.edit_field(FieldName.DEFINITION, "hello world")
        session.edit_field(FieldName.DEFINITION, "hello")
        session.edit_field(FieldName.DEFINITION, "")

        types = [e.type.value for e in session.tracker.events]
        assert types == ["typing", "deletion", "clear"]
        assert session.tracker.events[1].length == 6

    def test_idle_time_recorded_as_pause(self, session):
        session.edit_field(FieldName.DEFINITION, "plants")
        session.tracker.last_activity_at = datetime.utcnow() - timedelta(seconds=45)

        session.edit_field(FieldName.DEFINITION, "plants use light")

        pauses = [e for e in session.tracker.events if e.type == BehaviorType.PAUSE]
        assert len(pauses) == 1
        assert pauses[0].duration >= 45

    def test_save_failure_does_not_raise(self):
        broken = MagicMock(spec=KeyValueStore)
        broken.set.side_effect = sqlite3.OperationalError("disk I/O error")
        session = LearningSession(SessionState.create(), StateStore(broken))

        session.edit_field(FieldName.DEFINITION, "kept in memory")

        assert not session.last_save.ok
        assert "disk I/O error" in session.last_save.error
        assert session.state.fields[FieldName.DEFINITION].value == "kept in memory"


@pytest.mark.asyncio
class TestSubmit:
    """Tests for submit()."""

    async def test_approved_and_saved(self, session, state_store, mock_llm_client):
        await session.start_concept("gravity", decompose=False)
        session.edit_field(FieldName.DEFINITION, "Things pull on each other")
        mock_llm_client.chat.completions.create.return_value = make_completion(verdict_json())

        outcome = await session.submit(FieldName.DEFINITION)

        assert outcome.kind == OutcomeKind.APPLIED
        restored = state_store.restore().state
        assert restored.fields[FieldName.DEFINITION].status == FieldStatus.APPROVED
        assert restored.fields[FieldName.MECHANISM].unlocked

    async def test_requires_validator(self, state_store):
        session = LearningSession(SessionState.create(), state_store)
        with pytest.raises(RuntimeError):
            await session.submit(FieldName.DEFINITION)

    async def test_rejected_submission(self, session, mock_llm_client):
        outcome = await session.submit(FieldName.ANALOGY)
        assert outcome.kind == OutcomeKind.REJECTED
        mock_llm_client.chat.completions.create.assert_not_called()

    async def test_emergency_writes_checkpoint(self, gateway, state_store, mock_llm_client):
        compressor = ContextCompressor(CompressionThresholds(soft=1, hard=2, emergency=3))
        session = LearningSession(
            SessionState.create(),
            state_store,
            validator=ValidationOrchestrator(gateway, compressor),
        )
        await session.start_concept("gravity", decompose=False)
        session.edit_field(FieldName.DEFINITION, "pull")
        mock_llm_client.chat.completions.create.return_value = make_completion(verdict_json())

        outcome = await session.submit(FieldName.DEFINITION)

        assert outcome.must_checkpoint
        checkpoint = state_store.restore_checkpoint()
        assert checkpoint is not None
        assert checkpoint.fields[FieldName.DEFINITION].status == FieldStatus.APPROVED

    async def test_no_checkpoint_at_normal_budget(self, session, state_store, mock_llm_client):
        session.edit_field(FieldName.DEFINITION, "pull")
        mock_llm_client.chat.completions.create.return_value = make_completion(verdict_json())
        await session.submit(FieldName.DEFINITION)
        assert state_store.restore_checkpoint() is None

    async def test_frustrated_learner_encouraged_once(self, session, mock_llm_client):
        """Encouragement goes into the prompt, at most once per minute."""
        texts = [
            "plants use the sun to make food from air",
            "plants use the sun to make food",
            "plants use the sun to make",
            "plants use the sun to",
        ]
        for text in texts:
            session.state.record_attempt(
                FieldName.DEFINITION, Attempt(text=text, status=FieldStatus.NEEDS_REVISION)
            )
        session.edit_field(FieldName.DEFINITION, "plants use")
        mock_llm_client.chat.completions.create.return_value = make_completion(
            verdict_json("needs_revision")
        )

        await session.submit(FieldName.DEFINITION)
        first_prompt = mock_llm_client.chat.completions.create.call_args.kwargs["messages"][-1]

        session.edit_field(FieldName.DEFINITION, "plants")
        await session.submit(FieldName.DEFINITION)
        second_prompt = mock_llm_client.chat.completions.create.call_args.kwargs["messages"][-1]

        assert "Open with:" in first_prompt["content"]
        assert "Open with:" not in second_prompt["content"]
        emotional = session.state.emotional_state
        assert emotional.encouragement_given == 1
        assert "repeated_revisions" in emotional.frustration_indicators


@pytest.mark.asyncio
class TestAskTutor:
    """Tests for guidance without submission."""

    async def test_guidance_saved(self, session, state_store, mock_llm_client):
        await session.start_concept("gravity", decompose=False)
        session.edit_field(FieldName.DEFINITION, "things pull")
        mock_llm_client.chat.completions.create.return_value = make_completion("Pull on what?")

        feedback = await session.ask_tutor(FieldName.DEFINITION)

        assert feedback.content == "Pull on what?"
        restored = state_store.restore().state
        assert "Guidance: Pull on what?" in restored.conversation_history[-1].content
        assert restored.fields[FieldName.DEFINITION].status == FieldStatus.PENDING

    async def test_unreachable_tutor(self, session, mock_llm_client, no_sleep):
        session.edit_field(FieldName.DEFINITION, "things pull")
        mock_llm_client.chat.completions.create.side_effect = TimeoutError()
        assert await session.ask_tutor(FieldName.DEFINITION) is None

    async def test_requires_validator(self, state_store):
        session = LearningSession(SessionState.create(), state_store)
        with pytest.raises(RuntimeError):
            await session.ask_tutor(FieldName.DEFINITION)


class TestCodesAndCheckpoints:
    """Tests for continuation codes, checkpoints and rollback."""

    def test_code_round_trip(self, session, state_store, started_state):
        session.state = started_state
        session.edit_field(FieldName.DEFINITION, "light to sugar")
        code = session.continuation_code()

        other = LearningSession(SessionState.create(), StateStore(KeyValueStore()))
        state = other.resume_from_code(code)

        assert state.concept == "photosynthesis"
        assert state.fields[FieldName.DEFINITION].value == "light to sugar"
        assert other.last_save.ok

    def test_bad_code_leaves_state(self, session, started_state):
        session.state = started_state
        with pytest.raises(ContinuationCodeError):
            session.resume_from_code("FLS-XX00-garbage!!")
        assert session.state is started_state

    def test_checkpoint_and_rollback(self, session, started_state):
        session.state = started_state
        session.edit_field(FieldName.DEFINITION, "checkpointed text")
        assert session.checkpoint() is not None

        session.edit_field(FieldName.DEFINITION, "later text")
        assert session.rollback()

        assert session.state.fields[FieldName.DEFINITION].value == "checkpointed text"
        assert session.state.concept == "photosynthesis"

    def test_rollback_without_checkpoint(self, session):
        assert not session.rollback()

    def test_new_concept(self, session, state_store, started_state):
        session.state = started_state
        state = session.new_concept()
        assert state.concept is None
        assert state_store.restore().state.concept is None

    def test_advice(self, session):
        session.compressor = ContextCompressor(CompressionThresholds(soft=1, hard=2, emergency=3))
        assert session.advice().message == "Context is healthy"
        session.state.token_estimate = 5
        assert session.advice().must_checkpoint
