"""Common test fixtures for Feynman tests."""

import json
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from feynman.context.compression import CompressionThresholds, ContextCompressor
from feynman.core.config import get_settings
from feynman.session.models import SessionState, Turn, TurnRole
from feynman.storage.state_store import StateStore
from feynman.storage.store import KeyValueStore
from feynman.validation.gateway import GatewayConfig, ModelGateway
from feynman.validation.orchestrator import ValidationOrchestrator


# Small thresholds so tests can cross tiers with short histories
TEST_THRESHOLDS = CompressionThresholds(soft=100, hard=150, emergency=180)


def make_turns(count: int, content: str = "x" * 20) -> list[Turn]:
    """Alternating user/assistant turns with identical content."""
    roles = (TurnRole.USER, TurnRole.ASSISTANT)
    return [Turn(role=roles[i % 2], content=content) for i in range(count)]


def verdict_json(
    status: str = "approved",
    issues: Optional[list[str]] = None,
    strengths: Optional[list[str]] = None,
    suggestion: Optional[str] = None,
) -> str:
    """A model reply carrying a verdict inside a json code fence."""
    body = {
        "status": status,
        "issues": issues or [],
        "strengths": strengths or [],
        "suggestion": suggestion,
    }
    return f"```json\n{json.dumps(body)}\n```"


def make_completion(content: str, prompt_tokens: int = 40, completion_tokens: int = 10) -> MagicMock:
    """Create a mock chat completion response."""
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    response.usage = MagicMock(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return response


@pytest.fixture
def kv_store():
    """In-memory key/value store."""
    return KeyValueStore()


@pytest.fixture
def state_store(kv_store):
    return StateStore(kv_store)


@pytest.fixture
def fresh_state():
    return SessionState.create()


@pytest.fixture
def started_state():
    """A session on a concept, with the framing exchange in history."""
    state = SessionState.create()
    state.start_concept("photosynthesis")
    state.add_turn(TurnRole.USER, 'Concept: "photosynthesis"')
    state.add_turn(TurnRole.ASSISTANT, "Field: definition")
    return state


@pytest.fixture
def compressor():
    return ContextCompressor(TEST_THRESHOLDS)


@pytest.fixture
def mock_llm_client():
    """Mock AsyncOpenAI client; set `chat.completions.create` side effects per test."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.fixture
def no_sleep():
    """Stand-in for asyncio.sleep that records delays."""
    return AsyncMock()


@pytest.fixture
def gateway(mock_llm_client, no_sleep):
    config = GatewayConfig(model="test-model", max_tokens=256, retries=3, base_delay=1.0)
    return ModelGateway(mock_llm_client, config, sleep=no_sleep)


@pytest.fixture
def orchestrator(gateway, compressor):
    return ValidationOrchestrator(gateway, compressor)


@pytest.fixture
def mock_settings(monkeypatch, tmp_path):
    """Point settings at a temporary database."""
    monkeypatch.setenv("FEYNMAN_DB_PATH", str(tmp_path / "feynman.db"))
    monkeypatch.setenv("LLM_API_KEY", "test-key")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()
