"""Continuation codes: portable, copy/pasteable session state.

A code looks like ``FLS-CMP17-<payload>``:

- ``FLS`` is a fixed tag.
- ``CMP17`` is up to three consonants of the concept plus two random
  digits. It only helps a human tell codes apart; decoding ignores it.
- ``<payload>`` is the essential subset of the session as compact JSON,
  zlib-compressed and base64-encoded. The standard base64 alphabet has
  no hyphen, so the payload is always the last ``-`` separated segment.

Only what is needed to resume travels in a code: per-field value,
status and lock state, the concept, module index, token estimate and
start time. Attempts and conversation history are dropped.
"""

import base64
import binascii
import json
import logging
import random
import re
import zlib
from datetime import datetime
from typing import Optional
from urllib.parse import parse_qs, quote, urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from feynman.session.models import (
    FieldName,
    FieldRecord,
    FieldStatus,
    SessionState,
)

logger = logging.getLogger(__name__)

CODE_TAG = "FLS"
CODE_PATTERN = re.compile(rf"^{CODE_TAG}-[A-Z]{{0,3}}\d{{2}}-.+$")
URL_PARAM = "continue"

_CONSONANTS = set("BCDFGHJKLMNPQRSTVWXYZ")


class ContinuationCodeError(Exception):
    """Raised when a continuation code cannot be produced or read back."""


# =============================================================================
# Essential subset
# =============================================================================


class EssentialField(BaseModel):
    """Per-field data carried in a code."""

    model_config = ConfigDict(populate_by_name=True)

    value: str = Field(alias="v")
    status: FieldStatus = Field(alias="s")
    unlocked: bool = Field(alias="u")


class EssentialState(BaseModel):
    """The minimal projection of SessionState needed to resume."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(alias="v")
    concept: Optional[str] = Field(alias="c")
    current_module_index: int = Field(alias="m", ge=0)
    fields: dict[FieldName, EssentialField] = Field(alias="f")
    token_estimate: int = Field(alias="t", ge=0)
    start_time: Optional[datetime] = Field(alias="st")

    @classmethod
    def from_state(cls, state: SessionState) -> "EssentialState":
        return cls(
            version=state.version,
            concept=state.concept,
            current_module_index=state.current_module_index,
            fields={
                name: EssentialField(
                    value=record.value,
                    status=record.status,
                    unlocked=record.unlocked,
                )
                for name, record in state.fields.items()
            },
            token_estimate=state.token_estimate,
            start_time=state.start_time,
        )

    def lock_violations(self) -> list[str]:
        """Lock and approval contradictions that a real session never reaches.

        Attempts do not travel in a code, so unlock ordering by past
        approvals cannot be checked here.
        """
        problems = []
        for name, f in self.fields.items():
            if f.status == FieldStatus.APPROVED and not f.unlocked:
                problems.append(f"{name.value}: approved but not unlocked")
            if (f.status == FieldStatus.LOCKED) == f.unlocked:
                problems.append(f"{name.value}: status {f.status.value} but unlocked={f.unlocked}")
        first = self.fields.get(FieldName.DEFINITION)
        if first is not None and not first.unlocked:
            problems.append("definition: must always be unlocked")
        return problems

    def to_state(self) -> SessionState:
        """Rebuild a full state, filling dropped data with empty defaults."""
        return SessionState(
            version=self.version,
            concept=self.concept,
            modules=[],
            current_module_index=self.current_module_index,
            fields={
                name: FieldRecord(
                    value=f.value,
                    status=f.status,
                    unlocked=f.unlocked,
                )
                for name, f in self.fields.items()
            },
            conversation_history=[],
            token_estimate=self.token_estimate,
            start_time=self.start_time,
        )


# =============================================================================
# Encoding / Decoding
# =============================================================================


def generate_prefix(concept: Optional[str], rng: Optional[random.Random] = None) -> str:
    """Build the human-legible part of a code, e.g. ``FLS-CMP17``.

    Args:
        concept: The concept being learned (may be None or empty)
        rng: Random source for the two digits (module random if None)
    """
    consonants = "".join(
        ch for ch in (concept or "").upper() if ch in _CONSONANTS
    )[:3]
    number = (rng or random).randint(0, 99)
    return f"{CODE_TAG}-{consonants}{number:02d}"


def encode_state(state: SessionState, rng: Optional[random.Random] = None) -> str:
    """Encode the essential subset of a session into a continuation code.

    Raises:
        ContinuationCodeError: If the state cannot be serialized
    """
    try:
        essential = EssentialState.from_state(state)
        raw = essential.model_dump_json(by_alias=True).encode("utf-8")
        payload = base64.b64encode(zlib.compress(raw, 9)).decode("ascii")
    except (ValidationError, ValueError, TypeError) as e:
        logger.error(f"Failed to encode state: {e}")
        raise ContinuationCodeError("State encoding failed") from e

    return f"{generate_prefix(state.concept, rng)}-{payload}"


def decode_state(code: str) -> SessionState:
    """Decode a continuation code back into a full SessionState.

    Args:
        code: A code produced by encode_state (surrounding whitespace allowed)

    Returns:
        A session with the essential subset restored and everything
        else empty

    Raises:
        ContinuationCodeError: If the code is malformed, truncated or tampered with
    """
    parts = code.strip().split("-")
    if len(parts) < 3 or parts[0] != CODE_TAG:
        raise ContinuationCodeError(f"Not a continuation code (expected '{CODE_TAG}-' tag)")

    payload = parts[-1]
    try:
        compressed = base64.b64decode(payload, validate=True)
        if base64.b64encode(compressed).decode("ascii") != payload:
            raise ValueError("Non-canonical base64 payload")
        raw = zlib.decompress(compressed)
        data = json.loads(raw.decode("utf-8"))
        essential = EssentialState.model_validate(data)
        problems = essential.lock_violations()
        if problems:
            raise ValueError("; ".join(problems))
        return essential.to_state()
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError) as e:
        # ValidationError and JSONDecodeError are both ValueErrors
        logger.warning(f"Failed to decode continuation code: {e}")
        raise ContinuationCodeError("Invalid continuation code") from e


def validate_code(code: str) -> bool:
    """Check the code's shape without decoding the payload."""
    return bool(CODE_PATTERN.match(code.strip()))


def code_size(state: SessionState) -> int:
    """Length of the code for a state, or -1 if it cannot be encoded."""
    try:
        return len(encode_state(state))
    except ContinuationCodeError:
        return -1


def build_continuation_url(code: str, base_url: str) -> str:
    """Build a shareable URL carrying the code as a query parameter."""
    return f"{base_url.rstrip('/')}/?{URL_PARAM}={quote(code, safe='')}"


def parse_continuation_url(url: str) -> Optional[str]:
    """Pull a continuation code out of a URL, if it has one."""
    values = parse_qs(urlparse(url).query).get(URL_PARAM)
    return values[0] if values else None
