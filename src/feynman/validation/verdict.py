"""Structured verdicts returned by the validating model.

The model answers in free text that should contain one JSON object,
possibly inside a markdown code fence. Pulling the object out and
checking its shape happens here, so the rest of the system only sees
a Verdict.
"""

import json
import logging
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
FENCED_RE = re.compile(r"```\s*([\s\S]*?)\s*```")
OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class MalformedVerdictError(Exception):
    """Raised when a model response cannot be parsed into a Verdict."""


class VerdictStatus(str, Enum):
    """What the model decided about a submission."""

    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"
    ANALYZING = "analyzing"  # Inconclusive; the model could not decide


class Verdict(BaseModel):
    """The model's judgement of one field submission."""

    status: VerdictStatus = Field(description="approved, needs_revision, or analyzing")
    issues: list[str] = Field(default_factory=list, description="What is wrong or missing")
    strengths: list[str] = Field(default_factory=list, description="What works")
    suggestion: Optional[str] = Field(default=None, description="How to improve")
    token_usage: int = Field(default=0, ge=0, description="Tokens billed for the request")

    @property
    def is_conclusive(self) -> bool:
        return self.status != VerdictStatus.ANALYZING


def extract_json(text: str) -> str:
    """Pull a JSON object out of a response that may wrap it in markdown."""
    for pattern in (FENCED_JSON_RE, FENCED_RE, OBJECT_RE):
        match = pattern.search(text)
        if match:
            return match.group(1) if pattern.groups else match.group(0)
    return text


def parse_verdict(text: str, token_usage: int = 0) -> Verdict:
    """Parse a model response into a Verdict.

    Args:
        text: Raw response text
        token_usage: Tokens reported for the request that produced it

    Returns:
        Validated Verdict

    Raises:
        MalformedVerdictError: If no valid verdict object is found
    """
    try:
        data = json.loads(extract_json(text))
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        data["token_usage"] = token_usage
        return Verdict.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning(f"Malformed verdict: {e}")
        raise MalformedVerdictError(str(e)) from e
