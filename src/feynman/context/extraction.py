"""Best-effort extraction of learning progress from conversation text.

Compression needs to rebuild progress from history that is about to be
dropped. Both functions here scan rendered turn text for markers written
by the validation prompts:

    Concept: "..."            the subject being learned
    Field: <name>             which field an exchange is about
    APPROVED                  the field was approved
    User's attempt #n: "..."  a submission (user turns only)
    Misconception caught: ... a misconception the model flagged

Missing markers leave the corresponding value empty. Neither function
raises on unexpected text.
"""

import re
from typing import Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from feynman.session.models import FIELD_ORDER, FieldName, Turn, TurnRole, next_field

CONCEPT_RE = re.compile(r'Concept:\s*"?([^"\n]+)"?')
FIELD_RE = re.compile(r"Field:\s*(\w+)")
APPROVED_RE = re.compile(r"\bAPPROVED\b")
ATTEMPT_RE = re.compile(r'attempt[^:\n]*:\s*"([^"]+)"')
MISCONCEPTION_RE = re.compile(
    r"\bmisconceptions?(?:\s+caught)?:\s*([^.\n]+)", re.IGNORECASE
)


class LearningStateSnapshot(BaseModel):
    """Compact progress summary rebuilt from history text."""

    concept: Optional[str] = None
    current_field: Optional[str] = None
    completed_fields: list[str] = Field(default_factory=list)
    approved_count: int = 0
    total_fields: int = len(FIELD_ORDER)
    latest_attempt: str = ""
    misconceptions_caught: list[str] = Field(default_factory=list)

    def to_context(self) -> str:
        """Render for the hard tier, ahead of the most recent raw turns."""
        lines = [
            f'Teaching concept: "{self.concept or "unknown"}"',
            "",
            "Progress:",
            f"- Completed: {', '.join(self.completed_fields) or 'none'}",
            f"- Current: {self.current_field or 'unknown'}",
            f"- Approved: {self.approved_count}/{self.total_fields}",
        ]
        if self.misconceptions_caught:
            lines += ["", f"Misconceptions caught: {'; '.join(self.misconceptions_caught)}"]
        lines += ["", "Continue teaching from current position."]
        return "\n".join(lines)

    def to_checkpoint_context(self) -> str:
        """Render for the emergency tier, where it is the only context sent."""
        lines = [
            "[Context restored from checkpoint]",
            f"Concept: {self.concept or 'unknown'}",
            f"Current field: {self.current_field or 'unknown'}",
            f"Completed fields: {', '.join(self.completed_fields) or 'none'}",
            f"Progress: {self.approved_count}/{self.total_fields} fields approved",
        ]
        if self.latest_attempt:
            lines += ["", f'User\'s current attempt: "{self.latest_attempt}"']
        return "\n".join(lines)


class SnapshotExtractor(Protocol):
    """Anything that can rebuild a snapshot from turns."""

    def __call__(self, turns: Sequence[Turn]) -> LearningStateSnapshot: ...


def _known_field(name: str) -> Optional[FieldName]:
    try:
        return FieldName(name)
    except ValueError:
        return None


def extract_snapshot(turns: Sequence[Turn]) -> LearningStateSnapshot:
    """Rebuild a LearningStateSnapshot by scanning turn text.

    Args:
        turns: Conversation history, oldest first

    Returns:
        Snapshot with whatever markers were found
    """
    snapshot = LearningStateSnapshot()
    orphan_approvals = 0

    for turn in turns:
        content = turn.content

        if snapshot.concept is None:
            match = CONCEPT_RE.search(content)
            if match:
                snapshot.concept = match.group(1).strip() or None

        for match in FIELD_RE.finditer(content):
            snapshot.current_field = match.group(1)

        if APPROVED_RE.search(content):
            field = snapshot.current_field
            if field is None:
                orphan_approvals += 1
            elif field not in snapshot.completed_fields:
                snapshot.completed_fields.append(field)

        for match in MISCONCEPTION_RE.finditer(content):
            caught = match.group(1).strip()
            if caught and caught not in snapshot.misconceptions_caught:
                snapshot.misconceptions_caught.append(caught)

        if turn.role == TurnRole.USER:
            match = ATTEMPT_RE.search(content)
            if match:
                snapshot.latest_attempt = match.group(1)

    snapshot.approved_count = min(
        len(snapshot.completed_fields) + orphan_approvals, snapshot.total_fields
    )

    # An approved current field means the learner has moved on
    if snapshot.current_field in snapshot.completed_fields:
        known = _known_field(snapshot.current_field)
        successor = next_field(known) if known else None
        if successor is not None:
            snapshot.current_field = successor.value

    return snapshot


class ExchangeSummary(BaseModel):
    """Attempts and outcome for one field within a stretch of history."""

    field: str
    attempts: int = 0
    approved: bool = False

    def describe(self) -> str:
        outcome = "approved" if self.approved else "in progress"
        return f"{self.field}: {self.attempts} attempts, {outcome}"


def summarize_exchanges(turns: Sequence[Turn]) -> str:
    """Summarize per-field activity for the soft tier.

    Independent of extract_snapshot: this only counts attempts and
    approvals per `Field:` block, in the order the blocks appear.

    Returns:
        "field: n attempts, approved; ..." or "" when no field markers exist
    """
    exchanges: list[ExchangeSummary] = []
    current: Optional[ExchangeSummary] = None

    for turn in turns:
        content = turn.content

        match = FIELD_RE.search(content)
        if match and (current is None or current.field != match.group(1)):
            current = ExchangeSummary(field=match.group(1))
            exchanges.append(current)

        if current is None:
            continue

        if turn.role == TurnRole.USER and "attempt" in content:
            current.attempts += 1

        if APPROVED_RE.search(content):
            current.approved = True

    return "; ".join(ex.describe() for ex in exchanges)
