"""Frustration signals from learner behavior.

Detection is a pure function of recorded behavior events and attempt
texts. It produces an advisory signal, shaped like compression advice,
that the session uses to add encouragement to the next prompt.
"""

import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence

from feynman.session.models import FieldName

MAX_TRACKED_EVENTS = 50
LONG_PAUSE_SECONDS = 30.0
MIN_PAUSE_SECONDS = 10.0
SIMILARITY_THRESHOLD = 0.7
ENCOURAGEMENT_INTERVAL = timedelta(seconds=60)


class BehaviorType(str, Enum):
    """Kinds of learner behavior worth tracking."""

    TYPING = "typing"
    DELETION = "deletion"
    PAUSE = "pause"
    CLEAR = "clear"
    SUBMIT = "submit"


class FrustrationLevel(str, Enum):
    NONE = "none"
    MILD = "mild"
    MODERATE = "moderate"
    HIGH = "high"


@dataclass
class BehaviorEvent:
    """One recorded learner action."""

    type: BehaviorType
    timestamp: datetime = field(default_factory=datetime.utcnow)
    length: int = 0  # Characters typed, deleted, or submitted
    duration: float = 0.0  # Seconds, for pauses


class BehaviorTracker:
    """Keeps the most recent behavior events for frustration detection.

    Idle time between two actions is recorded as a pause event when it
    lasts at least `min_pause` seconds.
    """

    def __init__(self, max_events: int = MAX_TRACKED_EVENTS, min_pause: float = MIN_PAUSE_SECONDS):
        self.max_events = max_events
        self.min_pause = min_pause
        self.last_activity_at: Optional[datetime] = None
        self._events: deque[BehaviorEvent] = deque(maxlen=max_events)

    @property
    def events(self) -> list[BehaviorEvent]:
        return list(self._events)

    def record(self, event: BehaviorEvent) -> None:
        if event.type != BehaviorType.PAUSE and self.last_activity_at is not None:
            idle = (event.timestamp - self.last_activity_at).total_seconds()
            if idle >= self.min_pause:
                self._events.append(
                    BehaviorEvent(BehaviorType.PAUSE, timestamp=event.timestamp, duration=idle)
                )
        self._events.append(event)
        self.last_activity_at = event.timestamp

    def record_typing(self, length: int) -> None:
        self.record(BehaviorEvent(BehaviorType.TYPING, length=length))

    def record_deletion(self, amount: int) -> None:
        self.record(BehaviorEvent(BehaviorType.DELETION, length=amount))

    def record_pause(self, seconds: float) -> None:
        self.record(BehaviorEvent(BehaviorType.PAUSE, duration=seconds))

    def record_clear(self) -> None:
        self.record(BehaviorEvent(BehaviorType.CLEAR))

    def record_submit(self, content: str) -> None:
        self.record(BehaviorEvent(BehaviorType.SUBMIT, length=len(content)))

    def clear(self) -> None:
        self._events.clear()
        self.last_activity_at = None


@dataclass
class FrustrationSignal:
    """Advisory result of frustration detection."""

    frustrated: bool
    score: int
    level: FrustrationLevel
    indicators: dict[str, bool]

    @property
    def active_indicators(self) -> list[str]:
        return [name for name, hit in self.indicators.items() if hit]


# =============================================================================
# Indicators
# =============================================================================


def _many_deletions(events: Sequence[BehaviorEvent]) -> bool:
    recent = events[-10:]
    deletions = [
        e for e in recent if e.type in (BehaviorType.DELETION, BehaviorType.CLEAR)
    ]
    return len(deletions) >= 3


def _shrinking_attempts(previous: Sequence[str], current: str) -> bool:
    """Each attempt shorter than the one before: the learner is giving up."""
    if len(previous) < 2:
        return False
    lengths = [len(a) for a in previous[-3:]] + [len(current)]
    return all(b < a for a, b in zip(lengths, lengths[1:]))


def _long_pauses(events: Sequence[BehaviorEvent]) -> bool:
    recent = events[-5:]
    pauses = [
        e for e in recent
        if e.type == BehaviorType.PAUSE and e.duration > LONG_PAUSE_SECONDS
    ]
    return len(pauses) >= 2


def _word_similarity(a: str, b: str) -> float:
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


def _stuck_in_loop(previous: Sequence[str]) -> bool:
    recent = previous[-3:]
    return any(
        _word_similarity(a, b) > SIMILARITY_THRESHOLD
        for a, b in zip(recent, recent[1:])
    )


def _level_for(score: int) -> FrustrationLevel:
    if score >= 4:
        return FrustrationLevel.HIGH
    if score >= 3:
        return FrustrationLevel.MODERATE
    if score >= 2:
        return FrustrationLevel.MILD
    return FrustrationLevel.NONE


def detect_frustration(
    events: Sequence[BehaviorEvent],
    current_attempt: str,
    previous_attempts: Sequence[str],
) -> FrustrationSignal:
    """Score frustration from behavior and attempt history.

    Args:
        events: Recent behavior events, oldest first
        current_attempt: The text about to be submitted
        previous_attempts: Earlier submissions for the same field

    Returns:
        FrustrationSignal; frustrated when three or more indicators fire
    """
    indicators = {
        "multiple_deletions": _many_deletions(events),
        "decreasing_length": _shrinking_attempts(previous_attempts, current_attempt),
        "long_pauses": _long_pauses(events),
        "repeated_revisions": len(previous_attempts) >= 4,
        "similar_attempts": _stuck_in_loop(previous_attempts),
    }
    score = sum(indicators.values())
    return FrustrationSignal(
        frustrated=score >= 3,
        score=score,
        level=_level_for(score),
        indicators=indicators,
    )


def should_encourage(
    signal: FrustrationSignal,
    last_encouraged_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """Encourage frustrated learners, at most once per interval."""
    if not signal.frustrated:
        return False
    if last_encouraged_at is None:
        return True
    now = now or datetime.utcnow()
    return now - last_encouraged_at >= ENCOURAGEMENT_INTERVAL


# =============================================================================
# Encouragement
# =============================================================================

ALTERNATIVE_APPROACHES: dict[FieldName, str] = {
    FieldName.DEFINITION: "what would you tell a friend who asked you what this is?",
    FieldName.MECHANISM: "imagine explaining the step-by-step process to a child",
    FieldName.EXAMPLE: "think of a specific, real situation where you've seen this",
    FieldName.ANALOGY: "what everyday thing does this remind you of?",
    FieldName.WHY_IT_MATTERS: "why should someone care about understanding this?",
    FieldName.MISCONCEPTION: "what mistake do people commonly make about this?",
    FieldName.INTEGRATION: "how does this connect to something you already know well?",
}


def choose_encouragement(
    level: FrustrationLevel,
    field: FieldName,
    attempt_count: int,
    rng: Optional[random.Random] = None,
) -> str:
    """Pick an encouraging opener suited to the frustration level."""
    options = {
        FrustrationLevel.HIGH: [
            f"I can see you're working hard on this. Let's take a different angle: "
            f"{ALTERNATIVE_APPROACHES[field]}",
            "This is a tough one, and that's okay. Struggle means learning is happening.",
            f"You've made {attempt_count} attempts, which is serious effort. "
            "Let's try a completely new perspective.",
        ],
        FrustrationLevel.MODERATE: [
            "You're making progress! This field is challenging, which means you're learning deeply.",
            "You're refining your understanding, which is exactly how mastery works.",
            "Good effort so far. Here's a more specific hint about what we're looking for.",
        ],
        FrustrationLevel.MILD: [
            "You're on the right track. Let's clarify one specific part.",
            "Almost there. Just sharpen one aspect of your explanation.",
        ],
        FrustrationLevel.NONE: [
            "Good start. Let's refine this.",
            "Let's dig deeper into this.",
        ],
    }[level]
    return (rng or random).choice(options)
