"""Tiered compression of the context sent to the model.

The compressor never touches the canonical history. Each call
re-evaluates the tier from the token estimate alone, so calling it
twice with the same input yields the same output:

    t < SOFT               normal     full history
    SOFT <= t < HARD       soft       first 2 + summary + last 6
    HARD <= t < EMERGENCY  hard       snapshot + last 3
    t >= EMERGENCY         emergency  snapshot only, checkpoint advised
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from feynman.context.budget import estimate_tokens
from feynman.context.extraction import (
    SnapshotExtractor,
    extract_snapshot,
    summarize_exchanges,
)
from feynman.core.config import Settings, get_settings
from feynman.session.models import Turn, TurnRole

logger = logging.getLogger(__name__)

SOFT_KEEP_HEAD = 2
SOFT_KEEP_TAIL = 6
# Histories this short gain nothing from a summary turn
SOFT_MIN_TURNS = 10
HARD_KEEP_TAIL = 3


class CompressionLevel(str, Enum):
    """How aggressively outbound context is reduced."""

    NORMAL = "normal"
    SOFT = "soft"
    HARD = "hard"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    CompressionLevel.NORMAL: 0,
    CompressionLevel.SOFT: 1,
    CompressionLevel.HARD: 2,
    CompressionLevel.EMERGENCY: 3,
}

ADVICE_MESSAGES = {
    CompressionLevel.NORMAL: "Context is healthy",
    CompressionLevel.SOFT: "Consider compressing old conversation history",
    CompressionLevel.HARD: "Compression recommended to maintain performance",
    CompressionLevel.EMERGENCY: "Critical: Context must be compressed or checkpointed",
}


@dataclass(frozen=True)
class CompressionThresholds:
    """Token estimates at which each tier starts. Strictly ascending."""

    soft: int
    hard: int
    emergency: int

    def __post_init__(self) -> None:
        if not (0 < self.soft < self.hard < self.emergency):
            raise ValueError(
                f"Thresholds must satisfy 0 < soft < hard < emergency, got "
                f"{self.soft}/{self.hard}/{self.emergency}"
            )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CompressionThresholds":
        settings = settings or get_settings()
        return cls(
            soft=settings.soft_threshold,
            hard=settings.hard_threshold,
            emergency=settings.emergency_threshold,
        )


@dataclass(frozen=True)
class CompressionAdvice:
    """Read-only view of what the compressor would do at a token estimate."""

    level: CompressionLevel
    message: str
    should_compress: bool
    must_checkpoint: bool


@dataclass
class CompressedContext:
    """Outbound turns plus the decision that produced them."""

    turns: list[Turn]
    level: CompressionLevel
    token_estimate: int
    must_checkpoint: bool


class ContextCompressor:
    """Decides what reduced message sequence to send outbound.

    Snapshot extraction and soft summaries are injected so the marker
    scanning can be swapped for structured metadata later.
    """

    def __init__(
        self,
        thresholds: Optional[CompressionThresholds] = None,
        extractor: SnapshotExtractor = extract_snapshot,
        summarizer: Callable[[Sequence[Turn]], str] = summarize_exchanges,
    ):
        self.thresholds = thresholds or CompressionThresholds.from_settings()
        self.extractor = extractor
        self.summarizer = summarizer

    def select_level(self, token_estimate: int) -> CompressionLevel:
        """Pick the tier for a token estimate."""
        if token_estimate >= self.thresholds.emergency:
            return CompressionLevel.EMERGENCY
        if token_estimate >= self.thresholds.hard:
            return CompressionLevel.HARD
        if token_estimate >= self.thresholds.soft:
            return CompressionLevel.SOFT
        return CompressionLevel.NORMAL

    def advise_level(self, token_estimate: int) -> CompressionAdvice:
        """Report the tier for a token estimate without compressing anything."""
        level = self.select_level(token_estimate)
        return CompressionAdvice(
            level=level,
            message=ADVICE_MESSAGES[level],
            should_compress=level != CompressionLevel.NORMAL,
            must_checkpoint=level == CompressionLevel.EMERGENCY,
        )

    def compress(
        self,
        history: Sequence[Turn],
        token_estimate: Optional[int] = None,
    ) -> list[Turn]:
        """Build the outbound turns for the current history.

        Args:
            history: The canonical conversation history (not modified)
            token_estimate: Estimate for `history`; computed when omitted

        Returns:
            A new list of turns to send
        """
        if token_estimate is None:
            token_estimate = estimate_tokens(history)

        level = self.select_level(token_estimate)
        if level == CompressionLevel.EMERGENCY:
            return self._emergency(history)
        if level == CompressionLevel.HARD:
            return self._hard(history)
        if level == CompressionLevel.SOFT:
            return self._soft(history)
        return list(history)

    def build_context(
        self,
        history: Sequence[Turn],
        new_turn: Optional[Turn] = None,
    ) -> CompressedContext:
        """Compress history plus a pending turn that is about to be sent."""
        turns = list(history)
        if new_turn is not None:
            turns.append(new_turn)

        token_estimate = estimate_tokens(turns)
        advice = self.advise_level(token_estimate)
        if advice.should_compress:
            logger.info(
                f"Compressing context: {token_estimate} tokens, level={advice.level.value}"
            )

        return CompressedContext(
            turns=self.compress(turns, token_estimate),
            level=advice.level,
            token_estimate=token_estimate,
            must_checkpoint=advice.must_checkpoint,
        )

    # =========================================================================
    # Tiers
    # =========================================================================

    def _soft(self, history: Sequence[Turn]) -> list[Turn]:
        if len(history) <= SOFT_MIN_TURNS:
            return list(history)

        head = list(history[:SOFT_KEEP_HEAD])
        middle = history[SOFT_KEEP_HEAD:-SOFT_KEEP_TAIL]
        tail = list(history[-SOFT_KEEP_TAIL:])

        summary = self.summarizer(middle) or "no field activity recorded"
        summary_turn = Turn(
            role=TurnRole.USER,
            content=f"[Previous conversation summary: {summary}]",
        )
        return head + [summary_turn] + tail

    def _hard(self, history: Sequence[Turn]) -> list[Turn]:
        snapshot = self.extractor(history)
        snapshot_turn = Turn(role=TurnRole.USER, content=snapshot.to_context())
        return [snapshot_turn] + list(history[-HARD_KEEP_TAIL:])

    def _emergency(self, history: Sequence[Turn]) -> list[Turn]:
        snapshot = self.extractor(history)
        return [Turn(role=TurnRole.USER, content=snapshot.to_checkpoint_context())]
