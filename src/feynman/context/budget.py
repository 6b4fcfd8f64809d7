"""Token budget estimation.

The estimate is a character-length approximation. The same ratio is
assumed by the compression thresholds, so it must not vary per call.
"""

import math
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from feynman.session.models import Turn

# ~4 characters per token for English text
CHARS_PER_TOKEN = 4


def estimate_text_tokens(text: str) -> int:
    """Estimate tokens for a single string."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_tokens(turns: Iterable["Turn"]) -> int:
    """Estimate tokens for a sequence of turns.

    Pure and deterministic: only the turns' text content counts,
    joined with single spaces.

    Args:
        turns: Conversation turns (anything with a `content` string)

    Returns:
        Non-negative token estimate
    """
    text = " ".join(turn.content for turn in turns)
    return estimate_text_tokens(text)
