"""Context budget management.

This package provides:
- Token estimation for conversation history
- Snapshot and summary extraction from history text
- Tiered compression (normal/soft/hard/emergency) of outbound context

Only the estimator is re-exported here; import compression and
extraction from their modules, since both depend on the session models.
"""

from .budget import (
    CHARS_PER_TOKEN,
    estimate_text_tokens,
    estimate_tokens,
)

__all__ = [
    "CHARS_PER_TOKEN",
    "estimate_text_tokens",
    "estimate_tokens",
]
