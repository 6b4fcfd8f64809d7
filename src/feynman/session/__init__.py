"""Learning session - state model, continuation codes, and frustration signals."""

from .models import (
    FIELD_ORDER,
    STATE_VERSION,
    Attempt,
    EmotionalState,
    FieldName,
    FieldRecord,
    FieldStatus,
    InvalidTransitionError,
    LearningModule,
    SessionState,
    Turn,
    TurnRole,
    next_field,
    previous_field,
)
from .continuation import (
    CODE_TAG,
    ContinuationCodeError,
    EssentialState,
    build_continuation_url,
    code_size,
    decode_state,
    encode_state,
    generate_prefix,
    parse_continuation_url,
    validate_code,
)

__all__ = [
    # Models
    "FIELD_ORDER",
    "STATE_VERSION",
    "Attempt",
    "EmotionalState",
    "FieldName",
    "FieldRecord",
    "FieldStatus",
    "InvalidTransitionError",
    "LearningModule",
    "SessionState",
    "Turn",
    "TurnRole",
    "next_field",
    "previous_field",
    # Continuation codes
    "CODE_TAG",
    "ContinuationCodeError",
    "EssentialState",
    "build_continuation_url",
    "code_size",
    "decode_state",
    "encode_state",
    "generate_prefix",
    "parse_continuation_url",
    "validate_code",
]
