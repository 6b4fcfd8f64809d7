"""Validation - model gateway, verdict parsing, and field validation."""

from .verdict import (
    MalformedVerdictError,
    Verdict,
    VerdictStatus,
    extract_json,
    parse_verdict,
)
from .gateway import GatewayConfig, ModelGateway, ModelReply, ModelRequestError
from .orchestrator import (
    ConceptResearch,
    OutcomeKind,
    TeachingFeedback,
    ValidationOrchestrator,
    ValidationOutcome,
)

__all__ = [
    # Verdicts
    "MalformedVerdictError",
    "Verdict",
    "VerdictStatus",
    "extract_json",
    "parse_verdict",
    # Gateway
    "GatewayConfig",
    "ModelGateway",
    "ModelReply",
    "ModelRequestError",
    # Orchestration
    "ConceptResearch",
    "OutcomeKind",
    "TeachingFeedback",
    "ValidationOrchestrator",
    "ValidationOutcome",
]
