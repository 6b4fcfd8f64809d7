"""Prompt text exchanged with the validating model.

Turns written here carry the markers that context extraction scans
for (``Concept:``, ``Field:``, ``User's attempt #n:``, ``APPROVED``,
``Misconception caught:``). Changing their wording changes what the
compressor can recover from history.
"""

import re
from typing import Optional

from feynman.session.models import FieldName
from feynman.validation.verdict import Verdict, VerdictStatus

MISCONCEPTION_PREFIX_RE = re.compile(r"^\s*misconception:\s*", re.IGNORECASE)

FIELD_GOALS: dict[FieldName, str] = {
    FieldName.DEFINITION: "what it is, in one or two plain sentences",
    FieldName.MECHANISM: "how it works, step by step",
    FieldName.EXAMPLE: "a specific, real situation where it shows up",
    FieldName.ANALOGY: "an everyday thing it is like, and where the likeness ends",
    FieldName.WHY_IT_MATTERS: "why someone should care about it",
    FieldName.MISCONCEPTION: "a common mistake people make about it, and the correction",
    FieldName.INTEGRATION: "how it connects to things the learner already knows",
}


def build_framing_prompt(concept: str, module_names: list[str]) -> str:
    """First user turn of a session."""
    text = f'Concept: "{concept}"\n\nI want to learn this using the Feynman technique.'
    if module_names:
        text += f"\nModules: {', '.join(module_names)}"
    return text


def build_framing_reply(first_field: FieldName) -> str:
    """First assistant turn of a session."""
    return (
        "Great. Explain it to me as if I were five years old.\n\n"
        f"Field: {first_field.value}\n"
        f"Goal: {FIELD_GOALS[first_field]}"
    )


def build_attempt_prompt(
    field: FieldName,
    concept: Optional[str],
    text: str,
    attempt_number: int,
    encouragement: Optional[str] = None,
) -> str:
    """User turn carrying one submission.

    Repeats the concept marker so snapshots still find the concept once
    the framing turn has been dropped from saved history.
    """
    lines = [
        f'Concept: "{concept}"' if concept else "Concept not named yet.",
        "I'm teaching this using the Feynman technique.",
        "",
        f"Field: {field.value}",
        f"Goal: {FIELD_GOALS[field]}",
        "",
        f'User\'s attempt #{attempt_number}: "{text}"',
        "",
        (
            f"Previous attempts: {attempt_number - 1}"
            if attempt_number > 1
            else "This is their first attempt."
        ),
    ]
    if encouragement:
        lines += ["", f"The learner seems frustrated. Open with: {encouragement}"]
    return "\n".join(lines)


def render_verdict_turn(field: FieldName, verdict: Verdict) -> str:
    """Assistant turn recording a verdict in history."""
    lines = [f"Field: {field.value}"]
    if verdict.status == VerdictStatus.APPROVED:
        lines.append("APPROVED")
    else:
        lines.append("Needs revision")
    if verdict.strengths:
        lines.append(f"Strengths: {'; '.join(verdict.strengths)}")
    for issue in verdict.issues:
        if "misconception" in issue.lower():
            detail = MISCONCEPTION_PREFIX_RE.sub("", issue)
            lines.append(f"Misconception caught: {detail}")
        else:
            lines.append(f"Issue: {issue}")
    if verdict.suggestion:
        lines.append(f"Suggestion: {verdict.suggestion}")
    return "\n".join(lines)


def get_validation_system_prompt(field: FieldName, concept: Optional[str]) -> str:
    """System instruction for validating one field."""
    return f"""You are a Socratic tutor using the Feynman technique to check understanding of "{concept or 'the concept'}".

The learner must explain things so simply that a curious five-year-old could follow.
Field being validated: {field.value} ({FIELD_GOALS[field]})

Approve only when the explanation is both simple and accurate. A simple
explanation that is mostly right beats a precise one full of jargon.
Name any misconception explicitly as "misconception: ...".

{get_verdict_instructions()}"""


def get_verdict_instructions() -> str:
    """Output format appended to every validation request."""
    return """## Response Format

Respond with valid JSON only:

```json
{
    "status": "approved",  // or "needs_revision"
    "issues": [],          // what is wrong or missing
    "strengths": [],       // what works
    "suggestion": null     // one concrete next step, or null
}
```"""


def get_analysis_system_prompt() -> str:
    """System instruction for breaking a concept into modules."""
    return """You are a curriculum designer. Decide whether a concept needs to be broken into modules.
A concept needs modules if it has multiple distinct sub-concepts, complex prerequisites,
or would take more than 30 minutes to master. Otherwise keep it as a single module.

Respond with valid JSON only:
{"needsModules": true, "modules": [{"name": "...", "description": "...", "order": 1}], "rationale": "..."}"""


def build_analysis_prompt(concept: str, research: Optional[str] = None) -> str:
    question = "Should this be split into learning modules? If so, which, and in what order?"
    if research:
        return f'Concept: "{concept}"\n\nResearch notes:\n{research}\n\n{question}'
    return f'Concept: "{concept}"\n\n{question}'


# =============================================================================
# Research
# =============================================================================


def get_research_system_prompt() -> str:
    """System instruction for preparing teaching notes on a concept."""
    return """You are a research assistant preparing material for teaching with the Feynman technique.
Be accurate and plain-spoken. Point out the misconceptions learners usually bring with them."""


def build_research_prompt(concept: str) -> str:
    return f"""Research the concept "{concept}" so it can be taught with the Feynman technique. Cover:
1. Core definition and key principles
2. Common misconceptions
3. Prerequisites needed to understand it
4. Real-world applications
5. Complexity estimate (simple/moderate/complex)"""


# =============================================================================
# Teaching feedback
# =============================================================================


def get_teaching_system_prompt(field: FieldName, concept: Optional[str]) -> str:
    """System instruction for free-form guidance on a draft."""
    return f"""You are a Socratic tutor using the Feynman technique to build deep understanding of "{concept or 'the concept'}".

The learner must explain things so simply that a five-year-old could follow.
Reject jargon and academic phrasing, ask for everyday analogies (kitchen,
playground, toys, nature) and point out misconceptions as soon as you see them.
Keep pushing for a simpler version: "Can you say that even simpler?"

Field being taught: {field.value} ({FIELD_GOALS[field]})"""


def build_teaching_prompt(
    field: FieldName,
    concept: Optional[str],
    draft: str,
    previous_attempts: int,
) -> str:
    """User turn asking for guidance on a draft, without a verdict."""
    lines = [
        f'Concept: "{concept}"' if concept else "Concept not named yet.",
        "",
        f"Field: {field.value}",
        f"Goal: {FIELD_GOALS[field]}",
        "",
        f'User\'s draft: "{draft}"',
        "",
        (
            f"Times submitted so far: {previous_attempts}"
            if previous_attempts
            else "Nothing submitted for this field yet."
        ),
        "",
        "Give guidance on this draft. Be specific about what is wrong or missing,",
        "encouraging but honest, and patient with struggle. Do not give a verdict;",
        "the learner will submit the field for checking separately.",
    ]
    return "\n".join(lines)
