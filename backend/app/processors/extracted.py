from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DETERMINISTIC_REGEX = "deterministic_regex"
LLM_STRUCTURED = "llm_structured"
LLM_RELATIONSHIP = "llm_relationship"
LLM_RISK = "llm_risk"
LLM_ASSUMPTION = "llm_assumption"

EXTRACTION_METHODS = (
    DETERMINISTIC_REGEX,
    LLM_STRUCTURED,
    LLM_RELATIONSHIP,
    LLM_RISK,
    LLM_ASSUMPTION,
)


@dataclass(frozen=True)
class ExtractedFact:
    """A fact as produced by an extractor, before it is stored."""

    category: str
    key: str
    value: str
    confidence: float
    extraction_method: str
    data_type: str = "text"
    source_location: Optional[str] = None


def clamp_confidence(value) -> float:
    try:
        c = float(value)
    except (TypeError, ValueError):
        return 0.5
    if c != c:  # NaN
        return 0.5
    return max(0.0, min(1.0, c))
