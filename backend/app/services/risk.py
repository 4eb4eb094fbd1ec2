"""
Red-flag derivation for risk facts.

Severity and category are computed on read from a fact's value, key and
confidence; nothing here touches the database. Both classifiers walk an
ordered rule table and return the label of the first matching rule.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from backend.app.processors.sections import RISKS_AND_ISSUES, normalize_section

CRITICAL_KEYWORDS = ("must", "critical", "fatal", "failure", "impossible", "cannot", "blocked", "showstopper")
HIGH_KEYWORDS = ("significant", "major", "substantial", "severe", "serious", "urgent", "delay")
MEDIUM_KEYWORDS = ("moderate", "potential", "possible", "may", "could", "risk", "issue", "concern")

LOW_CONFIDENCE_THRESHOLD = 0.8

SEVERITIES = ("critical", "high", "medium", "low")


def _value(fact: Any) -> str:
    return str(_get(fact, "value") or "").lower()


def _key(fact: Any) -> str:
    return str(_get(fact, "key") or "").lower()


def _confidence(fact: Any) -> float:
    try:
        return float(_get(fact, "confidence") or 0)
    except (TypeError, ValueError):
        return 0.0


def _get(fact: Any, name: str) -> Any:
    if isinstance(fact, dict):
        return fact.get(name)
    return getattr(fact, name, None)


def _value_has(keywords: tuple[str, ...]) -> Callable[[Any], bool]:
    return lambda fact: any(kw in _value(fact) for kw in keywords)


def _key_has(*keywords: str) -> Callable[[Any], bool]:
    return lambda fact: any(kw in _key(fact) for kw in keywords)


SEVERITY_RULES: tuple[tuple[Callable[[Any], bool], str], ...] = (
    (_value_has(CRITICAL_KEYWORDS), "critical"),
    (_value_has(HIGH_KEYWORDS), "high"),
    (_value_has(MEDIUM_KEYWORDS), "medium"),
    (lambda fact: _confidence(fact) < LOW_CONFIDENCE_THRESHOLD, "low"),
)
DEFAULT_SEVERITY = "medium"

CATEGORY_RULES: tuple[tuple[Callable[[Any], bool], str], ...] = (
    (_key_has("planning", "schedule", "timeline"), "Planning & Timeline"),
    (_key_has("grid", "connection", "infrastructure"), "Grid Integration"),
    (_key_has("geotech", "site", "soil"), "Geotechnical"),
    (_key_has("regulatory", "permit", "compliance"), "Regulatory"),
    (_key_has("financial", "cost", "budget"), "Financial"),
    (_key_has("technical", "design", "engineering"), "Technical"),
    (_key_has("environmental", "esia", "social"), "Environmental/Social"),
)
DEFAULT_CATEGORY = "Other"

RISK_CATEGORIES = tuple(label for _, label in CATEGORY_RULES) + (DEFAULT_CATEGORY,)


def _first_match(rules, fact: Any, default: str) -> str:
    for predicate, label in rules:
        if predicate(fact):
            return label
    return default


def classify_risk_severity(fact: Any) -> str:
    return _first_match(SEVERITY_RULES, fact, DEFAULT_SEVERITY)


def extract_risk_category(fact: Any) -> str:
    return _first_match(CATEGORY_RULES, fact, DEFAULT_CATEGORY)


def is_risk_fact(fact: Any) -> bool:
    return normalize_section(_get(fact, "category")) == RISKS_AND_ISSUES


@dataclass(frozen=True)
class RiskFact:
    fact: Any
    severity: str
    risk_category: str


def to_risk_fact(fact: Any) -> RiskFact:
    return RiskFact(
        fact=fact,
        severity=classify_risk_severity(fact),
        risk_category=extract_risk_category(fact),
    )


def red_flags(
    facts: Iterable[Any],
    *,
    severity: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
) -> list[RiskFact]:
    """Risk-section facts with derived severity/category, optionally filtered."""
    needle = (search or "").strip().lower()
    out: list[RiskFact] = []
    for fact in facts:
        if not is_risk_fact(fact):
            continue
        rf = to_risk_fact(fact)
        if severity and rf.severity != severity:
            continue
        if category and rf.risk_category != category:
            continue
        if needle and needle not in _value(fact):
            continue
        out.append(rf)
    return out


def summarize(risks: Iterable[RiskFact]) -> dict[str, int]:
    stats = {"total": 0, "pending": 0, "acknowledged": 0}
    stats.update({s: 0 for s in SEVERITIES})
    for rf in risks:
        stats["total"] += 1
        stats[rf.severity] += 1
        status = _get(rf.fact, "verification_status")
        if status == "pending":
            stats["pending"] += 1
        elif status == "approved":
            stats["acknowledged"] += 1
    return stats
