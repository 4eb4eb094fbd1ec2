"""
Canonical fact sections and the mapping from extractor wording onto them.
Keep this file data-only (no DB/LLM imports).
"""

from __future__ import annotations

PROJECT_OVERVIEW = "Project_Overview"
FINANCIAL_STRUCTURE = "Financial_Structure"
TECHNICAL_DESIGN = "Technical_Design"
DEPENDENCIES = "Dependencies"
RISKS_AND_ISSUES = "Risks_And_Issues"
ENGINEERING_ASSUMPTIONS = "Engineering_Assumptions"
OTHER = "Other"

# display order
CANONICAL_SECTIONS: tuple[str, ...] = (
    PROJECT_OVERVIEW,
    FINANCIAL_STRUCTURE,
    TECHNICAL_DESIGN,
    DEPENDENCIES,
    RISKS_AND_ISSUES,
    ENGINEERING_ASSUMPTIONS,
    OTHER,
)

SECTION_DISPLAY_NAMES: dict[str, str] = {
    PROJECT_OVERVIEW: "Project Overview",
    FINANCIAL_STRUCTURE: "Financial Structure",
    TECHNICAL_DESIGN: "Technical Design",
    DEPENDENCIES: "Dependencies",
    RISKS_AND_ISSUES: "Risks & Issues",
    ENGINEERING_ASSUMPTIONS: "Engineering Assumptions",
    OTHER: "Other",
}

SECTION_DESCRIPTIONS: dict[str, str] = {
    PROJECT_OVERVIEW: "Project identity, location, ownership, and high-level context",
    FINANCIAL_STRUCTURE: "Financial arrangements, ownership stakes, and commercial structure",
    TECHNICAL_DESIGN: "Technical specifications, design parameters, and equipment details",
    DEPENDENCIES: "External dependencies, grid connections, and project relationships",
    RISKS_AND_ISSUES: "Identified risks, issues, constraints, and potential problems",
    ENGINEERING_ASSUMPTIONS: "Engineering assumptions, design basis, and calculation parameters",
    OTHER: "Uncategorized or miscellaneous information",
}

# keys are lower-case with spaces; lookups fold "_" to " "
_ALIASES: dict[str, str] = {
    # Project overview
    "project overview": PROJECT_OVERVIEW,
    "project identity": PROJECT_OVERVIEW,
    "project details": PROJECT_OVERVIEW,
    "site details": PROJECT_OVERVIEW,
    "site characteristics": PROJECT_OVERVIEW,
    "site conditions": PROJECT_OVERVIEW,

    # Financial
    "financial structure": FINANCIAL_STRUCTURE,
    "financial": FINANCIAL_STRUCTURE,
    "operational relationships": FINANCIAL_STRUCTURE,

    # Technical
    "technical design": TECHNICAL_DESIGN,
    "technical": TECHNICAL_DESIGN,
    "technical specifications": TECHNICAL_DESIGN,
    "specification": TECHNICAL_DESIGN,
    "design parameters": TECHNICAL_DESIGN,
    "technology choice": TECHNICAL_DESIGN,
    "technology choices": TECHNICAL_DESIGN,
    "capacity/sizing": TECHNICAL_DESIGN,
    "capacity sizing": TECHNICAL_DESIGN,
    "energy performance": TECHNICAL_DESIGN,
    "performance estimate": TECHNICAL_DESIGN,
    "performance estimates": TECHNICAL_DESIGN,

    # Dependencies
    "dependencies": DEPENDENCIES,
    "grid connection": DEPENDENCIES,
    "grid infrastructure": DEPENDENCIES,
    "sequencing requirements": DEPENDENCIES,
    "project timeline": DEPENDENCIES,
    "timeline": DEPENDENCIES,
    "timing constraints": DEPENDENCIES,
    "planning": DEPENDENCIES,
    "regulatory": DEPENDENCIES,
    "regulatory compliance": DEPENDENCIES,

    # Risks
    "risks and issues": RISKS_AND_ISSUES,
    "risks": RISKS_AND_ISSUES,
    "risk": RISKS_AND_ISSUES,
    "risks & issues": RISKS_AND_ISSUES,
    "red flags": RISKS_AND_ISSUES,

    # Assumptions
    "engineering assumptions": ENGINEERING_ASSUMPTIONS,
    "engineering assumption": ENGINEERING_ASSUMPTIONS,
    "assumptions": ENGINEERING_ASSUMPTIONS,
    "assumption": ENGINEERING_ASSUMPTIONS,
}

_CANONICAL_BY_FOLDED = {s.lower().replace("_", " "): s for s in CANONICAL_SECTIONS}


def _fold(raw: str) -> str:
    return " ".join(raw.replace("_", " ").lower().split())


def normalize_section(raw: str | None) -> str:
    """Map any extractor category onto a canonical section. Never raises."""
    if not raw or not isinstance(raw, str):
        return OTHER
    folded = _fold(raw)
    if folded in _CANONICAL_BY_FOLDED:
        return _CANONICAL_BY_FOLDED[folded]
    return _ALIASES.get(folded, OTHER)


def section_display_name(section: str) -> str:
    return SECTION_DISPLAY_NAMES.get(section, section)


def section_description(section: str) -> str:
    return SECTION_DESCRIPTIONS.get(section, "")
