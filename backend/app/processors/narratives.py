from __future__ import annotations

import traceback
from collections import defaultdict
from datetime import datetime

from sqlalchemy.orm import Session

from backend.app import models
from backend.app.config import PipelineDeps
from backend.app.processors.sections import CANONICAL_SECTIONS, OTHER, section_display_name

MAX_FACTS_PER_SECTION = 60

NARRATIVE_SCHEMA = {
    "type": "object",
    "properties": {"narrative": {"type": "string"}},
    "required": ["narrative"],
    "additionalProperties": False,
}

SYSTEM_PROMPT = (
    "You are a technical writing assistant. Synthesize the project insights you are given "
    "into cohesive narrative prose suitable for executive review. Keep every factual detail; "
    "do not add facts that are not in the list."
)


def _build_prompt(display_name: str, values: list[str]) -> str:
    lines = "\n".join(f"{i}. {v}" for i, v in enumerate(values, start=1))
    return (
        f"Section: {display_name}\n\n"
        f"Insights:\n{lines}\n\n"
        "Synthesize these insights into 2-3 well-structured paragraphs. "
        'Return JSON: {"narrative": "..."}'
    )


def generate_section_narratives(db: Session, project_id: int, deps: PipelineDeps) -> int:
    """
    (Re)write one narrative per canonical section that has non-rejected facts.

    A section whose model call fails keeps its previous narrative. Returns the
    number of sections written.
    """
    facts = (
        db.query(models.Fact)
        .filter(
            models.Fact.project_id == project_id,
            models.Fact.verification_status != "rejected",
        )
        .order_by(models.Fact.confidence.desc(), models.Fact.id.asc())
        .all()
    )

    by_section: dict[str, list[str]] = defaultdict(list)
    for f in facts:
        by_section[f.category].append(f.value)

    written = 0
    for section in CANONICAL_SECTIONS:
        if section == OTHER or not by_section.get(section):
            continue

        values = by_section[section][:MAX_FACTS_PER_SECTION]
        display = section_display_name(section)
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": _build_prompt(display, values)},
        ]
        try:
            out = deps.llm.invoke(messages, NARRATIVE_SCHEMA)
            text = str(out.get("narrative") or "").strip()
        except Exception as e:
            print(f"[narratives] section={section} failed: {e!r}", flush=True)
            traceback.print_exc()
            continue

        if not text:
            print(f"[narratives] section={section} empty narrative; keeping previous", flush=True)
            continue

        _upsert(db, project_id, section, text)
        written += 1
        print(f"[narratives] section={section} facts={len(values)} chars={len(text)}", flush=True)

    db.commit()
    return written


def _upsert(db: Session, project_id: int, section: str, text: str) -> None:
    row = (
        db.query(models.SectionNarrative)
        .filter(
            models.SectionNarrative.project_id == project_id,
            models.SectionNarrative.section == section,
        )
        .first()
    )
    if row is None:
        db.add(models.SectionNarrative(project_id=project_id, section=section, narrative=text))
    else:
        row.narrative = text
        row.updated_at = datetime.utcnow()
    db.flush()


def list_narratives(db: Session, project_id: int) -> list[models.SectionNarrative]:
    rows = (
        db.query(models.SectionNarrative)
        .filter(models.SectionNarrative.project_id == project_id)
        .all()
    )
    order = {s: i for i, s in enumerate(CANONICAL_SECTIONS)}
    return sorted(rows, key=lambda r: order.get(r.section, len(order)))
