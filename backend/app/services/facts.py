from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from backend.app import models
from backend.app.errors import FactTransitionError
from backend.app.processors.extracted import ExtractedFact, clamp_confidence
from backend.app.processors.sections import normalize_section

VERIFICATION_STATUSES = ("pending", "approved", "rejected")

# from-status -> allowed to-statuses
_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("approved", "rejected"),
    "approved": (),
    "rejected": (),
}


def insert_facts(
    db: Session,
    project_id: int,
    document_id: Optional[int],
    facts: Iterable[ExtractedFact],
) -> int:
    """Batch insert; every fact starts pending. No deduplication."""
    rows = [
        models.Fact(
            project_id=project_id,
            source_document_id=document_id,
            category=normalize_section(f.category),
            raw_category=f.category,
            key=f.key[:255],
            value=f.value,
            data_type=f.data_type,
            confidence=clamp_confidence(f.confidence),
            source_location=f.source_location,
            extraction_method=f.extraction_method,
            verification_status="pending",
        )
        for f in facts
    ]
    if not rows:
        return 0
    db.add_all(rows)
    db.commit()
    return len(rows)


def list_facts(
    db: Session,
    project_id: int,
    *,
    category: Optional[str] = None,
    status: Optional[str] = None,
    document_id: Optional[int] = None,
) -> list[models.Fact]:
    q = db.query(models.Fact).filter(models.Fact.project_id == project_id)
    if category:
        q = q.filter(models.Fact.category == normalize_section(category))
    if status:
        q = q.filter(models.Fact.verification_status == status)
    if document_id is not None:
        q = q.filter(models.Fact.source_document_id == document_id)
    q = q.order_by(models.Fact.confidence.desc(), models.Fact.created_at.desc(), models.Fact.id.asc())
    return list(q.all())


def update_fact(
    db: Session,
    fact_id: int,
    status: str,
    value: Optional[str] = None,
) -> Optional[models.Fact]:
    """
    Verify a fact. Returns None if the fact does not exist.

    Approval may carry a corrected value (edit-and-approve is one transition).
    """
    fact = db.get(models.Fact, fact_id)
    if fact is None:
        return None

    if status not in VERIFICATION_STATUSES:
        raise FactTransitionError(f"unknown verification status: {status!r}")

    current = fact.verification_status or "pending"
    if status not in _TRANSITIONS.get(current, ()):
        raise FactTransitionError(f"fact {fact_id}: cannot move from {current} to {status}")

    if value is not None:
        if status != "approved":
            raise FactTransitionError("a replacement value can only accompany an approval")
        value = value.strip()
        if not value:
            raise FactTransitionError("replacement value must not be empty")
        fact.value = value

    fact.verification_status = status
    fact.verified_at = datetime.utcnow()
    db.commit()
    db.refresh(fact)
    return fact
