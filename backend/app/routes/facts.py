from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.db import get_db
from backend.app.errors import FactTransitionError
from backend.app.schemas import FactOut, FactUpdate
from backend.app.services.facts import VERIFICATION_STATUSES, list_facts, update_fact

router = APIRouter()


@router.get("", response_model=list[FactOut])
def get_facts(
    project_id: int,
    category: Optional[str] = None,
    status: Optional[str] = None,
    document_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    if not db.get(models.Project, project_id):
        raise HTTPException(status_code=404, detail="project not found")
    if status and status not in VERIFICATION_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of {list(VERIFICATION_STATUSES)}")
    return list_facts(db, project_id, category=category, status=status, document_id=document_id)


@router.patch("/{fact_id}", response_model=FactOut)
def patch_fact(fact_id: int, payload: FactUpdate, db: Session = Depends(get_db)):
    """Approve (optionally with a corrected value) or reject a pending fact."""
    try:
        fact = update_fact(db, fact_id, payload.status, payload.value)
    except FactTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if fact is None:
        raise HTTPException(status_code=404, detail="fact not found")
    return fact
