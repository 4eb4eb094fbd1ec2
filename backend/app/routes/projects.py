from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.db import get_db
from backend.app.processors.narratives import list_narratives
from backend.app.processors.sections import RISKS_AND_ISSUES, section_display_name
from backend.app.schemas import NarrativeOut, ProjectCreate, ProjectOut, RedFlagsOut
from backend.app.services import risk
from backend.app.services.facts import list_facts

router = APIRouter()


def _get_project(db: Session, project_id: int) -> models.Project:
    project = db.get(models.Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="project not found")
    return project


@router.post("", response_model=ProjectOut)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db)):
    project = models.Project(
        name=payload.name,
        description=payload.description,
        latitude=payload.latitude,
        longitude=payload.longitude,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


@router.get("", response_model=list[ProjectOut])
def list_projects(db: Session = Depends(get_db)):
    return list(db.query(models.Project).order_by(models.Project.created_at.desc()).all())


@router.get("/{project_id}", response_model=ProjectOut)
def get_project(project_id: int, db: Session = Depends(get_db)):
    return _get_project(db, project_id)


@router.get("/{project_id}/red-flags", response_model=RedFlagsOut)
def get_red_flags(
    project_id: int,
    severity: Optional[str] = None,
    category: Optional[str] = None,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Risk facts with derived severity and category. Stats cover the unfiltered set."""
    _get_project(db, project_id)
    if severity and severity not in risk.SEVERITIES:
        raise HTTPException(status_code=400, detail=f"severity must be one of {list(risk.SEVERITIES)}")

    facts = list_facts(db, project_id, category=RISKS_AND_ISSUES)
    all_flags = risk.red_flags(facts)
    shown = risk.red_flags(facts, severity=severity, category=category, search=q)

    return {
        "stats": risk.summarize(all_flags),
        "red_flags": [
            {"fact": rf.fact, "severity": rf.severity, "risk_category": rf.risk_category}
            for rf in shown
        ],
    }


@router.get("/{project_id}/narratives", response_model=list[NarrativeOut])
def get_narratives(project_id: int, db: Session = Depends(get_db)):
    _get_project(db, project_id)
    return [
        {
            "section": n.section,
            "display_name": section_display_name(n.section),
            "narrative": n.narrative,
            "updated_at": n.updated_at,
        }
        for n in list_narratives(db, project_id)
    ]
