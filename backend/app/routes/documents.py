from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.db import get_db
from backend.app.schemas import DocumentOut, ProgressOut
from backend.app.services.jobs import enqueue_job, latest_job
from backend.app.services.progress import progress_view
from backend.app.services.storage import PENDING, sha256_hex, store_document_bytes

router = APIRouter()

DOCUMENT_TYPES = ("IM", "DD_PACK", "CONTRACT", "GRID_STUDY", "CONCEPT_DESIGN", "WEATHER_FILE", "OTHER")


def _document_type(requested: Optional[str]) -> str:
    dt = (requested or "OTHER").strip().upper() or "OTHER"
    if dt not in DOCUMENT_TYPES:
        raise HTTPException(status_code=400, detail=f"document_type must be one of {list(DOCUMENT_TYPES)}")
    return dt


def _require_project(db: Session, project_id: int) -> None:
    if not db.get(models.Project, project_id):
        raise HTTPException(status_code=404, detail="project not found")


@router.post("/upload", response_model=DocumentOut)
async def upload_document(
    file: UploadFile = File(...),
    project_id: int = Form(...),
    document_type: str = Form("OTHER"),
    db: Session = Depends(get_db),
):
    """Store an uploaded file and queue it for processing. Storage is local filesystem."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="missing filename")
    _require_project(db, project_id)
    doc_type = _document_type(document_type)

    # Create DB row first so we have a document_id for the storage folder
    document = models.Document(
        project_id=project_id,
        document_type=doc_type,
        mime_type=file.content_type,
        original_filename=file.filename,
        storage_path=PENDING,
        status="uploaded",
    )
    db.add(document)
    db.commit()
    db.refresh(document)

    try:
        stored = store_document_bytes(document.id, file.filename, await file.read())
    finally:
        await file.close()

    document.storage_path = stored.url
    document.bytes_size = stored.bytes_size
    document.sha256 = stored.sha256
    db.commit()
    db.refresh(document)

    # Enqueue AFTER storage_path is set (prevents worker race on PENDING)
    enqueue_job(db, document.id)
    return document


@router.post("/text", response_model=DocumentOut)
def create_text_document(
    project_id: int = Form(...),
    text_content: str = Form(...),
    document_type: str = Form("OTHER"),
    title: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    """Pasted document text; processed like a one-page file."""
    _require_project(db, project_id)
    if not text_content.strip():
        raise HTTPException(status_code=400, detail="text_content is empty")

    document = models.Document(
        project_id=project_id,
        document_type=_document_type(document_type),
        mime_type="text/plain",
        original_filename=title,
        storage_path=None,
        text_content=text_content,
        bytes_size=len(text_content.encode("utf-8")),
        sha256=sha256_hex(text_content.encode("utf-8")),
        status="uploaded",
    )
    db.add(document)
    db.commit()
    db.refresh(document)

    enqueue_job(db, document.id)
    return document


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(document_id: int, db: Session = Depends(get_db)):
    document = db.get(models.Document, document_id)
    if not document:
        raise HTTPException(status_code=404, detail="document not found")
    return document


@router.get("", response_model=list[DocumentOut])
def list_documents(
    project_id: Optional[int] = None,
    limit: int = 200,
    db: Session = Depends(get_db),
):
    q = db.query(models.Document)
    if project_id is not None:
        q = q.filter(models.Document.project_id == project_id)
    q = q.order_by(models.Document.created_at.desc()).limit(max(1, min(limit, 1000)))
    return list(q.all())


@router.post("/{document_id}/reprocess", response_model=ProgressOut)
def reprocess_document(document_id: int, db: Session = Depends(get_db)):
    """Queue a new run; an in-flight older run stops at its next progress write."""
    document = db.get(models.Document, document_id)
    if not document:
        raise HTTPException(status_code=404, detail="document not found")
    job = enqueue_job(db, document.id)
    return progress_view(job)


@router.get("/{document_id}/progress", response_model=ProgressOut)
def get_progress(document_id: int, db: Session = Depends(get_db)):
    if not db.get(models.Document, document_id):
        raise HTTPException(status_code=404, detail="document not found")
    job = latest_job(db, document_id)
    if job is None:
        raise HTTPException(status_code=404, detail="no processing job for document")
    return progress_view(job)
