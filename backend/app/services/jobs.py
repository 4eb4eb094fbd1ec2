from datetime import datetime
from sqlalchemy.orm import Session
from backend.app import models
from backend.app.services.progress import latest_run

def enqueue_job(db: Session, document_id: int, job_type: str = "process_document") -> models.ProcessingJob:
    """Queue a new run for a document. The new run supersedes any earlier one."""
    job = models.ProcessingJob(
        document_id=document_id,
        job_type=job_type,
        run=latest_run(db, document_id) + 1,
        status="queued",
        updated_at=datetime.utcnow(),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def latest_job(db: Session, document_id: int) -> models.ProcessingJob | None:
    return (
        db.query(models.ProcessingJob)
        .filter(models.ProcessingJob.document_id == document_id)
        .order_by(models.ProcessingJob.run.desc())
        .first()
    )
