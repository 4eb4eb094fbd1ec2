"""
Per-document progress state machine, persisted on the ProcessingJob row.

Eight ordered stages each own a closed percent range. Within one run the
stage ordinal and the percent never decrease; a failed run keeps the percent
it reached. Only the orchestrator of the current run writes here.
"""

from __future__ import annotations

import traceback
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.errors import (
    ProgressRegressionError,
    ProgressWriteError,
    RunSupersededError,
    RunTerminatedError,
)

TEXT_EXTRACTION = "text_extraction"
DETERMINISTIC_EXTRACTION = "deterministic_extraction"
LLM_EXTRACTION = "llm_extraction"
GENERATING_NARRATIVES = "generating_narratives"
EXTRACTING_PERFORMANCE_PARAMS = "extracting_performance_params"
EXTRACTING_FINANCIAL_DATA = "extracting_financial_data"
EXTRACTING_WEATHER_FILES = "extracting_weather_files"
CHECKING_VALIDATION_TRIGGER = "checking_validation_trigger"

# (stage, min %, max %) in pipeline order
STAGES: tuple[tuple[str, int, int], ...] = (
    (TEXT_EXTRACTION, 0, 30),
    (DETERMINISTIC_EXTRACTION, 30, 50),
    (LLM_EXTRACTION, 50, 90),
    (GENERATING_NARRATIVES, 90, 92),
    (EXTRACTING_PERFORMANCE_PARAMS, 92, 94),
    (EXTRACTING_FINANCIAL_DATA, 94, 96),
    (EXTRACTING_WEATHER_FILES, 96, 98),
    (CHECKING_VALIDATION_TRIGGER, 98, 100),
)
STAGE_NAMES = tuple(s for s, _, _ in STAGES)
_ORDINAL = {s: i for i, s in enumerate(STAGE_NAMES)}
_RANGE = {s: (lo, hi) for s, lo, hi in STAGES}

STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)


def stage_ordinal(stage: str) -> int:
    try:
        return _ORDINAL[stage]
    except KeyError:
        raise ValueError(f"unknown stage: {stage!r}") from None


def stage_range(stage: str) -> tuple[int, int]:
    stage_ordinal(stage)
    return _RANGE[stage]


def latest_run(db: Session, document_id: int) -> int:
    n = (
        db.query(func.max(models.ProcessingJob.run))
        .filter(models.ProcessingJob.document_id == document_id)
        .scalar()
    )
    return int(n or 0)


class ProgressTracker:
    """Single writer for one ProcessingJob (one run of one document)."""

    def __init__(self, db: Session, job: models.ProcessingJob):
        self.db = db
        self.job = job
        # set once this tracker has written a terminal status
        self._finished = False

    @property
    def stage(self) -> str:
        return self.job.stage

    @property
    def percent(self) -> int:
        return self.job.progress_percent or 0

    def _stored_status(self) -> str:
        """Status as committed by any session (the worker may fail a stuck run)."""
        try:
            self.db.refresh(self.job, ["status"])
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ProgressWriteError(f"job {self.job.id}: could not read status: {e!r}") from e
        return self.job.status

    def check_current(self) -> None:
        if self._finished:
            raise RunTerminatedError(f"job {self.job.id}: run already {self.job.status}")
        status = self._stored_status()
        if status in TERMINAL_STATUSES:
            self._finished = True
            raise RunTerminatedError(f"job {self.job.id}: run already {status} ({self.job.error_message})")

        newest = latest_run(self.db, self.job.document_id)
        if newest > (self.job.run or 1):
            raise RunSupersededError(
                f"document {self.job.document_id}: run {self.job.run} superseded by run {newest}"
            )

    def start(self) -> None:
        self.check_current()
        now = datetime.utcnow()
        self.job.status = STATUS_PROCESSING
        self.job.started_at = self.job.started_at or now
        self._write(TEXT_EXTRACTION, max(self.percent, 0))

    def advance(self, stage: str, percent: int) -> None:
        lo, hi = stage_range(stage)
        percent = int(percent)
        if not lo <= percent <= hi:
            raise ValueError(f"{percent}% outside {stage} range [{lo}, {hi}]")

        if stage_ordinal(stage) < stage_ordinal(self.stage):
            raise ProgressRegressionError(f"stage regression {self.stage} -> {stage}")
        if percent < self.percent:
            raise ProgressRegressionError(f"percent regression {self.percent} -> {percent}")

        self.check_current()
        self._write(stage, percent)

    def complete(self) -> None:
        self.check_current()
        self.job.status = STATUS_COMPLETED
        self.job.completed_at = datetime.utcnow()
        self.job.error_message = None
        self._write(CHECKING_VALIDATION_TRIGGER, 100)
        self._finished = True

    def fail(self, message: str) -> None:
        """
        Terminal failure; stage and percent stay where the run stopped.

        A run that is already terminal keeps its status and error message.
        """
        if self._finished or self._stored_status() in TERMINAL_STATUSES:
            self._finished = True
            print(f"[progress] job={self.job.id} already {self.job.status}; not failing again: {message}", flush=True)
            return
        self.job.status = STATUS_FAILED
        self.job.error_message = (message or "failed")[:2000]
        self.job.completed_at = datetime.utcnow()
        self._write(self.stage, self.percent)
        self._finished = True

    def _write(self, stage: str, percent: int) -> None:
        self.job.stage = stage
        self.job.progress_percent = percent
        self.job.updated_at = datetime.utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            traceback.print_exc()
            raise ProgressWriteError(f"job {self.job.id}: progress write failed: {e!r}") from e
        print(f"[progress] doc={self.job.document_id} run={self.job.run} {stage} {percent}% {self.job.status}", flush=True)


def estimate_time_remaining(elapsed_s: float, percent: float) -> Optional[float]:
    """Advisory ETA in seconds: elapsed/percent*100 - elapsed."""
    if percent <= 0 or elapsed_s < 0:
        return None
    if percent >= 100:
        return 0.0
    return elapsed_s / percent * 100 - elapsed_s


def progress_view(job: models.ProcessingJob, now: Optional[datetime] = None) -> dict[str, Any]:
    """Poller view of a job; recomputes the ETA on every call."""
    now = now or datetime.utcnow()
    failed = job.status == STATUS_FAILED

    eta = None
    if job.status == STATUS_PROCESSING and job.started_at is not None:
        elapsed = (now - job.started_at).total_seconds()
        eta = estimate_time_remaining(elapsed, job.progress_percent or 0)
        if eta is not None:
            eta = round(eta, 1)

    return {
        "job_id": job.id,
        "document_id": job.document_id,
        "run": job.run,
        "stage": "failed" if failed else job.stage,
        "failed_at_stage": job.stage if failed else None,
        "progress_percent": job.progress_percent or 0,
        "status": job.status,
        "error_message": job.error_message,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "updated_at": job.updated_at,
        "estimated_seconds_remaining": eta,
    }
