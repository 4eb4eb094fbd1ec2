# backend/app/processors/registry.py
from __future__ import annotations

import traceback
from typing import Callable

from sqlalchemy.orm import Session

from backend.app import models
from backend.app.config import PipelineDeps
from backend.app.errors import ProgressWriteError, RunSupersededError, RunTerminatedError
from backend.app.processors import deterministic, narratives, parameters, weather_refs
from backend.app.processors.multipass import MultiPassExtractor
from backend.app.processors.text_source import document_text
from backend.app.services import progress
from backend.app.services.facts import insert_facts
from backend.app.services.progress import ProgressTracker
from backend.app.services.validation_trigger import maybe_trigger_validation


def run_job(db: Session, job: models.ProcessingJob, deps: PipelineDeps) -> None:
    jt = (job.job_type or "").strip().lower()
    print(f"[registry] run_job job_id={job.id} type={jt} document_id={job.document_id} run={job.run}")

    if jt == "process_document":
        process_document(db, job, deps)
        return

    raise RuntimeError(f"unknown job type: {job.job_type!r}")


def process_document(db: Session, job: models.ProcessingJob, deps: PipelineDeps) -> None:
    """
    Full pipeline for one document run.

    Text extraction, fact persistence and progress writes are fatal; the later
    enrichment stages log and move on. Facts stored before a failure stay.
    """
    document = db.get(models.Document, job.document_id)
    if not document:
        raise RuntimeError(f"document not found: {job.document_id}")

    tracker = ProgressTracker(db, job)
    try:
        tracker.start()
        document.status = "processing"
        document.error_message = None
        db.commit()

        _run_stages(db, tracker, document, deps)

        document.status = "processed"
        tracker.complete()
    except RunTerminatedError as e:
        # the job row already says how this run ended; leave it alone
        print(f"[registry] {e}; stopping", flush=True)
        db.rollback()
        if job.status == "failed":
            document.status = "error"
            document.error_message = (job.error_message or str(e))[:2000]
            db.commit()
    except RunSupersededError as e:
        print(f"[registry] {e}; stopping", flush=True)
        db.rollback()
        tracker.fail(f"superseded: {e}")
    except Exception as e:
        print(f"[registry] document_id={document.id} FAILED at {tracker.stage}: {e!r}", flush=True)
        traceback.print_exc()
        db.rollback()
        document.status = "error"
        document.error_message = str(e)[:2000]
        tracker.fail(str(e))
        raise


def _run_stages(db: Session, tracker: ProgressTracker, document: models.Document, deps: PipelineDeps) -> None:
    doc_type = document.document_type or "OTHER"
    file_name = document.original_filename or f"document-{document.id}"

    # 1) text
    tracker.advance(progress.TEXT_EXTRACTION, 10)
    text, page_count = document_text(document)
    if not text.strip():
        raise RuntimeError("document contains no extractable text")
    document.page_count = page_count
    db.commit()
    tracker.advance(progress.TEXT_EXTRACTION, 30)

    # 2) deterministic
    tracker.advance(progress.DETERMINISTIC_EXTRACTION, 40)
    n = insert_facts(db, document.project_id, document.id, deterministic.extract(text))
    print(f"[registry] deterministic facts={n}", flush=True)
    tracker.advance(progress.DETERMINISTIC_EXTRACTION, 50)

    # 3) llm passes; the callback runs in this thread
    lo, hi = progress.stage_range(progress.LLM_EXTRACTION)
    tracker.advance(progress.LLM_EXTRACTION, lo)

    def on_pass_complete(name: str, n_facts: int, done: int, total: int) -> None:
        tracker.advance(progress.LLM_EXTRACTION, lo + (hi - lo) * done // total)

    result = MultiPassExtractor(deps).extract_facts(text, doc_type, file_name, on_pass_complete=on_pass_complete)
    n = insert_facts(db, document.project_id, document.id, result.facts)
    print(f"[registry] llm facts={n} failed_passes={result.failed_passes}", flush=True)
    tracker.advance(progress.LLM_EXTRACTION, hi)

    # 4-8) enrichment
    _optional_stage(db, tracker, progress.GENERATING_NARRATIVES,
                    lambda: narratives.generate_section_narratives(db, document.project_id, deps))
    _optional_stage(db, tracker, progress.EXTRACTING_PERFORMANCE_PARAMS,
                    lambda: _performance(db, document, deps, text, doc_type))
    _optional_stage(db, tracker, progress.EXTRACTING_FINANCIAL_DATA,
                    lambda: _financial(db, document, deps, text, doc_type))
    _optional_stage(db, tracker, progress.EXTRACTING_WEATHER_FILES,
                    lambda: weather_refs.store_weather_references(
                        db, document, weather_refs.extract_weather_references(deps, text, file_name)))
    _optional_stage(db, tracker, progress.CHECKING_VALIDATION_TRIGGER,
                    lambda: maybe_trigger_validation(db, document.project_id, http=deps.weather_client(),
                                                     weather_year=deps.config.weather_year),
                    end=False)


def _optional_stage(db: Session, tracker: ProgressTracker, stage: str, fn: Callable[[], object], end: bool = True) -> None:
    lo, hi = progress.stage_range(stage)
    tracker.advance(stage, lo)
    try:
        fn()
    except (RunSupersededError, ProgressWriteError):
        raise
    except Exception as e:
        db.rollback()
        print(f"[registry] stage={stage} skipped: {e!r}", flush=True)
        traceback.print_exc()
    # the last stage ends through tracker.complete()
    if end:
        tracker.advance(stage, hi)


def _performance(db: Session, document: models.Document, deps: PipelineDeps, text: str, doc_type: str) -> None:
    res = parameters.extract_performance_parameters(deps, text, doc_type)
    if res is None:
        print("[registry] performance parameters unavailable", flush=True)
        return
    parameters.store_performance_parameters(db, document, *res)


def _financial(db: Session, document: models.Document, deps: PipelineDeps, text: str, doc_type: str) -> None:
    res = parameters.extract_financial_data(deps, text, doc_type)
    if res is None:
        print("[registry] financial data unavailable", flush=True)
        return
    parameters.store_financial_data(db, document, *res)
