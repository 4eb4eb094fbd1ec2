# backend/scripts/worker.py
"""
DB-backed background worker.

Goals:
- Works locally (SQLite) and in prod-ish setups
- Loads configuration from a .env file (no manual exports needed)
- Still allows CLI args to override env/.env
- Runs the document pipeline via processors.registry.run_job
- Builds the LLM client / HTTP client bundle once and passes it to every job
- A failed run stays failed (reprocess = new run); stuck runs are failed, not requeued
"""

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
import traceback
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_

POLL_SECONDS_DEFAULT = 1.0
RECLAIM_AFTER_SECONDS_DEFAULT = 30 * 60  # 30 minutes


def _load_dotenv_early() -> None:
    """
    Load .env as early as possible so DATABASE_URL / LLM_* are visible
    before importing backend modules that read env at import time.
    """
    from dotenv import load_dotenv

    # override=False means existing environment variables win over .env values.
    load_dotenv(override=False)


# Load dotenv BEFORE any backend imports that may capture env
_load_dotenv_early()


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Solar DD document processing worker")

    # Core
    p.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL"),
        help="Database URL (overrides DATABASE_URL). Example: sqlite:////abs/path/demo.db",
    )
    p.add_argument(
        "--poll-seconds",
        type=float,
        default=float(os.getenv("WORKER_POLL_SECONDS", str(POLL_SECONDS_DEFAULT))),
        help="Seconds to sleep when no jobs are available",
    )
    p.add_argument(
        "--reclaim-after-seconds",
        type=int,
        default=int(os.getenv("WORKER_RECLAIM_AFTER_SECONDS", str(RECLAIM_AFTER_SECONDS_DEFAULT))),
        help="If a job is stuck in 'processing' longer than this, mark it failed",
    )

    # LLM backend
    p.add_argument("--llm-backend", default=os.getenv("LLM_BACKEND"), help="'llamacpp' or 'ollama'")
    p.add_argument("--ollama-url", default=os.getenv("OLLAMA_BASE_URL"))
    p.add_argument("--ollama-model", default=os.getenv("OLLAMA_MODEL"))

    # Llama.cpp config (all optional)
    p.add_argument("--llama-gguf-path", default=os.getenv("LLAMA_GGUF_PATH"))
    p.add_argument("--llama-threads", type=int, default=int(os.getenv("LLAMA_THREADS", "8")))
    p.add_argument("--llama-n-ctx", type=int, default=int(os.getenv("LLAMA_N_CTX", "8192")))
    p.add_argument("--llama-gpu-layers", type=int, default=int(os.getenv("LLAMA_GPU_LAYERS", "0")))
    p.add_argument("--llama-temperature", type=float, default=float(os.getenv("LLAMA_TEMPERATURE", "0.1")))
    p.add_argument("--llama-max-tokens", type=int, default=int(os.getenv("LLAMA_MAX_TOKENS", "2000")))

    return p.parse_args()


def _apply_env(args: argparse.Namespace) -> None:
    """
    Apply CLI overrides to env (CLI wins over .env).
    IMPORTANT: This should run BEFORE importing backend.app.db.
    """
    if args.db:
        os.environ["DATABASE_URL"] = args.db

    if args.llm_backend:
        os.environ["LLM_BACKEND"] = args.llm_backend
    if args.ollama_url:
        os.environ["OLLAMA_BASE_URL"] = args.ollama_url
    if args.ollama_model:
        os.environ["OLLAMA_MODEL"] = args.ollama_model
    if args.llama_gguf_path:
        os.environ["LLAMA_GGUF_PATH"] = args.llama_gguf_path

    # Always set these so behavior is deterministic once worker starts
    os.environ["LLAMA_THREADS"] = str(args.llama_threads)
    os.environ["LLAMA_N_CTX"] = str(args.llama_n_ctx)
    os.environ["LLAMA_GPU_LAYERS"] = str(args.llama_gpu_layers)
    os.environ["LLAMA_TEMPERATURE"] = str(args.llama_temperature)
    os.environ["LLAMA_MAX_TOKENS"] = str(args.llama_max_tokens)


def _fail_stuck_jobs(db, models, reclaim_after_seconds: int) -> int:
    """A stuck run is failed rather than requeued so its progress never moves backwards."""
    cutoff = datetime.utcnow() - timedelta(seconds=reclaim_after_seconds)

    stuck = (
        db.query(models.ProcessingJob)
        .filter(
            and_(
                models.ProcessingJob.status == "processing",
                models.ProcessingJob.updated_at != None,  # noqa: E711
                models.ProcessingJob.updated_at < cutoff,
            )
        )
        .all()
    )

    n = 0
    for job in stuck:
        job.status = "failed"
        job.error_message = f"no progress for {reclaim_after_seconds}s; worker presumed dead"
        job.updated_at = datetime.utcnow()
        n += 1

    if n:
        db.commit()
    return n


def _claim_one_job(db, models) -> Optional[object]:
    job = (
        db.query(models.ProcessingJob)
        .filter(models.ProcessingJob.status == "queued")
        .order_by(models.ProcessingJob.created_at.asc(), models.ProcessingJob.id.asc())
        .first()
    )
    if not job:
        return None

    job.status = "processing"
    job.updated_at = datetime.utcnow()
    job.attempts += 1
    db.commit()
    db.refresh(job)
    return job


def main() -> None:
    args = _parse_args()
    _apply_env(args)

    # IMPORTANT: import after env is applied (db.py reads DATABASE_URL at import)
    from backend.app import models
    from backend.app.config import build_deps
    from backend.app.db import SessionLocal, init_db
    from backend.app.processors.registry import run_job

    init_db()
    deps = build_deps()

    stop = False

    def _handle_stop(_signum, _frame):
        nonlocal stop
        stop = True

    signal.signal(signal.SIGINT, _handle_stop)
    signal.signal(signal.SIGTERM, _handle_stop)

    print("worker started")
    if os.getenv("DATABASE_URL"):
        print(f"  using DATABASE_URL={os.getenv('DATABASE_URL')}")
    print(f"  using LLM backend={deps.config.llm_backend}")
    if deps.config.llm_backend == "ollama":
        print(f"  using OLLAMA {deps.config.ollama_base_url} model={deps.config.ollama_model}")
    elif deps.config.llama_gguf_path:
        print(f"  using LLAMA_GGUF_PATH={deps.config.llama_gguf_path}")

    last_reclaim = 0.0
    try:
        while not stop:
            db = SessionLocal()
            try:
                now = time.time()
                if now - last_reclaim > 30:
                    n = _fail_stuck_jobs(db, models, args.reclaim_after_seconds)
                    if n:
                        print(f"failed {n} stuck job(s)")
                    last_reclaim = now

                job = _claim_one_job(db, models)
                if not job:
                    time.sleep(args.poll_seconds)
                    continue

                try:
                    run_job(db, job, deps)
                except Exception as e:
                    # run state is already recorded by the progress tracker
                    print(f"job {job.id} failed: {e!r}", flush=True)
                    traceback.print_exc()
                    db.rollback()
                    if job.status == "processing":
                        job.status = "failed"
                        job.error_message = str(e)[:2000]
                        job.updated_at = datetime.utcnow()
                        db.commit()
            finally:
                db.close()
    finally:
        deps.close()

    print("worker stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
