# backend/app/main.py
from __future__ import annotations

import os
import subprocess
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles

from backend.app.db import DB_URL, init_db
from backend.app.routes import documents, facts, performance, projects
from backend.app.services.storage import documents_root

_worker_process: Optional[subprocess.Popen] = None
_worker_lock = Path(os.getenv("WORKER_LOCK_PATH", "data/worker.lock"))  # prevents double-spawn under reload


def _start_worker() -> None:
    """Spawn the job worker next to the API unless disabled or already running."""
    global _worker_process

    if os.getenv("SOLARDD_START_WORKER", "1") == "0":
        print("[main] background worker disabled (SOLARDD_START_WORKER=0)", flush=True)
        return
    if _worker_lock.exists():
        print(f"[main] worker already running (lock {_worker_lock} exists)", flush=True)
        return

    _worker_lock.parent.mkdir(parents=True, exist_ok=True)
    _worker_lock.write_text(str(os.getpid()))
    print("[main] starting background worker...", flush=True)
    # worker logs go to our stdout/stderr
    _worker_process = subprocess.Popen(
        [sys.executable, "-m", "backend.scripts.worker", "--db", DB_URL],
        env=os.environ.copy(),
    )


def _stop_worker() -> None:
    if _worker_process is None:
        return
    _worker_lock.unlink(missing_ok=True)
    if _worker_process.poll() is None:
        print("[main] stopping background worker...", flush=True)
        _worker_process.terminate()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    _start_worker()
    try:
        yield
    finally:
        _stop_worker()


app = FastAPI(
    title="Solar DD Pipeline",
    version="0.1.0",
    description="Fact extraction, red flags and independent generation checks for renewable-energy project documents.",
    lifespan=lifespan,
)

files_dir = documents_root()
files_dir.mkdir(parents=True, exist_ok=True)
# /document-files serves stored uploads; /documents is the API router prefix
app.mount("/document-files", StaticFiles(directory=str(files_dir)), name="document-files")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/favicon.ico", include_in_schema=False)
def favicon():
    return Response(status_code=204)


app.include_router(projects.router, prefix="/projects", tags=["projects"])
app.include_router(performance.router, prefix="/projects", tags=["performance"])
app.include_router(documents.router, prefix="/documents", tags=["documents"])
app.include_router(facts.router, prefix="/facts", tags=["facts"])
