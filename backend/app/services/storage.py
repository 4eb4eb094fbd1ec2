"""
Local filesystem storage for uploaded project documents.

Files live under DOCUMENTS_DIR/d_<document_id>/ and are addressed in the DB by
their served URL (/document-files/...), which main.py mounts read-only.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from backend.app import models

SERVED_PREFIX = "/document-files/"
PENDING = "PENDING"


@dataclass(frozen=True)
class StoredFile:
    url: str
    path: Path
    bytes_size: int
    sha256: str


def _safe_filename(name: str) -> str:
    name = os.path.basename(name)
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or "upload"


def documents_root() -> Path:
    return Path(os.getenv("DOCUMENTS_DIR", "data/documents"))


def sha256_hex(contents: bytes) -> str:
    return hashlib.sha256(contents).hexdigest()


def to_document_url(file_path: Path) -> str:
    rel = Path(file_path).relative_to(documents_root())
    return SERVED_PREFIX + rel.as_posix()


def store_document_bytes(document_id: int, original_filename: str, contents: bytes) -> StoredFile:
    """Write one upload; a uuid prefix keeps re-uploads of the same name apart."""
    folder = documents_root() / f"d_{document_id}"
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{uuid4().hex}__{_safe_filename(original_filename)}"
    path.write_bytes(contents)
    print(f"[storage] document_id={document_id} wrote {len(contents)} bytes to {path}", flush=True)
    return StoredFile(
        url=to_document_url(path),
        path=path,
        bytes_size=len(contents),
        sha256=sha256_hex(contents),
    )


def get_document_path(document: models.Document) -> Path:
    sp = (document.storage_path or "").strip()
    if not sp or sp == PENDING:
        raise RuntimeError(f"Document {document.id} has no usable storage_path")

    p = documents_root() / sp.removeprefix(SERVED_PREFIX) if sp.startswith(SERVED_PREFIX) else Path(sp)
    return p if p.is_absolute() else (Path.cwd() / p)
