from __future__ import annotations

import re
import traceback

from backend.app import models
from backend.app.services.storage import get_document_path

MIN_TOTAL_CHARS = 200          # total chars across doc to consider "real"

_WS = re.compile(r"[ \t]+")


def document_text(document: models.Document) -> tuple[str, int]:
    """
    Return (text, page_count) for a document.

    Pasted text counts as one page. PDFs use embedded text only; scanned PDFs
    need OCR upstream and fail here with a clear message.
    """
    if document.text_content:
        return _normalize(document.text_content), 1

    path = get_document_path(document)
    name = (document.original_filename or path.name).lower()
    mime = (document.mime_type or "").lower()

    if name.endswith(".pdf") or mime == "application/pdf":
        return _pdf_text(path)

    if name.endswith((".txt", ".md", ".csv")) or mime.startswith("text/"):
        return _normalize(path.read_text(encoding="utf-8", errors="replace")), 1

    raise RuntimeError(f"unsupported document format: {document.original_filename!r} mime={mime or None}")


def _pdf_text(path) -> tuple[str, int]:
    import fitz  # pymupdf

    parts: list[str] = []
    try:
        doc = fitz.open(path)
    except Exception as e:
        print(f"[text] could not open pdf path={path}: {e!r}", flush=True)
        traceback.print_exc()
        raise RuntimeError(f"PDF could not be opened: {e!r}") from e

    try:
        page_count = doc.page_count
        for i in range(page_count):
            t = (doc.load_page(i).get_text("text") or "").strip()
            if t:
                parts.append(t)
    finally:
        doc.close()

    text = _normalize("\n\n".join(parts))
    if len(text) < MIN_TOTAL_CHARS:
        raise RuntimeError(
            f"PDF text extraction produced too little text: pages={page_count}, chars={len(text)}."
        )
    return text, page_count


def _normalize(text: str) -> str:
    lines = [_WS.sub(" ", ln).strip() for ln in text.replace("\r\n", "\n").split("\n")]
    return "\n".join(lines).strip()
