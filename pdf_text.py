from typing import List

import fitz  # PyMuPDF

from utils_logging import log_event


def collapse_ws(s: str) -> str:
    return " ".join((s or "").split())


def pdf_page_texts(pdf_bytes: bytes) -> List[str]:
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return [collapse_ws(doc.load_page(i).get_text("text") or "") for i in range(doc.page_count)]
    finally:
        doc.close()


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """
    Text layer of a PDF, one line per page.

    Returns "" when the document cannot be opened; a scanned or broken PDF is
    handled by the caller's vision path, not by an exception.
    """
    try:
        pages = pdf_page_texts(pdf_bytes)
    except (RuntimeError, ValueError) as e:
        log_event(f"   ⚠️  PDF text extraction failed: {e}", "warning")
        return ""

    text = "\n".join(p for p in pages if p)
    log_event(f"   📄 Extracted {len(text):,} characters from {len(pages)} page(s)")
    return text
