from __future__ import annotations

import html
import io
import re
import zipfile

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..observability.logging import get_logger

log = get_logger("manuscript_import")

SUPPORTED_EXTENSIONS = (".pdf", ".docx", ".txt")
MIN_TEXT_CHARS = 100
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
IMPORTED_CHAPTER_TITLE = "Imported Content"

_HEADING_RE = re.compile(
    r"^(?:(?:chapter|part)\s+(?:\d+|[ivxlc]+|one|two|three|four|five|six|seven|eight|nine|ten)|prologue|epilogue)"
    r"(?:\s*[:.\-]\s*.{0,80})?$",
    re.IGNORECASE,
)


class ManuscriptImportError(ValueError):
    pass


def _extension(file_name: str) -> str:
    name = str(file_name or "").lower()
    return name[name.rfind("."):] if "." in name else ""


def _pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    parts: list[str] = []
    for page in reader.pages:
        try:
            parts.append(page.extract_text() or "")
        except Exception:
            log.warning("pdf_page_unreadable")
            continue
    return "\n".join([p for p in parts if p]).strip()


def _docx_text(data: bytes) -> str:
    doc = Document(io.BytesIO(data))
    return "\n".join(p.text for p in doc.paragraphs).strip()


def extract_text(data: bytes, file_name: str) -> str:
    ext = _extension(file_name)
    if ext not in SUPPORTED_EXTENSIONS:
        raise ManuscriptImportError("Unsupported file type. Please upload PDF, DOCX, or TXT files.")
    try:
        if ext == ".pdf":
            text = _pdf_text(data)
        elif ext == ".docx":
            text = _docx_text(data)
        else:
            text = data.decode("utf-8", errors="replace")
    except (PdfReadError, PackageNotFoundError, zipfile.BadZipFile) as e:
        log.info("manuscript_unreadable", ext=ext, error=str(e))
        raise ManuscriptImportError("Could not read the uploaded file. Please check it is not corrupted.")
    if len(text.strip()) < MIN_TEXT_CHARS:
        raise ManuscriptImportError(
            "Could not extract sufficient text from the file. Please ensure the file contains readable text."
        )
    return text.strip()


def _to_html(lines: list[str]) -> str:
    return "".join(f"<p>{html.escape(line)}</p>" for line in lines)


def split_chapters(text: str) -> list[dict[str, str]]:
    """
    Chapter headings ("Chapter 3", "Part Two", "Prologue") on their own line
    start a new chapter; text without headings becomes one chapter.
    """
    chapters: list[dict[str, str]] = []
    title = IMPORTED_CHAPTER_TITLE
    lines: list[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if _HEADING_RE.match(line):
            if lines:
                chapters.append({"title": title, "content": _to_html(lines)})
            title, lines = line, []
            continue
        lines.append(line)
    if lines:
        chapters.append({"title": title, "content": _to_html(lines)})
    return chapters
