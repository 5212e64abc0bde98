from __future__ import annotations

import html
import io
import re
from typing import Any

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from reportlab.lib.pagesizes import A5, A4, letter
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

EXPORT_FORMATS = ("pdf", "docx")

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

PAGE_SIZES = {"A4": A4, "A5": A5, "Letter": letter}

_BLOCK_RE = re.compile(r"</p\s*>|<br\s*/?>|</h[1-6]\s*>|</li\s*>|</div\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def export_filename(title: str, ext: str) -> str:
    base = re.sub(r"[^a-zA-Z0-9]", "_", str(title or "book")) or "book"
    return f"{base}.{ext}"


def paragraphs(content: str) -> list[str]:
    """Chapter HTML to plain paragraphs."""
    text = _BLOCK_RE.sub("\n", str(content or ""))
    text = html.unescape(_TAG_RE.sub("", text))
    return [re.sub(r"[ \t]+", " ", p).strip() for p in text.split("\n") if p.strip()]


def _chapters(book: dict[str, Any]) -> list[dict[str, Any]]:
    return sorted(book.get("chapters") or [], key=lambda c: int(c.get("order") or 0))


def render_pdf(book: dict[str, Any], author_name: str = "") -> bytes:
    layout = book.get("pageLayout") or {}
    pagesize = PAGE_SIZES.get(str(layout.get("pageSize") or "A5"), A5)
    width, height = pagesize
    margin = 50
    body_size = 11
    leading = body_size * 1.5
    max_width = width - 2 * margin

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=pagesize)
    c.setTitle(str(book.get("title") or "Book"))
    if author_name:
        c.setAuthor(author_name)

    # Title page
    c.setFont("Helvetica-Bold", 22)
    c.drawCentredString(width / 2, height * 0.6, str(book.get("title") or "Untitled")[:60])
    if author_name:
        c.setFont("Helvetica", 14)
        c.drawCentredString(width / 2, height * 0.6 - 36, author_name[:80])
    c.showPage()

    page_no = 1
    for ch in _chapters(book):
        y = height - margin
        c.setFont("Helvetica-Bold", 16)
        for line in simpleSplit(str(ch.get("title") or ""), "Helvetica-Bold", 16, max_width):
            c.drawString(margin, y, line)
            y -= 22
        y -= 12

        c.setFont("Helvetica", body_size)
        for para in paragraphs(str(ch.get("content") or "")):
            for line in simpleSplit(para, "Helvetica", body_size, max_width):
                if y < margin + leading:
                    c.setFont("Helvetica", 8)
                    c.drawCentredString(width / 2, margin / 2, str(page_no))
                    c.showPage()
                    page_no += 1
                    y = height - margin
                    c.setFont("Helvetica", body_size)
                c.drawString(margin, y, line)
                y -= leading
            y -= leading / 2

        c.setFont("Helvetica", 8)
        c.drawCentredString(width / 2, margin / 2, str(page_no))
        c.showPage()
        page_no += 1

    c.save()
    return buf.getvalue()


def render_docx(book: dict[str, Any], author_name: str = "") -> bytes:
    doc = Document()
    title = doc.add_heading(str(book.get("title") or "Untitled"), level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER
    if author_name:
        p = doc.add_paragraph(author_name)
        p.alignment = WD_ALIGN_PARAGRAPH.CENTER
    if book.get("synopsis"):
        doc.add_paragraph(str(book.get("synopsis")))

    for ch in _chapters(book):
        doc.add_page_break()
        doc.add_heading(str(ch.get("title") or ""), level=1)
        for para in paragraphs(str(ch.get("content") or "")):
            doc.add_paragraph(para)

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def export_book(book: dict[str, Any], fmt: str, author_name: str = "") -> tuple[bytes, str, str]:
    """Returns (content, media type, filename)."""
    if fmt == "docx":
        return render_docx(book, author_name), DOCX_MEDIA_TYPE, export_filename(str(book.get("title")), "docx")
    if fmt == "pdf":
        return render_pdf(book, author_name), "application/pdf", export_filename(str(book.get("title")), "pdf")
    raise ValueError(f"Unsupported export format: {fmt}")
