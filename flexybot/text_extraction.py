"""
Text extraction and normalization.
Turns uploaded files and HTML pages into canonical plain text for chunking.
"""
import re
from typing import Tuple

from docx import Document as DocxDocument
from pypdf import PdfReader

from .errors import ValidationError

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_INLINE_WS_RE = re.compile(r"[^\S\n]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

# &amp; goes last so "&amp;lt;" decodes to "&lt;", not "<".
_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&amp;", "&"),
)

HTML_MIME_TYPES = ("text/html", "application/xhtml+xml")
PDF_MIME_TYPES = ("application/pdf",)
DOCX_MIME_TYPES = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)
LEGACY_WORD_MIME_TYPES = ("application/msword",)


def normalize_text(text: str) -> str:
    """
    Collapse whitespace into canonical form.

    Runs of whitespace other than newlines become one space, runs of three or
    more newlines become a paragraph break, and the result is trimmed.
    Applying it twice gives the same result as applying it once.
    """
    if not text:
        return ""
    text = _INLINE_WS_RE.sub(" ", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def html_to_text(html: str) -> str:
    """
    Extract plain text from HTML.

    <script> and <style> elements are dropped with their contents, every
    other tag becomes a newline and the common entities are decoded.
    """
    if not html:
        return ""
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub("\n", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return normalize_text(text)


def normalize(raw: str, is_html: bool = False) -> str:
    return html_to_text(raw) if is_html else normalize_text(raw)


def read_text_from_pdf(file_path: str) -> str:
    pdf = PdfReader(file_path)
    parts = []
    for page in pdf.pages:
        parts.append(page.extract_text() or "")
    return "\n".join(parts)


def read_text_from_docx(file_path: str) -> str:
    """
    Extract text from DOCX file including both paragraphs and tables.
    Tables are converted to readable text format.
    """
    doc = DocxDocument(file_path)
    parts = []

    for para in doc.paragraphs:
        text = para.text.strip()
        if text:
            parts.append(text)

    for table in doc.tables:
        table_text = extract_table_text(table)
        if table_text:
            parts.append(table_text)

    return "\n\n".join(parts)


def extract_table_text(table) -> str:
    """
    Convert a DOCX table to readable text, one row per line.
    """
    lines = []

    for row in table.rows:
        cells = [cell.text.strip() for cell in row.cells]
        # Skip completely empty rows
        if not any(cells):
            continue
        lines.append(" | ".join(cells))

    return "\n".join(lines)


def read_text_from_txt(file_path: str, encoding="utf-8") -> str:
    with open(file_path, "r", encoding=encoding, errors="ignore") as f:
        return f.read()


def read_any(file_path: str, mime: str, filename: str) -> Tuple[str, str]:
    """
    Extract raw text from an uploaded file.

    Returns:
        (text, kind) where kind is one of pdf, docx, html, txt. HTML is
        returned already converted to plain text.

    Raises:
        ValidationError: If the file cannot be parsed.
    """
    name = (filename or "").lower()
    if name.endswith(".doc") or mime in LEGACY_WORD_MIME_TYPES:
        raise ValidationError(f"Legacy Word files are not supported, save {filename} as .docx")

    try:
        if name.endswith(".pdf") or mime in PDF_MIME_TYPES:
            return read_text_from_pdf(file_path), "pdf"
        if name.endswith(".docx") or mime in DOCX_MIME_TYPES:
            return read_text_from_docx(file_path), "docx"
        if name.endswith((".html", ".htm")) or mime in HTML_MIME_TYPES:
            return html_to_text(read_text_from_txt(file_path)), "html"
        # default to txt (covers .txt and .md)
        text = read_text_from_txt(file_path)
    except Exception as e:
        raise ValidationError(f"Failed to extract text from {filename}: {e}") from e

    if "\x00" in text:
        raise ValidationError(f"{filename} looks like a binary file, not text")
    return text, "txt"
