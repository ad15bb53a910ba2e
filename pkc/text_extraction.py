"""
Best-effort plain-text extraction from uploaded bytes.

The pipeline only ever sees the returned string; an empty string means
"nothing to chunk", never an error.
"""
import io
import zipfile

from pypdf import PdfReader
from pypdf.errors import PdfReadError
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError

from .logging_config import logger

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def read_text_from_pdf(data: bytes) -> str:
    pdf = PdfReader(io.BytesIO(data))
    parts = []
    for page in pdf.pages:
        parts.append(page.extract_text() or "")
    return "\n".join(parts)


def read_text_from_docx(data: bytes) -> str:
    """
    Extract text from DOCX file including both paragraphs and tables.
    Tables are converted to readable text format.
    """
    doc = DocxDocument(io.BytesIO(data))
    parts = []

    for para in doc.paragraphs:
        text = para.text.strip()
        if text:
            parts.append(text)

    for table in doc.tables:
        table_text = extract_table_text(table)
        if table_text:
            parts.append("\n" + table_text)

    return "\n\n".join(parts)


def extract_table_text(table) -> str:
    """One line per non-empty row, cells joined with a pipe."""
    lines = []
    for row in table.rows:
        cells = [cell.text.strip() for cell in row.cells]
        if not any(cells):
            continue
        lines.append(" | ".join(cells))
    return "\n".join(lines)


def extract_text(data: bytes, mime: str, filename: str) -> str:
    name = (filename or "").lower()
    try:
        if name.endswith(".pdf") or mime == "application/pdf":
            return read_text_from_pdf(data)
        if name.endswith(".docx") or mime == DOCX_MIME:
            return read_text_from_docx(data)
        return data.decode("utf-8", errors="ignore")
    except (PdfReadError, PackageNotFoundError, zipfile.BadZipFile, ValueError, KeyError, OSError) as e:
        logger.warning("Text extraction failed", filename=filename, mime=mime, error=str(e))
        return ""
