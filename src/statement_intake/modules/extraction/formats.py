from __future__ import annotations

from enum import Enum

from statement_intake.core.errors import UnsupportedMimeType
from statement_intake.modules.extraction.llm import ExtractionAdapters
from statement_intake.modules.extraction.parsers.base import DocumentParser
from statement_intake.modules.extraction.parsers.image import ImageParser
from statement_intake.modules.extraction.parsers.pdf import PdfParser
from statement_intake.modules.extraction.parsers.spreadsheet import SpreadsheetParser


class DocumentFormat(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    SPREADSHEET = "spreadsheet"


PDF_MIME_TYPES = frozenset({"application/pdf"})
SPREADSHEET_MIME_TYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
        "text/csv",
        "application/csv",
    }
)


def normalize_mime_type(mime_type: str | None) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


def classify_mime_type(mime_type: str | None) -> DocumentFormat:
    mt = normalize_mime_type(mime_type)
    if mt.startswith("image/") and len(mt) > len("image/"):
        return DocumentFormat.IMAGE
    if mt in PDF_MIME_TYPES:
        return DocumentFormat.PDF
    if mt in SPREADSHEET_MIME_TYPES:
        return DocumentFormat.SPREADSHEET
    raise UnsupportedMimeType(mime_type or "")


def get_parser(mime_type: str | None, *, adapters: ExtractionAdapters) -> DocumentParser:
    fmt = classify_mime_type(mime_type)
    if fmt == DocumentFormat.IMAGE:
        return ImageParser(adapters.vision)
    if fmt == DocumentFormat.PDF:
        return PdfParser(adapters.text)
    return SpreadsheetParser(adapters.text)
