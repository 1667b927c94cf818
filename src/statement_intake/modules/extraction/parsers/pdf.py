from __future__ import annotations

import logging
from collections.abc import Iterator
from io import BytesIO

from PIL import Image
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from statement_intake.core.config import settings
from statement_intake.core.logging import get_logger, log_event
from statement_intake.modules.extraction.llm import TextAdapter
from statement_intake.modules.extraction.parsers.base import (
    EMPTY_DOCUMENT,
    DocumentMeta,
    ParserFailure,
    ParserOutput,
    ParserSuccess,
)
from statement_intake.modules.extraction.prompts import PDF_SYSTEM_PROMPT, PDF_USER_PROMPT
from statement_intake.modules.extraction.validation import validate_model_output

logger = get_logger(__name__)

TRUNCATION_MARKER = "[TRUNCATED]"
TRUNCATION_CONFIDENCE_FACTOR = 0.7


class PdfParser:
    name = "pdf"

    def __init__(self, text: TextAdapter, *, max_chars: int | None = None) -> None:
        self._text = text
        self._max_chars = max_chars or settings.pdf_max_chars

    def parse(self, body: bytes, meta: DocumentMeta) -> ParserOutput:
        try:
            pages, ocr_pages = extract_pdf_pages(body)
        except (PdfReadError, ValueError) as e:
            return ParserFailure(code=EMPTY_DOCUMENT, error=f"Could not read PDF: {e}")

        text = "\n\n".join(p.strip() for p in pages if p.strip())
        if not text.strip():
            return ParserFailure(code=EMPTY_DOCUMENT, error="PDF contains no extractable text")

        truncated = False
        if len(text) > self._max_chars:
            log_event(
                logger,
                "extraction.pdf.truncated",
                filename=meta.filename,
                original_chars=len(text),
                max_chars=self._max_chars,
            )
            text = text[: self._max_chars] + "\n" + TRUNCATION_MARKER
            truncated = True

        log_event(
            logger,
            "extraction.pdf.text",
            page_count=len(pages),
            ocr_pages=ocr_pages,
            text_chars=len(text),
        )
        response = self._text.call_text_model(PDF_SYSTEM_PROMPT, PDF_USER_PROMPT + text)
        result = validate_model_output(response.text)
        if not isinstance(result, ParserSuccess):
            return result
        result = result.with_usage(response.usage)
        if truncated:
            result = result.scaled(TRUNCATION_CONFIDENCE_FACTOR)
        return result


def extract_pdf_pages(body: bytes) -> tuple[list[str], int]:
    reader = PdfReader(BytesIO(body))
    pages: list[str] = []
    ocr_pages = 0
    for page in reader.pages:
        text = (page.extract_text() or "").replace("\u202f", " ").replace("\xa0", " ")
        if not text.strip():
            ocr_pages += 1
            text = _ocr_pdf_page(page).replace("\u202f", " ").replace("\xa0", " ") or text
        pages.append(text)
    return pages, ocr_pages


def _ocr_pdf_page(page) -> str:
    """Read a scanned page by running tesseract over its main bitmap.

    Best-effort: without tesseract, or without a decodable image, the page
    simply has no text.
    """
    scan = max(_decoded_images(page), key=lambda im: im.width * im.height, default=None)
    if scan is None:
        return ""
    try:
        import pytesseract

        if scan.mode not in ("RGB", "L"):
            scan = scan.convert("RGB")
        return pytesseract.image_to_string(scan, lang=settings.ocr_lang) or ""
    except Exception as e:  # noqa: BLE001
        log_event(
            logger,
            "extraction.pdf.ocr_unavailable",
            level=logging.WARNING,
            error_type=type(e).__name__,
        )
        return ""


def _decoded_images(page) -> Iterator[Image.Image]:
    # Statement scans are one full-page bitmap; logos and stamps are smaller.
    try:
        embedded = list(page.images)
    except Exception:  # noqa: BLE001
        return
    for item in embedded:
        try:
            image = item.image
        except Exception:  # noqa: BLE001
            continue
        if image is not None:
            yield image
