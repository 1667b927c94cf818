from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from statement_intake.core.errors import InvalidStatusTransition, LeaseLost
from statement_intake.core.logging import (
    get_logger,
    log_context,
    log_event,
    log_exception,
    monotonic_ms,
)
from statement_intake.core.storage import get_storage
from statement_intake.modules.extraction.cache import ExtractionResultCache
from statement_intake.modules.extraction.formats import DocumentFormat, classify_mime_type, get_parser
from statement_intake.modules.extraction.llm import ExtractionAdapters, build_adapters
from statement_intake.modules.extraction.parsers.base import DocumentMeta, ParserSuccess
from statement_intake.modules.files.models import FileStatus, ParsedSummary, UploadedFile
from statement_intake.modules.files.service import (
    begin_parse,
    complete_parse,
    fail_parse,
    get_file,
    get_summary,
)

logger = get_logger(__name__)

EXTRACTION_FAILED = "extraction_failed"
PARSE_FAILED = "parse_failed"
LEASE_LOST = "lease_lost"


@dataclass(frozen=True)
class ParseError:
    code: str
    message: str
    file_id: uuid.UUID | None = None


def parse_file(
    session: Session, file_id: uuid.UUID, *, adapters: ExtractionAdapters | None = None
) -> ParsedSummary | ParseError:
    """Parse a freshly stored file.

    Safe to call more than once: a completed file returns its latest summary and
    a failed one returns its failure, neither touches the model again.
    """
    file = get_file(session, file_id)
    if file.status == FileStatus.COMPLETED:
        summary = get_summary(session, file.id)
        if summary is not None:
            return summary
    if file.status == FileStatus.FAILED:
        return ParseError(
            code=PARSE_FAILED, message=file.failure_reason or "Parsing failed", file_id=file.id
        )
    return _run_parse(
        session, file, from_statuses=(FileStatus.STORED,), adapters=adapters, use_cache=True
    )


def reparse_file(
    session: Session, file_id: uuid.UUID, *, adapters: ExtractionAdapters | None = None
) -> ParsedSummary | ParseError:
    """Parse again from scratch, superseding (never mutating) earlier summaries."""
    file = get_file(session, file_id)
    return _run_parse(
        session,
        file,
        from_statuses=(FileStatus.STORED, FileStatus.COMPLETED, FileStatus.FAILED),
        adapters=adapters,
        use_cache=False,
    )


def retry_file(
    session: Session, file_id: uuid.UUID, *, adapters: ExtractionAdapters | None = None
) -> ParsedSummary | ParseError:
    file = get_file(session, file_id)
    if file.status != FileStatus.FAILED:
        raise InvalidStatusTransition(
            f"Only failed files can be retried; file {file_id} is {file.status.value}"
        )
    return _run_parse(
        session, file, from_statuses=(FileStatus.FAILED,), adapters=adapters, use_cache=True
    )


def _run_parse(
    session: Session,
    file: UploadedFile,
    *,
    from_statuses: Iterable[FileStatus],
    adapters: ExtractionAdapters | None,
    use_cache: bool,
) -> ParsedSummary | ParseError:
    # Unsupported types are rejected before any status change.
    document_format = classify_mime_type(file.mime_type)
    with log_context(file_id=str(file.id)):
        file = begin_parse(session, file.id, from_statuses=from_statuses)
        return _extract(
            session, file, document_format, adapters=adapters, use_cache=use_cache
        )


def _extract(
    session: Session,
    file: UploadedFile,
    document_format: DocumentFormat,
    *,
    adapters: ExtractionAdapters | None,
    use_cache: bool,
) -> ParsedSummary | ParseError:
    file_id = file.id
    lease_id = file.lease_id
    start = time.monotonic()
    log_event(
        logger,
        "extraction.start",
        filename=file.filename,
        mime_type=file.mime_type,
        document_format=document_format.value,
        size_bytes=file.size_bytes,
        use_cache=use_cache,
    )

    cache = ExtractionResultCache.from_settings(session)
    cache_hit = False
    try:
        body = get_storage().get_bytes(key=file.storage_key)
        content_hash = cache.key(body, document_format.value)
        output = cache.get(content_hash) if use_cache else None
        if output is not None:
            cache_hit = True
        else:
            parser = get_parser(file.mime_type, adapters=adapters or build_adapters())
            output = parser.parse(body, DocumentMeta(filename=file.filename, mime_type=file.mime_type))
            if isinstance(output, ParserSuccess):
                cache.put(content_hash, document_format=document_format.value, output=output)
    except Exception as e:  # noqa: BLE001
        session.rollback()
        log_exception(
            logger,
            "extraction.error",
            error_type=type(e).__name__,
            duration_ms=monotonic_ms(start),
        )
        message = str(e) or type(e).__name__
        fail_parse(session, file_id, message, lease_id=lease_id)
        return ParseError(code=EXTRACTION_FAILED, message=message, file_id=file_id)

    if not isinstance(output, ParserSuccess):
        fail_parse(session, file_id, output.error, lease_id=lease_id)
        log_event(
            logger,
            "extraction.finish",
            status="failed",
            error_code=output.code,
            duration_ms=monotonic_ms(start),
        )
        return ParseError(code=output.code, message=output.error, file_id=file_id)

    try:
        summary = complete_parse(session, file_id, output, lease_id=lease_id)
    except LeaseLost as e:
        log_event(
            logger,
            "extraction.lease_lost",
            level=logging.WARNING,
            lease_id=str(lease_id),
            duration_ms=monotonic_ms(start),
        )
        return ParseError(code=LEASE_LOST, message=str(e), file_id=file_id)
    log_event(
        logger,
        "extraction.finish",
        status="completed",
        summary_id=str(summary.id),
        document_type=summary.document_type,
        confidence=summary.confidence,
        cache_hit=cache_hit,
        input_tokens=output.usage.input_tokens if output.usage else None,
        output_tokens=output.usage.output_tokens if output.usage else None,
        duration_ms=monotonic_ms(start),
    )
    return summary
