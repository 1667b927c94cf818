"""Status state machine for uploaded files and their persisted summaries.

stored -> processing -> completed | failed. Every transition is a single
conditional UPDATE on the status column, so it holds across worker processes.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from statement_intake.core.config import settings
from statement_intake.core.errors import (
    AlreadyProcessing,
    FileNotFound,
    FileTooLarge,
    InvalidStatusTransition,
    LeaseLost,
)
from statement_intake.core.logging import get_logger, log_event
from statement_intake.core.models import utcnow
from statement_intake.core.storage import get_storage, upload_key
from statement_intake.modules.extraction.formats import classify_mime_type, normalize_mime_type
from statement_intake.modules.extraction.parsers.base import ParserSuccess
from statement_intake.modules.extraction.schemas import dump_payload
from statement_intake.modules.files.models import FileStatus, ParsedSummary, UploadedFile

logger = get_logger(__name__)

FAILURE_REASON_MAX_LEN = 500
LEASE_EXPIRED_REASON = "Parsing timed out"


def _sanitize_filename(name: str) -> str:
    # Strip any path components and normalize whitespace.
    name = (name or "").replace("\\", "/").split("/")[-1].strip()
    return " ".join(name.split())[:255] or "upload"


def _check_upload(*, mime_type: str, size_bytes: int) -> None:
    classify_mime_type(mime_type)
    if size_bytes < 0:
        raise FileTooLarge(f"Invalid file size: {size_bytes}")
    if size_bytes > settings.max_upload_bytes:
        raise FileTooLarge(
            f"File is {size_bytes} bytes; the limit is {settings.max_upload_bytes} bytes"
        )


def register_upload(
    session: Session,
    *,
    user_id: str,
    filename: str,
    mime_type: str,
    size_bytes: int,
    storage_key: str,
) -> UploadedFile:
    _check_upload(mime_type=mime_type, size_bytes=size_bytes)

    file = UploadedFile(
        user_id=user_id,
        filename=_sanitize_filename(filename),
        mime_type=normalize_mime_type(mime_type),
        size_bytes=size_bytes,
        storage_key=storage_key,
        status=FileStatus.STORED,
    )
    session.add(file)
    session.commit()
    session.refresh(file)
    log_event(
        logger,
        "files.registered",
        file_id=str(file.id),
        user_id=user_id,
        mime_type=file.mime_type,
        size_bytes=size_bytes,
    )
    return file


def store_upload(
    session: Session,
    *,
    user_id: str,
    filename: str,
    mime_type: str,
    body: bytes,
) -> UploadedFile:
    """Write the bytes to object storage, then register the upload."""
    _check_upload(mime_type=mime_type, size_bytes=len(body))
    safe_name = _sanitize_filename(filename)
    storage = get_storage()
    stored = storage.put(key=upload_key(user_id, safe_name), body=body)
    try:
        return register_upload(
            session,
            user_id=user_id,
            filename=safe_name,
            mime_type=mime_type,
            size_bytes=stored.byte_size,
            storage_key=stored.key,
        )
    except Exception:
        # No row points at the object; don't leave it behind.
        session.rollback()
        storage.delete(key=stored.key)
        raise


def get_file(session: Session, file_id: uuid.UUID, *, user_id: str | None = None) -> UploadedFile:
    file = session.get(UploadedFile, file_id, populate_existing=True)
    if file is None or (user_id is not None and file.user_id != user_id):
        raise FileNotFound(f"File not found: {file_id}")
    return file


def list_files(
    session: Session, *, user_id: str, status: FileStatus | None = None
) -> list[UploadedFile]:
    stmt = select(UploadedFile).where(UploadedFile.user_id == user_id)
    if status is not None:
        stmt = stmt.where(UploadedFile.status == status)
    return list(session.scalars(stmt.order_by(UploadedFile.created_at.desc())))


def get_summary(session: Session, file_id: uuid.UUID) -> ParsedSummary | None:
    return session.scalar(
        select(ParsedSummary)
        .where(ParsedSummary.file_id == file_id)
        .order_by(ParsedSummary.created_at.desc())
        .limit(1)
    )


def _lease_cutoff(now: datetime | None = None) -> datetime:
    return (now or datetime.now(UTC)) - timedelta(minutes=settings.processing_lease_minutes)


def begin_parse(
    session: Session,
    file_id: uuid.UUID,
    *,
    from_statuses: Iterable[FileStatus] = (FileStatus.STORED,),
) -> UploadedFile:
    """Claim the file for one parse.

    A file stuck in `processing` longer than the lease may be claimed again.
    Every claim writes a fresh `lease_id`; pass it to `complete_parse` or
    `fail_parse` so a worker whose lease was reclaimed cannot finish the file.
    """
    from_statuses = tuple(from_statuses)
    result = session.execute(
        update(UploadedFile)
        .where(
            UploadedFile.id == file_id,
            (
                UploadedFile.status.in_(from_statuses)
                | (
                    (UploadedFile.status == FileStatus.PROCESSING)
                    & (UploadedFile.updated_at < _lease_cutoff())
                )
            ),
        )
        .values(
            status=FileStatus.PROCESSING,
            failure_reason=None,
            lease_id=uuid.uuid4(),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        session.rollback()
        file = get_file(session, file_id)
        if file.status == FileStatus.PROCESSING:
            raise AlreadyProcessing(file_id)
        raise InvalidStatusTransition(
            f"Cannot start parsing file {file_id} from status {file.status.value}"
        )
    session.commit()
    file = get_file(session, file_id)
    log_event(
        logger,
        "files.status.changed",
        file_id=str(file_id),
        to_status=FileStatus.PROCESSING.value,
    )
    return file


def complete_parse(
    session: Session,
    file_id: uuid.UUID,
    output: ParserSuccess,
    *,
    lease_id: uuid.UUID,
    parser_version: str | None = None,
) -> ParsedSummary:
    """Persist the summary and flip the file to `completed` in one commit."""
    result = session.execute(
        update(UploadedFile)
        .where(
            UploadedFile.id == file_id,
            UploadedFile.status == FileStatus.PROCESSING,
            UploadedFile.lease_id == lease_id,
        )
        .values(
            status=FileStatus.COMPLETED,
            failure_reason=None,
            lease_id=None,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        session.rollback()
        raise LeaseLost(f"File {file_id} is not processing under lease {lease_id}")

    summary = ParsedSummary(
        file_id=file_id,
        document_type=output.summary.document_type,
        parser_version=parser_version or settings.parser_version,
        payload_json=dump_payload(output.summary),
        confidence=output.confidence,
    )
    session.add(summary)
    session.commit()
    session.refresh(summary)
    log_event(
        logger,
        "files.status.changed",
        file_id=str(file_id),
        to_status=FileStatus.COMPLETED.value,
        summary_id=str(summary.id),
        document_type=summary.document_type,
        confidence=summary.confidence,
    )
    return summary


def fail_parse(
    session: Session, file_id: uuid.UUID, reason: str, *, lease_id: uuid.UUID
) -> None:
    """Mark the file `failed`; ignored unless `lease_id` still holds the claim."""
    reason = (reason or "Parsing failed")[:FAILURE_REASON_MAX_LEN]
    result = session.execute(
        update(UploadedFile)
        .where(
            UploadedFile.id == file_id,
            UploadedFile.status == FileStatus.PROCESSING,
            UploadedFile.lease_id == lease_id,
        )
        .values(
            status=FileStatus.FAILED,
            failure_reason=reason,
            lease_id=None,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if not result.rowcount:
        log_event(
            logger,
            "files.fail.ignored",
            level=logging.WARNING,
            file_id=str(file_id),
            lease_id=str(lease_id),
            reason=reason,
        )
        return
    log_event(
        logger,
        "files.status.changed",
        file_id=str(file_id),
        to_status=FileStatus.FAILED.value,
        reason=reason,
    )


def expire_stale_processing(session: Session, *, now: datetime | None = None) -> list[uuid.UUID]:
    """Move files whose processing lease ran out to `failed` so they can be retried."""
    cutoff = _lease_cutoff(now)
    stale = (UploadedFile.status == FileStatus.PROCESSING) & (UploadedFile.updated_at < cutoff)
    file_ids = list(session.scalars(select(UploadedFile.id).where(stale)))
    if not file_ids:
        return []

    session.execute(
        update(UploadedFile)
        .where(UploadedFile.id.in_(file_ids), stale)
        .values(
            status=FileStatus.FAILED,
            failure_reason=LEASE_EXPIRED_REASON,
            lease_id=None,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    for file_id in file_ids:
        log_event(
            logger,
            "files.status.changed",
            level=logging.WARNING,
            file_id=str(file_id),
            to_status=FileStatus.FAILED.value,
            reason=LEASE_EXPIRED_REASON,
        )
    return file_ids
