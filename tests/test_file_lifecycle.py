from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from statement_intake.core.db import SessionLocal
from statement_intake.core.errors import (
    AlreadyProcessing,
    FileNotFound,
    FileTooLarge,
    InvalidStatusTransition,
    LeaseLost,
    UnsupportedMimeType,
)
from statement_intake.modules.extraction.parsers.base import ParserSuccess
from statement_intake.modules.extraction.schemas import Receipt, ReceiptTransaction
from statement_intake.modules.files.models import FileStatus, UploadedFile
from statement_intake.modules.files.service import (
    begin_parse,
    complete_parse,
    expire_stale_processing,
    fail_parse,
    get_file,
    get_summary,
    list_files,
    register_upload,
    store_upload,
)


def _register(session, *, user_id: str = "user-1", mime_type: str = "image/png") -> UploadedFile:
    return register_upload(
        session,
        user_id=user_id,
        filename="../../etc/receipt  scan.png",
        mime_type=mime_type,
        size_bytes=1234,
        storage_key=f"uploads/{uuid.uuid4()}",
    )


def _receipt_output() -> ParserSuccess:
    receipt = Receipt(
        document_type="receipt",
        currency="USD",
        main_transaction=ReceiptTransaction(
            date="2024-03-05", merchant="Super 99", amount=Decimal("12.34")
        ),
    )
    return ParserSuccess(summary=receipt, confidence=0.9)


def _age(session, file_id, minutes: int) -> None:
    session.execute(
        update(UploadedFile)
        .where(UploadedFile.id == file_id)
        .values(updated_at=datetime.now(UTC) - timedelta(minutes=minutes))
    )
    session.commit()


def test_register_upload_stores_metadata():
    with SessionLocal() as session:
        file = _register(session, mime_type="Image/PNG")
        assert file.status == FileStatus.STORED
        assert file.filename == "receipt scan.png"
        assert file.mime_type == "image/png"
        assert file.failure_reason is None
        assert file.updated_at is not None


def test_register_rejects_unsupported_type_before_creating_a_row():
    with SessionLocal() as session:
        with pytest.raises(UnsupportedMimeType):
            _register(session, mime_type="application/zip")
        assert session.scalar(select(func.count()).select_from(UploadedFile)) == 0


def test_register_rejects_oversized_upload():
    with SessionLocal() as session:
        with pytest.raises(FileTooLarge):
            register_upload(
                session,
                user_id="user-1",
                filename="huge.pdf",
                mime_type="application/pdf",
                size_bytes=20 * 1024 * 1024 + 1,
                storage_key="uploads/huge.pdf",
            )


def test_store_upload_writes_bytes_to_storage():
    from statement_intake.core.storage import get_storage

    with SessionLocal() as session:
        file = store_upload(
            session, user_id="user-1", filename="r.png", mime_type="image/png", body=b"png-bytes"
        )
        assert file.size_bytes == 9
        assert get_storage().get_bytes(key=file.storage_key) == b"png-bytes"
        assert get_storage().get_base64(key=file.storage_key) == "cG5nLWJ5dGVz"


def test_second_begin_parse_fails_with_already_processing():
    with SessionLocal() as session:
        file_id = _register(session).id

    with SessionLocal() as first, SessionLocal() as second:
        claimed = begin_parse(first, file_id)
        assert claimed.status == FileStatus.PROCESSING
        with pytest.raises(AlreadyProcessing):
            begin_parse(second, file_id)

    with SessionLocal() as session:
        assert get_file(session, file_id).status == FileStatus.PROCESSING


def test_begin_parse_clears_failure_reason_and_bumps_updated_at():
    with SessionLocal() as session:
        file = _register(session)
        claimed = begin_parse(session, file.id)
        fail_parse(session, file.id, "boom", lease_id=claimed.lease_id)
        _age(session, file.id, minutes=5)
        before = get_file(session, file.id).updated_at

        claimed = begin_parse(session, file.id, from_statuses=(FileStatus.FAILED,))
        assert claimed.failure_reason is None
        assert claimed.updated_at > before


def test_begin_parse_from_wrong_status_is_rejected():
    with SessionLocal() as session:
        file = _register(session)
        with pytest.raises(InvalidStatusTransition):
            begin_parse(session, file.id, from_statuses=(FileStatus.FAILED,))
        assert get_file(session, file.id).status == FileStatus.STORED


def test_complete_parse_persists_summary_and_flips_status():
    with SessionLocal() as session:
        file = _register(session)
        claimed = begin_parse(session, file.id)
        summary = complete_parse(session, file.id, _receipt_output(), lease_id=claimed.lease_id)

        assert summary.document_type == "receipt"
        assert summary.parser_version == "v1"
        assert summary.payload_json["mainTransaction"]["amount"] == 12.34
        assert summary.confidence == 0.9
        assert get_file(session, file.id).status == FileStatus.COMPLETED
        assert get_summary(session, file.id).id == summary.id


def test_complete_parse_requires_processing():
    with SessionLocal() as session:
        file = _register(session)
        with pytest.raises(InvalidStatusTransition):
            complete_parse(session, file.id, _receipt_output(), lease_id=uuid.uuid4())
        assert get_summary(session, file.id) is None


def test_fail_parse_truncates_reason_and_keeps_old_summaries():
    with SessionLocal() as session:
        file = _register(session)
        claimed = begin_parse(session, file.id)
        first = complete_parse(session, file.id, _receipt_output(), lease_id=claimed.lease_id)

        again = begin_parse(session, file.id, from_statuses=(FileStatus.COMPLETED,))
        fail_parse(session, file.id, "x" * 2000, lease_id=again.lease_id)

        refreshed = get_file(session, file.id)
        assert refreshed.status == FileStatus.FAILED
        assert len(refreshed.failure_reason) == 500
        assert get_summary(session, file.id).id == first.id


def test_stale_processing_lease_can_be_reclaimed():
    with SessionLocal() as session:
        file = _register(session)
        begin_parse(session, file.id)
        _age(session, file.id, minutes=31)

        reclaimed = begin_parse(session, file.id)
        assert reclaimed.status == FileStatus.PROCESSING


def test_each_claim_gets_its_own_lease_and_completion_clears_it():
    with SessionLocal() as session:
        file = _register(session)
        assert file.lease_id is None

        claimed = begin_parse(session, file.id)
        lease = claimed.lease_id
        assert lease is not None
        complete_parse(session, file.id, _receipt_output(), lease_id=lease)
        assert get_file(session, file.id).lease_id is None

        again = begin_parse(session, file.id, from_statuses=(FileStatus.COMPLETED,))
        assert again.lease_id not in (None, lease)


def test_stale_worker_fail_after_reclaim_is_ignored():
    with SessionLocal() as worker_a:
        file_id = _register(worker_a).id
        lease_a = begin_parse(worker_a, file_id).lease_id
        _age(worker_a, file_id, minutes=60)

    with SessionLocal() as worker_b:
        lease_b = begin_parse(worker_b, file_id).lease_id
        assert lease_b != lease_a

    with SessionLocal() as worker_a:
        fail_parse(worker_a, file_id, "worker A gave up", lease_id=lease_a)
        file = get_file(worker_a, file_id)
        assert file.status == FileStatus.PROCESSING
        assert file.failure_reason is None

    with SessionLocal() as worker_b:
        summary = complete_parse(worker_b, file_id, _receipt_output(), lease_id=lease_b)
        assert get_file(worker_b, file_id).status == FileStatus.COMPLETED
        assert get_summary(worker_b, file_id).id == summary.id


def test_stale_worker_complete_after_reclaim_raises_lease_lost():
    with SessionLocal() as session:
        file = _register(session)
        lease_a = begin_parse(session, file.id).lease_id
        _age(session, file.id, minutes=60)
        begin_parse(session, file.id)

        with pytest.raises(LeaseLost):
            complete_parse(session, file.id, _receipt_output(), lease_id=lease_a)
        assert get_file(session, file.id).status == FileStatus.PROCESSING
        assert get_summary(session, file.id) is None


def test_expire_stale_processing_fails_only_expired_files():
    with SessionLocal() as session:
        stale = _register(session)
        fresh = _register(session)
        begin_parse(session, stale.id)
        begin_parse(session, fresh.id)
        _age(session, stale.id, minutes=45)

        expired = expire_stale_processing(session)

        assert expired == [stale.id]
        stale_file = get_file(session, stale.id)
        assert stale_file.status == FileStatus.FAILED
        assert stale_file.failure_reason == "Parsing timed out"
        assert get_file(session, fresh.id).status == FileStatus.PROCESSING


def test_get_file_and_list_files_respect_owner():
    with SessionLocal() as session:
        mine = _register(session, user_id="alice")
        _register(session, user_id="bob")

        assert [f.id for f in list_files(session, user_id="alice")] == [mine.id]
        assert list_files(session, user_id="alice", status=FileStatus.FAILED) == []
        with pytest.raises(FileNotFound):
            get_file(session, mine.id, user_id="bob")
        with pytest.raises(FileNotFound):
            get_file(session, uuid.uuid4())
