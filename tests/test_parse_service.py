from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select, update

from statement_intake.core.db import SessionLocal
from statement_intake.core.errors import InvalidStatusTransition
from statement_intake.modules.extraction.llm import ExtractionAdapterError
from statement_intake.modules.extraction.models import ExtractionCache
from statement_intake.modules.extraction.service import (
    EXTRACTION_FAILED,
    LEASE_LOST,
    PARSE_FAILED,
    ParseError,
    parse_file,
    reparse_file,
    retry_file,
)
from statement_intake.modules.files.models import FileStatus, ParsedSummary, UploadedFile
from statement_intake.modules.files.service import begin_parse, get_file, store_upload

RECEIPT = json.dumps(
    {
        "documentType": "receipt",
        "currency": "USD",
        "confidence": 0.95,
        "mainTransaction": {
            "date": "03/05/2024",
            "merchant": "Super 99",
            "amount": "-25.99",
            "categoryGuess": "Groceries",
        },
    }
)


def _upload(session, body: bytes = b"\x89PNG receipt", *, filename: str = "receipt.png"):
    return store_upload(
        session, user_id="user-1", filename=filename, mime_type="image/png", body=body
    )


def _summary_count(session) -> int:
    return session.scalar(select(func.count()).select_from(ParsedSummary))


def test_image_receipt_parses_to_completed_summary(fake_model):
    model, adapters = fake_model(RECEIPT)
    with SessionLocal() as session:
        file = _upload(session)

        summary = parse_file(session, file.id, adapters=adapters)

        assert isinstance(summary, ParsedSummary)
        assert summary.document_type == "receipt"
        assert summary.confidence == 0.95
        main = summary.payload_json["mainTransaction"]
        assert main["id"] == "main"
        assert main["date"] == "2024-03-05"
        assert main["amount"] == 25.99
        assert get_file(session, file.id).status == FileStatus.COMPLETED

    assert model.calls[0]["kind"] == "vision"
    assert model.calls[0]["bytes"] == b"\x89PNG receipt"


def test_invalid_model_output_fails_file_with_reason(fake_model):
    _, adapters = fake_model('{"documentType": "receipt", "mainTransaction": {"merchant": "X"}}')
    with SessionLocal() as session:
        file = _upload(session)

        result = parse_file(session, file.id, adapters=adapters)

        assert isinstance(result, ParseError)
        assert result.code == "invalid_model_output"
        refreshed = get_file(session, file.id)
        assert refreshed.status == FileStatus.FAILED
        assert "amount" in refreshed.failure_reason
        assert _summary_count(session) == 0


def test_adapter_error_is_reported_as_extraction_failed(fake_model):
    _, adapters = fake_model(ExtractionAdapterError("LLM request failed with HTTP 529"))
    with SessionLocal() as session:
        file = _upload(session)

        result = parse_file(session, file.id, adapters=adapters)

        assert isinstance(result, ParseError)
        assert result.code == EXTRACTION_FAILED
        assert "HTTP 529" in result.message
        refreshed = get_file(session, file.id)
        assert refreshed.status == FileStatus.FAILED
        assert refreshed.failure_reason == "LLM request failed with HTTP 529"


def test_completed_file_returns_existing_summary_without_model_call(fake_model):
    model, adapters = fake_model(RECEIPT)
    with SessionLocal() as session:
        file = _upload(session)
        first = parse_file(session, file.id, adapters=adapters)

        again = parse_file(session, file.id, adapters=adapters)

        assert again.id == first.id
        assert len(model.calls) == 1
        assert _summary_count(session) == 1


def test_failed_file_is_not_reparsed_implicitly(fake_model):
    model, adapters = fake_model("not json")
    with SessionLocal() as session:
        file = _upload(session)
        parse_file(session, file.id, adapters=adapters)

        again = parse_file(session, file.id, adapters=adapters)

        assert isinstance(again, ParseError)
        assert again.code == PARSE_FAILED
        assert len(model.calls) == 1


def test_identical_bytes_hit_the_extraction_cache(fake_model):
    model, adapters = fake_model(RECEIPT)
    with SessionLocal() as session:
        first = _upload(session, filename="a.png")
        second = _upload(session, filename="b.png")

        parse_file(session, first.id, adapters=adapters)
        cached = parse_file(session, second.id, adapters=adapters)

        assert isinstance(cached, ParsedSummary)
        assert cached.file_id == second.id
        assert cached.payload_json["mainTransaction"]["merchant"] == "Super 99"
        assert len(model.calls) == 1
        assert session.scalar(select(func.count()).select_from(ExtractionCache)) == 1


def test_reparse_bypasses_cache_and_supersedes_summary(fake_model):
    updated = json.loads(RECEIPT)
    updated["mainTransaction"]["merchant"] = "Super 99 Obarrio"
    model, adapters = fake_model(RECEIPT, json.dumps(updated))
    with SessionLocal() as session:
        file = _upload(session)
        first = parse_file(session, file.id, adapters=adapters)

        second = reparse_file(session, file.id, adapters=adapters)

        assert isinstance(second, ParsedSummary)
        assert second.id != first.id
        assert second.payload_json["mainTransaction"]["merchant"] == "Super 99 Obarrio"
        assert len(model.calls) == 2
        assert _summary_count(session) == 2
        # Earlier summaries are kept untouched.
        session.refresh(first)
        assert first.payload_json["mainTransaction"]["merchant"] == "Super 99"


def test_retry_after_failure(fake_model):
    model, adapters = fake_model(ExtractionAdapterError("timeout"), RECEIPT)
    with SessionLocal() as session:
        file = _upload(session)
        assert isinstance(parse_file(session, file.id, adapters=adapters), ParseError)

        summary = retry_file(session, file.id, adapters=adapters)

        assert isinstance(summary, ParsedSummary)
        refreshed = get_file(session, file.id)
        assert refreshed.status == FileStatus.COMPLETED
        assert refreshed.failure_reason is None
        assert len(model.calls) == 2


def test_retry_requires_failed_status(fake_model):
    _, adapters = fake_model(RECEIPT)
    with SessionLocal() as session:
        file = _upload(session)
        with pytest.raises(InvalidStatusTransition):
            retry_file(session, file.id, adapters=adapters)
        assert get_file(session, file.id).status == FileStatus.STORED


def test_parse_whose_lease_was_reclaimed_does_not_complete(fake_model):
    model, adapters = fake_model(RECEIPT)
    with SessionLocal() as session:
        file_id = _upload(session).id

    vision_call = model.call_vision_model

    def _slow_vision_call(*args, **kwargs):
        # Another worker reclaims the file while the model call is in flight.
        with SessionLocal() as other:
            other.execute(
                update(UploadedFile)
                .where(UploadedFile.id == file_id)
                .values(updated_at=datetime.now(UTC) - timedelta(hours=1))
            )
            other.commit()
            begin_parse(other, file_id)
        return vision_call(*args, **kwargs)

    model.call_vision_model = _slow_vision_call

    with SessionLocal() as session:
        result = parse_file(session, file_id, adapters=adapters)

        assert isinstance(result, ParseError)
        assert result.code == LEASE_LOST
        assert get_file(session, file_id).status == FileStatus.PROCESSING
        assert _summary_count(session) == 0
