from __future__ import annotations

import hashlib
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from statement_intake.core.config import settings
from statement_intake.modules.extraction.models import ExtractionCache
from statement_intake.modules.extraction.parsers.base import ParserSuccess
from statement_intake.modules.extraction.schemas import dump_payload, load_payload


class ExtractionResultCache:
    """Successful parser outputs keyed by document content, format and parser version.

    Entries older than `ttl` are ignored and overwritten on the next store.
    """

    def __init__(self, session: Session, *, ttl: timedelta, parser_version: str) -> None:
        self._session = session
        self._ttl = ttl
        self._parser_version = parser_version

    @classmethod
    def from_settings(cls, session: Session) -> ExtractionResultCache:
        return cls(
            session,
            ttl=timedelta(hours=settings.extraction_cache_ttl_hours),
            parser_version=settings.parser_version,
        )

    def key(self, body: bytes, document_format: str) -> str:
        h = hashlib.sha256(body)
        h.update(b"\x00" + document_format.encode("utf-8"))
        h.update(b"\x00" + self._parser_version.encode("utf-8"))
        return h.hexdigest()

    def get(self, content_hash: str, *, now: datetime | None = None) -> ParserSuccess | None:
        cached = self._session.scalar(
            select(ExtractionCache).where(ExtractionCache.content_hash == content_hash)
        )
        if not cached or cached.parser_version != self._parser_version:
            return None
        stored_at = cached.updated_at
        if stored_at.tzinfo is None:
            stored_at = stored_at.replace(tzinfo=UTC)
        if stored_at < (now or datetime.now(UTC)) - self._ttl:
            return None
        if not isinstance(cached.payload_json, dict):
            return None
        try:
            payload = load_payload(cached.payload_json)
        except ValidationError:
            return None
        return ParserSuccess(summary=payload, confidence=cached.confidence)

    def put(self, content_hash: str, *, document_format: str, output: ParserSuccess) -> None:
        payload_json = dump_payload(output.summary)
        cached = self._session.scalar(
            select(ExtractionCache).where(ExtractionCache.content_hash == content_hash)
        )
        if not cached:
            candidate = ExtractionCache(
                content_hash=content_hash,
                document_format=document_format,
                parser_version=self._parser_version,
                payload_json=payload_json,
                confidence=output.confidence,
            )
            try:
                with self._session.begin_nested():
                    self._session.add(candidate)
                    self._session.flush()
                return
            except IntegrityError:
                cached = self._session.scalar(
                    select(ExtractionCache).where(ExtractionCache.content_hash == content_hash)
                )
                if not cached:
                    return
        cached.document_format = document_format
        cached.parser_version = self._parser_version
        cached.payload_json = payload_json
        cached.confidence = output.confidence
        # Refresh the TTL even when the payload is unchanged.
        cached.updated_at = datetime.now(UTC)
        self._session.add(cached)
        self._session.flush()
