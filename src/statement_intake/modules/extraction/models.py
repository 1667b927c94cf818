from __future__ import annotations

from sqlalchemy import JSON, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from statement_intake.core.models import Base, Timestamped, UUIDPrimaryKey


class ExtractionCache(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "extraction_cache"

    content_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    document_format: Mapped[str] = mapped_column(String(20))
    parser_version: Mapped[str] = mapped_column(String(20))
    payload_json: Mapped[dict] = mapped_column(JSON, default=dict)
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
