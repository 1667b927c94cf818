from __future__ import annotations

import enum
import uuid

from sqlalchemy import JSON, Enum, Float, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from statement_intake.core.models import Base, Created, Timestamped, UUIDPrimaryKey


class FileStatus(str, enum.Enum):
    STORED = "stored"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadedFile(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "files_uploaded_file"

    user_id: Mapped[str] = mapped_column(String(64), index=True)

    filename: Mapped[str] = mapped_column(String(512))
    mime_type: Mapped[str] = mapped_column(String(200))
    size_bytes: Mapped[int] = mapped_column(Integer)
    storage_key: Mapped[str] = mapped_column(String(1024), unique=True)

    status: Mapped[FileStatus] = mapped_column(
        Enum(FileStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        index=True,
        default=FileStatus.STORED,
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set by each claim; only the holder may complete or fail the parse.
    lease_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    summaries = relationship(
        "ParsedSummary",
        back_populates="file",
        order_by="ParsedSummary.created_at",
    )


class ParsedSummary(UUIDPrimaryKey, Created, Base):
    """One parse attempt's canonical payload. Rows are never updated."""

    __tablename__ = "files_parsed_summary"

    file_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("files_uploaded_file.id"), index=True
    )
    document_type: Mapped[str] = mapped_column(String(50))
    parser_version: Mapped[str] = mapped_column(String(20), index=True)
    payload_json: Mapped[dict] = mapped_column(JSON)
    confidence: Mapped[float] = mapped_column(Float, default=1.0)

    file = relationship("UploadedFile", back_populates="summaries")
