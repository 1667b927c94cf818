from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from statement_intake.core.models import Base, Created, UUIDPrimaryKey


class ImportedItem(UUIDPrimaryKey, Created, Base):
    __tablename__ = "imports_imported_item"
    __table_args__ = (
        UniqueConstraint("file_id", "parsed_item_id", name="uq_imported_item_file_item"),
    )

    file_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("files_uploaded_file.id"), index=True
    )
    parsed_item_id: Mapped[str] = mapped_column(String(100))
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("transactions_transaction.id"), index=True
    )

    transaction = relationship("Transaction")
