"""create intake tables

Revision ID: 3b8e21c4d7a0
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3b8e21c4d7a0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "files_uploaded_file",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("mime_type", sa.String(length=200), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint("storage_key", name="uq_files_uploaded_file_storage_key"),
    )
    op.create_index("ix_files_uploaded_file_user_id", "files_uploaded_file", ["user_id"])
    op.create_index("ix_files_uploaded_file_status", "files_uploaded_file", ["status"])

    op.create_table(
        "files_parsed_summary",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "file_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("files_uploaded_file.id"),
            nullable=False,
        ),
        sa.Column("document_type", sa.String(length=50), nullable=False),
        sa.Column("parser_version", sa.String(length=20), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
    )
    op.create_index("ix_files_parsed_summary_file_id", "files_parsed_summary", ["file_id"])
    op.create_index(
        "ix_files_parsed_summary_parser_version", "files_parsed_summary", ["parser_version"]
    )

    op.create_table(
        "transactions_transaction",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=7), nullable=False),
        sa.Column("category_id", sa.String(length=64), nullable=True),
        sa.Column("cleared", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_transactions_transaction_user_id", "transactions_transaction", ["user_id"])
    op.create_index(
        "ix_transactions_transaction_account_id", "transactions_transaction", ["account_id"]
    )
    op.create_index("ix_transactions_transaction_date", "transactions_transaction", ["date"])

    op.create_table(
        "imports_imported_item",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "file_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("files_uploaded_file.id"),
            nullable=False,
        ),
        sa.Column("parsed_item_id", sa.String(length=100), nullable=False),
        sa.Column(
            "transaction_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("transactions_transaction.id"),
            nullable=False,
        ),
        sa.UniqueConstraint("file_id", "parsed_item_id", name="uq_imported_item_file_item"),
    )
    op.create_index("ix_imports_imported_item_file_id", "imports_imported_item", ["file_id"])
    op.create_index(
        "ix_imports_imported_item_transaction_id", "imports_imported_item", ["transaction_id"]
    )

    op.create_table(
        "extraction_cache",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("document_format", sa.String(length=20), nullable=False),
        sa.Column("parser_version", sa.String(length=20), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
    )
    op.create_index(
        "ix_extraction_cache_content_hash",
        "extraction_cache",
        ["content_hash"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_extraction_cache_content_hash", table_name="extraction_cache")
    op.drop_table("extraction_cache")
    op.drop_index("ix_imports_imported_item_transaction_id", table_name="imports_imported_item")
    op.drop_index("ix_imports_imported_item_file_id", table_name="imports_imported_item")
    op.drop_table("imports_imported_item")
    op.drop_index("ix_transactions_transaction_date", table_name="transactions_transaction")
    op.drop_index("ix_transactions_transaction_account_id", table_name="transactions_transaction")
    op.drop_index("ix_transactions_transaction_user_id", table_name="transactions_transaction")
    op.drop_table("transactions_transaction")
    op.drop_index("ix_files_parsed_summary_parser_version", table_name="files_parsed_summary")
    op.drop_index("ix_files_parsed_summary_file_id", table_name="files_parsed_summary")
    op.drop_table("files_parsed_summary")
    op.drop_index("ix_files_uploaded_file_status", table_name="files_uploaded_file")
    op.drop_index("ix_files_uploaded_file_user_id", table_name="files_uploaded_file")
    op.drop_table("files_uploaded_file")
