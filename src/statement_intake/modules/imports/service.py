from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from statement_intake.core.errors import SummaryNotAvailable, UnknownItemId
from statement_intake.core.logging import get_logger, log_event, monotonic_ms
from statement_intake.modules.extraction.schemas import Receipt, load_payload
from statement_intake.modules.files.models import FileStatus
from statement_intake.modules.files.service import get_file, get_summary
from statement_intake.modules.imports.models import ImportedItem
from statement_intake.modules.transactions.models import Transaction, TransactionType

logger = get_logger(__name__)

# One retry covers a concurrent import of the same rows winning the unique constraint.
_MAX_ATTEMPTS = 2


@dataclass(frozen=True)
class ImportSelection:
    item_id: str
    category_id: str | None = None


@dataclass
class ImportResult:
    imported: list[Transaction] = field(default_factory=list)
    already_skipped: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _ImportRow:
    date: str | None
    description: str
    amount: Decimal
    is_credit: bool | None


def _rows_by_id(payload) -> tuple[dict[str, _ImportRow], str | None]:
    if isinstance(payload, Receipt):
        main = payload.main_transaction
        row = _ImportRow(date=main.date, description=main.merchant, amount=main.amount, is_credit=False)
        return {main.id: row}, None

    rows = {
        r.id: _ImportRow(date=r.date, description=r.description, amount=r.amount, is_credit=r.is_credit)
        for r in payload.transactions
    }
    period_from = payload.period.from_ if payload.period else None
    return rows, period_from


def to_cents(amount: Decimal) -> int:
    return int((abs(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _transaction_type(
    row: _ImportRow, *, default_type: TransactionType | None
) -> TransactionType:
    if row.is_credit is not None:
        return TransactionType.INCOME if row.is_credit else TransactionType.EXPENSE
    if default_type is not None:
        return default_type
    return TransactionType.INCOME if row.amount > 0 else TransactionType.EXPENSE


def import_items(
    session: Session,
    *,
    file_id: uuid.UUID,
    user_id: str,
    items: list[ImportSelection],
    account_id: str,
    default_type: TransactionType | None = None,
    today: date | None = None,
) -> ImportResult:
    """Create one Transaction per selected parsed row, at most once per (file, row).

    Rows already in the ledger are reported in `already_skipped`. Unknown ids
    fail the whole call before anything is written.
    """
    start = time.monotonic()
    file = get_file(session, file_id, user_id=user_id)
    summary = get_summary(session, file.id) if file.status == FileStatus.COMPLETED else None
    if summary is None:
        raise SummaryNotAvailable(f"No parsed summary available for file {file_id}")

    payload = load_payload(summary.payload_json)
    rows, period_from = _rows_by_id(payload)

    selections: dict[str, ImportSelection] = {}
    for sel in items:
        selections.setdefault(sel.item_id, sel)

    unknown = [item_id for item_id in selections if item_id not in rows]
    if unknown:
        raise UnknownItemId(unknown)

    fallback_date = (today or date.today()).isoformat()

    for attempt in range(1, _MAX_ATTEMPTS + 1):
        ledgered = set(
            session.scalars(
                select(ImportedItem.parsed_item_id).where(
                    ImportedItem.file_id == file.id,
                    ImportedItem.parsed_item_id.in_(list(selections)),
                )
            )
        )
        result = ImportResult()
        try:
            for item_id, sel in selections.items():
                if item_id in ledgered:
                    result.already_skipped.append(item_id)
                    continue
                row = rows[item_id]
                txn_type = _transaction_type(row, default_type=default_type)
                cents = to_cents(row.amount)
                txn = Transaction(
                    user_id=user_id,
                    account_id=account_id,
                    date=date.fromisoformat(row.date or period_from or fallback_date),
                    description=row.description,
                    amount_cents=-cents if txn_type == TransactionType.EXPENSE else cents,
                    type=txn_type,
                    category_id=sel.category_id,
                    cleared=False,
                )
                session.add(txn)
                session.flush()
                session.add(
                    ImportedItem(file_id=file.id, parsed_item_id=item_id, transaction_id=txn.id)
                )
                result.imported.append(txn)
            session.flush()
            session.commit()
        except IntegrityError:
            session.rollback()
            if attempt == _MAX_ATTEMPTS:
                raise
            log_event(logger, "imports.conflict", file_id=str(file.id), attempt=attempt)
            continue
        break

    log_event(
        logger,
        "imports.finish",
        file_id=str(file.id),
        summary_id=str(summary.id),
        imported=len(result.imported),
        skipped=len(result.already_skipped),
        duration_ms=monotonic_ms(start),
    )
    return result
