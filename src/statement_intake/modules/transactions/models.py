from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import Boolean, Date, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from statement_intake.core.models import Base, Timestamped, UUIDPrimaryKey


class TransactionType(str, enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Transaction(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "transactions_transaction"

    user_id: Mapped[str] = mapped_column(String(64), index=True)
    account_id: Mapped[str] = mapped_column(String(64), index=True)

    date: Mapped[date] = mapped_column(Date, index=True)
    description: Mapped[str] = mapped_column(Text)
    # Signed minor units: expenses are negative.
    amount_cents: Mapped[int] = mapped_column(Integer)
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, native_enum=False, values_callable=lambda e: [m.value for m in e])
    )
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cleared: Mapped[bool] = mapped_column(Boolean, default=False)
