from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

RECEIPT_DOCUMENT_TYPES = ("receipt", "invoice")

# Amounts travel as JSON numbers (major units), matching what the model emits.
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReceiptTransaction(_CamelModel):
    id: Literal["main"] = "main"
    date: str | None
    merchant: str
    amount: Amount
    category_guess: str | None = None
    notes: str | None = None


class Receipt(_CamelModel):
    document_type: Literal["receipt", "invoice"] = "receipt"
    currency: str = "USD"
    main_transaction: ReceiptTransaction


class StatementRow(_CamelModel):
    id: str
    date: str | None
    description: str
    amount: Amount
    is_credit: bool | None = None
    category_guess: str | None = None
    raw_row: str | None = None


class StatementPeriod(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str | None = Field(default=None, alias="from")
    to: str | None = None


class BankStatement(_CamelModel):
    document_type: Literal["bank_statement"] = "bank_statement"
    currency: str = "USD"
    account_name: str | None = None
    period: StatementPeriod | None = None
    transactions: list[StatementRow]


ParsedPayload = Receipt | BankStatement


def dump_payload(payload: ParsedPayload) -> dict[str, Any]:
    return payload.model_dump(mode="json", by_alias=True)


def load_payload(data: dict[str, Any]) -> ParsedPayload:
    if data.get("documentType") in RECEIPT_DOCUMENT_TYPES:
        return Receipt.model_validate(data)
    return BankStatement.model_validate(data)


def payload_item_ids(payload: ParsedPayload) -> list[str]:
    if isinstance(payload, Receipt):
        return [payload.main_transaction.id]
    return [row.id for row in payload.transactions]
