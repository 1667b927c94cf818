"""Turn raw model text (or a row dict built from a sheet) into a canonical payload.

Expected problems come back as `ParserFailure` values; nothing here raises for
bad input.
"""

from __future__ import annotations

import json
import logging
import re
from decimal import Decimal
from typing import Any

from statement_intake.core.logging import get_logger, log_event
from statement_intake.modules.extraction.normalize import clean_text, normalize_date, parse_amount
from statement_intake.modules.extraction.parsers.base import (
    INVALID_MODEL_OUTPUT,
    ParserFailure,
    ParserOutput,
    ParserSuccess,
)
from statement_intake.modules.extraction.schemas import (
    RECEIPT_DOCUMENT_TYPES,
    BankStatement,
    Receipt,
    ReceiptTransaction,
    StatementPeriod,
    StatementRow,
)

logger = get_logger(__name__)

DEFAULT_CONFIDENCE = 0.9

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_CURRENCY_SYMBOLS = {
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
    "B/.": "PAB",
}


def extract_json_text(text: str) -> str:
    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text.strip()


def validate_model_output(text: str, *, document_type: str | None = None) -> ParserOutput:
    try:
        raw = json.loads(extract_json_text(text or ""))
    except json.JSONDecodeError:
        return ParserFailure(
            code=INVALID_MODEL_OUTPUT,
            error=f"Failed to parse model response as JSON: {(text or '')[:200]}",
        )
    if not isinstance(raw, dict):
        return ParserFailure(
            code=INVALID_MODEL_OUTPUT,
            error=f"Model response is not a JSON object: {(text or '')[:200]}",
        )
    return validate_payload(raw, document_type=document_type)


def validate_payload(
    raw: dict[str, Any],
    *,
    base_confidence: float = DEFAULT_CONFIDENCE,
    document_type: str | None = None,
) -> ParserOutput:
    """Validate a camelCase payload dict. `document_type` forces the receipt/statement branch."""
    currency = _normalize_currency(raw.get("currency"))
    if currency is None:
        return ParserFailure(code=INVALID_MODEL_OUTPUT, error=f"Invalid currency: {raw.get('currency')!r}")

    confidence = _model_confidence(raw.get("confidence"), default=base_confidence)
    doc_type = document_type or raw.get("documentType")
    if doc_type in RECEIPT_DOCUMENT_TYPES:
        return _validate_receipt(raw, doc_type=doc_type, currency=currency, confidence=confidence)
    return _validate_bank_statement(raw, currency=currency, confidence=confidence)


def _validate_receipt(
    raw: dict[str, Any], *, doc_type: str, currency: str, confidence: float
) -> ParserOutput:
    main = raw.get("mainTransaction")
    if not isinstance(main, dict):
        return ParserFailure(code=INVALID_MODEL_OUTPUT, error="Receipt is missing mainTransaction")

    amount = parse_amount(main.get("amount"))
    if amount is None:
        return ParserFailure(code=INVALID_MODEL_OUTPUT, error="Receipt amount is missing or invalid")

    merchant = clean_text(main.get("merchant"), max_len=200)
    if not merchant:
        return ParserFailure(code=INVALID_MODEL_OUTPUT, error="Receipt is missing merchant")

    receipt = Receipt(
        document_type=doc_type,
        currency=currency,
        main_transaction=ReceiptTransaction(
            id="main",
            date=normalize_date(main.get("date")),
            merchant=merchant,
            amount=abs(amount),
            category_guess=clean_text(main.get("categoryGuess"), max_len=100),
            notes=clean_text(main.get("notes")),
        ),
    )
    return ParserSuccess(summary=receipt, confidence=round(confidence, 4))


def _validate_bank_statement(raw: dict[str, Any], *, currency: str, confidence: float) -> ParserOutput:
    candidates = raw.get("transactions")
    if not isinstance(candidates, list):
        candidates = []

    rows: list[StatementRow] = []
    seen_ids: set[str] = set()
    for i, item in enumerate(candidates):
        if not isinstance(item, dict):
            _log_dropped(i, "not_an_object")
            continue
        amount = parse_amount(item.get("amount"))
        if amount is None:
            _log_dropped(i, "invalid_amount")
            continue
        description = clean_text(item.get("description"))
        if not description:
            _log_dropped(i, "missing_description")
            continue

        is_credit = item.get("isCredit")
        if not isinstance(is_credit, bool):
            is_credit = amount > 0

        row_id = _unique_id(clean_text(item.get("id"), max_len=80) or f"row_{i + 1}", seen_ids)
        rows.append(
            StatementRow(
                id=row_id,
                date=normalize_date(item.get("date")),
                description=description,
                amount=_signed(amount, is_credit=is_credit),
                is_credit=is_credit,
                category_guess=clean_text(item.get("categoryGuess"), max_len=100),
                raw_row=clean_text(item.get("rawRow"), max_len=1000),
            )
        )

    if not rows:
        return ParserFailure(code=INVALID_MODEL_OUTPUT, error="No valid transactions in model output")

    period = None
    raw_period = raw.get("period")
    if isinstance(raw_period, dict):
        period = StatementPeriod(
            from_=normalize_date(raw_period.get("from")),
            to=normalize_date(raw_period.get("to")),
        )

    statement = BankStatement(
        currency=currency,
        account_name=clean_text(raw.get("accountName"), max_len=200),
        period=period,
        transactions=rows,
    )
    kept_ratio = len(rows) / len(candidates)
    return ParserSuccess(summary=statement, confidence=round(confidence * kept_ratio, 4))


def _normalize_currency(value: Any) -> str | None:
    if value is None:
        return "USD"
    s = str(value).strip()
    if not s:
        return "USD"
    s = _CURRENCY_SYMBOLS.get(s, s).upper()
    return s if _CURRENCY_RE.match(s) else None


def _model_confidence(value: Any, *, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if value != value:
        return default
    return max(0.0, min(1.0, float(value)))


def _signed(amount: Decimal, *, is_credit: bool) -> Decimal:
    if amount == 0:
        return Decimal("0")
    return abs(amount) if is_credit else -abs(amount)


def _unique_id(candidate: str, seen: set[str]) -> str:
    row_id = candidate
    n = 2
    while row_id in seen:
        row_id = f"{candidate}_{n}"
        n += 1
    seen.add(row_id)
    return row_id


def _log_dropped(index: int, reason: str) -> None:
    log_event(logger, "extraction.row.dropped", level=logging.WARNING, row_index=index, reason=reason)
