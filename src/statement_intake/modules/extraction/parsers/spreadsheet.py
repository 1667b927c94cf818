"""Spreadsheet uploads (xlsx, csv, and .xls files that are really one of those).

Sheets with a recognizable header row are mapped directly; anything else is
rendered as tab-separated text and handed to the text model.
"""

from __future__ import annotations

import csv
import io
import logging
import re
import unicodedata
import zipfile
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from statement_intake.core.config import settings
from statement_intake.core.logging import get_logger, log_event
from statement_intake.modules.extraction.llm import TextAdapter
from statement_intake.modules.extraction.normalize import normalize_date, parse_amount
from statement_intake.modules.extraction.parsers.base import (
    EMPTY_DOCUMENT,
    UNREADABLE_SPREADSHEET,
    DocumentMeta,
    ParserFailure,
    ParserOutput,
    ParserSuccess,
)
from statement_intake.modules.extraction.prompts import (
    SPREADSHEET_SYSTEM_PROMPT,
    SPREADSHEET_USER_PROMPT,
)
from statement_intake.modules.extraction.validation import validate_model_output, validate_payload

logger = get_logger(__name__)

DIRECT_READ_CONFIDENCE = 1.0
HEADER_SCAN_ROWS = 20

_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

# Normalized (lowercase, no accents, alphanumerics only) header names.
_HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "date": (
        "date",
        "fecha",
        "transactiondate",
        "postingdate",
        "posteddate",
        "valuedate",
        "fechavalor",
        "fechaoperacion",
        "fechatransaccion",
        "fechadetransaccion",
    ),
    "debit": ("debit", "debits", "debito", "debitos", "cargo", "cargos", "retiro", "retiros", "withdrawal", "withdrawals"),
    "credit": ("credit", "credits", "credito", "creditos", "abono", "abonos", "deposito", "depositos", "deposit", "deposits"),
    "amount": ("amount", "monto", "importe", "valor", "transactionamount", "total"),
    "category": ("category", "categoria"),
    "description": (
        "description",
        "descripcion",
        "merchant",
        "details",
        "detalle",
        "detalles",
        "concepto",
        "memo",
        "payee",
        "narrative",
        "comercio",
    ),
}


class UnreadableSpreadsheet(ValueError):
    pass


@dataclass(frozen=True)
class Sheet:
    name: str
    rows: list[list[Any]]


class SpreadsheetParser:
    name = "spreadsheet"

    def __init__(
        self,
        text: TextAdapter,
        *,
        max_chars: int | None = None,
        max_rows_per_sheet: int | None = None,
    ) -> None:
        self._text = text
        self._max_chars = max_chars or settings.spreadsheet_max_chars
        self._max_rows_per_sheet = max_rows_per_sheet or settings.spreadsheet_max_rows_per_sheet

    def parse(self, body: bytes, meta: DocumentMeta) -> ParserOutput:
        try:
            sheets = read_sheets(body, filename=meta.filename)
        except UnreadableSpreadsheet as e:
            return ParserFailure(code=UNREADABLE_SPREADSHEET, error=str(e))

        sheets = [s for s in sheets if s.rows]
        if not sheets:
            return ParserFailure(code=EMPTY_DOCUMENT, error="No data found in spreadsheet")

        direct = rows_from_header_sheets(sheets)
        if direct is not None:
            result = validate_payload(
                direct, base_confidence=DIRECT_READ_CONFIDENCE, document_type="bank_statement"
            )
            if isinstance(result, ParserSuccess):
                log_event(
                    logger,
                    "extraction.spreadsheet.direct",
                    sheet_count=len(sheets),
                    row_count=len(direct["transactions"]),
                )
                return result

        text = self._render(sheets)
        response = self._text.call_text_model(SPREADSHEET_SYSTEM_PROMPT, SPREADSHEET_USER_PROMPT + text)
        if response.stop_reason in {"max_tokens", "length"}:
            log_event(logger, "extraction.spreadsheet.response_truncated", level=logging.WARNING)
        result = validate_model_output(response.text, document_type="bank_statement")
        if isinstance(result, ParserSuccess):
            return result.with_usage(response.usage)
        return result

    def _render(self, sheets: list[Sheet]) -> str:
        text = "\n\n---\n\n".join(
            render_sheet_as_text(s, max_rows=self._max_rows_per_sheet) for s in sheets
        )
        if len(text) > self._max_chars:
            log_event(
                logger,
                "extraction.spreadsheet.truncated",
                original_chars=len(text),
                max_chars=self._max_chars,
            )
            text = text[: self._max_chars]
        return text


def read_sheets(body: bytes, *, filename: str) -> list[Sheet]:
    if body.startswith(_ZIP_MAGIC):
        return _read_workbook(body)
    if body.startswith(_OLE_MAGIC):
        raise UnreadableSpreadsheet(
            "Legacy binary .xls workbooks are not supported; save the file as .xlsx or .csv"
        )
    if b"\x00" in body[:4096]:
        raise UnreadableSpreadsheet("File is neither an xlsx workbook nor delimited text")
    return [Sheet(name=filename or "Sheet1", rows=_read_delimited(body))]


def _read_workbook(body: bytes) -> list[Sheet]:
    try:
        wb = load_workbook(io.BytesIO(body), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise UnreadableSpreadsheet(f"Failed to open workbook: {e}") from e
    try:
        sheets = []
        for ws in wb.worksheets:
            rows = [list(r) for r in ws.iter_rows(values_only=True)]
            sheets.append(Sheet(name=ws.title, rows=[r for r in rows if not _is_blank(r)]))
        return sheets
    finally:
        wb.close()


def _read_delimited(body: bytes) -> list[list[Any]]:
    try:
        text = body.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = body.decode("cp1252", errors="replace")
    sample = text[:4096]
    try:
        dialect: Any = csv.Sniffer().sniff(sample, delimiters=",;\t|")
    except csv.Error:
        dialect = csv.excel
    rows = [list(r) for r in csv.reader(io.StringIO(text), dialect)]
    return [r for r in rows if not _is_blank(r)]


def _is_blank(row: list[Any]) -> bool:
    return all(c is None or (isinstance(c, str) and not c.strip()) for c in row)


def _normalize_header(value: Any) -> str:
    if value is None:
        return ""
    s = unicodedata.normalize("NFKD", str(value)).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]", "", s.lower())


def _column_role(value: Any) -> str | None:
    name = _normalize_header(value)
    if not name:
        return None
    for role, aliases in _HEADER_ALIASES.items():
        if name in aliases:
            return role
    # "Amount (USD)", "Fecha de transacción", etc.
    for role, aliases in _HEADER_ALIASES.items():
        if any(len(a) >= 4 and name.startswith(a) for a in aliases):
            return role
    return None


def find_header(rows: list[list[Any]]) -> tuple[int, dict[str, int]] | None:
    """Return (row index, role -> column index) for the first plausible header row."""
    for idx, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        columns: dict[str, int] = {}
        for col, cell in enumerate(row):
            role = _column_role(cell)
            if role and role not in columns:
                columns[role] = col
        has_money = "amount" in columns or "debit" in columns or "credit" in columns
        if "description" in columns and has_money:
            return idx, columns
    return None


def rows_from_header_sheets(sheets: list[Sheet]) -> dict[str, Any] | None:
    """Build a camelCase bank-statement payload from every sheet with a usable header."""
    transactions: list[dict[str, Any]] = []
    found_header = False
    for sheet in sheets:
        header = find_header(sheet.rows)
        if header is None:
            continue
        found_header = True
        header_idx, columns = header
        for row in sheet.rows[header_idx + 1 :]:
            transactions.append(_map_row(row, columns))

    if not found_header:
        return None

    dates = sorted(t["date"] for t in transactions if t.get("date"))
    payload: dict[str, Any] = {"documentType": "bank_statement", "transactions": transactions}
    if dates:
        payload["period"] = {"from": dates[0], "to": dates[-1]}
    return payload


def _map_row(row: list[Any], columns: dict[str, int]) -> dict[str, Any]:
    def cell(role: str) -> Any:
        col = columns.get(role)
        if col is None or col >= len(row):
            return None
        return row[col]

    item: dict[str, Any] = {
        "date": normalize_date(cell("date"), allow_serial=True),
        "description": cell("description"),
        "categoryGuess": cell("category"),
        "rawRow": "\t".join(_format_cell(c) for c in row),
    }

    if "amount" in columns:
        item["amount"] = cell("amount")
        return item

    credit = parse_amount(cell("credit"))
    debit = parse_amount(cell("debit"))
    if credit:
        item["amount"] = abs(credit)
        item["isCredit"] = True
    elif debit:
        item["amount"] = -abs(debit)
        item["isCredit"] = False
    else:
        item["amount"] = None
    return item


def _format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def render_sheet_as_text(sheet: Sheet, *, max_rows: int) -> str:
    lines = [f"Sheet: {sheet.name}", ""]
    for row in sheet.rows[:max_rows]:
        lines.append("\t".join(_format_cell(c) for c in row))
    if len(sheet.rows) > max_rows:
        lines.append(f"... ({len(sheet.rows) - max_rows} more rows)")
    return "\n".join(lines)
