"""Amount and date conventions shared by every parser and the output validator."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil.parser import parse as dateparse

# Anything larger is almost always a misread decimal point.
MAX_ABS_AMOUNT = Decimal("1000000000")

_EXCEL_EPOCH = date(1899, 12, 30)
_ISO_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")
_SCIENTIFIC_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)[eE][-+]?\d+")
_CURRENCY_CODE_RE = re.compile(r"\b[A-Z]{3}\b", re.IGNORECASE)


def parse_amount(value: Any) -> Decimal | None:
    """Parse a model- or sheet-supplied amount into a finite, signed Decimal.

    Returns None for anything unparseable, non-finite, or over MAX_ABS_AMOUNT.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
    elif isinstance(value, str):
        amount = _parse_amount_text(value)
    else:
        return None
    if amount is None or not amount.is_finite():
        return None
    if abs(amount) > MAX_ABS_AMOUNT:
        return None
    return amount


def _parse_amount_text(raw: str) -> Decimal | None:
    s = raw.replace("\u202f", " ").replace("\xa0", " ").replace("\u2212", "-").strip()
    # Balboa symbol; its dot is not a decimal separator.
    s = re.sub(r"B/\.", "", s, flags=re.IGNORECASE).strip()
    if not s:
        return None

    bare = re.sub(r"[$€£\s]", "", s)
    if _SCIENTIFIC_RE.fullmatch(bare):
        return Decimal(bare)
    # ISO codes may sit on either side; any other letter means a misread.
    if any(ch.isalpha() for ch in _CURRENCY_CODE_RE.sub("", s)):
        return None

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1].strip()
    if s.endswith("-"):
        negative = True
        s = s[:-1].strip()
    lead = re.match(r"[^0-9.,]*", s)
    if lead and "-" in lead.group(0):
        negative = True

    s = re.sub(r"[^0-9,.' ]", "", s)
    s = s.replace(" ", "").replace("'", "")
    if not s or not any(ch.isdigit() for ch in s):
        return None

    if "," in s and "." in s:
        decimal_sep = "," if s.rfind(",") > s.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        normalized = s.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in s:
        if s.count(",") > 1:
            normalized = s.replace(",", "")
        else:
            idx = s.rfind(",")
            digits_after = len(s) - idx - 1
            if digits_after == 3 and len(s[:idx]) <= 3:
                normalized = s.replace(",", "")
            elif digits_after in {0, 1, 2}:
                normalized = s.replace(",", ".")
            else:
                normalized = s.replace(",", "")
    elif s.count(".") > 1:
        normalized = s.replace(".", "")
    else:
        normalized = s

    try:
        amount = Decimal(normalized)
    except InvalidOperation:
        return None
    return -amount if negative else amount


def normalize_date(value: Any, *, allow_serial: bool = False) -> str | None:
    """Normalize a date-ish value to YYYY-MM-DD, or None when it cannot be read.

    Order: ISO prefix, M/D/YYYY (D/M/YYYY when the month is impossible), then a
    generic parse. Spreadsheet cells may also carry Excel serial day numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        return _from_excel_serial(value) if allow_serial else None
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    m = _ISO_PREFIX_RE.match(s)
    if m:
        return _safe_iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _SLASH_RE.match(s)
    if m:
        first, second, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if year < 100:
            year += 2000
        return _safe_iso(year, first, second) or _safe_iso(year, second, first)

    if s.isdigit():
        if allow_serial and len(s) <= 5:
            return _from_excel_serial(int(s))
        if len(s) == 8:
            try:
                return datetime.strptime(s, "%Y%m%d").date().isoformat()
            except ValueError:
                return None
        return None

    try:
        return dateparse(s).date().isoformat()
    except (ValueError, OverflowError):
        return None


def _safe_iso(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _from_excel_serial(serial: float) -> str | None:
    if not 1 < serial < 100000:
        return None
    return (_EXCEL_EPOCH + timedelta(days=int(serial))).isoformat()


def clean_text(value: Any, *, max_len: int = 500) -> str | None:
    if value is None:
        return None
    s = " ".join(str(value).split())
    if not s:
        return None
    return s[:max_len]
