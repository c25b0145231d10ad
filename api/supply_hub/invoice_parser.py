# supply_hub/invoice_parser.py
"""
Turn an uploaded supplier invoice (CSV or Excel) into InvoiceRow objects.

Only the first sheet is read. Every cell is read as text; the caller's
column map says which header holds the product name, quantity, unit price
and amount. Numbers may use a decimal comma. Unparsable numbers become 0.
"""
from __future__ import annotations
import io
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pandas as pd

from .exceptions import ValidationError
from .services.reconciliation import InvoiceRow
from .utils import to_decimal

EXCEL_SUFFIXES = (".xlsx", ".xls")
CSV_SUFFIXES = (".csv", ".txt")
COLUMN_KEYS = ("productName", "quantity", "unitPrice", "amount")


def parse_column_map(raw: Any) -> Dict[str, str]:
    """Accepts the multipart ``columnMap`` field (JSON text) or a dict."""
    if raw is None or raw == "":
        mapping: Any = {}
    elif isinstance(raw, dict):
        mapping = raw
    else:
        try:
            mapping = json.loads(raw)
        except (TypeError, ValueError):
            raise ValidationError("columnMap must be valid JSON")
    if not isinstance(mapping, dict):
        raise ValidationError("columnMap must be a JSON object")
    if not mapping.get("productName"):
        raise ValidationError("columnMap.productName is required")
    return {k: str(mapping[k]).strip() for k in COLUMN_KEYS if mapping.get(k)}


def _clean_headers_inplace(df: pd.DataFrame) -> None:
    cols = []
    for c in df.columns:
        s = str(c).replace("\u00A0", " ").strip()
        if s.startswith("[") and s.endswith("]"):
            s = s[1:-1]
        cols.append(s)
    df.columns = cols


def read_csv_smart(content: bytes) -> pd.DataFrame:
    encodings = ["utf-8-sig", "gb18030", "cp1250", "latin-1"]
    seps = [",", ";", "\t", "|"]
    single_column: Optional[pd.DataFrame] = None
    last_err = None
    for enc in encodings:
        for sep in seps:
            try:
                df = pd.read_csv(
                    io.BytesIO(content),
                    encoding=enc,
                    sep=sep,
                    dtype=str,
                    keep_default_na=False,
                    on_bad_lines="skip",
                )
            except (UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
                last_err = e
                continue
            if df.shape[1] > 1:
                return df
            if single_column is None:
                single_column = df
    if single_column is not None:
        return single_column
    if last_err:
        raise ValidationError(f"Cannot parse CSV: {last_err}")
    raise ValidationError("Cannot parse CSV")


def read_frame(content: bytes, filename: str) -> pd.DataFrame:
    name = (filename or "").lower()
    if not content:
        raise ValidationError("Uploaded file is empty")
    if name.endswith(EXCEL_SUFFIXES):
        try:
            df = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str, keep_default_na=False)
        except (ValueError, ImportError, OSError) as e:
            raise ValidationError(f"Cannot read Excel file: {e}")
    elif name.endswith(CSV_SUFFIXES):
        df = read_csv_smart(content)
    else:
        raise ValidationError("Unsupported file type, expected .csv, .xlsx or .xls")
    _clean_headers_inplace(df)
    return df


def _cell(row: Dict[str, Any], column: Optional[str]) -> str:
    if not column:
        return ""
    value = row.get(column)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def read_invoice_rows(content: bytes, filename: str, column_map: Dict[str, str]) -> List[InvoiceRow]:
    df = read_frame(content, filename)
    if df.empty:
        raise ValidationError("Invoice file has no data rows")

    missing = [col for col in column_map.values() if col not in df.columns]
    if missing:
        raise ValidationError(
            f"Columns not found in file: {', '.join(missing)}",
            details={"columns": list(df.columns)},
        )

    out: List[InvoiceRow] = []
    for row in df.to_dict(orient="records"):
        name = _cell(row, column_map.get("productName"))
        if not name:
            continue
        amount = to_decimal(_cell(row, column_map.get("amount")))
        out.append(InvoiceRow(
            product_name=name,
            quantity=to_decimal(_cell(row, column_map.get("quantity")), Decimal("0")),
            unit_price=to_decimal(_cell(row, column_map.get("unitPrice")), Decimal("0")),
            amount=amount if amount else None,
        ))
    return out
