"""
Import row schema: turns raw spreadsheet/JSON rows into ImportRow values.

Every optional column is presence-aware: a cell is either Present(value)
or ABSENT. A blank cell is ABSENT, never an empty-string sentinel, so
"not supplied" can't be confused with a real value.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import IO, Any, Generic, TypeVar, Union

from ..models import DEFAULT_UNIT, UNITS


T = TypeVar("T")


class _Absent:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


@dataclass(frozen=True)
class Present(Generic[T]):
    value: T


Maybe = Union[Present[T], _Absent]


def is_present(cell: Any) -> bool:
    return isinstance(cell, Present)


def value_or(cell: Any, default: Any) -> Any:
    return cell.value if isinstance(cell, Present) else default


# Accepted spellings for each unit, including Portuguese names and the
# abbreviations printed on shelf labels.
UNIT_ALIASES: dict[str, str] = {
    "each": "each", "un": "each", "unit": "each", "units": "each", "unidade": "each",
    "unidades": "each", "pc": "each", "pcs": "each", "pç": "each", "peça": "each", "peças": "each",
    "kg": "kg", "kilo": "kg", "kilos": "kg", "kilogram": "kg", "kilograms": "kg",
    "quilo": "kg", "quilos": "kg", "quilograma": "kg", "quilogramas": "kg", "kilograma": "kg",
    "gram": "gram", "grams": "gram", "g": "gram", "gr": "gram", "grama": "gram", "gramas": "gram",
    "pack": "pack", "packs": "pack", "packet": "pack", "pacote": "pack", "pacotes": "pack", "pct": "pack",
    "case": "case", "cases": "case", "box": "case", "caixa": "case", "caixas": "case", "cx": "case",
}

# Column header aliases (compared lower-cased and stripped).
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("name", "nome", "product", "produto"),
    "sku": ("sku", "codigo", "código", "code"),
    "barcode": ("barcode", "ean", "codigo de barras", "código de barras"),
    "price": ("price", "preço", "preco"),
    "cost_price": ("cost_price", "costprice", "cost", "custo"),
    "stock": ("stock", "quantity", "qty", "estoque", "stock_qty"),
    "min_stock": ("min_stock", "minstock", "reorder", "reorder_threshold", "mínimo", "minimo"),
    "unit": ("unit", "unidade"),
    "category": ("category", "category_id", "categoryid", "categoria"),
    "image": ("image", "imagem"),
}


class RowParseError(ValueError):
    """Raised when the row payload is not a list of mappings."""


@dataclass(frozen=True)
class ImportRow:
    row_number: int
    name: str
    unit: str
    sku: Maybe[str] = ABSENT
    barcode: Maybe[str] = ABSENT
    price: Maybe[Decimal] = ABSENT
    cost_price: Maybe[Decimal] = ABSENT
    stock: Maybe[Decimal] = ABSENT
    min_stock: Maybe[Decimal] = ABSENT
    # Raw category reference (id or name); resolved by the reconciler.
    category: Maybe[str] = ABSENT
    image: Maybe[str] = ABSENT


@dataclass
class ParseResult:
    rows: list[ImportRow] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)

    def warn(self, row_number: int, column: str, message: str) -> None:
        self.warnings.append({"row": row_number, "field": column, "message": message})


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def parse_decimal(value: Any) -> Decimal | None:
    """
    Parse a numeric cell. Accepts "1234.5", "1234,5", "1.234,50", "$ 12".

    Raises ValueError for non-numeric text; returns None for blank.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    text = str(value).strip()
    for token in ("R$", "$", "€", "MT", " "):
        text = text.replace(token, "")
    if not text:
        return None
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"not a number: {value!r}")
    if not number.is_finite():
        raise ValueError(f"not a number: {value!r}")
    return number


def normalize_unit(value: Any) -> tuple[str, bool]:
    """(unit, recognised). Blank maps to the default unit silently."""
    key = _text(value)
    if key is None:
        return DEFAULT_UNIT, True
    key = key.lower()
    if key in UNIT_ALIASES:
        return UNIT_ALIASES[key], True
    if key in UNITS:
        return key, True
    return DEFAULT_UNIT, False


def _lookup(raw: dict[str, Any], column: str) -> Any:
    """First non-blank value among the column's header aliases."""
    lowered = {str(k).strip().lower(): v for k, v in raw.items()}
    for alias in COLUMN_ALIASES[column]:
        value = lowered.get(alias)
        if _text(value) is not None:
            return value
    return None


def _numeric_cell(result: ParseResult, raw: dict, column: str, row_number: int, *, allow_negative: bool) -> Maybe[Decimal]:
    value = _lookup(raw, column)
    try:
        number = parse_decimal(value)
    except ValueError:
        result.warn(row_number, column, f"ignored non-numeric value {value!r}")
        return ABSENT
    if number is None:
        return ABSENT
    if number < 0 and not allow_negative:
        result.warn(row_number, column, f"ignored negative value {value!r}")
        return ABSENT
    return Present(number)


def _text_cell(raw: dict, column: str) -> Maybe[str]:
    text = _text(_lookup(raw, column))
    return Present(text) if text is not None else ABSENT


XLSX_EXTENSIONS = {"xlsx", "xlsm", "xltx", "xltm"}


def read_upload(stream: IO[bytes], filename: str) -> list[dict[str, Any]]:
    """
    Raw dict rows from an uploaded CSV, JSON or Excel file.

    A JSON object is accepted if it carries the rows under "products" or "rows".
    """
    ext = (filename or "").rsplit(".", 1)[-1].lower()
    if ext == "csv":
        text = io.StringIO(stream.read().decode("utf-8-sig"))
        return [dict(row) for row in csv.DictReader(text)]
    if ext == "json":
        rows = json.load(stream)
        if isinstance(rows, dict):
            rows = rows.get("products", rows.get("rows", []))
        return rows
    if ext in XLSX_EXTENSIONS:
        from openpyxl import load_workbook
        wb = load_workbook(stream, read_only=True, data_only=True)
        data = list(wb.active.values)
        wb.close()
        if not data:
            return []
        headers = [str(h) if h is not None else "" for h in data[0]]
        return [
            {headers[i]: row[i] for i in range(min(len(headers), len(row)))}
            for row in data[1:]
            if any(cell is not None and str(cell).strip() for cell in row)
        ]
    raise RowParseError("Unsupported file format")


def parse_rows(raw_rows: Any) -> ParseResult:
    """
    Normalize raw rows. Never rejects a row: blank names get an
    "Item N" placeholder (N = 1-based row position) and unknown units
    fall back to the default unit; both are reported as warnings.
    """
    if not isinstance(raw_rows, list):
        raise RowParseError("rows must be a list")

    result = ParseResult()
    for idx, raw in enumerate(raw_rows, start=1):
        if not isinstance(raw, dict):
            raise RowParseError(f"row {idx} must be an object")

        name = _text(_lookup(raw, "name"))
        if name is None:
            name = f"Item {idx}"
            result.warn(idx, "name", f"blank name replaced with {name!r}")

        raw_unit = _lookup(raw, "unit")
        unit, recognised = normalize_unit(raw_unit)
        if not recognised:
            result.warn(idx, "unit", f"unknown unit {raw_unit!r} replaced with {unit!r}")

        result.rows.append(ImportRow(
            row_number=idx,
            name=name,
            unit=unit,
            sku=_text_cell(raw, "sku"),
            barcode=_text_cell(raw, "barcode"),
            price=_numeric_cell(result, raw, "price", idx, allow_negative=False),
            cost_price=_numeric_cell(result, raw, "cost_price", idx, allow_negative=False),
            stock=_numeric_cell(result, raw, "stock", idx, allow_negative=True),
            min_stock=_numeric_cell(result, raw, "min_stock", idx, allow_negative=False),
            category=_text_cell(raw, "category"),
            image=_text_cell(raw, "image"),
        ))
    return result
