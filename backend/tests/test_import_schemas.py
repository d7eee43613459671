import io
import json
from decimal import Decimal

import pytest
from openpyxl import Workbook

from stockwatch.services.import_schemas import (
    ABSENT,
    Present,
    RowParseError,
    normalize_unit,
    parse_decimal,
    parse_rows,
    read_upload,
)


class TestParseDecimal:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("12", Decimal("12")),
            ("12.5", Decimal("12.5")),
            ("12,5", Decimal("12.5")),
            ("1.234,50", Decimal("1234.50")),
            ("1,234.50", Decimal("1234.50")),
            ("MT 45", Decimal("45")),
            ("R$ 9,90", Decimal("9.90")),
            (3, Decimal("3")),
            (2.5, Decimal("2.5")),
        ],
    )
    def test_accepted_formats(self, raw, expected):
        assert parse_decimal(raw) == expected

    def test_blank_is_none(self):
        assert parse_decimal(None) is None
        assert parse_decimal("   ") is None

    @pytest.mark.parametrize("raw", ["abc", True, "nan"])
    def test_rejects_non_numbers(self, raw):
        with pytest.raises(ValueError):
            parse_decimal(raw)


class TestUnits:
    @pytest.mark.parametrize(
        "raw,unit",
        [("kg", "kg"), ("Quilos", "kg"), ("g", "gram"), ("UN", "each"), ("caixa", "case"), ("pct", "pack")],
    )
    def test_aliases(self, raw, unit):
        assert normalize_unit(raw) == (unit, True)

    def test_blank_is_default_without_warning(self):
        assert normalize_unit("") == ("each", True)

    def test_unknown(self):
        assert normalize_unit("litre") == ("each", False)


class TestParseRows:
    def test_presence(self):
        row = parse_rows([{"name": "Rice", "price": "", "stock": "0"}]).rows[0]

        assert row.price is ABSENT
        assert row.stock == Present(Decimal("0"))
        assert row.category is ABSENT

    def test_non_numeric_cell_is_absent_with_warning(self):
        result = parse_rows([{"name": "Rice", "price": "cheap"}])

        assert result.rows[0].price is ABSENT
        assert result.warnings == [{"row": 1, "field": "price", "message": "ignored non-numeric value 'cheap'"}]

    def test_negative_price_is_rejected_but_negative_stock_kept(self):
        result = parse_rows([{"name": "Rice", "price": -1, "stock": -2}])

        assert result.rows[0].price is ABSENT
        assert result.rows[0].stock == Present(Decimal("-2"))
        assert [w["field"] for w in result.warnings] == ["price"]

    def test_rows_must_be_a_list_of_objects(self):
        with pytest.raises(RowParseError):
            parse_rows({"name": "Rice"})
        with pytest.raises(RowParseError):
            parse_rows(["Rice"])


class TestReadUpload:
    def test_csv(self):
        data = "Nome,Preço,Estoque\nArroz,\"12,50\",3\n".encode("utf-8")
        rows = read_upload(io.BytesIO(data), "stock.csv")
        assert rows == [{"Nome": "Arroz", "Preço": "12,50", "Estoque": "3"}]

    def test_csv_with_bom(self):
        data = "﻿name,price\nRice,8\n".encode("utf-8")
        assert read_upload(io.BytesIO(data), "stock.csv") == [{"name": "Rice", "price": "8"}]

    def test_json_object(self):
        data = json.dumps({"products": [{"name": "Rice"}]}).encode("utf-8")
        assert read_upload(io.BytesIO(data), "stock.json") == [{"name": "Rice"}]

    def test_xlsx(self):
        wb = Workbook()
        ws = wb.active
        ws.append(["name", "unit", "price"])
        ws.append(["Rice", "kg", 8])
        ws.append([None, None, None])
        ws.append(["Oil", "each", 10.5])
        buf = io.BytesIO()
        wb.save(buf)
        buf.seek(0)

        rows = read_upload(buf, "stock.xlsx")

        assert rows == [
            {"name": "Rice", "unit": "kg", "price": 8},
            {"name": "Oil", "unit": "each", "price": 10.5},
        ]

    def test_unsupported_extension(self):
        with pytest.raises(RowParseError):
            read_upload(io.BytesIO(b""), "stock.pdf")
