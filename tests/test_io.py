from __future__ import annotations

import hashlib
from datetime import datetime
from pathlib import Path

import pandas as pd
import pytest
from openpyxl import Workbook

from catalog_merge.io import load_workbook_tables, sha256_file, write_json


def _write_xlsx(path: Path) -> Path:
    wb = Workbook()
    ws = wb.active
    assert ws is not None
    ws.title = "Produtos"
    ws.append(["SKU", "Nome", "Preco"])
    ws.append(["A1", "Shoe", 10])
    ws.append(["A2", None, 5.5])
    images = wb.create_sheet("Imagens")
    images.append(["SKU", "URL"])
    images.append(["A1", "http://img/1.jpg"])
    wb.save(path)
    return path


def test_load_workbook_tables_reads_every_sheet_in_order(tmp_path: Path) -> None:
    path = _write_xlsx(tmp_path / "catalogo.xlsx")

    tables = load_workbook_tables(path)

    assert list(tables) == ["Produtos", "Imagens"]
    produtos = tables["Produtos"]
    assert produtos.header == ("SKU", "Nome", "Preco")
    assert produtos.rows == (("A1", "Shoe", "10"), ("A2", "", "5.5"))
    assert tables["Imagens"].rows == (("A1", "http://img/1.jpg"),)


def test_load_workbook_tables_xlsx_uses_openpyxl_without_header(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    xlsx_path = tmp_path / "data.xlsx"
    xlsx_path.write_bytes(b"x")
    calls: list[dict[str, object]] = []

    def _fake_read_excel(path: Path, **kwargs: object) -> dict[str, pd.DataFrame]:
        calls.append({"path": path, **kwargs})
        return {"Sheet1": pd.DataFrame([["SKU", "URL"], ["A1", pd.NA]], dtype="string")}

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    tables = load_workbook_tables(xlsx_path)

    assert tables["Sheet1"].rows == (("A1", ""),)
    assert len(calls) == 1
    assert calls[0]["engine"] == "openpyxl"
    assert calls[0]["sheet_name"] is None
    assert calls[0]["header"] is None
    assert calls[0]["dtype"] == "string"


def test_load_workbook_tables_xls_missing_xlrd_raises_friendly_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    xls_path = tmp_path / "legacy.xls"
    xls_path.write_bytes(b"x")

    def _fake_read_excel(path: Path, **kwargs: object) -> dict[str, pd.DataFrame]:
        del path, kwargs
        raise ImportError("No module named xlrd")

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    with pytest.raises(ValueError, match="xlrd"):
        load_workbook_tables(xls_path)


def test_load_workbook_tables_csv_is_single_table_named_after_stem(tmp_path: Path) -> None:
    csv_path = tmp_path / "produtos.csv"
    csv_path.write_text("SKU,Nome\nA1,Shoe\nA2,\n", encoding="utf-8-sig")

    tables = load_workbook_tables(csv_path)

    assert list(tables) == ["produtos"]
    assert tables["produtos"].header == ("SKU", "Nome")
    assert tables["produtos"].rows == (("A1", "Shoe"), ("A2", ""))


def test_load_workbook_tables_csv_latin1_fallback(tmp_path: Path) -> None:
    csv_path = tmp_path / "latin1.csv"
    csv_path.write_bytes("SKU,Nome\nA1,Sapato Rosé\n".encode("latin-1"))

    tables = load_workbook_tables(csv_path)

    assert tables["latin1"].rows[0][1] == "Sapato Rosé"


def test_load_workbook_tables_csv_wraps_parser_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    csv_path = tmp_path / "broken.csv"
    csv_path.write_text('not,a,valid"\n', encoding="utf-8")

    def _fake_read_csv(path: Path, **kwargs: object) -> pd.DataFrame:
        del path, kwargs
        raise pd.errors.ParserError("malformed csv")

    monkeypatch.setattr(pd, "read_csv", _fake_read_csv)

    with pytest.raises(ValueError, match="decode or parse failed"):
        load_workbook_tables(csv_path)


def test_load_workbook_tables_rejects_bad_paths(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_workbook_tables(tmp_path / "missing.xlsx")

    input_dir = tmp_path / "fake.xlsx"
    input_dir.mkdir()
    with pytest.raises(ValueError, match="not a file"):
        load_workbook_tables(input_dir)

    odd = tmp_path / "data.ods"
    odd.write_bytes(b"x")
    with pytest.raises(ValueError, match="Unsupported file type"):
        load_workbook_tables(odd)


def test_write_json_is_atomic_and_deterministic(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "artifact.json"
    payload = {
        "b": 1,
        "a": datetime(2024, 1, 2, 3, 4, 5),
        "path": Path("foo/bar"),
    }

    out = write_json(path, payload)

    assert out == path
    text = path.read_text(encoding="utf-8")
    assert text.endswith("\n")
    assert '"a": "2024-01-02T03:04:05"' in text
    assert '"path": "foo/bar"' in text
    assert text.index('"a"') < text.index('"b"') < text.index('"path"')
    assert not path.with_suffix(path.suffix + ".tmp").exists()


def test_write_json_raises_on_unknown_type(tmp_path: Path) -> None:
    class Unknown:
        pass

    with pytest.raises(TypeError, match="not JSON serializable"):
        write_json(tmp_path / "artifact.json", {"x": Unknown()})


def test_sha256_file_matches_hashlib(tmp_path: Path) -> None:
    path = tmp_path / "blob.bin"
    path.write_bytes(b"catalog" * 5000)

    assert sha256_file(path) == hashlib.sha256(b"catalog" * 5000).hexdigest()
