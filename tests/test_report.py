"""Tests for the merged workbook writer."""

from __future__ import annotations

from pathlib import Path

from openpyxl import load_workbook

from catalog_merge import OUTPUT_FILENAME, OUTPUT_SHEET
from catalog_merge.models import MergeReport, Table
from catalog_merge.report import HEADER_FILL, SUMMARY_SHEET, write_output_workbook


def _merged_table() -> Table:
    return Table(
        header=("NOME", "SKU", "IMAGENS"),
        rows=(
            ("Shoe", "A1", "u1, u2"),
            ("Hat", "A2", ""),
        ),
    )


def _sheet_rows(path: Path, sheet: str = OUTPUT_SHEET) -> list[list[object]]:
    ws = load_workbook(path)[sheet]
    return [list(row) for row in ws.iter_rows(values_only=True)]


def test_writes_single_sheet_with_header_and_rows(tmp_path: Path) -> None:
    path = write_output_workbook(tmp_path, _merged_table())

    assert path == tmp_path / OUTPUT_FILENAME
    wb = load_workbook(path)
    assert wb.sheetnames == [OUTPUT_SHEET]
    assert _sheet_rows(path) == [
        ["NOME", "SKU", "IMAGENS"],
        ["Shoe", "A1", "u1, u2"],
        ["Hat", "A2", None],
    ]


def test_header_is_styled_and_frozen(tmp_path: Path) -> None:
    path = write_output_workbook(tmp_path, _merged_table())

    ws = load_workbook(path)[OUTPUT_SHEET]
    assert ws.freeze_panes == "A2"
    assert ws["A1"].font.bold is True
    assert ws["A1"].fill.start_color.rgb.endswith(HEADER_FILL.start_color.rgb[-6:])
    assert ws.auto_filter.ref == "A1:C3"


def test_text_cells_are_written_unchanged(tmp_path: Path) -> None:
    table = Table(
        header=("NOME", "PRECO", "IMAGENS"),
        rows=(
            ("=HYPERLINK(\"x\")", "-5", "@home"),
            ("- Promo camiseta", "+Extra", "'quoted"),
        ),
    )

    path = write_output_workbook(tmp_path, table)

    ws = load_workbook(path)[OUTPUT_SHEET]
    assert ws["A2"].data_type == "s"
    assert _sheet_rows(path)[1:] == [
        ["=HYPERLINK(\"x\")", "-5", "@home"],
        ["- Promo camiseta", "+Extra", "'quoted"],
    ]


def test_custom_filename_and_no_tmp_left(tmp_path: Path) -> None:
    path = write_output_workbook(tmp_path / "out", _merged_table(), filename="erp.xlsx")

    assert path.name == "erp.xlsx"
    assert path.exists()
    assert not list((tmp_path / "out").glob("*.tmp*"))


def test_empty_table_writes_placeholder(tmp_path: Path) -> None:
    path = write_output_workbook(tmp_path, Table())

    assert _sheet_rows(path) == [["No data"]]


def test_summary_sheet_lists_counts_and_warnings(tmp_path: Path) -> None:
    report = MergeReport(
        rows_in=3, rows_out=2, skipped_rows=1, matched_rows=1, image_count=2,
        warnings=["Skipped 1 product rows with an empty linking key"],
    )

    path = write_output_workbook(tmp_path, _merged_table(), report)

    wb = load_workbook(path)
    assert wb.sheetnames == [OUTPUT_SHEET, SUMMARY_SHEET]
    values = [cell for row in _sheet_rows(path, SUMMARY_SHEET) for cell in row if cell is not None]
    assert "Rows written" in values
    assert 2 in values
    assert "Skipped 1 product rows with an empty linking key" in values
