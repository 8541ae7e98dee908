"""Excel writer — emits the merged table as produtos_processados.xlsx."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from catalog_merge import OUTPUT_FILENAME, OUTPUT_SHEET
from catalog_merge.models import MergeReport, Table

# ── Style constants ──────────────────────────────────────────────

HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center", wrap_text=True)

TITLE_FONT = Font(name="Calibri", bold=True, size=14, color="2F5496")
SUBTITLE_FONT = Font(name="Calibri", bold=False, size=10, color="808080")
LABEL_FONT = Font(name="Calibri", bold=True, size=11)
VALUE_FONT = Font(name="Calibri", size=11)
WARN_FONT = Font(name="Calibri", italic=True, size=10, color="CC6600")

NOTE_FILL = PatternFill(start_color="FFF2CC", end_color="FFF2CC", fill_type="solid")

SUMMARY_SHEET = "Resumo"

_AUTO_WIDTH_SAMPLE_ROWS = 300
_MAX_COLUMN_WIDTH = 50
_FORMULA_PREFIX = "="


# ── Helpers ──────────────────────────────────────────────────────


def _style_header(ws: Worksheet, ncols: int) -> None:
    for c in range(1, ncols + 1):
        cell = ws.cell(row=1, column=c)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGN


def _auto_width(ws: Worksheet) -> None:
    max_row = min(ws.max_row, _AUTO_WIDTH_SAMPLE_ROWS + 1)  # include header row
    for c_idx in range(1, ws.max_column + 1):
        letter = get_column_letter(c_idx)
        width = 0
        for row in ws.iter_rows(min_row=1, max_row=max_row, min_col=c_idx, max_col=c_idx):
            width = max(width, len(str(row[0].value or "")))
        ws.column_dimensions[letter].width = min(width + 4, _MAX_COLUMN_WIDTH)


def _write_text(ws: Worksheet, row: int, column: int, val: str) -> None:
    """Store *val* unchanged as a text cell; empty strings stay blank."""
    if val == "":
        return
    cell = ws.cell(row=row, column=column, value=val)
    # openpyxl types any "=..." string as a formula
    if val.startswith(_FORMULA_PREFIX):
        cell.data_type = "s"


def _table_to_sheet(ws: Worksheet, table: Table) -> None:
    if not table.header:
        ws.cell(row=1, column=1, value="No data").font = VALUE_FONT
        ws.column_dimensions["A"].width = 18
        return

    ncols = len(table.header)
    for c_idx, name in enumerate(table.header, 1):
        _write_text(ws, 1, c_idx, name)
    for r_idx, row in enumerate(table.rows, 2):
        for c_idx in range(ncols):
            _write_text(ws, r_idx, c_idx + 1, Table.cell(row, c_idx))
    _style_header(ws, ncols)
    ws.freeze_panes = "A2"
    if table.rows:
        ws.auto_filter.ref = f"A1:{get_column_letter(ncols)}{len(table.rows) + 1}"
    _auto_width(ws)


def _write_summary(wb: Workbook, report: MergeReport) -> None:
    ws = wb.create_sheet(title=SUMMARY_SHEET)

    ws.cell(row=1, column=1, value="catalog-merge — Resumo").font = TITLE_FONT
    ws.merge_cells("A1:C1")
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    ws.cell(row=2, column=1, value=f"Generated {generated}").font = SUBTITLE_FONT
    ws.merge_cells("A2:C2")

    row = 4
    for label, value in (
        ("Product rows", report.rows_in),
        ("Rows written", report.rows_out),
        ("Skipped (empty key)", report.skipped_rows),
        ("Rows with images", report.matched_rows),
        ("Image URLs", report.image_count),
    ):
        ws.cell(row=row, column=1, value=label).font = LABEL_FONT
        ws.cell(row=row, column=2, value=value).font = VALUE_FONT
        row += 1

    row += 1
    ws.cell(row=row, column=1, value="Notes").font = LABEL_FONT
    for c in range(1, 4):
        ws.cell(row=row, column=c).fill = NOTE_FILL
    row += 1
    for warn in report.warnings or ["No warnings"]:
        cell = ws.cell(row=row, column=1, value=warn)
        cell.font = WARN_FONT if report.warnings else VALUE_FONT
        for c in range(1, 4):
            ws.cell(row=row, column=c).fill = NOTE_FILL
        row += 1

    ws.column_dimensions["A"].width = 24
    ws.column_dimensions["B"].width = 14
    ws.column_dimensions["C"].width = 14


# ── Public API ───────────────────────────────────────────────────


def write_output_workbook(
    out_dir: Path,
    table: Table,
    report: MergeReport | None = None,
    *,
    filename: str = OUTPUT_FILENAME,
) -> Path:
    """Write *table* to ``out_dir/filename`` and return the path.

    The table goes on a single ``Produtos_Processados`` sheet.  When *report*
    is given a ``Resumo`` sheet with the run counts and warnings follows it.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / filename

    wb = Workbook()
    ws = wb.active
    if ws is None:
        ws = wb.create_sheet()
    ws.title = OUTPUT_SHEET
    _table_to_sheet(ws, table)

    if report is not None:
        _write_summary(wb, report)

    tmp_path = out_dir / f"{out_path.stem}.tmp{out_path.suffix}"
    wb.save(tmp_path)
    tmp_path.replace(out_path)
    return out_path
