"""CLI entry point for catalog-merge."""

from __future__ import annotations

import shlex
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table as RichTable

from catalog_merge import IMAGE_FIELD, OUTPUT_FILENAME, __version__
from catalog_merge.engine import (
    STAGE_INDEXING,
    STAGE_PREPARING,
    STAGE_PROCESSING,
    MergeResult,
    ProgressCallback,
)
from catalog_merge.errors import MappingError, MergeError, WizardStateError
from catalog_merge.io import load_workbook_tables, sha256_file, write_json
from catalog_merge.models import FieldMapping, FieldSource, MergeReport, RunManifest, Table
from catalog_merge.qc import write_merge_report
from catalog_merge.report import write_output_workbook
from catalog_merge.wizard import WizardState

app = typer.Typer(
    name="cmerge",
    help="catalog-merge — Join product and image sheets into one ERP-ready table.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"catalog-merge v{__version__}")
        raise typer.Exit()


def _parse_field_map(raw: list[str] | None, *, quiet: bool = False) -> FieldMapping:
    """Parse ``FIELD=sheet:Column`` pairs into an ordered :class:`FieldMapping`."""
    entries: dict[str, FieldSource] = {}
    for item in raw or []:
        if "=" not in item:
            raise MappingError(f"Invalid --map value: {item!r}  (expected FIELD=sheet:column)")
        name, source = item.split("=", 1)
        name = name.strip()
        if not name or not source.strip():
            raise MappingError(
                "--map entries must have non-empty field and source (FIELD=sheet:column)"
            )
        if name in entries and not quiet:
            console.print(f"[yellow]![/yellow] Overriding mapping for field {name!r}")
        entries[name] = FieldSource.parse(source)
    return FieldMapping(entries)


def _load_profile_map(profile: Path | None) -> list[str]:
    """Return list of ``FIELD=sheet:column`` strings from a profile file."""
    if not profile:
        return []
    if not profile.exists():
        raise ValueError(f"Profile not found: {profile} (expected lines like NOME=product:Nome)")
    if profile.is_dir():
        raise ValueError(f"Profile is a directory, not a file: {profile}")
    try:
        text = profile.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read profile {profile}: {exc}") from exc

    lines: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        lines.append(stripped)
    return lines


def _progress_reporter(echo: Callable[..., None]) -> ProgressCallback:
    def _report(stage: str, processed: int, total: int) -> None:
        if stage == STAGE_PREPARING:
            echo(f"[blue]>[/blue] Preparing merge of {total} product rows …")
        elif stage == STAGE_INDEXING:
            echo("[blue]>[/blue] Indexing image rows …")
        elif stage == STAGE_PROCESSING:
            echo(f"  Processed {processed} of {total} product rows")

    return _report


def _write_manifest(
    out_dir: Path,
    input_file: Path,
    run_id: str,
    created_at: str,
    report: MergeReport,
    *,
    product_sheet: str,
    image_sheet: str,
    status: str = "success",
    error_code: int | None = None,
    error_message: str = "",
) -> Path:
    sha256 = ""
    try:
        sha256 = sha256_file(input_file)
    except OSError:
        pass

    manifest = RunManifest(
        version=__version__,
        run_id=run_id,
        input_path=str(input_file.resolve()),
        output_dir=str(out_dir.resolve()),
        created_at_utc=created_at,
        product_sheet=product_sheet,
        image_sheet=image_sheet,
        rows_in=report.rows_in,
        rows_out=report.rows_out,
        sha256=sha256,
        status=status,
        error_code=error_code,
        error_message=error_message,
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _fail(
    out_dir: Path,
    input_file: Path,
    run_id: str,
    created_at: str,
    *,
    message: str,
    product_sheet: str,
    image_sheet: str,
    rows_in: int = 0,
    error_code: int = 2,
) -> NoReturn:
    """Write failure artifacts, report *message* and exit with *error_code*."""
    report = MergeReport(rows_in=rows_in, rows_out=0, skipped_rows=rows_in, warnings=[message])
    report_path = write_merge_report(out_dir, report)
    manifest_path = _write_manifest(
        out_dir,
        input_file,
        run_id,
        created_at,
        report,
        product_sheet=product_sheet,
        image_sheet=image_sheet,
        status="failed",
        error_code=error_code,
        error_message=message,
    )
    _err(message)
    console.print(f"  Merge report -> {report_path}")
    console.print(f"  Manifest     -> {manifest_path}")
    raise typer.Exit(code=error_code)


def _product_rows(tables: Mapping[str, Table], product_sheet: str) -> int:
    table = tables.get(product_sheet)
    return len(table.rows) if table is not None else 0


def _write_text_artifact(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)
    return path


def _summary_command(
    *,
    input_file: Path,
    out_dir: Path,
    state: WizardState,
    profile: Path | None,
) -> str:
    selection, mapping = state.selection, state.mapping
    if selection is None or mapping is None:
        raise WizardStateError("Cannot summarize a run before columns are mapped")
    parts: list[str] = [
        "cmerge run",
        f"--input {shlex.quote(input_file.name)}",
        f"--out-dir {shlex.quote(out_dir.name or str(out_dir))}",
        f"--product-sheet {shlex.quote(selection.product_sheet)}",
        f"--image-sheet {shlex.quote(selection.image_sheet)}",
        f"--product-key {shlex.quote(selection.key.product_column)}",
        f"--image-key {shlex.quote(selection.key.image_column)}",
    ]
    if profile:
        parts.append(f"--profile {shlex.quote(profile.name)}")
    for name, source in mapping.items():
        parts.append(f"--map {shlex.quote(f'{name}={source}')}")
    return " ".join(parts)


def _write_summary_artifact(
    *,
    out_dir: Path,
    input_file: Path,
    output_path: Path,
    result: MergeResult,
    state: WizardState,
    profile: Path | None,
    max_warnings: int = 5,
) -> Path:
    report = result.report
    warning_lines = report.warnings[:max_warnings]
    lines: list[str] = [
        "catalog-merge summary",
        f"tool_version: catalog-merge v{__version__}",
        f"input_file: {input_file.name}",
        f"output_file: {output_path.name}",
        f"rows_in: {report.rows_in}",
        f"rows_out: {report.rows_out}",
        f"rows_skipped: {report.skipped_rows}",
        f"rows_with_images: {report.matched_rows}",
        f"image_urls: {report.image_count}",
        f"columns: {', '.join(result.table.header)}",
        f"warning_count: {len(report.warnings)}",
    ]
    for idx, warning in enumerate(warning_lines, start=1):
        lines.append(f"warning_{idx}: {warning}")
    if len(report.warnings) > max_warnings:
        lines.append(f"warning_more: {len(report.warnings) - max_warnings}")
    lines.append(
        "command: "
        + _summary_command(input_file=input_file, out_dir=out_dir, state=state, profile=profile)
    )
    payload = "\n".join(lines) + "\n"
    return _write_text_artifact(out_dir / "summary.txt", payload)


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """catalog-merge CLI."""


# ── sheets command ───────────────────────────────────────────────


@app.command()
def sheets(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to XLSX, XLS or CSV input file.",
        exists=True, readable=True,
    ),
) -> None:
    """List the sheets of a workbook with their size and header columns."""
    try:
        tables = load_workbook_tables(input_file)
    except (FileNotFoundError, ValueError, OSError) as exc:
        _err(str(exc))
        raise typer.Exit(code=2)

    tbl = RichTable(title=f"Sheets in {input_file.name}", show_lines=True)
    tbl.add_column("Sheet", style="bold")
    tbl.add_column("Size")
    tbl.add_column("Columns")
    for name, table in tables.items():
        nrows, ncols = table.shape
        tbl.add_row(name, f"{nrows}×{ncols}", ", ".join(table.columns) or "[dim]empty[/dim]")
    console.print(tbl)


# ── Shared option declarations ───────────────────────────────────

_INPUT_OPT = typer.Option(
    ..., "--input", "-i",
    help="Path to XLSX, XLS or CSV input file.",
    exists=True, readable=True,
)
_PRODUCT_SHEET_OPT = typer.Option(..., "--product-sheet", help="Sheet holding one row per product.")
_IMAGE_SHEET_OPT = typer.Option(..., "--image-sheet", help="Sheet holding one row per image.")
_PRODUCT_KEY_OPT = typer.Option(..., "--product-key", help="Linking key column in the product sheet.")
_IMAGE_KEY_OPT = typer.Option(..., "--image-key", help="Linking key column in the image sheet.")
_MAP_OPT = typer.Option(
    None, "--map", "-m",
    help=(
        "Field mapping: FIELD=sheet:Column (sheet is 'product' or 'image'). "
        f"E.g. --map NOME=product:Nome --map {IMAGE_FIELD}=image:URL"
    ),
)
_PROFILE_OPT = typer.Option(
    None, "--profile",
    help="Profile file containing field mappings (FIELD=sheet:Column lines).",
)
_ALLOW_PARTIAL_OPT = typer.Option(
    False, "--allow-partial",
    help="Do not require the mandatory system fields (NOME, SKU) to be mapped.",
)
_STRICT_SOURCES_OPT = typer.Option(
    False, "--strict-sources",
    help=f"Reject fields other than {IMAGE_FIELD} that read from the image sheet.",
)


def _prepare(
    *,
    input_file: Path,
    out_dir: Path,
    run_id: str,
    created_at: str,
    product_sheet: str,
    image_sheet: str,
    product_key: str,
    image_key: str,
    col_map: list[str] | None,
    profile: Path | None,
    allow_partial: bool,
    quiet: bool,
) -> WizardState:
    """Load the workbook and walk the wizard up to the processing step."""
    try:
        mapping = _parse_field_map(_load_profile_map(profile) + (col_map or []), quiet=quiet)
    except ValueError as exc:
        _fail(out_dir, input_file, run_id, created_at, message=str(exc),
              product_sheet=product_sheet, image_sheet=image_sheet)

    try:
        tables = load_workbook_tables(input_file)
    except (FileNotFoundError, ValueError, OSError) as exc:
        _fail(out_dir, input_file, run_id, created_at, message=str(exc),
              product_sheet=product_sheet, image_sheet=image_sheet)

    try:
        return (
            WizardState()
            .upload(tables)
            .select_sheets(product_sheet, image_sheet, product_key, image_key)
            .map_columns(mapping, required=[] if allow_partial else None)
        )
    except MergeError as exc:
        _fail(out_dir, input_file, run_id, created_at, message=str(exc),
              product_sheet=product_sheet, image_sheet=image_sheet,
              rows_in=_product_rows(tables, product_sheet))


# ── run command ──────────────────────────────────────────────────


@app.command()
def run(
    input_file: Path = _INPUT_OPT,
    product_sheet: str = _PRODUCT_SHEET_OPT,
    image_sheet: str = _IMAGE_SHEET_OPT,
    product_key: str = _PRODUCT_KEY_OPT,
    image_key: str = _IMAGE_KEY_OPT,
    col_map: list[str] | None = _MAP_OPT,
    profile: Path | None = _PROFILE_OPT,
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for workbook + merge report + manifest.",
    ),
    output_name: str = typer.Option(
        OUTPUT_FILENAME, "--output-name",
        help="File name of the merged workbook.",
    ),
    summary_sheet: bool = typer.Option(
        False, "--summary-sheet",
        help="Append a 'Resumo' sheet with run counts and warnings.",
    ),
    allow_partial: bool = _ALLOW_PARTIAL_OPT,
    strict_sources: bool = _STRICT_SOURCES_OPT,
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
) -> None:
    """Merge the product and image sheets into one workbook."""
    echo = _printer(quiet)
    created_at = _utcnow_iso()
    run_id = created_at
    out_dir.mkdir(parents=True, exist_ok=True)

    if not quiet:
        console.print(Panel(
            f"[bold]catalog-merge[/bold] v{__version__}\n"
            f"Input:  {input_file}\nOutput: {out_dir}",
            title="Merge Start", border_style="blue",
        ))
        if profile:
            console.print(f"  Using profile: {profile}")

    echo("[blue]>[/blue] Loading workbook …")
    state = _prepare(
        input_file=input_file, out_dir=out_dir, run_id=run_id, created_at=created_at,
        product_sheet=product_sheet, image_sheet=image_sheet,
        product_key=product_key, image_key=image_key,
        col_map=col_map, profile=profile, allow_partial=allow_partial, quiet=quiet,
    )
    echo(f"  Key: {product_sheet}.{product_key} <-> {image_sheet}.{image_key}")

    try:
        try:
            result = state.process(_progress_reporter(echo), strict_sources=strict_sources)
        except MergeError as exc:
            _fail(out_dir, input_file, run_id, created_at, message=str(exc),
                  product_sheet=product_sheet, image_sheet=image_sheet,
                  rows_in=len(state.product_table.rows))

        report_path = write_merge_report(out_dir, result.report)
        echo(f"  Merge report -> {report_path}")
        if not quiet:
            for w in result.report.warnings:
                console.print(f"  [yellow]![/yellow] {w}")

        echo(f"[blue]>[/blue] Writing {output_name} …")
        output_path = write_output_workbook(
            out_dir,
            result.table,
            result.report if summary_sheet else None,
            filename=output_name,
        )
        echo(f"  Workbook -> {output_path}")

        manifest_path = _write_manifest(
            out_dir, input_file, run_id, created_at, result.report,
            product_sheet=product_sheet, image_sheet=image_sheet,
        )
        echo(f"  Manifest -> {manifest_path}")

        summary_path = _write_summary_artifact(
            out_dir=out_dir,
            input_file=input_file,
            output_path=output_path,
            result=result,
            state=state,
            profile=profile,
        )
        echo(f"  Summary  -> {summary_path}")

        if not quiet:
            console.print(Panel(
                f"[green]Done[/green] — {result.rows_out} products -> {output_path}",
                title="Merge Complete", border_style="green",
            ))
    except typer.Exit:
        raise
    except Exception as exc:
        # a failed run leaves no merged workbook behind
        (out_dir / output_name).unlink(missing_ok=True)
        _fail(out_dir, input_file, run_id, created_at,
              message=f"Unexpected internal error: {exc}",
              product_sheet=product_sheet, image_sheet=image_sheet,
              rows_in=len(state.product_table.rows), error_code=1)


# ── validate command ─────────────────────────────────────────────


@app.command()
def validate(
    input_file: Path = _INPUT_OPT,
    product_sheet: str = _PRODUCT_SHEET_OPT,
    image_sheet: str = _IMAGE_SHEET_OPT,
    product_key: str = _PRODUCT_KEY_OPT,
    image_key: str = _IMAGE_KEY_OPT,
    col_map: list[str] | None = _MAP_OPT,
    profile: Path | None = _PROFILE_OPT,
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for merge report + manifest.",
    ),
    allow_partial: bool = _ALLOW_PARTIAL_OPT,
    strict_sources: bool = _STRICT_SOURCES_OPT,
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes merge report + manifest.",
    ),
) -> None:
    """Check a configuration without writing the merged workbook.

    Writes merge_report.json + run_manifest.json only.
    Exit 0 = OK, exit 2 = configuration failure.
    """
    created_at = _utcnow_iso()
    run_id = created_at
    out_dir.mkdir(parents=True, exist_ok=True)

    if not quiet:
        console.print(Panel(
            f"[bold]catalog-merge[/bold] v{__version__}  [dim]validate mode[/dim]\n"
            f"Input: {input_file}",
            title="Validate", border_style="cyan",
        ))

    state = _prepare(
        input_file=input_file, out_dir=out_dir, run_id=run_id, created_at=created_at,
        product_sheet=product_sheet, image_sheet=image_sheet,
        product_key=product_key, image_key=image_key,
        col_map=col_map, profile=profile, allow_partial=allow_partial, quiet=quiet,
    )

    try:
        try:
            result = state.process(strict_sources=strict_sources)
        except MergeError as exc:
            _fail(out_dir, input_file, run_id, created_at, message=str(exc),
                  product_sheet=product_sheet, image_sheet=image_sheet,
                  rows_in=len(state.product_table.rows))

        report = result.report
        report_path = write_merge_report(out_dir, report)
        manifest_path = _write_manifest(
            out_dir, input_file, run_id, created_at, report,
            product_sheet=product_sheet, image_sheet=image_sheet,
        )

        if not quiet:
            tbl = RichTable(title="Validation Summary", show_lines=True)
            tbl.add_column("Check", style="bold")
            tbl.add_column("Result")

            tbl.add_row("Product rows", str(report.rows_in))
            tbl.add_row("Rows out", str(report.rows_out))
            tbl.add_row("Skipped", str(report.skipped_rows))
            tbl.add_row("Rows with images", str(report.matched_rows))
            tbl.add_row("Columns", ", ".join(result.table.header))
            if report.unresolved_fields:
                tbl.add_row("Empty fields", ", ".join(report.unresolved_fields))
            for w in report.warnings:
                tbl.add_row("Warning", f"[yellow]{w}[/yellow]")
            tbl.add_row("Status", "[green]PASS[/green]")
            console.print(tbl)
        console.print(f"  Merge report -> {report_path}")
        console.print(f"  Manifest     -> {manifest_path}")
    except typer.Exit:
        raise
    except Exception as exc:
        _fail(out_dir, input_file, run_id, created_at,
              message=f"Unexpected internal error: {exc}",
              product_sheet=product_sheet, image_sheet=image_sheet,
              rows_in=len(state.product_table.rows), error_code=1)
