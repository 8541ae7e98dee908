"""I/O helpers — load workbooks into tables, write JSON artifacts."""

from __future__ import annotations

import csv
import hashlib
import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Literal, cast

import pandas as pd

from catalog_merge.models import Table

_EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")

# ── Loading ──────────────────────────────────────────────────────


def _frame_to_table(df: pd.DataFrame) -> Table:
    return Table.from_rows(df.itertuples(index=False, name=None))


def _read_excel_sheets(path: Path, engine: str) -> dict[str, pd.DataFrame]:
    read_excel = cast(Callable[..., dict[str, pd.DataFrame]], getattr(pd, "read_excel"))
    return read_excel(path, sheet_name=None, header=None, dtype="string", engine=engine)


def _read_csv(path: Path, delimiter: str | None) -> pd.DataFrame:
    last_exc: Exception | None = None
    sep = delimiter if delimiter else None
    engine: Literal["c", "python"] = "c" if delimiter else "python"
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            return pd.read_csv(
                path,
                header=None,
                dtype="string",
                sep=sep,
                engine=engine,
                encoding=encoding,
                encoding_errors="strict",
                keep_default_na=False,
            )
        except (UnicodeDecodeError, pd.errors.ParserError, csv.Error) as exc:
            last_exc = exc
    raise ValueError(f"Could not read CSV {path} (decode or parse failed)") from last_exc


def load_workbook_tables(path: Path, delimiter: str | None = None) -> dict[str, Table]:
    """Load every sheet of *path* as a :class:`Table`, keyed by sheet name.

    The first row of each sheet is the header.  A CSV file yields a single
    table named after the file stem.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValueError
        If *path* is a directory, the extension is not supported, or
        decoding/parsing fails.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if path.is_dir():
        raise ValueError(f"Input path is a directory, not a file: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        return {path.stem: _frame_to_table(_read_csv(path, delimiter))}

    if suffix in _EXCEL_SUFFIXES:
        frames = _read_excel_sheets(path, "openpyxl")
    elif suffix == ".xls":
        try:
            frames = _read_excel_sheets(path, "xlrd")
        except ImportError as exc:
            raise ValueError(
                "Unsupported .xls input unless 'xlrd' is installed. "
                "Either convert to .xlsx or add dependency: pip install xlrd"
            ) from exc
    else:
        raise ValueError(f"Unsupported file type: {suffix!r}. Use .xlsx, .xls, or .csv")

    if not frames:
        raise ValueError(f"Workbook has no sheets: {path}")
    return {str(name): _frame_to_table(df) for name, df in frames.items()}


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()
