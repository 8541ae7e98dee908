"""Data models shared by the loader, the merge engine and the emitters."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from numbers import Integral
from typing import Any

import pandas as pd

from catalog_merge import IMAGE_FIELD
from catalog_merge.errors import MappingError


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _to_string_list(values: Sequence[Any] | None, field_name: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings")
    normalized: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} items must be strings")
        normalized.append(item)
    return normalized


def to_cell(value: Any) -> str:
    """Normalize a raw spreadsheet value to the string form the engine reads."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ── Table ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Table:
    """Header row plus ordered data rows, all cells held as strings.

    Data rows may be shorter than the header; missing trailing cells read as
    ``""``.  Columns are addressed by header name via :meth:`column_index`.
    """

    header: tuple[str, ...] = ()
    rows: tuple[tuple[str, ...], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "header", tuple(to_cell(v) for v in self.header))
        object.__setattr__(
            self, "rows", tuple(tuple(to_cell(v) for v in row) for row in self.rows)
        )

    @classmethod
    def from_rows(cls, rows: Iterable[Sequence[Any]]) -> Table:
        """Build a Table whose first row is the header."""
        materialized = [list(row) for row in rows]
        if not materialized:
            return cls()
        return cls(header=tuple(materialized[0]), rows=tuple(tuple(r) for r in materialized[1:]))

    def column_index(self, name: str) -> int | None:
        """Return the first header position exactly equal to *name*, else ``None``."""
        for idx, header_cell in enumerate(self.header):
            if header_cell == name:
                return idx
        return None

    @staticmethod
    def cell(row: Sequence[str], index: int | None) -> str:
        if index is None or index >= len(row):
            return ""
        return row[index]

    @property
    def columns(self) -> list[str]:
        """Header names with empty cells removed."""
        return [name for name in self.header if name != ""]

    @property
    def shape(self) -> tuple[int, int]:
        """``(rows including header, columns)`` for sheet previews."""
        if not self.header and not self.rows:
            return (0, 0)
        return (len(self.rows) + 1, len(self.header))

    def to_rows(self) -> list[list[str]]:
        return [list(self.header), *[list(row) for row in self.rows]]


# ── Mapping configuration ────────────────────────────────────────


class SheetRole(str, Enum):
    product = "product"
    image = "image"


@dataclass(frozen=True)
class LinkingKey:
    """Columns whose trimmed values associate product rows with image rows."""

    product_column: str
    image_column: str


@dataclass(frozen=True)
class FieldSource:
    sheet: SheetRole
    column: str

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "sheet", SheetRole(self.sheet))
        except ValueError as exc:
            raise MappingError(
                f"Unknown sheet {self.sheet!r} (expected 'product' or 'image')"
            ) from exc
        if not isinstance(self.column, str) or not self.column:
            raise MappingError("Field source column must be a non-empty string")

    @classmethod
    def parse(cls, raw: str) -> FieldSource:
        """Parse ``sheet:Column`` (e.g. ``product:Nome``)."""
        if ":" not in raw:
            raise MappingError(f"Invalid field source: {raw!r}  (expected sheet:column)")
        sheet, column = raw.split(":", 1)
        return cls(sheet.strip().lower(), column.strip())  # type: ignore[arg-type]

    def __str__(self) -> str:
        return f"{self.sheet.value}:{self.column}"


class FieldMapping(Mapping[str, FieldSource]):
    """Ordered ``output field -> FieldSource`` mapping.

    The reserved :data:`~catalog_merge.IMAGE_FIELD` entry only names the image
    sheet's URL column; every other entry is projected from the product row.
    """

    def __init__(self, entries: Mapping[str, Any] | Iterable[tuple[str, Any]] = ()) -> None:
        items = entries.items() if isinstance(entries, Mapping) else entries
        self._entries: dict[str, FieldSource] = {}
        for name, source in items:
            if not isinstance(name, str) or not name.strip():
                raise MappingError("Field names must be non-empty strings")
            self._entries[name] = _coerce_source(source)

    def __getitem__(self, name: str) -> FieldSource:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        inner = ", ".join(f"{name}={source}" for name, source in self._entries.items())
        return f"FieldMapping({inner})"

    @property
    def image_source(self) -> FieldSource | None:
        return self._entries.get(IMAGE_FIELD)

    def projected_fields(self) -> list[tuple[str, FieldSource]]:
        """Non-reserved entries in insertion order."""
        return [(name, src) for name, src in self._entries.items() if name != IMAGE_FIELD]

    def image_sheet_fields(self) -> list[str]:
        """Non-reserved fields sourced from the image sheet (projected as empty)."""
        return [name for name, src in self.projected_fields() if src.sheet is SheetRole.image]

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {
            name: {"sheet": src.sheet.value, "column": src.column}
            for name, src in self._entries.items()
        }


def _coerce_source(source: Any) -> FieldSource:
    if isinstance(source, FieldSource):
        return source
    if isinstance(source, str):
        return FieldSource.parse(source)
    if isinstance(source, Mapping):
        try:
            return FieldSource(source["sheet"], source["column"])
        except KeyError as exc:
            raise MappingError(f"Field source is missing {exc.args[0]!r}") from exc
    if isinstance(source, Sequence) and len(source) == 2:
        return FieldSource(source[0], source[1])
    raise MappingError(f"Unsupported field source: {source!r}")


# ── System fields ────────────────────────────────────────────────


@dataclass(frozen=True)
class SystemField:
    key: str
    label: str
    description: str
    required: bool = False


SYSTEM_FIELDS: tuple[SystemField, ...] = (
    SystemField("NOME", "Nome do Produto", "Nome/título do produto", required=True),
    SystemField("SKU", "SKU/Código", "Código único do produto", required=True),
    SystemField("PRECO_CUSTO", "Preço de Custo", "Valor de custo do produto"),
    SystemField("PRECO_VENDA", "Preço de Venda", "Valor de venda do produto"),
    SystemField("DESCRICAO_COMPLETA", "Descrição Completa", "Descrição detalhada do produto"),
    SystemField("CATEGORIA", "Categoria", "Categoria/grupo do produto"),
    SystemField("ESTOQUE", "Estoque", "Quantidade em estoque"),
    SystemField(IMAGE_FIELD, "URLs das Imagens", "Links das imagens do produto"),
)


def required_fields() -> list[str]:
    return [f.key for f in SYSTEM_FIELDS if f.required]


# ── Reports ──────────────────────────────────────────────────────


@dataclass
class MergeReport:
    """Summary of a merge run; row-level anomalies appear only as counts.

    Contract invariants: ``skipped_rows == rows_in - rows_out`` and
    ``matched_rows <= rows_out``.
    """

    rows_in: int = 0
    rows_out: int = 0
    skipped_rows: int = 0
    matched_rows: int = 0
    image_count: int = 0
    unresolved_fields: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.rows_in = _to_non_negative_int(self.rows_in, "rows_in")
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        self.skipped_rows = _to_non_negative_int(self.skipped_rows, "skipped_rows")
        self.matched_rows = _to_non_negative_int(self.matched_rows, "matched_rows")
        self.image_count = _to_non_negative_int(self.image_count, "image_count")
        self.unresolved_fields = _to_string_list(self.unresolved_fields, "unresolved_fields")
        self.warnings = _to_string_list(self.warnings, "warnings")
        if self.rows_out > self.rows_in:
            raise ValueError("rows_out must be <= rows_in")
        if self.skipped_rows != self.rows_in - self.rows_out:
            raise ValueError("skipped_rows must equal rows_in - rows_out")
        if self.matched_rows > self.rows_out:
            raise ValueError("matched_rows must be <= rows_out")

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_in": self.rows_in,
            "rows_out": self.rows_out,
            "skipped_rows": self.skipped_rows,
            "matched_rows": self.matched_rows,
            "image_count": self.image_count,
            "unresolved_fields": list(self.unresolved_fields),
            "warnings": list(self.warnings),
        }


@dataclass
class RunManifest:
    """Audit-trail manifest for a single CLI run."""

    tool: str = "catalog-merge"
    version: str = ""
    run_id: str = ""
    input_path: str = ""
    output_dir: str = ""
    created_at_utc: str = ""
    product_sheet: str = ""
    image_sheet: str = ""
    rows_in: int = 0
    rows_out: int = 0
    sha256: str = ""
    status: str = "success"
    error_code: int | None = None
    error_message: str = ""

    def __post_init__(self) -> None:
        self.rows_in = _to_non_negative_int(self.rows_in, "rows_in")
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        if self.status not in {"success", "failed"}:
            raise ValueError("status must be 'success' or 'failed'")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "version": self.version,
            "run_id": self.run_id,
            "input_path": self.input_path,
            "output_dir": self.output_dir,
            "created_at_utc": self.created_at_utc,
            "product_sheet": self.product_sheet,
            "image_sheet": self.image_sheet,
            "rows_in": self.rows_in,
            "rows_out": self.rows_out,
            "sha256": self.sha256,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
