"""Join-and-project engine — pure functions over in-memory tables."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from catalog_merge import IMAGE_FIELD, IMAGE_SEPARATOR
from catalog_merge.errors import LinkingKeyNotFound, MappingError, MissingTable
from catalog_merge.models import FieldMapping, LinkingKey, MergeReport, SheetRole, Table

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]
"""``(stage, processed, total)`` — display only."""

STAGE_PREPARING = "preparing"
STAGE_INDEXING = "indexing"
STAGE_PROCESSING = "processing"
STAGE_COMPLETE = "complete"

DEFAULT_PROGRESS_EVERY = 100

ImageIndex = dict[str, list[str]]


@dataclass(frozen=True)
class MergeResult:
    table: Table
    report: MergeReport

    @property
    def rows_out(self) -> int:
        return len(self.table.rows)


def _noop(*_args: object) -> None:
    return None


# ── Table selection ──────────────────────────────────────────────


def select_tables(
    tables: Mapping[str, Table], product_sheet: str, image_sheet: str
) -> tuple[Table, Table]:
    """Return ``(product, image)`` from a loaded collection.

    Raises
    ------
    MissingTable
        If either sheet name is absent.
    """
    for name in (product_sheet, image_sheet):
        if name not in tables:
            raise MissingTable(name)
    return tables[product_sheet], tables[image_sheet]


def resolve_key_columns(product: Table, image: Table, key: LinkingKey) -> tuple[int, int]:
    product_idx = product.column_index(key.product_column)
    if product_idx is None:
        raise LinkingKeyNotFound("product", key.product_column)
    image_idx = image.column_index(key.image_column)
    if image_idx is None:
        raise LinkingKeyNotFound("image", key.image_column)
    return product_idx, image_idx


# ── Phase 1: image index ─────────────────────────────────────────


def build_image_index(image: Table, key_index: int, url_index: int | None) -> ImageIndex:
    """Map each trimmed key to its image URLs in image-row order.

    Rows with an empty key or an empty URL contribute nothing.  Duplicate
    URLs are kept.
    """
    index: ImageIndex = {}
    if url_index is None:
        return index
    for row in image.rows:
        key = Table.cell(row, key_index).strip()
        if not key:
            continue
        url = Table.cell(row, url_index).strip()
        if not url:
            continue
        index.setdefault(key, []).append(url)
    return index


# ── Phase 2: header ──────────────────────────────────────────────


def build_output_header(mapping: FieldMapping) -> tuple[str, ...]:
    """Non-reserved fields in mapping order, then ``IMAGENS`` last."""
    return (*(name for name, _src in mapping.projected_fields()), IMAGE_FIELD)


# ── Phase 3: projection ──────────────────────────────────────────


def resolve_field_indices(product: Table, mapping: FieldMapping) -> list[int | None]:
    """Product-header position per projected field; ``None`` projects as ``""``."""
    indices: list[int | None] = []
    for _name, src in mapping.projected_fields():
        if src.sheet is SheetRole.product:
            indices.append(product.column_index(src.column))
        else:
            indices.append(None)
    return indices


def project_row(
    row: Sequence[str],
    key_index: int,
    field_indices: Sequence[int | None],
    images: ImageIndex,
) -> tuple[str, ...] | None:
    """Return the output row for *row*, or ``None`` if its key is empty."""
    key = Table.cell(row, key_index).strip()
    if not key:
        return None
    values = [Table.cell(row, idx) for idx in field_indices]
    values.append(IMAGE_SEPARATOR.join(images.get(key, ())))
    return tuple(values)


# ── Entry points ─────────────────────────────────────────────────


def merge_tables(
    product: Table,
    image: Table,
    key: LinkingKey,
    mapping: FieldMapping,
    on_progress: ProgressCallback | None = None,
    *,
    progress_every: int = DEFAULT_PROGRESS_EVERY,
    strict_sources: bool = False,
) -> MergeResult:
    """Join *image* URLs onto *product* rows and project them through *mapping*.

    Returns a :class:`MergeResult` with the output table and a merge report.
    Inputs are never mutated, so a failed or repeated call is safe to retry.

    Raises
    ------
    LinkingKeyNotFound
        If either key column is missing, before any row is read.
    MappingError
        If *strict_sources* is set and a non-reserved field reads the image sheet.
    """
    if progress_every < 1:
        raise ValueError("progress_every must be >= 1")
    notify = on_progress or _noop
    total = len(product.rows)
    warnings: list[str] = []

    notify(STAGE_PREPARING, 0, total)
    product_key_idx, image_key_idx = resolve_key_columns(product, image, key)

    image_fields = mapping.image_sheet_fields()
    if image_fields and strict_sources:
        raise MappingError(
            "Only IMAGENS may read from the image sheet; "
            f"remap: {', '.join(image_fields)}"
        )

    # 1. Index image rows
    notify(STAGE_INDEXING, 0, total)
    image_src = mapping.image_source
    url_idx: int | None = None
    if image_src is None:
        warnings.append(f"{IMAGE_FIELD} is not mapped; image column left empty")
    else:
        url_idx = image.column_index(image_src.column)
        if url_idx is None:
            warnings.append(
                f"Image URL column {image_src.column!r} not found in image sheet; "
                f"{IMAGE_FIELD} left empty"
            )
    images = build_image_index(image, image_key_idx, url_idx)
    logger.debug("Indexed %d image keys from %d rows", len(images), len(image.rows))

    # 2. Header
    header = build_output_header(mapping)

    # 3. Project product rows
    field_indices = resolve_field_indices(product, mapping)
    unresolved: list[str] = []
    for (name, src), idx in zip(mapping.projected_fields(), field_indices):
        if idx is not None:
            continue
        unresolved.append(name)
        if src.sheet is SheetRole.image:
            warnings.append(
                f"Field {name} maps to the image sheet; only {IMAGE_FIELD} reads it, left empty"
            )
        else:
            warnings.append(f"Column {src.column!r} for field {name} not found; left empty")

    out_rows: list[tuple[str, ...]] = []
    matched = 0
    image_count = 0
    for processed, row in enumerate(product.rows, start=1):
        projected = project_row(row, product_key_idx, field_indices, images)
        if projected is not None:
            out_rows.append(projected)
            found = len(images.get(Table.cell(row, product_key_idx).strip(), ()))
            if found:
                matched += 1
                image_count += found
        if processed % progress_every == 0 and processed < total:
            notify(STAGE_PROCESSING, processed, total)
    notify(STAGE_PROCESSING, total, total)

    skipped = total - len(out_rows)
    if skipped:
        warnings.append(f"Skipped {skipped} product rows with an empty linking key")
    if total and not out_rows:
        warnings.append("Merged dataset is empty; no product row has a linking key")

    report = MergeReport(
        rows_in=total,
        rows_out=len(out_rows),
        skipped_rows=skipped,
        matched_rows=matched,
        image_count=image_count,
        unresolved_fields=unresolved,
        warnings=warnings,
    )
    notify(STAGE_COMPLETE, total, total)
    return MergeResult(table=Table(header=header, rows=tuple(out_rows)), report=report)


def process(
    product: Table,
    image: Table,
    key: LinkingKey,
    mapping: FieldMapping,
    on_progress: ProgressCallback | None = None,
) -> Table:
    """Shorthand for :func:`merge_tables` returning only the output table."""
    return merge_tables(product, image, key, mapping, on_progress).table
