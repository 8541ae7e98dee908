"""Step-by-step conversion flow as an immutable state machine.

``UPLOAD -> SELECT_SHEETS -> MAP_COLUMNS -> PROCESS``.  Every transition
returns a new :class:`WizardState`; ``back()`` returns to the previous step
and drops whatever that step had collected.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from enum import IntEnum
from types import MappingProxyType
from typing import Any

from catalog_merge.engine import (
    MergeResult,
    ProgressCallback,
    merge_tables,
    resolve_key_columns,
    select_tables,
)
from catalog_merge.errors import LinkingKeyNotFound, MappingError, MergeError, WizardStateError
from catalog_merge.models import FieldMapping, LinkingKey, Table, required_fields


class Step(IntEnum):
    UPLOAD = 1
    SELECT_SHEETS = 2
    MAP_COLUMNS = 3
    PROCESS = 4


@dataclass(frozen=True)
class SheetSelection:
    product_sheet: str
    image_sheet: str
    key: LinkingKey


@dataclass(frozen=True)
class WizardState:
    step: Step = Step.UPLOAD
    tables: Mapping[str, Table] | None = None
    selection: SheetSelection | None = None
    mapping: FieldMapping | None = None

    def _require(self, step: Step) -> None:
        if self.step is not step:
            raise WizardStateError(
                f"Cannot run {step.name.lower()} step while at {self.step.name.lower()}"
            )

    def _tables(self) -> Mapping[str, Table]:
        if self.tables is None:
            raise WizardStateError("No workbook uploaded")
        return self.tables

    def _selection(self) -> SheetSelection:
        if self.selection is None:
            raise WizardStateError("No sheets selected")
        return self.selection

    def _mapping(self) -> FieldMapping:
        if self.mapping is None:
            raise WizardStateError("No field mapping set")
        return self.mapping

    # ── Forward transitions ──────────────────────────────────────

    def upload(self, tables: Mapping[str, Table]) -> WizardState:
        self._require(Step.UPLOAD)
        if not tables:
            raise MergeError("Workbook contains no sheets")
        return replace(self, step=Step.SELECT_SHEETS, tables=MappingProxyType(dict(tables)))

    def select_sheets(
        self,
        product_sheet: str,
        image_sheet: str,
        product_column: str,
        image_column: str,
    ) -> WizardState:
        """Pick the two sheets and the linking key between them."""
        self._require(Step.SELECT_SHEETS)
        product, image = select_tables(self._tables(), product_sheet, image_sheet)
        # an unchosen key is never matched against a blank header cell
        if not product_column:
            raise LinkingKeyNotFound("product", product_column)
        if not image_column:
            raise LinkingKeyNotFound("image", image_column)
        key = LinkingKey(product_column=product_column, image_column=image_column)
        resolve_key_columns(product, image, key)
        selection = SheetSelection(
            product_sheet=product_sheet,
            image_sheet=image_sheet,
            key=key,
        )
        return replace(self, step=Step.MAP_COLUMNS, selection=selection)

    def map_columns(
        self,
        mapping: FieldMapping | Mapping[str, Any],
        *,
        required: Iterable[str] | None = None,
    ) -> WizardState:
        """Accept the field mapping once every required field is mapped."""
        self._require(Step.MAP_COLUMNS)
        if not isinstance(mapping, FieldMapping):
            mapping = FieldMapping(mapping)
        needed = required_fields() if required is None else list(required)
        missing = [name for name in needed if name not in mapping]
        if missing:
            raise MappingError(f"Required fields not mapped: {', '.join(missing)}")
        return replace(self, step=Step.PROCESS, mapping=mapping)

    # ── Back transition ──────────────────────────────────────────

    def back(self) -> WizardState:
        if self.step is Step.PROCESS:
            return replace(self, step=Step.MAP_COLUMNS, mapping=None)
        if self.step is Step.MAP_COLUMNS:
            return replace(self, step=Step.SELECT_SHEETS, selection=None)
        if self.step is Step.SELECT_SHEETS:
            return replace(self, step=Step.UPLOAD, tables=None)
        return self

    # ── Processing ───────────────────────────────────────────────

    @property
    def product_table(self) -> Table:
        return self._tables()[self._selection().product_sheet]

    @property
    def image_table(self) -> Table:
        return self._tables()[self._selection().image_sheet]

    def process(
        self,
        on_progress: ProgressCallback | None = None,
        **options: Any,
    ) -> MergeResult:
        """Run the merge; safe to call again after a failure."""
        self._require(Step.PROCESS)
        return merge_tables(
            self.product_table,
            self.image_table,
            self._selection().key,
            self._mapping(),
            on_progress,
            **options,
        )
