"""Wizard state machine transitions."""

from __future__ import annotations

import pytest

from catalog_merge.errors import (
    LinkingKeyNotFound,
    MappingError,
    MergeError,
    MissingTable,
    WizardStateError,
)
from catalog_merge.models import FieldMapping, Table
from catalog_merge.wizard import Step, WizardState

MAPPING = {
    "NOME": "product:Nome",
    "SKU": "product:SKU",
    "IMAGENS": "image:URL",
}


@pytest.fixture
def tables() -> dict[str, Table]:
    return {
        "Produtos": Table.from_rows([["SKU", "Nome"], ["A1", "Shoe"], ["A2", "Hat"]]),
        "Imagens": Table.from_rows([["SKU", "URL", ""], ["A1", "u1"], ["A2", "u2"]]),
    }


@pytest.fixture
def ready(tables: dict[str, Table]) -> WizardState:
    return (
        WizardState()
        .upload(tables)
        .select_sheets("Produtos", "Imagens", "SKU", "SKU")
        .map_columns(MAPPING)
    )


def test_forward_flow_reaches_process_and_merges(ready: WizardState) -> None:
    assert ready.step is Step.PROCESS
    assert isinstance(ready.mapping, FieldMapping)

    result = ready.process()

    assert result.table.to_rows() == [
        ["NOME", "SKU", "IMAGENS"],
        ["Shoe", "A1", "u1"],
        ["Hat", "A2", "u2"],
    ]


def test_transitions_do_not_mutate_previous_state(tables: dict[str, Table]) -> None:
    start = WizardState()

    uploaded = start.upload(tables)

    assert start.step is Step.UPLOAD
    assert start.tables is None
    assert uploaded.step is Step.SELECT_SHEETS
    assert list(uploaded.tables or {}) == ["Produtos", "Imagens"]


def test_transition_from_wrong_step_raises() -> None:
    with pytest.raises(WizardStateError, match="select_sheets"):
        WizardState().select_sheets("a", "b", "c", "d")
    with pytest.raises(WizardStateError, match="process"):
        WizardState().process()


def test_upload_rejects_empty_workbook() -> None:
    with pytest.raises(MergeError, match="no sheets"):
        WizardState().upload({})


def test_select_sheets_validates_names_and_key_columns(tables: dict[str, Table]) -> None:
    uploaded = WizardState().upload(tables)

    with pytest.raises(MissingTable):
        uploaded.select_sheets("Produtos", "Fotos", "SKU", "SKU")
    with pytest.raises(LinkingKeyNotFound, match="Codigo"):
        uploaded.select_sheets("Produtos", "Imagens", "Codigo", "SKU")
    with pytest.raises(LinkingKeyNotFound):
        uploaded.select_sheets("Produtos", "Imagens", "SKU", "")


def test_map_columns_requires_system_fields(tables: dict[str, Table]) -> None:
    selected = (
        WizardState().upload(tables).select_sheets("Produtos", "Imagens", "SKU", "SKU")
    )

    with pytest.raises(MappingError, match="SKU"):
        selected.map_columns({"NOME": "product:Nome"})

    partial = selected.map_columns({"NOME": "product:Nome"}, required=[])
    assert partial.step is Step.PROCESS


def test_back_drops_what_the_left_step_collected(ready: WizardState) -> None:
    mapping_step = ready.back()
    assert mapping_step.step is Step.MAP_COLUMNS
    assert mapping_step.mapping is None
    assert mapping_step.selection is not None

    select_step = mapping_step.back()
    assert select_step.step is Step.SELECT_SHEETS
    assert select_step.selection is None

    upload_step = select_step.back()
    assert upload_step.step is Step.UPLOAD
    assert upload_step.tables is None
    assert upload_step.back() == upload_step


def test_back_then_forward_again_uses_new_configuration(ready: WizardState) -> None:
    remapped = ready.back().map_columns(
        {"SKU": "product:SKU", "NOME": "product:Nome"}
    )

    result = remapped.process()

    assert result.table.header == ("SKU", "NOME", "IMAGENS")
    assert result.table.rows[0] == ("A1", "Shoe", "")


def test_process_is_repeatable(ready: WizardState) -> None:
    events: list[tuple[str, int, int]] = []

    first = ready.process(lambda *e: events.append(e))
    second = ready.process(progress_every=1)

    assert first.table == second.table
    assert events[-1] == ("complete", 2, 2)


def test_table_access_before_selection_raises_state_error(tables: dict[str, Table]) -> None:
    with pytest.raises(WizardStateError, match="No workbook uploaded"):
        WizardState().product_table
    with pytest.raises(WizardStateError, match="No sheets selected"):
        WizardState().upload(tables).image_table


def test_select_sheets_uses_exact_header_lookup(tables: dict[str, Table]) -> None:
    uploaded = WizardState().upload(tables)

    with pytest.raises(LinkingKeyNotFound, match="' SKU'"):
        uploaded.select_sheets("Produtos", "Imagens", " SKU", "SKU")

    selected = uploaded.select_sheets("Produtos", "Imagens", "SKU", "SKU")
    assert selected.product_table is tables["Produtos"]
    assert selected.selection is not None
    assert selected.selection.key.image_column == "SKU"
