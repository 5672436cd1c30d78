"""Tests for turning agent replies into edit operations."""

from __future__ import annotations

import json

import pytest

from sheetops.agent.parser import (
    build_context_message,
    extract_json_block,
    parse_agent_response,
    parse_connection_confirmation,
)
from sheetops.contracts.operations import CellUpdate, RowDelete, Sort
from sheetops.contracts.state import SheetState


def _reply(payload: object, prose: str = "Sure, here you go.") -> str:
    return f"{prose}\n```json\n{json.dumps(payload)}\n```\n"


def _parse(text: str, state: SheetState):
    return parse_agent_response(text, state.columns, state.rows)


def test_cell_update_maps_letter_to_column(sample_state: SheetState):
    text = _reply({"operations": [{"type": "cell_update", "row": 1, "column": "B", "value": "42"}]})
    ops = _parse(text, sample_state)
    assert len(ops) == 1
    op = ops[0]
    assert isinstance(op, CellUpdate)
    assert op.row_id == "r1"
    assert op.column_id == "email"
    assert op.new_value == "42"
    assert op.author == "agent"


def test_cell_update_out_of_range_letter(sample_state: SheetState):
    text = _reply({"operations": [{"type": "cell_update", "row": 2, "column": "Z", "value": 7}]})
    (op,) = _parse(text, sample_state)
    assert op.column_id == "col_25"
    assert op.new_value == "7"


def test_cell_update_with_bad_coordinates_is_dropped(sample_state: SheetState):
    text = _reply({"operations": [
        {"type": "cell_update", "row": "first", "column": "B", "value": "x"},
        {"type": "cell_update", "row": 1, "column": "9", "value": "x"},
    ]})
    assert _parse(text, sample_state) == []


def test_huge_row_number_is_dropped(sample_state: SheetState):
    text = (
        '```json\n{"operations": [{"type": "row_delete", "row": 1e400},'
        ' {"type": "row_delete", "row": 2}]}\n```\ndelete row 1'
    )
    ops = _parse(text, sample_state)
    assert [(type(op), op.row_id) for op in ops] == [(RowDelete, "r2")]


def test_row_insert_targets_one_new_row(sample_state: SheetState):
    text = _reply({"operations": [{"type": "row_insert", "values": ["Dan", "dan@example.com", None]}]})
    ops = _parse(text, sample_state)
    assert [op.column_id for op in ops] == ["name", "email", "amount"]
    assert len({op.row_id for op in ops}) == 1
    assert ops[0].row_id.startswith("r-new-")
    assert [op.new_value for op in ops] == ["Dan", "dan@example.com", ""]


def test_row_delete(sample_state: SheetState):
    text = _reply({"operations": [{"type": "row_delete", "row": 2}]})
    (op,) = _parse(text, sample_state)
    assert isinstance(op, RowDelete)
    assert op.row_id == "r2"


def test_sort_without_data_is_structural(sample_state: SheetState):
    text = _reply({"operations": [{"type": "sort", "column": "C", "direction": "desc"}]})
    (op,) = _parse(text, sample_state)
    assert isinstance(op, Sort)
    assert op.column_id == "amount"
    assert op.direction == "desc"


def test_sort_defaults(sample_state: SheetState):
    text = _reply({"operations": [{"type": "sort", "direction": "sideways"}]})
    (op,) = _parse(text, sample_state)
    assert op.column_id == "name"
    assert op.direction == "asc"


def test_sort_with_data_rewrites_grid(sample_state: SheetState):
    sorted_data = [["Cara Diaz", "cara@example.com", "2300"], ["Alice Smith", "alice@example.com"]]
    text = _reply({"operations": [{"type": "sort", "column": "C", "sorted_data": sorted_data}]})
    ops = _parse(text, sample_state)
    assert all(isinstance(op, CellUpdate) for op in ops)
    assert len(ops) == 6
    assert [(op.row_id, op.column_id, op.new_value) for op in ops[:3]] == [
        ("r1", "name", "Cara Diaz"),
        ("r1", "email", "cara@example.com"),
        ("r1", "amount", "2300"),
    ]
    assert ops[-1].row_id == "r2"
    assert ops[-1].new_value == ""


def test_unknown_operation_types_are_dropped(sample_state: SheetState):
    text = _reply({"operations": [
        {"type": "merge_cells", "range": "A1:B2"},
        {"type": "row_delete", "row": 1},
    ]})
    ops = _parse(text, sample_state)
    assert [type(op) for op in ops] == [RowDelete]


def test_operation_ids_are_unique(sample_state: SheetState):
    text = _reply({"operations": [
        {"type": "cell_update", "row": 1, "column": "A", "value": "a"},
        {"type": "cell_update", "row": 2, "column": "A", "value": "b"},
        {"type": "row_insert", "values": ["x", "y"]},
        {"type": "row_delete", "row": 3},
    ]})
    ops = _parse(text, sample_state)
    assert len({op.id for op in ops}) == len(ops) == 5


def test_legacy_array_passes_ids_through(sample_state: SheetState):
    text = _reply([
        {"type": "cell_update", "rowId": "r2", "columnId": "email", "newValue": "b@c.de", "oldValue": None},
        {"rowId": "r3", "columnId": "amount", "newValue": 10},
        {"type": "column_add", "columnId": "notes", "columnLabel": "Notes"},
    ])
    ops = _parse(text, sample_state)
    assert ops[0].row_id == "r2" and ops[0].new_value == "b@c.de"
    assert isinstance(ops[1], CellUpdate) and ops[1].new_value == "10"
    assert ops[2].type == "column_add" and ops[2].column_label == "Notes"
    assert all(op.author == "agent" for op in ops)


def test_legacy_invalid_entries_are_dropped(sample_state: SheetState):
    text = _reply([
        {"type": "explode"},
        {"type": "cell_update", "columnId": "email"},
        {"type": "row_insert"},
        {"type": "row_insert", "values": ["Eve"]},
    ])
    ops = _parse(text, sample_state)
    assert len(ops) == 1
    assert ops[0].row_id.startswith("r-inserted-")
    assert ops[0].column_id == "name"


def test_bad_json_falls_back_to_text(sample_state: SheetState):
    text = "Okay.\n```json\n{not json\n```\nI will delete row 2 and Delete Row 9."
    ops = _parse(text, sample_state)
    assert [(type(op), op.row_id) for op in ops] == [(RowDelete, "r2")]


def test_fallback_uses_current_row_order(sample_state: SheetState):
    rows = list(reversed(sample_state.rows))
    ops = parse_agent_response("please delete row 1", sample_state.columns, rows)
    assert [op.row_id for op in ops] == ["r3"]


@pytest.mark.parametrize("text", ["", "Nothing to do here.", "```json\n{\"foo\": 1}\n```"])
def test_no_match_yields_nothing(sample_state: SheetState, text: str):
    assert _parse(text, sample_state) == []


def test_only_first_block_is_used(sample_state: SheetState):
    text = (
        _reply({"operations": [{"type": "row_delete", "row": 1}]})
        + _reply({"operations": [{"type": "row_delete", "row": 2}]})
    )
    assert [op.row_id for op in _parse(text, sample_state)] == ["r1"]


def test_extract_json_block():
    assert extract_json_block("a ```json\n[1]\n``` b").strip() == "[1]"
    assert extract_json_block("```\n[1]\n```") is None


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"status": "CONNECTED", "confirmed": True}, True),
        ({"status": "CONNECTED", "confirmed": "true"}, False),
        ({"status": "PENDING", "confirmed": True}, False),
        ([{"status": "CONNECTED"}], False),
    ],
)
def test_connection_confirmation(payload: object, expected: bool):
    assert parse_connection_confirmation(_reply(payload)) is expected


def test_connection_confirmation_without_block():
    assert parse_connection_confirmation("CONNECTED") is False
    assert parse_connection_confirmation("```json\n{oops\n```") is False


def test_context_message(sample_state: SheetState):
    ctx = build_context_message(
        spreadsheet_id="1AbCdEfGhIjKlMn",
        columns=sample_state.columns,
        rows=sample_state.rows,
        tab_name="Data",
        account_id="acct-1",
    )
    assert ctx["type"] == "CONTEXT"
    assert ctx["spreadsheetName"] == "Sheet 1AbCdEfG..."
    assert ctx["tabName"] == "Data"
    assert ctx["connectedAccountId"] == "acct-1"
    assert [c["letter"] for c in ctx["columns"]] == ["A", "B", "C"]
    assert ctx["dataTypes"] == {"Name": "string", "Email": "email", "Amount": "number"}
    assert ctx["currentData"][0] == {
        "rowIndex": 1,
        "rowId": "r1",
        "values": ["Alice Smith", "alice@example.com", "1200"],
    }
    assert ctx["rowCount"] == 3


def test_context_message_limits_rows(sample_state: SheetState):
    rows = [r.model_copy(update={"id": f"r{i}"}) for i in range(15) for r in sample_state.rows[:1]]
    ctx = build_context_message(spreadsheet_id="abcdefgh", columns=sample_state.columns, rows=rows)
    assert len(ctx["currentData"]) == 10
    assert ctx["rowCount"] == 15
