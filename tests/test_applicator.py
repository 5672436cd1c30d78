"""Tests for applying edit operations to a SheetState."""

from __future__ import annotations

import pytest

from sheetops.contracts.operations import (
    AddRow,
    CellUpdate,
    ColumnAdd,
    ColumnDelete,
    RowDelete,
    Sort,
)
from sheetops.contracts.sheet import Column, Row
from sheetops.contracts.state import SheetState
from sheetops.engine.applicator import apply_operations, natural_key, preview_state


def _ids(state: SheetState) -> list[str]:
    return [r.id for r in state.rows]


def _amount_state(values: list[str]) -> SheetState:
    return SheetState(
        columns=[Column(id="amount", label="Amount")],
        rows=[Row(id=f"r{i + 1}", cells={"amount": v}) for i, v in enumerate(values)],
    )


class TestPurity:
    def test_empty_ops_is_identity(self, sample_state: SheetState):
        assert apply_operations(sample_state, []) == sample_state

    def test_input_is_not_mutated(self, sample_state: SheetState):
        before = sample_state.model_copy(deep=True)
        ops = [
            CellUpdate(id="o1", row_id="r1", column_id="name", new_value="Zed"),
            ColumnAdd(id="o2", column_id="notes", column_label="Notes"),
            ColumnDelete(id="o3", column_id="email"),
            AddRow(id="o4", row=Row(id="r9", cells={"name": "New"})),
            RowDelete(id="o5", row_id="r2"),
            Sort(id="o6", column_id="name", direction="desc"),
            CellUpdate(id="o7", row_id="r77", column_id="name", new_value="Ghost"),
        ]
        after = apply_operations(sample_state, ops)
        assert sample_state == before
        assert after != before

    def test_added_row_is_copied(self, sample_state: SheetState):
        row = Row(id="r9", cells={"name": "New"})
        ops = [
            AddRow(id="o1", row=row),
            CellUpdate(id="o2", row_id="r9", column_id="name", new_value="Changed"),
        ]
        after = apply_operations(sample_state, ops)
        assert after.cell("r9", "name") == "Changed"
        assert row.cells == {"name": "New"}


class TestCellUpdate:
    def test_sets_value(self, sample_state: SheetState):
        op = CellUpdate(id="o1", row_id="r2", column_id="amount", old_value="540", new_value="600")
        assert apply_operations(sample_state, [op]).cell("r2", "amount") == "600"

    def test_none_writes_empty_string(self, sample_state: SheetState):
        op = CellUpdate(id="o1", row_id="r1", column_id="name", new_value=None)
        assert apply_operations(sample_state, [op]).row("r1").cells["name"] == ""

    def test_unknown_row_is_materialized(self, sample_state: SheetState):
        op = CellUpdate(id="o1", row_id="r99", column_id="name", new_value="X")
        after = apply_operations(sample_state, [op])
        assert _ids(after) == ["r1", "r2", "r3", "r99"]
        assert after.row("r99").cells == {"name": "X", "email": "", "amount": ""}

    def test_agent_insert_rows_share_one_materialized_row(self, sample_state: SheetState):
        ops = [
            CellUpdate(id="o1", row_id="r-new-1-0", column_id="name", new_value="Dan"),
            CellUpdate(id="o2", row_id="r-new-1-0", column_id="email", new_value="dan@example.com"),
        ]
        after = apply_operations(sample_state, ops)
        assert len(after.rows) == 4
        assert after.row("r-new-1-0").cells == {"name": "Dan", "email": "dan@example.com", "amount": ""}

    def test_update_after_delete_in_same_pass_is_inert(self, sample_state: SheetState):
        ops = [
            RowDelete(id="o1", row_id="r2"),
            CellUpdate(id="o2", row_id="r2", column_id="name", new_value="Back"),
        ]
        after = apply_operations(sample_state, ops)
        assert _ids(after) == ["r1", "r3"]

    def test_re_added_row_accepts_updates(self, sample_state: SheetState):
        ops = [
            RowDelete(id="o1", row_id="r2"),
            AddRow(id="o2", row=Row(id="r2", cells={"name": ""})),
            CellUpdate(id="o3", row_id="r2", column_id="name", new_value="Back"),
        ]
        after = apply_operations(sample_state, ops)
        assert _ids(after) == ["r1", "r3", "r2"]
        assert after.cell("r2", "name") == "Back"

    def test_unknown_column_is_recorded(self, sample_state: SheetState):
        op = CellUpdate(id="o1", row_id="r1", column_id="phone", new_value="555")
        after = apply_operations(sample_state, [op])
        assert after.row("r1").cells["phone"] == "555"
        assert after.column_ids() == ["name", "email", "amount"]

    def test_update_then_column_delete_leaves_no_trace(self, sample_state: SheetState):
        ops = [
            CellUpdate(id="o1", row_id="r1", column_id="email", new_value="x@y.z"),
            ColumnDelete(id="o2", column_id="email"),
        ]
        after = apply_operations(sample_state, ops)
        assert all("email" not in r.cells for r in after.rows)


class TestColumns:
    def test_column_add_backfills_rows(self, sample_state: SheetState):
        after = apply_operations(sample_state, [ColumnAdd(id="o1", column_id="notes", column_label="Notes")])
        assert after.column_ids() == ["name", "email", "amount", "notes"]
        assert after.column("notes").label == "Notes"
        assert all(r.cells["notes"] == "" for r in after.rows)

    def test_column_add_label_defaults_to_id(self, sample_state: SheetState):
        after = apply_operations(sample_state, [ColumnAdd(id="o1", column_id="notes")])
        assert after.column("notes").label == "notes"

    def test_column_add_existing_id_is_noop(self, sample_state: SheetState):
        after = apply_operations(sample_state, [ColumnAdd(id="o1", column_id="email", column_label="Email")])
        assert after.column_ids() == ["name", "email", "amount"]
        assert after.cell("r1", "email") == "alice@example.com"

    def test_column_add_keeps_values_recorded_earlier(self, sample_state: SheetState):
        ops = [
            CellUpdate(id="o1", row_id="r1", column_id="phone", new_value="555"),
            ColumnAdd(id="o2", column_id="phone", column_label="Phone"),
        ]
        after = apply_operations(sample_state, ops)
        assert after.cell("r1", "phone") == "555"
        assert after.cell("r2", "phone") == ""

    def test_column_delete(self, sample_state: SheetState):
        after = apply_operations(sample_state, [ColumnDelete(id="o1", column_id="email")])
        assert after.column_ids() == ["name", "amount"]
        assert all("email" not in r.cells for r in after.rows)

    def test_column_delete_missing_is_noop(self, sample_state: SheetState):
        assert apply_operations(sample_state, [ColumnDelete(id="o1", column_id="nope")]) == sample_state


class TestRows:
    def test_add_row_is_verbatim(self, sample_state: SheetState):
        after = apply_operations(sample_state, [AddRow(id="o1", row=Row(id="r4", cells={"name": "Dan"}))])
        assert _ids(after)[-1] == "r4"
        assert after.row("r4").cells == {"name": "Dan"}

    def test_row_delete(self, sample_state: SheetState):
        after = apply_operations(sample_state, [RowDelete(id="o1", row_id="r1")])
        assert _ids(after) == ["r2", "r3"]

    def test_row_delete_missing_is_noop(self, sample_state: SheetState):
        assert apply_operations(sample_state, [RowDelete(id="o1", row_id="r42")]) == sample_state


class TestSort:
    def test_numeric_ascending_is_stable(self):
        state = _amount_state(["10", "2", "10", "1"])
        after = apply_operations(state, [Sort(id="o1", column_id="amount", direction="asc")])
        assert _ids(after) == ["r4", "r2", "r1", "r3"]

    def test_descending_is_stable(self):
        state = _amount_state(["10", "2", "10", "1"])
        after = apply_operations(state, [Sort(id="o1", column_id="amount", direction="desc")])
        assert _ids(after) == ["r1", "r3", "r2", "r4"]

    def test_text_is_case_insensitive(self):
        state = _amount_state(["banana", "Apple", "cherry"])
        after = apply_operations(state, [Sort(id="o1", column_id="amount")])
        assert [r.cells["amount"] for r in after.rows] == ["Apple", "banana", "cherry"]

    def test_blank_sorts_first(self):
        state = _amount_state(["b", "", "a"])
        after = apply_operations(state, [Sort(id="o1", column_id="amount")])
        assert _ids(after) == ["r2", "r3", "r1"]

    def test_unknown_column_keeps_order(self, sample_state: SheetState):
        after = apply_operations(sample_state, [Sort(id="o1", column_id="nope")])
        assert _ids(after) == ["r1", "r2", "r3"]

    @pytest.mark.parametrize(
        ("smaller", "larger"),
        [("2", "10"), ("a2", "a10"), ("9", "a"), ("apple", "Banana"), ("", "0")],
    )
    def test_natural_key_order(self, smaller: str, larger: str):
        assert natural_key(smaller) < natural_key(larger)


def test_preview_state_attaches_pending(sample_state: SheetState):
    ops = [RowDelete(id="o1", row_id="r1")]
    preview = preview_state(sample_state, ops)
    assert preview.pending_ops == ops
    assert _ids(preview) == ["r2", "r3"]
    assert sample_state.pending_ops == []
