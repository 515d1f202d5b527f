"""Tests for the dependency cascade manager."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from tablecalc._cascade import CascadeManager
from tablecalc._materialize import materialize
from tablecalc._merge import JoinSpec, MergeDescriptor
from tablecalc._protocol import CascadeStatus, DependencyEdge
from tablecalc._settings_store import InMemorySettingsStore, JsonFileSettingsStore
from tablecalc._types import CycleError, TableSource, UnknownTableError


def _customers(rows: list[list[str]] | None = None, columns: list[str] | None = None) -> TableSource:
    return TableSource(
        "customers",
        columns or ["id", "name"],
        rows if rows is not None else [["1", "Ada"], ["2", "Grace"]],
    )


def _orders(rows: list[list[str]] | None = None) -> TableSource:
    return TableSource(
        "orders",
        ["customer_id", "amount"],
        rows if rows is not None else [["1", "10"], ["2", "20"]],
    )


def _descriptor(left: str = "customers", right: str = "orders") -> MergeDescriptor:
    return MergeDescriptor((
        JoinSpec(left_table=left, right_table=right, left_key="id", right_key="customer_id"),
    ))


def _manager(store: object | None = None) -> CascadeManager:
    manager = CascadeManager(store)
    manager.register_source(_customers())
    manager.register_source(_orders())
    manager.register_merge("customer_orders", _descriptor())
    return manager


class TestRegistration:
    def test_register_source(self) -> None:
        manager = CascadeManager()
        table = manager.register_source(_customers())
        assert table.columns == ["id", "name"]
        assert manager.table("customers") is table

    def test_duplicate_source(self) -> None:
        manager = CascadeManager()
        manager.register_source(_customers())
        with pytest.raises(ValueError, match="already registered"):
            manager.register_source(_customers())

    def test_register_merge_builds_table(self) -> None:
        manager = _manager()
        table = manager.table("customer_orders")
        assert table.columns == ["id", "name", "customer_id", "amount"]
        assert len(table.rows) == 2

    def test_edges(self) -> None:
        manager = _manager()
        assert manager.edges == [
            DependencyEdge("customer_orders", "customers"),
            DependencyEdge("customer_orders", "orders"),
        ]
        assert manager.dependents_of("orders") == ["customer_orders"]
        assert manager.recorded_headers("customer_orders", "orders") == ("customer_id", "amount")

    def test_unknown_source(self) -> None:
        manager = CascadeManager()
        manager.register_source(_customers())
        with pytest.raises(UnknownTableError):
            manager.register_merge("m", _descriptor())
        assert manager.edges == []

    def test_self_reference_rejected(self) -> None:
        manager = _manager()
        with pytest.raises(CycleError):
            manager.register_merge("loop", _descriptor(left="loop"))

    def test_cycle_rejected(self) -> None:
        manager = _manager()
        manager.register_merge("second", MergeDescriptor((
            JoinSpec(left_table="customer_orders", right_table="orders", left_key="id",
                     right_key="customer_id"),
        )))
        with pytest.raises(CycleError):
            manager.register_merge("customer_orders", MergeDescriptor((
                JoinSpec(left_table="second", right_table="orders", left_key="id",
                         right_key="customer_id"),
            )))
        assert DependencyEdge("customer_orders", "customers") in manager.edges

    def test_unknown_table_lookup(self) -> None:
        with pytest.raises(UnknownTableError):
            CascadeManager().table("nope")


class TestCascade:
    def test_identical_headers_update(self) -> None:
        manager = _manager()
        result = manager.update_source(_orders([["1", "10"], ["1", "15"], ["2", "20"]]))
        assert result.ok
        assert result.updated == ["customer_orders"]
        assert result.outcome("customer_orders").row_count == 3
        assert len(manager.table("customer_orders").rows) == 3

    def test_header_mismatch(self, caplog: pytest.LogCaptureFixture) -> None:
        manager = _manager()
        before = manager.table("customer_orders")
        renamed = _customers(columns=["id", "full_name"])
        with caplog.at_level(logging.WARNING):
            result = manager.update_source(renamed)

        assert not result.ok
        outcome = result.outcome("customer_orders")
        assert outcome.status is CascadeStatus.FAILED
        assert outcome.mismatch.removed == ["name"]
        assert outcome.mismatch.added == ["full_name"]
        assert outcome.mismatch.old_headers == ("id", "name")
        assert outcome.mismatch.new_headers == ("id", "full_name")
        assert manager.table("customer_orders") is before
        assert "customer_orders" in caplog.text

    def test_no_dependents(self) -> None:
        manager = _manager()
        result = manager.on_source_updated("customer_orders", ["id"])
        assert result.outcomes == ()
        assert result.ok

    def test_unknown_source_update(self) -> None:
        with pytest.raises(UnknownTableError):
            CascadeManager().update_source(_orders())

    def test_transitive_chain(self) -> None:
        manager = _manager()
        manager.register_source(TableSource("notes", ["id", "note"], [["1", "vip"]]))
        manager.register_merge("annotated", MergeDescriptor((
            JoinSpec(left_table="customer_orders", right_table="notes", left_key="id",
                     right_key="id", join_type="LEFT"),
        )))
        result = manager.update_source(_orders([["1", "10"], ["1", "11"], ["2", "20"]]))
        assert result.updated == ["customer_orders", "annotated"]
        assert [o.table_id for o in result.outcomes] == ["customer_orders", "annotated"]
        assert result.max_chain_depth == 2
        assert len(manager.table("annotated").rows) == 3

    def test_failed_upstream_skips_downstream(self) -> None:
        manager = _manager()
        manager.register_source(TableSource("notes", ["id", "note"], [["1", "vip"]]))
        manager.register_merge("annotated", MergeDescriptor((
            JoinSpec(left_table="customer_orders", right_table="notes", left_key="id",
                     right_key="id", join_type="LEFT"),
        )))
        result = manager.update_source(_customers(columns=["id", "full_name"]))
        assert result.failed == ["customer_orders"]
        assert result.skipped == ["annotated"]

    def test_unrelated_dependent_still_runs(self) -> None:
        manager = _manager()
        manager.register_merge("orders_copy", MergeDescriptor((
            JoinSpec(left_table="orders", right_table="orders", left_key="customer_id",
                     right_key="customer_id", selected_right=("amount",)),
        )))
        manager.remove_table("customers")
        result = manager.update_source(_orders([["1", "10"], ["2", "20"], ["3", "30"]]))
        assert result.failed == ["customer_orders"]
        assert result.updated == ["orders_copy"]
        assert len(manager.table("orders_copy").rows) == 3

    def test_mismatch_on_unchanged_upstream_persists(self) -> None:
        manager = _manager()
        before = manager.table("customer_orders")
        manager.update_source(_customers(columns=["id", "full_name"]))

        result = manager.update_source(_orders([["1", "10"], ["2", "20"], ["1", "5"]]))
        assert result.failed == ["customer_orders"]
        mismatch = result.outcome("customer_orders").mismatch
        assert mismatch.source_table_id == "customers"
        assert mismatch.new_headers == ("id", "full_name")
        assert manager.table("customer_orders") is before

    def test_recovers_after_headers_restored(self) -> None:
        manager = _manager()
        manager.update_source(_customers(columns=["id", "full_name"]))
        result = manager.update_source(_customers([["1", "Ada"], ["2", "Grace"], ["3", "Linus"]]))
        assert result.ok


class TestSettingsDuringCascade:
    def test_calculated_fields_replayed(self) -> None:
        manager = _manager()
        table = materialize(manager.table("customer_orders"), "Doubled", "MULTIPLY(amount, 2)")
        manager.update_table("customer_orders", table)

        manager.update_source(_orders([["1", "10"], ["2", "30"]]))
        rebuilt = manager.table("customer_orders")
        assert rebuilt.columns[-1] == "Doubled"
        assert [row[-1] for row in rebuilt.rows] == [20, 60]

    def test_persisted_with_file_store(self, tmp_path: Path) -> None:
        store = JsonFileSettingsStore(tmp_path)
        manager = _manager(store)
        table = materialize(manager.table("customer_orders"), "Doubled", "MULTIPLY(amount, 2)")
        manager.update_table("customer_orders", table, column_widths={0: 120})

        fresh = _manager(store)
        assert fresh.table("customer_orders").columns[-1] == "Doubled"
        assert store.load("customer_orders").column_widths == {0: 120}


class TestRemoveTable:
    def test_remove_source(self) -> None:
        store = InMemorySettingsStore()
        manager = _manager(store)
        manager.update_table("orders", manager.table("orders"))
        manager.remove_table("orders")

        assert "orders" not in manager.tables()
        assert manager.dependents_of("orders") == []
        assert all(e.source_table_id != "orders" for e in manager.edges)
        assert store.load("orders") is None

    def test_orphan_fails_on_next_cascade(self) -> None:
        manager = _manager()
        manager.remove_table("orders")
        result = manager.update_source(_customers())
        assert result.failed == ["customer_orders"]

    def test_remove_unknown(self) -> None:
        with pytest.raises(UnknownTableError):
            CascadeManager().remove_table("nope")
