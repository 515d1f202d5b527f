"""Per-table settings persistence and replay.

A table is reconstructed from its raw source plus a :class:`FileSettings`
record: stored column types/formats override inference, and stored
calculated fields are re-materialized in order.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from tablecalc._config import get_settings
from tablecalc._inference import infer_table
from tablecalc._materialize import materialize
from tablecalc._protocol import SettingsStore
from tablecalc._types import DataType, SettingsVersionError, TableData, TableSource
from tablecalc.calc._functions import FunctionRegistry

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


# ---------------------------------------------------------------------------
# Persisted schema
# ---------------------------------------------------------------------------


class StoredColumn(BaseModel):
    """Type and format of one non-calculated column."""

    name: str
    data_type: DataType = DataType.TEXT
    format: str | None = None

    model_config = ConfigDict(extra="forbid")


class CalculatedField(BaseModel):
    name: str = Field(min_length=1)
    formula: str = Field(min_length=1)

    model_config = ConfigDict(extra="forbid")


class FileSettings(BaseModel):
    """Everything needed to rebuild a table's view from its raw data."""

    schema_version: int = SCHEMA_VERSION
    column_widths: dict[int, int] = Field(default_factory=dict)
    column_metadata: list[StoredColumn] = Field(default_factory=list)
    calculated_fields: list[CalculatedField] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    def column_width(self, index: int, default: int | None = None) -> int:
        if default is None:
            default = get_settings().default_column_width
        return self.column_widths.get(index, default)

    def stored_column(self, name: str) -> StoredColumn | None:
        for col in self.column_metadata:
            if col.name == name:
                return col
        return None


def _migrate_v1(raw: dict[str, Any]) -> dict[str, Any]:
    """Unversioned camelCase records: columnWidths, columnMetadata and calculatedFields."""
    columns = []
    for meta in raw.get("columnMetadata") or []:
        if meta.get("isCalculated"):
            continue
        columns.append({
            "name": meta["name"],
            "data_type": str(meta.get("dataType") or "text").lower(),
            "format": meta.get("format"),
        })
    return {
        "schema_version": 2,
        "column_widths": raw.get("columnWidths") or {},
        "column_metadata": columns,
        "calculated_fields": [
            {"name": f["name"], "formula": f["formula"]}
            for f in raw.get("calculatedFields") or []
            if f.get("formula")
        ],
    }


# version -> function upgrading a record of that version by one step
_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1,
}


def migrate_record(raw: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a raw settings record to :data:`SCHEMA_VERSION`."""
    version = raw.get("schema_version", 1)
    if not isinstance(version, int) or version < 1:
        raise ValueError(f"Invalid settings schema_version {version!r}")
    if version > SCHEMA_VERSION:
        raise SettingsVersionError(
            f"Settings schema_version {version} is newer than supported ({SCHEMA_VERSION})"
        )
    while version < SCHEMA_VERSION:
        raw = _MIGRATIONS[version](raw)
        version = raw["schema_version"]
    return raw


def parse_settings(raw: dict[str, Any]) -> FileSettings:
    return FileSettings.model_validate(migrate_record(raw))


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class _LockingStore(ABC):
    """Shared per-table-id locking; subclasses implement _read/_write/_remove."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, table_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(table_id)
            if lock is None:
                lock = self._locks[table_id] = threading.RLock()
            return lock

    @abstractmethod
    def _read(self, table_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    def _write(self, table_id: str, payload: dict[str, Any]) -> None: ...

    @abstractmethod
    def _remove(self, table_id: str) -> None: ...

    def load(self, table_id: str) -> FileSettings | None:
        with self._lock_for(table_id):
            raw = self._read(table_id)
        if raw is None:
            return None
        try:
            return parse_settings(raw)
        except SettingsVersionError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error("Discarding unreadable settings for %s: %s", table_id, e)
            return None

    def save(self, table_id: str, settings: FileSettings) -> None:
        with self._lock_for(table_id):
            self._write(table_id, settings.model_dump(mode="json"))
        logger.debug("Saved settings for %s", table_id)

    def delete(self, table_id: str) -> None:
        with self._lock_for(table_id):
            self._remove(table_id)
        with self._locks_guard:
            self._locks.pop(table_id, None)

    def update(
        self,
        table_id: str,
        fn: Callable[[FileSettings | None], FileSettings],
    ) -> FileSettings:
        """Apply *fn* to the current settings and save the result atomically
        with respect to other writers of the same table id."""
        with self._lock_for(table_id):
            settings = fn(self.load(table_id))
            self.save(table_id, settings)
            return settings


class InMemorySettingsStore(_LockingStore):
    """Process-local store; records are kept in their serialized form."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, str] = {}

    def _read(self, table_id: str) -> dict[str, Any] | None:
        text = self._records.get(table_id)
        return json.loads(text) if text is not None else None

    def _write(self, table_id: str, payload: dict[str, Any]) -> None:
        self._records[table_id] = json.dumps(payload)

    def _remove(self, table_id: str) -> None:
        self._records.pop(table_id, None)

    def __contains__(self, table_id: str) -> bool:
        return table_id in self._records


class JsonFileSettingsStore(_LockingStore):
    """One JSON document per table under *directory*, replaced atomically."""

    def __init__(self, directory: str | os.PathLike[str] | None = None) -> None:
        super().__init__()
        if directory is None:
            directory = get_settings().settings_dir
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, table_id: str) -> Path:
        return self.directory / f"{quote(table_id, safe='')}.json"

    def _read(self, table_id: str) -> dict[str, Any] | None:
        path = self.path_for(table_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read settings %s: %s", path, e)
            return None

    def _write(self, table_id: str, payload: dict[str, Any]) -> None:
        path = self.path_for(table_id)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _remove(self, table_id: str) -> None:
        self.path_for(table_id).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Snapshot and replay
# ---------------------------------------------------------------------------


def snapshot(table: TableData, column_widths: dict[int, int] | None = None) -> FileSettings:
    """Full settings snapshot of *table* (never a delta)."""
    return FileSettings(
        column_widths=dict(column_widths or {}),
        column_metadata=[
            StoredColumn(name=m.name, data_type=m.data_type, format=m.format)
            for m in table.column_metadata
            if not m.is_calculated
        ],
        calculated_fields=[
            CalculatedField(name=m.name, formula=m.formula)
            for m in table.column_metadata
            if m.is_calculated
        ],
    )


def replay(
    table: TableData,
    settings: FileSettings,
    functions: FunctionRegistry | None = None,
) -> TableData:
    """Apply stored types/formats, then re-materialize stored calculated fields."""
    table = table.copy()
    present = {m.name for m in table.column_metadata if not m.is_calculated}

    for idx, meta in enumerate(table.column_metadata):
        if meta.is_calculated:
            continue
        stored = settings.stored_column(meta.name)
        if stored is not None:
            table = table.with_metadata(idx, data_type=stored.data_type, format=stored.format)

    stale = [c.name for c in settings.column_metadata if c.name not in present]
    if stale:
        logger.warning("Dropping settings for missing columns: %s", ", ".join(stale))

    for field in settings.calculated_fields:
        if field.name in table.columns:
            logger.warning("Skipping calculated field %r: a column with that name exists",
                           field.name)
            continue
        table = materialize(table, field.name, field.formula, functions)

    return table


def table_from_source(source: TableSource) -> TableData:
    """Freshly inferred view of a source table."""
    return TableData(
        columns=list(source.columns),
        rows=[list(r) for r in source.rows],
        column_metadata=infer_table(source),
    )


def open_table(
    source: TableSource,
    store: SettingsStore | None = None,
    functions: FunctionRegistry | None = None,
) -> TableData:
    """Infer *source*, then replay its stored settings when there are any."""
    table = table_from_source(source)
    settings = store.load(source.table_id) if store is not None else None
    if settings is None:
        return table
    return replay(table, settings, functions)


def save_table(
    table_id: str,
    table: TableData,
    store: SettingsStore,
    column_widths: dict[int, int] | None = None,
) -> FileSettings:
    """Re-save the full snapshot of *table*; stored widths are kept unless given."""

    def _merge(current: FileSettings | None) -> FileSettings:
        widths = column_widths
        if widths is None:
            widths = current.column_widths if current is not None else {}
        return snapshot(table, widths)

    return store.update(table_id, _merge)
