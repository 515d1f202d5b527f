"""tablecalc - typed tables, calculated columns and merged-table cascades.

Usage::

    from tablecalc import CascadeManager, TableSource, materialize, open_table

    source = TableSource("orders", ["Price", "Qty"], [["2.50", "4"]])
    table = open_table(source)
    table = materialize(table, "Total", "MULTIPLY(Price, Qty)")
"""

from tablecalc._cascade import CascadeManager
from tablecalc._config import TableCalcSettings, get_settings, reload_settings
from tablecalc._formatting import DEFAULT_FORMAT, format_column, format_options, format_value
from tablecalc._inference import infer, infer_table
from tablecalc._materialize import materialize, remove, set_column_format, set_column_type
from tablecalc._merge import JoinSpec, JoinType, MergeDescriptor, perform_merge
from tablecalc._protocol import (
    CascadeResult,
    CascadeStatus,
    DependencyEdge,
    DependentOutcome,
    HeaderMismatch,
    SettingsStore,
)
from tablecalc._settings_store import (
    SCHEMA_VERSION,
    CalculatedField,
    FileSettings,
    InMemorySettingsStore,
    JsonFileSettingsStore,
    StoredColumn,
    open_table,
    replay,
    save_table,
    snapshot,
)
from tablecalc._types import (
    ColumnExistsError,
    ColumnMetadata,
    CycleError,
    DataType,
    NotCalculatedColumnError,
    SettingsVersionError,
    TableCalcError,
    TableData,
    TableSource,
    UnknownTableError,
)
from tablecalc.calc import ERROR, evaluate, resolve, validate_formula

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CalculatedField",
    "CascadeManager",
    "CascadeResult",
    "CascadeStatus",
    "ColumnExistsError",
    "ColumnMetadata",
    "CycleError",
    "DEFAULT_FORMAT",
    "DataType",
    "DependencyEdge",
    "DependentOutcome",
    "ERROR",
    "FileSettings",
    "HeaderMismatch",
    "InMemorySettingsStore",
    "JoinSpec",
    "JoinType",
    "JsonFileSettingsStore",
    "MergeDescriptor",
    "NotCalculatedColumnError",
    "SCHEMA_VERSION",
    "SettingsStore",
    "SettingsVersionError",
    "StoredColumn",
    "TableCalcError",
    "TableCalcSettings",
    "TableData",
    "TableSource",
    "UnknownTableError",
    "evaluate",
    "format_column",
    "format_options",
    "format_value",
    "get_settings",
    "infer",
    "infer_table",
    "materialize",
    "open_table",
    "perform_merge",
    "reload_settings",
    "remove",
    "replay",
    "resolve",
    "save_table",
    "set_column_format",
    "set_column_type",
    "snapshot",
    "validate_formula",
]
