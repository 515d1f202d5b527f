"""RowEvaluator: evaluates calculated-column formulas against a single row.

Formulas are parsed once into an expression tree (see
:mod:`tablecalc.calc._parser`) and evaluated innermost-first. Evaluation
is total: every failure yields the ``ERROR`` sentinel instead of raising.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

from tablecalc.calc._functions import ERROR, FormulaError, FunctionRegistry, first_error, to_number
from tablecalc.calc._parser import (
    ColumnRef,
    Comparison,
    FormulaSyntaxError,
    FunctionCall,
    Literal,
    Node,
    parse_formula,
    walk,
)

logger = logging.getLogger(__name__)

_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_name(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_]`` with ``_``."""
    return _SANITIZE_RE.sub("_", name)


class UnresolvedColumnError(LookupError):
    """A column reference matches no column, raw or sanitized."""


# ---------------------------------------------------------------------------
# Column resolution
# ---------------------------------------------------------------------------


class ColumnLookup:
    """Maps formula identifiers to column indexes.

    Each column is reachable by its exact name and by its sanitized name;
    a later column's entry wins when two keys collide. Lookup tries the
    identifier as written, then its sanitized form.
    """

    __slots__ = ("columns", "_index")

    def __init__(self, columns: Sequence[str]) -> None:
        self.columns = tuple(columns)
        self._index: dict[str, int] = {}
        for idx, col in enumerate(self.columns):
            self._index[col] = idx
            self._index[sanitize_name(col)] = idx

    def index_of(self, name: str) -> int | None:
        idx = self._index.get(name)
        if idx is None:
            idx = self._index.get(sanitize_name(name))
        return idx

    def __contains__(self, name: str) -> bool:
        return self.index_of(name) is not None


def column_index(name: str, columns: Sequence[str]) -> int | None:
    return ColumnLookup(columns).index_of(name)


def resolve(name: str, row: Sequence[Any], columns: Sequence[str]) -> Any | None:
    """Value of column *name* in *row*, or None when no column matches.

    An empty cell also resolves to None; use :func:`column_index` to tell
    the two apart.
    """
    idx = column_index(name, columns)
    if idx is None or idx >= len(row):
        return None
    return row[idx]


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


def _compare(left: Any, right: Any, op: str) -> Any:
    """Numeric when both sides are numeric, else case-insensitive text."""
    err = first_error(left, right)
    if err is not None:
        return err
    lf, rf = to_number(left), to_number(right)
    if lf is None or rf is None:
        lf = str(left).lower() if left is not None else ""
        rf = str(right).lower() if right is not None else ""
    if op == ">":
        return lf > rf
    if op == "<":
        return lf < rf
    if op == ">=":
        return lf >= rf
    if op == "<=":
        return lf <= rf
    if op in ("=", "=="):
        return lf == rf
    if op in ("<>", "!="):
        return lf != rf
    return ERROR


def _normalize(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class RowEvaluator:
    """Evaluates formulas for the rows of one table layout.

    Usage::

        evaluator = RowEvaluator(["Price", "Qty"])
        evaluator.evaluate("MULTIPLY(Price, Qty)", [2.5, 4])   # -> 10
    """

    def __init__(self, columns: Sequence[str], functions: FunctionRegistry | None = None) -> None:
        self._lookup = ColumnLookup(columns)
        self._functions = functions or FunctionRegistry()

    @property
    def columns(self) -> tuple[str, ...]:
        return self._lookup.columns

    def compile(self, formula: str) -> Node | FormulaError:
        """Parse *formula*, or return ``ERROR`` when it is malformed."""
        try:
            return parse_formula(formula)
        except (FormulaSyntaxError, RecursionError) as e:
            logger.debug("Cannot parse formula %r: %s", formula, e)
            return ERROR

    def evaluate(self, formula: str | Node, row: Sequence[Any]) -> Any:
        """Evaluate a formula (text or pre-compiled tree) against *row*."""
        node = self.compile(formula) if isinstance(formula, str) else formula
        if isinstance(node, FormulaError):
            return node
        try:
            return _normalize(self._eval(node, row))
        except (ArithmeticError, LookupError, RecursionError, TypeError, ValueError) as e:
            logger.debug("Error evaluating %r: %s", formula, e)
            return ERROR

    def evaluate_rows(self, formula: str, rows: Sequence[Sequence[Any]]) -> list[Any]:
        """Evaluate one formula across rows; the formula is parsed once."""
        node = self.compile(formula)
        return [self.evaluate(node, row) for row in rows]

    # ------------------------------------------------------------------
    # Tree evaluation (post-order)
    # ------------------------------------------------------------------

    def _eval(self, node: Node, row: Sequence[Any]) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, ColumnRef):
            idx = self._lookup.index_of(node.name)
            if idx is None or idx >= len(row):
                raise UnresolvedColumnError(f"Unknown column {node.name!r}")
            return row[idx]
        if isinstance(node, Comparison):
            return _compare(self._eval(node.left, row), self._eval(node.right, row), node.op)
        if isinstance(node, FunctionCall):
            return self._eval_function(node, row)
        raise TypeError(f"Unsupported node {node!r}")

    def _eval_function(self, node: FunctionCall, row: Sequence[Any]) -> Any:
        func = self._functions.get(node.name)
        if func is None:
            logger.debug("Unsupported function: %s", node.name)
            return ERROR
        if getattr(func, "_lazy_args", False):
            return func(list(node.args), lambda arg: self._eval_guarded(arg, row))
        args = [self._eval(arg, row) for arg in node.args]
        err = first_error(*args)
        if err is not None:
            return err
        return func(args)

    def _eval_guarded(self, node: Node, row: Sequence[Any]) -> Any:
        """Evaluate a lazily-passed argument, turning failures into ``ERROR``."""
        try:
            return self._eval(node, row)
        except (ArithmeticError, LookupError, RecursionError, TypeError, ValueError) as e:
            logger.debug("Error evaluating argument %r: %s", node, e)
            return ERROR


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def evaluate(formula: str, row: Sequence[Any], columns: Sequence[str]) -> Any:
    """Evaluate *formula* against one row. Never raises; failures give ``ERROR``."""
    return RowEvaluator(columns).evaluate(formula, row)


def validate_formula(
    formula: str,
    columns: Sequence[str],
    functions: FunctionRegistry | None = None,
) -> list[str]:
    """Problems that would make *formula* evaluate to ``ERROR`` on every row."""
    try:
        tree = parse_formula(formula)
    except (FormulaSyntaxError, RecursionError) as e:
        return [str(e)]
    functions = functions or FunctionRegistry()
    lookup = ColumnLookup(columns)
    problems: list[str] = []
    for node in walk(tree):
        if isinstance(node, FunctionCall) and not functions.has(node.name):
            problems.append(f"Unknown function {node.name}")
        elif isinstance(node, ColumnRef) and node.name not in lookup:
            problems.append(f"Unknown column {node.name!r}")
    return problems
