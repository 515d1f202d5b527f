"""tablecalc.calc - Formula parsing and evaluation for calculated columns."""

from tablecalc.calc._evaluator import (
    ColumnLookup,
    RowEvaluator,
    column_index,
    evaluate,
    resolve,
    sanitize_name,
    validate_formula,
)
from tablecalc.calc._functions import ERROR, FormulaError, FunctionRegistry, is_error
from tablecalc.calc._graph import DependencyGraph
from tablecalc.calc._parser import FormulaSyntaxError, parse_formula, referenced_columns

__all__ = [
    "ColumnLookup",
    "DependencyGraph",
    "ERROR",
    "FormulaError",
    "FormulaSyntaxError",
    "FunctionRegistry",
    "RowEvaluator",
    "column_index",
    "evaluate",
    "is_error",
    "parse_formula",
    "referenced_columns",
    "resolve",
    "sanitize_name",
    "validate_formula",
]
