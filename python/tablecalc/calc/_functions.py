"""Function registry and builtin implementations for calculated columns."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable

from tablecalc._parsing import parse_number


# ---------------------------------------------------------------------------
# FormulaError: the sentinel value produced instead of raising
# ---------------------------------------------------------------------------


class FormulaError:
    """Error value that propagates through nested formula calls.

    Use ``FormulaError.of(code)`` for a cached singleton per code. Errors
    compare equal to their string code, so ``FormulaError.ERROR == "ERROR"``.
    """

    __slots__ = ("code",)
    _cache: dict[str, FormulaError] = {}

    ERROR: FormulaError

    def __init__(self, code: str) -> None:
        self.code = code

    @classmethod
    def of(cls, code: str) -> FormulaError:
        canon = code.upper()
        if canon not in cls._cache:
            cls._cache[canon] = cls(canon)
        return cls._cache[canon]

    def __repr__(self) -> str:
        return self.code

    def __str__(self) -> str:
        return self.code

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FormulaError):
            return self.code == other.code
        if isinstance(other, str):
            return self.code == other.upper()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.code)


FormulaError.ERROR = FormulaError.of("ERROR")
ERROR = FormulaError.ERROR


def is_error(val: Any) -> bool:
    return isinstance(val, FormulaError)


def first_error(*values: Any) -> FormulaError | None:
    """Return the first FormulaError found in *values*, or None."""
    for v in values:
        if isinstance(v, FormulaError):
            return v
    return None


class ArityError(ValueError):
    """A function was called with the wrong number of arguments."""


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


def to_number(value: Any) -> float | None:
    """Numeric view of a cell value, or None when it is not numeric.

    ``None`` and blank strings are missing, not zero.
    """
    if isinstance(value, FormulaError) or value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        return parse_number(value)
    return None


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _numbers(args: list[Any]) -> list[float]:
    return [n for n in (to_number(a) for a in args) if n is not None]


def _require(name: str, args: list[Any], low: int, high: int | None = None) -> None:
    high = low if high is None else high
    if not low <= len(args) <= high:
        if low == high:
            raise ArityError(f"{name} requires exactly {low} argument(s)")
        raise ArityError(f"{name} requires {low} to {high} arguments")


def _require_some(name: str, args: list[Any]) -> None:
    if not args:
        raise ArityError(f"{name} requires at least 1 argument")


# ---------------------------------------------------------------------------
# Numeric builtins
# ---------------------------------------------------------------------------


def _builtin_sum(args: list[Any]) -> float:
    _require_some("SUM", args)
    return sum(_numbers(args))


def _builtin_subtract(args: list[Any]) -> float:
    _require("SUBTRACT", args, 2)
    a, b = to_number(args[0]), to_number(args[1])
    if a is None or b is None:
        return 0.0
    return a - b


def _builtin_multiply(args: list[Any]) -> float:
    _require_some("MULTIPLY", args)
    product = 1.0
    for arg in args:
        num = to_number(arg)
        if num is None:
            return 0.0
        product *= num
    return product


def _builtin_divide(args: list[Any]) -> float:
    _require("DIVIDE", args, 2)
    a, b = to_number(args[0]), to_number(args[1])
    if a is None or b is None or b == 0:
        return 0.0
    return a / b


def _builtin_average(args: list[Any]) -> float:
    _require_some("AVERAGE", args)
    nums = _numbers(args)
    if not nums:
        return 0.0
    return sum(nums) / len(nums)


def _builtin_percent(args: list[Any]) -> float:
    _require("PERCENT", args, 2)
    a, b = to_number(args[0]), to_number(args[1])
    if a is None or b is None or b == 0:
        return 0.0
    return (a / b) * 100


def _builtin_growth(args: list[Any]) -> float:
    _require("GROWTH", args, 2)
    current, previous = to_number(args[0]), to_number(args[1])
    if current is None or previous is None or previous == 0:
        return 0.0
    return (current - previous) * 100 / previous


def _builtin_max(args: list[Any]) -> float:
    _require_some("MAX", args)
    nums = _numbers(args)
    return max(nums) if nums else 0.0


def _builtin_min(args: list[Any]) -> float:
    _require_some("MIN", args)
    nums = _numbers(args)
    return min(nums) if nums else 0.0


def _builtin_round(args: list[Any]) -> float:
    _require("ROUND", args, 2)
    num = to_number(args[0])
    digits = to_number(args[1])
    if num is None or digits is None:
        return 0.0
    # Half away from zero on the decimal text: ROUND(2.5, 0) is 3, ROUND(0.125, 2) is 0.13
    exp = Decimal(1).scaleb(-int(digits))
    return float(Decimal(repr(num)).quantize(exp, rounding=ROUND_HALF_UP))


def _builtin_abs(args: list[Any]) -> float:
    _require("ABS", args, 1)
    num = to_number(args[0])
    return abs(num) if num is not None else 0.0


# ---------------------------------------------------------------------------
# Text builtins
# ---------------------------------------------------------------------------


def _builtin_concat(args: list[Any]) -> str:
    _require_some("CONCAT", args)
    return "".join(to_text(a) for a in args)


def _builtin_upper(args: list[Any]) -> str:
    _require("UPPER", args, 1)
    return to_text(args[0]).upper()


def _builtin_lower(args: list[Any]) -> str:
    _require("LOWER", args, 1)
    return to_text(args[0]).lower()


def _builtin_trim(args: list[Any]) -> str:
    _require("TRIM", args, 1)
    return " ".join(to_text(args[0]).split())


def _builtin_len(args: list[Any]) -> int:
    _require("LEN", args, 1)
    return len(to_text(args[0]))


# ---------------------------------------------------------------------------
# Conditional builtins (lazy: receive argument nodes and an evaluate callback)
# ---------------------------------------------------------------------------


def truthy(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        return text not in ("", "false", "0", "no")
    return bool(value)


def _builtin_if(arg_nodes: list[Any], eval_fn: Callable[[Any], Any]) -> Any:
    _require("IF", arg_nodes, 2, 3)
    condition = eval_fn(arg_nodes[0])
    if isinstance(condition, FormulaError):
        return condition
    if truthy(condition):
        return eval_fn(arg_nodes[1])
    return eval_fn(arg_nodes[2]) if len(arg_nodes) > 2 else False


def _builtin_iferror(arg_nodes: list[Any], eval_fn: Callable[[Any], Any]) -> Any:
    _require("IFERROR", arg_nodes, 2)
    value = eval_fn(arg_nodes[0])
    if isinstance(value, FormulaError):
        return eval_fn(arg_nodes[1])
    return value


_builtin_if._lazy_args = True  # type: ignore[attr-defined]
_builtin_iferror._lazy_args = True  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_BUILTINS: dict[str, Callable[..., Any]] = {
    "SUM": _builtin_sum,
    "ADD": _builtin_sum,
    "SUBTRACT": _builtin_subtract,
    "MULTIPLY": _builtin_multiply,
    "DIVIDE": _builtin_divide,
    "AVERAGE": _builtin_average,
    "PERCENT": _builtin_percent,
    "GROWTH": _builtin_growth,
    "MAX": _builtin_max,
    "MIN": _builtin_min,
    "ROUND": _builtin_round,
    "ABS": _builtin_abs,
    "CONCAT": _builtin_concat,
    "UPPER": _builtin_upper,
    "LOWER": _builtin_lower,
    "TRIM": _builtin_trim,
    "LEN": _builtin_len,
    "IF": _builtin_if,
    "IFERROR": _builtin_iferror,
}


class FunctionRegistry:
    """Registry of callable function implementations.

    Starts with builtins and can be extended with custom functions. A
    function receives the list of evaluated argument values, unless it is
    marked ``_lazy_args``, in which case it receives the argument nodes and
    an evaluate callback.
    """

    def __init__(self) -> None:
        self._functions: dict[str, Callable[..., Any]] = dict(_BUILTINS)

    def register(self, name: str, func: Callable[..., Any]) -> None:
        self._functions[name.upper()] = func

    def get(self, name: str) -> Callable[..., Any] | None:
        return self._functions.get(name.upper())

    def has(self, name: str) -> bool:
        return name.upper() in self._functions

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())
