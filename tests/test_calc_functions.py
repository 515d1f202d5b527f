"""Tests for the function registry and builtin implementations."""

from __future__ import annotations

import pytest
from tablecalc.calc._functions import (
    _BUILTINS,
    ERROR,
    ArityError,
    FormulaError,
    FunctionRegistry,
    first_error,
    is_error,
    to_number,
    to_text,
    truthy,
)


class TestFormulaError:
    def test_singleton(self) -> None:
        assert FormulaError.of("error") is ERROR
        assert FormulaError.ERROR is ERROR

    def test_equals_code(self) -> None:
        assert ERROR == "ERROR"
        assert str(ERROR) == "ERROR"

    def test_helpers(self) -> None:
        assert is_error(ERROR)
        assert not is_error("ERROR")
        assert first_error(1, "a", ERROR) is ERROR
        assert first_error(1, 2) is None


class TestCoercion:
    def test_to_number(self) -> None:
        assert to_number("3.5") == 3.5
        assert to_number(" 4 ") == 4.0
        assert to_number(True) == 1.0
        assert to_number(None) is None
        assert to_number("") is None
        assert to_number("abc") is None
        assert to_number(ERROR) is None

    def test_to_number_reads_formatted_text(self) -> None:
        assert to_number("$10.00") == 10.0
        assert to_number("1,234.5") == 1234.5
        assert to_number("12abc") is None

    def test_to_text(self) -> None:
        assert to_text(5.0) == "5"
        assert to_text(2.5) == "2.5"
        assert to_text(None) == ""
        assert to_text(False) == "false"

    def test_truthy(self) -> None:
        assert truthy(1)
        assert not truthy(0)
        assert not truthy("false")
        assert not truthy("")
        assert truthy("yes")


class TestFunctionRegistry:
    def test_builtins_registered(self) -> None:
        reg = FunctionRegistry()
        for name in ("SUM", "ADD", "SUBTRACT", "MULTIPLY", "DIVIDE", "AVERAGE", "PERCENT",
                     "GROWTH", "MAX", "MIN", "ROUND", "CONCAT", "UPPER", "LOWER", "IF"):
            assert reg.has(name)

    def test_custom_registration(self) -> None:
        reg = FunctionRegistry()
        reg.register("double", lambda args: args[0] * 2)
        assert reg.has("DOUBLE")
        assert reg.get("Double")([4]) == 8

    def test_registration_is_per_instance(self) -> None:
        FunctionRegistry().register("ONLYHERE", lambda args: 1)
        assert not FunctionRegistry().has("ONLYHERE")

    def test_supported_functions(self) -> None:
        funcs = FunctionRegistry().supported_functions
        assert isinstance(funcs, frozenset)
        assert "ROUND" in funcs


class TestNumericBuiltins:
    def test_sum_skips_non_numeric(self) -> None:
        assert _BUILTINS["SUM"](["2", 3, "", "abc"]) == 5.0

    def test_add_is_sum(self) -> None:
        assert _BUILTINS["ADD"]([1, 2, 3]) == 6.0

    def test_subtract(self) -> None:
        assert _BUILTINS["SUBTRACT"]([10, "4"]) == 6.0

    def test_multiply(self) -> None:
        assert _BUILTINS["MULTIPLY"](["2.5", 4]) == 10.0

    def test_multiply_missing_is_zero(self) -> None:
        assert _BUILTINS["MULTIPLY"]([2, ""]) == 0.0

    def test_divide(self) -> None:
        assert _BUILTINS["DIVIDE"]([9, 3]) == 3.0

    def test_divide_by_zero(self) -> None:
        assert _BUILTINS["DIVIDE"]([5, 0]) == 0.0

    def test_average(self) -> None:
        assert _BUILTINS["AVERAGE"]([1, 2, "x", 6]) == 3.0
        assert _BUILTINS["AVERAGE"](["x"]) == 0.0

    def test_percent(self) -> None:
        assert _BUILTINS["PERCENT"]([1, 4]) == 25.0
        assert _BUILTINS["PERCENT"]([1, 0]) == 0.0

    def test_growth(self) -> None:
        assert _BUILTINS["GROWTH"]([150, 100]) == 50.0
        assert _BUILTINS["GROWTH"]([150, 0]) == 0.0

    def test_max_min(self) -> None:
        assert _BUILTINS["MAX"]([3, "9", 1]) == 9.0
        assert _BUILTINS["MIN"]([3, "9", 1]) == 1.0
        assert _BUILTINS["MAX"](["a"]) == 0.0

    def test_round(self) -> None:
        assert _BUILTINS["ROUND"]([3.14159, 2]) == 3.14
        assert _BUILTINS["ROUND"](["abc", 2]) == 0.0

    def test_round_half_away_from_zero(self) -> None:
        assert _BUILTINS["ROUND"]([2.5, 0]) == 3.0
        assert _BUILTINS["ROUND"]([0.125, 2]) == 0.13
        assert _BUILTINS["ROUND"]([-2.5, 0]) == -3.0
        assert _BUILTINS["ROUND"]([1234.5, -1]) == 1230.0

    def test_abs(self) -> None:
        assert _BUILTINS["ABS"]([-4]) == 4.0

    @pytest.mark.parametrize(
        ("name", "args"),
        [("SUM", []), ("DIVIDE", [1]), ("ROUND", [1]), ("SUBTRACT", [1, 2, 3]), ("UPPER", [])],
    )
    def test_arity(self, name: str, args: list) -> None:
        with pytest.raises(ArityError):
            _BUILTINS[name](args)


class TestTextBuiltins:
    def test_concat(self) -> None:
        assert _BUILTINS["CONCAT"](["Ada", " ", "Lovelace"]) == "Ada Lovelace"

    def test_concat_numbers(self) -> None:
        assert _BUILTINS["CONCAT"]([1.0, "-", 2.5]) == "1-2.5"

    def test_upper_lower(self) -> None:
        assert _BUILTINS["UPPER"](["abc"]) == "ABC"
        assert _BUILTINS["LOWER"](["ABC"]) == "abc"

    def test_trim_len(self) -> None:
        assert _BUILTINS["TRIM"](["  a   b "]) == "a b"
        assert _BUILTINS["LEN"](["abcd"]) == 4
