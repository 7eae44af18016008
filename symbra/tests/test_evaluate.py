"""Tests for numeric evaluation."""

import math

import pytest
from symbra import E, DomainError, evaluate, numeric_value, sym


class TestEvaluate:
    """Tests for evaluate()."""

    def test_substitution(self):
        """Symbols take their values from the environment."""
        result = evaluate(E("(+ (sin x) 1)"), {"x": 0.5})
        assert result.is_number
        assert math.isclose(float(result.value), math.sin(0.5) + 1)

    def test_symbol_keys(self):
        """Environment keys may be symbol expressions."""
        assert numeric_value(E("(* 2 y)"), {sym("y"): 3}) == 6

    def test_pi(self):
        """pi evaluates to math.pi."""
        assert math.isclose(numeric_value(E("(cos pi)")).real, -1.0)

    def test_partial_evaluation(self):
        """Unbound symbols stay symbolic."""
        result = evaluate(E("(+ x (* 2 3))"))
        assert not result.is_number

    def test_nested_substitution(self):
        """Environment values may themselves be expressions."""
        assert numeric_value(E("(^ x 2)"), {"x": E("(+ y 1)"), "y": 2}) == 9

    def test_complex_result(self):
        """Complex values are supported."""
        assert numeric_value(E("(* I I)")) == -1

    def test_piecewise(self):
        """Piecewise picks the first true branch."""
        expr = E("(Piecewise -1 (< x 0) 1)")
        assert numeric_value(expr, {"x": -2}) == -1
        assert numeric_value(expr, {"x": 2}) == 1

    def test_free_symbols_raise_in_numeric_value(self):
        """numeric_value needs every symbol bound."""
        with pytest.raises(ValueError):
            numeric_value(E("(+ x 1)"))


class TestDomain:
    """Tests for domain handling."""

    def test_lenient_by_default(self):
        """Out-of-domain applications stay unevaluated."""
        result = evaluate(E("(ln x)"), {"x": -1})
        assert result == E("(ln -1.0)")

    def test_strict_raises(self):
        """strict=True raises DomainError."""
        with pytest.raises(DomainError) as info:
            evaluate(E("(ln x)"), {"x": -1}, strict=True)
        assert info.value.function == "ln"

    def test_domain_error_is_value_error(self):
        """DomainError is a ValueError."""
        with pytest.raises(ValueError):
            numeric_value(E("(sqrt -4)"))

    def test_division_by_zero(self):
        """0^-1 is a domain failure."""
        with pytest.raises(DomainError):
            numeric_value(E("(^ 0 -1)"))
