"""Tests for the function registry."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
import symbra.registry
from symbra import (
    E, FunctionInfo, FunctionRegistry, RegistryFrozenError, canonicalize, derivative,
    get_registry, integrate, num, register_function,
)
from symbra.evaluate import numeric_value
from symbra.registry import template

SQUARE = FunctionInfo(
    name="sq",
    family="algebraic",
    parity="even",
    special_values={"0": "0", "1": "1"},
    derivatives=(template("(* 2 :u)"),),
    antiderivative=template("(* 1/3 (^ :u 3))"),
    evaluator=lambda z: z * z,
)


class TestDefaultRegistry:
    """Tests for the built-in functions."""

    def test_elementary_functions_present(self):
        """The usual elementary functions are registered."""
        registry = get_registry()
        for name in ["sin", "cos", "tan", "exp", "ln", "sqrt", "atan", "sinh", "erf"]:
            assert name in registry

    def test_same_instance(self):
        """get_registry() returns one shared registry."""
        assert get_registry() is get_registry()

    def test_concurrent_first_use(self, monkeypatch):
        """Threads racing to build the registry all get one instance."""
        monkeypatch.setattr(symbra.registry, "_default", None)
        workers = 12
        barrier = threading.Barrier(workers)

        def build(_):
            barrier.wait()
            return get_registry()

        with ThreadPoolExecutor(max_workers=workers) as pool:
            found = list(pool.map(build, range(workers)))
        assert all(r is found[0] for r in found)
        assert found[0] is get_registry()
        assert "sin" in found[0]

    def test_immutable(self):
        """The registry cannot be modified in place."""
        with pytest.raises(AttributeError):
            get_registry().extra = 1

    def test_frozen_after_first_use(self):
        """register_function fails once the default registry exists."""
        get_registry()
        with pytest.raises(RegistryFrozenError):
            register_function("late", derivatives=(template("(late :u)"),))

    def test_special_value_table(self):
        """Special values parse into expressions."""
        table = get_registry()["cos"].special_value_table()
        assert table[E("0")] == E("1")


class TestFunctionInfo:
    """Tests for FunctionInfo validation."""

    def test_bad_parity(self):
        """Parity must be odd, even or None."""
        with pytest.raises(ValueError):
            FunctionInfo(name="f", parity="sideways")

    def test_derivative_count(self):
        """One derivative rule per argument."""
        with pytest.raises(ValueError):
            FunctionInfo(name="f", arity=2, derivatives=(template("(g :u)"),))

    def test_template_placeholder_check(self):
        """Templates refer only to given arguments."""
        rule = template("(* :u :v)")
        with pytest.raises(ValueError):
            rule((E("x"),))

    def test_domain(self):
        """in_domain applies the domain test."""
        ln = get_registry()["ln"]
        assert ln.in_domain(2.0)
        assert not ln.in_domain(-1.0)


class TestExtendedRegistry:
    """Tests for injected registries."""

    def test_extended_is_new(self):
        """extended() leaves the original untouched."""
        registry = get_registry().extended(SQUARE)
        assert isinstance(registry, FunctionRegistry)
        assert "sq" in registry
        assert "sq" not in get_registry()
        assert len(registry) == len(get_registry()) + 1

    def test_canonicalize_uses_registry(self):
        """Special values and parity come from the given registry."""
        registry = get_registry().extended(SQUARE)
        assert canonicalize(E("(sq 0)"), registry=registry) == num(0)
        assert canonicalize(E("(sq (* -1 x))"), registry=registry) == E("(sq x)")
        assert canonicalize(E("(sq 0)")) == E("(sq 0)")

    def test_derivative_uses_registry(self):
        """The chain rule reads the registered partial derivative."""
        registry = get_registry().extended(SQUARE)
        assert derivative(E("(sq (sin x))"), "x", registry=registry) == canonicalize(
            E("(* 2 (sin x) (cos x))"))

    def test_unknown_function_derivative(self):
        """Without a rule the derivative stays unevaluated."""
        assert derivative(E("(sq x)"), "x") == E("(Derivative (sq x) x 1)")

    def test_integrate_uses_registry(self):
        """Registered antiderivatives serve the lookup strategy."""
        registry = get_registry().extended(SQUARE)
        outcome = integrate(E("(sq x)"), "x", registry=registry)
        assert outcome.is_elementary
        assert outcome.antiderivative == canonicalize(E("(* 1/3 (^ x 3))"))

    def test_evaluate_uses_registry(self):
        """Registered evaluators serve numeric evaluation."""
        registry = get_registry().extended(SQUARE)
        assert numeric_value(E("(sq 3)"), registry=registry) == 9
