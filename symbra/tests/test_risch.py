"""Tests for the Risch decision procedure."""

import math

import pytest
from symbra import (
    E, Elementary, ProvenNonElementary, ResourceExhausted, Unresolved, canonicalize, mul, sym,
)
from symbra.expr import walk
from symbra.evaluate import close, numeric_value
from symbra.integration import IntegrationBudget
from symbra.number import Number
from symbra.poly import RationalFunction, poly_in
from symbra.risch import (
    ExtensionKind, ExtensionTower, UnsupportedExtension, merge_exponentials,
    nested_transcendental, prepare, risch_integrate, solve_rde, to_exponentials,
)


def C(s):
    return canonicalize(E(s))


class TestExtensionTower:
    """Tests for building differential extensions."""

    def test_exponential_generator(self):
        """exp(x^2) has derivative 2 x t."""
        tower = ExtensionTower.build(C("(* x (exp (^ x 2)))"), "x")
        assert len(tower) == 1
        assert tower[0].kind is ExtensionKind.EXPONENTIAL
        assert tower[0].derivative == canonicalize(mul(2, sym("_t0"), sym("x")))

    def test_logarithmic_generator(self):
        """ln(x) has derivative 1/x."""
        tower = ExtensionTower.build(C("(^ (ln x) -1)"), "x")
        assert tower.kinds == [ExtensionKind.LOGARITHMIC]
        assert tower[0].derivative == C("(^ x -1)")
        assert not tower.is_nested()

    def test_nested_generators(self):
        """exp(exp(x)) stacks two exponentials, innermost first."""
        tower = ExtensionTower.build(C("(exp (exp x))"), "x")
        assert [ext.origin for ext in tower] == [C("(exp x)"), C("(exp (exp x))")]
        assert tower.is_nested()

    def test_rewrite_and_restore(self):
        """Generators map to symbols and back."""
        expr = C("(+ (ln x) (^ (ln x) 2))")
        tower = ExtensionTower.build(expr, "x")
        rewritten = tower.rewrite(expr)
        assert C("(ln x)") not in list(walk(rewritten))
        assert canonicalize(tower.restore(rewritten)) == expr

    def test_unsupported_function(self):
        """Only exp and ln are generators."""
        with pytest.raises(UnsupportedExtension):
            ExtensionTower.build(E("(f x)"), "x")

    def test_radical_is_algebraic(self):
        """Fractional powers are algebraic generators."""
        tower = ExtensionTower.build(C("(^ (+ x 1) 1/2)"), "x")
        assert tower.kinds == [ExtensionKind.ALGEBRAIC]

    def test_flat_build_rejects_nesting(self):
        """With nested=False a nested tower is refused before differentiating."""
        with pytest.raises(UnsupportedExtension):
            ExtensionTower.build(C("(exp (exp x))"), "x", nested=False)

    def test_build_ticks_budget(self):
        """Each generator costs one budget step."""
        budget = IntegrationBudget(max_depth=5, max_steps=0)
        with pytest.raises(ResourceExhausted):
            ExtensionTower.build(C("(exp x)"), "x", budget=budget)
        assert len(ExtensionTower.build(C("(exp x)"), "x", budget=IntegrationBudget(5, 1))) == 1

    @pytest.mark.parametrize("integrand, nested", [
        ("(exp (exp x))", True),
        ("(sin (cos x))", True),
        ("(^ x x)", True),
        ("(* (exp x) (ln x))", False),
        ("(^ 2 x)", False),
        ("(* x (exp (^ x 2)))", False),
    ])
    def test_nested_transcendental(self, integrand, nested):
        """Functions of x inside functions of x are found."""
        assert (nested_transcendental(C(integrand), "x") is not None) == nested


class TestRewriting:
    """Tests for the exponential normal form."""

    @pytest.mark.parametrize("name", ["sin", "cos", "tan", "sinh", "cosh", "tanh"])
    def test_trig_as_exponentials(self, name):
        """The rewritten form has the same values."""
        expr = E(f"({name} x)")
        rewritten = to_exponentials(expr, "x")
        assert "exp" in str(rewritten)
        for x in (0.2, 0.9):
            assert close(numeric_value(rewritten, {"x": x}), numeric_value(expr, {"x": x}))

    def test_variable_exponent(self):
        """a^g becomes exp(g ln a)."""
        assert canonicalize(to_exponentials(E("(^ 2 x)"), "x")) == C("(exp (* x (ln 2)))")

    def test_merge(self):
        """Exponential factors of a term combine."""
        assert merge_exponentials(E("(* (exp x) (exp (* 2 x)))")) == C("(exp (* 3 x))")

    def test_prepare_expands(self):
        """Products are expanded to one exponential per term."""
        prepared = prepare(E("(* (+ x 1) (exp x))"), "x")
        assert prepared == C("(+ (exp x) (* x (exp x)))")


class TestRDE:
    """Tests for the Risch differential equation."""

    def test_polynomial_solution(self):
        """R' + 2x R = x has R = 1/2."""
        solution = solve_rde(RationalFunction(poly_in([0, 1])), poly_in([0, 2]))
        assert solution == RationalFunction(poly_in([Number(1) / 2]))

    def test_rational_solution(self):
        """R' + R = -1/x^2 + 1/x has R = 1/x."""
        f = RationalFunction(poly_in([-1, 1]), poly_in([0, 0, 1]))
        solution = solve_rde(f, poly_in([1]))
        assert solution == RationalFunction(poly_in([1]), poly_in([0, 1]))

    def test_no_solution(self):
        """R' + 2x R = 1 has no rational solution."""
        assert solve_rde(RationalFunction(poly_in([1])), poly_in([0, 2])) is None


class TestDecisions:
    """Tests for risch_integrate outcomes."""

    def test_exponential_elementary(self):
        """x exp(x^2) integrates to exp(x^2)/2."""
        assert risch_integrate(E("(* x (exp (^ x 2)))"), "x") == Elementary(
            C("(* 1/2 (exp (^ x 2)))"))

    def test_exponential_nonelementary(self):
        """exp(x^2) is proven nonelementary."""
        assert isinstance(risch_integrate(E("(exp (^ x 2))"), "x"), ProvenNonElementary)

    def test_nonelementary_reason_is_canonical(self):
        """The reason names the exponent in canonical form."""
        outcome = risch_integrate(E("(exp (^ x 2))"), "x")
        assert "exp((^ x 2))" in outcome.reason
        assert "(* 1 " not in outcome.reason

    def test_rewritten_size_limit(self):
        """An integrand that grows past max_size when rewritten is exhausted."""
        outcome = risch_integrate(C("(* (sin x) (^ x -1))"), "x", max_size=5)
        assert isinstance(outcome, Unresolved)
        assert outcome.exhausted

    def test_trigonometric_via_exponentials(self):
        """sin(x)/x is proven nonelementary through complex exponentials."""
        assert isinstance(risch_integrate(C("(* (sin x) (^ x -1))"), "x"), ProvenNonElementary)

    def test_trigonometric_elementary(self):
        """x cos(x) comes back as a real expression."""
        outcome = risch_integrate(E("(* x (cos x))"), "x")
        assert outcome.is_elementary
        for x in (0.4, 1.3):
            value = numeric_value(outcome.antiderivative, {"x": x}) - numeric_value(
                outcome.antiderivative, {"x": 0.0})
            expected = x * math.sin(x) + math.cos(x) - 1
            assert close(value, expected)

    def test_rational_without_tower(self):
        """Plain rational functions need no tower."""
        assert risch_integrate(E("(^ x -1)"), "x") == Elementary(E("(ln x)"))

    def test_log_case_elementary(self):
        """1/(x ln x) integrates to ln(ln x)."""
        assert risch_integrate(E("(* (^ x -1) (^ (ln x) -1))"), "x") == Elementary(
            E("(ln (ln x))"))

    def test_log_polynomial(self):
        """ln(x)^2 integrates through the polynomial recurrence."""
        outcome = risch_integrate(E("(^ (ln x) 2)"), "x")
        assert outcome.is_elementary
        assert outcome.antiderivative == C(
            "(+ (* x (^ (ln x) 2)) (* -2 x (ln x)) (* 2 x))")

    def test_log_case_nonelementary(self):
        """1/ln(x) and ln(x)/(x + 1) are proven nonelementary."""
        assert isinstance(risch_integrate(E("(^ (ln x) -1)"), "x"), ProvenNonElementary)
        assert isinstance(risch_integrate(C("(* (ln x) (^ (+ x 1) -1))"), "x"),
                          ProvenNonElementary)

    @pytest.mark.parametrize("integrand", [
        "(^ x 1/2)",
        "(exp (exp x))",
        "(* (exp x) (ln x))",
        "(* (ln x) (ln (+ x 1)))",
    ])
    def test_unresolved_towers(self, integrand):
        """Algebraic, nested, mixed and multi-log towers are not decided."""
        outcome = risch_integrate(E(integrand), "x")
        assert isinstance(outcome, Unresolved)
        assert not outcome.exhausted
