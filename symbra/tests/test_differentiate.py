"""Tests for symbolic differentiation."""

import random

import pytest
from symbra import E, canonicalize, derivative, gradient, add, mul, num, sym, func, pow_
from symbra.evaluate import close, numeric_value
from symbra.symbols import Commutativity


def C(s):
    return canonicalize(E(s))


def D(s, var="x", order=1):
    return derivative(E(s), var, order)


class TestBasicRules:
    """Tests for sums, products and powers."""

    def test_chain_rule(self):
        """d/dx sin(x^2) = 2 x cos(x^2)."""
        assert D("(sin (^ x 2))") == C("(* 2 x (cos (^ x 2)))")

    def test_constant_and_variable(self):
        """Constants vanish and x' = 1."""
        assert D("7") == num(0)
        assert D("y") == num(0)
        assert D("x") == num(1)

    def test_power_rule(self):
        """d/dx x^n = n x^(n-1)."""
        assert D("(^ x 5)") == C("(* 5 (^ x 4))")
        assert D("(^ x -1)") == C("(* -1 (^ x -2))")

    def test_product_rule(self):
        """d/dx x sin x = sin x + x cos x."""
        assert D("(* x (sin x))") == C("(+ (sin x) (* x (cos x)))")

    def test_exponential_base(self):
        """d/dx 2^x = 2^x ln 2."""
        assert D("(^ 2 x)") == C("(* (^ 2 x) (ln 2))")

    def test_general_power(self):
        """d/dx x^x = x^x (ln x + 1)."""
        assert D("(^ x x)") == C("(* (^ x x) (+ (ln x) 1))")

    def test_registry_derivatives(self):
        """Registry rules cover the elementary functions."""
        assert D("(exp (* 3 x))") == C("(* 3 (exp (* 3 x)))")
        assert D("(ln x)") == C("(^ x -1)")
        assert D("(atan x)") == C("(^ (+ 1 (^ x 2)) -1)")

    def test_multivariate(self):
        """Other symbols are constants."""
        assert D("(* x y)", "y") == E("x")
        assert gradient(E("(* x y)"), ["x", "y"]) == [E("y"), E("x")]


class TestOrder:
    """Tests for higher and invalid orders."""

    def test_second_derivative(self):
        """Higher orders iterate."""
        assert D("(sin x)", order=2) == C("(* -1 (sin x))")
        assert D("(^ x 3)", order=3) == num(6)

    def test_order_zero(self):
        """Order zero returns the canonical input."""
        assert D("(+ x x)", order=0) == C("(* 2 x)")

    def test_negative_order(self):
        """Negative orders are rejected."""
        with pytest.raises(ValueError):
            D("x", order=-1)


class TestUnevaluated:
    """Tests for nodes without a closed-form derivative."""

    def test_unknown_function(self):
        """Unknown functions give a Derivative node."""
        assert D("(f x)") == E("(Derivative (f x) x 1)")

    def test_derivative_accumulates(self):
        """Differentiating a Derivative raises its order."""
        assert D("(f x)", order=2) == E("(Derivative (f x) x 2)")

    def test_unknown_function_chain(self):
        """Unknown outer functions stay whole."""
        assert D("(f (^ x 2))") == E("(Derivative (f (^ x 2)) x 1)")

    def test_integral_of_same_variable(self):
        """d/dx of an indefinite integral in x is the integrand."""
        assert D("(Integral (f x) x)") == E("(f x)")

    def test_containers_elementwise(self):
        """Matrices and sets differentiate element-wise."""
        assert D("(Matrix 1 2 x (^ x 2))") == C("(Matrix 1 2 1 (* 2 x))")


class TestNonCommutative:
    """Tests for products of non-commutative factors."""

    def test_constant_matrix_factor(self):
        """A constant matrix factor stays in place."""
        m = sym("M", Commutativity.MATRIX)
        result = derivative(mul(m, pow_(sym("t"), 2)), "t")
        assert result == canonicalize(mul(2, sym("t"), m))

    def test_factor_order_kept(self):
        """d/dt (t A B) keeps A before B."""
        a = sym("A", Commutativity.MATRIX)
        b = sym("B", Commutativity.MATRIX)
        result = derivative(mul(sym("t"), a, b), "t")
        assert result == canonicalize(mul(a, b))
        assert result != canonicalize(mul(b, a))


def random_expr(rng, depth=3):
    if depth == 0 or rng.random() < 0.3:
        return rng.choice([num(rng.randint(1, 2)), sym("x"), sym("y")])
    choice = rng.randrange(5)
    if choice == 0:
        return add(random_expr(rng, depth - 1), random_expr(rng, depth - 1))
    if choice == 1:
        return mul(random_expr(rng, depth - 1), random_expr(rng, depth - 1))
    if choice == 2:
        return pow_(random_expr(rng, depth - 1), rng.randint(1, 2))
    if choice == 3:
        return func("exp", rng.choice([sym("x"), mul(-1, sym("x")), sym("y")]))
    return func(rng.choice(["sin", "cos"]), random_expr(rng, depth - 1))


class TestProperties:
    """Seeded property checks."""

    @pytest.mark.parametrize("seed", range(20))
    def test_linearity(self, seed):
        """d(a f + b g) == a df + b dg."""
        rng = random.Random(seed)
        f, g = random_expr(rng), random_expr(rng)
        lhs = derivative(add(mul(3, f), mul(-2, g)), "x")
        rhs = canonicalize(add(mul(3, derivative(f, "x")), mul(-2, derivative(g, "x"))))
        env = {"x": 0.4, "y": 0.9}
        assert close(numeric_value(lhs, env), numeric_value(rhs, env), rel_tol=1e-7, abs_tol=1e-7)

    @pytest.mark.parametrize("seed", range(20))
    def test_matches_finite_difference(self, seed):
        """The derivative agrees with a central difference."""
        rng = random.Random(100 + seed)
        f = random_expr(rng)
        d = derivative(f, "x")
        h = 1e-6
        at = lambda v: numeric_value(f, {"x": v, "y": 0.9})
        estimate = (at(0.4 + h) - at(0.4 - h)) / (2 * h)
        assert close(numeric_value(d, {"x": 0.4, "y": 0.9}), estimate, rel_tol=1e-4, abs_tol=1e-4)

    @pytest.mark.parametrize("seed", range(10))
    def test_result_is_canonical(self, seed):
        """Derivatives are returned in canonical form."""
        d = derivative(random_expr(random.Random(200 + seed)), "x")
        assert canonicalize(d) == d
