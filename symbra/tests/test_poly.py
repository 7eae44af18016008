"""Tests for polynomials and rational functions."""

import pytest
from symbra import E, canonicalize, sym
from symbra.number import Number
from symbra.poly import (
    NotPolynomial, Poly, RationalFunction, is_polynomial, is_rational_function,
    poly_from_expr, poly_in, poly_to_expr, rational_from_expr, rational_to_expr,
)


def P(*coeffs):
    return poly_in(coeffs)


class TestPolyArithmetic:
    """Tests for Poly construction and arithmetic."""

    def test_trailing_zeros_dropped(self):
        """The degree ignores zero leading coefficients."""
        assert P(1, 2, 0, 0).degree() == 1
        assert P().degree() == -1
        assert not P(0)

    def test_add_mul(self):
        """(1 + t)(1 - t) = 1 - t^2."""
        assert P(1, 1) * P(1, -1) == P(1, 0, -1)
        assert P(1, 1) + P(0, -1) == P(1)
        assert P(1, 1) * 3 == P(3, 3)

    def test_power(self):
        """(1 + t)^3 expands binomially."""
        assert P(1, 1) ** 3 == P(1, 3, 3, 1)
        with pytest.raises(ValueError):
            P(1, 1) ** -1

    def test_divmod(self):
        """Division with remainder."""
        q, r = divmod(P(1, 0, 1), P(1, 1))
        assert q == P(-1, 1)
        assert r == P(2)
        assert q * P(1, 1) + r == P(1, 0, 1)

    def test_exquo(self):
        """exquo raises when the division is inexact."""
        assert P(-1, 0, 1).exquo(P(1, 1)) == P(-1, 1)
        with pytest.raises(ValueError):
            P(1, 0, 1).exquo(P(1, 1))
        with pytest.raises(ZeroDivisionError):
            divmod(P(1), P())

    def test_derivative_and_evaluation(self):
        """Formal derivative and Horner evaluation."""
        p = P(1, 2, 3)
        assert p.derivative() == P(2, 6)
        assert p(Number(2)) == 17

    def test_immutable(self):
        """Polynomials cannot be modified."""
        with pytest.raises(AttributeError):
            P(1).coeffs = ()


class TestEuclid:
    """Tests for gcd and related algorithms."""

    def test_gcd_is_monic(self):
        """gcd(2t^2 - 2, 3t + 3) = t + 1."""
        assert P(-2, 0, 2).gcd(P(3, 3)) == P(1, 1)

    def test_gcdex(self):
        """s a + t b == g."""
        a, b = P(-1, 0, 1), P(2, 1)
        s, t, g = a.gcdex(b)
        assert g == P(1)
        assert s * a + t * b == g

    def test_diophantine(self):
        """s a + t b == c with deg s < deg b."""
        a, b, c = P(0, 1), P(1, 1), P(5, 0, 3)
        s, t = a.diophantine(b, c)
        assert s * a + t * b == c
        assert s.degree() < b.degree()

    def test_diophantine_needs_coprime(self):
        """Non-coprime inputs are rejected."""
        with pytest.raises(ValueError):
            P(-1, 0, 1).diophantine(P(1, 1), P(1))

    def test_squarefree_factorization(self):
        """2 (t - 1)^2 (t + 2) factors by multiplicity."""
        p = P(2) * P(-1, 1) ** 2 * P(2, 1)
        lc, factors = p.sqf_list()
        assert lc == 2
        assert factors == [(P(2, 1), 1), (P(-1, 1), 2)]
        assert not p.is_squarefree()
        assert P(-1, 0, 1).is_squarefree()

    def test_rational_roots(self):
        """Distinct rational roots in ascending order."""
        p = P(0, -1, 0, 4)
        assert p.rational_roots() == [Number(-1) / 2, Number(0), Number(1) / 2]
        assert P(1, 0, 1).rational_roots() == []

    def test_rational_roots_of_cubic(self):
        """Cubics search the divisors of the end coefficients."""
        assert P(-8, 0, 0, 1).rational_roots() == [Number(2)]
        assert P(-6, 11, -6, 1).rational_roots() == [Number(1), Number(2), Number(3)]

    def test_rational_roots_with_huge_coefficients(self):
        """Big integers never go through floats."""
        assert P(10 ** 400, 0, 1).rational_roots() == []
        assert P(-(10 ** 40), 0, 1).rational_roots() == [Number(-(10 ** 20)), Number(10 ** 20)]
        assert P(3, -(10 ** 30)).rational_roots() == [Number(3) / 10 ** 30]

    def test_rational_root_search_gives_up(self):
        """Too many divisor candidates returns None instead of searching."""
        assert P(10 ** 40 + 1, 0, 0, 1).rational_roots() is None


class TestRationalFunction:
    """Tests for reduced rational functions."""

    def test_reduced_with_monic_denominator(self):
        """(t^2 - 1) / (2t + 2) = (t - 1)/2."""
        r = RationalFunction(P(-1, 0, 1), P(2, 2))
        assert r.den == P(1)
        assert r.num == P(Number(-1) / 2, Number(1) / 2)
        assert r.is_polynomial()

    def test_field_operations(self):
        """Sums and quotients stay reduced."""
        a = RationalFunction(P(1), P(0, 1))
        b = RationalFunction(P(1), P(1, 1))
        assert a - b == RationalFunction(P(1), P(0, 1, 1))
        assert (a / a) == 1
        with pytest.raises(ZeroDivisionError):
            a / RationalFunction(P())

    def test_derivative(self):
        """d/dt 1/t = -1/t^2."""
        assert RationalFunction(P(1), P(0, 1)).derivative() == RationalFunction(P(-1), P(0, 0, 1))

    def test_as_coefficients(self):
        """Polynomials over Q(x) use rational functions as coefficients."""
        zero = RationalFunction(P())
        inv_x = RationalFunction(P(1), P(0, 1))
        p = Poly([inv_x, zero + 1], zero)
        assert (p * p).coeff(0) == RationalFunction(P(1), P(0, 0, 1))


class TestConversion:
    """Tests for conversion from and to expressions."""

    def test_poly_from_expr(self):
        """Canonical polynomials convert."""
        p = poly_from_expr(canonicalize(E("(* 3 (^ (+ x 1) 2))")), "x")
        assert p == P(3, 6, 3)

    def test_symbolic_coefficient_rejected(self):
        """Only exact numbers are default coefficients."""
        with pytest.raises(NotPolynomial):
            poly_from_expr(E("(* y x)"), "x")
        assert not is_polynomial(E("(sin x)"), "x")
        assert not is_polynomial(E("(^ x -1)"), "x")

    def test_rational_from_expr(self):
        """Negative integer powers give rational functions."""
        r = rational_from_expr(canonicalize(E("(+ x (^ x -1))")), "x")
        assert r == RationalFunction(P(1, 0, 1), P(0, 1))
        assert is_rational_function(E("(^ (+ x 1) -2)"), "x")
        assert not is_rational_function(E("(^ x 1/2)"), "x")

    def test_back_to_expressions(self):
        """Conversion back gives an equal canonical expression."""
        x = sym("x")
        assert canonicalize(poly_to_expr(P(1, 0, 2), x)) == canonicalize(E("(+ 1 (* 2 (^ x 2)))"))
        r = RationalFunction(P(1), P(1, 1))
        assert canonicalize(rational_to_expr(r, x)) == canonicalize(E("(^ (+ 1 x) -1)"))
