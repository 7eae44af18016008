"""
Dense univariate polynomials and rational functions.

Poly is generic over its coefficient field: coefficients only need + - * /
and equality, so the same code serves Q[x] (coefficients are Numbers,
including exact complex ones) and K[t] for a differential field K such as
Q(x) (coefficients are RationalFunctions).

    >>> p = poly_from_expr(E("(+ (^ x 2) -1)"), "x")
    >>> p.sqf_list()
    (Number(1), [(Poly([-1, 0, 1]), 1)])
    >>> p.rational_roots()
    [Number(-1), Number(1)]

Conversion from expressions raises NotPolynomial when the input is not a
polynomial (or rational function) in the variable.
"""

from fractions import Fraction
from math import gcd as igcd, isqrt
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from .expr import Expr, Kind, ZERO, _as_symbol, add, free_in, mul, num, pow_
from .number import Number


class NotPolynomial(ValueError):
    """The expression is not a polynomial or rational function in the variable."""


# ============================================================
# Polynomials
# ============================================================

class Poly:
    """
    Immutable polynomial with coefficients listed from degree 0 upward.

    The zero polynomial has no coefficients and degree -1.
    """

    __slots__ = ("coeffs", "zero")

    def __init__(self, coeffs: Iterable = (), zero=None):
        coeffs = list(coeffs)
        if zero is None:
            zero = coeffs[0] * 0 if coeffs else Number(0)
        while coeffs and coeffs[-1] == zero:
            coeffs.pop()
        object.__setattr__(self, "coeffs", tuple(coeffs))
        object.__setattr__(self, "zero", zero)

    def __setattr__(self, key, value):
        raise AttributeError("Poly is immutable")

    # Construction helpers

    @property
    def one(self):
        return self.zero + 1

    def constant(self, c) -> "Poly":
        return Poly([c], self.zero)

    def monomial(self, c, n: int) -> "Poly":
        """c * t^n"""
        return Poly([self.zero] * n + [c], self.zero)

    @property
    def x(self) -> "Poly":
        return self.monomial(self.one, 1)

    # Inspection

    def degree(self) -> int:
        return len(self.coeffs) - 1

    def lc(self):
        return self.coeffs[-1] if self.coeffs else self.zero

    def coeff(self, n: int):
        return self.coeffs[n] if 0 <= n < len(self.coeffs) else self.zero

    def is_zero(self) -> bool:
        return not self.coeffs

    def is_constant(self) -> bool:
        return len(self.coeffs) <= 1

    def __bool__(self) -> bool:
        return bool(self.coeffs)

    def __eq__(self, other):
        if isinstance(other, Poly):
            return self.coeffs == other.coeffs
        if self.is_constant():
            return self.coeff(0) == other
        return False

    def __hash__(self):
        return hash(self.coeffs)

    def __repr__(self) -> str:
        return f"Poly([{', '.join(str(c) for c in self.coeffs)}])"

    # Arithmetic

    def _lift(self, other) -> "Poly":
        return other if isinstance(other, Poly) else self.constant(other)

    def __add__(self, other):
        other = self._lift(other)
        n = max(len(self.coeffs), len(other.coeffs))
        return Poly([self.coeff(i) + other.coeff(i) for i in range(n)], self.zero)

    __radd__ = __add__

    def __neg__(self):
        return Poly([-c for c in self.coeffs], self.zero)

    def __sub__(self, other):
        return self + (-self._lift(other))

    def __rsub__(self, other):
        return self._lift(other) - self

    def __mul__(self, other):
        if not isinstance(other, Poly):
            return Poly([c * other for c in self.coeffs], self.zero)
        if not self.coeffs or not other.coeffs:
            return Poly([], self.zero)
        out = [self.zero] * (len(self.coeffs) + len(other.coeffs) - 1)
        for i, a in enumerate(self.coeffs):
            if a == self.zero:
                continue
            for j, b in enumerate(other.coeffs):
                out[i + j] = out[i + j] + a * b
        return Poly(out, self.zero)

    __rmul__ = __mul__

    def __pow__(self, n: int) -> "Poly":
        if n < 0:
            raise ValueError("negative polynomial power")
        result = self.constant(self.one)
        base = self
        while n:
            if n & 1:
                result = result * base
            base = base * base
            n >>= 1
        return result

    def __divmod__(self, other: "Poly") -> Tuple["Poly", "Poly"]:
        other = self._lift(other)
        if other.is_zero():
            raise ZeroDivisionError("polynomial division by zero")
        q = [self.zero] * max(len(self.coeffs) - len(other.coeffs) + 1, 0)
        r = list(self.coeffs)
        d, lc = other.degree(), other.lc()
        for k in range(len(r) - 1 - d, -1, -1):
            c = r[k + d] / lc
            q[k] = c
            if c == self.zero:
                continue
            for j, b in enumerate(other.coeffs):
                r[k + j] = r[k + j] - c * b
        return Poly(q, self.zero), Poly(r[:d] if d > 0 else [], self.zero)

    def __floordiv__(self, other):
        return divmod(self, other)[0]

    def __mod__(self, other):
        return divmod(self, other)[1]

    def exquo(self, other: "Poly") -> "Poly":
        """Exact quotient; raises ValueError when other does not divide self."""
        q, r = divmod(self, other)
        if r:
            raise ValueError(f"{other} does not divide {self}")
        return q

    def monic(self) -> "Poly":
        if self.is_zero():
            return self
        lc = self.lc()
        return Poly([c / lc for c in self.coeffs], self.zero)

    def derivative(self) -> "Poly":
        """Formal derivative d/dt."""
        return Poly([c * i for i, c in enumerate(self.coeffs)][1:], self.zero)

    def map_coeffs(self, f: Callable) -> "Poly":
        return Poly([f(c) for c in self.coeffs], self.zero)

    def __call__(self, value):
        """Evaluate by Horner's rule."""
        result = self.zero
        for c in reversed(self.coeffs):
            result = result * value + c
        return result

    # Euclidean algorithms

    def gcd(self, other: "Poly") -> "Poly":
        """Monic greatest common divisor."""
        a, b = self, other
        while b:
            a, b = b, a % b
        return a.monic()

    def gcdex(self, other: "Poly") -> Tuple["Poly", "Poly", "Poly"]:
        """(s, t, g) with s*self + t*other == g == gcd(self, other), g monic."""
        r0, r1 = self, other
        s0, s1 = self.constant(self.one), Poly([], self.zero)
        t0, t1 = Poly([], self.zero), self.constant(self.one)
        while r1:
            q, r = divmod(r0, r1)
            r0, r1 = r1, r
            s0, s1 = s1, s0 - q * s1
            t0, t1 = t1, t0 - q * t1
        if r0.is_zero():
            return s0, t0, r0
        lc = r0.lc()
        inv = self.one / lc
        return s0 * inv, t0 * inv, r0 * inv

    def diophantine(self, other: "Poly", c: "Poly") -> Tuple["Poly", "Poly"]:
        """
        Solve s*self + t*other == c with deg(s) < deg(other).

        self and other must be coprime.
        """
        s, t, g = self.gcdex(other)
        if g.degree() != 0:
            raise ValueError("diophantine needs coprime polynomials")
        s, t = s * c, t * c
        if other.degree() > 0:
            q, s = divmod(s, other)
            t = t + q * self
        return s, t

    def sqf_list(self) -> Tuple[object, List[Tuple["Poly", int]]]:
        """
        Squarefree factorization (Yun): self == lc * prod(f_i ** i).

        Returns (lc, [(f_i, i), ...]) with monic non-constant f_i.
        """
        if self.degree() < 1:
            return self.lc(), []
        lc = self.lc()
        f = self.monic()
        factors: List[Tuple[Poly, int]] = []
        fp = f.derivative()
        a = f.gcd(fp)
        b = f // a
        c = fp // a
        d = c - b.derivative()
        i = 1
        while b.degree() > 0:
            a = b.gcd(d)
            if a.degree() > 0:
                factors.append((a, i))
            b = b // a
            c = d // a
            d = c - b.derivative()
            i += 1
        return lc, factors

    def is_squarefree(self) -> bool:
        return self.gcd(self.derivative()).degree() < 1

    def rational_roots(self) -> Optional[List[Number]]:
        """
        Distinct rational roots, ascending; coefficients must be real rationals.

        Linear and quadratic polynomials are solved directly. Higher degrees
        search the divisors of the end coefficients and give up, returning
        None, when a coefficient has too many candidates to try.
        """
        coeffs = [_as_fraction(c) for c in self.coeffs]
        while coeffs and coeffs[0] == 0:
            coeffs.pop(0)
        roots = set()
        if len(coeffs) < len(self.coeffs):
            roots.add(Fraction(0))
        if len(coeffs) < 2:
            return [Number(r) for r in sorted(roots)]
        scale = 1
        for c in coeffs:
            scale = scale * c.denominator // igcd(scale, c.denominator)
        ints = [int(c * scale) for c in coeffs]
        if len(ints) == 2:
            roots.add(Fraction(-ints[0], ints[1]))
        elif len(ints) == 3:
            c, b, a = ints
            disc = b * b - 4 * a * c
            if disc >= 0 and isqrt(disc) ** 2 == disc:
                r = isqrt(disc)
                roots.update((Fraction(-b + r, 2 * a), Fraction(-b - r, 2 * a)))
        else:
            ps = _divisors(abs(ints[0]))
            qs = _divisors(abs(ints[-1]))
            if ps is None or qs is None:
                return None
            reduced = Poly([Fraction(c) for c in ints], Fraction(0))
            for p in ps:
                for q in qs:
                    for cand in (Fraction(p, q), Fraction(-p, q)):
                        if cand not in roots and reduced(cand) == 0:
                            roots.add(cand)
        return [Number(r) for r in sorted(roots)]


def _as_fraction(c) -> Fraction:
    if isinstance(c, Number):
        if not (c.is_real() and c.is_rational()):
            raise NotPolynomial(f"coefficient {c} is not rational")
        return Fraction(c.re)
    return Fraction(c)


# trial division stops at this bound on sqrt(n)
MAX_DIVISOR_SEARCH = 100_000


def _divisors(n: int) -> Optional[List[int]]:
    if n == 0:
        return [1]
    root = isqrt(n)
    if root > MAX_DIVISOR_SEARCH:
        return None
    small = [d for d in range(1, root + 1) if n % d == 0]
    return sorted(set(small + [n // d for d in small]))


# ============================================================
# Rational functions
# ============================================================

class RationalFunction:
    """
    num/den over a coefficient field, reduced, with monic denominator.

    Instances are field elements themselves, so Poly accepts them as
    coefficients.
    """

    __slots__ = ("num", "den")

    def __init__(self, num: Poly, den: Optional[Poly] = None):
        if den is None:
            den = num.constant(num.one)
        if den.is_zero():
            raise ZeroDivisionError("rational function with zero denominator")
        if num.is_zero():
            den = den.constant(den.one)
        else:
            g = num.gcd(den)
            if g.degree() > 0:
                num, den = num // g, den // g
        lc = den.lc()
        if lc != den.one:
            inv = den.one / lc
            num, den = num * inv, den * inv
        object.__setattr__(self, "num", num)
        object.__setattr__(self, "den", den)

    def __setattr__(self, key, value):
        raise AttributeError("RationalFunction is immutable")

    @classmethod
    def constant(cls, c, zero=None) -> "RationalFunction":
        zero = c * 0 if zero is None else zero
        return cls(Poly([c], zero))

    def _lift(self, other) -> "RationalFunction":
        if isinstance(other, RationalFunction):
            return other
        if isinstance(other, Poly):
            return RationalFunction(other)
        return RationalFunction(self.num.constant(self.num.zero + other))

    def is_zero(self) -> bool:
        return self.num.is_zero()

    def __bool__(self) -> bool:
        return not self.num.is_zero()

    def is_polynomial(self) -> bool:
        return self.den.degree() == 0

    def is_constant(self) -> bool:
        return self.is_polynomial() and self.num.degree() <= 0

    def __eq__(self, other):
        if not isinstance(other, (RationalFunction, Poly, int, Fraction, Number)):
            return NotImplemented
        other = self._lift(other)
        return self.num == other.num and self.den == other.den

    def __hash__(self):
        return hash((self.num, self.den))

    def __repr__(self) -> str:
        return f"RationalFunction({self.num!r}, {self.den!r})"

    def __add__(self, other):
        other = self._lift(other)
        return RationalFunction(self.num * other.den + other.num * self.den, self.den * other.den)

    __radd__ = __add__

    def __neg__(self):
        return RationalFunction(-self.num, self.den)

    def __sub__(self, other):
        return self + (-self._lift(other))

    def __rsub__(self, other):
        return self._lift(other) - self

    def __mul__(self, other):
        other = self._lift(other)
        return RationalFunction(self.num * other.num, self.den * other.den)

    __rmul__ = __mul__

    def __truediv__(self, other):
        other = self._lift(other)
        if other.is_zero():
            raise ZeroDivisionError("division by the zero rational function")
        return RationalFunction(self.num * other.den, self.den * other.num)

    def __rtruediv__(self, other):
        return self._lift(other) / self

    def __pow__(self, n: int):
        if n < 0:
            return RationalFunction(self.den ** -n, self.num ** -n)
        return RationalFunction(self.num ** n, self.den ** n)

    def derivative(self) -> "RationalFunction":
        """d/dx of num/den."""
        n, d = self.num, self.den
        return RationalFunction(n.derivative() * d - n * d.derivative(), d * d)


Field = Union[Number, RationalFunction]


# ============================================================
# Conversion from and to expressions
# ============================================================

def number_coefficient(expr: Expr) -> Number:
    """Coefficient converter accepting exact numbers only."""
    if expr.kind is Kind.NUMBER and expr.data.is_exact():
        return expr.data
    raise NotPolynomial(f"{expr} is not an exact numeric coefficient")


def poly_from_expr(expr: Expr, var, coefficient: Callable[[Expr], object] = number_coefficient,
                   zero=None) -> Poly:
    """
    Convert a canonical expression to a Poly in var.

    coefficient converts var-free sub-expressions to field elements; by
    default only exact numbers are accepted.
    """
    var = _as_symbol(var)
    zero = Number(0) if zero is None else zero
    one = zero + 1

    def loop(e: Expr) -> Poly:
        if e.kind is Kind.SYMBOL and e.data is var:
            return Poly([zero, one], zero)
        if not free_in(var, e):
            return Poly([coefficient(e)], zero)
        if e.kind is Kind.ADD:
            total = Poly([], zero)
            for t in e.args:
                total = total + loop(t)
            return total
        if e.kind is Kind.MUL:
            product = Poly([one], zero)
            for f in e.args:
                product = product * loop(f)
            return product
        if e.kind is Kind.POW:
            base, exp = e.args
            if exp.kind is Kind.NUMBER and exp.data.is_integer() and exp.data.re >= 0:
                return loop(base) ** exp.data.re
        raise NotPolynomial(f"{e} is not polynomial in {var.name}")

    return loop(expr)


def rational_from_expr(expr: Expr, var, coefficient: Callable[[Expr], object] = number_coefficient,
                       zero=None) -> RationalFunction:
    """Convert a canonical expression to a RationalFunction in var."""
    var = _as_symbol(var)
    zero = Number(0) if zero is None else zero

    def const(c) -> RationalFunction:
        return RationalFunction(Poly([c], zero))

    def loop(e: Expr) -> RationalFunction:
        if e.kind is Kind.SYMBOL and e.data is var:
            return RationalFunction(Poly([zero, zero + 1], zero))
        if not free_in(var, e):
            return const(coefficient(e))
        if e.kind is Kind.ADD:
            total = const(zero)
            for t in e.args:
                total = total + loop(t)
            return total
        if e.kind is Kind.MUL:
            product = const(zero + 1)
            for f in e.args:
                product = product * loop(f)
            return product
        if e.kind is Kind.POW:
            base, exp = e.args
            if exp.kind is Kind.NUMBER and exp.data.is_integer():
                return loop(base) ** exp.data.re
        raise NotPolynomial(f"{e} is not a rational function of {var.name}")

    return loop(expr)


def number_to_expr(c) -> Expr:
    return num(c)


def poly_to_expr(p: Poly, var: Expr, coefficient: Callable[[object], Expr] = number_to_expr) -> Expr:
    """Raw (non-canonical) expression for p in var."""
    terms: List[Expr] = []
    for i, c in enumerate(p.coeffs):
        if c == p.zero:
            continue
        c_expr = coefficient(c)
        if i == 0:
            terms.append(c_expr)
        elif i == 1:
            terms.append(mul(c_expr, var))
        else:
            terms.append(mul(c_expr, pow_(var, i)))
    if not terms:
        return ZERO
    return terms[0] if len(terms) == 1 else add(*terms)


def rational_to_expr(r: RationalFunction, var: Expr,
                     coefficient: Callable[[object], Expr] = number_to_expr) -> Expr:
    n = poly_to_expr(r.num, var, coefficient)
    if r.is_polynomial():
        return n
    return mul(n, pow_(poly_to_expr(r.den, var, coefficient), -1))


def is_polynomial(expr: Expr, var) -> bool:
    try:
        poly_from_expr(expr, var)
    except NotPolynomial:
        return False
    return True


def is_rational_function(expr: Expr, var) -> bool:
    try:
        rational_from_expr(expr, var)
    except NotPolynomial:
        return False
    return True


def poly_in(coeffs: Sequence, zero=None) -> Poly:
    """Poly from Python numbers, lowest degree first: poly_in([1, 0, 1]) is 1 + t^2."""
    zero = Number(0) if zero is None else zero
    return Poly([zero + c for c in coeffs], zero)


__all__ = [
    "Poly", "RationalFunction", "NotPolynomial", "Field",
    "poly_from_expr", "rational_from_expr", "poly_to_expr", "rational_to_expr",
    "number_coefficient", "number_to_expr", "is_polynomial", "is_rational_function",
    "poly_in",
]
