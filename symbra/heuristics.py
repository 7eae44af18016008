"""
Heuristic integration strategies.

These run after table lookup and linearity, in this order:

    rational       Hermite reduction plus partial fractions over Q
    substitution   u = g(x) when f/g' is a function of g alone
    by_parts       LIATE choice of u, with cyclic detection

Each strategy returns an antiderivative Expr or None. None only means
"this strategy did not apply"; it never proves anything, so the
dispatcher moves on to the next strategy.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple
import logging

from .canonical import canonicalize
from .differentiate import derivative
from .expr import (
    Expr, Kind, MINUS_ONE, ONE, ZERO, add, free_in, free_symbols, func, mul, num,
    pow_, size, subs, sym, walk,
)
from .number import HALF, Number
from .poly import (
    NotPolynomial, Poly, RationalFunction, poly_to_expr, rational_from_expr,
    rational_to_expr,
)

if TYPE_CHECKING:
    from .integration import Integrator

logger = logging.getLogger(__name__)


# ============================================================
# Rational functions
# ============================================================

@dataclass
class RationalIntegral:
    """
    Antiderivative of a rational function, kept in parts.

    Attributes:
        rational: Rational part (a RationalFunction over the numbers)
        logs: (c, p) pairs standing for c*ln(p), p monic and irreducible
        others: atan and real-log terms from irreducible quadratics
    """

    rational: RationalFunction
    logs: List[Tuple[Number, Poly]] = field(default_factory=list)
    others: List[Expr] = field(default_factory=list)

    def to_expr(self, var: Expr) -> Expr:
        terms = [rational_to_expr(self.rational, var)]
        for c, p in self.logs:
            terms.append(mul(num(c), func("ln", poly_to_expr(p, var))))
        terms.extend(self.others)
        return canonicalize(add(*terms))


def integrate_poly(p: Poly) -> Poly:
    """Antiderivative of a polynomial with zero constant term."""
    return Poly([p.zero] + [c / (i + 1) for i, c in enumerate(p.coeffs)], p.zero)


def hermite_reduce(a: Poly, d: Poly) -> Tuple[RationalFunction, Poly, Poly]:
    """
    Hermite reduction of a proper fraction a/d (Mack's linear version).

    Returns (g, h_num, h_den) with a/d == g' + h_num/h_den and h_den
    squarefree.
    """
    g = RationalFunction(Poly([], d.zero))
    d_minus = d.gcd(d.derivative())
    d_star = d // d_minus
    while d_minus.degree() > 0:
        d_minus2 = d_minus.gcd(d_minus.derivative())
        d_minus_star = d_minus // d_minus2
        b, c = (-(d_star * d_minus.derivative()).exquo(d_minus)).diophantine(d_minus_star, a)
        a = c - (b.derivative() * d_star).exquo(d_minus_star)
        g = g + RationalFunction(b, d_minus)
        d_minus = d_minus2
    return g, a, d_star


def factor_squarefree(d: Poly) -> Optional[List[Poly]]:
    """
    Monic irreducible factors of a squarefree polynomial over Q.

    Only linear factors and at most one quadratic cofactor are found;
    anything else, or coefficients too large to search for roots,
    returns None.
    """
    try:
        roots = d.rational_roots()
    except NotPolynomial:
        return None
    if roots is None:
        logger.debug("too many rational root candidates for %s", d)
        return None
    factors = []
    rest = d.monic()
    for r in roots:
        linear = Poly([-r, d.one], d.zero)
        factors.append(linear)
        rest = rest.exquo(linear)
    if rest.degree() == 2:
        factors.append(rest)
    elif rest.degree() > 0:
        return None
    return factors


def factor_monic(p: Poly) -> Optional[Dict[Poly, int]]:
    """{irreducible monic factor: multiplicity} for p over Q, or None if unfactorable."""
    _, parts = p.sqf_list()
    result: Dict[Poly, int] = {}
    for part, multiplicity in parts:
        found = factor_squarefree(part)
        if found is None:
            return None
        for f in found:
            result[f] = result.get(f, 0) + multiplicity
    return result


def _quadratic_terms(numer: Poly, q: Poly, var: Expr, out: RationalIntegral) -> None:
    # (B x + C) / (x^2 + p x + s)
    B, C = numer.coeff(1), numer.coeff(0)
    p, s = q.coeff(1), q.coeff(0)
    if B != 0:
        out.logs.append((B * HALF, q))
    rest = C - B * p * HALF
    if rest == 0:
        return
    shift = add(var, num(p * HALF))
    k = s - p * p / 4
    if k.is_positive():
        root = pow_(num(k), num(HALF))
        out.others.append(mul(num(rest), pow_(root, MINUS_ONE),
                              func("atan", mul(shift, pow_(root, MINUS_ONE)))))
    else:
        m = pow_(num(-k), num(HALF))
        out.others.append(mul(num(rest * HALF), pow_(m, MINUS_ONE),
                              add(func("ln", add(shift, mul(MINUS_ONE, m))),
                                  mul(MINUS_ONE, func("ln", add(shift, m))))))


def integrate_rational_function(f: RationalFunction, var: Expr) -> Optional[RationalIntegral]:
    """
    Integrate a rational function with exact numeric coefficients.

    Returns None when the squarefree part of the denominator has a factor
    of degree above two without rational roots.
    """
    q, r = divmod(f.num, f.den)
    poly_part = integrate_poly(q)
    result = RationalIntegral(RationalFunction(poly_part))
    if r.is_zero():
        return result
    g, a, d = hermite_reduce(r, f.den)
    extra, a = divmod(a, d)
    result.rational = result.rational + g + RationalFunction(integrate_poly(extra))
    if a.is_zero():
        return result
    factors = factor_squarefree(d)
    if factors is None:
        logger.debug("cannot factor %s over Q", d)
        return None
    for factor in factors:
        cofactor = d // factor
        inverse, _, _ = cofactor.gcdex(factor)
        numer = (a * inverse) % factor
        if numer.is_zero():
            continue
        if factor.degree() == 1:
            result.logs.append((numer.coeff(0), factor))
        else:
            _quadratic_terms(numer, factor, var, result)
    return result


def integrate_rational(expr: Expr, var: Expr) -> Optional[RationalIntegral]:
    """RationalIntegral of expr in var, or None if expr is not a rational function."""
    try:
        f = rational_from_expr(expr, var)
    except NotPolynomial:
        return None
    return integrate_rational_function(f, var)


def rational(integrator: "Integrator", expr: Expr) -> Optional[Expr]:
    found = integrate_rational(expr, integrator.var)
    if found is None:
        return None
    return found.to_expr(integrator.var)


# ============================================================
# Substitution
# ============================================================

MAX_SUBSTITUTIONS = 12


def substitution_candidates(expr: Expr, var: Expr) -> List[Expr]:
    """Compound sub-expressions depending on var, largest first."""
    seen = set()
    found = []
    for node in walk(expr):
        if node is expr or node == expr or not node.args or node in seen:
            continue
        if node.kind not in (Kind.ADD, Kind.MUL, Kind.POW, Kind.FUNCTION):
            continue
        if not free_in(var, node):
            continue
        seen.add(node)
        found.append(node)
    found.sort(key=size, reverse=True)
    return found[:MAX_SUBSTITUTIONS]


def _fresh_symbol(expr: Expr, prefix: str = "_u") -> Expr:
    taken = {s.name for s in free_symbols(expr)}
    i = 0
    while f"{prefix}{i}" in taken:
        i += 1
    return sym(f"{prefix}{i}")


def substitution(integrator: "Integrator", expr: Expr) -> Optional[Expr]:
    """
    Try u = g(x) for each candidate g: when f/g' rewritten with g -> u no
    longer mentions x, integrate in u and substitute back.
    """
    x = integrator.var
    for u in substitution_candidates(expr, x):
        du = derivative(u, x, registry=integrator.registry)
        if du == ZERO:
            continue
        quotient = canonicalize(mul(expr, pow_(du, MINUS_ONE)), registry=integrator.registry)
        t = _fresh_symbol(mul(expr, u))
        in_t = canonicalize(subs(quotient, {u: t}), registry=integrator.registry)
        if free_in(x, in_t):
            continue
        logger.debug("substituting %s = %s", t, u)
        outcome = integrator.integrate_in(in_t, t)
        if outcome.is_elementary:
            return canonicalize(subs(outcome.antiderivative, {t: u}), registry=integrator.registry)
    return None


# ============================================================
# Integration by parts
# ============================================================

_INVERSE_FUNCTIONS = frozenset({"asin", "acos", "atan", "asinh", "acosh", "atanh"})
_TRIG_FUNCTIONS = frozenset({"sin", "cos", "sinh", "cosh"})


def liate_class(factor: Expr, var: Expr) -> Optional[str]:
    """
    One of "L", "I", "A", "T", "E" for a factor depending on var, else None.

    Only factors whose derivative gets simpler (L, I, A) or which are easy
    to integrate repeatedly (T, E) are classified.
    """
    base, exponent = factor, ONE
    if factor.kind is Kind.POW:
        base, exponent = factor.args
    if base.kind is Kind.FUNCTION and base.data == "ln":
        if exponent.kind is Kind.NUMBER and exponent.data.is_integer() and exponent.data.is_positive():
            return "L"
        return None
    if factor.kind is Kind.FUNCTION and factor.data in _INVERSE_FUNCTIONS:
        return "I"
    try:
        p = rational_from_expr(factor, var)
    except NotPolynomial:
        p = None
    if p is not None:
        return "A" if p.is_polynomial() and p.num.degree() > 0 else None
    if factor.kind is Kind.FUNCTION and factor.data in _TRIG_FUNCTIONS:
        return "T"
    if factor.kind is Kind.FUNCTION and factor.data == "exp":
        return "E"
    if factor.kind is Kind.POW and not free_in(var, factor.args[0]):
        return "E"
    return None


def _split(expr: Expr, var: Expr) -> List[Tuple[str, Expr]]:
    factors = expr.args if expr.kind is Kind.MUL else (expr,)
    return [(liate_class(f, var), f) for f in factors]


def _antiderivative(integrator: "Integrator", expr: Expr) -> Optional[Expr]:
    outcome = integrator.integrate_in(expr, integrator.var)
    return outcome.antiderivative if outcome.is_elementary else None


def _parts(integrator: "Integrator", u: Expr, dv: Expr) -> Optional[Tuple[Expr, Expr]]:
    """(u*v, v*du) or None when dv cannot be integrated."""
    v = _antiderivative(integrator, dv)
    if v is None:
        return None
    du = derivative(u, integrator.var, registry=integrator.registry)
    return mul(u, v), canonicalize(mul(v, du), registry=integrator.registry)


def _cyclic(integrator: "Integrator", expr: Expr, u: Expr, dv: Expr) -> Optional[Expr]:
    # I = uv - J, J = u2 v2 - J2, J2 = k I  =>  I = (uv - u2 v2) / (1 - k)
    x = integrator.var
    first = _parts(integrator, u, dv)
    if first is None:
        return None
    uv, j = first
    classes = _split(j, x)
    trig = [f for c, f in classes if c == "T"]
    if len(trig) != 1:
        return None
    u2 = trig[0]
    dv2 = canonicalize(mul(j, pow_(u2, MINUS_ONE)), registry=integrator.registry)
    second = _parts(integrator, u2, dv2)
    if second is None:
        return None
    u2v2, j2 = second
    k = canonicalize(mul(j2, pow_(expr, MINUS_ONE)), registry=integrator.registry)
    if free_in(x, k) or k == ONE:
        return None
    return canonicalize(mul(add(uv, mul(MINUS_ONE, u2v2)), pow_(add(ONE, mul(MINUS_ONE, k)), MINUS_ONE)),
                        registry=integrator.registry)


def by_parts(integrator: "Integrator", expr: Expr) -> Optional[Expr]:
    """
    Integration by parts with u chosen by LIATE.

    Handles ln/inverse-function factors times anything integrable,
    polynomials times trig/exponential factors, and the cyclic
    exponential-times-trig case.
    """
    x = integrator.var
    classes = _split(expr, x)
    if any(c is None for c, f in classes if free_in(x, f)):
        return None
    kinds = [c for c, f in classes if c is not None]
    factors = [f for c, f in classes]

    def rest_without(chosen: Expr) -> Expr:
        others = list(factors)
        others.remove(chosen)
        return canonicalize(mul(*others), registry=integrator.registry) if others else ONE

    for wanted in ("L", "I"):
        for c, f in classes:
            if c == wanted:
                parts = _parts(integrator, f, rest_without(f))
                if parts is None:
                    continue
                uv, j = parts
                rest = _antiderivative(integrator, j)
                if rest is not None:
                    return canonicalize(add(uv, mul(MINUS_ONE, rest)), registry=integrator.registry)
    if sorted(kinds) == ["E", "T"]:
        trig = next(f for c, f in classes if c == "T")
        return _cyclic(integrator, expr, trig, rest_without(trig))
    if kinds.count("A") == 1 and len(kinds) == 2 and ("T" in kinds or "E" in kinds):
        algebraic = next(f for c, f in classes if c == "A")
        parts = _parts(integrator, algebraic, rest_without(algebraic))
        if parts is None:
            return None
        uv, j = parts
        rest = _antiderivative(integrator, j)
        if rest is not None:
            return canonicalize(add(uv, mul(MINUS_ONE, rest)), registry=integrator.registry)
    return None


HEURISTICS = (("rational", rational), ("substitution", substitution), ("by-parts", by_parts))


__all__ = [
    "RationalIntegral", "integrate_poly", "hermite_reduce", "factor_squarefree", "factor_monic",
    "integrate_rational_function", "integrate_rational", "rational", "substitution",
    "substitution_candidates", "liate_class", "by_parts", "HEURISTICS",
]
