"""
Risch decision procedure for transcendental exp/log towers.

The integrand is first rewritten so that every transcendental piece is an
exponential or a logarithm: trigonometric and hyperbolic functions become
complex exponentials and a^g becomes exp(g ln a). The exp/ln nodes then
form an ExtensionTower over Q(x):

    >>> tower = ExtensionTower.build(E("(* x (exp (^ x 2)))"), "x")
    >>> tower[0].kind, tower[0].derivative
    (ExtensionKind.EXPONENTIAL, E('(* 2 _t0 x)'))

Two cases are decided:

    exponential   f = sum of r_k(x) exp(H_k) with polynomial H_k; each
                  group needs a rational solution of R' + H_k' R = r_k
    logarithmic   f rational in x and a single t = ln g; Hermite
                  reduction over Q(x)[t], a residue test for a linear
                  denominator and the primitive polynomial recurrence

Everything else (algebraic generators, nested or mixed towers, several
logarithms, denominators of degree two or more in t) is Unresolved.
"""

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Dict, List, Optional, Tuple, Union
import logging

from .canonical import canonicalize, expand
from .differentiate import derivative
from .expr import (
    Expr, I, Kind, MINUS_ONE, ZERO, add, as_expr, depth, free_in, free_symbols,
    func, mul, num, pow_, rebuild, size, subs, sym, walk,
)
from .heuristics import factor_monic, integrate_rational_function
from .number import HALF, Number
from .outcomes import Elementary, IntegrationResult, ProvenNonElementary, Unresolved
from .poly import (
    NotPolynomial, Poly, RationalFunction, poly_from_expr, poly_to_expr,
    rational_from_expr, rational_to_expr,
)
from .registry import FunctionRegistry

logger = logging.getLogger(__name__)


# ============================================================
# Differential extensions
# ============================================================

class ExtensionKind(Enum):
    EXPONENTIAL = "exp"
    LOGARITHMIC = "ln"
    ALGEBRAIC = "algebraic"


class UnsupportedExtension(ValueError):
    """The integrand contains a function that is not exp, ln or a radical."""


@dataclass(frozen=True)
class DifferentialExtension:
    """
    One generator t_k of the tower.

    Attributes:
        kind: exponential, logarithmic or algebraic
        symbol: The fresh symbol standing for the generator
        origin: The generator as it occurs in the integrand
        argument: exp/ln argument (radicand for algebraic), over x and
            the earlier generators
        derivative: D t_k over x and t_0..t_k
    """

    kind: ExtensionKind
    symbol: Expr
    origin: Expr
    argument: Expr
    derivative: Expr


class ExtensionTower:
    """
    Q(x)(t_0)...(t_n) with each derivative D t_k expressed over x and t_0..t_k.

    The invariant is checked on construction; a violation raises ValueError.
    """

    def __init__(self, var, extensions: List[DifferentialExtension]):
        self.var = as_expr(var)
        self.extensions = tuple(extensions)
        self._table = {}
        for ext in self.extensions:
            key = canonicalize(rebuild(ext.origin, [ext.argument] + list(ext.origin.args[1:])))
            self._table[key] = ext.symbol
        self._check()

    def _check(self) -> None:
        symbols = [ext.symbol.data for ext in self.extensions]
        for k, ext in enumerate(self.extensions):
            later = set(symbols[k + 1:])
            if free_symbols(ext.derivative) & later or free_symbols(ext.argument) & set(symbols[k:]):
                raise ValueError(f"D({ext.symbol}) refers to a later generator")
            for node in walk(ext.derivative):
                if (node.kind is Kind.FUNCTION and node.data in ("exp", "ln")
                        and free_in(self.var, node)):
                    raise ValueError(f"D({ext.symbol}) = {ext.derivative} is not over the tower")

    @classmethod
    def build(cls, expr: Expr, var, registry: Optional[FunctionRegistry] = None, *,
              nested: bool = True, budget=None) -> "ExtensionTower":
        """
        Collect the generators of expr, innermost first.

        With nested=False a generator inside another one's argument is
        rejected before any derivative is taken. budget, when given, is
        ticked once per generator.

        Raises:
            UnsupportedExtension: For functions other than exp and ln, for
                powers with a non-rational or variable exponent, and for
                nested generators when nested is False
            ResourceExhausted: When the budget runs out
        """
        x = as_expr(var)
        found = []
        for node in walk(expr):
            if node in found or not free_in(x, node):
                continue
            if node.kind is Kind.FUNCTION:
                if node.data not in ("exp", "ln") or len(node.args) != 1:
                    raise UnsupportedExtension(f"{node.data} is not an exponential or logarithm")
                found.append(node)
            elif node.kind is Kind.POW:
                exponent = node.args[1]
                if exponent.kind is not Kind.NUMBER or not exponent.data.is_rational():
                    raise UnsupportedExtension(f"{node} has a non-rational exponent")
                if not exponent.data.is_integer():
                    found.append(node)
            elif node.kind not in (Kind.ADD, Kind.MUL, Kind.SYMBOL, Kind.NUMBER):
                raise UnsupportedExtension(f"{node.kind.name} nodes are not supported")
        found.sort(key=depth)
        if not nested:
            generators = set(found)
            for node in found:
                if any(inner in generators for a in node.args for inner in walk(a)):
                    raise UnsupportedExtension("nested extensions are not supported")

        prefix_taken = {s.name for s in free_symbols(expr)}
        extensions: List[DifferentialExtension] = []
        partial = cls(x, [])
        for k, node in enumerate(found):
            if budget is not None:
                budget.tick()
            name = f"_t{k}"
            while name in prefix_taken:
                name = "_" + name
            t = sym(name)
            if node.kind is Kind.FUNCTION:
                kind = ExtensionKind.EXPONENTIAL if node.data == "exp" else ExtensionKind.LOGARITHMIC
                argument = partial.rewrite(node.args[0])
            else:
                kind = ExtensionKind.ALGEBRAIC
                argument = partial.rewrite(node.args[0])
            pending = DifferentialExtension(kind, t, node, argument, ZERO)
            partial = cls(x, extensions + [pending])
            d = partial.rewrite(derivative(node, x, registry=registry))
            extensions.append(DifferentialExtension(kind, t, node, argument, d))
            partial = cls(x, extensions)
        return partial

    def rewrite(self, expr: Expr) -> Expr:
        """Replace generators by their symbols, innermost first."""
        if not self._table:
            return expr

        def loop(node: Expr) -> Expr:
            if node.args:
                node = canonicalize(rebuild(node, [loop(a) for a in node.args]))
            return self._table.get(node, node)

        return loop(canonicalize(expr))

    def restore(self, expr: Expr) -> Expr:
        """Replace generator symbols by the generators."""
        return subs(expr, {ext.symbol: ext.origin for ext in self.extensions})

    @property
    def kinds(self) -> List[ExtensionKind]:
        return [ext.kind for ext in self.extensions]

    def is_nested(self) -> bool:
        symbols = {ext.symbol.data for ext in self.extensions}
        return any(free_symbols(ext.argument) & symbols for ext in self.extensions)

    def __len__(self) -> int:
        return len(self.extensions)

    def __iter__(self):
        return iter(self.extensions)

    def __getitem__(self, index: int) -> DifferentialExtension:
        return self.extensions[index]

    def __repr__(self) -> str:
        parts = ", ".join(f"{e.symbol}={e.origin}" for e in self.extensions)
        return f"ExtensionTower({parts})"


# ============================================================
# Rewriting to exponentials
# ============================================================

def _e(u: Expr) -> Expr:
    return func("exp", u)


def _trig_as_exp(name: str, u: Expr) -> Optional[Expr]:
    iu = mul(I, u)
    plus_i, minus_i = _e(iu), _e(mul(MINUS_ONE, iu))
    plus, minus = _e(u), _e(mul(MINUS_ONE, u))
    if name == "sin":
        return mul(num(Number(0, Fraction(-1, 2))), add(plus_i, mul(MINUS_ONE, minus_i)))
    if name == "cos":
        return mul(num(HALF), add(plus_i, minus_i))
    if name == "tan":
        return mul(mul(MINUS_ONE, I), add(plus_i, mul(MINUS_ONE, minus_i)),
                   pow_(add(plus_i, minus_i), MINUS_ONE))
    if name == "cot":
        return mul(I, add(plus_i, minus_i), pow_(add(plus_i, mul(MINUS_ONE, minus_i)), MINUS_ONE))
    if name == "sec":
        return mul(2, pow_(add(plus_i, minus_i), MINUS_ONE))
    if name == "csc":
        return mul(2, I, pow_(add(plus_i, mul(MINUS_ONE, minus_i)), MINUS_ONE))
    if name == "sinh":
        return mul(num(HALF), add(plus, mul(MINUS_ONE, minus)))
    if name == "cosh":
        return mul(num(HALF), add(plus, minus))
    if name == "tanh":
        return mul(add(plus, mul(MINUS_ONE, minus)), pow_(add(plus, minus), MINUS_ONE))
    return None


def to_exponentials(expr: Expr, var) -> Expr:
    """Trig/hyperbolic functions of var as complex exponentials; a^g as exp(g ln a)."""
    x = as_expr(var)

    def loop(node: Expr) -> Expr:
        if not node.args or not free_in(x, node):
            return node
        node = rebuild(node, [loop(a) for a in node.args])
        if node.kind is Kind.FUNCTION and len(node.args) == 1:
            replaced = _trig_as_exp(node.data, node.args[0])
            if replaced is not None:
                return replaced
        if node.kind is Kind.POW and free_in(x, node.args[1]):
            return _e(mul(node.args[1], func("ln", node.args[0])))
        return node

    return loop(expr)


def _exp_power(factor: Expr) -> Optional[Expr]:
    """Exponent u when factor is exp(u) or exp(v)^n for an integer n."""
    if factor.kind is Kind.FUNCTION and factor.data == "exp":
        return factor.args[0]
    if factor.kind is Kind.POW:
        base, n = factor.args
        if (base.kind is Kind.FUNCTION and base.data == "exp" and n.kind is Kind.NUMBER
                and n.data.is_integer()):
            return mul(n, base.args[0])
    return None


def merge_exponentials(expr: Expr, registry: Optional[FunctionRegistry] = None) -> Expr:
    """Combine the exponential factors of each term: e^a e^b -> e^(a+b)."""
    terms = expr.args if expr.kind is Kind.ADD else (expr,)
    merged = []
    for term in terms:
        factors = term.args if term.kind is Kind.MUL else (term,)
        exponents, others = [], []
        for f in factors:
            u = _exp_power(f)
            if u is None:
                others.append(f)
            else:
                exponents.append(u)
        if exponents:
            others.append(_e(expand(add(*exponents), registry=registry)))
        merged.append(mul(*others))
    return canonicalize(add(*merged), registry=registry)


def prepare(expr: Expr, var, registry: Optional[FunctionRegistry] = None) -> Expr:
    """Integrand over exp/ln generators, expanded, one exponential per term."""
    rewritten = to_exponentials(canonicalize(expr, registry=registry), var)
    return merge_exponentials(expand(rewritten, registry=registry), registry=registry)


# ============================================================
# Exponential case
# ============================================================

def solve_rde(f: RationalFunction, h: Poly) -> Optional[RationalFunction]:
    """
    Rational solution R of R' + h R = f for a nonzero polynomial h, or None.

    The denominator of R divides E = gcd(D, D') where D is the denominator
    of f; writing R = A/E leaves S A' + Q A = F for a polynomial A, whose
    degree is fixed by the leading terms since deg Q > deg S - 1.
    """
    D, F = f.den, f.num
    E = D.gcd(D.derivative())
    S = D // E
    Q = h * S - (S * E.derivative()).exquo(E)
    A = Poly([], D.zero)
    rest = F
    while rest:
        n = rest.degree() - Q.degree()
        if n < 0:
            return None
        term = A.monomial(rest.lc() / Q.lc(), n)
        A = A + term
        rest = rest - (S * term.derivative() + Q * term)
    return RationalFunction(A, E)


def _exp_back(h: Poly, x: Expr) -> Expr:
    """exp(H) with complex H split as exp(Re H)(cos(Im H) + i sin(Im H))."""
    real = h.map_coeffs(lambda c: c.real_part())
    imag = h.map_coeffs(lambda c: c.imag_part())
    if imag.is_zero():
        return _e(poly_to_expr(h, x))
    angle = poly_to_expr(imag, x)
    rotation = add(func("cos", angle), mul(I, func("sin", angle)))
    if real.is_zero():
        return rotation
    return mul(_e(poly_to_expr(real, x)), rotation)


def _exp_case(tower: ExtensionTower, f: Expr, x: Expr) -> IntegrationResult:
    exponents: Dict[Expr, Poly] = {}
    for ext in tower:
        try:
            exponents[ext.symbol] = poly_from_expr(ext.argument, x)
        except NotPolynomial:
            return Unresolved(f"exponent {ext.argument} is not a polynomial")
    keys = list(exponents)
    for i, a in enumerate(keys):
        for b in keys[i + 1:]:
            if (exponents[a] - exponents[b]).degree() < 1:
                return Unresolved("exponentials differ by a constant factor")

    groups: Dict[Optional[Expr], RationalFunction] = {}
    terms = f.args if f.kind is Kind.ADD else (f,)
    for term in terms:
        rewritten = tower.rewrite(term)
        present = [k for k in keys if free_in(k, rewritten)]
        if len(present) > 1:
            return Unresolved(f"term {term} mixes exponentials")
        key = present[0] if present else None
        coefficient = rewritten if key is None else canonicalize(mul(rewritten, pow_(key, MINUS_ONE)))
        if key is not None and free_in(key, coefficient):
            return Unresolved(f"term {term} is not linear in its exponential")
        try:
            rf = rational_from_expr(coefficient, x)
        except NotPolynomial:
            return Unresolved(f"coefficient {coefficient} is not rational in {x}")
        groups[key] = groups[key] + rf if key in groups else rf

    pieces = []
    for key, coefficient in groups.items():
        if key is None or coefficient.is_zero():
            continue
        h = exponents[key]
        solution = solve_rde(coefficient, h.derivative())
        if solution is None:
            logger.debug("R' + (%s) R = %s has no rational solution", h.derivative(), coefficient)
            return ProvenNonElementary(
                f"R' + H'R = f has no rational solution for the "
                f"exp({canonicalize(poly_to_expr(h, x))}) part")
        pieces.append(mul(rational_to_expr(solution, x), _exp_back(h, x)))
    plain = groups.get(None)
    if plain is not None and not plain.is_zero():
        found = integrate_rational_function(plain, x)
        if found is None:
            return Unresolved("rational part has an unfactorable denominator")
        pieces.append(found.to_expr(x))
    return Elementary(add(*pieces) if pieces else ZERO)


# ============================================================
# Logarithmic case
# ============================================================

def _field_zero() -> RationalFunction:
    return RationalFunction(Poly([], Number(0)))


def _derivation(eta: RationalFunction):
    """D on Q(x)[t] with D t = eta."""
    def D(p: Poly) -> Poly:
        plain = Poly([c.derivative() for c in p.coeffs], p.zero)
        return plain + Poly([c * i * eta for i, c in enumerate(p.coeffs)][1:], p.zero)
    return D


def _hermite(a: Poly, d: Poly, D) -> Tuple[RationalFunction, Poly, Poly]:
    """Hermite reduction of a/d over K[t] with derivation D (quadratic version)."""
    g = RationalFunction(Poly([], d.zero))
    _, factors = d.sqf_list()
    for v, i in factors:
        if i == 1:
            continue
        u = d // v ** i
        for j in range(i - 1, 0, -1):
            b, c = (u * D(v)).diophantine(v, a * (Number(-1) / j))
            g = g + RationalFunction(b, v ** j)
            a = c * (-j) - u * D(b)
        d = u * v
    return g, a, d


def _limited_integrate(a: RationalFunction, g: RationalFunction,
                       x: Expr) -> Union[Tuple[RationalFunction, Number], IntegrationResult]:
    """b in Q(x) and a constant c with a = b' + c g'/g, or the reason there are none."""
    found = integrate_rational_function(a, x)
    if found is None:
        return Unresolved(f"cannot integrate the coefficient {rational_to_expr(a, x)}")
    if found.others:
        return Unresolved("coefficient integral has arctangent terms")
    logs: Dict[Poly, Number] = {}
    for c, p in found.logs:
        logs[p] = logs.get(p, Number(0)) + c
    logs = {p: c for p, c in logs.items() if c != 0}
    if not logs:
        return found.rational, Number(0)
    numerator, denominator = factor_monic(g.num), factor_monic(g.den)
    if numerator is None or denominator is None:
        return Unresolved("cannot factor the logarithm's argument")
    powers = dict(numerator)
    for p, e in denominator.items():
        powers[p] = powers.get(p, 0) - e
    powers = {p: e for p, e in powers.items() if e}
    if not set(logs) <= set(powers):
        return ProvenNonElementary("a new logarithm is needed in the polynomial part")
    first = next(iter(logs))
    c = logs[first] / powers[first]
    if any(logs.get(p, Number(0)) != c * e for p, e in powers.items()):
        return ProvenNonElementary("the polynomial part needs logarithms other than ln g")
    return found.rational, c


def _log_case(tower: ExtensionTower, f: Expr, x: Expr) -> IntegrationResult:
    ext = tower[0]
    t = ext.symbol
    zero = _field_zero()
    try:
        g = rational_from_expr(ext.argument, x)
        eta = rational_from_expr(ext.derivative, x)
        F = rational_from_expr(tower.rewrite(f), t,
                               coefficient=lambda e: rational_from_expr(e, x), zero=zero)
    except NotPolynomial as exc:
        return Unresolved(str(exc))
    D = _derivation(eta)

    def in_x(c: RationalFunction) -> Expr:
        return rational_to_expr(c, x)

    q, r = divmod(F.num, F.den)
    if r.is_zero():
        reduced, a, d = RationalFunction(Poly([], zero)), r, F.den
    else:
        reduced, a, d = _hermite(r, F.den, D)
    extra, a = divmod(a, d)
    p = q + extra
    pieces = [rational_to_expr(reduced, t, coefficient=in_x)] if not reduced.is_zero() else []

    if not a.is_zero():
        if d.degree() != 1:
            return Unresolved("squarefree denominator of degree above one in the logarithm")
        c0 = d.coeff(0)
        residue = a.coeff(0) / (eta + c0.derivative())
        if not residue.is_constant():
            return ProvenNonElementary(
                f"residue {in_x(residue)} of the logarithmic part is not constant")
        pieces.append(mul(in_x(residue), func("ln", add(t, in_x(c0)))))

    total = Poly([], zero)
    while p.degree() > 0:
        m = p.degree()
        found = _limited_integrate(p.lc(), g, x)
        if isinstance(found, IntegrationResult):
            return found
        b, c = found
        step = p.monomial(zero + c / (m + 1), m + 1) + p.monomial(b, m)
        total = total + step
        p = p - D(step)
        if p.degree() >= m:
            return Unresolved("polynomial recurrence did not reduce the degree")
    pieces.append(poly_to_expr(total, t, coefficient=in_x))
    base = p.coeff(0)
    if not base.is_zero():
        found = integrate_rational_function(base, x)
        if found is None:
            return Unresolved("rational part has an unfactorable denominator")
        pieces.append(found.to_expr(x))
    return Elementary(tower.restore(add(*pieces) if pieces else ZERO))


# ============================================================
# Entry point
# ============================================================

def _transcendental(node: Expr, x: Expr) -> bool:
    if node.kind is Kind.FUNCTION:
        return free_in(x, node)
    return node.kind is Kind.POW and free_in(x, node.args[1])


def nested_transcendental(expr: Expr, var) -> Optional[Expr]:
    """
    A function of var that has another one inside its arguments, or None.

    Powers with a var-dependent exponent count as exp(g ln a), so x^x is
    nested on its own.
    """
    x = as_expr(var)
    for node in walk(expr):
        if not _transcendental(node, x):
            continue
        if node.kind is Kind.POW and free_in(x, node.args[0]):
            return node
        if any(_transcendental(inner, x) for a in node.args for inner in walk(a)):
            return node
    return None


def risch_integrate(expr: Expr, var, registry: Optional[FunctionRegistry] = None, *,
                    budget=None, max_size: Optional[int] = None) -> IntegrationResult:
    """
    Decide the elementary integrability of expr over its exp/log tower.

    Args:
        expr: Canonical integrand
        var: Variable of integration
        registry: Function registry for derivatives and canonical forms
        budget: Optional IntegrationBudget, ticked once per generator
        max_size: Node limit for the integrand after rewriting to exponentials

    Returns Elementary, ProvenNonElementary, or Unresolved when the tower
    falls outside the implemented cases. Nested towers are turned away
    before the rewrite to exponentials, which grows exponentially with
    the nesting.
    """
    x = as_expr(var)
    if nested_transcendental(expr, x) is not None:
        return Unresolved("nested extensions are not supported")
    prepared = prepare(expr, x, registry)
    if max_size is not None and size(prepared) > max_size:
        logger.debug("rewritten integrand has more than %d nodes", max_size)
        return Unresolved("integrand too large after rewriting to exponentials", exhausted=True)
    try:
        tower = ExtensionTower.build(prepared, x, registry, nested=False, budget=budget)
    except ValueError as exc:
        return Unresolved(str(exc))
    logger.debug("risch: %s over %r", prepared, tower)

    if not len(tower):
        try:
            f = rational_from_expr(prepared, x)
        except NotPolynomial as exc:
            return Unresolved(str(exc))
        found = integrate_rational_function(f, x)
        if found is None:
            return Unresolved("denominator has an irreducible factor of degree above two")
        outcome: IntegrationResult = Elementary(found.to_expr(x))
    elif ExtensionKind.ALGEBRAIC in tower.kinds:
        return Unresolved("algebraic extensions are not supported")
    elif all(k is ExtensionKind.EXPONENTIAL for k in tower.kinds):
        outcome = _exp_case(tower, prepared, x)
    elif len(tower) == 1:
        outcome = _log_case(tower, prepared, x)
    else:
        return Unresolved("mixed or multiple logarithmic extensions are not supported")

    if outcome.is_elementary:
        return Elementary(expand(outcome.antiderivative, registry=registry))
    return outcome


__all__ = [
    "ExtensionKind", "DifferentialExtension", "ExtensionTower", "UnsupportedExtension",
    "to_exponentials", "merge_exponentials", "prepare", "solve_rde", "nested_transcendental",
    "risch_integrate",
]
