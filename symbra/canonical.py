"""
Canonical forms.

canonicalize(expr) rewrites any expression to a unique normal form:

    - nested sums and products are flattened
    - numbers are folded exactly
    - identities are removed (0 + x, 1 * x, x^1, x^0, 1^x)
    - like terms are combined: 2*x + 3*x -> 5*x, x * x^2 -> x^3
    - commutative operands are sorted by sort_key; non-commutative factors
      keep their relative order
    - registry identities are applied: special values, parity, left
      inverses, float evaluation

The procedure is total and idempotent: canonicalize(canonicalize(e)) ==
canonicalize(e). Results of the default configuration are memoized.

expand(expr) additionally distributes products over sums and expands
positive integer powers of sums.
"""

from functools import lru_cache
from math import comb
from typing import Dict, List, Optional, Tuple
import logging

from .config import EngineSettings, get_settings
from .expr import (
    Expr, Kind, HALF, MINUS_ONE, ONE, ZERO, is_commutative, num, rebuild,
    sort_key, subs,
)
from .number import Number, float_or_complex, from_float_result
from .registry import FunctionRegistry, get_registry
from .symbols import Commutativity, Symbol
from .trace import RewriteTrace

logger = logging.getLogger(__name__)

# Hamilton's rules for the quaternion units: (a, b) -> (sign, unit or None)
_QUATERNION_TABLE = {
    ("i", "i"): (-1, None), ("j", "j"): (-1, None), ("k", "k"): (-1, None),
    ("i", "j"): (1, "k"), ("j", "k"): (1, "i"), ("k", "i"): (1, "j"),
    ("j", "i"): (-1, "k"), ("k", "j"): (-1, "i"), ("i", "k"): (-1, "j"),
}


def _quaternion_unit(expr: Expr) -> Optional[str]:
    if (expr.kind is Kind.SYMBOL and expr.data.commutativity is Commutativity.QUATERNION
            and expr.data.name in ("i", "j", "k")):
        return expr.data.name
    return None


def _base_exp(expr: Expr) -> Tuple[Expr, Expr]:
    if expr.kind is Kind.POW:
        return expr.args[0], expr.args[1]
    return expr, ONE


def split_coefficient(expr: Expr) -> Tuple[Number, Expr]:
    """Split a canonical term into (numeric coefficient, rest): 3*x*y -> (3, x*y)."""
    if expr.kind is Kind.NUMBER:
        return expr.data, ONE
    if expr.kind is Kind.MUL and expr.args and expr.args[0].kind is Kind.NUMBER:
        rest = expr.args[1:]
        if len(rest) == 1:
            return expr.args[0].data, rest[0]
        return expr.args[0].data, Expr(Kind.MUL, None, rest)
    return Number(1), expr


def _extracts_minus(expr: Expr) -> bool:
    """True when -expr has a simpler sign pattern than expr."""
    if expr.kind is Kind.NUMBER:
        return expr.data.is_negative()
    if expr.kind is Kind.MUL:
        return bool(expr.args) and expr.args[0].kind is Kind.NUMBER and expr.args[0].data.is_negative()
    if expr.kind is Kind.ADD:
        negative = positive = 0
        for term in expr.args:
            c, _ = split_coefficient(term)
            if c.is_negative():
                negative += 1
            elif c.is_positive():
                positive += 1
        return negative > positive
    return False


def decide_relation(condition: Expr) -> Optional[bool]:
    """Truth value of a relation when it is decidable structurally or numerically."""
    if condition.kind is not Kind.RELATION:
        return None
    op = condition.data
    lhs, rhs = condition.args
    if lhs == rhs and op in ("==", "<=", ">="):
        return True
    if lhs == rhs and op in ("!=", "<", ">"):
        return False
    if lhs.kind is Kind.NUMBER and rhs.kind is Kind.NUMBER:
        a, b = lhs.data, rhs.data
        if op == "==":
            return a == b
        if op == "!=":
            return a != b
        if not (a.is_real() and b.is_real()):
            return None
        return {"<": a < b, "<=": a <= b, ">": a > b, ">=": a >= b}[op]
    return None


class Canonicalizer:
    """
    One canonicalization pass configuration.

    Most callers use canonicalize(); build a Canonicalizer directly to
    canonicalize many expressions against a custom registry.
    """

    def __init__(self, registry: Optional[FunctionRegistry] = None,
                 trace: Optional[RewriteTrace] = None,
                 settings: Optional[EngineSettings] = None):
        self.registry = registry if registry is not None else get_registry()
        self.trace = trace
        self.settings = settings if settings is not None else get_settings()

    def __call__(self, expr: Expr) -> Expr:
        return self.visit(expr)

    def _normalize(self, expr: Expr) -> Expr:
        return Canonicalizer(self.registry, settings=self.settings).visit(expr)

    def visit(self, expr: Expr) -> Expr:
        kind = expr.kind
        if kind in (Kind.NUMBER, Kind.SYMBOL, Kind.WILDCARD):
            return expr
        node = rebuild(expr, [self.visit(a) for a in expr.args])
        if kind is Kind.ADD:
            result = self.add(node.args)
        elif kind is Kind.MUL:
            result = self.mul(node.args)
        elif kind is Kind.POW:
            result = self.pow(node.args[0], node.args[1])
        elif kind is Kind.FUNCTION:
            result = self.function(node)
        elif kind is Kind.SET:
            result = self._set(node)
        elif kind is Kind.PIECEWISE:
            result = self._piecewise(node)
        elif kind in (Kind.SUM, Kind.PRODUCT):
            result = self._series(node)
        elif kind is Kind.DERIVATIVE:
            order = node.args[2]
            result = node.args[0] if order.kind is Kind.NUMBER and order.data.is_zero() else node
        else:
            result = node
        if self.trace is not None and result != expr:
            self.trace.record(f"canonicalize {kind.name.lower()}", expr, result)
        return result

    # ------------------------------------------------------------
    # Sums
    # ------------------------------------------------------------

    def add(self, terms) -> Expr:
        """Canonical sum of canonical terms."""
        flat: List[Expr] = []
        for t in terms:
            if t.kind is Kind.ADD:
                flat.extend(t.args)
            else:
                flat.append(t)

        constant = Number(0)
        groups: Dict[Expr, Number] = {}
        for t in flat:
            if t.kind is Kind.NUMBER:
                constant = constant + t.data
                continue
            c, rest = split_coefficient(t)
            groups[rest] = groups.get(rest, Number(0)) + c

        out: List[Expr] = []
        for rest, c in groups.items():
            if c.is_zero():
                continue
            out.append(rest if c.is_one() and c.is_exact() else self.mul([num(c), rest]))
        if not constant.is_zero() or (not constant.is_exact() and not out):
            out.append(num(constant))

        if not out:
            return ZERO
        if len(out) == 1:
            return out[0]
        return Expr(Kind.ADD, None, sorted(out, key=sort_key))

    # ------------------------------------------------------------
    # Products
    # ------------------------------------------------------------

    def mul(self, factors) -> Expr:
        """Canonical product of canonical factors."""
        flat: List[Expr] = []
        for f in factors:
            if f.kind is Kind.MUL:
                flat.extend(f.args)
            else:
                flat.append(f)

        coeff = Number(1)
        bases: Dict[Expr, List[Expr]] = {}
        noncomm: List[Expr] = []
        for f in flat:
            if f.kind is Kind.NUMBER:
                coeff = coeff * f.data
            elif not is_commutative(f):
                noncomm.append(f)
            else:
                base, exp = _base_exp(f)
                bases.setdefault(base, []).append(exp)

        if coeff.is_zero():
            return num(coeff)

        comm: List[Expr] = []
        refold = False
        for base, exps in bases.items():
            p = self.pow(base, exps[0] if len(exps) == 1 else self.add(exps))
            if p.kind is Kind.NUMBER:
                coeff = coeff * p.data
            elif p.kind is Kind.MUL:
                refold = True
                comm.extend(p.args)
            else:
                comm.append(p)
        if refold:
            return self.mul([num(coeff)] + comm + noncomm)
        if coeff.is_zero():
            return num(coeff)

        ordered: List[Expr] = []
        for f in noncomm:
            coeff = self._push_noncommutative(ordered, f, coeff)

        out = sorted(comm, key=sort_key) + ordered
        if not out:
            return num(coeff)
        if coeff.is_one() and coeff.is_exact():
            if len(out) == 1:
                return out[0]
            return Expr(Kind.MUL, None, out)
        if len(out) == 1 and out[0].kind is Kind.ADD:
            # distribute a numeric coefficient over a single sum
            return self.add([self.mul([num(coeff), t]) for t in out[0].args])
        return Expr(Kind.MUL, None, [num(coeff)] + out)

    def _push_noncommutative(self, ordered: List[Expr], f: Expr, coeff: Number) -> Number:
        while True:
            if not ordered:
                ordered.append(f)
                return coeff
            prev = ordered[-1]
            a, b = _quaternion_unit(prev), _quaternion_unit(f)
            if a and b:
                ordered.pop()
                sign, unit = _QUATERNION_TABLE[(a, b)]
                coeff = coeff * sign
                if unit is None:
                    return coeff
                f = Expr(Kind.SYMBOL, Symbol(unit, Commutativity.QUATERNION))
                continue
            pb, pe = _base_exp(prev)
            fb, fe = _base_exp(f)
            if pb == fb:
                ordered.pop()
                combined = self.pow(pb, self.add([pe, fe]))
                if combined.kind is Kind.NUMBER:
                    return coeff * combined.data
                if combined.kind is Kind.MUL:
                    coeff = coeff * combined.args[0].data
                    combined = combined.args[1]
                f = combined
                continue
            ordered.append(f)
            return coeff

    # ------------------------------------------------------------
    # Powers
    # ------------------------------------------------------------

    def pow(self, base: Expr, exp: Expr) -> Expr:
        """Canonical power of canonical operands."""
        if exp.kind is Kind.NUMBER:
            e = exp.data
            if e.is_zero() and e.is_exact():
                return ONE
            if e.is_one() and e.is_exact():
                return base
            if base.kind is Kind.NUMBER:
                folded = base.data.power(e)
                if folded is not None:
                    return num(folded)
                return Expr(Kind.POW, None, (base, exp))
            if e.is_integer():
                if base.kind is Kind.POW:
                    return self.pow(base.args[0], self.mul([base.args[1], exp]))
                if base.kind is Kind.MUL and is_commutative(base):
                    return self.mul([self.pow(f, exp) for f in base.args])
                unit = _quaternion_unit(base)
                if unit is not None:
                    r = e.re % 4
                    if r == 0:
                        return ONE
                    if r == 1:
                        return base
                    if r == 2:
                        return MINUS_ONE
                    return Expr(Kind.MUL, None, (MINUS_ONE, base))
                if base.kind is Kind.FUNCTION and base.data == "exp" and len(base.args) == 1:
                    return self.function(Expr(Kind.FUNCTION, "exp", (self.mul([exp, base.args[0]]),)))
        elif base.kind is Kind.NUMBER and base.data.is_one() and base.data.is_exact():
            return ONE
        return Expr(Kind.POW, None, (base, exp))

    # ------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------

    def function(self, node: Expr) -> Expr:
        """Apply registry identities to a function node with canonical arguments."""
        name, args = node.data, node.args
        if name == "sqrt" and len(args) == 1:
            return self.pow(args[0], HALF)
        if name == "log" and len(args) == 1:
            name = "ln"
            node = Expr(Kind.FUNCTION, name, args)
        info = self.registry.get(name)
        if info is None or len(args) != info.arity:
            return node

        if info.arity == 1:
            arg = args[0]
            special = self.registry.special_values(name, normalize=self._normalize).get(arg)
            if special is not None:
                return special
            if arg.kind is Kind.FUNCTION and arg.data in info.inverses and len(arg.args) == 1:
                return arg.args[0]
            if name == "exp":
                power = self._exp_of_scaled_log(arg)
                if power is not None:
                    return power
            if info.parity and _extracts_minus(arg):
                inner = self.function(Expr(Kind.FUNCTION, name, (self.mul([MINUS_ONE, arg]),)))
                return inner if info.parity == "even" else self.mul([MINUS_ONE, inner])

        if (info.evaluator is not None and all(a.kind is Kind.NUMBER for a in args)
                and any(not a.data.is_exact() for a in args)):
            values = [float_or_complex(a.data) for a in args]
            if info.in_domain(*values):
                try:
                    return num(from_float_result(info.evaluator(*values)))
                except (ValueError, ZeroDivisionError, OverflowError) as exc:
                    logger.debug("numeric evaluation of %s failed: %s", name, exc)
        return node

    def _exp_of_scaled_log(self, arg: Expr) -> Optional[Expr]:
        """exp(c*ln(u)) -> u^c for a numeric c."""
        if (arg.kind is Kind.MUL and len(arg.args) == 2 and arg.args[0].kind is Kind.NUMBER
                and arg.args[1].kind is Kind.FUNCTION and arg.args[1].data == "ln"):
            return self.pow(arg.args[1].args[0], arg.args[0])
        return None

    # ------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------

    def _set(self, node: Expr) -> Expr:
        unique = sorted(set(node.args), key=sort_key)
        return rebuild(node, unique)

    def _piecewise(self, node: Expr) -> Expr:
        args = node.args
        otherwise = args[-1] if len(args) % 2 else None
        kept: List[Expr] = []
        for i in range(0, len(args) - 1, 2):
            value, condition = args[i], args[i + 1]
            truth = decide_relation(condition)
            if truth is False:
                continue
            if truth is True:
                otherwise = value
                break
            kept.extend((value, condition))
        if not kept and otherwise is not None:
            return otherwise
        if otherwise is not None:
            kept.append(otherwise)
        return rebuild(node, kept)

    def _series(self, node: Expr) -> Expr:
        body, var, lower, upper = node.args
        if not (lower.kind is Kind.NUMBER and upper.kind is Kind.NUMBER
                and lower.data.is_integer() and upper.data.is_integer()):
            return node
        count = upper.data.re - lower.data.re + 1
        if count > self.settings.expand_sum_limit:
            return node
        if count <= 0:
            return ZERO if node.kind is Kind.SUM else ONE
        terms = [self.visit(subs(body, {var: num(k)}))
                 for k in range(lower.data.re, upper.data.re + 1)]
        return self.add(terms) if node.kind is Kind.SUM else self.mul(terms)


# ============================================================
# Module-level entry points
# ============================================================

def _build_cache():
    @lru_cache(maxsize=get_settings().canonical_cache_size)
    def cached(expr: Expr) -> Expr:
        return Canonicalizer().visit(expr)
    return cached


_cached_canonicalize = _build_cache()


def canonicalize(expr, *, registry: Optional[FunctionRegistry] = None,
                 trace: Optional[RewriteTrace] = None) -> Expr:
    """
    Return the canonical form of expr.

    Args:
        expr: Expression (Python numbers and symbol names are accepted)
        registry: Function registry; defaults to the process-wide one
        trace: Optional trace receiving one step per rewritten node

    Example:
        >>> canonicalize(E("(+ x x x)"))
        E('(* 3 x)')
    """
    from .expr import as_expr
    expr = as_expr(expr)
    if trace is None and (registry is None or registry is get_registry()):
        return _cached_canonicalize(expr)
    result = Canonicalizer(registry=registry, trace=trace).visit(expr)
    if trace is not None:
        if trace.initial is None:
            trace.initial = expr
        trace.final = result
    return result


def clear_cache() -> None:
    _cached_canonicalize.cache_clear()


def cache_info():
    return _cached_canonicalize.cache_info()


# ============================================================
# Expansion
# ============================================================

class _Expander:
    def __init__(self, canon: Canonicalizer):
        self.canon = canon
        self.limit = canon.settings.max_expression_size

    def visit(self, expr: Expr) -> Expr:
        if not expr.args:
            return expr
        node = rebuild(expr, [self.visit(a) for a in expr.args])
        if node.kind is Kind.MUL:
            return self._distribute(node.args)
        if node.kind is Kind.POW:
            base, exp = node.args
            if (base.kind is Kind.ADD and exp.kind is Kind.NUMBER and exp.data.is_integer()
                    and exp.data.re > 1):
                n = exp.data.re
                if comb(n + len(base.args) - 1, len(base.args) - 1) > self.limit:
                    return self.canon.pow(base, exp)
                result = base
                for _ in range(n - 1):
                    result = self._distribute([result, base])
                return result
            return self.canon.pow(base, exp)
        if node.kind is Kind.ADD:
            return self.canon.add(node.args)
        if node.kind is Kind.FUNCTION:
            return self.canon.function(node)
        return self.canon.visit(node)

    def _distribute(self, factors) -> Expr:
        products: List[List[Expr]] = [[]]
        for f in factors:
            if f.kind is Kind.ADD:
                products = [p + [t] for p in products for t in f.args]
                if len(products) > self.limit:
                    return self.canon.mul(factors)
            else:
                for p in products:
                    p.append(f)
        terms = [self.canon.mul(p) for p in products]
        # products may contain new sums (e.g. a coefficient distributed over a sum)
        return self.canon.add([self._distribute(t.args) if t.kind is Kind.MUL
                               and any(a.kind is Kind.ADD for a in t.args) else t
                               for t in terms])


def expand(expr, *, registry: Optional[FunctionRegistry] = None) -> Expr:
    """
    Distribute products over sums and expand positive integer powers of sums.

    Example:
        >>> expand(E("(^ (+ x 1) 2)"))
        E('(+ 1 (* 2 x) (^ x 2))')
    """
    canon = Canonicalizer(registry=registry)
    return _Expander(canon).visit(canonicalize(expr, registry=registry))
