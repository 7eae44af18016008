"""
Indefinite integration.

integrate() tries, in order:

    1. table lookup      a rule table of standard forms, plus the
                         registry's antiderivatives for f(a x + b)
    2. linearity         sums term by term, var-free factors pulled out
    3. heuristics        rational functions, substitution, by parts
    4. Risch             decision procedure over exp/log towers

and always returns an outcome:

    >>> integrate(E("(exp (* 2 x))"), "x")
    Elementary(antiderivative=E('(* 1/2 (exp (* 2 x)))'))
    >>> integrate(E("(exp (^ x 2))"), "x")
    ProvenNonElementary(reason=...)

Recursion is bounded by an IntegrationBudget shared by every sub-integral:
exceeding the depth limit makes that sub-problem Unresolved, exceeding the
step limit ends the whole call with Unresolved(exhausted=True). Integrands
nested deeper than max_expression_depth or larger than max_expression_size
are turned away before any work.
"""

from contextlib import contextmanager
from functools import lru_cache
from typing import Dict, List, Optional, Tuple
import logging

from .canonical import canonicalize, expand
from .config import EngineSettings, get_settings
from .differentiate import derivative
from .engine import RuleEngine
from .errors import ResourceExhausted
from .expr import (
    Expr, Kind, MINUS_ONE, ONE, ZERO, _as_symbol, add, as_expr, depth, free_in, func,
    integral_node, mul, pow_, size, walk,
)
from .heuristics import HEURISTICS
from .outcomes import Elementary, IntegrationResult, ProvenNonElementary, Unresolved
from .poly import NotPolynomial, poly_from_expr, rational_from_expr
from .registry import FunctionRegistry, get_registry
from .risch import prepare, risch_integrate
from .trace import RewriteTrace

logger = logging.getLogger(__name__)


# ============================================================
# Table of standard forms
# ============================================================

TABLE_RULES = """
[basic]
@int-const "constant": (Integral ?c:free(x) ?x:var) => (* :c :x)
@int-var "identity": (Integral ?x:var ?x) => (* 1/2 (^ :x 2))
@int-recip "reciprocal": (Integral (^ ?x:var -1) ?x) => (ln :x)
@int-power "power rule": (Integral (^ ?x:var ?n:const) ?x) => (* (^ (+ :n 1) -1) (^ :x (+ :n 1))) when (! != :n -1)

[inverse]
@int-atan: (Integral (^ (+ 1 (^ ?x:var 2)) -1) ?x) => (atan :x)
@int-asin: (Integral (^ (+ 1 (* -1 (^ ?x:var 2))) -1/2) ?x) => (asin :x)
@int-asinh: (Integral (^ (+ 1 (^ ?x:var 2)) -1/2) ?x) => (asinh :x)

[trigonometric]
@int-sin-squared: (Integral (^ (sin ?x:var) 2) ?x) => (+ (* 1/2 :x) (* -1/4 (sin (* 2 :x))))
@int-cos-squared: (Integral (^ (cos ?x:var) 2) ?x) => (+ (* 1/2 :x) (* 1/4 (sin (* 2 :x))))
@int-sec-squared: (Integral (^ (cos ?x:var) -2) ?x) => (tan :x)
@int-csc-squared: (Integral (^ (sin ?x:var) -2) ?x) => (* -1 (cot :x))
@int-tan-squared: (Integral (^ (tan ?x:var) 2) ?x) => (+ (tan :x) (* -1 :x))
@int-sin-cos: (Integral (* (cos ?x:var) (sin ?x)) ?x) => (* 1/2 (^ (sin :x) 2))

[logarithmic]
@int-log-over-x: (Integral (* (^ ?x:var -1) (ln ?x)) ?x) => (* 1/2 (^ (ln :x) 2))
"""


@lru_cache(maxsize=None)
def table_engine() -> RuleEngine:
    """The shared lookup engine (read-only; copy() it to customize)."""
    return RuleEngine.from_dsl(TABLE_RULES)


def _linear(expr: Expr, var: Expr):
    """(a, b) with expr == a*var + b and a != 0, or None."""
    try:
        p = poly_from_expr(expr, var)
    except NotPolynomial:
        return None
    if p.degree() != 1:
        return None
    return p.coeff(1), p.coeff(0)


def _registry_lookup(expr: Expr, var: Expr, registry: FunctionRegistry) -> Optional[Expr]:
    """Antiderivatives of f(a x + b), c^(a x + b) and (a x + b)^n."""
    if expr.kind is Kind.FUNCTION and len(expr.args) == 1:
        info = registry.get(expr.data)
        linear = _linear(expr.args[0], var)
        if info is None or info.antiderivative is None or linear is None:
            return None
        return mul(info.antiderivative(expr.args), pow_(linear[0], MINUS_ONE))
    if expr.kind is Kind.POW:
        base, exponent = expr.args
        if not free_in(var, base):
            linear = _linear(exponent, var)
            if linear is None:
                return None
            return mul(expr, pow_(mul(linear[0], func("ln", base)), MINUS_ONE))
        linear = _linear(base, var)
        if linear is None or free_in(var, exponent):
            return None
        a = linear[0]
        if exponent == MINUS_ONE:
            return mul(pow_(a, MINUS_ONE), func("ln", base))
        n1 = add(exponent, ONE)
        return mul(pow_(mul(a, n1), MINUS_ONE), pow_(base, n1))
    return None


# ============================================================
# Budget
# ============================================================

class IntegrationBudget:
    """
    Shared limits of one integrate() call.

    depth counts nested sub-integrals; steps counts every strategy attempt
    across the whole call. The ancestor stack detects a sub-problem that
    reappears inside itself.
    """

    def __init__(self, max_depth: int, max_steps: int, max_size: Optional[int] = None):
        self.max_depth = max_depth
        self.max_steps = max_steps
        self.max_size = max_size
        self.steps = 0
        self.ancestors: List[tuple] = []
        self.depth_exceeded = False

    @property
    def depth(self) -> int:
        return len(self.ancestors)

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "IntegrationBudget":
        return cls(settings.max_integration_depth, settings.max_integration_steps,
                   settings.max_expression_size)

    def tick(self) -> None:
        self.steps += 1
        if self.steps > self.max_steps:
            raise ResourceExhausted("integration steps", self.max_steps)

    @contextmanager
    def enter(self, key: tuple):
        self.ancestors.append(key)
        try:
            yield
        finally:
            self.ancestors.pop()

    def __repr__(self) -> str:
        return (f"IntegrationBudget(depth={self.depth}/{self.max_depth}, "
                f"steps={self.steps}/{self.max_steps})")


# ============================================================
# Dispatcher
# ============================================================

class Integrator:
    """Integration with respect to one variable, sharing a budget with its sub-integrators."""

    def __init__(self, var, budget: IntegrationBudget,
                 registry: Optional[FunctionRegistry] = None,
                 trace: Optional[RewriteTrace] = None):
        self.var = as_expr(_as_symbol(var))
        self.budget = budget
        self.registry = registry if registry is not None else get_registry()
        self.trace = trace

    def integrate_in(self, expr: Expr, var) -> IntegrationResult:
        """Integrate a sub-problem, possibly in another variable, under the same budget."""
        if as_expr(var) == self.var:
            return self.integrate(expr)
        return Integrator(var, self.budget, self.registry, self.trace).integrate(expr)

    def _record(self, strategy: str, expr: Expr, result: Expr) -> None:
        if self.trace is not None:
            self.trace.record(f"integrate by {strategy}", integral_node(expr, self.var), result,
                              name=f"integrate-{strategy}")

    def integrate(self, expr: Expr) -> IntegrationResult:
        expr = canonicalize(expr, registry=self.registry)
        key = (expr, self.var)
        if key in self.budget.ancestors:
            logger.debug("cycle on %s; giving up on this branch", expr)
            return Unresolved(f"cycle while integrating {expr}")
        if self.budget.depth >= self.budget.max_depth:
            self.budget.depth_exceeded = True
            return Unresolved("integration depth limit reached", exhausted=True)
        with self.budget.enter(key):
            self.budget.tick()
            for strategy, attempt in (("lookup", self._lookup), ("linearity", self._linearity),
                                      ("heuristics", self._heuristics), ("risch", self._risch)):
                outcome = attempt(expr)
                if outcome is None:
                    continue
                if outcome.is_elementary:
                    self._record(strategy, expr, outcome.antiderivative)
                logger.debug("%s: %s -> %s", strategy, expr, outcome)
                return outcome
        return Unresolved(f"no strategy applies to {expr}")

    def _lookup(self, expr: Expr) -> Optional[IntegrationResult]:
        result, applied = table_engine().apply_once(integral_node(expr, self.var))
        if applied is not None:
            return Elementary(result)
        found = _registry_lookup(expr, self.var, self.registry)
        if found is not None:
            return Elementary(canonicalize(found, registry=self.registry))
        return None

    def _linearity(self, expr: Expr) -> Optional[IntegrationResult]:
        if expr.kind is Kind.ADD:
            parts = []
            for term in expr.args:
                outcome = self.integrate(term)
                if not outcome.is_elementary:
                    return None
                parts.append(outcome.antiderivative)
            return Elementary(canonicalize(add(*parts), registry=self.registry))
        if expr.kind is Kind.MUL:
            constant = [f for f in expr.args if not free_in(self.var, f)]
            rest = [f for f in expr.args if free_in(self.var, f)]
            if not constant or not rest:
                return None
            inner = self.integrate(mul(*rest))
            if inner.is_elementary:
                return Elementary(canonicalize(mul(*constant, inner.antiderivative),
                                               registry=self.registry))
            return inner
        return None

    def _heuristics(self, expr: Expr) -> Optional[IntegrationResult]:
        for name, heuristic in HEURISTICS:
            self.budget.tick()
            found = heuristic(self, expr)
            if found is not None:
                logger.debug("heuristic %s succeeded on %s", name, expr)
                return Elementary(found)
        return None

    def _risch(self, expr: Expr) -> IntegrationResult:
        self.budget.tick()
        return risch_integrate(expr, self.var, registry=self.registry, budget=self.budget,
                               max_size=self.budget.max_size)


# ============================================================
# Entry point
# ============================================================

def _kernel(factor: Expr, var: Expr) -> bool:
    # a factor that is not rational in var
    return any(node.kind is Kind.FUNCTION
               or (node.kind is Kind.POW and not (node.args[1].kind is Kind.NUMBER
                                                   and node.args[1].data.is_integer()))
               for node in walk(factor) if free_in(var, node))


def is_zero_in(expr: Expr, var, registry: Optional[FunctionRegistry] = None) -> bool:
    """
    True when expr is provably zero as a function of var.

    expand() settles polynomial identities. Otherwise trigonometric and
    hyperbolic functions are rewritten as exponentials, the terms are
    grouped by their non-rational factors and each group's coefficient
    must vanish as a rational function of var. False means "not shown".
    """
    x = as_expr(_as_symbol(var))
    expanded = expand(expr, registry=registry)
    if expanded == ZERO:
        return True
    prepared = prepare(expanded, x, registry)
    groups: Dict[Tuple[Expr, ...], List[Expr]] = {}
    for term in prepared.args if prepared.kind is Kind.ADD else (prepared,):
        factors = term.args if term.kind is Kind.MUL else (term,)
        kernel = tuple(f for f in factors if _kernel(f, x))
        groups.setdefault(kernel, []).append(mul(*(f for f in factors if not _kernel(f, x))))
    for coefficients in groups.values():
        try:
            if not rational_from_expr(canonicalize(add(*coefficients), registry=registry),
                                      x).is_zero():
                return False
        except NotPolynomial:
            return False
    return True


def verify_antiderivative(antiderivative, integrand, var,
                          registry: Optional[FunctionRegistry] = None) -> bool:
    """True when d/dvar antiderivative - integrand is provably zero."""
    difference = add(derivative(as_expr(antiderivative), var, registry=registry),
                     mul(MINUS_ONE, as_expr(integrand)))
    return is_zero_in(difference, var, registry)


def integrate(expr, var, *, registry: Optional[FunctionRegistry] = None,
              settings: Optional[EngineSettings] = None,
              trace: Optional[RewriteTrace] = None) -> IntegrationResult:
    """
    Integrate expr with respect to var.

    Args:
        expr: Integrand
        var: Variable of integration
        registry: Function registry; defaults to the process-wide one
        settings: Limits; defaults to get_settings()
        trace: Optional trace receiving one step per successful strategy

    Returns:
        Elementary, ProvenNonElementary or Unresolved. The antiderivative
        of an Elementary result is canonical and expanded, without a
        constant of integration.
    """
    settings = settings if settings is not None else get_settings()
    expr = as_expr(expr)
    if depth(expr) > settings.max_expression_depth:
        logger.warning("integrand is nested more than %d levels deep; not attempting it",
                       settings.max_expression_depth)
        return Unresolved("integrand too deep", exhausted=True)
    expr = canonicalize(expr, registry=registry)
    x = as_expr(_as_symbol(var))
    if size(expr) > settings.max_expression_size:
        logger.warning("integrand has more than %d nodes; not attempting it",
                       settings.max_expression_size)
        return Unresolved("integrand too large", exhausted=True)

    budget = IntegrationBudget.from_settings(settings)
    try:
        outcome = Integrator(x, budget, registry, trace).integrate(expr)
    except ResourceExhausted as exc:
        logger.warning("integration of %s stopped: %s", expr, exc)
        return Unresolved(str(exc), exhausted=True)

    if outcome.is_unresolved and budget.depth_exceeded and not outcome.exhausted:
        outcome = Unresolved(outcome.reason, exhausted=True)
    if not outcome.is_elementary:
        return outcome
    result = expand(outcome.antiderivative, registry=registry)
    if settings.verify_antiderivatives and not verify_antiderivative(result, expr, x, registry):
        logger.debug("could not verify d/d%s %s == %s", x, result, expr)
    return Elementary(result)


__all__ = [
    "integrate", "verify_antiderivative", "is_zero_in", "Integrator", "IntegrationBudget",
    "IntegrationResult", "Elementary", "ProvenNonElementary", "Unresolved", "TABLE_RULES",
    "table_engine",
]
