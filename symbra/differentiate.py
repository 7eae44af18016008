"""
Symbolic differentiation.

    >>> derivative(E("(sin (^ x 2))"), "x")
    E('(* 2 x (cos (^ x 2)))')

Function applications use the chain rule with the partial derivatives
stored in the function registry. A function without a derivative rule
yields an unevaluated (Derivative f x 1) node, so derivative() never
fails on well-formed input.
"""

from typing import List, Optional
import logging

from .canonical import canonicalize
from .expr import (
    Expr, Kind, MINUS_ONE, ONE, ZERO, _as_symbol, add, as_expr, derivative_node, free_in,
    func, mul, pow_, rebuild, subs,
)
from .registry import FunctionRegistry, get_registry

logger = logging.getLogger(__name__)


class Differentiator:
    """Single differentiation with respect to one variable (results not canonical)."""

    def __init__(self, var, registry: Optional[FunctionRegistry] = None):
        self.symbol = _as_symbol(var)
        self.var = Expr(Kind.SYMBOL, self.symbol)
        self.registry = registry if registry is not None else get_registry()

    def __call__(self, expr: Expr) -> Expr:
        return self.visit(expr)

    def depends(self, expr: Expr) -> bool:
        return free_in(self.symbol, expr)

    def unevaluated(self, expr: Expr) -> Expr:
        return derivative_node(expr, self.var, 1)

    def visit(self, expr: Expr) -> Expr:
        kind = expr.kind
        if kind is Kind.SYMBOL:
            return ONE if expr.data is self.symbol else ZERO
        if kind in (Kind.MATRIX, Kind.SET, Kind.RELATION):
            return rebuild(expr, [self.visit(a) for a in expr.args])
        if kind is Kind.WILDCARD:
            return self.unevaluated(expr)
        if not self.depends(expr):
            return ZERO
        handler = getattr(self, "_" + kind.name.lower(), None)
        if handler is None:
            return self.unevaluated(expr)
        return handler(expr)

    def _add(self, expr: Expr) -> Expr:
        return add(*[self.visit(t) for t in expr.args])

    def _mul(self, expr: Expr) -> Expr:
        # generalized product rule; factor order is kept for non-commutative operands
        terms: List[Expr] = []
        factors = expr.args
        for i, f in enumerate(factors):
            if not self.depends(f):
                continue
            terms.append(mul(*factors[:i], self.visit(f), *factors[i + 1:]))
        return add(*terms) if terms else ZERO

    def _pow(self, expr: Expr) -> Expr:
        base, exp = expr.args
        if not self.depends(exp):
            # d(u^n) = n u^(n-1) u'
            return mul(exp, pow_(base, add(exp, MINUS_ONE)), self.visit(base))
        if not self.depends(base):
            # d(a^v) = a^v ln(a) v'
            return mul(expr, func("ln", base), self.visit(exp))
        # d(u^v) = u^v (v' ln u + v u'/u)
        return mul(expr, add(mul(self.visit(exp), func("ln", base)),
                             mul(exp, self.visit(base), pow_(base, MINUS_ONE))))

    def _function(self, expr: Expr) -> Expr:
        info = self.registry.get(expr.data)
        if info is None or not info.derivatives or len(expr.args) != info.arity:
            logger.debug("no derivative rule for %s; leaving it unevaluated", expr.data)
            return self.unevaluated(expr)
        terms = []
        for rule, arg in zip(info.derivatives, expr.args):
            if self.depends(arg):
                terms.append(mul(rule(expr.args), self.visit(arg)))
        return add(*terms)

    def _derivative(self, expr: Expr) -> Expr:
        inner, var, order = expr.args
        if var.kind is Kind.SYMBOL and var.data is self.symbol and order.kind is Kind.NUMBER:
            return derivative_node(inner, var, order.data + 1)
        return self.unevaluated(expr)

    def _integral(self, expr: Expr) -> Expr:
        body, var = expr.args[0], expr.args[1]
        same = var.kind is Kind.SYMBOL and var.data is self.symbol
        if len(expr.args) == 2:
            if same:
                return body
            return Expr(Kind.INTEGRAL, None, (self.visit(body), var))
        lower, upper = expr.args[2], expr.args[3]
        # Leibniz rule
        terms = [
            mul(subs(body, {var: upper}), self.visit(upper)),
            mul(MINUS_ONE, subs(body, {var: lower}), self.visit(lower)),
        ]
        if not same and self.depends(body):
            terms.append(Expr(Kind.INTEGRAL, None, (self.visit(body), var, lower, upper)))
        return add(*terms)

    def _piecewise(self, expr: Expr) -> Expr:
        args = list(expr.args)
        for i in range(0, len(args) - 1, 2):
            args[i] = self.visit(args[i])
        if len(args) % 2:
            args[-1] = self.visit(args[-1])
        return rebuild(expr, args)

    def _sum(self, expr: Expr) -> Expr:
        body, var, lower, upper = expr.args
        bound_is_var = var.kind is Kind.SYMBOL and var.data is self.symbol
        if bound_is_var or self.depends(lower) or self.depends(upper):
            return self.unevaluated(expr)
        return rebuild(expr, (self.visit(body), var, lower, upper))


def derivative(expr, var, order: int = 1, *,
               registry: Optional[FunctionRegistry] = None) -> Expr:
    """
    Differentiate expr with respect to var.

    Args:
        expr: Expression to differentiate
        var: Variable (symbol expression, Symbol or name)
        order: Number of times to differentiate; 0 returns the canonical input
        registry: Function registry supplying derivative rules

    Returns:
        The canonical derivative, possibly containing unevaluated
        (Derivative ...) nodes

    Raises:
        ValueError: If order is negative
    """
    if order < 0:
        raise ValueError(f"derivative order must be non-negative, got {order}")
    d = Differentiator(var, registry)
    result = canonicalize(as_expr(expr), registry=registry)
    for _ in range(order):
        result = canonicalize(d.visit(result), registry=registry)
    return result


def gradient(expr, variables, *, registry: Optional[FunctionRegistry] = None) -> List[Expr]:
    """First partial derivatives with respect to each variable."""
    return [derivative(expr, v, registry=registry) for v in variables]


__all__ = ["Differentiator", "derivative", "gradient"]
