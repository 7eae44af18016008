"""
Numeric evaluation.

evaluate() substitutes values for symbols and folds everything it can to
floating-point (or complex) numbers using the registry's evaluators:

    >>> evaluate(E("(+ (sin x) 1)"), {"x": 0.5})
    E('1.479425538604203')

A function applied outside its declared domain (ln of a non-positive
real, say) stays unevaluated unless strict=True, in which case
DomainError is raised.
"""

from typing import Dict, Optional
import cmath
import logging
import math

from .errors import DomainError
from .expr import Expr, Kind, as_expr, num, rebuild
from .number import float_or_complex, from_float_result
from .registry import FunctionRegistry, get_registry

logger = logging.getLogger(__name__)

# Values of named constants
CONSTANTS: Dict[str, float] = {"pi": math.pi}


class Evaluator:
    """Bottom-up numeric folding under a symbol environment."""

    def __init__(self, env: Optional[Dict] = None, strict: bool = False,
                 registry: Optional[FunctionRegistry] = None):
        self.env = {}
        for key, value in (env or {}).items():
            name = key if isinstance(key, str) else as_expr(key).name
            self.env[name] = as_expr(value)
        self.strict = strict
        self.registry = registry if registry is not None else get_registry()

    def __call__(self, expr: Expr) -> Expr:
        return self.visit(expr)

    def fail(self, function: str, argument, message: str, node: Expr) -> Expr:
        if self.strict:
            raise DomainError(function, argument, message)
        logger.debug("left %s unevaluated: %s", function, message)
        return node

    def visit(self, expr: Expr) -> Expr:
        kind = expr.kind
        if kind is Kind.NUMBER:
            return num(expr.data.to_float())
        if kind is Kind.SYMBOL:
            name = expr.data.name
            if name in self.env:
                return self.visit(self.env[name])
            if name in CONSTANTS:
                return num(CONSTANTS[name])
            return expr
        if kind is Kind.PIECEWISE:
            return self._piecewise(expr)
        node = rebuild(expr, [self.visit(a) for a in expr.args])
        if not all(a.kind is Kind.NUMBER for a in node.args):
            return node
        values = [float_or_complex(a.data) for a in node.args]
        if kind is Kind.ADD:
            return num(from_float_result(sum(values)))
        if kind is Kind.MUL:
            result = 1.0
            for v in values:
                result *= v
            return num(from_float_result(result))
        if kind is Kind.POW:
            return self._pow(node, *values)
        if kind is Kind.FUNCTION:
            return self._function(node, values)
        if kind is Kind.RELATION:
            return self._relation(node, values)
        return node

    def _pow(self, node: Expr, base, exponent) -> Expr:
        try:
            if isinstance(base, float) and isinstance(exponent, float) and (base >= 0 or exponent.is_integer()):
                return num(from_float_result(base ** exponent))
            return num(from_float_result(complex(base) ** complex(exponent)))
        except ZeroDivisionError:
            return self.fail("^", base, "zero raised to a negative power", node)
        except OverflowError as exc:
            return self.fail("^", base, str(exc), node)

    def _function(self, node: Expr, values) -> Expr:
        name = node.data
        info = self.registry.get(name)
        if info is None or info.evaluator is None or len(values) != info.arity:
            return node
        argument = values[0] if len(values) == 1 else tuple(values)
        if not info.in_domain(*values):
            return self.fail(name, argument, "argument outside the domain", node)
        try:
            return num(from_float_result(info.evaluator(*values)))
        except (ValueError, ZeroDivisionError, OverflowError) as exc:
            return self.fail(name, argument, str(exc), node)

    def _relation(self, node: Expr, values) -> Expr:
        a, b = values
        op = node.data
        if op == "==":
            return num(int(a == b))
        if op == "!=":
            return num(int(a != b))
        if isinstance(a, complex) or isinstance(b, complex):
            return node
        return num(int({"<": a < b, "<=": a <= b, ">": a > b, ">=": a >= b}[op]))

    def _piecewise(self, expr: Expr) -> Expr:
        args = expr.args
        for i in range(0, len(args) - 1, 2):
            condition = self.visit(args[i + 1])
            if condition.kind is not Kind.NUMBER:
                return rebuild(expr, [self.visit(a) for a in args])
            if not condition.data.is_zero():
                return self.visit(args[i])
        if len(args) % 2:
            return self.visit(args[-1])
        return rebuild(expr, [self.visit(a) for a in args])


def evaluate(expr, env: Optional[Dict] = None, *, strict: bool = False,
             registry: Optional[FunctionRegistry] = None) -> Expr:
    """
    Numerically evaluate expr.

    Args:
        expr: Expression to evaluate
        env: Mapping from symbol (or name) to value
        strict: Raise DomainError instead of leaving out-of-domain
            applications unevaluated
        registry: Function registry supplying evaluators

    Returns:
        A NUMBER expression when everything folds, otherwise the partially
        evaluated expression
    """
    return Evaluator(env, strict, registry).visit(as_expr(expr))


def numeric_value(expr, env: Optional[Dict] = None, *,
                  registry: Optional[FunctionRegistry] = None) -> complex:
    """
    Evaluate expr to a Python complex number.

    Raises:
        DomainError: If a function is applied outside its domain
        ValueError: If free symbols remain after substitution
    """
    result = evaluate(expr, env, strict=True, registry=registry)
    if result.kind is not Kind.NUMBER:
        raise ValueError(f"{result} does not evaluate to a number")
    return complex(result.data)


def close(a: complex, b: complex, rel_tol: float = 1e-9, abs_tol: float = 1e-9) -> bool:
    """Tolerant comparison of evaluated values."""
    return cmath.isclose(a, b, rel_tol=rel_tol, abs_tol=abs_tol)


__all__ = ["Evaluator", "evaluate", "numeric_value", "close", "CONSTANTS"]
