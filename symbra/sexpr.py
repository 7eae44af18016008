"""
S-expression reader and writer for symbra expressions.

This is a structural builder, not a math notation: every compound form is
(head arg ...), mirroring the Expr layout.

    (+ x (* 2 y))          sum and product
    (^ x 2)                power; (sqrt u) and (/ a b), (- a b), (- a) are sugar
    (sin x), (f a b)       function application; (log u) means (ln u)
    (< x 1)                relation (== != < <= > >=)
    3, -2, 3/4, 0.5, I     numbers; (complex 1 2) is 1 + 2i
    pi                     the constant pi (a symbol)
    (Derivative f x 1)  (Integral f x [lo hi])  (Limit f x a)
    (Sum f k lo hi)  (Product f k lo hi)  (Set a b)  (Piecewise v c ... [default])
    (Matrix 2 2 a b c d)

Pattern syntax:
    ?x or ?x:expr      - match any expression, bind to x
    ?x:const           - match a number only
    ?x:var             - match a symbol only
    ?x:int, ?x:pos, ?x:neg  - match integer / positive / negative numbers
    ?x:free(v)         - match an expression not containing v
    ?x...              - match zero or more operands, bind to x

Skeleton syntax:
    :x       - substitute bound value of x
    :x...    - splice a sequence binding
    (! op a b ...)   - compute: build (op a b ...) and canonicalize it, or
                       apply a named predicate when used in a guard
"""

import re
from fractions import Fraction
from typing import Tuple, Union

from .expr import (
    Expr, Kind, RELATION_OPS, add, as_expr, derivative_node, func,
    integral_node, limit_node, matrix, mul, num, piecewise, pow_, product_node,
    rel, set_, sum_node, sym, wild,
)
from .number import Number, IMAGINARY_UNIT
from .symbols import Commutativity

_INT_RE = re.compile(r"[-+]?\d+")
_RATIONAL_RE = re.compile(r"[-+]?\d+/\d+")
_FLOAT_RE = re.compile(r"[-+]?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?")

# Function-name aliases applied by the reader
FUNCTION_ALIASES = {"log": "ln"}

# Head used for compute sub-terms in skeletons and guards
COMPUTE_HEAD = "!"


def _split_list(s: str) -> list:
    """Split the inside of '( ... )' into top-level element strings."""
    depth = 0
    parts = []
    current = ''
    i = 1  # Skip opening paren

    while i < len(s):
        c = s[i]
        if c == '(':
            depth += 1
            current += c
        elif c == ')':
            if depth == 0:
                if current.strip():
                    parts.append(current.strip())
                if s[i + 1:].strip():
                    raise ValueError(f"unexpected text after expression: {s[i + 1:].strip()!r}")
                return parts
            depth -= 1
            current += c
        elif c in ' \t\n' and depth == 0:
            if current.strip():
                parts.append(current.strip())
            current = ''
        else:
            current += c
        i += 1

    raise ValueError(f"unbalanced parentheses in {s!r}")


def parse_sexpr(s: str) -> Expr:
    """
    Parse an s-expression string into an Expr (not canonicalized).

    Examples:
        "(+ x 1)" -> Expr ADD(x, 1)
        "(f ?a ?b)" -> FUNCTION f with two wildcards
    """
    s = s.strip()
    if not s:
        raise ValueError("empty expression")

    if s.startswith('('):
        parts = _split_list(s)
        if not parts:
            raise ValueError("empty list () is not an expression")
        head = parts[0]
        if head.startswith('(') or head.startswith('?') or head.startswith(':'):
            raise ValueError(f"operator position must be a name, got {head!r}")
        if head == COMPUTE_HEAD:
            if len(parts) < 2:
                raise ValueError("(! ...) needs an operator")
            return func(COMPUTE_HEAD, sym(parts[1]), *[parse_sexpr(p) for p in parts[2:]])
        if head == "complex" and len(parts) == 3:
            re_part, im_part = parse_sexpr(parts[1]), parse_sexpr(parts[2])
            if re_part.kind is Kind.NUMBER and im_part.kind is Kind.NUMBER:
                return num(re_part.data + im_part.data * IMAGINARY_UNIT)
        if head == "Matrix":
            return _build_matrix(parts[1:])
        return build(head, *[parse_sexpr(p) for p in parts[1:]])

    if s.startswith(')'):
        raise ValueError(f"unbalanced parentheses in {s!r}")

    return _parse_atom(s)


def _parse_atom(s: str) -> Expr:
    if _INT_RE.fullmatch(s):
        return num(int(s))
    if _RATIONAL_RE.fullmatch(s):
        n, d = s.split('/')
        if int(d) == 0:
            raise ValueError(f"zero denominator in {s!r}")
        return num(Fraction(int(n), int(d)))
    if _FLOAT_RE.fullmatch(s):
        return num(float(s))
    if s == "I":
        return num(IMAGINARY_UNIT)

    if s.startswith('?'):
        return _parse_wildcard(s[1:])

    if s.startswith(':'):
        rest = s[1:].strip()
        if rest.endswith('...'):
            return wild(rest[:-3].strip(), sequence=True)
        if not rest:
            raise ValueError("':' must be followed by a name")
        return wild(rest)

    return sym(s)


def _parse_wildcard(rest: str) -> Expr:
    is_rest = rest.endswith('...')
    if is_rest:
        rest = rest[:-3]

    if ':' not in rest:
        return wild(rest.strip() or 'x', sequence=is_rest)

    name_part, type_part = rest.split(':', 1)
    name = name_part.strip() or 'x'
    if type_part.startswith('free(') and type_part.endswith(')'):
        return wild(name, sequence=is_rest, constraint="free", free_of=type_part[5:-1].strip())
    if type_part in ("const", "var", "int", "pos", "neg", "expr"):
        return wild(name, sequence=is_rest, constraint=type_part)
    raise ValueError(f"unknown wildcard constraint {type_part!r} in ?{rest}")


def _build_matrix(parts: list) -> Expr:
    if len(parts) < 2:
        raise ValueError("(Matrix rows cols entries...) needs dimensions")
    rows, cols = int(parts[0]), int(parts[1])
    entries = [parse_sexpr(p) for p in parts[2:]]
    if len(entries) != rows * cols:
        raise ValueError(f"Matrix {rows}x{cols} needs {rows * cols} entries, got {len(entries)}")
    return matrix([entries[r * cols:(r + 1) * cols] for r in range(rows)])


def build(head: str, *args) -> Expr:
    """
    Build the compound expression (head args...).

    Known heads map to their node kinds; any other head is a function
    application.
    """
    args = [as_expr(a) for a in args]
    if head == "+":
        return add(*args)
    if head == "*":
        return mul(*args)
    if head in ("^", "**"):
        _arity(head, args, 2)
        return pow_(args[0], args[1])
    if head == "-":
        if len(args) == 1:
            return mul(-1, args[0])
        _arity(head, args, 2)
        return add(args[0], mul(-1, args[1]))
    if head == "/":
        _arity(head, args, 2)
        return mul(args[0], pow_(args[1], -1))
    if head in RELATION_OPS:
        _arity(head, args, 2)
        return rel(head, args[0], args[1])
    if head == "Derivative":
        if len(args) == 2:
            return derivative_node(args[0], args[1])
        _arity(head, args, 3)
        return Expr(Kind.DERIVATIVE, None, args)
    if head == "Integral":
        if len(args) not in (2, 4):
            raise ValueError("Integral takes (expr var) or (expr var lower upper)")
        return integral_node(*args)
    if head == "Limit":
        _arity(head, args, 3)
        return limit_node(*args)
    if head == "Sum":
        _arity(head, args, 4)
        return sum_node(*args)
    if head == "Product":
        _arity(head, args, 4)
        return product_node(*args)
    if head == "Set":
        return set_(*args)
    if head == "Piecewise":
        pairs = [(args[i], args[i + 1]) for i in range(0, len(args) - 1, 2)]
        otherwise = args[-1] if len(args) % 2 else None
        return piecewise(*pairs, otherwise=otherwise)
    return func(FUNCTION_ALIASES.get(head, head), *args)


def _arity(head: str, args: list, n: int) -> None:
    if len(args) != n:
        raise ValueError(f"{head} takes {n} arguments, got {len(args)}")


def format_sexpr(expr: Expr) -> str:
    """
    Format an Expr as an s-expression string; parse_sexpr reads it back.

    Examples:
        ADD(x, 1) -> "(+ 1 x)" once canonical
        wildcard ?n:const -> "?n:const"
    """
    kind = expr.kind
    if kind is Kind.NUMBER:
        return str(expr.data)
    if kind is Kind.SYMBOL:
        return expr.data.name
    if kind is Kind.WILDCARD:
        return str(expr.data)
    if kind is Kind.FUNCTION and expr.data == COMPUTE_HEAD and expr.args:
        parts = [COMPUTE_HEAD, expr.args[0].name] + [format_sexpr(a) for a in expr.args[1:]]
        return "(" + " ".join(parts) + ")"
    if kind is Kind.MATRIX:
        rows, cols = expr.data
        parts = ["Matrix", str(rows), str(cols)] + [format_sexpr(a) for a in expr.args]
        return "(" + " ".join(parts) + ")"
    parts = [expr.head] + [format_sexpr(a) for a in expr.args]
    return "(" + " ".join(parts) + ")"


# ============================================================
# Expression Builder
# ============================================================

class _ExprBuilder:
    """
    Expression builder for symbra.

    Examples:
        from symbra import E

        # Parse s-expression string
        expr = E("(+ x (* 2 y))")

        # Build programmatically with E.op()
        expr = E.op("+", "x", E.op("*", 2, "y"))

        # Create variables
        x, y = E.vars("x", "y")
        expr = E.op("sin", E.op("^", x, 2))
    """

    def __call__(self, s: str) -> Expr:
        """Parse an s-expression string."""
        return parse_sexpr(s)

    def op(self, name: str, *args) -> Expr:
        """Build (name args...); strings become symbols and numbers become constants."""
        return build(name, *args)

    def var(self, name: str, commutativity: Commutativity = Commutativity.SCALAR) -> Expr:
        return sym(name, commutativity)

    def vars(self, *names: str) -> Tuple[Expr, ...]:
        """
        Create multiple variables for unpacking.

        Example:
            x, y, z = E.vars("x", "y", "z")
        """
        return tuple(sym(n) for n in names)

    def const(self, value: Union[int, float, Fraction, complex, Number]) -> Expr:
        return num(value)

    def __repr__(self) -> str:
        return "E (expression builder)"


# Singleton instance
E = _ExprBuilder()


def is_compute(expr: Expr) -> bool:
    return expr.kind is Kind.FUNCTION and expr.data == COMPUTE_HEAD
