"""
Immutable expression trees.

An Expr has a kind, kind-specific data and a tuple of children:

    NUMBER      data=Number                  args=()
    SYMBOL      data=Symbol                  args=()
    ADD / MUL   data=None                    args=(term, ...)
    POW         data=None                    args=(base, exponent)
    FUNCTION    data=name                    args=(arg, ...)
    RELATION    data=op ("==", "<", ...)     args=(lhs, rhs)
    PIECEWISE   data=None                    args=(value, cond, ..., [otherwise])
    MATRIX      data=(rows, cols)            args=row-major entries
    SET         data=None                    args=elements
    DERIVATIVE  data=None                    args=(expr, var, order)
    INTEGRAL    data=None                    args=(expr, var[, lower, upper])
    LIMIT       data=direction or None       args=(expr, var, point)
    SUM/PRODUCT data=None                    args=(expr, var, lower, upper)
    WILDCARD    data=Wildcard                args=()   (patterns only)

Builders and Python operators produce raw trees; canonicalize() puts them
in normal form. Expressions compare and hash structurally.
"""

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Callable, Dict, FrozenSet, Iterator, Optional, Sequence, Tuple, Union

from .number import Number, IMAGINARY_UNIT
from .symbols import Commutativity, Symbol


class Kind(Enum):
    NUMBER = "number"
    SYMBOL = "symbol"
    ADD = "+"
    MUL = "*"
    POW = "^"
    FUNCTION = "function"
    RELATION = "relation"
    PIECEWISE = "Piecewise"
    MATRIX = "Matrix"
    SET = "Set"
    DERIVATIVE = "Derivative"
    INTEGRAL = "Integral"
    LIMIT = "Limit"
    SUM = "Sum"
    PRODUCT = "Product"
    WILDCARD = "wildcard"


# Position of each kind in the canonical order of commutative operands
_KIND_RANK = {
    Kind.NUMBER: 0, Kind.SYMBOL: 1, Kind.POW: 2, Kind.MUL: 3, Kind.ADD: 4,
    Kind.FUNCTION: 5, Kind.DERIVATIVE: 6, Kind.INTEGRAL: 7, Kind.LIMIT: 8,
    Kind.SUM: 9, Kind.PRODUCT: 10, Kind.RELATION: 11, Kind.PIECEWISE: 12,
    Kind.MATRIX: 13, Kind.SET: 14, Kind.WILDCARD: 15,
}

RELATION_OPS = ("==", "!=", "<", "<=", ">", ">=")

# Kinds whose second argument is a variable bound by the node
_BINDING_KINDS = (Kind.SUM, Kind.PRODUCT, Kind.LIMIT)


@dataclass(frozen=True)
class Wildcard:
    """
    Pattern placeholder carried by a WILDCARD node.

    Attributes:
        name: Binding name; the same name must bind the same value everywhere
        sequence: Matches zero or more operands (?x...) instead of one
        constraint: "const", "var", "int", "pos", "neg" or "free"
        free_of: For constraint "free", the name of the variable that must not occur
        predicate: Extra test on the candidate value
    """

    name: str
    sequence: bool = False
    constraint: Optional[str] = None
    free_of: Optional[str] = None
    predicate: Optional[Callable[["Expr"], bool]] = None

    def __str__(self):
        text = f"?{self.name}"
        if self.constraint == "free":
            text += f":free({self.free_of})"
        elif self.constraint:
            text += f":{self.constraint}"
        elif self.predicate is not None:
            text += ":pred"
        if self.sequence:
            text += "..."
        return text


class Expr:
    """Immutable expression node. See the module docstring for the layout per kind."""

    __slots__ = ("kind", "data", "args", "_hash", "_key")

    def __init__(self, kind: Kind, data=None, args: Sequence["Expr"] = ()):
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "args", tuple(args))
        object.__setattr__(self, "_hash", None)
        object.__setattr__(self, "_key", None)

    def __setattr__(self, key, value):
        raise AttributeError("Expr is immutable")

    def __reduce__(self):
        return (Expr, (self.kind, self.data, self.args))

    # ------------------------------------------------------------
    # Equality and hashing
    # ------------------------------------------------------------

    def __hash__(self):
        h = self._hash
        if h is None:
            if self.kind is Kind.NUMBER:
                h = hash(self.data)
            elif self.kind is Kind.SYMBOL:
                h = hash(self.data.name)
            else:
                h = hash((self.kind, self.data, self.args))
            object.__setattr__(self, "_hash", h)
        return h

    def __eq__(self, other):
        if self is other:
            return True
        if isinstance(other, Expr):
            if self.kind is not other.kind:
                return False
            if self._hash is not None and other._hash is not None and self._hash != other._hash:
                return False
            if self.kind is Kind.NUMBER:
                # 1 and 1.0 are equal values but distinct expressions
                return self.data == other.data and self.data.is_exact() == other.data.is_exact()
            return self.data == other.data and self.args == other.args
        if isinstance(other, (int, Fraction, float, complex, Number)) and not isinstance(other, bool):
            return self.kind is Kind.NUMBER and self.data == other
        if isinstance(other, Symbol):
            return self.kind is Kind.SYMBOL and self.data is other
        if isinstance(other, str):
            return self.kind is Kind.SYMBOL and self.data.name == other
        return NotImplemented

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    # ------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------

    @property
    def is_number(self) -> bool:
        return self.kind is Kind.NUMBER

    @property
    def is_symbol(self) -> bool:
        return self.kind is Kind.SYMBOL

    @property
    def is_atom(self) -> bool:
        return self.kind in (Kind.NUMBER, Kind.SYMBOL, Kind.WILDCARD)

    @property
    def value(self) -> Number:
        if self.kind is not Kind.NUMBER:
            raise TypeError(f"{self} is not a number")
        return self.data

    @property
    def name(self) -> str:
        """Symbol name, function name or relation operator."""
        if self.kind is Kind.SYMBOL:
            return self.data.name
        if self.kind in (Kind.FUNCTION, Kind.RELATION):
            return self.data
        if self.kind is Kind.WILDCARD:
            return self.data.name
        raise TypeError(f"{self.kind.name} node has no name")

    @property
    def head(self) -> str:
        """Operator label used by the s-expression form."""
        if self.kind in (Kind.FUNCTION, Kind.RELATION):
            return self.data
        return self.kind.value

    # ------------------------------------------------------------
    # Operators build raw, non-canonical trees
    # ------------------------------------------------------------

    def __add__(self, other):
        return add(self, other)

    def __radd__(self, other):
        return add(other, self)

    def __sub__(self, other):
        return add(self, mul(-1, other))

    def __rsub__(self, other):
        return add(other, mul(-1, self))

    def __mul__(self, other):
        return mul(self, other)

    def __rmul__(self, other):
        return mul(other, self)

    def __truediv__(self, other):
        return mul(self, pow_(other, -1))

    def __rtruediv__(self, other):
        return mul(other, pow_(self, -1))

    def __pow__(self, other):
        return pow_(self, other)

    def __rpow__(self, other):
        return pow_(other, self)

    def __neg__(self):
        return mul(-1, self)

    def __pos__(self):
        return self

    def __str__(self):
        from .sexpr import format_sexpr
        return format_sexpr(self)

    def __repr__(self):
        return f"E({str(self)!r})"


ExprLike = Union[Expr, Number, Symbol, int, Fraction, float, complex, str]


def as_expr(value: ExprLike) -> Expr:
    """Coerce Python numbers, Numbers, Symbols and symbol names to Expr."""
    if isinstance(value, Expr):
        return value
    if isinstance(value, bool):
        raise TypeError("booleans are not expressions")
    if isinstance(value, (int, Fraction, float, complex, Number)):
        return num(value)
    if isinstance(value, Symbol):
        return Expr(Kind.SYMBOL, value)
    if isinstance(value, str):
        return sym(value)
    raise TypeError(f"cannot convert {value!r} to an expression")


# ============================================================
# Builders
# ============================================================

def num(value) -> Expr:
    return Expr(Kind.NUMBER, value if isinstance(value, Number) else Number(value))


def sym(name: str, commutativity: Commutativity = Commutativity.SCALAR) -> Expr:
    return Expr(Kind.SYMBOL, Symbol(name, commutativity))


def symbols(names: str, commutativity: Commutativity = Commutativity.SCALAR) -> Tuple[Expr, ...]:
    """symbols("x y z") -> (x, y, z)"""
    return tuple(sym(n, commutativity) for n in names.replace(",", " ").split())


def add(*terms) -> Expr:
    return Expr(Kind.ADD, None, [as_expr(t) for t in terms])


def mul(*factors) -> Expr:
    return Expr(Kind.MUL, None, [as_expr(f) for f in factors])


def pow_(base, exponent) -> Expr:
    return Expr(Kind.POW, None, (as_expr(base), as_expr(exponent)))


def func(name: str, *args) -> Expr:
    return Expr(Kind.FUNCTION, name, [as_expr(a) for a in args])


def rel(op: str, lhs, rhs) -> Expr:
    if op not in RELATION_OPS:
        raise ValueError(f"unknown relation {op!r}; expected one of {RELATION_OPS}")
    return Expr(Kind.RELATION, op, (as_expr(lhs), as_expr(rhs)))


def piecewise(*branches, otherwise=None) -> Expr:
    """piecewise((value, condition), ..., otherwise=default)"""
    args = []
    for value, condition in branches:
        args.extend((as_expr(value), as_expr(condition)))
    if otherwise is not None:
        args.append(as_expr(otherwise))
    return Expr(Kind.PIECEWISE, None, args)


def matrix(rows) -> Expr:
    rows = [list(r) for r in rows]
    if not rows or not rows[0]:
        raise ValueError("matrix needs at least one row and one column")
    width = len(rows[0])
    if any(len(r) != width for r in rows):
        raise ValueError("matrix rows must all have the same length")
    return Expr(Kind.MATRIX, (len(rows), width), [as_expr(v) for r in rows for v in r])


def set_(*elements) -> Expr:
    return Expr(Kind.SET, None, [as_expr(e) for e in elements])


def derivative_node(expr, var, order: int = 1) -> Expr:
    return Expr(Kind.DERIVATIVE, None, (as_expr(expr), as_expr(var), num(order)))


def integral_node(expr, var, lower=None, upper=None) -> Expr:
    args = [as_expr(expr), as_expr(var)]
    if (lower is None) != (upper is None):
        raise ValueError("a definite integral needs both bounds")
    if lower is not None:
        args.extend((as_expr(lower), as_expr(upper)))
    return Expr(Kind.INTEGRAL, None, args)


def limit_node(expr, var, point, direction: Optional[str] = None) -> Expr:
    if direction not in (None, "+", "-"):
        raise ValueError(f"limit direction must be '+', '-' or None, got {direction!r}")
    return Expr(Kind.LIMIT, direction, (as_expr(expr), as_expr(var), as_expr(point)))


def sum_node(expr, var, lower, upper) -> Expr:
    return Expr(Kind.SUM, None, (as_expr(expr), as_expr(var), as_expr(lower), as_expr(upper)))


def product_node(expr, var, lower, upper) -> Expr:
    return Expr(Kind.PRODUCT, None, (as_expr(expr), as_expr(var), as_expr(lower), as_expr(upper)))


def wild(name: str, sequence: bool = False, constraint: Optional[str] = None,
         free_of: Optional[str] = None, predicate: Optional[Callable[[Expr], bool]] = None) -> Expr:
    """Build a pattern wildcard; wild("x", predicate=...) is the predicate-constrained form."""
    if constraint not in (None, "const", "var", "int", "pos", "neg", "free", "expr"):
        raise ValueError(f"unknown wildcard constraint {constraint!r}")
    if constraint == "expr":
        constraint = None
    if constraint == "free" and not free_of:
        raise ValueError("free constraint needs the name of the excluded variable")
    return Expr(Kind.WILDCARD, Wildcard(name, sequence, constraint, free_of, predicate))


def rebuild(expr: Expr, args: Sequence[Expr]) -> Expr:
    """Same node with new children."""
    args = tuple(args)
    if args == expr.args:
        return expr
    return Expr(expr.kind, expr.data, args)


pi = sym("pi")
I = num(IMAGINARY_UNIT)
ZERO = num(0)
ONE = num(1)
MINUS_ONE = num(-1)
HALF = num(Fraction(1, 2))


# ============================================================
# Ordering
# ============================================================

def sort_key(expr: Expr) -> Tuple:
    """Total order over expression shapes, used to sort commutative operands."""
    key = expr._key
    if key is None:
        kind = expr.kind
        if kind is Kind.NUMBER:
            key = (0, "", expr.data.sort_tuple(), ())
        elif kind is Kind.SYMBOL:
            key = (1, expr.data.name, (expr.data.commutativity.value,), ())
        else:
            if kind in (Kind.FUNCTION, Kind.RELATION):
                label = expr.data
            elif kind is Kind.MATRIX:
                label = f"{expr.data[0]}x{expr.data[1]}"
            elif kind is Kind.WILDCARD:
                label = str(expr.data)
            elif kind is Kind.LIMIT:
                label = expr.data or ""
            else:
                label = ""
            key = (_KIND_RANK[kind], label, (), tuple(sort_key(a) for a in expr.args))
        object.__setattr__(expr, "_key", key)
    return key


# ============================================================
# Structural helpers
# ============================================================

def _as_symbol(var) -> Symbol:
    if isinstance(var, Symbol):
        return var
    if isinstance(var, str):
        return Symbol(var)
    if isinstance(var, Expr) and var.kind is Kind.SYMBOL:
        return var.data
    raise TypeError(f"expected a symbol, got {var!r}")


def walk(expr: Expr) -> Iterator[Expr]:
    """Pre-order traversal of every node."""
    stack = [expr]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.args))


def free_symbols(expr: Expr) -> FrozenSet[Symbol]:
    """Symbols occurring free; variables bound by Sum, Product and Limit are excluded."""
    if expr.kind is Kind.SYMBOL:
        return frozenset((expr.data,))
    if expr.kind in _BINDING_KINDS or (expr.kind is Kind.INTEGRAL and len(expr.args) == 4):
        bound = expr.args[1].data if expr.args[1].kind is Kind.SYMBOL else None
        inner = free_symbols(expr.args[0]) - {bound}
        rest = frozenset().union(*(free_symbols(a) for a in expr.args[2:]))
        return inner | rest
    if not expr.args:
        return frozenset()
    return frozenset().union(*(free_symbols(a) for a in expr.args))


def free_in(var, expr: Expr) -> bool:
    """True if var occurs free in expr."""
    target = _as_symbol(var)
    if expr.kind is Kind.SYMBOL:
        return expr.data is target
    if expr.kind in (Kind.NUMBER, Kind.WILDCARD):
        return False
    if expr.kind in _BINDING_KINDS or (expr.kind is Kind.INTEGRAL and len(expr.args) == 4):
        if expr.args[1].kind is Kind.SYMBOL and expr.args[1].data is target:
            return any(free_in(target, a) for a in expr.args[2:])
    return any(free_in(target, a) for a in expr.args)


def subs(expr: Expr, mapping: Dict) -> Expr:
    """
    Replace sub-trees structurally. Keys may be Exprs, Symbols or names.

    The result is not canonicalized.
    """
    table = {as_expr(k): as_expr(v) for k, v in mapping.items()}
    if not table:
        return expr

    def loop(node: Expr) -> Expr:
        replacement = table.get(node)
        if replacement is not None:
            return replacement
        if not node.args:
            return node
        return rebuild(node, [loop(a) for a in node.args])

    return loop(expr)


def size(expr: Expr) -> int:
    """Number of nodes."""
    return sum(1 for _ in walk(expr))


def depth(expr: Expr) -> int:
    deepest = 0
    stack = [(expr, 1)]
    while stack:
        node, level = stack.pop()
        deepest = max(deepest, level)
        stack.extend((a, level + 1) for a in node.args)
    return deepest


def is_commutative(expr: Expr) -> bool:
    """True when every symbol in expr commutes under multiplication."""
    if expr.kind is Kind.SYMBOL:
        return expr.data.is_commutative
    if expr.kind is Kind.MATRIX:
        return False
    return all(is_commutative(a) for a in expr.args)
