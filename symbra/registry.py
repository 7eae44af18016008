"""
Function Intelligence Registry.

Every known function has one FunctionInfo record: arity, domain test,
special values, parity, left inverses, partial derivatives, an
antiderivative and a numeric evaluator. The canonicalizer, the
differentiator, the integrator and evaluate() all consult the same
registry.

The default registry is built lazily on first use and never mutated
afterwards. Applications may add functions with register_function()
before that point; later calls raise RegistryFrozenError. Code that needs
extra functions after startup builds its own registry with
FunctionRegistry.extended() and passes it as registry=... to each call.

Rules are written as s-expression templates over the placeholders :u
(first argument) and :v (second argument):

    FunctionInfo(
        name="sin",
        derivatives=(template("(cos :u)"),),
        antiderivative=template("(* -1 (cos :u))"),
        ...
    )
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterator, Mapping, Optional, Sequence, Tuple
import cmath
import logging
import math
import threading

from .errors import RegistryFrozenError
from .expr import Expr, Kind, rebuild
from .sexpr import parse_sexpr

logger = logging.getLogger(__name__)

Rule = Callable[[Sequence[Expr]], Expr]

_PLACEHOLDERS = ("u", "v", "w")


def template(text: str) -> Rule:
    """
    Compile an s-expression template into a rule.

    The returned callable takes the function's argument tuple and returns
    the (raw, non-canonical) instantiated expression.
    """
    skeleton = parse_sexpr(text)

    def fill(args: Sequence[Expr]) -> Expr:
        values = dict(zip(_PLACEHOLDERS, args))

        def loop(node: Expr) -> Expr:
            if node.kind is Kind.WILDCARD:
                try:
                    return values[node.data.name]
                except KeyError:
                    raise ValueError(f"template {text!r} refers to :{node.data.name}, "
                                     f"but only {len(args)} argument(s) were given") from None
            if not node.args:
                return node
            return rebuild(node, [loop(a) for a in node.args])

        return loop(skeleton)

    fill.__doc__ = text
    return fill


@dataclass(frozen=True, eq=False)
class FunctionInfo:
    """
    Capability record for one function.

    Attributes:
        name: Canonical function name
        arity: Number of arguments
        family: Free-form classification ("trigonometric", "special", ...)
        domain: Test over numeric arguments (float or complex); False means
            the point is outside the declared domain
        special_values: Exact values at exact points, keyed by the canonical
            argument expression (unary functions only)
        parity: "odd", "even" or None
        inverses: Names g with f(g(u)) == u for every u
        derivatives: One rule per argument giving the partial derivative
        antiderivative: Rule F with F'(u) == f(u) (unary functions only)
        evaluator: Numeric implementation over float/complex arguments
    """

    name: str
    arity: int = 1
    family: str = "elementary"
    domain: Optional[Callable[..., bool]] = None
    special_values: Mapping[str, str] = field(default_factory=dict)
    parity: Optional[str] = None
    inverses: FrozenSet[str] = frozenset()
    derivatives: Tuple[Rule, ...] = ()
    antiderivative: Optional[Rule] = None
    evaluator: Optional[Callable[..., complex]] = None

    def __post_init__(self):
        if self.parity not in (None, "odd", "even"):
            raise ValueError(f"parity must be 'odd', 'even' or None, got {self.parity!r}")
        if self.derivatives and len(self.derivatives) != self.arity:
            raise ValueError(f"{self.name}: expected {self.arity} derivative rules, "
                             f"got {len(self.derivatives)}")
        object.__setattr__(self, "special_values", MappingProxyType(dict(self.special_values)))
        object.__setattr__(self, "inverses", frozenset(self.inverses))

    def special_value_table(self) -> Dict[Expr, Expr]:
        """Parsed special values as {argument: value} (not canonicalized)."""
        return {parse_sexpr(k): parse_sexpr(v) for k, v in self.special_values.items()}

    def in_domain(self, *values) -> bool:
        if self.domain is None:
            return True
        return bool(self.domain(*values))


class FunctionRegistry(Mapping):
    """Immutable name -> FunctionInfo map."""

    def __init__(self, entries: Mapping[str, FunctionInfo] = ()):
        object.__setattr__(self, "_entries", MappingProxyType(dict(entries)))
        object.__setattr__(self, "_special_cache", {})
        object.__setattr__(self, "_lock", threading.Lock())

    def __setattr__(self, key, value):
        raise AttributeError("FunctionRegistry is immutable")

    def __getitem__(self, name: str) -> FunctionInfo:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"FunctionRegistry({len(self)} functions)"

    def extended(self, *infos: FunctionInfo) -> "FunctionRegistry":
        """Return a new registry with infos added (replacing same-named entries)."""
        entries = dict(self._entries)
        for info in infos:
            entries[info.name] = info
        return FunctionRegistry(entries)

    def special_values(self, name: str,
                       normalize: Optional[Callable[[Expr], Expr]] = None) -> Dict[Expr, Expr]:
        """
        Special-value table for name as {argument: value}.

        normalize (the canonicalizer) is applied to keys and values; the
        result is computed once per registry and function.
        """
        table = self._special_cache.get(name)
        if table is None:
            info = self._entries.get(name)
            raw = info.special_value_table() if info is not None else {}
            if normalize is not None:
                raw = {normalize(k): normalize(v) for k, v in raw.items()}
            with self._lock:
                table = self._special_cache.setdefault(name, raw)
        return table


# ============================================================
# Numeric helpers
# ============================================================

def _real(z) -> bool:
    return not isinstance(z, complex) or z.imag == 0


def _log_domain(z) -> bool:
    if _real(z):
        return complex(z).real > 0
    return True


def _sqrt_domain(z) -> bool:
    if _real(z):
        return complex(z).real >= 0
    return True


def _unit_interval(z) -> bool:
    if _real(z):
        return -1 <= complex(z).real <= 1
    return True


def _nonzero(f: Callable) -> Callable:
    def check(z) -> bool:
        return abs(f(z)) > 1e-15
    return check


def _real_only(f: Callable) -> Callable:
    def evaluate(z):
        if not _real(z):
            raise ValueError("complex argument not supported")
        return f(complex(z).real)
    return evaluate


def _sec(z):
    return 1 / cmath.cos(z)


def _csc(z):
    return 1 / cmath.sin(z)


def _cot(z):
    return cmath.cos(z) / cmath.sin(z)


def _atan2(y, x):
    if not (_real(y) and _real(x)):
        raise ValueError("atan2 needs real arguments")
    return math.atan2(complex(y).real, complex(x).real)


# ============================================================
# Built-in table
# ============================================================

_ONE_MINUS_SQ = "(+ 1 (* -1 (^ :u 2)))"
_ONE_PLUS_SQ = "(+ 1 (^ :u 2))"


def _builtin_functions() -> Dict[str, FunctionInfo]:
    t = template
    infos = [
        # Trigonometric
        FunctionInfo(
            name="sin", family="trigonometric", parity="odd", inverses={"asin"},
            special_values={"0": "0", "pi": "0", "(* 1/2 pi)": "1", "(* 1/6 pi)": "1/2",
                            "(* 3/2 pi)": "-1", "(* 1/4 pi)": "(^ 2 -1/2)",
                            "(* 1/3 pi)": "(* 1/2 (^ 3 1/2))"},
            derivatives=(t("(cos :u)"),),
            antiderivative=t("(* -1 (cos :u))"),
            evaluator=cmath.sin,
        ),
        FunctionInfo(
            name="cos", family="trigonometric", parity="even", inverses={"acos"},
            special_values={"0": "1", "pi": "-1", "(* 1/2 pi)": "0", "(* 1/3 pi)": "1/2",
                            "(* 3/2 pi)": "0", "(* 1/4 pi)": "(^ 2 -1/2)",
                            "(* 1/6 pi)": "(* 1/2 (^ 3 1/2))"},
            derivatives=(t("(* -1 (sin :u))"),),
            antiderivative=t("(sin :u)"),
            evaluator=cmath.cos,
        ),
        FunctionInfo(
            name="tan", family="trigonometric", parity="odd", inverses={"atan"},
            domain=_nonzero(cmath.cos),
            special_values={"0": "0", "(* 1/4 pi)": "1", "pi": "0"},
            derivatives=(t("(^ (cos :u) -2)"),),
            antiderivative=t("(* -1 (ln (cos :u)))"),
            evaluator=cmath.tan,
        ),
        FunctionInfo(
            name="cot", family="trigonometric", parity="odd",
            domain=_nonzero(cmath.sin),
            special_values={"(* 1/4 pi)": "1", "(* 1/2 pi)": "0"},
            derivatives=(t("(* -1 (^ (sin :u) -2))"),),
            antiderivative=t("(ln (sin :u))"),
            evaluator=_cot,
        ),
        FunctionInfo(
            name="sec", family="trigonometric", parity="even",
            domain=_nonzero(cmath.cos),
            special_values={"0": "1", "pi": "-1"},
            derivatives=(t("(* (sec :u) (tan :u))"),),
            antiderivative=t("(ln (+ (sec :u) (tan :u)))"),
            evaluator=_sec,
        ),
        FunctionInfo(
            name="csc", family="trigonometric", parity="odd",
            domain=_nonzero(cmath.sin),
            special_values={"(* 1/2 pi)": "1"},
            derivatives=(t("(* -1 (cot :u) (csc :u))"),),
            antiderivative=t("(* -1 (ln (+ (cot :u) (csc :u))))"),
            evaluator=_csc,
        ),
        # Inverse trigonometric
        FunctionInfo(
            name="asin", family="inverse-trigonometric", parity="odd",
            domain=_unit_interval,
            special_values={"0": "0", "1": "(* 1/2 pi)", "1/2": "(* 1/6 pi)"},
            derivatives=(t(f"(^ {_ONE_MINUS_SQ} -1/2)"),),
            antiderivative=t(f"(+ (* :u (asin :u)) (^ {_ONE_MINUS_SQ} 1/2))"),
            evaluator=cmath.asin,
        ),
        FunctionInfo(
            name="acos", family="inverse-trigonometric",
            domain=_unit_interval,
            special_values={"0": "(* 1/2 pi)", "1": "0", "-1": "pi", "1/2": "(* 1/3 pi)"},
            derivatives=(t(f"(* -1 (^ {_ONE_MINUS_SQ} -1/2))"),),
            antiderivative=t(f"(+ (* :u (acos :u)) (* -1 (^ {_ONE_MINUS_SQ} 1/2)))"),
            evaluator=cmath.acos,
        ),
        FunctionInfo(
            name="atan", family="inverse-trigonometric", parity="odd",
            special_values={"0": "0", "1": "(* 1/4 pi)"},
            derivatives=(t(f"(^ {_ONE_PLUS_SQ} -1)"),),
            antiderivative=t(f"(+ (* :u (atan :u)) (* -1/2 (ln {_ONE_PLUS_SQ})))"),
            evaluator=cmath.atan,
        ),
        FunctionInfo(
            name="atan2", arity=2, family="inverse-trigonometric",
            derivatives=(t("(* :v (^ (+ (^ :u 2) (^ :v 2)) -1))"),
                         t("(* -1 :u (^ (+ (^ :u 2) (^ :v 2)) -1))")),
            evaluator=_atan2,
        ),
        # Hyperbolic
        FunctionInfo(
            name="sinh", family="hyperbolic", parity="odd", inverses={"asinh"},
            special_values={"0": "0"},
            derivatives=(t("(cosh :u)"),),
            antiderivative=t("(cosh :u)"),
            evaluator=cmath.sinh,
        ),
        FunctionInfo(
            name="cosh", family="hyperbolic", parity="even", inverses={"acosh"},
            special_values={"0": "1"},
            derivatives=(t("(sinh :u)"),),
            antiderivative=t("(sinh :u)"),
            evaluator=cmath.cosh,
        ),
        FunctionInfo(
            name="tanh", family="hyperbolic", parity="odd", inverses={"atanh"},
            special_values={"0": "0"},
            derivatives=(t("(^ (cosh :u) -2)"),),
            antiderivative=t("(ln (cosh :u))"),
            evaluator=cmath.tanh,
        ),
        FunctionInfo(
            name="asinh", family="inverse-hyperbolic", parity="odd",
            special_values={"0": "0"},
            derivatives=(t("(^ (+ 1 (^ :u 2)) -1/2)"),),
            antiderivative=t("(+ (* :u (asinh :u)) (* -1 (^ (+ 1 (^ :u 2)) 1/2)))"),
            evaluator=cmath.asinh,
        ),
        FunctionInfo(
            name="acosh", family="inverse-hyperbolic",
            special_values={"1": "0"},
            derivatives=(t("(* (^ (+ -1 :u) -1/2) (^ (+ 1 :u) -1/2))"),),
            evaluator=cmath.acosh,
        ),
        FunctionInfo(
            name="atanh", family="inverse-hyperbolic", parity="odd",
            special_values={"0": "0"},
            derivatives=(t(f"(^ {_ONE_MINUS_SQ} -1)"),),
            antiderivative=t(f"(+ (* :u (atanh :u)) (* 1/2 (ln {_ONE_MINUS_SQ})))"),
            evaluator=cmath.atanh,
        ),
        # Exponential and logarithm
        FunctionInfo(
            name="exp", family="exponential", inverses={"ln"},
            special_values={"0": "1"},
            derivatives=(t("(exp :u)"),),
            antiderivative=t("(exp :u)"),
            evaluator=cmath.exp,
        ),
        FunctionInfo(
            name="ln", family="logarithmic",
            domain=_log_domain,
            special_values={"1": "0"},
            derivatives=(t("(^ :u -1)"),),
            antiderivative=t("(+ (* :u (ln :u)) (* -1 :u))"),
            evaluator=cmath.log,
        ),
        FunctionInfo(
            name="sqrt", family="algebraic",
            domain=_sqrt_domain,
            derivatives=(t("(* 1/2 (^ :u -1/2))"),),
            antiderivative=t("(* 2/3 (^ :u 3/2))"),
            evaluator=cmath.sqrt,
        ),
        # Piecewise-smooth
        FunctionInfo(
            name="abs", family="piecewise", parity="even",
            special_values={"0": "0"},
            derivatives=(t("(* :u (^ (abs :u) -1))"),),
            antiderivative=t("(* 1/2 :u (abs :u))"),
            evaluator=abs,
        ),
        # Special functions
        FunctionInfo(
            name="erf", family="special", parity="odd",
            special_values={"0": "0"},
            derivatives=(t("(* 2 (^ pi -1/2) (exp (* -1 (^ :u 2))))"),),
            antiderivative=t("(+ (* :u (erf :u)) (* (^ pi -1/2) (exp (* -1 (^ :u 2)))))"),
            evaluator=_real_only(math.erf),
        ),
        FunctionInfo(
            name="Ei", family="special",
            derivatives=(t("(* (exp :u) (^ :u -1))"),),
        ),
        FunctionInfo(
            name="Si", family="special", parity="odd",
            special_values={"0": "0"},
            derivatives=(t("(* (sin :u) (^ :u -1))"),),
        ),
        FunctionInfo(
            name="li", family="special",
            derivatives=(t("(^ (ln :u) -1)"),),
        ),
    ]
    return {info.name: info for info in infos}


# ============================================================
# Default registry lifecycle
# ============================================================

_pending: Dict[str, FunctionInfo] = {}
_default: Optional[FunctionRegistry] = None
_lock = threading.Lock()


def register_function(name: str, info: Optional[FunctionInfo] = None, **fields) -> FunctionInfo:
    """
    Add a function to the default registry before it is first used.

    Either pass a FunctionInfo or its fields as keyword arguments:

        register_function("sinc", derivatives=(template("..."),))

    Raises:
        RegistryFrozenError: If the default registry has already been built
    """
    if info is None:
        info = FunctionInfo(name=name, **fields)
    elif fields:
        info = replace(info, **fields)
    if info.name != name:
        info = replace(info, name=name)
    with _lock:
        if _default is not None:
            raise RegistryFrozenError(
                f"cannot register {name!r}: the default registry is already in use; "
                f"use FunctionRegistry.extended() instead")
        _pending[name] = info
    logger.debug("registered function %s", name)
    return info


def get_registry() -> FunctionRegistry:
    """Return the process-wide registry, building it on first call."""
    global _default
    registry = _default
    if registry is not None:
        return registry
    with _lock:
        if _default is None:
            entries = _builtin_functions()
            entries.update(_pending)
            _default = FunctionRegistry(entries)
            logger.debug("built default registry with %d functions", len(entries))
        return _default


def is_frozen() -> bool:
    return _default is not None
