"""
Pattern matching, instantiation and rewriting.

Patterns are expressions containing wildcards (see symbra.sexpr for the
?x syntax). Matching understands the algebra of the enclosing operator:
sums and commutative products match up to reordering and regrouping of
their operands (associative-commutative matching); everything else
matches positionally.

    >>> match(E("(f ?w1 ?w2)"), E("(f 3 x)"))
    Bindings({'w1': E('3'), 'w2': E('x')})
    >>> list(match_all(E("(+ ?a ?b)"), canonicalize(E("(+ x y)"))))
    [Bindings({'a': E('x'), 'b': E('y')}), Bindings({'a': E('y'), 'b': E('x')})]

A failed match is NoMatch (falsy), never an exception or a partial result.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union
import logging

from .canonical import canonicalize
from .config import get_settings
from .errors import ResourceExhausted
from .expr import Expr, Kind, ONE, ZERO, Wildcard, as_expr, free_in, is_commutative, sort_key, sym
from .sexpr import COMPUTE_HEAD, build, is_compute, parse_sexpr
from .trace import RewriteTrace

logger = logging.getLogger(__name__)

# A bound value: one expression, or a tuple of them for sequence wildcards
BoundValue = Union[Expr, Tuple[Expr, ...]]
RuleType = Tuple[Expr, Expr]  # (pattern, skeleton)
ComputeFunc = Callable[[List[Expr]], Any]


# ============================================================
# Bindings Class - Dict-like interface for match results
# ============================================================

class Bindings:
    """
    Dict-like wrapper for pattern matching bindings.

        if bindings := match(E("(+ ?a ?b)"), expr):
            print(bindings["a"], bindings["b"])
            print(bindings.get("c", default=ZERO))

    Bindings objects are truthy when a match succeeded.
    Use NoMatch (which is falsy) to represent failed matches.
    """

    __slots__ = ('_dict',)

    def __init__(self, pairs=()):
        """Initialize from a mapping or an iterable of (name, value) pairs."""
        self._dict: Dict[str, BoundValue] = dict(pairs)

    def __bool__(self) -> bool:
        """Bindings are always truthy (use NoMatch for failed matches)."""
        return True

    def __getitem__(self, key: str) -> BoundValue:
        return self._dict[key]

    def get(self, key: str, default=None):
        return self._dict.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self._dict

    def keys(self):
        return self._dict.keys()

    def values(self):
        return self._dict.values()

    def items(self):
        return self._dict.items()

    def __iter__(self):
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"Bindings({self._dict})"

    def __eq__(self, other):
        if isinstance(other, Bindings):
            return self._dict == other._dict
        if isinstance(other, dict):
            return self._dict == {k: _coerce_bound(v) for k, v in other.items()}
        return False

    def __hash__(self):
        return hash(frozenset(self._dict.items()))

    def to_dict(self) -> Dict[str, BoundValue]:
        """Convert to a plain dictionary."""
        return self._dict.copy()


def _coerce_bound(value) -> BoundValue:
    if isinstance(value, (tuple, list)):
        return tuple(as_expr(v) for v in value)
    return as_expr(value)


class _NoMatch:
    """
    Singleton representing a failed pattern match.

    NoMatch is falsy, allowing natural use in conditionals:

        if bindings := match(pattern, expr):
            # matched
        else:
            # NoMatch
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NoMatch"

    def __getitem__(self, key: str):
        raise KeyError(f"NoMatch has no binding for '{key}'")

    def get(self, key: str, default=None):
        return default

    def __contains__(self, key: str) -> bool:
        return False

    def __len__(self) -> int:
        return 0

    def __iter__(self):
        return iter([])


# Singleton instance
NoMatch = _NoMatch()


# ============================================================
# Wildcard constraints
# ============================================================

def _satisfies_one(spec: Wildcard, value: Expr, bindings: Dict[str, BoundValue]) -> bool:
    c = spec.constraint
    if c == "const" and value.kind is not Kind.NUMBER:
        return False
    if c == "var" and value.kind is not Kind.SYMBOL:
        return False
    if c == "int" and not (value.kind is Kind.NUMBER and value.data.is_integer()):
        return False
    if c == "pos" and not (value.kind is Kind.NUMBER and value.data.is_positive()):
        return False
    if c == "neg" and not (value.kind is Kind.NUMBER and value.data.is_negative()):
        return False
    if c == "free":
        excluded = bindings.get(spec.free_of)
        if excluded is None:
            excluded = sym(spec.free_of)
        if not isinstance(excluded, Expr) or excluded.kind is not Kind.SYMBOL:
            return False
        if free_in(excluded, value):
            return False
    if spec.predicate is not None and not spec.predicate(value):
        return False
    return True


def extend_bindings(spec: Wildcard, value: BoundValue,
                    bindings: Dict[str, BoundValue]) -> Optional[Dict[str, BoundValue]]:
    """
    Bind spec.name to value, or return None on a constraint failure or a
    conflict with an earlier binding of the same name.
    """
    items = value if isinstance(value, tuple) else (value,)
    if not all(_satisfies_one(spec, v, bindings) for v in items):
        return None
    if spec.name == "_":
        return bindings
    if spec.name in bindings:
        return bindings if bindings[spec.name] == value else None
    extended = dict(bindings)
    extended[spec.name] = value
    return extended


def _depends_on_bindings(pattern: Expr) -> bool:
    """True if matching pattern reads bindings made elsewhere (free(v) constraints)."""
    if pattern.kind is Kind.WILDCARD:
        return pattern.data.constraint == "free"
    return any(_depends_on_bindings(a) for a in pattern.args)


def _is_sequence(pattern: Expr) -> bool:
    return pattern.kind is Kind.WILDCARD and pattern.data.sequence


# ============================================================
# Pattern Matching
# ============================================================

class _Matcher:
    """One matching attempt: holds the memo of sub-pattern results."""

    def __init__(self):
        self.memo: Dict[Tuple[Expr, Expr], List[Dict[str, BoundValue]]] = {}
        self.max_operands = get_settings().max_match_operands

    def match(self, pat: Expr, exp: Expr, b: Dict[str, BoundValue]) -> Iterator[Dict[str, BoundValue]]:
        if pat.kind is Kind.WILDCARD:
            value = (exp,) if pat.data.sequence else exp
            result = extend_bindings(pat.data, value, b)
            if result is not None:
                yield result
            return

        if pat.kind is not exp.kind:
            # identity algebra: x is the one-operand sum (+ x) and product (* x)
            if pat.kind in (Kind.ADD, Kind.MUL):
                yield from self.operands(pat, (exp,), b, commutative=is_commutative(exp))
            return

        if pat.kind in (Kind.NUMBER, Kind.SYMBOL):
            if pat == exp:
                yield b
            return

        if pat.data != exp.data:
            return

        if pat.kind in (Kind.ADD, Kind.MUL):
            commutative = pat.kind is Kind.ADD or is_commutative(exp)
            yield from self.operands(pat, exp.args, b, commutative)
            return

        yield from self.ordered(pat.args, exp.args, b)

    def cached(self, pat: Expr, exp: Expr, b: Dict[str, BoundValue]) -> Iterator[Dict[str, BoundValue]]:
        """Match using results memoized per (pattern operand, target operand)."""
        if _depends_on_bindings(pat):
            yield from self.match(pat, exp, b)
            return
        key = (pat, exp)
        results = self.memo.get(key)
        if results is None:
            results = list(self.match(pat, exp, {}))
            self.memo[key] = results
        for r in results:
            merged = _merge(b, r)
            if merged is not None:
                yield merged

    def ordered(self, pats: Sequence[Expr], exps: Sequence[Expr],
                b: Dict[str, BoundValue]) -> Iterator[Dict[str, BoundValue]]:
        """Positional matching; sequence wildcards absorb runs of arguments."""
        if not any(_is_sequence(p) for p in pats):
            if len(pats) != len(exps):
                return
            # wildcards constrained by free(v) go after the patterns that bind v
            order = sorted(range(len(pats)), key=lambda i: _depends_on_bindings(pats[i]))
            yield from self._pairs([(pats[i], exps[i]) for i in order], b)
            return

        if not pats:
            if not exps:
                yield b
            return
        first = pats[0]
        if _is_sequence(first):
            for k in range(len(exps) + 1):
                nb = extend_bindings(first.data, tuple(exps[:k]), b)
                if nb is not None:
                    yield from self.ordered(pats[1:], exps[k:], nb)
            return
        if not exps:
            return
        for nb in self.match(first, exps[0], b):
            yield from self.ordered(pats[1:], exps[1:], nb)

    def _pairs(self, pairs, b):
        if not pairs:
            yield b
            return
        (p, e), rest = pairs[0], pairs[1:]
        for nb in self.match(p, e, b):
            yield from self._pairs(rest, nb)

    def operands(self, pat: Expr, targets: Sequence[Expr], b: Dict[str, BoundValue],
                 commutative: bool) -> Iterator[Dict[str, BoundValue]]:
        if not commutative:
            yield from self.ordered(pat.args, targets, b)
            return
        fixed = [p for p in pat.args if p.kind is not Kind.WILDCARD]
        wilds = [p for p in pat.args if p.kind is Kind.WILDCARD]
        if len(fixed) > len(targets):
            return
        yield from self._assign_fixed(pat.kind, fixed, wilds, tuple(targets), frozenset(), b)

    def _assign_fixed(self, kind, fixed, wilds, targets, used, b):
        if not fixed:
            remaining = [t for i, t in enumerate(targets) if i not in used]
            yield from self._distribute(kind, wilds, remaining, b)
            return
        q, rest = fixed[0], fixed[1:]
        tried = set()
        for j, t in enumerate(targets):
            if j in used or t in tried:
                continue
            tried.add(t)
            if not _head_compatible(q, t):
                continue
            for nb in self.cached(q, t, b):
                yield from self._assign_fixed(kind, rest, wilds, targets, used | {j}, nb)

    def _distribute(self, kind, wilds, remaining, b):
        """Assign the remaining operands to wildcards in lexicographic order."""
        if not wilds:
            if not remaining:
                yield b
            return
        required = [not w.data.sequence for w in wilds]
        limit = len(wilds) ** self.max_operands
        for count, assignment in enumerate(_assignments(len(wilds), len(remaining), required)):
            if count >= limit:
                logger.debug("stopping AC matching of %d operands after %d assignments",
                             len(remaining), limit)
                return
            groups: List[List[Expr]] = [[] for _ in wilds]
            for operand, w in zip(remaining, assignment):
                groups[w].append(operand)
            nb = b
            for w, group in zip(wilds, groups):
                spec = w.data
                value = tuple(group) if spec.sequence else _combine(kind, group)
                nb = extend_bindings(spec, value, nb)
                if nb is None:
                    break
            if nb is not None:
                yield nb


def _assignments(k: int, n: int, required: Sequence[bool]) -> Iterator[Tuple[int, ...]]:
    """
    Maps of n operands onto k wildcards, lazily and in lexicographic order.

    A wildcard with required[w] set receives at least one operand; prefixes
    that leave too few operands for the empty required wildcards are cut.
    """
    if n == 0:
        if not any(required):
            yield ()
        return
    counts = [0] * k
    choice: List[int] = []
    w = 0
    while True:
        if w < k:
            choice.append(w)
            counts[w] += 1
            missing = sum(1 for j in range(k) if required[j] and not counts[j])
            if missing <= n - len(choice):
                if len(choice) == n:
                    yield tuple(choice)
                else:
                    w = 0
                    continue
            counts[w] -= 1
            choice.pop()
            w += 1
        else:
            if not choice:
                return
            w = choice.pop()
            counts[w] -= 1
            w += 1


def _combine(kind: Kind, group: List[Expr]) -> Expr:
    if len(group) == 1:
        return group[0]
    return Expr(kind, None, group)


def _head_compatible(pat: Expr, exp: Expr) -> bool:
    if pat.kind in (Kind.ADD, Kind.MUL):
        return True
    if pat.kind is not exp.kind:
        return False
    if pat.kind in (Kind.NUMBER, Kind.SYMBOL):
        return pat == exp
    return pat.data == exp.data


def _merge(b: Dict[str, BoundValue], r: Dict[str, BoundValue]) -> Optional[Dict[str, BoundValue]]:
    if not r:
        return b
    merged = dict(b)
    for k, v in r.items():
        if k in merged:
            if merged[k] != v:
                return None
        else:
            merged[k] = v
    return merged


def _start(bindings) -> Dict[str, BoundValue]:
    if not bindings:
        return {}
    return {k: _coerce_bound(v) for k, v in dict(bindings).items()}


def match(pattern, target, bindings=None, *,
          trace: Optional[RewriteTrace] = None) -> Union[Bindings, _NoMatch]:
    """
    Match a pattern against an expression.

    Args:
        pattern: Pattern expression (or s-expression string)
        target: Expression to match; canonical targets give sound results
        bindings: Bindings that must hold already
        trace: Optional trace receiving a step on success

    Returns:
        The first Bindings in canonical partition order, or NoMatch
    """
    pattern = parse_sexpr(pattern) if isinstance(pattern, str) else as_expr(pattern)
    target = as_expr(target)
    for result in _Matcher().match(pattern, target, _start(bindings)):
        found = Bindings(result)
        if trace is not None:
            trace.record(f"match {pattern}", target, instantiate(pattern, found))
        return found
    return NoMatch


class MatchSequence:
    """
    Every distinct way pattern matches target.

    The sequence is lazy and restartable: each iteration reruns the search
    and yields Bindings one at a time, skipping duplicates.
    """

    def __init__(self, pattern: Expr, target: Expr, bindings=None):
        self.pattern = parse_sexpr(pattern) if isinstance(pattern, str) else as_expr(pattern)
        self.target = as_expr(target)
        self._start = _start(bindings)

    def __iter__(self) -> Iterator[Bindings]:
        seen = set()
        for result in _Matcher().match(self.pattern, self.target, dict(self._start)):
            key = frozenset(result.items())
            if key in seen:
                continue
            seen.add(key)
            yield Bindings(result)

    def first(self) -> Union[Bindings, _NoMatch]:
        for bindings in self:
            return bindings
        return NoMatch

    def __repr__(self) -> str:
        return f"MatchSequence({self.pattern}, {self.target})"


def match_all(pattern, target, bindings=None) -> MatchSequence:
    """All distinct matches of pattern against target (lazy, restartable)."""
    return MatchSequence(pattern, target, bindings)


# ============================================================
# Instantiation
# ============================================================

def _normalize_node(node: Expr) -> Expr:
    """Flatten and order sums/products the way the canonicalizer lays them out."""
    if node.kind not in (Kind.ADD, Kind.MUL):
        return node
    args: List[Expr] = []
    for a in node.args:
        if a.kind is node.kind:
            args.extend(a.args)
        else:
            args.append(a)
    if not args:
        return ZERO if node.kind is Kind.ADD else ONE
    if len(args) == 1:
        return args[0]
    if node.kind is Kind.ADD or all(is_commutative(a) for a in args):
        args = sorted(args, key=sort_key)
    elif node.kind is Kind.MUL:
        comm = sorted((a for a in args if is_commutative(a)), key=sort_key)
        args = comm + [a for a in args if not is_commutative(a)]
    return Expr(node.kind, None, args)


def _truth(value) -> Expr:
    return ONE if value else ZERO


def instantiate(skeleton, bindings, compute: Optional[Dict[str, ComputeFunc]] = None) -> Expr:
    """
    Instantiate a skeleton with bindings.

    Skeleton syntax:
        :name            - substitute the bound value
        :name...         - splice a bound sequence into the parent's arguments
        (! op args...)   - compute: compute[op](args) when given, otherwise
                           build (op args...) and canonicalize it
        anything else    - keep as-is

    Args:
        skeleton: The skeleton to instantiate
        bindings: Bindings (or dict) from a match
        compute: Optional handlers for (! op ...) forms; a handler returns an
            Expr, a bool (becomes 1 or 0) or None (fall back to building)

    Returns:
        The instantiated expression
    """
    skeleton = parse_sexpr(skeleton) if isinstance(skeleton, str) else skeleton
    values = bindings if isinstance(bindings, (Bindings, _NoMatch)) else _start(bindings)

    def lookup(spec: Wildcard, node: Expr):
        if spec.name in values:
            return values[spec.name]
        return node

    def loop(s: Expr) -> Expr:
        if s.kind is Kind.WILDCARD:
            value = lookup(s.data, s)
            if isinstance(value, tuple):
                if len(value) == 1:
                    return value[0]
                raise ValueError(f"sequence binding :{s.data.name} used outside an argument list")
            return value
        if not s.args:
            return s
        if is_compute(s):
            op = s.args[0].name
            args = [loop(a) for a in s.args[1:]]
            if compute and op in compute:
                result = compute[op](args)
                if isinstance(result, bool):
                    return _truth(result)
                if result is not None:
                    return as_expr(result)
            return canonicalize(build(op, *args))
        new_args: List[Expr] = []
        for a in s.args:
            if _is_sequence(a) and a.data.name in values:
                bound = values[a.data.name]
                new_args.extend(bound if isinstance(bound, tuple) else (bound,))
            else:
                new_args.append(loop(a))
        return _normalize_node(Expr(s.kind, s.data, new_args))

    return loop(skeleton)


# ============================================================
# Rewriter Factory
# ============================================================

def _as_rule(rule) -> RuleType:
    pattern, skeleton = rule[0], rule[1]
    if isinstance(pattern, str):
        pattern = parse_sexpr(pattern)
    if isinstance(skeleton, str):
        skeleton = parse_sexpr(skeleton)
    return as_expr(pattern), as_expr(skeleton)


def rewriter(rules, canonical: bool = True,
             max_steps: Optional[int] = None) -> Callable[[Expr], Expr]:
    """
    Create a rewriter function using given rules.

    The returned function rewrites to a fixed point: it applies the first
    matching rule at the root, otherwise rewrites the children, and repeats
    until nothing changes.

    Args:
        rules: Sequence of (pattern, skeleton) pairs (Exprs or s-expressions)
        canonical: Canonicalize the input and every rewrite result
        max_steps: Rewrite budget; defaults to settings.max_rewrite_steps

    Raises:
        ResourceExhausted: When the budget runs out before a fixed point

    Example:
        simplify = rewriter([("(* 0 ?x)", "0")])
    """
    compiled = [_as_rule(r) for r in rules]
    limit = max_steps if max_steps is not None else get_settings().max_rewrite_steps
    budget = [0]

    def settle(exp: Expr) -> Expr:
        return canonicalize(exp) if canonical else exp

    def tick():
        budget[0] += 1
        if budget[0] > limit:
            raise ResourceExhausted("rewrite steps", limit)

    def try_rules(exp: Expr) -> Optional[Expr]:
        for pattern, skeleton in compiled:
            bindings = match(pattern, exp)
            if bindings:
                result = settle(instantiate(skeleton, bindings))
                if result != exp:
                    return result
        return None

    def simplify(exp: Expr) -> Expr:
        while True:
            tick()
            result = try_rules(exp)
            if result is not None:
                exp = result
                continue
            if exp.args:
                parts = [simplify(a) for a in exp.args]
                if tuple(parts) != exp.args:
                    exp = settle(Expr(exp.kind, exp.data, parts))
                    continue
            return exp

    def run(exp) -> Expr:
        budget[0] = 0
        return simplify(settle(as_expr(exp)))

    return run


# Convenience alias
simplifier = rewriter

__all__ = [
    "Bindings", "NoMatch", "MatchSequence", "match", "match_all", "instantiate",
    "extend_bindings", "rewriter", "simplifier", "COMPUTE_HEAD",
]
