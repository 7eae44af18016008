"""
Rule Engine and DSL Loader for symbra

This module loads rewriting rules written in a small DSL and applies them
with a choice of strategies. The integration lookup table is a RuleEngine.

DSL Format (.rules files):
    # Comment
    @rule-name: pattern => skeleton
    @rule-name "Description text": pattern => skeleton
    @rule-name[priority]: pattern => skeleton
    @rule-name: pattern => skeleton when condition

    [group]                     rules below belong to group
    :include other.rules        load rules from another file

    Examples:
    @mul-zero: (* 0 ?x) => 0
    @dd-sum "Derivative of sum": (Derivative (+ ?f ?g) ?v:var 1) => (+ (Derivative :f :v 1) (Derivative :g :v 1))
    @power[10]: (Integral (^ ?x ?n:const) ?x:var) => (* (^ :x (! + :n 1)) (! / 1 (! + :n 1))) when (! != :n -1)

Pattern and skeleton syntax are described in symbra.sexpr.

Conditions are skeletons evaluated after a match; a condition holds when
it instantiates to a non-zero number or a relation that is decidably
true. Guard operators available inside (! op ...):

    > < >= <= == !=        numeric comparison
    const? var? integer?   kind tests
    positive? negative? zero?
    free? e v              e does not contain v
    not and or

Tracing:
    Use RuleEngine.simplify(expr, trace=True) to see which rules are applied.
"""

from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple, Union
import logging
import re

from .canonical import canonicalize, decide_relation
from .config import get_settings
from .errors import ResourceExhausted
from .expr import Expr, Kind, as_expr, free_in, rebuild
from .rewriter import Bindings, NoMatch, _NoMatch, RuleType, instantiate, match, match_all
from .sexpr import format_sexpr, parse_sexpr
from .trace import RewriteTrace

logger = logging.getLogger(__name__)

ComputeTable = Dict[str, Callable[[List[Expr]], object]]


# ============================================================
# Guard predicates
# ============================================================

def _numbers(args: List[Expr]):
    if all(a.kind is Kind.NUMBER and a.data.is_real() for a in args):
        return [a.data for a in args]
    return None


def _compare(test: Callable) -> Callable[[List[Expr]], Optional[bool]]:
    def compare(args: List[Expr]) -> Optional[bool]:
        if len(args) != 2:
            return None
        values = _numbers(args)
        if values is None:
            return None
        return test(values[0], values[1])
    return compare


def _structural(test: Callable) -> Callable[[List[Expr]], Optional[bool]]:
    """== and != fall back to structural comparison of canonical operands."""
    numeric = _compare(test)

    def compare(args: List[Expr]) -> Optional[bool]:
        result = numeric(args)
        if result is not None or len(args) != 2:
            return result
        return test(args[0], args[1])
    return compare


def _kind_test(test: Callable[[Expr], bool]) -> Callable[[List[Expr]], Optional[bool]]:
    def check(args: List[Expr]) -> Optional[bool]:
        if len(args) != 1:
            return None
        return test(args[0])
    return check


def _truth(expr: Expr) -> Optional[bool]:
    if expr.kind is Kind.NUMBER:
        return not expr.data.is_zero()
    return decide_relation(expr)


def _not(args: List[Expr]) -> Optional[bool]:
    if len(args) != 1:
        return None
    value = _truth(args[0])
    return None if value is None else not value


def _and(args: List[Expr]) -> Optional[bool]:
    values = [_truth(a) for a in args]
    if any(v is False for v in values):
        return False
    if all(v is True for v in values):
        return True
    return None


def _or(args: List[Expr]) -> Optional[bool]:
    values = [_truth(a) for a in args]
    if any(v is True for v in values):
        return True
    if all(v is False for v in values):
        return False
    return None


def _free(args: List[Expr]) -> Optional[bool]:
    if len(args) != 2 or args[1].kind is not Kind.SYMBOL:
        return None
    return not free_in(args[1], args[0])


GUARD_PREDICATES: ComputeTable = {
    ">": _compare(lambda a, b: a > b),
    "<": _compare(lambda a, b: a < b),
    ">=": _compare(lambda a, b: a >= b),
    "<=": _compare(lambda a, b: a <= b),
    "==": _structural(lambda a, b: a == b),
    "!=": _structural(lambda a, b: a != b),
    "const?": _kind_test(lambda e: e.kind is Kind.NUMBER),
    "var?": _kind_test(lambda e: e.kind is Kind.SYMBOL),
    "integer?": _kind_test(lambda e: e.kind is Kind.NUMBER and e.data.is_integer()),
    "positive?": _kind_test(lambda e: e.kind is Kind.NUMBER and e.data.is_positive()),
    "negative?": _kind_test(lambda e: e.kind is Kind.NUMBER and e.data.is_negative()),
    "zero?": _kind_test(lambda e: e.kind is Kind.NUMBER and e.data.is_zero()),
    "free?": _free,
    "not": _not,
    "and": _and,
    "or": _or,
}


# ============================================================
# DSL
# ============================================================

class RuleMetadata:
    """Metadata for a rule including name, description, priority, and condition."""

    def __init__(self, name: Optional[str] = None, description: Optional[str] = None,
                 tags: Optional[List[str]] = None, condition: Optional[Expr] = None,
                 priority: int = 0):
        self.name = name
        self.description = description
        self.tags = tags or []
        self.condition = condition  # Optional guard condition
        self.priority = priority  # Higher priority fires first (default: 0)

    def header(self) -> str:
        """The '@name[priority] "description"' prefix of the rule's DSL line."""
        if not self.name:
            return ""
        text = f"@{self.name}[{self.priority}]" if self.priority != 0 else f"@{self.name}"
        if self.description:
            text += f" \"{self.description}\""
        return text

    def __repr__(self) -> str:
        base = self.header() or "<anonymous>"
        if self.condition is not None:
            base += f" when {format_sexpr(self.condition)}"
        return base


_HEADER_RE = re.compile(r'@([\w?-]+)(?:\[(-?\d+)\])?(?:\s+"([^"]*)")?\s*:\s*(.+)')


def _find_when(text: str) -> int:
    """Position of a top-level 'when' keyword, or -1."""
    depth = 0
    for i, c in enumerate(text):
        if c == '(':
            depth += 1
        elif c == ')':
            depth -= 1
        elif (depth == 0 and text.startswith('when', i) and (i == 0 or text[i - 1].isspace())
              and (i + 4 >= len(text) or text[i + 4].isspace())):
            return i
    return -1


def parse_rule_line(line: str) -> Optional[Tuple[RuleMetadata, Expr, Expr]]:
    """
    Parse a single rule line.

    Formats:
        @name: pattern => skeleton
        @name[priority]: pattern => skeleton
        @name "description": pattern => skeleton
        @name[priority] "description": pattern => skeleton
        @name: pattern => skeleton when condition
        pattern => skeleton

    Returns: (metadata, pattern, skeleton) or None if not a rule

    Raises:
        ValueError: If the line is a rule whose pattern, skeleton or
            condition does not parse
    """
    line = line.strip()

    # Skip empty lines and comments
    if not line or line.startswith('#'):
        return None

    metadata = RuleMetadata()
    if line.startswith('@'):
        header = _HEADER_RE.fullmatch(line)
        if not header:
            raise ValueError(f"malformed rule header: {line!r}")
        metadata.name = header.group(1)
        metadata.priority = int(header.group(2) or 0)
        metadata.description = header.group(3)
        line = header.group(4)

    if '=>' not in line:
        if metadata.name:
            raise ValueError(f"rule @{metadata.name} has no '=>'")
        return None

    pattern_str, rest = (part.strip() for part in line.split('=>', 1))
    skeleton_str = rest
    when_pos = _find_when(rest)
    if when_pos >= 0:
        skeleton_str = rest[:when_pos].strip()
        metadata.condition = parse_sexpr(rest[when_pos + 4:])

    return metadata, parse_sexpr(pattern_str), parse_sexpr(skeleton_str)


def load_rules_from_dsl(
    text: str,
    base_path: Optional[Path] = None,
    _included_files: Optional[Set[Path]] = None
) -> List[Tuple[RuleMetadata, RuleType]]:
    """
    Load rules from DSL text.

    Supports:
    - Named groups: [groupname]
    - File includes: :include path/to/file.rules

    Args:
        text: DSL text containing rules
        base_path: Base path for resolving relative :include paths
        _included_files: Internal tracking for circular include detection

    Returns:
        List of (metadata, (pattern, skeleton)) tuples
    """
    rules: List[Tuple[RuleMetadata, RuleType]] = []
    current_group = None
    if _included_files is None:
        _included_files = set()

    for line in text.split('\n'):
        stripped = line.strip()

        if stripped.startswith('[') and stripped.endswith(']'):
            current_group = stripped[1:-1].strip() or None
            continue

        if stripped.startswith(':include '):
            include_path = Path(stripped[9:].strip())
            if base_path is not None and not include_path.is_absolute():
                include_path = base_path / include_path
            resolved = include_path.resolve()
            if resolved in _included_files:
                raise ValueError(f"Circular include detected: {include_path}")
            if not include_path.exists():
                raise FileNotFoundError(f"Include file not found: {include_path}")
            _included_files.add(resolved)
            for meta, rule in load_rules_from_file(include_path, _included_files=_included_files):
                if current_group and not meta.tags:
                    meta.tags.append(current_group)
                rules.append((meta, rule))
            continue

        result = parse_rule_line(line)
        if result:
            metadata, pattern, skeleton = result
            if current_group and current_group not in metadata.tags:
                metadata.tags.append(current_group)
            rules.append((metadata, (pattern, skeleton)))
    return rules


def load_rules_from_file(
    path: Union[str, Path],
    _included_files: Optional[Set[Path]] = None
) -> List[Tuple[RuleMetadata, RuleType]]:
    """Load rules from a .rules file; :include paths resolve relative to it."""
    path = Path(path)
    if _included_files is None:
        _included_files = {path.resolve()}
    return load_rules_from_dsl(path.read_text(), base_path=path.parent,
                               _included_files=_included_files)


# ============================================================
# Rule Engine
# ============================================================

class _Budget:
    """Rewrite counter shared by one simplify() call."""

    __slots__ = ("limit", "used")

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def tick(self) -> None:
        self.used += 1
        if self.used > self.limit:
            raise ResourceExhausted("rewrite steps", self.limit)


class RuleEngine:
    """
    A rule engine that loads and applies rewriting rules.

    Rewritten terms are canonicalized after every step unless the engine
    is built with canonical=False, in which case the engine is a plain
    structural rewriter.

    Example:
        from symbra import RuleEngine, E

        engine = RuleEngine.from_dsl('''
            @double "Twice is times two": (twice ?x) => (* 2 :x)
            @mul-zero: (* 0 ?x) => 0
        ''')
        engine(E("(twice y)"))   # => (* 2 y)

        # Guards and compute forms
        engine = RuleEngine.from_dsl(
            "@abs-pos: (abs ?x:const) => :x when (! >= :x 0)")
    """

    def __init__(self, canonical: bool = True, compute: Optional[ComputeTable] = None,
                 max_steps: Optional[int] = None):
        """
        Initialize a RuleEngine.

        Args:
            canonical: Canonicalize the input and every rewrite result.
            compute: Extra (! op ...) handlers, added to GUARD_PREDICATES.
            max_steps: Default rewrite budget per simplify() call;
                settings.max_rewrite_steps when omitted.
        """
        self._rules: List[RuleType] = []
        self._metadata: List[RuleMetadata] = []
        self._rule_names: Dict[str, int] = {}  # Maps name -> index
        self._disabled_groups: Set[str] = set()
        self._canonical = canonical
        self._compute: ComputeTable = dict(GUARD_PREDICATES)
        if compute:
            self._compute.update(compute)
        self._max_steps = max_steps

    # ------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------

    def _sort_by_priority(self) -> None:
        """Sort rules by priority (descending); equal priorities keep load order."""
        indexed = sorted(range(len(self._rules)), key=lambda i: -self._metadata[i].priority)
        self._rules = [self._rules[i] for i in indexed]
        self._metadata = [self._metadata[i] for i in indexed]
        self._rule_names = {m.name: i for i, m in enumerate(self._metadata) if m.name}

    def _extend(self, parsed) -> 'RuleEngine':
        for metadata, rule in parsed:
            self._rules.append(rule)
            self._metadata.append(metadata)
        self._sort_by_priority()
        return self

    def load_dsl(self, text: str) -> 'RuleEngine':
        """Load rules from DSL text."""
        return self._extend(load_rules_from_dsl(text))

    def load_file(self, path: Union[str, Path]) -> 'RuleEngine':
        """Load rules from a .rules file."""
        return self._extend(load_rules_from_file(path))

    def load_rules(self, rules) -> 'RuleEngine':
        """Load (pattern, skeleton) pairs given as Exprs or s-expression strings."""
        return self._extend((RuleMetadata(), _coerce_rule(r)) for r in rules)

    def add_rule(self, pattern, skeleton, name: Optional[str] = None,
                 description: Optional[str] = None, condition=None,
                 priority: int = 0) -> 'RuleEngine':
        """Add a single rule with optional metadata."""
        if isinstance(condition, str):
            condition = parse_sexpr(condition)
        metadata = RuleMetadata(name=name, description=description,
                                condition=condition, priority=priority)
        return self._extend([(metadata, _coerce_rule((pattern, skeleton)))])

    def get_rule(self, name: str) -> Optional[Tuple[RuleType, RuleMetadata]]:
        """Get a rule and its metadata by name."""
        if name in self._rule_names:
            idx = self._rule_names[name]
            return self._rules[idx], self._metadata[idx]
        return None

    def get_metadata(self, index: int) -> RuleMetadata:
        return self._metadata[index] if index < len(self._metadata) else RuleMetadata()

    # ============================================================
    # Group Management
    # ============================================================

    def disable_group(self, group: str) -> 'RuleEngine':
        """Disable all rules in a group."""
        self._disabled_groups.add(group)
        return self

    def enable_group(self, group: str) -> 'RuleEngine':
        """Enable all rules in a group."""
        self._disabled_groups.discard(group)
        return self

    def groups(self) -> Set[str]:
        """Return all group names used by rules."""
        return {tag for meta in self._metadata for tag in meta.tags}

    def _is_rule_active(self, metadata: RuleMetadata, groups: Optional[List[str]] = None) -> bool:
        """
        Check if a rule should be applied given current group settings.

        With explicit groups, a tagged rule must be in one of them; untagged
        rules are always active.
        """
        if not metadata.tags:
            return True
        if groups is not None:
            return any(g in groups for g in metadata.tags)
        return not any(g in self._disabled_groups for g in metadata.tags)

    # ------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------

    def match(self, pattern, expr) -> Union[Bindings, _NoMatch]:
        """
        Match a pattern against an expression.

        Example:
            if bindings := engine.match("(+ ?a ?b)", expr):
                print(bindings["a"], bindings["b"])
        """
        return match(pattern, self._settle(as_expr(expr)))

    def _check_condition(self, condition: Optional[Expr], bindings) -> bool:
        """
        Check if a rule's condition is satisfied.

        A condition holds when it instantiates to a non-zero number or to a
        relation that can be decided true; anything undecidable fails.
        """
        if condition is None:
            return True
        result = canonicalize(instantiate(condition, bindings, self._compute))
        return bool(_truth(result))

    def _bindings_for(self, pattern: Expr, expr: Expr,
                      metadata: RuleMetadata) -> Iterator[Bindings]:
        """Matches of pattern whose condition holds, in match order."""
        if metadata.condition is None:
            bindings = match(pattern, expr)
            if bindings:
                yield bindings
            return
        for bindings in match_all(pattern, expr):
            if self._check_condition(metadata.condition, bindings):
                yield bindings

    def _settle(self, expr: Expr) -> Expr:
        return canonicalize(expr) if self._canonical else expr

    def _rewrite_here(self, expr: Expr, groups: Optional[List[str]],
                      trace: Optional[RewriteTrace]) -> Tuple[Expr, Optional[RuleMetadata]]:
        """Apply the first applicable rule at the root of expr."""
        for rule_idx, ((pattern, skeleton), metadata) in enumerate(zip(self._rules, self._metadata)):
            if not self._is_rule_active(metadata, groups):
                continue
            for bindings in self._bindings_for(pattern, expr, metadata):
                result = self._settle(instantiate(skeleton, bindings, self._compute))
                if result == expr:
                    continue
                if trace is not None:
                    trace.record(metadata.description or "", expr, result,
                                 name=metadata.name, rule_index=rule_idx)
                return result, metadata
        return expr, None

    def apply_once(self, expr, groups: Optional[List[str]] = None) -> Tuple[Expr, Optional[RuleMetadata]]:
        """
        Apply at most one rule to the expression root.

        Returns:
            (result, metadata) where metadata is None if no rule applied

        Example:
            result, applied = engine.apply_once(expr)
            if applied:
                print(f"Applied rule: {applied.name}")
        """
        return self._rewrite_here(self._settle(as_expr(expr)), groups, None)

    def rules_matching(self, expr, check_conditions: bool = True,
                       groups: Optional[List[str]] = None) -> List[Tuple[RuleMetadata, Bindings]]:
        """
        Find all rules that could apply to an expression.

        Useful for debugging and understanding why an expression isn't simplifying.

        Example:
            for meta, bindings in engine.rules_matching(expr):
                print(f"Rule {meta.name} matches with {bindings.to_dict()}")
        """
        expr = self._settle(as_expr(expr))
        matching = []
        for (pattern, _), metadata in zip(self._rules, self._metadata):
            if not self._is_rule_active(metadata, groups):
                continue
            if check_conditions:
                bindings = next(iter(self._bindings_for(pattern, expr, metadata)), NoMatch)
            else:
                bindings = match(pattern, expr)
            if bindings:
                matching.append((metadata, bindings))
        return matching

    @property
    def rules(self) -> List[RuleType]:
        """Get all loaded rules."""
        return self._rules.copy()

    # ------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------

    def simplify(self, expr, trace: Union[bool, RewriteTrace] = False,
                 max_steps: Optional[int] = None, strategy: str = "exhaustive",
                 groups: Optional[List[str]] = None):
        """
        Simplify an expression using all loaded rules.

        Args:
            expr: Expression to simplify
            trace: If True (or a RewriteTrace to fill), return (result, trace)
            max_steps: Maximum rewrite steps; exceeding it raises ResourceExhausted
            strategy: Rewriting strategy (default: "exhaustive")
                - "exhaustive": Apply rules repeatedly until no more apply
                - "once": Apply at most one rule anywhere in the expression
                - "bottomup": Simplify children first, then parent, repeat until fixpoint
                - "topdown": Try to simplify parent first, then children, repeat until fixpoint
            groups: If specified, only use rules from these groups.
                    If None, use all rules except those in disabled groups.

        Returns:
            Simplified expression, or (expression, trace) if trace is requested
        """
        strategies = {
            "exhaustive": self._simplify_exhaustive,
            "once": self._simplify_once,
            "bottomup": self._simplify_bottomup,
            "topdown": self._simplify_topdown,
        }
        if strategy not in strategies:
            raise ValueError(f"Unknown strategy: {strategy}. "
                             f"Valid options: exhaustive, once, bottomup, topdown")

        trace_obj = None
        if isinstance(trace, RewriteTrace):
            trace_obj = trace
        elif trace:
            trace_obj = RewriteTrace()
        expr = as_expr(expr)
        if trace_obj is not None and trace_obj.initial is None:
            trace_obj.initial = expr

        limit = max_steps or self._max_steps or get_settings().max_rewrite_steps
        budget = _Budget(limit)
        try:
            result = strategies[strategy](self._settle(expr), groups, trace_obj, budget)
        except ResourceExhausted:
            logger.warning("rewriting stopped after %d steps on %s", limit, format_sexpr(expr))
            raise

        if trace_obj is None:
            return result
        trace_obj.final = result
        return result, trace_obj

    def _rebuild(self, expr: Expr, parts: List[Expr]) -> Expr:
        return self._settle(rebuild(expr, parts))

    def _simplify_once(self, expr: Expr, groups, trace, budget) -> Expr:
        """Apply at most one rule anywhere in the expression tree (pre-order)."""
        result, applied = self._rewrite_here(expr, groups, trace)
        if applied:
            budget.tick()
            return result
        for i, child in enumerate(expr.args):
            new_child = self._simplify_once(child, groups, trace, budget)
            if new_child != child:
                parts = list(expr.args)
                parts[i] = new_child
                return self._rebuild(expr, parts)
        return expr

    def _simplify_exhaustive(self, expr: Expr, groups, trace, budget) -> Expr:
        """Rewrite the root to a fixed point, then the children, until nothing changes."""
        while True:
            result, applied = self._rewrite_here(expr, groups, trace)
            if applied:
                budget.tick()
                expr = result
                continue
            if expr.args:
                parts = [self._simplify_exhaustive(a, groups, trace, budget) for a in expr.args]
                if tuple(parts) != expr.args:
                    rebuilt = self._rebuild(expr, parts)
                    if rebuilt != expr:
                        expr = rebuilt
                        continue
            return expr

    def _simplify_bottomup(self, expr: Expr, groups, trace, budget) -> Expr:
        """Bottom-up strategy: simplify children first, then parent."""
        while True:
            new_expr = self._bottomup_pass(expr, groups, trace, budget)
            if new_expr == expr:
                return expr
            expr = new_expr

    def _bottomup_pass(self, expr: Expr, groups, trace, budget) -> Expr:
        """Single bottom-up pass: simplify children, then apply rules to parent."""
        if expr.args:
            expr = self._rebuild(expr, [self._bottomup_pass(a, groups, trace, budget)
                                        for a in expr.args])
        result, applied = self._rewrite_here(expr, groups, trace)
        if applied:
            budget.tick()
        return result

    def _simplify_topdown(self, expr: Expr, groups, trace, budget) -> Expr:
        """Top-down strategy: try parent first, then children."""
        while True:
            new_expr = self._topdown_pass(expr, groups, trace, budget)
            if new_expr == expr:
                return expr
            expr = new_expr

    def _topdown_pass(self, expr: Expr, groups, trace, budget) -> Expr:
        """Single top-down pass: apply rules to parent, then simplify children."""
        result, applied = self._rewrite_here(expr, groups, trace)
        if applied:
            budget.tick()
            return result  # revisited on the next pass
        if expr.args:
            return self._rebuild(expr, [self._topdown_pass(a, groups, trace, budget)
                                        for a in expr.args])
        return expr

    # ------------------------------------------------------------
    # Introspection and export
    # ------------------------------------------------------------

    def clear(self) -> 'RuleEngine':
        """Clear all rules."""
        self._rules = []
        self._metadata = []
        self._rule_names = {}
        return self

    @staticmethod
    def _format_rule(rule: RuleType, meta: RuleMetadata) -> str:
        pattern, skeleton = rule
        header = meta.header()
        text = f"{header + ': ' if header else ''}{format_sexpr(pattern)} => {format_sexpr(skeleton)}"
        if meta.condition is not None:
            text += f" when {format_sexpr(meta.condition)}"
        return text

    def list_rules(self) -> List[str]:
        """List all rules with their metadata in DSL format."""
        return [self._format_rule(r, m) for r, m in zip(self._rules, self._metadata)]

    def to_dsl(self, name: Optional[str] = None) -> str:
        """
        Export rules to DSL format string, organized by groups.

        load_dsl() reads the output back.
        """
        lines = []
        if name:
            lines.append(f"# {name}")
            lines.append("")

        current_group = None
        for rule, meta in zip(self._rules, self._metadata):
            rule_group = meta.tags[0] if meta.tags else None
            if rule_group != current_group:
                if rule_group:
                    if lines and lines[-1] != "":
                        lines.append("")
                    lines.append(f"[{rule_group}]")
                current_group = rule_group
            lines.append(self._format_rule(rule, meta))

        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RuleEngine({len(self._rules)} rules)"

    def __call__(self, expr, **kwargs):
        """Make engine callable: engine(expr) is shorthand for engine.simplify(expr)."""
        return self.simplify(expr, **kwargs)

    def __iter__(self):
        """Iterate over (rule, metadata) pairs."""
        return iter(zip(self._rules, self._metadata))

    def __contains__(self, name: str) -> bool:
        """Check if a named rule exists: 'mul-zero' in engine."""
        return name in self._rule_names

    def __getitem__(self, name: str) -> Tuple[RuleType, RuleMetadata]:
        """Get rule by name: engine['mul-zero']."""
        if name not in self._rule_names:
            raise KeyError(f"No rule named '{name}'")
        idx = self._rule_names[name]
        return self._rules[idx], self._metadata[idx]

    # Class method constructors for fluent creation
    @classmethod
    def from_dsl(cls, text: str, **kwargs) -> 'RuleEngine':
        """Create engine from DSL text."""
        return cls(**kwargs).load_dsl(text)

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> 'RuleEngine':
        """Create engine from a .rules file."""
        return cls(**kwargs).load_file(path)

    @classmethod
    def from_rules(cls, rules, **kwargs) -> 'RuleEngine':
        """Create engine from (pattern, skeleton) pairs."""
        return cls(**kwargs).load_rules(rules)

    # Combining engines (rule set algebra)
    def copy(self) -> 'RuleEngine':
        """Create a copy of this engine."""
        new_engine = RuleEngine(canonical=self._canonical, max_steps=self._max_steps)
        new_engine._compute = dict(self._compute)
        new_engine._rules = self._rules.copy()
        new_engine._metadata = self._metadata.copy()
        new_engine._rule_names = self._rule_names.copy()
        new_engine._disabled_groups = set(self._disabled_groups)
        return new_engine

    def __or__(self, other: 'RuleEngine') -> 'RuleEngine':
        """Union of two engines: engine1 | engine2."""
        result = self.copy()
        result |= other
        return result

    def __ior__(self, other: 'RuleEngine') -> 'RuleEngine':
        """In-place union: engine1 |= engine2."""
        for rule, meta in other:
            self._rules.append(rule)
            self._metadata.append(meta)
        self._sort_by_priority()
        return self

    def __rshift__(self, other: 'RuleEngine') -> 'SequencedEngine':
        """
        Sequence two engines: engine1 >> engine2.

        Returns a SequencedEngine that applies engine1 until fixpoint,
        then applies engine2 until fixpoint.

        Example:
            expand = RuleEngine.from_dsl("@expand: (square ?x) => (* :x :x)")
            trig = RuleEngine.from_dsl("@pythagoras: (+ (^ (sin ?x) 2) (^ (cos ?x) 2)) => 1")
            normalize = expand >> trig
        """
        return SequencedEngine([self, other])


def _coerce_rule(rule) -> RuleType:
    pattern, skeleton = rule[0], rule[1]
    if isinstance(pattern, str):
        pattern = parse_sexpr(pattern)
    if isinstance(skeleton, str):
        skeleton = parse_sexpr(skeleton)
    return as_expr(pattern), as_expr(skeleton)


class SequencedEngine:
    """
    An engine that applies multiple engines in sequence.

    Each engine is run until its fixpoint before moving to the next.
    Created via the >> operator on RuleEngine.
    """

    def __init__(self, engines: List[RuleEngine]):
        self._engines = engines

    def __call__(self, expr, **kwargs):
        """Apply all engines in sequence."""
        result = expr
        for engine in self._engines:
            result = engine(result, **kwargs)
        return result

    def __rshift__(self, other) -> 'SequencedEngine':
        """Chain another engine: (a >> b) >> c."""
        if isinstance(other, SequencedEngine):
            return SequencedEngine(self._engines + other._engines)
        return SequencedEngine(self._engines + [other])

    def __repr__(self) -> str:
        return f"SequencedEngine({len(self._engines)} phases)"

    def __len__(self) -> int:
        return len(self._engines)

    def __iter__(self):
        return iter(self._engines)
