"""
Observational traces of (description, before, after) steps.

A RewriteTrace can be handed to canonicalize(), match() and integrate(), and
RuleEngine.simplify(expr, trace=True) returns one. Recording never changes
a result.
"""

from typing import Dict, List, Optional

from .expr import Expr
from .sexpr import format_sexpr


class RewriteStep:
    """A single step in a trace."""

    __slots__ = ("description", "before", "after", "name", "rule_index")

    def __init__(self, description: str, before: Expr, after: Expr,
                 name: Optional[str] = None, rule_index: Optional[int] = None):
        self.description = description
        self.before = before
        self.after = after
        self.name = name
        self.rule_index = rule_index

    @property
    def label(self) -> str:
        """Rule name when the step came from a named rule, else the description."""
        if self.name:
            return self.name
        if self.rule_index is not None:
            return f"rule[{self.rule_index}]"
        return self.description

    def __iter__(self):
        """Unpack as (description, before, after)."""
        return iter((self.description, self.before, self.after))

    def __repr__(self) -> str:
        return f"{self.label}: {format_sexpr(self.before)} → {format_sexpr(self.after)}"

    def to_dict(self) -> Dict:
        return {
            "rule_index": self.rule_index,
            "rule_name": self.name,
            "description": self.description,
            "before": format_sexpr(self.before),
            "after": format_sexpr(self.after),
        }


class RewriteTrace:
    """
    A trace of all steps applied.

    Provides multiple formatting options:
        - Default repr: verbose multi-line format
        - format("compact"): single line showing rule chain
        - format("rules"): just the step labels
        - format("chain"): expression transformations as a chain
        - to_dict(): plain dictionary
    """

    def __init__(self):
        self.steps: List[RewriteStep] = []
        self.initial: Optional[Expr] = None
        self.final: Optional[Expr] = None

    def add_step(self, step: RewriteStep) -> None:
        if self.initial is None:
            self.initial = step.before
        self.steps.append(step)
        self.final = step.after

    def record(self, description: str, before: Expr, after: Expr,
               name: Optional[str] = None, rule_index: Optional[int] = None) -> None:
        self.add_step(RewriteStep(description, before, after, name, rule_index))

    def _show(self, expr: Optional[Expr]) -> str:
        return "-" if expr is None else format_sexpr(expr)

    def format(self, style: str = "verbose") -> str:
        """
        Format the trace in different styles.

        Args:
            style: One of "verbose", "compact", "rules", "chain"
        """
        if style == "compact":
            labels = [s.label for s in self.steps]
            return f"{self._show(self.initial)} --[{', '.join(labels)}]--> {self._show(self.final)}"

        elif style == "rules":
            labels = [s.label for s in self.steps]
            return " -> ".join(labels) if labels else "(no rules applied)"

        elif style == "chain":
            if not self.steps:
                return self._show(self.initial)
            parts = [self._show(self.initial)]
            for step in self.steps:
                parts.append(f"  --({step.label})-->")
                parts.append(format_sexpr(step.after))
            return "\n".join(parts)

        elif style == "verbose":
            return repr(self)

        raise ValueError(f"Unknown trace style: {style}")

    def __repr__(self) -> str:
        lines = [f"Initial: {self._show(self.initial)}"]
        for i, step in enumerate(self.steps, 1):
            if step.name and step.description:
                lines.append(f"  {i}. {step} ({step.description})")
            else:
                lines.append(f"  {i}. {step}")
        lines.append(f"Final: {self._show(self.final)}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    def __bool__(self) -> bool:
        """True if any step was recorded."""
        return len(self.steps) > 0

    def to_dict(self) -> Dict:
        return {
            "initial": None if self.initial is None else format_sexpr(self.initial),
            "final": None if self.final is None else format_sexpr(self.final),
            "steps": [step.to_dict() for step in self.steps],
            "step_count": len(self.steps),
        }

    def rule_counts(self) -> Dict[str, int]:
        """Count how many times each rule (or step kind) was applied."""
        counts: Dict[str, int] = {}
        for step in self.steps:
            counts[step.label] = counts.get(step.label, 0) + 1
        return counts

    def rules_applied(self) -> List[str]:
        return [s.label for s in self.steps]

    def summary(self) -> str:
        """Get a brief summary of the rewriting."""
        if not self.steps:
            return "No rewriting performed"
        counts = self.rule_counts()
        most_used = max(counts.items(), key=lambda x: x[1])
        return (f"{len(self.steps)} steps using {len(counts)} unique rules. "
                f"Most used: {most_used[0]} ({most_used[1]}x)")
