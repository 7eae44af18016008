"""Tests for rewrite traces."""

import pytest
from symbra import E, RewriteStep, RewriteTrace, RuleEngine

RULES = """
@square "Square to product": (square ?x) => (* :x :x)
@double: (double ?x) => (* 2 :x)
"""


@pytest.fixture
def trace():
    """A trace of two rewrites."""
    engine = RuleEngine.from_dsl(RULES)
    _, trace = engine.simplify(E("(square (double y))"), trace=True)
    return trace


class TestRewriteTrace:
    """Tests for RewriteTrace contents and formats."""

    def test_steps(self, trace):
        """Each applied rule is one step."""
        assert len(trace) == 2
        assert trace.rules_applied() == ["square", "double"]
        assert trace.initial == E("(square (double y))")
        assert trace.final == E("(* 4 (^ y 2))")

    def test_step_unpacks(self, trace):
        """Steps unpack as (description, before, after)."""
        description, before, after = trace.steps[0]
        assert description == "Square to product"
        assert before == E("(square (double y))")
        assert after == E("(^ (double y) 2)")

    def test_formats(self, trace):
        """The named formats render the steps."""
        assert trace.format("rules") == "square -> double"
        assert trace.format("compact").startswith("(square (double y)) --[square, double]-->")
        assert "--(double)-->" in trace.format("chain")
        assert trace.format("verbose") == repr(trace)
        with pytest.raises(ValueError):
            trace.format("fancy")

    def test_to_dict(self, trace):
        """to_dict gives plain data."""
        data = trace.to_dict()
        assert data["step_count"] == 2
        assert data["steps"][0]["rule_name"] == "square"

    def test_counts_and_summary(self, trace):
        """rule_counts and summary aggregate labels."""
        assert trace.rule_counts() == {"square": 1, "double": 1}
        assert trace.summary().startswith("2 steps using 2 unique rules")

    def test_empty_trace(self):
        """An empty trace is falsy and says so."""
        empty = RewriteTrace()
        assert not empty
        assert empty.summary() == "No rewriting performed"
        assert empty.format("rules") == "(no rules applied)"

    def test_anonymous_step_label(self):
        """Unnamed steps are labeled by rule index or description."""
        step = RewriteStep("canonicalize add", E("(+ x x)"), E("(* 2 x)"))
        assert step.label == "canonicalize add"
        assert RewriteStep("", E("x"), E("y"), rule_index=3).label == "rule[3]"
