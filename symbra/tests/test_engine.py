"""Tests for the rule engine and its DSL."""

import pytest
from symbra import (
    E, RuleEngine, RuleMetadata, RewriteTrace, ResourceExhausted, SequencedEngine,
    canonicalize, num, parse_rule_line,
)

LOOP = """
@to-g: (f ?x) => (g :x)
@to-f: (g ?x) => (f :x)
"""


class TestRuleParsing:
    """Tests for parsing DSL rule lines."""

    def test_full_header(self):
        """Name, priority, description and guard are all read."""
        meta, pattern, skeleton = parse_rule_line(
            '@pos[5] "Keep positives": (g ?x) => :x when (! > :x 0)')
        assert meta.name == "pos"
        assert meta.priority == 5
        assert meta.description == "Keep positives"
        assert meta.condition == E("(! > :x 0)")
        assert pattern == E("(g ?x)")
        assert skeleton == E(":x")

    def test_anonymous_rule(self):
        """A rule without a header has no name."""
        meta, _, _ = parse_rule_line("(f ?x) => (g :x)")
        assert meta.name is None
        assert meta.priority == 0

    def test_comments_and_blank_lines(self):
        """Comments and blank lines are not rules."""
        assert parse_rule_line("# a comment") is None
        assert parse_rule_line("   ") is None

    def test_malformed_header(self):
        """A header without a colon is rejected."""
        with pytest.raises(ValueError):
            parse_rule_line("@bad (f ?x) => 1")

    def test_missing_arrow(self):
        """A named rule must have =>."""
        with pytest.raises(ValueError):
            parse_rule_line("@bad: (f ?x)")

    def test_when_inside_a_form_is_not_a_guard(self):
        """Only a top-level 'when' starts a guard."""
        meta, _, skeleton = parse_rule_line("@r: (f ?x) => (when :x)")
        assert meta.condition is None
        assert skeleton == E("(when :x)")

    def test_metadata_repr(self):
        """RuleMetadata repr shows the header and guard."""
        meta = RuleMetadata(name="r", priority=2, description="d", condition=E("(! > :x 0)"))
        assert repr(meta).startswith('@r[2] "d"')
        assert "when" in repr(meta)


class TestSimplify:
    """Tests for basic rule application."""

    def test_rule_applies(self):
        """A loaded rule rewrites matching terms."""
        engine = RuleEngine.from_dsl("@square: (square ?x) => (* :x :x)")
        assert engine(E("(square y)")) == E("(^ y 2)")

    def test_results_are_canonical(self):
        """Rewrites are canonicalized after every step."""
        engine = RuleEngine.from_dsl("@twice: (twice ?x) => (+ :x :x)")
        assert engine(E("(+ (twice y) y)")) == E("(* 3 y)")

    def test_without_canonicalization(self):
        """canonical=False keeps raw structure."""
        engine = RuleEngine(canonical=False).load_dsl("@twice: (twice ?x) => (+ :x :x)")
        assert engine(E("(twice y)")) == E("(+ y y)")

    def test_ac_pattern(self):
        """Rules match sums up to operand order."""
        engine = RuleEngine.from_dsl(
            "@pythagoras: (+ (^ (sin ?x) 2) (^ (cos ?x) 2)) => 1")
        assert engine(E("(+ (^ (sin y) 2) (^ (cos y) 2))")) == num(1)
        assert engine(E("(+ (^ (cos y) 2) (^ (sin y) 2))")) == num(1)

    def test_sequence_wildcard_rule(self):
        """A ?rest... operand lets a rule fire inside a longer sum."""
        engine = RuleEngine.from_dsl(
            "@pythagoras: (+ (^ (sin ?x) 2) (^ (cos ?x) 2) ?rest...) => (+ 1 :rest...)")
        assert engine(E("(+ z (^ (cos y) 2) (^ (sin y) 2))")) == E("(+ 1 z)")

    def test_add_rule(self):
        """Rules can be added programmatically."""
        engine = RuleEngine().add_rule("(f ?x)", "(g :x)", name="fg", description="f to g")
        assert "fg" in engine
        assert engine(E("(f 1)")) == E("(g 1)")

    def test_load_rules(self):
        """(pattern, skeleton) pairs load as anonymous rules."""
        engine = RuleEngine.from_rules([("(f ?x)", "(g :x)")])
        assert len(engine) == 1
        assert engine(E("(f 2)")) == E("(g 2)")

    def test_step_budget(self):
        """A rule cycle raises ResourceExhausted."""
        engine = RuleEngine(max_steps=20).load_dsl(LOOP)
        with pytest.raises(ResourceExhausted):
            engine(E("(f 1)"))

    def test_step_budget_per_call(self):
        """max_steps passed to simplify() overrides the engine default."""
        engine = RuleEngine.from_dsl(LOOP)
        with pytest.raises(ResourceExhausted):
            engine.simplify(E("(f 1)"), max_steps=5)


class TestGuards:
    """Tests for when-clauses."""

    def test_numeric_guard(self):
        """A false guard blocks the rule."""
        engine = RuleEngine.from_dsl("@pos: (g ?x) => :x when (! > :x 0)")
        assert engine(E("(g 3)")) == num(3)
        assert engine(E("(g -3)")) == E("(g -3)")

    def test_undecidable_guard_fails(self):
        """A guard that cannot be decided does not fire."""
        engine = RuleEngine.from_dsl("@pos: (g ?x) => :x when (! > :x 0)")
        assert engine(E("(g y)")) == E("(g y)")

    def test_compound_guard(self):
        """and/or/not combine guards."""
        engine = RuleEngine.from_dsl(
            "@small: (g ?x) => :x when (! and (! > :x 0) (! < :x 10))")
        assert engine(E("(g 5)")) == num(5)
        assert engine(E("(g 20)")) == E("(g 20)")
        engine = RuleEngine.from_dsl("@nonzero: (g ?x) => 1 when (! not (! zero? :x))")
        assert engine(E("(g 0)")) == E("(g 0)")
        assert engine(E("(g 2)")) == num(1)

    def test_kind_guards(self):
        """integer? and var? test the bound value."""
        engine = RuleEngine.from_dsl("""
            @int: (g ?x) => (int :x) when (! integer? :x)
            @sym: (g ?x) => (sym :x) when (! var? :x)
        """)
        assert engine(E("(g 2)")) == E("(int 2)")
        assert engine(E("(g 1/2)")) == E("(g 1/2)")
        assert engine(E("(g y)")) == E("(sym y)")

    def test_free_guard(self):
        """free? checks that a variable does not occur."""
        engine = RuleEngine.from_dsl("@const: (D ?e ?v) => 0 when (! free? :e :v)")
        assert engine(E("(D (sin y) x)")) == num(0)
        assert engine(E("(D (sin x) x)")) == E("(D (sin x) x)")

    def test_guard_tries_other_matches(self):
        """A failed guard moves on to the next match."""
        engine = RuleEngine.from_dsl("@pick: (+ ?a:const ?b) => :b when (! > :a 0)")
        assert engine(E("(+ 2 y)")) == E("y")
        assert engine(E("(+ -2 y)")) == E("(+ -2 y)")

    def test_custom_compute(self):
        """Extra compute handlers are available in skeletons."""
        engine = RuleEngine(compute={"twice": lambda args: args[0] * 2}).load_dsl(
            "@t: (g ?x) => (! twice :x)")
        assert engine(E("(g y)")) == E("(* 2 y)")


class TestPriorities:
    """Tests for rule priorities."""

    def test_higher_priority_first(self):
        """The highest-priority matching rule wins."""
        engine = RuleEngine.from_dsl("""
            @low: (f ?x) => (low :x)
            @high[10]: (f ?x) => (high :x)
        """)
        assert engine(E("(f 1)")) == E("(high 1)")
        assert engine.list_rules()[0].startswith("@high[10]")

    def test_equal_priority_keeps_load_order(self):
        """Rules of equal priority apply in load order."""
        engine = RuleEngine.from_dsl("""
            @first: (f ?x) => (one :x)
            @second: (f ?x) => (two :x)
        """)
        assert engine(E("(f 1)")) == E("(one 1)")

    def test_negative_priority_last(self):
        """Negative priorities sort after the default."""
        engine = RuleEngine.from_dsl("""
            @fallback[-1]: (f ?x) => (fallback :x)
            @normal: (f ?x) => (normal :x)
        """)
        assert engine(E("(f 1)")) == E("(normal 1)")


GROUPED = """
[expand]
@square: (square ?x) => (* :x :x)

[trig]
@pythagoras: (+ (^ (sin ?x) 2) (^ (cos ?x) 2)) => 1
"""


class TestGroups:
    """Tests for rule groups."""

    def test_groups_listed(self):
        """Group headers tag the following rules."""
        assert RuleEngine.from_dsl(GROUPED).groups() == {"expand", "trig"}

    def test_disable_group(self):
        """Disabled groups do not fire."""
        engine = RuleEngine.from_dsl(GROUPED).disable_group("expand")
        assert engine(E("(square y)")) == E("(square y)")
        engine.enable_group("expand")
        assert engine(E("(square y)")) == E("(^ y 2)")

    def test_explicit_groups(self):
        """simplify(groups=...) restricts to the named groups."""
        engine = RuleEngine.from_dsl(GROUPED)
        expr = E("(+ (square (sin y)) (^ (cos y) 2))")
        assert engine.simplify(expr, groups=["expand"]) == canonicalize(
            E("(+ (^ (sin y) 2) (^ (cos y) 2))"))
        assert engine.simplify(expr) == num(1)


class TestIncludes:
    """Tests for :include."""

    def test_include_relative_file(self, tmp_path):
        """Included rules load relative to the including file."""
        (tmp_path / "base.rules").write_text("@square: (square ?x) => (* :x :x)\n")
        main = tmp_path / "main.rules"
        main.write_text(":include base.rules\n@cube: (cube ?x) => (* :x :x :x)\n")
        engine = RuleEngine.from_file(main)
        assert "square" in engine and "cube" in engine
        assert engine(E("(square (cube y))")) == E("(^ y 6)")

    def test_include_inherits_group(self, tmp_path):
        """Untagged included rules join the current group."""
        (tmp_path / "base.rules").write_text("@square: (square ?x) => (* :x :x)\n")
        main = tmp_path / "main.rules"
        main.write_text("[algebra]\n:include base.rules\n")
        engine = RuleEngine.from_file(main)
        assert engine.groups() == {"algebra"}

    def test_circular_include(self, tmp_path):
        """Include cycles are rejected."""
        (tmp_path / "a.rules").write_text(":include b.rules\n")
        (tmp_path / "b.rules").write_text(":include a.rules\n")
        with pytest.raises(ValueError, match="Circular"):
            RuleEngine.from_file(tmp_path / "a.rules")

    def test_missing_include(self, tmp_path):
        """A missing include raises FileNotFoundError."""
        main = tmp_path / "main.rules"
        main.write_text(":include nowhere.rules\n")
        with pytest.raises(FileNotFoundError):
            RuleEngine.from_file(main)


class TestStrategies:
    """Tests for rewriting strategies."""

    RULES = "@fg: (f ?x) => (g :x)"

    def test_once_applies_one_rule(self):
        """The once strategy rewrites a single subterm."""
        engine = RuleEngine.from_dsl(self.RULES)
        _, trace = engine.simplify(E("(+ (f 1) (f 2))"), strategy="once", trace=True)
        assert len(trace) == 1

    @pytest.mark.parametrize("strategy", ["exhaustive", "bottomup", "topdown"])
    def test_fixed_point_strategies_agree(self, strategy):
        """Fixed-point strategies reach the same normal form."""
        engine = RuleEngine.from_dsl(self.RULES)
        result = engine.simplify(E("(+ (f 1) (h (f 2)))"), strategy=strategy)
        assert result == canonicalize(E("(+ (g 1) (h (g 2)))"))

    def test_unknown_strategy(self):
        """An unknown strategy name raises ValueError."""
        with pytest.raises(ValueError, match="Unknown strategy"):
            RuleEngine.from_dsl(self.RULES).simplify(E("(f 1)"), strategy="sideways")


class TestEngineMethods:
    """Tests for inspection, export and combination."""

    def test_apply_once_at_root(self):
        """apply_once only looks at the root."""
        engine = RuleEngine.from_dsl("@fg: (f ?x) => (g :x)")
        result, meta = engine.apply_once(E("(f 1)"))
        assert result == E("(g 1)")
        assert meta.name == "fg"
        result, meta = engine.apply_once(E("(h (f 1))"))
        assert meta is None
        assert result == E("(h (f 1))")

    def test_rules_matching(self):
        """rules_matching reports every applicable rule."""
        engine = RuleEngine.from_dsl("""
            @a: (f ?x) => (g :x)
            @b: (f ?x:const) => 0
            @c: (h ?x) => 0
        """)
        names = [meta.name for meta, _ in engine.rules_matching(E("(f 1)"))]
        assert names == ["a", "b"]

    def test_rules_matching_checks_guards(self):
        """Guards are honored unless check_conditions=False."""
        engine = RuleEngine.from_dsl("@pos: (g ?x) => :x when (! > :x 0)")
        assert engine.rules_matching(E("(g -1)")) == []
        assert len(engine.rules_matching(E("(g -1)"), check_conditions=False)) == 1

    def test_match(self):
        """engine.match canonicalizes its target."""
        engine = RuleEngine()
        assert engine.match("(* ?c:const ?x)", E("(+ y y)")) == {"c": 2, "x": "y"}

    def test_dsl_round_trip(self):
        """to_dsl output loads back to the same rules."""
        engine = RuleEngine.from_dsl(GROUPED + '@pos[3] "Positive": (g ?x) => :x when (! > :x 0)\n')
        again = RuleEngine.from_dsl(engine.to_dsl("exported"))
        assert again.list_rules() == engine.list_rules()
        assert again.groups() == engine.groups()

    def test_getitem(self):
        """Rules are addressable by name."""
        engine = RuleEngine.from_dsl("@fg: (f ?x) => (g :x)")
        (pattern, skeleton), meta = engine["fg"]
        assert pattern == E("(f ?x)")
        assert meta.name == "fg"
        with pytest.raises(KeyError):
            engine["missing"]

    def test_union(self):
        """engine1 | engine2 holds both rule sets."""
        a = RuleEngine.from_dsl("@fg: (f ?x) => (g :x)")
        b = RuleEngine.from_dsl("@gh: (g ?x) => (h :x)")
        both = a | b
        assert len(both) == 2
        assert len(a) == 1
        assert both(E("(f 1)")) == E("(h 1)")

    def test_sequencing(self):
        """engine1 >> engine2 runs the phases in order."""
        expand = RuleEngine.from_dsl("@square: (square ?x) => (* :x :x)")
        trig = RuleEngine.from_dsl("@pythagoras: (+ (^ (sin ?x) 2) (^ (cos ?x) 2)) => 1")
        pipeline = expand >> trig
        assert isinstance(pipeline, SequencedEngine)
        assert len(pipeline) == 2
        assert pipeline(E("(+ (square (sin y)) (square (cos y)))")) == num(1)

    def test_copy_is_independent(self):
        """Changes to a copy do not affect the original."""
        engine = RuleEngine.from_dsl(GROUPED)
        clone = engine.copy().disable_group("expand")
        assert engine(E("(square y)")) == E("(^ y 2)")
        assert clone(E("(square y)")) == E("(square y)")


class TestEngineTrace:
    """Tests for traced simplification."""

    def test_trace_true(self):
        """trace=True returns the result with a new trace."""
        engine = RuleEngine.from_dsl("@square: (square ?x) => (* :x :x)")
        result, trace = engine.simplify(E("(square y)"), trace=True)
        assert result == E("(^ y 2)")
        assert trace.rules_applied() == ["square"]
        assert trace.final == result

    def test_trace_object_is_filled(self):
        """A caller-supplied trace receives the steps."""
        engine = RuleEngine.from_dsl("@square: (square ?x) => (* :x :x)")
        trace = RewriteTrace()
        engine.simplify(E("(square (square y))"), trace=trace)
        assert trace.rules_applied() == ["square", "square"]
        assert "square" in trace.format("rules")

    def test_trace_does_not_change_result(self):
        """Tracing is observational."""
        engine = RuleEngine.from_dsl("@square: (square ?x) => (* :x :x)")
        expr = E("(+ (square y) 1)")
        assert engine.simplify(expr, trace=True)[0] == engine.simplify(expr)
