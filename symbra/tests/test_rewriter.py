"""Tests for pattern matching, instantiation and the rewriter factory."""

from itertools import islice

import pytest
from symbra import (
    E, Bindings, NoMatch, MatchSequence, RewriteTrace, ResourceExhausted,
    Kind, add, canonicalize, instantiate, match, match_all, mul, num, rewriter, sym, wild,
)
from symbra.symbols import Commutativity


def C(s):
    return canonicalize(E(s))


class TestBasicMatching:
    """Tests for structural matching and wildcard constraints."""

    def test_function_arguments(self):
        """Wildcards bind function arguments positionally."""
        assert match(E("(f ?w1 ?w2)"), E("(f 3 x)")) == {"w1": 3, "w2": "x"}

    def test_pattern_from_string(self):
        """Patterns may be given as s-expression strings."""
        assert match("(f ?a)", E("(f y)")) == {"a": "y"}

    def test_head_mismatch(self):
        """Different function heads never match."""
        assert match(E("(f ?a)"), E("(g 1)")) is NoMatch

    def test_repeated_wildcard_consistency(self):
        """A repeated wildcard must bind the same value everywhere."""
        assert match(E("(f ?a ?a)"), E("(f x x)")) == {"a": "x"}
        assert not match(E("(f ?a ?a)"), E("(f x y)"))

    def test_const_constraint(self):
        """?n:const only matches numbers."""
        assert match(E("(f ?n:const)"), E("(f 2)"))
        assert not match(E("(f ?n:const)"), E("(f x)"))

    def test_var_constraint(self):
        """?v:var only matches symbols."""
        assert match(E("(f ?v:var)"), E("(f x)"))
        assert not match(E("(f ?v:var)"), E("(f 2)"))

    def test_int_constraint(self):
        """?n:int rejects non-integers."""
        assert match(E("(f ?n:int)"), E("(f 4)"))
        assert not match(E("(f ?n:int)"), E("(f 1/2)"))

    def test_free_constraint(self):
        """?c:free(x) rejects expressions containing x."""
        assert match(E("?c:free(x)"), E("(sin y)"))
        assert not match(E("?c:free(x)"), E("(sin x)"))

    def test_free_constraint_follows_binding(self):
        """free(v) refers to whatever v is bound to."""
        pattern = E("(Integral ?c:free(v) ?v:var)")
        assert match(pattern, E("(Integral (sin y) x)")) == {"c": E("(sin y)"), "v": "x"}
        assert not match(pattern, E("(Integral (sin y) y)"))

    def test_predicate_wildcard(self):
        """A predicate constrains the bound value."""
        even = wild("n", predicate=lambda e: e.is_number and e.value.is_integer()
                    and int(e.value) % 2 == 0)
        assert match(even, num(4))
        assert not match(even, num(3))

    def test_failure_has_no_bindings(self):
        """NoMatch is falsy and empty."""
        result = match(E("(f ?a 1)"), E("(f x 2)"))
        assert not result
        assert len(result) == 0
        assert result.get("a") is None


class TestACMatching:
    """Tests for associative-commutative matching of sums and products."""

    def test_fixed_operand_found_anywhere(self):
        """A fixed sub-pattern matches whichever operand fits."""
        assert match(E("(+ ?a (sin ?b))"), C("(+ x (sin y))")) == {"a": "x", "b": "y"}
        assert match(E("(+ (sin ?b) ?a)"), C("(+ (sin y) x)")) == {"a": "x", "b": "y"}

    def test_match_is_sound(self):
        """Every binding instantiates back to the target."""
        target = C("(+ x y z)")
        pattern = E("(+ ?a ?b)")
        for bindings in match_all(pattern, target):
            assert canonicalize(instantiate(pattern, bindings)) == target

    def test_match_all_enumerates_partitions(self):
        """Two single wildcards split three operands six ways."""
        assert len(list(match_all(E("(+ ?a ?b)"), C("(+ x y z)")))) == 6

    def test_match_all_two_operands(self):
        """Each operand can go to either wildcard."""
        results = list(match_all(E("(+ ?a ?b)"), C("(+ x y)")))
        assert {"a": "x", "b": "y"} in results
        assert {"a": "y", "b": "x"} in results
        assert len(results) == 2

    def test_many_operands(self):
        """Sums with more operands than max_match_operands still match."""
        target = canonicalize(add(*[sym(f"v{i}") for i in range(20)]))
        pattern = E("(+ ?a ?b)")
        found = match(pattern, target)
        assert found is not NoMatch
        assert canonicalize(instantiate(pattern, found)) == target
        first = list(islice(match_all(pattern, target), 3))
        assert len(first) == 3
        assert first[0] == found

    def test_many_operands_with_sequence(self):
        """A sequence wildcard next to a single one takes the rest."""
        target = canonicalize(add(*[sym(f"v{i}") for i in range(20)]))
        found = match(E("(+ v3 ?a ?rest...)"), target)
        assert found is not NoMatch
        a = found["a"]
        taken = len(a.args) if a.kind is Kind.ADD else 1
        assert taken + len(found["rest"]) == 19
        assert E("v3") not in found["rest"]

    def test_match_all_is_restartable(self):
        """Iterating twice gives the same results."""
        seq = match_all(E("(* ?a ?b)"), C("(* x y z)"))
        assert isinstance(seq, MatchSequence)
        assert list(seq) == list(seq)

    def test_match_all_empty(self):
        """A pattern that cannot match yields nothing."""
        seq = match_all(E("(+ (cos ?a) ?b)"), C("(+ x y)"))
        assert list(seq) == []
        assert seq.first() is NoMatch

    def test_first_agrees_with_match(self):
        """match() returns the first element of match_all()."""
        pattern, target = E("(* ?a ?b)"), C("(* x y z)")
        assert match(pattern, target) == match_all(pattern, target).first()

    def test_sequence_wildcard(self):
        """A sequence wildcard absorbs the remaining operands."""
        assert match(E("(+ x ?rest...)"), C("(+ x y z)")) == {"rest": ("y", "z")}

    def test_sequence_wildcard_may_be_empty(self):
        """A bare operand is a one-term sum for sequence patterns."""
        assert match(E("(+ x ?rest...)"), E("x")) == {"rest": ()}

    def test_single_wildcard_needs_an_operand(self):
        """A single wildcard never binds an empty group."""
        assert not match(E("(+ x ?a)"), E("x"))

    def test_sequence_in_function_arguments(self):
        """Sequence wildcards work positionally in function arguments."""
        assert match(E("(f ?first ?rest...)"), E("(f 1 2 3)")) == {"first": 1, "rest": (2, 3)}

    def test_noncommutative_product_in_order(self):
        """Non-commutative products only match in order."""
        a = sym("A", Commutativity.MATRIX)
        b = sym("B", Commutativity.MATRIX)
        target = canonicalize(mul(a, b))
        results = list(match_all(E("(* ?p ?q)"), target))
        assert results == [Bindings({"p": a, "q": b})]

    def test_initial_bindings(self):
        """Existing bindings restrict the search."""
        assert match(E("(+ ?a ?b)"), C("(+ x y)"), {"a": "y"}) == {"a": "y", "b": "x"}


class TestInstantiate:
    """Tests for skeleton instantiation."""

    def test_substitution(self):
        """:name is replaced by its binding."""
        assert instantiate(E("(g :a)"), {"a": "x"}) == E("(g x)")

    def test_splice(self):
        """:name... splices a sequence binding."""
        assert instantiate(E("(f :xs... 0)"), {"xs": ("a", "b")}) == E("(f a b 0)")

    def test_compute(self):
        """(! op ...) is built and canonicalized."""
        assert instantiate(E("(! + :n 1)"), {"n": 2}) == num(3)

    def test_custom_compute(self):
        """A compute table overrides the default."""
        result = instantiate(E("(! twice :n)"), {"n": 5},
                             compute={"twice": lambda args: int(args[0].value) * 2})
        assert result == num(10)

    def test_round_trip(self):
        """instantiate(p, match(p, t)) reproduces t."""
        target = C("(* 3 (sin x) y)")
        pattern = E("(* ?c:const (sin ?u) ?rest...)")
        bindings = match(pattern, target)
        assert bindings
        assert instantiate(pattern, bindings) == target


class TestRewriter:
    """Tests for the rewriter() fixed-point factory."""

    def test_rewrites_to_fixed_point(self):
        """Rules apply anywhere until nothing changes."""
        simplify = rewriter([("(double ?x)", "(* 2 :x)")])
        assert simplify(E("(+ (double y) y)")) == E("(* 3 y)")

    def test_nested_rewrites(self):
        """Results of one rewrite are rewritten again."""
        simplify = rewriter([("(double ?x)", "(* 2 :x)")])
        assert simplify(E("(double (double y))")) == E("(* 4 y)")

    def test_loop_exhausts_budget(self):
        """A rule cycle raises ResourceExhausted instead of hanging."""
        loop = rewriter([("(f ?x)", "(g :x)"), ("(g ?x)", "(f :x)")], max_steps=50)
        with pytest.raises(ResourceExhausted):
            loop(E("(f y)"))

    def test_without_canonicalization(self):
        """canonical=False leaves raw structure alone."""
        simplify = rewriter([("(double ?x)", "(+ :x :x)")], canonical=False)
        assert simplify(E("(double y)")) == E("(+ y y)")


class TestMatchTrace:
    """Tests for traced matching."""

    def test_trace_records_success(self):
        """A successful match adds one step."""
        trace = RewriteTrace()
        match(E("(f ?a)"), E("(f x)"), trace=trace)
        assert len(trace) == 1

    def test_trace_ignores_failure(self):
        """A failed match adds nothing."""
        trace = RewriteTrace()
        match(E("(f ?a)"), E("(g x)"), trace=trace)
        assert len(trace) == 0
