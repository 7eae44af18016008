#!/usr/bin/env python3
"""
SYMBRA Feature Demonstration

Canonical forms, rule-based rewriting, differentiation and integration.
"""

from symbra import (
    E, RewriteTrace, RuleEngine, Commutativity, canonicalize, configure_logging,
    derivative, evaluate, expand, format_sexpr, integrate, mul, sym,
)


def section(title: str):
    """Print a section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def demo_canonical_forms():
    """Demonstrate canonicalization."""
    section("Canonical Forms")

    examples = [
        "(+ x x x)",
        "(* y x 2 x)",
        "(+ (* 2 (+ a b)) (* -2 a))",
        "(^ (exp x) 3)",
        "(sin (* -1 x))",
        "(cos pi)",
        "(sqrt (* 4 x))",
    ]

    for expr_str in examples:
        print(f"  {expr_str} => {format_sexpr(canonicalize(E(expr_str)))}")

    print(f"\n  expand (* (+ x 1) (+ x -1)) => "
          f"{format_sexpr(expand(E('(* (+ x 1) (+ x -1))')))}")


def demo_noncommutative():
    """Demonstrate matrix and quaternion symbols."""
    section("Non-commutative Products")

    a = sym("A", Commutativity.MATRIX)
    b = sym("B", Commutativity.MATRIX)
    print(f"  A B 2 => {format_sexpr(canonicalize(mul(a, b, 2)))}")
    print(f"  B A   => {format_sexpr(canonicalize(mul(b, a)))}")
    i, j, k = (sym(name, Commutativity.QUATERNION) for name in "ijk")
    print(f"  i j k => {format_sexpr(canonicalize(mul(i, j, k)))}")


def demo_rules():
    """Demonstrate the rule DSL with AC matching."""
    section("Rules and AC Matching")

    engine = RuleEngine.from_dsl('''
        [trig]
        @pythagoras "sin^2 + cos^2 = 1": (+ (^ (sin ?x) 2) (^ (cos ?x) 2) ?rest...) => (+ 1 :rest...)

        [double-angle]
        @sin-double: (* 2 (sin ?x) (cos ?x)) => (sin (* 2 :x))
    ''')

    examples = [
        "(+ (^ (cos y) 2) z (^ (sin y) 2))",
        "(* (cos t) 2 (sin t))",
    ]

    for expr_str in examples:
        result, trace = engine(E(expr_str), trace=True)
        print(f"  {expr_str} => {format_sexpr(result)}")
        print(f"    rules: {trace.format('rules')}")


def demo_derivatives():
    """Demonstrate differentiation."""
    section("Symbolic Differentiation")

    examples = [
        "(sin (^ x 2))",
        "(* x (exp x))",
        "(^ x x)",
        "(atan (* 2 x))",
        "(f x)",
    ]

    for expr_str in examples:
        print(f"  d/dx {expr_str} => {format_sexpr(derivative(E(expr_str), 'x'))}")


def demo_integrals():
    """Demonstrate integration outcomes."""
    section("Integration")

    examples = [
        "(exp (* 2 x))",
        "(* x (ln x))",
        "(* (exp x) (sin x))",
        "(^ (+ (^ x 2) -1) -1)",
        "(* (+ 1 (* 2 (^ x 2))) (exp (^ x 2)))",
        "(exp (^ x 2))",
        "(* (sin x) (^ x -1))",
        "(* (ln x) (^ (+ x 1) -1))",
        "(^ (+ 1 (^ x 3)) 1/2)",
    ]

    for expr_str in examples:
        print(f"  {expr_str}")
        print(f"    => {integrate(E(expr_str), 'x')}")

    trace = RewriteTrace()
    integrate(E("(* x (exp x))"), "x", trace=trace)
    print(f"\n  Strategies for (* x (exp x)): {trace.format('rules')}")


def demo_evaluation():
    """Demonstrate numeric evaluation."""
    section("Evaluation")

    expr = E("(+ (sin x) (* 2 y))")
    print(f"  {format_sexpr(expr)} at x=0.5 => {format_sexpr(evaluate(expr, {'x': 0.5}))}")
    print(f"  {format_sexpr(expr)} at x=0.5, y=1 => "
          f"{format_sexpr(evaluate(expr, {'x': 0.5, 'y': 1}))}")
    print(f"  (ln -1.0) stays => {format_sexpr(evaluate(E('(ln x)'), {'x': -1}))}")


def main():
    """Run all demonstrations."""
    print("SYMBRA - Symbolic algebra over canonical expression trees")
    print("Feature Demonstration")

    configure_logging("WARNING")

    demo_canonical_forms()
    demo_noncommutative()
    demo_rules()
    demo_derivatives()
    demo_integrals()
    demo_evaluation()

    print("\n" + "="*60)
    print(" Demo complete!")
    print("="*60)


if __name__ == "__main__":
    main()
