"""
SYMBRA - Symbolic algebra over canonical expression trees

Immutable expressions, a canonicalizer, associative-commutative pattern
matching with a rule DSL, differentiation, and integration backed by a
Risch decision procedure for exp/log towers.

Quick Start:
    from symbra import E, canonicalize, derivative, integrate

    canonicalize(E("(+ x x x)"))            # => (* 3 x)
    derivative(E("(sin (^ x 2))"), "x")     # => (* 2 x (cos (^ x 2)))
    integrate(E("(exp (* 2 x))"), "x")      # => Elementary((* 1/2 (exp (* 2 x))))
    integrate(E("(exp (^ x 2))"), "x")      # => ProvenNonElementary(...)

Expression Syntax:
    42  3/4  2.5          numbers (exact unless written with a point)
    x                     symbol
    (+ a b) (* a b)       sums and products
    (^ a b)               power
    (sin x) (f x y)       function application
    (Integral f x)        unevaluated integral

Pattern Syntax:
    ?x or ?x:expr         match any expression, bind to x
    ?x:const              match a number only
    ?x:var                match a symbol only
    ?x:free(v)            match an expression not containing v
    ?xs...                match a run of operands
    :x                    substitute bound value
    (! op args...)        compute at instantiation time

Rule DSL:
    @rule-name[priority] "Description": (pattern) => (skeleton) when (guard)
"""

import logging

__version__ = "0.1.0"

# Numbers, symbols and expressions
from .number import Number, NumberKind
from .symbols import Symbol, Commutativity
from .expr import (
    Expr,
    Kind,
    as_expr,
    num,
    sym,
    symbols,
    add,
    mul,
    pow_,
    func,
    rel,
    piecewise,
    matrix,
    set_,
    wild,
    subs,
    free_symbols,
    free_in,
    walk,
    sort_key,
)
from .sexpr import E, parse_sexpr, format_sexpr

# Registry and canonical forms
from .registry import FunctionInfo, FunctionRegistry, register_function, get_registry
from .canonical import canonicalize, expand

# Matching and rewriting
from .rewriter import (
    Bindings,
    NoMatch,
    MatchSequence,
    match,
    match_all,
    instantiate,
    rewriter,
    simplifier,
)
from .engine import (
    RuleEngine,
    SequencedEngine,
    RuleMetadata,
    parse_rule_line,
    load_rules_from_dsl,
    load_rules_from_file,
)
from .trace import RewriteStep, RewriteTrace

# Calculus
from .differentiate import derivative, gradient
from .integration import integrate, verify_antiderivative, IntegrationBudget
from .outcomes import IntegrationResult, Elementary, ProvenNonElementary, Unresolved
from .evaluate import evaluate, numeric_value

# Configuration and errors
from .config import EngineSettings, get_settings, configure_logging
from .errors import SymbraError, DomainError, ResourceExhausted, RegistryFrozenError

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Public API
__all__ = [
    # Version
    "__version__",
    # Expressions
    "Number",
    "NumberKind",
    "Symbol",
    "Commutativity",
    "Expr",
    "Kind",
    "as_expr",
    "num",
    "sym",
    "symbols",
    "add",
    "mul",
    "pow_",
    "func",
    "rel",
    "piecewise",
    "matrix",
    "set_",
    "wild",
    "subs",
    "free_symbols",
    "free_in",
    "walk",
    "sort_key",
    "E",
    "parse_sexpr",
    "format_sexpr",
    # Registry and canonical forms
    "FunctionInfo",
    "FunctionRegistry",
    "register_function",
    "get_registry",
    "canonicalize",
    "expand",
    # Matching
    "Bindings",
    "NoMatch",
    "MatchSequence",
    "match",
    "match_all",
    "instantiate",
    "rewriter",
    "simplifier",
    # Engine
    "RuleEngine",
    "SequencedEngine",
    "RuleMetadata",
    "parse_rule_line",
    "load_rules_from_dsl",
    "load_rules_from_file",
    "RewriteStep",
    "RewriteTrace",
    # Calculus
    "derivative",
    "gradient",
    "integrate",
    "verify_antiderivative",
    "IntegrationBudget",
    "IntegrationResult",
    "Elementary",
    "ProvenNonElementary",
    "Unresolved",
    "evaluate",
    "numeric_value",
    # Configuration and errors
    "EngineSettings",
    "get_settings",
    "configure_logging",
    "SymbraError",
    "DomainError",
    "ResourceExhausted",
    "RegistryFrozenError",
]
