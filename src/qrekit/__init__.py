"""
qrekit - Quantified Regular Expressions over streams

A Python library for evaluating quantitative queries over a data stream
incrementally. A query is written once as a composition of a small
combinator algebra, then fed items one at a time; it yields a value only
when it has unambiguously resolved. Evaluation uses symbolic derivatives,
so history is never rescanned.

Combinators:
    Bot      never matches
    Eps      accept the empty stream with a fixed value
    Sat      accept one item matching a predicate
    Choice   any of several alternatives         (a | b)
    Split    one query, then another              (a.then(b, f))
    Iter     zero or more rounds folded onto init (init.iterate(body, f))
    App      post-process a value                 (a.map(t))
    Combine  two queries over the same items      (a.zip(b, f))

Example:
    import operator
    from qrekit import Solver, eps, sat

    @sat
    def any_item(x):
        return True

    total = eps(0).iterate(any_item, operator.add)
    count = eps(0).iterate(sat(any_item.predicate, lambda _: 1), operator.add)
    average = total.zip(count, operator.truediv)

    solver = Solver(average)
    solver.feed([1, 2, 3, 4])
    solver.value()  # 2.5
"""

from __future__ import annotations

__version__ = "0.1.0"
__all__ = [
    # Core
    "Expression",
    "Bot",
    "Eps",
    "Sat",
    "Choice",
    "Split",
    "Iter",
    "App",
    "Combine",
    "Bound",
    # Operators
    "epsilon",
    "derive",
    # Builders
    "bot",
    "eps",
    "sat",
    "choice",
    "split",
    "iterate",
    "app",
    "combine",
    # Solver
    "Solver",
    "UndefinedError",
    # Tracing
    "TraceHook",
    "TraceConfig",
    "use_tracing",
    "PrintHook",
    "LoggingHook",
    "OpenTelemetryHook",
    # Explanation
    "explain",
    # Expression parsing
    "Registry",
    "ExpressionParser",
    "parse_expression",
]

from qrekit._core import (
    App,
    Bot,
    Bound,
    Choice,
    Combine,
    Eps,
    Expression,
    Iter,
    Sat,
    Split,
    app,
    bot,
    choice,
    combine,
    derive,
    epsilon,
    eps,
    iterate,
    sat,
    split,
)
from qrekit._explain import explain
from qrekit._registry import ExpressionParser, Registry, parse_expression
from qrekit._solver import Solver, UndefinedError
from qrekit._tracing import (
    LoggingHook,
    OpenTelemetryHook,
    PrintHook,
    TraceConfig,
    TraceHook,
    use_tracing,
)
