"""
Example: Stream aggregates with qrekit

This example shows three classic online-aggregation queries written as
QREs: a running average, a windowed extremum average and a grouped sum
loaded from a text expression. Each query is written once and then fed
one item at a time.
"""

import operator
from dataclasses import dataclass

from qrekit import Registry, Solver, UndefinedError, eps, explain, sat, split

# =============================================================================
# 1. Running average: two loops over the same items
# =============================================================================


@sat
def every_item(x: float) -> bool:
    return True


total = eps(0).iterate(every_item, operator.add)
count = eps(0).iterate(sat(every_item.predicate, lambda _: 1), operator.add)
running_average = total.zip(count, operator.truediv)


# =============================================================================
# 2. Windowed extremum average: fixed-size windows in sequence
# =============================================================================


def window(size: int, op):
    """Exactly `size` items folded with op."""
    query = every_item
    for _ in range(size - 1):
        query = every_item.then(query, op)
    return query


def midpoint(a: float, b: float) -> float:
    return (a + b) / 2


# highest of the first three readings, lowest of the next two
extremum_average = split(window(3, max), window(2, min), midpoint)


# =============================================================================
# 3. Grouped sum: config-driven query over records
# =============================================================================


@dataclass(frozen=True)
class Sale:
    region: str
    amount: float


sales = Registry[Sale, float]()


@sales.predicate
def in_region(s: Sale, region: str) -> bool:
    return s.region == region


@sales.predicate
def outside_region(s: Sale, region: str) -> bool:
    return s.region != region


@sales.extractor
def amount(s: Sale) -> float:
    return s.amount


@sales.extractor
def nothing(s: Sale) -> float:
    return 0.0


@sales.combiner
def add(a: float, b: float) -> float:
    return a + b


north_total = sales.load(
    """
    iter(eps(0),
         sat(in_region(north), amount) | sat(outside_region(north), nothing),
         add)
    """
)


if __name__ == "__main__":
    solver = Solver(running_average)
    for reading in range(101):
        solver.advance(reading)
    print(f"running average of 0..100: {solver.value()}")

    solver = Solver(extremum_average)
    for reading in (5, 4, 3, 2):
        solver.advance(reading)
        try:
            solver.value()
        except UndefinedError:
            print(f"after {solver.items_seen} readings: not resolved yet")
    solver.advance(1)
    print(f"extremum average: {solver.value()}")

    print(explain(north_total))
    solver = Solver(north_total, prune_dead=True)
    solver.feed(
        [Sale("north", 10.0), Sale("south", 4.0), Sale("north", 2.5)]
    )
    print(f"north total: {solver.value()} (working set: {solver.size})")
