"""Expression algebra, epsilon evaluation and derivatives."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, overload

from qrekit._types import C, D

# =============================================================================
# Helpers
# =============================================================================


def _identity(x: Any) -> Any:
    return x


def _callable_name(fn: Callable[..., Any]) -> str:
    """Get a human-readable name for a caller-supplied function."""
    if isinstance(fn, Bound):
        return repr(fn)
    return getattr(fn, "__name__", None) or repr(fn)


# =============================================================================
# Captured Partial Application
# =============================================================================


@dataclass(frozen=True)
class Bound(Generic[C]):
    """
    A binary combinator with its left operand fixed.

    Split and Iter derivatives bind the value accumulated so far into the
    transform of the App node they build. Calling the result with `x`
    returns `combine(operand, x)`.

    Example:
        add_three = Bound(3, operator.add)
        add_three(4)  # 7
    """

    operand: C
    combine: Callable[[C, C], C]

    def __call__(self, x: C) -> C:
        return self.combine(self.operand, x)

    def __repr__(self) -> str:
        return f"{_callable_name(self.combine)}({self.operand!r}, _)"


# =============================================================================
# Expression Base
# =============================================================================


class Expression(ABC, Generic[D, C]):
    """
    Base class for all quantified regular expressions.

    An expression consumes items of type D and yields values of type C.
    Two symbolic operators define it:

        epsilon        values obtainable if the stream ended now
        derive(item)   residual expressions left after consuming item

    Expressions are immutable. Derivatives build new trees that share
    the unconsumed parts of the expression they came from.

    Composition:
        a | b              choice (either branch)
        a.then(b, f)       split (a, then b, values joined by f)
        a.iterate(body, f) loop (zero or more rounds of body folded onto a)
        a.map(t)           post-process the value with t
        a.zip(b, f)        run a and b over the same items, join by f
    """

    @abstractmethod
    def _epsilon(self) -> list[C]:
        """Internal epsilon - subclasses implement this."""
        ...

    @abstractmethod
    def _derive(self, item: D) -> list[Expression[D, C]]:
        """Internal derivative - subclasses implement this."""
        ...

    def is_dead(self) -> bool:
        """
        True if this expression can never yield a value, whatever follows.

        The check is conservative: False does not guarantee that a value
        will ever be produced.
        """
        return False

    def epsilon(self) -> list[C]:
        """Values this expression yields if the stream ends here."""
        return self._epsilon()

    def derive(self, item: D) -> list[Expression[D, C]]:
        """Residual expressions after consuming `item`."""
        return self._derive(item)

    def __or__(self, other: Expression[D, C]) -> Choice[D, C]:
        """a | b = accept whatever either branch accepts."""
        if not isinstance(other, Expression):
            return NotImplemented
        left = self.alternatives if isinstance(self, Choice) else (self,)
        right = other.alternatives if isinstance(other, Choice) else (other,)
        return Choice(left + right)

    def then(
        self, other: Expression[D, C], combine: Callable[[C, C], C]
    ) -> Split[D, C]:
        """Run self, then other on the rest of the stream."""
        return Split(self, other, combine)

    def iterate(
        self, body: Expression[D, C], combine: Callable[[C, C], C]
    ) -> Iter[D, C]:
        """Use self as the initial value and fold zero or more rounds of body."""
        return Iter(self, body, combine)

    def map(self, transform: Callable[[C], C]) -> App[D, C]:
        """Post-process every value with transform."""
        return App(self, transform)

    def zip(
        self, other: Expression[D, C], combine: Callable[[C, C], C]
    ) -> Combine[D, C]:
        """Run self and other over the same items and join their values."""
        return Combine(self, other, combine)


# =============================================================================
# Atoms
# =============================================================================


@dataclass(frozen=True)
class Bot(Expression[D, C]):
    """The query that never matches."""

    def _epsilon(self) -> list[C]:
        return []

    def _derive(self, item: D) -> list[Expression[D, C]]:
        return [self]

    def is_dead(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "Bot()"


@dataclass(frozen=True)
class Eps(Expression[D, C]):
    """
    Accept the empty stream with a fixed value.

    Any further item kills the branch.
    """

    value: C

    def _epsilon(self) -> list[C]:
        return [self.value]

    def _derive(self, item: D) -> list[Expression[D, C]]:
        return [Bot()]

    def __repr__(self) -> str:
        return f"Eps({self.value!r})"


@dataclass(frozen=True)
class Sat(Expression[D, C]):
    """
    Accept exactly one item that satisfies predicate.

    Example:
        positive: Sat[int, int] = Sat(lambda x: x > 0, lambda x: x)
        derive(positive, 5)  # [Eps(5)]
        derive(positive, -1) # [Bot()]
    """

    predicate: Callable[[D], bool]
    extractor: Callable[[D], C]

    def _epsilon(self) -> list[C]:
        return []

    def _derive(self, item: D) -> list[Expression[D, C]]:
        if self.predicate(item):
            return [Eps(self.extractor(item))]
        return [Bot()]

    @property
    def name(self) -> str:
        return _callable_name(self.predicate)

    def __repr__(self) -> str:
        if self.extractor is _identity:
            return f"Sat({self.name})"
        return f"Sat({self.name}, {_callable_name(self.extractor)})"


# =============================================================================
# Composites
# =============================================================================


@dataclass(frozen=True)
class Choice(Expression[D, C]):
    """Nondeterministic union; every alternative runs."""

    alternatives: tuple[Expression[D, C], ...]

    def _epsilon(self) -> list[C]:
        values: list[C] = []
        for alt in self.alternatives:
            values.extend(alt._epsilon())
        return values

    def _derive(self, item: D) -> list[Expression[D, C]]:
        residuals: list[Expression[D, C]] = []
        for alt in self.alternatives:
            residuals.extend(alt._derive(item))
        return residuals

    def is_dead(self) -> bool:
        return all(alt.is_dead() for alt in self.alternatives)

    def __repr__(self) -> str:
        return f"Choice({', '.join(map(repr, self.alternatives))})"


@dataclass(frozen=True)
class Split(Expression[D, C]):
    """
    Sequential composition: left consumes a prefix, right the rest.

    The stream is cut at every point where left can accept, so a split
    may carry several live branches at once.
    """

    left: Expression[D, C]
    right: Expression[D, C]
    combine: Callable[[C, C], C]

    def _epsilon(self) -> list[C]:
        right_values = self.right._epsilon()
        return [
            self.combine(x, y) for x in self.left._epsilon() for y in right_values
        ]

    def _derive(self, item: D) -> list[Expression[D, C]]:
        residuals: list[Expression[D, C]] = []
        finished = self.left._epsilon()
        if finished:
            # right starts on this item; its derivative is shared by every cut
            rest = Choice(tuple(self.right._derive(item)))
            for a in finished:
                residuals.append(App(rest, Bound(a, self.combine)))
        residuals.append(
            Split(Choice(tuple(self.left._derive(item))), self.right, self.combine)
        )
        return residuals

    def is_dead(self) -> bool:
        return self.left.is_dead()

    def __repr__(self) -> str:
        return f"Split({self.left!r}, {self.right!r}, {_callable_name(self.combine)})"


@dataclass(frozen=True)
class Iter(Expression[D, C]):
    """
    Generalized loop: init, then zero or more rounds of body.

    Each finished round is folded onto the accumulated value with combine.

    Example:
        # running sum
        total = Iter(Eps(0), Sat(lambda _: True, lambda x: x), operator.add)
    """

    init: Expression[D, C]
    body: Expression[D, C]
    combine: Callable[[C, C], C]

    def _epsilon(self) -> list[C]:
        return self.init._epsilon()

    def _derive(self, item: D) -> list[Expression[D, C]]:
        residuals: list[Expression[D, C]] = []
        accumulated = self.init._epsilon()
        if accumulated:
            round_ = Choice(tuple(self.body._derive(item)))
            for b in accumulated:
                residuals.append(
                    Iter(App(round_, Bound(b, self.combine)), self.body, self.combine)
                )
        residuals.append(
            Iter(Choice(tuple(self.init._derive(item))), self.body, self.combine)
        )
        return residuals

    def is_dead(self) -> bool:
        return self.init.is_dead()

    def __repr__(self) -> str:
        return f"Iter({self.init!r}, {self.body!r}, {_callable_name(self.combine)})"


@dataclass(frozen=True)
class App(Expression[D, C]):
    """Apply transform to every value of inner."""

    inner: Expression[D, C]
    transform: Callable[[C], C]

    def _epsilon(self) -> list[C]:
        return [self.transform(x) for x in self.inner._epsilon()]

    def _derive(self, item: D) -> list[Expression[D, C]]:
        return [App(Choice(tuple(self.inner._derive(item))), self.transform)]

    def is_dead(self) -> bool:
        return self.inner.is_dead()

    def __repr__(self) -> str:
        return f"App({self.inner!r}, {_callable_name(self.transform)})"


@dataclass(frozen=True)
class Combine(Expression[D, C]):
    """
    Parallel composition: left and right both consume every item.

    Unlike Split, both sides advance in lockstep.
    """

    left: Expression[D, C]
    right: Expression[D, C]
    combine: Callable[[C, C], C]

    def _epsilon(self) -> list[C]:
        right_values = self.right._epsilon()
        return [
            self.combine(x, y) for x in self.left._epsilon() for y in right_values
        ]

    def _derive(self, item: D) -> list[Expression[D, C]]:
        return [
            Combine(
                Choice(tuple(self.left._derive(item))),
                Choice(tuple(self.right._derive(item))),
                self.combine,
            )
        ]

    def is_dead(self) -> bool:
        return self.left.is_dead() or self.right.is_dead()

    def __repr__(self) -> str:
        return (
            f"Combine({self.left!r}, {self.right!r}, {_callable_name(self.combine)})"
        )


# =============================================================================
# Operators
# =============================================================================


def epsilon(expr: Expression[D, C]) -> list[C]:
    """
    Values obtainable if the stream ends now.

    Duplicates are kept; order carries no meaning.
    """
    return expr._epsilon()


def derive(expr: Expression[D, C], item: D) -> list[Expression[D, C]]:
    """
    Residual expressions after expr consumes item.

    The input expression is never modified.
    """
    return expr._derive(item)


# =============================================================================
# Builders
# =============================================================================


def bot() -> Bot[Any, Any]:
    """The query that never matches."""
    return Bot()


def eps(value: C) -> Eps[Any, C]:
    """Accept the empty stream with value."""
    return Eps(value)


@overload
def sat(predicate: Callable[[D], bool]) -> Sat[D, D]: ...


@overload
def sat(
    predicate: Callable[[D], bool], extractor: Callable[[D], C]
) -> Sat[D, C]: ...


def sat(
    predicate: Callable[[D], bool], extractor: Callable[[D], Any] | None = None
) -> Sat[D, Any]:
    """
    Accept one item matching predicate, yielding extractor(item).

    Works as a decorator when the item itself is the value:

        @sat
        def positive(x: int) -> bool:
            return x > 0

        total = eps(0).iterate(positive, operator.add)
    """
    return Sat(predicate, extractor if extractor is not None else _identity)


def choice(*alternatives: Expression[D, C]) -> Choice[D, C]:
    """Nondeterministic union of alternatives."""
    return Choice(tuple(alternatives))


def split(
    left: Expression[D, C], right: Expression[D, C], combine: Callable[[C, C], C]
) -> Split[D, C]:
    """left, then right; values joined by combine."""
    return Split(left, right, combine)


def iterate(
    init: Expression[D, C], body: Expression[D, C], combine: Callable[[C, C], C]
) -> Iter[D, C]:
    """init, then zero or more rounds of body folded with combine."""
    return Iter(init, body, combine)


def app(inner: Expression[D, C], transform: Callable[[C], C]) -> App[D, C]:
    """Post-process the values of inner."""
    return App(inner, transform)


def combine(
    left: Expression[D, C], right: Expression[D, C], combine: Callable[[C, C], C]
) -> Combine[D, C]:
    """left and right over the same items; values joined by combine."""
    return Combine(left, right, combine)
