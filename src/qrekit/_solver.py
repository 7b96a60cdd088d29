"""Incremental solver driving derivatives across a stream."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import Any, Generic, TypeVar

from qrekit._core import Expression
from qrekit._tracing import TraceConfig, TraceHook, _active_hook
from qrekit._types import C, D

R = TypeVar("R")


class UndefinedError(Exception):
    """
    Raised by Solver.value() when the query has no single answer.

    This covers both "no branch has accepted" and "several branches
    accepted"; the two are deliberately not told apart. The raw candidate
    list is kept for diagnostics.

    Attributes:
        candidates: Every value the working set could yield at this point
    """

    def __init__(self, candidates: list[Any]):
        self.candidates = candidates
        super().__init__(
            f"Query result is undefined: {len(candidates)} candidate values"
        )


def _run_traced(
    hook: TraceHook,
    config: TraceConfig,
    name: str,
    ctx: Any,
    depth: int,
    fn: Callable[[], R],
    is_ok: Callable[[R], bool],
) -> R:
    """Run fn between on_enter/on_exit, reporting failures through on_error."""
    if depth == 0 and config.include_leaf_only:
        return fn()
    if depth > 0 and not config.nested:
        return fn()

    span = hook.on_enter(name, ctx, depth)
    start = time.perf_counter()

    try:
        result = fn()
    except Exception as e:
        duration_ms = (time.perf_counter() - start) * 1000
        hook.on_error(span, name, e, duration_ms, depth)
        raise

    duration_ms = (time.perf_counter() - start) * 1000
    hook.on_exit(span, name, is_ok(result), duration_ms, depth)
    return result


class Solver(Generic[D, C]):
    """
    Feeds a stream through a query one item at a time.

    The solver keeps a working set of residual expressions, one per live
    nondeterministic branch. Each advance replaces the whole set with the
    derivatives of its members; value() collapses their epsilon values and
    succeeds only if exactly one remains.

    Example:
        total = eps(0).iterate(sat(lambda _: True), operator.add)
        solver = Solver(total)
        solver.feed(range(101))
        solver.value()  # 5050

    Args:
        query: The expression to evaluate
        hook: Optional TraceHook; overrides any hook set by use_tracing()
        trace_config: Optional TraceConfig used with hook
        prune_dead: Drop residuals that can never yield a value after each
            advance. Results are unchanged; the working set stays smaller.
    """

    def __init__(
        self,
        query: Expression[D, C],
        *,
        hook: TraceHook | None = None,
        trace_config: TraceConfig | None = None,
        prune_dead: bool = False,
    ):
        if not isinstance(query, Expression):
            raise TypeError(f"Expected an Expression, got {type(query).__name__}")
        self._query = query
        self.hook = hook
        self.trace_config = trace_config
        self.prune_dead = prune_dead
        self.reset()

    # -------------------------------------------------
    # State
    # -------------------------------------------------

    @property
    def query(self) -> Expression[D, C]:
        return self._query

    @property
    def working_set(self) -> tuple[Expression[D, C], ...]:
        return tuple(self._working_set)

    @property
    def size(self) -> int:
        return len(self._working_set)

    @property
    def peak_size(self) -> int:
        """Largest working set seen since construction or the last reset()."""
        return self._peak_size

    @property
    def items_seen(self) -> int:
        return self._items_seen

    def reset(self) -> None:
        """Forget every consumed item and start over from the query."""
        self._working_set: list[Expression[D, C]] = [self._query]
        self._peak_size = 1
        self._items_seen = 0

    # -------------------------------------------------
    # Stream operations
    # -------------------------------------------------

    def advance(self, item: D) -> None:
        """Consume one item."""
        hook, config = self._tracing()
        if hook is None:
            residuals = self._step(item, None, config)
        else:
            residuals = _run_traced(
                hook,
                config,
                "advance",
                item,
                0,
                lambda: self._step(item, hook, config),
                lambda _: True,
            )

        self._working_set = residuals
        self._peak_size = max(self._peak_size, len(residuals))
        self._items_seen += 1

    def feed(self, items: Iterable[D]) -> Solver[D, C]:
        """Consume every item of an iterable, in order."""
        for item in items:
            self.advance(item)
        return self

    def candidates(self) -> list[C]:
        """Every value the working set yields if the stream ends here."""
        return self._collect(None, TraceConfig())

    def value(self) -> C:
        """
        The query's answer at the current stream position.

        Raises:
            UndefinedError: unless exactly one branch yields exactly one value.
                Equal values from different branches still count separately.
        """
        hook, config = self._tracing()
        if hook is None:
            values = self._collect(None, config)
        else:
            values = _run_traced(
                hook,
                config,
                "value",
                None,
                0,
                lambda: self._collect(hook, config),
                lambda vs: len(vs) == 1,
            )

        if len(values) != 1:
            raise UndefinedError(values)
        return values[0]

    def is_defined(self) -> bool:
        """True if value() would succeed right now."""
        return len(self.candidates()) == 1

    # -------------------------------------------------
    # Internals
    # -------------------------------------------------

    def _tracing(self) -> tuple[TraceHook | None, TraceConfig]:
        if self.hook is not None:
            return self.hook, self.trace_config or TraceConfig()
        return _active_hook()

    def _step(
        self, item: D, hook: TraceHook | None, config: TraceConfig
    ) -> list[Expression[D, C]]:
        residuals: list[Expression[D, C]] = []
        for branch in self._working_set:
            if hook is None:
                residuals.extend(branch._derive(item))
            else:
                residuals.extend(
                    _run_traced(
                        hook,
                        config,
                        f"derive:{type(branch).__name__}",
                        item,
                        1,
                        lambda: branch._derive(item),
                        lambda rs: not all(r.is_dead() for r in rs),
                    )
                )
        if self.prune_dead:
            residuals = [r for r in residuals if not r.is_dead()]
        return residuals

    def _collect(self, hook: TraceHook | None, config: TraceConfig) -> list[C]:
        values: list[C] = []
        for branch in self._working_set:
            if hook is None:
                values.extend(branch._epsilon())
            else:
                values.extend(
                    _run_traced(
                        hook,
                        config,
                        f"epsilon:{type(branch).__name__}",
                        None,
                        1,
                        branch._epsilon,
                        bool,
                    )
                )
        return values

    def __repr__(self) -> str:
        return (
            f"Solver(size={self.size}, peak_size={self.peak_size}, "
            f"items_seen={self.items_seen})"
        )
