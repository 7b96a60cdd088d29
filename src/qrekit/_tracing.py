"""Trace hooks for observing solver activity."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from qrekit._types import _trace_config, _trace_hook

# Optional OpenTelemetry imports - only needed if using OpenTelemetryHook
try:
    from opentelemetry.trace import (
        Link as _Link,
    )
    from opentelemetry.trace import (
        Status as _Status,
    )
    from opentelemetry.trace import (
        StatusCode as _StatusCode,
    )
    from opentelemetry.trace import (
        set_span_in_context as _set_span_in_context,
    )

    _HAS_OPENTELEMETRY = True
except ImportError:
    _HAS_OPENTELEMETRY = False
    _Link = None
    _Status = None
    _StatusCode = None
    _set_span_in_context = None


# =============================================================================
# Hook Protocol & Config
# =============================================================================


@runtime_checkable
class TraceHook(Protocol):
    """
    Protocol for trace hooks.

    The solver emits events at two depths:

        0  "advance" (ctx is the item) and "value" (ctx is None)
        1  one event per working-set branch, e.g. "derive:Split" or
           "epsilon:Iter", when TraceConfig.nested is set

    Example:
        class MyHook:
            def on_enter(self, name, ctx, depth):
                print(f"{'  ' * depth}-> {name}")
                return None  # span token

            def on_exit(self, span, name, ok, duration_ms, depth):
                status = "✔" if ok else "✗"
                print(f"{'  ' * depth}<- {name} {status} ({duration_ms:.2f}ms)")

            def on_error(self, span, name, error, duration_ms, depth):
                print(f"{'  ' * depth}<- {name} ERROR: {error}")
    """

    def on_enter(self, name: str, ctx: Any, depth: int) -> Any:
        """
        Called before a solver step.

        Args:
            name: Name of the step ("advance", "value", "derive:Sat", ...)
            ctx: The item being consumed, or None for value queries
            depth: 0 for solver operations, 1 for per-branch work

        Returns:
            Span token to pass to on_exit (can be None)
        """
        ...

    def on_exit(
        self, span: Any, name: str, ok: bool, duration_ms: float, depth: int
    ) -> None:
        """
        Called after a step completes.

        Args:
            span: Token returned from on_enter
            name: Name of the step
            ok: advance: always True; value: result was defined;
                per-branch: the branch is still live / produced a value
            duration_ms: Execution time in milliseconds
            depth: Nesting depth
        """
        ...

    def on_error(
        self, span: Any, name: str, error: Exception, duration_ms: float, depth: int
    ) -> None:
        """
        Called if a caller-supplied function raises during a step.

        The exception is re-raised after the hook returns.
        """
        ...


@dataclass
class TraceConfig:
    """
    Configuration for tracing behavior.

    Attributes:
        nested: If True, emit one event per working-set branch
        include_leaf_only: If True, skip the solver-level events and only
            report per-branch work
    """

    nested: bool = True
    include_leaf_only: bool = False


@contextmanager
def use_tracing(hook: TraceHook, config: TraceConfig | None = None):
    """
    Context manager to enable tracing for every solver in scope.

    A hook passed directly to Solver(...) takes precedence.

    Example:
        with use_tracing(LoggingHook(logger)):
            solver.advance(item)  # This will be traced

        # Solver-level events only
        with use_tracing(PrintHook(), TraceConfig(nested=False)):
            solver.feed(items)
    """
    old_hook = _trace_hook.get()
    old_config = _trace_config.get()

    _trace_hook.set(hook)
    _trace_config.set(config or TraceConfig())

    try:
        yield
    finally:
        _trace_hook.set(old_hook)
        _trace_config.set(old_config)


def _active_hook() -> tuple[TraceHook | None, TraceConfig]:
    """Get the hook and config installed by use_tracing(), if any."""
    return _trace_hook.get(), _trace_config.get() or TraceConfig()


# =============================================================================
# Built-in Trace Hooks
# =============================================================================


def _exit_status(name: str, ok: bool) -> str:
    """Label for a completed step: a failed derive is a dead branch."""
    if ok:
        return "OK"
    if name.startswith("derive:"):
        return "DEAD"
    if name.startswith("epsilon:"):
        return "EMPTY"
    return "UNDEFINED"


class PrintHook:
    """
    Simple trace hook that prints to stdout.

    Example:
        with use_tracing(PrintHook()):
            solver.advance(3)

        # Output:
        # -> advance
        #   -> derive:Iter
        #   <- derive:Iter ✔ (0.02ms)
        # <- advance ✔ (0.05ms)
    """

    def __init__(self, indent: str = "  ", show_ctx: bool = False):
        self.indent = indent
        self.show_ctx = show_ctx

    def on_enter(self, name: str, ctx: Any, depth: int) -> float:
        prefix = self.indent * depth
        if self.show_ctx:
            print(f"{prefix}-> {name} | ctx={ctx}")
        else:
            print(f"{prefix}-> {name}")
        return time.perf_counter()

    def on_exit(
        self, span: float, name: str, ok: bool, duration_ms: float, depth: int
    ) -> None:
        prefix = self.indent * depth
        status = "✔" if ok else f"✗ {_exit_status(name, ok).lower()}"
        print(f"{prefix}<- {name} {status} ({duration_ms:.2f}ms)")

    def on_error(
        self, span: float, name: str, error: Exception, duration_ms: float, depth: int
    ) -> None:
        prefix = self.indent * depth
        print(f"{prefix}<- {name} ERROR: {error} ({duration_ms:.2f}ms)")


class LoggingHook:
    """
    Trace hook that logs to a Python logger.

    Example:
        import logging
        logger = logging.getLogger("qrekit")

        with use_tracing(LoggingHook(logger)):
            solver.feed(items)
    """

    def __init__(self, logger, level: int = 10):  # 10 = DEBUG
        self.logger = logger
        self.level = level

    def on_enter(self, name: str, ctx: Any, depth: int) -> dict:
        span = {"name": name, "depth": depth, "start": time.perf_counter()}
        self.logger.log(self.level, f"[ENTER] {name} (depth={depth})")
        return span

    def on_exit(
        self, span: dict, name: str, ok: bool, duration_ms: float, depth: int
    ) -> None:
        status = _exit_status(name, ok)
        self.logger.log(self.level, f"[EXIT] {name} -> {status} ({duration_ms:.2f}ms)")

    def on_error(
        self, span: dict, name: str, error: Exception, duration_ms: float, depth: int
    ) -> None:
        self.logger.error(f"[ERROR] {name} -> {error} ({duration_ms:.2f}ms)")


class OpenTelemetryHook:
    """
    OpenTelemetry trace hook with:

    - Parent/child span hierarchy (solver step -> branch work)
    - Depth-based span suppression
    - Branch-as-event optimization for large working sets
    - Optional sibling span linking

    Requires: pip install opentelemetry-api
    """

    def __init__(
        self,
        tracer,
        *,
        max_span_depth: int | None = None,
        link_sibling_spans: bool = False,
        branches_as_events: bool = False,
    ):
        if not _HAS_OPENTELEMETRY:
            raise ImportError(
                "OpenTelemetry is not installed. "
                "Install it with: pip install opentelemetry-api"
            )
        self.tracer = tracer
        self.max_span_depth = max_span_depth
        self.link_sibling_spans = link_sibling_spans
        self.branches_as_events = branches_as_events

        self._span_stack: list[Any] = []
        self._last_span_at_depth: dict[int, Any] = {}

    # -------------------------------------------------
    # Span lifecycle
    # -------------------------------------------------

    def on_enter(self, name: str, ctx: Any, depth: int) -> Any:
        # These are guaranteed non-None because __init__ checks _HAS_OPENTELEMETRY
        assert _set_span_in_context is not None
        assert _Link is not None

        if self.max_span_depth is not None and depth > self.max_span_depth:
            return None

        parent = self._span_stack[-1] if self._span_stack else None
        parent_ctx = _set_span_in_context(parent) if parent else None

        if self.branches_as_events and parent and depth > 0:
            parent.add_event(
                "qre.branch",
                {
                    "qrekit.step": name,
                    "qrekit.depth": depth,
                },
            )
            return None

        links = []
        if self.link_sibling_spans and depth in self._last_span_at_depth:
            links.append(_Link(self._last_span_at_depth[depth].get_span_context()))

        span = self.tracer.start_span(
            name,
            context=parent_ctx,
            links=links or None,
        )
        span.set_attribute("qrekit.name", name)
        span.set_attribute("qrekit.depth", depth)

        self._span_stack.append(span)
        self._last_span_at_depth[depth] = span
        return span

    def on_exit(
        self,
        span: Any,
        name: str,
        ok: bool,
        duration_ms: float,
        depth: int,
    ) -> None:
        if span is None:
            return

        # These are guaranteed non-None because __init__ checks _HAS_OPENTELEMETRY
        assert _Status is not None
        assert _StatusCode is not None

        span.set_attribute("qrekit.defined", ok)
        span.set_attribute("qrekit.duration_ms", duration_ms)

        if not ok and name == "value":
            span.set_status(_Status(_StatusCode.ERROR, "undefined"))

        span.end()
        self._span_stack.pop()

    def on_error(
        self,
        span: Any,
        name: str,
        error: Exception,
        duration_ms: float,
        depth: int,
    ) -> None:
        if span is None:
            return

        # These are guaranteed non-None because __init__ checks _HAS_OPENTELEMETRY
        assert _Status is not None
        assert _StatusCode is not None

        span.set_attribute("qrekit.defined", False)
        span.set_attribute("qrekit.duration_ms", duration_ms)
        span.record_exception(error)
        span.set_status(_Status(_StatusCode.ERROR, str(error)))

        span.end()
        self._span_stack.pop()
