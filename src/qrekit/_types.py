"""Shared type variables, callable aliases and context variables."""

from __future__ import annotations

from collections.abc import Callable
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from qrekit._tracing import TraceConfig, TraceHook

D = TypeVar("D")
"""Item type consumed from the stream."""

C = TypeVar("C")
"""Value type produced by a query."""

# Type aliases for caller-supplied functions
PredicateFn = Callable[[Any], bool]
"""Item test: (item) -> bool"""

ExtractorFn = Callable[[Any], Any]
"""Item to value: (item) -> value"""

TransformFn = Callable[[Any], Any]
"""Value post-processing: (value) -> value"""

CombineFn = Callable[[Any, Any], Any]
"""Binary value combinator: (left, right) -> value"""


# Context variables for scoped tracing (see use_tracing)
_trace_hook: ContextVar[TraceHook | None] = ContextVar("trace_hook", default=None)
_trace_config: ContextVar[TraceConfig | None] = ContextVar(
    "trace_config", default=None
)
