"""Utilities for tracing pipeline phases.

Each phase of a run (detection, packaging, publishing, ...) is wrapped in
`trace_context`. Nested phases are logged with their full path and, when a
`TraceCollector` is active, their durations are recorded so the run summary
can report where time was spent.
"""

from collections import defaultdict
import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


@dataclass
class TraceCollector:
    """Accumulates phase durations for a single run."""

    timings: dict[str, float] = field(default_factory=lambda: defaultdict(float))
    counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def add(self, name: str, duration: float) -> None:
        self.timings[name] += duration
        self.counts[name] += 1


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")
_collector: contextvars.ContextVar[TraceCollector | None] = contextvars.ContextVar(
    "trace_collector", default=None
)


@contextmanager
def get_trace_collector() -> Generator[TraceCollector, None, None]:
    """Collect phase timings for everything run inside the context."""
    collector = TraceCollector()
    token = _collector.set(collector)
    try:
        yield collector
    finally:
        _collector.reset(token)


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Log entry and exit of a named phase, nested under any enclosing phase."""
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        duration = perf_counter() - t1
        trace.reset(token)
        if (collector := _collector.get()) is not None:
            collector.add(label, duration)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, duration)
