"""Service telemetry: timing spans for ``--verbose`` runs.

A traced service call opens a root span; ``trace_span`` blocks inside it
(validate, conflict_check, persist, evaluate) become children. When the
call returns a ServiceResult the span tree lands in
``result.meta["telemetry"]``. With telemetry off every helper returns
after a single ContextVar lookup.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Generator, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, ParamSpec, TypeVar

import structlog

from pricerules.services.result import ServiceResult

_telemetry_on: ContextVar[bool] = ContextVar("_telemetry_on", default=False)
_current_span: ContextVar[Span | None] = ContextVar("_current_span", default=None)

log = structlog.get_logger("pricerules.telemetry")


@dataclass
class Span:
    """One timed step of a service call."""

    name: str
    parent: Span | None = None
    children: list[Span] = field(default_factory=list)
    started_ns: int = field(default_factory=time.perf_counter_ns)
    finished_ns: int | None = None
    annotations: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        if self.finished_ns is None:
            return 0.0
        return (self.finished_ns - self.started_ns) / 1_000_000

    def end(self) -> None:
        if self.finished_ns is None:
            self.finished_ns = time.perf_counter_ns()

    def annotate(self, key: str, value: Any) -> None:
        self.annotations[key] = value

    def child(self, name: str) -> Span:
        span = Span(name=name, parent=self)
        self.children.append(span)
        return span

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "duration_ms": round(self.duration_ms, 3)}
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        if self.children:
            out["children"] = [c.to_dict() for c in self.children]
        return out


@contextmanager
def _activate(span: Span) -> Iterator[Span]:
    """Make *span* current for the duration of the block, then close it."""
    token = _current_span.set(span)
    try:
        yield span
    finally:
        span.end()
        _current_span.reset(token)


@contextmanager
def trace_span(name: str) -> Generator[Span | None]:
    """Time a block as a child of the running service span.

    Yields None when telemetry is off or no traced call is running.
    """
    parent = _current_span.get() if _telemetry_on.get() else None
    if parent is None:
        yield None
        return
    with _activate(parent.child(name)) as span:
        yield span


_P = ParamSpec("_P")
_R = TypeVar("_R")


def traced(func: Callable[_P, _R]) -> Callable[_P, _R]:  # noqa: UP047
    """Wrap a service method in a root span and attach the tree to its result."""

    @functools.wraps(func)
    def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        if not _telemetry_on.get():
            return func(*args, **kwargs)

        with _activate(Span(name=func.__qualname__)) as span:
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                span.annotate("exception", type(exc).__name__)
                raise
            finally:
                span.end()
                log.debug(
                    "span.complete",
                    span_name=span.name,
                    duration_ms=round(span.duration_ms, 3),
                    steps=[c.name for c in span.children],
                )

        if isinstance(result, ServiceResult):
            if result.error is not None:
                span.annotate("error", result.error.code)
            meta = {**(result.meta or {}), "telemetry": span.to_dict()}
            return result.model_copy(update={"meta": meta})  # type: ignore[return-value]
        return result

    return wrapper


def enable_telemetry() -> None:
    """Switch span collection on (``--verbose``)."""
    _telemetry_on.set(True)


def disable_telemetry() -> None:
    _telemetry_on.set(False)


def get_current_span() -> Span | None:
    """The innermost running span, for ad-hoc annotations."""
    return _current_span.get() if _telemetry_on.get() else None
