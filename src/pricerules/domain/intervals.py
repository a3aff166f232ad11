"""Half-open validity windows.

A window ``[start, end)`` includes ``start`` and excludes ``end``; an
``end`` of ``None`` is unbounded. Two windows that merely touch
(``a.end == b.start``) do not overlap.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, model_validator


class TemporalInterval(BaseModel):
    """Validity window of a price or promotion line."""

    model_config = {"frozen": True}

    start: datetime
    end: datetime | None = None

    @model_validator(mode="after")
    def _check_order(self) -> Self:
        if self.start.tzinfo is None or (self.end is not None and self.end.tzinfo is None):
            raise ValueError("window bounds must be timezone-aware")
        if self.end is not None and self.end <= self.start:
            raise ValueError("window end must be after its start")
        return self

    @property
    def bounded(self) -> bool:
        return self.end is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat() if self.end is not None else None,
        }

    def __str__(self) -> str:
        end = self.end.isoformat() if self.end is not None else "∞"
        return f"[{self.start.isoformat()}, {end})"


def overlaps(a: TemporalInterval, b: TemporalInterval) -> bool:
    """True iff the two half-open windows share at least one instant."""
    a_before_b_ends = b.end is None or a.start < b.end
    b_before_a_ends = a.end is None or b.start < a.end
    return a_before_b_ends and b_before_a_ends


def contains(window: TemporalInterval, instant: datetime) -> bool:
    """True iff *instant* falls inside ``[start, end)``."""
    if instant < window.start:
        return False
    return window.end is None or instant < window.end


def within(inner: TemporalInterval, outer: TemporalInterval) -> bool:
    """True iff every instant of *inner* is also in *outer*."""
    if inner.start < outer.start:
        return False
    if outer.end is None:
        return True
    return inner.end is not None and inner.end <= outer.end
