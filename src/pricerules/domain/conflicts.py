"""RuleConflictChecker: no two active windows may overlap under one key.

Shared by the price catalog (key: ``product_unit_id``) and the promotion
catalog (key: ``(target_type, target_id)``).

Intervals under a key are kept sorted by start. A lookup bisects on the
candidate's end to drop every window starting at or after it, then scans
the rest. The scan does not assume the stored windows are disjoint: a
catalog that already holds overlapping rows (which ``check`` reports)
still gets every collision reported, never just the nearest one.
"""

from __future__ import annotations

import bisect
from collections.abc import Hashable, Iterable
from dataclasses import dataclass, field

from pricerules.domain.intervals import TemporalInterval, overlaps


@dataclass(frozen=True)
class IntervalEntry:
    """An existing window registered under a key."""

    record_id: int
    window: TemporalInterval
    in_batch: bool = False


@dataclass(frozen=True)
class Conflict:
    """The existing record a candidate window collides with."""

    key: Hashable
    existing_id: int
    existing_window: TemporalInterval
    in_batch: bool = False

    def key_repr(self) -> str | int:
        if isinstance(self.key, tuple):
            return ":".join(str(part) for part in self.key)
        if isinstance(self.key, int):
            return self.key
        return str(self.key)


@dataclass
class _KeyBucket:
    starts: list[float] = field(default_factory=list)
    entries: list[IntervalEntry] = field(default_factory=list)


class IntervalIndex:
    """Per-key sorted interval index.

    Usage::

        index = IntervalIndex()
        index.add(7, IntervalEntry(record_id=1, window=w1))
        conflict = index.check(7, candidate)
    """

    def __init__(self) -> None:
        self._buckets: dict[Hashable, _KeyBucket] = {}

    def add(self, key: Hashable, entry: IntervalEntry) -> None:
        bucket = self._buckets.setdefault(key, _KeyBucket())
        ts = entry.window.start.timestamp()
        pos = bisect.bisect_right(bucket.starts, ts)
        bucket.starts.insert(pos, ts)
        bucket.entries.insert(pos, entry)

    def extend(self, key: Hashable, entries: Iterable[IntervalEntry]) -> None:
        for entry in entries:
            self.add(key, entry)

    def find_all(
        self,
        key: Hashable,
        candidate: TemporalInterval,
        *,
        exclude_id: int | None = None,
    ) -> list[Conflict]:
        """Every registered window under *key* that overlaps *candidate*, by start."""
        bucket = self._buckets.get(key)
        if bucket is None:
            return []

        if candidate.end is None:
            upper = len(bucket.entries)
        else:
            upper = bisect.bisect_left(bucket.starts, candidate.end.timestamp())

        found: list[Conflict] = []
        for entry in bucket.entries[:upper]:
            if entry.record_id == exclude_id and not entry.in_batch:
                continue
            if overlaps(entry.window, candidate):
                found.append(
                    Conflict(
                        key=key,
                        existing_id=entry.record_id,
                        existing_window=entry.window,
                        in_batch=entry.in_batch,
                    )
                )
        return found

    def check(
        self,
        key: Hashable,
        candidate: TemporalInterval,
        *,
        exclude_id: int | None = None,
    ) -> Conflict | None:
        """Return the earliest conflicting window, or None if *candidate* fits."""
        found = self.find_all(key, candidate, exclude_id=exclude_id)
        return found[0] if found else None


def check_conflict(
    key: Hashable,
    existing: Iterable[IntervalEntry],
    candidate: TemporalInterval,
    *,
    exclude_id: int | None = None,
) -> Conflict | None:
    """One-shot check of *candidate* against the *existing* windows of *key*."""
    index = IntervalIndex()
    index.extend(key, existing)
    return index.check(key, candidate, exclude_id=exclude_id)
