"""Interval-set operations over cut segments."""

from dataclasses import replace
from typing import Iterable, Protocol, Sequence, TypeVar

from ripplecut.models import TimeRange

# Results narrower than this are treated as noise and dropped.
MIN_SEGMENT_WIDTH = 0.01


class Interval(Protocol):
    start: float
    end: float


T = TypeVar("T", bound=Interval)


def merge(intervals: Iterable[Interval] | None) -> list[TimeRange]:
    """Union of time ranges.

    Output is sorted by start, pairwise non-overlapping, and touching ranges
    are fused: ``merge(merge(x)) == merge(x)``.
    """
    if not intervals:
        return []

    ordered = sorted(
        (TimeRange(start=s.start, end=s.end) for s in intervals),
        key=lambda r: r.start,
    )
    if not ordered:
        return []

    merged: list[TimeRange] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if nxt.start <= current.end:
            current = TimeRange(start=current.start, end=max(current.end, nxt.end))
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def subtract(a: Sequence[T] | None, b: Iterable[Interval] | None) -> list[T]:
    """Remove every range in ``b`` from the ranges in ``a``.

    Items of ``a`` keep their extra fields; trimmed or split pieces are copies
    made with :func:`dataclasses.replace`. Pieces no wider than
    ``MIN_SEGMENT_WIDTH`` are discarded.
    """
    if not a:
        return []
    subtractor = merge(b)
    if not subtractor:
        return list(a)

    result: list[T] = list(a)
    for s in subtractor:
        survivors: list[T] = []
        for r in result:
            if s.end <= r.start or s.start >= r.end:
                # disjoint
                survivors.append(r)
            elif s.start <= r.start and s.end >= r.end:
                # fully covered
                continue
            elif s.start > r.start and s.end < r.end:
                # strictly inside: split in two
                survivors.append(replace(r, end=s.start))
                survivors.append(replace(r, start=s.end))
            elif s.end > r.start and s.end < r.end:
                # covers the head
                survivors.append(replace(r, start=s.end))
            elif s.start > r.start and s.start < r.end:
                # covers the tail
                survivors.append(replace(r, end=s.start))
        result = survivors

    return [r for r in result if (r.end - r.start) > MIN_SEGMENT_WIDTH]


def total_width(intervals: Iterable[Interval]) -> float:
    return sum(r.end - r.start for r in intervals)


def find_containing(intervals: Iterable[T], t: float) -> T | None:
    """Return the first range with ``start <= t < end``, if any."""
    for r in intervals:
        if r.start <= t < r.end:
            return r
    return None


def contains(intervals: Iterable[Interval], t: float) -> bool:
    return find_containing(intervals, t) is not None
