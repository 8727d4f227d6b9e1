"""Timeline model: owner of the confirmed and pending cut lists.

All derived values (stats, speech clips, merged silences) are pure functions
of ``(original_duration, confirmed, pending)``. The model caches them against
a version counter that every write bumps, so a stale value is never served.
"""

import itertools
import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable

from ripplecut.events import EventBus, Subscription
from ripplecut.history import HistoryManager
from ripplecut.models import (
    CutSegment,
    HistorySnapshot,
    ListKind,
    SpeechClip,
    TimelineStats,
    TimeRange,
    ViewMode,
    finite_or,
)
from ripplecut.segments import MIN_SEGMENT_WIDTH, Interval, merge, subtract, total_width
from ripplecut.timemap import TimeMapper

logger = logging.getLogger(__name__)

CHANGED = "changed"


def calculate_stats(
    original_duration: float,
    confirmed: Iterable[Interval],
    pending: Iterable[Interval],
) -> TimelineStats:
    total = max(0.0, finite_or(original_duration))
    confirmed = list(confirmed or ())
    pending = list(pending or ())

    confirmed_cut = total_width(merge(confirmed))
    current_base = max(0.0, total - confirmed_cut)

    all_cuts = merge(confirmed + pending)
    total_cut = total_width(all_cuts)
    remaining = max(0.0, total - total_cut)

    return TimelineStats(
        original_duration=total,
        current_base=finite_or(current_base),
        remaining=min(finite_or(remaining), finite_or(current_base)),
        total_cut_duration=finite_or(total_cut),
        cut_count=len(all_cuts),
        pending_count=len(pending),
    )


def generate_speech_clips(original_duration: float, silences: Iterable[Interval]) -> list[SpeechClip]:
    """Kept spans between merged cuts, with contiguous virtual offsets."""
    total = finite_or(original_duration)
    clips: list[SpeechClip] = []
    last_end = 0.0
    v_offset = 0.0

    for idx, seg in enumerate(merge(silences)):
        if seg.start > last_end:
            duration = seg.start - last_end
            clips.append(SpeechClip(
                start=last_end,
                end=seg.start,
                duration=duration,
                virtual_start=v_offset,
                id=f"clip-{idx}",
            ))
            v_offset += duration
        last_end = max(last_end, seg.end)

    if last_end < total:
        clips.append(SpeechClip(
            start=last_end,
            end=total,
            duration=total - last_end,
            virtual_start=v_offset,
            id="clip-last",
        ))
    return clips


@dataclass(frozen=True)
class TimelineDerived:
    stats: TimelineStats
    merged_silences: tuple[TimeRange, ...]
    speech_clips: tuple[SpeechClip, ...]


def derive_timeline(
    original_duration: float,
    confirmed: Iterable[Interval],
    pending: Iterable[Interval],
) -> TimelineDerived:
    confirmed = list(confirmed)
    silences = merge(confirmed)
    return TimelineDerived(
        stats=calculate_stats(original_duration, confirmed, pending),
        merged_silences=tuple(silences),
        speech_clips=tuple(generate_speech_clips(original_duration, silences)),
    )


@dataclass(frozen=True)
class UndoResult:
    applied: bool
    message: str
    committed_intensity: float = 0.0


class TimelineModel:
    """Single writer of the confirmed/pending segment lists.

    Every mutation goes through :meth:`apply`. Writes to the confirmed list
    push a history snapshot first unless ``skip_history`` is set; the pending
    list never enters history.
    """

    def __init__(
        self,
        original_duration: float = 0.0,
        history: HistoryManager | None = None,
        view_mode: ViewMode = ViewMode.CONTINUOUS,
    ):
        self.history = history or HistoryManager()
        self.events = EventBus()
        self._original_duration = max(0.0, finite_or(original_duration))
        self._confirmed: tuple[CutSegment, ...] = ()
        self._pending: tuple[CutSegment, ...] = ()
        self._committed_intensity = 0.0
        self._view_mode = ViewMode(view_mode)
        self._ids = itertools.count(1)
        self._version = 0
        self._cache: tuple[int, TimelineDerived] | None = None
        self._gesture_base: tuple[CutSegment, ...] | None = None

    # --- read side ---------------------------------------------------------

    @property
    def original_duration(self) -> float:
        return self._original_duration

    @property
    def confirmed(self) -> tuple[CutSegment, ...]:
        return self._confirmed

    @property
    def pending(self) -> tuple[CutSegment, ...]:
        return self._pending

    @property
    def committed_intensity(self) -> float:
        return self._committed_intensity

    @property
    def version(self) -> int:
        return self._version

    @property
    def view_mode(self) -> ViewMode:
        return self._view_mode

    @view_mode.setter
    def view_mode(self, mode: ViewMode) -> None:
        mode = ViewMode(mode)
        if mode != self._view_mode:
            self._view_mode = mode
            self.events.emit(CHANGED, self)

    @property
    def derived(self) -> TimelineDerived:
        if self._cache is None or self._cache[0] != self._version:
            self._cache = (
                self._version,
                derive_timeline(self._original_duration, self._confirmed, self._pending),
            )
        return self._cache[1]

    @property
    def stats(self) -> TimelineStats:
        return self.derived.stats

    @property
    def speech_clips(self) -> tuple[SpeechClip, ...]:
        return self.derived.speech_clips

    @property
    def merged_silences(self) -> tuple[TimeRange, ...]:
        return self.derived.merged_silences

    @property
    def virtual_duration(self) -> float:
        """Length of the edit: confirmed cuts applied, plus pending ones while uncollapsed."""
        if self._view_mode == ViewMode.FRAGMENTED:
            return self.stats.current_base
        return self.stats.remaining

    @property
    def layout_duration(self) -> float:
        """Span the canvas lays out: full media when uncollapsed, the cut result otherwise."""
        if self._view_mode == ViewMode.FRAGMENTED:
            return self.stats.current_base
        return self._original_duration

    @property
    def mapper(self) -> TimeMapper:
        return TimeMapper(self.merged_silences, self._view_mode)

    def segments(self, target: ListKind) -> tuple[CutSegment, ...]:
        return self._confirmed if ListKind(target) is ListKind.CONFIRMED else self._pending

    def find(self, target: ListKind, seg_id: int) -> tuple[int, CutSegment] | None:
        for i, seg in enumerate(self.segments(target)):
            if seg.id == seg_id:
                return i, seg
        return None

    def subscribe(self, callback) -> Subscription:
        return self.events.subscribe(CHANGED, callback)

    # --- the write side ----------------------------------------------------

    def apply(self, target: ListKind, segments: Iterable[Interval], skip_history: bool = False) -> None:
        """Replace one of the two lists. This is the only place either list is written."""
        target = ListKind(target)
        stamped = self._stamp(segments)
        if target is ListKind.CONFIRMED:
            if not skip_history:
                self.history.push(HistorySnapshot(self._confirmed, self._committed_intensity))
            self._confirmed = stamped
        else:
            self._pending = stamped
        self._touch()

    def _stamp(self, segments: Iterable[Interval]) -> tuple[CutSegment, ...]:
        seen: set[int] = set()
        out: list[CutSegment] = []
        for seg in segments or ():
            if not isinstance(seg, CutSegment):
                seg = CutSegment(
                    start=seg.start,
                    end=seg.end,
                    average_db=getattr(seg, "average_db", None),
                )
            if not (math.isfinite(seg.start) and math.isfinite(seg.end)) or seg.end <= seg.start:
                logger.warning("[timeline] dropping invalid segment %r", seg)
                continue
            if seg.id is None or seg.id in seen:
                seg = replace(seg, id=next(self._ids))
            seen.add(seg.id)
            out.append(seg)
        return tuple(out)

    def _touch(self) -> None:
        self._version += 1
        self.events.emit(CHANGED, self)

    # --- operations --------------------------------------------------------

    def set_duration(self, duration: float) -> None:
        duration = max(0.0, finite_or(duration))
        if duration != self._original_duration:
            self._original_duration = duration
            self._touch()

    def set_committed_intensity(self, intensity: float) -> None:
        self._committed_intensity = max(0.0, finite_or(intensity))

    def reset(self, duration: float = 0.0) -> None:
        """Drop all cuts and history, as when a new file is loaded or the media removed."""
        self._original_duration = max(0.0, finite_or(duration))
        self._committed_intensity = 0.0
        self._gesture_base = None
        self.apply(ListKind.PENDING, ())
        self.apply(ListKind.CONFIRMED, (), skip_history=True)
        self.history.clear()

    def set_pending_from_detection(self, candidates: Iterable[CutSegment]) -> tuple[CutSegment, ...]:
        """Replace the pending list with detector output, minus what is already confirmed."""
        fresh = subtract(list(candidates), self._confirmed)
        self.apply(ListKind.PENDING, fresh)
        return self._pending

    def clear_pending(self) -> None:
        if self._pending:
            self.apply(ListKind.PENDING, ())

    def commit_pending(self, intensity: float | None = None) -> bool:
        """Fold the pending list into the confirmed baseline."""
        if not self._pending:
            return False
        baseline = merge(list(self._confirmed) + list(self._pending))
        self.apply(ListKind.CONFIRMED, baseline)
        if intensity is not None:
            self._committed_intensity = finite_or(intensity)
        self.apply(ListKind.PENDING, ())
        logger.info("[timeline] committed cuts, baseline now has %d segments", len(self._confirmed))
        return True

    def update_segment(
        self,
        target: ListKind,
        seg_id: int,
        start: float | None = None,
        end: float | None = None,
        skip_history: bool = False,
    ) -> CutSegment | None:
        """Move one edge (or both) of the segment with ``seg_id``.

        The result stays inside ``[0, original_duration]`` and at least
        ``MIN_SEGMENT_WIDTH`` wide.
        """
        found = self.find(target, seg_id)
        if found is None:
            return None
        index, seg = found
        new_start, new_end = seg.start, seg.end
        limit = self._original_duration if self._original_duration > 0 else float("inf")
        if start is not None:
            new_start = min(max(0.0, finite_or(start, seg.start)), new_end - MIN_SEGMENT_WIDTH)
        if end is not None:
            new_end = max(min(limit, finite_or(end, seg.end)), new_start + MIN_SEGMENT_WIDTH)
        updated = replace(seg, start=new_start, end=new_end)
        items = list(self.segments(target))
        items[index] = updated
        self.apply(target, items, skip_history=skip_history)
        return updated

    def delete_segments(self, target: ListKind, indices: Iterable[int]) -> int:
        drop = set(indices)
        current = self.segments(target)
        kept = [s for i, s in enumerate(current) if i not in drop]
        removed = len(current) - len(kept)
        if removed:
            self.apply(target, kept)
        return removed

    def delete_speech_clips(self, indices: Iterable[int]) -> int:
        """Ripple delete: each selected speech clip becomes a new confirmed cut."""
        clips = self.speech_clips
        new_cuts = [
            CutSegment(start=clips[i].start, end=clips[i].end)
            for i in sorted(set(indices))
            if 0 <= i < len(clips)
        ]
        if not new_cuts:
            return 0
        self.apply(ListKind.CONFIRMED, list(self._confirmed) + new_cuts)
        return len(new_cuts)

    def add_confirmed(self, start: float, length: float = 1.0) -> CutSegment | None:
        """Insert a manual cut of ``length`` seconds at ``start``, clipped to the media."""
        start = max(0.0, finite_or(start))
        end = start + length
        if self._original_duration > 0:
            end = min(end, self._original_duration)
        if end - start <= MIN_SEGMENT_WIDTH:
            return None
        cut = CutSegment(start=start, end=end)
        ordered = sorted(list(self._confirmed) + [cut], key=lambda s: s.start)
        self.apply(ListKind.CONFIRMED, ordered)
        return next(s for s in self._confirmed if s.start == start and s.end == end)

    # --- gestures and undo -------------------------------------------------

    def begin_gesture(self) -> None:
        """Remember the confirmed list before a drag so release records one history entry."""
        self._gesture_base = self._confirmed

    def end_gesture(self) -> bool:
        base, self._gesture_base = self._gesture_base, None
        if base is None or base == self._confirmed:
            return False
        return self.history.push(HistorySnapshot(base, self._committed_intensity))

    def undo(self) -> UndoResult:
        snapshot = self.history.pop()
        if snapshot is None:
            logger.info("[timeline] undo requested with empty history")
            return UndoResult(False, "Nothing to undo", self._committed_intensity)
        self._committed_intensity = snapshot.committed_intensity
        self.apply(ListKind.CONFIRMED, snapshot.confirmed_segments, skip_history=True)
        return UndoResult(True, "Undid last edit", self._committed_intensity)
