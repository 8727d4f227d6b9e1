"""Conversion between real time and the collapsed (ripple-edited) timeline.

``silences`` is always the output of :func:`ripplecut.segments.merge`, so it is
sorted and non-overlapping.
"""

from typing import Sequence

from ripplecut.models import TimeRange, ViewMode


def real_to_virtual(t: float, silences: Sequence[TimeRange]) -> float:
    """Map a real time onto the collapsed timeline.

    A time inside a removed region snaps to the point just before the gap.
    """
    if not silences:
        return t

    offset = 0.0
    for seg in silences:
        if t > seg.end:
            offset += seg.end - seg.start
        elif t >= seg.start:
            return seg.start - offset
        else:
            break
    return t - offset


def virtual_to_real(v: float, silences: Sequence[TimeRange]) -> float:
    """Map a collapsed-timeline position back to real time."""
    if not silences:
        return v

    virtual_so_far = 0.0
    last_end = 0.0
    for seg in silences:
        speech = seg.start - last_end
        if v <= virtual_so_far + speech:
            return last_end + (v - virtual_so_far)
        virtual_so_far += speech
        last_end = seg.end
    return last_end + (v - virtual_so_far)


class TimeMapper:
    """Real/virtual conversion bound to a set of silences and a view mode.

    In continuous mode the timeline is drawn uncollapsed and both directions
    are the identity.
    """

    def __init__(self, silences: Sequence[TimeRange], mode: ViewMode = ViewMode.CONTINUOUS):
        self.silences = tuple(silences)
        self.mode = mode

    @property
    def compressing(self) -> bool:
        return self.mode == ViewMode.FRAGMENTED

    def to_virtual(self, t: float) -> float:
        if not self.compressing:
            return t
        return real_to_virtual(t, self.silences)

    def to_real(self, v: float) -> float:
        if not self.compressing:
            return v
        return virtual_to_real(v, self.silences)


# A playhead this close before a cut, or not yet this close to its end,
# counts as inside it.
SKIP_LEAD = 0.05
SKIP_TAIL = 0.01


def playback_skip(t: float, cuts: Sequence[TimeRange]) -> float | None:
    """Where a collapsed preview should jump to when the playhead enters a cut."""
    for seg in cuts:
        if seg.start - SKIP_LEAD <= t < seg.end - SKIP_TAIL:
            return seg.end
    return None
