"""Silence detection analyzer: strategy mapping and post-processing of detector output."""

import asyncio
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from ripplecut import ffutil
from ripplecut.models import CutSegment, RawSilence, finite_or

# Padded silences no wider than this are dropped.
MIN_PADDED_WIDTH = 0.05

# (intensity, min_silence_duration, padding) breakpoints, linear in between.
STRATEGY_POINTS = (
    (0.0, 3.0, 0.5),
    (0.25, 0.8, 0.25),
    (0.5, 0.5, 0.15),
    (1.0, 0.2, 0.05),
)

PRESETS = {"none": 0.0, "natural": 0.25, "fast": 0.5, "super": 1.0}


class DetectionError(RuntimeError):
    """The detector could not produce candidates."""


@dataclass(frozen=True)
class DetectionParams:
    threshold_db: float
    min_silence_duration: float
    sample_rate: int
    cache_id: str


@dataclass(frozen=True)
class Strategy:
    min_silence_duration: float
    padding: float


class SilenceDetector(Protocol):
    async def detect(self, params: DetectionParams) -> list[RawSilence]: ...


def strategy_for(intensity: float) -> Strategy:
    """Map a 0..1 cutting intensity to detector duration and speech padding.

    Higher intensity detects shorter pauses and leaves less breathing room.
    """
    x = min(max(finite_or(intensity), 0.0), 1.0)
    for (x0, d0, p0), (x1, d1, p1) in zip(STRATEGY_POINTS, STRATEGY_POINTS[1:]):
        if x <= x1:
            ratio = (x - x0) / (x1 - x0)
            return Strategy(
                min_silence_duration=d0 + (d1 - d0) * ratio,
                padding=p0 + (p1 - p0) * ratio,
            )
    _, d, p = STRATEGY_POINTS[-1]
    return Strategy(min_silence_duration=d, padding=p)


def threshold_to_db(threshold: float) -> float:
    """Convert a linear amplitude threshold to dBFS; tiny values floor at -60 dB."""
    return 20 * math.log10(max(finite_or(threshold), 0.001))


def apply_padding(raw: Iterable[RawSilence], padding: float) -> list[CutSegment]:
    """Shrink each silence by ``padding`` on both sides.

    Padding keeps a little air around speech so cuts do not clip words.
    Silences that vanish under the padding are dropped.
    """
    padding = max(0.0, finite_or(padding))
    segments: list[CutSegment] = []
    for r in raw:
        start = finite_or(r.start_time) + padding
        end = finite_or(r.end_time) - padding
        if end - start <= MIN_PADDED_WIDTH:
            continue
        segments.append(CutSegment(start=start, end=end, average_db=finite_or(r.average_db, -60.0)))
    return segments


class FFmpegSilenceDetector:
    """Detector backed by ffmpeg's ``silencedetect`` filter.

    ``cache_id`` is the path of the media file to scan.
    """

    def __init__(self, duration: float | None = None):
        self.duration = duration

    async def detect(self, params: DetectionParams) -> list[RawSilence]:
        try:
            ranges = await asyncio.to_thread(
                ffutil.detect_silence,
                Path(params.cache_id),
                threshold_db=params.threshold_db,
                min_duration=params.min_silence_duration,
                duration=self.duration,
            )
        except (RuntimeError, OSError) as e:
            raise DetectionError(str(e)) from e
        return [RawSilence(start_time=r.start, end_time=r.end) for r in ranges]
