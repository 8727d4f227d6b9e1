"""Shared data types used across RippleCut."""

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

DEFAULT_AVERAGE_DB = -60.0


def finite_or(value, default: float = 0.0) -> float:
    """Return ``value`` as a float, or ``default`` when it is missing or not finite."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


class ListKind(str, Enum):
    """The two segment lists owned by the timeline model."""

    CONFIRMED = "confirmed"
    PENDING = "pending"


class TrackKind(str, Enum):
    """What a selection on the canvas points at."""

    MEDIA = "media"
    CONFIRMED = "confirmed"
    PENDING = "pending"


class ViewMode(str, Enum):
    CONTINUOUS = "continuous"
    FRAGMENTED = "fragmented"


@dataclass(frozen=True)
class TimeRange:
    """A start/end time pair in seconds."""

    start: float
    end: float

    @property
    def width(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class CutSegment:
    """A cut interval on the real timeline.

    ``id`` is assigned by the timeline model and stays with the segment while
    it is dragged; it is ignored when segments are compared.
    """

    start: float
    end: float
    average_db: float | None = None
    id: int | None = field(default=None, compare=False)

    @property
    def width(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class SpeechClip:
    """A kept span between confirmed cuts, placed on the collapsed timeline."""

    start: float
    end: float
    duration: float
    virtual_start: float
    id: str = ""

    @property
    def virtual_end(self) -> float:
        return self.virtual_start + self.duration


@dataclass(frozen=True)
class TimelineStats:
    original_duration: float = 0.0
    current_base: float = 0.0
    remaining: float = 0.0
    total_cut_duration: float = 0.0
    cut_count: int = 0
    pending_count: int = 0


@dataclass(frozen=True)
class HistorySnapshot:
    """Confirmed segments together with the intensity that produced them."""

    confirmed_segments: tuple[CutSegment, ...]
    committed_intensity: float = 0.0


@dataclass(frozen=True)
class SelectionState:
    track: TrackKind | None = None
    indices: tuple[int, ...] = ()


@dataclass(frozen=True)
class RawSilence:
    """One candidate returned by the silence detector."""

    start_time: float
    end_time: float
    average_db: float = DEFAULT_AVERAGE_DB


@dataclass(frozen=True)
class MediaInfo:
    """Metadata reported for the active media file."""

    duration: float
    has_video: bool = True
    has_audio: bool = True


@dataclass
class WaveformBuffer:
    """Normalized amplitude peaks, growing while streaming and final once done."""

    peaks: list[float] = field(default_factory=list)
    sample_rate: int | None = None
    duration: float = 0.0
    cache_id: str | None = None
    final: bool = False


@dataclass(frozen=True)
class ExportSegment:
    start_time: float
    end_time: float
    duration: float
    average_db: float = DEFAULT_AVERAGE_DB


@dataclass(frozen=True)
class ExportRequest:
    input_path: Path
    threshold_db: float
    min_silence_duration: float
    segments: tuple[ExportSegment, ...]


@dataclass(frozen=True)
class ExportResult:
    success: bool
    output_path: Path | None = None


@dataclass(frozen=True)
class ExportCancelled:
    """Returned instead of a result when the user cancelled the export."""

    cancelled: bool = True


@dataclass(frozen=True)
class ExportProgress:
    percent: float
    message: str = ""
    eta: float = 0.0
