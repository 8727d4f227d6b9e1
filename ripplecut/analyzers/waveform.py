"""Streaming waveform ingest.

The analyzer pushes ``step`` events with partial peaks while it decodes and
a single ``done`` event once the whole file is known.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Sequence

from ripplecut.events import EventBus, Subscription
from ripplecut.manifest import StreamingConfig
from ripplecut.models import WaveformBuffer, finite_or

logger = logging.getLogger(__name__)

STEP_EVENT = "audio-waveform-step"
DONE_EVENT = "audio-waveform-done"

DEFAULT_SAMPLE_RATE = 16000
# Extra scrollable room drawn after the streaming head.
TAIL_ROOM_PX = 400
# Below this many peaks the view always sticks to the head.
EARLY_FOLLOW_PEAKS = 50


@dataclass(frozen=True)
class WaveformStep:
    peaks: Sequence[float] = ()
    progress: float | None = None


@dataclass(frozen=True)
class WaveformDone:
    peaks: Sequence[float] | None = None
    cache_id: str | None = None
    duration: float | None = None
    total_samples: int | None = None


def _clean(peaks: Sequence[float]) -> list[float]:
    return [finite_or(p) for p in peaks]


def should_follow(scroll_left: float, client_width: float, scroll_width: float, tolerance: float = 150.0) -> bool:
    """True when the view sits within ``tolerance`` px of the right end of the content."""
    return finite_or(scroll_left) + finite_or(client_width) >= finite_or(scroll_width) - tolerance


class WaveformIngest:
    """Accumulates streamed peaks and swaps in the final buffer atomically."""

    def __init__(self, config: StreamingConfig | None = None, on_change: Callable[[], None] | None = None):
        self.config = config or StreamingConfig()
        self.buffer = WaveformBuffer()
        self.progress = 0.0
        self.streaming = False
        self._on_change = on_change
        self._subscriptions: list[Subscription] = []

    # --- subscription lifecycle -------------------------------------------

    def attach(self, source: EventBus) -> "WaveformIngest":
        """Listen to ``source``; any previous source is detached first."""
        self.detach()
        self._subscriptions = [
            source.subscribe(STEP_EVENT, self._on_step_event),
            source.subscribe(DONE_EVENT, self._on_done_event),
        ]
        return self

    def detach(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    @property
    def attached(self) -> bool:
        return any(sub.active for sub in self._subscriptions)

    def __enter__(self) -> "WaveformIngest":
        return self

    def __exit__(self, *exc) -> None:
        self.detach()

    def _on_step_event(self, payload: WaveformStep) -> None:
        self.step(payload.peaks, payload.progress)

    def _on_done_event(self, payload: WaveformDone) -> None:
        self.done(payload.peaks, payload.cache_id, payload.duration, payload.total_samples)

    # --- inbound signals ---------------------------------------------------

    def step(self, peaks: Sequence[float] | None, progress: float | None = None) -> None:
        if self.buffer.final:
            logger.debug("[waveform] ignoring step after finalization")
            return
        if peaks:
            self.buffer.peaks.extend(_clean(peaks))
            self.streaming = True
        if progress is not None:
            self.progress = min(max(finite_or(progress), 0.0), 1.0)
        self._changed()

    def done(
        self,
        peaks: Sequence[float] | None = None,
        cache_id: str | None = None,
        duration: float | None = None,
        total_samples: int | None = None,
    ) -> WaveformBuffer:
        """Finalize. Non-empty ``peaks`` replace the accumulated buffer outright."""
        previous = self.buffer
        final_peaks = _clean(peaks) if peaks else list(previous.peaks)
        duration = finite_or(duration)
        total_samples = finite_or(total_samples)

        if duration > 0 and total_samples > 0:
            sample_rate = round(total_samples / duration)
        else:
            sample_rate = previous.sample_rate or DEFAULT_SAMPLE_RATE

        self.buffer = WaveformBuffer(
            peaks=final_peaks,
            sample_rate=sample_rate,
            duration=duration if duration > 0 else previous.duration,
            cache_id=cache_id or previous.cache_id,
            final=True,
        )
        self.progress = 1.0
        self.streaming = False
        logger.info("[waveform] finalized %d peaks, %.2fs @ %d Hz",
                    len(final_peaks), self.buffer.duration, sample_rate)
        self._changed()
        return self.buffer

    def reset(self) -> None:
        self.buffer = WaveformBuffer()
        self.progress = 0.0
        self.streaming = False
        self._changed()

    def _changed(self) -> None:
        if self._on_change:
            self._on_change()

    # --- geometry ----------------------------------------------------------

    @property
    def peaks_per_second(self) -> int:
        return self.config.peaks_per_second

    @property
    def loaded_duration(self) -> float:
        return len(self.buffer.peaks) / self.peaks_per_second

    @property
    def total_width(self) -> float:
        return len(self.buffer.peaks) * self.config.px_per_peak

    def visible_window(self, scroll_left: float, width: float, px_per_peak: float | None = None) -> range:
        """Indices of the peaks that fall inside the viewport, clipped to the buffer."""
        px = px_per_peak or self.config.px_per_peak
        scroll_left = max(0.0, finite_or(scroll_left))
        width = max(0.0, finite_or(width))
        start = int(math.floor(scroll_left / px))
        end = int(math.ceil((scroll_left + width) / px))
        count = len(self.buffer.peaks)
        return range(min(start, count), min(end + 1, count))


class StreamingView:
    """Scroll state of the live waveform strip while peaks are arriving.

    The view follows the growing tail only while it already sat within
    ``follow_tolerance`` pixels of the previous end; otherwise the user's
    scroll position is left alone.
    """

    def __init__(self, ingest: WaveformIngest, viewport_width: float = 800.0):
        self.ingest = ingest
        self.viewport_width = viewport_width
        self.scroll_left = 0.0
        self._last_width = ingest.total_width

    @property
    def content_width(self) -> float:
        return max(self.viewport_width, self.ingest.total_width + TAIL_ROOM_PX)

    def scroll_to(self, x: float) -> None:
        limit = max(0.0, self.content_width - self.viewport_width)
        self.scroll_left = min(max(0.0, finite_or(x)), limit)

    def was_at_end(self, previous_width: float) -> bool:
        previous_content = max(self.viewport_width, previous_width + TAIL_ROOM_PX)
        return should_follow(self.scroll_left, self.viewport_width, previous_content,
                             self.ingest.config.follow_tolerance)

    def on_growth(self) -> bool:
        """Call after new peaks arrived; returns True if the view jumped to the tail."""
        previous = self._last_width
        self._last_width = self.ingest.total_width
        if self.was_at_end(previous) or len(self.ingest.buffer.peaks) < EARLY_FOLLOW_PEAKS:
            self.scroll_to(self.content_width)
            return True
        return False

    def visible_peaks(self) -> range:
        return self.ingest.visible_window(self.scroll_left, self.viewport_width)
