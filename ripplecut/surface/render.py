"""Render loop for the timeline canvas.

Drawing goes through a small :class:`Painter` protocol so any toolkit (Qt,
a web canvas bridge, a test recorder) can host the timeline. The static
layer is redrawn only when something marked the loop dirty; the playhead
layer is redrawn on every tick.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from ripplecut.analyzers.waveform import WaveformIngest
from ripplecut.models import SpeechClip, TrackKind, ViewMode
from ripplecut.surface.canvas import RULER_HEIGHT, TRACK_HEIGHT, Gesture, TimelineCanvas
from ripplecut.surface.viewport import format_ruler_time
from ripplecut.timemap import TimeMapper

logger = logging.getLogger(__name__)

WAVE_HEIGHT_RATIO = 0.85
WAVE_GAMMA = 0.6
MAX_TICKS = 1000


class Painter(Protocol):
    def clear(self, width: float, height: float) -> None: ...

    def rect(self, x: float, y: float, w: float, h: float, style: str) -> None: ...

    def line(self, x0: float, y0: float, x1: float, y1: float, style: str) -> None: ...

    def text(self, x: float, y: float, label: str, style: str) -> None: ...


@dataclass(frozen=True)
class WaveColumn:
    x: float
    height: float


def peak_at(peaks: Sequence[float], real_time: float, peaks_per_second: int) -> float | None:
    """Linearly interpolated absolute peak at ``real_time``; None outside the buffer."""
    raw = real_time * peaks_per_second
    i0 = math.floor(raw)
    if i0 < 0 or i0 >= len(peaks):
        return None
    i1 = min(i0 + 1, len(peaks) - 1)
    v0, v1 = abs(peaks[i0]), abs(peaks[i1])
    return v0 + (v1 - v0) * (raw - i0)


def waveform_columns(
    peaks: Sequence[float],
    peaks_per_second: int,
    zoom: float,
    scroll_left: float,
    viewport_width: float,
    layout_duration: float,
    mapper: TimeMapper,
    clips: Sequence[SpeechClip] = (),
    track_height: float = TRACK_HEIGHT,
) -> list[WaveColumn]:
    """One vertical bar per visible pixel column.

    Only the visible pixel range is walked, so the cost depends on the
    viewport width and not on the length of the buffer.
    """
    if not peaks or zoom <= 0:
        return []
    draw_x = -scroll_left
    start_x = max(draw_x, 0.0)
    end_x = min(draw_x + layout_duration * zoom, viewport_width)
    if end_x <= start_x:
        return []

    wave_height = track_height * WAVE_HEIGHT_RATIO
    columns: list[WaveColumn] = []

    def emit(x: float, real_time: float) -> None:
        value = peak_at(peaks, real_time, peaks_per_second)
        if value is not None:
            columns.append(WaveColumn(x, max(1.0, math.pow(value, WAVE_GAMMA) * wave_height)))

    if mapper.mode == ViewMode.CONTINUOUS:
        x = start_x
        while x <= end_x:
            emit(x, mapper.to_real((x + scroll_left) / zoom))
            x += 1
        return columns

    for clip in clips:
        sx = clip.virtual_start * zoom - scroll_left
        ex = clip.virtual_end * zoom - scroll_left
        x = max(start_x, sx)
        stop = min(end_x, ex)
        while x <= stop:
            v_time = (x + scroll_left) / zoom
            emit(x, clip.start + (v_time - clip.virtual_start))
            x += 1
    return columns


class RenderLoop:
    """Fixed-tick loop with a dirty flag.

    Anything that changes what the static layer shows calls
    :meth:`mark_dirty`; the next tick repaints it.
    """

    def __init__(
        self,
        canvas: TimelineCanvas,
        painter: Painter,
        waveform: WaveformIngest | None = None,
        playhead: Callable[[], float] | None = None,
        tick_hz: float | None = None,
        follow_playhead: bool = True,
    ):
        self.canvas = canvas
        self.painter = painter
        self.waveform = waveform
        self.playhead = playhead
        self.tick_hz = tick_hz or canvas.config.tick_hz
        self.follow_playhead = follow_playhead
        self.dirty = True
        self.frames = 0
        self.static_frames = 0
        self._last_playhead: float | None = None
        self._subscription = canvas.timeline.subscribe(lambda _t: self.mark_dirty())

    def mark_dirty(self) -> None:
        self.dirty = True

    def close(self) -> None:
        self._subscription.unsubscribe()

    def tick(self) -> None:
        self.frames += 1
        if self.follow_playhead and self.playhead and self.canvas.state is Gesture.IDLE:
            self._follow(self.playhead())
        if self.dirty:
            self.dirty = False
            self.static_frames += 1
            try:
                self.draw_static()
            except (ValueError, ZeroDivisionError, OverflowError) as e:
                logger.error("Timeline draw error: %s", e, exc_info=e)
        self.draw_dynamic()

    def _follow(self, t: float) -> None:
        # a paused playhead leaves the user free to scroll away
        if t == self._last_playhead:
            return
        self._last_playhead = t
        if self.canvas.viewport.follow(self.canvas.timeline.mapper.to_virtual(t)):
            self.dirty = True

    async def run(self, stop: asyncio.Event) -> None:
        interval = 1.0 / self.tick_hz
        while not stop.is_set():
            self.tick()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # --- layers ------------------------------------------------------------

    def draw_static(self) -> None:
        canvas, vp, timeline = self.canvas, self.canvas.viewport, self.canvas.timeline
        p = self.painter
        p.clear(vp.width, vp.height)
        if vp.width <= 0 or timeline.layout_duration <= 0:
            return

        self._draw_ruler()

        mapper = timeline.mapper
        selection = canvas.selection
        layout_px = vp.time_to_pixel(timeline.layout_duration)
        draw_x = -vp.scroll_left

        for y, visible in ((canvas.video_y, canvas.has_video), (canvas.audio_y, canvas.has_audio)):
            if not visible:
                continue
            if canvas.fragmented:
                for i, clip in enumerate(timeline.speech_clips):
                    sx = vp.time_to_pixel(clip.virtual_start) - vp.scroll_left
                    ex = vp.time_to_pixel(clip.virtual_end) - vp.scroll_left
                    if ex < 0 or sx > vp.width:
                        continue
                    chosen = selection.track is TrackKind.MEDIA and i in selection.indices
                    p.rect(sx, y, ex - sx, TRACK_HEIGHT, "clip-selected" if chosen else "clip")
            else:
                chosen = selection.track is TrackKind.MEDIA
                p.rect(draw_x, y, layout_px, TRACK_HEIGHT, "track-selected" if chosen else "track")

        if not canvas.has_audio:
            return
        audio_y = canvas.audio_y
        start_t, end_t = vp.visible_time_range()

        if not canvas.fragmented:
            for i, seg in enumerate(timeline.confirmed):
                if seg.end < start_t or seg.start > end_t:
                    continue
                chosen = selection.track is TrackKind.CONFIRMED and i in selection.indices
                sx = vp.time_to_pixel(seg.start) - vp.scroll_left
                p.rect(sx, audio_y, vp.time_to_pixel(seg.width), TRACK_HEIGHT,
                       "confirmed-selected" if chosen else "confirmed")

        for i, seg in enumerate(timeline.pending):
            v_start, v_end = mapper.to_virtual(seg.start), mapper.to_virtual(seg.end)
            if v_end < start_t or v_start > end_t:
                continue
            width = vp.time_to_pixel(v_end - v_start)
            if width <= 0.5:
                continue
            chosen = selection.track is TrackKind.PENDING and i in selection.indices
            p.rect(vp.time_to_pixel(v_start) - vp.scroll_left, audio_y, width, TRACK_HEIGHT,
                   "pending-selected" if chosen else "pending")

        if self.waveform is not None:
            center = audio_y + TRACK_HEIGHT / 2
            for col in waveform_columns(
                self.waveform.buffer.peaks,
                self.waveform.peaks_per_second,
                vp.zoom,
                vp.scroll_left,
                vp.width,
                timeline.layout_duration,
                mapper,
                timeline.speech_clips,
            ):
                p.line(col.x + 0.5, center - col.height / 2, col.x + 0.5, center + col.height / 2, "wave")

    def _draw_ruler(self) -> None:
        vp, p = self.canvas.viewport, self.painter
        start_t, end_t = vp.visible_time_range()
        interval = vp.tick_interval()
        t = math.floor(start_t / interval) * interval
        for _ in range(MAX_TICKS):
            if t > end_t:
                break
            x = vp.time_to_pixel(t) - vp.scroll_left
            p.line(x, RULER_HEIGHT, x, RULER_HEIGHT - 8, "tick")
            p.text(x + 4, RULER_HEIGHT - 4, format_ruler_time(round(t * 10) / 10), "ruler")
            t += interval

    def draw_dynamic(self) -> None:
        canvas, vp, p = self.canvas, self.canvas.viewport, self.painter
        box = canvas.selection_box
        if box is not None:
            p.rect(box.x_min - vp.scroll_left, min(box.y1, box.y2),
                   box.x_max - box.x_min, abs(box.y2 - box.y1), "selection-box")
        if self.playhead is None:
            return
        x = vp.time_to_pixel(canvas.timeline.mapper.to_virtual(self.playhead())) - vp.scroll_left
        if math.isfinite(x) and -10 <= x <= vp.width + 10:
            p.line(x, 0, x, vp.height, "playhead")
