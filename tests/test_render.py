"""Tests for the dirty-flag render loop and waveform column mapping."""

import asyncio

import pytest

from conftest import seg
from ripplecut.analyzers.waveform import WaveformIngest
from ripplecut.models import ListKind, SelectionState, TrackKind, ViewMode
from ripplecut.surface.canvas import TimelineCanvas
from ripplecut.surface.render import (
    WAVE_HEIGHT_RATIO,
    RenderLoop,
    peak_at,
    waveform_columns,
)
from ripplecut.surface.viewport import Viewport
from ripplecut.timeline import TimelineModel
from ripplecut.timemap import TimeMapper

WAVE_HEIGHT = 52 * WAVE_HEIGHT_RATIO


class RecordingPainter:
    def __init__(self):
        self.ops = []

    def clear(self, width, height):
        self.ops.append(("clear", None))

    def rect(self, x, y, w, h, style):
        self.ops.append(("rect", style))

    def line(self, x0, y0, x1, y1, style):
        self.ops.append(("line", style))

    def text(self, x, y, label, style):
        self.ops.append(("text", style))

    def styles(self, kind):
        return [style for op, style in self.ops if op == kind]


class BrokenPainter(RecordingPainter):
    def rect(self, x, y, w, h, style):
        raise ValueError("bad geometry")


@pytest.fixture
def timeline():
    return TimelineModel(original_duration=60)


@pytest.fixture
def canvas(timeline):
    return TimelineCanvas(timeline, Viewport(width=800, height=200))


class TestPeakAt:
    def test_interpolates(self):
        assert peak_at([0.0, 1.0], 0.5, 1) == pytest.approx(0.5)

    def test_uses_magnitude(self):
        assert peak_at([-0.4, -0.4], 0.0, 1) == pytest.approx(0.4)

    def test_outside_buffer(self):
        assert peak_at([0.1], 5.0, 50) is None
        assert peak_at([0.1], -1.0, 50) is None


class TestWaveformColumns:
    def test_only_visible_pixels_walked(self):
        peaks = [0.5] * 3000
        cols = waveform_columns(peaks, 50, zoom=50, scroll_left=0, viewport_width=800,
                                layout_duration=60, mapper=TimeMapper(()))
        assert len(cols) == 801
        assert all(0 <= c.x <= 800 for c in cols)

    def test_partial_buffer_draws_what_is_loaded(self):
        cols = waveform_columns([0.5] * 100, 50, zoom=50, scroll_left=0, viewport_width=800,
                                layout_duration=60, mapper=TimeMapper(()))
        assert len(cols) == 100

    def test_collapsed_view_skips_cut_audio(self):
        timeline = TimelineModel(original_duration=60, view_mode=ViewMode.FRAGMENTED)
        timeline.apply(ListKind.CONFIRMED, [seg(10, 20)])
        peaks = [0.5] * 500 + [0.0] * 500 + [1.0] * 2000

        cols = waveform_columns(peaks, 50, zoom=50, scroll_left=0, viewport_width=800,
                                layout_duration=timeline.layout_duration,
                                mapper=timeline.mapper, clips=timeline.speech_clips)

        quiet = 0.5 ** 0.6 * WAVE_HEIGHT
        for c in cols:
            if 5 <= c.x <= 490:
                assert c.height == pytest.approx(quiet)
            elif 510 <= c.x <= 800:
                assert c.height == pytest.approx(WAVE_HEIGHT)

    def test_empty_buffer(self):
        assert waveform_columns([], 50, 50, 0, 800, 60, TimeMapper(())) == []


class TestRenderLoop:
    def test_static_layer_only_redrawn_when_dirty(self, canvas, timeline):
        painter = RecordingPainter()
        loop = RenderLoop(canvas, painter, follow_playhead=False)
        loop.tick()
        loop.tick()
        assert loop.static_frames == 1
        timeline.apply(ListKind.PENDING, [seg(1, 2)])
        assert loop.dirty
        loop.tick()
        assert loop.static_frames == 2
        assert loop.frames == 3

    def test_playhead_drawn_every_tick(self, canvas):
        painter = RecordingPainter()
        loop = RenderLoop(canvas, painter, playhead=lambda: 2.0, follow_playhead=False)
        for _ in range(3):
            loop.tick()
        assert painter.styles("line").count("playhead") == 3

    def test_overlays_by_mode(self, canvas, timeline):
        painter = RecordingPainter()
        loop = RenderLoop(canvas, painter)
        timeline.apply(ListKind.CONFIRMED, [seg(4, 8)])
        timeline.apply(ListKind.PENDING, [seg(10, 12)])
        loop.tick()
        assert "confirmed" in painter.styles("rect")
        assert "pending" in painter.styles("rect")

        painter.ops.clear()
        timeline.view_mode = ViewMode.FRAGMENTED
        loop.tick()
        rects = painter.styles("rect")
        assert "confirmed" not in rects
        assert rects.count("clip") == 4  # two clips on each of two rows

    def test_selection_styles(self, canvas, timeline):
        painter = RecordingPainter()
        loop = RenderLoop(canvas, painter)
        timeline.apply(ListKind.PENDING, [seg(1, 2)])
        canvas.selection = SelectionState(TrackKind.PENDING, (0,))
        loop.mark_dirty()
        loop.tick()
        assert "pending-selected" in painter.styles("rect")

    def test_waveform_drawn(self, canvas):
        ingest = WaveformIngest()
        ingest.step([0.3] * 200)
        painter = RecordingPainter()
        RenderLoop(canvas, painter, waveform=ingest).tick()
        assert painter.styles("line").count("wave") == 200

    def test_ruler_ticks(self, canvas):
        painter = RecordingPainter()
        RenderLoop(canvas, painter).tick()
        assert painter.styles("line").count("tick") > 0
        assert painter.styles("text")

    def test_follows_playhead(self, canvas):
        loop = RenderLoop(canvas, RecordingPainter(), playhead=lambda: 40.0)
        loop.tick()
        assert canvas.viewport.scroll_left == 40 * 50 - 400

    def test_paused_playhead_lets_user_scroll_away(self, canvas):
        position = [2.0]
        loop = RenderLoop(canvas, RecordingPainter(), playhead=lambda: position[0])
        loop.tick()
        canvas.viewport.scroll_to(2000)

        loop.tick()
        assert canvas.viewport.scroll_left == 2000

        position[0] = 3.0
        loop.tick()
        assert canvas.viewport.scroll_left == 0

    def test_draw_errors_logged_not_raised(self, canvas, caplog):
        loop = RenderLoop(canvas, BrokenPainter())
        loop.tick()
        assert "Timeline draw error" in caplog.text
        assert not loop.dirty

    def test_close_detaches(self, canvas, timeline):
        loop = RenderLoop(canvas, RecordingPainter())
        loop.tick()
        loop.close()
        timeline.apply(ListKind.PENDING, [seg(1, 2)])
        assert not loop.dirty

    def test_run_until_stopped(self, canvas):
        loop = RenderLoop(canvas, RecordingPainter(), tick_hz=200)

        async def scenario():
            stop = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, stop.set)
            await loop.run(stop)

        asyncio.run(scenario())
        assert loop.frames >= 2
