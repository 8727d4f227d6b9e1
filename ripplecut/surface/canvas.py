"""Interaction state machine of the timeline canvas.

The canvas is toolkit-agnostic: a host widget forwards pointer, wheel and
keyboard events with coordinates relative to the scroll container, and
reads back ``state``, ``selection``, ``selection_box``, ``context_menu``
and ``cursor`` when it paints.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ripplecut.events import Subscription
from ripplecut.manifest import SurfaceConfig
from ripplecut.models import ListKind, SelectionState, TrackKind, ViewMode
from ripplecut.surface.viewport import Viewport
from ripplecut.timeline import TimelineModel, UndoResult

logger = logging.getLogger(__name__)

RULER_HEIGHT = 24
TRACK_HEIGHT = 52
TRACK_GAP = 2
TRACK_START_Y = RULER_HEIGHT + 4
CONTEXT_CUT_LENGTH = 1.0

DELETE_KEYS = ("Delete", "Backspace")

_TRACK_FOR_LIST = {ListKind.CONFIRMED: TrackKind.CONFIRMED, ListKind.PENDING: TrackKind.PENDING}


class Gesture(str, Enum):
    IDLE = "idle"
    SCRUBBING = "scrubbing"
    EDGE_DRAGGING = "edge_dragging"
    BOX_SELECTING = "box_selecting"
    MEDIA_SELECTING = "media_selecting"
    SEGMENT_SELECTING = "segment_selecting"


@dataclass(frozen=True)
class EdgeDrag:
    list: ListKind
    seg_id: int
    edge: str  # "start" or "end"


@dataclass(frozen=True)
class SelectionBox:
    """Rubber band in content x / viewport y coordinates."""

    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def x_min(self) -> float:
        return min(self.x1, self.x2)

    @property
    def x_max(self) -> float:
        return max(self.x1, self.x2)


@dataclass(frozen=True)
class ContextMenu:
    x: float
    y: float
    time: float


class TimelineCanvas:
    def __init__(
        self,
        timeline: TimelineModel,
        viewport: Viewport,
        config: SurfaceConfig | None = None,
        has_video: bool = True,
        has_audio: bool = True,
        on_seek: Callable[[float], None] | None = None,
        on_remove_media: Callable[[], None] | None = None,
        on_undo: Callable[[], UndoResult] | None = None,
    ):
        self.timeline = timeline
        self.viewport = viewport
        self.config = config or viewport.config
        self.has_video = has_video
        self.has_audio = has_audio
        self.on_seek = on_seek
        self.on_remove_media = on_remove_media
        self.on_undo = on_undo

        self.state = Gesture.IDLE
        self.drag: EdgeDrag | None = None
        self.selection = SelectionState()
        self.selection_box: SelectionBox | None = None
        self.context_menu: ContextMenu | None = None
        self.cursor = "default"
        self.file_id: str | None = None

        self._subscription: Subscription | None = timeline.subscribe(self._on_timeline_change)
        self.sync_layout()

    # --- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def set_file(self, file_id: str | None) -> None:
        """Switch the active file. Selection indices never survive a file change."""
        if file_id == self.file_id:
            return
        self.file_id = file_id
        self.selection = SelectionState()
        self.selection_box = None
        self.context_menu = None
        self.drag = None
        self.state = Gesture.IDLE
        self.sync_layout()
        if file_id is not None:
            self.viewport.fit_to_file(file_id)

    def set_tracks(self, has_video: bool, has_audio: bool) -> None:
        self.has_video = has_video
        self.has_audio = has_audio

    def sync_layout(self) -> None:
        self.viewport.set_layout(duration=self.timeline.layout_duration)

    def _on_timeline_change(self, _timeline) -> None:
        self.sync_layout()
        self._prune_selection()

    def _prune_selection(self) -> None:
        track = self.selection.track
        if track is None or not self.selection.indices:
            return
        if track is TrackKind.MEDIA:
            size = len(self.timeline.speech_clips)
        elif track is TrackKind.PENDING:
            size = len(self.timeline.pending)
        else:
            size = len(self.timeline.confirmed)
        kept = tuple(i for i in self.selection.indices if i < size)
        if kept != self.selection.indices:
            self.selection = SelectionState(track, kept) if kept else SelectionState()

    # --- geometry ----------------------------------------------------------

    @property
    def fragmented(self) -> bool:
        return self.timeline.view_mode == ViewMode.FRAGMENTED

    @property
    def video_y(self) -> float:
        return TRACK_START_Y

    @property
    def audio_y(self) -> float:
        return self.video_y + TRACK_HEIGHT + TRACK_GAP if self.has_video else TRACK_START_Y

    def in_video_row(self, y: float) -> bool:
        return self.has_video and self.video_y <= y <= self.video_y + TRACK_HEIGHT

    def in_audio_row(self, y: float) -> bool:
        return self.has_audio and self.audio_y <= y <= self.audio_y + TRACK_HEIGHT

    def segment_pixels(self, target: ListKind, index: int) -> tuple[float, float]:
        seg = self.timeline.segments(target)[index]
        mapper = self.timeline.mapper
        return (
            self.viewport.time_to_pixel(mapper.to_virtual(seg.start)),
            self.viewport.time_to_pixel(mapper.to_virtual(seg.end)),
        )

    def _times(self, x: float) -> tuple[float, float, float]:
        actual_x = self.viewport.content_x(x)
        v_time = self.viewport.pixel_to_time(actual_x)
        return actual_x, v_time, self.timeline.mapper.to_real(v_time)

    def _seek(self, r_time: float) -> None:
        if self.on_seek:
            self.on_seek(min(max(r_time, 0.0), self.timeline.original_duration))

    # --- pointer -----------------------------------------------------------

    def pointer_down(self, x: float, y: float) -> Gesture:
        self.context_menu = None
        if self.state is not Gesture.IDLE:
            return self.state

        actual_x, v_time, r_time = self._times(x)

        if y <= RULER_HEIGHT:
            self.state = Gesture.SCRUBBING
            self._seek(r_time)
            return self.state

        layout_px = self.viewport.time_to_pixel(self.timeline.layout_duration)
        within_time = 0 <= actual_x <= layout_px

        if within_time and self.in_audio_row(y):
            lists = [ListKind.PENDING]
            if not self.fragmented:
                # collapsed cuts are not drawn, so they cannot be grabbed
                lists.append(ListKind.CONFIRMED)
            for target in lists:
                hit = self._hit_segment(target, actual_x, r_time)
                if hit is not None:
                    return hit

        if self.in_video_row(y) or self.in_audio_row(y):
            found = -1
            if within_time and self.fragmented:
                found = next(
                    (i for i, c in enumerate(self.timeline.speech_clips)
                     if c.virtual_start <= v_time <= c.virtual_end),
                    -1,
                )
            indices = (found,) if found != -1 else ()
            self.selection = SelectionState(TrackKind.MEDIA, indices)
            self.state = Gesture.MEDIA_SELECTING
            return self.state

        self.selection = SelectionState()
        self.selection_box = SelectionBox(actual_x, y, actual_x, y)
        self.state = Gesture.BOX_SELECTING
        return self.state

    def _hit_segment(self, target: ListKind, actual_x: float, r_time: float) -> Gesture | None:
        tolerance = self.config.edge_tolerance
        track = _TRACK_FOR_LIST[target]
        for i, seg in enumerate(self.timeline.segments(target)):
            start_px, end_px = self.segment_pixels(target, i)
            edge = None
            if abs(actual_x - start_px) < tolerance:
                edge = "start"
            elif abs(actual_x - end_px) < tolerance:
                edge = "end"
            if edge is not None:
                self.selection = SelectionState(track, (i,))
                self.drag = EdgeDrag(target, seg.id, edge)
                if target is ListKind.CONFIRMED:
                    self.timeline.begin_gesture()
                self.state = Gesture.EDGE_DRAGGING
                return self.state
            if seg.start <= r_time <= seg.end:
                self.selection = SelectionState(track, (i,))
                self.state = Gesture.SEGMENT_SELECTING
                return self.state
        return None

    def pointer_move(self, x: float, y: float) -> None:
        actual_x, _, r_time = self._times(x)

        if self.state is Gesture.IDLE:
            self.cursor = "ew-resize" if self._near_edge(y, r_time) else "default"
        elif self.state is Gesture.SCRUBBING:
            self._seek(r_time)
        elif self.state is Gesture.BOX_SELECTING and self.selection_box is not None:
            box = self.selection_box
            self.selection_box = SelectionBox(box.x1, box.y1, actual_x, y)
        elif self.state is Gesture.EDGE_DRAGGING and self.drag is not None:
            drag = self.drag
            edge = {drag.edge: r_time}
            updated = self.timeline.update_segment(drag.list, drag.seg_id, skip_history=True, **edge)
            if updated is None:
                logger.debug("[canvas] dragged segment %s vanished, ending drag", drag.seg_id)
                self._end_drag()

    def _near_edge(self, y: float, r_time: float) -> bool:
        if self.fragmented or not self.in_audio_row(y):
            return False
        threshold = self.config.edge_tolerance / self.viewport.zoom
        return any(
            abs(r_time - seg.start) < threshold or abs(r_time - seg.end) < threshold
            for seg in self.timeline.confirmed
        )

    def pointer_up(self) -> SelectionState:
        if self.state is Gesture.BOX_SELECTING and self.selection_box is not None:
            self._finish_box(self.selection_box)
        if self.state is Gesture.EDGE_DRAGGING:
            self._end_drag()
        self.selection_box = None
        self.state = Gesture.IDLE
        return self.selection

    def _end_drag(self) -> None:
        if self.drag is not None and self.drag.list is ListKind.CONFIRMED:
            self.timeline.end_gesture()
        self.drag = None
        self.state = Gesture.IDLE

    def _finish_box(self, box: SelectionBox) -> None:
        x_min, x_max = box.x_min, box.x_max
        if x_max - x_min <= self.config.box_select_min_width:
            return
        to_px = self.viewport.time_to_pixel

        if self.fragmented:
            hits = [
                i for i, c in enumerate(self.timeline.speech_clips)
                if to_px(c.virtual_end) > x_min and to_px(c.virtual_start) < x_max
            ]
            if hits:
                self.selection = SelectionState(TrackKind.MEDIA, tuple(hits))
            return

        for target in (ListKind.PENDING, ListKind.CONFIRMED):
            hits = [
                i for i, s in enumerate(self.timeline.segments(target))
                if to_px(s.end) > x_min and to_px(s.start) < x_max
            ]
            if hits:
                self.selection = SelectionState(_TRACK_FOR_LIST[target], tuple(hits))
                return

    # --- context menu ------------------------------------------------------

    def open_context_menu(self, x: float, y: float) -> ContextMenu | None:
        """Right click on the audio row offers to add a cut at that point."""
        if not self.in_audio_row(y):
            return None
        _, _, r_time = self._times(x)
        self.context_menu = ContextMenu(x=x, y=y, time=r_time)
        return self.context_menu

    def add_cut_from_menu(self):
        menu, self.context_menu = self.context_menu, None
        if menu is None:
            return None
        return self.timeline.add_confirmed(menu.time, CONTEXT_CUT_LENGTH)

    # --- keyboard and wheel ------------------------------------------------

    def key_down(self, key: str, ctrl: bool = False, meta: bool = False, in_text_input: bool = False) -> bool:
        """Handle a key press; returns True when the canvas consumed it."""
        if in_text_input:
            return False
        if (ctrl or meta) and key.lower() == "z":
            if self.on_undo:
                self.on_undo()
            else:
                self.timeline.undo()
            return True
        if key in DELETE_KEYS:
            return self.delete_selection()
        if key == "Escape" and self.context_menu is not None:
            self.context_menu = None
            return True
        return False

    def delete_selection(self) -> bool:
        track, indices = self.selection.track, self.selection.indices
        if track is None:
            return False
        if track is TrackKind.PENDING and indices:
            self.timeline.delete_segments(ListKind.PENDING, indices)
        elif track is TrackKind.CONFIRMED and indices:
            self.timeline.delete_segments(ListKind.CONFIRMED, indices)
        elif track is TrackKind.MEDIA and indices and self.fragmented:
            self.timeline.delete_speech_clips(indices)
        elif track is TrackKind.MEDIA:
            if self.on_remove_media:
                self.on_remove_media()
        else:
            return False
        self.selection = SelectionState()
        return True

    def wheel(self, x: float, delta_y: float, ctrl: bool = False, meta: bool = False) -> bool:
        """Ctrl/Cmd + wheel zooms around the pointer; a plain wheel scrolls."""
        if ctrl or meta:
            self.viewport.zoom_at(x, delta_y)
        else:
            self.viewport.scroll_by(delta_y)
        return True

    def select_track_header(self) -> None:
        """Clicking a track header selects the whole media item."""
        self.selection = SelectionState(TrackKind.MEDIA, ())
