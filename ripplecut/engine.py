"""Editing session — the context object every component is wired through.

One :class:`EditSession` per open media file replaces process-wide state:
the timeline model, detector, waveform ingest, canvas and exporter all hang
off it and are torn down together by :meth:`EditSession.close`.
"""

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Protocol

from ripplecut.analyzers.detection import DetectionController, DetectionOutcome
from ripplecut.analyzers.silence import SilenceDetector, threshold_to_db
from ripplecut.analyzers.waveform import WaveformIngest
from ripplecut.editors.cut import (
    ExportController,
    Exporter,
    ProgressCallback,
    build_export_request,
)
from ripplecut.events import EventBus, Subscription
from ripplecut.history import HistoryManager
from ripplecut.manifest import SessionConfig
from ripplecut.models import (
    ExportCancelled,
    ExportResult,
    MediaInfo,
    ViewMode,
    finite_or,
)
from ripplecut.surface.canvas import TimelineCanvas
from ripplecut.surface.render import Painter, RenderLoop
from ripplecut.surface.viewport import Viewport
from ripplecut.timeline import TimelineModel, UndoResult
from ripplecut.timemap import playback_skip

logger = logging.getLogger(__name__)

TIMEUPDATE_EVENT = "timeupdate"
DEFAULT_INTENSITY = 0.25
# Remaining duration below which every speech span counts as deleted.
EMPTY_EPSILON = 0.001


class Player(Protocol):
    """The media preview the session drives."""

    events: EventBus

    def seek_to(self, t: float) -> None: ...


class EditSession:
    def __init__(
        self,
        config: SessionConfig | None = None,
        detector: SilenceDetector | None = None,
        exporter: Exporter | None = None,
        on_status: Callable[[str], None] | None = None,
        on_export_progress: ProgressCallback | None = None,
    ):
        self.config = config or SessionConfig()
        self.status = "Wait for a file..."
        self._on_status = on_status

        self.timeline = TimelineModel(history=HistoryManager(self.config.history.limit))
        self.viewport = Viewport(self.config.surface)
        self.canvas = TimelineCanvas(
            self.timeline,
            self.viewport,
            self.config.surface,
            on_seek=self.seek,
            on_remove_media=self.remove_media,
            on_undo=self.undo,
        )
        self.waveform = WaveformIngest(self.config.streaming, on_change=self._on_waveform_change)
        self.detection = (
            DetectionController(self.timeline, detector, self.config.detection, on_status=self._set_status)
            if detector is not None else None
        )
        self.exports = ExportController(exporter, on_export_progress) if exporter is not None else None

        self.input_path: Path | None = None
        self.media: MediaInfo | None = None
        self.playhead = 0.0
        self._player: Player | None = None
        self.render: RenderLoop | None = None
        self._subscriptions: list[Subscription] = [
            self.timeline.subscribe(self._on_timeline_change),
        ]

    # --- lifecycle ---------------------------------------------------------

    def __enter__(self) -> "EditSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        """Tear down every subscription and stop background work."""
        if self.detection is not None:
            self.detection.cancel()
        self.waveform.detach()
        if self.render is not None:
            self.render.close()
            self.render = None
        self.canvas.close()
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        self._player = None

    def _set_status(self, message: str) -> None:
        self.status = message
        if self._on_status:
            self._on_status(message)

    @property
    def file_id(self) -> str | None:
        return str(self.input_path) if self.input_path else None

    def load(self, path: Path, media: MediaInfo, cache_id: str | None = None) -> None:
        """Open a new file. All cuts, history and selection from the previous file go away."""
        self.input_path = Path(path)
        self.media = MediaInfo(
            duration=max(0.0, finite_or(media.duration)),
            has_video=media.has_video,
            has_audio=media.has_audio,
        )
        self.waveform.detach()
        self.waveform.reset()
        self.timeline.reset(self.media.duration)
        self.timeline.view_mode = ViewMode.CONTINUOUS
        self.canvas.set_tracks(self.media.has_video, self.media.has_audio)
        self.canvas.set_file(self.file_id)
        if self.detection is not None:
            self.detection.attach(cache_id or str(self.input_path))
            self.detection.update(
                intensity=self.config.detection.intensity,
                padding=self.config.detection.padding,
            )
        self._set_status(f"Loaded {self.input_path.name}")
        logger.info("[session] loaded %s (%.2fs)", self.input_path, self.media.duration)

    def attach_waveform_source(self, source: EventBus) -> None:
        self.waveform.attach(source)

    def attach_painter(self, painter: Painter, **options) -> RenderLoop:
        """Draw this session's timeline with ``painter``; replaces any previous render loop."""
        if self.render is not None:
            self.render.close()
        self.render = RenderLoop(
            self.canvas,
            painter,
            waveform=self.waveform,
            playhead=lambda: self.playhead,
            **options,
        )
        return self.render

    def attach_player(self, player: Player) -> Subscription:
        """Drive ``player``: in collapsed mode the preview jumps over confirmed cuts."""
        self._player = player
        sub = player.events.subscribe(TIMEUPDATE_EVENT, self._on_timeupdate)
        self._subscriptions.append(sub)
        return sub

    def remove_media(self) -> None:
        """Drop the media item and return the session to its initial state."""
        if self.detection is not None:
            self.detection.attach(None)
            self.detection.update(
                intensity=DEFAULT_INTENSITY,
                threshold=self.config.detection.threshold,
                padding=self.config.detection.padding,
            )
        self.waveform.detach()
        self.waveform.reset()
        self.input_path = None
        self.media = None
        self.playhead = 0.0
        self.timeline.reset(0.0)
        self.timeline.view_mode = ViewMode.CONTINUOUS
        self.canvas.set_file(None)
        self._set_status("No file loaded")

    # --- reactions ---------------------------------------------------------

    def _on_timeline_change(self, timeline: TimelineModel) -> None:
        if (
            self.input_path is not None
            and timeline.view_mode == ViewMode.FRAGMENTED
            and timeline.confirmed
            and timeline.stats.remaining <= EMPTY_EPSILON
            and timeline.committed_intensity > 0
        ):
            # every speech span is gone; the committed strategy no longer means anything
            timeline.set_committed_intensity(0.0)
            if self.detection is not None:
                self.detection.update(intensity=DEFAULT_INTENSITY)
            self._set_status("All clips removed, strategy reset")

    def _on_waveform_change(self) -> None:
        self.canvas.sync_layout()
        if self.render is not None:
            self.render.mark_dirty()
        buffer = self.waveform.buffer
        if buffer.final and buffer.duration > 0 and self.input_path is not None:
            # a silent track can decode to zero length; keep the probed duration then
            if abs(buffer.duration - self.timeline.original_duration) > 1e-6:
                self.timeline.set_duration(buffer.duration)
        if buffer.final and self.detection is not None and buffer.sample_rate:
            self.detection.sample_rate = buffer.sample_rate
            if buffer.cache_id:
                self.detection.cache_id = buffer.cache_id

    def _on_timeupdate(self, t: float) -> None:
        self.playhead = finite_or(t)
        if self.timeline.view_mode != ViewMode.FRAGMENTED or self._player is None:
            return
        target = playback_skip(self.playhead, self.timeline.confirmed)
        if target is not None:
            self._player.seek_to(target)

    def seek(self, t: float) -> None:
        self.playhead = min(max(finite_or(t), 0.0), self.timeline.original_duration)
        if self._player is not None:
            self._player.seek_to(self.playhead)

    # --- user actions ------------------------------------------------------

    def _require_detection(self) -> DetectionController:
        if self.detection is None:
            raise RuntimeError("Session was created without a silence detector")
        return self.detection

    def set_intensity(self, intensity: float, schedule: bool = True) -> bool:
        """Pick a cutting strategy. Strategies milder than the committed one are refused."""
        intensity = min(max(finite_or(intensity), 0.0), 1.0)
        if intensity < self.timeline.committed_intensity:
            self._set_status("Cannot go below the committed strategy; undo first")
            return False
        detection = self._require_detection()
        detection.update(intensity=intensity, padding=None)
        if schedule:
            detection.schedule()
        return True

    def set_threshold(self, threshold: float, schedule: bool = True) -> None:
        detection = self._require_detection()
        detection.update(threshold=max(finite_or(threshold, 0.015), 0.0001))
        if schedule:
            detection.schedule()

    def set_padding(self, padding: float, schedule: bool = True) -> None:
        detection = self._require_detection()
        detection.update(padding=max(finite_or(padding), 0.0))
        if schedule:
            detection.schedule()

    async def analyze(self, **changes) -> DetectionOutcome:
        """Run the detector right away with the current (optionally changed) settings."""
        return await self._require_detection().run_now(**changes)

    def commit(self) -> bool:
        """Accept the pending cuts into the baseline and switch to the collapsed view."""
        if not self.timeline.pending:
            self._set_status("No new suggested cuts")
            return False
        intensity = self.detection.settings.intensity if self.detection else None
        self.timeline.commit_pending(intensity)
        self.timeline.view_mode = ViewMode.FRAGMENTED
        self._set_status("Applied suggested cuts to the baseline")
        return True

    def undo(self) -> UndoResult:
        result = self.timeline.undo()
        if result.applied and self.detection is not None:
            self.detection.update(intensity=result.committed_intensity)
        self._set_status(result.message)
        return result

    def set_view_mode(self, mode: ViewMode) -> None:
        self.timeline.view_mode = ViewMode(mode)

    # --- export ------------------------------------------------------------

    async def export(self) -> ExportResult | ExportCancelled:
        if self.exports is None:
            raise RuntimeError("Session was created without an exporter")
        if self.input_path is None:
            raise RuntimeError("No file loaded")
        settings = self.detection.settings if self.detection else self.config.detection
        request = build_export_request(
            self.input_path,
            self.timeline.confirmed,
            threshold_db=threshold_to_db(settings.threshold),
            min_silence_duration=self.config.export.min_silence_duration,
        )
        self._set_status("Exporting...")
        outcome = await self.exports.export(request)
        if isinstance(outcome, ExportCancelled):
            self._set_status("Export cancelled")
        else:
            self._set_status(f"Export complete: {outcome.output_path}")
        return outcome

    def cancel_export(self) -> None:
        if self.exports is not None:
            self.exports.cancel()
            self._set_status("Cancelling...")

    # --- read model --------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view of the session for API clients."""
        tl = self.timeline
        detection = self.detection.settings if self.detection else None
        return {
            "file": self.file_id,
            "media": asdict(self.media) if self.media else None,
            "status": self.status,
            "view_mode": tl.view_mode.value,
            "stats": asdict(tl.stats),
            "virtual_duration": tl.virtual_duration,
            "committed_intensity": tl.committed_intensity,
            "history_depth": len(tl.history),
            "confirmed": [asdict(s) for s in tl.confirmed],
            "pending": [asdict(s) for s in tl.pending],
            "speech_clips": [asdict(c) for c in tl.speech_clips],
            "detection": asdict(detection) if detection else None,
            "waveform": {
                "peaks": len(self.waveform.buffer.peaks),
                "progress": self.waveform.progress,
                "final": self.waveform.buffer.final,
            },
        }
