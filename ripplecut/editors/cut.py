"""Cut editor — turns the confirmed baseline into an export job and runs it."""

import asyncio
import logging
import subprocess
import threading
from pathlib import Path
from typing import Callable, Iterable, Protocol

from ripplecut import ffutil
from ripplecut.models import (
    DEFAULT_AVERAGE_DB,
    ExportCancelled,
    ExportProgress,
    ExportRequest,
    ExportResult,
    ExportSegment,
    TimeRange,
)
from ripplecut.segments import Interval, merge

logger = logging.getLogger(__name__)

# Error text some exporters use to signal a user cancellation.
CANCELLED_MARKER = "EXPORT_CANCELLED"

ProgressCallback = Callable[[ExportProgress], None]


class ExportError(RuntimeError):
    """The export failed for a reason other than cancellation."""


class Exporter(Protocol):
    async def export(
        self, request: ExportRequest, on_progress: ProgressCallback
    ) -> ExportResult | ExportCancelled: ...

    def cancel(self) -> None: ...


def build_export_request(
    input_path: Path,
    confirmed: Iterable[Interval],
    threshold_db: float,
    min_silence_duration: float,
) -> ExportRequest:
    """The exporter always receives merged, sorted cuts."""
    segments = tuple(
        ExportSegment(
            start_time=s.start,
            end_time=s.end,
            duration=s.end - s.start,
            average_db=DEFAULT_AVERAGE_DB,
        )
        for s in merge(confirmed)
    )
    return ExportRequest(
        input_path=Path(input_path),
        threshold_db=threshold_db,
        min_silence_duration=min_silence_duration,
        segments=segments,
    )


def keep_ranges(segments: Iterable[ExportSegment], duration: float) -> list[TimeRange]:
    """Complement of the cut segments over ``[0, duration]``."""
    keep: list[TimeRange] = []
    cursor = 0.0
    for seg in segments:
        if seg.start_time > cursor:
            keep.append(TimeRange(start=cursor, end=seg.start_time))
        cursor = max(cursor, seg.end_time)
    if cursor < duration:
        keep.append(TimeRange(start=cursor, end=duration))
    return keep


class ExportController:
    """Runs one export at a time and keeps the busy/progress state for the UI.

    Cancellation is optimistic: ``busy`` drops immediately and the exporter
    is asked to stop without waiting for it to acknowledge. Every export gets
    a generation number; a run that was cancelled or replaced by a newer one
    no longer touches ``busy`` or ``progress`` and reports itself cancelled.
    """

    def __init__(self, exporter: Exporter, on_progress: ProgressCallback | None = None):
        self.exporter = exporter
        self.busy = False
        self.progress = ExportProgress(percent=0.0)
        self._on_progress = on_progress
        self._generation = 0

    def _progress(self, update: ExportProgress) -> None:
        self.progress = update
        if self._on_progress:
            self._on_progress(update)

    async def export(self, request: ExportRequest) -> ExportResult | ExportCancelled:
        if self.busy:
            raise ExportError("An export is already running")
        if not request.segments:
            raise ExportError("Nothing to export: no confirmed cuts")

        self._generation += 1
        generation = self._generation

        def on_progress(update: ExportProgress) -> None:
            if generation == self._generation:
                self._progress(update)

        self.busy = True
        self._progress(ExportProgress(percent=0.0, message="Starting export"))
        logger.info("[export] %s with %d cuts", request.input_path, len(request.segments))
        try:
            result = await self.exporter.export(request, on_progress)
        except ExportError as e:
            if CANCELLED_MARKER in str(e) or generation != self._generation:
                return ExportCancelled()
            raise
        finally:
            if generation == self._generation:
                self.busy = False

        if isinstance(result, ExportCancelled) or generation != self._generation:
            logger.info("[export] cancelled")
            return ExportCancelled()
        if not result.success:
            raise ExportError("Export failed")
        self._progress(ExportProgress(percent=100.0, message="Export complete"))
        logger.info("[export] wrote %s", result.output_path)
        return result

    def cancel(self) -> None:
        self._generation += 1
        self.busy = False
        self.exporter.cancel()


class FFmpegExporter:
    """Renders the kept speech spans with ffmpeg's concat filter.

    Each run gets its own cancel token, so cancelling one run can never be
    undone by the next one starting.
    """

    def __init__(self, output_path: Path, duration: float, has_video: bool = True):
        self.output_path = Path(output_path)
        self.duration = duration
        self.has_video = has_video
        self._token: threading.Event | None = None

    def cancel(self) -> None:
        if self._token is not None:
            self._token.set()

    async def export(
        self, request: ExportRequest, on_progress: ProgressCallback
    ) -> ExportResult | ExportCancelled:
        keep = keep_ranges(request.segments, self.duration)
        if not keep:
            raise ExportError("No keep segments found: entire video would be removed")

        token = self._token = threading.Event()
        loop = asyncio.get_running_loop()

        def report(fraction: float) -> None:
            update = ExportProgress(percent=round(fraction * 100, 1), message="Encoding")
            loop.call_soon_threadsafe(on_progress, update)

        try:
            await asyncio.to_thread(
                ffutil.concat_segments,
                request.input_path,
                keep,
                self.output_path,
                has_video=self.has_video,
                on_progress=report,
                should_cancel=token.is_set,
            )
        except ffutil.FFmpegCancelled:
            return ExportCancelled()
        except subprocess.CalledProcessError as e:
            stderr = e.stderr if isinstance(e.stderr, str) else (e.stderr or b"").decode(errors="replace")
            raise ExportError(f"ffmpeg failed: {stderr[-500:]}" if stderr else str(e)) from e
        return ExportResult(success=True, output_path=self.output_path)
