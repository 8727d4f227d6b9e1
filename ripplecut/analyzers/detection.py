"""Debounced, sequence-guarded detector runs feeding the pending list."""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from ripplecut.analyzers.silence import (
    DetectionError,
    DetectionParams,
    SilenceDetector,
    apply_padding,
    strategy_for,
    threshold_to_db,
)
from ripplecut.manifest import DetectionConfig
from ripplecut.timeline import TimelineModel

logger = logging.getLogger(__name__)


class DetectionStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    STALE = "stale"
    FAILED = "failed"


@dataclass(frozen=True)
class DetectionSettings:
    """User-facing detection knobs. ``padding=None`` means "use the strategy's padding"."""

    threshold: float = 0.015
    intensity: float = 0.25
    padding: float | None = None


@dataclass(frozen=True)
class DetectionOutcome:
    status: DetectionStatus
    sequence: int
    raw_count: int = 0
    pending_count: int = 0
    message: str = ""


class DetectionController:
    """Runs the external detector and publishes its result as pending cuts.

    Every request takes a new sequence number. A response that comes back
    after a newer request was made is discarded, so pending cuts always
    reflect the latest settings.
    """

    def __init__(
        self,
        timeline: TimelineModel,
        detector: SilenceDetector,
        config: DetectionConfig | None = None,
        on_status: Callable[[str], None] | None = None,
    ):
        config = config or DetectionConfig()
        self.timeline = timeline
        self.detector = detector
        self.debounce = config.debounce_ms / 1000.0
        self.sample_rate = config.sample_rate
        self.settings = DetectionSettings(
            threshold=config.threshold, intensity=config.intensity, padding=config.padding
        )
        self.cache_id: str | None = None
        self.last_outcome: DetectionOutcome | None = None
        self._on_status = on_status
        self._sequence = 0
        self._task: asyncio.Task | None = None

    @property
    def sequence(self) -> int:
        return self._sequence

    def _status(self, message: str) -> None:
        logger.info("[detect] %s", message)
        if self._on_status:
            self._on_status(message)

    def attach(self, cache_id: str | None, sample_rate: int | None = None) -> None:
        """Point the controller at a new media source; in-flight runs become stale."""
        self.cancel()
        self.cache_id = cache_id
        if sample_rate:
            self.sample_rate = sample_rate

    def update(self, **changes) -> DetectionSettings:
        self.settings = replace(self.settings, **changes)
        return self.settings

    def schedule(self, **changes) -> asyncio.Task:
        """Apply setting changes and (re)start the debounce timer.

        Must be called from a running event loop. The previous timer, if any,
        is cancelled.
        """
        if changes:
            self.update(**changes)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._sequence += 1
        seq = self._sequence
        self._task = asyncio.get_running_loop().create_task(self._debounced(seq))
        return self._task

    async def _debounced(self, seq: int) -> DetectionOutcome:
        await asyncio.sleep(self.debounce)
        return await self._run(seq)

    async def run_now(self, **changes) -> DetectionOutcome:
        """Run immediately, bypassing the debounce timer."""
        if changes:
            self.update(**changes)
        self._sequence += 1
        return await self._run(self._sequence)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._sequence += 1

    async def _run(self, seq: int) -> DetectionOutcome:
        settings = self.settings
        if not self.cache_id:
            return self._finish(DetectionOutcome(DetectionStatus.SKIPPED, seq, message="No media loaded"))

        if settings.intensity <= 0:
            self.timeline.clear_pending()
            return self._finish(DetectionOutcome(
                DetectionStatus.SKIPPED, seq, message="Strategy: none (no processing)"
            ))

        strategy = strategy_for(settings.intensity)
        padding = strategy.padding if settings.padding is None else settings.padding
        params = DetectionParams(
            threshold_db=threshold_to_db(settings.threshold),
            min_silence_duration=strategy.min_silence_duration,
            sample_rate=self.sample_rate,
            cache_id=self.cache_id,
        )
        logger.info(
            "[detect] seq=%d intensity=%.2f min_dur=%.2fs threshold=%.1fdB padding=%.2fs",
            seq, settings.intensity, params.min_silence_duration, params.threshold_db, padding,
        )

        try:
            raw = await self.detector.detect(params)
        except DetectionError as e:
            if seq != self._sequence:
                return DetectionOutcome(DetectionStatus.STALE, seq)
            logger.error("[detect] seq=%d failed: %s", seq, e)
            self.timeline.clear_pending()
            return self._finish(DetectionOutcome(DetectionStatus.FAILED, seq, message=f"Analysis failed: {e}"))
        except Exception as e:
            if seq != self._sequence:
                return DetectionOutcome(DetectionStatus.STALE, seq)
            logger.exception("[detect] seq=%d detector crashed", seq)
            self.timeline.clear_pending()
            return self._finish(DetectionOutcome(DetectionStatus.FAILED, seq, message=f"Analysis failed: {e}"))

        if seq != self._sequence:
            logger.debug("[detect] discarding stale response seq=%d (latest=%d)", seq, self._sequence)
            return DetectionOutcome(DetectionStatus.STALE, seq, raw_count=len(raw))

        padded = apply_padding(raw, padding)
        pending = self.timeline.set_pending_from_detection(padded)
        return self._finish(DetectionOutcome(
            DetectionStatus.APPLIED,
            seq,
            raw_count=len(raw),
            pending_count=len(pending),
            message=f"Found {len(padded)} suggested cuts",
        ))

    def _finish(self, outcome: DetectionOutcome) -> DetectionOutcome:
        self.last_outcome = outcome
        if outcome.message:
            self._status(outcome.message)
        return outcome
