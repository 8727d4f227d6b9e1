"""Shared test fixtures."""

from pathlib import Path

import pytest

from ripplecut.history import HistoryManager
from ripplecut.models import CutSegment, ExportProgress, ExportResult, RawSilence
from ripplecut.timeline import TimelineModel

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_session.json"


@pytest.fixture
def timeline() -> TimelineModel:
    """A 60 s file with no cuts."""
    return TimelineModel(original_duration=60.0, history=HistoryManager())


def seg(start: float, end: float, average_db: float | None = None) -> CutSegment:
    return CutSegment(start=start, end=end, average_db=average_db)


class FakeDetector:
    """Returns canned silences and records every request."""

    def __init__(self, silences=(), error: Exception | None = None):
        self.silences = list(silences)
        self.error = error
        self.calls = []

    async def detect(self, params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return [RawSilence(start_time=s, end_time=e) for s, e in self.silences]


class FakeExporter:
    def __init__(self, output_path=Path("/tmp/out.mp4"), cancel_result=None, error=None):
        self.output_path = output_path
        self.cancel_result = cancel_result
        self.error = error
        self.requests = []
        self.cancelled = False

    async def export(self, request, on_progress):
        self.requests.append(request)
        on_progress(ExportProgress(percent=50.0, message="Encoding"))
        if self.error is not None:
            raise self.error
        if self.cancel_result is not None:
            return self.cancel_result
        return ExportResult(success=True, output_path=self.output_path)

    def cancel(self):
        self.cancelled = True
