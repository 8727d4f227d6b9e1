"""JSON session manifest — the contract between CLI/API and the editing session."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from ripplecut.history import DEFAULT_HISTORY_LIMIT


@dataclass
class DetectionConfig:
    """Silence detection tuning.

    ``threshold`` is a linear amplitude (0..1); ``intensity`` picks the
    cutting strategy (0 = none, 0.25 natural, 0.5 fast, 1.0 super).
    ``padding`` left unset follows the strategy.
    """

    threshold: float = 0.015
    intensity: float = 0.25
    padding: float | None = None
    debounce_ms: int = 400
    sample_rate: int = 16000


@dataclass
class SurfaceConfig:
    """Interactive timeline tuning (pixels unless stated)."""

    default_zoom: float = 50.0
    max_zoom: float = 500.0
    edge_tolerance: float = 8.0
    box_select_min_width: float = 5.0
    wheel_factor: float = 0.01
    tick_hz: float = 60.0


@dataclass
class HistoryConfig:
    limit: int = DEFAULT_HISTORY_LIMIT


@dataclass
class StreamingConfig:
    peaks_per_second: int = 50
    px_per_peak: float = 2.0
    follow_tolerance: float = 150.0


@dataclass
class ExportConfig:
    min_silence_duration: float = 0.8
    output_suffix: str = "_cut"


@dataclass
class SessionConfig:
    """Top-level session manifest."""

    input: Path | None = None
    output: Path | None = None
    version: str = "1"
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    surface: SurfaceConfig = field(default_factory=SurfaceConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    export: ExportConfig = field(default_factory=ExportConfig)


_SECTIONS = {
    "detection": DetectionConfig,
    "surface": SurfaceConfig,
    "history": HistoryConfig,
    "streaming": StreamingConfig,
    "export": ExportConfig,
}


def _validate(config: SessionConfig) -> None:
    det = config.detection
    if not 0.0 <= det.intensity <= 1.0:
        raise ValueError("detection.intensity must be between 0 and 1")
    if det.threshold <= 0:
        raise ValueError("detection.threshold must be positive")
    if det.padding is not None and det.padding < 0:
        raise ValueError("detection.padding must not be negative")
    if config.history.limit < 1:
        raise ValueError("history.limit must be at least 1")
    if config.surface.max_zoom <= 0:
        raise ValueError("surface.max_zoom must be positive")


def parse_manifest(data: dict) -> SessionConfig:
    """Build a validated SessionConfig from already-decoded JSON."""
    sections = {}
    for name, cls in _SECTIONS.items():
        raw = data.get(name)
        if raw is None:
            sections[name] = cls()
            continue
        if not isinstance(raw, dict):
            raise ValueError(f"Manifest section '{name}' must be an object")
        try:
            sections[name] = cls(**raw)
        except TypeError as e:
            raise ValueError(f"Invalid field in manifest section '{name}': {e}") from e

    config = SessionConfig(
        version=str(data.get("version", "1")),
        input=Path(data["input"]) if data.get("input") else None,
        output=Path(data["output"]) if data.get("output") else None,
        **sections,
    )
    _validate(config)
    return config


def load_manifest(path: str | Path) -> SessionConfig:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())
    if not isinstance(data, dict):
        raise ValueError("Manifest must be a JSON object")
    return parse_manifest(data)
