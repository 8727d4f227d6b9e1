"""Tests for manifest loading and validation."""

import json
from pathlib import Path

import pytest

from ripplecut.manifest import (
    DetectionConfig,
    SessionConfig,
    SurfaceConfig,
    load_manifest,
    parse_manifest,
)


class TestDetectionConfig:
    def test_defaults(self):
        cfg = DetectionConfig()
        assert cfg.threshold == 0.015
        assert cfg.intensity == 0.25
        assert cfg.debounce_ms == 400

    def test_custom_values(self):
        cfg = DetectionConfig(threshold=0.05, intensity=1.0)
        assert cfg.threshold == 0.05
        assert cfg.intensity == 1.0


class TestSessionConfig:
    def test_minimal(self):
        cfg = SessionConfig()
        assert cfg.version == "1"
        assert cfg.input is None
        assert cfg.history.limit == 30
        assert cfg.surface == SurfaceConfig()

    def test_empty_manifest_uses_defaults(self):
        assert parse_manifest({}) == SessionConfig()


class TestParseManifest:
    def test_section_must_be_object(self):
        with pytest.raises(ValueError, match="section 'detection' must be an object"):
            parse_manifest({"detection": 0.5})

    def test_unknown_field(self):
        with pytest.raises(ValueError, match="Invalid field in manifest section 'surface'"):
            parse_manifest({"surface": {"zoom_level": 3}})

    @pytest.mark.parametrize("intensity", [-0.1, 1.5])
    def test_intensity_out_of_range(self, intensity):
        with pytest.raises(ValueError, match="intensity"):
            parse_manifest({"detection": {"intensity": intensity}})

    def test_history_limit(self):
        with pytest.raises(ValueError, match="history.limit"):
            parse_manifest({"history": {"limit": 0}})

    def test_paths(self):
        cfg = parse_manifest({"input": "a.mp4", "output": "b.mp4"})
        assert cfg.input == Path("a.mp4")
        assert cfg.output == Path("b.mp4")


class TestLoadManifest:
    def test_load_sample(self, sample_manifest_path: Path):
        cfg = load_manifest(sample_manifest_path)
        assert cfg.version == "1"
        assert cfg.input == Path("interview.mp4")
        assert cfg.detection.intensity == 0.5
        assert cfg.detection.debounce_ms == 250
        assert cfg.detection.padding is None
        assert cfg.surface.max_zoom == 400
        assert cfg.history.limit == 10
        assert cfg.export.min_silence_duration == 0.5

    def test_load_invalid_json(self, tmp_path: Path):
        bad = tmp_path / "bad.json"
        bad.write_text("not json")
        with pytest.raises(json.JSONDecodeError):
            load_manifest(bad)

    def test_load_non_object(self, tmp_path: Path):
        listing = tmp_path / "list.json"
        listing.write_text("[1, 2]")
        with pytest.raises(ValueError, match="must be a JSON object"):
            load_manifest(listing)
