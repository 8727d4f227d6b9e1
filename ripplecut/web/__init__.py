"""Flask application factory for the RippleCut session API."""

import tempfile
from pathlib import Path
from typing import Callable

from flask import Flask, jsonify

from ripplecut.analyzers.silence import FFmpegSilenceDetector, SilenceDetector
from ripplecut.editors.cut import Exporter, FFmpegExporter
from ripplecut.manifest import SessionConfig
from ripplecut.models import MediaInfo

SESSIONS_KEY = "ripplecut.sessions"

DetectorFactory = Callable[[MediaInfo], SilenceDetector]
ExporterFactory = Callable[[MediaInfo, Path], Exporter]


def _ffmpeg_detector(media: MediaInfo) -> SilenceDetector:
    return FFmpegSilenceDetector(duration=media.duration)


def _ffmpeg_exporter(media: MediaInfo, output_path: Path) -> Exporter:
    return FFmpegExporter(output_path, media.duration, has_video=media.has_video)


def create_app(
    work_dir: Path | None = None,
    config: SessionConfig | None = None,
    detector_factory: DetectorFactory | None = None,
    exporter_factory: ExporterFactory | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="ripplecut_"))
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024 * 1024  # 10 GB
    app.config["SESSION_CONFIG"] = config or SessionConfig()
    app.config["DETECTOR_FACTORY"] = detector_factory or _ffmpeg_detector
    app.config["EXPORTER_FACTORY"] = exporter_factory or _ffmpeg_exporter
    app.extensions[SESSIONS_KEY] = {}

    from ripplecut.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
