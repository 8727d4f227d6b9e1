"""FFmpeg/ffprobe subprocess helpers."""

import json
import re
import shutil
import subprocess
from pathlib import Path
from typing import Callable

from ripplecut.models import MediaInfo, TimeRange, finite_or

_TIME_RE = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")


class FFmpegNotFoundError(RuntimeError):
    pass


class NoAudioStreamError(ValueError):
    """Raised when the input file has no audio stream."""
    pass


class FFmpegCancelled(Exception):
    """The running ffmpeg process was stopped on request."""


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def probe(input_path: Path) -> MediaInfo:
    """Extract duration and stream presence via ffprobe."""
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    data = json.loads(result.stdout)

    streams = data.get("streams", [])
    has_video = any(s.get("codec_type") == "video" for s in streams)
    has_audio = any(s.get("codec_type") == "audio" for s in streams)

    if not has_audio:
        raise NoAudioStreamError(
            f"No audio stream found in {input_path}; silence detection requires audio"
        )

    return MediaInfo(
        duration=finite_or(data.get("format", {}).get("duration")),
        has_video=has_video,
        has_audio=has_audio,
    )


def parse_silence_ranges(stderr: str, duration: float | None = None) -> list[TimeRange]:
    """Parse silencedetect output from ffmpeg stderr into TimeRanges.

    If a silence_start has no matching silence_end (silence extends to EOF),
    ``duration`` is used as the end time. If ``duration`` is also None the
    unpaired start is dropped.
    """
    starts = [float(m) for m in re.findall(r"silence_start: (-?[\d.]+)", stderr)]
    ends = [float(m) for m in re.findall(r"silence_end: ([\d.]+)", stderr)]

    ranges: list[TimeRange] = []
    for i, start in enumerate(starts):
        start = max(start, 0.0)
        if i < len(ends):
            ranges.append(TimeRange(start=start, end=ends[i]))
        elif duration is not None:
            # Unpaired silence_start — silence extends to EOF
            ranges.append(TimeRange(start=start, end=duration))
    return ranges


def detect_silence(
    input_path: Path,
    threshold_db: float,
    min_duration: float,
    duration: float | None = None,
) -> list[TimeRange]:
    """Run FFmpeg silencedetect and return silent time ranges.

    *duration* is used to cap trailing silence that extends to EOF (an unpaired
    ``silence_start`` with no matching ``silence_end``).  When not supplied, any
    unpaired trailing silence is dropped.
    """
    cmd = [
        "ffmpeg",
        "-i", str(input_path),
        "-af", f"silencedetect=noise={threshold_db}dB:d={min_duration}",
        "-f", "null", "-",
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)

    if result.returncode != 0 and not result.stderr:
        raise RuntimeError(
            f"ffmpeg silencedetect failed (rc={result.returncode}) with no output"
        )

    return parse_silence_ranges(result.stderr, duration=duration)


def parse_progress_time(line: str) -> float | None:
    """Seconds encoded so far, from an ffmpeg ``time=HH:MM:SS.xx`` status line."""
    m = _TIME_RE.search(line)
    if m is None:
        return None
    h, mnt, s = m.groups()
    return int(h) * 3600 + int(mnt) * 60 + float(s)


def build_concat_filter(segments: list[TimeRange], has_video: bool = True) -> str:
    """trim/atrim + concat filter graph keeping ``segments`` in order."""
    filter_parts: list[str] = []
    stream_labels: list[str] = []

    for i, seg in enumerate(segments):
        if has_video:
            filter_parts.append(
                f"[0:v]trim=start={seg.start}:end={seg.end},setpts=PTS-STARTPTS[v{i}]"
            )
        filter_parts.append(
            f"[0:a]atrim=start={seg.start}:end={seg.end},asetpts=PTS-STARTPTS[a{i}]"
        )
        stream_labels.append(f"[v{i}][a{i}]" if has_video else f"[a{i}]")

    n = len(segments)
    concat_input = "".join(stream_labels)
    if has_video:
        filter_parts.append(f"{concat_input}concat=n={n}:v=1:a=1[outv][outa]")
    else:
        filter_parts.append(f"{concat_input}concat=n={n}:v=0:a=1[outa]")
    return ";\n".join(filter_parts)


def concat_segments(
    input_path: Path,
    segments: list[TimeRange],
    output_path: Path,
    has_video: bool = True,
    on_progress: Callable[[float], None] | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> None:
    """Concatenate keep-segments using a single ffmpeg filter_complex call.

    Progress is reported as a 0..1 fraction of the kept duration. When
    ``should_cancel`` returns True the process is terminated and
    :class:`FFmpegCancelled` is raised.
    """
    if not segments:
        raise ValueError("concat_segments called with empty segment list")

    cmd = [
        "ffmpeg", "-y",
        "-loglevel", "error",
        "-progress", "pipe:1", "-nostats",
        "-i", str(input_path),
        "-filter_complex", build_concat_filter(segments, has_video),
    ]
    if has_video:
        cmd += ["-map", "[outv]"]
    cmd += ["-map", "[outa]", str(output_path)]

    total = sum(s.end - s.start for s in segments) or 1.0
    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                            text=True, errors="replace")
    try:
        for line in proc.stdout:
            if should_cancel and should_cancel():
                proc.terminate()
                proc.wait()
                raise FFmpegCancelled(str(output_path))
            done = parse_progress_time(line)
            if done is not None and on_progress:
                on_progress(min(done / total, 1.0))
        stderr = proc.stderr.read()
        rc = proc.wait()
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()

    if rc != 0:
        raise subprocess.CalledProcessError(rc, cmd, stderr=stderr)
