"""Session API routes for RippleCut."""

import asyncio
import json
import logging
import queue
import subprocess
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)

from ripplecut import ffutil
from ripplecut.editors.cut import ExportError
from ripplecut.engine import EditSession
from ripplecut.models import ExportCancelled, ExportProgress, ListKind, ViewMode
from ripplecut.web import SESSIONS_KEY

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__)


def _sessions() -> dict[str, dict]:
    return current_app.extensions[SESSIONS_KEY]


def _not_found():
    return jsonify({"error": "Session not found"}), 404


def _state(record: dict) -> dict:
    state = record["session"].snapshot()
    state["session_id"] = record["id"]
    state["filename"] = record["filename"]
    state["export"] = {
        "status": record["export_status"],
        "progress": record["session"].exports.progress.percent if record["session"].exports else 0.0,
    }
    if record["export_status"] == "done":
        state["export"]["result"] = record.get("result")
    if record["export_status"] == "error":
        state["export"]["error"] = record.get("error")
    return state


def _indices(body: dict) -> list[int]:
    raw = body.get("indices", [])
    if not isinstance(raw, list):
        raise ValueError("indices must be a list")
    return [int(i) for i in raw]


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    session_id = uuid.uuid4().hex[:12]
    session_dir = Path(current_app.config["WORK_DIR"]) / session_id
    session_dir.mkdir(parents=True, exist_ok=True)

    ext = Path(f.filename).suffix or ".mp4"
    input_path = session_dir / f"input{ext}"
    f.save(input_path)

    try:
        media = ffutil.probe(input_path)
    except ffutil.NoAudioStreamError as e:
        return jsonify({"error": str(e)}), 400
    except (subprocess.CalledProcessError, OSError, ValueError) as e:
        logger.error("[web] probe failed for %s: %s", input_path, e)
        return jsonify({"error": f"Could not read media: {e}"}), 400

    record = {
        "id": session_id,
        "dir": session_dir,
        "filename": f.filename,
        "lock": threading.Lock(),
        "export_status": "idle",
        "progress_queue": None,
    }

    def on_export_progress(update: ExportProgress) -> None:
        q = record.get("progress_queue")
        if q is not None:
            q.put({"stage": update.message, "progress": round(update.percent / 100, 3)})

    output_path = session_dir / f"output{input_path.suffix}"
    session = EditSession(
        current_app.config["SESSION_CONFIG"],
        detector=current_app.config["DETECTOR_FACTORY"](media),
        exporter=current_app.config["EXPORTER_FACTORY"](media, output_path),
        on_export_progress=on_export_progress,
    )
    session.load(input_path, media)
    record["session"] = session
    _sessions()[session_id] = record
    logger.info("[web] session %s opened for %s", session_id, f.filename)

    return jsonify({"session_id": session_id, "filename": f.filename, "media": session.snapshot()["media"]})


@bp.route("/api/sessions/<session_id>")
def session_state(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    with record["lock"]:
        return jsonify(_state(record))


@bp.route("/api/sessions/<session_id>", methods=["DELETE"])
def close_session(session_id: str):
    record = _sessions().pop(session_id, None)
    if record is None:
        return _not_found()
    with record["lock"]:
        record["session"].cancel_export()
        record["session"].close()
    return jsonify({"status": "closed"})


@bp.route("/api/sessions/<session_id>/analyze", methods=["POST"])
def analyze(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()

    body = request.get_json(silent=True) or {}
    with record["lock"]:
        session = record["session"]
        try:
            if "threshold" in body:
                session.set_threshold(float(body["threshold"]), schedule=False)
            if "padding" in body:
                if body["padding"] is None:
                    session.detection.update(padding=None)
                else:
                    session.set_padding(float(body["padding"]), schedule=False)
            if "intensity" in body and not session.set_intensity(float(body["intensity"]), schedule=False):
                return jsonify({"error": session.status}), 409
        except (TypeError, ValueError):
            return jsonify({"error": "threshold, padding and intensity must be numbers"}), 400

        outcome = asyncio.run(session.analyze())
        return jsonify({
            "status": outcome.status.value,
            "message": outcome.message,
            "raw_count": outcome.raw_count,
            "state": _state(record),
        })


@bp.route("/api/sessions/<session_id>/commit", methods=["POST"])
def commit(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    with record["lock"]:
        if not record["session"].commit():
            return jsonify({"error": "No suggested cuts to apply"}), 409
        return jsonify(_state(record))


@bp.route("/api/sessions/<session_id>/undo", methods=["POST"])
def undo(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    with record["lock"]:
        result = record["session"].undo()
        return jsonify({"applied": result.applied, "message": result.message, "state": _state(record)})


@bp.route("/api/sessions/<session_id>/view", methods=["POST"])
def view_mode(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    body = request.get_json(silent=True) or {}
    try:
        mode = ViewMode(body.get("mode"))
    except ValueError:
        return jsonify({"error": "mode must be 'continuous' or 'fragmented'"}), 400
    with record["lock"]:
        record["session"].set_view_mode(mode)
        return jsonify(_state(record))


@bp.route("/api/sessions/<session_id>/segments", methods=["POST"])
def add_segment(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    body = request.get_json(silent=True) or {}
    try:
        start = float(body["start"])
        length = float(body.get("length", 1.0))
    except (KeyError, TypeError, ValueError):
        return jsonify({"error": "start (and optional length) must be numbers"}), 400
    with record["lock"]:
        cut = record["session"].timeline.add_confirmed(start, length)
        if cut is None:
            return jsonify({"error": "Cut would be empty"}), 400
        return jsonify({"id": cut.id, "state": _state(record)})


@bp.route("/api/sessions/<session_id>/segments/<kind>/<int:seg_id>", methods=["PATCH"])
def update_segment(session_id: str, kind: str, seg_id: int):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    try:
        target = ListKind(kind)
        body = request.get_json(silent=True) or {}
        start = float(body["start"]) if body.get("start") is not None else None
        end = float(body["end"]) if body.get("end") is not None else None
    except (TypeError, ValueError):
        return jsonify({"error": "Invalid segment update"}), 400
    with record["lock"]:
        updated = record["session"].timeline.update_segment(target, seg_id, start=start, end=end)
        if updated is None:
            return jsonify({"error": "Segment not found"}), 404
        return jsonify({"start": updated.start, "end": updated.end, "state": _state(record)})


@bp.route("/api/sessions/<session_id>/segments/delete", methods=["POST"])
def delete_segments(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    body = request.get_json(silent=True) or {}
    track = body.get("track")
    try:
        indices = _indices(body)
    except (TypeError, ValueError):
        return jsonify({"error": "indices must be a list of integers"}), 400

    with record["lock"]:
        timeline = record["session"].timeline
        if track == "media":
            removed = timeline.delete_speech_clips(indices)
        elif track in (ListKind.CONFIRMED.value, ListKind.PENDING.value):
            removed = timeline.delete_segments(ListKind(track), indices)
        else:
            return jsonify({"error": "track must be 'media', 'confirmed' or 'pending'"}), 400
        return jsonify({"removed": removed, "state": _state(record)})


@bp.route("/api/sessions/<session_id>/export", methods=["POST"])
def start_export(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()

    with record["lock"]:
        if record["export_status"] == "exporting":
            return jsonify({"error": "Export is already running"}), 409
        if not record["session"].timeline.confirmed:
            return jsonify({"error": "Nothing to export: no confirmed cuts"}), 409

        progress_queue: queue.Queue = queue.Queue()
        record["progress_queue"] = progress_queue
        record["export_status"] = "exporting"
        record["error"] = None
        record["result"] = None
        session = record["session"]

    def run():
        outcome: dict = {}
        try:
            result = asyncio.run(session.export())
            if isinstance(result, ExportCancelled):
                outcome["export_status"] = "cancelled"
            else:
                outcome["result"] = {"output_path": str(result.output_path)}
                outcome["export_status"] = "done"
        except ExportError as e:
            outcome.update(export_status="error", error=str(e))
        except Exception as e:
            logger.exception("[web] export crashed for session %s", session_id)
            outcome.update(export_status="error", error=str(e))
        finally:
            with record["lock"]:
                # a cancelled run finishing late must not clobber a newer export
                if record.get("progress_queue") is progress_queue:
                    record.update(outcome)
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"status": "started"})


@bp.route("/api/sessions/<session_id>/export/cancel", methods=["POST"])
def cancel_export(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    if record["export_status"] != "exporting":
        return jsonify({"error": "No export in progress"}), 409
    record["session"].cancel_export()
    record["export_status"] = "cancelled"
    return jsonify({"status": "cancelled"})


@bp.route("/api/sessions/<session_id>/export/progress")
def progress_stream(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()

    q = record.get("progress_queue")
    if q is None:
        return jsonify({"error": "No export in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                status = record["export_status"]
                if status == "error":
                    data = json.dumps({"error": record["error"]})
                elif status == "cancelled":
                    data = json.dumps({"stage": "cancelled", "cancelled": True})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "result": record.get("result"),
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/sessions/<session_id>/result")
def download_result(session_id: str):
    record = _sessions().get(session_id)
    if record is None:
        return _not_found()
    if record["export_status"] != "done":
        return jsonify({"error": "Export not complete"}), 409

    output_path = Path(record["result"]["output_path"])
    return send_file(output_path, as_attachment=False)
