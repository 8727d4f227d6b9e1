"""Unit tests for the RippleCut session API."""

import asyncio
import io
import json
import threading
import time
from unittest.mock import patch

import pytest

from conftest import FakeDetector, FakeExporter
from ripplecut.ffutil import NoAudioStreamError
from ripplecut.models import MediaInfo
from ripplecut.web import SESSIONS_KEY, create_app

MEDIA = MediaInfo(duration=60.0, has_video=True, has_audio=True)


@pytest.fixture
def app(tmp_path):
    app = create_app(
        work_dir=tmp_path,
        detector_factory=lambda media: FakeDetector(silences=[(10, 20), (30, 31)]),
        exporter_factory=lambda media, out: FakeExporter(output_path=out),
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def probe():
    with patch("ripplecut.web.routes.ffutil.probe", return_value=MEDIA) as mock_probe:
        yield mock_probe


def _upload(client, filename="test.mp4", content=b"fake video data"):
    return client.post(
        "/api/upload",
        data={"file": (io.BytesIO(content), filename)},
        content_type="multipart/form-data",
    )


@pytest.fixture
def session_id(client, probe):
    return _upload(client).get_json()["session_id"]


def _analyze_and_commit(client, session_id):
    assert client.post(f"/api/sessions/{session_id}/analyze", json={}).status_code == 200
    assert client.post(f"/api/sessions/{session_id}/commit").status_code == 200


class TestUpload:
    def test_upload_success(self, client, probe):
        resp = _upload(client)
        assert resp.status_code == 200
        data = resp.get_json()
        assert "session_id" in data
        assert data["filename"] == "test.mp4"
        assert data["media"] == {"duration": 60.0, "has_video": True, "has_audio": True}

    def test_upload_no_file(self, client):
        resp = client.post("/api/upload")
        assert resp.status_code == 400

    def test_upload_creates_file(self, client, probe, tmp_path):
        resp = _upload(client, content=b"CONTENT")
        session_id = resp.get_json()["session_id"]
        input_file = tmp_path / session_id / "input.mp4"
        assert input_file.read_bytes() == b"CONTENT"

    def test_upload_without_audio(self, client):
        with patch("ripplecut.web.routes.ffutil.probe",
                   side_effect=NoAudioStreamError("No audio stream found in x.mp4")):
            resp = _upload(client)
        assert resp.status_code == 400
        assert "No audio stream" in resp.get_json()["error"]


class TestSessionState:
    def test_state_after_upload(self, client, session_id):
        resp = client.get(f"/api/sessions/{session_id}")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["filename"] == "test.mp4"
        assert data["view_mode"] == "continuous"
        assert data["export"]["status"] == "idle"

    @pytest.mark.parametrize("method, path", [
        ("get", ""),
        ("delete", ""),
        ("post", "/analyze"),
        ("post", "/commit"),
        ("post", "/undo"),
        ("get", "/result"),
    ])
    def test_unknown_session(self, client, method, path):
        resp = getattr(client, method)(f"/api/sessions/nonexistent{path}")
        assert resp.status_code == 404

    def test_close(self, client, app, session_id):
        assert client.delete(f"/api/sessions/{session_id}").status_code == 200
        assert session_id not in app.extensions[SESSIONS_KEY]


class TestAnalyze:
    def test_fills_pending(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/analyze", json={"intensity": 0.25})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "applied"
        assert data["raw_count"] == 2
        assert len(data["state"]["pending"]) == 2

    def test_explicit_padding(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/analyze", json={"padding": 0})
        pending = resp.get_json()["state"]["pending"]
        assert (pending[0]["start"], pending[0]["end"]) == (10, 20)

    def test_bad_number(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/analyze", json={"threshold": "loud"})
        assert resp.status_code == 400

    def test_below_committed_strategy(self, client, session_id):
        _analyze_and_commit(client, session_id)
        resp = client.post(f"/api/sessions/{session_id}/analyze", json={"intensity": 0})
        assert resp.status_code == 409


class TestCommitUndo:
    def test_commit_collapses(self, client, session_id):
        client.post(f"/api/sessions/{session_id}/analyze", json={})
        data = client.post(f"/api/sessions/{session_id}/commit").get_json()
        assert data["view_mode"] == "fragmented"
        assert len(data["confirmed"]) == 2
        assert data["pending"] == []

    def test_commit_nothing_pending(self, client, session_id):
        assert client.post(f"/api/sessions/{session_id}/commit").status_code == 409

    def test_undo(self, client, session_id):
        _analyze_and_commit(client, session_id)
        data = client.post(f"/api/sessions/{session_id}/undo").get_json()
        assert data["applied"] is True
        assert data["state"]["confirmed"] == []

    def test_undo_empty(self, client, session_id):
        data = client.post(f"/api/sessions/{session_id}/undo").get_json()
        assert data["applied"] is False
        assert data["message"] == "Nothing to undo"


class TestViewMode:
    def test_switch(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/view", json={"mode": "fragmented"})
        assert resp.get_json()["view_mode"] == "fragmented"

    def test_bad_mode(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/view", json={"mode": "sideways"})
        assert resp.status_code == 400


class TestSegments:
    def test_add_and_move(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/segments", json={"start": 5, "length": 2})
        assert resp.status_code == 200
        seg_id = resp.get_json()["id"]

        resp = client.patch(f"/api/sessions/{session_id}/segments/confirmed/{seg_id}", json={"end": 9})
        assert resp.status_code == 200
        assert (resp.get_json()["start"], resp.get_json()["end"]) == (5, 9)
        assert resp.get_json()["state"]["history_depth"] == 2

    def test_add_needs_start(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/segments", json={"length": 2})
        assert resp.status_code == 400

    def test_patch_unknown_segment(self, client, session_id):
        resp = client.patch(f"/api/sessions/{session_id}/segments/pending/99", json={"end": 9})
        assert resp.status_code == 404

    def test_patch_bad_kind(self, client, session_id):
        resp = client.patch(f"/api/sessions/{session_id}/segments/bogus/1", json={"end": 9})
        assert resp.status_code == 400

    def test_delete_pending(self, client, session_id):
        client.post(f"/api/sessions/{session_id}/analyze", json={})
        resp = client.post(f"/api/sessions/{session_id}/segments/delete",
                           json={"track": "pending", "indices": [0]})
        data = resp.get_json()
        assert data["removed"] == 1
        assert len(data["state"]["pending"]) == 1

    def test_delete_speech_clip(self, client, session_id):
        _analyze_and_commit(client, session_id)
        resp = client.post(f"/api/sessions/{session_id}/segments/delete",
                           json={"track": "media", "indices": [0]})
        assert resp.get_json()["removed"] == 1
        assert len(resp.get_json()["state"]["confirmed"]) == 3

    def test_delete_bad_track(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/segments/delete",
                           json={"track": "video", "indices": [0]})
        assert resp.status_code == 400


def _events(resp):
    return [json.loads(line[len("data: "):]) for line in resp.data.decode().split("\n\n") if line]


class TestExport:
    def test_nothing_to_export(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/export")
        assert resp.status_code == 409

    def test_export_and_download(self, client, session_id, tmp_path):
        _analyze_and_commit(client, session_id)
        assert client.post(f"/api/sessions/{session_id}/export").get_json()["status"] == "started"

        events = _events(client.get(f"/api/sessions/{session_id}/export/progress"))
        assert events[1] == {"stage": "Encoding", "progress": 0.5}
        assert events[-1]["stage"] == "complete"
        output = tmp_path / session_id / "output.mp4"
        assert events[-1]["result"] == {"output_path": str(output)}

        output.write_bytes(b"CUT")
        resp = client.get(f"/api/sessions/{session_id}/result")
        assert resp.status_code == 200
        assert resp.data == b"CUT"

    def test_progress_without_export(self, client, session_id):
        resp = client.get(f"/api/sessions/{session_id}/export/progress")
        assert resp.status_code == 409

    def test_download_not_complete(self, client, session_id):
        resp = client.get(f"/api/sessions/{session_id}/result")
        assert resp.status_code == 409

    def test_cancel(self, client, app, session_id):
        record = app.extensions[SESSIONS_KEY][session_id]
        record["export_status"] = "exporting"
        resp = client.post(f"/api/sessions/{session_id}/export/cancel")
        assert resp.get_json()["status"] == "cancelled"
        assert record["session"].exports.exporter.cancelled

    def test_cancel_when_idle(self, client, session_id):
        resp = client.post(f"/api/sessions/{session_id}/export/cancel")
        assert resp.status_code == 409


class HeldExporter(FakeExporter):
    """Finishes each export only when its gate is released."""

    def __init__(self, output_path):
        super().__init__(output_path=output_path)
        self.gates = [threading.Event(), threading.Event()]

    async def export(self, request, on_progress):
        gate = self.gates[len(self.requests)]
        result = await super().export(request, on_progress)
        await asyncio.to_thread(gate.wait, 5)
        return result


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline
        time.sleep(0.01)


class TestExportRestart:
    def test_cancelled_export_does_not_clobber_the_next_one(self, tmp_path, probe):
        exporters = []

        def exporter_factory(media, out):
            exporters.append(HeldExporter(out))
            return exporters[-1]

        app = create_app(
            work_dir=tmp_path,
            detector_factory=lambda media: FakeDetector(silences=[(10, 20)]),
            exporter_factory=exporter_factory,
        )
        app.config["TESTING"] = True
        client = app.test_client()
        session_id = _upload(client).get_json()["session_id"]
        record = app.extensions[SESSIONS_KEY][session_id]
        exporter = exporters[0]
        _analyze_and_commit(client, session_id)

        client.post(f"/api/sessions/{session_id}/export")
        _wait_for(lambda: len(exporter.requests) == 1)
        first_queue = record["progress_queue"]
        assert client.post(f"/api/sessions/{session_id}/export/cancel").status_code == 200

        assert client.post(f"/api/sessions/{session_id}/export").get_json()["status"] == "started"
        _wait_for(lambda: len(exporter.requests) == 2)

        exporter.gates[0].set()
        while first_queue.get(timeout=5) is not None:
            pass
        assert record["export_status"] == "exporting"
        assert record["session"].exports.busy

        exporter.gates[1].set()
        events = _events(client.get(f"/api/sessions/{session_id}/export/progress"))
        assert events[-1]["stage"] == "complete"
        assert record["export_status"] == "done"
