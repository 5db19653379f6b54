"""Tests for the HTTP surface."""

import io

import numpy as np
import pytest
import soundfile as sf
from fastapi.testclient import TestClient

import database
from conftest import SourceFactory, insert_event, insert_track
from main import app
from playback import AudioSource, PlaybackGraph
from player import Player, station_authorize
from recorder import PlayEventRecorder
from routers import admin, submit

ADMIN = {"X-Admin-Token": "secret"}


@pytest.fixture
def client(temp_db, monkeypatch):
    monkeypatch.setattr(admin, "ADMIN_TOKEN", "secret")
    graph = PlaybackGraph(opener=SourceFactory(), authorize=station_authorize)
    monkeypatch.setattr(app.state, "player", Player(graph, PlayEventRecorder(user_id="station")))
    return TestClient(app)


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}


class TestPlays:
    def test_counted_by_percentage(self, client):
        insert_track("a", duration_s=5.0)
        resp = client.post(
            "/plays",
            json={"track_id": "a", "user_id": "u1", "session_id": "s1", "seconds_listened": 10.0},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["percent_listened"] == pytest.approx(200.0)
        assert body["counted"] is True

    def test_short_listen_not_counted(self, client):
        insert_track("a", duration_s=100.0)
        body = client.post(
            "/plays",
            json={"track_id": "a", "user_id": "u1", "session_id": "s1", "seconds_listened": 29.9},
        ).json()
        assert body["counted"] is False

    def test_unknown_track(self, client):
        resp = client.post(
            "/plays",
            json={"track_id": "nope", "user_id": "u1", "session_id": "s1", "seconds_listened": 3.0},
        )
        assert resp.status_code == 404

    @pytest.mark.parametrize("value", ["Infinity", "NaN"])
    def test_non_finite_seconds_rejected(self, client, value):
        insert_track("a")
        resp = client.post(
            "/plays",
            content=f'{{"track_id": "a", "user_id": "u1", "session_id": "s1", "seconds_listened": {value}}}',
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 422
        with database.db() as conn:
            assert conn.execute("SELECT COUNT(*) FROM play_events").fetchone()[0] == 0
        assert client.get("/status").status_code == 200

    def test_negative_seconds_rejected(self, client):
        insert_track("a")
        resp = client.post(
            "/plays",
            json={"track_id": "a", "user_id": "u1", "session_id": "s1", "seconds_listened": -1.0},
        )
        assert resp.status_code == 422


class TestReports:
    def test_requires_admin(self, client):
        assert client.get("/reports", params={"start": "2026-03-01", "end": "2026-03-31"}).status_code == 403

    def test_json_report(self, client):
        insert_track("a", title="Alpha", composer="Jane Doe")
        insert_event("a", "2026-03-05T12:00:00.000000+00:00", counted=True)
        insert_event("a", "2026-03-06T12:00:00.000000+00:00", counted=False)

        resp = client.get("/reports", params={"start": "2026-03-01", "end": "2026-03-31"}, headers=ADMIN)
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_plays"] == 2
        assert body["counted_plays"] == 1
        row = body["tracks"][0]
        assert row["title"] == "Alpha"
        assert row["writers"] == ["Jane Doe"]
        assert row["first_play_date"].startswith("2026-03-05")
        assert row["last_play_date"].startswith("2026-03-06")

    def test_empty_range(self, client):
        body = client.get("/reports", params={"start": "2026-03-01", "end": "2026-03-31"}, headers=ADMIN).json()
        assert body["total_plays"] == 0
        assert body["tracks"] == []

    def test_csv_uses_configured_pro_name(self, client):
        database.set_config("pro_name", "BMI")
        resp = client.get(
            "/reports",
            params={"start": "2026-03-01", "end": "2026-03-31", "format": "csv"},
            headers=ADMIN,
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "BMI Performance Report" in resp.text
        assert "BMI_Report_2026-03-01_to_2026-03-31.csv" in resp.headers["content-disposition"]

    def test_bad_format(self, client):
        resp = client.get(
            "/reports",
            params={"start": "2026-03-01", "end": "2026-03-31", "format": "xml"},
            headers=ADMIN,
        )
        assert resp.status_code == 400

    def test_reversed_range(self, client):
        resp = client.get("/reports", params={"start": "2026-03-31", "end": "2026-03-01"}, headers=ADMIN)
        assert resp.status_code == 400


class TestPlayer:
    def test_queue_and_play(self, client):
        insert_track("a", file_path="/media/tracks/a.wav")
        resp = client.post("/player/queue", json={"track_ids": ["a"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["current_track"]["id"] == "a"
        assert body["is_playing"] is True

    def test_blocked_playback_is_conflict(self, client):
        insert_track("a", file_path="/media/tracks/a.wav")
        database.set_config("playback_enabled", "false")
        resp = client.post("/player/queue", json={"track_ids": ["a"]})
        assert resp.status_code == 409
        assert client.get("/player").json()["is_playing"] is False

    def test_unready_track_rejected(self, client):
        insert_track("a", file_path="/media/tracks/a.wav", status="pending")
        assert client.post("/player/queue", json={"track_ids": ["a"]}).status_code == 404

    def test_play_with_empty_queue(self, client):
        assert client.post("/player/play").status_code == 422

    def test_bad_loop_mode(self, client):
        assert client.post("/player/loop", json={"mode": "sometimes"}).status_code == 400


class TestAdmin:
    def test_config_roundtrip(self, client):
        resp = client.post("/admin/config", json={"skip_policy": "flush", "pro_name": "SOCAN"}, headers=ADMIN)
        assert resp.status_code == 200
        cfg = client.get("/admin/config", headers=ADMIN).json()
        assert cfg == {"pro_name": "SOCAN", "skip_policy": "flush", "playback_enabled": True}

    def test_invalid_skip_policy(self, client):
        resp = client.post("/admin/config", json={"skip_policy": "sometimes"}, headers=ADMIN)
        assert resp.status_code == 400

    def test_delete_owner_keeps_play_events(self, client, tmp_path):
        audio = tmp_path / "a.wav"
        audio.write_bytes(b"data")
        insert_track("a", owner_id="gone", file_path=str(audio))
        insert_event("a", "2026-03-05T12:00:00.000000+00:00")

        resp = client.delete("/admin/owner/gone", headers=ADMIN)
        assert resp.json() == {"ok": True, "deleted": 1}
        assert not audio.exists()
        with database.db() as conn:
            assert conn.execute("SELECT COUNT(*) FROM tracks").fetchone()[0] == 0
            assert conn.execute("SELECT COUNT(*) FROM play_events").fetchone()[0] == 1


class TestSubmit:
    @pytest.fixture(autouse=True)
    def media_dir(self, monkeypatch, tmp_path):
        monkeypatch.setattr(submit, "MEDIA_DIR", str(tmp_path / "media"))
        return tmp_path / "media"

    def test_upload_creates_pending_track_and_job(self, client, media_dir):
        resp = client.post(
            "/submit",
            data={
                "owner_id": "owner-1",
                "title": "Dawn",
                "composer": "Jane Doe",
                "writers": "Jane Doe; John Roe",
                "isrc_code": "usabc2600001",
            },
            files={"file": ("dawn.wav", b"RIFF0000", "audio/wav")},
        )
        assert resp.status_code == 200
        track_id = resp.json()["track_id"]

        track = client.get(f"/track/{track_id}").json()
        assert track["status"] == "pending"
        assert track["writers"] == ["Jane Doe", "John Roe"]
        assert track["isrc_code"] == "USABC2600001"
        assert (media_dir / "tracks" / f"{track_id}.wav").read_bytes() == b"RIFF0000"
        with database.db() as conn:
            assert conn.execute("SELECT status FROM jobs WHERE track_id=?", (track_id,)).fetchone()[0] == "pending"

    def test_m4a_not_accepted(self, client):
        resp = client.post(
            "/submit",
            data={"owner_id": "owner-1"},
            files={"file": ("song.m4a", b"\x00\x00\x00\x20ftypM4A ", "audio/mp4")},
        )
        assert resp.status_code == 400

    def test_accepted_extensions_are_readable_by_playback(self):
        formats = sf.available_formats()
        assert ".m4a" not in submit.ALLOWED_EXTENSIONS
        for ext in submit.ALLOWED_EXTENSIONS:
            assert submit.EXTENSION_FORMATS[ext] in formats

    @pytest.mark.parametrize("ext, fmt", [(".wav", "WAV"), (".flac", "FLAC")])
    def test_uploaded_file_opens_in_playback_source(self, client, media_dir, ext, fmt):
        buf = io.BytesIO()
        sf.write(buf, np.zeros((800, 2), dtype=np.float32), 8000, format=fmt)
        resp = client.post(
            "/submit",
            data={"owner_id": "owner-1"},
            files={"file": (f"tone{ext}", buf.getvalue(), "application/octet-stream")},
        )
        assert resp.status_code == 200

        track_id = resp.json()["track_id"]
        source = AudioSource(str(media_dir / "tracks" / f"{track_id}{ext}"))
        try:
            assert source.frames == 800
            assert source.channels == 2
        finally:
            source.close()

    def test_unsupported_extension(self, client):
        resp = client.post(
            "/submit",
            data={"owner_id": "owner-1"},
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        assert resp.status_code == 400

    def test_reupload_clears_analysis(self, client, media_dir):
        insert_track("a", file_path=str(media_dir / "old.wav"))
        resp = client.post("/track/a/reupload", files={"file": ("new.flac", b"fLaC", "audio/flac")})
        assert resp.status_code == 200
        track = client.get("/track/a").json()
        assert track["status"] == "pending"
        assert track["gain_db"] is None

    def test_library_filters_by_owner(self, client):
        insert_track("a", owner_id="owner-1")
        insert_track("b", owner_id="owner-2")
        tracks = client.get("/library", params={"owner_id": "owner-2"}).json()["tracks"]
        assert [t["id"] for t in tracks] == ["b"]
