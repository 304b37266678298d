import io

import numpy as np
import pytest
from scipy.io import wavfile

from main import create_app
from songmatch.config import ServerConfig
from songmatch.errors import StorageError
from songmatch.fingerprint import fingerprint_samples
from songmatch.protocol import serialize_fingerprint
from songmatch.registrar import CatalogRegistrar
from songmatch.sqlite_store import SQLiteFingerprintStore
from tests.conftest import SR, excerpt, make_audio


def wav_bytes(audio):
    buffer = io.BytesIO()
    wavfile.write(buffer, SR, (audio * 0.5 * 32767).astype(np.int16))
    buffer.seek(0)
    return buffer


@pytest.fixture
def store():
    s = SQLiteFingerprintStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def client(store, tmp_path, monkeypatch):
    monkeypatch.setattr(ServerConfig, "UPLOAD_FOLDER", str(tmp_path / "uploads"))
    app = create_app(store)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def alpha(store, songs):
    return CatalogRegistrar(store).register(songs["Alpha"], SR, "Alpha", "Test Artist")


def test_status(client, alpha):
    response = client.get("/api/status")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "totalSongs": 1}


def test_match_fingerprint(client, alpha, songs):
    clip, _ = fingerprint_samples(excerpt(songs["Alpha"], 40, 5), SR)

    response = client.post("/api/match", json={"fingerprint": serialize_fingerprint(clip)})
    body = response.get_json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["source"] == "local"
    assert body["inconclusive"] is False
    assert body["numHashes"] == len(clip)
    assert body["matches"][0]["songID"] == alpha.song_id
    assert body["matches"][0]["offset"] == 40


def test_match_without_result(client, alpha):
    response = client.post("/api/match", json={"fingerprint": {"1": 0}})
    body = response.get_json()
    assert body["success"] is False
    assert body["matches"] == []
    assert body["message"] == "No match found"


@pytest.mark.parametrize(
    "payload", [{"fingerprint": {"x": 1}}, {"fingerprint": [1]}, {"other": {}}]
)
def test_malformed_match_request(client, payload):
    response = client.post("/api/match", json=payload)
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_match_requires_json(client):
    response = client.post("/api/match", data="nope", content_type="text/plain")
    assert response.status_code == 400


def test_add_song_upload_and_duplicate(client, store):
    data = {"file": (wav_bytes(make_audio(4, seed=51)), "tune.wav"), "title": "Tune", "artist": "Band"}
    response = client.post("/api/add-song", data=data, content_type="multipart/form-data")
    assert response.status_code == 201
    song = response.get_json()["song"]
    assert song["title"] == "Tune"
    assert store.total_songs() == 1

    data = {"file": (wav_bytes(make_audio(4, seed=52)), "other.wav"), "title": "TUNE", "artist": "band"}
    response = client.post("/api/add-song", data=data, content_type="multipart/form-data")
    assert response.status_code == 409
    assert "Tune" in response.get_json()["message"]
    assert store.total_songs() == 1


def test_add_song_without_file(client):
    response = client.post("/api/add-song", data={}, content_type="multipart/form-data")
    assert response.status_code == 400
    assert response.get_json()["message"] == "No file"


def test_identify_upload(client, alpha, songs, tmp_path):
    data = {"file": (wav_bytes(excerpt(songs["Alpha"], 20, 5)), "clip.wav")}
    response = client.post("/api/identify", data=data, content_type="multipart/form-data")
    body = response.get_json()
    assert body["success"] is True
    assert body["matches"][0]["songID"] == alpha.song_id
    # uploads are not kept
    assert list((tmp_path / "uploads").iterdir()) == []


def test_songs_and_external_refs(client, alpha):
    assert client.get("/api/external-refs").get_json() == {"externalRefs": []}

    response = client.put(f"/api/songs/{alpha.song_id}/external-ref", json={"externalRef": "yt-1"})
    assert response.status_code == 200
    assert response.get_json()["song"]["external_ref"] == "yt-1"

    assert client.get("/api/external-refs").get_json() == {"externalRefs": ["yt-1"]}
    songs = client.get("/api/songs").get_json()["songs"]
    assert [s["title"] for s in songs] == ["Alpha"]

    assert client.put("/api/songs/999/external-ref", json={"externalRef": "x"}).status_code == 404
    assert client.put(f"/api/songs/{alpha.song_id}/external-ref", json={}).status_code == 400


def test_delete_song(client, alpha):
    response = client.delete(f"/api/songs/{alpha.song_id}")
    assert response.status_code == 200
    assert response.get_json() == {"success": True, "songID": alpha.song_id}

    response = client.delete(f"/api/songs/{alpha.song_id}")
    assert response.status_code == 404
    assert client.get("/api/status").get_json()["totalSongs"] == 0


def test_internal_errors_are_not_leaked(client, store, monkeypatch):
    def broken():
        raise StorageError("disk /var/secret/path is on fire")

    monkeypatch.setattr(store, "total_songs", broken)
    response = client.get("/api/status")
    assert response.status_code == 500
    assert response.get_json()["message"] == "Internal server error"
