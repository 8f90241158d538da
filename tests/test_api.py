"""
Tests for studio/main: the HTTP surface over one engine controller.
Run from project root: python -m pytest tests/test_api.py -v
"""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import base64
import io

import numpy as np
import pytest
import soundfile as sf
import torch
from fastapi.testclient import TestClient

from studio.capture.backends import SyntheticCaptureBackend
from studio.config import StudioConfig
from studio.controller import EngineController
from studio.core.io import AudioIO
from studio.main import create_app

SR = 8000


def click_track_wav(seconds=2.0, bpm=120.0):
    samples = torch.zeros(2, int(SR * seconds))
    period = int(round(SR * 60.0 / bpm))
    for start in range(0, samples.shape[-1], period):
        samples[:, start:start + 40] = 0.9
    return AudioIO.to_bytes(samples, SR, format="wav")


def studio_client(capture=None):
    config = StudioConfig(sample_rate=SR, block_size=256, export_format="wav", reverb_seed=0)
    controller = EngineController(config, capture_backend=capture or SyntheticCaptureBackend())
    return TestClient(create_app(controller=controller))


@pytest.fixture
def client():
    with studio_client() as c:
        yield c


# -----------------------------------------------------------------------------
# Health / analysis
# -----------------------------------------------------------------------------

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["state"] == "idle"


def test_upload_beat_reports_tempo(client):
    response = client.post("/beat", content=click_track_wav(4.0))
    assert response.status_code == 200
    body = response.json()
    assert abs(body["tempo_bpm"] - 120.0) <= 2.0
    assert body["beat_duration"] == 4.0
    assert client.get("/analysis").json()["tempo_bpm"] == body["tempo_bpm"]


def test_upload_garbage_is_decode_failure(client):
    response = client.post("/beat", content=b"garbage" * 20)
    assert response.status_code == 422
    assert response.json()["error"] == "decode_failure"


def test_vocal_upload_and_clear(client):
    vocal = torch.zeros(1, SR)
    vocal[:, SR // 2:] = 0.5
    response = client.post("/vocal", content=AudioIO.to_bytes(vocal, SR, format="wav"))
    assert response.status_code == 200
    assert response.json()["vocal_onset"] == 0.5
    assert response.json()["vocal_duration"] == 1.0

    response = client.delete("/vocal")
    assert response.status_code == 200
    assert response.json()["vocal_duration"] == 0.0
    assert response.json()["vocal_onset"] is None


def test_waveforms(client):
    client.post("/beat", content=click_track_wav())
    body = client.get("/waveforms").json()
    assert len(body["beat"]) == 512
    assert body["vocal"] == []


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

def test_get_settings_defaults(client):
    body = client.get("/settings").json()
    assert body["volume"]["master"] == 0.9
    assert body["reverb"]["duration"] == 2.5


def test_patch_settings_clamps(client):
    response = client.patch("/settings/eq", json={"low": 40})
    assert response.status_code == 200
    assert response.json()["applied"] == {"low": 12.0}
    assert response.json()["settings"]["low"] == 12.0


def test_patch_unknown_key_or_section(client):
    response = client.patch("/settings/eq", json={"presence": 1})
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_parameter"

    response = client.patch("/settings/chorus", json={"mix": 1})
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_parameter"


def test_patch_all_settings(client):
    response = client.patch("/settings", json={"eq": {"low": 40}, "reverb": {"mix": 0.5}})
    assert response.status_code == 200
    assert response.json()["applied"] == {"eq": {"low": 12.0}, "reverb": {"mix": 0.5}}
    assert response.json()["settings"]["reverb"]["mix"] == 0.5

    response = client.patch("/settings", json={"eq": {"low": -3}, "reverb": {"size": 1}})
    assert response.status_code == 422
    assert client.get("/settings").json()["eq"]["low"] == 12.0


# -----------------------------------------------------------------------------
# Playback / recording
# -----------------------------------------------------------------------------

def test_playback_start_stop(client):
    response = client.post("/playback")
    assert response.status_code == 409
    assert response.json()["error"] == "no_audio_loaded"

    client.post("/beat", content=click_track_wav(2.0))
    response = client.post("/playback")
    assert response.status_code == 200
    assert response.json()["playing"] is True
    assert response.json()["state"] == "playing"

    response = client.delete("/playback")
    assert response.status_code == 200
    assert response.json()["playing"] is False
    assert response.json()["state"] == "idle"
    assert client.delete("/playback").status_code == 200


def test_record_take_over_beat():
    chunks = [np.full((2, 2000), 0.5, dtype=np.float32)] * 2
    with studio_client(SyntheticCaptureBackend(chunks)) as client:
        client.post("/beat", content=click_track_wav(2.0))

        response = client.post("/recording")
        assert response.status_code == 200
        assert response.json()["recording"] is True
        assert response.json()["playing"] is True
        assert response.json()["state"] == "recording"

        response = client.post("/recording")
        assert response.status_code == 409
        assert response.json()["error"] == "recording_in_progress"

        response = client.delete("/recording")
        assert response.status_code == 200
        body = response.json()
        assert body["recording"] is False
        assert body["playing"] is False
        assert body["vocal_duration"] == 0.5
        assert body["vocal_onset"] == 0.0
        assert len(client.get("/waveforms").json()["vocal"]) > 0


def test_recording_denied():
    with studio_client(SyntheticCaptureBackend(deny=True)) as client:
        response = client.post("/recording")
        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"
        assert client.get("/analysis").json()["recording"] is False


# -----------------------------------------------------------------------------
# Export
# -----------------------------------------------------------------------------

def test_export_nothing_loaded(client):
    response = client.post("/export")
    assert response.status_code == 409
    assert response.json()["error"] == "nothing_to_export"


def test_export_mix(client):
    client.post("/beat", content=click_track_wav(1.0))
    response = client.post("/export")
    assert response.status_code == 200
    body = response.json()
    assert body["format"] == "wav"
    assert abs(body["duration"] - 1.6) < 1e-9

    data, sr = sf.read(io.BytesIO(base64.b64decode(body["audio"])), always_2d=True)
    assert sr == SR
    assert data.shape[0] == int(1.6 * SR)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
