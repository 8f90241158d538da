"""
Tests for studio/capture: chunk assembly and backend selection.
Run from project root: python -m pytest tests/test_capture.py -v
"""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import threading
import time

import numpy as np
import pytest
import torch

from studio.capture import backends
from studio.capture.assembler import CaptureAssembler
from studio.capture.backends import (
    AutoCaptureBackend,
    CaptureBackend,
    MicrophoneConstraints,
    PollingCaptureBackend,
    StreamingCaptureBackend,
    SyntheticCaptureBackend,
    create_capture_backend,
    negotiate_input,
)
from studio.core.errors import CaptureBackendUnavailable, PermissionDenied

SR = 8000


def stereo_chunk(frames, value):
    return np.stack([np.full(frames, value, dtype=np.float32), np.full(frames, -value, dtype=np.float32)])


# -----------------------------------------------------------------------------
# Assembler
# -----------------------------------------------------------------------------

def test_chunks_concatenate_in_order():
    """[256, 256, 128] x 2 channels -> 640 frames per channel, arrival order kept."""
    asm = CaptureAssembler(SR)
    for i, frames in enumerate([256, 256, 128]):
        asm.submit(stereo_chunk(frames, i + 1))
    buffer = asm.assemble()

    assert buffer.num_channels == 2
    assert buffer.length == 640
    assert buffer.sample_rate == SR
    assert torch.all(buffer.samples[0, :256] == 1.0)
    assert torch.all(buffer.samples[0, 256:512] == 2.0)
    assert torch.all(buffer.samples[0, 512:] == 3.0)
    assert torch.all(buffer.samples[1, 512:] == -3.0)


def test_submit_copies_chunk():
    asm = CaptureAssembler(SR)
    chunk = stereo_chunk(64, 0.5)
    asm.submit(chunk)
    chunk[:] = 0.0
    assert torch.all(asm.assemble().samples[0] == 0.5)


def test_empty_session_is_one_silent_frame():
    buffer = CaptureAssembler(SR).assemble()
    assert buffer.num_channels == 1
    assert buffer.length == 1
    assert float(buffer.samples.abs().max()) == 0.0


def test_first_chunk_fixes_channel_count():
    asm = CaptureAssembler(SR)
    asm.append(stereo_chunk(10, 1.0))
    asm.append(np.full((1, 10), 0.25, dtype=np.float32))
    asm.append(np.full((3, 10), 0.5, dtype=np.float32))
    buffer = asm.assemble()
    assert buffer.num_channels == 2
    assert buffer.length == 30
    # Mono chunk repeats into the second channel; extra channels are dropped
    assert torch.all(buffer.samples[1, 10:20] == 0.25)
    assert torch.all(buffer.samples[:, 20:] == 0.5)


def test_list_of_channel_arrays_and_empty_chunks():
    asm = CaptureAssembler(SR)
    asm.append([np.zeros(0, dtype=np.float32), np.zeros(0, dtype=np.float32)])
    asm.append([np.ones(32, dtype=np.float32), np.zeros(32, dtype=np.float32)])
    assert asm.chunk_count == 1
    assert asm.length == 32


def test_assemble_clears_session():
    asm = CaptureAssembler(SR)
    asm.submit(stereo_chunk(100, 1.0))
    asm.assemble()
    assert asm.length == 0
    assert asm.channel_count == 0
    assert asm.assemble().length == 1


def test_submit_from_threads():
    asm = CaptureAssembler(SR)
    threads = [threading.Thread(target=asm.submit, args=(stereo_chunk(50, 1.0),)) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert asm.assemble().length == 400


def test_clear_discards_pending():
    asm = CaptureAssembler(SR)
    asm.submit(stereo_chunk(100, 1.0))
    asm.clear()
    assert asm.assemble().length == 1


# -----------------------------------------------------------------------------
# Backends
# -----------------------------------------------------------------------------

class FailingBackend(CaptureBackend):
    name = "failing"

    def __init__(self):
        self.closed = 0

    @property
    def is_open(self):
        return False

    def open(self, constraints, deliver):
        raise CaptureBackendUnavailable("no callback stream here")

    def close(self):
        self.closed += 1


def test_constraints_disable_processing():
    c = MicrophoneConstraints(sample_rate=SR)
    assert c.echo_cancellation is False
    assert c.noise_suppression is False
    assert c.auto_gain_control is False


def test_synthetic_backend_delivers_chunks():
    asm = CaptureAssembler(SR)
    backend = SyntheticCaptureBackend([stereo_chunk(128, 0.1), stereo_chunk(64, 0.2)])
    backend.open(MicrophoneConstraints(SR, 2), asm.submit)
    assert backend.is_open
    backend.close()
    backend.close()
    assert not backend.is_open
    assert asm.assemble().length == 192
    assert backend.last_constraints.sample_rate == SR


def test_synthetic_backend_denied():
    backend = SyntheticCaptureBackend(deny=True)
    with pytest.raises(PermissionDenied):
        backend.open(MicrophoneConstraints(SR), lambda chunk: None)
    assert not backend.is_open


def test_auto_falls_back_to_polling():
    auto = AutoCaptureBackend()
    fallback = SyntheticCaptureBackend([stereo_chunk(32, 1.0)])
    auto.candidates = [FailingBackend(), fallback]
    received = []
    auto.open(MicrophoneConstraints(SR), received.append)
    assert auto.selected is fallback
    assert len(received) == 1
    assert auto.is_open
    auto.close()
    assert not auto.is_open


def test_create_backend_kinds():
    assert isinstance(create_capture_backend("stream"), StreamingCaptureBackend)
    assert isinstance(create_capture_backend("poll", poll_block=2048), PollingCaptureBackend)
    assert create_capture_backend("poll", poll_block=2048).block_size == 2048
    assert isinstance(create_capture_backend("auto"), AutoCaptureBackend)
    with pytest.raises(ValueError):
        create_capture_backend("carrier-pigeon")


def test_closing_unopened_backends_is_noop():
    StreamingCaptureBackend().close()
    PollingCaptureBackend().close()
    AutoCaptureBackend().close()


# -----------------------------------------------------------------------------
# Device negotiation (fake sounddevice module)
# -----------------------------------------------------------------------------

class FakePortAudioError(Exception):
    pass


class FakeInputStream:
    def __init__(self, samplerate, channels, callback=None):
        self.samplerate = samplerate
        self.channels = channels
        self.callback = callback
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def read(self, frames):
        time.sleep(0.001)
        return np.full((frames, self.channels), 0.25, dtype=np.float32), False


class FakeSoundDevice:
    """One input device that only runs at its own channel count and rate."""
    PortAudioError = FakePortAudioError

    def __init__(self, max_input_channels=1, rate=44100):
        self.max_input_channels = max_input_channels
        self.rate = rate
        self.streams = []

    def query_devices(self, device=None, kind=None):
        return {"name": "fake mic", "max_input_channels": self.max_input_channels, "default_samplerate": float(self.rate)}

    def check_input_settings(self, device=None, channels=None, dtype=None, extra_settings=None, samplerate=None):
        self._check(channels, samplerate)

    def InputStream(self, samplerate=None, channels=None, dtype=None, blocksize=0, callback=None, device=None):
        self._check(channels, samplerate)
        stream = FakeInputStream(samplerate, channels, callback)
        self.streams.append(stream)
        return stream

    def _check(self, channels, samplerate):
        if channels > self.max_input_channels:
            raise FakePortAudioError("Invalid number of channels")
        if samplerate != self.rate:
            raise FakePortAudioError("Invalid sample rate")


@pytest.fixture
def mono_mic(monkeypatch):
    device = FakeSoundDevice(max_input_channels=1, rate=44100)
    monkeypatch.setattr(backends, "_import_sounddevice", lambda: device)
    return device


def test_negotiate_clamps_channels_and_falls_back_to_device_rate(mono_mic):
    channels, rate = negotiate_input(mono_mic, MicrophoneConstraints(sample_rate=48000, channel_count=2))
    assert channels == 1
    assert rate == 44100


def test_streaming_opens_mono_mic(mono_mic):
    received = []
    backend = StreamingCaptureBackend()
    backend.open(MicrophoneConstraints(sample_rate=48000, channel_count=2), received.append)
    stream = mono_mic.streams[-1]
    assert stream.channels == 1
    assert stream.samplerate == 44100
    assert backend.sample_rate == 44100

    stream.callback(np.full((64, 1), 0.5, dtype=np.float32), 64, None, None)
    assert received[0].shape == (1, 64)
    backend.close()
    assert stream.closed


def test_polling_opens_mono_mic(mono_mic):
    asm = CaptureAssembler(SR)
    backend = PollingCaptureBackend(block_size=32)
    backend.open(MicrophoneConstraints(sample_rate=48000, channel_count=2), asm.submit)
    deadline = time.time() + 5.0
    while asm.drain() == 0:
        assert time.time() < deadline, "no chunks polled"
        time.sleep(0.005)
    backend.close()
    assert backend.sample_rate == 44100
    assert asm.channel_count == 1
    assert mono_mic.streams[-1].closed


def test_device_without_inputs(monkeypatch):
    device = FakeSoundDevice(max_input_channels=0)
    monkeypatch.setattr(backends, "_import_sounddevice", lambda: device)
    with pytest.raises(CaptureBackendUnavailable):
        StreamingCaptureBackend().open(MicrophoneConstraints(SR), lambda chunk: None)
    with pytest.raises(PermissionDenied):
        PollingCaptureBackend().open(MicrophoneConstraints(SR), lambda chunk: None)


def test_synthetic_backend_reports_device_rate():
    backend = SyntheticCaptureBackend(device_rate=16000)
    backend.open(MicrophoneConstraints(SR), lambda chunk: None)
    assert backend.sample_rate == 16000
    auto = AutoCaptureBackend()
    auto.candidates = [FailingBackend(), backend]
    auto.open(MicrophoneConstraints(SR), lambda chunk: None)
    assert auto.sample_rate == 16000


if __name__ == "__main__":
    test_chunks_concatenate_in_order()
    test_submit_copies_chunk()
    test_empty_session_is_one_silent_frame()
    test_first_chunk_fixes_channel_count()
    test_synthetic_backend_delivers_chunks()
    print("All capture tests passed.")
