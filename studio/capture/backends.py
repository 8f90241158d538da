"""
Capture backends: where microphone chunks come from.

Every backend has the same shape: open(constraints, deliver) starts delivering
(channels, frames) float32 chunks to `deliver` (from any thread, each chunk a
fresh copy), close() stops it and is safe to call repeatedly.

- StreamingCaptureBackend: sounddevice callback stream (low latency).
- PollingCaptureBackend: background thread doing blocking buffered reads.
  The stream is input-only; input monitoring, when enabled, goes through the
  render graph, never through the capture stream.
- SyntheticCaptureBackend: fixed chunk list, for tests and offline takes.
- AutoCaptureBackend: streaming first, polling if streaming cannot be opened.

sounddevice is imported when a device is opened: hosts without PortAudio can
still run the engine offline. The channel count and rate are requests, not
demands: a mono microphone opens as mono, and a device that refuses the engine
rate opens at its own default rate (reported as `sample_rate` once open).
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from studio.core.errors import CaptureBackendUnavailable, PermissionDenied

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[np.ndarray], None]


@dataclass(frozen=True)
class MicrophoneConstraints:
    """
    Microphone request. Processing is always off so the take is the raw input;
    sounddevice applies no processing of its own, the flags document the request.
    """
    sample_rate: int
    channel_count: int = 2
    echo_cancellation: bool = False
    noise_suppression: bool = False
    auto_gain_control: bool = False


def _import_sounddevice():
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise CaptureBackendUnavailable(f"sounddevice unavailable: {e}") from e
    return sd


def negotiate_input(sd, constraints: MicrophoneConstraints, device=None) -> Tuple[int, int]:
    """
    (channels, sample_rate) the input device will accept for this request.
    Channels are clamped to the device's max_input_channels; a refused rate
    falls back to the device's default_samplerate.
    """
    try:
        info = sd.query_devices(device, kind="input")
    except (sd.PortAudioError, ValueError) as e:
        raise CaptureBackendUnavailable(f"No input device: {e}") from e

    max_channels = int(info["max_input_channels"])
    if max_channels < 1:
        raise CaptureBackendUnavailable(f"Device has no input channels: {info['name']}")
    channels = max(1, min(constraints.channel_count, max_channels))
    if channels != constraints.channel_count:
        logger.info("Input device offers %d channel(s); capturing %d", max_channels, channels)

    sample_rate = int(constraints.sample_rate)
    try:
        sd.check_input_settings(device=device, channels=channels, samplerate=sample_rate, dtype="float32")
    except (sd.PortAudioError, ValueError) as e:
        sample_rate = int(info["default_samplerate"])
        logger.warning("Input device refused %d Hz (%s); capturing at %d Hz", constraints.sample_rate, e, sample_rate)
    return channels, sample_rate


class CaptureBackend:
    name = "base"
    # Rate of the delivered chunks, known once open() has negotiated the device
    sample_rate: Optional[int] = None

    def open(self, constraints: MicrophoneConstraints, deliver: ChunkCallback) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        raise NotImplementedError


# -----------------------------------------------------------------------------
# Streaming (callback) backend
# -----------------------------------------------------------------------------

class StreamingCaptureBackend(CaptureBackend):
    name = "stream"

    def __init__(self, block_size: int = 0):
        self.block_size = block_size
        self._stream = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self, constraints: MicrophoneConstraints, deliver: ChunkCallback) -> None:
        sd = _import_sounddevice()
        self.close()

        def _callback(indata, frames, time_info, status):
            # Audio thread: copy out and hand off, nothing else.
            if status:
                logger.warning("Capture stream status: %s", status)
            deliver(np.array(indata.T, dtype=np.float32, copy=True))

        channels, sample_rate = negotiate_input(sd, constraints)
        self.sample_rate = sample_rate
        try:
            stream = sd.InputStream(
                samplerate=sample_rate,
                blocksize=self.block_size,
                channels=channels,
                dtype="float32",
                callback=_callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self.sample_rate = None
            raise CaptureBackendUnavailable(f"Could not open capture stream: {e}") from e
        self._stream = stream
        logger.info("Capture: streaming backend open (%d ch @ %d Hz)", channels, sample_rate)

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


# -----------------------------------------------------------------------------
# Polling (buffered read) backend
# -----------------------------------------------------------------------------

class PollingCaptureBackend(CaptureBackend):
    name = "poll"

    def __init__(self, block_size: int = 4096):
        self.block_size = block_size
        self._stream = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self, constraints: MicrophoneConstraints, deliver: ChunkCallback) -> None:
        try:
            sd = _import_sounddevice()
        except CaptureBackendUnavailable as e:
            raise PermissionDenied(str(e)) from e
        self.close()
        try:
            channels, sample_rate = negotiate_input(sd, constraints)
        except CaptureBackendUnavailable as e:
            raise PermissionDenied(str(e)) from e
        self.sample_rate = sample_rate
        try:
            stream = sd.InputStream(
                samplerate=sample_rate,
                channels=channels,
                dtype="float32",
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self.sample_rate = None
            raise PermissionDenied(f"Could not open microphone: {e}") from e

        self._stream = stream
        self._stop.clear()
        self._thread = threading.Thread(target=self._poll, args=(stream, deliver), daemon=True)
        self._thread.start()
        logger.info("Capture: polling backend open (%d ch @ %d Hz, block=%d)", channels, sample_rate, self.block_size)

    def _poll(self, stream, deliver: ChunkCallback) -> None:
        while not self._stop.is_set():
            data, overflowed = stream.read(self.block_size)
            if overflowed:
                logger.warning("Capture input overflow")
            deliver(np.array(data.T, dtype=np.float32, copy=True))

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        try:
            stream.stop()
        finally:
            stream.close()


# -----------------------------------------------------------------------------
# Synthetic backend
# -----------------------------------------------------------------------------

class SyntheticCaptureBackend(CaptureBackend):
    """
    Delivers a fixed sequence of chunks on open, in order.
    `deny=True` simulates a refused microphone; `device_rate` a device that
    only runs at its own rate.
    """
    name = "synthetic"

    def __init__(self, chunks: Sequence = (), deny: bool = False, device_rate: Optional[int] = None):
        self.chunks = list(chunks)
        self.deny = deny
        self.device_rate = device_rate
        self.last_constraints: Optional[MicrophoneConstraints] = None
        self.open_count = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, constraints: MicrophoneConstraints, deliver: ChunkCallback) -> None:
        self.last_constraints = constraints
        if self.deny:
            raise PermissionDenied("Microphone access denied")
        self.sample_rate = self.device_rate or constraints.sample_rate
        self._open = True
        self.open_count += 1
        for chunk in self.chunks:
            deliver(np.array(chunk, dtype=np.float32, copy=True))

    def close(self) -> None:
        self._open = False


# -----------------------------------------------------------------------------
# Selection
# -----------------------------------------------------------------------------

class AutoCaptureBackend(CaptureBackend):
    """Streaming when it can be opened, otherwise polling. The choice sticks once made."""
    name = "auto"

    def __init__(self, stream_block: int = 0, poll_block: int = 4096):
        self.candidates: List[CaptureBackend] = [
            StreamingCaptureBackend(stream_block),
            PollingCaptureBackend(poll_block),
        ]
        self.selected: Optional[CaptureBackend] = None

    @property
    def is_open(self) -> bool:
        return self.selected is not None and self.selected.is_open

    @property
    def sample_rate(self) -> Optional[int]:
        # A candidate may deliver from inside open(), before it is selected
        for backend in [self.selected] if self.selected is not None else self.candidates:
            if backend.sample_rate is not None:
                return backend.sample_rate
        return None

    def open(self, constraints: MicrophoneConstraints, deliver: ChunkCallback) -> None:
        if self.selected is not None:
            self.selected.open(constraints, deliver)
            return
        streaming, fallback = self.candidates
        try:
            streaming.open(constraints, deliver)
            self.selected = streaming
        except CaptureBackendUnavailable as e:
            logger.warning("Falling back to polling capture: %s", e)
            fallback.open(constraints, deliver)
            self.selected = fallback

    def close(self) -> None:
        for backend in self.candidates:
            backend.close()


def create_capture_backend(kind: str = "auto", stream_block: int = 0, poll_block: int = 4096) -> CaptureBackend:
    if kind == "stream":
        return StreamingCaptureBackend(stream_block)
    if kind == "poll":
        return PollingCaptureBackend(poll_block)
    if kind == "auto":
        return AutoCaptureBackend(stream_block, poll_block)
    raise ValueError(f"Unknown capture backend: {kind}")
