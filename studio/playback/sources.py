"""
Sources feed the render buses.

BufferSource: one scheduled, one-shot playback of a DecodedBuffer on a bus.
Positions are render-clock frames. `ended` resolves True when the buffer has
played out and is cancelled when the source is stopped first.

LiveInputSource: a FIFO of live capture blocks, played as soon as they arrive.
It never plays out on its own; stop() ends it.
"""
import threading
from collections import deque
from concurrent.futures import Future
from typing import Callable, Deque, Optional

import torch

from studio.core.types import DecodedBuffer
from studio.dsp.mixer import match_channels

BUSES = ("beat", "vocal")


class BufferSource:
    def __init__(self, buffer: DecodedBuffer, bus: str, start_frame: int, offset: int = 0):
        if bus not in BUSES:
            raise ValueError(f"Unknown bus: {bus}")
        self.buffer = buffer
        self.bus = bus
        self.start_frame = int(start_frame)
        self.offset = max(0, min(int(offset), buffer.length))
        self.ended: Future = Future()
        self._lock = threading.Lock()

    @property
    def end_frame(self) -> int:
        """Render-clock frame right after the last sample."""
        return self.start_frame + (self.buffer.length - self.offset)

    @property
    def done(self) -> bool:
        return self.ended.done()

    @property
    def active(self) -> bool:
        """Whether the driver has anything to render for this source."""
        return not self.done

    def render_into(self, out: torch.Tensor, block_start: int, frames: int) -> bool:
        """
        Add this source's share of the block [block_start, block_start + frames) into `out`.
        Returns True once the block reaches the end of the buffer.
        """
        lead = self.start_frame - block_start
        if lead >= frames:
            return False
        first = max(0, lead)
        read_pos = self.offset + max(0, -lead)
        count = min(frames - first, self.buffer.length - read_pos)
        if count > 0:
            chunk = self.buffer.samples[:, read_pos:read_pos + count]
            out[:, first:first + count] += match_channels(chunk, out.shape[0])
        return block_start + frames >= self.end_frame

    def finish(self) -> None:
        """Mark as played out. No-op if already stopped."""
        with self._lock:
            if not self.ended.done():
                self.ended.set_result(True)

    def stop(self) -> None:
        """Stop before the natural end. Stopping a finished or stopped source is a no-op."""
        with self._lock:
            if not self.ended.done():
                self.ended.cancel()

    def __repr__(self):
        return f"BufferSource(bus={self.bus!r}, start={self.start_frame}, offset={self.offset}, frames={self.buffer.length})"


class LiveInputSource:
    def __init__(self, bus: str = "vocal", on_data: Optional[Callable[[], None]] = None):
        if bus not in BUSES:
            raise ValueError(f"Unknown bus: {bus}")
        self.bus = bus
        self.on_data = on_data
        self.ended: Future = Future()
        self._lock = threading.Lock()
        self._pending: Deque[torch.Tensor] = deque()
        self._queued = 0

    @property
    def done(self) -> bool:
        return self.ended.done()

    @property
    def active(self) -> bool:
        with self._lock:
            return self._queued > 0 and not self.ended.done()

    @property
    def queued_frames(self) -> int:
        return self._queued

    def push(self, samples: torch.Tensor) -> None:
        """Queue a (channels, frames) block from any thread. Ignored once stopped."""
        if samples.ndim == 1:
            samples = samples.unsqueeze(0)
        with self._lock:
            if self.ended.done() or samples.shape[-1] == 0:
                return
            self._pending.append(samples.detach().to(torch.float32).clone())
            self._queued += samples.shape[-1]
        if self.on_data is not None:
            self.on_data()

    def render_into(self, out: torch.Tensor, block_start: int, frames: int) -> bool:
        """Add up to `frames` queued frames into `out`; underruns are silence."""
        with self._lock:
            written = 0
            while self._pending and written < frames:
                head = self._pending[0]
                count = min(frames - written, head.shape[-1])
                out[:, written:written + count] += match_channels(head[:, :count], out.shape[0])
                if count == head.shape[-1]:
                    self._pending.popleft()
                else:
                    self._pending[0] = head[:, count:]
                written += count
            self._queued -= written
        return False

    def finish(self) -> None:
        self.stop()

    def stop(self) -> None:
        """Drop anything queued and end the source. Idempotent."""
        with self._lock:
            self._pending.clear()
            self._queued = 0
            if not self.ended.done():
                self.ended.cancel()

    def __repr__(self):
        return f"LiveInputSource(bus={self.bus!r}, queued={self._queued})"
