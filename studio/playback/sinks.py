"""
EncoderSink: a master-bus tap that collects rendered blocks up to a deadline.

The deadline is counted in render frames from attachment, so an offline
render and a realtime one capture exactly the same span. `result` resolves
with the captured (channels, frames) tensor once the deadline is reached or
stop() is called, whichever comes first.
"""
import threading
from concurrent.futures import Future
from typing import List, Optional

import torch

from studio.core.io import AudioIO


class EncoderSink:
    def __init__(self, channels: int, deadline_frames: Optional[int] = None):
        self.channels = channels
        self.deadline_frames = deadline_frames
        self.result: Future = Future()
        self._blocks: List[torch.Tensor] = []
        self._frames = 0
        self._lock = threading.Lock()

    @property
    def frames(self) -> int:
        return self._frames

    @property
    def finished(self) -> bool:
        return self.result.done()

    def write(self, block: torch.Tensor) -> None:
        """Called from the render thread with each master block."""
        with self._lock:
            if self.result.done():
                return
            if self.deadline_frames is not None:
                block = block[:, : max(0, self.deadline_frames - self._frames)]
            if block.shape[-1] > 0:
                self._blocks.append(block.detach().clone())
                self._frames += block.shape[-1]
            if self.deadline_frames is not None and self._frames >= self.deadline_frames:
                self._complete()

    def stop(self) -> None:
        """Force-stop with whatever has been captured. Idempotent."""
        with self._lock:
            if not self.result.done():
                self._complete()

    def _complete(self) -> None:
        if self._blocks:
            samples = torch.cat(self._blocks, dim=-1)
        else:
            samples = torch.zeros(self.channels, 0)
        self._blocks = []
        self.result.set_result(samples)

    @staticmethod
    def encode(samples: torch.Tensor, sample_rate: int, format: str = "ogg") -> bytes:
        return AudioIO.to_bytes(samples, sample_rate, format=format)
