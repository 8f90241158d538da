"""
CaptureAssembler: accumulates live-capture chunks and concatenates them into
one DecodedBuffer.

Producers (capture threads) call submit(); it copies the chunk and hands it
over through a queue. The control side drains the queue into the accumulator.
Chunks are never aliased: a producer may reuse its buffers right after submit().
"""
import logging
import queue
from typing import List, Sequence, Union

import numpy as np
import torch

from studio.core.types import DecodedBuffer

logger = logging.getLogger(__name__)

Chunk = Union[np.ndarray, torch.Tensor, Sequence[np.ndarray], Sequence[torch.Tensor]]


def _copy_chunk(chunk: Chunk) -> List[torch.Tensor]:
    """Per-channel float32 copies of a (channels, frames) array or a list of channel arrays."""
    if isinstance(chunk, (np.ndarray, torch.Tensor)) and chunk.ndim == 2:
        channels = [chunk[c] for c in range(chunk.shape[0])]
    elif isinstance(chunk, (np.ndarray, torch.Tensor)) and chunk.ndim == 1:
        channels = [chunk]
    else:
        channels = list(chunk)
    copied = []
    for data in channels:
        if isinstance(data, torch.Tensor):
            copied.append(data.detach().to(torch.float32).reshape(-1).clone())
        else:
            copied.append(torch.tensor(np.asarray(data, dtype=np.float32).reshape(-1)))
    return copied


class CaptureAssembler:
    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate
        self._chunks: List[List[torch.Tensor]] = []
        self._length = 0
        self._channel_count = 0
        self._inbox: "queue.Queue[List[torch.Tensor]]" = queue.Queue()

    @property
    def channel_count(self) -> int:
        return self._channel_count

    @property
    def length(self) -> int:
        """Frames accumulated so far (drained chunks only)."""
        return self._length

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    # -------------------------------------------------------------------------
    # Producer side (any thread)
    # -------------------------------------------------------------------------

    def submit(self, chunk: Chunk) -> None:
        """Thread-safe hand-off; the chunk is copied before it is queued."""
        self._inbox.put(_copy_chunk(chunk))

    # -------------------------------------------------------------------------
    # Control side
    # -------------------------------------------------------------------------

    def drain(self) -> int:
        """Move queued chunks into the accumulator. Returns how many were moved."""
        moved = 0
        while True:
            try:
                chunk = self._inbox.get_nowait()
            except queue.Empty:
                return moved
            self._accept(chunk)
            moved += 1

    def append(self, chunk: Chunk) -> None:
        """Add a chunk directly (copied)."""
        self._accept(_copy_chunk(chunk))

    def _accept(self, channels: List[torch.Tensor]) -> None:
        if not channels or channels[0].numel() == 0:
            return
        if self._channel_count == 0:
            self._channel_count = len(channels)
        self._chunks.append(channels)
        self._length += channels[0].numel()

    def assemble(self) -> DecodedBuffer:
        """
        Concatenate every chunk in arrival order into one buffer and clear the session.
        Missing channels in a chunk repeat its first channel. An empty session
        yields a one-frame silent mono buffer.
        """
        self.drain()
        if not self._chunks or self._channel_count == 0 or self._length == 0:
            self.clear()
            return DecodedBuffer.silent(self.sample_rate)

        out = torch.zeros(self._channel_count, self._length)
        offset = 0
        for chunk in self._chunks:
            length = chunk[0].numel()
            for c in range(self._channel_count):
                source = chunk[c] if c < len(chunk) else chunk[0]
                out[c, offset:offset + length] = source[:length]
            offset += length

        logger.info("Assembled take: %d chunks, %d frames, %d channels", len(self._chunks), self._length, self._channel_count)
        buffer = DecodedBuffer(out, self.sample_rate)
        self.clear()
        return buffer

    def clear(self) -> None:
        self._chunks = []
        self._length = 0
        self._channel_count = 0
        self.drain_discard()

    def drain_discard(self) -> None:
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                return
