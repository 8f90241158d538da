"""
Convolution reverb with a synthetic impulse response.

Impulse: two channels of uniform noise in [-1, 1) shaped by (1 - i/length)^decay.
Randomness comes only from the torch.Generator passed in, so identically seeded
generators give byte-identical impulses.

Convolution: uniformly partitioned overlap-save. The impulse is split into
block-sized partitions whose spectra are multiplied against a frequency-domain
delay line of past input blocks; the tail therefore carries across blocks.
"""
import logging
from typing import Optional

import torch
import torch.fft

from studio.dsp.mixer import match_channels
from studio.dsp.stage import Stage

logger = logging.getLogger(__name__)

# Browser convolver normalization constants
GAIN_CALIBRATION = 0.00125
GAIN_CALIBRATION_SAMPLE_RATE = 44100.0
MIN_POWER = 0.000125


def synthesize_impulse(
    sample_rate: int,
    duration: float,
    decay: float,
    generator: Optional[torch.Generator] = None,
    channels: int = 2,
) -> torch.Tensor:
    """Exponentially-shaped noise impulse, shape (channels, floor(sample_rate * duration))."""
    length = int(sample_rate * duration)
    if length <= 0:
        return torch.zeros(channels, 1)
    noise = torch.rand(channels, length, generator=generator, dtype=torch.float32) * 2.0 - 1.0
    i = torch.arange(length, dtype=torch.float64)
    shape = torch.pow(1.0 - i / length, decay).to(torch.float32)
    return noise * shape


def normalization_scale(impulse: torch.Tensor, sample_rate: int) -> float:
    """Scale that brings an arbitrary impulse to a consistent loudness."""
    power = float(torch.sqrt(torch.mean(impulse.to(torch.float64) ** 2)))
    power = max(power, MIN_POWER)
    return (1.0 / power) * GAIN_CALIBRATION * (GAIN_CALIBRATION_SAMPLE_RATE / sample_rate)


class ConvolutionReverb(Stage):
    def __init__(self, sample_rate: int, block_size: int, normalize: bool = True):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.normalize = normalize
        self.impulse: Optional[torch.Tensor] = None
        self._partitions: Optional[torch.Tensor] = None  # (P, C, B+1) complex
        # Frequency-domain delay line; slot `_head` holds the newest input spectrum
        # and partition p pairs with slot (_head + p) % P.
        self._fdl: Optional[torch.Tensor] = None
        self._head = 0
        self._previous: Optional[torch.Tensor] = None  # (C, B)

    @property
    def channels(self) -> int:
        return 0 if self.impulse is None else int(self.impulse.shape[0])

    def set_impulse(self, impulse: torch.Tensor) -> None:
        """Swap the impulse. Input history is kept so the tail stays continuous."""
        if impulse.dim() == 1:
            impulse = impulse.unsqueeze(0)
        self.impulse = impulse.detach().to(torch.float32).clone()
        self._build_partitions()

    def _build_partitions(self) -> None:
        B = self.block_size
        ir = self.impulse
        if self.normalize:
            ir = ir * normalization_scale(ir, self.sample_rate)
        channels, length = ir.shape
        count = max(1, -(-length // B))
        padded = torch.zeros(channels, count * B)
        padded[:, :length] = ir
        parts = padded.reshape(channels, count, B).permute(1, 0, 2)
        self._partitions = torch.fft.rfft(parts, n=2 * B)

        old = self._fdl
        self._fdl = torch.zeros(count, channels, B + 1, dtype=torch.complex64)
        if old is not None and old.shape[1] == channels and old.shape[2] == B + 1:
            ordered = torch.roll(old, shifts=-self._head, dims=0)
            keep = min(count, ordered.shape[0])
            self._fdl[:keep] = ordered[:keep]
        self._head = 0
        if self._previous is None or self._previous.shape != (channels, B):
            self._previous = torch.zeros(channels, B)
        logger.debug("Reverb impulse: %d samples, %d partitions", length, count)

    def reset(self) -> None:
        if self._fdl is not None:
            self._fdl.zero_()
        if self._previous is not None:
            self._previous.zero_()
        self._head = 0

    def process(self, block: torch.Tensor) -> torch.Tensor:
        if self.impulse is None:
            return torch.zeros_like(block)
        frames = block.shape[-1]
        if frames != self.block_size:
            # Re-partition for the new block length; the running tail is lost.
            self.block_size = frames
            self._fdl = None
            self._previous = None
            self._build_partitions()

        x = match_channels(block, self.channels).to(torch.float32)
        segment = torch.cat([self._previous, x], dim=-1)
        self._previous = x

        count = self._fdl.shape[0]
        self._head = (self._head - 1) % count
        self._fdl[self._head] = torch.fft.rfft(segment, n=2 * frames)

        split = count - self._head
        spectrum = torch.sum(self._fdl[self._head:] * self._partitions[:split], dim=0)
        if self._head > 0:
            spectrum = spectrum + torch.sum(self._fdl[:self._head] * self._partitions[split:], dim=0)
        out = torch.fft.irfft(spectrum, n=2 * frames)[:, frames:]
        return out.to(block.dtype)
