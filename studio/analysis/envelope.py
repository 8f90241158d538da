"""
Amplitude envelopes for rhythm and onset analysis.
Deterministic; no randomness.
"""
from typing import Tuple

import torch

from studio.core.types import DecodedBuffer

SMOOTH_HALF_WIDTH = 4


def decimation_step(sample_rate: int, analysis_rate: float) -> int:
    return max(1, int(sample_rate // analysis_rate))


def envelope(buffer: DecodedBuffer, analysis_rate: float) -> Tuple[torch.Tensor, float]:
    """
    Decimated envelope: every `step` samples, the channel mean of |x[c, i*step]|.
    Returns (envelope float64 of length floor(length / step), envelope rate in Hz).
    """
    step = decimation_step(buffer.sample_rate, analysis_rate)
    frames = buffer.length // step
    rate = buffer.sample_rate / step
    if frames == 0:
        return torch.zeros(0, dtype=torch.float64), rate
    picked = buffer.samples[:, : frames * step : step].to(torch.float64)
    return picked.abs().mean(dim=0), rate


def smooth(env: torch.Tensor, half_width: int = SMOOTH_HALF_WIDTH) -> torch.Tensor:
    """
    Symmetric moving average of half-width `half_width`.
    At the edges only in-range samples are averaged.
    """
    n = env.shape[-1]
    if n == 0:
        return env.clone()
    csum = torch.cat([torch.zeros(1, dtype=env.dtype), torch.cumsum(env, dim=0)])
    idx = torch.arange(n)
    lo = torch.clamp(idx - half_width, min=0)
    hi = torch.clamp(idx + half_width + 1, max=n)
    return (csum[hi] - csum[lo]) / (hi - lo).to(env.dtype)
