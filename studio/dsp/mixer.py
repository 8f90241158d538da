"""
Gain stage and bus summing. Channel matching follows speaker up/down-mix rules:
mono is copied to every output channel, stereo to mono is the channel average.
"""
from typing import Iterable, Optional

import torch

from studio.dsp.stage import Stage


def match_channels(block: torch.Tensor, channels: int) -> torch.Tensor:
    """Up/down-mix a (channels, frames) block to `channels`."""
    current = block.shape[0]
    if current == channels:
        return block
    if current == 1:
        return block.expand(channels, -1).clone()
    if channels == 1:
        return block.mean(dim=0, keepdim=True)
    if current > channels:
        return block[:channels].clone()
    # Fewer channels than needed: repeat the last one
    pad = block[-1:].expand(channels - current, -1)
    return torch.cat([block, pad], dim=0)


class GainStage(Stage):
    def __init__(self, gain: float = 1.0):
        self.gain = float(gain)

    def process(self, block: torch.Tensor) -> torch.Tensor:
        if self.gain == 1.0:
            return block
        return block * self.gain


class SummingBus:
    """
    Sum several inputs into one (channels, frames) block.
    Missing inputs (None) contribute silence.
    """

    def __init__(self, channels: int = 2):
        self.channels = channels

    def mix(self, inputs: Iterable[Optional[torch.Tensor]], frames: int) -> torch.Tensor:
        out = torch.zeros(self.channels, frames)
        for block in inputs:
            if block is None:
                continue
            block = match_channels(block, self.channels)
            length = min(frames, block.shape[-1])
            out[:, :length] += block[:, :length]
        return out
