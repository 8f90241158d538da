from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import torch


@dataclass(frozen=True)
class DecodedBuffer:
    samples: torch.Tensor  # float32, shape (channels, frames)
    sample_rate: int

    def __post_init__(self):
        samples = self.samples
        if samples.dim() == 1:
            samples = samples.unsqueeze(0)
        if samples.dim() != 2:
            raise ValueError(f"expected (channels, frames) samples, got shape {tuple(samples.shape)}")
        if self.sample_rate <= 0:
            raise ValueError(f"invalid sample rate: {self.sample_rate}")
        # Detached private copy; callers never share storage with a slot.
        object.__setattr__(self, "samples", samples.detach().to(torch.float32).clone())

    @property
    def num_channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def length(self) -> int:
        return int(self.samples.shape[-1])

    @property
    def duration(self) -> float:
        return self.length / float(self.sample_rate)

    @classmethod
    def silent(cls, sample_rate: int, channels: int = 1, frames: int = 1) -> "DecodedBuffer":
        return cls(torch.zeros(channels, frames), sample_rate)


@dataclass(frozen=True)
class BeatAnalysis:
    tempo_bpm: Optional[float] = None
    downbeat_offset: Optional[float] = None
    duration: float = 0.0


@dataclass(frozen=True)
class PlaybackAlignment:
    alignment_shift: Optional[float] = None
    quantized_target: Optional[float] = None

    @property
    def is_aligned(self) -> bool:
        return self.alignment_shift is not None


@dataclass(frozen=True)
class PlaybackPlan:
    """Relative schedule for one playback: vocal delay after the common start and vocal read offset."""
    alignment: PlaybackAlignment = field(default_factory=PlaybackAlignment)
    vocal_delay: float = 0.0
    vocal_offset: float = 0.0


@dataclass(frozen=True)
class EncodedMedia:
    data: bytes
    mime_type: str
    format: str
    sample_rate: int
    duration: float


class EngineState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    RECORDING = "recording"
