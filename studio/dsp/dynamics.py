"""
Feed-forward dynamics compressor.
Peak detector (max over channels) -> soft-knee static curve -> attack/release
smoothing of the gain reduction in dB. No automatic makeup gain.
The knee spans [threshold, threshold + knee] like the browser compressor.
"""
import math

import torch

from studio.dsp.stage import Stage

FLOOR_DB = -120.0


def static_curve_db(level_db: torch.Tensor, threshold: float, knee: float, ratio: float) -> torch.Tensor:
    """Output level (dB) for input level (dB). Continuous value and slope at the knee edges."""
    slope = 1.0 / ratio
    over = level_db - threshold
    out = level_db.clone()
    if knee > 0:
        in_knee = (over > 0) & (over <= knee)
        out[in_knee] = level_db[in_knee] + (slope - 1.0) * over[in_knee] ** 2 / (2.0 * knee)
        above = over > knee
        out[above] = threshold + knee / 2.0 + knee * slope / 2.0 + (over[above] - knee) * slope
    else:
        above = over > 0
        out[above] = threshold + over[above] * slope
    return out


class DynamicsCompressor(Stage):
    def __init__(
        self,
        sample_rate: int,
        threshold: float = -24.0,
        knee: float = 30.0,
        ratio: float = 12.0,
        attack: float = 0.003,
        release: float = 0.25,
    ):
        self.sample_rate = sample_rate
        self.threshold = threshold
        self.knee = knee
        self.ratio = ratio
        self.attack = attack
        self.release = release
        self._reduction_db = 0.0

    def set_params(self, **settings) -> None:
        for key in ("threshold", "knee", "ratio", "attack", "release"):
            if settings.get(key) is not None:
                setattr(self, key, float(settings[key]))

    @property
    def reduction_db(self) -> float:
        """Current gain reduction (<= 0 dB)."""
        return self._reduction_db

    def _coeff(self, seconds: float) -> float:
        if seconds <= 0:
            return 0.0
        return math.exp(-1.0 / (seconds * self.sample_rate))

    def reset(self) -> None:
        self._reduction_db = 0.0

    def process(self, block: torch.Tensor) -> torch.Tensor:
        if block.shape[-1] == 0:
            return block
        if self.ratio <= 1.0 and self._reduction_db == 0.0:
            return block

        peak = block.abs().amax(dim=0).to(torch.float64)
        level_db = 20.0 * torch.log10(torch.clamp(peak, min=10.0 ** (FLOOR_DB / 20.0)))
        target_db = static_curve_db(level_db, self.threshold, self.knee, max(self.ratio, 1.0)) - level_db

        attack_coeff = self._coeff(self.attack)
        release_coeff = self._coeff(self.release)
        state = self._reduction_db
        smoothed = []
        for target in target_db.tolist():
            coeff = attack_coeff if target < state else release_coeff
            state = target + (state - target) * coeff
            smoothed.append(state)
        self._reduction_db = state

        gain = torch.pow(10.0, torch.tensor(smoothed, dtype=torch.float64) / 20.0)
        return block * gain.to(block.dtype)
