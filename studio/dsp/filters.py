"""
Biquad filters for the vocal tone stack.
Coefficients follow the Audio EQ Cookbook (same formulas the browser
BiquadFilterNode uses), computed for the context sample rate.
Filtering runs through torchaudio's IIR lfilter; block-to-block state is carried
exactly by adding the zero-input response of the previous block's history.
"""
import math
from typing import Optional, Tuple

import torch
import torchaudio.functional as AF

from studio.dsp.stage import Stage

FILTER_TYPES = ("lowshelf", "highshelf", "peaking")

Coefficients = Tuple[Tuple[float, float, float], Tuple[float, float, float]]


def biquad_coefficients(
    filter_type: str,
    sample_rate: int,
    frequency: float,
    gain_db: float = 0.0,
    q: float = 0.707,
) -> Coefficients:
    """
    Returns ((b0, b1, b2), (1, a1, a2)) normalized by a0.
    Shelves use slope S = 1.
    """
    if filter_type not in FILTER_TYPES:
        raise ValueError(f"Unknown filter type: {filter_type}")

    nyquist = sample_rate / 2.0
    # Keep the corner strictly inside (0, nyquist)
    frequency = min(max(frequency, 1e-3), nyquist - 1.0)
    q = max(q, 1e-4)

    w0 = 2.0 * math.pi * frequency / sample_rate
    cos_w0 = math.cos(w0)
    sin_w0 = math.sin(w0)
    A = 10.0 ** (gain_db / 40.0)

    if filter_type == "peaking":
        alpha = sin_w0 / (2.0 * q)
        b = (1.0 + alpha * A, -2.0 * cos_w0, 1.0 - alpha * A)
        a = (1.0 + alpha / A, -2.0 * cos_w0, 1.0 - alpha / A)
    elif filter_type == "lowshelf":
        alpha = sin_w0 / 2.0 * math.sqrt(2.0)
        k = 2.0 * math.sqrt(A) * alpha
        b = (
            A * ((A + 1.0) - (A - 1.0) * cos_w0 + k),
            2.0 * A * ((A - 1.0) - (A + 1.0) * cos_w0),
            A * ((A + 1.0) - (A - 1.0) * cos_w0 - k),
        )
        a = (
            (A + 1.0) + (A - 1.0) * cos_w0 + k,
            -2.0 * ((A - 1.0) + (A + 1.0) * cos_w0),
            (A + 1.0) + (A - 1.0) * cos_w0 - k,
        )
    else:  # highshelf
        alpha = sin_w0 / 2.0 * math.sqrt(2.0)
        k = 2.0 * math.sqrt(A) * alpha
        b = (
            A * ((A + 1.0) + (A - 1.0) * cos_w0 + k),
            -2.0 * A * ((A - 1.0) + (A + 1.0) * cos_w0),
            A * ((A + 1.0) + (A - 1.0) * cos_w0 - k),
        )
        a = (
            (A + 1.0) - (A - 1.0) * cos_w0 + k,
            2.0 * ((A - 1.0) - (A + 1.0) * cos_w0),
            (A + 1.0) - (A - 1.0) * cos_w0 - k,
        )

    a0 = a[0]
    return (b[0] / a0, b[1] / a0, b[2] / a0), (1.0, a[1] / a0, a[2] / a0)


class BiquadFilter(Stage):
    """
    Stateful second-order IIR section.
    Parameters can change between blocks; the history carries over.
    """

    def __init__(
        self,
        filter_type: str,
        sample_rate: int,
        frequency: float,
        gain_db: float = 0.0,
        q: float = 0.707,
    ):
        self.filter_type = filter_type
        self.sample_rate = sample_rate
        self.frequency = frequency
        self.gain_db = gain_db
        self.q = q
        self._coeffs: Optional[Coefficients] = None
        # Direct form I history per channel: x[n-1], x[n-2], y[n-1], y[n-2]
        self._history: Optional[torch.Tensor] = None

    def set_params(self, frequency: float = None, gain_db: float = None, q: float = None) -> None:
        if frequency is not None:
            self.frequency = float(frequency)
        if gain_db is not None:
            self.gain_db = float(gain_db)
        if q is not None:
            self.q = float(q)
        self._coeffs = None

    @property
    def coefficients(self) -> Coefficients:
        if self._coeffs is None:
            self._coeffs = biquad_coefficients(
                self.filter_type, self.sample_rate, self.frequency, self.gain_db, self.q
            )
        return self._coeffs

    def reset(self) -> None:
        self._history = None

    def process(self, block: torch.Tensor) -> torch.Tensor:
        channels, frames = block.shape
        if frames == 0:
            return block
        (b0, b1, b2), (_, a1, a2) = self.coefficients
        x = block.to(torch.float64)

        if self._history is None or self._history.shape[0] != channels:
            self._history = torch.zeros(channels, 4, dtype=torch.float64)
        x1, x2, y1, y2 = self._history.unbind(dim=1)

        a_coeffs = torch.tensor([1.0, a1, a2], dtype=torch.float64)
        b_coeffs = torch.tensor([b0, b1, b2], dtype=torch.float64)
        y = AF.lfilter(x, a_coeffs, b_coeffs, clamp=False)

        # Zero-input response of the carried history
        excitation = torch.zeros_like(x)
        excitation[:, 0] = b1 * x1 + b2 * x2 - a1 * y1 - a2 * y2
        if frames > 1:
            excitation[:, 1] = b2 * x1 - a2 * y1
        if torch.any(excitation[:, :2] != 0):
            unit = torch.tensor([1.0, 0.0, 0.0], dtype=torch.float64)
            y = y + AF.lfilter(excitation, a_coeffs, unit, clamp=False)

        if frames > 1:
            self._history = torch.stack([x[:, -1], x[:, -2], y[:, -1], y[:, -2]], dim=1)
        else:
            self._history = torch.stack([x[:, -1], x1, y[:, -1], y1], dim=1)
        return y.to(block.dtype)
