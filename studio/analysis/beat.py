"""
Tempo and downbeat estimation for a backing track.

1. Envelope at ~500 Hz, smoothed with a +-4 sample moving average.
2. Autocorrelation over lags covering 60..180 BPM; the strongest lag wins
   (ties go to the shortest lag).
3. Downbeat: first envelope sample in the first 8 s reaching 60% of that
   window's peak.
Best effort only. Any failure yields an empty BeatAnalysis.
"""
import logging
from typing import Optional, Tuple

import torch

from studio.analysis.envelope import envelope, smooth
from studio.core.types import BeatAnalysis, DecodedBuffer

logger = logging.getLogger(__name__)

ANALYSIS_RATE_HZ = 500.0
MIN_BPM = 60.0
MAX_BPM = 180.0
DOWNBEAT_WINDOW_S = 8.0
DOWNBEAT_THRESHOLD = 0.6


def estimate_tempo(smoothed: torch.Tensor, rate: float) -> Optional[float]:
    """Tempo in BPM from the autocorrelation peak, or None without a positive score."""
    frames = smoothed.shape[-1]
    min_lag = max(1, int((60.0 / MAX_BPM) * rate))
    max_lag = int((60.0 / MIN_BPM) * rate)

    best_lag = 0
    best_score = 0.0
    for lag in range(min_lag, max_lag + 1):
        if lag >= frames:
            break
        score = float(torch.dot(smoothed[: frames - lag], smoothed[lag:]))
        if score > best_score:
            best_score = score
            best_lag = lag

    if best_lag == 0:
        return None
    return 60.0 * rate / best_lag


def estimate_downbeat(smoothed: torch.Tensor, rate: float) -> Optional[float]:
    window = min(smoothed.shape[-1], int(rate * DOWNBEAT_WINDOW_S))
    if window == 0:
        return None
    head = smoothed[:window]
    threshold = float(head.max()) * DOWNBEAT_THRESHOLD
    hits = torch.nonzero(head >= threshold)
    if hits.numel() == 0:
        return None
    return int(hits[0]) / rate


def _analyse(buffer: DecodedBuffer) -> Tuple[Optional[float], Optional[float]]:
    env, rate = envelope(buffer, ANALYSIS_RATE_HZ)
    smoothed = smooth(env)
    tempo = estimate_tempo(smoothed, rate)
    downbeat = estimate_downbeat(smoothed, rate) if tempo else None
    return tempo, downbeat


class BeatAnalyzer:
    @staticmethod
    def analyze(buffer: DecodedBuffer) -> BeatAnalysis:
        """Never raises: failures degrade to absent tempo and downbeat."""
        try:
            tempo, downbeat = _analyse(buffer)
        except Exception as e:
            logger.warning("Beat analysis failed: %s", e)
            return BeatAnalysis(None, None, _safe_duration(buffer))
        logger.info(
            "Beat analysis: tempo=%s downbeat=%s",
            f"{tempo:.2f} BPM" if tempo else "n/a",
            f"{downbeat:.3f}s" if downbeat is not None else "n/a",
        )
        return BeatAnalysis(tempo, downbeat, buffer.duration)


def _safe_duration(buffer) -> float:
    try:
        return float(buffer.duration)
    except (AttributeError, TypeError, ZeroDivisionError):
        return 0.0
