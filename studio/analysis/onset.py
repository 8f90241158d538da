"""
Vocal onset: first ~1 kHz envelope sample reaching 20% of the take's peak.
Near-silent takes report 0.
"""
import logging

import torch

from studio.analysis.envelope import envelope
from studio.core.types import DecodedBuffer

logger = logging.getLogger(__name__)

ANALYSIS_RATE_HZ = 1000.0
SILENCE_FLOOR = 1e-5
ONSET_THRESHOLD = 0.2


class OnsetDetector:
    @staticmethod
    def detect(buffer: DecodedBuffer) -> float:
        """Onset time in seconds (0.0 when silent or on failure)."""
        try:
            env, rate = envelope(buffer, ANALYSIS_RATE_HZ)
            if env.numel() == 0:
                return 0.0
            peak = float(env.max())
            if peak <= SILENCE_FLOOR:
                return 0.0
            hits = torch.nonzero(env >= peak * ONSET_THRESHOLD)
            if hits.numel() == 0:
                return 0.0
            return int(hits[0]) / rate
        except Exception as e:
            logger.warning("Onset detection failed: %s", e)
            return 0.0
