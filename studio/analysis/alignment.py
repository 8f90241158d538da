"""
Playback alignment: snap the vocal onset to the nearest multiple of the beat
period. Only the beat period is used; the downbeat offset is carried for
reporting but does not shift the grid.
"""
import math
from typing import Optional

from studio.core.params import clamp
from studio.core.types import PlaybackAlignment, PlaybackPlan


class AlignmentPlanner:
    @staticmethod
    def quantize(onset: float, tempo: float) -> float:
        beat_length = 60.0 / tempo
        # Round half up
        return max(0.0, math.floor(onset / beat_length + 0.5) * beat_length)

    @staticmethod
    def plan(
        tempo: Optional[float],
        onset: Optional[float],
        vocal_duration: float,
        downbeat_offset: Optional[float] = None,
    ) -> PlaybackPlan:
        """
        quantized <= onset: vocal starts with the beat, reading from onset - quantized.
        quantized >  onset: vocal start is delayed by quantized - onset.
        Without tempo or onset, both start together with no offset.
        """
        if not tempo or onset is None:
            return PlaybackPlan()

        quantized = AlignmentPlanner.quantize(onset, tempo)
        alignment = PlaybackAlignment(alignment_shift=quantized - onset, quantized_target=quantized)
        if quantized <= onset:
            return PlaybackPlan(alignment, vocal_delay=0.0, vocal_offset=clamp(onset - quantized, 0.0, vocal_duration))
        return PlaybackPlan(alignment, vocal_delay=quantized - onset, vocal_offset=0.0)
