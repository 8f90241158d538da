"""
SignalGraph: the fixed processing topology.

    beat  -> beat gain -----------------------------------------------+
    vocal -> vocal gain -> low shelf -> peaking -> high shelf -> comp  |
               +-> dry gain ---------------------------------------+  |
               +-> delay send -> feedback delay -> delay wet ------+--+-> master gain -> monitor
               +-> reverb send -> convolver -> reverb wet ---------+        +-> capture taps

Built once a render context exists. Parameter application is driven by the
controller: it clamps into EffectParameters first, then calls apply_*().
"""
import logging
from typing import Dict, List, Optional

import torch

from studio.core.params import clamp
from studio.dsp.delay import FeedbackDelay
from studio.dsp.dynamics import DynamicsCompressor
from studio.dsp.filters import BiquadFilter
from studio.dsp.mixer import GainStage, SummingBus, match_channels
from studio.dsp.reverb import ConvolutionReverb, synthesize_impulse
from studio.params.schema import (
    DRY_MAX,
    DRY_MIN,
    DRY_REVERB_SLOPE,
    EQ_HIGH_FREQ_HZ,
    EQ_LOW_FREQ_HZ,
    EQ_MID_FREQ_HZ,
    EQ_MID_Q,
    MAX_DELAY_S,
)
from studio.params.settings import EffectParameters

logger = logging.getLogger(__name__)


def compute_dry_gain(reverb_mix: float) -> float:
    """Dry level for a given reverb mix: clamp(1 - mix * 0.65, 0.3, 1)."""
    return clamp(1.0 - reverb_mix * DRY_REVERB_SLOPE, DRY_MIN, DRY_MAX)


class SignalGraph:
    def __init__(
        self,
        sample_rate: int,
        block_size: int,
        settings: EffectParameters,
        channels: int = 2,
        generator: Optional[torch.Generator] = None,
    ):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.channels = channels
        self.settings = settings
        self.generator = generator if generator is not None else torch.Generator()
        self._taps: List = []

        s = settings
        # Beat path
        self.beat_gain = GainStage(s.volume.beat)

        # Vocal path
        self.vocal_gain = GainStage(s.volume.vocal)
        self.eq_low = BiquadFilter("lowshelf", sample_rate, EQ_LOW_FREQ_HZ, s.eq.low)
        self.eq_mid = BiquadFilter("peaking", sample_rate, EQ_MID_FREQ_HZ, s.eq.mid, q=EQ_MID_Q)
        self.eq_high = BiquadFilter("highshelf", sample_rate, EQ_HIGH_FREQ_HZ, s.eq.high)
        self.compressor = DynamicsCompressor(sample_rate)
        self.compressor.set_params(**vars(s.compressor))

        # Sends
        self.dry_gain = GainStage(compute_dry_gain(s.reverb.mix))
        self.delay_send = GainStage(clamp(s.delay.mix, 0.0, 1.0))
        self.delay = FeedbackDelay(sample_rate, MAX_DELAY_S, s.delay.time, s.delay.feedback, channels=channels)
        self.delay_wet = GainStage(s.delay.mix)
        self.reverb_send = GainStage(s.reverb.mix)
        self.convolver = ConvolutionReverb(sample_rate, block_size)
        self.reverb_wet = GainStage(s.reverb.mix)
        self.refresh_reverb_impulse()

        # Master
        self.bus = SummingBus(channels)
        self.master_gain = GainStage(s.volume.master)

    # -------------------------------------------------------------------------
    # Topology
    # -------------------------------------------------------------------------

    @property
    def vocal_chain(self):
        return (self.vocal_gain, self.eq_low, self.eq_mid, self.eq_high, self.compressor)

    @property
    def stages(self):
        return (
            self.beat_gain, *self.vocal_chain, self.dry_gain,
            self.delay_send, self.delay, self.delay_wet,
            self.reverb_send, self.convolver, self.reverb_wet, self.master_gain,
        )

    def connect_tap(self, tap) -> None:
        """Attach a capture tap to the master fan-out. tap.write(block) is called per block."""
        if tap not in self._taps:
            self._taps.append(tap)

    def disconnect_tap(self, tap) -> None:
        """Detach a tap. Detaching a tap that is not attached is a no-op."""
        if tap in self._taps:
            self._taps.remove(tap)

    @property
    def taps(self) -> List:
        return list(self._taps)

    def reset(self) -> None:
        """Clear filter history, delay memory and reverb tail."""
        for stage in self.stages:
            stage.reset()

    def process(
        self,
        beat: Optional[torch.Tensor],
        vocal: Optional[torch.Tensor],
        frames: int,
    ) -> torch.Tensor:
        """
        Render one block. Missing inputs are silence; the vocal chain always runs
        so delay and reverb tails keep decaying.
        Returns the master block (channels, frames) sent to the monitor output.
        """
        beat_out = self.beat_gain(match_channels(beat, self.channels)) if beat is not None else None

        if vocal is None:
            vocal = torch.zeros(self.channels, frames)
        x = match_channels(vocal, self.channels)
        for stage in self.vocal_chain:
            x = stage(x)

        dry = self.dry_gain(x)
        delayed = self.delay_wet(self.delay(self.delay_send(x)))
        reverberated = self.reverb_wet(self.convolver(self.reverb_send(x)))

        master = self.master_gain(self.bus.mix([beat_out, dry, delayed, reverberated], frames))
        for tap in list(self._taps):
            tap.write(master)
        return master

    # -------------------------------------------------------------------------
    # Parameter application (values already clamped)
    # -------------------------------------------------------------------------

    def apply_volume(self, applied: Dict[str, float]) -> None:
        if "beat" in applied:
            self.beat_gain.gain = applied["beat"]
        if "vocal" in applied:
            self.vocal_gain.gain = applied["vocal"]
        if "master" in applied:
            self.master_gain.gain = applied["master"]

    def apply_eq(self, applied: Dict[str, float]) -> None:
        if "low" in applied:
            self.eq_low.set_params(gain_db=applied["low"])
        if "mid" in applied:
            self.eq_mid.set_params(gain_db=applied["mid"])
        if "high" in applied:
            self.eq_high.set_params(gain_db=applied["high"])

    def apply_compressor(self, applied: Dict[str, float]) -> None:
        self.compressor.set_params(**applied)

    def apply_delay(self, applied: Dict[str, float]) -> None:
        self.delay.set_params(time=applied.get("time"), feedback=applied.get("feedback"))
        if "mix" in applied:
            self.delay_send.gain = clamp(applied["mix"], 0.0, 1.0)
            self.delay_wet.gain = applied["mix"]

    def apply_reverb(self, applied: Dict[str, float]) -> None:
        if "mix" in applied:
            self.reverb_send.gain = applied["mix"]
            self.reverb_wet.gain = applied["mix"]
        self.dry_gain.gain = compute_dry_gain(self.settings.reverb.mix)
        if "duration" in applied or "decay" in applied:
            self.refresh_reverb_impulse()

    def apply(self, section: str, applied: Dict[str, float]) -> None:
        getattr(self, f"apply_{section}")(applied)

    def refresh_reverb_impulse(self) -> None:
        reverb = self.settings.reverb
        impulse = synthesize_impulse(self.sample_rate, reverb.duration, reverb.decay, self.generator)
        self.convolver.set_impulse(impulse)
        logger.debug("Reverb impulse regenerated (duration=%.2fs, decay=%.2f)", reverb.duration, reverb.decay)
