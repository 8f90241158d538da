"""
EngineController: the session owner.

Holds the render context, signal graph, driver, loaded buffers, analysis
results and effect settings, and runs the Idle / Playing / Recording state
machine. All control operations are coroutines and are expected to run on one
event loop; render and capture threads only reach back through futures and
queues.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import torch

from studio.analysis import AlignmentPlanner, BeatAnalyzer, OnsetDetector, create_waveform
from studio.capture.assembler import CaptureAssembler
from studio.capture.backends import CaptureBackend, MicrophoneConstraints, create_capture_backend
from studio.config import StudioConfig
from studio.core.errors import (
    CaptureBackendUnavailable,
    GraphNotInitialized,
    NoAudioLoaded,
    PermissionDenied,
    RecordingInProgress,
)
from studio.core.io import AudioIO
from studio.core.types import (
    BeatAnalysis,
    DecodedBuffer,
    EncodedMedia,
    EngineState,
    PlaybackAlignment,
    PlaybackPlan,
)
from studio.graph.signal_graph import SignalGraph
from studio.params.settings import EffectParameters
from studio.playback import BufferSource, LiveInputSource, MixRenderer, RenderContext, create_driver

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EngineController:
    def __init__(self, config: Optional[StudioConfig] = None, capture_backend: Optional[CaptureBackend] = None):
        self.config = config or StudioConfig()
        cfg = self.config
        self._settings = EffectParameters()

        self._context: Optional[RenderContext] = None
        self._graph: Optional[SignalGraph] = None
        self._driver = None
        self._renderer: Optional[MixRenderer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._disposed = False

        self._capture = capture_backend or create_capture_backend(cfg.capture_backend, poll_block=cfg.poll_block)
        self._assembler = CaptureAssembler(cfg.sample_rate)

        self._beat: Optional[DecodedBuffer] = None
        self._vocal: Optional[DecodedBuffer] = None
        self._beat_analysis = BeatAnalysis()
        self._vocal_onset: Optional[float] = None
        self._alignment = PlaybackAlignment()
        self._beat_waveform: List[float] = []
        self._vocal_waveform: List[float] = []

        self._sources: List[BufferSource] = []
        self._monitor: Optional[LiveInputSource] = None
        self._generation = 0
        self._playing = False
        self._recording = False
        self._recording_started_playback = False

        self._listeners: Dict[str, List[Listener]] = {"playback": [], "recording": [], "vocal": []}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the render context, graph and driver. Safe to call repeatedly."""
        if self._disposed:
            raise GraphNotInitialized("Engine has been disposed")
        if self._context is not None:
            return
        cfg = self.config
        generator = torch.Generator()
        if cfg.reverb_seed is not None:
            generator.manual_seed(cfg.reverb_seed)

        context = RenderContext(cfg.sample_rate, cfg.block_size, cfg.channels)
        graph = SignalGraph(cfg.sample_rate, cfg.block_size, self._settings, channels=cfg.channels, generator=generator)
        context.attach_graph(graph)
        driver = create_driver(cfg.driver, context)
        await driver.start()

        self._loop = asyncio.get_running_loop()
        self._context, self._graph, self._driver = context, graph, driver
        self._renderer = MixRenderer(context, cfg.export_format, cfg.tail_margin, realtime=driver.realtime)
        logger.info("Engine initialized: %d Hz, block %d, %s driver", cfg.sample_rate, cfg.block_size, cfg.driver)

    async def dispose(self) -> None:
        """Release the microphone, stop all sources and close the driver and context."""
        if self._disposed:
            return
        self._disposed = True
        self._capture.close()
        self._stop_monitor()
        self._assembler.clear()
        self._recording = False
        self._stop_sources()
        self._playing = False
        if self._driver is not None:
            await self._driver.close()
        if self._context is not None:
            self._context.close()
        self._context = self._graph = self._driver = self._renderer = None
        for listeners in self._listeners.values():
            listeners.clear()
        logger.info("Engine disposed")

    def _require(self) -> RenderContext:
        if self._disposed or self._context is None:
            raise GraphNotInitialized()
        return self._context

    def _check_alive(self) -> None:
        if self._disposed:
            raise GraphNotInitialized()

    async def _run_blocking(self, fn, *args):
        return await asyncio.get_running_loop().run_in_executor(None, fn, *args)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load_beat(self, data: bytes) -> BeatAnalysis:
        """Decode and analyse a backing track. A decode failure keeps the previous track."""
        self._require()
        buffer = await self._run_blocking(AudioIO.decode, data, self.config.sample_rate)
        return await self.load_beat_buffer(buffer)

    async def load_beat_buffer(self, buffer: DecodedBuffer) -> BeatAnalysis:
        self._require()
        buffer = AudioIO.resample(buffer, self.config.sample_rate)
        await self.stop_playback()
        analysis = await self._run_blocking(BeatAnalyzer.analyze, buffer)
        self._beat = buffer
        self._beat_analysis = analysis
        self._beat_waveform = create_waveform(buffer, self.config.waveform_resolution)
        self._alignment = PlaybackAlignment()
        logger.info(
            "Beat loaded: %.2fs, tempo=%s, downbeat=%s",
            buffer.duration, analysis.tempo_bpm, analysis.downbeat_offset,
        )
        return analysis

    async def load_vocal(self, data: bytes) -> float:
        """Decode a vocal file as the current take. Returns the detected onset in seconds."""
        self._require()
        buffer = await self._run_blocking(AudioIO.decode, data, self.config.sample_rate)
        return await self.load_vocal_buffer(buffer)

    async def load_vocal_buffer(self, buffer: DecodedBuffer) -> float:
        self._require()
        buffer = AudioIO.resample(buffer, self.config.sample_rate)
        await self.stop_playback()
        await self._set_vocal(buffer)
        return self._vocal_onset

    async def _set_vocal(self, buffer: DecodedBuffer) -> None:
        onset = await self._run_blocking(OnsetDetector.detect, buffer)
        self._vocal = buffer
        self._vocal_onset = onset
        self._vocal_waveform = create_waveform(buffer, self.config.waveform_resolution)
        self._alignment = PlaybackAlignment()
        logger.info("Vocal take set: %.2fs, onset=%.3fs", buffer.duration, onset)
        self._emit("vocal", buffer.duration)

    def clear_vocal_take(self) -> None:
        """Drop the vocal take and everything derived from it. Idempotent."""
        self._check_alive()
        had_take = self._vocal is not None
        self._vocal = None
        self._vocal_onset = None
        self._vocal_waveform = []
        self._alignment = PlaybackAlignment()
        if had_take:
            logger.info("Vocal take cleared")
        self._emit("vocal", None)

    # -------------------------------------------------------------------------
    # Playback
    # -------------------------------------------------------------------------

    def _plan(self) -> PlaybackPlan:
        if self._beat is None or self._vocal is None:
            return PlaybackPlan()
        return AlignmentPlanner.plan(
            self._beat_analysis.tempo_bpm,
            self._vocal_onset,
            self._vocal.duration,
            self._beat_analysis.downbeat_offset,
        )

    async def start_playback(self) -> PlaybackPlan:
        """
        Play the beat and the vocal take together, the vocal snapped to the beat grid.
        Both sources are scheduled against the same clock reading, lead_in seconds ahead.
        """
        ctx = self._require()
        if self._beat is None and self._vocal is None:
            raise NoAudioLoaded()

        self._stop_sources()
        plan = self._plan()
        self._alignment = plan.alignment

        sources = []
        with ctx.lock:
            self._graph.reset()
            start = ctx.frame + ctx.seconds_to_frames(self.config.lead_in)
            if self._beat is not None:
                sources.append(BufferSource(self._beat, "beat", start))
            if self._vocal is not None:
                sources.append(BufferSource(
                    self._vocal, "vocal",
                    start + ctx.seconds_to_frames(plan.vocal_delay),
                    offset=ctx.seconds_to_frames(plan.vocal_offset),
                ))
            ctx.schedule(*sources)

        self._generation += 1
        generation = self._generation
        self._sources = sources
        for source in sources:
            source.ended.add_done_callback(lambda _f, g=generation: self._source_ended(g))

        if not self._playing:
            self._playing = True
            self._emit("playback", True)
        logger.debug("Playback started: %s", plan)
        return plan

    async def stop_playback(self) -> None:
        """Stop every scheduled source. Stopping while idle is a no-op."""
        self._check_alive()
        self._stop_sources()
        if self._playing:
            self._playing = False
            self._emit("playback", False)

    def _stop_sources(self) -> None:
        self._generation += 1
        sources, self._sources = self._sources, []
        for source in sources:
            source.stop()

    def _source_ended(self, generation: int) -> None:
        # May run on the render thread
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._check_playback_finished, generation)

    def _check_playback_finished(self, generation: int) -> None:
        if generation != self._generation or not self._playing:
            return
        if all(source.done for source in self._sources):
            self._sources = []
            self._playing = False
            logger.debug("Playback finished")
            self._emit("playback", False)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    async def start_recording(self) -> None:
        """
        Start capturing a vocal take. Plays the beat alongside when one is loaded;
        without a beat, any running playback is stopped so the old take is not heard.
        A refused microphone rolls back the playback started here.
        With monitor_input set, the live input also runs through the vocal chain.
        """
        ctx = self._require()
        if self._recording:
            raise RecordingInProgress()

        self._assembler.clear()
        started_playback = False
        if self._beat is not None:
            await self.start_playback()
            started_playback = True
        else:
            await self.stop_playback()

        if self.config.monitor_input:
            self._monitor = LiveInputSource("vocal", on_data=ctx.wake)
            ctx.schedule(self._monitor)

        constraints = MicrophoneConstraints(
            sample_rate=self.config.sample_rate,
            channel_count=self.config.capture_channels,
        )
        try:
            self._capture.open(constraints, self._deliver)
        except CaptureBackendUnavailable as e:
            await self._abort_recording(started_playback)
            raise PermissionDenied(str(e)) from e
        except Exception:
            await self._abort_recording(started_playback)
            raise

        self._assembler.sample_rate = self._capture.sample_rate or self.config.sample_rate
        self._recording = True
        self._recording_started_playback = started_playback
        logger.info("Recording started (%s, device rate %d Hz)", constraints, self._assembler.sample_rate)
        self._emit("recording", True)

    def _deliver(self, chunk) -> None:
        # Capture thread: the take gets its own copy, the monitor another
        self._assembler.submit(chunk)
        monitor = self._monitor
        if monitor is None:
            return
        samples = torch.as_tensor(np.asarray(chunk, dtype=np.float32))
        if samples.ndim == 1:
            samples = samples.unsqueeze(0)
        rate = self._capture.sample_rate or self.config.sample_rate
        if rate != self.config.sample_rate:
            samples = AudioIO.resample(DecodedBuffer(samples, rate), self.config.sample_rate).samples
        monitor.push(samples)

    async def _abort_recording(self, started_playback: bool) -> None:
        self._stop_monitor()
        self._assembler.clear()
        if started_playback:
            await self.stop_playback()

    def _stop_monitor(self) -> None:
        monitor, self._monitor = self._monitor, None
        if monitor is not None:
            monitor.stop()

    async def stop_recording(self) -> Optional[DecodedBuffer]:
        """Finish the take: assemble it, detect its onset and make it the current vocal."""
        self._check_alive()
        if not self._recording:
            return None
        self._capture.close()
        self._stop_monitor()
        buffer = AudioIO.resample(self._assembler.assemble(), self.config.sample_rate)
        self._assembler.sample_rate = self.config.sample_rate
        self._recording = False
        self._emit("recording", False)

        await self._set_vocal(buffer)
        if self._recording_started_playback:
            self._recording_started_playback = False
            await self.stop_playback()
        return buffer

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    async def export_mix(self) -> EncodedMedia:
        """Bounce beat and vocal through the effects chain into one encoded file."""
        self._require()
        if self._recording:
            raise RecordingInProgress("Stop recording before exporting")
        return await self._renderer.render(
            self.beat_duration,
            self.vocal_duration,
            self.start_playback,
            self.stop_playback,
        )

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def update_settings(self, section: str, partial: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, float]:
        """Clamp and apply a partial update to one section. Returns the applied values."""
        self._check_alive()
        updates = dict(partial or {})
        updates.update(kwargs)
        applied = self._settings.merge(section, updates)
        if self._graph is not None and applied:
            with self._context.lock:
                self._graph.apply(section, applied)
        return applied

    def update_all_settings(self, nested: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
        """
        Apply {"section": {...}} updates in one go. Every section is validated
        before any is written, so one bad key leaves all settings untouched.
        """
        self._check_alive()
        applied = self._settings.merge_all(nested)
        if self._graph is not None:
            with self._context.lock:
                for section, values in applied.items():
                    if values:
                        self._graph.apply(section, values)
        return applied

    def set_volume_settings(self, partial=None, **kwargs):
        return self.update_settings("volume", partial, **kwargs)

    def set_eq_settings(self, partial=None, **kwargs):
        return self.update_settings("eq", partial, **kwargs)

    def set_compressor_settings(self, partial=None, **kwargs):
        return self.update_settings("compressor", partial, **kwargs)

    def set_delay_settings(self, partial=None, **kwargs):
        return self.update_settings("delay", partial, **kwargs)

    def set_reverb_settings(self, partial=None, **kwargs):
        return self.update_settings("reverb", partial, **kwargs)

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def _subscribe(self, kind: str, callback: Listener) -> Callable[[], None]:
        self._listeners[kind].append(callback)

        def unsubscribe():
            if callback in self._listeners[kind]:
                self._listeners[kind].remove(callback)
        return unsubscribe

    def on_playback_state_change(self, callback: Listener) -> Callable[[], None]:
        return self._subscribe("playback", callback)

    def on_recording_state_change(self, callback: Listener) -> Callable[[], None]:
        return self._subscribe("recording", callback)

    def on_vocal_updated(self, callback: Listener) -> Callable[[], None]:
        return self._subscribe("vocal", callback)

    def _emit(self, kind: str, value) -> None:
        for callback in list(self._listeners[kind]):
            try:
                callback(value)
            except Exception:
                logger.exception("%s listener failed", kind)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._context is not None and not self._disposed

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def state(self) -> EngineState:
        if self._recording:
            return EngineState.RECORDING
        if self._playing:
            return EngineState.PLAYING
        return EngineState.IDLE

    @property
    def beat_duration(self) -> float:
        return self._beat.duration if self._beat is not None else 0.0

    @property
    def vocal_duration(self) -> float:
        return self._vocal.duration if self._vocal is not None else 0.0

    @property
    def playback_duration(self) -> float:
        return max(self.beat_duration, self.vocal_duration)

    @property
    def beat_analysis(self) -> BeatAnalysis:
        return self._beat_analysis

    @property
    def beat_tempo(self) -> Optional[float]:
        return self._beat_analysis.tempo_bpm

    @property
    def beat_downbeat_offset(self) -> Optional[float]:
        return self._beat_analysis.downbeat_offset

    @property
    def vocal_onset(self) -> Optional[float]:
        return self._vocal_onset

    @property
    def last_alignment(self) -> PlaybackAlignment:
        return self._alignment

    @property
    def beat_waveform(self) -> List[float]:
        return list(self._beat_waveform)

    @property
    def vocal_waveform(self) -> List[float]:
        return list(self._vocal_waveform)

    @property
    def settings(self) -> EffectParameters:
        """A copy; change settings through the setters."""
        return self._settings.copy()

    @property
    def beat(self) -> Optional[DecodedBuffer]:
        return self._beat

    @property
    def vocal(self) -> Optional[DecodedBuffer]:
        return self._vocal

    @property
    def context(self) -> Optional[RenderContext]:
        return self._context

    @property
    def graph(self) -> Optional[SignalGraph]:
        return self._graph
