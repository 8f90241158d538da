"""
RenderContext: the render clock, scheduled sources and the graph, behind one lock.

Rendering a block and scheduling sources both take the lock, so everything
scheduled in one call starts against the same clock reading. Completion
futures are resolved after the lock is released; their callbacks may call
back into the context.
"""
import logging
import threading
from typing import Callable, List, Optional, Union

import torch

from studio.core.errors import GraphNotInitialized
from studio.playback.sinks import EncoderSink
from studio.playback.sources import BufferSource, LiveInputSource

logger = logging.getLogger(__name__)


class RenderContext:
    def __init__(self, sample_rate: int, block_size: int = 512, channels: int = 2):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.channels = channels
        self.graph = None
        self.lock = threading.RLock()
        self.on_work: Optional[Callable[[], None]] = None
        self._frame = 0
        self._sources: List[BufferSource] = []
        self._closed = False

    # -------------------------------------------------------------------------
    # Clock
    # -------------------------------------------------------------------------

    @property
    def frame(self) -> int:
        return self._frame

    @property
    def current_time(self) -> float:
        return self._frame / float(self.sample_rate)

    def seconds_to_frames(self, seconds: float) -> int:
        return int(round(seconds * self.sample_rate))

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def attach_graph(self, graph) -> None:
        with self.lock:
            self.graph = graph

    def schedule(self, *sources: Union[BufferSource, LiveInputSource]) -> None:
        """Add sources in one step relative to the render clock."""
        with self.lock:
            self._check_open()
            self._sources = [s for s in self._sources if not s.done]
            self._sources.extend(sources)
            logger.debug("Scheduled %s at frame %d", sources, self._frame)
        self._notify_work()

    def attach_sink(self, sink: EncoderSink) -> None:
        with self.lock:
            self._check_open()
            self.graph.connect_tap(sink)
        self._notify_work()

    def detach_sink(self, sink: EncoderSink) -> None:
        with self.lock:
            if self.graph is not None:
                self.graph.disconnect_tap(sink)

    @property
    def sources(self) -> List[BufferSource]:
        with self.lock:
            return list(self._sources)

    @property
    def has_work(self) -> bool:
        with self.lock:
            if self._closed or self.graph is None:
                return False
            return any(s.active for s in self._sources) or bool(self.graph.taps)

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def render_block(self, frames: Optional[int] = None) -> torch.Tensor:
        """Render the next block through the graph and advance the clock."""
        frames = frames or self.block_size
        with self.lock:
            if self._closed or self.graph is None:
                return torch.zeros(self.channels, frames)

            buses = {
                "beat": torch.zeros(self.channels, frames),
                "vocal": torch.zeros(self.channels, frames),
            }
            played_out = []
            for source in self._sources:
                if source.done:
                    played_out.append(source)
                elif source.render_into(buses[source.bus], self._frame, frames):
                    played_out.append(source)
            for source in played_out:
                self._sources.remove(source)

            master = self.graph.process(buses["beat"], buses["vocal"], frames)
            self._frame += frames

            for tap in self.graph.taps:
                if getattr(tap, "finished", False):
                    self.graph.disconnect_tap(tap)

        for source in played_out:
            source.finish()
        return master

    def close(self) -> None:
        with self.lock:
            if self._closed:
                return
            self._closed = True
            sources, self._sources = self._sources, []
            taps = self.graph.taps if self.graph is not None else []
        for source in sources:
            source.stop()
        for tap in taps:
            tap.stop()
        self._notify_work()

    def _check_open(self) -> None:
        if self._closed or self.graph is None:
            raise GraphNotInitialized()

    def wake(self) -> None:
        """Tell the driver new work arrived (e.g. live input was queued)."""
        self._notify_work()

    def _notify_work(self) -> None:
        if self.on_work is not None:
            self.on_work()
