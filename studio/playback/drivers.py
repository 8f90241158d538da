"""
Drivers pull blocks out of a RenderContext.

OfflineDriver renders on the asyncio loop as fast as it can while the context
has work and sleeps otherwise. RealtimeDriver renders inside a sounddevice
output callback, so the render clock follows the sound card.
"""
import asyncio
import logging
from typing import Optional

import numpy as np

from studio.core.errors import OutputUnavailable
from studio.playback.context import RenderContext

logger = logging.getLogger(__name__)


class OfflineDriver:
    realtime = False

    def __init__(self, context: RenderContext):
        self.context = context
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    async def start(self) -> None:
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self.context.on_work = self._signal
        self._task = self._loop.create_task(self._run())

    def _signal(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._wake.set)

    async def _run(self) -> None:
        while not self._closing:
            if not self.context.has_work:
                self._wake.clear()
                await self._wake.wait()
                continue
            self.context.render_block()
            # One block per loop iteration so control calls interleave with rendering
            await asyncio.sleep(0)

    async def close(self) -> None:
        self._closing = True
        self.context.on_work = None
        task, self._task = self._task, None
        if task is None:
            return
        self._wake.set()
        await task


class RealtimeDriver:
    realtime = True

    def __init__(self, context: RenderContext, device=None):
        self.context = context
        self.device = device
        self._stream = None

    async def start(self) -> None:
        if self._stream is not None:
            return
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise OutputUnavailable(f"sounddevice unavailable: {e}") from e

        ctx = self.context
        try:
            stream = sd.OutputStream(
                samplerate=ctx.sample_rate,
                blocksize=ctx.block_size,
                channels=ctx.channels,
                dtype="float32",
                device=self.device,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise OutputUnavailable(f"Could not open output stream: {e}") from e
        self._stream = stream
        logger.info("Realtime output open: %d Hz, block %d", ctx.sample_rate, ctx.block_size)

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.warning("Output stream status: %s", status)
        block = self.context.render_block(frames)
        outdata[:] = np.clip(block.T.numpy(), -1.0, 1.0)

    async def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


def create_driver(kind: str, context: RenderContext):
    if kind == "offline":
        return OfflineDriver(context)
    if kind == "realtime":
        return RealtimeDriver(context)
    raise ValueError(f"Unknown driver: {kind}")
