"""
MixRenderer: bounce the current session (beat + vocal through the effects)
into one encoded file by capturing the master bus during a playback.
"""
import asyncio
import logging
from typing import Awaitable, Callable

from studio.core.errors import NothingToExport
from studio.core.io import AudioIO
from studio.core.types import EncodedMedia
from studio.playback.context import RenderContext
from studio.playback.sinks import EncoderSink

logger = logging.getLogger(__name__)

# Extra wall-clock slack before a realtime bounce is force-stopped.
REALTIME_GUARD_S = 2.0


class MixRenderer:
    def __init__(self, context: RenderContext, format: str = "ogg", tail_margin: float = 0.6, realtime: bool = False):
        self.context = context
        self.format = format
        self.tail_margin = tail_margin
        self.realtime = realtime

    def render_duration(self, beat_duration: float, vocal_duration: float) -> float:
        return max(beat_duration, vocal_duration) + self.tail_margin

    async def render(
        self,
        beat_duration: float,
        vocal_duration: float,
        start_playback: Callable[[], Awaitable],
        stop_playback: Callable[[], Awaitable],
    ) -> EncodedMedia:
        if max(beat_duration, vocal_duration) <= 0:
            raise NothingToExport()

        ctx = self.context
        total = self.render_duration(beat_duration, vocal_duration)
        sink = EncoderSink(ctx.channels, ctx.seconds_to_frames(total))
        ctx.attach_sink(sink)
        try:
            await start_playback()
            pending = asyncio.wrap_future(sink.result)
            if self.realtime:
                try:
                    await asyncio.wait_for(asyncio.shield(pending), timeout=total + REALTIME_GUARD_S)
                except asyncio.TimeoutError:
                    logger.warning("Bounce did not reach its deadline in time; stopping capture")
                    sink.stop()
            samples = await pending
        finally:
            ctx.detach_sink(sink)
            sink.stop()
            await stop_playback()

        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, sink.encode, samples, ctx.sample_rate, self.format)
        duration = samples.shape[-1] / float(ctx.sample_rate)
        logger.info("Exported mix: %.2fs, %d bytes (%s)", duration, len(data), self.format)
        return EncodedMedia(
            data=data,
            mime_type=AudioIO.mime_type(self.format),
            format=self.format,
            sample_rate=ctx.sample_rate,
            duration=duration,
        )
