"""
Render clock, scheduled sources, master-bus sinks and the drivers that run them.
"""
from studio.playback.context import RenderContext
from studio.playback.drivers import OfflineDriver, RealtimeDriver, create_driver
from studio.playback.renderer import MixRenderer
from studio.playback.sinks import EncoderSink
from studio.playback.sources import BufferSource, LiveInputSource

__all__ = [
    "RenderContext",
    "OfflineDriver",
    "RealtimeDriver",
    "create_driver",
    "MixRenderer",
    "EncoderSink",
    "BufferSource",
    "LiveInputSource",
]
