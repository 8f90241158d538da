import math
from typing import List, Optional

from studio.core.types import DecodedBuffer

DEFAULT_RESOLUTION = 512


def create_waveform(buffer: Optional[DecodedBuffer], resolution: int = DEFAULT_RESOLUTION) -> List[float]:
    """
    Peak-per-bucket summary of the channel-mean absolute signal, normalized to
    [0, 1] by the summary's own peak.
    """
    if buffer is None or buffer.length == 0 or buffer.num_channels == 0:
        return []
    total = buffer.length
    per_bucket = max(1, total // resolution)
    buckets = min(resolution, math.ceil(total / per_bucket))

    mono = buffer.samples.abs().mean(dim=0)
    span = buckets * per_bucket
    # Last bucket may be partial; zero padding is safe since values are non-negative
    usable = mono.new_zeros(span)
    usable[: min(total, span)] = mono[:span]
    peaks = usable.reshape(buckets, per_bucket).amax(dim=1)

    top = float(peaks.max())
    if top > 0:
        peaks = (peaks / top).clamp(max=1.0)
    return [float(v) for v in peaks]
