import io
import logging
from typing import Optional, Tuple, Union

import numpy as np
import soundfile as sf
import torch
import torchaudio.functional as AF

from studio.core.errors import DecodeFailure
from studio.core.types import DecodedBuffer

logger = logging.getLogger(__name__)

# Opus only runs at these rates; anything else is written as Vorbis.
OPUS_RATES = frozenset({8000, 12000, 16000, 24000, 48000})

MIME_TYPES = {
    "ogg": "audio/ogg",
    "wav": "audio/wav",
    "flac": "audio/flac",
}


def _container(fmt: str, sample_rate: int) -> Tuple[str, Optional[str]]:
    fmt = fmt.lower()
    if fmt == "ogg":
        return "OGG", "OPUS" if sample_rate in OPUS_RATES else "VORBIS"
    if fmt == "wav":
        return "WAV", "PCM_16"
    if fmt == "flac":
        return "FLAC", "PCM_16"
    raise ValueError(f"Unsupported export format: {fmt}")


class AudioIO:
    @staticmethod
    def decode(data: bytes, target_rate: Optional[int] = None) -> DecodedBuffer:
        """
        Decode encoded audio bytes into a DecodedBuffer.
        Resamples to target_rate when given and different from the file rate.
        Raises DecodeFailure for empty, corrupt or unsupported input.
        """
        if not data:
            raise DecodeFailure("Empty audio data")
        try:
            frames, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
        except (RuntimeError, TypeError, ValueError) as e:
            raise DecodeFailure(f"Could not decode audio: {e}") from e

        if frames.shape[0] == 0:
            raise DecodeFailure("Decoded audio contains no frames")

        buffer = DecodedBuffer(torch.from_numpy(np.ascontiguousarray(frames.T)), int(sample_rate))
        if target_rate is not None:
            buffer = AudioIO.resample(buffer, target_rate)
        return buffer

    @staticmethod
    def resample(buffer: DecodedBuffer, target_rate: int) -> DecodedBuffer:
        if int(buffer.sample_rate) == int(target_rate):
            return buffer
        logger.info("Resampling audio %d Hz -> %d Hz", buffer.sample_rate, target_rate)
        return DecodedBuffer(AF.resample(buffer.samples, int(buffer.sample_rate), int(target_rate)), int(target_rate))

    @staticmethod
    def to_bytes(waveform: Union[torch.Tensor, np.ndarray], sample_rate: int, format: str = "wav") -> bytes:
        """Returns audio file as bytes. Accepts (channels, frames) or 1D audio."""
        buffer = io.BytesIO()

        if isinstance(waveform, torch.Tensor):
            data = waveform.detach().cpu().numpy()
        else:
            data = np.asarray(waveform)
        if data.ndim == 2:
            data = data.T  # soundfile wants (frames, channels)

        # Clamp to avoid wrap-around clipping
        data = np.clip(data, -1.0, 1.0)

        container, subtype = _container(format, sample_rate)
        sf.write(buffer, data, sample_rate, format=container, subtype=subtype)
        return buffer.getvalue()

    @staticmethod
    def mime_type(format: str) -> str:
        return MIME_TYPES.get(format.lower(), "application/octet-stream")
