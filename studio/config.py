"""
Engine configuration. Defaults below; any field can be overridden with a
STUDIO_<FIELD> environment variable (e.g. STUDIO_SAMPLE_RATE=44100).
"""
import os
from dataclasses import dataclass, fields
from typing import Optional

ENV = os.environ.get("ENV", "development").lower()


@dataclass
class StudioConfig:
    sample_rate: int = 48000
    block_size: int = 512
    channels: int = 2
    lead_in: float = 0.1
    tail_margin: float = 0.6
    waveform_resolution: int = 512
    capture_backend: str = "auto"
    capture_channels: int = 2
    monitor_input: bool = False
    poll_block: int = 4096
    export_format: str = "ogg"
    driver: str = "offline"
    reverb_seed: Optional[int] = None
    env: str = ENV

    @property
    def dev(self) -> bool:
        return self.env in ("development", "dev", "test")

    @classmethod
    def from_env(cls, environ=None) -> "StudioConfig":
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(f"STUDIO_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            if f.name == "reverb_seed":
                values[f.name] = int(raw)
            elif f.type is bool or f.type == "bool":
                values[f.name] = raw.lower() in ("1", "true", "yes", "on")
            elif f.type is int or f.type == "int":
                values[f.name] = int(raw)
            elif f.type is float or f.type == "float":
                values[f.name] = float(raw)
            else:
                values[f.name] = raw.lower()
        if "env" not in values and environ.get("ENV"):
            values["env"] = environ["ENV"].lower()
        return cls(**values)
