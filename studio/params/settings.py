"""
EffectParameters: the always-fully-defined settings record.
Partial updates are clamped first, then merged into the current values.
"""
import copy
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict

from studio.core.errors import InvalidParameter
from studio.params.clamp import clamp_params
from studio.params.schema import section_defaults


@dataclass
class VolumeSettings:
    beat: float = section_defaults("volume")["beat"]
    vocal: float = section_defaults("volume")["vocal"]
    master: float = section_defaults("volume")["master"]


@dataclass
class EQSettings:
    low: float = section_defaults("eq")["low"]
    mid: float = section_defaults("eq")["mid"]
    high: float = section_defaults("eq")["high"]


@dataclass
class CompressorSettings:
    threshold: float = section_defaults("compressor")["threshold"]
    knee: float = section_defaults("compressor")["knee"]
    ratio: float = section_defaults("compressor")["ratio"]
    attack: float = section_defaults("compressor")["attack"]
    release: float = section_defaults("compressor")["release"]


@dataclass
class DelaySettings:
    time: float = section_defaults("delay")["time"]
    feedback: float = section_defaults("delay")["feedback"]
    mix: float = section_defaults("delay")["mix"]


@dataclass
class ReverbSettings:
    duration: float = section_defaults("reverb")["duration"]
    decay: float = section_defaults("reverb")["decay"]
    mix: float = section_defaults("reverb")["mix"]


@dataclass
class EffectParameters:
    volume: VolumeSettings = field(default_factory=VolumeSettings)
    eq: EQSettings = field(default_factory=EQSettings)
    compressor: CompressorSettings = field(default_factory=CompressorSettings)
    delay: DelaySettings = field(default_factory=DelaySettings)
    reverb: ReverbSettings = field(default_factory=ReverbSettings)

    def section(self, name: str):
        if name not in {f.name for f in fields(self)}:
            raise InvalidParameter(f"Unknown settings section: {name}")
        return getattr(self, name)

    def merge(self, section: str, partial: Dict[str, Any]) -> Dict[str, float]:
        """
        Clamp `partial` and write it into `section`.
        Returns the clamped values that were applied (only the provided keys).
        Validation happens before any write, so a bad key leaves the record untouched.
        """
        target = self.section(section)
        applied = clamp_params(section, partial)
        for key, value in applied.items():
            setattr(target, key, value)
        return applied

    def merge_all(self, nested: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
        """Merge several sections at once: {"eq": {...}, "reverb": {...}}."""
        for section, partial in (nested or {}).items():
            self.section(section)
            clamp_params(section, partial)
        return {section: self.merge(section, partial) for section, partial in (nested or {}).items()}

    def as_dict(self) -> Dict[str, Dict[str, float]]:
        return asdict(self)

    def copy(self) -> "EffectParameters":
        return copy.deepcopy(self)
