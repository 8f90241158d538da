"""
Tests for studio/params: schema defaults, clamping, EffectParameters merge.
Run from project root: python -m pytest tests/test_params.py -v
Or: python tests/test_params.py
"""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from studio.core.errors import InvalidParameter
from studio.params import PARAM_SCHEMA, EffectParameters, clamp_params, default_settings


# -----------------------------------------------------------------------------
# Schema defaults
# -----------------------------------------------------------------------------

def test_defaults_match_schema():
    """EffectParameters() starts from the schema defaults."""
    settings = EffectParameters()
    assert settings.as_dict() == default_settings()
    assert settings.volume.beat == 0.85
    assert settings.volume.master == 0.9
    assert settings.compressor.threshold == -18.0
    assert settings.compressor.knee == 30.0
    assert settings.compressor.ratio == 3.0
    assert settings.delay.time == 0.28
    assert settings.reverb.duration == 2.5
    assert settings.reverb.mix == 0.3


def test_eq_defaults_come_from_schema():
    """Every section, EQ included, reads its defaults from PARAM_SCHEMA."""
    for key in ("low", "mid", "high"):
        assert getattr(EffectParameters().eq, key) == PARAM_SCHEMA["eq"][key]["default"]
    assert EffectParameters().as_dict()["eq"] == default_settings()["eq"]


def test_every_default_within_range():
    for section, entries in PARAM_SCHEMA.items():
        for key, entry in entries.items():
            assert entry["min"] <= entry["default"] <= entry["max"], f"{section}.{key}"


# -----------------------------------------------------------------------------
# Clamping
# -----------------------------------------------------------------------------

def test_clamp_to_range():
    assert clamp_params("eq", {"low": 20.0, "high": -40.0}) == {"low": 12.0, "high": -12.0}
    assert clamp_params("compressor", {"ratio": 0.5}) == {"ratio": 1.0}
    assert clamp_params("delay", {"feedback": 2.0}) == {"feedback": 0.95}
    assert clamp_params("reverb", {"duration": 0.1}) == {"duration": 0.5}


def test_clamp_drops_none_and_keeps_in_range():
    assert clamp_params("volume", {"beat": None, "vocal": 1.5}) == {"vocal": 1.5}


def test_clamp_accepts_numeric_strings():
    assert clamp_params("volume", {"master": "0.5"}) == {"master": 0.5}


def test_clamp_rejects_unknown_key():
    with pytest.raises(InvalidParameter):
        clamp_params("eq", {"presence": 3.0})


def test_clamp_rejects_unknown_section():
    with pytest.raises(InvalidParameter):
        clamp_params("chorus", {"mix": 0.5})


def test_clamp_rejects_non_numeric():
    with pytest.raises(InvalidParameter):
        clamp_params("eq", {"low": "loud"})
    with pytest.raises(InvalidParameter):
        clamp_params("eq", {"low": True})
    with pytest.raises(InvalidParameter):
        clamp_params("eq", {"low": float("nan")})


# -----------------------------------------------------------------------------
# Merge
# -----------------------------------------------------------------------------

def test_merge_returns_applied_values():
    settings = EffectParameters()
    applied = settings.merge("delay", {"mix": 5.0, "time": 0.5})
    assert applied == {"mix": 1.2, "time": 0.5}
    assert settings.delay.mix == 1.2
    assert settings.delay.time == 0.5
    # Untouched key keeps its value
    assert settings.delay.feedback == 0.35


def test_merge_bad_key_leaves_record_untouched():
    settings = EffectParameters()
    with pytest.raises(InvalidParameter):
        settings.merge("eq", {"low": 3.0, "bogus": 1.0})
    assert settings.eq.low == 0.0


def test_merge_all_validates_every_section_first():
    settings = EffectParameters()
    with pytest.raises(InvalidParameter):
        settings.merge_all({"eq": {"low": 3.0}, "reverb": {"size": 2.0}})
    assert settings.eq.low == 0.0

    applied = settings.merge_all({"eq": {"low": 3.0}, "reverb": {"mix": 0.5}})
    assert applied == {"eq": {"low": 3.0}, "reverb": {"mix": 0.5}}


def test_copy_is_independent():
    settings = EffectParameters()
    snapshot = settings.copy()
    settings.merge("volume", {"beat": 0.2})
    assert snapshot.volume.beat == 0.85


if __name__ == "__main__":
    test_defaults_match_schema()
    test_every_default_within_range()
    test_clamp_to_range()
    test_clamp_drops_none_and_keeps_in_range()
    test_clamp_accepts_numeric_strings()
    test_merge_returns_applied_values()
    test_copy_is_independent()
    print("All params tests passed.")
