"""
Effect parameter schema, clamping and the settings record.
Default values: single source is schema.PARAM_SCHEMA.
"""
from studio.params.schema import PARAM_SCHEMA, default_settings
from studio.params.clamp import clamp_params
from studio.params.settings import EffectParameters

__all__ = ["PARAM_SCHEMA", "default_settings", "clamp_params", "EffectParameters"]
