"""Configuration parsing and validation for the MVN layer."""

from .mvn_config import (
    DEFAULT_EPS,
    KNOWN_ENGINES,
    MVNParameter,
    LayerParameter,
    mvn_param_from_dict,
    layer_param_from_dict,
    load_layer_param,
    validate_layer_param,
)

__all__ = [
    'DEFAULT_EPS',
    'KNOWN_ENGINES',
    'MVNParameter',
    'LayerParameter',
    'mvn_param_from_dict',
    'layer_param_from_dict',
    'load_layer_param',
    'validate_layer_param',
]
