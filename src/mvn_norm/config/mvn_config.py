"""
MVN layer configuration.

This module defines the layer parameter dataclasses, builds them from plain
dicts or YAML files, and validates option combinations before the layer
negotiates any shapes.

A YAML layer definition looks like:

    name: mvn1
    type: MVN
    bottom: [data]
    top: [normalized, mean, variance]
    mvn_param:
      normalize_variance: true
      across_channels: false
      mean_blob: mean
      variance_blob: variance
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..errors import ConfigurationError

DEFAULT_EPS = 1e-10
KNOWN_ENGINES = ('default', 'cpu', 'cuda')

# Accepted alternative spellings for the binding options
_MVN_PARAM_ALIASES = {
    'mean_output_binding': 'mean_blob',
    'variance_output_binding': 'variance_blob',
}


@dataclass
class MVNParameter:
    """
    Options of the MVN layer.

    Attributes:
        normalize_variance: Divide by the regularized standard deviation
        across_channels: Use one group per sample instead of per (sample, channel)
        mean_blob: Name of the top blob that receives the computed mean
        variance_blob: Name of the top blob that receives the regularized std
        eps: Regularization constant added to the standard deviation
        engine: 'default', 'cpu' or 'cuda'
    """
    normalize_variance: bool = True
    across_channels: bool = False
    mean_blob: Optional[str] = None
    variance_blob: Optional[str] = None
    eps: float = DEFAULT_EPS
    engine: str = 'default'

    @property
    def has_mean(self) -> bool:
        return self.mean_blob is not None

    @property
    def has_variance(self) -> bool:
        return self.variance_blob is not None


@dataclass
class LayerParameter:
    """
    Layer definition: name, type, blob names and MVN options.

    `top` may be left empty, in which case top blobs are matched by position:
    normalized output first, then mean, then variance.
    """
    name: str = 'mvn'
    type: str = 'MVN'
    bottom: List[str] = field(default_factory=list)
    top: List[str] = field(default_factory=list)
    mvn_param: MVNParameter = field(default_factory=MVNParameter)


def _check_keys(config: Dict[str, Any], allowed: List[str], where: str) -> None:
    unknown = sorted(set(config) - set(allowed))
    if unknown:
        raise ConfigurationError(
            f"Unknown option(s) in {where}: {unknown}. Allowed: {sorted(allowed)}"
        )


def _as_name_list(value: Union[None, str, List[str]], key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigurationError(f"'{key}' must be a string or a list of strings, got {value!r}")


def mvn_param_from_dict(config: Optional[Dict[str, Any]]) -> MVNParameter:
    """
    Build an MVNParameter from a dict.

    Both `mean_blob`/`variance_blob` and `mean_output_binding`/
    `variance_output_binding` are accepted.

    Raises:
        ConfigurationError: On unknown keys or wrongly typed values
    """
    if config is None:
        return MVNParameter()
    if not isinstance(config, dict):
        raise ConfigurationError(f"mvn_param must be a mapping, got {type(config).__name__}")

    config = dict(config)
    for alias, canonical in _MVN_PARAM_ALIASES.items():
        if alias in config:
            if canonical in config:
                raise ConfigurationError(
                    f"Both '{alias}' and '{canonical}' given in mvn_param"
                )
            config[canonical] = config.pop(alias)

    allowed = [f.name for f in fields(MVNParameter)]
    _check_keys(config, allowed, 'mvn_param')

    for key in ('normalize_variance', 'across_channels'):
        if key in config and not isinstance(config[key], bool):
            raise ConfigurationError(f"'{key}' must be a boolean, got {config[key]!r}")
    for key in ('mean_blob', 'variance_blob'):
        if config.get(key) is not None and not isinstance(config[key], str):
            raise ConfigurationError(f"'{key}' must be a blob name, got {config[key]!r}")
    if 'eps' in config:
        try:
            config['eps'] = float(config['eps'])
        except (TypeError, ValueError):
            raise ConfigurationError(f"'eps' must be a number, got {config['eps']!r}")

    return MVNParameter(**config)


def layer_param_from_dict(config: Dict[str, Any]) -> LayerParameter:
    """
    Build a LayerParameter from a dict (for example a parsed YAML document).

    Example:
        >>> param = layer_param_from_dict({
        ...     'name': 'mvn1',
        ...     'top': ['normalized', 'mean'],
        ...     'mvn_param': {'mean_blob': 'mean'},
        ... })
        >>> param.mvn_param.has_mean
        True
    """
    if not isinstance(config, dict):
        raise ConfigurationError(f"Layer config must be a mapping, got {type(config).__name__}")

    allowed = [f.name for f in fields(LayerParameter)]
    _check_keys(config, allowed, 'layer config')

    return LayerParameter(
        name=str(config.get('name', 'mvn')),
        type=str(config.get('type', 'MVN')),
        bottom=_as_name_list(config.get('bottom'), 'bottom'),
        top=_as_name_list(config.get('top'), 'top'),
        mvn_param=mvn_param_from_dict(config.get('mvn_param')),
    )


def load_layer_param(config_path: Union[str, Path], section: Optional[str] = None) -> LayerParameter:
    """
    Load a layer definition from a YAML file.

    Args:
        config_path: Path to the YAML file
        section: Optional top-level key holding the layer definition
            (e.g. 'layer'); the whole document is used when None

    Returns:
        LayerParameter

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If the document is not a valid layer definition
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_file, 'r') as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}
    if section is not None:
        if not isinstance(config, dict) or section not in config:
            raise ConfigurationError(f"Section '{section}' not found in {config_path}")
        config = config[section]

    return layer_param_from_dict(config)


def validate_layer_param(layer_param: LayerParameter) -> None:
    """
    Check the MVN options for internal consistency.

    Exporting the variance without normalizing by it is forbidden: the blob
    would hold a statistic the layer never uses.

    Raises:
        ConfigurationError: On any invalid option combination
    """
    param = layer_param.mvn_param

    if param.has_variance and not param.normalize_variance:
        raise ConfigurationError(
            f"MVN layer '{layer_param.name}' specifies a top blob name for the "
            f"variance blob ('{param.variance_blob}'), but does not normalize for variance."
        )

    if not param.eps > 0:
        raise ConfigurationError(
            f"MVN layer '{layer_param.name}': eps must be strictly positive, got {param.eps}"
        )

    if param.has_mean and param.has_variance and param.mean_blob == param.variance_blob:
        raise ConfigurationError(
            f"MVN layer '{layer_param.name}': mean and variance cannot both be "
            f"bound to '{param.mean_blob}'"
        )

    if layer_param.top:
        for binding in (param.mean_blob, param.variance_blob):
            if binding is not None and binding not in layer_param.top:
                raise ConfigurationError(
                    f"MVN layer '{layer_param.name}': statistics blob '{binding}' is "
                    f"not listed in top {layer_param.top}"
                )
        if len(set(layer_param.top)) != len(layer_param.top):
            raise ConfigurationError(
                f"MVN layer '{layer_param.name}': duplicate top names {layer_param.top}"
            )

    if param.engine not in KNOWN_ENGINES:
        raise ConfigurationError(
            f"MVN layer '{layer_param.name}': unknown engine '{param.engine}'. "
            f"Expected one of {list(KNOWN_ENGINES)}"
        )
