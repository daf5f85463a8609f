"""
Layer registry: maps layer type names to factories.
"""

from typing import Callable, Dict, List

from ..config import LayerParameter
from ..errors import ConfigurationError

LAYER_REGISTRY: Dict[str, Callable[..., object]] = {}


def register_layer(type_name: str) -> Callable:
    """
    Class decorator registering a layer under `type_name`.

    Example:
        >>> @register_layer('MVN')
        ... class MVNLayer:
        ...     ...
    """
    def decorator(factory):
        if type_name in LAYER_REGISTRY:
            raise ValueError(f"Layer type '{type_name}' already registered")
        LAYER_REGISTRY[type_name] = factory
        return factory
    return decorator


def create_layer(layer_param: LayerParameter, **kwargs):
    """
    Instantiate the layer registered for `layer_param.type`.

    Raises:
        ConfigurationError: If no layer is registered under that type
    """
    factory = LAYER_REGISTRY.get(layer_param.type)
    if factory is None:
        raise ConfigurationError(
            f"Unknown layer type: '{layer_param.type}' "
            f"(known types: {registered_layer_types()})"
        )
    return factory(layer_param, **kwargs)


def registered_layer_types() -> List[str]:
    return sorted(LAYER_REGISTRY)
