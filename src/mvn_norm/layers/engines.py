"""
Compute engines for the MVN layer.

The 'cpu' engine runs the reference algorithm and is always available. The
'cuda' engine runs the fused algorithm on CUDA blobs and can only be selected
when torch reports a usable CUDA device.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import torch

from ..errors import ConfigurationError
from .mvn_backward import backward_fused, backward_reference
from .mvn_forward import forward_fused, forward_reference


@dataclass(frozen=True)
class Engine:
    """
    A forward/backward implementation pair.

    Attributes:
        name: Engine name used in the layer configuration
        forward: Forward function
        backward: Backward function
        is_available: Returns True when the engine can run on this machine
        device_type: Device type the blobs must live on, or None for any
    """
    name: str
    forward: Callable
    backward: Callable
    is_available: Callable[[], bool]
    device_type: Optional[str] = None


ENGINES: Dict[str, Engine] = {
    'cpu': Engine(
        name='cpu',
        forward=forward_reference,
        backward=backward_reference,
        is_available=lambda: True,
    ),
    'cuda': Engine(
        name='cuda',
        forward=forward_fused,
        backward=backward_fused,
        is_available=torch.cuda.is_available,
        device_type='cuda',
    ),
}


def available_engines() -> List[str]:
    """Names of the engines that can run here."""
    return [name for name, engine in ENGINES.items() if engine.is_available()]


def select_engine(name: str = 'default') -> Engine:
    """
    Resolve an engine name from the configuration.

    'default' selects the cpu reference engine.

    Raises:
        ConfigurationError: If the engine is unknown or not available
    """
    if name == 'default':
        name = 'cpu'
    if name not in ENGINES:
        raise ConfigurationError(
            f"Unknown MVN engine '{name}'. Known engines: {list(ENGINES)}"
        )
    engine = ENGINES[name]
    if not engine.is_available():
        raise ConfigurationError(
            f"MVN engine '{name}' is not available on this machine. "
            f"Available engines: {available_engines()}"
        )
    return engine
