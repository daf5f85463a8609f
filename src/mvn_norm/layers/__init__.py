"""
MVN layer components.

This package provides:
- Grouping of the input into normalization groups
- Binding of the mean/variance statistics to caller-visible blobs
- Reference and fused forward/backward implementations
- The MVNLayer itself and the layer registry
"""

from .grouping import GroupGeometry, compute_grouping
from .output_binding import MvnBlobOrdering, bind_statistics, allocate_statistics
from .mvn_forward import MVNBuffers, forward_reference, forward_fused
from .mvn_backward import backward_reference, backward_fused, resolve_std
from .engines import Engine, ENGINES, available_engines, select_engine
from .registry import LAYER_REGISTRY, register_layer, create_layer, registered_layer_types
from .mvn_layer import MVNLayer

__all__ = [
    'GroupGeometry',
    'compute_grouping',
    'MvnBlobOrdering',
    'bind_statistics',
    'allocate_statistics',
    'MVNBuffers',
    'forward_reference',
    'forward_fused',
    'backward_reference',
    'backward_fused',
    'resolve_std',
    'Engine',
    'ENGINES',
    'available_engines',
    'select_engine',
    'LAYER_REGISTRY',
    'register_layer',
    'create_layer',
    'registered_layer_types',
    'MVNLayer',
]
