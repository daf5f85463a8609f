"""
Mean-Variance Normalization

A layer that normalizes groups of an N-dimensional blob (per sample and
channel, or per sample across channels) to zero mean and unit variance, with
its analytic backward pass and optional caller-visible mean/variance outputs.
"""

from .errors import MVNError, ConfigurationError, ShapeError, StatisticsAliasWarning
from .blob import Blob, BlobFinder, GaussianFiller, ConstantFiller
from .config import MVNParameter, LayerParameter, layer_param_from_dict, load_layer_param
from .layers import (
    MVNLayer,
    GroupGeometry,
    compute_grouping,
    create_layer,
    register_layer,
    available_engines,
)
from .utils import GradientChecker
from .transforms import MeanVarianceNormalize, mean_variance_normalize

__all__ = [
    'MVNError',
    'ConfigurationError',
    'ShapeError',
    'StatisticsAliasWarning',
    'Blob',
    'BlobFinder',
    'GaussianFiller',
    'ConstantFiller',
    'MVNParameter',
    'LayerParameter',
    'layer_param_from_dict',
    'load_layer_param',
    'MVNLayer',
    'GroupGeometry',
    'compute_grouping',
    'create_layer',
    'register_layer',
    'available_engines',
    'GradientChecker',
    'MeanVarianceNormalize',
    'mean_variance_normalize',
]

__version__ = '1.0.0'
