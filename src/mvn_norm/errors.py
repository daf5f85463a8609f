"""
Exceptions and warnings raised by the MVN layer.
"""


class MVNError(Exception):
    """Base class for all MVN layer errors."""


class ConfigurationError(MVNError, ValueError):
    """Invalid option combination, detected when the layer is configured."""


class ShapeError(MVNError, ValueError):
    """Blob rank or dimension mismatch, detected at shape negotiation or forward entry."""


class StatisticsAliasWarning(UserWarning):
    """
    An externally bound statistics blob was modified between forward and backward.

    The gradient computed in that case follows the modified value and is no
    longer the true gradient of the forward transform.
    """
