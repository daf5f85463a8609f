"""
Tensor-level Mean-Variance Normalization.

These helpers wrap MVNLayer for callers that work with plain tensors rather
than blobs. Each call copies the input into a blob and runs the layer forward.
"""

from typing import Optional, Tuple

import torch

from .blob import Blob
from .config import LayerParameter, MVNParameter
from .layers import MVNLayer


class MeanVarianceNormalize:
    """
    Normalize each (sample, channel) group, or each sample, of a tensor.

    Keeps one layer instance, so repeated calls with the same input shape reuse
    the negotiated buffers. The mean and regularized std of the last call are
    available as `last_mean` and `last_std`.

    Args:
        normalize_variance: Divide by the regularized standard deviation
        across_channels: Normalize each sample as a single group
        eps: Regularization constant added to the standard deviation

    Example:
        >>> transform = MeanVarianceNormalize(across_channels=True)
        >>> normalized = transform(torch.randn(8, 3, 32, 32))
    """

    def __init__(
        self,
        normalize_variance: bool = True,
        across_channels: bool = False,
        eps: float = 1e-10
    ):
        self.layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(
            normalize_variance=normalize_variance,
            across_channels=across_channels,
            eps=eps,
        )))
        self.layer.configure()
        self._bottom: Optional[Blob] = None
        self._top: Optional[Blob] = None

    def __call__(self, tensor: torch.Tensor) -> torch.Tensor:
        """
        Apply normalization to the tensor.

        Args:
            tensor: Input of shape (N, C, ...)

        Returns:
            Normalized tensor of the same shape
        """
        if (self._bottom is None or self._bottom.dtype != tensor.dtype
                or self._bottom.device != tensor.device):
            self._bottom = Blob(dtype=tensor.dtype, device=tensor.device)
            self._top = Blob(dtype=tensor.dtype, device=tensor.device)

        self._bottom.reshape(*tensor.shape)
        self._bottom.data.copy_(tensor)
        self.layer.forward([self._bottom], [self._top])
        return self._top.data.clone()

    @property
    def last_mean(self) -> Optional[torch.Tensor]:
        mean = self.layer.mean
        return None if mean is None or self.layer.buffers is None else mean.data.clone()

    @property
    def last_std(self) -> Optional[torch.Tensor]:
        if not self.layer.param.normalize_variance or self.layer.buffers is None:
            return None
        return self.layer.variance.data.clone()


# Functional API (simpler for quick use)
def mean_variance_normalize(
    tensor: torch.Tensor,
    normalize_variance: bool = True,
    across_channels: bool = False,
    eps: float = 1e-10
) -> Tuple[torch.Tensor, torch.Tensor, Optional[torch.Tensor]]:
    """
    Functional version of MeanVarianceNormalize.

    Args:
        tensor: Input of shape (N, C, ...)
        normalize_variance: Divide by the regularized standard deviation
        across_channels: Normalize each sample as a single group
        eps: Regularization constant

    Returns:
        (normalized, mean, std); std is None when normalize_variance is False
    """
    transform = MeanVarianceNormalize(normalize_variance, across_channels, eps)
    normalized = transform(tensor)
    return normalized, transform.last_mean, transform.last_std
