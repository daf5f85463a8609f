"""
Fill blobs with generated values.
"""

from typing import Optional

import torch

from .blob import Blob


class GaussianFiller:
    """
    Fill a blob's data from N(mean, std).

    Args:
        mean: Mean of the distribution
        std: Standard deviation of the distribution
        generator: Optional torch.Generator for reproducible fills
    """

    def __init__(
        self,
        mean: float = 0.0,
        std: float = 1.0,
        generator: Optional[torch.Generator] = None
    ):
        self.mean = mean
        self.std = std
        self.generator = generator

    def fill(self, blob: Blob) -> None:
        values = torch.randn(
            blob.shape, dtype=blob.dtype, generator=self.generator
        ) * self.std + self.mean
        blob.data.copy_(values.to(blob.device))

    def __call__(self, blob: Blob) -> None:
        self.fill(blob)


class ConstantFiller:
    """Fill a blob's data with a single value."""

    def __init__(self, value: float = 0.0):
        self.value = value

    def fill(self, blob: Blob) -> None:
        blob.data.fill_(self.value)

    def __call__(self, blob: Blob) -> None:
        self.fill(blob)
