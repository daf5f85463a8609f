"""
Forward pass of Mean-Variance Normalization.

Each group of `dim` contiguous elements is normalized by its own mean and,
optionally, its regularized standard deviation:

    mean     = E[X]
    variance = max(E[X^2] - E[X]^2, 0)
    std      = sqrt(variance) + eps
    Y        = (X - mean) / std

The reference implementation reduces a (num, dim) view of the input against
an all-ones vector (matrix-vector product) and broadcasts per-group values back
with an outer product against the same vector. The fused implementation uses
tensor reductions and broadcasting directly; both produce the same values
within floating-point tolerance.
"""

from dataclasses import dataclass

import torch

from ..blob import Blob
from .grouping import GroupGeometry


@dataclass
class MVNBuffers:
    """
    Working buffers of one MVN layer instance.

    Attributes:
        geometry: Group count, group size and statistics shape
        mean: Per-group mean (possibly aliased to a top blob)
        variance: Per-group regularized std (possibly aliased to a top blob)
        temp: Input-shaped scratch buffer
        sum_multiplier: All-ones vector of length `geometry.dim`
        variance_bound: True when `variance` shares storage with a top blob
    """
    geometry: GroupGeometry
    mean: Blob
    variance: Blob
    temp: Blob
    sum_multiplier: Blob
    variance_bound: bool = False


def group_reduce(values: torch.Tensor, sum_multiplier: torch.Tensor, alpha: float = 1.0) -> torch.Tensor:
    """Sum each row of a (num, dim) tensor via a matrix-vector product, scaled by alpha."""
    return torch.mv(values, sum_multiplier) * alpha


def group_broadcast(stats: torch.Tensor, sum_multiplier: torch.Tensor) -> torch.Tensor:
    """Replicate one value per group across the group's `dim` elements."""
    return torch.outer(stats, sum_multiplier)


def forward_reference(
    bottom_data: torch.Tensor,
    top_data: torch.Tensor,
    buffers: MVNBuffers,
    normalize_variance: bool,
    eps: float
) -> None:
    """
    Normalize `bottom_data` into `top_data` with ones-vector reductions.

    Writes the mean buffer always, the variance buffer (as regularized std) only
    when `normalize_variance` is set, and the scratch buffer.
    """
    num, dim = buffers.geometry.num, buffers.geometry.dim
    x = bottom_data.reshape(num, dim)
    y = top_data.view(num, dim)
    temp = buffers.temp.data.view(num, dim)
    ones = buffers.sum_multiplier.data.view(dim)
    mean = buffers.mean.data.view(num)

    mean.copy_(group_reduce(x, ones, 1.0 / dim))  # EX

    if normalize_variance:
        variance = buffers.variance.data.view(num)

        # var(X) = E(X^2) - (EX)^2
        temp.copy_(x.pow(2))
        variance.copy_(group_reduce(temp, ones, 1.0 / dim))  # E(X^2)
        variance.sub_(mean.pow(2))
        # cancellation can leave tiny negatives for near-constant groups
        variance.clamp_(min=0)

        # subtract mean
        temp.copy_(group_broadcast(mean, ones))
        y.copy_(x - temp)

        # divide by regularized std
        variance.sqrt_().add_(eps)
        temp.copy_(group_broadcast(variance, ones))
        y.div_(temp)
    else:
        temp.copy_(group_broadcast(mean, ones))
        y.copy_(x - temp)


def forward_fused(
    bottom_data: torch.Tensor,
    top_data: torch.Tensor,
    buffers: MVNBuffers,
    normalize_variance: bool,
    eps: float
) -> None:
    """Same transform as forward_reference, using tensor reductions and broadcasting."""
    num, dim = buffers.geometry.num, buffers.geometry.dim
    x = bottom_data.reshape(num, dim)
    y = top_data.view(num, dim)
    mean = buffers.mean.data.view(num)

    mean.copy_(x.mean(dim=1))

    if not normalize_variance:
        y.copy_(x - mean.unsqueeze(1))
        return

    std = buffers.variance.data.view(num)
    var = (x * x).mean(dim=1) - mean * mean
    std.copy_(var.clamp(min=0).sqrt() + eps)
    y.copy_((x - mean.unsqueeze(1)) / std.unsqueeze(1))
