"""
Backward pass of Mean-Variance Normalization.

With variance normalization the input gradient per group is

    dX = (dY - mean(dY) - Y * mean(Y * dY)) / std

which is the batch/instance-norm backward without an affine transform. The
standard deviation is recomputed from the input rather than read back from the
variance buffer, since that buffer may be shared with a caller-owned blob.

Without variance normalization the output gradient is copied to the input
unchanged. This is the exact gradient of the mean subtraction whenever dY has
zero mean per group (for instance dY = Y under a sum-of-squares loss).
"""

import warnings

import torch

from ..errors import ShapeError, StatisticsAliasWarning
from .mvn_forward import MVNBuffers, group_broadcast, group_reduce


def resolve_std(recomputed: torch.Tensor, buffers: MVNBuffers) -> torch.Tensor:
    """
    Pick the standard deviation to divide by in backward.

    For a private variance buffer this is the value recomputed from the input.
    For a bound variance buffer, a value that no longer matches the recomputed
    one means the caller modified it after forward: a StatisticsAliasWarning is
    issued and the caller's value is used, so the gradient follows the
    modification.
    """
    if not buffers.variance_bound:
        return recomputed

    bound = buffers.variance.data.reshape(-1)
    if bound.shape != recomputed.shape:
        raise ShapeError(
            f"Bound variance holds {bound.numel()} values, expected {recomputed.numel()}"
        )
    if not torch.allclose(bound, recomputed, rtol=1e-5, atol=1e-12):
        warnings.warn(
            "The bound variance blob was modified between forward and backward; "
            "the input gradient uses the modified values and is not the gradient "
            "of the forward transform.",
            StatisticsAliasWarning,
            stacklevel=4,
        )
        return bound.clone()
    return recomputed


def backward_reference(
    top_data: torch.Tensor,
    top_diff: torch.Tensor,
    bottom_data: torch.Tensor,
    bottom_diff: torch.Tensor,
    buffers: MVNBuffers,
    normalize_variance: bool,
    eps: float
) -> None:
    """
    Compute `bottom_diff` with ones-vector reductions.

    Only `bottom_diff` and the scratch buffer are written; the mean and variance
    buffers are read-only here.
    """
    num, dim = buffers.geometry.num, buffers.geometry.dim
    y = top_data.reshape(num, dim)
    dy = top_diff.reshape(num, dim)
    x = bottom_data.reshape(num, dim)
    dx = bottom_diff.view(num, dim)
    temp = buffers.temp.data.view(num, dim)
    ones = buffers.sum_multiplier.data.view(dim)

    if not normalize_variance:
        dx.copy_(dy)
        return

    # Y * sum(Y * dY)
    dx.copy_(y * dy)
    dx.copy_(group_broadcast(group_reduce(dx, ones), ones))
    dx.mul_(y)

    # + sum(dY)
    dx.add_(group_broadcast(group_reduce(dy, ones), ones))

    # dY - (...) / dim
    dx.mul_(-1.0 / dim).add_(dy)

    # recompute std from the input
    temp.copy_(x.pow(2))
    ex2 = group_reduce(temp, ones, 1.0 / dim)
    ex = group_reduce(x, ones, 1.0 / dim)
    std = (ex2 - ex.pow(2)).clamp_(min=0).sqrt_().add_(eps)
    std = resolve_std(std, buffers)

    temp.copy_(group_broadcast(std, ones))
    dx.div_(temp)


def backward_fused(
    top_data: torch.Tensor,
    top_diff: torch.Tensor,
    bottom_data: torch.Tensor,
    bottom_diff: torch.Tensor,
    buffers: MVNBuffers,
    normalize_variance: bool,
    eps: float
) -> None:
    """Same gradient as backward_reference, using tensor reductions and broadcasting."""
    num, dim = buffers.geometry.num, buffers.geometry.dim
    y = top_data.reshape(num, dim)
    dy = top_diff.reshape(num, dim)
    x = bottom_data.reshape(num, dim)

    if not normalize_variance:
        bottom_diff.view(num, dim).copy_(dy)
        return

    mean = x.mean(dim=1)
    var = (x * x).mean(dim=1) - mean * mean
    std = resolve_std(var.clamp(min=0).sqrt() + eps, buffers)

    dx = dy - dy.mean(dim=1, keepdim=True) - y * (y * dy).mean(dim=1, keepdim=True)
    dx = dx / std.unsqueeze(1)
    bottom_diff.view(num, dim).copy_(dx)
