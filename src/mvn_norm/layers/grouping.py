"""
Partition of the input into normalization groups.
"""

from dataclasses import dataclass
from math import prod
from typing import Sequence, Tuple

from ..errors import ShapeError


@dataclass(frozen=True)
class GroupGeometry:
    """
    How the input is split into groups.

    Attributes:
        num: Number of groups (N, or N*C)
        dim: Number of elements per group
        stats_shape: Shape of the mean/variance blobs, e.g. (N, C, 1, 1)
    """
    num: int
    dim: int
    stats_shape: Tuple[int, ...]


def compute_grouping(shape: Sequence[int], across_channels: bool) -> GroupGeometry:
    """
    Compute group count and group size for an input of the given shape.

    A group is one (sample, channel) pair, or one whole sample when
    `across_channels` is set. Groups are contiguous in memory in both cases.

    Args:
        shape: Input shape (N, C, ...), rank >= 2
        across_channels: Pool all channels of a sample into one group

    Returns:
        GroupGeometry

    Raises:
        ShapeError: If the rank is below 2 or any axis is non-positive

    Example:
        >>> compute_grouping((2, 3, 4, 5), across_channels=False)
        GroupGeometry(num=6, dim=20, stats_shape=(2, 3, 1, 1))
        >>> compute_grouping((2, 3, 4, 5), across_channels=True)
        GroupGeometry(num=2, dim=60, stats_shape=(2, 1, 1, 1))
    """
    shape = tuple(int(s) for s in shape)
    if len(shape) < 2:
        raise ShapeError(f"MVN input must have at least 2 axes (N, C, ...), got shape {shape}")
    if any(s <= 0 for s in shape):
        raise ShapeError(f"MVN input axes must be positive, got shape {shape}")

    n, c = shape[0], shape[1]
    count = prod(shape)
    trailing = (1,) * (len(shape) - 2)

    if across_channels:
        num = n
        stats_shape = (n, 1) + trailing
    else:
        num = n * c
        stats_shape = (n, c) + trailing

    dim = count // num
    if dim < 1 or num * dim != count:
        raise ShapeError(f"Cannot split {count} elements into {num} groups (shape {shape})")

    return GroupGeometry(num=num, dim=dim, stats_shape=stats_shape)
