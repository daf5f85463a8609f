"""Tests for the split of the input into normalization groups."""

import pytest

from mvn_norm import ShapeError, compute_grouping


def test_per_channel_groups():
    geometry = compute_grouping((2, 3, 4, 5), across_channels=False)
    assert geometry.num == 6
    assert geometry.dim == 20
    assert geometry.stats_shape == (2, 3, 1, 1)


def test_across_channel_groups():
    geometry = compute_grouping((2, 3, 4, 5), across_channels=True)
    assert geometry.num == 2
    assert geometry.dim == 60
    assert geometry.stats_shape == (2, 1, 1, 1)


def test_group_size_one():
    geometry = compute_grouping((2, 3, 1, 1), across_channels=False)
    assert geometry.num == 6
    assert geometry.dim == 1


def test_other_ranks():
    geometry = compute_grouping((4, 8, 10), across_channels=False)
    assert (geometry.num, geometry.dim) == (32, 10)
    assert geometry.stats_shape == (4, 8, 1)

    geometry = compute_grouping((4, 8), across_channels=True)
    assert (geometry.num, geometry.dim) == (4, 8)
    assert geometry.stats_shape == (4, 1)


def test_groups_cover_every_element():
    for shape in [(1, 1, 1, 1), (3, 2, 7, 1), (5, 4, 3, 2)]:
        for across in (False, True):
            geometry = compute_grouping(shape, across)
            assert geometry.num * geometry.dim == shape[0] * shape[1] * shape[2] * shape[3]


@pytest.mark.parametrize("shape", [(), (6,), (2, 0, 4, 5), (2, 3, -1, 5)])
def test_invalid_shapes(shape):
    with pytest.raises(ShapeError):
        compute_grouping(shape, across_channels=False)
