"""
Tests for exposing the mean and variance as top blobs.
"""

import numpy as np
import pytest
import torch

from mvn_norm import (
    Blob,
    BlobFinder,
    GradientChecker,
    LayerParameter,
    MVNLayer,
    MVNParameter,
    ShapeError,
    StatisticsAliasWarning,
    layer_param_from_dict,
)

K_ERROR_BOUND = 1e-3


def add_top(name, finder, top, dtype=torch.float32):
    blob = Blob(dtype=dtype)
    finder.add_blob(name, blob)
    top.append(blob)
    return blob


def input_statistics(bottom: Blob, num: int):
    x = bottom.data.numpy().astype(np.float64).reshape(num, -1)
    return x.mean(axis=1), np.sqrt(x.var(axis=1)) + 1e-10


def test_forward_mean_and_variance_in_top_blobs(bottom_blob):
    finder, top = BlobFinder(), []
    normalized = add_top('normalized', finder, top)
    variance = add_top('variance', finder, top)
    mean = add_top('mean', finder, top)

    layer_param = layer_param_from_dict({
        'top': ['normalized', 'variance', 'mean'],
        'mvn_param': {'mean_blob': 'mean', 'variance_blob': 'variance', 'normalize_variance': True},
    })
    layer = MVNLayer(layer_param)
    layer.setup([bottom_blob], top, finder)
    layer.forward([bottom_blob], top)

    assert normalized.shape == (2, 3, 4, 5)
    assert mean.shape == (2, 3, 1, 1)
    assert variance.shape == (2, 3, 1, 1)
    assert layer.mean.shares_data_with(mean)
    assert layer.variance.shares_data_with(variance)
    assert layer.mean.shares_diff_with(mean)

    expected_mean, expected_std = input_statistics(bottom_blob, num=6)
    np.testing.assert_allclose(mean.data.numpy().reshape(-1), expected_mean, atol=1e-5)
    np.testing.assert_allclose(variance.data.numpy().reshape(-1), expected_std, atol=1e-5)

    out = normalized.data.numpy().astype(np.float64).reshape(6, 20)
    np.testing.assert_allclose(out.mean(axis=1), 0.0, atol=K_ERROR_BOUND)
    np.testing.assert_allclose(out.var(axis=1), 1.0, atol=K_ERROR_BOUND)


def test_forward_mean_in_top_blobs(bottom_blob):
    finder, top = BlobFinder(), []
    normalized = add_top('normalized', finder, top)
    mean = add_top('mean', finder, top)

    layer_param = LayerParameter(
        top=['normalized', 'mean'],
        mvn_param=MVNParameter(mean_blob='mean'),
    )
    layer = MVNLayer(layer_param)
    layer.setup([bottom_blob], top, finder)
    layer.forward([bottom_blob], top)

    expected_mean, _ = input_statistics(bottom_blob, num=6)
    np.testing.assert_allclose(mean.data.numpy().reshape(-1), expected_mean, atol=1e-5)
    assert not layer.variance.shares_data_with(mean)
    assert not layer.variance.shares_data_with(normalized)


def test_bound_statistics_across_channels(bottom_blob):
    top = [Blob(), Blob(), Blob()]
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(
        across_channels=True, mean_blob='mean', variance_blob='variance'
    )))
    layer.setup([bottom_blob], top)
    layer.forward([bottom_blob], top)

    # Positional order without top names: output, mean, variance
    assert top[0].shape == (2, 3, 4, 5)
    assert top[1].shape == (2, 1, 1, 1)
    assert top[2].shape == (2, 1, 1, 1)
    expected_mean, expected_std = input_statistics(bottom_blob, num=2)
    np.testing.assert_allclose(top[1].data.numpy().reshape(-1), expected_mean, atol=1e-5)
    np.testing.assert_allclose(top[2].data.numpy().reshape(-1), expected_std, atol=1e-5)


def test_rebinding_to_new_tops_keeps_old_tops(bottom_blob):
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(mean_blob='mean')))
    first = [Blob(), Blob()]
    layer.setup([bottom_blob], first)
    layer.forward([bottom_blob], first)
    first_mean = first[1].data.clone()

    larger = Blob(4, 5, 3, 2)
    larger.data.normal_()
    second = [Blob(), Blob()]
    layer.forward([larger], second)

    assert torch.equal(first[1].data, first_mean)
    assert first[1].shape == (2, 3, 1, 1)
    assert not layer.mean.shares_data_with(first[1])
    assert layer.mean.shares_data_with(second[1])
    expected_mean, _ = input_statistics(larger, num=20)
    np.testing.assert_allclose(second[1].data.numpy().reshape(-1), expected_mean, atol=1e-5)


def test_top_order_resolved_by_name_without_finder(bottom_blob):
    top = [Blob(), Blob()]
    layer = MVNLayer(LayerParameter(
        top=['mean', 'normalized'],
        mvn_param=MVNParameter(mean_blob='mean'),
    ))
    layer.setup([bottom_blob], top)
    layer.forward([bottom_blob], top)

    assert top[0].shape == (2, 3, 1, 1)
    assert top[1].shape == (2, 3, 4, 5)
    assert layer.mean.shares_data_with(top[0])


def test_private_statistics_are_not_shared(bottom_blob):
    top = [Blob()]
    layer = MVNLayer()
    layer.setup([bottom_blob], top)
    layer.forward([bottom_blob], top)
    assert not layer.mean.shares_data_with(top[0])
    assert not layer.variance.shares_data_with(top[0])
    assert not layer.buffers.variance_bound


def test_wrong_number_of_top_blobs(bottom_blob):
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(mean_blob='mean')))
    with pytest.raises(ShapeError, match="expects 2 top"):
        layer.setup([bottom_blob], [Blob()])
    with pytest.raises(ShapeError):
        MVNLayer().setup([bottom_blob], [Blob(), Blob()])


def test_finder_blob_must_be_in_top(bottom_blob):
    finder = BlobFinder()
    finder.add_blob('mean', Blob())
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(mean_blob='mean')))
    with pytest.raises(ShapeError, match="not in the top vector"):
        layer.setup([bottom_blob], [Blob(), Blob()], finder)


def test_bound_blob_dtype_must_match(bottom_blob):
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(mean_blob='mean')))
    with pytest.raises(ShapeError):
        layer.setup([bottom_blob], [Blob(), Blob(dtype=torch.float64)])


def test_binding_survives_shape_change(bottom_blob):
    top = [Blob(), Blob()]
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(mean_blob='mean')))
    layer.setup([bottom_blob], top)
    layer.forward([bottom_blob], top)

    bottom_blob.reshape(4, 5, 3, 2)
    bottom_blob.data.normal_()
    layer.forward([bottom_blob], top)

    assert top[1].shape == (4, 5, 1, 1)
    assert layer.mean.shares_data_with(top[1])
    expected_mean, _ = input_statistics(bottom_blob, num=20)
    np.testing.assert_allclose(top[1].data.numpy().reshape(-1), expected_mean, atol=1e-5)


def test_gradient_with_bound_statistics(bottom_blob_double):
    torch.manual_seed(5)
    top = [Blob(dtype=torch.float64), Blob(dtype=torch.float64), Blob(dtype=torch.float64)]
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(
        mean_blob='mean', variance_blob='variance'
    )))
    checker = GradientChecker(1e-2, 1e-3)
    weights = [torch.randn(2, 3, 4, 5, dtype=torch.float64)]
    result = checker.check_gradient(layer, [bottom_blob_double], top,
                                    top_indices=[0], top_weights=weights)
    assert result.passed


def test_mutating_bound_variance_changes_gradient(bottom_blob_double):
    torch.manual_seed(9)
    finder, top = BlobFinder(), []
    normalized = add_top('normalized', finder, top, torch.float64)
    mean = add_top('mean', finder, top, torch.float64)
    variance = add_top('variance', finder, top, torch.float64)

    layer = MVNLayer(LayerParameter(
        top=['normalized', 'mean', 'variance'],
        mvn_param=MVNParameter(mean_blob='mean', variance_blob='variance'),
    ))
    layer.setup([bottom_blob_double], top, finder)
    layer.forward([bottom_blob_double], top)
    normalized.diff.copy_(torch.randn(2, 3, 4, 5, dtype=torch.float64))

    layer.backward(top, [True], [bottom_blob_double])
    clean_gradient = bottom_blob_double.diff.clone()

    # Mutating the mean does not enter the gradient
    mean.data.add_(10.0)
    layer.backward(top, [True], [bottom_blob_double])
    assert torch.allclose(bottom_blob_double.diff, clean_gradient)

    variance.data.mul_(2.0)
    with pytest.warns(StatisticsAliasWarning):
        layer.backward(top, [True], [bottom_blob_double])
    assert torch.allclose(bottom_blob_double.diff, clean_gradient / 2.0, atol=1e-12)


def test_variance_top_diff_is_shared(bottom_blob):
    top = [Blob(), Blob(), Blob()]
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(
        mean_blob='mean', variance_blob='variance'
    )))
    layer.setup([bottom_blob], top)
    top[2].diff.fill_(3.0)
    assert torch.all(layer.variance.diff == 3.0)
