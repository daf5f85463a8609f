"""Tests for the tensor-level MVN helpers."""

import torch

from mvn_norm import MeanVarianceNormalize, mean_variance_normalize


def test_transform_normalizes_groups():
    torch.manual_seed(0)
    x = torch.randn(4, 3, 6, 6, dtype=torch.float64) * 5 + 2
    transform = MeanVarianceNormalize()
    y = transform(x)

    assert y.shape == x.shape
    groups = y.reshape(12, -1)
    assert torch.allclose(groups.mean(dim=1), torch.zeros(12, dtype=torch.float64), atol=1e-10)
    assert torch.allclose(groups.var(dim=1, unbiased=False), torch.ones(12, dtype=torch.float64), atol=1e-8)
    assert transform.last_mean.shape == (4, 3, 1, 1)
    assert transform.last_std.shape == (4, 3, 1, 1)
    assert torch.allclose(transform.last_mean.reshape(-1), x.reshape(12, -1).mean(dim=1))


def test_transform_handles_changing_inputs():
    transform = MeanVarianceNormalize(across_channels=True)
    first = transform(torch.randn(2, 3, 4, 4))
    second = transform(torch.randn(5, 2, 3, dtype=torch.float64))

    assert first.shape == (2, 3, 4, 4)
    assert second.shape == (5, 2, 3)
    assert second.dtype == torch.float64
    assert transform.last_mean.shape == (5, 1, 1)


def test_transform_does_not_modify_input():
    x = torch.randn(2, 2, 3, 3)
    original = x.clone()
    MeanVarianceNormalize()(x)
    assert torch.equal(x, original)


def test_functional_mean_only():
    x = torch.randn(2, 3, 4, 5)
    y, mean, std = mean_variance_normalize(x, normalize_variance=False)
    assert std is None
    assert torch.allclose(y, x - x.mean(dim=(2, 3), keepdim=True), atol=1e-5)
    assert torch.allclose(mean, x.mean(dim=(2, 3), keepdim=True), atol=1e-6)
