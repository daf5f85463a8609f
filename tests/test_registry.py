"""Tests for the layer registry and engine selection."""

import pytest
import torch

from mvn_norm import ConfigurationError, LayerParameter, MVNLayer, MVNParameter, create_layer
from mvn_norm.layers import available_engines, register_layer, registered_layer_types, select_engine
from mvn_norm.layers.registry import LAYER_REGISTRY


def test_mvn_is_registered():
    assert 'MVN' in registered_layer_types()
    layer = create_layer(LayerParameter(type='MVN'))
    assert isinstance(layer, MVNLayer)
    assert layer.type == 'MVN'


def test_create_layer_passes_options():
    layer = create_layer(LayerParameter(), verbose=True)
    assert layer.verbose is True


def test_unknown_layer_type():
    with pytest.raises(ConfigurationError, match="Unknown layer type"):
        create_layer(LayerParameter(type='LRN'))


def test_register_custom_layer():
    @register_layer('TestIdentity')
    class IdentityLayer:
        def __init__(self, layer_param):
            self.layer_param = layer_param

    try:
        layer = create_layer(LayerParameter(type='TestIdentity'))
        assert isinstance(layer, IdentityLayer)
        with pytest.raises(ValueError):
            register_layer('TestIdentity')(IdentityLayer)
    finally:
        LAYER_REGISTRY.pop('TestIdentity', None)


def test_cpu_engine_always_available():
    assert 'cpu' in available_engines()
    assert select_engine('default').name == 'cpu'
    assert select_engine('cpu').device_type is None


def test_unknown_engine():
    with pytest.raises(ConfigurationError):
        select_engine('opencl')


@pytest.mark.skipif(torch.cuda.is_available(), reason="CUDA is available")
def test_cuda_engine_unavailable_without_cuda():
    assert 'cuda' not in available_engines()
    with pytest.raises(ConfigurationError, match="not available"):
        select_engine('cuda')
    layer = MVNLayer(LayerParameter(mvn_param=MVNParameter(engine='cuda')))
    with pytest.raises(ConfigurationError):
        layer.configure()
