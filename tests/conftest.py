"""Shared fixtures for the neuron-layer tests."""

from typing import List, Optional, Sequence

import numpy as np
import pytest

from clear_neurons.model_info import ModelInfo
from clear_neurons.neurons import Input, Neurons
from clear_neurons.params import Parameters


def _wire(layers: List[Neurons], params: Parameters, minfo: Optional[ModelInfo], training: bool = True) -> List[Neurons]:
    for i, layer in enumerate(layers):
        layer.init(layers, i, params, minfo, training)
    return layers


def _set_weights(minfo: ModelInfo, i: int, values: Sequence[Sequence[float]]):
    minfo.get_weights(i).raw()[:] = np.asarray(values, dtype=np.float32).ravel()


@pytest.fixture
def wire():
    """Call init() on every layer of a chain, input first."""
    return _wire


@pytest.fixture
def set_weights():
    """Overwrite connection i's weights with a (rows, cols) nested list."""
    return _set_weights


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def plain_params() -> Parameters:
    """Plain SGD: no adaptive rate, no momentum, no annealing, no dropout."""
    return Parameters(
        hidden=[3],
        activation='Tanh',
        adaptive_rate=False,
        rate=0.1,
        rate_annealing=0.0,
        seed=7,
    )


@pytest.fixture
def input_layer_factory():
    def make(units: int, params: Parameters, training: bool = True) -> Input:
        layer = Input(units)
        layer.init([layer], 0, params, None, training)
        return layer
    return make
