"""Per-layer engine of a feed-forward neural network trainer (Hogwild SGD, ADADELTA, dropout)."""

from clear_neurons.data_info import DataInfo
from clear_neurons.exceptions import (
    InvalidConfigurationError,
    NeuronsError,
    NumericalInstabilityError,
    UnsupportedOperationError,
)
from clear_neurons.model_info import ModelInfo
from clear_neurons.network import Network
from clear_neurons.neurons import (
    Input,
    Maxout,
    MaxoutDropout,
    Neurons,
    Rectifier,
    RectifierDropout,
    Tanh,
    TanhDropout,
    get_neurons,
)
from clear_neurons.outputs import Linear, Output, Softmax
from clear_neurons.params import Activation, Loss, Parameters

__version__ = "0.1.0"
