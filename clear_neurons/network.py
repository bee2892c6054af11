import logging
from typing import List, Optional, Sequence

import numpy as np

from clear_neurons.data_info import DataInfo
from clear_neurons.model_info import ModelInfo
from clear_neurons.neurons import Input, Neurons, get_neurons
from clear_neurons.outputs import Linear, Output, Softmax
from clear_neurons.params import Loss, Parameters


def cross_entropy_loss(outputs: np.ndarray, target: int) -> float:
    """
    Cross-entropy of one example's Softmax output against its class label.

    Loss = -log(output[target]), clipped to avoid log(0).
    """
    epsilon = 1e-15
    return float(-np.log(np.clip(outputs[int(target)], epsilon, 1.0)))


def mse_loss(outputs: np.ndarray, target) -> float:
    """
    Squared error of one example.

    Classification compares against the one-hot target, regression against the single output.
    """
    if outputs.shape[0] == 1:
        t = np.array([float(target)])
    else:
        t = np.zeros(outputs.shape[0])
        t[int(target)] = 1.0
    return float(np.mean((outputs - t) ** 2))


# Dictionary mapping losses to their per-example monitoring function
LOSS_FUNCTIONS = {
    Loss.CrossEntropy: cross_entropy_loss,
    Loss.MeanSquare: mse_loss,
}


class Network:
    """
    One worker's chain of neuron layers on top of a (possibly shared) ModelInfo.

    The chain is Input -> hidden layers (kind from params.activation) ->
    Softmax for classification or a single Linear unit for regression.
    Several Network objects may be built on the same ModelInfo; they train
    the same weights concurrently without coordination.
    """

    def __init__(
        self,
        params: Parameters,
        dinfo: DataInfo,
        model_info: Optional[ModelInfo] = None,
        training: bool = True,
        n_classes: Optional[int] = None,
    ):
        """
        Builds and wires the layers.

        Args:
            params: Hyperparameters, validated here.
            dinfo: Mapping of raw rows onto input units.
            model_info: Shared model state. If None, a fresh one is created
                        with weights initialized per params.weight_init.
            training: Wire dropout masks and weight-update kernels.
            n_classes: Output units for classification when no model_info is
                       given (defaults to 2). Regression always has one unit.
        """
        self.params = params.validate()
        self.dinfo = dinfo
        self.training = training

        if model_info is None:
            out_units = (n_classes or 2) if params.classification else 1
            units = [dinfo.input_units()] + params.hidden + [out_units]
            model_info = ModelInfo(params, units).randomize_weights()
        else:
            units = model_info.units
            expected = [dinfo.input_units()] + params.hidden
            if list(units[:-1]) != expected:
                raise ValueError(f"ModelInfo units {units} do not match input/hidden layout {expected}")
            if not params.classification and units[-1] != 1:
                raise ValueError(f"Regression needs a single output unit, ModelInfo has {units[-1]}")
        self.model_info = model_info

        self.layers: List[Neurons] = [Input(units[0], dinfo)]
        for h in params.hidden:
            self.layers.append(get_neurons(params.activation, h))
        self.layers.append(Softmax(units[-1]) if params.classification else Linear(1))
        for i, layer in enumerate(self.layers):
            layer.init(self.layers, i, params, model_info, training)

        logging.info(f"Created network with units {units}: "
                     f"{[layer.__class__.__name__ for layer in self.layers]}, training={training}")

    @property
    def input(self) -> Input:
        return self.layers[0]

    @property
    def output(self) -> Output:
        return self.layers[-1]

    def forward(self, seed: int, training: Optional[bool] = None) -> np.ndarray:
        """Forward pass over the current input; returns the output activation (not a copy)."""
        if training is None:
            training = self.training
        for layer in self.layers[1:-1]:
            layer.fprop(seed, training)
        self.output.fprop()
        return self.output.a.raw()

    def backward(self, target):
        """
        Back-propagate the error of the current example and update the weights.

        Clears the hidden error vectors, seeds the gradient at the output
        layer, then runs the hidden layers in reverse order.
        """
        hidden = self.layers[1:-1]
        for layer in hidden:
            layer.e.raw()[:] = 0
        self.output.bprop(target)
        for layer in reversed(hidden):
            layer.bprop()

    def loss(self, target) -> float:
        """Loss of the last forward pass against `target`, for monitoring."""
        return LOSS_FUNCTIONS[self.params.loss](self.output.a.raw(), target)

    def train_row(self, seed: int, nums: Sequence[float], numcat: int, cats: Sequence[int], target) -> float:
        """
        Train on one example: set input, forward, backward, count it.

        Returns:
            The example's loss before the update.
        """
        self.input.set_input(seed, nums, numcat, cats)
        return self._train_current(seed, target)

    def train_raw_row(self, seed: int, data: Sequence[float], target) -> float:
        """Same as train_row() for a raw row (categorical levels first)."""
        self.input.set_input_raw(seed, data)
        return self._train_current(seed, target)

    def _train_current(self, seed: int, target) -> float:
        self.forward(seed, True)
        loss = self.loss(target)
        self.backward(target)
        self.model_info.add_processed(1)
        return loss

    def predict_row(self, seed: int, nums: Sequence[float], numcat: int, cats: Sequence[int]) -> np.ndarray:
        """Score one example without dropout; returns a copy of the output activation."""
        self.input.set_input(seed, nums, numcat, cats, training=False)
        return self.forward(seed, False).copy()

    def predict_raw_row(self, seed: int, data: Sequence[float]) -> np.ndarray:
        self.input.set_input_raw(seed, data, training=False)
        return self.forward(seed, False).copy()

    def summary(self) -> str:
        """
        Generates a text summary of the layer chain and the shared model state.

        Returns:
            A string containing the network summary.
        """
        summary_str = "\n" + "=" * 50 + "\n"
        summary_str += "Neural Network Summary\n"
        summary_str += "=" * 50 + "\n"
        for i, layer in enumerate(self.layers):
            summary_str += f"Layer {i}: {layer.__class__.__name__}\n"
            summary_str += f"  Units: {layer.units}\n"
            if layer.w is not None:
                summary_str += f"  Weight Shape: ({layer.w.rows()}, {layer.w.cols()})\n"
                summary_str += f"  Learning Rate: {layer.params.rate:.6g}\n"
            if layer.dropout is not None:
                summary_str += f"  Dropout Rate: {layer.dropout.rate}\n"
            summary_str += "-" * 50 + "\n"
        summary_str += self.model_info.summary() + "\n"
        return summary_str
