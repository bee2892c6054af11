import numpy as np

from clear_neurons.activations import get_activation
from clear_neurons.exceptions import UnsupportedOperationError
from clear_neurons.neurons import Neurons
from clear_neurons.params import Loss
from clear_neurons.storage import StorageLayout


class Output(Neurons):
    """
    Output layer of the network.

    Forward propagation does not distinguish training from scoring, so
    fprop() takes no seed. bprop() needs the target of the current example.
    """

    has_error = False
    activation_name = None

    def __init__(self, units: int):
        super().__init__(units)
        self.activation_fn = get_activation(self.activation_name)

    def fprop(self, seed=None, training=None):
        raise NotImplementedError

    def bprop(self, target=None):
        raise UnsupportedOperationError("Output layers need the target: call bprop(target).")

    def _schedule(self):
        processed = self.minfo.get_processed_total()
        m = self.momentum(processed)
        r = self.rate(processed) * (1 - m)
        return r, m


class Softmax(Output):
    """Softmax output layer for classification."""

    activation_name = 'softmax'

    def fprop(self, seed=None, training=None):
        self._gemv(self.a, self.w, self.previous.a, self.b, None)
        a = self.a.raw()
        a[:] = self.activation_fn.forward(a)

    def bprop(self, target=None):
        """
        Seed the gradient from the class label and update the last weights.

        CrossEntropy: g = t - y. MeanSquare: g = (t - y) * y * (1 - y).
        """
        if target is None:
            return super().bprop()
        target = int(target)
        if not 0 <= target < self.units:
            raise ValueError(f"Class label {target} out of range for {self.units} output units")
        r, m = self._schedule()
        y = self.a.raw()
        t = np.zeros(self.units, dtype=np.float32)
        t[target] = 1.0
        if self.params.loss == Loss.CrossEntropy:
            g = t - y
        else:
            g = (t - y) * self.activation_fn.backward(y)
        for u in range(self.units):
            self.bprop_row(u, float(g[u]), r, m)


class Linear(Output):
    """Linear output layer for regression, a single unit."""

    activation_name = 'linear'

    def fprop(self, seed=None, training=None):
        if self.w.layout != StorageLayout.DENSE_ROW:
            raise UnsupportedOperationError("Linear output is only implemented for dense row weights.")
        self._gemv(self.a, self.w, self.previous.a, self.b, None)

    def bprop(self, target=None):
        """Mean square error: g = target - a[0]."""
        if target is None:
            return super().bprop()
        if self.params.loss != Loss.MeanSquare:
            raise UnsupportedOperationError("Regression is only implemented for MeanSquare error.")
        r, m = self._schedule()
        g = float(target) - float(self.a.raw()[0])
        self.bprop_row(0, g, r, m)
