"""
Neuron layers of a feed-forward network and their update rule.

A layer ("Neurons") is cheap: every worker builds its own chain of layer
objects for a training pass, with private activation and error vectors. The
weights, biases and optimizer history are NOT owned by the layer; init()
binds views into the shared ModelInfo arena, and bprop() updates them in
place without locking (see ModelInfo).

Per training example the outer loop calls:
    Input.set_input(...)                   -> input activation
    layer.fprop(seed, training)            -> for each hidden layer, in order
    output.fprop(); output.bprop(target)   -> seed the gradient, update last weights
    layer.bprop()                          -> for each hidden layer, in reverse

Each layer reads its predecessor's activation and writes its error
contribution into the predecessor's error vector.
"""

import logging
import math
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from clear_neurons.activations import ActivationFunction, get_activation
from clear_neurons.data_info import DataInfo
from clear_neurons.dropout import Dropout
from clear_neurons.exceptions import InvalidConfigurationError, UnsupportedOperationError
from clear_neurons.kernels import select_gemv
from clear_neurons.model_info import ModelInfo
from clear_neurons.params import Activation, Parameters
from clear_neurons.storage import DenseVector, SparseVector, StorageLayout, Vector


class Neurons:
    """
    Base class of all neuron layers.

    Key Attributes:
        units (int): Number of neurons in this layer.
        params (Parameters): Per-layer snapshot of the hyperparameters, learning
                             rate already decayed by depth.
        a (Vector): Activation of the current example (dense, or sparse for the
                    input layer in sparse mode).
        e (DenseVector): Back-propagated error dE/da, None for input and output layers.
        previous (Neurons): Layer feeding this one, None for the input layer.
        minfo (ModelInfo): Shared model state.
        w, b: Views of the incoming weights (rows = this layer's units) and biases.
        wm, bm: Momentum views, or None.
        ada: ADADELTA accumulator view (2 floats per weight), or None.
        dropout (Dropout): Dropout mask, only while training dropout-capable layers.
    """

    supports_dropout = False
    has_error = True

    def __init__(self, units: int):
        self.units = units
        self.index: Optional[int] = None
        self.params: Optional[Parameters] = None
        self.activation_fn: Optional[ActivationFunction] = None
        self.a: Optional[Vector] = None
        self.e: Optional[DenseVector] = None
        self.previous: Optional["Neurons"] = None
        self.minfo: Optional[ModelInfo] = None
        self.w = None
        self.b: Optional[DenseVector] = None
        self.wm = None
        self.bm: Optional[DenseVector] = None
        self.ada: Optional[np.ndarray] = None
        self.dropout: Optional[Dropout] = None
        self._gemv = None
        self._bprop_kernel = None

    # --- Lifecycle ---

    def init(self, neurons: Sequence["Neurons"], index: int, params: Parameters,
             minfo: Optional[ModelInfo], training: bool):
        """
        Wire this layer into the chain and bind it to the shared model state.

        Args:
            neurons: All layers of the chain, input first.
            index: Position of this layer in `neurons`.
            params: Global hyperparameters (copied, never modified).
            minfo: Shared weights/biases/history. May be None for the input layer.
            training: Whether dropout masks and weight-update kernels are needed.

        Raises:
            InvalidConfigurationError: Inconsistent optimizer state or ADADELTA
                                       parameters, or mismatched shapes.
            UnsupportedOperationError: No kernel for the storage combination.
        """
        self.index = index
        self.params = params.clone()
        self.params.rate *= math.pow(self.params.rate_decay, index - 1)
        self._allocate_vectors()

        if training and self.supports_dropout:
            self.dropout = Dropout(self.units, self._dropout_ratio(index))

        if not isinstance(self, Input):
            self.previous = neurons[index - 1]
            self.minfo = minfo
            self.w = minfo.get_weights(index - 1)
            self.b = minfo.get_biases(index - 1)
            if minfo.has_momenta():
                self.wm = minfo.get_weights_momenta(index - 1)
                self.bm = minfo.get_biases_momenta(index - 1)
            if minfo.ada_delta():
                self.ada = minfo.get_ada(index - 1)
            if self.w.rows() != self.units or self.w.cols() != self.previous.units:
                raise InvalidConfigurationError(
                    f"Layer {index}: weights are {self.w.rows()}x{self.w.cols()}, "
                    f"expected {self.units}x{self.previous.units}"
                )
            input_layout = self.previous.activation_layout()
            self._gemv = select_gemv(self.w.layout, input_layout)
            if training:
                self._bprop_kernel = select_bprop(self.w.layout, input_layout)

        self.sanity_check(training)
        logging.debug(
            f"Layer #{index} wired: {self.__class__.__name__}, units={self.units}, "
            f"rate={self.params.rate:.6g}, dropout={self.dropout is not None}, "
            f"gemv={getattr(self._gemv, '__name__', None)}"
        )

    def _allocate_vectors(self):
        self.a = DenseVector(self.units)
        if self.has_error:
            self.e = DenseVector(self.units)

    def _dropout_ratio(self, index: int) -> float:
        ratios = self.params.hidden_dropout_ratios
        if not ratios:
            return 0.5
        return ratios[index - 1]

    def activation_layout(self) -> StorageLayout:
        """Storage layout of `a` as seen by the next layer."""
        return StorageLayout.DENSE

    def sanity_check(self, training: bool):
        """Check the optimizer-state invariants: momenta XOR ADADELTA XOR neither."""
        if isinstance(self, Input):
            assert self.previous is None
            assert not training or self.dropout is not None
            return
        assert self.previous is not None
        if self.minfo.has_momenta() and self.minfo.ada_delta():
            raise InvalidConfigurationError("Momentum and adaptive rate cannot both be active.")
        if self.minfo.has_momenta():
            if self.wm is None or self.bm is None or self.ada is not None:
                raise InvalidConfigurationError(f"Layer {self.index}: momentum mode needs momenta and no ADADELTA state.")
        if self.minfo.ada_delta():
            if self.params.rho <= 0:
                raise InvalidConfigurationError("rho must be > 0 if epsilon is > 0.")
            if self.params.epsilon <= 0:
                raise InvalidConfigurationError("epsilon must be > 0 if rho is > 0.")
            if self.ada is None or self.wm is not None or self.bm is not None:
                raise InvalidConfigurationError(f"Layer {self.index}: adaptive rate needs ADADELTA state and no momenta.")
        if self.supports_dropout:
            assert not training or self.dropout is not None

    # --- Propagation ---

    def fprop(self, seed: int, training: bool):
        """Forward propagation. `seed` feeds the dropout mask."""
        raise NotImplementedError

    def bprop(self):
        """Back propagation of the error stored in `e`."""
        raise NotImplementedError

    def bprop_row(self, row: int, partial_grad: float, rate: float, momentum: float):
        """
        Update the incoming weights and the bias of one unit: w += rate * dE/dw.

        Also adds this unit's contribution partial_grad * w to the previous
        layer's error vector.

        Args:
            row: Unit index (row of the weight matrix).
            partial_grad: dE/dnet for this unit (sign: target minus output).
            rate: Learning rate for this example.
            momentum: Momentum for this example (ignored with ADADELTA).
        """
        p = self.params
        nothing_else_to_update = (not self.minfo.get_params().adaptive_rate and not self.minfo.has_momenta()
                                  and p.l1 == 0.0 and p.l2 == 0.0)
        if (p.fast_mode or nothing_else_to_update) and partial_grad == 0:
            return
        if self._bprop_kernel is None:
            raise UnsupportedOperationError("Layer was not initialized for training.")
        self._bprop_kernel(self, row, partial_grad, rate, momentum)

    def _bprop_dense_row_dense(self, row: int, partial_grad: float, rate: float, momentum: float):
        prev_a = self.previous.a.raw()
        cols = prev_a.shape[0]
        idx = row * cols
        if self.previous.e is not None:
            # propagate dE/dnet to the previous layer via the (not yet updated) weights
            self.previous.e.raw()[:] += partial_grad * self.w.raw()[idx:idx + cols]
        if self.params.fast_mode:
            cols_idx = np.flatnonzero(prev_a)
        else:
            cols_idx = np.arange(cols)
        self._update_weights(idx + cols_idx, prev_a[cols_idx], partial_grad, rate, momentum)
        self._finish_row(row, partial_grad, rate, momentum)

    def _bprop_dense_row_sparse(self, row: int, partial_grad: float, rate: float, momentum: float):
        x: SparseVector = self.previous.a
        cols = x.size()
        # only the non-zero inputs have a non-zero gradient
        widx = row * cols + x.indices.astype(np.int64)
        if self.previous.e is not None:
            self.previous.e.raw()[x.indices] += partial_grad * self.w.raw()[widx]
        self._update_weights(widx, x.values, partial_grad, rate, momentum)
        self._finish_row(row, partial_grad, rate, momentum)

    def _update_weights(self, widx: np.ndarray, prev_a: np.ndarray, partial_grad: float,
                        rate: float, momentum: float):
        """Apply the update rule to the weights at flat positions `widx` of this connection."""
        p = self.params
        w = self.w.raw()
        weight = w[widx]
        # the actual gradient dE/dw, with L1/L2 weight decay folded in
        grad = (partial_grad * prev_a - np.sign(weight) * np.float32(p.l1) - weight * np.float32(p.l2)).astype(np.float32)

        if self.ada is not None:
            # ADADELTA, http://www.matthewzeiler.com/pubs/googleTR2012/googleTR2012.pdf
            rho = np.float32(p.rho)
            eps = np.float32(p.epsilon)
            ada = self.ada
            grad2 = grad * grad
            ada[2 * widx + 1] = rho * ada[2 * widx + 1] + (1 - rho) * grad2
            ada_rate = np.sqrt(ada[2 * widx] + eps) / np.sqrt(ada[2 * widx + 1] + eps)
            ada[2 * widx] = rho * ada[2 * widx] + (1 - rho) * ada_rate * ada_rate * grad2
            w[widx] = weight + ada_rate * grad
        elif not p.nesterov_accelerated_gradient:
            delta = np.float32(rate) * grad
            if self.wm is not None:
                wm = self.wm.raw()
                w[widx] = weight + delta + np.float32(momentum) * wm[widx]
                wm[widx] = delta
            else:
                w[widx] = weight + delta
        else:
            tmp = grad
            if self.wm is not None:
                wm = self.wm.raw()
                tmp = wm[widx] * np.float32(momentum) + grad
                wm[widx] = tmp
            w[widx] = weight + np.float32(rate) * tmp

    def _finish_row(self, row: int, partial_grad: float, rate: float, momentum: float):
        if self.params.max_w2 != math.inf:
            self.rescale_weights(row)
        self.update_bias(row, partial_grad, rate, momentum)

    def rescale_weights(self, row: int):
        """
        Scale down the incoming weights of one unit if their squared sum exceeds max_w2.

        C.f. "Improving neural networks by preventing co-adaptation of feature detectors".
        """
        if self.w.layout != StorageLayout.DENSE_ROW:
            raise UnsupportedOperationError("rescale_weights is only implemented for dense row weights.")
        cols = self.previous.a.size()
        idx = row * cols
        max_w2 = self.params.max_w2
        data = self.w.raw()[idx:idx + cols]
        r2 = float(np.sum(np.square(data, dtype=np.float64)))
        if r2 > max_w2:
            data *= np.float32(math.sqrt(max_w2 / r2))

    def update_bias(self, row: int, partial_grad: float, rate: float, momentum: float):
        """Bias update with the same momentum scheme as the weights, without decay or ADADELTA."""
        b = self.b.raw()
        with np.errstate(over='ignore', invalid='ignore'):
            if not self.params.nesterov_accelerated_gradient:
                delta = np.float32(rate * partial_grad)
                b[row] += delta
                if self.bm is not None:
                    bm = self.bm.raw()
                    b[row] += np.float32(momentum) * bm[row]
                    bm[row] = delta
            else:
                d = np.float32(partial_grad)
                if self.bm is not None:
                    bm = self.bm.raw()
                    bm[row] = bm[row] * np.float32(momentum) + d
                    d = bm[row]
                b[row] += np.float32(rate) * d
        if np.isinf(b[row]):
            self.minfo.set_unstable()

    # --- Schedules ---

    def rate(self, n: int) -> float:
        """Learning rate after `n` training examples: rate / (1 + rate_annealing * n)."""
        return float(np.float32(self.params.rate / (1 + self.params.rate_annealing * n)))

    def momentum(self, n: int) -> float:
        """Momentum after `n` training examples, ramped linearly from start to stable."""
        p = self.params
        m = p.momentum_start
        if p.momentum_ramp > 0:
            if n >= p.momentum_ramp:
                m = p.momentum_stable
            else:
                m += (p.momentum_stable - p.momentum_start) * n / p.momentum_ramp
        return float(np.float32(m))

    # --- Reporting ---

    def summary(self) -> str:
        s = f"{self.__class__.__name__}\nNumber of Neurons: {self.units}"
        if self.params is not None:
            s += f"\nParameters:\n{self.params}"
        if self.dropout is not None:
            s += f"\nDropout:\n{self.dropout}"
        return s

    def __repr__(self):
        return f"{self.__class__.__name__}(units={self.units}, index={self.index})"


class Input(Neurons):
    """
    Input layer of the network.

    Has no incoming weights; its activation is written from a training row.
    """

    supports_dropout = True
    has_error = False
    seed_mix = 0x1337B4BE

    def __init__(self, units: int, dinfo: Optional[DataInfo] = None):
        super().__init__(units)
        self.dinfo = dinfo
        self._dvec = DenseVector(units)
        self.a = self._dvec

    def _allocate_vectors(self):
        self._dvec = DenseVector(self.units)
        self.a = self._dvec

    def _dropout_ratio(self, index: int) -> float:
        return self.params.input_dropout_ratio

    def activation_layout(self) -> StorageLayout:
        if self.params is not None and self.params.sparse:
            return StorageLayout.SPARSE
        return StorageLayout.DENSE

    def fprop(self, seed: int, training: bool):
        raise UnsupportedOperationError("The input layer is set with set_input(), not fprop().")

    def bprop(self):
        raise UnsupportedOperationError("The input layer has no weights to back-propagate into.")

    def set_input(self, seed: int, nums: Sequence[float], numcat: int, cats: Sequence[int],
                  training: bool = True):
        """
        Write one example into the input activation.

        Args:
            seed: Seed for input dropout.
            nums: Numeric values (already normalized), NaN is written as 0.
            numcat: How many leading entries of `cats` are used.
            cats: Input unit indices of the active categorical levels.
            training: Apply input dropout (if this layer was initialized for training).
        """
        if self.params is None:
            raise RuntimeError("Input layer must be initialized with init() before set_input().")
        data = self._dvec.raw()
        data[:] = 0
        if numcat > 0:
            data[np.asarray(cats[:numcat], dtype=np.int64)] = 1.0
        nums = np.asarray(nums, dtype=np.float64)
        start = self.dinfo.num_start() if self.dinfo is not None else 0
        if start + nums.shape[0] > self.units:
            raise ValueError(f"Input layer has {self.units} units, got {nums.shape[0]} numeric values at offset {start}")
        data[start:start + nums.shape[0]] = np.where(np.isnan(nums), 0.0, nums)

        if training and self.dropout is not None:
            seed += self.params.seed + self.seed_mix
            self.dropout.randomly_sparsify_activation(data, seed)

        self.a = SparseVector(self._dvec) if self.params.sparse else self._dvec

    def set_input_raw(self, seed: int, data: Sequence[float], training: bool = True):
        """Write one raw row (categorical levels first, then numeric values)."""
        if self.dinfo is None:
            raise ValueError("set_input_raw() needs a DataInfo.")
        nums, numcat, cats = self.dinfo.expand_row(data)
        self.set_input(seed, nums, numcat, cats, training)


class Hidden(Neurons):
    """Hidden layer: a = f(W * prev_a + b)."""

    activation_name = None

    def __init__(self, units: int):
        super().__init__(units)
        self.activation_fn = get_activation(self.activation_name)

    def fprop(self, seed: int, training: bool):
        bits = self.dropout.bits() if training and self.dropout is not None else None
        self._gemv(self.a, self.w, self.previous.a, self.b, bits)
        a = self.a.raw()
        a[:] = self.activation_fn.forward(a)

    def bprop(self):
        processed = self.minfo.get_processed_total()
        m = self.momentum(processed)
        r = self.rate(processed) * (1 - m)
        # g = dE/dnet = dE/da * da/dnet
        g = self.e.raw() * self.activation_fn.backward(self.a.raw())
        for u in range(self.units):
            self.bprop_row(u, float(g[u]), r, m)


class Tanh(Hidden):
    """Tanh neurons - most common, most stable."""
    activation_name = 'tanh'


class Rectifier(Hidden):
    """Rectified linear unit (ReLU) neurons."""
    activation_name = 'rectifier'


class Maxout(Hidden):
    """
    Maxout neurons: a_o = max_i(w_oi * x_i) + b_o.

    If any unit ends up above 1, the whole layer is divided by the largest unit.
    Dense and sparse inputs take separate paths: the sparse one only scans the
    non-zero inputs, so a unit whose products are all missing falls back to 0.
    """

    activation_name = 'maxout'

    def _weight_row(self, o: int, cols: int) -> np.ndarray:
        if self.w.layout == StorageLayout.DENSE_ROW:
            return self.w.raw()[o * cols:(o + 1) * cols]
        return np.array([self.w.get(o, i) for i in range(cols)], dtype=np.float32)

    def fprop(self, seed: int, training: bool):
        a = self.a.raw()
        b = self.b.raw()
        prev = self.previous.a
        use_mask = training and self.dropout is not None
        top = 0.0
        if prev.layout == StorageLayout.DENSE:
            x = prev.raw()
            for o in range(self.units):
                a[o] = 0
                if not use_mask or self.dropout.unit_active(o):
                    a[o] = self.activation_fn.forward(self._weight_row(o, x.shape[0]) * x)
                    a[o] += b[o]
                    top = max(float(a[o]), top)
        else:
            for o in range(self.units):
                a[o] = 0
                if not use_mask or self.dropout.unit_active(o):
                    mymax = -math.inf
                    for i, val in prev:
                        mymax = max(mymax, self.w.get(o, i) * val)
                    # no contributing input -> no max found
                    a[o] = 0.0 if mymax == -math.inf else mymax
                    a[o] += b[o]
                    top = max(float(a[o]), top)
        if top > 1:
            a /= np.float32(top)


class DropoutMixin:
    """
    Dropout variant of a hidden layer.

    Training: reseed and regenerate the unit mask, then run the base forward
    pass with it. Scoring: run the base forward pass unmasked and halve the
    activations.
    """

    supports_dropout = True
    seed_mix = 0

    def fprop(self, seed: int, training: bool):
        if training:
            if self.dropout is None:
                raise UnsupportedOperationError("Layer was not initialized for training.")
            seed += self.params.seed + self.seed_mix
            self.dropout.fill_bytes(seed)
            super().fprop(seed, True)
        else:
            super().fprop(seed, False)
            self.a.raw()[:] /= 2.0


class TanhDropout(DropoutMixin, Tanh):
    """Tanh neurons with dropout."""
    seed_mix = 0xDA7A6000


class MaxoutDropout(DropoutMixin, Maxout):
    """Maxout neurons with dropout."""
    seed_mix = 0x51C8D00D


class RectifierDropout(DropoutMixin, Rectifier):
    """Rectifier neurons with dropout."""
    seed_mix = 0x3C71F1ED


# --- Weight-update kernels, one per (weight layout, input layout) ---

BpropKernel = Callable[[Neurons, int, float, float, float], None]

BPROP_KERNELS: Dict[Tuple[StorageLayout, StorageLayout], BpropKernel] = {
    (StorageLayout.DENSE_ROW, StorageLayout.DENSE): Neurons._bprop_dense_row_dense,
    (StorageLayout.DENSE_ROW, StorageLayout.SPARSE): Neurons._bprop_dense_row_sparse,
}


def select_bprop(weight_layout: StorageLayout, input_layout: StorageLayout) -> BpropKernel:
    """Look up the weight-update kernel for a pair of storage layouts."""
    try:
        return BPROP_KERNELS[(weight_layout, input_layout)]
    except KeyError:
        raise UnsupportedOperationError(
            f"bprop for {weight_layout.value} weights and {input_layout.value} input not yet implemented.",
            context={'weights': weight_layout, 'input': input_layout},
        ) from None


# Dictionary mapping hidden activation kinds to their layer classes
NEURON_TYPES: Dict[Activation, type] = {
    Activation.Tanh: Tanh,
    Activation.TanhWithDropout: TanhDropout,
    Activation.Rectifier: Rectifier,
    Activation.RectifierWithDropout: RectifierDropout,
    Activation.Maxout: Maxout,
    Activation.MaxoutWithDropout: MaxoutDropout,
}


def get_neurons(activation, units: int) -> Hidden:
    """Factory for a hidden layer of the given activation kind (enum or name)."""
    if not isinstance(activation, Activation):
        try:
            activation = Activation(activation)
        except ValueError:
            raise InvalidConfigurationError(
                f"Unknown activation '{activation}'. Available: {[a.value for a in NEURON_TYPES]}"
            ) from None
    return NEURON_TYPES[activation](units)
