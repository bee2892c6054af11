import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from clear_neurons.params import Parameters
from clear_neurons.storage import DenseRowMatrix, DenseVector


class ModelInfo:
    """
    Shared model state: weights, biases and their optimizer history.

    Each quantity lives in ONE flat float32 arena for the whole network and
    every layer gets a view into it, so layer objects built by different
    workers all read and write the same memory. Updates are deliberately not
    synchronized (Hogwild-style asynchronous SGD): two workers may race on
    the same weight and one update can be lost. Nothing in this class takes
    a lock, and nothing should.

    Connection i goes from layer i to layer i+1 and holds:
        weights[i]   DenseRowMatrix of shape (units[i+1], units[i])
        biases[i]    DenseVector of length units[i+1]
    plus either momenta of the same shapes (momentum training) or an
    ADADELTA accumulator with two slots per weight (adaptive rate):
        ada[2*w]     decayed mean of squared updates
        ada[2*w+1]   decayed mean of squared gradients

    Attributes:
        units (List[int]): Layer sizes, input first, output last.
        unstable (bool): Set once any bias overflows to infinity.
    """

    def __init__(self, params: Parameters, units: Sequence[int]):
        if len(units) < 2:
            raise ValueError("ModelInfo needs at least an input and an output layer size.")
        self._params = params
        self.units: List[int] = [int(u) for u in units]
        self._processed = 0
        self._unstable = False

        n_conn = len(self.units) - 1
        w_sizes = [self.units[i + 1] * self.units[i] for i in range(n_conn)]
        b_sizes = [self.units[i + 1] for i in range(n_conn)]
        self._w_offsets = np.concatenate([[0], np.cumsum(w_sizes)]).astype(np.int64)
        self._b_offsets = np.concatenate([[0], np.cumsum(b_sizes)]).astype(np.int64)

        self._w_arena = np.zeros(int(self._w_offsets[-1]), dtype=np.float32)
        self._b_arena = np.zeros(int(self._b_offsets[-1]), dtype=np.float32)
        self._wm_arena: Optional[np.ndarray] = None
        self._bm_arena: Optional[np.ndarray] = None
        self._ada_arena: Optional[np.ndarray] = None
        if self.ada_delta():
            self._ada_arena = np.zeros(2 * self._w_arena.shape[0], dtype=np.float32)
        elif self.has_momenta():
            self._wm_arena = np.zeros_like(self._w_arena)
            self._bm_arena = np.zeros_like(self._b_arena)

        self._weights = [DenseRowMatrix(self.units[i + 1], self.units[i], self._w_view(self._w_arena, i))
                         for i in range(n_conn)]
        self._biases = [DenseVector(self._b_view(self._b_arena, i)) for i in range(n_conn)]

        logging.info(
            f"ModelInfo created: units={self.units}, weights={self._w_arena.shape[0]:,}, "
            f"mode={'adadelta' if self.ada_delta() else 'momentum' if self.has_momenta() else 'plain'}"
        )

    # --- Arena views ---

    def _w_view(self, arena: np.ndarray, i: int) -> np.ndarray:
        return arena[self._w_offsets[i]:self._w_offsets[i + 1]]

    def _b_view(self, arena: np.ndarray, i: int) -> np.ndarray:
        return arena[self._b_offsets[i]:self._b_offsets[i + 1]]

    def get_params(self) -> Parameters:
        return self._params

    def get_weights(self, i: int) -> DenseRowMatrix:
        return self._weights[i]

    def get_biases(self, i: int) -> DenseVector:
        return self._biases[i]

    def get_weights_momenta(self, i: int) -> Optional[DenseRowMatrix]:
        if self._wm_arena is None:
            return None
        return DenseRowMatrix(self.units[i + 1], self.units[i], self._w_view(self._wm_arena, i))

    def get_biases_momenta(self, i: int) -> Optional[DenseVector]:
        if self._bm_arena is None:
            return None
        return DenseVector(self._b_view(self._bm_arena, i))

    def get_ada(self, i: int) -> Optional[np.ndarray]:
        if self._ada_arena is None:
            return None
        return self._ada_arena[2 * self._w_offsets[i]:2 * self._w_offsets[i + 1]]

    # --- Mode queries ---

    def has_momenta(self) -> bool:
        p = self._params
        return not p.adaptive_rate and (p.momentum_start != 0 or p.momentum_stable != 0)

    def ada_delta(self) -> bool:
        return bool(self._params.adaptive_rate)

    # --- Progress and stability ---

    def get_processed_total(self) -> int:
        return self._processed

    def add_processed(self, n: int = 1):
        # unsynchronized like the weights; an occasional lost increment only nudges the schedules
        self._processed += n

    def set_unstable(self):
        if not self._unstable:
            logging.warning("Model is unstable: a bias overflowed to infinity.")
        self._unstable = True

    @property
    def unstable(self) -> bool:
        return self._unstable

    # --- Initialization ---

    def randomize_weights(self, seed: Optional[int] = None):
        """Initialize all weights per params.weight_init; biases are reset to zero."""
        rng = np.random.default_rng(self._params.seed if seed is None else seed)
        for i, w in enumerate(self._weights):
            fan_in, fan_out = self.units[i], self.units[i + 1]
            data = w.raw()
            if self._params.weight_init == 'xavier':
                # Xavier/Glorot uniform: limits sqrt(6 / (fan_in + fan_out))
                limit = math.sqrt(6.0 / (fan_in + fan_out))
                data[:] = rng.uniform(-limit, limit, data.shape[0])
                logging.debug(f"Connection #{i}: Xavier uniform weights ({limit:.4f}).")
            elif self._params.weight_init == 'random':
                data[:] = rng.standard_normal(data.shape[0]) * 0.01
                logging.debug(f"Connection #{i}: small random normal weights.")
            else:
                data[:] = 0
                logging.debug(f"Connection #{i}: zero weights.")
        self._b_arena[:] = 0
        return self

    # --- Reporting ---

    def summary(self) -> str:
        lines = ["=" * 50, "Model Info", "=" * 50]
        for i, w in enumerate(self._weights):
            lines.append(f"Connection {i}: {w.cols()} -> {w.rows()} "
                         f"(weights: {w.size():,}, biases: {self._biases[i].size()})")
        lines.append(f"Update mode: {'ADADELTA' if self.ada_delta() else 'momentum' if self.has_momenta() else 'plain SGD'}")
        lines.append(f"Processed examples: {self._processed:,}")
        lines.append(f"Unstable: {self._unstable}")
        lines.append("=" * 50)
        return "\n".join(lines)

    def __repr__(self):
        return f"ModelInfo(units={self.units}, processed={self._processed}, unstable={self._unstable})"
