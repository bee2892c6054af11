import logging
from typing import Union

import numpy as np

from clear_neurons.exceptions import InvalidConfigurationError, NumericalInstabilityError


class ActivationFunction:
    """Base class for all activation functions.

    Unlike the textbook form, derivatives are evaluated from the activation
    *output* `a` (which the layer keeps after the forward pass), not from the
    pre-activation input.
    """

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute the activation function value.

        Args:
            x: Pre-activation values (float32 array).

        Returns:
            Activated output, same shape as x.
        """
        raise NotImplementedError

    def backward(self, a: np.ndarray) -> np.ndarray:
        """Compute the derivative da/dnet, given the activation output a.

        Args:
            a: Activation output of the forward pass.

        Returns:
            Derivative evaluated at each unit.
        """
        raise NotImplementedError


class Tanh(ActivationFunction):
    """Hyperbolic tangent.

    Mathematical form:
        forward: f(x) = 1 - 2 / (1 + e^(2x))   (same as tanh(x), cheaper to evaluate)
        backward: f'(x) = 1 - a^2
    """

    def forward(self, x: np.ndarray) -> np.ndarray:
        # e^(2x) overflows to inf for large x, which correctly saturates at 1
        with np.errstate(over='ignore'):
            return (1.0 - 2.0 / (1.0 + np.exp(2.0 * x))).astype(np.float32)

    def backward(self, a: np.ndarray) -> np.ndarray:
        return 1.0 - a * a


class Rectifier(ActivationFunction):
    """Rectified Linear Unit.

    Mathematical form:
        forward: f(x) = max(0, x)
        backward: f'(x) = 1 if a > 0 else 0
    """

    def forward(self, x: np.ndarray) -> np.ndarray:
        return np.maximum(x, 0.0).astype(np.float32)

    def backward(self, a: np.ndarray) -> np.ndarray:
        return np.where(a > 0, 1.0, 0.0).astype(np.float32)


class Maxout(ActivationFunction):
    """Maxout over the weighted inputs of one unit.

    forward() receives the candidate products w_oi * x_i of ONE unit and
    returns their maximum; with no candidates (all inputs dropped or zero in a
    sparse input) the maximum is 0, not -inf. The gradient passes through
    the winning path unchanged.
    """

    def forward(self, x: np.ndarray) -> float:
        if x.shape[0] == 0:
            return 0.0
        m = float(np.max(x))
        return 0.0 if m == -np.inf else m

    def backward(self, a: np.ndarray) -> np.ndarray:
        return np.ones_like(a)


class Softmax(ActivationFunction):
    """Softmax over the output units of one example.

    Subtracts the maximum before exponentiating. A NaN in the result means the
    network diverged and is fatal.
    """

    def forward(self, x: np.ndarray) -> np.ndarray:
        with np.errstate(invalid='ignore', over='ignore'):
            e = np.exp(x - np.max(x)).astype(np.float32)
        scale = e.sum()
        if np.any(np.isnan(e)) or np.isnan(scale):
            logging.error(f"Softmax produced NaN (input min={np.nanmin(x) if x.size else 'n/a'}).")
            raise NumericalInstabilityError("Numerical instability, predicted NaN.")
        return e / scale

    def backward(self, a: np.ndarray) -> np.ndarray:
        """Diagonal of the softmax Jacobian, y * (1 - y)."""
        return a * (1.0 - a)


class Linear(ActivationFunction):
    """Identity, used by the regression output layer."""

    def forward(self, x: np.ndarray) -> np.ndarray:
        return x

    def backward(self, a: np.ndarray) -> np.ndarray:
        return np.ones_like(a)


# Dictionary mapping activation function names to their classes
ACTIVATION_FUNCTIONS = {
    'tanh': Tanh,
    'rectifier': Rectifier,
    'maxout': Maxout,
    'softmax': Softmax,
    'linear': Linear,
}


def get_activation(name: Union[str, ActivationFunction]) -> ActivationFunction:
    """Factory function to get an activation function instance by name.

    Args:
        name: Name of the activation function (case-insensitive), or an instance
              which is returned unchanged.

    Returns:
        An instance of the requested ActivationFunction class.

    Raises:
        InvalidConfigurationError: If the activation function name is not recognized.
    """
    if isinstance(name, ActivationFunction):
        return name
    name_lower = name.lower()
    if name_lower not in ACTIVATION_FUNCTIONS:
        raise InvalidConfigurationError(
            f"Unknown activation function '{name}'. "
            f"Available functions: {list(ACTIVATION_FUNCTIONS.keys())}"
        )
    return ACTIVATION_FUNCTIONS[name_lower]()
