"""
Exceptions raised by the neuron-layer engine.

Three kinds of failure exist:
    - bad hyperparameters, detected at validation or layer wiring time
    - an algorithm that is not implemented for a storage/loss combination
    - numeric divergence that cannot be recovered from inside one pass

Each concrete error also derives from the builtin that callers would expect
(ValueError, NotImplementedError, RuntimeError).
"""

from typing import Any, Dict, Optional


class NeuronsError(Exception):
    """Base exception for all neuron-layer errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class InvalidConfigurationError(NeuronsError, ValueError):
    """Raised when hyperparameters are invalid or inconsistent."""
    pass


class UnsupportedOperationError(NeuronsError, NotImplementedError):
    """Raised when no algorithm exists for the requested combination."""
    pass


class NumericalInstabilityError(NeuronsError, RuntimeError):
    """Raised when the forward pass produces NaN."""
    pass
