import logging

import numpy as np

from clear_neurons.exceptions import InvalidConfigurationError

_SEED_MASK = (1 << 64) - 1


def _rng(seed: int) -> np.random.Generator:
    """Deterministic generator for a (possibly negative or oversized) integer seed."""
    return np.random.default_rng(int(seed) & _SEED_MASK)


class Dropout:
    """
    Per-unit dropout mask for one layer.

    The mask is one bit per unit (little-endian inside each byte), regenerated
    from a seed before every training forward pass and only read afterwards.

    Attributes:
        units (int): Number of units covered by the mask.
        rate (float): Probability of dropping a unit, in [0, 1).
    """

    def __init__(self, units: int, rate: float = 0.5):
        if not 0.0 <= rate < 1.0:
            raise InvalidConfigurationError(f"Dropout rate must be in [0, 1), got {rate}")
        self.units = units
        self.rate = float(rate)
        self._bits = np.zeros((units + 7) // 8, dtype=np.uint8)
        logging.debug(f"Dropout mask created: units={units}, rate={self.rate}")

    def bits(self) -> np.ndarray:
        return self._bits

    def fill_bytes(self, seed: int):
        """Regenerate the mask: a unit is kept iff its uniform draw is >= rate."""
        draws = _rng(seed).random(self._bits.shape[0] * 8)
        self._bits[:] = np.packbits(draws >= self.rate, bitorder='little')

    def unit_active(self, o: int) -> bool:
        return (int(self._bits[o >> 3]) >> (o & 7)) & 1 == 1

    def randomly_sparsify_activation(self, a: np.ndarray, seed: int):
        """Zero each non-zero entry of `a` in place with probability `rate`."""
        if self.rate == 0:
            return
        draws = _rng(seed).random(a.shape[0])
        a[(a != 0) & (draws < self.rate)] = 0

    def __repr__(self):
        active = int(np.unpackbits(self._bits, bitorder='little')[:self.units].sum())
        return f"Dropout(units={self.units}, rate={self.rate}, active={active})"
