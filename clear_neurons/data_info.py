from typing import List, Optional, Sequence, Tuple

import numpy as np


class DataInfo:
    """
    Describes how a raw training row maps onto input layer units.

    Categorical columns come first in a raw row, followed by numeric columns.
    Categorical column i with k levels owns the input units
    [cat_offsets[i], cat_offsets[i+1]); level 0 is the reference level and
    has no unit, so level c maps to unit c + cat_offsets[i] - 1. Numeric
    columns occupy the units starting at num_start().

    Attributes:
        cats (int): Number of categorical columns.
        cat_offsets (np.ndarray): First input unit of each categorical column (length cats + 1).
        nums (int): Number of numeric columns.
        norm_mul, norm_sub (np.ndarray or None): Per numeric column normalization,
            x -> (x - norm_sub) * norm_mul. None means raw values.
    """

    def __init__(
        self,
        cats: int,
        cat_offsets: Sequence[int],
        nums: int,
        norm_mul: Optional[Sequence[float]] = None,
        norm_sub: Optional[Sequence[float]] = None,
    ):
        if len(cat_offsets) != cats + 1:
            raise ValueError(f"cat_offsets must have {cats + 1} entries, got {len(cat_offsets)}")
        if (norm_mul is None) != (norm_sub is None):
            raise ValueError("norm_mul and norm_sub must be given together")
        self.cats = cats
        self.cat_offsets = np.asarray(cat_offsets, dtype=np.int64)
        self.nums = nums
        self.norm_mul = None if norm_mul is None else np.asarray(norm_mul, dtype=np.float64)
        self.norm_sub = None if norm_sub is None else np.asarray(norm_sub, dtype=np.float64)
        if self.norm_mul is not None and (self.norm_mul.shape[0] != nums or self.norm_sub.shape[0] != nums):
            raise ValueError(f"normalization vectors must have {nums} entries")

    @classmethod
    def numeric(cls, nums: int) -> "DataInfo":
        """DataInfo for rows without categorical columns."""
        return cls(cats=0, cat_offsets=[0], nums=nums)

    def num_start(self) -> int:
        return int(self.cat_offsets[self.cats])

    def input_units(self) -> int:
        return self.num_start() + self.nums

    def expand_row(self, data: Sequence[float]) -> Tuple[np.ndarray, int, List[int]]:
        """
        Split a raw row into (nums, numcat, cats) for Input.set_input().

        Missing categorical levels (NaN) are treated as the reference level.
        Numeric values keep NaN; the input layer writes those as 0.
        """
        data = np.asarray(data, dtype=np.float64)
        cats = []
        for i in range(self.cats):
            level = data[i]
            c = 0 if np.isnan(level) else int(level)
            if c != 0:
                cats.append(c + int(self.cat_offsets[i]) - 1)
        nums = data[self.cats:].copy()
        if self.norm_mul is not None:
            nums = (nums - self.norm_sub) * self.norm_mul
        return nums, len(cats), cats
