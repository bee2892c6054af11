"""Tests for the raw row to input unit mapping."""

import numpy as np
import pytest

from clear_neurons.data_info import DataInfo


@pytest.fixture
def mixed_info() -> DataInfo:
    # two categorical columns with 3 and 4 levels (2 + 3 units), then 2 numerics
    return DataInfo(cats=2, cat_offsets=[0, 2, 5], nums=2)


class TestDataInfo:

    def test_unit_counts(self, mixed_info):
        assert mixed_info.num_start() == 5
        assert mixed_info.input_units() == 7

    def test_numeric_only(self):
        info = DataInfo.numeric(4)
        assert info.num_start() == 0
        assert info.input_units() == 4

    def test_expand_row(self, mixed_info):
        nums, numcat, cats = mixed_info.expand_row([2, 3, 0.5, -1.0])
        assert numcat == 2
        assert cats == [1, 4]
        np.testing.assert_allclose(nums, [0.5, -1.0])

    def test_reference_and_missing_levels_have_no_unit(self, mixed_info):
        nums, numcat, cats = mixed_info.expand_row([0, np.nan, 1.0, 2.0])
        assert numcat == 0
        assert cats == []

    def test_normalization(self):
        info = DataInfo(cats=0, cat_offsets=[0], nums=2, norm_mul=[2.0, 0.5], norm_sub=[1.0, 4.0])
        nums, _, _ = info.expand_row([3.0, 8.0])
        np.testing.assert_allclose(nums, [4.0, 2.0])

    def test_missing_numeric_stays_nan(self):
        nums, _, _ = DataInfo.numeric(2).expand_row([np.nan, 1.0])
        assert np.isnan(nums[0])

    @pytest.mark.parametrize("kwargs", [
        {'cats': 1, 'cat_offsets': [0], 'nums': 1},
        {'cats': 0, 'cat_offsets': [0], 'nums': 1, 'norm_mul': [1.0]},
        {'cats': 0, 'cat_offsets': [0], 'nums': 2, 'norm_mul': [1.0], 'norm_sub': [0.0]},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            DataInfo(**kwargs)
