"""
Matrix-vector kernels: res = a * x + y, with optional row dropout.

All kernels share the same contract:
    res      pre-allocated output of length rows (overwritten)
    a        weight matrix, rows x cols
    x        input activation of length cols
    y        bias of length rows
    row_bits optional dropout bit mask (one bit per row, little-endian in
             each byte); a row whose bit is unset is not computed and its
             output is left at zero

The kernel for a layer is looked up once, at wiring time, in KERNELS by the
storage layouts of the weight matrix and of the incoming activation.
"""

from typing import Callable, Dict, Optional, Tuple

import numpy as np

from clear_neurons.exceptions import UnsupportedOperationError
from clear_neurons.storage import (
    DenseVector,
    Matrix,
    StorageLayout,
    Vector,
)

GemvKernel = Callable[[DenseVector, Matrix, Vector, DenseVector, Optional[np.ndarray]], None]


def row_active(row_bits: Optional[np.ndarray], row: int) -> bool:
    """True if the row is kept by the dropout mask (or there is no mask)."""
    return row_bits is None or (int(row_bits[row >> 3]) >> (row & 7)) & 1 == 1


def active_rows(row_bits: Optional[np.ndarray], rows: int) -> np.ndarray:
    """Boolean mask of kept rows."""
    if row_bits is None:
        return np.ones(rows, dtype=bool)
    return np.unpackbits(np.asarray(row_bits, dtype=np.uint8), bitorder='little')[:rows].astype(bool)


# --- Raw array kernels ---

def gemv_naive(res: np.ndarray, a: np.ndarray, x: np.ndarray, y: np.ndarray,
               row_bits: Optional[np.ndarray] = None):
    """Row-major mat-vec plus add on raw arrays, one full row product at a time."""
    cols = x.shape[0]
    rows = y.shape[0]
    assert res.shape[0] == rows
    for row in range(rows):
        res[row] = 0
        if not row_active(row_bits, row):
            continue
        res[row] = np.sum(a[row * cols:(row + 1) * cols] * x)
        res[row] += y[row]


def gemv_row_optimized(res: np.ndarray, a: np.ndarray, x: np.ndarray, y: np.ndarray,
                       row_bits: Optional[np.ndarray] = None):
    """
    Row-major mat-vec plus add on raw arrays with 8 independent partial sums.

    Columns [0, extra) are split into 8 interleaved lanes (col % 8), each
    reduced separately; the remaining cols % 8 columns are added at the end.
    """
    cols = x.shape[0]
    rows = y.shape[0]
    assert res.shape[0] == rows
    extra = cols - cols % 8
    lanes = [x[k:extra:8] for k in range(8)]
    tail = x[extra:]
    idx = 0
    for row in range(rows):
        res[row] = 0
        if row_active(row_bits, row):
            arow = a[idx:idx + cols]
            psum0 = np.dot(arow[0:extra:8], lanes[0])
            psum1 = np.dot(arow[1:extra:8], lanes[1])
            psum2 = np.dot(arow[2:extra:8], lanes[2])
            psum3 = np.dot(arow[3:extra:8], lanes[3])
            psum4 = np.dot(arow[4:extra:8], lanes[4])
            psum5 = np.dot(arow[5:extra:8], lanes[5])
            psum6 = np.dot(arow[6:extra:8], lanes[6])
            psum7 = np.dot(arow[7:extra:8], lanes[7])
            res[row] += psum0 + psum1 + psum2 + psum3
            res[row] += psum4 + psum5 + psum6 + psum7
            res[row] += np.dot(arow[extra:], tail)
            res[row] += y[row]
        idx += cols


# --- Container kernels, one per (weight layout, input layout) ---

def gemv_dense_row_dense(res, a, x, y, row_bits=None):
    gemv_row_optimized(res.raw(), a.raw(), x.raw(), y.raw(), row_bits)


def gemv_naive_dense_row_dense(res, a, x, y, row_bits=None):
    gemv_naive(res.raw(), a.raw(), x.raw(), y.raw(), row_bits)


def gemv_naive_dense_col_dense(res, a, x, y, row_bits=None):
    cols = x.size()
    rows = y.size()
    assert res.size() == rows
    out = res.raw()
    data = a.raw()
    xs = x.raw()
    keep = active_rows(row_bits, rows)
    out[:] = 0
    for col in range(cols):
        out[keep] += data[col * rows:(col + 1) * rows][keep] * xs[col]
    out[keep] += y.raw()[keep]


def gemv_naive_dense_row_sparse(res, a, x, y, row_bits=None):
    cols = a.cols()
    rows = y.size()
    assert res.size() == rows
    out = res.raw()
    data = a.raw()
    for row in range(rows):
        out[row] = 0
        if not row_active(row_bits, row):
            continue
        out[row] = np.dot(data[row * cols + x.indices], x.values)
        out[row] += y.get(row)


def gemv_naive_dense_col_sparse(res, a, x, y, row_bits=None):
    rows = y.size()
    assert res.size() == rows
    out = res.raw()
    data = a.raw()
    keep = active_rows(row_bits, rows)
    out[:] = 0
    for col, val in x:
        if val == 0.0:
            continue
        out[keep] += data[col * rows:(col + 1) * rows][keep] * val
    out[keep] += y.raw()[keep]


def gemv_naive_sparse_row(res, a, x, y, row_bits=None):
    """Sparse row-major weights; x may be dense or sparse."""
    rows = y.size()
    assert res.size() == rows
    for row in range(rows):
        res.set(row, 0)
        if not row_active(row_bits, row):
            continue
        # walk the stored columns of this row only
        for col, weight in a.row(row):
            val = x.get(col)
            if val != 0.0:
                res.add(row, weight * val)
        res.add(row, y.get(row))


def gemv_naive_sparse_col(res, a, x, y, row_bits=None):
    """Sparse column-major weights; x may be dense or sparse."""
    rows = y.size()
    assert res.size() == rows
    res.raw()[:] = 0
    for col in range(a.cols()):
        val = x.get(col)
        if val == 0.0:
            continue
        for row, weight in a.col(col):
            if not row_active(row_bits, row):
                continue
            res.add(row, weight * val)
    for row in range(rows):
        if row_active(row_bits, row):
            res.add(row, y.get(row))


KERNELS: Dict[Tuple[StorageLayout, StorageLayout], GemvKernel] = {
    (StorageLayout.DENSE_ROW, StorageLayout.DENSE): gemv_dense_row_dense,
    (StorageLayout.DENSE_ROW, StorageLayout.SPARSE): gemv_naive_dense_row_sparse,
    (StorageLayout.DENSE_COL, StorageLayout.DENSE): gemv_naive_dense_col_dense,
    (StorageLayout.DENSE_COL, StorageLayout.SPARSE): gemv_naive_dense_col_sparse,
    (StorageLayout.SPARSE_ROW, StorageLayout.DENSE): gemv_naive_sparse_row,
    (StorageLayout.SPARSE_ROW, StorageLayout.SPARSE): gemv_naive_sparse_row,
    (StorageLayout.SPARSE_COL, StorageLayout.DENSE): gemv_naive_sparse_col,
    (StorageLayout.SPARSE_COL, StorageLayout.SPARSE): gemv_naive_sparse_col,
}


def select_gemv(weight_layout: StorageLayout, input_layout: StorageLayout) -> GemvKernel:
    """Look up the mat-vec kernel for a pair of storage layouts."""
    try:
        return KERNELS[(weight_layout, input_layout)]
    except KeyError:
        raise UnsupportedOperationError(
            f"gemv for {weight_layout.value} weights and {input_layout.value} input not yet implemented.",
            context={'weights': weight_layout, 'input': input_layout},
        ) from None
