"""
Vector and matrix containers used by the neuron layers.

Every container maps an index (or a (row, col) pair) to a float32 value and
has a fixed size. Dense containers wrap a contiguous numpy buffer and expose
it through raw() so the mat-vec kernels can work on whole rows at once. The
buffer can be a view into the shared model arena: writes go straight to the
model, nothing is copied.

Sparse containers are read-mostly projections:
    - SparseVector is an immutable snapshot of a dense vector (only non-zeros)
    - SparseRowMatrix / SparseColMatrix keep one map per row (column)
None of them offers raw access.
"""

import enum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from clear_neurons.exceptions import UnsupportedOperationError


class StorageLayout(enum.Enum):
    """Tag identifying the concrete storage of a vector or matrix."""
    DENSE = "dense"
    SPARSE = "sparse"
    DENSE_ROW = "dense_row"
    DENSE_COL = "dense_col"
    SPARSE_ROW = "sparse_row"
    SPARSE_COL = "sparse_col"


# --- Vectors ---

class Vector:
    """Base class for all vectors: index -> value, fixed size."""

    layout: StorageLayout = None

    def get(self, i: int) -> float:
        raise NotImplementedError

    def set(self, i: int, val: float):
        raise NotImplementedError

    def add(self, i: int, val: float):
        raise NotImplementedError

    def size(self) -> int:
        raise NotImplementedError

    def raw(self) -> np.ndarray:
        raise NotImplementedError

    def __len__(self) -> int:
        return self.size()


class DenseVector(Vector):
    """Vector backed by a contiguous float32 array."""

    layout = StorageLayout.DENSE

    def __init__(self, data):
        """
        Args:
            data: Either a length (a zeroed buffer is allocated) or an existing
                  array. A float32 1-D array is wrapped as-is, without copying.
        """
        if isinstance(data, (int, np.integer)):
            self._data = np.zeros(int(data), dtype=np.float32)
        else:
            self._data = np.asarray(data, dtype=np.float32)
            if self._data.ndim != 1:
                raise ValueError(f"DenseVector expects 1-D data, got shape {self._data.shape}")

    def get(self, i: int) -> float:
        return float(self._data[i])

    def set(self, i: int, val: float):
        self._data[i] = val

    def add(self, i: int, val: float):
        self._data[i] += val

    def size(self) -> int:
        return self._data.shape[0]

    def raw(self) -> np.ndarray:
        return self._data

    def __repr__(self):
        return f"DenseVector(size={self.size()})"


class SparseIterator:
    """
    Forward-only cursor over the non-zero entries of a SparseVector.

    The cursor position counts non-zeros (not vector indices). The position
    equal to nnz is the "one past last" sentinel returned by SparseVector.end().
    """

    def __init__(self, vec: "SparseVector", pos: int):
        self._vec = vec
        self._pos = pos

    def next(self) -> "SparseIterator":
        self._pos += 1
        return self

    def has_next(self) -> bool:
        return self._pos < self._vec.nnz() - 1

    def index(self) -> int:
        return int(self._vec.indices[self._pos])

    def value(self) -> float:
        return float(self._vec.values[self._pos])

    def __eq__(self, other) -> bool:
        if not isinstance(other, SparseIterator):
            return NotImplemented
        return self._vec is other._vec and self._pos == other._pos

    def __ne__(self, other) -> bool:
        result = self.__eq__(other)
        return result if result is NotImplemented else not result

    def __repr__(self):
        return f"{self.index()} -> {self.value()}"


class SparseVector(Vector):
    """
    Read-only sparse snapshot of a dense vector.

    Stores only the non-zero entries as two parallel arrays with strictly
    increasing indices. get() is a binary search; set/add/raw are unsupported.
    """

    layout = StorageLayout.SPARSE

    def __init__(self, dense):
        if not isinstance(dense, DenseVector):
            dense = DenseVector(np.asarray(dense, dtype=np.float32))
        data = dense.raw()
        self._size = dense.size()
        # count first, then allocate exactly nnz slots and fill in ascending order
        nnz = int(np.count_nonzero(data))
        self._indices = np.empty(nnz, dtype=np.int32)
        self._values = np.empty(nnz, dtype=np.float32)
        idx = 0
        for i in np.flatnonzero(data):
            self._indices[idx] = i
            self._values[idx] = data[i]
            idx += 1
        assert idx == nnz
        self._indices.setflags(write=False)
        self._values.setflags(write=False)

    def size(self) -> int:
        return self._size

    def nnz(self) -> int:
        return self._indices.shape[0]

    @property
    def indices(self) -> np.ndarray:
        return self._indices

    @property
    def values(self) -> np.ndarray:
        return self._values

    def get(self, i: int) -> float:
        pos = int(np.searchsorted(self._indices, i))
        if pos < self._indices.shape[0] and self._indices[pos] == i:
            return float(self._values[pos])
        return 0.0

    def set(self, i: int, val: float):
        raise UnsupportedOperationError("setting values in a sparse vector is not implemented.")

    def add(self, i: int, val: float):
        raise UnsupportedOperationError("adding values in a sparse vector is not implemented.")

    def raw(self) -> np.ndarray:
        raise UnsupportedOperationError("raw access to the data in a sparse vector is not implemented.")

    def begin(self) -> SparseIterator:
        return SparseIterator(self, 0)

    def end(self) -> SparseIterator:
        return SparseIterator(self, self.nnz())

    def __iter__(self) -> Iterator[Tuple[int, float]]:
        it, end = self.begin(), self.end()
        while it != end:
            yield it.index(), it.value()
            it.next()

    def __repr__(self):
        return f"SparseVector(size={self._size}, nnz={self.nnz()})"


# --- Matrices ---

class Matrix:
    """Base class for all matrices: (row, col) -> value, fixed rows x cols."""

    layout: StorageLayout = None

    def get(self, row: int, col: int) -> float:
        raise NotImplementedError

    def set(self, row: int, col: int, val: float):
        raise NotImplementedError

    def add(self, row: int, col: int, val: float):
        raise NotImplementedError

    def rows(self) -> int:
        raise NotImplementedError

    def cols(self) -> int:
        raise NotImplementedError

    def size(self) -> int:
        return self.rows() * self.cols()

    def raw(self) -> np.ndarray:
        raise UnsupportedOperationError("raw access to the data in a sparse matrix is not implemented.")

    def __repr__(self):
        return f"{self.__class__.__name__}(rows={self.rows()}, cols={self.cols()})"


class DenseRowMatrix(Matrix):
    """Row-major dense matrix: element (r, c) lives at r * cols + c."""

    layout = StorageLayout.DENSE_ROW

    def __init__(self, rows: int, cols: int, data: Optional[np.ndarray] = None):
        self._rows = rows
        self._cols = cols
        if data is None:
            self._data = np.zeros(rows * cols, dtype=np.float32)
        else:
            self._data = np.asarray(data, dtype=np.float32).reshape(-1)
            if self._data.shape[0] != rows * cols:
                raise ValueError(f"DenseRowMatrix: expected {rows * cols} values, got {self._data.shape[0]}")

    def get(self, row: int, col: int) -> float:
        assert row < self._rows and col < self._cols
        return float(self._data[row * self._cols + col])

    def set(self, row: int, col: int, val: float):
        assert row < self._rows and col < self._cols
        self._data[row * self._cols + col] = val

    def add(self, row: int, col: int, val: float):
        assert row < self._rows and col < self._cols
        self._data[row * self._cols + col] += val

    def rows(self) -> int:
        return self._rows

    def cols(self) -> int:
        return self._cols

    def raw(self) -> np.ndarray:
        return self._data


class DenseColMatrix(Matrix):
    """Column-major dense matrix: element (r, c) lives at c * rows + r."""

    layout = StorageLayout.DENSE_COL

    def __init__(self, rows: int, cols: int, data: Optional[np.ndarray] = None):
        self._rows = rows
        self._cols = cols
        if data is None:
            self._data = np.zeros(rows * cols, dtype=np.float32)
        else:
            self._data = np.asarray(data, dtype=np.float32).reshape(-1)
            if self._data.shape[0] != rows * cols:
                raise ValueError(f"DenseColMatrix: expected {rows * cols} values, got {self._data.shape[0]}")

    @classmethod
    def from_matrix(cls, m: Matrix) -> "DenseColMatrix":
        out = cls(m.rows(), m.cols())
        for row in range(m.rows()):
            for col in range(m.cols()):
                out.set(row, col, m.get(row, col))
        return out

    def get(self, row: int, col: int) -> float:
        assert row < self._rows and col < self._cols
        return float(self._data[col * self._rows + row])

    def set(self, row: int, col: int, val: float):
        assert row < self._rows and col < self._cols
        self._data[col * self._rows + row] = val

    def add(self, row: int, col: int, val: float):
        assert row < self._rows and col < self._cols
        self._data[col * self._rows + row] += val

    def rows(self) -> int:
        return self._rows

    def cols(self) -> int:
        return self._cols

    def raw(self) -> np.ndarray:
        return self._data


class SparseRowMatrix(Matrix):
    """One {col: value} map per row. Absent entries are zero."""

    layout = StorageLayout.SPARSE_ROW

    def __init__(self, rows: int, cols: int, source: Optional[Matrix] = None):
        self._cols = cols
        self._rows: List[Dict[int, float]] = [{} for _ in range(rows)]
        if source is not None:
            for row in range(rows):
                for col in range(cols):
                    val = source.get(row, col)
                    if val != 0.0:
                        self.add(row, col, val)

    def get(self, row: int, col: int) -> float:
        return self._rows[row].get(col, 0.0)

    def set(self, row: int, col: int, val: float):
        self._rows[row][col] = float(np.float32(val))

    def add(self, row: int, col: int, val: float):
        self.set(row, col, self.get(row, col) + val)

    def rows(self) -> int:
        return len(self._rows)

    def cols(self) -> int:
        return self._cols

    def row(self, row: int) -> List[Tuple[int, float]]:
        """Stored entries of one row, ordered by column."""
        return sorted(self._rows[row].items())


class SparseColMatrix(Matrix):
    """One {row: value} map per column. Absent entries are zero."""

    layout = StorageLayout.SPARSE_COL

    def __init__(self, rows: int, cols: int, source: Optional[Matrix] = None):
        self._rows = rows
        self._cols: List[Dict[int, float]] = [{} for _ in range(cols)]
        if source is not None:
            for row in range(rows):
                for col in range(cols):
                    val = source.get(row, col)
                    if val != 0.0:
                        self.add(row, col, val)

    def get(self, row: int, col: int) -> float:
        return self._cols[col].get(row, 0.0)

    def set(self, row: int, col: int, val: float):
        self._cols[col][row] = float(np.float32(val))

    def add(self, row: int, col: int, val: float):
        self.set(row, col, self.get(row, col) + val)

    def rows(self) -> int:
        return self._rows

    def cols(self) -> int:
        return len(self._cols)

    def col(self, col: int) -> List[Tuple[int, float]]:
        """Stored entries of one column, ordered by row."""
        return sorted(self._cols[col].items())
