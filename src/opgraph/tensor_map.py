"""Tensor storage kinds and the named TensorMap container."""

from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from .errors import DuplicateKeyError, MissingKeyError, TensorKindMismatchError
from .shape import Shape


class TensorKind(Enum):
    """Physical tensor representations. Not interchangeable."""
    TSR = "tsr"  # Dense row-major tensor
    SRM = "srm"  # Sparse row matrix: row id -> dense row
    CSR = "csr"  # Compressed sparse row instance


def _as_dims(dims) -> Tuple[int, ...]:
    if len(dims) == 1 and not isinstance(dims[0], int):
        dims = dims[0]
    if isinstance(dims, Shape):
        dims = dims.to_tuple()
    return tuple(int(d) for d in dims)


class DenseTensor:
    """
    Dense tensor over a flat torch buffer with amortized capacity.

    resize() only reallocates when the new element count exceeds the
    current capacity, so a tensor can be reused across batches.
    """

    kind = TensorKind.TSR

    def __init__(self,
                 shape: Union[Shape, Sequence[int]] = (),
                 dtype: torch.dtype = torch.float32,
                 device: str = "cpu"):
        self.dtype = dtype
        self.device = device
        self._buffer = torch.empty(0, dtype=dtype, device=device)
        self._shape: Tuple[int, ...] = ()
        self.resize(shape)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def numel(self) -> int:
        total = 1
        for d in self._shape:
            total *= d
        return total

    @property
    def capacity(self) -> int:
        return self._buffer.numel()

    @property
    def data(self) -> torch.Tensor:
        """View of the live elements, shaped as self.shape."""
        return self._buffer[:self.numel].view(self._shape)

    def data_ptr(self) -> int:
        return self._buffer.data_ptr()

    def resize(self, *dims) -> "DenseTensor":
        shape = _as_dims(dims)
        total = 1
        for d in shape:
            total *= d
        if total > self._buffer.numel():
            self._buffer = torch.empty(total, dtype=self.dtype, device=self.device)
        self._shape = shape
        return self

    def zeros_(self) -> "DenseTensor":
        self._buffer[:self.numel].zero_()
        return self

    def ones_(self) -> "DenseTensor":
        self._buffer[:self.numel].fill_(1)
        return self

    def assign(self, values) -> "DenseTensor":
        """Resize to the shape of values and copy them in."""
        src = torch.as_tensor(values, dtype=self.dtype, device=self.device)
        self.resize(tuple(src.shape))
        self.data.copy_(src)
        return self

    def accumulate(self, grad: torch.Tensor) -> None:
        self.data.add_(grad)

    def __repr__(self) -> str:
        return f"DenseTensor(shape={self._shape}, capacity={self.capacity})"


class SparseRowMatrix:
    """
    Row-id addressed table of dense rows, e.g. an embedding table over a
    huge vocabulary. Reading an absent row yields zeros and inserts nothing.
    """

    kind = TensorKind.SRM

    def __init__(self,
                 col: int = 0,
                 dtype: torch.dtype = torch.float32,
                 device: str = "cpu"):
        self.col = col
        self.dtype = dtype
        self.device = device
        self.rows: Dict[int, torch.Tensor] = {}
        # Row initializer (an Initializer), consumed by upsert_row
        self.initializer = None
        self.init_param1 = 0.0
        self.init_param2 = 0.0

    def set_col(self, col: int) -> None:
        if self.rows and col != self.col:
            raise ValueError(f"Cannot change col of a non-empty matrix: {self.col} -> {col}")
        self.col = col

    def get_row(self, row_id: int) -> torch.Tensor:
        row = self.rows.get(int(row_id))
        if row is None:
            return torch.zeros(self.col, dtype=self.dtype, device=self.device)
        return row

    def upsert_row(self, row_id: int, generator: Optional[torch.Generator] = None) -> torch.Tensor:
        """Get a row, creating it with the row initializer when absent."""
        row_id = int(row_id)
        row = self.rows.get(row_id)
        if row is None:
            row = torch.zeros(self.col, dtype=self.dtype, device=self.device)
            if self.initializer is not None:
                self.initializer.fill(row, self.init_param1, self.init_param2, generator)
            self.rows[row_id] = row
        return row

    def assign_row(self, row_id: int, values) -> None:
        row = torch.as_tensor(values, dtype=self.dtype, device=self.device).reshape(-1)
        if row.numel() != self.col:
            raise ValueError(f"Row {row_id} has {row.numel()} values, expected {self.col}")
        self.rows[int(row_id)] = row.clone()

    def accumulate(self, other: "SparseRowMatrix") -> None:
        """Add other's rows into this matrix."""
        for row_id, row in other.rows.items():
            mine = self.rows.get(row_id)
            if mine is None:
                self.rows[row_id] = row.clone()
            else:
                mine.add_(row)

    def clear(self) -> None:
        self.rows.clear()

    def zeros_(self) -> "SparseRowMatrix":
        self.rows.clear()
        return self

    def row_ids(self) -> List[int]:
        return sorted(self.rows)

    def __contains__(self, row_id) -> bool:
        return int(row_id) in self.rows

    def __len__(self) -> int:
        return len(self.rows)

    def __repr__(self) -> str:
        return f"SparseRowMatrix(col={self.col}, rows={len(self.rows)})"


class CSRInstance:
    """
    Compressed sparse row encoding of per-example feature lists.

    Build a batch with emplace() for each feature of an example followed by
    add_row(), or with from_rows().
    """

    kind = TensorKind.CSR

    def __init__(self):
        self._row_offset: List[int] = [0]
        self._col: List[int] = []
        self._value: List[float] = []

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[Tuple[int, float]]]) -> "CSRInstance":
        csr = cls()
        for row in rows:
            for feature_id, value in row:
                csr.emplace(feature_id, value)
            csr.add_row()
        return csr

    def clear(self) -> None:
        self._row_offset = [0]
        self._col = []
        self._value = []

    def emplace(self, feature_id: int, value: float = 1.0) -> None:
        self._col.append(int(feature_id))
        self._value.append(float(value))

    def add_row(self) -> None:
        self._row_offset.append(len(self._col))

    @property
    def rows(self) -> int:
        return len(self._row_offset) - 1

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, 0)

    @property
    def row_offset(self) -> np.ndarray:
        return np.asarray(self._row_offset, dtype=np.int64)

    @property
    def col(self) -> np.ndarray:
        return np.asarray(self._col, dtype=np.uint64)

    @property
    def value(self) -> np.ndarray:
        return np.asarray(self._value, dtype=np.float32)

    def row(self, i: int) -> Tuple[np.ndarray, np.ndarray]:
        """Feature ids and values of example i."""
        begin, end = self._row_offset[i], self._row_offset[i + 1]
        return (np.asarray(self._col[begin:end], dtype=np.uint64),
                np.asarray(self._value[begin:end], dtype=np.float32))

    def iter_rows(self) -> Iterator[Tuple[int, List[int], List[float]]]:
        for i in range(self.rows):
            begin, end = self._row_offset[i], self._row_offset[i + 1]
            yield i, self._col[begin:end], self._value[begin:end]

    def __repr__(self) -> str:
        return f"CSRInstance(rows={self.rows}, nnz={len(self._col)})"


Tensor = Union[DenseTensor, SparseRowMatrix, CSRInstance]

_KIND_TO_CLASS = {
    TensorKind.TSR: DenseTensor,
    TensorKind.SRM: SparseRowMatrix,
    TensorKind.CSR: CSRInstance,
}


class TensorMap:
    """Mapping from names to tensors of a declared kind."""

    def __init__(self, dtype: torch.dtype = torch.float32, device: str = "cpu"):
        self.dtype = dtype
        self.device = device
        self._tensors: Dict[str, Tensor] = {}

    def insert(self, name: str, kind: TensorKind = TensorKind.TSR) -> Any:
        """
        Create empty storage of the given kind under name.

        Raises:
            DuplicateKeyError: name is already present
        """
        if name in self._tensors:
            raise DuplicateKeyError(f"Duplicate tensor name: {name}.")
        if kind is TensorKind.CSR:
            tensor = CSRInstance()
        else:
            tensor = _KIND_TO_CLASS[kind](dtype=self.dtype, device=self.device)
        self._tensors[name] = tensor
        return tensor

    def emplace(self, name: str, tensor: Tensor) -> Tensor:
        """Store an existing tensor object under name."""
        if name in self._tensors:
            raise DuplicateKeyError(f"Duplicate tensor name: {name}.")
        if not isinstance(tensor, tuple(_KIND_TO_CLASS.values())):
            raise TypeError(f"Unsupported tensor type for {name}: {type(tensor).__name__}")
        self._tensors[name] = tensor
        return tensor

    def get(self, name: str, kind: Optional[TensorKind] = None) -> Any:
        """
        Get the tensor stored under name.

        Raises:
            MissingKeyError: name is absent
            TensorKindMismatchError: stored kind differs from kind
        """
        tensor = self._tensors.get(name)
        if tensor is None:
            raise MissingKeyError(f"Missing tensor: {name}.")
        if kind is not None and tensor.kind is not kind:
            raise TensorKindMismatchError(
                f"Tensor {name} has kind {tensor.kind.value}, expected {kind.value}."
            )
        return tensor

    def remove(self, name: str) -> None:
        if self._tensors.pop(name, None) is None:
            raise MissingKeyError(f"Missing tensor: {name}.")

    def clear(self) -> None:
        self._tensors.clear()

    def names(self) -> List[str]:
        return list(self._tensors)

    def items(self):
        return self._tensors.items()

    def __contains__(self, name: str) -> bool:
        return name in self._tensors

    def __len__(self) -> int:
        return len(self._tensors)

    def __iter__(self) -> Iterator[str]:
        return iter(self._tensors)

    def __repr__(self) -> str:
        body = ", ".join(f"{n}: {t!r}" for n, t in self._tensors.items())
        return f"TensorMap({{{body}}})"
