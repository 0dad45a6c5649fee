"""Shape descriptor with an explicit batch placeholder dimension."""

from typing import Iterable, Iterator, Tuple, Union

from .errors import DefinitionError


INT32_MAX = 2 ** 31 - 1


class _BatchDim:
    """Sentinel meaning 'the batch size, bound when instances are bound'."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "BATCH"

    def __reduce__(self):
        return (_BatchDim, ())


BATCH = _BatchDim()
BATCH_PLACEHOLDER = BATCH

Dim = Union[int, _BatchDim]


class Shape:
    """
    Immutable ordered sequence of non-negative dimensions.

    Dimension 0 may be BATCH, which stays symbolic until resolve() binds
    it to a concrete batch size.
    """

    __slots__ = ("_dims",)

    def __init__(self, *dims: Union[Dim, Iterable[Dim]]):
        if len(dims) == 1 and not isinstance(dims[0], (int, _BatchDim)):
            dims = tuple(dims[0])
        checked = []
        for i, d in enumerate(dims):
            if d is BATCH:
                if i != 0:
                    raise DefinitionError(
                        f"Batch placeholder is only allowed at dim 0: {dims!r}"
                    )
            elif isinstance(d, bool) or not isinstance(d, int):
                raise DefinitionError(f"Invalid dim {d!r} in shape {dims!r}")
            elif d < 0:
                raise DefinitionError(f"Negative dim {d} in shape {dims!r}")
            checked.append(d)
        self._dims: Tuple[Dim, ...] = tuple(checked)

    @property
    def dims(self) -> Tuple[Dim, ...]:
        return self._dims

    @property
    def rank(self) -> int:
        return len(self._dims)

    def is_rank(self, rank: int) -> bool:
        return len(self._dims) == rank

    @property
    def has_placeholder(self) -> bool:
        return bool(self._dims) and self._dims[0] is BATCH

    @property
    def is_resolved(self) -> bool:
        return not self.has_placeholder

    def real_axis(self, axis: int) -> int:
        """Normalize a possibly negative axis, raising on out-of-range values."""
        rank = len(self._dims)
        real = axis + rank if axis < 0 else axis
        if real < 0 or real >= rank:
            raise DefinitionError(f"Invalid axis {axis} for shape {self}")
        return real

    def total_dim(self) -> int:
        """Product of all dims; the shape must be resolved."""
        if self.has_placeholder:
            raise DefinitionError(f"Shape {self} has an unresolved batch dim")
        total = 1
        for d in self._dims:
            total *= d
        if total > INT32_MAX:
            raise DefinitionError(f"Shape {self} has too many elements: {total}")
        return total

    def resolve(self, batch: int) -> "Shape":
        """Bind the batch placeholder; resolved shapes are returned unchanged."""
        if not self.has_placeholder:
            return self
        if batch is None or batch < 0:
            raise DefinitionError(f"Invalid batch size {batch!r} for shape {self}")
        resolved = Shape(batch, *self._dims[1:])
        resolved.total_dim()
        return resolved

    def to_tuple(self) -> Tuple[int, ...]:
        """Concrete dims as a plain tuple; the shape must be resolved."""
        if self.has_placeholder:
            raise DefinitionError(f"Shape {self} has an unresolved batch dim")
        return tuple(self._dims)

    def __getitem__(self, i):
        return self._dims[i]

    def __iter__(self) -> Iterator[Dim]:
        return iter(self._dims)

    def __len__(self) -> int:
        return len(self._dims)

    def __eq__(self, other) -> bool:
        if isinstance(other, Shape):
            return self._dims == other._dims
        if isinstance(other, tuple):
            return self._dims == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._dims)

    def __repr__(self) -> str:
        return "Shape(" + ", ".join(repr(d) for d in self._dims) + ")"
