"""Shape rules and gradient helpers shared by operators."""

from typing import List

import torch

from ..errors import DefinitionError, ShapeMismatchError
from ..nodes import OpNode
from ..shape import BATCH, Shape


def describe(op: OpNode) -> str:
    return f"{op.op_type} {op.name or '<unnamed>'}"


def require_rank(op: OpNode, shape: Shape, rank: int, what: str = "operand") -> None:
    if not shape.is_rank(rank):
        raise ShapeMismatchError(f"{describe(op)}: {what} must be rank {rank}, got {shape}")


def same_shape(op: OpNode, *shapes: Shape) -> Shape:
    """Elementwise rule: every operand has the same shape."""
    first = shapes[0]
    for s in shapes[1:]:
        if s != first:
            raise ShapeMismatchError(f"{describe(op)}: inconsistent shapes {first} vs {s}")
    return first


def broadcast_shape(op: OpNode, a: Shape, b: Shape) -> Shape:
    """
    Numpy-style broadcasting over right-aligned dims.
    The batch placeholder broadcasts only against itself or 1.
    """
    rank = max(a.rank, b.rank)
    pa = (1,) * (rank - a.rank) + a.dims
    pb = (1,) * (rank - b.rank) + b.dims
    dims: List = []
    for da, db in zip(pa, pb):
        if da == db:
            dims.append(da)
        elif da == 1:
            dims.append(db)
        elif db == 1:
            dims.append(da)
        else:
            raise ShapeMismatchError(f"{describe(op)}: cannot broadcast {a} with {b}")
    try:
        return Shape(*dims)
    except DefinitionError:
        raise ShapeMismatchError(f"{describe(op)}: cannot broadcast {a} with {b}") from None


def dim_equal(x, y) -> bool:
    return x is y if (x is BATCH or y is BATCH) else x == y


def reduce_to(grad: torch.Tensor, shape) -> torch.Tensor:
    """Sum a broadcast gradient back to an operand's shape."""
    shape = tuple(shape)
    while grad.dim() > len(shape):
        grad = grad.sum(dim=0)
    for axis, d in enumerate(shape):
        if d == 1 and grad.shape[axis] != 1:
            grad = grad.sum(dim=axis, keepdim=True)
    return grad
