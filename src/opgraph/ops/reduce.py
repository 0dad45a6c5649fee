"""Reduction operators."""

from typing import Optional

import torch

from ..errors import DefinitionError, ShapeMismatchError
from ..nodes import GraphNode, OpNode
from ..shape import Shape
from .base import describe
from .registry import register_op


class _Reduce(OpNode):
    """
    Reduce over one axis, or over everything when axis is None.
    A full reduction yields shape (1,).
    """

    def __init__(self, name: str, X: GraphNode, axis: Optional[int] = None,
                 keep_dim: bool = False, need_grad: bool = True):
        super().__init__(name, X, need_grad=need_grad)
        self.axis = axis
        self.keep_dim = bool(keep_dim)
        self._real_axis = None

    def infer(self, x):
        if self.axis is None:
            self._real_axis = None
            return Shape(1)
        try:
            axis = x.real_axis(self.axis)
        except DefinitionError as e:
            raise ShapeMismatchError(f"{describe(self)}: {e}") from None
        self._real_axis = axis
        dims = list(x.dims)
        if self.keep_dim:
            dims[axis] = 1
        else:
            del dims[axis]
            if not dims:
                dims = [1]
        return Shape(*dims)

    def _reduce(self, x: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def _scale(self, x: torch.Tensor) -> float:
        return 1.0

    def forward(self, inputs, out):
        out.copy_(self._reduce(inputs[0]).reshape(out.shape))

    def backward(self, inputs, output, grad_out, needs):
        x = inputs[0]
        if self._real_axis is None:
            g = grad_out.reshape(()).expand_as(x)
        else:
            g = grad_out.reshape(
                x.shape[:self._real_axis] + (1,) + x.shape[self._real_axis + 1:]
            ).expand_as(x)
        return [g * self._scale(x)]


@register_op("ReduceSum")
class ReduceSumNode(_Reduce):
    def _reduce(self, x):
        if self._real_axis is None:
            return x.sum()
        return x.sum(dim=self._real_axis, keepdim=self.keep_dim)


@register_op("ReduceMean")
class ReduceMeanNode(_Reduce):
    def _reduce(self, x):
        if self._real_axis is None:
            return x.mean()
        return x.mean(dim=self._real_axis, keepdim=self.keep_dim)

    def _scale(self, x):
        n = x.numel() if self._real_axis is None else x.shape[self._real_axis]
        return 1.0 / max(n, 1)
