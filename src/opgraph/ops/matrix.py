"""Matrix operators."""

import torch

from ..errors import ShapeMismatchError
from ..nodes import GraphNode, OpNode
from ..shape import Shape
from .base import describe, dim_equal, require_rank
from .registry import register_op


@register_op("Matmul")
class MatmulNode(OpNode):
    """Z = X @ Y for rank-2 X (m, k) and Y (k, n)."""

    def __init__(self, name: str, X: GraphNode, Y: GraphNode, need_grad: bool = True):
        super().__init__(name, X, Y, need_grad=need_grad)

    def infer(self, x, y):
        require_rank(self, x, 2, "X")
        require_rank(self, y, 2, "Y")
        if not dim_equal(x[1], y[0]):
            raise ShapeMismatchError(f"{describe(self)}: inner dims differ, {x} vs {y}")
        return Shape(x[0], y[1])

    def forward(self, inputs, out):
        torch.matmul(inputs[0], inputs[1], out=out)

    def backward(self, inputs, output, grad_out, needs):
        x, y = inputs
        return [grad_out @ y.t() if needs[0] else None,
                x.t() @ grad_out if needs[1] else None]


@register_op("FullyConnect")
class FullyConnectNode(OpNode):
    """Z = X @ W + b for X (m, k), W (k, n) and b (1, n)."""

    def __init__(self, name: str, X: GraphNode, W: GraphNode, b: GraphNode,
                 need_grad: bool = True):
        super().__init__(name, X, W, b, need_grad=need_grad)

    def infer(self, x, w, b):
        require_rank(self, x, 2, "X")
        require_rank(self, w, 2, "W")
        require_rank(self, b, 2, "b")
        if not dim_equal(x[1], w[0]):
            raise ShapeMismatchError(f"{describe(self)}: X {x} does not match W {w}")
        if b[0] != 1 or not dim_equal(b[1], w[1]):
            raise ShapeMismatchError(f"{describe(self)}: b {b} does not match W {w}")
        return Shape(x[0], w[1])

    def forward(self, inputs, out):
        x, w, b = inputs
        torch.addmm(b, x, w, out=out)

    def backward(self, inputs, output, grad_out, needs):
        x, w, _ = inputs
        return [grad_out @ w.t() if needs[0] else None,
                x.t() @ grad_out if needs[1] else None,
                grad_out.sum(dim=0, keepdim=True) if needs[2] else None]
