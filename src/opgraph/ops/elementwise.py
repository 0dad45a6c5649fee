"""Elementwise and activation operators."""

import torch

from ..nodes import GraphNode, OpNode
from .base import broadcast_shape, reduce_to, same_shape
from .registry import register_op


class _Binary(OpNode):
    def __init__(self, name: str, X: GraphNode, Y: GraphNode, need_grad: bool = True):
        super().__init__(name, X, Y, need_grad=need_grad)

    def infer(self, x, y):
        return same_shape(self, x, y)


@register_op("Add")
class AddNode(_Binary):
    """Z = X + Y"""

    def forward(self, inputs, out):
        torch.add(inputs[0], inputs[1], out=out)

    def backward(self, inputs, output, grad_out, needs):
        return [grad_out, grad_out]


@register_op("Sub")
class SubNode(_Binary):
    """Z = X - Y"""

    def forward(self, inputs, out):
        torch.sub(inputs[0], inputs[1], out=out)

    def backward(self, inputs, output, grad_out, needs):
        return [grad_out, -grad_out if needs[1] else None]


@register_op("Mul")
class MulNode(_Binary):
    """Z = X * Y"""

    def forward(self, inputs, out):
        torch.mul(inputs[0], inputs[1], out=out)

    def backward(self, inputs, output, grad_out, needs):
        x, y = inputs
        return [grad_out * y if needs[0] else None,
                grad_out * x if needs[1] else None]


class _BroadcastBinary(_Binary):
    def infer(self, x, y):
        return broadcast_shape(self, x, y)


@register_op("BroadcastAdd")
class BroadcastAddNode(_BroadcastBinary):
    def forward(self, inputs, out):
        torch.add(inputs[0], inputs[1], out=out)

    def backward(self, inputs, output, grad_out, needs):
        x, y = inputs
        return [reduce_to(grad_out, x.shape) if needs[0] else None,
                reduce_to(grad_out, y.shape) if needs[1] else None]


@register_op("BroadcastMul")
class BroadcastMulNode(_BroadcastBinary):
    def forward(self, inputs, out):
        torch.mul(inputs[0], inputs[1], out=out)

    def backward(self, inputs, output, grad_out, needs):
        x, y = inputs
        return [reduce_to(grad_out * y, x.shape) if needs[0] else None,
                reduce_to(grad_out * x, y.shape) if needs[1] else None]


class _Unary(OpNode):
    def __init__(self, name: str, X: GraphNode, need_grad: bool = True):
        super().__init__(name, X, need_grad=need_grad)

    def infer(self, x):
        return x


@register_op("Sigmoid")
class SigmoidNode(_Unary):
    def forward(self, inputs, out):
        torch.sigmoid(inputs[0], out=out)

    def backward(self, inputs, output, grad_out, needs):
        return [grad_out * output * (1 - output)]


@register_op("Tanh")
class TanhNode(_Unary):
    def forward(self, inputs, out):
        torch.tanh(inputs[0], out=out)

    def backward(self, inputs, output, grad_out, needs):
        return [grad_out * (1 - output * output)]


@register_op("Relu")
class ReluNode(_Unary):
    def forward(self, inputs, out):
        torch.clamp(inputs[0], min=0, out=out)

    def backward(self, inputs, output, grad_out, needs):
        return [grad_out * (inputs[0] > 0).to(grad_out.dtype)]
