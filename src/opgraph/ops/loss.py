"""Elementwise loss operators. X is the prediction (or logit), Y the label."""

import torch
import torch.nn.functional as F

from ..nodes import GraphNode, OpNode
from .base import same_shape
from .registry import register_op


class _Loss(OpNode):
    def __init__(self, name: str, X: GraphNode, Y: GraphNode, need_grad: bool = True):
        super().__init__(name, X, Y, need_grad=need_grad)

    def infer(self, x, y):
        return same_shape(self, x, y)


@register_op("SigmoidBCELoss")
class SigmoidBCELossNode(_Loss):
    """Binary cross entropy on logits, computed in the numerically stable form."""

    def forward(self, inputs, out):
        x, y = inputs
        out.copy_(F.binary_cross_entropy_with_logits(x, y, reduction="none"))

    def backward(self, inputs, output, grad_out, needs):
        x, y = inputs
        return [grad_out * (torch.sigmoid(x) - y) if needs[0] else None,
                -grad_out * x if needs[1] else None]


@register_op("SquareError")
class SquareErrorNode(_Loss):
    def forward(self, inputs, out):
        x, y = inputs
        torch.sub(x, y, out=out)
        out.mul_(out)

    def backward(self, inputs, output, grad_out, needs):
        x, y = inputs
        g = 2 * grad_out * (x - y)
        return [g if needs[0] else None, -g if needs[1] else None]


@register_op("AbsoluteError")
class AbsoluteErrorNode(_Loss):
    def forward(self, inputs, out):
        x, y = inputs
        torch.sub(x, y, out=out)
        out.abs_()

    def backward(self, inputs, output, grad_out, needs):
        x, y = inputs
        g = grad_out * torch.sign(x - y)
        return [g if needs[0] else None, -g if needs[1] else None]
