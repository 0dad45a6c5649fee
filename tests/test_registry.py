import os
import sys

import pytest
import torch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import opgraph as og
from opgraph.ops.elementwise import _Unary


def test_builtin_ops_registered():
    registry = og.get_registry()
    for name in ["Add", "Sub", "Mul", "BroadcastAdd", "BroadcastMul", "Sigmoid", "Tanh",
                 "Relu", "Matmul", "FullyConnect", "ReduceSum", "ReduceMean",
                 "SigmoidBCELoss", "SquareError", "AbsoluteError",
                 "GroupEmbeddingLookup", "GroupEmbeddingLookup2",
                 "Group18EmbeddingLookup", "Group18EmbeddingLookup2"]:
        assert name in registry
    assert registry.get("Add") is og.AddNode
    assert registry.get("Nope") is None


def test_create_by_name():
    A = og.InstanceNode("A", og.Shape(2))
    node = og.get_registry().create("Mul", "M", A, A)
    assert isinstance(node, og.MulNode)
    assert node.node_type == "Mul"
    with pytest.raises(og.DefinitionError):
        og.get_registry().create("Nope", "N", A)


def test_local_registry():
    registry = og.OpRegistry()
    registry.register("Add", og.AddNode)
    assert registry.names() == ["Add"]
    with pytest.raises(og.DefinitionError):
        registry.register("Add", og.SubNode)
    with pytest.raises(og.DefinitionError):
        registry.register("Thing", object)


def test_custom_op_runs():
    @og.register_op("TestDouble")
    class DoubleNode(_Unary):
        def forward(self, inputs, out):
            torch.mul(inputs[0], 2, out=out)

        def backward(self, inputs, output, grad_out, needs):
            return [2 * grad_out]

    X = og.InstanceNode("X", og.Shape(og.BATCH, 2))
    D = og.get_registry().create("TestDouble", "D", X)
    graph, _ = og.compile([D])

    ctx = og.OpContext()
    ctx.init(graph, og.TensorMap())
    ctx.init_op([0])
    ctx.inst.insert("X").assign([[1.0, 2.0], [3.0, 4.0]])
    ctx.init_forward()
    ctx.forward()
    assert ctx.get_output("D").tolist() == [[2.0, 4.0], [6.0, 8.0]]
    assert graph.get_plan([0]).summary() == {"InstanceNode": 1, "TestDouble": 1}
