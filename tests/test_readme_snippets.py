import importlib
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


def test_imports_from_readme_usage():
    og = importlib.import_module("opgraph")
    for name in ["Graph", "OpContext", "TensorMap", "InstanceNode", "AddNode", "MulNode",
                 "Shape", "BATCH", "guess_group_config", "get_registry", "creators"]:
        assert hasattr(og, name)


def test_readme_example():
    og = importlib.import_module("opgraph")
    X = og.InstanceNode("X", og.Shape(1))
    W = og.InstanceNode("W", og.Shape(1))
    B = og.InstanceNode("B", og.Shape(1))
    Z = og.AddNode("Z", og.MulNode("XW", X, W), B)

    graph = og.Graph()
    graph.compile([Z])

    ctx = og.OpContext()
    ctx.init(graph, og.TensorMap())
    ctx.init_op([0], -1)
    for name in ("X", "W", "B"):
        ctx.inst.insert(name).resize(1)
    ctx.init_forward()

    ctx.inst.get("X").data[0] = 1
    ctx.inst.get("W").data[0] = 2
    ctx.inst.get("B").data[0] = 3
    ctx.forward()
    assert ctx.get_output("Z").tolist() == [5.0]
