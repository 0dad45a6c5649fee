import os
import sys
from concurrent.futures import ThreadPoolExecutor

import pytest
import torch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import opgraph as og
from opgraph import TensorKind, creators


def _scalar_graph():
    X = og.InstanceNode("X", og.Shape(1))
    W = og.InstanceNode("W", og.Shape(1))
    B = og.InstanceNode("B", og.Shape(1))
    Z = og.AddNode("Z", og.MulNode("XW", X, W), B)
    graph = og.Graph()
    graph.compile([Z])
    return graph


def test_forward_reuses_buffers_across_batches():
    ctx = og.OpContext()
    ctx.init(_scalar_graph(), og.TensorMap())
    ctx.init_op([0], -1)
    for name in ("X", "W", "B"):
        ctx.inst.insert(name).resize(1)
    ctx.init_forward()

    out_ptr = ctx.hidden.get("Z").data_ptr()
    in_ptr = ctx.inst.get("X").data_ptr()
    for (x, w, b), z in [((1, 2, 3), 5), ((2, 3, 4), 10), ((4, 5, 6), 26), ((10, 20, 30), 230)]:
        ctx.inst.get("X").data[0] = x
        ctx.inst.get("W").data[0] = w
        ctx.inst.get("B").data[0] = b
        ctx.forward()
        assert ctx.get_output("Z").item() == z
        assert ctx.hidden.get("Z").data_ptr() == out_ptr
        assert ctx.inst.get("X").data_ptr() == in_ptr


def _regression():
    X = og.InstanceNode("X", og.Shape(og.BATCH, 3))
    W = og.VariableNode("W", og.Shape(3, 1), initializer=og.Initializer.ONES)
    b = og.VariableNode("b", og.Shape(1, 1), initializer=og.Initializer.CONSTANT,
                        init_param1=0.5)
    Z = og.FullyConnectNode("Z", X, W, b)
    loss, pred = creators.mse_target(Z)
    graph = og.Graph()
    graph.compile([loss, pred], loss=0)
    param = graph.init_param(og.TensorMap(), seed=0)
    return graph, param, loss


def _bind(ctx, x, y):
    for name, values in (("X", x), ("Y", y)):
        if name in ctx.inst:
            ctx.inst.get(name).assign(values)
        else:
            ctx.inst.insert(name).assign(values)


def test_forward_backward_matches_autograd():
    graph, param, loss = _regression()
    x = [[1.0, 2.0, 3.0], [0.0, 1.0, 0.0], [2.0, -1.0, 1.0]]
    y = [[5.0], [1.0], [0.0]]

    ctx = og.OpContext()
    ctx.init(graph, param)
    ctx.init_op([0, 1], 0)
    _bind(ctx, x, y)
    ctx.init_forward()
    ctx.init_backward()
    assert torch.equal(ctx.get_grad("W"), torch.zeros(3, 1))
    assert torch.equal(ctx.get_grad("b"), torch.zeros(1, 1))

    ctx.forward()
    ctx.backward()

    tw = torch.ones(3, 1, requires_grad=True)
    tb = torch.full((1, 1), 0.5, requires_grad=True)
    tz = torch.tensor(x) @ tw + tb
    tl = ((tz - torch.tensor(y)) ** 2).mean()
    tl.backward()

    assert torch.allclose(ctx.get_output(loss.name), tl.detach().reshape(1))
    assert torch.allclose(ctx.get_output("Z"), tz.detach())
    assert torch.allclose(ctx.get_grad("W"), tw.grad)
    assert torch.allclose(ctx.get_grad("b"), tb.grad)

    # Gradients are recomputed, not summed across calls
    ctx.backward()
    assert torch.allclose(ctx.get_grad("W"), tw.grad)


def test_batch_size_changes():
    graph, param, _ = _regression()
    ctx = og.OpContext()
    ctx.init(graph, param)
    ctx.init_op([0, 1], 0)
    _bind(ctx, [[1.0, 1.0, 1.0]] * 4, [[0.0]] * 4)
    ctx.init_forward()
    ctx.init_backward()
    assert ctx.batch_size == 4
    ctx.forward()
    ctx.backward()
    ptr = ctx.hidden.get("Z").data_ptr()

    _bind(ctx, [[1.0, 1.0, 1.0]] * 2, [[0.0]] * 2)
    ctx.forward()
    ctx.backward()
    assert ctx.batch_size == 2
    assert ctx.get_output("Z").shape == (2, 1)
    assert ctx.get_grad("Z").shape == (2, 1)
    assert ctx.hidden.get("Z").data_ptr() == ptr
    # d/dW of mean((3.5 - 0)^2) over identical rows
    assert torch.allclose(ctx.get_grad("W"), torch.full((3, 1), 7.0))

    _bind(ctx, [[1.0, 1.0, 1.0]] * 8, [[0.0]] * 8)
    ctx.forward()
    assert ctx.get_output("Z").shape == (8, 1)


def test_binding_errors():
    graph, param, _ = _regression()
    ctx = og.OpContext()
    ctx.init(graph, param)
    ctx.init_op([0, 1], 0)

    with pytest.raises(og.RuntimeBindingError):
        ctx.init_forward()

    ctx.inst.insert("X").assign([[1.0, 2.0, 3.0]] * 2)
    ctx.inst.insert("Y").assign([[1.0]] * 3)
    with pytest.raises(og.RuntimeBindingError, match="Inconsistent batch size"):
        ctx.init_forward()

    ctx.inst.get("Y").assign([[1.0, 1.0]] * 2)
    with pytest.raises(og.RuntimeBindingError):
        ctx.init_forward()

    ctx.inst.remove("Y")
    ctx.inst.insert("Y", TensorKind.CSR)
    with pytest.raises(og.TensorKindMismatchError):
        ctx.init_forward()


def test_missing_parameter():
    graph, _, _ = _regression()
    ctx = og.OpContext()
    ctx.init(graph, og.TensorMap())
    ctx.init_op([0, 1], 0)
    _bind(ctx, [[1.0, 2.0, 3.0]], [[1.0]])
    with pytest.raises(og.RuntimeBindingError, match="not in the parameter store"):
        ctx.init_forward()


def test_call_order():
    graph = _scalar_graph()
    ctx = og.OpContext()
    with pytest.raises(og.RuntimeBindingError):
        ctx.init_op([0], -1)
    ctx.init(graph, og.TensorMap())
    with pytest.raises(og.RuntimeBindingError):
        ctx.forward()
    with pytest.raises(og.CompileError):
        ctx.init_op([3], -1)
    ctx.init_op([0], -1)
    with pytest.raises(og.RuntimeBindingError):
        ctx.forward()
    with pytest.raises(og.RuntimeBindingError):
        ctx.init_backward()


def test_contexts_share_parameters():
    graph, param, _ = _regression()
    outputs = []
    for rows in ([[1.0, 0.0, 0.0]], [[0.0, 2.0, 0.0], [0.0, 0.0, 3.0]]):
        ctx = og.OpContext()
        ctx.init(graph, param)
        ctx.init_op([1], -1)
        ctx.inst.insert("X").assign(rows)
        ctx.init_forward()
        ctx.forward()
        outputs.append(ctx.get_output("Z").clone())
    assert torch.allclose(outputs[0], torch.tensor([[1.5]]))
    assert torch.allclose(outputs[1], torch.tensor([[2.5], [3.5]]))
    assert param.names() == ["W", "b"]


def test_instance_gradient():
    X = og.InstanceNode("X", og.Shape(og.BATCH, 2), need_grad=True)
    W = og.VariableNode("W", og.Shape(2, 2), initializer=og.Initializer.ONES)
    L = og.ReduceSumNode("L", og.MatmulNode("M", X, W))
    graph = og.Graph()
    graph.compile([L], loss=0)
    ctx = og.OpContext()
    ctx.init(graph, graph.init_param(og.TensorMap()))
    ctx.init_op([0], 0)
    ctx.inst.insert("X").assign([[1.0, 2.0]])
    ctx.init_backward()
    ctx.forward()
    ctx.backward()
    assert torch.allclose(ctx.get_grad("X"), torch.full((1, 2), 2.0))
    assert torch.allclose(ctx.get_grad("W"), torch.tensor([[1.0, 1.0], [2.0, 2.0]]))


def test_scalar_variables():
    A = og.VariableNode("A", og.Shape(), initializer=og.Initializer.CONSTANT, init_param1=2.0)
    B = og.VariableNode("B", og.Shape(), initializer=og.Initializer.CONSTANT, init_param1=3.0)
    Z = og.AddNode("Z", A, B)
    graph = og.Graph()
    graph.compile([Z])
    ctx = og.OpContext()
    ctx.init(graph, graph.init_param(og.TensorMap()))
    ctx.init_op([0], -1)
    ctx.init_forward()
    ctx.forward()
    assert ctx.get_output("Z").shape == ()
    assert ctx.get_output("Z").item() == 5.0


def _run_backward(graph, x):
    ctx = og.OpContext()
    ctx.init(graph, graph.init_param(og.TensorMap()))
    ctx.init_op([0], 0)
    ctx.inst.insert("X").assign(x)
    ctx.init_backward()
    ctx.forward()
    ctx.backward()
    return ctx


def test_backward_with_no_grad_loss():
    X = og.InstanceNode("X", og.Shape(og.BATCH, 2))
    W = og.VariableNode("W", og.Shape(2, 2), initializer=og.Initializer.ONES)
    L = og.ReduceSumNode("L", og.MatmulNode("M", X, W), need_grad=False)
    graph = og.Graph()
    with pytest.warns(UserWarning):
        graph.compile([L], loss=0)
    ctx = _run_backward(graph, [[1.0, 2.0]])
    assert ctx.get_output("L").item() == 6.0
    assert "W@grad" not in ctx.hidden


def test_backward_stops_at_no_grad_op():
    X = og.InstanceNode("X", og.Shape(og.BATCH, 2))
    W = og.VariableNode("W", og.Shape(2, 2), initializer=og.Initializer.ONES)
    V = og.VariableNode("V", og.Shape(2, 2), initializer=og.Initializer.ONES)
    S = og.SigmoidNode("S", og.MatmulNode("M", X, W), need_grad=False)
    L = og.ReduceSumNode("L", og.AddNode("A", S, og.MatmulNode("N", X, V)))
    graph = og.Graph()
    graph.compile([L], loss=0)
    ctx = _run_backward(graph, [[1.0, 2.0]])
    assert torch.allclose(ctx.get_grad("V"), torch.tensor([[1.0, 1.0], [2.0, 2.0]]))
    assert "W@grad" not in ctx.hidden
    assert "M@grad" not in ctx.hidden


def test_contexts_on_threads_share_parameters():
    graph, param, _ = _regression()

    def run(scale):
        ctx = og.OpContext()
        ctx.init(graph, param)
        ctx.init_op([0, 1], 0)
        _bind(ctx, [[scale, 0.0, 0.0]] * 2, [[0.0]] * 2)
        ctx.init_backward()
        ctx.forward()
        ctx.backward()
        return ctx.get_output("Z").clone(), ctx.get_grad("W").clone()

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(run, [1.0, 2.0, 3.0, 4.0]))
    for scale, (z, gw) in zip([1.0, 2.0, 3.0, 4.0], results):
        assert torch.allclose(z, torch.full((2, 1), scale + 0.5))
        # mean over 2 rows of 2 * z * x, only the first column is non-zero
        assert torch.allclose(gw, torch.tensor([[2 * (scale + 0.5) * scale], [0.0], [0.0]]))
    assert torch.equal(param.get("W").data, torch.ones(3, 1))


def test_rebinding_graph_drops_old_buffers():
    X = og.InstanceNode("X", og.Shape(og.BATCH, 0), TensorKind.CSR)
    E = og.VariableNode("E", og.Shape(10, 2), TensorKind.SRM)
    sparse = og.Graph()
    sparse.compile([og.ReduceSumNode("L", og.GroupEmbeddingLookupNode("Z", X, [E], [1]))], loss=0)

    ctx = og.OpContext()
    ctx.init(sparse, sparse.init_param(og.TensorMap()))
    ctx.init_op([0], 0)
    ctx.inst.emplace("X", og.CSRInstance.from_rows([[(og.make_feature_id(1, 3), 1.0)]]))
    ctx.init_backward()
    ctx.forward()
    ctx.backward()
    assert isinstance(ctx.get_grad("E"), og.SparseRowMatrix)

    Xd = og.InstanceNode("X", og.Shape(og.BATCH, 0), TensorKind.CSR)
    Ed = og.VariableNode("E", og.Shape(10, 2), initializer=og.Initializer.ONES)
    dense = og.Graph()
    dense.compile([og.ReduceSumNode("L", og.GroupEmbeddingLookupNode("Z", Xd, [Ed], [1]))], loss=0)
    ctx.init(dense, dense.init_param(og.TensorMap()))
    ctx.init_op([0], 0)
    ctx.init_backward()
    ctx.forward()
    ctx.backward()
    assert ctx.get_output("L").item() == 2.0
    grad = ctx.get_grad("E")
    assert grad.shape == (10, 2)
    assert grad.sum().item() == 2.0
