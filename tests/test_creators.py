import os
import sys

import pytest
import torch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import opgraph as og
from opgraph import TensorKind, creators


def test_instance_creators():
    X = creators.get_x()
    assert X.name == "X"
    assert X.tensor_kind is TensorKind.CSR
    assert X.shape == og.Shape(og.BATCH, 0)
    assert creators.get_x(2).name == "X2"
    Y = creators.get_y(3)
    assert (Y.name, Y.shape) == ("Y", og.Shape(og.BATCH, 3))
    assert creators.get_w(1).name == "W"

    assert creators.get_x_user().name == "X_USER"
    assert creators.get_x_cand().shape == og.Shape(og.BATCH, 0)
    H = creators.get_x_hist(3)
    assert (H.name, H.tensor_kind) == ("X_HIST3", TensorKind.CSR)
    S = creators.get_x_hist_size()
    assert S.tensor_kind is TensorKind.TSR
    assert S.shape == og.Shape(og.BATCH)


def test_variable_creators():
    W = creators.get_variable_randn("W", (4, 2), std=0.01)
    assert W.initializer is og.Initializer.RANDN
    assert (W.init_param1, W.init_param2) == (0.0, 0.01)
    assert creators.get_variable_ones("b", 3).shape == og.Shape(3)
    with pytest.raises(og.DefinitionError):
        creators.get_variable_zeros("b", og.Shape(og.BATCH, 3))


def test_lookup_creators():
    items, _ = og.parse_group_config("1:10:4,2:20:4")
    X = creators.get_x()

    deep = creators.deep_group_embedding_lookup("d_", X, items)
    assert deep.shape == og.Shape(og.BATCH, 8)
    assert [w.name for w in deep.inputs[1:]] == ["d_W1", "d_W2"]
    assert all(w.initializer is og.Initializer.RANDN for w in deep.inputs[1:])

    wide = creators.wide_group_embedding_lookup("w_", X, items, sparse=True)
    assert wide.shape == og.Shape(og.BATCH, 2)
    assert all(w.tensor_kind is TensorKind.SRM for w in wide.inputs[1:])
    assert all(w.initializer is og.Initializer.ZEROS for w in wide.inputs[1:])

    shared = creators.deep_group_embedding_lookup2("s_", X, items, need_grad=False)
    assert shared.op_type == "GroupEmbeddingLookup2"
    assert shared.inputs[1].shape == og.Shape(10, 4)
    assert not shared.inputs[1].need_grad

    assert creators.wide_group_embedding_lookup2("a_", X, items).shape == og.Shape(og.BATCH, 2)
    assert creators.wide_group18_embedding_lookup("b_", X, items).op_type == "Group18EmbeddingLookup"
    assert creators.wide_group18_embedding_lookup2("c_", X, items).op_type == "Group18EmbeddingLookup2"
    assert creators.deep_group18_embedding_lookup("e_", X, items).shape == og.Shape(og.BATCH, 8)
    assert creators.deep_group18_embedding_lookup2("f_", X, items).shape == og.Shape(og.BATCH, 8)


def test_lookup_creator_errors():
    X = creators.get_x()
    items, _ = og.parse_group_config("1:10:4,2:20:8")
    with pytest.raises(og.DefinitionError):
        creators.deep_group_embedding_lookup2("d_", X, items)
    with pytest.raises(og.DefinitionError):
        creators.deep_group_embedding_lookup("d_", X, [])
    with pytest.raises(og.DefinitionError):
        creators.deep_group_embedding_lookup("d_", og.InstanceNode("Z", og.Shape(3)), items)


def test_fully_connect_blocks():
    X = og.InstanceNode("H", og.Shape(og.BATCH, 6))
    fc = creators.fully_connect("fc_", X, 3)
    assert fc.shape == og.Shape(og.BATCH, 3)
    assert [n.name for n in fc.inputs[1:]] == ["fc_W", "fc_b"]

    Z = creators.stacked_fully_connect("mlp_", X, [8, 1])
    assert Z.op_type == "FullyConnect"
    assert Z.shape == og.Shape(og.BATCH, 1)
    assert Z.inputs[1].name == "mlp_W1"
    assert Z.inputs[0].op_type == "Relu"

    Z = creators.stacked_fully_connect("t_", X, [6, 4], activation="tanh")
    assert Z.op_type == "Tanh"
    assert Z.inputs[0].inputs[1].name == "t_W0"

    with pytest.raises(og.DefinitionError):
        creators.stacked_fully_connect("x_", X, [4], activation="gelu")
    with pytest.raises(og.DefinitionError):
        creators.stacked_fully_connect("x_", X, [])

    B = creators.add_bias("ab_", X)
    assert B.op_type == "BroadcastAdd"
    assert B.shape == og.Shape(og.BATCH, 6)


def test_targets():
    logit = og.InstanceNode("logit", og.Shape(og.BATCH, 1))
    loss, prob = creators.binary_classification_target(logit, has_w=True, prefix="bc_")
    assert loss.name == "bc_WM"
    assert loss.shape == og.Shape(1)
    assert prob.op_type == "Sigmoid"
    weighted = loss.inputs[0]
    assert weighted.inputs[1].name == "W"

    loss, pred = creators.mae_target(logit)
    assert pred is logit
    assert loss.inputs[0].op_type == "AbsoluteError"

    with pytest.raises(og.DefinitionError):
        creators.mse_target(og.InstanceNode("wide", og.Shape(og.BATCH, 2)))


def test_binary_classification_trains():
    items, _ = og.parse_group_config("1:50:4,2:50:4")
    X = creators.get_x()
    deep = creators.deep_group_embedding_lookup("emb_", X, items)
    logit = creators.stacked_fully_connect("mlp_", deep, [16, 1])
    loss, prob = creators.binary_classification_target(logit)

    graph = og.Graph()
    graph.compile([loss, prob], loss=0)
    param = graph.init_param(og.TensorMap(), seed=42)
    trainable = [n.name for n in graph.get_plan([0, 1], 0).trainable_variables()]
    assert trainable == ["emb_W1", "emb_W2", "mlp_W0", "mlp_b0", "mlp_W1", "mlp_b1"]

    ctx = og.OpContext()
    ctx.init(graph, param)
    ctx.init_op([0, 1], 0)
    ctx.inst.emplace("X", og.CSRInstance.from_rows([
        [(og.make_feature_id(1, i), 1.0), (og.make_feature_id(2, i * 3), 1.0)]
        for i in range(4)
    ]))
    ctx.inst.insert("Y").assign(torch.ones(4, 1))
    ctx.init_forward()
    ctx.init_backward()

    losses = []
    for _ in range(5):
        ctx.forward()
        losses.append(ctx.get_output(loss.name).item())
        ctx.backward()
        for name in trainable:
            param.get(name).data.sub_(0.1 * ctx.get_grad(name))
    assert losses[-1] < losses[0]
    assert ctx.get_output(prob.name).shape == (4, 1)
