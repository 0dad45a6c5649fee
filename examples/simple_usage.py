#!/usr/bin/env python3
"""
Simple usage example for opgraph
Builds a linear graph and a small click-through-rate model
"""

import logging

import torch

import opgraph as og
from opgraph import creators


def example_linear():
    """Z = X * W + B over single-element inputs"""
    print("Example 1: Linear graph")
    print("-" * 40)

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

    for x, w, b in [(1, 2, 3), (2, 3, 4), (4, 5, 6), (10, 20, 30)]:
        ctx.inst.get("X").data[0] = x
        ctx.inst.get("W").data[0] = w
        ctx.inst.get("B").data[0] = b
        ctx.forward()
        print(f"x={x} w={w} b={b} -> z={ctx.get_output('Z').item():g}")
    print()


def example_ctr_model(steps: int = 20, lr: float = 0.1):
    """Embeddings per feature group, an MLP and a sigmoid BCE target"""
    print("Example 2: Click-through-rate model")
    print("-" * 40)

    items, _ = og.guess_group_config("1:1000:8,2:1000:8,3:1000:8")
    X = creators.get_x()
    emb = creators.deep_group_embedding_lookup("emb_", X, items, sparse=True)
    logit = creators.stacked_fully_connect("mlp_", emb, [32, 16, 1])
    loss, prob = creators.binary_classification_target(logit)

    graph = og.Graph()
    graph.compile([loss, prob], loss=0)
    param = graph.init_param(og.TensorMap(), seed=0)

    # Clicks happen when the group 1 and group 2 ids share parity
    generator = torch.Generator().manual_seed(0)
    ids = torch.randint(0, 100, (64, 3), generator=generator).tolist()
    csr = og.CSRInstance.from_rows(
        [[(og.make_feature_id(g + 1, i), 1.0) for g, i in enumerate(row)] for row in ids]
    )
    labels = [[float(row[0] % 2 == row[1] % 2)] for row in ids]

    ctx = og.OpContext()
    ctx.init(graph, param)
    ctx.init_op([0, 1], 0)
    ctx.inst.emplace("X", csr)
    ctx.inst.insert("Y").assign(labels)
    ctx.init_forward()
    ctx.init_backward()

    plan = graph.get_plan([0, 1], 0)
    for step in range(steps):
        ctx.forward()
        ctx.backward()
        for node in plan.trainable_variables():
            grad = ctx.get_grad(node.name)
            if node.tensor_kind is og.TensorKind.SRM:
                table = param.get(node.name, og.TensorKind.SRM)
                for row_id in grad.row_ids():
                    table.upsert_row(row_id).sub_(lr * grad.get_row(row_id))
            else:
                param.get(node.name).data.sub_(lr * grad)
        if step % 5 == 0:
            print(f"step {step:3d}: loss={ctx.get_output(loss.name).item():.4f}")
    print(f"Plan: {plan.summary()}")
    print()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    example_linear()
    example_ctr_model()
