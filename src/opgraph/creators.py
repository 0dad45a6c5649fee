"""
Graph construction helpers.

Creators return new, not yet compiled nodes. Variables are named from a
prefix so that several blocks can live in one graph.
"""

from typing import List, Optional, Sequence, Tuple

from .errors import DefinitionError
from .group_config import GroupConfigItem, is_fm_group_config
from .initializer import Initializer
from .nodes import GraphNode, InstanceNode, VariableNode
from .ops import (
    BroadcastAddNode,
    FullyConnectNode,
    Group18EmbeddingLookup2Node,
    Group18EmbeddingLookupNode,
    GroupEmbeddingLookup2Node,
    GroupEmbeddingLookupNode,
    MulNode,
    ReduceMeanNode,
    ReluNode,
    SigmoidBCELossNode,
    SigmoidNode,
    SquareErrorNode,
    AbsoluteErrorNode,
    TanhNode,
)
from .shape import BATCH, Shape
from .tensor_map import TensorKind


X_NAME = "X"
Y_NAME = "Y"
W_NAME = "W"
X_USER_NAME = "X_USER"
X_CAND_NAME = "X_CAND"
X_HIST_NAME = "X_HIST"
X_HIST_SIZE_NAME = "X_HIST_SIZE"

ACTIVATIONS = {
    "sigmoid": SigmoidNode,
    "tanh": TanhNode,
    "relu": ReluNode,
}


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise DefinitionError(message)


# Instance creators

def get_x(i: Optional[int] = None) -> InstanceNode:
    """Sparse feature input X (or Xi)."""
    name = X_NAME if i is None else f"{X_NAME}{i}"
    return InstanceNode(name, Shape(BATCH, 0), TensorKind.CSR)


def get_x_user() -> InstanceNode:
    return InstanceNode(X_USER_NAME, Shape(BATCH, 0), TensorKind.CSR)


def get_x_cand() -> InstanceNode:
    return InstanceNode(X_CAND_NAME, Shape(BATCH, 0), TensorKind.CSR)


def get_x_hist(i: int) -> InstanceNode:
    """Sparse features of the i-th history item."""
    return InstanceNode(f"{X_HIST_NAME}{i}", Shape(BATCH, 0), TensorKind.CSR)


def get_x_hist_size() -> InstanceNode:
    """Dense per-example history length."""
    return InstanceNode(X_HIST_SIZE_NAME, Shape(BATCH), TensorKind.TSR)


def get_y(label_size: int) -> InstanceNode:
    """Dense label input."""
    return InstanceNode(Y_NAME, Shape(BATCH, label_size), TensorKind.TSR)


def get_w(label_size: int) -> InstanceNode:
    """Dense sample weight input."""
    return InstanceNode(W_NAME, Shape(BATCH, label_size), TensorKind.TSR)


def get_instance(name: str, shape: Shape, tensor_kind: TensorKind = TensorKind.TSR) -> InstanceNode:
    return InstanceNode(name, shape, tensor_kind)


# Variable creators

def get_variable(name: str,
                 shape,
                 tensor_kind: TensorKind = TensorKind.TSR,
                 initializer: Initializer = Initializer.ZEROS,
                 init_param1: float = 0.0,
                 init_param2: float = 0.0) -> VariableNode:
    return VariableNode(name, shape, tensor_kind, initializer, init_param1, init_param2)


def get_variable_zeros(name: str, shape) -> VariableNode:
    return get_variable(name, shape, initializer=Initializer.ZEROS)


def get_variable_ones(name: str, shape) -> VariableNode:
    return get_variable(name, shape, initializer=Initializer.ONES)


def get_variable_randn(name: str, shape, mean: float = 0.0, std: float = 1e-3) -> VariableNode:
    return get_variable(name, shape, initializer=Initializer.RANDN,
                        init_param1=mean, init_param2=std)


def get_variable_rand_xavier(name: str, shape) -> VariableNode:
    return get_variable(name, shape, initializer=Initializer.RAND_XAVIER)


# Group embedding lookup creators

def _check_lookup_input(X: GraphNode, items: Sequence[GroupConfigItem], shared: bool) -> None:
    _check(X.shape.is_rank(2), f"X must be rank 2, got {X.shape}")
    _check(len(items) > 0, "items is empty")
    if shared:
        _check(is_fm_group_config(items), "All groups must share one embedding col")


def _group_tables(prefix: str, items, sparse: bool, need_grad: bool, wide: bool) -> List[VariableNode]:
    kind = TensorKind.SRM if sparse else TensorKind.TSR
    tables = []
    for item in items:
        col = 1 if wide else item.embedding_col
        if wide:
            W = get_variable(f"{prefix}W{item.group_id}", Shape(item.embedding_row, col), kind)
        else:
            W = get_variable(f"{prefix}W{item.group_id}", Shape(item.embedding_row, col), kind,
                             Initializer.RANDN, 0.0, 1e-3)
        W.set_need_grad(need_grad)
        tables.append(W)
    return tables


def _shared_table(prefix: str, items, sparse: bool, need_grad: bool, wide: bool) -> VariableNode:
    kind = TensorKind.SRM if sparse else TensorKind.TSR
    first = items[0]
    if wide:
        W = get_variable(f"{prefix}W", Shape(first.embedding_row, 1), kind)
    else:
        W = get_variable(f"{prefix}W", Shape(first.embedding_row, first.embedding_col), kind,
                         Initializer.RANDN, 0.0, 1e-3)
    W.set_need_grad(need_grad)
    return W


def wide_group_embedding_lookup(prefix: str, X: GraphNode, items: Sequence[GroupConfigItem],
                                sparse: bool = False, need_grad: bool = True) -> GraphNode:
    """Per-group LR weights (col 1, zeros)."""
    _check_lookup_input(X, items, shared=False)
    W = _group_tables(prefix, items, sparse, need_grad, wide=True)
    return GroupEmbeddingLookupNode("", X, W, [i.group_id for i in items])


def wide_group_embedding_lookup2(prefix: str, X: GraphNode, items: Sequence[GroupConfigItem],
                                 sparse: bool = False, need_grad: bool = True) -> GraphNode:
    _check_lookup_input(X, items, shared=True)
    W = _shared_table(prefix, items, sparse, need_grad, wide=True)
    return GroupEmbeddingLookup2Node("", X, W, [i.group_id for i in items])


def deep_group_embedding_lookup(prefix: str, X: GraphNode, items: Sequence[GroupConfigItem],
                                sparse: bool = False, need_grad: bool = True) -> GraphNode:
    """Per-group embeddings (randn, std 1e-3)."""
    _check_lookup_input(X, items, shared=False)
    W = _group_tables(prefix, items, sparse, need_grad, wide=False)
    return GroupEmbeddingLookupNode("", X, W, [i.group_id for i in items])


def deep_group_embedding_lookup2(prefix: str, X: GraphNode, items: Sequence[GroupConfigItem],
                                 sparse: bool = False, need_grad: bool = True) -> GraphNode:
    _check_lookup_input(X, items, shared=True)
    W = _shared_table(prefix, items, sparse, need_grad, wide=False)
    return GroupEmbeddingLookup2Node("", X, W, [i.group_id for i in items])


def wide_group18_embedding_lookup(prefix: str, X: GraphNode, items: Sequence[GroupConfigItem],
                                  sparse: bool = False, need_grad: bool = True) -> GraphNode:
    _check_lookup_input(X, items, shared=False)
    W = _group_tables(prefix, items, sparse, need_grad, wide=True)
    return Group18EmbeddingLookupNode("", X, W, [i.group_id for i in items])


def wide_group18_embedding_lookup2(prefix: str, X: GraphNode, items: Sequence[GroupConfigItem],
                                   sparse: bool = False, need_grad: bool = True) -> GraphNode:
    _check_lookup_input(X, items, shared=True)
    W = _shared_table(prefix, items, sparse, need_grad, wide=True)
    return Group18EmbeddingLookup2Node("", X, W, [i.group_id for i in items])


def deep_group18_embedding_lookup(prefix: str, X: GraphNode, items: Sequence[GroupConfigItem],
                                  sparse: bool = False, need_grad: bool = True) -> GraphNode:
    _check_lookup_input(X, items, shared=False)
    W = _group_tables(prefix, items, sparse, need_grad, wide=False)
    return Group18EmbeddingLookupNode("", X, W, [i.group_id for i in items])


def deep_group18_embedding_lookup2(prefix: str, X: GraphNode, items: Sequence[GroupConfigItem],
                                   sparse: bool = False, need_grad: bool = True) -> GraphNode:
    _check_lookup_input(X, items, shared=True)
    W = _shared_table(prefix, items, sparse, need_grad, wide=False)
    return Group18EmbeddingLookup2Node("", X, W, [i.group_id for i in items])


# Building blocks

def fully_connect(prefix: str, X: GraphNode, out_dim: int) -> GraphNode:
    _check(X.shape.is_rank(2), f"X must be rank 2, got {X.shape}")
    W = get_variable_rand_xavier(f"{prefix}W", Shape(X.shape[1], out_dim))
    b = get_variable_zeros(f"{prefix}b", Shape(1, out_dim))
    return FullyConnectNode("", X, W, b)


def stacked_fully_connect(prefix: str, X: GraphNode, deep_dims: Sequence[int],
                          activation: str = "relu") -> GraphNode:
    """
    Fully connected layers with an activation after each one, except a
    final layer of width 1, which stays linear.
    """
    _check(X.shape.is_rank(2), f"X must be rank 2, got {X.shape}")
    _check(len(deep_dims) > 0, "deep_dims is empty")
    _check(activation in ACTIVATIONS, f"Invalid activation: {activation}")
    dims = list(deep_dims)
    if dims[0] != X.shape[1]:
        dims.insert(0, X.shape[1])
    Z = X
    deep_size = len(dims) - 1
    for i in range(deep_size):
        W = get_variable_rand_xavier(f"{prefix}W{i}", Shape(dims[i], dims[i + 1]))
        b = get_variable_zeros(f"{prefix}b{i}", Shape(1, dims[i + 1]))
        H = FullyConnectNode("", Z, W, b)
        if dims[-1] == 1 and i == deep_size - 1:
            Z = H
        else:
            Z = ACTIVATIONS[activation]("", H)
    return Z


def add_bias(prefix: str, X: GraphNode) -> GraphNode:
    _check(X.shape.is_rank(2), f"X must be rank 2, got {X.shape}")
    b = get_variable_zeros(f"{prefix}b", Shape(1, X.shape[1]))
    return BroadcastAddNode("", X, b)


# Target creators; each returns (loss, prediction)

def _weighted_mean(prefix: str, L: GraphNode, has_w: bool) -> GraphNode:
    if has_w:
        WL = MulNode(f"{prefix}WL" if prefix else "", L, get_w(1))
        return ReduceMeanNode(f"{prefix}WM" if prefix else "", WL)
    return ReduceMeanNode(f"{prefix}M" if prefix else "", L)


def _check_logit(X: GraphNode) -> None:
    _check(X.shape.is_rank(2), f"X must be rank 2, got {X.shape}")
    _check(X.shape[1] == 1, f"X must have one column, got {X.shape}")


def binary_classification_target(X: GraphNode, has_w: bool = False,
                                 prefix: str = "") -> Tuple[GraphNode, GraphNode]:
    """Sigmoid BCE loss on logits X; the prediction is sigmoid(X)."""
    _check_logit(X)
    L = SigmoidBCELossNode(f"{prefix}L" if prefix else "", X, get_y(1))
    P = SigmoidNode(f"{prefix}P" if prefix else "", X)
    return _weighted_mean(prefix, L, has_w), P


def mse_target(X: GraphNode, has_w: bool = False, prefix: str = "") -> Tuple[GraphNode, GraphNode]:
    _check_logit(X)
    L = SquareErrorNode(f"{prefix}L" if prefix else "", X, get_y(1))
    return _weighted_mean(prefix, L, has_w), X


def mae_target(X: GraphNode, has_w: bool = False, prefix: str = "") -> Tuple[GraphNode, GraphNode]:
    _check_logit(X)
    L = AbsoluteErrorNode(f"{prefix}L" if prefix else "", X, get_y(1))
    return _weighted_mean(prefix, L, has_w), X
