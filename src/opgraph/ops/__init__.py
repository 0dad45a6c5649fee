"""Built-in operators. Importing this package registers them."""

from .registry import OpRegistry, get_registry, register_op
from .elementwise import (
    AddNode,
    SubNode,
    MulNode,
    BroadcastAddNode,
    BroadcastMulNode,
    SigmoidNode,
    TanhNode,
    ReluNode,
)
from .matrix import MatmulNode, FullyConnectNode
from .reduce import ReduceSumNode, ReduceMeanNode
from .loss import SigmoidBCELossNode, SquareErrorNode, AbsoluteErrorNode
from .embedding import (
    GroupEmbeddingLookupNode,
    GroupEmbeddingLookup2Node,
    Group18EmbeddingLookupNode,
    Group18EmbeddingLookup2Node,
)

__all__ = [
    'OpRegistry',
    'get_registry',
    'register_op',
    'AddNode',
    'SubNode',
    'MulNode',
    'BroadcastAddNode',
    'BroadcastMulNode',
    'SigmoidNode',
    'TanhNode',
    'ReluNode',
    'MatmulNode',
    'FullyConnectNode',
    'ReduceSumNode',
    'ReduceMeanNode',
    'SigmoidBCELossNode',
    'SquareErrorNode',
    'AbsoluteErrorNode',
    'GroupEmbeddingLookupNode',
    'GroupEmbeddingLookup2Node',
    'Group18EmbeddingLookupNode',
    'Group18EmbeddingLookup2Node',
]
