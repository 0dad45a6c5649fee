"""
Group embedding lookup operators.

X is a sparse instance (csr) of shape (BATCH, 0) whose feature ids carry a
group id prefix. For every feature (id, value) of example i whose group is
configured, the group's column segment of Z[i] accumulates value * W[row],
where row = id for sparse tables and id % rows for dense tables. Features
of unconfigured groups are ignored.

Variants:
  - GroupEmbeddingLookup: one table per group, 16-bit group prefix,
    output width sum(cols)
  - GroupEmbeddingLookup2: one shared table, 16-bit group prefix,
    output width n_groups * col
  - Group18EmbeddingLookup / Group18EmbeddingLookup2: the same with an
    18-bit group prefix
"""

from typing import List, Sequence, Tuple, Union

import torch

from ..errors import DefinitionError, ShapeMismatchError
from ..feature_id import GROUP18_BITS, GROUP_BITS, FEATURE_ID_BITS
from ..nodes import GraphNode, OpNode
from ..shape import Shape
from ..tensor_map import SparseRowMatrix, TensorKind
from .base import describe, require_rank
from .registry import register_op


class _GroupEmbeddingLookupBase(OpNode):
    group_bits = GROUP_BITS
    shared_table = False
    input_kinds = ((TensorKind.CSR,), (TensorKind.TSR, TensorKind.SRM))

    def __init__(self,
                 name: str,
                 X: GraphNode,
                 W: Union[GraphNode, Sequence[GraphNode]],
                 group_ids: Sequence[int],
                 need_grad: bool = True):
        tables = [W] if self.shared_table else list(W)
        group_ids = [int(g) for g in group_ids]
        if not group_ids:
            raise DefinitionError(f"{self.op_type} {name}: group_ids is empty")
        if len(set(group_ids)) != len(group_ids):
            raise DefinitionError(f"{self.op_type} {name}: duplicate group ids {group_ids}")
        max_group_id = (1 << self.group_bits) - 1
        for g in group_ids:
            if g < 0 or g > max_group_id:
                raise DefinitionError(
                    f"{self.op_type} {name}: group id {g} exceeds {self.group_bits} bits"
                )
        if not self.shared_table and len(tables) != len(group_ids):
            raise DefinitionError(
                f"{self.op_type} {name}: {len(tables)} tables for {len(group_ids)} groups"
            )
        super().__init__(name, X, *tables, need_grad=need_grad)
        self.group_ids: Tuple[int, ...] = tuple(group_ids)
        self._slot = {g: i for i, g in enumerate(group_ids)}
        self._shift = FEATURE_ID_BITS - self.group_bits
        # slot -> (table index, begin col, end col), set by infer
        self._segments: List[Tuple[int, int, int]] = []

    def infer(self, x, *tables):
        require_rank(self, x, 2, "X")
        for t in tables:
            require_rank(self, t, 2, "W")
        segments = []
        begin = 0
        for slot in range(len(self.group_ids)):
            table = 0 if self.shared_table else slot
            col = tables[table][1]
            segments.append((table, begin, begin + col))
            begin += col
        if begin <= 0:
            raise ShapeMismatchError(f"{describe(self)}: empty embedding width")
        self._segments = segments
        return Shape(x[0], begin)

    @staticmethod
    def _row(table, feature_id: int) -> torch.Tensor:
        if isinstance(table, SparseRowMatrix):
            return table.get_row(feature_id)
        return table[feature_id % table.shape[0]]

    def _features(self, X):
        """Yield (example, slot, feature id, value) for configured groups."""
        for i, cols, values in X.iter_rows():
            for feature_id, value in zip(cols, values):
                slot = self._slot.get(feature_id >> self._shift)
                if slot is not None:
                    yield i, slot, feature_id, value

    def forward(self, inputs, out):
        X, tables = inputs[0], inputs[1:]
        out.zero_()
        for i, slot, feature_id, value in self._features(X):
            t, begin, end = self._segments[slot]
            out[i, begin:end] += value * self._row(tables[t], feature_id)

    def backward(self, inputs, output, grad_out, needs):
        X, tables = inputs[0], inputs[1:]
        grads: List = [None] * len(inputs)
        for t, table in enumerate(tables):
            if not needs[t + 1]:
                continue
            if isinstance(table, SparseRowMatrix):
                grads[t + 1] = SparseRowMatrix(table.col, dtype=table.dtype, device=table.device)
            else:
                grads[t + 1] = torch.zeros_like(table)
        for i, slot, feature_id, value in self._features(X):
            t, begin, end = self._segments[slot]
            g = grads[t + 1]
            if g is None:
                continue
            contrib = value * grad_out[i, begin:end]
            if isinstance(g, SparseRowMatrix):
                g.upsert_row(feature_id).add_(contrib)
            else:
                g[feature_id % g.shape[0]] += contrib
        return grads


@register_op("GroupEmbeddingLookup")
class GroupEmbeddingLookupNode(_GroupEmbeddingLookupBase):
    """One table per group, 16-bit group prefix."""


@register_op("GroupEmbeddingLookup2")
class GroupEmbeddingLookup2Node(_GroupEmbeddingLookupBase):
    """One table shared by every group, 16-bit group prefix."""
    shared_table = True


@register_op("Group18EmbeddingLookup")
class Group18EmbeddingLookupNode(_GroupEmbeddingLookupBase):
    """One table per group, 18-bit group prefix."""
    group_bits = GROUP18_BITS


@register_op("Group18EmbeddingLookup2")
class Group18EmbeddingLookup2Node(_GroupEmbeddingLookupBase):
    """One table shared by every group, 18-bit group prefix."""
    group_bits = GROUP18_BITS
    shared_table = True
