"""
Graph node hierarchy.

Three node families make up a graph:
  - InstanceNode: per-batch external input, stored in the instance map.
  - VariableNode: learnable parameter, stored in the parameter store.
  - OpNode: pure function of its predecessors, output stored in the hidden map.

Nodes reference their predecessors but do not own them; the Graph that
compiles a node becomes its owner.
"""

from typing import Any, List, Optional, Sequence, Tuple

import torch

from .errors import DefinitionError, OperandKindError
from .initializer import Initializer
from .shape import Shape
from .tensor_map import TensorKind


class GraphNode:
    """Base class of every node."""

    family = "node"

    def __init__(self,
                 name: str,
                 shape: Optional[Shape],
                 tensor_kind: TensorKind,
                 inputs: Sequence["GraphNode"] = (),
                 need_grad: bool = True):
        if name is None:
            name = ""
        if not isinstance(name, str):
            raise DefinitionError(f"Node name must be a string, got {name!r}")
        for inp in inputs:
            if not isinstance(inp, GraphNode):
                raise DefinitionError(
                    f"Input of node {name or type(self).__name__} is not a node: {inp!r}"
                )
        self.name = name
        self._shape = shape
        self.tensor_kind = tensor_kind
        self.inputs: List[GraphNode] = list(inputs)
        self.need_grad = bool(need_grad)
        # Set when a Graph takes ownership
        self.graph = None
        self.index = -1

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def node_type(self) -> str:
        return type(self).__name__

    @property
    def is_instance(self) -> bool:
        return self.family == "instance"

    @property
    def is_variable(self) -> bool:
        return self.family == "variable"

    @property
    def is_op(self) -> bool:
        return self.family == "op"

    def set_need_grad(self, need_grad: bool) -> None:
        self.need_grad = bool(need_grad)

    def __repr__(self) -> str:
        return f"{self.node_type}(name={self.name!r}, shape={self._shape!r})"


def _as_shape(shape) -> Shape:
    if isinstance(shape, Shape):
        return shape
    if isinstance(shape, int):
        return Shape(shape)
    return Shape(tuple(shape))


class InstanceNode(GraphNode):
    """Per-batch input such as features, labels or sample weights."""

    family = "instance"

    def __init__(self,
                 name: str,
                 shape,
                 tensor_kind: TensorKind = TensorKind.TSR,
                 need_grad: bool = False):
        if tensor_kind not in (TensorKind.TSR, TensorKind.CSR):
            raise DefinitionError(
                f"Instance {name} must be tsr or csr, got {tensor_kind.value}"
            )
        if need_grad and tensor_kind is not TensorKind.TSR:
            raise DefinitionError(f"Instance {name}: only dense instances can need grad")
        super().__init__(name, _as_shape(shape), tensor_kind, need_grad=need_grad)

    def set_need_grad(self, need_grad: bool) -> None:
        if need_grad and self.tensor_kind is not TensorKind.TSR:
            raise DefinitionError(f"Instance {self.name}: only dense instances can need grad")
        super().set_need_grad(need_grad)


class VariableNode(GraphNode):
    """Learnable parameter with a fully resolved shape."""

    family = "variable"

    def __init__(self,
                 name: str,
                 shape,
                 tensor_kind: TensorKind = TensorKind.TSR,
                 initializer: Initializer = Initializer.ZEROS,
                 init_param1: float = 0.0,
                 init_param2: float = 0.0,
                 need_grad: bool = True):
        shape = _as_shape(shape)
        if shape.has_placeholder:
            raise DefinitionError(f"Variable {name} must have a resolved shape: {shape}")
        shape.total_dim()
        if tensor_kind not in (TensorKind.TSR, TensorKind.SRM):
            raise DefinitionError(
                f"Variable {name} must be tsr or srm, got {tensor_kind.value}"
            )
        if tensor_kind is TensorKind.SRM and not shape.is_rank(2):
            raise DefinitionError(f"Sparse variable {name} must be rank 2: {shape}")
        super().__init__(name, shape, tensor_kind, need_grad=need_grad)
        self.initializer = initializer
        self.init_param1 = init_param1
        self.init_param2 = init_param2


class OpNode(GraphNode):
    """
    Operator node.

    Subclasses define:
      - infer(*input_shapes) -> Shape, raising ShapeMismatchError on bad shapes
      - forward(inputs, out): write the result into the dense tensor out
      - backward(inputs, output, grad_out, needs) -> one gradient (or None)
        per input; only inputs flagged in needs require a gradient
    and may narrow input_kinds (allowed kinds per operand; the last entry
    applies to any extra operands).
    """

    family = "op"
    op_type = "Op"  # Registry name, set by register_op
    input_kinds: Tuple[Tuple[TensorKind, ...], ...] = ((TensorKind.TSR,),)

    def __init__(self, name: str, *inputs: GraphNode, need_grad: bool = True):
        super().__init__(name, None, TensorKind.TSR, inputs, need_grad)

    @property
    def node_type(self) -> str:
        return self.op_type

    @property
    def shape(self) -> Shape:
        if self._shape is None:
            self._shape = self.infer_shape()
        return self._shape

    def allowed_kinds(self, i: int) -> Tuple[TensorKind, ...]:
        kinds = self.input_kinds
        return kinds[i] if i < len(kinds) else kinds[-1]

    def check_operand_kinds(self) -> None:
        for i, inp in enumerate(self.inputs):
            allowed = self.allowed_kinds(i)
            if inp.tensor_kind not in allowed:
                raise OperandKindError(
                    f"{self.op_type} {self.name or '<unnamed>'}: operand {i} ({inp.name}) "
                    f"has kind {inp.tensor_kind.value}, expected "
                    f"{'/'.join(k.value for k in allowed)}"
                )

    def infer_shape(self) -> Shape:
        """Check operand kinds and evaluate the shape inference rule."""
        self.check_operand_kinds()
        return self.infer(*[inp.shape for inp in self.inputs])

    def refresh_shape(self) -> Shape:
        self._shape = self.infer_shape()
        return self._shape

    def infer(self, *shapes: Shape) -> Shape:
        raise NotImplementedError

    def forward(self, inputs: List[Any], out: torch.Tensor) -> None:
        raise NotImplementedError

    def backward(self,
                 inputs: List[Any],
                 output: torch.Tensor,
                 grad_out: torch.Tensor,
                 needs: List[bool]) -> List[Any]:
        raise NotImplementedError(f"{self.op_type} has no backward")
